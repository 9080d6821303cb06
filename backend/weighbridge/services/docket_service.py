# Overview: Docket numbering authority; allocates docket numbers and offline identifiers.

"""
Docket Numbering Authority

Docket numbers are unique per tenant across its whole history:
    "<DOCKET_PREFIX>-<tenant:03d>-<n:06d>"      e.g. D-001-000042

Offline sites issue provisional numbers from their local store:
    "<PROVISIONAL_DOCKET_MARKER>-<SITEPREFIX>-<n:06d>"   e.g. LOCAL-SITE7-000013

and tag each offline weighing with a site-scoped local transaction id:
    "<SITEPREFIX>-<n:05d>"                       e.g. SITE7-00042

Every allocation increments a DocketSequence row atomically and commits in
its own short transaction. A number handed out is therefore never handed out
again, even if the caller later rolls back (gaps are allowed, duplicates are
not). Callers must not hold uncommitted work on db.session when calling in.
"""

from __future__ import annotations

import threading

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError

from ..extensions import db
from ..errors import NotFound, NumberingUnavailable
from ..models import DocketSequence, Site
from .concurrency import run_with_retry


DOCKET_SERIES = "DOCKET"
LOCAL_DOCKET_SERIES = "LOCAL_DOCKET:{site_id}"
LOCAL_TX_SERIES = "LOCAL_TX:{site_id}"

LOCAL_TX_PAD = 5

# Single in-process serialization point for every sequence
_allocation_lock = threading.Lock()


def _docket_prefix() -> str:
    return current_app.config.get("DOCKET_PREFIX", "D")


def _docket_pad() -> int:
    return int(current_app.config.get("DOCKET_NUMBER_PAD", 6))


def _provisional_marker() -> str:
    return current_app.config.get("PROVISIONAL_DOCKET_MARKER", "LOCAL")


def _allocate(tenant_id: int, series: str, pad: int) -> int:
    """
    Atomically take the next number of a (tenant, series) sequence and commit.

    Raises NumberingUnavailable when the sequence cannot grow past its pad
    width or the database stays locked after retries.
    """
    ceiling = 10 ** pad - 1

    def _op() -> int:
        stmt = (
            update(DocketSequence)
            .where(
                DocketSequence.tenant_id == tenant_id,
                DocketSequence.series == series,
            )
            .values(next_number=DocketSequence.next_number + 1)
        )

        result = db.session.execute(stmt)
        if result.rowcount:
            db.session.flush()
            current = (
                db.session.query(DocketSequence.next_number)
                .filter_by(tenant_id=tenant_id, series=series)
                .scalar()
            )
            number = current - 1
        else:
            seq = DocketSequence(tenant_id=tenant_id, series=series, next_number=2)
            db.session.add(seq)
            try:
                db.session.flush()
                number = 1
            except IntegrityError:
                # Another writer created the row first
                db.session.rollback()
                result = db.session.execute(stmt)
                if not result.rowcount:
                    raise
                db.session.flush()
                current = (
                    db.session.query(DocketSequence.next_number)
                    .filter_by(tenant_id=tenant_id, series=series)
                    .scalar()
                )
                number = current - 1

        if number > ceiling:
            db.session.rollback()
            raise NumberingUnavailable(
                f"Docket sequence {series} exhausted for tenant {tenant_id}",
                details={"tenant_id": tenant_id, "series": series, "ceiling": ceiling},
            )

        db.session.commit()
        return number

    with _allocation_lock:
        try:
            return run_with_retry(_op)
        except OperationalError as exc:
            db.session.rollback()
            current_app.logger.warning(
                "Docket allocation failed for tenant %s series %s: %s", tenant_id, series, exc
            )
            raise NumberingUnavailable(
                "Docket numbering is temporarily unavailable",
                details={"tenant_id": tenant_id, "series": series},
            ) from exc


def _site_prefix(tenant_id: int, site_id: int) -> str:
    site = db.session.get(Site, site_id)
    if site is None or site.tenant_id != tenant_id:
        raise NotFound(f"site {site_id} not found", details={"site_id": site_id})
    return site.prefix


def format_docket_number(tenant_id: int, number: int) -> str:
    pad = _docket_pad()
    return f"{_docket_prefix()}-{tenant_id:03d}-{number:0{pad}d}"


def issue_docket_number(tenant_id: int) -> str:
    """Issue the next authoritative docket number for a tenant."""
    number = _allocate(tenant_id, DOCKET_SERIES, _docket_pad())
    return format_docket_number(tenant_id, number)


def issue_provisional_docket_number(tenant_id: int, site_id: int) -> str:
    """Issue a provisional docket number at an offline site."""
    prefix = _site_prefix(tenant_id, site_id)
    pad = _docket_pad()
    number = _allocate(tenant_id, LOCAL_DOCKET_SERIES.format(site_id=site_id), pad)
    return f"{_provisional_marker()}-{prefix}-{number:0{pad}d}"


def next_local_transaction_id(tenant_id: int, site_id: int) -> str:
    """Site-scoped idempotency key for an offline weighing, e.g. SITE7-00042."""
    prefix = _site_prefix(tenant_id, site_id)
    number = _allocate(tenant_id, LOCAL_TX_SERIES.format(site_id=site_id), LOCAL_TX_PAD)
    return f"{prefix}-{number:0{LOCAL_TX_PAD}d}"


def is_provisional(docket_number: str | None) -> bool:
    if not docket_number:
        return False
    return docket_number.startswith(f"{_provisional_marker()}-")
