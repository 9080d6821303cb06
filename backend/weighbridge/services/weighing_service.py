# Overview: Weighing session state machine; open, record decks, finalize with docket, cancel.

"""
Weighing Session State Machine

STATE MACHINE:
    OPEN -> WEIGHING -> FINALIZED
    OPEN | WEIGHING -> CANCELLED

    OPEN:      created against an active job, no deck readings yet
    WEIGHING:  at least one deck reading recorded
    FINALIZED: gross fixed, overload evaluated, docket assigned (terminal)
    CANCELLED: closed without a docket (terminal)

RULES:
1. Nothing leaves FINALIZED or CANCELLED.
2. OPEN -> FINALIZED only with a manual override (tare-only docket).
3. Finalize is all-or-nothing: gross snapshot, deck flags, overload record,
   docket and status change are committed together or not at all.
4. The docket is requested before the session-mutating critical section.
   The critical section re-reads the session under lock and re-validates it.
5. Mutations of one session are serialized (keyed lock + row lock +
   version_id); different sessions proceed independently.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..errors import (
    DuplicateDeck,
    NoWeightData,
    NotFound,
    SessionClosed,
    ValidationError,
    WeighingError,
)
from ..models import OverloadRecord, WeighingSession
from ..time_utils import utcnow
from ..validation import parse_optional_int, parse_optional_weight, parse_positive_int, parse_weight
from . import docket_service
from .audit_service import emit_audit_event
from .axle_config_service import get_profile
from .concurrency import keyed_lock, lock_for_update, run_with_retry
from .deck_service import record_deck_sample
from .overload_service import OverloadResult, evaluate
from .reference_service import require_active_job, require_reference


VALID_STATUSES = {"OPEN", "WEIGHING", "FINALIZED", "CANCELLED"}
TERMINAL_STATUSES = {"FINALIZED", "CANCELLED"}

_TRANSITIONS = {
    ("OPEN", "WEIGHING"),
    ("OPEN", "FINALIZED"),  # manual override only
    ("OPEN", "CANCELLED"),
    ("WEIGHING", "FINALIZED"),
    ("WEIGHING", "CANCELLED"),
}


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    validate_status(from_status)
    validate_status(to_status)
    return (from_status, to_status) in _TRANSITIONS


def is_offline_mode() -> bool:
    return bool(current_app.config.get("WEIGHBRIDGE_OFFLINE_MODE", False))


def _session_query(session_id: int):
    return db.session.query(WeighingSession).filter_by(id=session_id)


def _not_found(session_id: int) -> NotFound:
    return NotFound(f"weighing session {session_id} not found", details={"session_id": session_id})


def _check_tenant(ws: WeighingSession | None, session_id: int, tenant_id: int | None) -> WeighingSession:
    if ws is None or (tenant_id is not None and ws.tenant_id != tenant_id):
        raise _not_found(session_id)
    return ws


def _ensure_open(ws: WeighingSession, to_status: str | None = None) -> None:
    """Reject writes to a closed session, or a move to to_status it cannot make."""
    if ws.status in TERMINAL_STATUSES or (to_status and not can_transition(ws.status, to_status)):
        raise SessionClosed(
            f"Weighing session {ws.id} is {ws.status}",
            details={"session_id": ws.id, "status": ws.status},
        )


def _ensure_finalizable(ws: WeighingSession, manual_override: bool) -> None:
    _ensure_open(ws, "FINALIZED")
    if ws.status == "OPEN" and not manual_override:
        raise NoWeightData(
            f"Weighing session {ws.id} has no deck weights",
            details={"session_id": ws.id, "status": ws.status},
        )


# =============================================================================
# Read access
# =============================================================================

def get_session(session_id: int, tenant_id: int | None = None) -> WeighingSession:
    return _check_tenant(db.session.get(WeighingSession, session_id), session_id, tenant_id)


def list_sessions(
    tenant_id: int,
    *,
    status: str | None = None,
    job_id: int | None = None,
    vehicle_id: int | None = None,
    site_id: int | None = None,
    sync_status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[WeighingSession], int]:
    query = db.session.query(WeighingSession).filter_by(tenant_id=tenant_id)
    if status:
        validate_status(status)
        query = query.filter_by(status=status)
    if job_id:
        query = query.filter_by(job_id=job_id)
    if vehicle_id:
        query = query.filter_by(vehicle_id=vehicle_id)
    if site_id:
        query = query.filter_by(site_id=site_id)
    if sync_status:
        query = query.filter_by(sync_status=sync_status)

    total = query.count()
    rows = (
        query.order_by(WeighingSession.created_at.desc(), WeighingSession.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return rows, total


# =============================================================================
# Open
# =============================================================================

def open_session(
    tenant_id: int,
    job_id: int,
    *,
    weighbridge_id: int,
    vehicle_id: int | None = None,
    driver_id: int | None = None,
    customer_id: int | None = None,
    product_id: int | None = None,
    site_id: int | None = None,
    destination_site_id: int | None = None,
    tare_weight=None,
    user_id: int | None = None,
) -> WeighingSession:
    """
    Open a weighing session against an active job.

    Omitted references default to the job's; supplied ones override them.
    Tare defaults to the vehicle's recorded tare weight. In offline mode the
    session gets a site-scoped local transaction id and a PENDING sync status.
    """
    job_id = parse_positive_int(job_id, "job_id")
    weighbridge_id = parse_positive_int(weighbridge_id, "weighbridge_id")
    tare = parse_optional_weight(tare_weight, "tare_weight")

    job = require_active_job(job_id, tenant_id)

    vehicle_id = parse_optional_int(vehicle_id, "vehicle_id") or job.vehicle_id
    driver_id = parse_optional_int(driver_id, "driver_id") or job.driver_id
    customer_id = parse_optional_int(customer_id, "customer_id") or job.customer_id
    product_id = parse_optional_int(product_id, "product_id") or job.product_id
    site_id = parse_optional_int(site_id, "site_id") or job.source_site_id
    destination_site_id = (
        parse_optional_int(destination_site_id, "destination_site_id") or job.destination_site_id
    )

    vehicle = require_reference("vehicle", vehicle_id, tenant_id)
    require_reference("driver", driver_id, tenant_id)
    require_reference("customer", customer_id, tenant_id)
    require_reference("product", product_id, tenant_id)
    require_reference("weighbridge", weighbridge_id, tenant_id)
    require_reference("site", site_id, tenant_id)
    if destination_site_id is not None:
        require_reference("site", destination_site_id, tenant_id)

    if tare is None:
        tare = vehicle.tare_weight

    local_transaction_id = None
    if is_offline_mode():
        local_transaction_id = docket_service.next_local_transaction_id(tenant_id, site_id)

    ws = WeighingSession(
        tenant_id=tenant_id,
        job_id=job_id,
        weighbridge_id=weighbridge_id,
        vehicle_id=vehicle_id,
        driver_id=driver_id,
        customer_id=customer_id,
        product_id=product_id,
        site_id=site_id,
        destination_site_id=destination_site_id,
        tare_weight=tare,
        status="OPEN",
        is_offline_origin=local_transaction_id is not None,
        local_transaction_id=local_transaction_id,
        sync_status="PENDING" if local_transaction_id else None,
        created_by_user_id=user_id,
    )
    db.session.add(ws)
    db.session.commit()

    current_app.logger.info(
        "Opened weighing session %s (job %s, vehicle %s%s)",
        ws.id,
        job_id,
        vehicle_id,
        f", local id {local_transaction_id}" if local_transaction_id else "",
    )
    return ws


# =============================================================================
# Record deck
# =============================================================================

def record_deck(
    session_id: int,
    deck_number,
    weight,
    *,
    tenant_id: int | None = None,
):
    """
    Record one deck reading. The first reading moves OPEN -> WEIGHING.

    Raises DuplicateDeck if the deck was already recorded and SessionClosed
    once the session is finalized or cancelled.
    """
    deck_number = parse_positive_int(deck_number, "deck_number")
    weight = parse_weight(weight, "weight")

    def _op():
        ws = lock_for_update(_session_query(session_id)).first()
        try:
            _check_tenant(ws, session_id, tenant_id)
            _ensure_open(ws)
            profile = get_profile(ws.vehicle_id)
            deck = record_deck_sample(ws, deck_number, weight, profile)
        except WeighingError:
            db.session.rollback()
            raise

        now = utcnow()
        if ws.status == "OPEN":
            ws.status = "WEIGHING"
            ws.weighed_at = now
        ws.updated_at = now

        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise DuplicateDeck(
                f"Deck {deck_number} already recorded for session {session_id}",
                details={"session_id": session_id, "deck_number": deck_number},
            ) from exc
        return deck

    with keyed_lock("session", session_id):
        return run_with_retry(_op)


# =============================================================================
# Finalize
# =============================================================================

def apply_finalize(
    ws: WeighingSession,
    result: OverloadResult,
    *,
    docket_number: str,
    manual_override: bool = False,
    tare_weight: Decimal | None = None,
    user_id: int | None = None,
    finalized_at=None,
) -> WeighingSession:
    """
    Move a session to FINALIZED in memory (no commit).

    Shared by the online finalize path and the offline reconciler.
    """
    now = finalized_at or utcnow()

    ws.gross_weight = result.gross_weight
    for deck in ws.decks:
        evaluation = result.for_deck(deck.deck_number)
        if evaluation is not None and evaluation.is_verified:
            deck.axle_type = evaluation.axle_type
            deck.max_allowed_weight = evaluation.max_allowed_weight
        deck.is_overloaded = bool(evaluation and evaluation.is_overloaded)

    ws.is_overloaded = result.is_overloaded
    if result.is_overloaded:
        ws.overload_record = OverloadRecord(
            weighbridge_id=ws.weighbridge_id,
            vehicle_id=ws.vehicle_id,
            overload_amount=result.overload_amount,
            axle_overloads=[axle.to_dict() for axle in result.overloaded_axles],
            unverified_axles=result.unverified_axles,
        )
    ws.missing_decks = list(result.missing_decks)
    ws.unverified_axles = result.unverified_axles

    if tare_weight is not None:
        ws.tare_weight = tare_weight
    ws.is_manual = bool(manual_override)

    ws.docket_number = docket_number
    ws.docket_issued_at = now
    ws.status = "FINALIZED"
    ws.finalized_at = now
    ws.finalized_by_user_id = user_id
    ws.updated_at = now
    return ws


def _request_docket(ws: WeighingSession) -> tuple[str, str | None]:
    """Return (docket_number, provisional_docket_number) for a session."""
    if ws.is_offline_origin:
        provisional = docket_service.issue_provisional_docket_number(ws.tenant_id, ws.site_id)
        return provisional, provisional
    return docket_service.issue_docket_number(ws.tenant_id), None


def finalize_session(
    session_id: int,
    *,
    manual_override: bool = False,
    tare_weight=None,
    tenant_id: int | None = None,
    user_id: int | None = None,
) -> tuple[WeighingSession, OverloadResult]:
    """
    Finalize a weighing: evaluate overload, assign a docket, close the session.

    Allowed from WEIGHING, or from OPEN with manual_override. Any failure
    leaves the session exactly as it was.
    """
    tare = parse_optional_weight(tare_weight, "tare_weight")

    with keyed_lock("session", session_id):
        try:
            ws = _check_tenant(db.session.get(WeighingSession, session_id), session_id, tenant_id)
            _ensure_finalizable(ws, manual_override)
            evaluate(ws.vehicle_id, ws.decks)
            docket_number, provisional = _request_docket(ws)
        except (WeighingError, SQLAlchemyError):
            db.session.rollback()
            raise

        def _op():
            locked = lock_for_update(_session_query(session_id)).first()
            _check_tenant(locked, session_id, tenant_id)
            _ensure_finalizable(locked, manual_override)

            result = evaluate(locked.vehicle_id, locked.decks)
            apply_finalize(
                locked,
                result,
                docket_number=docket_number,
                manual_override=manual_override,
                tare_weight=tare,
                user_id=user_id,
            )
            if provisional is not None:
                locked.provisional_docket_number = provisional
            db.session.commit()
            return locked, result

        try:
            ws, result = run_with_retry(_op)
        except (WeighingError, SQLAlchemyError):
            db.session.rollback()
            current_app.logger.warning(
                "Finalize of weighing session %s rolled back; docket %s left unused",
                session_id,
                docket_number,
            )
            raise

    current_app.logger.info(
        "Finalized weighing session %s with docket %s (gross %s, overloaded=%s)",
        ws.id,
        ws.docket_number,
        ws.gross_weight,
        ws.is_overloaded,
    )
    emit_audit_event(
        tenant_id=ws.tenant_id,
        event_type="WEIGHING_FINALIZED",
        entity_type="weighing_session",
        entity_id=ws.id,
        actor_user_id=user_id,
        payload={
            "docket_number": ws.docket_number,
            "gross_weight": float(ws.gross_weight),
            "is_overloaded": ws.is_overloaded,
            "overload_amount": float(result.overload_amount),
            "manual_override": bool(manual_override),
        },
    )
    return ws, result


# =============================================================================
# Cancel
# =============================================================================

def cancel_session(
    session_id: int,
    reason: str,
    *,
    tenant_id: int | None = None,
    user_id: int | None = None,
) -> WeighingSession:
    """Cancel an OPEN or WEIGHING session. Never assigns a docket."""
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("reason is required to cancel a weighing")
    reason = reason.strip()

    def _op():
        ws = lock_for_update(_session_query(session_id)).first()
        try:
            _check_tenant(ws, session_id, tenant_id)
            _ensure_open(ws, "CANCELLED")
        except WeighingError:
            db.session.rollback()
            raise

        now = utcnow()
        ws.status = "CANCELLED"
        ws.cancelled_at = now
        ws.cancel_reason = reason[:255]
        ws.cancelled_by_user_id = user_id
        ws.updated_at = now
        db.session.commit()
        return ws

    with keyed_lock("session", session_id):
        ws = run_with_retry(_op)

    current_app.logger.info("Cancelled weighing session %s: %s", ws.id, ws.cancel_reason)
    emit_audit_event(
        tenant_id=ws.tenant_id,
        event_type="WEIGHING_CANCELLED",
        entity_type="weighing_session",
        entity_id=ws.id,
        actor_user_id=user_id,
        payload={"reason": ws.cancel_reason},
    )
    return ws
