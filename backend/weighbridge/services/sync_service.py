# Overview: Offline sync reconciler; replays offline weighings into the authoritative store.

"""
Offline Sync Reconciler

An offline site runs the same state machine against its own local database,
issuing provisional dockets and site-scoped local transaction ids
("SITE7-00042"). When connectivity returns the site exports its finalized,
unsynced weighings as a sync batch; the authoritative store replays them here.

Per entry, in order of original weighing time:
- already reconciled (same tenant, site, local id)   -> ALREADY_APPLIED
- missing / deactivated / cross-tenant references     -> CONFLICT (never auto-corrected)
- otherwise re-run finalize against the authoritative
  axle profile and issue a true docket                -> APPLIED
- per-item failure (numbering unavailable, ...)       -> FAILED, batch continues

Each item commits on its own, so a batch interrupted half way can simply be
sent again: applied items come back ALREADY_APPLIED.

The site then feeds the report to apply_reconcile_report, which writes the
authoritative docket numbers back onto the local records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..errors import NotFound, NumberingUnavailable, ReconcileConflict, ValidationError, WeighingError
from ..models import DeckWeight, Job, Site, SyncBatch, SyncBatchItem, Vehicle, WeighingSession
from ..time_utils import to_utc_z, utcnow
from ..validation import (
    parse_optional_int,
    parse_optional_weight,
    parse_positive_int,
    parse_timestamp,
    parse_weight,
)
from . import docket_service
from .audit_service import emit_audit_event
from .axle_config_service import get_profile
from .concurrency import keyed_lock
from .overload_service import DeckReading, evaluate_against_profile
from .reference_service import collect_reference_problems
from .weighing_service import apply_finalize


APPLIED = "APPLIED"
ALREADY_APPLIED = "ALREADY_APPLIED"
CONFLICT = "CONFLICT"
FAILED = "FAILED"

OUTCOMES = (APPLIED, ALREADY_APPLIED, CONFLICT, FAILED)

MAX_LOCAL_ID_LENGTH = 50


@dataclass(frozen=True)
class OfflineEntry:
    local_transaction_id: str
    job_id: int
    vehicle_id: int
    driver_id: int
    customer_id: int
    product_id: int
    weighbridge_id: int
    weighed_at: datetime
    destination_site_id: int | None = None
    tare_weight: Decimal | None = None
    provisional_docket_number: str | None = None
    manual_override: bool = False
    decks: tuple[DeckReading, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ReconcileEntryResult:
    local_transaction_id: str
    outcome: str
    docket_number: str | None = None
    session_id: int | None = None
    reasons: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "local_transaction_id": self.local_transaction_id,
            "outcome": self.outcome,
            "docket_number": self.docket_number,
            "session_id": self.session_id,
            "reasons": list(self.reasons),
        }


@dataclass
class ReconcileReport:
    site_id: int
    batch_id: int | None = None
    batch_reference: str | None = None
    results: list[ReconcileEntryResult] = field(default_factory=list)

    def count(self, outcome: str) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def status(self) -> str:
        if self.count(CONFLICT) or self.count(FAILED):
            return "PARTIAL"
        return "COMPLETED"

    def for_local_id(self, local_transaction_id: str) -> ReconcileEntryResult | None:
        for result in self.results:
            if result.local_transaction_id == local_transaction_id:
                return result
        return None

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "site_id": self.site_id,
            "batch_reference": self.batch_reference,
            "status": self.status,
            "counts": {outcome: self.count(outcome) for outcome in OUTCOMES},
            "results": [r.to_dict() for r in self.results],
        }


# =============================================================================
# Payload parsing
# =============================================================================

def _parse_local_id(value, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required")
    value = value.strip()
    if len(value) > MAX_LOCAL_ID_LENGTH:
        raise ValidationError(f"{field_name} exceeds {MAX_LOCAL_ID_LENGTH} characters")
    return value


def _parse_decks(raw, prefix: str) -> tuple[DeckReading, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ValidationError(f"{prefix}.decks must be a list")

    readings = []
    seen = set()
    for j, deck in enumerate(raw):
        if not isinstance(deck, dict):
            raise ValidationError(f"{prefix}.decks[{j}] must be an object")
        number = parse_positive_int(deck.get("deck_number"), f"{prefix}.decks[{j}].deck_number")
        if number in seen:
            raise ValidationError(
                f"{prefix}.decks has deck {number} more than once",
                details={"deck_number": number},
            )
        seen.add(number)
        readings.append(
            DeckReading(deck_number=number, weight=parse_weight(deck.get("weight"), f"{prefix}.decks[{j}].weight"))
        )
    return tuple(sorted(readings, key=lambda r: r.deck_number))


def _parse_entry(raw, index: int) -> OfflineEntry:
    prefix = f"entries[{index}]"
    if not isinstance(raw, dict):
        raise ValidationError(f"{prefix} must be an object")

    manual_override = raw.get("manual_override", False)
    if not isinstance(manual_override, bool):
        raise ValidationError(f"{prefix}.manual_override must be a boolean")

    provisional = raw.get("provisional_docket_number")
    if provisional is not None and not isinstance(provisional, str):
        raise ValidationError(f"{prefix}.provisional_docket_number must be a string")

    return OfflineEntry(
        local_transaction_id=_parse_local_id(raw.get("local_transaction_id"), f"{prefix}.local_transaction_id"),
        job_id=parse_positive_int(raw.get("job_id"), f"{prefix}.job_id"),
        vehicle_id=parse_positive_int(raw.get("vehicle_id"), f"{prefix}.vehicle_id"),
        driver_id=parse_positive_int(raw.get("driver_id"), f"{prefix}.driver_id"),
        customer_id=parse_positive_int(raw.get("customer_id"), f"{prefix}.customer_id"),
        product_id=parse_positive_int(raw.get("product_id"), f"{prefix}.product_id"),
        weighbridge_id=parse_positive_int(raw.get("weighbridge_id"), f"{prefix}.weighbridge_id"),
        weighed_at=parse_timestamp(raw.get("weighed_at"), f"{prefix}.weighed_at"),
        destination_site_id=parse_optional_int(raw.get("destination_site_id"), f"{prefix}.destination_site_id"),
        tare_weight=parse_optional_weight(raw.get("tare_weight"), f"{prefix}.tare_weight"),
        provisional_docket_number=provisional,
        manual_override=manual_override,
        decks=_parse_decks(raw.get("decks"), prefix),
    )


def parse_sync_batch(payload) -> tuple[int, str | None, list[OfflineEntry]]:
    """
    Validate a whole sync batch before anything is applied.

    Returns (site_id, batch_reference, entries). Raises ValidationError on the
    first malformed field.
    """
    if not isinstance(payload, dict):
        raise ValidationError("sync batch must be a JSON object")

    site_id = parse_positive_int(payload.get("site_id"), "site_id")
    batch_reference = payload.get("batch_reference")
    if batch_reference is not None:
        batch_reference = str(batch_reference)[:64]

    raw_entries = payload.get("entries")
    if not isinstance(raw_entries, list):
        raise ValidationError("entries must be a list")

    entries = [_parse_entry(raw, i) for i, raw in enumerate(raw_entries)]
    return site_id, batch_reference, entries


# =============================================================================
# Reconcile (authoritative side)
# =============================================================================

def _find_reconciled(tenant_id: int, site_id: int, local_transaction_id: str) -> WeighingSession | None:
    return (
        db.session.query(WeighingSession)
        .filter_by(tenant_id=tenant_id, site_id=site_id, local_transaction_id=local_transaction_id)
        .first()
    )


def _already_applied(ws: WeighingSession) -> ReconcileEntryResult:
    return ReconcileEntryResult(
        local_transaction_id=ws.local_transaction_id,
        outcome=ALREADY_APPLIED,
        docket_number=ws.docket_number,
        session_id=ws.id,
    )


def _entry_problems(tenant_id: int, entry: OfflineEntry) -> list[str]:
    problems = collect_reference_problems(
        tenant_id,
        {
            "job": entry.job_id,
            "vehicle": entry.vehicle_id,
            "driver": entry.driver_id,
            "customer": entry.customer_id,
            "product": entry.product_id,
            "weighbridge": entry.weighbridge_id,
            "destination_site": entry.destination_site_id,
        },
    )
    if not entry.decks and not entry.manual_override:
        problems.append("no deck weights recorded")
    return problems


def _apply_entry(tenant_id: int, site_id: int, entry: OfflineEntry, user_id: int | None) -> WeighingSession:
    job = db.session.get(Job, entry.job_id)
    vehicle = db.session.get(Vehicle, entry.vehicle_id)

    profile = get_profile(entry.vehicle_id, tenant_id)
    result = evaluate_against_profile(profile, entry.decks)

    docket_number = docket_service.issue_docket_number(tenant_id)

    tare = entry.tare_weight
    if tare is None:
        tare = vehicle.tare_weight

    ws = WeighingSession(
        tenant_id=tenant_id,
        job_id=entry.job_id,
        weighbridge_id=entry.weighbridge_id,
        vehicle_id=entry.vehicle_id,
        driver_id=entry.driver_id,
        customer_id=entry.customer_id,
        product_id=entry.product_id,
        site_id=site_id,
        destination_site_id=entry.destination_site_id or job.destination_site_id,
        tare_weight=tare,
        status="WEIGHING",
        is_offline_origin=True,
        local_transaction_id=entry.local_transaction_id,
        provisional_docket_number=entry.provisional_docket_number,
        weighed_at=entry.weighed_at,
        created_by_user_id=user_id,
    )
    for reading in entry.decks:
        axle = profile.axle(reading.deck_number)
        ws.decks.append(
            DeckWeight(
                deck_number=reading.deck_number,
                weight=reading.weight,
                axle_type=axle.axle_type if axle else None,
                max_allowed_weight=axle.max_allowed_weight if axle else None,
                recorded_at=entry.weighed_at,
            )
        )

    apply_finalize(
        ws,
        result,
        docket_number=docket_number,
        manual_override=entry.manual_override,
        user_id=user_id,
    )
    ws.sync_status = "SYNCED"
    ws.synced_at = utcnow()

    db.session.add(ws)
    db.session.commit()
    return ws


def reconcile_entry(
    tenant_id: int,
    site_id: int,
    entry: OfflineEntry,
    user_id: int | None = None,
) -> ReconcileEntryResult:
    """Reconcile one offline weighing. Never raises for per-item problems."""
    local_id = entry.local_transaction_id

    with keyed_lock("local_tx", tenant_id, site_id, local_id):
        existing = _find_reconciled(tenant_id, site_id, local_id)
        if existing is not None:
            return _already_applied(existing)

        problems = _entry_problems(tenant_id, entry)
        if problems:
            return ReconcileEntryResult(local_id, CONFLICT, reasons=tuple(problems))

        try:
            ws = _apply_entry(tenant_id, site_id, entry, user_id)
        except IntegrityError:
            # Another replayer committed the same local id first
            db.session.rollback()
            existing = _find_reconciled(tenant_id, site_id, local_id)
            if existing is not None:
                return _already_applied(existing)
            current_app.logger.exception("Integrity failure reconciling %s", local_id)
            return ReconcileEntryResult(local_id, FAILED, reasons=("integrity error",))
        except NumberingUnavailable as exc:
            db.session.rollback()
            return ReconcileEntryResult(local_id, FAILED, reasons=(exc.message,))
        except (WeighingError, SQLAlchemyError) as exc:
            db.session.rollback()
            current_app.logger.exception("Failed to reconcile offline weighing %s", local_id)
            return ReconcileEntryResult(local_id, FAILED, reasons=(str(exc),))

        return ReconcileEntryResult(
            local_id,
            APPLIED,
            docket_number=ws.docket_number,
            session_id=ws.id,
        )


def reconcile(tenant_id: int, payload, user_id: int | None = None) -> ReconcileReport:
    """
    Replay a batch of offline weighings into the authoritative store.

    The whole payload is validated first (ValidationError). Entries are then
    applied in order of original weighing time; each item commits on its own.
    The batch and every item outcome are persisted as SyncBatch rows.
    """
    site_id, batch_reference, entries = parse_sync_batch(payload)

    site = db.session.get(Site, site_id)
    if site is None or site.tenant_id != tenant_id:
        raise NotFound(f"site {site_id} not found", details={"site_id": site_id})

    batch = SyncBatch(
        tenant_id=tenant_id,
        site_id=site_id,
        batch_reference=batch_reference,
        status="PROCESSING",
        entry_count=len(entries),
        submitted_by_user_id=user_id,
    )
    db.session.add(batch)
    db.session.commit()
    batch_id = batch.id

    report = ReconcileReport(site_id=site_id, batch_id=batch_id, batch_reference=batch_reference)
    ordered = sorted(entries, key=lambda e: (e.weighed_at, e.local_transaction_id))

    for position, entry in enumerate(ordered, start=1):
        result = reconcile_entry(tenant_id, site_id, entry, user_id)
        report.results.append(result)

        db.session.add(
            SyncBatchItem(
                batch_id=batch_id,
                position=position,
                local_transaction_id=result.local_transaction_id,
                outcome=result.outcome,
                session_id=result.session_id,
                docket_number=result.docket_number,
                reasons=list(result.reasons),
                processed_at=utcnow(),
            )
        )
        db.session.commit()

        current_app.logger.info(
            "Sync batch %s: %s -> %s%s",
            batch_id,
            result.local_transaction_id,
            result.outcome,
            f" ({result.docket_number})" if result.docket_number else "",
        )

    batch = db.session.get(SyncBatch, batch_id)
    batch.status = report.status
    batch.applied_count = report.count(APPLIED)
    batch.already_applied_count = report.count(ALREADY_APPLIED)
    batch.conflict_count = report.count(CONFLICT)
    batch.failed_count = report.count(FAILED)
    batch.completed_at = utcnow()
    db.session.commit()

    emit_audit_event(
        tenant_id=tenant_id,
        event_type="SYNC_BATCH_RECONCILED",
        entity_type="sync_batch",
        entity_id=batch_id,
        actor_user_id=user_id,
        payload=report.to_dict()["counts"],
    )
    return report


def get_sync_batch(batch_id: int, tenant_id: int) -> SyncBatch:
    batch = db.session.get(SyncBatch, batch_id)
    if batch is None or batch.tenant_id != tenant_id:
        raise NotFound(f"sync batch {batch_id} not found", details={"batch_id": batch_id})
    return batch


def list_sync_batches(tenant_id: int, site_id: int | None = None, limit: int = 50) -> list[SyncBatch]:
    query = db.session.query(SyncBatch).filter_by(tenant_id=tenant_id)
    if site_id:
        query = query.filter_by(site_id=site_id)
    return query.order_by(SyncBatch.received_at.desc(), SyncBatch.id.desc()).limit(limit).all()


# =============================================================================
# Offline side
# =============================================================================

def _pending_offline_sessions(tenant_id: int, site_id: int) -> list[WeighingSession]:
    return (
        db.session.query(WeighingSession)
        .filter(
            WeighingSession.tenant_id == tenant_id,
            WeighingSession.site_id == site_id,
            WeighingSession.is_offline_origin.is_(True),
            WeighingSession.status == "FINALIZED",
            WeighingSession.sync_status.in_(("PENDING", "CONFLICT")),
        )
        .order_by(WeighingSession.weighed_at.asc(), WeighingSession.id.asc())
        .all()
    )


def _export_entry(ws: WeighingSession) -> dict:
    return {
        "local_transaction_id": ws.local_transaction_id,
        "job_id": ws.job_id,
        "vehicle_id": ws.vehicle_id,
        "driver_id": ws.driver_id,
        "customer_id": ws.customer_id,
        "product_id": ws.product_id,
        "weighbridge_id": ws.weighbridge_id,
        "destination_site_id": ws.destination_site_id,
        "tare_weight": float(ws.tare_weight) if ws.tare_weight is not None else None,
        "weighed_at": to_utc_z(ws.weighed_at or ws.finalized_at),
        "provisional_docket_number": ws.provisional_docket_number,
        "manual_override": bool(ws.is_manual),
        "decks": [
            {"deck_number": deck.deck_number, "weight": float(deck.weight)} for deck in ws.decks
        ],
    }


def build_sync_batch(tenant_id: int, site_id: int, batch_reference: str | None = None) -> dict:
    """Collect the site's finalized, unsynced offline weighings into a sync batch payload."""
    sessions = _pending_offline_sessions(tenant_id, site_id)
    return {
        "site_id": site_id,
        "batch_reference": batch_reference,
        "entries": [_export_entry(ws) for ws in sessions],
    }


def _parse_report_results(report: dict) -> list[tuple[str, str, str | None, list]]:
    """Validate every result up front so a bad report changes nothing."""
    parsed = []
    for i, raw in enumerate(report["results"]):
        if not isinstance(raw, dict):
            raise ValidationError(f"results[{i}] must be an object")
        local_id = _parse_local_id(raw.get("local_transaction_id"), f"results[{i}].local_transaction_id")
        outcome = raw.get("outcome")
        if outcome not in OUTCOMES:
            raise ValidationError(f"results[{i}].outcome must be one of: {', '.join(OUTCOMES)}")

        docket_number = raw.get("docket_number")
        if outcome in (APPLIED, ALREADY_APPLIED):
            if not isinstance(docket_number, str) or not docket_number.strip():
                raise ValidationError(f"results[{i}].docket_number is required for {outcome}")
            docket_number = docket_number.strip()
            if docket_service.is_provisional(docket_number):
                raise ValidationError(
                    f"results[{i}].docket_number must be an authoritative docket number",
                    details={"docket_number": docket_number},
                )

        reasons = raw.get("reasons") or []
        if not isinstance(reasons, list):
            raise ValidationError(f"results[{i}].reasons must be a list")
        parsed.append((local_id, outcome, docket_number, reasons))
    return parsed


def apply_reconcile_report(tenant_id: int, report) -> dict:
    """
    Write an authoritative reconcile report back onto the local records.

    APPLIED / ALREADY_APPLIED entries become SYNCED. Only an offline weighing
    still carrying its provisional docket takes the authoritative number; a
    record holding a different authoritative number is left untouched and
    listed under "mismatched". CONFLICT entries are marked CONFLICT with the
    reasons. FAILED entries stay PENDING so the next export re-sends them.

    Raises ReconcileConflict, with nothing written, when a reported docket
    number already belongs to another weighing.
    """
    if isinstance(report, ReconcileReport):
        report = report.to_dict()
    if not isinstance(report, dict) or not isinstance(report.get("results"), list):
        raise ValidationError("report must contain a results list")

    site_id = parse_positive_int(report.get("site_id"), "site_id")
    results = _parse_report_results(report)
    summary = {"synced": 0, "conflicted": 0, "pending": 0, "unknown": [], "mismatched": []}
    now = utcnow()

    try:
        for local_id, outcome, docket_number, reasons in results:
            ws = _find_reconciled(tenant_id, site_id, local_id)
            if ws is None:
                summary["unknown"].append(local_id)
                continue

            if outcome in (APPLIED, ALREADY_APPLIED):
                if ws.docket_number != docket_number:
                    if not (ws.is_offline_origin and docket_service.is_provisional(ws.docket_number)):
                        summary["mismatched"].append(local_id)
                        continue
                    ws.docket_number = docket_number
                ws.sync_status = "SYNCED"
                ws.sync_message = None
                ws.synced_at = now
                summary["synced"] += 1
            elif outcome == CONFLICT:
                ws.sync_status = "CONFLICT"
                ws.sync_message = "; ".join(str(r) for r in reasons)
                summary["conflicted"] += 1
            else:
                ws.sync_status = "PENDING"
                ws.sync_message = "; ".join(str(r) for r in reasons) or None
                summary["pending"] += 1

        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ReconcileConflict(
            "Reconcile report assigns a docket number that is already in use",
            details={"site_id": site_id},
        ) from exc

    current_app.logger.info(
        "Applied reconcile report for site %s: %s synced, %s conflicted, %s pending, %s mismatched",
        site_id,
        summary["synced"],
        summary["conflicted"],
        summary["pending"],
        len(summary["mismatched"]),
    )
    for local_id in summary["mismatched"]:
        current_app.logger.warning(
            "Reported docket for %s differs from its recorded authoritative docket; left unchanged", local_id
        )
    return summary
