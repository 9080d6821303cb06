# Overview: Audit-event sink for weighing lifecycle events.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditEvent
from ..time_utils import utcnow


def emit_audit_event(
    *,
    tenant_id: int,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    payload: dict | None = None,
) -> AuditEvent | None:
    """
    Append an audit event after the primary operation has committed.

    Fire-and-forget: a delivery failure is logged and swallowed, the caller's
    outcome is never changed by the sink. Returns None when delivery failed.

    event_type examples:
    - WEIGHING_FINALIZED
    - WEIGHING_CANCELLED
    - SYNC_BATCH_RECONCILED
    - AXLE_PROFILE_REPLACED
    """
    try:
        event = AuditEvent(
            tenant_id=tenant_id,
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_user_id=actor_user_id,
            payload=payload,
            occurred_at=utcnow(),
        )
        db.session.add(event)
        db.session.commit()
        return event
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Audit event %s for %s %s was not recorded: %s",
            event_type,
            entity_type,
            entity_id,
            exc,
        )
        return None


def list_audit_events(tenant_id: int, entity_type: str | None = None, entity_id: int | None = None):
    query = db.session.query(AuditEvent).filter_by(tenant_id=tenant_id)
    if entity_type is not None:
        query = query.filter_by(entity_type=entity_type)
    if entity_id is not None:
        query = query.filter_by(entity_id=entity_id)
    return query.order_by(AuditEvent.occurred_at.asc(), AuditEvent.id.asc()).all()
