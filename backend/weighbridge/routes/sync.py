# Overview: Flask API routes for offline sync batches; parses input and returns JSON responses.

"""
Offline sync API

POST /api/sync/batches          authoritative side: reconcile a batch
GET  /api/sync/batches/<id>     persisted reconcile report
GET  /api/sync/outbox           offline side: export unsynced weighings
POST /api/sync/acknowledgements offline side: apply a reconcile report
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import ValidationError, WeighingError
from ..services import sync_service
from ..services.tenant_service import TenantAccessError, require_site_in_tenant
from ..decorators import require_auth, require_permission


sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


def _json_object() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


@sync_bp.post("/batches")
@require_auth
@require_permission("SUBMIT_SYNC_BATCH")
def submit_sync_batch_route():
    """
    Reconcile a batch of offline weighings.

    Requires: SUBMIT_SYNC_BATCH permission
    Always 200 once the batch is accepted; per-item outcomes are in the report.
    """
    try:
        report = sync_service.reconcile(g.tenant_id, _json_object(), user_id=g.current_user.id)
        return jsonify({"report": report.to_dict()}), 200

    except WeighingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to reconcile sync batch")
        return jsonify({"error": "Internal server error"}), 500


@sync_bp.get("/batches")
@require_auth
@require_permission("VIEW_SYNC_BATCH")
def list_sync_batches_route():
    try:
        site_id = request.args.get("site_id", type=int)
        batches = sync_service.list_sync_batches(g.tenant_id, site_id=site_id)
        return jsonify({"batches": [b.to_dict(include_items=False) for b in batches]}), 200

    except Exception:
        current_app.logger.exception("Failed to list sync batches")
        return jsonify({"error": "Internal server error"}), 500


@sync_bp.get("/batches/<int:batch_id>")
@require_auth
@require_permission("VIEW_SYNC_BATCH")
def get_sync_batch_route(batch_id: int):
    try:
        batch = sync_service.get_sync_batch(batch_id, g.tenant_id)
        return jsonify({"batch": batch.to_dict()}), 200

    except WeighingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load sync batch")
        return jsonify({"error": "Internal server error"}), 500


@sync_bp.get("/outbox")
@require_auth
@require_permission("SUBMIT_SYNC_BATCH")
def outbox_route():
    """Finalized offline weighings of a site that still await reconciliation."""
    try:
        site_id = request.args.get("site_id", type=int) or g.site_id
        if not site_id:
            raise ValidationError("site_id is required")
        require_site_in_tenant(site_id, g.tenant_id)
        payload = sync_service.build_sync_batch(
            g.tenant_id, site_id, batch_reference=request.args.get("batch_reference")
        )
        return jsonify({"batch": payload}), 200

    except TenantAccessError:
        return jsonify({"error": "Site not found", "code": "NOT_FOUND", "retryable": False, "details": {}}), 404
    except WeighingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to build sync outbox")
        return jsonify({"error": "Internal server error"}), 500


@sync_bp.post("/acknowledgements")
@require_auth
@require_permission("SUBMIT_SYNC_BATCH")
def acknowledge_route():
    """Write authoritative docket numbers from a reconcile report back to local records."""
    try:
        data = _json_object()
        report = data.get("report", data)
        summary = sync_service.apply_reconcile_report(g.tenant_id, report)
        return jsonify({"summary": summary}), 200

    except WeighingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to apply reconcile report")
        return jsonify({"error": "Internal server error"}), 500
