# Overview: Flask API routes for weighing sessions; parses input and returns JSON responses.

"""Weighing session API routes with permission enforcement"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import ValidationError, WeighingError
from ..services import weighing_service
from ..decorators import require_auth, require_permission


weighings_bp = Blueprint("weighings", __name__, url_prefix="/api/weighings")


def _error_response(e: WeighingError):
    return jsonify(e.to_dict()), e.http_status


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _query_int(name: str, default: int | None = None, maximum: int | None = None) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    if not raw.isdigit():
        raise ValidationError(f"{name} must be a non-negative integer")
    value = int(raw)
    if maximum is not None:
        value = min(value, maximum)
    return value


@weighings_bp.post("")
@require_auth
@require_permission("OPEN_WEIGHING")
def open_weighing_route():
    """
    Open a weighing session against an active job.

    Requires: OPEN_WEIGHING permission
    """
    try:
        data = _json_body()
        ws = weighing_service.open_session(
            g.tenant_id,
            data.get("job_id"),
            weighbridge_id=data.get("weighbridge_id"),
            vehicle_id=data.get("vehicle_id"),
            driver_id=data.get("driver_id"),
            customer_id=data.get("customer_id"),
            product_id=data.get("product_id"),
            site_id=data.get("site_id"),
            destination_site_id=data.get("destination_site_id"),
            tare_weight=data.get("tare_weight"),
            user_id=g.current_user.id,
        )
        return jsonify({"weighing": ws.to_dict()}), 201

    except WeighingError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open weighing")
        return jsonify({"error": "Internal server error"}), 500


@weighings_bp.get("")
@require_auth
@require_permission("VIEW_WEIGHING")
def list_weighings_route():
    try:
        limit = _query_int("limit", default=100, maximum=500)
        offset = _query_int("offset", default=0)
        rows, total = weighing_service.list_sessions(
            g.tenant_id,
            status=request.args.get("status") or None,
            job_id=_query_int("job_id"),
            vehicle_id=_query_int("vehicle_id"),
            site_id=_query_int("site_id"),
            sync_status=request.args.get("sync_status") or None,
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "weighings": [ws.to_dict(include_decks=False) for ws in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200

    except WeighingError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list weighings")
        return jsonify({"error": "Internal server error"}), 500


@weighings_bp.get("/<int:session_id>")
@require_auth
@require_permission("VIEW_WEIGHING")
def get_weighing_route(session_id: int):
    try:
        ws = weighing_service.get_session(session_id, g.tenant_id)
        return jsonify({"weighing": ws.to_dict()}), 200

    except WeighingError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load weighing")
        return jsonify({"error": "Internal server error"}), 500


@weighings_bp.post("/<int:session_id>/decks")
@require_auth
@require_permission("RECORD_DECK")
def record_deck_route(session_id: int):
    """
    Record one deck reading.

    Requires: RECORD_DECK permission
    409 DUPLICATE_DECK if the deck was already recorded,
    409 SESSION_CLOSED once finalized or cancelled.
    """
    try:
        data = _json_body()
        deck = weighing_service.record_deck(
            session_id,
            data.get("deck_number"),
            data.get("weight"),
            tenant_id=g.tenant_id,
        )
        ws = weighing_service.get_session(session_id, g.tenant_id)
        return jsonify({"deck": deck.to_dict(), "weighing": ws.to_dict()}), 201

    except WeighingError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record deck weight")
        return jsonify({"error": "Internal server error"}), 500


@weighings_bp.post("/<int:session_id>/finalize")
@require_auth
@require_permission("FINALIZE_WEIGHING")
def finalize_weighing_route(session_id: int):
    """
    Finalize a weighing and issue its docket.

    Requires: FINALIZE_WEIGHING permission
    Body: {"manual_override": false, "tare_weight": 14200}
    """
    try:
        data = _json_body()
        manual_override = data.get("manual_override", False)
        if not isinstance(manual_override, bool):
            raise ValidationError("manual_override must be a boolean")

        ws, result = weighing_service.finalize_session(
            session_id,
            manual_override=manual_override,
            tare_weight=data.get("tare_weight"),
            tenant_id=g.tenant_id,
            user_id=g.current_user.id,
        )
        return jsonify({
            "weighing": ws.to_dict(),
            "overload": result.to_dict(),
            "warnings": result.warnings(),
        }), 200

    except WeighingError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to finalize weighing")
        return jsonify({"error": "Internal server error"}), 500


@weighings_bp.post("/<int:session_id>/cancel")
@require_auth
@require_permission("CANCEL_WEIGHING")
def cancel_weighing_route(session_id: int):
    """
    Cancel an open weighing. A reason is required.

    Requires: CANCEL_WEIGHING permission
    """
    try:
        data = _json_body()
        ws = weighing_service.cancel_session(
            session_id,
            data.get("reason"),
            tenant_id=g.tenant_id,
            user_id=g.current_user.id,
        )
        return jsonify({"weighing": ws.to_dict()}), 200

    except WeighingError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel weighing")
        return jsonify({"error": "Internal server error"}), 500
