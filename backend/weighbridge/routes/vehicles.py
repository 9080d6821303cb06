# Overview: Flask API routes for vehicle axle configuration; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import ValidationError, WeighingError
from ..services import axle_config_service
from ..decorators import require_auth, require_permission


vehicles_bp = Blueprint("vehicles", __name__, url_prefix="/api/vehicles")


@vehicles_bp.get("/<int:vehicle_id>/axles")
@require_auth
@require_permission("VIEW_AXLE_CONFIG")
def get_axle_profile_route(vehicle_id: int):
    try:
        profile = axle_config_service.get_profile(vehicle_id, g.tenant_id)
        return jsonify({"profile": profile.to_dict()}), 200

    except WeighingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load axle profile")
        return jsonify({"error": "Internal server error"}), 500


@vehicles_bp.put("/<int:vehicle_id>/axles")
@require_auth
@require_permission("MANAGE_AXLE_CONFIG")
def set_axle_profile_route(vehicle_id: int):
    """
    Replace the vehicle's full axle set.

    Body: {"axles": [{"axle_number": 1, "axle_type": "Steer", "max_allowed_weight": 6000}, ...]}
    409 CONFIG_CONFLICT on duplicate, non-contiguous or miscounted axles.
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")

        profile = axle_config_service.set_profile(
            vehicle_id,
            data.get("axles"),
            tenant_id=g.tenant_id,
            user_id=g.current_user.id,
        )
        return jsonify({"profile": profile.to_dict()}), 200

    except WeighingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to replace axle profile")
        return jsonify({"error": "Internal server error"}), 500
