# Overview: Pytest coverage for the per-vehicle axle configuration registry.

from decimal import Decimal

import pytest

from weighbridge.errors import ConfigConflict, NotFound, ValidationError
from weighbridge.models import VehicleAxleConfig
from weighbridge.services import axle_config_service
from weighbridge.services.audit_service import list_audit_events

from conftest import configure_axles


def _axles(*rows):
    return [
        {"axle_number": n, "axle_type": t, "max_allowed_weight": w}
        for n, t, w in rows
    ]


class TestGetProfile:

    def test_unconfigured_vehicle_has_empty_profile(self, world):
        profile = axle_config_service.get_profile(world["vehicle"].id)

        assert profile.axles == ()
        assert profile.declared_axle_count == 2
        assert profile.is_complete is False

    def test_unknown_vehicle(self, db_session):
        with pytest.raises(NotFound):
            axle_config_service.get_profile(987654)

    def test_cross_tenant_vehicle_is_not_found(self, world, other_world):
        with pytest.raises(NotFound):
            axle_config_service.get_profile(other_world["vehicle"].id, world["tenant"].id)


class TestSetProfile:

    def test_set_and_read_back(self, world):
        vehicle_id = world["vehicle"].id
        configure_axles(vehicle_id)

        profile = axle_config_service.get_profile(vehicle_id)
        assert profile.is_complete is True
        assert [a.axle_number for a in profile.axles] == [1, 2]
        assert profile.axle(2).axle_type == "Drive"
        assert profile.axle(2).max_allowed_weight == Decimal("10000.00")
        assert profile.axle(3) is None

    def test_replace_is_whole(self, world, db_session):
        vehicle_id = world["vehicle"].id
        configure_axles(vehicle_id)

        axle_config_service.set_profile(
            vehicle_id, _axles((2, "Tandem", 17000), (1, "Steer", 6500))
        )

        rows = db_session.query(VehicleAxleConfig).filter_by(vehicle_id=vehicle_id).all()
        assert len(rows) == 2
        profile = axle_config_service.get_profile(vehicle_id)
        assert [(a.axle_number, a.axle_type) for a in profile.axles] == [(1, "Steer"), (2, "Tandem")]
        assert profile.axle(2).max_allowed_weight == Decimal("17000.00")

    def test_duplicate_axle_numbers(self, world):
        with pytest.raises(ConfigConflict) as exc:
            axle_config_service.set_profile(
                world["vehicle"].id, _axles((1, "Steer", 6000), (1, "Drive", 10000))
            )
        assert exc.value.details["duplicate_axles"] == [1]

    def test_gap_in_numbering(self, world):
        with pytest.raises(ConfigConflict):
            axle_config_service.set_profile(
                world["vehicle"].id, _axles((1, "Steer", 6000), (3, "Drive", 10000))
            )

    def test_count_must_match_declared_axles(self, world):
        with pytest.raises(ConfigConflict) as exc:
            axle_config_service.set_profile(world["vehicle"].id, _axles((1, "Steer", 6000)))
        assert exc.value.details == {"declared_axle_count": 2, "configured": 1}

    def test_rejected_write_keeps_previous_profile(self, world):
        vehicle_id = world["vehicle"].id
        configure_axles(vehicle_id)

        with pytest.raises(ConfigConflict):
            axle_config_service.set_profile(vehicle_id, _axles((1, "Steer", 1), (1, "Drive", 2)))

        profile = axle_config_service.get_profile(vehicle_id)
        assert [a.max_allowed_weight for a in profile.axles] == [Decimal("6000.00"), Decimal("10000.00")]

    @pytest.mark.parametrize("axles", [
        [],
        "1:Steer:6000",
        [{"axle_number": 1, "axle_type": "Steer", "max_allowed_weight": 0}],
        [{"axle_number": 0, "axle_type": "Steer", "max_allowed_weight": 6000}],
        [{"axle_number": 1, "axle_type": "Steer", "max_allowed_weight": "heavy"}],
    ])
    def test_malformed_input(self, world, axles):
        with pytest.raises(ValidationError):
            axle_config_service.set_profile(world["vehicle"].id, axles)

    def test_cross_tenant_write_is_not_found(self, world, other_world):
        with pytest.raises(NotFound):
            axle_config_service.set_profile(
                other_world["vehicle"].id,
                _axles((1, "Steer", 6000), (2, "Drive", 10000)),
                tenant_id=world["tenant"].id,
            )
        assert axle_config_service.get_profile(other_world["vehicle"].id).axles == ()

    def test_replacement_is_audited(self, world):
        vehicle_id = world["vehicle"].id
        configure_axles(vehicle_id)

        events = list_audit_events(world["tenant"].id, entity_type="vehicle", entity_id=vehicle_id)
        assert [e.event_type for e in events] == ["AXLE_PROFILE_REPLACED"]
        assert len(events[0].payload["axles"]) == 2
