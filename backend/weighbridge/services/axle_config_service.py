# Overview: Axle configuration registry; per-vehicle axle limits read by the overload evaluator.

"""
Axle Configuration Registry

A vehicle's axle profile is the ordered list of its axles with their type
and maximum allowed weight. Profiles are replaced whole: set_profile deletes
every existing axle row and inserts the new set inside one transaction, so a
reader never sees half of an old profile and half of a new one.

Invariants enforced on write:
- axle numbers are unique per vehicle
- axle numbers are contiguous from 1
- the number of axles equals the vehicle's declared total_axles
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..errors import ConfigConflict, NotFound, ValidationError
from ..models import Vehicle, VehicleAxleConfig
from ..validation import parse_positive_int, parse_weight
from .audit_service import emit_audit_event
from .concurrency import lock_for_update, run_with_retry


@dataclass(frozen=True)
class AxleEntry:
    axle_number: int
    axle_type: str | None
    max_allowed_weight: Decimal

    def to_dict(self) -> dict:
        return {
            "axle_number": self.axle_number,
            "axle_type": self.axle_type,
            "max_allowed_weight": float(self.max_allowed_weight),
        }


@dataclass(frozen=True)
class VehicleAxleProfile:
    vehicle_id: int
    declared_axle_count: int
    axles: tuple[AxleEntry, ...] = field(default_factory=tuple)

    def axle(self, axle_number: int) -> AxleEntry | None:
        for entry in self.axles:
            if entry.axle_number == axle_number:
                return entry
        return None

    @property
    def is_complete(self) -> bool:
        return len(self.axles) == self.declared_axle_count

    def to_dict(self) -> dict:
        return {
            "vehicle_id": self.vehicle_id,
            "declared_axle_count": self.declared_axle_count,
            "is_complete": self.is_complete,
            "axles": [entry.to_dict() for entry in self.axles],
        }


def _get_vehicle(vehicle_id: int, tenant_id: int | None) -> Vehicle:
    vehicle = db.session.get(Vehicle, vehicle_id)
    if vehicle is None or (tenant_id is not None and vehicle.tenant_id != tenant_id):
        raise NotFound(f"vehicle {vehicle_id} not found", details={"vehicle_id": vehicle_id})
    return vehicle


def _profile_from_rows(vehicle: Vehicle, rows) -> VehicleAxleProfile:
    return VehicleAxleProfile(
        vehicle_id=vehicle.id,
        declared_axle_count=vehicle.total_axles,
        axles=tuple(
            AxleEntry(
                axle_number=row.axle_number,
                axle_type=row.axle_type,
                max_allowed_weight=row.max_allowed_weight,
            )
            for row in sorted(rows, key=lambda r: r.axle_number)
        ),
    )


def get_profile(vehicle_id: int, tenant_id: int | None = None) -> VehicleAxleProfile:
    """
    Return the vehicle's axle profile.

    Raises NotFound for an unknown vehicle. A vehicle without any axle rows
    yields an empty (incomplete) profile rather than an error.
    """
    vehicle = _get_vehicle(vehicle_id, tenant_id)
    rows = (
        db.session.query(VehicleAxleConfig)
        .filter_by(vehicle_id=vehicle.id)
        .order_by(VehicleAxleConfig.axle_number)
        .all()
    )
    return _profile_from_rows(vehicle, rows)


def _parse_axles(axles: list[dict]) -> list[AxleEntry]:
    if not isinstance(axles, list) or not axles:
        raise ValidationError("axles must be a non-empty list")

    entries = []
    for i, raw in enumerate(axles):
        if not isinstance(raw, dict):
            raise ValidationError(f"axles[{i}] must be an object")
        axle_number = parse_positive_int(raw.get("axle_number"), f"axles[{i}].axle_number")
        max_allowed = parse_weight(raw.get("max_allowed_weight"), f"axles[{i}].max_allowed_weight")
        if max_allowed <= 0:
            raise ValidationError(f"axles[{i}].max_allowed_weight must be greater than zero")
        axle_type = raw.get("axle_type")
        if axle_type is not None:
            axle_type = str(axle_type).strip() or None
        entries.append(AxleEntry(axle_number, axle_type, max_allowed))
    return entries


def validate_profile(entries: list[AxleEntry], declared_axle_count: int) -> None:
    """Raise ConfigConflict unless entries form a full, contiguous 1..N profile."""
    numbers = [entry.axle_number for entry in entries]

    duplicates = sorted({n for n in numbers if numbers.count(n) > 1})
    if duplicates:
        raise ConfigConflict(
            f"Duplicate axle numbers: {', '.join(str(n) for n in duplicates)}",
            details={"duplicate_axles": duplicates},
        )

    expected = list(range(1, len(numbers) + 1))
    if sorted(numbers) != expected:
        raise ConfigConflict(
            "Axle numbers must be contiguous starting at 1",
            details={"axle_numbers": sorted(numbers)},
        )

    if len(numbers) != declared_axle_count:
        raise ConfigConflict(
            f"Vehicle declares {declared_axle_count} axles but {len(numbers)} were configured",
            details={"declared_axle_count": declared_axle_count, "configured": len(numbers)},
        )


def set_profile(
    vehicle_id: int,
    axles: list[dict],
    tenant_id: int | None = None,
    user_id: int | None = None,
) -> VehicleAxleProfile:
    """
    Replace the vehicle's full axle set transactionally.

    Validation happens before anything is touched; the delete and insert
    share one commit. Concurrent writers for the same vehicle are serialized
    by the vehicle row lock.
    """
    entries = _parse_axles(axles)

    def _op() -> VehicleAxleProfile:
        vehicle = lock_for_update(db.session.query(Vehicle).filter_by(id=vehicle_id)).first()
        if vehicle is None or (tenant_id is not None and vehicle.tenant_id != tenant_id):
            db.session.rollback()
            raise NotFound(f"vehicle {vehicle_id} not found", details={"vehicle_id": vehicle_id})

        try:
            validate_profile(entries, vehicle.total_axles)
        except ConfigConflict:
            db.session.rollback()
            raise

        db.session.query(VehicleAxleConfig).filter_by(vehicle_id=vehicle.id).delete(
            synchronize_session="fetch"
        )
        db.session.flush()

        for entry in entries:
            db.session.add(
                VehicleAxleConfig(
                    vehicle_id=vehicle.id,
                    axle_number=entry.axle_number,
                    axle_type=entry.axle_type,
                    max_allowed_weight=entry.max_allowed_weight,
                )
            )

        db.session.commit()
        return _profile_from_rows(
            vehicle, db.session.query(VehicleAxleConfig).filter_by(vehicle_id=vehicle.id).all()
        )

    profile = run_with_retry(_op)

    current_app.logger.info("Replaced axle profile of vehicle %s (%s axles)", vehicle_id, len(profile.axles))
    emit_audit_event(
        tenant_id=db.session.get(Vehicle, vehicle_id).tenant_id,
        event_type="AXLE_PROFILE_REPLACED",
        entity_type="vehicle",
        entity_id=vehicle_id,
        actor_user_id=user_id,
        payload=profile.to_dict(),
    )
    return profile
