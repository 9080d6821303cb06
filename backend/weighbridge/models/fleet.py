from __future__ import annotations

from ..extensions import db
from weighbridge.time_utils import to_utc_z


def weight_to_json(value):
    """Numeric weights go out as floats (kg, 2 dp); None stays None."""
    if value is None:
        return None
    return float(value)


class Vehicle(db.Model):
    """
    Vehicle that crosses the weighbridge.

    total_axles is the declared axle count. The axle profile
    (VehicleAxleConfig rows) must match it, and the overload evaluator uses it
    to detect decks that were never weighed.
    """
    __tablename__ = "vehicles"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "registration_number", name="uq_vehicles_tenant_rego"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    registration_number = db.Column(db.String(20), nullable=False)
    fleet_number = db.Column(db.String(20), nullable=True)
    tare_weight = db.Column(db.Numeric(10, 2), nullable=True)  # empty vehicle weight
    total_axles = db.Column(db.Integer, nullable=False, default=2)
    vehicle_type = db.Column(db.String(50), nullable=True)  # Truck, Trailer, Semi-Trailer

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    tenant = db.relationship("Tenant", backref=db.backref("vehicles", lazy=True))
    axle_configs = db.relationship(
        "VehicleAxleConfig",
        back_populates="vehicle",
        cascade="all, delete-orphan",
        order_by="VehicleAxleConfig.axle_number",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Vehicle id={self.id} rego={self.registration_number!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "registration_number": self.registration_number,
            "fleet_number": self.fleet_number,
            "tare_weight": weight_to_json(self.tare_weight),
            "total_axles": self.total_axles,
            "vehicle_type": self.vehicle_type,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class VehicleAxleConfig(db.Model):
    """Per-axle weight limit for a vehicle. Axle numbers are contiguous from 1."""
    __tablename__ = "vehicle_axle_configs"
    __table_args__ = (
        db.UniqueConstraint("vehicle_id", "axle_number", name="uq_axle_configs_vehicle_axle"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    vehicle_id = db.Column(
        db.Integer,
        db.ForeignKey("vehicles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    axle_number = db.Column(db.Integer, nullable=False)
    axle_type = db.Column(db.String(50), nullable=True)  # Steer, Drive, Trailer
    max_allowed_weight = db.Column(db.Numeric(10, 2), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    vehicle = db.relationship("Vehicle", back_populates="axle_configs")

    def to_dict(self) -> dict:
        return {
            "axle_number": self.axle_number,
            "axle_type": self.axle_type,
            "max_allowed_weight": weight_to_json(self.max_allowed_weight),
        }


class Driver(db.Model):
    __tablename__ = "drivers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20), nullable=True)
    license_number = db.Column(db.String(50), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "license_number": self.license_number,
            "is_active": self.is_active,
        }
