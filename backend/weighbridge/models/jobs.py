from __future__ import annotations

from ..extensions import db
from weighbridge.time_utils import to_utc_z


# Jobs move CREATED -> IN_PROGRESS -> COMPLETED, or to CANCELLED.
# Only active jobs accept new weighings.
JOB_STATUSES = {"CREATED", "IN_PROGRESS", "COMPLETED", "CANCELLED"}
ACTIVE_JOB_STATUSES = {"CREATED", "IN_PROGRESS"}


class Customer(db.Model):
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20), nullable=True)
    email = db.Column(db.String(100), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "is_active": self.is_active,
        }


class Product(db.Model):
    """Material being hauled (aggregate, green waste, scrap...)."""
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code", name="uq_products_tenant_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    code = db.Column(db.String(20), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
        }


class Job(db.Model):
    """
    A haulage job, created when a truck is ready to load.

    The job carries default references for the weighing transaction
    (vehicle, driver, customer, product, source/destination site). A weighing
    may override any of them; the transaction values are authoritative.
    """
    __tablename__ = "jobs"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "job_number", name="uq_jobs_tenant_number"),
        db.Index("ix_jobs_tenant_status", "tenant_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    job_number = db.Column(db.String(50), nullable=False)

    source_site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False)
    destination_site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    driver_id = db.Column(db.Integer, db.ForeignKey("drivers.id"), nullable=False)
    vehicle_id = db.Column(db.Integer, db.ForeignKey("vehicles.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)

    status = db.Column(db.String(20), nullable=False, default="CREATED", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_JOB_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "job_number": self.job_number,
            "source_site_id": self.source_site_id,
            "destination_site_id": self.destination_site_id,
            "product_id": self.product_id,
            "driver_id": self.driver_id,
            "vehicle_id": self.vehicle_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
