from __future__ import annotations

from ..extensions import db
from weighbridge.time_utils import to_utc_z


class Tenant(db.Model):
    """
    Multi-tenant root: every operator company is a Tenant.

    All sites, vehicles, jobs and weighing transactions belong to exactly
    one tenant. Docket numbers are unique per tenant across its full history.
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    phone = db.Column(db.String(20), nullable=True)
    email = db.Column(db.String(100), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Site(db.Model):
    """
    Physical site within a tenant (quarry, landfill, depot).

    The site prefix is embedded in local transaction ids issued while the
    site is offline, e.g. "SITE7-00042".
    """
    __tablename__ = "sites"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "prefix", name="uq_sites_tenant_prefix"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    prefix = db.Column(db.String(10), nullable=False)
    # Opaque reference into the address service
    location_ref = db.Column(db.String(64), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("sites", lazy=True))

    def __repr__(self) -> str:
        return f"<Site id={self.id} prefix={self.prefix!r} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "prefix": self.prefix,
            "location_ref": self.location_ref,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Weighbridge(db.Model):
    """A weighbridge installed at a site. A site can run several."""
    __tablename__ = "weighbridges"
    __table_args__ = (
        db.UniqueConstraint("site_id", "prefix", name="uq_weighbridges_site_prefix"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    prefix = db.Column(db.String(10), nullable=False)
    location = db.Column(db.String(200), nullable=True)  # loading point
    total_decks = db.Column(db.Integer, nullable=False, default=1)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    site = db.relationship("Site", backref=db.backref("weighbridges", lazy=True))

    @property
    def tenant_id(self) -> int | None:
        return self.site.tenant_id if self.site else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "name": self.name,
            "prefix": self.prefix,
            "location": self.location,
            "total_decks": self.total_decks,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
