from __future__ import annotations

from decimal import Decimal

from flask import current_app, has_app_context

from ..extensions import db
from weighbridge.time_utils import to_utc_z
from .fleet import weight_to_json


class WeighingSession(db.Model):
    """
    One weighing transaction, from open to docket issuance or cancellation.

    Lifecycle: OPEN -> WEIGHING -> FINALIZED, or OPEN|WEIGHING -> CANCELLED.
    FINALIZED and CANCELLED are terminal; rows in those states are historical
    records and are never mutated again (the offline sync write-back is the
    only exception: it swaps a provisional docket for the authoritative one).

    Gross weight is always the sum of the deck rows. It is snapshotted into
    gross_weight at finalize. Net weight is derived on read and never stored.
    """
    __tablename__ = "weighing_transactions"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "docket_number", name="uq_weighings_tenant_docket"),
        db.UniqueConstraint(
            "tenant_id", "site_id", "local_transaction_id", name="uq_weighings_tenant_site_local_tx"
        ),
        db.Index("ix_weighings_tenant_status_created", "tenant_id", "status", "created_at"),
        db.Index("ix_weighings_docket_number", "docket_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    job_id = db.Column(db.Integer, db.ForeignKey("jobs.id"), nullable=False, index=True)
    weighbridge_id = db.Column(db.Integer, db.ForeignKey("weighbridges.id"), nullable=False, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey("vehicles.id"), nullable=False, index=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("drivers.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    # Source site doubles as the site scope of offline local transaction ids
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    destination_site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)

    gross_weight = db.Column(db.Numeric(10, 2), nullable=True)  # fixed at finalize
    tare_weight = db.Column(db.Numeric(10, 2), nullable=True)

    is_overloaded = db.Column(db.Boolean, nullable=False, default=False)
    is_manual = db.Column(db.Boolean, nullable=False, default=False)
    missing_decks = db.Column(db.JSON, nullable=True)
    unverified_axles = db.Column(db.JSON, nullable=True)

    docket_number = db.Column(db.String(50), nullable=True)
    docket_issued_at = db.Column(db.DateTime(timezone=True), nullable=True)
    provisional_docket_number = db.Column(db.String(50), nullable=True)

    # Offline origin and sync tracking
    is_offline_origin = db.Column(db.Boolean, nullable=False, default=False)
    local_transaction_id = db.Column(db.String(50), nullable=True)
    sync_status = db.Column(db.String(16), nullable=True)  # PENDING, SYNCED, CONFLICT
    sync_message = db.Column(db.Text, nullable=True)
    synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Business time of the first deck reading; drives reconcile ordering
    weighed_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    finalized_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    decks = db.relationship(
        "DeckWeight",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="DeckWeight.deck_number",
        lazy=True,
    )
    overload_record = db.relationship(
        "OverloadRecord",
        back_populates="session",
        cascade="all, delete-orphan",
        uselist=False,
        lazy=True,
    )
    job = db.relationship("Job")
    vehicle = db.relationship("Vehicle")
    weighbridge = db.relationship("Weighbridge")
    site = db.relationship("Site", foreign_keys=[site_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def deck_total(self) -> Decimal:
        total = Decimal("0")
        for deck in self.decks:
            total += deck.weight
        return total

    @property
    def current_gross_weight(self) -> Decimal:
        if self.gross_weight is not None:
            return self.gross_weight
        return self.deck_total

    @property
    def net_weight(self) -> Decimal:
        net = self.current_gross_weight - (self.tare_weight or Decimal("0"))
        floor_at_zero = True
        if has_app_context():
            floor_at_zero = current_app.config.get("NET_WEIGHT_FLOOR_AT_ZERO", True)
        if floor_at_zero and net < 0:
            return Decimal("0.00")
        return net

    @property
    def docket_issued(self) -> bool:
        return self.docket_number is not None

    def __repr__(self) -> str:
        return f"<WeighingSession id={self.id} status={self.status} docket={self.docket_number!r}>"

    def to_dict(self, include_decks: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "job_id": self.job_id,
            "weighbridge_id": self.weighbridge_id,
            "vehicle_id": self.vehicle_id,
            "driver_id": self.driver_id,
            "customer_id": self.customer_id,
            "product_id": self.product_id,
            "site_id": self.site_id,
            "destination_site_id": self.destination_site_id,
            "status": self.status,
            "gross_weight": weight_to_json(self.current_gross_weight),
            "tare_weight": weight_to_json(self.tare_weight),
            "net_weight": weight_to_json(self.net_weight),
            "is_overloaded": self.is_overloaded,
            "is_manual": self.is_manual,
            "missing_decks": self.missing_decks or [],
            "unverified_axles": self.unverified_axles or [],
            "docket_number": self.docket_number,
            "docket_issued": self.docket_issued,
            "docket_issued_at": to_utc_z(self.docket_issued_at),
            "provisional_docket_number": self.provisional_docket_number,
            "is_offline_origin": self.is_offline_origin,
            "local_transaction_id": self.local_transaction_id,
            "sync_status": self.sync_status,
            "synced_at": to_utc_z(self.synced_at),
            "weighed_at": to_utc_z(self.weighed_at),
            "finalized_at": to_utc_z(self.finalized_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_decks:
            data["decks"] = [deck.to_dict() for deck in self.decks]
            data["overload_record"] = (
                self.overload_record.to_dict() if self.overload_record else None
            )
        return data


class DeckWeight(db.Model):
    """
    One deck (axle) reading within a weighing session.

    Axle type and limit are snapshotted from the vehicle profile when the
    reading is taken; the overload flag is recomputed at finalize.
    """
    __tablename__ = "deck_weights"
    __table_args__ = (
        db.UniqueConstraint("session_id", "deck_number", name="uq_deck_weights_session_deck"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(
        db.Integer,
        db.ForeignKey("weighing_transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    deck_number = db.Column(db.Integer, nullable=False)
    weight = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    axle_type = db.Column(db.String(50), nullable=True)
    max_allowed_weight = db.Column(db.Numeric(10, 2), nullable=True)
    is_overloaded = db.Column(db.Boolean, nullable=False, default=False)

    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    session = db.relationship("WeighingSession", back_populates="decks")

    def to_dict(self) -> dict:
        return {
            "deck_number": self.deck_number,
            "weight": weight_to_json(self.weight),
            "axle_type": self.axle_type,
            "max_allowed_weight": weight_to_json(self.max_allowed_weight),
            "is_overloaded": self.is_overloaded,
            "recorded_at": to_utc_z(self.recorded_at),
        }


class OverloadRecord(db.Model):
    """Created only when a finalized session is overloaded. One per session."""
    __tablename__ = "overload_records"
    __table_args__ = (
        db.UniqueConstraint("session_id", name="uq_overload_records_session"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(
        db.Integer,
        db.ForeignKey("weighing_transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    weighbridge_id = db.Column(db.Integer, db.ForeignKey("weighbridges.id"), nullable=False)
    vehicle_id = db.Column(db.Integer, db.ForeignKey("vehicles.id"), nullable=False)
    overload_amount = db.Column(db.Numeric(10, 2), nullable=False)
    # [{"axle_number", "axle_type", "weight", "max_allowed_weight", "excess"}]
    axle_overloads = db.Column(db.JSON, nullable=False)
    unverified_axles = db.Column(db.JSON, nullable=True)
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    session = db.relationship("WeighingSession", back_populates="overload_record")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "weighbridge_id": self.weighbridge_id,
            "vehicle_id": self.vehicle_id,
            "overload_amount": weight_to_json(self.overload_amount),
            "axle_overloads": self.axle_overloads,
            "unverified_axles": self.unverified_axles or [],
            "recorded_at": to_utc_z(self.recorded_at),
        }


class DocketSequence(db.Model):
    """
    Atomic per-tenant number sequences.

    series "DOCKET" backs authority-issued docket numbers. Offline sites keep
    their own "LOCAL_DOCKET:<site>" and "LOCAL_TX:<site>" series in the local
    store. Rows are only ever incremented, so numbers are never reused.
    """
    __tablename__ = "docket_sequences"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "series", name="uq_docket_sequences_tenant_series"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    series = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "series": self.series,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
