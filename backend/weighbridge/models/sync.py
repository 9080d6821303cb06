from __future__ import annotations

from ..extensions import db
from weighbridge.time_utils import to_utc_z


class SyncBatch(db.Model):
    """
    A batch of offline-originated weighings received from a site.

    The batch is processed item by item; each item's outcome is kept in
    SyncBatchItem so a partially processed batch can be inspected and the
    failed or conflicting items re-sent.
    """
    __tablename__ = "sync_batches"
    __table_args__ = (
        db.Index("ix_sync_batches_tenant_site", "tenant_id", "site_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False)
    batch_reference = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PROCESSING")  # PROCESSING, COMPLETED, PARTIAL
    entry_count = db.Column(db.Integer, nullable=False, default=0)
    applied_count = db.Column(db.Integer, nullable=False, default=0)
    already_applied_count = db.Column(db.Integer, nullable=False, default=0)
    conflict_count = db.Column(db.Integer, nullable=False, default=0)
    failed_count = db.Column(db.Integer, nullable=False, default=0)

    submitted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    items = db.relationship(
        "SyncBatchItem",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="SyncBatchItem.position",
        lazy=True,
    )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "site_id": self.site_id,
            "batch_reference": self.batch_reference,
            "status": self.status,
            "entry_count": self.entry_count,
            "applied_count": self.applied_count,
            "already_applied_count": self.already_applied_count,
            "conflict_count": self.conflict_count,
            "failed_count": self.failed_count,
            "submitted_by_user_id": self.submitted_by_user_id,
            "received_at": to_utc_z(self.received_at),
            "completed_at": to_utc_z(self.completed_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SyncBatchItem(db.Model):
    """Outcome of one offline transaction within a sync batch."""
    __tablename__ = "sync_batch_items"
    __table_args__ = (
        db.Index("ix_sync_batch_items_local_tx", "local_transaction_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(
        db.Integer,
        db.ForeignKey("sync_batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = db.Column(db.Integer, nullable=False)  # processing order within the batch
    local_transaction_id = db.Column(db.String(50), nullable=False)
    outcome = db.Column(db.String(16), nullable=False)  # APPLIED, ALREADY_APPLIED, CONFLICT, FAILED
    session_id = db.Column(db.Integer, db.ForeignKey("weighing_transactions.id"), nullable=True)
    docket_number = db.Column(db.String(50), nullable=True)
    reasons = db.Column(db.JSON, nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    batch = db.relationship("SyncBatch", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "position": self.position,
            "local_transaction_id": self.local_transaction_id,
            "outcome": self.outcome,
            "session_id": self.session_id,
            "docket_number": self.docket_number,
            "reasons": self.reasons or [],
            "processed_at": to_utc_z(self.processed_at),
        }
