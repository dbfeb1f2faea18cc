from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import decimal_str
from ..time_utils import to_utc_z, utcnow


RETURN_STATUS_DRAFT = "DRAFT"
RETURN_STATUS_VALIDATED = "VALIDATED"
RETURN_STATUS_COMMITTED = "COMMITTED"

RESTOCK = "RESTOCK"
DISCARD = "DISCARD"

REFUND_FULL = "FULL"
REFUND_PARTIAL = "PARTIAL"


class Return(db.Model):
    """
    Return document against a prior sale.

    LIFECYCLE: DRAFT -> VALIDATED -> COMMITTED

    There is no cancelled state after commit. Stock and ledger mutations of
    a committed return are final; corrections are compensating adjustments.
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.UniqueConstraint("store_id", "document_number", name="uq_returns_store_docnum"),
        db.Index("ix_returns_store_status_created", "store_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Human-readable document number (e.g., "R-0012")
    document_number = db.Column(db.String(64), nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=RETURN_STATUS_DRAFT, index=True)

    # Inherited from the sale; one currency per return
    currency = db.Column(db.String(3), nullable=False)

    # FULL when every item is a full refund, otherwise PARTIAL
    refund_type = db.Column(db.String(16), nullable=False, default=REFUND_FULL)
    total_refund = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))

    reason = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    committed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    store = db.relationship("Store", backref=db.backref("returns", lazy=True))
    sale = db.relationship("Sale", backref=db.backref("returns", lazy=True))
    items = db.relationship("ReturnLine", back_populates="return_doc", order_by="ReturnLine.id", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "storeId": self.store_id,
            "documentNumber": self.document_number,
            "saleId": self.sale_id,
            "status": self.status,
            "currency": self.currency,
            "refundType": self.refund_type,
            "totalRefund": decimal_str(self.total_refund),
            "reason": self.reason,
            "createdByUserId": self.created_by_user_id,
            "createdAt": to_utc_z(self.created_at),
            "committedAt": to_utc_z(self.committed_at),
        }


class ReturnLine(db.Model):
    """
    One ReturnItem: a quantity of one sale line coming back.

    restored_cost is the cost basis put back into the ledger for RESTOCK
    items (zero for DISCARD). restored_layer_ids lists the return_restock
    layers the item created.
    """
    __tablename__ = "return_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    restock_action = db.Column(db.String(16), nullable=False)
    refund_type = db.Column(db.String(16), nullable=False)
    refund_amount = db.Column(db.Numeric(14, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    restored_cost = db.Column(db.Numeric(16, 4), nullable=False, default=Decimal("0"))
    restored_layer_ids = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    return_doc = db.relationship("Return", back_populates="items")
    sale_line = db.relationship("SaleLine", backref=db.backref("return_lines", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "returnId": self.return_id,
            "saleLineId": self.sale_line_id,
            "productId": self.product_id,
            "quantity": decimal_str(self.quantity),
            "restockAction": self.restock_action,
            "refundType": self.refund_type,
            "refundAmount": decimal_str(self.refund_amount),
            "currency": self.currency,
            "restoredCost": decimal_str(self.restored_cost),
            "restoredLayerIds": list(self.restored_layer_ids or []),
        }


class MasterLedgerEvent(db.Model):
    """Append-only audit trail for engine events."""
    __tablename__ = "master_ledger_events"
    __table_args__ = (
        db.Index("ix_master_ledger_store_occurred", "store_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # What happened
    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g., inventory.received, inventory.ledger_shortfall
    event_category = db.Column(db.String(32), nullable=False, index=True)  # inventory, sales, returns, reconciliation

    # What it refers to (generic pointer)
    entity_type = db.Column(db.String(64), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    actor_user_id = db.Column(db.Integer, nullable=True, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=True, index=True)

    # Business vs system time
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    # Optional structured metadata (keep small; do not denormalize domain state)
    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "storeId": self.store_id,
            "eventType": self.event_type,
            "eventCategory": self.event_category,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "actorUserId": self.actor_user_id,
            "productId": self.product_id,
            "saleId": self.sale_id,
            "returnId": self.return_id,
            "occurredAt": to_utc_z(self.occurred_at),
            "note": self.note,
            "payload": self.payload,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-store document sequences.

    WHY: Prevent race conditions when generating document numbers
    (sales, returns).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("store_id", "document_type", name="uq_doc_sequences_store_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
