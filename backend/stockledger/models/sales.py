from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import decimal_str
from ..time_utils import to_utc_z, utcnow


SALE_STATUS_POSTED = "POSTED"
SALE_STATUS_PARTIALLY_RETURNED = "PARTIALLY_RETURNED"
SALE_STATUS_RETURNED = "RETURNED"


class Sale(db.Model):
    """
    Settled sale document.

    Sales are created already settled: the sale row, its lines and the
    cost-layer consumption behind them commit in one transaction.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("store_id", "document_number", name="uq_sales_store_docnum"),
        db.UniqueConstraint("idempotency_key", name="uq_sales_idempotency_key"),
        db.Index("ix_sales_store_status_created", "store_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Human-readable document number (e.g., "S-0042")
    document_number = db.Column(db.String(64), nullable=False)

    # POSTED, PARTIALLY_RETURNED, RETURNED
    status = db.Column(db.String(24), nullable=False, default=SALE_STATUS_POSTED, index=True)
    currency = db.Column(db.String(3), nullable=False)

    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_cogs = db.Column(db.Numeric(16, 4), nullable=False, default=Decimal("0"))

    idempotency_key = db.Column(db.String(128), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    store = db.relationship("Store", backref=db.backref("sales", lazy=True))
    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        order_by="SaleLine.line_number",
        lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "storeId": self.store_id,
            "documentNumber": self.document_number,
            "status": self.status,
            "currency": self.currency,
            "subtotal": decimal_str(self.subtotal),
            "totalCogs": decimal_str(self.total_cogs),
            "createdByUserId": self.created_by_user_id,
            "createdAt": to_utc_z(self.created_at),
        }


class SaleLine(db.Model):
    """
    Individual line items on a sale.

    cost_allocations is the line's SaleLineConsumption: an ordered list of
    {"layerId", "quantity", "unitCost"} entries (decimal strings) whose
    quantities sum to the line quantity. A shortfall appears as a final
    entry with layerId null. Returns read it back to restore cost basis.
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_number", name="uq_sale_lines_sale_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False)
    line_total = db.Column(db.Numeric(14, 2), nullable=False)

    cogs = db.Column(db.Numeric(16, 4), nullable=False, default=Decimal("0"))
    cost_allocations = db.Column(db.JSON, nullable=False, default=list)
    shortfall_quantity = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0"))

    # Running totals maintained by return settlement
    returned_quantity = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0"))
    refunded_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", back_populates="lines")
    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def returnable_quantity(self) -> Decimal:
        return self.quantity - self.returned_quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "saleId": self.sale_id,
            "lineNumber": self.line_number,
            "productId": self.product_id,
            "quantity": decimal_str(self.quantity),
            "unitPrice": decimal_str(self.unit_price),
            "lineTotal": decimal_str(self.line_total),
            "cogs": decimal_str(self.cogs),
            "costAllocations": list(self.cost_allocations or []),
            "shortfallQuantity": decimal_str(self.shortfall_quantity),
            "returnedQuantity": decimal_str(self.returned_quantity),
            "refundedAmount": decimal_str(self.refunded_amount),
        }


class HeldTransaction(db.Model):
    """
    A suspended in-progress cart.

    Created on hold; consumed exactly once on resume (the row is deleted in
    the same transaction that returns it) or explicitly discarded.
    Holding a cart does not touch inventory or cost layers.
    """
    __tablename__ = "held_transactions"
    __table_args__ = (
        db.Index("ix_held_transactions_store_created", "store_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    items = db.Column(db.JSON, nullable=False, default=list)
    payment = db.Column(db.JSON, nullable=True)
    loyalty = db.Column(db.JSON, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "storeId": self.store_id,
            "items": self.items or [],
            "payment": self.payment,
            "loyalty": self.loyalty,
            "createdByUserId": self.created_by_user_id,
            "createdAt": to_utc_z(self.created_at),
        }
