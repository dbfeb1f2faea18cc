from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import decimal_str
from ..time_utils import to_utc_z, utcnow


COST_LAYER_SOURCES = ("purchase", "return_restock", "backfill_legacy", "adjustment")


class Product(db.Model):
    """
    Product master data (store-scoped).

    Product CRUD lives outside the engine; the engine only needs the row to
    exist in the store it is being sold from.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("store_id", "sku", name="uq_products_store_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} store_id={self.store_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "storeId": self.store_id,
            "sku": self.sku,
            "name": self.name,
            "isActive": self.is_active,
        }


class InventoryRecord(db.Model):
    """
    Current stock snapshot for one (store, product) pair.

    INVARIANT (at any quiescent point, post-backfill):
        quantity == SUM(CostLayer.quantity_remaining) for the same pair

    avg_cost and total_cost_value are a materialized cache of the layers.
    They are only written by inventory_service.recompute_aggregates(), inside
    the same transaction as the layer mutation that made them stale.

    avg_cost is held at its last value when the layers run dry: it then
    means "expected replenishment cost", not a statistic of empty stock.

    version_id gives compare-and-swap protection on top of the row lock.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("store_id", "product_id", name="uq_inventory_store_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # May go negative after an oversell; Reconciliation reports it
    quantity = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0"))
    avg_cost = db.Column(db.Numeric(12, 4), nullable=False, default=Decimal("0"))
    total_cost_value = db.Column(db.Numeric(16, 4), nullable=False, default=Decimal("0"))
    last_cost_update = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store")
    product = db.relationship("Product", backref=db.backref("inventory_records", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord store_id={self.store_id} product_id={self.product_id} "
            f"quantity={self.quantity} avg_cost={self.avg_cost}>"
        )

    def to_dict(self) -> dict:
        return {
            "storeId": self.store_id,
            "productId": self.product_id,
            "quantity": decimal_str(self.quantity),
            "avgCost": decimal_str(self.avg_cost),
            "totalCostValue": decimal_str(self.total_cost_value),
            "lastCostUpdate": to_utc_z(self.last_cost_update),
        }


class CostLayer(db.Model):
    """
    One acquisition batch of stock at a known unit cost.

    APPEND-ONLY: rows are created on receipt, return-restock or backfill and
    are never deleted. The only column that ever changes is
    quantity_remaining, and it only decreases (FIFO consumption).
    A layer at zero is exhausted and kept for audit.

    Consumption order is (created_at, id) ascending.
    """
    __tablename__ = "inventory_cost_layers"
    __table_args__ = (
        db.CheckConstraint("quantity_remaining >= 0", name="ck_cost_layers_qty_nonneg"),
        db.CheckConstraint("unit_cost >= 0", name="ck_cost_layers_cost_nonneg"),
        db.Index("ix_cost_layers_store_product_created", "store_id", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity_remaining = db.Column(db.Numeric(14, 3), nullable=False)
    # Quantity the layer was created with; audit only
    quantity_received = db.Column(db.Numeric(14, 3), nullable=False)
    unit_cost = db.Column(db.Numeric(12, 4), nullable=False)

    # purchase, return_restock, backfill_legacy, adjustment
    source = db.Column(db.String(64), nullable=False, index=True)
    # Originating document (return id for restocks), free-form
    reference_id = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<CostLayer id={self.id} store_id={self.store_id} product_id={self.product_id} "
            f"remaining={self.quantity_remaining} unit_cost={self.unit_cost} source={self.source}>"
        )

    @property
    def is_exhausted(self) -> bool:
        return self.quantity_remaining <= 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "storeId": self.store_id,
            "productId": self.product_id,
            "quantityRemaining": decimal_str(self.quantity_remaining),
            "quantityReceived": decimal_str(self.quantity_received),
            "unitCost": decimal_str(self.unit_cost),
            "source": self.source,
            "referenceId": self.reference_id,
            "notes": self.notes,
            "createdAt": to_utc_z(self.created_at),
        }
