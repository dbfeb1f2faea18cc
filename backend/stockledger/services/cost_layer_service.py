# Overview: Cost layer ledger: creation, FIFO consumption and return restoration.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import CostLayer, InventoryRecord, COST_LAYER_SOURCES
from ..money import ZERO, decimal_str, quantize_cost, quantize_quantity, to_decimal
from .concurrency import finish, lock_for_update
"""
Cost Layer Invariants (authoritative)

- A layer is one acquisition batch: (store, product, quantity, unit cost).
- Layers are append-only. quantity_remaining is the only mutable column and
  it only goes down, never below zero. Exhausted layers are never deleted.
- New layers need quantity > 0 and unit_cost > 0. A zero-cost layer would
  drag down every FIFO cost computed through it.
- FIFO order is (created_at, id) ascending.
- Callers must hold the (store, product) inventory row lock; layer reads
  here also take row locks.

Shortfall (LEDGER_SHORTFALL):
- When active layers cannot cover a consumption, the rest is attributed at
  the unit cost of the last layer consumed in the same call, or at the
  inventory row's avg_cost if nothing was consumed. It is flagged on the
  result and logged; it never blocks the caller.
"""


SOURCE_PURCHASE = "purchase"
SOURCE_RETURN_RESTOCK = "return_restock"
SOURCE_BACKFILL_LEGACY = "backfill_legacy"


@dataclass(frozen=True)
class LayerAllocation:
    """One (layer, quantity taken, unit cost) tuple of a SaleLineConsumption."""

    layer_id: int | None
    quantity: Decimal
    unit_cost: Decimal

    @property
    def total_cost(self) -> Decimal:
        return self.quantity * self.unit_cost

    @property
    def is_shortfall(self) -> bool:
        return self.layer_id is None

    def to_dict(self) -> dict:
        return {
            "layerId": self.layer_id,
            "quantity": decimal_str(self.quantity),
            "unitCost": decimal_str(self.unit_cost),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LayerAllocation":
        return cls(
            layer_id=data.get("layerId"),
            quantity=to_decimal(data["quantity"], field="quantity"),
            unit_cost=to_decimal(data["unitCost"], field="unitCost"),
        )


@dataclass
class FifoConsumption:
    store_id: int
    product_id: int
    quantity_requested: Decimal
    allocations: list[LayerAllocation] = field(default_factory=list)
    shortfall_quantity: Decimal = ZERO
    shortfall_unit_cost: Decimal | None = None

    @property
    def quantity_taken(self) -> Decimal:
        return sum((a.quantity for a in self.allocations), ZERO)

    @property
    def total_cost(self) -> Decimal:
        return quantize_cost(sum((a.total_cost for a in self.allocations), ZERO))

    @property
    def is_shortfall(self) -> bool:
        return self.shortfall_quantity > 0

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "quantitySold": decimal_str(self.quantity_requested),
            "allocations": [a.to_dict() for a in self.allocations],
            "totalCost": decimal_str(self.total_cost),
            "shortfallQuantity": decimal_str(self.shortfall_quantity),
            "shortfallUnitCost": decimal_str(self.shortfall_unit_cost),
        }


def create_layer(
    store_id: int,
    product_id: int,
    quantity,
    unit_cost,
    source: str,
    notes: str | None = None,
    *,
    reference_id: str | None = None,
    created_at: datetime | None = None,
    commit: bool = False,
) -> CostLayer:
    """
    Append a cost layer.

    Does not touch the inventory row; callers that change stock go through
    inventory_service so the aggregates are recomputed in the same transaction.
    """
    qty = quantize_quantity(quantity)
    cost = quantize_cost(unit_cost)
    if qty <= 0:
        raise ValidationError("cost layer quantity must be positive", details={"quantity": decimal_str(qty)})
    if cost <= 0:
        raise ValidationError("cost layer unit_cost must be positive", details={"unitCost": decimal_str(cost)})
    if source not in COST_LAYER_SOURCES:
        raise ValidationError(f"unknown cost layer source: {source}")

    layer = CostLayer(
        store_id=store_id,
        product_id=product_id,
        quantity_remaining=qty,
        quantity_received=qty,
        unit_cost=cost,
        source=source,
        reference_id=reference_id,
        notes=notes,
    )
    if created_at is not None:
        layer.created_at = created_at

    db.session.add(layer)
    finish(commit)
    return layer


def restore_layer(
    store_id: int,
    product_id: int,
    quantity,
    unit_cost,
    source: str = SOURCE_RETURN_RESTOCK,
    *,
    reference_id: str | None = None,
    notes: str | None = None,
) -> CostLayer:
    """Put returned units back into the ledger as a new layer at their original cost."""
    return create_layer(
        store_id,
        product_id,
        quantity,
        unit_cost,
        source,
        notes,
        reference_id=reference_id,
    )


def _active_layers_query(store_id: int, product_id: int):
    return (
        db.session.query(CostLayer)
        .filter(
            CostLayer.store_id == store_id,
            CostLayer.product_id == product_id,
            CostLayer.quantity_remaining > 0,
        )
        .order_by(CostLayer.created_at.asc(), CostLayer.id.asc())
    )


def consume_fifo(store_id: int, product_id: int, quantity) -> FifoConsumption:
    """
    Consume `quantity` units oldest layer first.

    Returns the ordered allocations; their quantities always sum to the
    requested quantity, shortfall included (as a final layer_id=None entry).
    """
    qty = quantize_quantity(quantity)
    if qty <= 0:
        raise ValidationError("quantity to consume must be positive")

    result = FifoConsumption(store_id=store_id, product_id=product_id, quantity_requested=qty)
    remaining = qty
    last_unit_cost: Decimal | None = None

    for layer in lock_for_update(_active_layers_query(store_id, product_id)).all():
        if remaining <= 0:
            break
        take = min(remaining, layer.quantity_remaining)
        layer.quantity_remaining = layer.quantity_remaining - take
        remaining -= take
        last_unit_cost = layer.unit_cost
        result.allocations.append(LayerAllocation(layer.id, take, layer.unit_cost))

    if remaining > 0:
        if last_unit_cost is None:
            avg_cost = (
                db.session.query(InventoryRecord.avg_cost)
                .filter_by(store_id=store_id, product_id=product_id)
                .scalar()
            )
            last_unit_cost = quantize_cost(avg_cost or ZERO)
        result.shortfall_quantity = remaining
        result.shortfall_unit_cost = last_unit_cost
        result.allocations.append(LayerAllocation(None, remaining, last_unit_cost))
        current_app.logger.warning(
            "LEDGER_SHORTFALL store_id=%s product_id=%s requested=%s shortfall=%s unit_cost=%s",
            store_id, product_id, qty, remaining, last_unit_cost,
        )

    db.session.flush()
    return result


def list_layers(store_id: int, product_id: int, *, include_exhausted: bool = True) -> list[CostLayer]:
    q = db.session.query(CostLayer).filter(
        CostLayer.store_id == store_id,
        CostLayer.product_id == product_id,
    )
    if not include_exhausted:
        q = q.filter(CostLayer.quantity_remaining > 0)
    return q.order_by(CostLayer.created_at.asc(), CostLayer.id.asc()).all()


def layer_totals(store_id: int, product_id: int) -> tuple[Decimal, Decimal]:
    """(SUM quantity_remaining, SUM quantity_remaining * unit_cost) over the pair's layers."""
    layers = list_layers(store_id, product_id, include_exhausted=False)
    quantity = sum((layer.quantity_remaining for layer in layers), ZERO)
    value = sum((layer.quantity_remaining * layer.unit_cost for layer in layers), ZERO)
    return quantity, value


def has_layers(store_id: int, product_id: int) -> bool:
    count = (
        db.session.query(func.count(CostLayer.id))
        .filter(CostLayer.store_id == store_id, CostLayer.product_id == product_id)
        .scalar()
    )
    return bool(count)
