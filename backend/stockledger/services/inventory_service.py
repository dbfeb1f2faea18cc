# Overview: Inventory aggregates per (store, product) and stock receipt.

# backend/stockledger/services/inventory_service.py

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import CostLayer, InventoryRecord, Product, Store
from ..money import ZERO, decimal_str, quantize_cost, quantize_quantity, weighted_average_cost
from ..time_utils import utcnow
from . import cost_layer_service
from .concurrency import finish, lock_for_update, run_with_retry
from .ledger_service import append_ledger_event
"""
Inventory Aggregate Invariants (authoritative)

- quantity == SUM(CostLayer.quantity_remaining) for the pair at any
  quiescent point. Pre-ledger rows may violate this until backfilled.
- avg_cost is the weighted average unit cost of the remaining layers:
      SUM(remaining * unit_cost) / SUM(remaining)   (4 places, half-up)
  and is HELD at its previous value when no layer remains.
- total_cost_value = max(quantity, 0) * avg_cost.
- recompute_aggregates() is the only writer of avg_cost / total_cost_value
  and runs in the same transaction as the layer mutation.
"""


def _ensure_product_in_store(store_id: int, product_id: int, *, require_active: bool = False) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ValidationError("product not found", details={"productId": product_id})
    if product.store_id != store_id:
        raise ValidationError(
            "product does not belong to store",
            details={"productId": product_id, "storeId": store_id},
        )
    if require_active and not product.is_active:
        raise ValidationError("product is inactive", details={"productId": product_id})
    return product


def _ensure_store(store_id: int) -> Store:
    store = db.session.get(Store, store_id)
    if store is None:
        raise NotFoundError("store not found", details={"storeId": store_id})
    return store


def get_record(store_id: int, product_id: int, *, lock: bool = False) -> InventoryRecord | None:
    q = db.session.query(InventoryRecord).filter_by(store_id=store_id, product_id=product_id)
    if lock:
        q = lock_for_update(q)
    return q.first()


def get_or_create_record(store_id: int, product_id: int, *, lock: bool = False) -> InventoryRecord:
    """
    Fetch the (store, product) row, creating an empty one on first use.

    With lock=True this is the serialization point for every ledger
    mutation on the pair.
    """
    record = get_record(store_id, product_id, lock=lock)
    if record is None:
        record = InventoryRecord(
            store_id=store_id,
            product_id=product_id,
            quantity=ZERO,
            avg_cost=ZERO,
            total_cost_value=ZERO,
        )
        db.session.add(record)
        db.session.flush()
    return record


def recompute_aggregates(record: InventoryRecord) -> InventoryRecord:
    """Refresh avg_cost / total_cost_value from the record's remaining layers."""
    db.session.flush()
    layers = cost_layer_service.list_layers(record.store_id, record.product_id, include_exhausted=False)
    avg = weighted_average_cost((layer.quantity_remaining, layer.unit_cost) for layer in layers)
    if avg is not None:
        record.avg_cost = avg

    quantity = Decimal(record.quantity)
    record.total_cost_value = quantize_cost(max(quantity, ZERO) * Decimal(record.avg_cost))
    record.last_cost_update = utcnow()
    return record


def apply_quantity_delta(record: InventoryRecord, delta: Decimal) -> InventoryRecord:
    record.quantity = quantize_quantity(Decimal(record.quantity) + delta)
    return recompute_aggregates(record)


def receive_stock(
    *,
    store_id: int,
    product_id: int,
    quantity,
    unit_cost,
    notes: str | None = None,
    reference_id: str | None = None,
    received_at: datetime | None = None,
    user_id: int | None = None,
    commit: bool = True,
) -> tuple[InventoryRecord, CostLayer]:
    """
    Receive purchased stock: new purchase layer, quantity up, aggregates refreshed.

    received_at backdates the layer (UTC-naive); it sets the layer's FIFO position.
    """
    def _op():
        _ensure_store(store_id)
        _ensure_product_in_store(store_id, product_id, require_active=True)

        record = get_or_create_record(store_id, product_id, lock=True)
        layer = cost_layer_service.create_layer(
            store_id,
            product_id,
            quantity,
            unit_cost,
            cost_layer_service.SOURCE_PURCHASE,
            notes,
            reference_id=reference_id,
            created_at=received_at,
        )
        apply_quantity_delta(record, layer.quantity_received)

        append_ledger_event(
            store_id=store_id,
            event_type="inventory.received",
            event_category="inventory",
            entity_type="cost_layer",
            entity_id=layer.id,
            actor_user_id=user_id,
            product_id=product_id,
            note=notes,
            payload={
                "quantity": decimal_str(layer.quantity_received),
                "unitCost": decimal_str(layer.unit_cost),
            },
        )

        finish(commit)
        return record, layer

    return run_with_retry(_op, retry=commit)


def get_inventory_summary(*, store_id: int, product_id: int) -> dict:
    """
    Inventory read contract: the stored aggregates only, no layer reads.

    Raises:
        NotFoundError: no such product in the store
    """
    product = db.session.get(Product, product_id)
    if product is None or product.store_id != store_id:
        raise NotFoundError(
            "product not found in store",
            details={"storeId": store_id, "productId": product_id},
        )
    record = get_record(store_id, product_id)
    if record is None:
        return {
            "storeId": store_id,
            "productId": product_id,
            "quantity": decimal_str(ZERO),
            "avgCost": decimal_str(ZERO),
            "totalCostValue": decimal_str(ZERO),
            "lastCostUpdate": None,
        }
    return record.to_dict()
