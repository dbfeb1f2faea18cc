"""
Sale Settlement Service

WHY: Every sale line must carry an accurate cost of goods sold. COGS comes
from consuming cost layers FIFO, and the inventory row is decremented in the
same transaction as the sale document so the ledger and the sale can never
disagree.

DESIGN PRINCIPLES:
- One transaction: sale, lines, layer consumption, aggregate refresh, audit.
- Checkout never blocks on ledger gaps. An oversell consumes what the layers
  hold and attributes the rest at the last known unit cost (LEDGER_SHORTFALL),
  flagged on the line and in the audit trail for Reconciliation.
- Each line keeps its SaleLineConsumption (cost_allocations) so returns can
  restore the original cost basis.
- Idempotency-Key replays return the settled sale without touching the ledger.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app

from ..errors import ValidationError
from ..extensions import db
from ..models import InventoryRecord, Sale, SaleLine
from ..money import ZERO, decimal_str, quantize_cost, quantize_money, quantize_quantity
from .concurrency import finish, run_with_retry
from .cost_layer_service import FifoConsumption, LayerAllocation, consume_fifo
from .document_service import next_document_number
from .inventory_service import (
    _ensure_product_in_store,
    _ensure_store,
    apply_quantity_delta,
    get_or_create_record,
    get_record,
)
from .ledger_service import EVENT_SHORTFALL, append_ledger_event


CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


class SaleError(ValidationError):
    """Raised for sale input errors."""
    pass


@dataclass(frozen=True)
class SaleItem:
    product_id: int
    quantity: Decimal
    unit_price: Decimal

    @classmethod
    def from_mapping(cls, data) -> "SaleItem":
        if isinstance(data, SaleItem):
            return data
        if not isinstance(data, dict):
            raise SaleError("each sale item must be an object")

        product_id = data.get("product_id", data.get("productId"))
        if not isinstance(product_id, int) or isinstance(product_id, bool):
            raise SaleError("productId must be an integer", details={"item": data})

        quantity = quantize_quantity(data.get("quantity"))
        if quantity <= 0:
            raise SaleError("quantity must be positive", details={"productId": product_id})

        unit_price = quantize_money(data.get("unit_price", data.get("unitPrice")))
        if unit_price < 0:
            raise SaleError("unitPrice cannot be negative", details={"productId": product_id})

        return cls(product_id=product_id, quantity=quantity, unit_price=unit_price)


@dataclass
class LineSettlement:
    line: SaleLine
    consumption: FifoConsumption

    def to_dict(self) -> dict:
        data = self.line.to_dict()
        data["shortfall"] = self.consumption.is_shortfall
        return data


@dataclass
class SaleSettlement:
    sale: Sale
    lines: list[LineSettlement] = field(default_factory=list)
    inventory: list[InventoryRecord] = field(default_factory=list)
    replayed: bool = False

    @property
    def has_shortfall(self) -> bool:
        return any(ls.consumption.is_shortfall for ls in self.lines)

    def to_dict(self) -> dict:
        return {
            "ok": True,
            "sale": self.sale.to_dict(),
            "lines": [ls.to_dict() for ls in self.lines],
            "inventory": [record.to_dict() for record in self.inventory],
            "replayed": self.replayed,
        }


def _resolve_currency(store, currency: str | None) -> str:
    resolved = (currency or store.currency or current_app.config.get("DEFAULT_CURRENCY", "USD"))
    resolved = resolved.strip().upper()
    if not CURRENCY_RE.match(resolved):
        raise SaleError("currency must be a 3-letter ISO code", details={"currency": currency})
    return resolved


def _consumption_from_line(line: SaleLine) -> FifoConsumption:
    """Rebuild a line's SaleLineConsumption from its stored allocations."""
    allocations = [LayerAllocation.from_dict(a) for a in (line.cost_allocations or [])]
    shortfall = [a for a in allocations if a.is_shortfall]
    return FifoConsumption(
        store_id=line.sale.store_id,
        product_id=line.product_id,
        quantity_requested=line.quantity,
        allocations=allocations,
        shortfall_quantity=line.shortfall_quantity,
        shortfall_unit_cost=shortfall[-1].unit_cost if shortfall else None,
    )


def _inventory_for(sale: Sale) -> list[InventoryRecord]:
    records = []
    seen = set()
    for line in sale.lines:
        if line.product_id in seen:
            continue
        seen.add(line.product_id)
        record = get_record(sale.store_id, line.product_id)
        if record is not None:
            records.append(record)
    return records


def _replay(sale: Sale) -> SaleSettlement:
    return SaleSettlement(
        sale=sale,
        lines=[LineSettlement(line=line, consumption=_consumption_from_line(line)) for line in sale.lines],
        inventory=_inventory_for(sale),
        replayed=True,
    )


def _settle_line(sale: Sale, line_number: int, item: SaleItem, user_id: int | None) -> LineSettlement:
    record = get_or_create_record(sale.store_id, item.product_id, lock=True)

    consumption = consume_fifo(sale.store_id, item.product_id, item.quantity)

    line = SaleLine(
        sale_id=sale.id,
        line_number=line_number,
        product_id=item.product_id,
        quantity=item.quantity,
        unit_price=item.unit_price,
        line_total=quantize_money(item.quantity * item.unit_price),
        cogs=consumption.total_cost,
        cost_allocations=[a.to_dict() for a in consumption.allocations],
        shortfall_quantity=consumption.shortfall_quantity,
    )
    db.session.add(line)
    db.session.flush()

    apply_quantity_delta(record, -item.quantity)

    if consumption.is_shortfall:
        append_ledger_event(
            store_id=sale.store_id,
            event_type=EVENT_SHORTFALL,
            event_category="inventory",
            entity_type="sale_line",
            entity_id=line.id,
            actor_user_id=user_id,
            product_id=item.product_id,
            sale_id=sale.id,
            note=f"Oversold {decimal_str(consumption.shortfall_quantity)} on sale {sale.document_number}",
            payload={
                "shortfallQuantity": decimal_str(consumption.shortfall_quantity),
                "unitCost": decimal_str(consumption.shortfall_unit_cost),
                "quantityRequested": decimal_str(item.quantity),
            },
        )

    return LineSettlement(line=line, consumption=consumption)


def settle_sale(
    *,
    store_id: int,
    items: list,
    currency: str | None = None,
    idempotency_key: str | None = None,
    user_id: int | None = None,
    commit: bool = True,
) -> SaleSettlement:
    """
    Create and settle a sale: consume cost layers per line, decrement stock.

    Items are SaleItem instances or mappings with productId/quantity/unitPrice
    (snake_case accepted). Lines keep the caller's order.

    Raises:
        SaleError: invalid input (nothing is written)
        NotFoundError: unknown store
        PersistenceFailure: data store aborted the transaction
    """
    def _op():
        if idempotency_key:
            existing = db.session.query(Sale).filter_by(idempotency_key=idempotency_key).first()
            if existing is not None:
                if existing.store_id != store_id:
                    raise SaleError("Idempotency-Key already used for another store")
                return _replay(existing)

        store = _ensure_store(store_id)
        if not items:
            raise SaleError("Cannot settle a sale with no items")

        parsed = [SaleItem.from_mapping(item) for item in items]
        for item in parsed:
            _ensure_product_in_store(store_id, item.product_id, require_active=True)
        sale_currency = _resolve_currency(store, currency)

        sale = Sale(
            store_id=store_id,
            document_number=next_document_number(store_id=store_id, document_type="SALE", prefix="S"),
            currency=sale_currency,
            idempotency_key=idempotency_key or None,
            created_by_user_id=user_id,
        )
        db.session.add(sale)
        db.session.flush()

        settlement = SaleSettlement(sale=sale)
        for i, item in enumerate(parsed):
            settlement.lines.append(_settle_line(sale, i + 1, item, user_id))

        sale.subtotal = quantize_money(sum((ls.line.line_total for ls in settlement.lines), ZERO))
        sale.total_cogs = quantize_cost(sum((ls.line.cogs for ls in settlement.lines), ZERO))

        append_ledger_event(
            store_id=store_id,
            event_type="sale.posted",
            event_category="sales",
            entity_type="sale",
            entity_id=sale.id,
            actor_user_id=user_id,
            sale_id=sale.id,
            note=f"Sale {sale.document_number} posted",
            payload={
                "subtotal": decimal_str(sale.subtotal),
                "totalCogs": decimal_str(sale.total_cogs),
                "currency": sale.currency,
            },
        )

        finish(commit)
        settlement.inventory = _inventory_for(sale)
        return settlement

    return run_with_retry(_op, retry=commit)


def get_sale(sale_id: int) -> Sale | None:
    return db.session.get(Sale, sale_id)


def get_line_consumption(line: SaleLine) -> FifoConsumption:
    """The SaleLineConsumption recorded for a line at settlement time."""
    return _consumption_from_line(line)
