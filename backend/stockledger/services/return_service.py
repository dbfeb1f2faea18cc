"""
Return Settlement Service

WHY: Returns must reverse a prior sale's stock and cost effect exactly. The
critical part is the cost basis of restocked units: we restore the ORIGINAL
per-layer unit costs recorded on the sale line, not the current average.

DESIGN PRINCIPLES:
- Returns reference the original Sale line for traceability and cost basis
- Every item is validated before anything is written (over-return, refund
  ceiling, currency); a rejected return leaves no mutation behind
- RESTOCK creates return_restock layers; DISCARD writes the cost off
- One return, one currency: the sale's
- Committed returns are final (corrections are compensating adjustments)

LIFECYCLE (one transaction):
1. DRAFT      - return document allocated
2. VALIDATED  - every item matched to a sale line and priced
3. COMMITTED  - layers restored, inventory refreshed, sale lines updated
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field, replace
from decimal import Decimal

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Return, ReturnLine, Sale, SaleLine
from ..models.documents import (
    DISCARD,
    REFUND_FULL,
    REFUND_PARTIAL,
    RESTOCK,
    RETURN_STATUS_COMMITTED,
    RETURN_STATUS_DRAFT,
    RETURN_STATUS_VALIDATED,
)
from ..models.sales import SALE_STATUS_PARTIALLY_RETURNED, SALE_STATUS_RETURNED
from ..money import ZERO, decimal_str, quantize_cost, quantize_money, quantize_quantity, split_proportionally
from ..time_utils import utcnow
from . import cost_layer_service
from .concurrency import finish, lock_for_update, run_with_retry
from .document_service import next_document_number
from .inventory_service import apply_quantity_delta, get_or_create_record, get_record
from .ledger_service import append_ledger_event
from .sales_service import get_line_consumption


class ReturnError(ValidationError):
    """Raised for return operation errors."""
    pass


# =============================================================================
# STATE MACHINE
# =============================================================================

_TRANSITIONS = {
    RETURN_STATUS_DRAFT: RETURN_STATUS_VALIDATED,
    RETURN_STATUS_VALIDATED: RETURN_STATUS_COMMITTED,
}


def _transition(return_doc: Return, target: str) -> None:
    if _TRANSITIONS.get(return_doc.status) != target:
        raise ReturnError(
            f"Illegal return transition {return_doc.status} -> {target}",
            details={"returnId": return_doc.id},
        )
    return_doc.status = target


# =============================================================================
# INPUT
# =============================================================================

@dataclass(frozen=True)
class ReturnItem:
    product_id: int
    quantity: Decimal
    restock_action: str
    refund_type: str
    refund_amount: Decimal | None = None
    currency: str | None = None
    sale_line_id: int | None = None

    @classmethod
    def from_mapping(cls, data) -> "ReturnItem":
        if isinstance(data, ReturnItem):
            return data
        if not isinstance(data, dict):
            raise ReturnError("each return item must be an object")

        def pick(snake, camel):
            return data.get(snake, data.get(camel))

        product_id = pick("product_id", "productId")
        if not isinstance(product_id, int) or isinstance(product_id, bool):
            raise ReturnError("productId must be an integer", details={"item": data})

        quantity = quantize_quantity(data.get("quantity"))
        if quantity <= 0:
            raise ReturnError("Return quantity must be positive", details={"productId": product_id})

        restock_action = str(pick("restock_action", "restockAction") or "").upper()
        if restock_action not in (RESTOCK, DISCARD):
            raise ReturnError("restockAction must be RESTOCK or DISCARD", details={"productId": product_id})

        refund_type = str(pick("refund_type", "refundType") or "").upper()
        if refund_type not in (REFUND_FULL, REFUND_PARTIAL):
            raise ReturnError("refundType must be FULL or PARTIAL", details={"productId": product_id})

        raw_amount = pick("refund_amount", "refundAmount")
        refund_amount = None
        if refund_type == REFUND_PARTIAL:
            if raw_amount is None:
                raise ReturnError("refundAmount is required for PARTIAL refunds", details={"productId": product_id})
            refund_amount = quantize_money(raw_amount)
            if refund_amount < 0:
                raise ReturnError("refundAmount cannot be negative", details={"productId": product_id})

        currency = data.get("currency")
        if currency is not None:
            currency = str(currency).strip().upper()

        sale_line_id = pick("sale_line_id", "saleLineId")
        if sale_line_id is not None and (not isinstance(sale_line_id, int) or isinstance(sale_line_id, bool)):
            raise ReturnError("saleLineId must be an integer", details={"item": data})

        return cls(
            product_id=product_id,
            quantity=quantity,
            restock_action=restock_action,
            refund_type=refund_type,
            refund_amount=refund_amount,
            currency=currency,
            sale_line_id=sale_line_id,
        )


@dataclass
class _PlannedItem:
    item: ReturnItem
    line: SaleLine
    refund_amount: Decimal
    restock: list[tuple[Decimal, Decimal]] = field(default_factory=list)  # (quantity, unit_cost)


# =============================================================================
# VALIDATION / PLANNING (no writes)
# =============================================================================

def _match_lines(sale: Sale, item: ReturnItem, pending_qty: dict) -> list[tuple[SaleLine, Decimal]]:
    """
    Sale lines (and the quantity taken from each) that absorb a return item.

    The first line of the product with enough returnable quantity takes the
    whole item. Otherwise, without a saleLineId, the item is spread over the
    product's lines in line order.
    """
    def available(line: SaleLine) -> Decimal:
        return line.returnable_quantity - pending_qty[line.id]

    if item.sale_line_id is not None:
        line = next((l for l in sale.lines if l.id == item.sale_line_id), None)
        if line is None:
            raise ReturnError(
                f"SaleLine {item.sale_line_id} does not belong to sale {sale.id}",
                details={"saleLineId": item.sale_line_id},
            )
        if line.product_id != item.product_id:
            raise ReturnError(
                "productId does not match the sale line",
                details={"saleLineId": line.id, "productId": item.product_id},
            )
        candidates = [line]
    else:
        candidates = [l for l in sale.lines if l.product_id == item.product_id]
        if not candidates:
            raise ReturnError(
                f"Product {item.product_id} was not sold on sale {sale.id}",
                details={"productId": item.product_id},
            )

    for line in candidates:
        if available(line) >= item.quantity:
            return [(line, item.quantity)]

    sold = sum((l.quantity for l in candidates), ZERO)
    returnable = sum((available(l) for l in candidates), ZERO)
    if item.sale_line_id is None and returnable >= item.quantity:
        parts = []
        left = item.quantity
        for line in candidates:
            take = min(available(line), left)
            if take > 0:
                parts.append((line, take))
                left -= take
            if left <= 0:
                break
        return parts

    raise ReturnError(
        f"Cannot return {decimal_str(item.quantity)} units of product {item.product_id}",
        details={
            "productId": item.product_id,
            "quantitySold": decimal_str(sold),
            "returnable": decimal_str(returnable),
        },
    )


def _restock_plan(store_id: int, line: SaleLine, quantity: Decimal) -> list[tuple[Decimal, Decimal]]:
    """
    Split a restocked quantity across the line's recorded allocations.

    Each part keeps the unit cost of the layer it came from. Parts whose
    recorded cost is not positive use the current avg_cost. Parts at the
    same cost are merged into one layer.
    """
    allocations = get_line_consumption(line).allocations
    record = get_record(store_id, line.product_id)
    avg_cost = quantize_cost(record.avg_cost) if record is not None else ZERO

    if allocations:
        parts = split_proportionally(quantity, [a.quantity for a in allocations])
        costs = [a.unit_cost for a in allocations]
    else:
        parts, costs = [quantity], [ZERO]

    merged: dict[Decimal, Decimal] = {}
    for part, cost in zip(parts, costs):
        if part <= 0:
            continue
        unit_cost = cost if cost > 0 else avg_cost
        if cost <= 0 and unit_cost > 0:
            current_app.logger.warning(
                "Restock cost fallback sale_line_id=%s product_id=%s avg_cost=%s",
                line.id, line.product_id, unit_cost,
            )
        if unit_cost <= 0:
            raise ReturnError(
                "No cost basis to restock this item; use DISCARD",
                details={"saleLineId": line.id, "productId": line.product_id},
            )
        merged[unit_cost] = merged.get(unit_cost, ZERO) + part

    return [(qty, cost) for cost, qty in merged.items()]


def _full_refund(line: SaleLine, quantity: Decimal, pending_qty: dict, pending_refund: dict) -> Decimal:
    """
    FULL refund for quantity units of a line.

    Returning the rest of the line refunds exactly what is left of
    line_total, so split returns add up to the line amount to the cent.
    """
    remaining = line.line_total - line.refunded_amount - pending_refund[line.id]
    if quantity >= line.returnable_quantity - pending_qty[line.id]:
        return max(remaining, ZERO)
    return max(min(quantize_money(quantity * line.unit_price), remaining), ZERO)


def _plan(sale: Sale, items: list[ReturnItem]) -> list[_PlannedItem]:
    pending_qty: dict = defaultdict(lambda: ZERO)
    pending_refund: dict = defaultdict(lambda: ZERO)
    planned = []

    for item in items:
        if item.currency is not None and item.currency != sale.currency:
            raise ReturnError(
                "Return currency must match the sale currency",
                details={"currency": item.currency, "saleCurrency": sale.currency},
            )

        parts = _match_lines(sale, item, pending_qty)
        partial_left = item.refund_amount

        for i, (line, quantity) in enumerate(parts):
            if item.refund_type == REFUND_FULL:
                refund = _full_refund(line, quantity, pending_qty, pending_refund)
            elif i == len(parts) - 1:
                refund = partial_left
            else:
                refund = quantize_money(item.refund_amount * quantity / item.quantity)
                partial_left -= refund

            if line.refunded_amount + pending_refund[line.id] + refund > line.line_total:
                raise ReturnError(
                    "Refund exceeds the original line amount",
                    details={
                        "saleLineId": line.id,
                        "lineTotal": decimal_str(line.line_total),
                        "alreadyRefunded": decimal_str(line.refunded_amount + pending_refund[line.id]),
                        "refundAmount": decimal_str(refund),
                    },
                )

            pending_qty[line.id] += quantity
            pending_refund[line.id] += refund

            part = item if len(parts) == 1 else replace(
                item, quantity=quantity, refund_amount=refund, sale_line_id=line.id
            )
            plan = _PlannedItem(item=part, line=line, refund_amount=refund)
            if item.restock_action == RESTOCK:
                plan.restock = _restock_plan(sale.store_id, line, quantity)
            planned.append(plan)

    return planned


# =============================================================================
# SETTLEMENT
# =============================================================================

def _apply(return_doc: Return, plan: _PlannedItem) -> ReturnLine:
    item, line = plan.item, plan.line

    return_line = ReturnLine(
        return_id=return_doc.id,
        sale_line_id=line.id,
        product_id=line.product_id,
        quantity=item.quantity,
        restock_action=item.restock_action,
        refund_type=item.refund_type,
        refund_amount=plan.refund_amount,
        currency=return_doc.currency,
    )

    restored_cost = ZERO
    layer_ids = []
    if plan.restock:
        record = get_or_create_record(return_doc.store_id, line.product_id, lock=True)
        for qty, unit_cost in plan.restock:
            layer = cost_layer_service.restore_layer(
                return_doc.store_id,
                line.product_id,
                qty,
                unit_cost,
                reference_id=f"return:{return_doc.id}",
                notes=f"Restock from {return_doc.document_number}",
            )
            db.session.flush()
            layer_ids.append(layer.id)
            restored_cost += qty * unit_cost
        apply_quantity_delta(record, item.quantity)

    return_line.restored_cost = quantize_cost(restored_cost)
    return_line.restored_layer_ids = layer_ids
    db.session.add(return_line)

    line.returned_quantity = line.returned_quantity + item.quantity
    line.refunded_amount = line.refunded_amount + plan.refund_amount
    return return_line


def process_return(
    *,
    sale_id: int,
    store_id: int,
    items: list,
    reason: str | None = None,
    user_id: int | None = None,
    commit: bool = True,
) -> Return:
    """
    Validate and commit a return against a prior sale.

    Items are ReturnItem instances or mappings with productId, quantity,
    restockAction, refundType, refundAmount (PARTIAL only), currency and
    optional saleLineId.

    Returns:
        The COMMITTED Return with its items

    Raises:
        ReturnError: invalid input or over-return (nothing is written)
        NotFoundError: unknown sale
        PersistenceFailure: data store aborted the transaction
    """
    def _op():
        sale = db.session.get(Sale, sale_id)
        if sale is None:
            raise NotFoundError(f"Sale {sale_id} not found", details={"saleId": sale_id})
        if sale.store_id != store_id:
            raise ReturnError("Sale does not belong to store", details={"saleId": sale_id, "storeId": store_id})
        if not items:
            raise ReturnError("Cannot process a return with no items")

        parsed = [ReturnItem.from_mapping(item) for item in items]

        # Lock the sale's lines; concurrent returns against them serialize here
        lock_for_update(db.session.query(SaleLine).filter(SaleLine.sale_id == sale.id)).all()

        planned = _plan(sale, parsed)

        return_doc = Return(
            store_id=store_id,
            document_number=next_document_number(store_id=store_id, document_type="RETURN", prefix="R"),
            sale_id=sale.id,
            status=RETURN_STATUS_DRAFT,
            currency=sale.currency,
            reason=reason,
            created_by_user_id=user_id,
        )
        db.session.add(return_doc)
        db.session.flush()

        return_doc.total_refund = quantize_money(sum((p.refund_amount for p in planned), ZERO))
        return_doc.refund_type = (
            REFUND_FULL if all(p.item.refund_type == REFUND_FULL for p in planned) else REFUND_PARTIAL
        )
        _transition(return_doc, RETURN_STATUS_VALIDATED)

        for plan in planned:
            _apply(return_doc, plan)

        fully_returned = all(l.returned_quantity >= l.quantity for l in sale.lines)
        sale.status = SALE_STATUS_RETURNED if fully_returned else SALE_STATUS_PARTIALLY_RETURNED

        _transition(return_doc, RETURN_STATUS_COMMITTED)
        return_doc.committed_at = utcnow()

        append_ledger_event(
            store_id=store_id,
            event_type="return.committed",
            event_category="returns",
            entity_type="return",
            entity_id=return_doc.id,
            actor_user_id=user_id,
            sale_id=sale.id,
            return_id=return_doc.id,
            note=f"Return {return_doc.document_number} against {sale.document_number}",
            payload={
                "totalRefund": decimal_str(return_doc.total_refund),
                "currency": return_doc.currency,
                "restocked": decimal_str(
                    sum((p.item.quantity for p in planned if p.item.restock_action == RESTOCK), ZERO)
                ),
            },
        )

        finish(commit)
        current_app.logger.info(
            "Return committed return_id=%s sale_id=%s total_refund=%s",
            return_doc.id, sale.id, return_doc.total_refund,
        )
        return return_doc

    return run_with_retry(_op, retry=commit)


# =============================================================================
# QUERIES
# =============================================================================

def get_return(return_id: int) -> Return | None:
    """Get return by ID."""
    return db.session.get(Return, return_id)


def get_sale_returns(sale_id: int) -> list[Return]:
    """Get all returns for a sale."""
    return db.session.query(Return).filter_by(
        sale_id=sale_id
    ).order_by(Return.created_at.asc(), Return.id.asc()).all()


def return_summary(return_doc: Return) -> dict:
    """Response body for a committed return."""
    return {
        "ok": True,
        "return": return_doc.to_dict(),
        "items": [line.to_dict() for line in return_doc.items],
    }
