# Overview: Reconciliation of inventory aggregates with cost layers, and the legacy layer backfill.

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import BackfillError, LedgerError
from ..extensions import db
from ..models import CostLayer, InventoryRecord
from ..money import COST_SCALE, MONEY_SCALE, ZERO, decimal_str, quantize_cost, weighted_average_cost
from . import cost_layer_service
from .inventory_service import recompute_aggregates
from .ledger_service import EVENT_SHORTFALL, list_events
"""
Backfill Invariants (authoritative)

- Only rows with quantity > 0 and no cost layers at all qualify. A row with
  any layer (even exhausted) is already on the ledger and is skipped, which
  makes re-runs harmless.
- Unit cost is avg_cost if positive, else total_cost_value / quantity if both
  are positive. Anything else is skipped: a zero-cost layer is never inserted.
- The synthetic layer takes the row's created_at so it sorts before every
  layer tracked after it.
- One transaction for the whole batch; any failure leaves no layer behind.

Run offline. Not safe alongside live sales on the same rows.
"""


@dataclass
class BackfillReport:
    inspected: int = 0
    created: int = 0
    skipped: int = 0
    dry_run: bool = False
    layers: list[CostLayer] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "inspected": self.inspected,
            "created": self.created,
            "skipped": self.skipped,
            "dryRun": self.dry_run,
        }


def derive_unit_cost(record: InventoryRecord) -> Decimal | None:
    """Legacy unit cost for a row, or None when none can be derived."""
    quantity = Decimal(record.quantity or 0)
    avg_cost = Decimal(record.avg_cost or 0)
    total_value = Decimal(record.total_cost_value or 0)

    if avg_cost > 0:
        unit_cost = avg_cost
    elif total_value > 0 and quantity > 0:
        unit_cost = total_value / quantity
    else:
        return None

    unit_cost = quantize_cost(unit_cost)
    # Rounds to zero at ledger precision
    if unit_cost <= 0:
        return None
    return unit_cost


def backfill_cost_layers(*, dry_run: bool = False) -> BackfillReport:
    """
    Create one backfill_legacy layer per qualifying legacy inventory row.

    Raises:
        BackfillError: the batch was rolled back; carries the counts reached
    """
    report = BackfillReport(dry_run=dry_run)
    logger = current_app.logger

    try:
        records = (
            db.session.query(InventoryRecord)
            .filter(InventoryRecord.quantity > 0)
            .order_by(InventoryRecord.id.asc())
            .all()
        )
        for record in records:
            report.inspected += 1

            if cost_layer_service.has_layers(record.store_id, record.product_id):
                report.skipped += 1
                continue

            unit_cost = derive_unit_cost(record)
            if unit_cost is None:
                logger.warning(
                    "Backfill skipped store_id=%s product_id=%s: no positive cost basis",
                    record.store_id, record.product_id,
                )
                report.skipped += 1
                continue

            layer = cost_layer_service.create_layer(
                record.store_id,
                record.product_id,
                record.quantity,
                unit_cost,
                cost_layer_service.SOURCE_BACKFILL_LEGACY,
                "Backfilled from legacy inventory aggregates",
                reference_id=f"inventory:{record.id}",
                created_at=record.created_at,
            )
            recompute_aggregates(record)
            logger.info(
                "Backfill layer store_id=%s product_id=%s quantity=%s unit_cost=%s",
                record.store_id, record.product_id, layer.quantity_remaining, unit_cost,
            )
            report.layers.append(layer)
            report.created += 1

        db.session.flush()
    except (SQLAlchemyError, LedgerError) as exc:
        db.session.rollback()
        logger.error(
            "Backfill aborted after inspected=%s created=%s skipped=%s: %s",
            report.inspected, report.created, report.skipped, exc,
        )
        raise BackfillError(
            f"Backfill aborted: {exc}",
            inspected=report.inspected,
            created=report.created,
            skipped=report.skipped,
        ) from exc

    if dry_run:
        db.session.rollback()
    else:
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise BackfillError(
                f"Backfill commit failed: {exc}",
                inspected=report.inspected,
                created=report.created,
                skipped=report.skipped,
            ) from exc

    logger.info(
        "Backfill %s inspected=%s created=%s skipped=%s",
        "dry run" if dry_run else "committed",
        report.inspected, report.created, report.skipped,
    )
    return report


def find_discrepancies(*, store_id: int | None = None) -> list[dict]:
    """
    Inventory rows whose stored aggregates disagree with their cost layers.

    Checks quantity against the sum of remaining layer quantities, avg_cost
    against the layers' weighted average (when any remain) and
    total_cost_value against max(quantity, 0) * avg_cost.
    """
    q = db.session.query(InventoryRecord)
    if store_id is not None:
        q = q.filter(InventoryRecord.store_id == store_id)

    found = []
    for record in q.order_by(InventoryRecord.store_id.asc(), InventoryRecord.product_id.asc()).all():
        layers = cost_layer_service.list_layers(record.store_id, record.product_id, include_exhausted=False)
        layer_qty = sum((layer.quantity_remaining for layer in layers), ZERO)
        layer_avg = weighted_average_cost((layer.quantity_remaining, layer.unit_cost) for layer in layers)

        quantity = Decimal(record.quantity)
        avg_cost = Decimal(record.avg_cost)
        issues = []
        if quantity != layer_qty:
            issues.append("quantity")
        if layer_avg is not None and abs(avg_cost - layer_avg) > COST_SCALE:
            issues.append("avg_cost")
        expected_value = max(quantity, ZERO) * avg_cost
        if abs(Decimal(record.total_cost_value) - expected_value) > MONEY_SCALE:
            issues.append("total_cost_value")

        if issues:
            found.append({
                "storeId": record.store_id,
                "productId": record.product_id,
                "issues": issues,
                "quantity": decimal_str(quantity),
                "layerQuantity": decimal_str(layer_qty),
                "avgCost": decimal_str(avg_cost),
                "layerAvgCost": decimal_str(layer_avg),
                "totalCostValue": decimal_str(Decimal(record.total_cost_value)),
            })
    return found


def list_shortfalls(*, store_id: int | None = None) -> list[dict]:
    """Recorded LEDGER_SHORTFALL events, oldest first."""
    return [ev.to_dict() for ev in list_events(event_type=EVENT_SHORTFALL, store_id=store_id)]
