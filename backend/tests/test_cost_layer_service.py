# Overview: Pytest coverage for cost layer creation and FIFO consumption.

from datetime import timedelta
from decimal import Decimal

import pytest

from stockledger.errors import ValidationError
from stockledger.extensions import db
from stockledger.models import CostLayer, InventoryRecord
from stockledger.services import cost_layer_service
from stockledger.time_utils import utcnow


def _layer(store, product, qty, cost, *, age_minutes=0):
    layer = cost_layer_service.create_layer(
        store.id, product.id, qty, cost, cost_layer_service.SOURCE_PURCHASE,
        created_at=utcnow() - timedelta(minutes=age_minutes),
    )
    db.session.flush()
    return layer


class TestCreateLayer:
    def test_creates_purchase_layer(self, db_session, store, product):
        layer = cost_layer_service.create_layer(store.id, product.id, "5", "2.5", "purchase", "PO-1", commit=True)

        assert layer.id is not None
        assert layer.quantity_remaining == Decimal("5.000")
        assert layer.quantity_received == Decimal("5.000")
        assert layer.unit_cost == Decimal("2.5000")
        assert layer.notes == "PO-1"

    @pytest.mark.parametrize("qty,cost", [("0", "1"), ("-1", "1"), ("1", "0"), ("1", "-2")])
    def test_rejects_non_positive(self, db_session, store, product, qty, cost):
        with pytest.raises(ValidationError):
            cost_layer_service.create_layer(store.id, product.id, qty, cost, "purchase")

    def test_rejects_unknown_source(self, db_session, store, product):
        with pytest.raises(ValidationError):
            cost_layer_service.create_layer(store.id, product.id, "1", "1", "gift")

    def test_restore_layer_source(self, db_session, store, product):
        layer = cost_layer_service.restore_layer(store.id, product.id, "1", "4")
        assert layer.source == "return_restock"


class TestConsumeFifo:
    def test_oldest_first(self, db_session, store, product):
        old = _layer(store, product, "3", "2", age_minutes=10)
        new = _layer(store, product, "5", "6", age_minutes=1)

        result = cost_layer_service.consume_fifo(store.id, product.id, "4")

        assert [(a.layer_id, a.quantity, a.unit_cost) for a in result.allocations] == [
            (old.id, Decimal("3.000"), Decimal("2.0000")),
            (new.id, Decimal("1.000"), Decimal("6.0000")),
        ]
        assert result.total_cost == Decimal("12.0000")
        assert not result.is_shortfall
        assert old.quantity_remaining == 0
        assert old.is_exhausted
        assert new.quantity_remaining == Decimal("4.000")

    def test_same_timestamp_breaks_tie_by_insertion(self, db_session, store, product):
        stamp = utcnow()
        first = cost_layer_service.create_layer(store.id, product.id, "1", "1", "purchase", created_at=stamp)
        second = cost_layer_service.create_layer(store.id, product.id, "1", "9", "purchase", created_at=stamp)
        db.session.flush()

        result = cost_layer_service.consume_fifo(store.id, product.id, "1")
        assert result.allocations[0].layer_id == first.id
        assert second.quantity_remaining == Decimal("1.000")

    def test_allocations_sum_to_requested(self, db_session, store, product):
        for i, cost in enumerate(["1.1", "2.2", "3.3"]):
            _layer(store, product, "0.7", cost, age_minutes=10 - i)

        result = cost_layer_service.consume_fifo(store.id, product.id, "1.9")
        assert sum(a.quantity for a in result.allocations) == Decimal("1.9")

    def test_shortfall_uses_last_consumed_cost(self, db_session, store, product):
        _layer(store, product, "2", "3", age_minutes=5)
        _layer(store, product, "1", "5", age_minutes=1)

        result = cost_layer_service.consume_fifo(store.id, product.id, "5")

        assert result.is_shortfall
        assert result.shortfall_quantity == Decimal("2.000")
        assert result.shortfall_unit_cost == Decimal("5.0000")
        assert result.allocations[-1].layer_id is None
        assert result.quantity_taken == Decimal("5.000")
        assert result.total_cost == Decimal("21.0000")  # 2*3 + 1*5 + 2*5

    def test_shortfall_without_layers_uses_avg_cost(self, db_session, store, product):
        db_session.add(InventoryRecord(
            store_id=store.id, product_id=product.id,
            quantity=Decimal("0"), avg_cost=Decimal("7.2500"), total_cost_value=Decimal("0"),
        ))
        db_session.flush()

        result = cost_layer_service.consume_fifo(store.id, product.id, "2")

        assert result.allocations == [cost_layer_service.LayerAllocation(None, Decimal("2.000"), Decimal("7.2500"))]
        assert result.total_cost == Decimal("14.5000")

    def test_shortfall_is_logged(self, db_session, store, product, caplog):
        with caplog.at_level("WARNING"):
            cost_layer_service.consume_fifo(store.id, product.id, "1")
        assert "LEDGER_SHORTFALL" in caplog.text

    def test_rejects_non_positive_quantity(self, db_session, store, product):
        with pytest.raises(ValidationError):
            cost_layer_service.consume_fifo(store.id, product.id, "0")


def test_exhausted_layers_are_kept(db_session, store, product):
    _layer(store, product, "1", "1")
    cost_layer_service.consume_fifo(store.id, product.id, "1")
    db.session.commit()

    assert db_session.query(CostLayer).count() == 1
    assert cost_layer_service.list_layers(store.id, product.id, include_exhausted=False) == []
    assert cost_layer_service.has_layers(store.id, product.id)


def test_layer_totals(db_session, store, product):
    _layer(store, product, "2", "3", age_minutes=2)
    _layer(store, product, "4", "1.5", age_minutes=1)

    quantity, value = cost_layer_service.layer_totals(store.id, product.id)
    assert quantity == Decimal("6")
    assert value == Decimal("12")
