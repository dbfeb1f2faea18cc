# Overview: Pytest coverage for sale settlement (FIFO COGS, shortfall, idempotency).

from decimal import Decimal

import pytest

from stockledger.errors import NotFoundError, ValidationError
from stockledger.models import MasterLedgerEvent, Sale
from stockledger.services import cost_layer_service, inventory_service, sales_service


def _sell(store, items, **kwargs):
    return sales_service.settle_sale(store_id=store.id, items=items, **kwargs)


class TestSettleSale:
    def test_single_layer_sale(self, db_session, store, product, receive):
        _, layer = receive(store, product, "20", "4")

        settlement = _sell(store, [{"productId": product.id, "quantity": 2, "unitPrice": "10"}])

        line = settlement.lines[0]
        assert [(a.layer_id, a.quantity, a.unit_cost) for a in line.consumption.allocations] == [
            (layer.id, Decimal("2"), Decimal("4")),
        ]
        assert line.line.cogs == Decimal("8")
        assert line.line.line_total == Decimal("20")
        assert settlement.sale.subtotal == Decimal("20")
        assert settlement.sale.total_cogs == Decimal("8")
        assert settlement.sale.currency == "USD"
        assert settlement.sale.document_number == "S-0001"

        record = inventory_service.get_record(store.id, product.id)
        assert record.quantity == Decimal("18")
        assert record.avg_cost == Decimal("4")
        assert record.total_cost_value == Decimal("72")

    def test_fifo_across_layers_updates_average(self, db_session, store, product, receive):
        receive(store, product, "3", "2")
        receive(store, product, "5", "6")

        settlement = _sell(store, [{"productId": product.id, "quantity": "4", "unitPrice": "9"}])

        assert settlement.lines[0].line.cogs == Decimal("12")  # 3*2 + 1*6
        record = settlement.inventory[0]
        assert record.quantity == Decimal("4")
        assert record.avg_cost == Decimal("6")

    def test_allocations_stored_on_line(self, db_session, store, product, receive):
        receive(store, product, "1", "1.5")
        receive(store, product, "1", "2.5")

        settlement = _sell(store, [{"productId": product.id, "quantity": "1.5", "unitPrice": "3"}])
        stored = settlement.lines[0].line.cost_allocations

        assert [a["quantity"] for a in stored] == ["1.000", "0.500"]
        assert sum(Decimal(a["quantity"]) for a in stored) == Decimal("1.5")

    def test_document_numbers_increment(self, db_session, store, product, receive):
        receive(store, product, "5", "1")
        first = _sell(store, [{"productId": product.id, "quantity": 1, "unitPrice": 2}])
        second = _sell(store, [{"productId": product.id, "quantity": 1, "unitPrice": 2}])

        assert first.sale.document_number == "S-0001"
        assert second.sale.document_number == "S-0002"

    def test_multiple_lines_keep_order(self, db_session, store, product, make_product, receive):
        gadget = make_product(store, "GADGET-1")
        receive(store, product, "5", "1")
        receive(store, gadget, "5", "2")

        settlement = _sell(store, [
            {"productId": gadget.id, "quantity": 1, "unitPrice": 5},
            {"productId": product.id, "quantity": 2, "unitPrice": 3},
        ])

        assert [ls.line.product_id for ls in settlement.lines] == [gadget.id, product.id]
        assert [ls.line.line_number for ls in settlement.lines] == [1, 2]
        assert settlement.sale.total_cogs == Decimal("4")

    def test_explicit_currency(self, db_session, store, product, receive):
        receive(store, product, "1", "1")
        settlement = _sell(store, [{"productId": product.id, "quantity": 1, "unitPrice": 2}], currency="cad")
        assert settlement.sale.currency == "CAD"


class TestOversell:
    def test_oversell_does_not_block(self, db_session, store, product, receive):
        receive(store, product, "2", "3")

        settlement = _sell(store, [{"productId": product.id, "quantity": 5, "unitPrice": "10"}])

        line = settlement.lines[0]
        assert line.consumption.is_shortfall
        assert line.line.shortfall_quantity == Decimal("3")
        assert line.line.cogs == Decimal("15")
        assert settlement.has_shortfall

        record = inventory_service.get_record(store.id, product.id)
        assert record.quantity == Decimal("-3")
        assert record.avg_cost == Decimal("3")

    def test_oversell_is_recorded_for_reconciliation(self, db_session, store, product, receive):
        receive(store, product, "1", "3")
        settlement = _sell(store, [{"productId": product.id, "quantity": 2, "unitPrice": "10"}])

        ev = db_session.query(MasterLedgerEvent).filter_by(event_type="inventory.ledger_shortfall").one()
        assert ev.sale_id == settlement.sale.id
        assert ev.product_id == product.id
        assert ev.payload["shortfallQuantity"] == "1.000"
        assert ev.payload["unitCost"] == "3.0000"

    def test_never_received_product(self, db_session, store, product):
        settlement = _sell(store, [{"productId": product.id, "quantity": 1, "unitPrice": "10"}])

        assert settlement.lines[0].line.cogs == Decimal("0")
        assert settlement.lines[0].consumption.shortfall_quantity == Decimal("1")


class TestValidation:
    @pytest.mark.parametrize("item", [
        {"productId": 1, "quantity": 0, "unitPrice": 1},
        {"productId": 1, "quantity": -2, "unitPrice": 1},
        {"productId": 1, "quantity": 1, "unitPrice": -1},
        {"productId": "1", "quantity": 1, "unitPrice": 1},
        {"productId": 1, "quantity": 1},
    ])
    def test_rejects_bad_items(self, db_session, store, product, receive, item):
        receive(store, product, "5", "1")
        item = dict(item, productId=product.id) if isinstance(item["productId"], int) else item

        with pytest.raises(ValidationError):
            _sell(store, [item])

        assert db_session.query(Sale).count() == 0
        assert inventory_service.get_record(store.id, product.id).quantity == Decimal("5")

    def test_empty_sale(self, db_session, store):
        with pytest.raises(ValidationError):
            _sell(store, [])

    def test_unknown_store(self, db_session, product):
        with pytest.raises(NotFoundError):
            sales_service.settle_sale(store_id=9999, items=[{"productId": product.id, "quantity": 1, "unitPrice": 1}])

    def test_bad_currency(self, db_session, store, product, receive):
        receive(store, product, "1", "1")
        with pytest.raises(ValidationError):
            _sell(store, [{"productId": product.id, "quantity": 1, "unitPrice": 1}], currency="dollars")

    def test_inactive_product_rejects_whole_sale(self, db_session, store, product, make_product, receive):
        receive(store, product, "5", "1")
        retired = make_product(store, "OLD-1", is_active=False)

        with pytest.raises(ValidationError):
            _sell(store, [
                {"productId": product.id, "quantity": 1, "unitPrice": 1},
                {"productId": retired.id, "quantity": 1, "unitPrice": 1},
            ])

        layers = cost_layer_service.list_layers(store.id, product.id)
        assert layers[0].quantity_remaining == Decimal("5")


class TestIdempotency:
    def test_replay_returns_same_sale(self, db_session, store, product, receive):
        receive(store, product, "5", "1")
        items = [{"productId": product.id, "quantity": 2, "unitPrice": 3}]

        first = _sell(store, items, idempotency_key="abc-123")
        again = _sell(store, items, idempotency_key="abc-123")

        assert again.replayed
        assert again.sale.id == first.sale.id
        assert db_session.query(Sale).count() == 1
        assert inventory_service.get_record(store.id, product.id).quantity == Decimal("3")
        assert again.lines[0].consumption.quantity_taken == Decimal("2")

    def test_key_from_other_store_rejected(self, db_session, store, other_store, product, receive):
        receive(store, product, "5", "1")
        _sell(store, [{"productId": product.id, "quantity": 1, "unitPrice": 3}], idempotency_key="k1")

        with pytest.raises(ValidationError):
            sales_service.settle_sale(store_id=other_store.id, items=[{"productId": product.id}], idempotency_key="k1")
