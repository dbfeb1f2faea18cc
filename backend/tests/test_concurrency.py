# Overview: Pytest coverage for the ledger transaction retry wrapper.

from unittest import mock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError
from sqlalchemy.orm.exc import StaleDataError

from stockledger.errors import PersistenceFailure, ValidationError
from stockledger.models import CostLayer, InventoryRecord, Sale, SaleLine, Store
from stockledger.services import sales_service
from stockledger.services.concurrency import run_with_retry


def _flaky(errors, result="done"):
    calls = []

    def func():
        calls.append(1)
        if len(calls) <= len(errors):
            raise errors[len(calls) - 1]
        return result

    return func, calls


class TestRunWithRetry:
    def test_retries_conflicts_then_succeeds(self, db_session):
        func, calls = _flaky([
            OperationalError("UPDATE", {}, Exception("database is locked")),
            StaleDataError("version mismatch"),
        ])

        assert run_with_retry(func, attempts=3, backoff_base=0) == "done"
        assert len(calls) == 3

    def test_exhausted_retries_raise_persistence_failure(self, db_session):
        func, calls = _flaky([IntegrityError("INSERT", {}, Exception("dup"))] * 2)

        with pytest.raises(PersistenceFailure) as excinfo:
            run_with_retry(func, attempts=2, backoff_base=0)

        assert len(calls) == 2
        assert excinfo.value.details == {"attempts": 2}
        assert excinfo.value.to_dict()["retryable"] is True

    def test_other_store_errors_are_not_retried(self, db_session):
        func, calls = _flaky([ProgrammingError("SELECT", {}, Exception("no such table"))])

        with pytest.raises(PersistenceFailure):
            run_with_retry(func, attempts=3, backoff_base=0)
        assert len(calls) == 1

    def test_validation_error_rolls_back_and_propagates(self, db_session):
        def func():
            db_session.add(Store(name="Pending", code="TMP"))
            db_session.flush()
            raise ValidationError("bad input")

        with pytest.raises(ValidationError):
            run_with_retry(func, attempts=3, backoff_base=0)

        assert db_session.query(Store).filter_by(code="TMP").count() == 0


class TestComposedTransactions:
    def test_conflict_under_caller_transaction_is_not_retried(self, db_session, store, product, receive):
        receive(store, product, "5", "2")
        db_session.add(Store(name="Caller", code="CALLER"))
        db_session.flush()

        with mock.patch.object(
            sales_service, "consume_fifo", side_effect=StaleDataError("version mismatch")
        ) as consume:
            with pytest.raises(PersistenceFailure):
                sales_service.settle_sale(
                    store_id=store.id,
                    items=[{"productId": product.id, "quantity": 1, "unitPrice": 3}],
                    commit=False,
                )

        assert consume.call_count == 1
        assert db_session.query(Sale).count() == 0

    def test_caller_transaction_survives_successful_settle(self, db_session, store, product, receive):
        receive(store, product, "5", "2")
        db_session.add(Store(name="Caller", code="CALLER"))
        db_session.flush()

        sales_service.settle_sale(
            store_id=store.id,
            items=[{"productId": product.id, "quantity": 1, "unitPrice": 3}],
            commit=False,
        )
        db_session.commit()

        assert db_session.query(Store).filter_by(code="CALLER").count() == 1
        assert db_session.query(Sale).count() == 1


class TestFailedSettlementLeavesLedgerUntouched:
    def test_failure_after_layers_consumed(self, db_session, store, product, make_product, receive):
        gadget = make_product(store, "GADGET-1")
        receive(store, product, "3", "2")
        receive(store, product, "3", "5")
        receive(store, gadget, "4", "7")

        def layer_state():
            return sorted(
                (layer.id, layer.quantity_remaining) for layer in db_session.query(CostLayer).all()
            )

        layers_before = layer_state()
        quantities_before = {
            r.product_id: r.quantity for r in db_session.query(InventoryRecord).all()
        }

        with mock.patch.object(
            sales_service, "append_ledger_event",
            side_effect=ProgrammingError("INSERT", {}, Exception("no such table")),
        ):
            with pytest.raises(PersistenceFailure):
                sales_service.settle_sale(store_id=store.id, items=[
                    {"productId": product.id, "quantity": 4, "unitPrice": 9},
                    {"productId": gadget.id, "quantity": 2, "unitPrice": 12},
                ])

        assert layer_state() == layers_before
        assert {
            r.product_id: r.quantity for r in db_session.query(InventoryRecord).all()
        } == quantities_before
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleLine).count() == 0
