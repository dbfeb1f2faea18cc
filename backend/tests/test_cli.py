# Overview: Pytest coverage for the ledger CLI commands.

from datetime import timedelta
from decimal import Decimal

from stockledger.models import CostLayer, InventoryRecord
from stockledger.services import sales_service
from stockledger.time_utils import utcnow


def _legacy_row(db_session, store, product, quantity="5", avg_cost="2"):
    db_session.add(InventoryRecord(
        store_id=store.id,
        product_id=product.id,
        quantity=Decimal(quantity),
        avg_cost=Decimal(avg_cost),
        total_cost_value=Decimal(quantity) * Decimal(avg_cost),
        created_at=utcnow() - timedelta(days=10),
    ))
    db_session.commit()


def test_backfill_command(app, db_session, store, product):
    _legacy_row(db_session, store, product)
    runner = app.test_cli_runner()

    result = runner.invoke(args=['ledger', 'backfill'])

    assert result.exit_code == 0
    assert 'inspected=1 created=1 skipped=0' in result.output
    assert db_session.query(CostLayer).count() == 1


def test_backfill_dry_run(app, db_session, store, product):
    _legacy_row(db_session, store, product)
    runner = app.test_cli_runner()

    result = runner.invoke(args=['ledger', 'backfill', '--dry-run'])

    assert result.exit_code == 0
    assert 'DRY RUN' in result.output
    assert db_session.query(CostLayer).count() == 0


def test_reconcile_exit_codes(app, db_session, store, product):
    _legacy_row(db_session, store, product)
    runner = app.test_cli_runner()

    result = runner.invoke(args=['ledger', 'reconcile', '--store-id', str(store.id)])
    assert result.exit_code == 1
    assert 'issues=quantity' in result.output

    runner.invoke(args=['ledger', 'backfill'])
    result = runner.invoke(args=['ledger', 'reconcile'])
    assert result.exit_code == 0
    assert 'No discrepancies' in result.output


def test_shortfalls_command(app, db_session, store, product, receive):
    runner = app.test_cli_runner()
    assert 'No shortfalls recorded' in runner.invoke(args=['ledger', 'shortfalls']).output

    receive(store, product, "1", "2")
    sales_service.settle_sale(store_id=store.id, items=[{"productId": product.id, "quantity": 2, "unitPrice": 5}])

    result = runner.invoke(args=['ledger', 'shortfalls', '--store-id', str(store.id)])
    assert result.exit_code == 0
    assert 'shortfall=1.000' in result.output
