# Overview: Pytest coverage for the JSON API (inventory, sales, returns, held carts, health).

from decimal import Decimal


def _receive(client, store, product, quantity="20", unit_cost="4"):
    return client.post('/api/inventory/receive', json={
        'storeId': store.id,
        'productId': product.id,
        'quantity': quantity,
        'unitCost': unit_cost,
    })


def _sale(client, store, product, quantity=2, price="10", headers=None):
    return client.post('/api/pos/sales', json={
        'storeId': store.id,
        'items': [{'productId': product.id, 'quantity': quantity, 'unitPrice': price}],
    }, headers=headers or {})


class TestHealth:
    def test_health(self, client, db_session):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.json['checks']['database']['status'] == 'healthy'


class TestInventoryRoutes:
    def test_receive_and_read(self, client, db_session, store, product):
        response = _receive(client, store, product)
        assert response.status_code == 201
        assert response.json['layer']['source'] == 'purchase'

        response = client.get(f'/api/inventory/{store.id}/{product.id}')
        assert response.status_code == 200
        inventory = response.json['inventory']
        assert Decimal(inventory['quantity']) == 20
        assert Decimal(inventory['avgCost']) == 4
        assert Decimal(inventory['totalCostValue']) == 80

    def test_receive_rejects_zero_cost(self, client, db_session, store, product):
        response = _receive(client, store, product, unit_cost="0")
        assert response.status_code == 400
        assert response.json['ok'] is False
        assert response.json['code'] == 'VALIDATION_ERROR'

    def test_backdated_receipt_is_consumed_first(self, client, db_session, store, product):
        _receive(client, store, product, quantity="1", unit_cost="9")
        response = client.post('/api/inventory/receive', json={
            'storeId': store.id,
            'productId': product.id,
            'quantity': '1',
            'unitCost': '2',
            'receivedAt': '2020-01-01T08:00:00Z',
        })
        assert response.status_code == 201
        assert response.json['layer']['createdAt'] == '2020-01-01T08:00:00Z'

        sale = _sale(client, store, product, quantity=1)
        assert Decimal(sale.json['lines'][0]['cogs']) == 2

    def test_receive_rejects_bad_timestamp(self, client, db_session, store, product):
        response = client.post('/api/inventory/receive', json={
            'storeId': store.id,
            'productId': product.id,
            'quantity': '1',
            'unitCost': '2',
            'receivedAt': 'last tuesday',
        })
        assert response.status_code == 400

    def test_unknown_product_is_404(self, client, db_session, store):
        response = client.get(f'/api/inventory/{store.id}/9999')
        assert response.status_code == 404
        assert response.json['code'] == 'NOT_FOUND'

    def test_receive_requires_ids(self, client, db_session):
        response = client.post('/api/inventory/receive', json={'quantity': 1, 'unitCost': 1})
        assert response.status_code == 400


class TestSaleRoutes:
    def test_create_sale(self, client, db_session, store, product):
        _receive(client, store, product)

        response = _sale(client, store, product)

        assert response.status_code == 201
        body = response.json
        assert body['ok'] is True
        assert body['sale']['documentNumber'] == 'S-0001'
        assert Decimal(body['lines'][0]['cogs']) == 8
        assert body['lines'][0]['shortfall'] is False
        assert Decimal(body['inventory'][0]['quantity']) == 18

    def test_idempotent_replay(self, client, db_session, store, product):
        _receive(client, store, product)
        headers = {'Idempotency-Key': 'checkout-42'}

        first = _sale(client, store, product, headers=headers)
        again = _sale(client, store, product, headers=headers)

        assert first.status_code == 201
        assert again.status_code == 200
        assert again.json['sale']['id'] == first.json['sale']['id']
        assert Decimal(again.json['inventory'][0]['quantity']) == 18

    def test_oversell_flags_shortfall(self, client, db_session, store, product):
        _receive(client, store, product, quantity="1")
        response = _sale(client, store, product, quantity=3)

        assert response.status_code == 201
        assert response.json['lines'][0]['shortfall'] is True

    def test_unknown_store_is_404(self, client, db_session, product):
        response = client.post('/api/pos/sales', json={
            'storeId': 9999,
            'items': [{'productId': product.id, 'quantity': 1, 'unitPrice': 1}],
        })
        assert response.status_code == 404
        assert response.json['code'] == 'NOT_FOUND'


class TestReturnRoutes:
    def test_return_contract(self, client, db_session, store, product):
        _receive(client, store, product)
        sale = _sale(client, store, product).json['sale']

        response = client.post('/api/pos/returns', json={
            'saleId': sale['id'],
            'storeId': store.id,
            'items': [
                {'productId': product.id, 'quantity': 1, 'restockAction': 'RESTOCK',
                 'refundType': 'PARTIAL', 'refundAmount': 5, 'currency': 'USD'},
                {'productId': product.id, 'quantity': 1, 'restockAction': 'DISCARD',
                 'refundType': 'FULL', 'currency': 'USD'},
            ],
        })

        assert response.status_code == 201
        body = response.json
        assert body['ok'] is True
        assert body['return']['saleId'] == sale['id']
        assert body['return']['currency'] == 'USD'
        assert body['return']['status'] == 'COMMITTED'
        assert Decimal(body['return']['totalRefund']) == 15
        assert [item['currency'] for item in body['items']] == ['USD', 'USD']
        assert abs(Decimal(body['items'][0]['refundAmount']) - 5) < Decimal('0.01')
        assert body['items'][1]['restockAction'] == 'DISCARD'

        inventory = client.get(f'/api/inventory/{store.id}/{product.id}').json['inventory']
        assert Decimal(inventory['quantity']) == 19

    def test_over_return_is_400(self, client, db_session, store, product):
        _receive(client, store, product)
        sale = _sale(client, store, product).json['sale']

        response = client.post('/api/pos/returns', json={
            'saleId': sale['id'],
            'storeId': store.id,
            'items': [{'productId': product.id, 'quantity': 3, 'restockAction': 'RESTOCK', 'refundType': 'FULL'}],
        })

        assert response.status_code == 400
        assert response.json['code'] == 'VALIDATION_ERROR'

    def test_get_return(self, client, db_session, store, product):
        _receive(client, store, product)
        sale = _sale(client, store, product).json['sale']
        created = client.post('/api/pos/returns', json={
            'saleId': sale['id'],
            'storeId': store.id,
            'items': [{'productId': product.id, 'quantity': 1, 'restockAction': 'DISCARD', 'refundType': 'FULL'}],
        }).json

        response = client.get(f"/api/pos/returns/{created['return']['id']}")
        assert response.status_code == 200
        assert response.json['items'][0]['refundType'] == 'FULL'

        listed = client.get(f"/api/pos/returns/sale/{sale['id']}").json['returns']
        assert [r['id'] for r in listed] == [created['return']['id']]


class TestHeldRoutes:
    def test_hold_resume_once(self, client, db_session, store):
        response = client.post('/api/pos/held', json={
            'storeId': store.id,
            'items': [{'productId': 1, 'quantity': 1}],
        })
        assert response.status_code == 201
        held_id = response.json['held']['id']

        listed = client.get(f'/api/pos/held?storeId={store.id}').json['held']
        assert [h['id'] for h in listed] == [held_id]

        resumed = client.post(f'/api/pos/held/{held_id}/resume', json={'storeId': store.id})
        assert resumed.status_code == 200
        assert resumed.json['held']['items'] == [{'productId': 1, 'quantity': 1}]

        again = client.post(f'/api/pos/held/{held_id}/resume', json={'storeId': store.id})
        assert again.status_code == 404

    def test_discard(self, client, db_session, store):
        held_id = client.post('/api/pos/held', json={
            'storeId': store.id,
            'items': [{'productId': 1, 'quantity': 1}],
        }).json['held']['id']

        response = client.delete(f'/api/pos/held/{held_id}?storeId={store.id}')
        assert response.status_code == 200
        assert client.get(f'/api/pos/held?storeId={store.id}').json['held'] == []
