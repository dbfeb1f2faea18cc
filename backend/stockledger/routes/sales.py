# backend/stockledger/routes/sales.py
"""
Sale settlement routes.

DESIGN:
- One POST settles the whole sale: lines, FIFO cost consumption and the
  inventory decrement commit together
- Idempotency-Key header makes retries safe: a replay returns the settled
  sale with 200 instead of 201
- Oversells are not rejected; affected lines come back with shortfall=true
"""
from flask import Blueprint, request, jsonify

from ..errors import NotFoundError, ValidationError
from ..services import sales_service


sales_bp = Blueprint("sales", __name__, url_prefix="/api/pos/sales")


@sales_bp.post("")
def create_sale_route():
    """
    Request body:
    {
        "storeId": 1,
        "currency": "USD",   (optional; defaults to the store's currency)
        "items": [{"productId": 42, "quantity": "2", "unitPrice": "10.00"}]
    }

    Returns:
        201: {ok, sale, lines, inventory}
        200: idempotent replay
        400: Invalid input
    """
    data = request.get_json(silent=True) or {}

    store_id = data.get("storeId")
    if not isinstance(store_id, int) or isinstance(store_id, bool):
        raise ValidationError("storeId must be an integer")
    items = data.get("items")
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    settlement = sales_service.settle_sale(
        store_id=store_id,
        items=items,
        currency=data.get("currency"),
        idempotency_key=request.headers.get("Idempotency-Key") or None,
        user_id=data.get("userId"),
    )
    return jsonify(settlement.to_dict()), 200 if settlement.replayed else 201


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    sale = sales_service.get_sale(sale_id)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return jsonify({
        "ok": True,
        "sale": sale.to_dict(),
        "lines": [line.to_dict() for line in sale.lines],
    }), 200
