# Overview: Flask API routes for returns; parses input and returns JSON responses.

# backend/stockledger/routes/returns.py
"""
Return Processing API Routes

WHY: Reverse a prior sale's stock and cost effect and compute the refund.

DESIGN:
- One POST validates and commits the whole return (DRAFT -> VALIDATED -> COMMITTED)
- RESTOCK items restore the original per-layer cost basis; DISCARD items write it off
- Over-returns, refund overruns and currency mismatches are 400 with no mutation
"""

from flask import Blueprint, request, jsonify

from ..errors import NotFoundError, ValidationError
from ..services import return_service


returns_bp = Blueprint("returns", __name__, url_prefix="/api/pos/returns")


@returns_bp.post("")
def create_return_route():
    """
    Request body:
    {
        "saleId": 123,
        "storeId": 1,
        "reason": "Damaged box",  (optional)
        "items": [
            {"productId": 42, "quantity": 1, "restockAction": "RESTOCK",
             "refundType": "PARTIAL", "refundAmount": "5.00", "currency": "USD"},
            {"productId": 42, "quantity": 1, "restockAction": "DISCARD", "refundType": "FULL"}
        ]
    }

    Returns:
        201: {ok: true, return, items}
        400: Invalid input or over-return
        404: Sale not found
    """
    data = request.get_json(silent=True) or {}

    sale_id = data.get("saleId")
    store_id = data.get("storeId")
    for key, value in (("saleId", sale_id), ("storeId", store_id)):
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValidationError(f"{key} must be an integer")

    return_doc = return_service.process_return(
        sale_id=sale_id,
        store_id=store_id,
        items=data.get("items") or [],
        reason=data.get("reason"),
        user_id=data.get("userId"),
    )
    return jsonify(return_service.return_summary(return_doc)), 201


@returns_bp.get("/<int:return_id>")
def get_return_route(return_id: int):
    return_doc = return_service.get_return(return_id)
    if return_doc is None:
        raise NotFoundError(f"Return {return_id} not found")
    return jsonify(return_service.return_summary(return_doc)), 200


@returns_bp.get("/sale/<int:sale_id>")
def list_sale_returns_route(sale_id: int):
    returns = return_service.get_sale_returns(sale_id)
    return jsonify({"ok": True, "returns": [r.to_dict() for r in returns]}), 200
