# backend/stockledger/routes/inventory.py
"""
Inventory routes.

- POST /api/inventory/receive creates a purchase cost layer.
- GET reads the stored aggregates only (quantity, avgCost, totalCostValue);
  cost layers are never read on this path.
"""
from flask import Blueprint, request, jsonify

from ..errors import ValidationError
from ..services import inventory_service
from ..time_utils import parse_iso_datetime


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _require_int(data: dict, key: str) -> int:
    value = data.get(key)
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    return value


@inventory_bp.post("/receive")
def receive_inventory_route():
    """
    Receive stock at a unit cost.

    Request body:
    {
        "storeId": 1,
        "productId": 42,
        "quantity": "20",
        "unitCost": "4.00",
        "notes": "PO-1001",      (optional)
        "referenceId": "PO-1001", (optional)
        "receivedAt": "2026-01-05T09:00:00Z" (optional; ISO-8601, sets FIFO position)
    }

    Returns:
        201: {ok, inventory, layer}
        400: Invalid input
    """
    data = request.get_json(silent=True) or {}

    try:
        received_at = parse_iso_datetime(data.get("receivedAt"))
    except (TypeError, ValueError, AttributeError):
        raise ValidationError("receivedAt must be an ISO-8601 datetime")

    record, layer = inventory_service.receive_stock(
        store_id=_require_int(data, "storeId"),
        product_id=_require_int(data, "productId"),
        quantity=data.get("quantity"),
        unit_cost=data.get("unitCost"),
        notes=data.get("notes"),
        reference_id=data.get("referenceId"),
        received_at=received_at,
        user_id=data.get("userId"),
    )
    return jsonify({"ok": True, "inventory": record.to_dict(), "layer": layer.to_dict()}), 201


@inventory_bp.get("/<int:store_id>/<int:product_id>")
def inventory_summary_route(store_id: int, product_id: int):
    summary = inventory_service.get_inventory_summary(store_id=store_id, product_id=product_id)
    return jsonify({"ok": True, "inventory": summary}), 200
