# backend/stockledger/routes/held.py
"""
Held transaction routes: park a cart, list parked carts, resume once, discard.
"""
from flask import Blueprint, request, jsonify

from ..errors import ValidationError
from ..services import held_transaction_service


held_bp = Blueprint("held", __name__, url_prefix="/api/pos/held")


def _store_id(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("storeId must be an integer")


@held_bp.post("")
def hold_route():
    data = request.get_json(silent=True) or {}
    held = held_transaction_service.hold_transaction(
        store_id=_store_id(data.get("storeId")),
        items=data.get("items"),
        payment=data.get("payment"),
        loyalty=data.get("loyalty"),
        user_id=data.get("userId"),
    )
    return jsonify({"ok": True, "held": held.to_dict()}), 201


@held_bp.get("")
def list_held_route():
    store_id = _store_id(request.args.get("storeId"))
    held = held_transaction_service.list_held(store_id=store_id)
    return jsonify({"ok": True, "held": [h.to_dict() for h in held]}), 200


@held_bp.post("/<held_id>/resume")
def resume_route(held_id: str):
    data = request.get_json(silent=True) or {}
    store_id = _store_id(data.get("storeId", request.args.get("storeId")))
    payload = held_transaction_service.resume_held(held_id=held_id, store_id=store_id)
    return jsonify({"ok": True, "held": payload}), 200


@held_bp.delete("/<held_id>")
def discard_route(held_id: str):
    store_id = _store_id(request.args.get("storeId"))
    held_transaction_service.discard_held(held_id=held_id, store_id=store_id)
    return jsonify({"ok": True}), 200
