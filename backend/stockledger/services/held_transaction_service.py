# Overview: Held (suspended) carts: hold, list, resume once, discard.

from __future__ import annotations

import uuid

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import HeldTransaction
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import _ensure_store


class HeldTransactionError(ValidationError):
    """Raised for invalid held cart payloads."""
    pass


def hold_transaction(
    *,
    store_id: int,
    items: list,
    payment: dict | None = None,
    loyalty: dict | None = None,
    user_id: int | None = None,
) -> HeldTransaction:
    """
    Park a cart. Inventory and cost layers are untouched.
    """
    def _op():
        _ensure_store(store_id)
        if not isinstance(items, list) or not items:
            raise HeldTransactionError("Held cart must contain at least one item")
        if payment is not None and not isinstance(payment, dict):
            raise HeldTransactionError("payment must be an object")
        if loyalty is not None and not isinstance(loyalty, dict):
            raise HeldTransactionError("loyalty must be an object")

        held = HeldTransaction(
            id=str(uuid.uuid4()),
            store_id=store_id,
            items=items,
            payment=payment,
            loyalty=loyalty,
            created_by_user_id=user_id,
        )
        db.session.add(held)
        db.session.commit()
        return held

    return run_with_retry(_op)


def list_held(*, store_id: int) -> list[HeldTransaction]:
    return (
        db.session.query(HeldTransaction)
        .filter_by(store_id=store_id)
        .order_by(HeldTransaction.created_at.asc())
        .all()
    )


def _take(held_id: str, store_id: int) -> HeldTransaction:
    held = lock_for_update(
        db.session.query(HeldTransaction).filter_by(id=held_id, store_id=store_id)
    ).first()
    if held is None:
        raise NotFoundError("Held transaction not found", details={"heldId": held_id})
    return held


def resume_held(*, held_id: str, store_id: int) -> dict:
    """
    Resume a held cart exactly once.

    The row is deleted in the same transaction that reads it; a second
    resume (or a resume after discard) is NOT_FOUND.
    """
    def _op():
        held = _take(held_id, store_id)
        payload = held.to_dict()
        db.session.delete(held)
        db.session.commit()
        return payload

    return run_with_retry(_op)


def discard_held(*, held_id: str, store_id: int) -> None:
    def _op():
        held = _take(held_id, store_id)
        db.session.delete(held)
        db.session.commit()

    run_with_retry(_op)
