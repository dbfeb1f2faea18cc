# Overview: Append-only audit trail for engine events.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import MasterLedgerEvent
"""
Master Ledger Invariants (authoritative)

- Append-only audit log for cross-cutting domain events.
- No domain/business logic in the master ledger itself.
- Events are written inside the same DB transaction as the domain event they record.
- occurred_at is business time; created_at is system time (DB default).
"""


EVENT_SHORTFALL = "inventory.ledger_shortfall"


def append_ledger_event(
    *,
    store_id: int,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    product_id: int | None = None,
    sale_id: int | None = None,
    return_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> MasterLedgerEvent:
    """
    Append-only master ledger event.

    - No domain logic here.
    - No deletes/updates of existing events.
    """
    ev = MasterLedgerEvent(
        store_id=store_id,
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        product_id=product_id,
        sale_id=sale_id,
        return_id=return_id,
        note=note,
        payload=payload,
    )
    if occurred_at is not None:
        ev.occurred_at = occurred_at
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_events(
    *,
    event_type: str,
    store_id: int | None = None,
    limit: int = 500,
) -> list[MasterLedgerEvent]:
    q = db.session.query(MasterLedgerEvent).filter(MasterLedgerEvent.event_type == event_type)
    if store_id is not None:
        q = q.filter(MasterLedgerEvent.store_id == store_id)
    return q.order_by(MasterLedgerEvent.occurred_at.asc(), MasterLedgerEvent.id.asc()).limit(limit).all()
