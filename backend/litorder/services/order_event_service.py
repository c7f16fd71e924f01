# Overview: Append-only order audit trail.

from __future__ import annotations

from typing import Optional

from ..actor import Actor
from ..extensions import db
from ..models import OrderEvent
"""
Order event trail invariants

- Append-only: no updates/deletes of existing events.
- No domain logic here; callers decide what happened.
- Events are written inside the same DB transaction as the change they record.
"""

EVENT_ORDER_CREATED = "order.created"
EVENT_STATUS_CHANGED = "order.status_changed"
EVENT_ORDER_LOCKED = "order.locked"
EVENT_ORDER_UNLOCKED = "order.unlocked"
EVENT_ITEMS_UPDATED = "order.items_updated"
EVENT_ORDER_UPDATED = "order.updated"


def append_order_event(
    *,
    order_id: int,
    event_type: str,
    actor: Optional[Actor] = None,
    from_status: Optional[str] = None,
    to_status: Optional[str] = None,
    note: Optional[str] = None,
) -> OrderEvent:
    ev = OrderEvent(
        order_id=order_id,
        event_type=event_type,
        from_status=from_status,
        to_status=to_status,
        actor_user_id=actor.user_id if actor else None,
        actor_organization_id=actor.organization_id if actor else None,
        actor_role=actor.role if actor else None,
        note=note,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def last_status_event(order_id: int) -> OrderEvent | None:
    return (
        db.session.query(OrderEvent)
        .filter_by(order_id=order_id, event_type=EVENT_STATUS_CHANGED)
        .order_by(OrderEvent.id.desc())
        .first()
    )
