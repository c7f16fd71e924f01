# Overview: Order lifecycle: creation, item edits, edit lock and status transitions.

# backend/litorder/services/order_service.py
"""
Order lifecycle service.

WHY: An order moves stock between organizations. Every status change that
moves stock must hit the inventory ledger in the same DB transaction, and
two people acting on the same order must never interleave.

LIFECYCLE (edges, parties and ledger effects live in order_transitions.TRANSITIONS):
1. DRAFT: created by the requester, items editable
2. PENDING: submitted to the receiver
3. APPROVED: receiver reserved the stock
4. IN_ASSEMBLY: receiver is picking; items frozen
5. SHIPPED: stock left the receiver (OUTGOING rows)
6. DELIVERED: requester confirmed arrival (INCOMING rows, if RECEIVE_ON_DELIVERY)
7. COMPLETED / REJECTED: terminal

CONCURRENCY:
- Every mutation locks the Order row first, then the InventoryRecord rows it
  touches (via inventory_service, in literature_id order).
- Order.version_id backs the lock on stores that ignore FOR UPDATE; a lost
  race surfaces as ConcurrencyConflictError after the retries run out.

RETRIES:
- Each ledger effect is tied to the status the order moves into. A caller that
  passes expected_status gets a no-op when the order already made exactly that
  move (last status event expected_status -> target), so a retried request
  cannot reserve or commit twice.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import and_, func, or_

from ..actor import Actor
from ..errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    OrderLockedError,
    PermissionDeniedError,
    ValidationError,
)
from ..extensions import db
from ..models import Order, OrderItem
from ..money import format_amount
from ..time_utils import utcnow
from ..validation import coerce_int, normalize_item_lines
from . import inventory_service
from .catalog_service import get_literature_map, get_organization, validate_order_hierarchy
from .concurrency import lock_for_update, run_in_unit_of_work
from .inventory_service import StockLine
from .order_event_service import (
    EVENT_ITEMS_UPDATED,
    EVENT_ORDER_CREATED,
    EVENT_ORDER_LOCKED,
    EVENT_ORDER_UNLOCKED,
    EVENT_ORDER_UPDATED,
    EVENT_STATUS_CHANGED,
    append_order_event,
    last_status_event,
)
from .order_transitions import (
    EFFECT_COMMIT,
    EFFECT_RECEIVE,
    EFFECT_RELEASE,
    EFFECT_RESERVE,
    ORDER_STATUS_DRAFT,
    ORDER_STATUS_PENDING,
    ORDER_STATUSES,
    RESERVED_STATUSES,
    find_edge,
    is_editable,
    party_allows,
    validate_status,
)
from .sequence_service import next_order_number


__all__ = [
    "create_order",
    "get_order",
    "list_orders",
    "transition_order",
    "update_order",
    "update_order_items",
    "add_item",
    "update_item_quantity",
    "remove_item",
    "lock_order",
    "unlock_order",
    "delete_order",
    "get_order_statistics",
    "is_editable",
]


# =============================================================================
# PARTIES
# =============================================================================

def _is_requester(actor: Actor, order: Order) -> bool:
    if order.from_organization_id is None:
        # Top-level supply order: the creating user stands in for the requester
        return order.created_by_user_id is not None and actor.user_id == order.created_by_user_id
    return actor.belongs_to(order.from_organization_id)


def _is_receiver(actor: Actor, order: Order) -> bool:
    return actor.belongs_to(order.to_organization_id)


def _can_view(actor: Actor, order: Order) -> bool:
    return actor.is_admin or _is_requester(actor, order) or _is_receiver(actor, order)


def _visibility_filter(actor: Actor):
    own_supply_orders = and_(
        Order.from_organization_id.is_(None),
        Order.created_by_user_id == actor.user_id,
    )
    if actor.organization_id is None:
        return own_supply_orders
    return or_(
        Order.from_organization_id == actor.organization_id,
        Order.to_organization_id == actor.organization_id,
        own_supply_orders,
    )


# =============================================================================
# HELPERS
# =============================================================================

def _load_order(order_id: int, actor: Actor, *, for_update: bool = True) -> Order:
    """Load an order the actor can see. Invisible orders read as missing."""
    query = db.session.query(Order).filter_by(id=order_id)
    if for_update:
        query = lock_for_update(query)
    order = query.first()
    if order is None or not _can_view(actor, order):
        raise NotFoundError("Order", order_id)
    return order


def _stock_lines(order: Order) -> list[StockLine]:
    return [
        StockLine(
            literature_id=item.literature_id,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
        )
        for item in order.items
    ]


def _quantities(order: Order) -> dict[int, int]:
    return {item.literature_id: item.quantity for item in order.items}


def _recompute_total(order: Order) -> None:
    for item in order.items:
        item.total_price_cents = item.quantity * item.unit_price_cents
    order.total_amount_cents = sum(item.total_price_cents for item in order.items)


def _new_item(literature, quantity: int) -> OrderItem:
    # Price is frozen here; later catalog edits never reach this line
    return OrderItem(
        literature_id=literature.id,
        quantity=quantity,
        unit_price_cents=literature.price_cents,
        total_price_cents=quantity * literature.price_cents,
    )


def _find_item(order: Order, literature_id: int) -> OrderItem | None:
    for item in order.items:
        if item.literature_id == literature_id:
            return item
    return None


def _require_item_editor(actor: Actor, order: Order) -> None:
    if actor.is_admin or _is_requester(actor, order) or _is_receiver(actor, order):
        return
    raise PermissionDeniedError(f"User {actor.user_id} cannot edit order {order.order_number}")


def _require_editable(order: Order) -> None:
    if order.is_locked:
        raise OrderLockedError(
            f"Order {order.order_number} is locked and cannot be modified",
            order_id=order.id,
        )
    if not is_editable(order):
        raise OrderLockedError(
            f"Order {order.order_number} cannot be modified in {order.status} status",
            order_id=order.id,
        )


def _require_receiver(actor: Actor, order: Order, action: str) -> None:
    if actor.is_admin or _is_receiver(actor, order):
        return
    raise PermissionDeniedError(f"Only the receiving organization can {action} order {order.order_number}")


def _rebalance_reservation(order: Order, before: dict[int, int], after: dict[int, int]) -> None:
    """
    Keep the receiver's reservation equal to the order lines while the order
    holds one. Decreases are released first, then increases are reserved.
    """
    if order.status not in RESERVED_STATUSES:
        return

    decreases = []
    increases = []
    for literature_id in sorted(set(before) | set(after)):
        delta = after.get(literature_id, 0) - before.get(literature_id, 0)
        if delta < 0:
            decreases.append(StockLine(literature_id, -delta))
        elif delta > 0:
            increases.append(StockLine(literature_id, delta))

    if decreases:
        inventory_service.release(order.to_organization_id, decreases, order_id=order.id)
    if increases:
        inventory_service.reserve(order.to_organization_id, increases, order_id=order.id)


def _edit_items(actor: Actor, order_id: int, mutate, note: str) -> Order:
    """
    Shared frame for every item mutation: lock, check, mutate, re-balance,
    re-total, record the event.
    """
    def _op():
        order = _load_order(order_id, actor)
        _require_item_editor(actor, order)
        _require_editable(order)

        before = _quantities(order)
        mutate(order)
        db.session.flush()
        after = _quantities(order)

        if not after and order.status != ORDER_STATUS_DRAFT:
            raise ValidationError("Order must contain at least one item")

        _rebalance_reservation(order, before, after)
        _recompute_total(order)
        order.updated_at = utcnow()

        append_order_event(order_id=order.id, event_type=EVENT_ITEMS_UPDATED, actor=actor, note=note)
        db.session.flush()
        return order

    return run_in_unit_of_work(_op)


# =============================================================================
# CREATE / READ
# =============================================================================

def create_order(
    actor: Actor,
    *,
    to_organization_id: int | None,
    items,
    from_organization_id: int | None = None,
    notes: str | None = None,
) -> Order:
    """
    Create a DRAFT order.

    Args:
        actor: Calling user
        to_organization_id: Receiving (fulfilling) organization, required
        items: [{"literature_id": ..., "quantity": ...}, ...], at least one
        from_organization_id: Requesting organization; the actor must belong
            to it unless admin. None for a top-level supply order.
        notes: Free text

    Returns:
        Order: the new order, prices captured from the catalog

    Raises:
        ValidationError, NotFoundError, PermissionDeniedError
    """
    if to_organization_id is None:
        raise ValidationError("to_organization_id is required")
    lines = normalize_item_lines(items)

    def _op():
        to_org = get_organization(to_organization_id, require_active=True)

        if from_organization_id is not None:
            if from_organization_id == to_organization_id:
                raise ValidationError("An organization cannot order from itself")
            from_org = get_organization(from_organization_id, require_active=True)
            if not actor.is_admin and not actor.belongs_to(from_organization_id):
                raise PermissionDeniedError(
                    f"User {actor.user_id} cannot order on behalf of organization {from_organization_id}"
                )
            if current_app.config.get("ENFORCE_ORDER_HIERARCHY", True):
                validate_order_hierarchy(from_org, to_org)

        literature = get_literature_map([lit_id for lit_id, _ in lines], require_active=True)

        order = Order(
            order_number=next_order_number(),
            from_organization_id=from_organization_id,
            to_organization_id=to_organization_id,
            status=ORDER_STATUS_DRAFT,
            notes=notes,
            created_by_user_id=actor.user_id,
        )
        for literature_id, quantity in lines:
            order.items.append(_new_item(literature[literature_id], quantity))
        _recompute_total(order)

        db.session.add(order)
        db.session.flush()

        append_order_event(
            order_id=order.id,
            event_type=EVENT_ORDER_CREATED,
            actor=actor,
            to_status=ORDER_STATUS_DRAFT,
            note=notes,
        )

        current_app.logger.info(
            "order %s created by user %s (%s -> %s, %s item(s))",
            order.order_number, actor.user_id, from_organization_id, to_organization_id, len(lines),
        )
        return order

    return run_in_unit_of_work(_op)


def get_order(actor: Actor, order_id: int) -> Order:
    return _load_order(order_id, actor, for_update=False)


def list_orders(
    actor: Actor,
    *,
    status: str | None = None,
    from_organization_id: int | None = None,
    to_organization_id: int | None = None,
    date_from=None,
    date_to=None,
    page: int = 1,
    per_page: int | None = None,
) -> dict:
    """
    Orders visible to the actor, newest first.

    Returns {"orders": [Order, ...], "total": int, "page": int, "per_page": int}.
    """
    if status is not None:
        validate_status(status)

    default_size = current_app.config.get("DEFAULT_PAGE_SIZE", 20)
    max_size = current_app.config.get("MAX_PAGE_SIZE", 100)
    per_page = per_page or default_size
    per_page = max(1, min(per_page, max_size))
    page = max(1, page or 1)

    q = db.session.query(Order)
    if not actor.is_admin:
        q = q.filter(_visibility_filter(actor))
    if status is not None:
        q = q.filter(Order.status == status)
    if from_organization_id is not None:
        q = q.filter(Order.from_organization_id == from_organization_id)
    if to_organization_id is not None:
        q = q.filter(Order.to_organization_id == to_organization_id)
    if date_from is not None:
        q = q.filter(Order.created_at >= date_from)
    if date_to is not None:
        q = q.filter(Order.created_at <= date_to)

    total = q.count()
    orders = (
        q.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {"orders": orders, "total": total, "page": page, "per_page": per_page}


# =============================================================================
# TRANSITIONS
# =============================================================================

def transition_order(
    actor: Actor,
    order_id: int,
    target_status: str,
    *,
    expected_status: str | None = None,
    notes: str | None = None,
) -> Order:
    """
    Apply exactly one edge of the status graph, with its ledger effect, as one
    unit of work.

    expected_status is the status the caller believes the order is in:
    - order already moved expected_status -> target_status: no-op, order returned
    - order in neither state: ConcurrencyConflictError (stale view)
    Without it, repeating a transition is a self-loop and fails.

    Raises:
        InvalidTransitionError: edge not in the graph, or actor not allowed
        InsufficientInventoryError: reserve/commit would break stock invariants
        ValidationError: e.g. submitting an order with no items
        NotFoundError, ConcurrencyConflictError
    """
    validate_status(target_status)
    if expected_status is not None:
        validate_status(expected_status)

    def _op():
        order = _load_order(order_id, actor)
        current = order.status

        if expected_status is not None and current != expected_status:
            if current == target_status:
                last = last_status_event(order.id)
                if last is not None and last.from_status == expected_status and last.to_status == target_status:
                    current_app.logger.info(
                        "order %s already %s; transition from %s not repeated",
                        order.order_number, target_status, expected_status,
                    )
                    return order
            raise ConcurrencyConflictError(
                f"Order {order.order_number} is {current}, expected {expected_status}"
            )

        edge = find_edge(current, target_status)
        if edge is None:
            raise InvalidTransitionError(
                f"Cannot transition order {order.order_number} from {current} to {target_status}",
                from_status=current,
                to_status=target_status,
            )

        if not actor.is_admin and not party_allows(
            edge.party,
            is_requester=_is_requester(actor, order),
            is_receiver=_is_receiver(actor, order),
        ):
            raise InvalidTransitionError(
                f"User {actor.user_id} may not move order {order.order_number} "
                f"from {current} to {target_status} ({edge.party.lower()} only)",
                from_status=current,
                to_status=target_status,
            )

        if target_status == ORDER_STATUS_PENDING and not order.items:
            raise ValidationError("Order must contain at least one item")

        _apply_effect(actor, order, edge.effect)

        order.status = target_status
        now = utcnow()
        order.status_changed_at = now
        order.updated_at = now

        append_order_event(
            order_id=order.id,
            event_type=EVENT_STATUS_CHANGED,
            actor=actor,
            from_status=current,
            to_status=target_status,
            note=notes,
        )
        db.session.flush()

        current_app.logger.info(
            "order %s: %s -> %s by user %s", order.order_number, current, target_status, actor.user_id
        )
        return order

    return run_in_unit_of_work(_op)


def _apply_effect(actor: Actor, order: Order, effect: str) -> None:
    lines = _stock_lines(order)

    if effect == EFFECT_RESERVE:
        inventory_service.reserve(order.to_organization_id, lines, order_id=order.id)

    elif effect == EFFECT_RELEASE:
        inventory_service.release(order.to_organization_id, lines, order_id=order.id)

    elif effect == EFFECT_COMMIT:
        inventory_service.commit(
            order.to_organization_id,
            lines,
            order_id=order.id,
            to_organization_id=order.from_organization_id,
            notes=f"Order {order.order_number} shipped",
            actor_user_id=actor.user_id,
        )

    elif effect == EFFECT_RECEIVE:
        if not current_app.config.get("RECEIVE_ON_DELIVERY", True):
            return
        if order.from_organization_id is None:
            current_app.logger.info(
                "order %s delivered without requesting organization; no receipt booked",
                order.order_number,
            )
            return
        for line in lines:
            inventory_service.receive_incoming(
                order.from_organization_id,
                line.literature_id,
                line.quantity,
                line.unit_price_cents,
                from_organization_id=order.to_organization_id,
                order_id=order.id,
                notes=f"Order {order.order_number} delivered",
                actor_user_id=actor.user_id,
            )


# =============================================================================
# ORDER FIELDS
# =============================================================================

def update_order(actor: Actor, order_id: int, *, notes: str | None) -> Order:
    """
    Change the order's own fields (currently only notes).

    Same rules as item edits: requester, receiver or admin, and only while
    the order is editable and not locked.
    """
    def _op():
        order = _load_order(order_id, actor)
        _require_item_editor(actor, order)
        _require_editable(order)

        order.notes = notes
        order.updated_at = utcnow()

        append_order_event(order_id=order.id, event_type=EVENT_ORDER_UPDATED, actor=actor, note="notes updated")
        db.session.flush()

        current_app.logger.info("order %s updated by user %s", order.order_number, actor.user_id)
        return order

    return run_in_unit_of_work(_op)


# =============================================================================
# ITEM EDITS
# =============================================================================

def update_order_items(actor: Actor, order_id: int, items) -> Order:
    """
    Replace the item list. Lines already on the order keep their captured
    price; new lines capture the current catalog price.
    """
    lines = normalize_item_lines(items)

    def _mutate(order: Order):
        wanted = dict(lines)
        new_ids = [lit_id for lit_id in wanted if _find_item(order, lit_id) is None]
        literature = get_literature_map(new_ids, require_active=True)

        for item in list(order.items):
            if item.literature_id not in wanted:
                order.items.remove(item)
        # Removed rows must be gone before re-adding, or the unique key trips
        db.session.flush()

        for literature_id, quantity in lines:
            item = _find_item(order, literature_id)
            if item is None:
                order.items.append(_new_item(literature[literature_id], quantity))
            else:
                item.quantity = quantity

    return _edit_items(actor, order_id, _mutate, note=f"{len(lines)} item(s) set")


def add_item(actor: Actor, order_id: int, literature_id, quantity) -> Order:
    literature_id = coerce_int(literature_id, "literature_id")
    quantity = coerce_int(quantity, "quantity")
    if quantity <= 0:
        raise ValidationError("Quantity must be greater than 0")

    def _mutate(order: Order):
        if _find_item(order, literature_id) is not None:
            raise ValidationError(f"Literature {literature_id} is already on this order")
        literature = get_literature_map([literature_id], require_active=True)
        order.items.append(_new_item(literature[literature_id], quantity))

    return _edit_items(actor, order_id, _mutate, note=f"added literature {literature_id} x{quantity}")


def update_item_quantity(actor: Actor, order_id: int, literature_id, quantity) -> Order:
    literature_id = coerce_int(literature_id, "literature_id")
    quantity = coerce_int(quantity, "quantity")
    if quantity <= 0:
        raise ValidationError("Quantity must be greater than 0")

    def _mutate(order: Order):
        item = _find_item(order, literature_id)
        if item is None:
            raise NotFoundError("Order item", literature_id)
        item.quantity = quantity

    return _edit_items(actor, order_id, _mutate, note=f"literature {literature_id} set to {quantity}")


def remove_item(actor: Actor, order_id: int, literature_id) -> Order:
    """Remove one line. Only a DRAFT order may end up with no items."""
    literature_id = coerce_int(literature_id, "literature_id")

    def _mutate(order: Order):
        item = _find_item(order, literature_id)
        if item is None:
            raise NotFoundError("Order item", literature_id)
        order.items.remove(item)

    return _edit_items(actor, order_id, _mutate, note=f"removed literature {literature_id}")


# =============================================================================
# EDIT LOCK
# =============================================================================

def lock_order(actor: Actor, order_id: int) -> Order:
    """Hold the order against item edits, whatever its status. Receiver only."""
    def _op():
        order = _load_order(order_id, actor)
        _require_receiver(actor, order, "lock")
        if order.is_locked:
            raise OrderLockedError(
                f"Order {order.order_number} is already locked by user {order.locked_by_user_id}",
                order_id=order.id,
            )

        order.locked_at = utcnow()
        order.locked_by_user_id = actor.user_id

        append_order_event(order_id=order.id, event_type=EVENT_ORDER_LOCKED, actor=actor)
        db.session.flush()

        current_app.logger.info("order %s locked by user %s", order.order_number, actor.user_id)
        return order

    return run_in_unit_of_work(_op)


def unlock_order(actor: Actor, order_id: int) -> Order:
    def _op():
        order = _load_order(order_id, actor)
        _require_receiver(actor, order, "unlock")
        if not order.is_locked:
            raise ValidationError(f"Order {order.order_number} is not locked")

        order.locked_at = None
        order.locked_by_user_id = None

        append_order_event(order_id=order.id, event_type=EVENT_ORDER_UNLOCKED, actor=actor)
        db.session.flush()

        current_app.logger.info("order %s unlocked by user %s", order.order_number, actor.user_id)
        return order

    return run_in_unit_of_work(_op)


# =============================================================================
# DELETE / STATISTICS
# =============================================================================

def delete_order(actor: Actor, order_id: int) -> None:
    """Physically delete an unlocked DRAFT order (requester or admin)."""
    def _op():
        order = _load_order(order_id, actor)
        if not actor.is_admin and not _is_requester(actor, order):
            raise PermissionDeniedError(f"Only the requester can delete order {order.order_number}")
        if order.status != ORDER_STATUS_DRAFT:
            raise ValidationError(f"Only DRAFT orders can be deleted (order is {order.status})")
        if order.is_locked:
            raise OrderLockedError(f"Order {order.order_number} is locked", order_id=order.id)

        number = order.order_number
        db.session.delete(order)
        db.session.flush()

        current_app.logger.info("order %s deleted by user %s", number, actor.user_id)

    run_in_unit_of_work(_op)


def get_order_statistics(actor: Actor, *, organization_id: int | None = None) -> dict:
    """
    Count and total amount per status. Non-admin actors always get the
    figures for their own organization (either side of the order).
    """
    if not actor.is_admin:
        if organization_id is not None and not actor.belongs_to(organization_id):
            raise PermissionDeniedError(
                f"User {actor.user_id} cannot view statistics of organization {organization_id}"
            )

    q = db.session.query(
        Order.status,
        func.count(Order.id),
        func.coalesce(func.sum(Order.total_amount_cents), 0),
    )
    if organization_id is not None:
        q = q.filter(or_(
            Order.from_organization_id == organization_id,
            Order.to_organization_id == organization_id,
        ))
    elif not actor.is_admin:
        q = q.filter(_visibility_filter(actor))
    rows = q.group_by(Order.status).all()

    by_status = {
        status: {"count": 0, "total_amount_cents": 0, "total_amount": format_amount(0)}
        for status in ORDER_STATUSES
    }
    for status, count, amount in rows:
        by_status[status] = {
            "count": int(count),
            "total_amount_cents": int(amount or 0),
            "total_amount": format_amount(int(amount or 0)),
        }

    total_cents = sum(v["total_amount_cents"] for v in by_status.values())
    return {
        "organization_id": organization_id,
        "total_orders": sum(v["count"] for v in by_status.values()),
        "total_amount_cents": total_cents,
        "total_amount": format_amount(total_cents),
        "by_status": by_status,
    }
