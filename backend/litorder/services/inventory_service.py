# Overview: Inventory ledger: per-(organization, literature) stock rows and their movements.

# backend/litorder/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..actor import Actor
from ..errors import (
    InsufficientInventoryError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from ..extensions import db
from ..models import InventoryRecord, InventoryTransaction, Literature
from ..models.inventory import (
    TRANSACTION_ADJUSTMENT,
    TRANSACTION_INCOMING,
    TRANSACTION_OUTGOING,
)
from ..validation import enforce_rules_adjustment, enforce_rules_receive
from .catalog_service import get_literature, get_organization
from .concurrency import lock_for_update, run_in_unit_of_work
"""
Inventory ledger invariants (authoritative)

Stock model:
- One InventoryRecord per (organization, literature), created lazily on the
  first stock event and never deleted.
- quantity is physical stock; reserved_quantity is the part earmarked for
  approved-but-unshipped orders; available = quantity - reserved.

Business invariants (checked before every mutation, fail closed):
- quantity >= 0
- 0 <= reserved_quantity <= quantity
The single exception is release(), which floors reserved at 0 and logs the
anomaly instead of failing, because refusing to release would strand stock.

Batch semantics:
- reserve/release/commit take the full line batch of one order, lock every
  affected row (in literature_id order, to avoid lock-order deadlocks),
  validate every line, and only then mutate. A failing line leaves every row
  untouched.

Audit:
- Every quantity change appends an InventoryTransaction in the same DB
  transaction. Reservations move no stock and append nothing.

Units of work:
- reserve/release/commit/receive_incoming/adjust never commit; they flush
  inside the caller's unit of work (order transitions use this).
- create_adjustment/create_adjustments/receive_stock/transfer_stock/
  reverse_transaction are the standalone entry points and run their own
  unit of work.
"""


@dataclass(frozen=True)
class StockLine:
    literature_id: int
    quantity: int
    unit_price_cents: int = 0


@dataclass(frozen=True)
class AdjustmentLine:
    organization_id: int
    literature_id: int
    quantity_change: int
    reason: str
    notes: str | None = None


def _merge_lines(lines: Iterable[StockLine]) -> list[StockLine]:
    """Combine duplicate literature ids and sort by literature_id."""
    merged: dict[int, StockLine] = {}
    for line in lines:
        if line.quantity <= 0:
            raise ValidationError("Quantity must be greater than 0")
        existing = merged.get(line.literature_id)
        if existing is None:
            merged[line.literature_id] = line
        else:
            merged[line.literature_id] = StockLine(
                literature_id=line.literature_id,
                quantity=existing.quantity + line.quantity,
                unit_price_cents=existing.unit_price_cents,
            )
    return [merged[k] for k in sorted(merged)]


def _literature_title(literature_id: int) -> str | None:
    literature = db.session.get(Literature, literature_id)
    return literature.title if literature else None


def _load_records(organization_id: int, literature_ids: list[int]) -> dict[int, InventoryRecord]:
    if not literature_ids:
        return {}
    query = (
        db.session.query(InventoryRecord)
        .filter(
            InventoryRecord.organization_id == organization_id,
            InventoryRecord.literature_id.in_(literature_ids),
        )
        .order_by(InventoryRecord.literature_id)
    )
    return {rec.literature_id: rec for rec in lock_for_update(query).all()}


def _lock_record(organization_id: int, literature_id: int) -> InventoryRecord | None:
    query = db.session.query(InventoryRecord).filter_by(
        organization_id=organization_id,
        literature_id=literature_id,
    )
    return lock_for_update(query).first()


def _get_or_create_record(organization_id: int, literature_id: int) -> InventoryRecord:
    record = _lock_record(organization_id, literature_id)
    if record is not None:
        return record

    record = InventoryRecord(
        organization_id=organization_id,
        literature_id=literature_id,
        quantity=0,
        reserved_quantity=0,
    )
    db.session.add(record)
    try:
        db.session.flush()
    except IntegrityError as exc:
        # Another writer created the row first; let the unit of work retry.
        raise StaleDataError(
            f"inventory record ({organization_id}, {literature_id}) created concurrently"
        ) from exc
    return record


def _append_transaction(**fields) -> InventoryTransaction:
    tx = InventoryTransaction(**fields)
    db.session.add(tx)
    db.session.flush()
    return tx


# =============================================================================
# LEDGER PRIMITIVES (caller owns the unit of work)
# =============================================================================

def reserve(organization_id: int, lines: Iterable[StockLine], *, order_id: int | None = None) -> list[InventoryRecord]:
    """
    Earmark stock for an order: reserved_quantity += qty per line.

    Requires available_quantity >= qty for every line; a missing record has
    nothing available. All lines are checked before any row changes.
    """
    merged = _merge_lines(lines)
    records = _load_records(organization_id, [line.literature_id for line in merged])

    for line in merged:
        record = records.get(line.literature_id)
        available = record.available_quantity if record else 0
        if available < line.quantity:
            raise InsufficientInventoryError(
                organization_id=organization_id,
                literature_id=line.literature_id,
                literature_title=_literature_title(line.literature_id),
                requested=line.quantity,
                available=available,
            )

    for line in merged:
        record = records[line.literature_id]
        record.reserved_quantity = record.reserved_quantity + line.quantity

    db.session.flush()
    current_app.logger.info(
        "reserved %s line(s) at organization %s for order %s", len(merged), organization_id, order_id
    )
    return [records[line.literature_id] for line in merged]


def release(organization_id: int, lines: Iterable[StockLine], *, order_id: int | None = None) -> list[InventoryRecord]:
    """
    Return earmarked stock: reserved_quantity -= qty per line, floored at 0.

    Releasing more than is reserved means the books were already wrong; the
    shortfall is logged so the inventory audit can pick it up.
    """
    merged = _merge_lines(lines)
    records = _load_records(organization_id, [line.literature_id for line in merged])

    released = []
    for line in merged:
        record = records.get(line.literature_id)
        if record is None:
            current_app.logger.warning(
                "release for order %s: no inventory record for literature %s at organization %s",
                order_id, line.literature_id, organization_id,
            )
            continue
        if record.reserved_quantity < line.quantity:
            current_app.logger.warning(
                "release for order %s: literature %s at organization %s has %s reserved, releasing %s",
                order_id, line.literature_id, organization_id, record.reserved_quantity, line.quantity,
            )
        record.reserved_quantity = max(0, record.reserved_quantity - line.quantity)
        released.append(record)

    db.session.flush()
    return released


def commit(
    organization_id: int,
    lines: Iterable[StockLine],
    *,
    order_id: int | None = None,
    to_organization_id: int | None = None,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> list[InventoryTransaction]:
    """
    Ship reserved stock out: quantity -= qty and reserved_quantity -= qty,
    plus one OUTGOING transaction per line.

    The reservation must already exist (reserved_quantity >= qty).
    """
    merged = _merge_lines(lines)
    records = _load_records(organization_id, [line.literature_id for line in merged])

    for line in merged:
        record = records.get(line.literature_id)
        reserved = record.reserved_quantity if record else 0
        if reserved < line.quantity:
            raise InsufficientInventoryError(
                organization_id=organization_id,
                literature_id=line.literature_id,
                literature_title=_literature_title(line.literature_id),
                requested=line.quantity,
                available=reserved,
                message=(
                    f"Cannot ship literature {line.literature_id}: reserved {reserved}, "
                    f"required {line.quantity}"
                ),
            )

    transactions = []
    for line in merged:
        record = records[line.literature_id]
        record.quantity = record.quantity - line.quantity
        record.reserved_quantity = record.reserved_quantity - line.quantity

        transactions.append(_append_transaction(
            type=TRANSACTION_OUTGOING,
            from_organization_id=organization_id,
            to_organization_id=to_organization_id,
            literature_id=line.literature_id,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            total_amount_cents=line.unit_price_cents * line.quantity,
            order_id=order_id,
            notes=notes,
            created_by_user_id=actor_user_id,
        ))

    current_app.logger.info(
        "committed %s line(s) out of organization %s for order %s", len(merged), organization_id, order_id
    )
    return transactions


def receive_incoming(
    organization_id: int,
    literature_id: int,
    quantity: int,
    unit_price_cents: int | None = None,
    *,
    from_organization_id: int | None = None,
    order_id: int | None = None,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> InventoryTransaction:
    """
    Book stock arriving at an organization: quantity += qty (reserved untouched)
    plus one INCOMING transaction. Unit price defaults to the catalog price.
    """
    enforce_rules_receive(quantity, unit_price_cents)
    if unit_price_cents is None:
        unit_price_cents = get_literature(literature_id).price_cents

    record = _get_or_create_record(organization_id, literature_id)
    record.quantity = record.quantity + quantity

    return _append_transaction(
        type=TRANSACTION_INCOMING,
        from_organization_id=from_organization_id,
        to_organization_id=organization_id,
        literature_id=literature_id,
        quantity=quantity,
        unit_price_cents=unit_price_cents,
        total_amount_cents=unit_price_cents * quantity,
        order_id=order_id,
        notes=notes,
        created_by_user_id=actor_user_id,
    )


def adjust(
    organization_id: int,
    literature_id: int,
    quantity_change: int,
    reason: str,
    notes: str | None = None,
    *,
    actor_user_id: int | None = None,
    reverses_transaction_id: int | None = None,
) -> InventoryTransaction:
    """
    Apply a signed correction straight to quantity, outside the order flow.

    Fails with InsufficientInventoryError if the result would be negative or
    would drop below what is already reserved.
    """
    enforce_rules_adjustment(quantity_change, reason)
    literature = get_literature(literature_id)

    record = _get_or_create_record(organization_id, literature_id)
    new_quantity = record.quantity + quantity_change

    if new_quantity < 0:
        raise InsufficientInventoryError(
            organization_id=organization_id,
            literature_id=literature_id,
            literature_title=literature.title,
            requested=-quantity_change,
            available=record.quantity,
            message=(
                f"Adjustment would result in negative inventory for {literature.title}. "
                f"Current: {record.quantity}, change: {quantity_change}"
            ),
        )
    if new_quantity < record.reserved_quantity:
        raise InsufficientInventoryError(
            organization_id=organization_id,
            literature_id=literature_id,
            literature_title=literature.title,
            requested=-quantity_change,
            available=record.available_quantity,
            message=(
                f"Adjustment would drop {literature.title} below its reserved quantity. "
                f"Reserved: {record.reserved_quantity}, current: {record.quantity}, change: {quantity_change}"
            ),
        )

    record.quantity = new_quantity

    return _append_transaction(
        type=TRANSACTION_ADJUSTMENT,
        to_organization_id=organization_id,
        literature_id=literature_id,
        quantity=quantity_change,
        unit_price_cents=literature.price_cents,
        total_amount_cents=abs(quantity_change) * literature.price_cents,
        notes=f"{reason}: {notes}" if notes else reason,
        created_by_user_id=actor_user_id,
        reverses_transaction_id=reverses_transaction_id,
    )


# =============================================================================
# STANDALONE OPERATIONS (own unit of work)
# =============================================================================

def _require_member(actor: Actor, organization_id: int) -> None:
    if actor.is_admin or actor.belongs_to(organization_id):
        return
    raise PermissionDeniedError(
        f"User {actor.user_id} cannot change inventory of organization {organization_id}"
    )


def create_adjustment(
    actor: Actor,
    *,
    organization_id: int,
    literature_id: int,
    quantity_change: int,
    reason: str,
    notes: str | None = None,
) -> InventoryTransaction:
    """Manual stock correction by a member of the organization (or an admin)."""
    def _op():
        get_organization(organization_id)
        get_literature(literature_id, require_active=True)
        _require_member(actor, organization_id)

        tx = adjust(
            organization_id,
            literature_id,
            quantity_change,
            reason,
            notes,
            actor_user_id=actor.user_id,
        )
        current_app.logger.info(
            "adjustment %s: organization %s literature %s change %s by user %s",
            tx.id, organization_id, literature_id, quantity_change, actor.user_id,
        )
        return tx

    return run_in_unit_of_work(_op)


def create_adjustments(actor: Actor, lines: Iterable[AdjustmentLine]) -> list[InventoryTransaction]:
    """
    Apply several manual corrections as one all-or-nothing unit of work.

    Lines are applied in the given order, so two lines on the same stock row
    see each other's effect. Any failing line rolls back every line.
    """
    lines = list(lines)
    if not lines:
        raise ValidationError("At least one adjustment is required")

    def _op():
        for organization_id in sorted({line.organization_id for line in lines}):
            get_organization(organization_id)
            _require_member(actor, organization_id)
        for literature_id in sorted({line.literature_id for line in lines}):
            get_literature(literature_id, require_active=True)

        # Lock existing rows up front, in (organization_id, literature_id) order
        for organization_id, literature_id in sorted({(line.organization_id, line.literature_id) for line in lines}):
            _lock_record(organization_id, literature_id)

        transactions = []
        for line in lines:
            transactions.append(adjust(
                line.organization_id,
                line.literature_id,
                line.quantity_change,
                line.reason,
                line.notes,
                actor_user_id=actor.user_id,
            ))

        current_app.logger.info(
            "batch adjustment of %s line(s) by user %s: transactions %s",
            len(transactions), actor.user_id, [tx.id for tx in transactions],
        )
        return transactions

    return run_in_unit_of_work(_op)


def receive_stock(
    actor: Actor,
    *,
    organization_id: int,
    literature_id: int,
    quantity: int,
    unit_price_cents: int | None = None,
    from_organization_id: int | None = None,
    notes: str | None = None,
) -> InventoryTransaction:
    """Manual receipt of stock (external supplier or another organization)."""
    def _op():
        get_organization(organization_id)
        if from_organization_id is not None:
            get_organization(from_organization_id)
        get_literature(literature_id, require_active=True)
        _require_member(actor, organization_id)

        tx = receive_incoming(
            organization_id,
            literature_id,
            quantity,
            unit_price_cents,
            from_organization_id=from_organization_id,
            notes=notes,
            actor_user_id=actor.user_id,
        )
        current_app.logger.info(
            "receipt %s: organization %s literature %s quantity %s by user %s",
            tx.id, organization_id, literature_id, quantity, actor.user_id,
        )
        return tx

    return run_in_unit_of_work(_op)


def transfer_stock(
    actor: Actor,
    *,
    from_organization_id: int,
    to_organization_id: int,
    literature_id: int,
    quantity: int,
    notes: str | None = None,
) -> tuple[InventoryTransaction, InventoryTransaction]:
    """
    Move available stock straight from one organization to another, outside
    any order.

    The source must have available_quantity >= quantity; reserved stock is
    never moved. Writes OUTGOING at the source and INCOMING at the
    destination, both at the catalog price.

    Returns:
        (outgoing, incoming) transactions
    """
    if from_organization_id == to_organization_id:
        raise ValidationError("Source and destination organization must differ")
    if quantity is None or quantity <= 0:
        raise ValidationError("Quantity must be greater than 0")

    def _op():
        source = get_organization(from_organization_id, require_active=True)
        destination = get_organization(to_organization_id, require_active=True)
        literature = get_literature(literature_id, require_active=True)
        _require_member(actor, from_organization_id)

        records = {}
        for organization_id in sorted((from_organization_id, to_organization_id)):
            if organization_id == from_organization_id:
                records[organization_id] = _lock_record(organization_id, literature_id)
            else:
                records[organization_id] = _get_or_create_record(organization_id, literature_id)

        source_record = records[from_organization_id]
        available = source_record.available_quantity if source_record else 0
        if available < quantity:
            raise InsufficientInventoryError(
                organization_id=from_organization_id,
                literature_id=literature_id,
                literature_title=literature.title,
                requested=quantity,
                available=available,
            )

        source_record.quantity = source_record.quantity - quantity
        destination_record = records[to_organization_id]
        destination_record.quantity = destination_record.quantity + quantity

        note = notes or f"Transfer from {source.name} to {destination.name}"
        fields = dict(
            from_organization_id=from_organization_id,
            to_organization_id=to_organization_id,
            literature_id=literature_id,
            quantity=quantity,
            unit_price_cents=literature.price_cents,
            total_amount_cents=literature.price_cents * quantity,
            notes=note,
            created_by_user_id=actor.user_id,
        )
        outgoing = _append_transaction(type=TRANSACTION_OUTGOING, **fields)
        incoming = _append_transaction(type=TRANSACTION_INCOMING, **fields)

        current_app.logger.info(
            "transfer of literature %s x%s from organization %s to %s by user %s",
            literature_id, quantity, from_organization_id, to_organization_id, actor.user_id,
        )
        return outgoing, incoming

    return run_in_unit_of_work(_op)


def reverse_transaction(actor: Actor, transaction_id: int) -> InventoryTransaction:
    """
    Undo a manual ADJUSTMENT by appending the opposite ADJUSTMENT.

    Ledger rows are never deleted. Order-linked rows and other types are
    corrected through the order flow or a new adjustment instead.
    """
    def _op():
        original = db.session.get(InventoryTransaction, transaction_id)
        if original is None:
            raise NotFoundError("Transaction", transaction_id)
        if original.order_id is not None:
            raise ValidationError("Cannot reverse transaction linked to an order")
        if original.type != TRANSACTION_ADJUSTMENT:
            raise ValidationError(f"Cannot reverse {original.type} transaction")
        already = db.session.query(InventoryTransaction).filter_by(
            reverses_transaction_id=original.id
        ).first()
        if already is not None:
            raise ValidationError(f"Transaction {transaction_id} was already reversed by {already.id}")

        _require_member(actor, original.to_organization_id)

        return adjust(
            original.to_organization_id,
            original.literature_id,
            -original.quantity,
            f"Reversal of transaction {original.id}",
            original.notes,
            actor_user_id=actor.user_id,
            reverses_transaction_id=original.id,
        )

    return run_in_unit_of_work(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_inventory(organization_id: int, literature_id: int) -> InventoryRecord:
    """
    Current stock row. A pair that never had a stock event reads as zero
    (transient, unsaved record) rather than NotFound.
    """
    get_organization(organization_id)
    get_literature(literature_id)

    record = db.session.query(InventoryRecord).filter_by(
        organization_id=organization_id,
        literature_id=literature_id,
    ).first()
    if record is None:
        record = InventoryRecord(
            organization_id=organization_id,
            literature_id=literature_id,
            quantity=0,
            reserved_quantity=0,
        )
    return record


def list_inventory(*, organization_id: int | None = None, literature_id: int | None = None) -> list[InventoryRecord]:
    q = db.session.query(InventoryRecord)
    if organization_id is not None:
        q = q.filter(InventoryRecord.organization_id == organization_id)
    if literature_id is not None:
        q = q.filter(InventoryRecord.literature_id == literature_id)
    return q.order_by(InventoryRecord.organization_id, InventoryRecord.literature_id).all()


def get_low_stock(threshold: int | None = None, *, organization_id: int | None = None) -> list[InventoryRecord]:
    """Records whose physical quantity is at or below threshold, emptiest first."""
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 10)
    q = db.session.query(InventoryRecord).filter(InventoryRecord.quantity <= threshold)
    if organization_id is not None:
        q = q.filter(InventoryRecord.organization_id == organization_id)
    return q.order_by(InventoryRecord.quantity.asc(), InventoryRecord.id.asc()).all()


def get_inventory_statistics(*, organization_id: int | None = None, low_stock_threshold: int | None = None) -> dict:
    if low_stock_threshold is None:
        low_stock_threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 10)

    base = db.session.query(InventoryRecord)
    if organization_id is not None:
        base = base.filter(InventoryRecord.organization_id == organization_id)

    totals = db.session.query(
        func.count(InventoryRecord.id),
        func.coalesce(func.sum(InventoryRecord.quantity), 0),
        func.coalesce(func.sum(InventoryRecord.reserved_quantity), 0),
        func.coalesce(func.sum(InventoryRecord.quantity * Literature.price_cents), 0),
    ).join(Literature, Literature.id == InventoryRecord.literature_id)
    if organization_id is not None:
        totals = totals.filter(InventoryRecord.organization_id == organization_id)
    item_count, total_quantity, total_reserved, total_value_cents = totals.one()

    low_stock_count = base.filter(InventoryRecord.quantity <= low_stock_threshold).count()

    return {
        "organization_id": organization_id,
        "total_items": int(item_count or 0),
        "total_quantity": int(total_quantity or 0),
        "total_reserved": int(total_reserved or 0),
        "total_available": int(total_quantity or 0) - int(total_reserved or 0),
        "total_value_cents": int(total_value_cents or 0),
        "low_stock_threshold": low_stock_threshold,
        "low_stock_count": low_stock_count,
    }


def _ledger_balance(organization_id: int, literature_id: int) -> int:
    """quantity implied by the ledger: incoming - outgoing + adjustments."""
    def _sum(*criteria) -> int:
        total = db.session.query(func.coalesce(func.sum(InventoryTransaction.quantity), 0)).filter(
            InventoryTransaction.literature_id == literature_id,
            *criteria,
        ).scalar()
        return int(total or 0)

    incoming = _sum(
        InventoryTransaction.type == TRANSACTION_INCOMING,
        InventoryTransaction.to_organization_id == organization_id,
    )
    outgoing = _sum(
        InventoryTransaction.type == TRANSACTION_OUTGOING,
        InventoryTransaction.from_organization_id == organization_id,
    )
    adjusted = _sum(
        InventoryTransaction.type == TRANSACTION_ADJUSTMENT,
        InventoryTransaction.to_organization_id == organization_id,
    )
    return incoming - outgoing + adjusted


def audit_inventory(*, organization_id: int | None = None) -> dict:
    """
    Check every stock row against its invariants and against the ledger.

    Returns {"checked": n, "problems": [...]}; each problem names the record,
    the kind of drift and the figures involved. Nothing is corrected.
    """
    problems = []
    records = list_inventory(organization_id=organization_id)

    for record in records:
        where = {"organization_id": record.organization_id, "literature_id": record.literature_id}

        if record.quantity < 0:
            problems.append({**where, "problem": "negative_quantity", "quantity": record.quantity})
        if record.reserved_quantity < 0 or record.reserved_quantity > record.quantity:
            problems.append({
                **where,
                "problem": "reserved_out_of_range",
                "quantity": record.quantity,
                "reserved_quantity": record.reserved_quantity,
            })

        expected = _ledger_balance(record.organization_id, record.literature_id)
        if expected != record.quantity:
            problems.append({
                **where,
                "problem": "ledger_mismatch",
                "quantity": record.quantity,
                "ledger_quantity": expected,
            })

    if problems:
        current_app.logger.warning("inventory audit found %s problem(s)", len(problems))
    return {"checked": len(records), "problems": problems}
