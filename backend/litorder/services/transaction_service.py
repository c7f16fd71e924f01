# Overview: Read-only queries and reports over the inventory transaction ledger.

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import func, or_

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryTransaction, Literature
from ..models.inventory import (
    TRANSACTION_ADJUSTMENT,
    TRANSACTION_INCOMING,
    TRANSACTION_OUTGOING,
    TRANSACTION_TYPES,
)
from ..money import format_amount
from ..time_utils import day_key


@dataclass(frozen=True)
class TransactionFilters:
    type: str | None = None
    organization_id: int | None = None        # either side
    from_organization_id: int | None = None
    to_organization_id: int | None = None
    literature_id: int | None = None
    order_id: int | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None

    def __post_init__(self):
        if self.type is not None and self.type not in TRANSACTION_TYPES:
            raise ValidationError(
                f"Invalid transaction type '{self.type}'. Must be one of: {', '.join(TRANSACTION_TYPES)}"
            )
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValidationError("date_from must not be after date_to")


def _filtered(query, filters: TransactionFilters | None):
    if filters is None:
        return query
    T = InventoryTransaction
    if filters.type is not None:
        query = query.filter(T.type == filters.type)
    if filters.organization_id is not None:
        query = query.filter(or_(
            T.from_organization_id == filters.organization_id,
            T.to_organization_id == filters.organization_id,
        ))
    if filters.from_organization_id is not None:
        query = query.filter(T.from_organization_id == filters.from_organization_id)
    if filters.to_organization_id is not None:
        query = query.filter(T.to_organization_id == filters.to_organization_id)
    if filters.literature_id is not None:
        query = query.filter(T.literature_id == filters.literature_id)
    if filters.order_id is not None:
        query = query.filter(T.order_id == filters.order_id)
    if filters.date_from is not None:
        query = query.filter(T.created_at >= filters.date_from)
    if filters.date_to is not None:
        query = query.filter(T.created_at <= filters.date_to)
    return query


def get_transaction(transaction_id: int) -> InventoryTransaction:
    tx = db.session.get(InventoryTransaction, transaction_id)
    if tx is None:
        raise NotFoundError("Transaction", transaction_id)
    return tx


def list_transactions(
    filters: TransactionFilters | None = None,
    *,
    page: int = 1,
    per_page: int | None = None,
) -> dict:
    """Newest first. Returns {"transactions": [...], "total", "page", "per_page"}."""
    default_size = current_app.config.get("DEFAULT_PAGE_SIZE", 20)
    max_size = current_app.config.get("MAX_PAGE_SIZE", 100)
    per_page = max(1, min(per_page or default_size, max_size))
    page = max(1, page or 1)

    q = _filtered(db.session.query(InventoryTransaction), filters)
    total = q.count()
    rows = (
        q.order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {"transactions": rows, "total": total, "page": page, "per_page": per_page}


def get_statistics(filters: TransactionFilters | None = None) -> dict:
    """
    Totals over the filtered ledger: overall count and amount, per-type
    count/quantity/amount, and the ten literature items with the largest amount.
    """
    T = InventoryTransaction

    count, amount = _filtered(
        db.session.query(func.count(T.id), func.coalesce(func.sum(T.total_amount_cents), 0)),
        filters,
    ).one()

    by_type = {
        tx_type: {"count": 0, "quantity": 0, "total_amount_cents": 0, "total_amount": format_amount(0)}
        for tx_type in TRANSACTION_TYPES
    }
    type_rows = _filtered(
        db.session.query(
            T.type,
            func.count(T.id),
            func.coalesce(func.sum(T.quantity), 0),
            func.coalesce(func.sum(T.total_amount_cents), 0),
        ),
        filters,
    ).group_by(T.type).all()
    for tx_type, n, qty, cents in type_rows:
        by_type[tx_type] = {
            "count": int(n),
            "quantity": int(qty or 0),
            "total_amount_cents": int(cents or 0),
            "total_amount": format_amount(int(cents or 0)),
        }

    amount_sum = func.coalesce(func.sum(T.total_amount_cents), 0)
    top_rows = _filtered(
        db.session.query(
            T.literature_id,
            Literature.title,
            func.count(T.id),
            func.coalesce(func.sum(T.quantity), 0),
            amount_sum,
        ).join(Literature, Literature.id == T.literature_id),
        filters,
    ).group_by(T.literature_id, Literature.title).order_by(amount_sum.desc(), T.literature_id).limit(10).all()

    top_literature = [
        {
            "literature_id": literature_id,
            "title": title,
            "count": int(n),
            "quantity": int(qty or 0),
            "total_amount_cents": int(cents or 0),
            "total_amount": format_amount(int(cents or 0)),
        }
        for literature_id, title, n, qty, cents in top_rows
    ]

    return {
        "total_transactions": int(count or 0),
        "total_amount_cents": int(amount or 0),
        "total_amount": format_amount(int(amount or 0)),
        "by_type": by_type,
        "top_literature": top_literature,
    }


def _empty_bucket(day: str) -> dict:
    return {
        "date": day,
        "incoming_quantity": 0,
        "outgoing_quantity": 0,
        "adjustment_quantity": 0,
        "incoming_amount_cents": 0,
        "outgoing_amount_cents": 0,
        "adjustment_amount_cents": 0,
        "transaction_count": 0,
    }


def get_movement_report(filters: TransactionFilters | None = None) -> dict:
    """
    Stock movement over the filtered ledger.

    Returns {"transactions": [...], "summary": [...]}: the matching rows
    newest first, and per-day totals (newest day first). Adjustment
    quantities keep their sign; amounts are always non-negative. Days are
    bucketed in Python so the report reads the same on every backend.
    """
    rows = (
        _filtered(db.session.query(InventoryTransaction), filters)
        .order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc())
        .all()
    )

    buckets: OrderedDict[str, dict] = OrderedDict()
    for tx in rows:
        day = day_key(tx.created_at)
        bucket = buckets.get(day)
        if bucket is None:
            bucket = buckets[day] = _empty_bucket(day)

        if tx.type == TRANSACTION_INCOMING:
            bucket["incoming_quantity"] += tx.quantity
            bucket["incoming_amount_cents"] += tx.total_amount_cents
        elif tx.type == TRANSACTION_OUTGOING:
            bucket["outgoing_quantity"] += tx.quantity
            bucket["outgoing_amount_cents"] += tx.total_amount_cents
        elif tx.type == TRANSACTION_ADJUSTMENT:
            bucket["adjustment_quantity"] += tx.quantity
            bucket["adjustment_amount_cents"] += tx.total_amount_cents
        bucket["transaction_count"] += 1

    summary = sorted(buckets.values(), key=lambda b: b["date"], reverse=True)
    for bucket in summary:
        for kind in ("incoming", "outgoing", "adjustment"):
            bucket[f"{kind}_amount"] = format_amount(bucket[f"{kind}_amount_cents"])
    return {"transactions": rows, "summary": summary}
