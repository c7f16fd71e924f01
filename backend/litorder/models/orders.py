from __future__ import annotations

from ..extensions import db
from litorder.money import format_amount
from litorder.time_utils import to_utc_z, utcnow
from litorder.services.order_transitions import ORDER_STATUS_DRAFT, allowed_targets, is_editable


class Order(db.Model):
    """
    Literature order: header + line items.

    PARTIES:
    - from_organization (requester): places the order; nullable for top-level
      supply orders, in which case the creating user acts as requester
    - to_organization (receiver): approves, assembles and ships from its stock

    LIFECYCLE: see services/order_transitions.py. Editability is derived from
    status and the explicit lock (locked_at/locked_by_user_id); it is never stored.

    total_amount_cents always equals sum(item.total_price_cents).
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_from_status_created", "from_organization_id", "status", "created_at"),
        db.Index("ix_orders_to_status_created", "to_organization_id", "status", "created_at"),
        db.CheckConstraint("total_amount_cents >= 0", name="ck_orders_total_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "ORD-20261018-0001")
    order_number = db.Column(db.String(32), nullable=False)

    from_organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)
    to_organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_DRAFT, index=True)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    # Explicit edit lock (receiver-controlled)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    locked_by_user_id = db.Column(db.Integer, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    status_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    from_organization = db.relationship("Organization", foreign_keys=[from_organization_id])
    to_organization = db.relationship("Organization", foreign_keys=[to_organization_id])
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy=True,
    )
    events = db.relationship(
        "OrderEvent",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderEvent.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_editable(self) -> bool:
        return is_editable(self)

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self, *, include_items: bool = True, include_events: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "from_organization_id": self.from_organization_id,
            "to_organization_id": self.to_organization_id,
            "status": self.status,
            "allowed_transitions": allowed_targets(self.status),
            "total_amount_cents": self.total_amount_cents,
            "total_amount": format_amount(self.total_amount_cents),
            "notes": self.notes,
            "is_editable": self.is_editable,
            "is_locked": self.is_locked,
            "locked_at": to_utc_z(self.locked_at) if self.locked_at else None,
            "locked_by_user_id": self.locked_by_user_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "status_changed_at": to_utc_z(self.status_changed_at) if self.status_changed_at else None,
            "version_id": self.version_id,
            "item_count": len(self.items),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        if include_events:
            data["events"] = [event.to_dict() for event in self.events]
        return data


class OrderItem(db.Model):
    """
    Line of an order.

    unit_price_cents is captured from Literature.price_cents when the line is
    created and frozen afterwards; total_price_cents = quantity * unit_price_cents.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.UniqueConstraint("order_id", "literature_id", name="uq_order_items_order_literature"),
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    literature_id = db.Column(db.Integer, db.ForeignKey("literature.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    order = db.relationship("Order", back_populates="items")
    literature = db.relationship("Literature")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "literature_id": self.literature_id,
            "literature_title": self.literature.title if self.literature else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_price": format_amount(self.unit_price_cents),
            "total_price_cents": self.total_price_cents,
            "total_price": format_amount(self.total_price_cents),
        }


class OrderEvent(db.Model):
    """
    Append-only audit trail for an order (creation, status changes, locks, item edits).

    Written in the same DB transaction as the change it records. Status events
    also drive retry idempotence in order_service.transition_order.
    """
    __tablename__ = "order_events"
    __table_args__ = (
        db.Index("ix_order_events_order_type", "order_id", "event_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # e.g. order.created, order.status_changed, order.locked, order.unlocked, order.items_updated
    event_type = db.Column(db.String(64), nullable=False)

    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=True)

    actor_user_id = db.Column(db.Integer, nullable=True)
    actor_organization_id = db.Column(db.Integer, nullable=True)
    actor_role = db.Column(db.String(32), nullable=True)

    note = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    order = db.relationship("Order", back_populates="events")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "event_type": self.event_type,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_user_id": self.actor_user_id,
            "actor_organization_id": self.actor_organization_id,
            "actor_role": self.actor_role,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class OrderSequence(db.Model):
    """
    Atomic per-day order number sequences.

    WHY: Prevent race conditions when two orders are created in the same day.
    """
    __tablename__ = "order_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", name="uq_order_sequences_prefix"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
