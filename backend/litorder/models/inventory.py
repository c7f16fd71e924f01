from __future__ import annotations

from ..extensions import db
from litorder.money import format_amount
from litorder.time_utils import to_utc_z, utcnow


TRANSACTION_INCOMING = "INCOMING"
TRANSACTION_OUTGOING = "OUTGOING"
TRANSACTION_ADJUSTMENT = "ADJUSTMENT"

TRANSACTION_TYPES = (TRANSACTION_INCOMING, TRANSACTION_OUTGOING, TRANSACTION_ADJUSTMENT)


class InventoryRecord(db.Model):
    """
    Stock of one literature item at one organization.

    INVARIANTS (enforced by inventory_service and backed by CHECK constraints):
    - quantity >= 0
    - 0 <= reserved_quantity <= quantity
    - available_quantity = quantity - reserved_quantity (derived, never stored)

    Rows are created lazily on the first stock event for a pair and are never
    deleted, only zeroed. Only inventory_service writes quantity/reserved_quantity.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "literature_id", name="uq_inventory_org_literature"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        db.CheckConstraint("reserved_quantity >= 0", name="ck_inventory_reserved_non_negative"),
        db.CheckConstraint("reserved_quantity <= quantity", name="ck_inventory_reserved_le_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    literature_id = db.Column(db.Integer, db.ForeignKey("literature.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    organization = db.relationship("Organization", backref=db.backref("inventory_records", lazy=True))
    literature = db.relationship("Literature", backref=db.backref("inventory_records", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_quantity(self) -> int:
        return (self.quantity or 0) - (self.reserved_quantity or 0)

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord org={self.organization_id} literature={self.literature_id} "
            f"qty={self.quantity} reserved={self.reserved_quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "literature_id": self.literature_id,
            "quantity": self.quantity,
            "reserved_quantity": self.reserved_quantity,
            "available_quantity": self.available_quantity,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryTransaction(db.Model):
    """
    Append-only ledger row for one stock movement.

    Quantity convention:
    - INCOMING: positive, booked at to_organization_id
    - OUTGOING: positive, leaves from_organization_id (towards to_organization_id, if any)
    - ADJUSTMENT: signed, booked at to_organization_id

    Rows are written in the same DB transaction as the InventoryRecord change
    they describe and are never updated or deleted; corrections are new rows.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.Index("ix_invtx_type_created", "type", "created_at"),
        db.Index("ix_invtx_literature_created", "literature_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    type = db.Column(db.String(16), nullable=False, index=True)

    from_organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)
    to_organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)
    literature_id = db.Column(db.Integer, db.ForeignKey("literature.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    # ADJUSTMENT reversals point at the row they undo
    reverses_transaction_id = db.Column(db.Integer, db.ForeignKey("inventory_transactions.id"), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
    )

    from_organization = db.relationship("Organization", foreign_keys=[from_organization_id])
    to_organization = db.relationship("Organization", foreign_keys=[to_organization_id])
    literature = db.relationship("Literature")
    order = db.relationship("Order", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "from_organization_id": self.from_organization_id,
            "to_organization_id": self.to_organization_id,
            "literature_id": self.literature_id,
            "literature_title": self.literature.title if self.literature else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_price": format_amount(self.unit_price_cents),
            "total_amount_cents": self.total_amount_cents,
            "total_amount": format_amount(self.total_amount_cents),
            "order_id": self.order_id,
            "reverses_transaction_id": self.reverses_transaction_id,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
