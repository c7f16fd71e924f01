from __future__ import annotations

from ..extensions import db
from litorder.money import format_amount
from litorder.time_utils import to_utc_z


class Literature(db.Model):
    """
    Catalog item.

    Price edits never touch existing orders: OrderItem captures unit_price_cents
    when the line is created.
    """
    __tablename__ = "literature"
    __table_args__ = (
        db.CheckConstraint("price_cents >= 0", name="ck_literature_price_non_negative"),
        db.Index("ix_literature_category_active", "category", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(64), nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Literature id={self.id} title={self.title!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "price_cents": self.price_cents,
            "price": format_amount(self.price_cents),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
