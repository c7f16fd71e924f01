from __future__ import annotations

from ..extensions import db
from litorder.time_utils import to_utc_z


ORG_TYPE_GROUP = "GROUP"
ORG_TYPE_LOCAL_SUBCOMMITTEE = "LOCAL_SUBCOMMITTEE"
ORG_TYPE_LOCALITY = "LOCALITY"
ORG_TYPE_REGION = "REGION"

ORGANIZATION_TYPES = (
    ORG_TYPE_GROUP,
    ORG_TYPE_LOCAL_SUBCOMMITTEE,
    ORG_TYPE_LOCALITY,
    ORG_TYPE_REGION,
)


class Organization(db.Model):
    """
    Node in the region -> locality -> (local subcommittee) -> group hierarchy.

    Organizations send and receive orders and hold inventory. Every non-region
    organization is expected to have a parent one level up; the order engine
    relies on that for permission checks but does not enforce it.
    """
    __tablename__ = "organizations"
    __table_args__ = (
        db.Index("ix_organizations_type_active", "type", "is_active"),
        db.CheckConstraint(
            "type IN (" + ", ".join(f"'{t}'" for t in ORGANIZATION_TYPES) + ")",
            name="ck_organizations_type",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    type = db.Column(db.String(32), nullable=False, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    parent = db.relationship("Organization", remote_side=[id], backref=db.backref("children", lazy=True))

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name!r} type={self.type}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "parent_id": self.parent_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
