# Overview: Read-only lookups of organizations and literature used by the engine.

from __future__ import annotations

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Literature, Organization
from ..models.organizations import (
    ORG_TYPE_GROUP,
    ORG_TYPE_LOCAL_SUBCOMMITTEE,
    ORG_TYPE_LOCALITY,
    ORG_TYPE_REGION,
)


# Which organization types an organization of a given type may order from
ORDERING_HIERARCHY = {
    ORG_TYPE_GROUP: {ORG_TYPE_LOCALITY, ORG_TYPE_REGION},
    ORG_TYPE_LOCAL_SUBCOMMITTEE: {ORG_TYPE_LOCALITY, ORG_TYPE_REGION},
    ORG_TYPE_LOCALITY: {ORG_TYPE_REGION},
    ORG_TYPE_REGION: {ORG_TYPE_REGION},
}


def get_organization(organization_id: int, *, require_active: bool = False) -> Organization:
    org = db.session.get(Organization, organization_id)
    if org is None:
        raise NotFoundError("Organization", organization_id)
    if require_active and not org.is_active:
        raise ValidationError(f"Organization {organization_id} is inactive")
    return org


def get_literature(literature_id: int, *, require_active: bool = False) -> Literature:
    literature = db.session.get(Literature, literature_id)
    if literature is None:
        raise NotFoundError("Literature", literature_id)
    if require_active and not literature.is_active:
        raise ValidationError(f"Literature {literature_id} is inactive")
    return literature


def get_literature_map(literature_ids, *, require_active: bool = False) -> dict[int, Literature]:
    """Load several literature rows at once; every id must exist."""
    ids = set(literature_ids)
    if not ids:
        return {}
    rows = db.session.query(Literature).filter(Literature.id.in_(ids)).all()
    found = {row.id: row for row in rows}
    for literature_id in sorted(ids):
        if literature_id not in found:
            raise NotFoundError("Literature", literature_id)
        if require_active and not found[literature_id].is_active:
            raise ValidationError(f"Literature {literature_id} is inactive")
    return found


def validate_order_hierarchy(from_org: Organization, to_org: Organization) -> None:
    """
    Groups and local subcommittees order from localities or regions,
    localities from regions, and regions from other regions.
    """
    allowed = ORDERING_HIERARCHY.get(from_org.type, set())
    if to_org.type not in allowed:
        raise ValidationError(f"{from_org.type} cannot order from {to_org.type}")
