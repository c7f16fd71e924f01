# Overview: Acting user context supplied by the (external) auth layer.

from __future__ import annotations

from dataclasses import dataclass


ROLE_GROUP = "GROUP"
ROLE_LOCAL_SUBCOMMITTEE = "LOCAL_SUBCOMMITTEE"
ROLE_LOCALITY = "LOCALITY"
ROLE_REGION = "REGION"
ROLE_ADMIN = "ADMIN"

VALID_ROLES = {ROLE_GROUP, ROLE_LOCAL_SUBCOMMITTEE, ROLE_LOCALITY, ROLE_REGION, ROLE_ADMIN}


@dataclass(frozen=True)
class Actor:
    """
    Who is calling.

    The engine never authenticates; it trusts this triple and only uses it
    for role/organization checks. ADMIN bypasses the requester/receiver
    checks but never the order status graph.
    """
    user_id: int
    role: str
    organization_id: int | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def belongs_to(self, organization_id: int | None) -> bool:
        return organization_id is not None and self.organization_id == organization_id
