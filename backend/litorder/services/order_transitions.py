# Overview: Declarative order status graph with role gates and inventory effects.

"""
Order lifecycle (status graph)

================================================================================
                 +--------------------------- REJECTED <---------+
                 |                              ^   ^            |
    DRAFT ---> PENDING ---> APPROVED <---> IN_ASSEMBLY ---> SHIPPED ---> DELIVERED ---> COMPLETED
================================================================================

The graph is data, not branching code: TRANSITIONS maps each status to the
edges leaving it. Each edge names the party allowed to trigger it and the
inventory effect that InventoryLedger applies when the edge is taken.

RULES:
1. Only listed edges exist. Self-loops are not listed, so they are invalid.
2. COMPLETED and REJECTED are terminal (no outgoing edges).
3. ADMIN bypasses the party check, never the graph.

Nothing in this module touches the database.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ValidationError


ORDER_STATUS_DRAFT = "DRAFT"
ORDER_STATUS_PENDING = "PENDING"
ORDER_STATUS_APPROVED = "APPROVED"
ORDER_STATUS_IN_ASSEMBLY = "IN_ASSEMBLY"
ORDER_STATUS_SHIPPED = "SHIPPED"
ORDER_STATUS_DELIVERED = "DELIVERED"
ORDER_STATUS_COMPLETED = "COMPLETED"
ORDER_STATUS_REJECTED = "REJECTED"

ORDER_STATUSES = (
    ORDER_STATUS_DRAFT,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_APPROVED,
    ORDER_STATUS_IN_ASSEMBLY,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_REJECTED,
)

TERMINAL_STATUSES = frozenset({ORDER_STATUS_COMPLETED, ORDER_STATUS_REJECTED})

# Structural editability; an explicit lock overrides it (see is_editable)
EDITABLE_STATUSES = frozenset({ORDER_STATUS_DRAFT, ORDER_STATUS_PENDING, ORDER_STATUS_APPROVED})

# Statuses in which the receiver's stock carries a reservation for the order
RESERVED_STATUSES = frozenset({ORDER_STATUS_APPROVED, ORDER_STATUS_IN_ASSEMBLY})

# Who may trigger an edge
PARTY_REQUESTER = "REQUESTER"    # member of from_organization
PARTY_RECEIVER = "RECEIVER"      # member of to_organization (the fulfilling side)
PARTY_EITHER = "EITHER"

# What the ledger does when an edge is taken
EFFECT_NONE = "NONE"
EFFECT_RESERVE = "RESERVE"       # receiver: reserved += qty
EFFECT_RELEASE = "RELEASE"       # receiver: reserved -= qty
EFFECT_COMMIT = "COMMIT"         # receiver: quantity -= qty, reserved -= qty, OUTGOING rows
EFFECT_RECEIVE = "RECEIVE"       # requester: quantity += qty, INCOMING rows (configurable)


@dataclass(frozen=True)
class Edge:
    to_status: str
    party: str
    effect: str = EFFECT_NONE


TRANSITIONS: dict[str, tuple[Edge, ...]] = {
    ORDER_STATUS_DRAFT: (
        Edge(ORDER_STATUS_PENDING, PARTY_REQUESTER),
        Edge(ORDER_STATUS_REJECTED, PARTY_EITHER),
    ),
    ORDER_STATUS_PENDING: (
        Edge(ORDER_STATUS_APPROVED, PARTY_RECEIVER, EFFECT_RESERVE),
        Edge(ORDER_STATUS_REJECTED, PARTY_RECEIVER),
    ),
    ORDER_STATUS_APPROVED: (
        Edge(ORDER_STATUS_IN_ASSEMBLY, PARTY_RECEIVER),
        Edge(ORDER_STATUS_REJECTED, PARTY_RECEIVER, EFFECT_RELEASE),
    ),
    ORDER_STATUS_IN_ASSEMBLY: (
        Edge(ORDER_STATUS_SHIPPED, PARTY_RECEIVER, EFFECT_COMMIT),
        Edge(ORDER_STATUS_APPROVED, PARTY_RECEIVER),
    ),
    ORDER_STATUS_SHIPPED: (
        Edge(ORDER_STATUS_DELIVERED, PARTY_REQUESTER, EFFECT_RECEIVE),
    ),
    ORDER_STATUS_DELIVERED: (
        Edge(ORDER_STATUS_COMPLETED, PARTY_REQUESTER),
    ),
    ORDER_STATUS_COMPLETED: (),
    ORDER_STATUS_REJECTED: (),
}


def validate_status(status: str) -> None:
    """Reject values that are not order statuses at all."""
    if status not in TRANSITIONS:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(ORDER_STATUSES)}"
        )


def find_edge(from_status: str, to_status: str) -> Edge | None:
    for edge in TRANSITIONS.get(from_status, ()):
        if edge.to_status == to_status:
            return edge
    return None


def can_transition(from_status: str, to_status: str) -> bool:
    return find_edge(from_status, to_status) is not None


def allowed_targets(from_status: str) -> list[str]:
    return [edge.to_status for edge in TRANSITIONS.get(from_status, ())]


def party_allows(party: str, *, is_requester: bool, is_receiver: bool) -> bool:
    if party == PARTY_REQUESTER:
        return is_requester
    if party == PARTY_RECEIVER:
        return is_receiver
    if party == PARTY_EITHER:
        return is_requester or is_receiver
    return False


def is_editable(order) -> bool:
    """
    Items may change only while no explicit lock is held and the order has
    not gone into assembly. Computed on read; never stored.
    """
    return order.locked_at is None and order.status in EDITABLE_STATUSES
