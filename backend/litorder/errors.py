# Overview: Typed business errors raised by the order and inventory services.

"""
Every business-rule violation surfaces as one of these types; none of them is
ever corrected silently. Routes translate them with ``status_code`` and
``to_dict()``.

Infrastructure failures (SQLAlchemyError and friends) are deliberately NOT part
of this hierarchy: they propagate unchanged after the unit of work is rolled back.
"""

from __future__ import annotations


class OrderEngineError(Exception):
    """Base class for business-rule failures."""

    status_code = 400
    code = "error"

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code}


class ValidationError(OrderEngineError, ValueError):
    """400-level input problem (missing field, non-positive quantity, empty items)."""

    code = "validation_error"


class NotFoundError(OrderEngineError):
    """Referenced order, literature, organization or transaction is absent."""

    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id=None):
        self.entity = entity
        self.entity_id = entity_id
        if entity_id is None:
            super().__init__(f"{entity} not found")
        else:
            super().__init__(f"{entity} {entity_id} not found")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"entity": self.entity, "id": self.entity_id})
        return data


class InvalidTransitionError(OrderEngineError):
    """Edge is not in the status graph, or the actor may not trigger it."""

    code = "invalid_transition"

    def __init__(self, message: str, *, from_status: str | None = None, to_status: str | None = None):
        super().__init__(message)
        self.from_status = from_status
        self.to_status = to_status

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"from_status": self.from_status, "to_status": self.to_status})
        return data


class OrderLockedError(OrderEngineError):
    """Item edit attempted while the order is locked or past APPROVED."""

    status_code = 409
    code = "order_locked"

    def __init__(self, message: str, *, order_id: int | None = None):
        super().__init__(message)
        self.order_id = order_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["order_id"] = self.order_id
        return data


class InsufficientInventoryError(OrderEngineError):
    """A reserve, commit or adjustment would break the non-negative balance rule."""

    status_code = 409
    code = "insufficient_inventory"

    def __init__(
        self,
        *,
        organization_id: int,
        literature_id: int,
        literature_title: str | None,
        requested: int,
        available: int,
        message: str | None = None,
    ):
        self.organization_id = organization_id
        self.literature_id = literature_id
        self.literature_title = literature_title
        self.requested = requested
        self.available = available
        self.shortfall = max(requested - available, 0)
        label = literature_title or f"literature {literature_id}"
        super().__init__(
            message
            or f"Insufficient quantity for {label}. "
               f"Available: {available}, requested: {requested}, short by {self.shortfall}"
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "organization_id": self.organization_id,
            "literature_id": self.literature_id,
            "literature_title": self.literature_title,
            "requested": self.requested,
            "available": self.available,
            "shortfall": self.shortfall,
        })
        return data


class ConcurrencyConflictError(OrderEngineError):
    """Version mismatch or stale caller view; retry with fresh state."""

    status_code = 409
    code = "concurrency_conflict"

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retryable"] = True
        return data


class PermissionDeniedError(OrderEngineError):
    """Actor is not a member of the organization the operation targets."""

    status_code = 403
    code = "permission_denied"
