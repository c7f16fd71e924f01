from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .errors import ValidationError
from .money import MAX_PRICE_CENTS, decimal_to_cents

__all__ = [
    "ValidationError",
    "PayloadPolicy",
    "validate_payload",
    "coerce_int",
    "coerce_optional_int",
    "coerce_text",
    "coerce_price_cents",
    "normalize_item_lines",
    "enforce_rules_adjustment",
    "enforce_rules_receive",
]


@dataclass(frozen=True)
class PayloadPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to send (security boundary)
    - required: fields that must be present
    """
    writable_fields: set[str]
    required: set[str] = field(default_factory=set)


def validate_payload(payload: Any, policy: PayloadPolicy) -> dict:
    """
    Reject non-object payloads, unknown fields and missing required fields.
    Returns a shallow copy restricted to writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    missing = sorted(f for f in policy.required if payload.get(f) is None)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")

    return dict(payload)


def coerce_int(value: Any, name: str) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def coerce_optional_int(value: Any, name: str) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return coerce_int(value, name)


def coerce_text(value: Any, name: str, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{name} exceeds max length {max_length}")
    return text or None


def coerce_price_cents(value: Any, name: str = "unit_price") -> int:
    """Accepts a decimal amount ("25.99") and returns non-negative cents."""
    try:
        cents = decimal_to_cents(value)
    except ValueError:
        raise ValidationError(f"{name} must be a number")
    if cents < 0:
        raise ValidationError(f"{name} must be >= 0")
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_PRICE_CENTS / 100:,.2f}")
    return cents


def normalize_item_lines(items: Any) -> list[tuple[int, int]]:
    """
    Validate an order item list and return [(literature_id, quantity), ...]
    in request order.

    Rules:
    - must be a non-empty list
    - every entry needs literature_id and quantity > 0
    - a literature may appear only once per order
    """
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("Order must contain at least one item")

    lines: list[tuple[int, int]] = []
    seen: set[int] = set()
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        if item.get("literature_id") is None:
            raise ValidationError(f"items[{idx}].literature_id is required")
        if item.get("quantity") is None:
            raise ValidationError(f"items[{idx}].quantity is required")
        literature_id = coerce_int(item["literature_id"], f"items[{idx}].literature_id")
        quantity = coerce_int(item["quantity"], f"items[{idx}].quantity")
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than 0")
        if literature_id in seen:
            raise ValidationError(f"Literature {literature_id} appears more than once")
        seen.add(literature_id)
        lines.append((literature_id, quantity))
    return lines


def enforce_rules_adjustment(quantity_change: int, reason: str | None) -> None:
    # ADJUSTMENT requires a signed, non-zero change and a reason
    if quantity_change == 0:
        raise ValidationError("quantity_change must be non-zero")
    if not reason:
        raise ValidationError("reason is required for adjustments")


def enforce_rules_receive(quantity: int, unit_price_cents: int | None) -> None:
    if quantity <= 0:
        raise ValidationError("quantity must be > 0 for INCOMING")
    if unit_price_cents is not None and unit_price_cents < 0:
        raise ValidationError("unit_price must be >= 0")
