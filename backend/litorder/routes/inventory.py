# backend/litorder/routes/inventory.py
"""
Inventory routes.

All routes require an actor. Adjustments, receipts and transfers require the
actor to belong to the organization whose stock changes (the source, for a
transfer) or be ADMIN; reads are open to any actor.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor, require_admin
from ..errors import OrderEngineError
from ..extensions import db
from ..services import inventory_service
from ..validation import (
    PayloadPolicy,
    ValidationError,
    coerce_int,
    coerce_optional_int,
    coerce_price_cents,
    coerce_text,
    validate_payload,
)


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

INVENTORY_ADJUST_POLICY = PayloadPolicy(
    writable_fields={"organization_id", "literature_id", "quantity_change", "reason", "notes"},
    required={"organization_id", "literature_id", "quantity_change", "reason"},
)

INVENTORY_RECEIVE_POLICY = PayloadPolicy(
    writable_fields={"organization_id", "literature_id", "quantity", "unit_price", "from_organization_id", "notes"},
    required={"organization_id", "literature_id", "quantity"},
)

INVENTORY_BULK_ADJUST_POLICY = PayloadPolicy(writable_fields={"adjustments"}, required={"adjustments"})

INVENTORY_TRANSFER_POLICY = PayloadPolicy(
    writable_fields={"from_organization_id", "to_organization_id", "literature_id", "quantity", "notes"},
    required={"from_organization_id", "to_organization_id", "literature_id", "quantity"},
)


def _error_response(e: OrderEngineError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


def _unexpected(action: str):
    db.session.rollback()
    current_app.logger.exception("Unexpected error while %s", action)
    return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("")
@require_actor
def list_inventory_route():
    try:
        records = inventory_service.list_inventory(
            organization_id=coerce_optional_int(request.args.get("organization_id"), "organization_id"),
            literature_id=coerce_optional_int(request.args.get("literature_id"), "literature_id"),
        )
        return jsonify({"inventory": [r.to_dict() for r in records], "total": len(records)}), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("listing inventory")


@inventory_bp.get("/low-stock")
@require_actor
def low_stock_route():
    try:
        records = inventory_service.get_low_stock(
            coerce_optional_int(request.args.get("threshold"), "threshold"),
            organization_id=coerce_optional_int(request.args.get("organization_id"), "organization_id"),
        )
        return jsonify({"inventory": [r.to_dict() for r in records], "total": len(records)}), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("listing low stock")


@inventory_bp.get("/statistics")
@require_actor
def inventory_statistics_route():
    try:
        stats = inventory_service.get_inventory_statistics(
            organization_id=coerce_optional_int(request.args.get("organization_id"), "organization_id"),
            low_stock_threshold=coerce_optional_int(request.args.get("threshold"), "threshold"),
        )
        return jsonify(stats), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("computing inventory statistics")


@inventory_bp.get("/audit")
@require_actor
@require_admin
def inventory_audit_route():
    """Invariant and ledger reconciliation report (ADMIN only)."""
    try:
        report = inventory_service.audit_inventory(
            organization_id=coerce_optional_int(request.args.get("organization_id"), "organization_id"),
        )
        return jsonify(report), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("auditing inventory")


@inventory_bp.get("/<int:organization_id>/<int:literature_id>")
@require_actor
def get_inventory_route(organization_id: int, literature_id: int):
    try:
        record = inventory_service.get_inventory(organization_id, literature_id)
        return jsonify(record.to_dict()), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("loading inventory")


@inventory_bp.post("/adjust")
@require_actor
def adjust_inventory_route():
    """
    Manual correction of physical stock.

    Request body:
    {
        "organization_id": int,
        "literature_id": int,
        "quantity_change": int (signed, non-zero),
        "reason": str,
        "notes": str (optional)
    }

    Returns 409 with the shortfall if stock would go negative or below the
    reserved quantity.
    """
    try:
        patch = validate_payload(request.get_json(silent=True), INVENTORY_ADJUST_POLICY)
        organization_id = coerce_int(patch["organization_id"], "organization_id")
        literature_id = coerce_int(patch["literature_id"], "literature_id")

        tx = inventory_service.create_adjustment(
            g.actor,
            organization_id=organization_id,
            literature_id=literature_id,
            quantity_change=coerce_int(patch["quantity_change"], "quantity_change"),
            reason=coerce_text(patch["reason"], "reason", max_length=255),
            notes=coerce_text(patch.get("notes"), "notes", max_length=2000),
        )
        record = inventory_service.get_inventory(organization_id, literature_id)
        return jsonify({"transaction": tx.to_dict(), "inventory": record.to_dict()}), 201
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("adjusting inventory")


@inventory_bp.post("/receive")
@require_actor
def receive_inventory_route():
    """
    Book stock arriving from a supplier or another organization.

    unit_price is a decimal amount; it defaults to the catalog price.
    """
    try:
        patch = validate_payload(request.get_json(silent=True), INVENTORY_RECEIVE_POLICY)
        organization_id = coerce_int(patch["organization_id"], "organization_id")
        literature_id = coerce_int(patch["literature_id"], "literature_id")
        unit_price = patch.get("unit_price")

        tx = inventory_service.receive_stock(
            g.actor,
            organization_id=organization_id,
            literature_id=literature_id,
            quantity=coerce_int(patch["quantity"], "quantity"),
            unit_price_cents=coerce_price_cents(unit_price) if unit_price is not None else None,
            from_organization_id=coerce_optional_int(patch.get("from_organization_id"), "from_organization_id"),
            notes=coerce_text(patch.get("notes"), "notes", max_length=2000),
        )
        record = inventory_service.get_inventory(organization_id, literature_id)
        return jsonify({"transaction": tx.to_dict(), "inventory": record.to_dict()}), 201
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("receiving inventory")


@inventory_bp.post("/bulk-adjust")
@require_actor
def bulk_adjust_inventory_route():
    """
    Several manual corrections applied all-or-nothing.

    Request body:
    {
        "adjustments": [
            {"organization_id": int, "literature_id": int, "quantity_change": int,
             "reason": str, "notes": str (optional)},
            ...
        ]
    }
    """
    try:
        patch = validate_payload(request.get_json(silent=True), INVENTORY_BULK_ADJUST_POLICY)
        entries = patch["adjustments"]
        if not isinstance(entries, list):
            raise ValidationError("adjustments must be a list")

        lines = []
        for entry in entries:
            entry = validate_payload(entry, INVENTORY_ADJUST_POLICY)
            lines.append(inventory_service.AdjustmentLine(
                organization_id=coerce_int(entry["organization_id"], "organization_id"),
                literature_id=coerce_int(entry["literature_id"], "literature_id"),
                quantity_change=coerce_int(entry["quantity_change"], "quantity_change"),
                reason=coerce_text(entry["reason"], "reason", max_length=255),
                notes=coerce_text(entry.get("notes"), "notes", max_length=2000),
            ))

        transactions = inventory_service.create_adjustments(g.actor, lines)
        return jsonify({"transactions": [tx.to_dict() for tx in transactions], "total": len(transactions)}), 201
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("bulk adjusting inventory")


@inventory_bp.post("/transfer")
@require_actor
def transfer_inventory_route():
    """
    Move available stock between two organizations outside any order.

    Request body:
    {
        "from_organization_id": int,
        "to_organization_id": int,
        "literature_id": int,
        "quantity": int,
        "notes": str (optional)
    }
    """
    try:
        patch = validate_payload(request.get_json(silent=True), INVENTORY_TRANSFER_POLICY)
        from_organization_id = coerce_int(patch["from_organization_id"], "from_organization_id")
        to_organization_id = coerce_int(patch["to_organization_id"], "to_organization_id")
        literature_id = coerce_int(patch["literature_id"], "literature_id")

        outgoing, incoming = inventory_service.transfer_stock(
            g.actor,
            from_organization_id=from_organization_id,
            to_organization_id=to_organization_id,
            literature_id=literature_id,
            quantity=coerce_int(patch["quantity"], "quantity"),
            notes=coerce_text(patch.get("notes"), "notes", max_length=2000),
        )
        return jsonify({
            "transactions": [outgoing.to_dict(), incoming.to_dict()],
            "from_inventory": inventory_service.get_inventory(from_organization_id, literature_id).to_dict(),
            "to_inventory": inventory_service.get_inventory(to_organization_id, literature_id).to_dict(),
        }), 201
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("transferring inventory")
