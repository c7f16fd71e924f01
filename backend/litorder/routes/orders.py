# backend/litorder/routes/orders.py
"""
Order API routes.

All routes require an actor (X-User-Id / X-User-Role / X-Organization-Id).
Orders the actor's organization is not party to answer 404.

Error mapping:
- ValidationError, InvalidTransitionError: 400
- PermissionDeniedError: 403
- NotFoundError: 404
- OrderLockedError, InsufficientInventoryError, ConcurrencyConflictError: 409
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..errors import OrderEngineError
from ..extensions import db
from ..services import order_service
from ..time_utils import parse_iso_datetime, parse_range_end
from ..validation import (
    PayloadPolicy,
    ValidationError,
    coerce_int,
    coerce_optional_int,
    coerce_text,
    validate_payload,
)


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

ORDER_CREATE_POLICY = PayloadPolicy(
    writable_fields={"to_organization_id", "from_organization_id", "notes", "items"},
    required={"to_organization_id", "items"},
)

ORDER_TRANSITION_POLICY = PayloadPolicy(
    writable_fields={"status", "expected_status", "notes"},
    required={"status"},
)

ORDER_ITEMS_POLICY = PayloadPolicy(writable_fields={"items"}, required={"items"})

ORDER_ADD_ITEM_POLICY = PayloadPolicy(
    writable_fields={"literature_id", "quantity"},
    required={"literature_id", "quantity"},
)

ORDER_ITEM_QUANTITY_POLICY = PayloadPolicy(writable_fields={"quantity"}, required={"quantity"})

ORDER_UPDATE_POLICY = PayloadPolicy(writable_fields={"notes"}, required={"notes"})


def _error_response(e: OrderEngineError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


def _unexpected(action: str):
    db.session.rollback()
    current_app.logger.exception("Unexpected error while %s", action)
    return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("")
@require_actor
def create_order_route():
    """
    Create a DRAFT order.

    Request body:
    {
        "to_organization_id": int,
        "from_organization_id": int (optional),
        "notes": str (optional),
        "items": [{"literature_id": int, "quantity": int}, ...]
    }
    """
    try:
        patch = validate_payload(request.get_json(silent=True), ORDER_CREATE_POLICY)
        order = order_service.create_order(
            g.actor,
            to_organization_id=coerce_int(patch["to_organization_id"], "to_organization_id"),
            from_organization_id=coerce_optional_int(patch.get("from_organization_id"), "from_organization_id"),
            notes=coerce_text(patch.get("notes"), "notes", max_length=2000),
            items=patch["items"],
        )
        return jsonify(order.to_dict()), 201
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("creating order")


@orders_bp.get("")
@require_actor
def list_orders_route():
    """
    Query params: status, from_organization_id, to_organization_id,
    date_from, date_to (ISO-8601; a bare date_to covers the whole day),
    page, per_page.
    """
    args = request.args
    try:
        try:
            date_from = parse_iso_datetime(args.get("date_from"))
            date_to = parse_range_end(args.get("date_to"))
        except ValueError:
            raise ValidationError("date_from/date_to must be ISO-8601 dates")

        result = order_service.list_orders(
            g.actor,
            status=(args.get("status") or "").strip().upper() or None,
            from_organization_id=coerce_optional_int(args.get("from_organization_id"), "from_organization_id"),
            to_organization_id=coerce_optional_int(args.get("to_organization_id"), "to_organization_id"),
            date_from=date_from,
            date_to=date_to,
            page=coerce_optional_int(args.get("page"), "page") or 1,
            per_page=coerce_optional_int(args.get("per_page"), "per_page"),
        )
        return jsonify({
            "orders": [o.to_dict(include_items=False) for o in result["orders"]],
            "total": result["total"],
            "page": result["page"],
            "per_page": result["per_page"],
        }), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("listing orders")


@orders_bp.get("/statistics")
@require_actor
def order_statistics_route():
    try:
        stats = order_service.get_order_statistics(
            g.actor,
            organization_id=coerce_optional_int(request.args.get("organization_id"), "organization_id"),
        )
        return jsonify(stats), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("computing order statistics")


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(g.actor, order_id)
        return jsonify(order.to_dict(include_events=True)), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected(f"loading order {order_id}")


@orders_bp.put("/<int:order_id>")
@require_actor
def update_order_route(order_id: int):
    """Request body: {"notes": str} (empty string clears). Blocked while the order is locked."""
    try:
        patch = validate_payload(request.get_json(silent=True), ORDER_UPDATE_POLICY)
        order = order_service.update_order(
            g.actor,
            order_id,
            notes=coerce_text(patch.get("notes"), "notes", max_length=2000),
        )
        return jsonify(order.to_dict()), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected(f"updating order {order_id}")


@orders_bp.delete("/<int:order_id>")
@require_actor
def delete_order_route(order_id: int):
    try:
        order_service.delete_order(g.actor, order_id)
        return jsonify({"deleted": True, "id": order_id}), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected(f"deleting order {order_id}")


@orders_bp.post("/<int:order_id>/transition")
@require_actor
def transition_order_route(order_id: int):
    """
    Move the order along one edge of the status graph.

    Request body:
    {
        "status": "APPROVED",
        "expected_status": "PENDING" (optional; makes retries safe),
        "notes": str (optional)
    }
    """
    try:
        patch = validate_payload(request.get_json(silent=True), ORDER_TRANSITION_POLICY)
        order = order_service.transition_order(
            g.actor,
            order_id,
            str(patch["status"]).strip().upper(),
            expected_status=(str(patch["expected_status"]).strip().upper() if patch.get("expected_status") else None),
            notes=coerce_text(patch.get("notes"), "notes", max_length=2000),
        )
        return jsonify(order.to_dict()), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected(f"transitioning order {order_id}")


@orders_bp.put("/<int:order_id>/items")
@require_actor
def update_order_items_route(order_id: int):
    try:
        patch = validate_payload(request.get_json(silent=True), ORDER_ITEMS_POLICY)
        order = order_service.update_order_items(g.actor, order_id, patch["items"])
        return jsonify(order.to_dict()), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected(f"updating items of order {order_id}")


@orders_bp.post("/<int:order_id>/items")
@require_actor
def add_item_route(order_id: int):
    try:
        patch = validate_payload(request.get_json(silent=True), ORDER_ADD_ITEM_POLICY)
        order = order_service.add_item(g.actor, order_id, patch["literature_id"], patch["quantity"])
        return jsonify(order.to_dict()), 201
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected(f"adding item to order {order_id}")


@orders_bp.patch("/<int:order_id>/items/<int:literature_id>")
@require_actor
def update_item_quantity_route(order_id: int, literature_id: int):
    try:
        patch = validate_payload(request.get_json(silent=True), ORDER_ITEM_QUANTITY_POLICY)
        order = order_service.update_item_quantity(g.actor, order_id, literature_id, patch["quantity"])
        return jsonify(order.to_dict()), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected(f"updating item of order {order_id}")


@orders_bp.delete("/<int:order_id>/items/<int:literature_id>")
@require_actor
def remove_item_route(order_id: int, literature_id: int):
    try:
        order = order_service.remove_item(g.actor, order_id, literature_id)
        return jsonify(order.to_dict()), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected(f"removing item from order {order_id}")


@orders_bp.post("/<int:order_id>/lock")
@require_actor
def lock_order_route(order_id: int):
    try:
        order = order_service.lock_order(g.actor, order_id)
        return jsonify(order.to_dict(include_items=False)), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected(f"locking order {order_id}")


@orders_bp.post("/<int:order_id>/unlock")
@require_actor
def unlock_order_route(order_id: int):
    try:
        order = order_service.unlock_order(g.actor, order_id)
        return jsonify(order.to_dict(include_items=False)), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected(f"unlocking order {order_id}")
