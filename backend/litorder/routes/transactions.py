# backend/litorder/routes/transactions.py
"""
Ledger (inventory transaction) routes.

Read routes share one filter set:
type, organization_id (either side), from_organization_id, to_organization_id,
literature_id, order_id, date_from, date_to (ISO-8601, bare date_to inclusive).
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..errors import OrderEngineError
from ..extensions import db
from ..services import inventory_service, transaction_service
from ..services.transaction_service import TransactionFilters
from ..time_utils import parse_iso_datetime, parse_range_end
from ..validation import ValidationError, coerce_optional_int


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


def _error_response(e: OrderEngineError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


def _unexpected(action: str):
    db.session.rollback()
    current_app.logger.exception("Unexpected error while %s", action)
    return jsonify({"error": "Internal server error"}), 500


def _filters_from_args(args) -> TransactionFilters:
    try:
        date_from = parse_iso_datetime(args.get("date_from"))
        date_to = parse_range_end(args.get("date_to"))
    except ValueError:
        raise ValidationError("date_from/date_to must be ISO-8601 dates")

    tx_type = (args.get("type") or "").strip().upper() or None
    return TransactionFilters(
        type=tx_type,
        organization_id=coerce_optional_int(args.get("organization_id"), "organization_id"),
        from_organization_id=coerce_optional_int(args.get("from_organization_id"), "from_organization_id"),
        to_organization_id=coerce_optional_int(args.get("to_organization_id"), "to_organization_id"),
        literature_id=coerce_optional_int(args.get("literature_id"), "literature_id"),
        order_id=coerce_optional_int(args.get("order_id"), "order_id"),
        date_from=date_from,
        date_to=date_to,
    )


@transactions_bp.get("")
@require_actor
def list_transactions_route():
    try:
        result = transaction_service.list_transactions(
            _filters_from_args(request.args),
            page=coerce_optional_int(request.args.get("page"), "page") or 1,
            per_page=coerce_optional_int(request.args.get("per_page"), "per_page"),
        )
        return jsonify({
            "transactions": [tx.to_dict() for tx in result["transactions"]],
            "total": result["total"],
            "page": result["page"],
            "per_page": result["per_page"],
        }), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("listing transactions")


@transactions_bp.get("/statistics")
@require_actor
def transaction_statistics_route():
    try:
        return jsonify(transaction_service.get_statistics(_filters_from_args(request.args))), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("computing transaction statistics")


@transactions_bp.get("/movement-report")
@require_actor
def movement_report_route():
    try:
        report = transaction_service.get_movement_report(_filters_from_args(request.args))
        return jsonify({
            "transactions": [tx.to_dict() for tx in report["transactions"]],
            "summary": report["summary"],
        }), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected("building movement report")


@transactions_bp.get("/<int:transaction_id>")
@require_actor
def get_transaction_route(transaction_id: int):
    try:
        return jsonify(transaction_service.get_transaction(transaction_id).to_dict()), 200
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected(f"loading transaction {transaction_id}")


@transactions_bp.post("/<int:transaction_id>/reverse")
@require_actor
def reverse_transaction_route(transaction_id: int):
    """Append the opposite ADJUSTMENT; the original row is left untouched."""
    try:
        tx = inventory_service.reverse_transaction(g.actor, transaction_id)
        return jsonify(tx.to_dict()), 201
    except OrderEngineError as e:
        return _error_response(e)
    except Exception:
        return _unexpected(f"reversing transaction {transaction_id}")
