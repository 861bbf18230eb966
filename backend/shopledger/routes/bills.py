# Overview: Flask API routes for sales and rental bills; parses input and returns JSON responses.

# backend/shopledger/routes/bills.py
"""
Sales and rental bills share one set of routes, built per variant:

    /api/sales-bills    -> variant "sales"
    /api/rental-bills   -> variant "rental"

Create/update responses carry {"bill": ..., "warnings": [...]}; warnings list
items that moved no stock or whose consumption was clamped at zero.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import billing_service, sequence_service
from ..time_utils import end_of_day, is_date_only
from ..validation import ShopError, ValidationError, coerce_datetime


def _error_response(e: ShopError):
    return jsonify(e.to_dict()), e.status_code


def _internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error", "code": "INTERNAL", "details": {}}), 500


def _parse_is_paid(raw: str | None) -> bool | None:
    if raw is None or raw == "":
        return None
    lowered = raw.strip().lower()
    if lowered in {"true", "1", "yes"}:
        return True
    if lowered in {"false", "0", "no"}:
        return False
    raise ValidationError("is_paid must be true or false", code="INVALID_ISPAID_TYPE")


def make_bills_blueprint(variant: str) -> Blueprint:
    bp = Blueprint(f"{variant}_bills", __name__, url_prefix=f"/api/{variant}-bills")

    @bp.post("")
    def create_bill_route():
        payload = request.get_json(silent=True)
        try:
            result = billing_service.create_bill(variant, payload)
            return jsonify(result.to_dict()), 201
        except ShopError as e:
            return _error_response(e)
        except Exception:
            return _internal_error(f"Failed to create {variant} bill")

    @bp.get("")
    def list_bills_route():
        """
        Query params:
        - search: customer name or phone substring
        - start_date / end_date: ISO-8601, inclusive; a bare end date covers that whole day
        - is_paid: true | false
        - limit (default 10, max 100), offset
        """
        try:
            start = request.args.get("start_date")
            end = request.args.get("end_date")
            end_dt = coerce_datetime("end_date", end) if end else None
            if end_dt is not None and is_date_only(end):
                end_dt = end_of_day(end_dt)
            result = billing_service.list_bills(
                variant,
                search=request.args.get("search"),
                start_date=coerce_datetime("start_date", start) if start else None,
                end_date=end_dt,
                is_paid=_parse_is_paid(request.args.get("is_paid")),
                limit=request.args.get("limit", default=10, type=int),
                offset=request.args.get("offset", default=0, type=int),
            )
            return jsonify(result)
        except ShopError as e:
            return _error_response(e)
        except Exception:
            return _internal_error(f"Failed to list {variant} bills")

    @bp.get("/next-serial")
    def next_serial_route():
        """Preview only; the number is assigned when the bill is created."""
        try:
            return jsonify({"next_serial": sequence_service.peek_next_serial(variant)})
        except ShopError as e:
            return _error_response(e)
        except Exception:
            return _internal_error(f"Failed to compute next {variant} serial")

    @bp.get("/<int:bill_id>")
    def get_bill_route(bill_id: int):
        try:
            bill = billing_service.get_bill(variant, bill_id)
            return jsonify({"bill": bill.to_dict()})
        except ShopError as e:
            return _error_response(e)

    @bp.put("/<int:bill_id>")
    def update_bill_route(bill_id: int):
        payload = request.get_json(silent=True)
        try:
            result = billing_service.update_bill(variant, bill_id, payload)
            return jsonify(result.to_dict())
        except ShopError as e:
            return _error_response(e)
        except Exception:
            return _internal_error(f"Failed to update {variant} bill {bill_id}")

    @bp.delete("/<int:bill_id>")
    def delete_bill_route(bill_id: int):
        try:
            return jsonify(billing_service.delete_bill(variant, bill_id))
        except ShopError as e:
            return _error_response(e)
        except Exception:
            return _internal_error(f"Failed to delete {variant} bill {bill_id}")

    return bp


sales_bills_bp = make_bills_blueprint("sales")
rental_bills_bp = make_bills_blueprint("rental")
