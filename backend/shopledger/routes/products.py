# Overview: Flask API routes for products, stock and analytics; parses input and returns JSON responses.

# backend/shopledger/routes/products.py
"""
Product catalog, stock and analytics routes.

stock_quantity can be given once, on create (opening stock). After that it
only moves through POST /restock or through bills; PUT rejects it.
"""
from flask import Blueprint, request, jsonify, current_app

from ..models import Product
from ..services import analytics_service, stock_service
from ..services.products_service import (
    list_products as list_products_service,
    get_product,
    create_product,
    update_product,
    delete_product,
)
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ShopError,
    ValidationError,
    coerce_int,
)

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "category", "product_type", "rate_cents", "stock_quantity", "min_stock_level"},
    required_on_create={"name", "rate_cents", "product_type"},
)
PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "category", "product_type", "rate_cents", "min_stock_level"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _error_response(e: ShopError):
    return jsonify(e.to_dict()), e.status_code


def _internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error", "code": "INTERNAL", "details": {}}), 500


@products_bp.get("")
def list_products():
    """
    Query params:
    - search: substring of product name
    - product_type: sales | rental
    - category: exact category
    - limit (default 10, max 100), offset
    """
    try:
        result = list_products_service(
            search=request.args.get("search"),
            product_type=request.args.get("product_type"),
            category=request.args.get("category"),
            limit=request.args.get("limit", default=10, type=int),
            offset=request.args.get("offset", default=0, type=int),
        )
        return jsonify(result)
    except Exception:
        return _internal_error("Failed to list products")


@products_bp.post("")
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
        enforce_rules_product(patch)
        created = create_product(patch)
        return jsonify(created.to_dict()), 201
    except ShopError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Failed to create product")


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        return jsonify(get_product(product_id).to_dict())
    except ShopError as e:
        return _error_response(e)


@products_bp.put("/<int:product_id>")
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = update_product(product_id, patch)
        return jsonify(updated.to_dict())
    except ShopError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Failed to update product")


@products_bp.delete("/<int:product_id>")
def delete_product_route(product_id: int):
    try:
        snapshot = delete_product(product_id)
        return jsonify({"deleted": snapshot})
    except ShopError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Failed to delete product")


@products_bp.post("/restock")
def restock_route():
    """
    Manual stock change.

    Body:
    - product_id: int (required)
    - quantity_change: int, non-zero (required)
    - change_type: optional; defaults to restock (+) / adjustment (-)
    - notes: optional
    """
    payload = request.get_json(silent=True) or {}

    try:
        missing = [k for k in ("product_id", "quantity_change") if payload.get(k) is None]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                code="MISSING_REQUIRED_FIELD",
                details={"fields": missing},
            )
        product_id = coerce_int("product_id", payload["product_id"])
        delta = coerce_int("quantity_change", payload["quantity_change"])
        notes = payload.get("notes")
        if notes is not None:
            notes = str(notes).strip()[:255] or None

        change = stock_service.restock_product(
            product_id,
            delta,
            change_type=payload.get("change_type") or None,
            notes=notes,
        )
        return jsonify({
            "product": change.product.to_dict(),
            "history": change.entry.to_dict(),
        })
    except ShopError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Failed to restock product")


@products_bp.get("/stock-history")
def stock_history_route():
    """Newest first. Query params: product_id, change_type, limit (default 50, max 200), offset."""
    try:
        entries = stock_service.list_history(
            product_id=request.args.get("product_id", type=int),
            change_type=request.args.get("change_type"),
            limit=request.args.get("limit", default=50, type=int),
            offset=request.args.get("offset", default=0, type=int),
        )
        return jsonify({"items": [e.to_dict() for e in entries]})
    except Exception:
        return _internal_error("Failed to load stock history")


@products_bp.get("/low-stock")
def low_stock_route():
    try:
        items = analytics_service.low_stock(limit=request.args.get("limit", type=int))
        return jsonify({"items": items, "count": len(items)})
    except Exception:
        return _internal_error("Failed to load low stock products")


@products_bp.get("/analytics")
def analytics_route():
    try:
        return jsonify(analytics_service.summary())
    except Exception:
        return _internal_error("Failed to compute analytics")
