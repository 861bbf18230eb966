# backend/shopledger/services/products_service.py
"""
Products Service - catalog entries

Catalog edits (name, rate, category, type, min stock level) are plain
updates. stock_quantity is NOT a catalog field: it is only set once at
creation (recorded as an "inventory" history row) and afterwards moves
exclusively through stock_service.
"""
from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Product
from ..validation import NotFoundError
from .stock_service import record_opening_stock
from .concurrency import run_with_retry

PRODUCT_MUTABLE_FIELDS = {"name", "rate_cents", "category", "product_type", "min_stock_level"}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND", details={"product_id": product_id})
    return product


def find_by_name(name: str) -> Product | None:
    """Exact-name lookup used to link free-text bill items to the catalog."""
    if not name:
        return None
    return (
        db.session.query(Product)
        .filter(Product.name == name.strip())
        .order_by(Product.id.asc())
        .first()
    )


def list_products(
    *,
    search: str | None = None,
    product_type: str | None = None,
    category: str | None = None,
    limit: int = 10,
    offset: int = 0,
) -> dict:
    """
    Catalog listing, newest first.

    Returns dict with 'items', 'count' (total matches) and paging echo.
    limit is capped at 100.
    """
    if limit < 1:
        limit = 1
    if limit > 100:
        limit = 100
    if offset < 0:
        offset = 0

    q = db.session.query(Product)
    if product_type:
        q = q.filter(Product.product_type == product_type)
    if category:
        q = q.filter(Product.category == category)
    if search:
        q = q.filter(Product.name.ilike(f"%{search.strip()}%"))

    total = q.count()
    rows = q.order_by(Product.created_at.desc(), Product.id.desc()).limit(limit).offset(offset).all()
    return {
        "items": [p.to_dict() for p in rows],
        "count": total,
        "limit": limit,
        "offset": offset,
    }


def create_product(patch: dict) -> Product:
    opening_stock = patch.get("stock_quantity") or 0

    product = Product(
        name=patch["name"],
        rate_cents=patch["rate_cents"],
        product_type=patch["product_type"],
        category=patch.get("category") or None,
        min_stock_level=(
            patch["min_stock_level"]
            if patch.get("min_stock_level") is not None
            else current_app.config["DEFAULT_MIN_STOCK_LEVEL"]
        ),
        stock_quantity=opening_stock,
    )
    db.session.add(product)
    try:
        db.session.flush()
        if opening_stock > 0:
            record_opening_stock(product, opening_stock)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Created product %s (%s) with opening stock %d", product.id, product.name, opening_stock)
    return product


def update_product(product_id: int, patch: dict) -> Product:
    def _op() -> Product:
        product = get_product(product_id)
        apply_product_patch(product, patch)
        db.session.commit()
        return product

    return run_with_retry(_op)


def delete_product(product_id: int) -> dict:
    """
    Remove a catalog entry. Stock history rows are kept (they carry the name
    snapshot); bills keep their items, which simply no longer resolve.
    """
    product = get_product(product_id)
    snapshot = product.to_dict()
    db.session.delete(product)
    db.session.commit()
    current_app.logger.info("Deleted product %s (%s)", product_id, snapshot["name"])
    return snapshot
