# Overview: Read-only catalog analytics; never writes.

from __future__ import annotations

from sqlalchemy import func

from shopledger.extensions import db
from shopledger.models import Product
from shopledger.validation import PRODUCT_TYPES


def _low_stock_dict(product: Product) -> dict:
    row = product.to_dict()
    row["stock_deficit"] = product.min_stock_level - product.stock_quantity
    return row


def low_stock(limit: int | None = None) -> list[dict]:
    """Products below their min_stock_level, emptiest first."""
    q = (
        db.session.query(Product)
        .filter(Product.stock_quantity < Product.min_stock_level)
        .order_by(Product.stock_quantity.asc(), Product.id.asc())
    )
    if limit:
        q = q.limit(limit)
    return [_low_stock_dict(p) for p in q.all()]


def out_of_stock() -> list[dict]:
    rows = (
        db.session.query(Product)
        .filter(Product.stock_quantity == 0)
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )
    return [p.to_dict() for p in rows]


def top_selling(n: int = 10) -> list[dict]:
    rows = (
        db.session.query(Product)
        .filter(Product.total_sales > 0)
        .order_by(Product.total_sales.desc(), Product.id.asc())
        .limit(n)
        .all()
    )
    return [p.to_dict() for p in rows]


def top_rented(n: int = 10) -> list[dict]:
    rows = (
        db.session.query(Product)
        .filter(Product.total_rentals > 0)
        .order_by(Product.total_rentals.desc(), Product.id.asc())
        .limit(n)
        .all()
    )
    return [p.to_dict() for p in rows]


def distribution() -> dict[str, int]:
    """Product count per product_type; every known type is present."""
    counts = {t: 0 for t in PRODUCT_TYPES}
    for product_type, count in (
        db.session.query(Product.product_type, func.count(Product.id))
        .group_by(Product.product_type)
        .all()
    ):
        counts[product_type] = int(count)
    return counts


def summary(top_n: int = 10) -> dict:
    totals = db.session.query(
        func.count(Product.id),
        func.coalesce(func.sum(Product.total_sales), 0),
        func.coalesce(func.sum(Product.total_rentals), 0),
    ).one()
    low_count = (
        db.session.query(func.count(Product.id))
        .filter(Product.stock_quantity < Product.min_stock_level)
        .scalar()
    )
    out_count = db.session.query(func.count(Product.id)).filter(Product.stock_quantity == 0).scalar()
    dist = distribution()

    return {
        "total_products": int(totals[0]),
        "sales_products": dist.get("sales", 0),
        "rental_products": dist.get("rental", 0),
        "distribution": dist,
        "total_sales_count": int(totals[1]),
        "total_rentals_count": int(totals[2]),
        "top_selling": top_selling(top_n),
        "top_rented": top_rented(top_n),
        "low_stock_count": int(low_count or 0),
        "out_of_stock_count": int(out_count or 0),
    }
