# Overview: Service-layer operations for stock; every quantity change goes through apply_delta.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Product, StockHistoryEntry, STOCK_CHANGE_TYPES
from ..validation import ValidationError, NotFoundError, BusinessRuleError
from shopledger.time_utils import utcnow
from .concurrency import keyed_lock, lock_for_update, run_with_retry
"""
Stock Ledger Invariants (authoritative)

- Product.stock_quantity >= 0 after every mutation settles.
- Exactly one StockHistoryEntry is appended per accepted mutation, in the
  same DB transaction as the quantity change.
- new_quantity = previous_quantity + quantity_change, where quantity_change
  is the change actually applied (after clamping), so
  stock_quantity == SUM(quantity_change) over the product's history.
- History is append-only: no updates, no deletes, no cascade from products.

Two decrease policies:
- Manual decrease (clamp=False): a result below zero is rejected with
  INSUFFICIENT_STOCK before anything is written.
- Consumption by a bill (clamp=True): the result is clamped at zero and the
  clamped amount is what gets recorded. A sale already agreed with the
  customer is never blocked by a stale catalog count.

Serialization: read-modify-write on one product runs under a keyed
in-process lock plus SELECT ... FOR UPDATE, and the product's version_id
column turns lost updates into StaleDataError (retried by callers).
"""


POSITIVE_ONLY = {"restock", "return"}
NEGATIVE_ONLY = {"sale", "rental", "damage"}
PRODUCT_LOCK = "product"


@dataclass(frozen=True)
class StockChange:
    product: Product
    entry: StockHistoryEntry

    @property
    def clamped(self) -> bool:
        return self.entry.was_clamped


def _validate_change(delta: int, change_type: str, *, allow_zero: bool) -> None:
    if change_type not in STOCK_CHANGE_TYPES:
        raise ValidationError(
            f"change_type must be one of: {', '.join(STOCK_CHANGE_TYPES)}",
            code="INVALID_CHANGE_TYPE",
        )
    if delta == 0:
        if allow_zero:
            return
        raise ValidationError("Quantity change must be non-zero", code="INVALID_QUANTITY")
    if change_type in POSITIVE_ONLY and delta < 0:
        raise ValidationError(f"{change_type} requires a positive quantity change", code="INVALID_QUANTITY")
    if change_type in NEGATIVE_ONLY and delta > 0:
        raise ValidationError(f"{change_type} requires a negative quantity change", code="INVALID_QUANTITY")


def get_product_for_update(product_id: int) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND", details={"product_id": product_id})
    return product


def apply_delta(
    product_id: int,
    delta: int,
    change_type: str,
    notes: str | None = None,
    *,
    clamp: bool = False,
    bill_variant: str | None = None,
    bill_id: int | None = None,
    counted_units: int | None = None,
) -> StockChange:
    """
    Apply a signed quantity change to one product and append its history row.

    Does NOT commit: callers own the transaction (bill operations batch
    several products into one commit; restock_product commits alone).
    Callers that run concurrently must hold keyed_lock(PRODUCT_LOCK, id).

    sale/rental counters grow by |delta| unless counted_units says otherwise
    (bill edits count only the growth in the requested quantity).

    Raises:
        NotFoundError: product does not exist.
        ValidationError: bad change type, sign, or zero delta outside clamp mode.
        BusinessRuleError: manual decrease below zero (INSUFFICIENT_STOCK).
    """
    _validate_change(delta, change_type, allow_zero=clamp)
    product = get_product_for_update(product_id)

    previous = product.stock_quantity or 0
    requested_new = previous + delta

    if requested_new < 0 and not clamp:
        raise BusinessRuleError(
            f"Cannot decrease stock below 0. Current stock: {previous}, Requested change: {delta}",
            code="INSUFFICIENT_STOCK",
            details={"product_id": product.id, "current_stock": previous, "requested_change": delta},
        )

    new_quantity = max(0, requested_new)
    applied = new_quantity - previous
    now = utcnow()

    units = abs(delta) if counted_units is None else counted_units
    product.stock_quantity = new_quantity
    if change_type == "sale":
        product.total_sales = (product.total_sales or 0) + units
    elif change_type == "rental":
        product.total_rentals = (product.total_rentals or 0) + units
    if applied > 0:
        product.last_restocked = now

    entry = StockHistoryEntry(
        product_id=product.id,
        product_name=product.name,
        change_type=change_type,
        quantity_change=applied,
        requested_change=delta,
        previous_quantity=previous,
        new_quantity=new_quantity,
        notes=notes,
        bill_variant=bill_variant,
        bill_id=bill_id,
        created_at=now,
    )
    db.session.add(entry)
    db.session.flush()

    if applied != delta:
        current_app.logger.warning(
            "Clamped stock change for product %s (%s): requested %d, applied %d",
            product.id, product.name, delta, applied,
        )

    return StockChange(product=product, entry=entry)


def restock_product(
    product_id: int,
    delta: int,
    change_type: str | None = None,
    notes: str | None = None,
) -> StockChange:
    """
    Manual stock change (restock, correction, damage write-off).

    change_type defaults to "restock" for increases and "adjustment" for
    decreases. Decreases below zero are rejected, never clamped.
    """
    final_change_type = change_type or ("restock" if delta > 0 else "adjustment")
    _validate_change(delta, final_change_type, allow_zero=False)

    def _op() -> StockChange:
        with keyed_lock(PRODUCT_LOCK, product_id):
            try:
                change = apply_delta(product_id, delta, final_change_type, notes)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
            return change

    return run_with_retry(_op)


def record_opening_stock(product: Product, quantity: int, notes: str | None = None) -> StockHistoryEntry:
    """
    History row for stock a product was created with.

    The product row must already be flushed with stock_quantity=quantity so
    that the ledger sum matches from the first entry.
    """
    entry = StockHistoryEntry(
        product_id=product.id,
        product_name=product.name,
        change_type="inventory",
        quantity_change=quantity,
        requested_change=quantity,
        previous_quantity=0,
        new_quantity=quantity,
        notes=notes or "Opening stock",
        created_at=utcnow(),
    )
    db.session.add(entry)
    return entry


def list_history(
    *,
    product_id: int | None = None,
    change_type: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[StockHistoryEntry]:
    """Newest first. limit is capped at 200."""
    if limit < 1:
        limit = 1
    if limit > 200:
        limit = 200
    if offset < 0:
        offset = 0

    q = db.session.query(StockHistoryEntry)
    if product_id is not None:
        q = q.filter(StockHistoryEntry.product_id == product_id)
    if change_type:
        q = q.filter(StockHistoryEntry.change_type == change_type)

    return (
        q.order_by(StockHistoryEntry.created_at.desc(), StockHistoryEntry.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )


def verify_ledger(product_id: int | None = None) -> list[dict]:
    """
    Compare each product's stock_quantity with the sum of its history.

    Returns one row per product whose balance does not reconcile; an empty
    list means the ledger is consistent.
    """
    sums = (
        db.session.query(
            StockHistoryEntry.product_id.label("product_id"),
            func.coalesce(func.sum(StockHistoryEntry.quantity_change), 0).label("ledger_total"),
        )
        .group_by(StockHistoryEntry.product_id)
        .subquery()
    )

    q = db.session.query(Product, func.coalesce(sums.c.ledger_total, 0)).outerjoin(
        sums, sums.c.product_id == Product.id
    )
    if product_id is not None:
        q = q.filter(Product.id == product_id)

    discrepancies = []
    for product, ledger_total in q.order_by(Product.id).all():
        ledger_total = int(ledger_total or 0)
        if product.stock_quantity != ledger_total:
            discrepancies.append({
                "product_id": product.id,
                "name": product.name,
                "stock_quantity": product.stock_quantity,
                "ledger_total": ledger_total,
                "difference": product.stock_quantity - ledger_total,
            })
    return discrepancies
