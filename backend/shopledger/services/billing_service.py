"""
Billing Service - sales and rental bills with their stock side effects

WHY: a bill and the stock it moves must never disagree. Every create,
update and delete runs as ONE database transaction:

    validate -> resolve items to products -> price -> stock mutations
    -> (create only) allocate serial -> write bill row -> commit

Any store failure rolls the whole operation back, so there is never a bill
without its stock movements or stock movements without their bill.

Non-fatal conditions are returned as warnings alongside the bill, never
dropped:
- UNMATCHED_ITEM: free-text item with no catalog product of that name
- STOCK_CLAMPED: consumption exceeded stock and was clamped at zero
- PRODUCT_MISSING: a product referenced by an older version of the bill
  has since been deleted from the catalog

Edits reconcile stock by diffing requested quantities per product between
the stored items and the new items: extra units are consumed (sale/rental),
removed units are given back (return), capped at what the bill actually
consumed. Deletes give back everything the bill consumed.
"""

from __future__ import annotations

import copy
from collections import defaultdict
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, BILL_MODELS, TAX_MODES
from ..validation import (
    ValidationError,
    NotFoundError,
    ConflictError,
    BusinessRuleError,
    CUSTOMER_FEEDBACK_VALUES,
    coerce_int,
    coerce_cents,
    coerce_bool,
    coerce_datetime,
    percentage_to_bps,
)
from shopledger.time_utils import utcnow
from .concurrency import keyed_lock, keyed_locks, lock_for_update, run_with_retry
from .pricing_service import Totals, billing_days, compute_totals, line_amount_cents, rental_days
from .products_service import find_by_name
from .sequence_service import SERIAL_RETRY_EXCEPTIONS, next_serial, serial_lock
from .stock_service import PRODUCT_LOCK, apply_delta


BILL_LOCK = "bill"

CONSUME_CHANGE_TYPE = {
    "sales": "sale",
    "rental": "rental",
}

COMMON_FIELDS = {
    "customer_name",
    "customer_phone",
    "customer_address",
    "items",
    "tax_mode",
    "tax_percentage",
    "tax_amount_cents",
    "tax_type",
    "advance_cents",
    "is_paid",
    "customer_feedback",
}
VARIANT_FIELDS = {
    "sales": COMMON_FIELDS | {"bill_date"},
    "rental": COMMON_FIELDS | {"from_date", "to_date", "transport_fees_cents"},
}
REQUIRED_ON_CREATE = {
    "sales": ("customer_name", "customer_phone", "items"),
    "rental": ("customer_name", "customer_phone", "items", "from_date"),
}

# Server-computed; accepted and ignored so a fetched bill can be sent back as-is
READ_ONLY_FIELDS = {
    "id",
    "variant",
    "serial_no",
    "subtotal_cents",
    "total_cents",
    "tax_rate_bps",
    "rental_days",
    "created_at",
    "updated_at",
}


@dataclass
class BillResult:
    bill: object
    warnings: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"bill": self.bill.to_dict(), "warnings": self.warnings}


def _bill_model(variant: str):
    model = BILL_MODELS.get(variant)
    if model is None:
        raise ValidationError(f"Unknown bill variant: {variant}", code="INVALID_VARIANT")
    return model


def _label(variant: str, serial_no: int) -> str:
    return f"{variant.capitalize()} bill #{serial_no}"


def _warn(warnings: list[dict], code: str, message: str, **extra) -> None:
    current_app.logger.warning("%s: %s", code, message)
    warnings.append({"code": code, "message": message, **extra})


# =============================================================================
# Payload normalization
# =============================================================================

def _required_text(key: str, value) -> str:
    text = "" if value is None else str(value).strip()
    if not text:
        raise ValidationError(
            f"Required field '{key}' is missing",
            code="MISSING_REQUIRED_FIELD",
            details={"field": key},
        )
    return text


def _optional_text(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_items(raw) -> list[dict]:
    """Validate the ordered item list; amounts and applied quantities are derived later."""
    if not isinstance(raw, list) or not raw:
        raise ValidationError("Items must be a non-empty list", code="INVALID_ITEMS_FORMAT")

    items = []
    for idx, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(
                f"items[{idx}] must be an object",
                code="INVALID_ITEMS_FORMAT",
                details={"index": idx},
            )
        name = _optional_text(item.get("item_name"))
        if not name:
            raise ValidationError(
                f"items[{idx}].item_name is required",
                code="MISSING_REQUIRED_FIELD",
                details={"index": idx, "field": "item_name"},
            )
        qty = coerce_int(f"items[{idx}].qty", item.get("qty"))
        if qty <= 0:
            raise ValidationError(f"items[{idx}].qty must be > 0", details={"index": idx})
        rate_cents = coerce_cents(f"items[{idx}].rate_cents", item.get("rate_cents"))

        product_id = item.get("product_id")
        if product_id is not None:
            product_id = coerce_int(f"items[{idx}].product_id", product_id)

        items.append({
            "item_name": name,
            "product_id": product_id,
            "qty": qty,
            "rate_cents": rate_cents,
        })
    return items


def normalize_bill_payload(variant: str, payload, *, partial: bool) -> dict:
    """
    Validate + normalize a bill payload into model-level keys.

    partial=False: create semantics (required fields enforced, defaults applied)
    partial=True: update semantics (only provided keys are returned)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    allowed = VARIANT_FIELDS[variant]
    for key in payload:
        if key not in allowed and key not in READ_ONLY_FIELDS:
            raise ValidationError(f"Field not allowed: {key}")

    if not partial:
        for key in REQUIRED_ON_CREATE[variant]:
            if payload.get(key) is None:
                raise ValidationError(
                    f"Required field '{key}' is missing",
                    code="MISSING_REQUIRED_FIELD",
                    details={"field": key},
                )

    data: dict = {}

    for key in ("customer_name", "customer_phone"):
        if key in payload:
            data[key] = _required_text(key, payload[key])
    if "customer_address" in payload:
        data["customer_address"] = _optional_text(payload["customer_address"])

    if "items" in payload:
        data["items"] = normalize_items(payload["items"])

    if "tax_mode" in payload:
        if payload["tax_mode"] not in TAX_MODES:
            raise ValidationError(f"tax_mode must be one of: {', '.join(TAX_MODES)}")
        data["tax_mode"] = payload["tax_mode"]
    if payload.get("tax_percentage") is not None:
        data["tax_rate_bps"] = percentage_to_bps(payload["tax_percentage"])
        data.setdefault("tax_mode", "percentage")
    if payload.get("tax_amount_cents") is not None:
        data["tax_amount_cents"] = coerce_cents("tax_amount_cents", payload["tax_amount_cents"])
        data.setdefault("tax_mode", "manual")
    if "tax_type" in payload:
        tax_type = _optional_text(payload["tax_type"])
        if tax_type and len(tax_type) > 32:
            raise ValidationError("tax_type exceeds max length 32")
        data["tax_type"] = tax_type

    if payload.get("advance_cents") is not None:
        data["advance_cents"] = coerce_cents("advance_cents", payload["advance_cents"])

    if "is_paid" in payload:
        data["is_paid"] = coerce_bool("is_paid", payload["is_paid"])

    if "customer_feedback" in payload:
        feedback = _optional_text(payload["customer_feedback"])
        if feedback is not None and feedback not in CUSTOMER_FEEDBACK_VALUES:
            raise ValidationError(
                f"customer_feedback must be one of: {', '.join(CUSTOMER_FEEDBACK_VALUES)}"
            )
        data["customer_feedback"] = feedback

    if variant == "sales":
        if payload.get("bill_date") is not None:
            data["bill_date"] = coerce_datetime("bill_date", payload["bill_date"])
    else:
        if payload.get("from_date") is not None:
            data["from_date"] = coerce_datetime("from_date", payload["from_date"])
        if "to_date" in payload:
            data["to_date"] = (
                coerce_datetime("to_date", payload["to_date"]) if payload["to_date"] else None
            )
        if payload.get("transport_fees_cents") is not None:
            data["transport_fees_cents"] = coerce_cents("transport_fees_cents", payload["transport_fees_cents"])

    if not partial:
        data.setdefault("customer_address", None)
        data.setdefault("tax_mode", "percentage")
        data.setdefault("tax_rate_bps", 0)
        data.setdefault("tax_amount_cents", 0)
        data.setdefault("tax_type", current_app.config["DEFAULT_TAX_TYPE"])
        data.setdefault("advance_cents", 0)
        data.setdefault("is_paid", False)
        data.setdefault("customer_feedback", None)
        if variant == "sales":
            data.setdefault("bill_date", utcnow())
        else:
            data.setdefault("to_date", None)
            data.setdefault("transport_fees_cents", 0)

    return data


# =============================================================================
# Item resolution, pricing and stock reconciliation
# =============================================================================

def resolve_items(
    items: list[dict],
    warnings: list[dict],
    linked_ids: frozenset[int] = frozenset(),
) -> list[dict]:
    """
    Link each item to a catalog product, once, at entry time.

    Explicit product_id must exist (NOT_FOUND otherwise), unless the bill
    being edited already links it (linked_ids); a product deleted since then
    is reported as PRODUCT_MISSING during stock sync instead. Items without one
    are matched by exact name; no match leaves an ad hoc item that moves no
    stock and produces an UNMATCHED_ITEM warning.
    """
    resolved = []
    for idx, item in enumerate(items):
        item = copy.deepcopy(item)
        if item.get("product_id") is not None:
            if item["product_id"] not in linked_ids and db.session.get(Product, item["product_id"]) is None:
                raise NotFoundError(
                    f"Product {item['product_id']} not found for items[{idx}]",
                    code="PRODUCT_NOT_FOUND",
                    details={"index": idx, "product_id": item["product_id"]},
                )
        else:
            product = find_by_name(item["item_name"])
            if product is not None:
                item["product_id"] = product.id
            else:
                _warn(
                    warnings,
                    "UNMATCHED_ITEM",
                    f"No catalog product named '{item['item_name']}'; stock not adjusted",
                    index=idx,
                    item_name=item["item_name"],
                )
        resolved.append(item)
    return resolved


def _sum_by_product(items: list[dict], key: str) -> dict[int, int]:
    totals: dict[int, int] = defaultdict(int)
    for item in items:
        if item.get("product_id") is not None:
            totals[item["product_id"]] += int(item.get(key) or 0)
    return totals


def sync_item_stock(
    variant: str,
    label: str,
    old_items: list[dict],
    new_items: list[dict],
    warnings: list[dict],
) -> tuple[list[dict], list]:
    """
    Move stock so the bill's consumption matches new_items.

    Per product, compared against what the bill actually holds (applied_qty):
    - requested(new) > applied(old): consume the difference (clamped at zero
      stock), which also retries any earlier shortfall
    - requested(new) < applied(old): give back the difference with "return"

    sale/rental counters grow only by the increase in requested quantity.

    Returns (new_items with applied_qty filled in, history entries written).
    Callers must hold the product locks for every id in old/new items.
    """
    consume_type = CONSUME_CHANGE_TYPE[variant]
    old_requested = _sum_by_product(old_items, "qty")
    old_applied = _sum_by_product(old_items, "applied_qty")
    new_requested = _sum_by_product(new_items, "qty")

    applied_total = dict(old_applied)
    entries = []

    for product_id in sorted(set(old_requested) | set(new_requested)):
        held = old_applied.get(product_id, 0)
        wanted = new_requested.get(product_id, 0)
        delta = wanted - held
        if delta == 0:
            continue

        if db.session.get(Product, product_id) is None:
            _warn(
                warnings,
                "PRODUCT_MISSING",
                f"Product {product_id} no longer exists; stock not adjusted",
                product_id=product_id,
            )
            continue

        if delta > 0:
            change = apply_delta(
                product_id,
                -delta,
                consume_type,
                notes=label,
                clamp=True,
                bill_variant=variant,
                counted_units=max(0, wanted - old_requested.get(product_id, 0)),
            )
            consumed = -change.entry.quantity_change
            applied_total[product_id] = held + consumed
            if change.clamped:
                _warn(
                    warnings,
                    "STOCK_CLAMPED",
                    f"Only {consumed} of {delta} '{change.product.name}' were in stock",
                    product_id=product_id,
                    requested=delta,
                    applied=consumed,
                )
        else:
            change = apply_delta(
                product_id,
                -delta,
                "return",
                notes=label,
                bill_variant=variant,
            )
            applied_total[product_id] = wanted

        entries.append(change.entry)

    remaining = dict(applied_total)
    out = []
    for item in new_items:
        item = dict(item)
        product_id = item.get("product_id")
        if product_id is None:
            item["applied_qty"] = 0
        else:
            share = min(item["qty"], max(remaining.get(product_id, 0), 0))
            item["applied_qty"] = share
            remaining[product_id] = remaining.get(product_id, 0) - share
        out.append(item)

    return out, entries


def _price(variant: str, state: dict) -> tuple[list[dict], Totals, int]:
    """Fill amount_cents on each item and compute totals for a full bill state."""
    if variant == "rental":
        from_dt, to_dt = state["from_date"], state.get("to_date")
        if to_dt is not None and to_dt < from_dt:
            raise ValidationError("to_date must not be earlier than from_date", code="INVALID_DATE_RANGE")
        days = rental_days(from_dt, to_dt)
        multiplier = billing_days(from_dt, to_dt)
        transport = state.get("transport_fees_cents") or 0
    else:
        days = 0
        multiplier = 1
        transport = 0

    items = []
    for item in state["items"]:
        item = dict(item)
        item["amount_cents"] = line_amount_cents(item["qty"], item["rate_cents"], multiplier)
        items.append(item)

    tax_value = state["tax_amount_cents"] if state["tax_mode"] == "manual" else state["tax_rate_bps"]
    totals = compute_totals(
        items,
        state["tax_mode"],
        tax_value,
        state["advance_cents"],
        transport_fees_cents=transport,
        rental_days=multiplier,
    )

    if totals.advance_cents > totals.pre_advance_total_cents and not current_app.config["ALLOW_ADVANCE_OVER_TOTAL"]:
        raise BusinessRuleError(
            "Advance exceeds the bill total",
            code="ADVANCE_EXCEEDS_TOTAL",
            details={
                "advance_cents": totals.advance_cents,
                "total_before_advance_cents": totals.pre_advance_total_cents,
            },
        )

    return items, totals, days


def _write_totals(bill, totals: Totals, days: int) -> None:
    bill.subtotal_cents = totals.subtotal_cents
    bill.tax_amount_cents = totals.tax_amount_cents
    bill.total_cents = totals.total_cents
    if bill.variant == "rental":
        bill.rental_days = days


def _bill_state(bill) -> dict:
    state = {
        "customer_name": bill.customer_name,
        "customer_phone": bill.customer_phone,
        "customer_address": bill.customer_address,
        "items": copy.deepcopy(bill.items or []),
        "tax_mode": bill.tax_mode,
        "tax_rate_bps": bill.tax_rate_bps,
        "tax_amount_cents": bill.tax_amount_cents,
        "tax_type": bill.tax_type,
        "advance_cents": bill.advance_cents,
        "is_paid": bill.is_paid,
        "customer_feedback": bill.customer_feedback,
    }
    if bill.variant == "sales":
        state["bill_date"] = bill.bill_date
    else:
        state["from_date"] = bill.from_date
        state["to_date"] = bill.to_date
        state["transport_fees_cents"] = bill.transport_fees_cents
    return state


SCALAR_FIELDS = (
    "customer_name",
    "customer_phone",
    "customer_address",
    "tax_mode",
    "tax_rate_bps",
    "tax_type",
    "advance_cents",
    "is_paid",
    "customer_feedback",
)
VARIANT_SCALAR_FIELDS = {
    "sales": ("bill_date",),
    "rental": ("from_date", "to_date", "transport_fees_cents"),
}


def _assign_fields(bill, variant: str, state: dict) -> None:
    for key in SCALAR_FIELDS + VARIANT_SCALAR_FIELDS[variant]:
        setattr(bill, key, state[key])


# =============================================================================
# Operations
# =============================================================================

def create_bill(variant: str, payload: dict) -> BillResult:
    """
    Create a sales or rental bill and consume stock for its items.

    The serial is allocated inside the same transaction as the insert, under
    the variant's serial lock; a unique-constraint collision (another process)
    is retried up to SERIAL_RETRY_ATTEMPTS times, then surfaces as CONFLICT.
    """
    model = _bill_model(variant)
    data = normalize_bill_payload(variant, payload, partial=False)

    def _op() -> BillResult:
        warnings: list[dict] = []
        try:
            with serial_lock(variant):
                items = resolve_items(data["items"], warnings)
                state = dict(data, items=items)
                priced_items, totals, days = _price(variant, state)

                product_ids = [i["product_id"] for i in priced_items if i.get("product_id") is not None]
                with keyed_locks(PRODUCT_LOCK, product_ids):
                    serial = next_serial(variant)
                    label = _label(variant, serial)

                    final_items, entries = sync_item_stock(variant, label, [], priced_items, warnings)

                    # Bill row last: everything above is in the same transaction
                    bill = model(serial_no=serial, items=final_items)
                    _assign_fields(bill, variant, state)
                    _write_totals(bill, totals, days)
                    db.session.add(bill)
                    db.session.flush()

                    for entry in entries:
                        entry.bill_id = bill.id

                    db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            "Created %s (total %d cents, %d warning(s))", label, bill.total_cents, len(warnings)
        )
        return BillResult(bill=bill, warnings=warnings)

    try:
        return run_with_retry(
            _op,
            attempts=current_app.config["SERIAL_RETRY_ATTEMPTS"],
            retry_on=SERIAL_RETRY_EXCEPTIONS,
        )
    except IntegrityError as exc:
        current_app.logger.error("Serial allocation for %s bills kept conflicting", variant)
        raise ConflictError(
            "Could not allocate a unique bill number; please retry",
            code="SERIAL_CONFLICT",
        ) from exc


def get_bill(variant: str, bill_id: int):
    model = _bill_model(variant)
    bill = db.session.get(model, bill_id)
    if bill is None:
        raise NotFoundError(f"{variant.capitalize()} bill not found", details={"id": bill_id})
    return bill


def update_bill(variant: str, bill_id: int, payload: dict) -> BillResult:
    """
    Update a bill in place. serial_no never changes.

    Totals are always recomputed from the merged state. Stock moves only when
    items are part of the payload.
    """
    model = _bill_model(variant)
    data = normalize_bill_payload(variant, payload, partial=True)

    def _op() -> BillResult:
        warnings: list[dict] = []
        try:
            with keyed_lock(BILL_LOCK, (variant, bill_id)):
                bill = lock_for_update(db.session.query(model).filter_by(id=bill_id)).first()
                if bill is None:
                    raise NotFoundError(f"{variant.capitalize()} bill not found", details={"id": bill_id})

                old_items = copy.deepcopy(bill.items or [])
                state = _bill_state(bill)
                state.update({k: v for k, v in data.items() if k != "items"})
                if "items" in data:
                    linked_ids = frozenset(i["product_id"] for i in old_items if i.get("product_id") is not None)
                    state["items"] = resolve_items(data["items"], warnings, linked_ids)

                priced_items, totals, days = _price(variant, state)

                product_ids = {i["product_id"] for i in old_items + priced_items if i.get("product_id") is not None}
                with keyed_locks(PRODUCT_LOCK, product_ids):
                    if "items" in data:
                        final_items, entries = sync_item_stock(
                            variant,
                            f"{_label(variant, bill.serial_no)} edited",
                            old_items,
                            priced_items,
                            warnings,
                        )
                        for entry in entries:
                            entry.bill_id = bill.id
                    else:
                        final_items = priced_items

                    _assign_fields(bill, variant, state)
                    bill.items = final_items
                    _write_totals(bill, totals, days)
                    db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        return BillResult(bill=bill, warnings=warnings)

    return run_with_retry(_op)


def delete_bill(variant: str, bill_id: int) -> dict:
    """
    Delete a bill and give back the stock it consumed (change type "return").
    """
    model = _bill_model(variant)

    def _op() -> dict:
        warnings: list[dict] = []
        try:
            with keyed_lock(BILL_LOCK, (variant, bill_id)):
                bill = lock_for_update(db.session.query(model).filter_by(id=bill_id)).first()
                if bill is None:
                    raise NotFoundError(f"{variant.capitalize()} bill not found", details={"id": bill_id})

                old_items = copy.deepcopy(bill.items or [])
                product_ids = {i["product_id"] for i in old_items if i.get("product_id") is not None}
                with keyed_locks(PRODUCT_LOCK, product_ids):
                    _, entries = sync_item_stock(
                        variant,
                        f"{_label(variant, bill.serial_no)} deleted",
                        old_items,
                        [],
                        warnings,
                    )
                    for entry in entries:
                        entry.bill_id = bill.id

                    snapshot = bill.to_dict()
                    db.session.delete(bill)
                    db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info("Deleted %s, restored %d stock row(s)", _label(variant, snapshot["serial_no"]), len(entries))
        return {
            "bill": snapshot,
            "restored": [entry.to_dict() for entry in entries],
            "warnings": warnings,
        }

    return run_with_retry(_op)


def list_bills(
    variant: str,
    *,
    search: str | None = None,
    start_date=None,
    end_date=None,
    is_paid: bool | None = None,
    limit: int = 10,
    offset: int = 0,
) -> dict:
    """
    Search by customer name or phone, filter by date range (bill_date for
    sales, from_date for rentals, inclusive) and payment status. Newest first.
    """
    model = _bill_model(variant)
    date_col = model.bill_date if variant == "sales" else model.from_date

    if limit < 1:
        limit = 1
    if limit > 100:
        limit = 100
    if offset < 0:
        offset = 0

    q = db.session.query(model)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(model.customer_name.ilike(pattern), model.customer_phone.ilike(pattern)))
    if start_date is not None:
        q = q.filter(date_col >= start_date)
    if end_date is not None:
        q = q.filter(date_col <= end_date)
    if is_paid is not None:
        q = q.filter(model.is_paid == is_paid)

    total = q.count()
    rows = q.order_by(date_col.desc(), model.id.desc()).limit(limit).offset(offset).all()
    return {
        "items": [bill.to_dict() for bill in rows],
        "count": total,
        "limit": limit,
        "offset": offset,
    }
