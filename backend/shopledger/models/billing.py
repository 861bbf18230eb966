from __future__ import annotations

from ..extensions import db
from shopledger.time_utils import to_utc_z


BILL_VARIANTS = ("sales", "rental")
TAX_MODES = ("percentage", "manual")


class BillColumnsMixin:
    """
    Columns shared by sales and rental bills.

    items is an ordered JSON list. Each entry:
        {"item_name", "product_id", "qty", "rate_cents", "amount_cents", "applied_qty"}
    applied_qty is the stock actually consumed for that line, which is what an
    edit or delete must give back.
    """
    id = db.Column(db.Integer, primary_key=True)

    # Human-facing bill number, unique per variant, assigned once at creation
    serial_no = db.Column(db.Integer, nullable=False)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=False)
    customer_address = db.Column(db.String(500), nullable=True)

    items = db.Column(db.JSON, nullable=False, default=list)

    # Money (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_mode = db.Column(db.String(16), nullable=False, default="percentage")
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_type = db.Column(db.String(32), nullable=True)
    advance_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    is_paid = db.Column(db.Boolean, nullable=False, default=False)
    customer_feedback = db.Column(db.String(16), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def _common_dict(self) -> dict:
        return {
            "id": self.id,
            "variant": self.variant,
            "serial_no": self.serial_no,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "items": list(self.items or []),
            "subtotal_cents": self.subtotal_cents,
            "tax_mode": self.tax_mode,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_percentage": self.tax_rate_bps / 100,
            "tax_amount_cents": self.tax_amount_cents,
            "tax_type": self.tax_type,
            "advance_cents": self.advance_cents,
            "total_cents": self.total_cents,
            "is_paid": self.is_paid,
            "customer_feedback": self.customer_feedback,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SalesBill(BillColumnsMixin, db.Model):
    __tablename__ = "sales_bills"
    __table_args__ = (
        db.UniqueConstraint("serial_no", name="uq_sales_bills_serial_no"),
        db.Index("ix_sales_bills_bill_date", "bill_date"),
        db.Index("ix_sales_bills_customer_phone", "customer_phone"),
        {"sqlite_autoincrement": True},
    )

    variant = "sales"

    bill_date = db.Column(db.DateTime(timezone=True), nullable=False)

    @property
    def transport_fees_cents(self) -> int:
        return 0

    @property
    def billing_days(self) -> int:
        return 1

    def to_dict(self) -> dict:
        data = self._common_dict()
        data["bill_date"] = to_utc_z(self.bill_date)
        return data


class RentalBill(BillColumnsMixin, db.Model):
    __tablename__ = "rental_bills"
    __table_args__ = (
        db.UniqueConstraint("serial_no", name="uq_rental_bills_serial_no"),
        db.Index("ix_rental_bills_from_date", "from_date"),
        db.Index("ix_rental_bills_customer_phone", "customer_phone"),
        {"sqlite_autoincrement": True},
    )

    variant = "rental"

    from_date = db.Column(db.DateTime(timezone=True), nullable=False)
    # Open-ended rentals leave to_date empty
    to_date = db.Column(db.DateTime(timezone=True), nullable=True)

    transport_fees_cents = db.Column(db.Integer, nullable=False, default=0)

    # Whole 24h periods between from_date and to_date (0 when open-ended)
    rental_days = db.Column(db.Integer, nullable=False, default=0)

    @property
    def billing_days(self) -> int:
        return self.rental_days if self.rental_days and self.rental_days > 0 else 1

    def to_dict(self) -> dict:
        data = self._common_dict()
        data.update({
            "from_date": to_utc_z(self.from_date),
            "to_date": to_utc_z(self.to_date),
            "transport_fees_cents": self.transport_fees_cents,
            "rental_days": self.rental_days,
        })
        return data


class BillSequence(db.Model):
    """
    Central serial counter, one row per bill variant.

    WHY: reading MAX(serial_no) and inserting is racy; an atomic UPDATE on
    this row is the store-level serialization point for bill numbers.
    """
    __tablename__ = "bill_sequences"
    __table_args__ = (
        db.UniqueConstraint("variant", name="uq_bill_sequences_variant"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant = db.Column(db.String(16), nullable=False)
    last_serial = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )


BILL_MODELS = {
    "sales": SalesBill,
    "rental": RentalBill,
}
