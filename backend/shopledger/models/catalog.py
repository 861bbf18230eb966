from __future__ import annotations

from ..extensions import db
from shopledger.time_utils import to_utc_z


STOCK_CHANGE_TYPES = ("restock", "adjustment", "sale", "rental", "return", "damage", "inventory")


class Product(db.Model):
    """
    Catalog entry with its current stock level.

    stock_quantity is a cached balance: it only changes through
    stock_service.apply_delta, which appends a StockHistoryEntry for every
    accepted mutation. SUM(quantity_change) over a product's history equals
    stock_quantity at all times (see stock_service.verify_ledger).

    NAME LOOKUP:
    Bills may reference catalog items by free text. Names are not unique;
    resolution by name picks the lowest id with an exact match.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_type_name", "product_type", "name"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False, index=True)
    category = db.Column(db.String(120), nullable=True)
    product_type = db.Column(db.String(16), nullable=False, default="sales")

    # Authoritative storage in cents (frontend may only format for display)
    rate_cents = db.Column(db.Integer, nullable=False, default=0)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=5)

    # Units moved by bills; never decremented
    total_sales = db.Column(db.Integer, nullable=False, default=0)
    total_rentals = db.Column(db.Integer, nullable=False, default=0)

    last_restocked = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "product_type": self.product_type,
            "rate_cents": self.rate_cents,
            "stock_quantity": self.stock_quantity,
            "min_stock_level": self.min_stock_level,
            "total_sales": self.total_sales,
            "total_rentals": self.total_rentals,
            "last_restocked": to_utc_z(self.last_restocked),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockHistoryEntry(db.Model):
    """
    Append-only audit row for one accepted stock mutation.

    product_id is not a foreign key: deleting a product keeps
    its history, and product_name preserves the name at mutation time.
    """
    __tablename__ = "stock_history"
    __table_args__ = (
        db.Index("ix_stock_history_product_created", "product_id", "created_at"),
        db.CheckConstraint("new_quantity >= 0", name="ck_stock_history_new_non_negative"),
        db.CheckConstraint(
            "new_quantity = previous_quantity + quantity_change",
            name="ck_stock_history_balance",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    change_type = db.Column(db.String(16), nullable=False, index=True)

    # Applied change; differs from requested_change only when consumption was clamped
    quantity_change = db.Column(db.Integer, nullable=False)
    requested_change = db.Column(db.Integer, nullable=False)
    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.String(255), nullable=True)

    # Source bill, when the mutation was driven by billing
    bill_variant = db.Column(db.String(16), nullable=True)
    bill_id = db.Column(db.Integer, nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def was_clamped(self) -> bool:
        return self.quantity_change != self.requested_change

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "change_type": self.change_type,
            "quantity_change": self.quantity_change,
            "requested_change": self.requested_change,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "notes": self.notes,
            "bill_variant": self.bill_variant,
            "bill_id": self.bill_id,
            "created_at": to_utc_z(self.created_at),
        }
