from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from stockledger.time_utils import to_utc_z

# Every stock quantity is fixed-point with 3 decimal places.
QUANTITY_TYPE = db.Numeric(14, 3, asdecimal=True)

TYPE_STOCK_IN = "stock_in"
TYPE_STOCK_OUT = "stock_out"
TRANSACTION_TYPES = (TYPE_STOCK_IN, TYPE_STOCK_OUT)

# new_stock = previous_stock ± quantity
BALANCE_CHAIN_CHECK = (
    "(type = 'stock_in' AND ABS(new_stock - (previous_stock + quantity)) < 0.0005) OR "
    "(type = 'stock_out' AND ABS(new_stock - (previous_stock - quantity)) < 0.0005)"
)


def format_quantity(value: Decimal | None) -> str | None:
    """Serialize a quantity as a fixed 3-decimal string (never a float)."""
    if value is None:
        return None
    return f"{Decimal(value):.3f}"


class Product(db.Model):
    """
    Product master data and the canonical current stock level.

    current_stock is the running balance in the product's stored unit. It is
    written only by services/stock_service.py, inside the same DB transaction
    that appends the matching StockTransaction row.

    CONCURRENCY:
    version_id is an optimistic-locking counter. Every UPDATE of the row is
    issued as "... WHERE id = ? AND version_id = ?"; if another writer got there
    first, SQLAlchemy raises StaleDataError and the stock service retries the
    whole read-modify-write.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_products_name"),
        db.Index("ix_products_active_name", "is_active", "name"),
        db.CheckConstraint("current_stock >= 0", name="ck_products_current_stock_non_negative"),
        db.CheckConstraint("opening_stock >= 0", name="ck_products_opening_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)

    # Stored unit (canonical symbol: g, kg, ml, l, pcs)
    unit = db.Column(db.String(16), nullable=False)

    opening_stock = db.Column(QUANTITY_TYPE, nullable=False, default=Decimal("0"))
    current_stock = db.Column(QUANTITY_TYPE, nullable=False, default=Decimal("0"))

    is_active = db.Column(db.Boolean, nullable=False, default=True)

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
        return f"<Product id={self.id} name={self.name!r} unit={self.unit} current_stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "unit": self.unit,
            "opening_stock": format_quantity(self.opening_stock),
            "current_stock": format_quantity(self.current_stock),
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockTransaction(db.Model):
    """
    Append-only stock ledger.

    One row per committed movement. previous_stock/new_stock are the product
    balance snapshots taken inside the movement's DB transaction, so the ledger
    alone is enough to replay every balance. Rows are never updated or deleted.
    """
    __tablename__ = "stock_transactions"

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)

    # In the product's stored unit
    quantity = db.Column(QUANTITY_TYPE, nullable=False)

    # As entered by the operator
    original_quantity = db.Column(QUANTITY_TYPE, nullable=True)
    original_unit = db.Column(db.String(16), nullable=True)

    previous_stock = db.Column(QUANTITY_TYPE, nullable=False)
    new_stock = db.Column(QUANTITY_TYPE, nullable=False)

    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    po_number = db.Column(db.String(100), nullable=True)
    so_number = db.Column(db.String(100), nullable=True)
    remarks = db.Column(db.String(255), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("transactions", lazy="dynamic"))
    user = db.relationship("User", backref=db.backref("stock_transactions", lazy="dynamic"))

    __table_args__ = (
        db.Index("ix_stocktx_product_type_date", "product_id", "type", "transaction_date"),
        db.CheckConstraint("quantity > 0", name="ck_stocktx_quantity_positive"),
        db.CheckConstraint("new_stock >= 0", name="ck_stocktx_new_stock_non_negative"),
        db.CheckConstraint("type IN ('stock_in', 'stock_out')", name="ck_stocktx_type"),
        # Tolerance below the 0.001 scale; SQLite compares NUMERIC as REAL
        db.CheckConstraint(BALANCE_CHAIN_CHECK, name="ck_stocktx_balance_chain"),
        {"sqlite_autoincrement": True},
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "user_id": self.user_id,
            "type": self.type,
            "quantity": format_quantity(self.quantity),
            "unit": self.product.unit if self.product else None,
            "original_quantity": format_quantity(self.original_quantity),
            "original_unit": self.original_unit,
            "previous_stock": format_quantity(self.previous_stock),
            "new_stock": format_quantity(self.new_stock),
            "transaction_date": to_utc_z(self.transaction_date),
            "po_number": self.po_number,
            "so_number": self.so_number,
            "remarks": self.remarks,
            "created_at": to_utc_z(self.created_at),
        }
