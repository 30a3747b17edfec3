# Overview: Service-layer operations for stock movements; encapsulates business logic and database work.

# backend/stockledger/services/stock_service.py
"""
Stock Ledger Invariants (authoritative)

Balance model:
- Product.current_stock is the canonical running balance, in the product's unit.
- Every committed movement writes exactly one StockTransaction row and exactly
  one balance update, in the same DB transaction. Both commit or neither does.
- Conservation: current_stock == opening_stock + sum(stock_in) - sum(stock_out).
- current_stock may never go negative; a stock_out that would do so is rejected
  before anything is written.

Concurrency:
- The read-modify-write on a product is serialized per product:
  SELECT ... FOR UPDATE (PostgreSQL) plus the version_id compare-and-swap on the
  products row (every DB, including SQLite).
- Lost-update conflicts roll back and retry the whole unit of work with backoff.
  Exhausted retries surface as StockConcurrencyError, never as insufficient stock.

Time semantics:
- transaction_date is UTC-naive; list filters use inclusive calendar dates.

Not handled here:
- Request deduplication. A retried identical request is a second movement.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Product, StockTransaction
from ..models.inventory import TYPE_STOCK_IN, TYPE_STOCK_OUT, TRANSACTION_TYPES, format_quantity
from ..validation import ValidationError, ConflictError, NotFoundError, MAX_QUANTITY
from stockledger.time_utils import utcnow, day_range
from . import unit_service
from .concurrency import lock_for_update, run_with_retry, RETRYABLE_ERRORS

logger = logging.getLogger(__name__)


class ProductNotFoundError(NotFoundError):
    """Product id is unknown or the product is inactive."""


class InsufficientStockError(ConflictError):
    """stock_out would drive the balance below zero."""

    def __init__(self, product: Product, requested: Decimal):
        self.product_id = product.id
        self.available = product.current_stock
        self.requested = requested
        self.unit = product.unit
        super().__init__(
            f"Insufficient stock for {product.name}: available {format_quantity(self.available)} "
            f"{self.unit}, requested {format_quantity(requested)} {self.unit}"
        )

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "product_id": self.product_id,
            "available": format_quantity(self.available),
            "requested": format_quantity(self.requested),
            "unit": self.unit,
        }


class StockConcurrencyError(RuntimeError):
    """Retries exhausted on a contended product; safe for the caller to retry."""

    def to_dict(self) -> dict:
        return {"error": str(self), "retryable": True}


class BatchItemError(RuntimeError):
    """Unexpected failure on one batch item; the cause is logged, not returned."""

    def to_dict(self) -> dict:
        return {"error": "Internal server error"}


@dataclass
class BatchResult:
    """Outcome of a batch movement: committed rows plus the first failure, if any."""
    transactions: list[StockTransaction] = field(default_factory=list)
    error: Exception | None = None
    failed_index: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _load_product(product_id: int, *, lock: bool = False, require_active: bool = True) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductNotFoundError(f"Product {product_id} not found")
    if require_active and not product.is_active:
        raise ProductNotFoundError(f"Product {product_id} is inactive")
    return product


def _apply_movement_inner(
    *,
    product_id: int,
    tx_type: str,
    entered_quantity: Decimal,
    entered_unit: str,
    user_id: int | None,
    transaction_date: datetime,
    po_number: str | None,
    so_number: str | None,
    remarks: str | None,
) -> StockTransaction:
    """Core movement logic without retry or commit. Flushes, so CAS conflicts surface here."""
    product = _load_product(product_id, lock=True)

    quantity = unit_service.convert(entered_quantity, entered_unit, product.unit)
    if quantity <= 0:
        raise ValidationError(
            f"quantity {entered_quantity} {entered_unit} rounds to zero in {product.unit}",
            field="quantity",
        )
    if quantity > MAX_QUANTITY:
        raise ValidationError(
            f"quantity exceeds maximum {MAX_QUANTITY} {product.unit} after conversion",
            field="quantity",
        )

    previous_stock = unit_service.quantize(product.current_stock)
    if tx_type == TYPE_STOCK_IN:
        new_stock = previous_stock + quantity
        if new_stock > MAX_QUANTITY:
            raise ValidationError(
                f"stock_in would raise the balance above {MAX_QUANTITY} {product.unit}",
                field="quantity",
            )
    else:
        new_stock = previous_stock - quantity
        if new_stock < 0:
            raise InsufficientStockError(product, quantity)

    product.current_stock = new_stock

    tx = StockTransaction(
        product_id=product.id,
        user_id=user_id,
        type=tx_type,
        quantity=quantity,
        original_quantity=unit_service.quantize(entered_quantity),
        original_unit=unit_service.normalize_unit(entered_unit),
        previous_stock=previous_stock,
        new_stock=new_stock,
        transaction_date=transaction_date,
        po_number=po_number if tx_type == TYPE_STOCK_IN else None,
        so_number=so_number if tx_type == TYPE_STOCK_OUT else None,
        remarks=remarks,
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def apply_movement(
    product_id: int,
    tx_type: str,
    entered_quantity,
    entered_unit: str,
    *,
    user_id: int | None = None,
    po_number: str | None = None,
    so_number: str | None = None,
    remarks: str | None = None,
    transaction_date: datetime | None = None,
) -> StockTransaction:
    """
    Validate and apply one stock movement, returning the committed ledger row.

    Raises:
        ValidationError: bad type/quantity, UnsupportedUnitError for units
        ProductNotFoundError: unknown or inactive product
        InsufficientStockError: stock_out beyond the current balance
        StockConcurrencyError: lost-update retries exhausted
    """
    if tx_type not in TRANSACTION_TYPES:
        raise ValidationError(f"type must be one of {', '.join(TRANSACTION_TYPES)}", field="type")

    qty = unit_service.to_decimal(entered_quantity)
    if qty <= 0:
        raise ValidationError("quantity must be > 0", field="quantity")
    unit = unit_service.normalize_unit(entered_unit)

    when = transaction_date or utcnow()

    def _op():
        try:
            tx = _apply_movement_inner(
                product_id=product_id,
                tx_type=tx_type,
                entered_quantity=qty,
                entered_unit=unit,
                user_id=user_id,
                transaction_date=when,
                po_number=po_number,
                so_number=so_number,
                remarks=remarks,
            )
            db.session.commit()
        except RETRYABLE_ERRORS:
            raise
        except Exception:
            db.session.rollback()
            raise
        return tx

    try:
        tx = run_with_retry(_op)
    except RETRYABLE_ERRORS as exc:
        raise StockConcurrencyError(
            f"Product {product_id} is busy; the movement was not applied, please retry"
        ) from exc
    except InsufficientStockError as exc:
        logger.info("Rejected %s on product %s: %s", tx_type, product_id, exc)
        raise

    logger.info(
        "Committed %s #%s product=%s qty=%s %s -> %s",
        tx.type, tx.id, tx.product_id, tx.quantity, tx.previous_stock, tx.new_stock,
    )
    return tx


def stock_in(product_id: int, quantity, unit: str, **kwargs) -> StockTransaction:
    return apply_movement(product_id, TYPE_STOCK_IN, quantity, unit, **kwargs)


def stock_out(product_id: int, quantity, unit: str, **kwargs) -> StockTransaction:
    return apply_movement(product_id, TYPE_STOCK_OUT, quantity, unit, **kwargs)


def apply_batch(
    tx_type: str,
    items: list[dict],
    *,
    user_id: int | None = None,
    reference: str | None = None,
    remarks: str | None = None,
) -> BatchResult:
    """
    Apply several movements sharing one PO/SO reference and one timestamp.

    Each item ({"product_id", "quantity", "unit"}) is its own unit of work.
    Processing stops at the first failing item; items committed before it stay
    committed. The result carries the successes and that first error; an
    unexpected exception is logged and reported as BatchItemError.
    """
    if not items:
        raise ValidationError("items must contain at least one movement", field="items")

    when = utcnow()
    ref_kwargs = {"po_number": reference} if tx_type == TYPE_STOCK_IN else {"so_number": reference}
    result = BatchResult()

    for index, item in enumerate(items):
        try:
            tx = apply_movement(
                item["product_id"],
                tx_type,
                item["quantity"],
                item["unit"],
                user_id=user_id,
                remarks=remarks,
                transaction_date=when,
                **ref_kwargs,
            )
        except (ValidationError, ConflictError, NotFoundError, StockConcurrencyError) as exc:
            result.error = exc
            result.failed_index = index
            break
        except Exception as exc:
            db.session.rollback()
            logger.exception("Batch %s item %d (product %s) failed", tx_type, index, item.get("product_id"))
            result.error = BatchItemError(f"Item {index} failed: {exc.__class__.__name__}")
            result.error.__cause__ = exc
            result.failed_index = index
            break
        result.transactions.append(tx)

    return result


def list_transactions(
    *,
    product_id: int | None = None,
    tx_type: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    user_id: int | None = None,
    limit: int | None = None,
) -> list[StockTransaction]:
    """Ledger rows, newest first. from_date/to_date are inclusive calendar dates."""
    if tx_type is not None and tx_type not in TRANSACTION_TYPES:
        raise ValidationError(f"type must be one of {', '.join(TRANSACTION_TYPES)}", field="type")

    max_limit = current_app.config.get("TRANSACTION_LIST_LIMIT", 500)
    limit = max_limit if limit is None else max(1, min(limit, max_limit))

    q = StockTransaction.query
    if product_id is not None:
        q = q.filter(StockTransaction.product_id == product_id)
    if tx_type is not None:
        q = q.filter(StockTransaction.type == tx_type)
    if user_id is not None:
        q = q.filter(StockTransaction.user_id == user_id)
    if from_date is not None:
        start, _ = day_range(from_date, from_date)
        q = q.filter(StockTransaction.transaction_date >= start)
    if to_date is not None:
        _, end = day_range(to_date, to_date)
        q = q.filter(StockTransaction.transaction_date < end)

    return q.order_by(
        StockTransaction.transaction_date.desc(),
        StockTransaction.id.desc(),
    ).limit(limit).all()


def get_product_ledger_balance(product_id: int) -> dict:
    """
    Recompute the balance from the ledger and compare with current_stock.

    Works for inactive products too; history outlives deactivation.
    """
    product = _load_product(product_id, require_active=False)

    rows = (
        db.session.query(
            StockTransaction.type,
            func.coalesce(func.sum(StockTransaction.quantity), 0),
            func.count(StockTransaction.id),
        )
        .filter(StockTransaction.product_id == product_id)
        .group_by(StockTransaction.type)
        .all()
    )
    totals = {TYPE_STOCK_IN: Decimal("0"), TYPE_STOCK_OUT: Decimal("0")}
    count = 0
    for tx_type, total, n in rows:
        totals[tx_type] = unit_service.quantize(total)
        count += n

    opening = unit_service.quantize(product.opening_stock)
    current = unit_service.quantize(product.current_stock)
    expected = opening + totals[TYPE_STOCK_IN] - totals[TYPE_STOCK_OUT]

    return {
        "product_id": product.id,
        "unit": product.unit,
        "opening_stock": format_quantity(opening),
        "total_stock_in": format_quantity(totals[TYPE_STOCK_IN]),
        "total_stock_out": format_quantity(totals[TYPE_STOCK_OUT]),
        "transaction_count": count,
        "ledger_balance": format_quantity(expected),
        "current_stock": format_quantity(current),
        "balanced": expected == current,
    }


def verify_product_balance(product_id: int) -> bool:
    return get_product_ledger_balance(product_id)["balanced"]


def verify_all_balances() -> list[dict]:
    """Conservation audit over every product; returns the mismatching ones."""
    mismatches = []
    for (product_id,) in db.session.query(Product.id).order_by(Product.id.asc()).all():
        report = get_product_ledger_balance(product_id)
        if not report["balanced"]:
            mismatches.append(report)
    return mismatches
