# backend/stockledger/services/products_service.py
"""
Product registry.

current_stock is seeded from opening_stock at creation and afterwards only
moved by stock_service. The one exception is a unit change on a product with
no history, which restates opening_stock and current_stock in the new unit.

Products with history (ledger rows or weekly plans) are deactivated, never
deleted, and their unit is frozen.
"""
from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, StockTransaction, WeeklyStockPlan
from ..validation import ConflictError, ValidationError, MAX_QUANTITY
from . import unit_service
from .stock_service import ProductNotFoundError

logger = logging.getLogger(__name__)

PRODUCT_MUTABLE_FIELDS = {"name", "unit", "is_active"}


class IntegrityConflictError(ConflictError):
    """Change would orphan or rewrite history (delete/unit change with transactions or plans)."""


def _has_history(product_id: int) -> bool:
    has_tx = db.session.query(StockTransaction.id).filter_by(product_id=product_id).first() is not None
    if has_tx:
        return True
    return db.session.query(WeeklyStockPlan.id).filter_by(product_id=product_id).first() is not None


def _name_taken(name: str, exclude_id: int | None = None) -> bool:
    q = db.session.query(Product.id).filter(func.lower(Product.name) == name.lower())
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    return q.first() is not None


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFoundError(f"Product {product_id} not found")
    return product


def list_products(*, include_inactive: bool = False, search: str | None = None) -> list[Product]:
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if search:
        q = q.filter(Product.name.ilike(f"%{search.strip()}%"))
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def create_product(*, patch: dict) -> Product:
    """
    Create a product from a validated patch (name, unit, opening_stock).

    Raises:
        UnsupportedUnitError: unknown unit
        ConflictError: name already used
    """
    name = patch["name"]
    unit = unit_service.normalize_unit(patch["unit"])
    opening = unit_service.quantize(patch.get("opening_stock") or Decimal("0"))

    if _name_taken(name):
        raise ConflictError(f"Product name already exists: {name}")

    p = Product(
        name=name,
        unit=unit,
        opening_stock=opening,
        current_stock=opening,
        is_active=patch.get("is_active", True),
    )
    db.session.add(p)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Product name already exists: {name}")

    logger.info("Created product #%s %r (%s %s)", p.id, p.name, p.opening_stock, p.unit)
    return p


def _restate_stock(p: Product, new_unit: str) -> None:
    """Express opening/current stock in new_unit; refuse lossy or out-of-range results."""
    restated = {}
    for column in ("opening_stock", "current_stock"):
        old = unit_service.quantize(getattr(p, column))
        converted = unit_service.convert(old, p.unit, new_unit)
        if converted > MAX_QUANTITY:
            raise ValidationError(f"{column} would exceed {MAX_QUANTITY} {new_unit}", field="unit")
        if unit_service.convert(converted, new_unit, p.unit) != old:
            raise ValidationError(
                f"{column} {old} {p.unit} cannot be expressed exactly in {new_unit}", field="unit"
            )
        restated[column] = converted
    for column, value in restated.items():
        setattr(p, column, value)


def update_product(product_id: int, patch: dict) -> Product:
    """
    Apply a validated patch. Stock columns are not patchable.

    Raises:
        ProductNotFoundError, ConflictError (name), IntegrityConflictError (unit with history),
        ValidationError (stock not expressible in the new unit)
    """
    p = get_product(product_id)

    if "name" in patch and patch["name"] != p.name:
        if _name_taken(patch["name"], exclude_id=p.id):
            raise ConflictError(f"Product name already exists: {patch['name']}")

    if "unit" in patch:
        new_unit = unit_service.normalize_unit(patch["unit"])
        if new_unit != p.unit and _has_history(p.id):
            raise IntegrityConflictError(
                "Unit cannot be changed after the product has transactions or plans"
            )
        if new_unit != p.unit:
            _restate_stock(p, new_unit)
        patch = {**patch, "unit": new_unit}

    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Product update conflicts with an existing product")
    return p


def delete_product(product_id: int) -> None:
    """
    Hard delete, only for products that never had transactions or plans.
    """
    p = get_product(product_id)
    if _has_history(p.id):
        raise IntegrityConflictError(
            f"Product {p.name} has transactions or plans; deactivate it instead"
        )

    db.session.delete(p)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise IntegrityConflictError(f"Product {product_id} is still referenced; deactivate it instead")
    logger.info("Deleted product #%s", product_id)
