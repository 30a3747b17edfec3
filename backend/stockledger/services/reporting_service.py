# Overview: Read-only dashboard aggregates over products, ledger and alerts.

from __future__ import annotations

from datetime import date

from sqlalchemy import func

from ..extensions import db
from ..models import LowStockAlert, Product, StockTransaction
from ..models.inventory import TYPE_STOCK_IN, TYPE_STOCK_OUT
from stockledger.time_utils import day_range, today_utc


def _count_movements(tx_type: str, day: date) -> int:
    start, end = day_range(day, day)
    return (
        db.session.query(func.count(StockTransaction.id))
        .filter(
            StockTransaction.type == tx_type,
            StockTransaction.transaction_date >= start,
            StockTransaction.transaction_date < end,
        )
        .scalar()
    ) or 0


def get_dashboard_stats(today: date | None = None) -> dict:
    """
    Headline counts. total_stock sums every active product's current_stock
    across units, so it is a rough volume indicator only.
    """
    today = today or today_utc()

    total_products = db.session.query(func.count(Product.id)).scalar() or 0
    active_products = (
        db.session.query(func.count(Product.id)).filter(Product.is_active.is_(True)).scalar()
    ) or 0
    total_stock = (
        db.session.query(func.coalesce(func.sum(Product.current_stock), 0))
        .filter(Product.is_active.is_(True))
        .scalar()
    )
    low_stock_products = (
        db.session.query(func.count(func.distinct(LowStockAlert.product_id)))
        .filter(LowStockAlert.is_resolved.is_(False))
        .scalar()
    ) or 0

    return {
        "total_products": total_products,
        "active_products": active_products,
        "total_stock": f"{total_stock or 0:.3f}",
        "today_stock_in": _count_movements(TYPE_STOCK_IN, today),
        "today_stock_out": _count_movements(TYPE_STOCK_OUT, today),
        "low_stock_products": low_stock_products,
        "date": today.isoformat(),
    }
