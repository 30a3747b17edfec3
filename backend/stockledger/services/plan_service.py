# backend/stockledger/services/plan_service.py
"""
Weekly stock planning and stock-out reconciliation.

WHY: Planners forecast how much of each product a week will consume. The
forecast is compared against what the ledger says was actually consumed and,
by the alert engine, against current stock.

WEEKS:
- A week is an ISO week: Monday 00:00 through Sunday 23:59:59 (UTC calendar
  dates of transaction_date).
- Exactly one plan exists per (product_id, week_start_date, week_end_date).

RECONCILIATION:
- Consumption is recomputed from stock_out ledger rows on every call. Nothing
  is cached, so it always reflects the latest committed transactions.
"""
from __future__ import annotations

from collections import OrderedDict
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from stockledger.extensions import db
from stockledger.models import Product, StockTransaction, WeeklyStockPlan
from stockledger.models.inventory import TYPE_STOCK_OUT, format_quantity
from stockledger.validation import ValidationError, ConflictError, NotFoundError, MAX_QUANTITY
from stockledger.time_utils import day_range, week_bounds, today_utc, to_iso_date
from stockledger.services import alert_service, unit_service
from stockledger.services.stock_service import ProductNotFoundError


class PlanNotFoundError(NotFoundError):
    """Weekly plan id does not exist."""


class DuplicatePlanError(ConflictError):
    """Same (product, week) submitted twice, or lost a race on the unique key."""


def previous_week_consumption(product_id: int, week_start: date, week_end: date) -> Decimal:
    """
    Total stock_out quantity for a product with transaction_date in
    [week_start, week_end] (inclusive calendar dates). Pure read.
    """
    if week_end < week_start:
        raise ValidationError("week_end must not be before week_start", field="week_end")

    start, end = day_range(week_start, week_end)
    total = (
        db.session.query(func.coalesce(func.sum(StockTransaction.quantity), 0))
        .filter(
            StockTransaction.product_id == product_id,
            StockTransaction.type == TYPE_STOCK_OUT,
            StockTransaction.transaction_date >= start,
            StockTransaction.transaction_date < end,
        )
        .scalar()
    )
    return unit_service.quantize(total or 0)


def validate_week(week_start: date, week_end: date) -> None:
    if week_start.weekday() != 0:
        raise ValidationError("week_start_date must be a Monday", field="week_start_date")
    if week_end != week_start + timedelta(days=6):
        raise ValidationError("week_end_date must be the Sunday after week_start_date", field="week_end_date")


def _snapshot(plan: WeeklyStockPlan, product: Product) -> None:
    # Query before assigning; a pending plan must not autoflush half-filled
    prior_start = plan.week_start_date - timedelta(days=7)
    prior_end = plan.week_start_date - timedelta(days=1)
    consumed = previous_week_consumption(product.id, prior_start, prior_end)
    plan.present_stock = unit_service.quantize(product.current_stock)
    plan.previous_week_stock = consumed
    plan.unit = product.unit


def _planned_in_product_unit(quantity, entered_unit: str, product: Product) -> Decimal:
    planned = unit_service.convert(quantity, entered_unit, product.unit)
    if planned < 0:
        raise ValidationError("planned_quantity must be >= 0", field="planned_quantity")
    if planned > MAX_QUANTITY:
        raise ValidationError(
            f"planned_quantity exceeds maximum {MAX_QUANTITY} {product.unit} after conversion",
            field="planned_quantity",
        )
    return planned


def upsert_plans(items: list[dict], *, user_id: int | None = None) -> list[WeeklyStockPlan]:
    """
    Create or update weekly plans. Each item holds product_id, week_start_date,
    week_end_date, original_planned_quantity and original_unit (validated
    column names from the route layer).

    All items are checked before anything is written; the batch commits as one
    unit of work.

    Raises:
        ValidationError / UnsupportedUnitError: bad week or unit
        ProductNotFoundError: unknown or inactive product
        DuplicatePlanError: same key twice in items, or a concurrent insert won
    """
    if not items:
        raise ValidationError("At least one plan is required")

    seen = set()
    prepared = []
    for item in items:
        validate_week(item["week_start_date"], item["week_end_date"])
        key = (item["product_id"], item["week_start_date"], item["week_end_date"])
        if key in seen:
            raise DuplicatePlanError(
                f"Duplicate plan for product {key[0]} week {to_iso_date(key[1])}..{to_iso_date(key[2])}"
            )
        seen.add(key)

        product = db.session.query(Product).filter_by(id=item["product_id"]).first()
        if product is None or not product.is_active:
            raise ProductNotFoundError(f"Product {item['product_id']} not found")

        entered_unit = unit_service.normalize_unit(item["original_unit"])
        planned = _planned_in_product_unit(item["original_planned_quantity"], entered_unit, product)
        prepared.append((item, product, entered_unit, planned))

    plans = []
    try:
        for item, product, entered_unit, planned in prepared:
            plan = (
                db.session.query(WeeklyStockPlan)
                .filter_by(
                    product_id=product.id,
                    week_start_date=item["week_start_date"],
                    week_end_date=item["week_end_date"],
                )
                .first()
            )
            is_new = plan is None
            if is_new:
                plan = WeeklyStockPlan(
                    product_id=product.id,
                    week_start_date=item["week_start_date"],
                    week_end_date=item["week_end_date"],
                )

            _snapshot(plan, product)
            plan.user_id = user_id
            plan.planned_quantity = planned
            plan.original_planned_quantity = unit_service.quantize(item["original_planned_quantity"])
            plan.original_unit = entered_unit
            plan.is_active = True
            if is_new:
                db.session.add(plan)
            plans.append(plan)

        db.session.flush()
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DuplicatePlanError("A plan for this product and week was created concurrently; retry to update it")

    return plans


def get_plan(plan_id: int) -> WeeklyStockPlan:
    plan = db.session.get(WeeklyStockPlan, plan_id)
    if plan is None:
        raise PlanNotFoundError(f"Weekly plan {plan_id} not found")
    return plan


def update_plan(plan_id: int, patch: dict) -> WeeklyStockPlan:
    """
    Update planned quantity (with its unit) and/or is_active.

    present_stock/previous_week_stock are re-snapshotted when the quantity changes.
    """
    plan = get_plan(plan_id)
    product = plan.product

    if "original_planned_quantity" in patch:
        entered_unit = unit_service.normalize_unit(patch.get("original_unit") or plan.original_unit or plan.unit)
        planned = _planned_in_product_unit(patch["original_planned_quantity"], entered_unit, product)
        plan.planned_quantity = planned
        plan.original_planned_quantity = unit_service.quantize(patch["original_planned_quantity"])
        plan.original_unit = entered_unit
        _snapshot(plan, product)
    elif "original_unit" in patch:
        raise ValidationError("unit can only be changed together with planned_quantity", field="unit")

    if "is_active" in patch:
        plan.is_active = bool(patch["is_active"])
        if not plan.is_active:
            alert_service.close_plan_alerts(plan.id)

    db.session.commit()
    return plan


def list_plans(
    *,
    week_start: date | None = None,
    product_id: int | None = None,
    include_inactive: bool = False,
) -> list[WeeklyStockPlan]:
    q = WeeklyStockPlan.query
    if week_start is not None:
        q = q.filter(WeeklyStockPlan.week_start_date == week_start)
    if product_id is not None:
        q = q.filter(WeeklyStockPlan.product_id == product_id)
    if not include_inactive:
        q = q.filter(WeeklyStockPlan.is_active.is_(True))
    return q.order_by(WeeklyStockPlan.week_start_date.desc(), WeeklyStockPlan.product_id.asc()).all()


def current_week_plans(today: date | None = None) -> list[WeeklyStockPlan]:
    monday, _ = week_bounds(today or today_utc())
    return list_plans(week_start=monday)


def weekly_stock_out_summary(
    *,
    from_date: date | None = None,
    to_date: date | None = None,
    product_id: int | None = None,
) -> list[dict]:
    """
    Stock-out totals grouped by (product, ISO week), oldest week first.
    """
    q = db.session.query(
        StockTransaction.product_id,
        StockTransaction.transaction_date,
        StockTransaction.quantity,
    ).filter(StockTransaction.type == TYPE_STOCK_OUT)
    if product_id is not None:
        q = q.filter(StockTransaction.product_id == product_id)
    if from_date is not None:
        start, _ = day_range(from_date, from_date)
        q = q.filter(StockTransaction.transaction_date >= start)
    if to_date is not None:
        _, end = day_range(to_date, to_date)
        q = q.filter(StockTransaction.transaction_date < end)

    grouped: "OrderedDict[tuple, Decimal]" = OrderedDict()
    for pid, tx_date, quantity in q.order_by(StockTransaction.transaction_date.asc()).all():
        monday, sunday = week_bounds(tx_date.date())
        key = (pid, monday, sunday)
        grouped[key] = grouped.get(key, Decimal("0")) + Decimal(quantity)

    return [
        {
            "product_id": pid,
            "week_start_date": to_iso_date(monday),
            "week_end_date": to_iso_date(sunday),
            "out_quantity": format_quantity(unit_service.quantize(total)),
        }
        for (pid, monday, sunday), total in grouped.items()
    ]
