# Overview: Service-layer operations for low-stock alerts; encapsulates business logic and database work.

"""
Low Stock Alert Engine

WHY: Planners need to know, before the week runs out, which products will not
cover their planned consumption.

ALERT LEVELS (per active plan whose week has not ended):
- current_stock <  planned and current_stock <= ratio * planned -> critical
- current_stock <  planned                                   -> low
- otherwise no alert; an open alert for the plan is resolved ("replenished")
- open alerts on a deactivated plan or product, or on a week that has ended,
  are resolved ("plan_closed")
ratio is CRITICAL_STOCK_RATIO (default 0.5).

DUPLICATE SUPPRESSION:
- At most one unresolved alert per (product_id, weekly_plan_id).
- Each plan is evaluated in its own short transaction. The open alert is read
  FOR UPDATE and refreshed in place instead of inserting a second row.
- The partial unique index uq_low_stock_alerts_open catches two checkers
  racing on the same plan; the loser rolls back and keeps the winner's row.

RESOLUTION:
- One-way. A resolved alert is never reopened; a later shortfall opens a new one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import LowStockAlert, Product, WeeklyStockPlan
from ..models.planning import (
    ALERT_LEVEL_LOW,
    ALERT_LEVEL_CRITICAL,
    RESOLUTION_MANUAL,
    RESOLUTION_PLAN_CLOSED,
    RESOLUTION_REPLENISHED,
)
from ..validation import NotFoundError
from stockledger.time_utils import utcnow, today_utc
from . import unit_service
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)


class AlertNotFoundError(NotFoundError):
    """Alert id does not exist."""


@dataclass
class AlertCheckResult:
    created: list[LowStockAlert] = field(default_factory=list)
    escalated: list[LowStockAlert] = field(default_factory=list)
    resolved: list[LowStockAlert] = field(default_factory=list)


def _critical_ratio() -> Decimal:
    return unit_service.to_decimal(current_app.config.get("CRITICAL_STOCK_RATIO", "0.5"))


def classify(current: Decimal, planned: Decimal, ratio: Decimal | None = None) -> str | None:
    """Alert level for a stock/plan pair, or None when stock covers the plan."""
    if ratio is None:
        ratio = _critical_ratio()
    current = unit_service.quantize(current)
    planned = unit_service.quantize(planned)
    if current >= planned:
        return None
    if current <= planned * ratio:
        return ALERT_LEVEL_CRITICAL
    return ALERT_LEVEL_LOW


def _candidate_plan_ids(today: date) -> list[int]:
    rows = (
        db.session.query(WeeklyStockPlan.id)
        .join(Product, Product.id == WeeklyStockPlan.product_id)
        .filter(
            WeeklyStockPlan.is_active.is_(True),
            WeeklyStockPlan.week_end_date >= today,
            Product.is_active.is_(True),
        )
        .order_by(WeeklyStockPlan.week_start_date.asc(), WeeklyStockPlan.id.asc())
        .all()
    )
    return [plan_id for (plan_id,) in rows]


def _open_alert(product_id: int, plan_id: int) -> LowStockAlert | None:
    query = db.session.query(LowStockAlert).filter_by(
        product_id=product_id,
        weekly_plan_id=plan_id,
        is_resolved=False,
    )
    return lock_for_update(query).first()


def _evaluate_plan(plan_id: int, ratio: Decimal, result: AlertCheckResult) -> None:
    """One plan, one transaction. Commits on every path that writes."""
    plan = db.session.get(WeeklyStockPlan, plan_id)
    if plan is None or not plan.is_active:
        db.session.rollback()
        return

    product = plan.product
    current = unit_service.quantize(product.current_stock)
    planned = unit_service.quantize(plan.planned_quantity)
    level = classify(current, planned, ratio)
    existing = _open_alert(product.id, plan.id)
    now = utcnow()

    if level is None:
        if existing is not None:
            existing.is_resolved = True
            existing.resolved_at = now
            existing.resolution = RESOLUTION_REPLENISHED
            existing.current_quantity = current
            db.session.commit()
            result.resolved.append(existing)
            logger.info("Resolved alert #%s for product %s (replenished to %s)", existing.id, product.id, current)
        else:
            db.session.rollback()
        return

    if existing is not None:
        changed_level = existing.alert_level != level
        existing.alert_level = level
        existing.current_quantity = current
        existing.planned_quantity = planned
        db.session.commit()
        if changed_level:
            result.escalated.append(existing)
            logger.info("Alert #%s for product %s is now %s", existing.id, product.id, level)
        return

    alert = LowStockAlert(
        product_id=product.id,
        weekly_plan_id=plan.id,
        current_quantity=current,
        planned_quantity=planned,
        alert_level=level,
        is_resolved=False,
        alert_date=now,
    )
    db.session.add(alert)
    try:
        db.session.commit()
    except IntegrityError:
        # Another checker opened the alert first
        db.session.rollback()
        logger.info("Alert for product %s plan %s already opened concurrently", product.id, plan.id)
        return

    result.created.append(alert)
    logger.info("Raised %s alert #%s for product %s (%s < %s)", level, alert.id, product.id, current, planned)


def _close(alert: LowStockAlert, now) -> None:
    alert.is_resolved = True
    alert.resolved_at = now
    alert.resolution = RESOLUTION_PLAN_CLOSED


def close_plan_alerts(plan_id: int) -> list[LowStockAlert]:
    """
    Resolve the open alerts of a plan that is being deactivated.

    Does not commit; the caller owns the transaction.
    """
    query = db.session.query(LowStockAlert).filter_by(weekly_plan_id=plan_id, is_resolved=False)
    alerts = lock_for_update(query).all()
    now = utcnow()
    for alert in alerts:
        _close(alert, now)
        logger.info("Closed alert #%s with plan %s", alert.id, plan_id)
    return alerts


def _close_stale_alerts(today: date, result: AlertCheckResult) -> None:
    """Resolve open alerts whose plan or product went inactive or whose week is over."""
    query = (
        db.session.query(LowStockAlert)
        .join(WeeklyStockPlan, WeeklyStockPlan.id == LowStockAlert.weekly_plan_id)
        .join(Product, Product.id == LowStockAlert.product_id)
        .filter(
            LowStockAlert.is_resolved.is_(False),
            or_(
                WeeklyStockPlan.is_active.is_(False),
                Product.is_active.is_(False),
                WeeklyStockPlan.week_end_date < today,
            ),
        )
    )
    stale = lock_for_update(query).all()
    if not stale:
        db.session.rollback()
        return

    now = utcnow()
    for alert in stale:
        _close(alert, now)
    db.session.commit()
    result.resolved.extend(stale)
    logger.info("Closed %d stale alert(s)", len(stale))


def run_alert_check(today: date | None = None) -> AlertCheckResult:
    """
    Evaluate every active plan whose week ends on or after today.

    Open alerts left on closed plans are resolved first. Returns the alerts
    created, re-levelled and auto-resolved in this pass.
    """
    today = today or today_utc()
    ratio = _critical_ratio()
    result = AlertCheckResult()

    try:
        _close_stale_alerts(today, result)
    except Exception:
        db.session.rollback()
        raise

    for plan_id in _candidate_plan_ids(today):
        try:
            _evaluate_plan(plan_id, ratio, result)
        except Exception:
            db.session.rollback()
            raise

    logger.info(
        "Low-stock check for %s: %d created, %d re-levelled, %d resolved",
        today, len(result.created), len(result.escalated), len(result.resolved),
    )
    return result


def check_and_raise_alerts(today: date | None = None) -> list[LowStockAlert]:
    """Run the low-stock check and return only the newly created alerts."""
    return run_alert_check(today).created


def get_alert(alert_id: int) -> LowStockAlert:
    alert = db.session.get(LowStockAlert, alert_id)
    if alert is None:
        raise AlertNotFoundError(f"Alert {alert_id} not found")
    return alert


def resolve_alert(alert_id: int, *, user_id: int | None = None) -> LowStockAlert:
    """
    Mark an alert resolved by hand.

    Resolving an already-resolved alert returns it unchanged.
    """
    alert = lock_for_update(db.session.query(LowStockAlert).filter_by(id=alert_id)).first()
    if alert is None:
        db.session.rollback()
        raise AlertNotFoundError(f"Alert {alert_id} not found")

    if alert.is_resolved:
        db.session.rollback()
        return alert

    alert.is_resolved = True
    alert.resolved_at = utcnow()
    alert.resolved_by_user_id = user_id
    alert.resolution = RESOLUTION_MANUAL
    db.session.commit()

    logger.info("Alert #%s resolved manually by user %s", alert.id, user_id)
    return alert


def list_unresolved_alerts(*, product_id: int | None = None) -> list[LowStockAlert]:
    q = LowStockAlert.query.filter(LowStockAlert.is_resolved.is_(False))
    if product_id is not None:
        q = q.filter(LowStockAlert.product_id == product_id)
    return q.order_by(LowStockAlert.alert_date.desc(), LowStockAlert.id.desc()).all()
