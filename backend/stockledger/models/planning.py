from __future__ import annotations

from ..extensions import db
from .inventory import QUANTITY_TYPE, format_quantity
from stockledger.time_utils import to_utc_z, to_iso_date

ALERT_LEVEL_LOW = "low"
ALERT_LEVEL_CRITICAL = "critical"

RESOLUTION_MANUAL = "manual"
RESOLUTION_REPLENISHED = "replenished"
# Plan deactivated, product deactivated or week over
RESOLUTION_PLAN_CLOSED = "plan_closed"


class WeeklyStockPlan(db.Model):
    """
    Planned consumption of a product for one Monday..Sunday week.

    planned_quantity is stored in the product's unit; what the planner typed is
    kept in original_planned_quantity/original_unit. present_stock and
    previous_week_stock are snapshots taken when the plan was last saved and are
    never used as the current balance.
    """
    __tablename__ = "weekly_stock_plans"
    __table_args__ = (
        db.UniqueConstraint(
            "product_id", "week_start_date", "week_end_date",
            name="uq_weekly_plans_product_week",
        ),
        db.Index("ix_weekly_plans_week", "week_start_date", "week_end_date"),
        db.CheckConstraint("planned_quantity >= 0", name="ck_weekly_plans_planned_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    week_start_date = db.Column(db.Date, nullable=False)
    week_end_date = db.Column(db.Date, nullable=False)

    planned_quantity = db.Column(QUANTITY_TYPE, nullable=False)
    original_planned_quantity = db.Column(QUANTITY_TYPE, nullable=True)
    original_unit = db.Column(db.String(16), nullable=True)

    present_stock = db.Column(QUANTITY_TYPE, nullable=False)
    previous_week_stock = db.Column(QUANTITY_TYPE, nullable=False)
    unit = db.Column(db.String(16), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("weekly_plans", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "user_id": self.user_id,
            "week_start_date": to_iso_date(self.week_start_date),
            "week_end_date": to_iso_date(self.week_end_date),
            "planned_quantity": format_quantity(self.planned_quantity),
            "original_planned_quantity": format_quantity(self.original_planned_quantity),
            "original_unit": self.original_unit,
            "present_stock": format_quantity(self.present_stock),
            "previous_week_stock": format_quantity(self.previous_week_stock),
            "unit": self.unit,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LowStockAlert(db.Model):
    """
    Low-stock alert raised against a weekly plan.

    At most one unresolved alert may exist per (product_id, weekly_plan_id);
    the partial unique index below backs up the check-then-create done in
    services/alert_service.py. Resolution is one-way.
    """
    __tablename__ = "low_stock_alerts"
    __table_args__ = (
        db.Index(
            "uq_low_stock_alerts_open",
            "product_id",
            "weekly_plan_id",
            unique=True,
            postgresql_where=db.text("is_resolved = false"),
            sqlite_where=db.text("is_resolved = 0"),
        ),
        db.Index("ix_low_stock_alerts_resolved_date", "is_resolved", "alert_date"),
        db.CheckConstraint("alert_level IN ('low', 'critical')", name="ck_low_stock_alerts_level"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    weekly_plan_id = db.Column(db.Integer, db.ForeignKey("weekly_stock_plans.id"), nullable=False, index=True)

    current_quantity = db.Column(QUANTITY_TYPE, nullable=False)
    planned_quantity = db.Column(QUANTITY_TYPE, nullable=False)

    alert_level = db.Column(db.String(16), nullable=False, default=ALERT_LEVEL_LOW)

    is_resolved = db.Column(db.Boolean, nullable=False, default=False)
    alert_date = db.Column(db.DateTime(timezone=True), nullable=False)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    resolution = db.Column(db.String(16), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")
    weekly_plan = db.relationship("WeeklyStockPlan", backref=db.backref("alerts", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "unit": self.product.unit if self.product else None,
            "weekly_plan_id": self.weekly_plan_id,
            "week_start_date": to_iso_date(self.weekly_plan.week_start_date) if self.weekly_plan else None,
            "week_end_date": to_iso_date(self.weekly_plan.week_end_date) if self.weekly_plan else None,
            "current_quantity": format_quantity(self.current_quantity),
            "planned_quantity": format_quantity(self.planned_quantity),
            "alert_level": self.alert_level,
            "is_resolved": self.is_resolved,
            "alert_date": to_utc_z(self.alert_date),
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
            "resolved_by_user_id": self.resolved_by_user_id,
            "resolution": self.resolution,
        }
