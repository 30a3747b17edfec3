"""
Weekly stock plan tests.

Verifies:
- Consumption sums stock-outs over inclusive calendar dates
- Plans upsert per (product, week) and snapshot stock figures
- Week shape, duplicate keys and unknown products are rejected
- Weekly stock-out summary groups by ISO week
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from stockledger.models import WeeklyStockPlan
from stockledger.services import plan_service, stock_service, products_service
from stockledger.services.plan_service import DuplicatePlanError, PlanNotFoundError
from stockledger.services.stock_service import ProductNotFoundError
from stockledger.time_utils import week_bounds
from stockledger.validation import ValidationError


WEEK_START = date(2024, 1, 1)   # Monday
WEEK_END = date(2024, 1, 7)     # Sunday


def _plan(product_id, quantity, unit, start=WEEK_START, end=WEEK_END):
    return {
        "product_id": product_id,
        "week_start_date": start,
        "week_end_date": end,
        "original_planned_quantity": Decimal(quantity),
        "original_unit": unit,
    }


@pytest.fixture
def milk_history(db_session, milk):
    """Stock-outs straddling the first week of 2024."""
    stock_service.stock_in(milk.id, Decimal("100"), "l", transaction_date=datetime(2023, 12, 30, 9, 0))
    stock_service.stock_out(milk.id, Decimal("4"), "l", transaction_date=datetime(2023, 12, 31, 23, 59))
    stock_service.stock_out(milk.id, Decimal("5"), "l", transaction_date=datetime(2024, 1, 1, 0, 0))
    stock_service.stock_out(milk.id, Decimal("2500"), "ml", transaction_date=datetime(2024, 1, 4, 12, 0))
    stock_service.stock_out(milk.id, Decimal("1"), "l", transaction_date=datetime(2024, 1, 7, 23, 59, 59))
    stock_service.stock_out(milk.id, Decimal("7"), "l", transaction_date=datetime(2024, 1, 8, 0, 0))
    return milk


class TestConsumption:

    def test_inclusive_week_boundaries(self, milk_history):
        total = plan_service.previous_week_consumption(milk_history.id, WEEK_START, WEEK_END)
        assert total == Decimal("8.5")

    def test_stock_in_not_counted(self, milk_history):
        total = plan_service.previous_week_consumption(milk_history.id, date(2023, 12, 25), date(2023, 12, 31))
        assert total == Decimal("4")

    def test_empty_week_is_zero(self, db_session, milk):
        assert plan_service.previous_week_consumption(milk.id, WEEK_START, WEEK_END) == Decimal("0")

    def test_reversed_range_rejected(self, db_session, milk):
        with pytest.raises(ValidationError):
            plan_service.previous_week_consumption(milk.id, WEEK_END, WEEK_START)

    def test_week_bounds(self):
        assert week_bounds(date(2024, 1, 4)) == (WEEK_START, WEEK_END)
        assert week_bounds(date(2024, 1, 7)) == (WEEK_START, WEEK_END)
        assert week_bounds(date(2024, 1, 8)) == (date(2024, 1, 8), date(2024, 1, 14))


class TestUpsertPlans:

    def test_create_snapshots_stock_and_prior_week(self, milk_history, admin_user):
        next_monday = date(2024, 1, 8)
        [plan] = plan_service.upsert_plans(
            [_plan(milk_history.id, "35", "l", next_monday, date(2024, 1, 14))],
            user_id=admin_user.id,
        )

        assert plan.id is not None
        assert plan.planned_quantity == Decimal("35")
        assert plan.unit == "l"
        assert plan.user_id == admin_user.id
        # 100 - 4 - 5 - 2.5 - 1 - 7
        assert plan.present_stock == Decimal("80.5")
        assert plan.previous_week_stock == Decimal("8.5")

    def test_planned_quantity_converted_to_product_unit(self, db_session, flour):
        [plan] = plan_service.upsert_plans([_plan(flour.id, "2500", "g")])
        assert plan.planned_quantity == Decimal("2.5")
        assert plan.original_planned_quantity == Decimal("2500")
        assert plan.original_unit == "g"

    def test_same_week_updates_existing_plan(self, db_session, milk):
        [first] = plan_service.upsert_plans([_plan(milk.id, "10", "l")])
        [second] = plan_service.upsert_plans([_plan(milk.id, "12", "l")])

        assert second.id == first.id
        assert second.planned_quantity == Decimal("12")
        assert db_session.query(WeeklyStockPlan).count() == 1

    def test_batch_of_plans(self, db_session, milk, flour):
        plans = plan_service.upsert_plans([_plan(milk.id, "10", "l"), _plan(flour.id, "3", "kg")])
        assert {p.product_id for p in plans} == {milk.id, flour.id}

    def test_duplicate_key_in_one_request(self, db_session, milk):
        with pytest.raises(DuplicatePlanError):
            plan_service.upsert_plans([_plan(milk.id, "10", "l"), _plan(milk.id, "11", "l")])
        assert db_session.query(WeeklyStockPlan).count() == 0

    def test_batch_validated_before_writing(self, db_session, milk):
        with pytest.raises(ProductNotFoundError):
            plan_service.upsert_plans([_plan(milk.id, "10", "l"), _plan(9999, "1", "l")])
        assert db_session.query(WeeklyStockPlan).count() == 0

    @pytest.mark.parametrize(
        "start,end",
        [
            (date(2024, 1, 2), date(2024, 1, 8)),   # starts on Tuesday
            (date(2024, 1, 1), date(2024, 1, 6)),   # ends on Saturday
            (date(2024, 1, 1), date(2024, 1, 14)),  # two weeks
        ],
    )
    def test_week_shape_enforced(self, db_session, milk, start, end):
        with pytest.raises(ValidationError):
            plan_service.upsert_plans([_plan(milk.id, "10", "l", start, end)])

    def test_cross_family_unit_rejected(self, db_session, milk):
        with pytest.raises(ValidationError):
            plan_service.upsert_plans([_plan(milk.id, "10", "kg")])

    def test_inactive_product_rejected(self, db_session, milk):
        products_service.update_product(milk.id, {"is_active": False})
        with pytest.raises(ProductNotFoundError):
            plan_service.upsert_plans([_plan(milk.id, "10", "l")])

    def test_converted_planned_quantity_bounded(self, db_session):
        saffron = products_service.create_product(patch={"name": "Saffron", "unit": "g"})
        with pytest.raises(ValidationError) as exc:
            plan_service.upsert_plans([_plan(saffron.id, "1000000000", "kg")])
        assert exc.value.field == "planned_quantity"
        assert db_session.query(WeeklyStockPlan).count() == 0

        [plan] = plan_service.upsert_plans([_plan(saffron.id, "1", "kg")])
        with pytest.raises(ValidationError) as exc:
            plan_service.update_plan(plan.id, {"original_planned_quantity": Decimal("1000000000"), "original_unit": "kg"})
        assert exc.value.field == "planned_quantity"


class TestPlanQueries:

    def test_update_plan_quantity_and_deactivate(self, db_session, flour):
        [plan] = plan_service.upsert_plans([_plan(flour.id, "3", "kg")])

        updated = plan_service.update_plan(plan.id, {"original_planned_quantity": Decimal("500"), "original_unit": "g"})
        assert updated.planned_quantity == Decimal("0.5")

        plan_service.update_plan(plan.id, {"is_active": False})
        assert plan_service.list_plans() == []
        assert len(plan_service.list_plans(include_inactive=True)) == 1

    def test_update_unknown_plan(self, db_session):
        with pytest.raises(PlanNotFoundError):
            plan_service.update_plan(12345, {"is_active": False})

    def test_list_by_week_and_current_week(self, db_session, milk):
        plan_service.upsert_plans([_plan(milk.id, "10", "l")])
        plan_service.upsert_plans([_plan(milk.id, "10", "l", date(2024, 1, 8), date(2024, 1, 14))])

        assert len(plan_service.list_plans(week_start=WEEK_START)) == 1
        assert len(plan_service.list_plans(product_id=milk.id)) == 2

        current = plan_service.current_week_plans(today=date(2024, 1, 10))
        assert [p.week_start_date for p in current] == [date(2024, 1, 8)]


def test_weekly_stock_out_summary(milk_history):
    rows = plan_service.weekly_stock_out_summary(product_id=milk_history.id)

    assert [(r["week_start_date"], r["out_quantity"]) for r in rows] == [
        ("2023-12-25", "4.000"),
        ("2024-01-01", "8.500"),
        ("2024-01-08", "7.000"),
    ]

    bounded = plan_service.weekly_stock_out_summary(from_date=WEEK_START, to_date=WEEK_END)
    assert [r["out_quantity"] for r in bounded] == ["8.500"]
