"""
Low-stock alert engine tests.

Verifies:
- low / critical classification against the weekly plan
- one open alert per (product, plan); re-checks update it in place
- auto-resolution once stock covers the plan
- manual resolution is idempotent and never reopened
"""

from datetime import date
from decimal import Decimal

import pytest

from stockledger.models import LowStockAlert
from stockledger.models.planning import ALERT_LEVEL_LOW, ALERT_LEVEL_CRITICAL
from stockledger.services import alert_service, plan_service, stock_service, products_service
from stockledger.services.alert_service import AlertNotFoundError


WEEK_START = date(2024, 1, 1)
WEEK_END = date(2024, 1, 7)
TODAY = date(2024, 1, 3)


def _open_alerts(db_session, product_id):
    return (
        db_session.query(LowStockAlert)
        .filter_by(product_id=product_id, is_resolved=False)
        .all()
    )


@pytest.fixture
def milk_plan(db_session, milk):
    """Milk at 30 l against a 35 l plan for the first week of 2024."""
    stock_service.stock_in(milk.id, Decimal("50"), "l", po_number="PO-100")
    stock_service.stock_out(milk.id, Decimal("20"), "l", so_number="SO-200")
    [plan] = plan_service.upsert_plans([{
        "product_id": milk.id,
        "week_start_date": WEEK_START,
        "week_end_date": WEEK_END,
        "original_planned_quantity": Decimal("35"),
        "original_unit": "l",
    }])
    return plan


class TestClassify:

    @pytest.mark.parametrize(
        "current,planned,expected",
        [
            ("30", "35", ALERT_LEVEL_LOW),
            ("17.5", "35", ALERT_LEVEL_CRITICAL),
            ("15", "35", ALERT_LEVEL_CRITICAL),
            ("0", "35", ALERT_LEVEL_CRITICAL),
            ("35", "35", None),
            ("40", "35", None),
            ("0", "0", None),
        ],
    )
    def test_levels(self, current, planned, expected):
        assert alert_service.classify(Decimal(current), Decimal(planned), Decimal("0.5")) == expected


class TestAlertCheck:

    def test_low_alert_raised(self, db_session, milk, milk_plan):
        created = alert_service.check_and_raise_alerts(today=TODAY)

        assert len(created) == 1
        alert = created[0]
        assert alert.alert_level == ALERT_LEVEL_LOW
        assert alert.current_quantity == Decimal("30")
        assert alert.planned_quantity == Decimal("35")
        assert alert.weekly_plan_id == milk_plan.id

    def test_drop_escalates_existing_alert(self, db_session, milk, milk_plan):
        [first] = alert_service.check_and_raise_alerts(today=TODAY)
        first_id = first.id

        stock_service.stock_out(milk.id, Decimal("15"), "l")
        result = alert_service.run_alert_check(today=TODAY)

        assert result.created == []
        assert [a.id for a in result.escalated] == [first_id]

        [open_alert] = _open_alerts(db_session, milk.id)
        assert open_alert.id == first_id
        assert open_alert.alert_level == ALERT_LEVEL_CRITICAL
        assert open_alert.current_quantity == Decimal("15")

    def test_replenish_auto_resolves(self, db_session, milk, milk_plan):
        [first] = alert_service.check_and_raise_alerts(today=TODAY)
        first_id = first.id
        stock_service.stock_out(milk.id, Decimal("15"), "l")
        alert_service.run_alert_check(today=TODAY)

        stock_service.stock_in(milk.id, Decimal("25"), "l")
        result = alert_service.run_alert_check(today=TODAY)

        assert result.created == []
        assert [a.id for a in result.resolved] == [first_id]
        assert _open_alerts(db_session, milk.id) == []

        resolved = db_session.get(LowStockAlert, first_id)
        assert resolved.is_resolved is True
        assert resolved.resolution == "replenished"
        assert resolved.resolved_at is not None

    def test_repeated_checks_do_not_duplicate(self, db_session, milk, milk_plan):
        for _ in range(3):
            alert_service.run_alert_check(today=TODAY)
        assert len(_open_alerts(db_session, milk.id)) == 1
        assert db_session.query(LowStockAlert).count() == 1

    def test_unchanged_level_not_reported_as_escalated(self, db_session, milk, milk_plan):
        alert_service.run_alert_check(today=TODAY)
        result = alert_service.run_alert_check(today=TODAY)
        assert result.created == [] and result.escalated == [] and result.resolved == []

    def test_past_weeks_ignored(self, db_session, milk, milk_plan):
        assert alert_service.check_and_raise_alerts(today=date(2024, 1, 8)) == []

    def test_future_weeks_checked(self, db_session, milk, milk_plan):
        assert len(alert_service.check_and_raise_alerts(today=date(2023, 12, 20))) == 1

    def test_inactive_plan_and_product_ignored(self, db_session, milk, milk_plan):
        plan_service.update_plan(milk_plan.id, {"is_active": False})
        assert alert_service.check_and_raise_alerts(today=TODAY) == []

        plan_service.update_plan(milk_plan.id, {"is_active": True})
        products_service.update_product(milk.id, {"is_active": False})
        assert alert_service.check_and_raise_alerts(today=TODAY) == []

    def test_critical_ratio_configurable(self, app, db_session, milk, milk_plan, monkeypatch):
        monkeypatch.setitem(app.config, "CRITICAL_STOCK_RATIO", "0.9")
        [alert] = alert_service.check_and_raise_alerts(today=TODAY)
        # 30 <= 0.9 * 35
        assert alert.alert_level == ALERT_LEVEL_CRITICAL

    def test_new_alert_after_manual_resolution(self, db_session, milk, milk_plan):
        [first] = alert_service.check_and_raise_alerts(today=TODAY)
        first_id = first.id
        alert_service.resolve_alert(first_id)

        [second] = alert_service.check_and_raise_alerts(today=TODAY)
        assert second.id != first_id
        assert db_session.get(LowStockAlert, first_id).is_resolved is True
        assert len(_open_alerts(db_session, milk.id)) == 1


class TestResolve:

    def test_manual_resolution(self, db_session, milk, milk_plan, admin_user):
        [alert] = alert_service.check_and_raise_alerts(today=TODAY)

        resolved = alert_service.resolve_alert(alert.id, user_id=admin_user.id)
        assert resolved.is_resolved is True
        assert resolved.resolution == "manual"
        assert resolved.resolved_by_user_id == admin_user.id
        assert alert_service.list_unresolved_alerts() == []

    def test_resolution_is_idempotent(self, db_session, milk, milk_plan):
        [alert] = alert_service.check_and_raise_alerts(today=TODAY)
        first = alert_service.resolve_alert(alert.id)
        first_resolved_at = first.resolved_at

        again = alert_service.resolve_alert(alert.id)
        assert again.is_resolved is True
        assert again.resolved_at == first_resolved_at

    def test_unknown_alert(self, db_session):
        with pytest.raises(AlertNotFoundError):
            alert_service.resolve_alert(424242)
        with pytest.raises(AlertNotFoundError):
            alert_service.get_alert(424242)

    def test_resolved_alert_not_reopened_by_check(self, db_session, milk, milk_plan):
        [alert] = alert_service.check_and_raise_alerts(today=TODAY)
        alert_id = alert.id
        alert_service.resolve_alert(alert_id)
        stock_service.stock_out(milk.id, Decimal("20"), "l")

        alert_service.run_alert_check(today=TODAY)
        assert db_session.get(LowStockAlert, alert_id).is_resolved is True


class TestClosedPlans:

    def test_deactivating_plan_closes_its_alert(self, db_session, milk, milk_plan):
        [alert] = alert_service.check_and_raise_alerts(today=TODAY)
        alert_id = alert.id

        plan_service.update_plan(milk_plan.id, {"is_active": False})

        db_session.expire_all()
        closed = db_session.get(LowStockAlert, alert_id)
        assert closed.is_resolved is True
        assert closed.resolution == "plan_closed"
        assert alert_service.list_unresolved_alerts() == []

    def test_ended_week_closes_open_alert(self, db_session, milk, milk_plan):
        [alert] = alert_service.check_and_raise_alerts(today=TODAY)
        alert_id = alert.id

        result = alert_service.run_alert_check(today=date(2024, 1, 8))

        assert [a.id for a in result.resolved] == [alert_id]
        assert result.created == []
        assert _open_alerts(db_session, milk.id) == []
        assert db_session.get(LowStockAlert, alert_id).resolution == "plan_closed"

    def test_inactive_product_alert_closed_on_next_check(self, db_session, milk, milk_plan):
        [alert] = alert_service.check_and_raise_alerts(today=TODAY)
        alert_id = alert.id
        products_service.update_product(milk.id, {"is_active": False})

        result = alert_service.run_alert_check(today=TODAY)
        assert [a.id for a in result.resolved] == [alert_id]
        assert alert_service.list_unresolved_alerts() == []
