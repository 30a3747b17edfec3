# backend/stockledger/routes/plans.py
"""
Weekly stock plan routes.

A plan covers one product for one Monday..Sunday week. POSTing the same
(product, week) again updates the existing plan.
"""
from datetime import timedelta

from flask import Blueprint, request, current_app, g

from ..extensions import db
from ..models import WeeklyStockPlan
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ValidationError,
    ConflictError,
    NotFoundError,
    enforce_rules_weekly_plan,
    parse_bool_param,
    parse_date_param,
    parse_int_param,
)
from ..decorators import require_auth, require_permission
from ..services import plan_service
from stockledger.time_utils import to_iso_date


plans_bp = Blueprint("plans", __name__, url_prefix="/api/weekly-stock-plans")

PLAN_ALIASES = {"planned_quantity": "original_planned_quantity", "unit": "original_unit"}

PLAN_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "week_start_date", "week_end_date", "planned_quantity", "unit"},
    required_on_create={"product_id", "week_start_date", "week_end_date", "planned_quantity", "unit"},
    aliases=PLAN_ALIASES,
)

PLAN_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"planned_quantity", "unit", "is_active"},
    aliases=PLAN_ALIASES,
)


def _error(e):
    if isinstance(e, ValidationError):
        return e.to_dict(), 400
    if isinstance(e, NotFoundError):
        return e.to_dict(), 404
    return e.to_dict(), 409


@plans_bp.get("")
@require_auth
@require_permission("VIEW_PLANS")
def list_plans_route():
    """?week_start&product_id&include_inactive"""
    try:
        plans = plan_service.list_plans(
            week_start=parse_date_param(request.args, "week_start"),
            product_id=parse_int_param(request.args, "product_id"),
            include_inactive=parse_bool_param(request.args, "include_inactive"),
        )
    except ValidationError as e:
        return e.to_dict(), 400
    return {"items": [p.to_dict() for p in plans], "count": len(plans)}, 200


@plans_bp.get("/current")
@require_auth
@require_permission("VIEW_PLANS")
def current_plans_route():
    plans = plan_service.current_week_plans()
    return {"items": [p.to_dict() for p in plans], "count": len(plans)}, 200


@plans_bp.post("")
@require_auth
@require_permission("MANAGE_PLANS")
def upsert_plans_route():
    """
    Body: one plan object or a list of them
    {product_id, week_start_date, week_end_date, planned_quantity, unit}.

    The whole request is validated before anything is saved.
    """
    payload = request.get_json(silent=True)
    raw_items = payload if isinstance(payload, list) else [payload]
    if not raw_items:
        return {"error": "At least one plan is required"}, 400

    items = []
    for index, raw in enumerate(raw_items):
        try:
            patch = validate_payload(model=WeeklyStockPlan, payload=raw, policy=PLAN_CREATE_POLICY, partial=False)
            enforce_rules_weekly_plan(patch)
        except ValidationError as e:
            body = e.to_dict()
            body["failed_index"] = index
            return body, 400
        items.append(patch)

    try:
        plans = plan_service.upsert_plans(items, user_id=g.current_user.id)
        return {"items": [p.to_dict() for p in plans], "count": len(plans)}, 201
    except (ValidationError, ConflictError, NotFoundError) as e:
        db.session.rollback()
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to save weekly plans")
        return {"error": "Internal server error"}, 500


@plans_bp.put("/<int:plan_id>")
@require_auth
@require_permission("MANAGE_PLANS")
def update_plan_route(plan_id: int):
    payload = request.get_json(silent=True)

    try:
        patch = validate_payload(model=WeeklyStockPlan, payload=payload, policy=PLAN_UPDATE_POLICY, partial=True)
        enforce_rules_weekly_plan(patch)
        plan = plan_service.update_plan(plan_id, patch)
        return plan.to_dict(), 200
    except (ValidationError, ConflictError, NotFoundError) as e:
        db.session.rollback()
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update weekly plan")
        return {"error": "Internal server error"}, 500


@plans_bp.get("/consumption")
@require_auth
@require_permission("VIEW_PLANS")
def consumption_route():
    """
    ?product_id&week_start[&week_end]

    Stock-out total for the product over the inclusive date range. week_end
    defaults to six days after week_start.
    """
    try:
        product_id = parse_int_param(request.args, "product_id")
        week_start = parse_date_param(request.args, "week_start")
        week_end = parse_date_param(request.args, "week_end")
        if product_id is None:
            raise ValidationError("product_id is required", field="product_id")
        if week_start is None:
            raise ValidationError("week_start is required", field="week_start")
        if week_end is None:
            week_end = week_start + timedelta(days=6)

        total = plan_service.previous_week_consumption(product_id, week_start, week_end)
    except ValidationError as e:
        return e.to_dict(), 400

    return {
        "product_id": product_id,
        "week_start": to_iso_date(week_start),
        "week_end": to_iso_date(week_end),
        "consumed_quantity": f"{total:.3f}",
    }, 200
