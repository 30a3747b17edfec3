from flask import Blueprint, current_app, g, request

from ..extensions import db
from ..validation import NotFoundError, ValidationError, parse_int_param
from ..decorators import require_auth, require_permission
from ..services import alert_service


alerts_bp = Blueprint("alerts", __name__, url_prefix="/api/alerts")


@alerts_bp.get("/low-stock")
@require_auth
@require_permission("VIEW_ALERTS")
def list_alerts_route():
    """Unresolved alerts, newest first (?product_id to narrow)."""
    try:
        alerts = alert_service.list_unresolved_alerts(product_id=parse_int_param(request.args, "product_id"))
    except ValidationError as e:
        return e.to_dict(), 400
    return {"items": [a.to_dict() for a in alerts], "count": len(alerts)}, 200


@alerts_bp.post("/check-low-stock")
@require_auth
@require_permission("CHECK_ALERTS")
def check_alerts_route():
    """
    Run the low-stock check now.

    Response:
        new_alerts_count, alerts (newly created), escalated (level changed),
        resolved (auto-resolved because stock now covers the plan)
    """
    try:
        result = alert_service.run_alert_check()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Low-stock check failed")
        return {"error": "Internal server error"}, 500

    return {
        "message": f"Low stock check completed. {len(result.created)} new alerts created.",
        "new_alerts_count": len(result.created),
        "alerts": [a.to_dict() for a in result.created],
        "escalated": [a.to_dict() for a in result.escalated],
        "resolved": [a.to_dict() for a in result.resolved],
    }, 200


@alerts_bp.put("/low-stock/<int:alert_id>/resolve")
@require_auth
@require_permission("RESOLVE_ALERTS")
def resolve_alert_route(alert_id: int):
    try:
        alert = alert_service.resolve_alert(alert_id, user_id=g.current_user.id)
        return alert.to_dict(), 200
    except NotFoundError as e:
        return e.to_dict(), 404
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to resolve alert")
        return {"error": "Internal server error"}, 500
