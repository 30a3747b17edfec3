from flask import Blueprint, current_app

from ..decorators import require_auth, require_permission
from ..services import reporting_service


dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("/stats")
@require_auth
@require_permission("VIEW_DASHBOARD")
def dashboard_stats_route():
    try:
        return reporting_service.get_dashboard_stats(), 200
    except Exception:
        current_app.logger.exception("Failed to load dashboard stats")
        return {"error": "Internal server error"}, 500
