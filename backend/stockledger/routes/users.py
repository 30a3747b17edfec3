# Overview: Flask API routes for user administration; parses input and returns JSON responses.

"""
User administration routes. All require MANAGE_USERS.

Users with recorded stock transactions cannot be deleted, only deactivated,
so the ledger keeps its attribution.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..permissions import ROLES, ROLE_CAPABILITIES, permission_catalog
from ..validation import ValidationError, ConflictError, NotFoundError
from ..decorators import require_auth, require_permission
from ..services import auth_service


users_bp = Blueprint("users", __name__, url_prefix="/api/users")

USER_CREATE_FIELDS = {"username", "password", "email", "first_name", "last_name", "roles"}


def _error(e):
    if isinstance(e, ValidationError):
        return jsonify(e.to_dict()), 400
    if isinstance(e, NotFoundError):
        return jsonify(e.to_dict()), 404
    return jsonify(e.to_dict()), 409


@users_bp.get("")
@require_auth
@require_permission("MANAGE_USERS")
def list_users_route():
    users = auth_service.list_users()
    return jsonify({"items": [u.to_dict() for u in users], "count": len(users)}), 200


@users_bp.get("/roles")
@require_auth
@require_permission("MANAGE_USERS")
def list_roles_route():
    return jsonify({
        "roles": [
            {"name": role, "permissions": sorted(ROLE_CAPABILITIES[role])}
            for role in ROLES
        ],
        "permissions": permission_catalog(),
    }), 200


@users_bp.post("")
@require_auth
@require_permission("MANAGE_USERS")
def create_user_route():
    """
    Body: {username, password, email?, first_name?, last_name?, roles?}
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400

    for k in data:
        if k not in USER_CREATE_FIELDS:
            return jsonify({"error": f"Field not allowed: {k}", "field": k}), 400

    try:
        user = auth_service.create_user(
            data.get("username"),
            data.get("password"),
            email=data.get("email"),
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            roles=data.get("roles"),
        )
        current_app.logger.info("User %s created user %s", g.current_user.username, user.username)
        return jsonify({"user": user.to_dict(), "message": "User created successfully"}), 201
    except (ValidationError, ConflictError) as e:
        db.session.rollback()
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.put("/<int:user_id>/roles")
@require_auth
@require_permission("MANAGE_USERS")
def set_roles_route(user_id: int):
    data = request.get_json(silent=True) or {}
    if "roles" not in data:
        return jsonify({"error": "roles is required", "field": "roles"}), 400

    try:
        user = auth_service.set_roles(user_id, data["roles"])
        return jsonify({"user": user.to_dict()}), 200
    except (ValidationError, ConflictError, NotFoundError) as e:
        db.session.rollback()
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update user roles")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.put("/<int:user_id>/status")
@require_auth
@require_permission("MANAGE_USERS")
def set_status_route(user_id: int):
    data = request.get_json(silent=True) or {}
    is_active = data.get("is_active")
    if not isinstance(is_active, bool):
        return jsonify({"error": "is_active must be a boolean", "field": "is_active"}), 400
    if user_id == g.current_user.id and not is_active:
        return jsonify({"error": "You cannot deactivate your own account"}), 409

    try:
        user = auth_service.set_active(user_id, is_active)
        return jsonify({"user": user.to_dict()}), 200
    except (ConflictError, NotFoundError) as e:
        db.session.rollback()
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update user status")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.put("/<int:user_id>/password")
@require_auth
@require_permission("MANAGE_USERS")
def set_password_route(user_id: int):
    """
    Body: {password}. Every open session of the user is revoked.
    """
    data = request.get_json(silent=True) or {}
    password = data.get("password")
    if not isinstance(password, str):
        return jsonify({"error": "password is required", "field": "password"}), 400

    try:
        user = auth_service.set_password(user_id, password)
        current_app.logger.info("User %s reset the password of %s", g.current_user.username, user.username)
        return jsonify({"user": user.to_dict(), "message": "Password updated"}), 200
    except (ValidationError, NotFoundError) as e:
        db.session.rollback()
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to set user password")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.delete("/<int:user_id>")
@require_auth
@require_permission("MANAGE_USERS")
def delete_user_route(user_id: int):
    if user_id == g.current_user.id:
        return jsonify({"error": "You cannot delete your own account"}), 409

    try:
        auth_service.delete_user(user_id)
        return jsonify({"deleted": True, "id": user_id}), 200
    except (ConflictError, NotFoundError) as e:
        db.session.rollback()
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete user")
        return jsonify({"error": "Internal server error"}), 500
