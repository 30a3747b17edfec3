from flask import Blueprint, request, current_app

from ..extensions import db
from ..models import Product
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ValidationError,
    ConflictError,
    NotFoundError,
    enforce_rules_product,
    parse_bool_param,
)
from ..decorators import require_auth, require_permission
from ..services import products_service

products_bp = Blueprint("products", __name__, url_prefix="/api/products")

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "unit", "opening_stock", "is_active"},
    required_on_create={"name", "unit"},
)

# Stock columns move only through stock-in/stock-out
PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "unit", "is_active"},
)


def _error(e):
    if isinstance(e, ValidationError):
        return e.to_dict(), 400
    if isinstance(e, NotFoundError):
        return e.to_dict(), 404
    return e.to_dict(), 409


@products_bp.get("")
@require_auth
@require_permission("VIEW_INVENTORY")
def list_products_route():
    items = products_service.list_products(
        include_inactive=parse_bool_param(request.args, "include_inactive"),
        search=request.args.get("q"),
    )
    return {"items": [p.to_dict() for p in items], "count": len(items)}, 200


@products_bp.get("/<int:product_id>")
@require_auth
@require_permission("VIEW_INVENTORY")
def get_product_route(product_id: int):
    try:
        return products_service.get_product(product_id).to_dict(), 200
    except NotFoundError as e:
        return e.to_dict(), 404


@products_bp.post("")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def create_product_route():
    payload = request.get_json(silent=True)

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
        enforce_rules_product(patch)
        product = products_service.create_product(patch=patch)
        return product.to_dict(), 201
    except (ValidationError, ConflictError) as e:
        db.session.rollback()
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500


@products_bp.put("/<int:product_id>")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def update_product_route(product_id: int):
    payload = request.get_json(silent=True)

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
        product = products_service.update_product(product_id, patch)
        return product.to_dict(), 200
    except (ValidationError, ConflictError, NotFoundError) as e:
        db.session.rollback()
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update product")
        return {"error": "Internal server error"}, 500


@products_bp.delete("/<int:product_id>")
@require_auth
@require_permission("MANAGE_PRODUCTS")
def delete_product_route(product_id: int):
    try:
        products_service.delete_product(product_id)
        return {"deleted": True, "id": product_id}, 200
    except (ConflictError, NotFoundError) as e:
        db.session.rollback()
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete product")
        return {"error": "Internal server error"}, 500
