# backend/stockledger/routes/stock.py
"""
Stock movement and ledger routes.

SECURITY: All routes require authentication.
- stock-in routes require STOCK_IN
- stock-out routes require STOCK_OUT
- the full ledger requires VIEW_TRANSACTIONS; /transactions/mine only needs a login

The acting user is always taken from the session, never from the body.

Time semantics:
- transaction_date is assigned server-side (UTC).
- from_date/to_date filters are inclusive calendar dates.
"""
from flask import Blueprint, request, current_app, g

from ..extensions import db
from ..models import StockTransaction
from ..models.inventory import TYPE_STOCK_IN, TYPE_STOCK_OUT
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    ValidationError,
    ConflictError,
    NotFoundError,
    enforce_rules_stock_movement,
    parse_date_param,
    parse_int_param,
)
from ..decorators import require_auth, require_permission
from ..services import stock_service, plan_service
from ..services.stock_service import StockConcurrencyError


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")

MOVEMENT_ALIASES = {"quantity": "original_quantity", "unit": "original_unit"}

STOCK_IN_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "quantity", "unit", "po_number", "remarks"},
    required_on_create={"product_id", "quantity", "unit"},
    aliases=MOVEMENT_ALIASES,
)

STOCK_OUT_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "quantity", "unit", "so_number", "remarks"},
    required_on_create={"product_id", "quantity", "unit"},
    aliases=MOVEMENT_ALIASES,
)

BATCH_ITEM_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "quantity", "unit"},
    required_on_create={"product_id", "quantity", "unit"},
    aliases=MOVEMENT_ALIASES,
)

BATCH_FIELDS = {
    TYPE_STOCK_IN: {"items", "po_number", "remarks"},
    TYPE_STOCK_OUT: {"items", "so_number", "remarks"},
}


def _error_status(e) -> int:
    if isinstance(e, ValidationError):
        return 400
    if isinstance(e, NotFoundError):
        return 404
    if isinstance(e, ConflictError):
        return 409
    if isinstance(e, StockConcurrencyError):
        return 503
    return 500


def _movement(tx_type: str, policy: ModelValidationPolicy):
    payload = request.get_json(silent=True)

    try:
        patch = validate_payload(model=StockTransaction, payload=payload, policy=policy, partial=False)
        enforce_rules_stock_movement(patch)

        tx = stock_service.apply_movement(
            patch["product_id"],
            tx_type,
            patch["original_quantity"],
            patch["original_unit"],
            user_id=g.current_user.id,
            po_number=patch.get("po_number"),
            so_number=patch.get("so_number"),
            remarks=patch.get("remarks"),
        )
        return tx.to_dict(), 201
    except (ValidationError, ConflictError, NotFoundError, StockConcurrencyError) as e:
        return e.to_dict(), _error_status(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record %s", tx_type)
        return {"error": "Internal server error"}, 500


def _batch(tx_type: str):
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return {"error": "Invalid JSON payload"}, 400

    allowed = BATCH_FIELDS[tx_type]
    for k in payload:
        if k not in allowed:
            return {"error": f"Field not allowed: {k}", "field": k}, 400

    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        return {"error": "items must be a non-empty list", "field": "items"}, 400

    reference = payload.get("po_number") if tx_type == TYPE_STOCK_IN else payload.get("so_number")
    remarks = payload.get("remarks")
    for name, value in (("reference", reference), ("remarks", remarks)):
        if value is not None and not isinstance(value, str):
            return {"error": f"{name} must be a string"}, 400

    items = []
    for index, raw in enumerate(raw_items):
        try:
            patch = validate_payload(model=StockTransaction, payload=raw, policy=BATCH_ITEM_POLICY, partial=False)
            enforce_rules_stock_movement(patch)
        except ValidationError as e:
            body = e.to_dict()
            body["failed_index"] = index
            return body, 400
        items.append({
            "product_id": patch["product_id"],
            "quantity": patch["original_quantity"],
            "unit": patch["original_unit"],
        })

    try:
        result = stock_service.apply_batch(
            tx_type,
            items,
            user_id=g.current_user.id,
            reference=reference,
            remarks=remarks,
        )
    except ValidationError as e:
        return e.to_dict(), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record %s batch", tx_type)
        return {"error": "Internal server error"}, 500

    body = {
        "transactions": [tx.to_dict() for tx in result.transactions],
        "count": len(result.transactions),
    }
    if result.ok:
        return body, 201

    body.update(result.error.to_dict())
    body["failed_index"] = result.failed_index
    return body, _error_status(result.error)


@stock_bp.post("/stock-in")
@require_auth
@require_permission("STOCK_IN")
def stock_in_route():
    """
    Record inbound stock.

    Body: {product_id, quantity, unit, po_number?, remarks?}
    quantity is converted from unit into the product's stored unit.
    """
    return _movement(TYPE_STOCK_IN, STOCK_IN_POLICY)


@stock_bp.post("/stock-out")
@require_auth
@require_permission("STOCK_OUT")
def stock_out_route():
    """
    Record outbound stock.

    Body: {product_id, quantity, unit, so_number?, remarks?}
    409 when the product does not hold enough stock; nothing is written.
    """
    return _movement(TYPE_STOCK_OUT, STOCK_OUT_POLICY)


@stock_bp.post("/stock-in/batch")
@require_auth
@require_permission("STOCK_IN")
def stock_in_batch_route():
    """
    Body: {items: [{product_id, quantity, unit}], po_number?, remarks?}

    Items are applied in order and processing stops at the first failure.
    Items before it stay committed and are returned with the error.
    """
    return _batch(TYPE_STOCK_IN)


@stock_bp.post("/stock-out/batch")
@require_auth
@require_permission("STOCK_OUT")
def stock_out_batch_route():
    return _batch(TYPE_STOCK_OUT)


def _list_transactions(user_id: int | None):
    try:
        items = stock_service.list_transactions(
            product_id=parse_int_param(request.args, "product_id"),
            tx_type=request.args.get("type") or None,
            from_date=parse_date_param(request.args, "from_date"),
            to_date=parse_date_param(request.args, "to_date"),
            user_id=user_id,
            limit=parse_int_param(request.args, "limit"),
        )
    except ValidationError as e:
        return e.to_dict(), 400
    return {"items": [tx.to_dict() for tx in items], "count": len(items)}, 200


@stock_bp.get("/transactions")
@require_auth
@require_permission("VIEW_TRANSACTIONS")
def list_transactions_route():
    """?product_id&type&from_date&to_date&user_id&limit, newest first."""
    try:
        user_id = parse_int_param(request.args, "user_id")
    except ValidationError as e:
        return e.to_dict(), 400
    return _list_transactions(user_id)


@stock_bp.get("/transactions/mine")
@require_auth
def my_transactions_route():
    return _list_transactions(g.current_user.id)


@stock_bp.get("/stock-outs")
@require_auth
@require_permission("VIEW_PLANS")
def stock_outs_route():
    """Stock-out totals per product and ISO week."""
    try:
        rows = plan_service.weekly_stock_out_summary(
            from_date=parse_date_param(request.args, "from_date"),
            to_date=parse_date_param(request.args, "to_date"),
            product_id=parse_int_param(request.args, "product_id"),
        )
    except ValidationError as e:
        return e.to_dict(), 400
    return {"items": rows, "count": len(rows)}, 200


@stock_bp.get("/products/<int:product_id>/balance")
@require_auth
@require_permission("VIEW_INVENTORY")
def product_balance_route(product_id: int):
    """Recompute the balance from the ledger and compare it with current_stock."""
    try:
        return stock_service.get_product_ledger_balance(product_id), 200
    except NotFoundError as e:
        return e.to_dict(), 404
