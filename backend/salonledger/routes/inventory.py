# Overview: Flask API routes for the stock movement ledger and stock levels; parses input and returns JSON responses.

# backend/salonledger/routes/inventory.py
"""
Inventory ledger routes.

- Movements are append-only: there is no update or delete endpoint.
- Quantities are decimals (strings recommended in JSON); the sign comes from
  the movement type, or from "direction" for adjustments.
- Stock levels are read from the projection and can be rebuilt from history.
"""
from flask import Blueprint, current_app, request

from ..errors import LedgerError
from ..models import StockMovement
from ..services import movement_service, stock_projection_service
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_movement,
    validate_payload,
)


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

MOVEMENT_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "movement_type", "quantity", "direction", "notes", "performed_by"},
    required_on_create={"product_id", "movement_type", "quantity"},
)

MAX_PAGE_SIZE = 500


@inventory_bp.post("/movements")
def append_movement_route():
    """
    Append a stock movement.

    Request body:
    {
        "product_id": 1,
        "movement_type": "consumption",
        "quantity": "2.5",
        "direction": "decrease",   (required for adjustment only)
        "notes": "Used on appointment 42",
        "performed_by": "emp-7"
    }

    Returns:
        201: {"movement": ..., "stock": ...}
        400: Invalid input
        404: Unknown product
        409: Strict policy refused a negative level
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=StockMovement, payload=payload, policy=MOVEMENT_POLICY)
        enforce_rules_movement(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        movement = movement_service.append_movement(
            product_id=patch["product_id"],
            movement_type=patch["movement_type"],
            quantity=patch["quantity"],
            notes=patch.get("notes"),
            direction=patch.get("direction"),
            performed_by=patch.get("performed_by"),
        )
        stock = stock_projection_service.get_stock_summary(movement.product_id)
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to append stock movement")
        return {"error": "Internal server error"}, 500

    return {"movement": movement.to_dict(), "stock": stock}, 201


@inventory_bp.get("/movements/<int:movement_id>")
def get_movement_route(movement_id: int):
    try:
        movement = movement_service.get_movement(movement_id)
    except LedgerError as e:
        return e.to_dict(), e.status_code
    return {"movement": movement.to_dict()}, 200


@inventory_bp.get("/products/<int:product_id>/movements")
def list_movements_route(product_id: int):
    """
    Movement history for a product, oldest first.

    Query params:
    - limit: page size (default 100, max 500)
    - after_id: id of the last movement of the previous page
    """
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    after_id = request.args.get("after_id", type=int)

    try:
        movements = movement_service.list_movements(
            product_id=product_id, limit=limit, after_id=after_id
        )
    except LedgerError as e:
        return e.to_dict(), e.status_code

    next_cursor = movements[-1].id if len(movements) == limit else None
    return {
        "product_id": product_id,
        "items": [m.to_dict() for m in movements],
        "next_cursor": next_cursor,
        "limit": limit,
    }, 200


@inventory_bp.get("/products/<int:product_id>/stock")
def get_stock_route(product_id: int):
    try:
        return stock_projection_service.get_stock_summary(product_id), 200
    except LedgerError as e:
        return e.to_dict(), e.status_code


@inventory_bp.get("/stock-levels")
def list_stock_levels_route():
    salon_id = request.args.get("salon_id")
    items = stock_projection_service.list_stock_levels(salon_id=salon_id)
    return {
        "items": items,
        "low_stock_count": sum(1 for i in items if i["is_low_stock"]),
        "out_of_stock_count": sum(1 for i in items if i["is_out_of_stock"]),
    }, 200


@inventory_bp.post("/products/<int:product_id>/stock/rebuild")
def rebuild_stock_route(product_id: int):
    """
    Recompute the projected level of one product from its movement history.
    """
    try:
        stock_projection_service.rebuild_projection(product_id)
        return stock_projection_service.get_stock_summary(product_id), 200
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to rebuild stock projection")
        return {"error": "Internal server error"}, 500
