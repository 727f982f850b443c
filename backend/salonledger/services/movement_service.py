# Overview: Service-layer operations for the stock movement ledger; append-only writes and history reads.

from __future__ import annotations

import logging

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Product, StockMovement
from ..validation import (
    normalize_movement_type,
    parse_positive_decimal,
    resolve_direction,
)
from .concurrency import lock_for_update, run_with_retry
from .stock_projection_service import (
    apply_delta_locked,
    record_last_movement_locked,
    signed_quantity,
)
"""
Movement Ledger Invariants (authoritative)

- stock_movements is append-only: rows are never updated or deleted.
- quantity is a positive finite decimal; direction carries the sign.
- purchase/return increase, consumption decreases, adjustment declares its
  direction explicitly.
- Appending locks the product row, writes the movement and updates the
  projection in one transaction: reads after a successful append always see it.
"""

logger = logging.getLogger(__name__)


MAX_NOTES_LENGTH = 2000


def _ensure_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def append_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity,
    notes: str | None = None,
    direction: str | None = None,
    performed_by: str | None = None,
) -> StockMovement:
    """
    Append a stock movement and update the product's projected level.

    Raises:
        ValidationError: bad quantity, movement type or direction
        NotFoundError: unknown product
        InsufficientStockError: strict negative-stock policy refused the change
    """
    if isinstance(product_id, bool) or not isinstance(product_id, int):
        raise ValidationError("product_id must be an integer")
    movement_type = normalize_movement_type(movement_type)
    direction = resolve_direction(movement_type, direction)
    quantity = parse_positive_decimal(quantity, "quantity", places=3)

    if notes is not None:
        notes = str(notes).strip() or None
        if notes and len(notes) > MAX_NOTES_LENGTH:
            raise ValidationError(f"notes exceeds max length {MAX_NOTES_LENGTH}")

    delta = signed_quantity(direction, quantity)

    def _op():
        product = _ensure_product(product_id, lock=True)

        level_after = apply_delta_locked(product, delta)

        movement = StockMovement(
            product_id=product.id,
            movement_type=movement_type,
            direction=direction,
            quantity=quantity,
            notes=notes,
            performed_by=performed_by,
            level_after=level_after,
        )
        db.session.add(movement)
        db.session.flush()

        record_last_movement_locked(product.id, movement.id)

        db.session.commit()

        logger.info(
            "stock_movement_appended product_id=%s type=%s delta=%s level_after=%s",
            product.id, movement_type, delta, level_after,
        )
        return movement

    return run_with_retry(_op)


def get_movement(movement_id: int) -> StockMovement:
    movement = db.session.get(StockMovement, movement_id)
    if movement is None:
        raise NotFoundError(f"Stock movement {movement_id} not found")
    return movement


def list_movements(
    *,
    product_id: int,
    limit: int | None = None,
    after_id: int | None = None,
) -> list[StockMovement]:
    """
    Movement history for a product, oldest first.

    after_id is a restartable cursor: pass the last id of the previous page.
    """
    _ensure_product(product_id)

    q = db.session.query(StockMovement).filter_by(product_id=product_id)
    if after_id is not None:
        q = q.filter(StockMovement.id > after_id)
    q = q.order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
    if limit is not None:
        if limit <= 0:
            raise ValidationError("limit must be > 0")
        q = q.limit(limit)
    return q.all()
