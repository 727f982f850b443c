# Overview: Service-layer operations for the stock projection; derives levels from the movement ledger.

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable

from flask import current_app
from sqlalchemy import func, select, update

from ..extensions import db
from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import Product, StockLevel, StockMovement
from ..validation import DIRECTION_DECREASE, DIRECTION_INCREASE
from .concurrency import run_with_retry
"""
Stock Projection Invariants (authoritative)

- The movement ledger is the source of truth; stock_levels is a cache.
- level = SUM(+quantity for increase, -quantity for decrease) over all movements.
- Replaying history from scratch yields the same level as incremental updates.
- Products with is_inventory_item=False report "unlimited"; no floor is
  computed or enforced for them.
- Low stock: tracked and 0 < level <= LOW_STOCK_THRESHOLD.
- Out of stock: tracked and level <= 0.
- Negative policy: "permissive" lets a tracked level go below zero (logged),
  "strict" rejects the movement before anything is written.
"""

logger = logging.getLogger(__name__)


LOW_STOCK_THRESHOLD = Decimal("5")

POLICY_PERMISSIVE = "permissive"
POLICY_STRICT = "strict"

VALID_NEGATIVE_POLICIES = [POLICY_PERMISSIVE, POLICY_STRICT]

UNLIMITED_DISPLAY = "∞"

ZERO = Decimal("0")


def negative_stock_policy() -> str:
    policy = current_app.config.get("STOCK_NEGATIVE_POLICY", POLICY_PERMISSIVE)
    if policy not in VALID_NEGATIVE_POLICIES:
        raise ValidationError(f"STOCK_NEGATIVE_POLICY must be one of {VALID_NEGATIVE_POLICIES}")
    return policy


def signed_quantity(direction: str, quantity: Decimal) -> Decimal:
    if direction == DIRECTION_INCREASE:
        return Decimal(quantity)
    if direction == DIRECTION_DECREASE:
        return -Decimal(quantity)
    raise ValidationError(f"Unknown direction: {direction}")


def fold_movements(movements: Iterable[StockMovement]) -> Decimal:
    """Pure fold of a movement history into a level."""
    level = ZERO
    for movement in movements:
        level += signed_quantity(movement.direction, movement.quantity)
    return level


def _get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def _projected_quantity(product_id: int) -> Decimal:
    value = db.session.execute(
        select(StockLevel.quantity).where(StockLevel.product_id == product_id)
    ).scalar_one_or_none()
    return Decimal(value) if value is not None else ZERO


def apply_delta_locked(product: Product, delta: Decimal) -> Decimal:
    """
    Apply a signed change to the projection inside the caller's transaction.

    The increment is a single UPDATE (no read-modify-write). Under the strict
    policy a decrease on a tracked product carries the floor in its WHERE
    clause, so concurrent consumptions cannot jointly overdraw.

    Returns the level after the change. Does not commit.
    """
    strict = product.is_inventory_item and negative_stock_policy() == POLICY_STRICT

    stmt = (
        update(StockLevel)
        .where(StockLevel.product_id == product.id)
        .values(
            quantity=StockLevel.quantity + delta,
            movement_count=StockLevel.movement_count + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if strict and delta < 0:
        stmt = stmt.where(StockLevel.quantity + delta >= 0)

    result = db.session.execute(stmt)

    if result.rowcount != 1:
        exists = db.session.execute(
            select(func.count()).select_from(StockLevel).where(StockLevel.product_id == product.id)
        ).scalar_one()
        current = _projected_quantity(product.id)
        if exists or (strict and current + delta < 0):
            raise InsufficientStockError(product.id, current, delta)

        db.session.add(StockLevel(product_id=product.id, quantity=delta, movement_count=1))
        db.session.flush()

    level = _projected_quantity(product.id)

    if product.is_inventory_item and level < 0:
        logger.warning(
            "stock_negative product_id=%s level=%s delta=%s policy=%s",
            product.id, level, delta, negative_stock_policy(),
        )
    return level


def record_last_movement_locked(product_id: int, movement_id: int) -> None:
    db.session.execute(
        update(StockLevel)
        .where(StockLevel.product_id == product_id)
        .values(last_movement_id=movement_id)
        .execution_options(synchronize_session=False)
    )


def level_for(product_id: int) -> Decimal | None:
    """
    Current level of a product, or None when the product is not stock-tracked.

    Reads the projection written in the same transaction as the latest
    append, so reads always reflect every committed movement.
    """
    product = _get_product(product_id)
    if not product.is_inventory_item:
        return None
    return _projected_quantity(product_id)


def replay_level(product_id: int) -> Decimal:
    """Recompute the level by folding the full history (ignores the cache)."""
    _get_product(product_id)
    movements = (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
        .all()
    )
    return fold_movements(movements)


def is_low_stock(product_id: int) -> bool:
    level = level_for(product_id)
    return level is not None and ZERO < level <= LOW_STOCK_THRESHOLD


def is_out_of_stock(product_id: int) -> bool:
    level = level_for(product_id)
    return level is not None and level <= ZERO


def _summary(product: Product, row: StockLevel | None) -> dict:
    movement_count = row.movement_count if row is not None else 0

    if not product.is_inventory_item:
        return {
            "product_id": product.id,
            "name": product.name,
            "sku": product.sku,
            "is_inventory_item": False,
            "unlimited": True,
            "stock_level": None,
            "display": UNLIMITED_DISPLAY,
            "is_low_stock": False,
            "is_out_of_stock": False,
            "movement_count": movement_count,
        }

    level = Decimal(row.quantity) if row is not None else ZERO
    return {
        "product_id": product.id,
        "name": product.name,
        "sku": product.sku,
        "is_inventory_item": True,
        "unlimited": False,
        "stock_level": str(level),
        "display": format(level.normalize(), "f"),
        "is_low_stock": ZERO < level <= LOW_STOCK_THRESHOLD,
        "is_out_of_stock": level <= ZERO,
        "movement_count": movement_count,
    }


def get_stock_summary(product_id: int) -> dict:
    product = _get_product(product_id)
    row = db.session.get(StockLevel, product_id, populate_existing=True)
    return _summary(product, row)


def list_stock_levels(salon_id: str | None = None) -> list[dict]:
    """Every product with its stock summary, ordered by name."""
    q = db.session.query(Product, StockLevel).outerjoin(
        StockLevel, StockLevel.product_id == Product.id
    )
    if salon_id is not None:
        q = q.filter(Product.salon_id == salon_id)
    rows = q.order_by(Product.name.asc(), Product.id.asc()).all()
    return [_summary(product, level) for product, level in rows]


def rebuild_projection(product_id: int | None = None) -> dict[int, Decimal]:
    """
    Recompute stock_levels rows from the movement ledger.

    WHY: The projection is a cache; this is the repair path if it ever drifts
    (manual SQL, restored backups). Returns {product_id: level}.
    """
    def _op():
        if product_id is not None:
            _get_product(product_id)
            product_ids = [product_id]
        else:
            product_ids = [pid for (pid,) in db.session.query(Product.id).order_by(Product.id).all()]

        rebuilt: dict[int, Decimal] = {}
        for pid in product_ids:
            movements = (
                db.session.query(StockMovement)
                .filter_by(product_id=pid)
                .order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
                .all()
            )
            level = fold_movements(movements)

            row = db.session.get(StockLevel, pid)
            if not movements:
                if row is not None:
                    db.session.delete(row)
                rebuilt[pid] = ZERO
                continue

            if row is None:
                row = StockLevel(product_id=pid)
                db.session.add(row)
            row.quantity = level
            row.movement_count = len(movements)
            row.last_movement_id = max(m.id for m in movements)
            rebuilt[pid] = level

        db.session.commit()
        logger.info("stock_projection_rebuilt products=%s", len(rebuilt))
        return rebuilt

    return run_with_retry(_op)
