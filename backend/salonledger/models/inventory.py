from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..errors import ValidationError
from ..time_utils import to_utc_z


def _decimal_str(value):
    return str(value) if value is not None else None


class Product(db.Model):
    """
    Product master data.

    Owned by the external product CRUD service; this core only reads it.
    There is deliberately no stock column here: the level lives in the
    StockLevel projection and is derived from StockMovement rows.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("salon_id", "sku", name="uq_products_salon_sku"),
        db.Index("ix_products_salon_name", "salon_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    salon_id = db.Column(db.String(64), nullable=True, index=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)

    unit_price = db.Column(db.Numeric(14, 2), nullable=True)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=True)

    # False for services/consumables sold without stock tracking ("unlimited")
    is_inventory_item = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "salon_id": self.salon_id,
            "sku": self.sku,
            "name": self.name,
            "unit_price": _decimal_str(self.unit_price),
            "tax_rate": _decimal_str(self.tax_rate),
            "is_inventory_item": self.is_inventory_item,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Immutable stock ledger entry.

    GUARANTEES:
    - Append-only (no updates, no deletes); enforced by mapper events below
    - quantity is always positive; direction carries the sign
    - level_after snapshots the projected level right after this movement
    """
    __tablename__ = "stock_movements"

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)
    direction = db.Column(db.String(8), nullable=False)

    quantity = db.Column(db.Numeric(14, 3), nullable=False)

    notes = db.Column(db.Text, nullable=True)
    performed_by = db.Column(db.String(64), nullable=True)

    level_after = db.Column(db.Numeric(14, 3), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy="dynamic"))

    __table_args__ = (
        db.Index("ix_stock_movements_product_created", "product_id", "created_at", "id"),
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    @property
    def signed_quantity(self):
        return self.quantity if self.direction == "increase" else -self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "direction": self.direction,
            "quantity": _decimal_str(self.quantity),
            "signed_quantity": _decimal_str(self.signed_quantity),
            "notes": self.notes,
            "performed_by": self.performed_by,
            "level_after": _decimal_str(self.level_after),
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise ValidationError("StockMovement records are immutable")


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise ValidationError("StockMovement records are immutable and cannot be deleted")


class StockLevel(db.Model):
    """
    Materialized stock projection, one row per product with movements.

    A cache over stock_movements: can always be rebuilt from history.
    """
    __tablename__ = "stock_levels"

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), primary_key=True)

    quantity = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    movement_count = db.Column(db.Integer, nullable=False, default=0)
    last_movement_id = db.Column(db.Integer, nullable=True)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("stock_level", uselist=False))

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": _decimal_str(self.quantity),
            "movement_count": self.movement_count,
            "last_movement_id": self.last_movement_id,
            "updated_at": to_utc_z(self.updated_at),
        }
