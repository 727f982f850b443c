"""
Stock movement ledger and stock projection tests.

Covers append validation, the negative-stock policies, immutability of
ledger rows, history paging, and projection replay/rebuild.
"""

import logging
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import update

from salonledger.errors import InsufficientStockError, NotFoundError, ValidationError
from salonledger.models import StockLevel, StockMovement
from salonledger.services import movement_service, stock_projection_service as projection


def _append(product, movement_type, quantity, **kwargs):
    return movement_service.append_movement(
        product_id=product.id, movement_type=movement_type, quantity=quantity, **kwargs
    )


class TestAppendMovement:
    def test_purchase_on_empty_product(self, product):
        movement = _append(product, "purchase", "20")

        assert movement.direction == "increase"
        assert movement.level_after == Decimal("20")
        assert projection.level_for(product.id) == Decimal("20")

        history = movement_service.list_movements(product_id=product.id)
        assert [m.id for m in history] == [movement.id]

    def test_movement_type_is_case_insensitive(self, product):
        movement = _append(product, "  PURCHASE ", "3")
        assert movement.movement_type == "purchase"

    def test_consumption_decreases(self, product):
        _append(product, "purchase", "10")
        movement = _append(product, "consumption", "2.5")

        assert movement.direction == "decrease"
        assert projection.level_for(product.id) == Decimal("7.5")

    def test_return_increases(self, product):
        _append(product, "purchase", "4")
        _append(product, "return", "1")
        assert projection.level_for(product.id) == Decimal("5")

    def test_adjustment_requires_direction(self, product):
        with pytest.raises(ValidationError, match="direction is required"):
            _append(product, "adjustment", "2")
        assert movement_service.list_movements(product_id=product.id) == []

    def test_adjustment_uses_explicit_direction(self, product):
        _append(product, "purchase", "10")
        _append(product, "adjustment", "3", direction="decrease")
        _append(product, "adjustment", "1", direction="increase")
        assert projection.level_for(product.id) == Decimal("8")

    def test_direction_must_match_implied_direction(self, product):
        with pytest.raises(ValidationError):
            _append(product, "consumption", "1", direction="increase")

    @pytest.mark.parametrize("quantity", ["0", "-1", 0, -3, "abc", "", None, True, "NaN", "Infinity", "1.2345"])
    def test_invalid_quantity_rejected(self, product, quantity):
        with pytest.raises(ValidationError):
            _append(product, "purchase", quantity)
        assert projection.level_for(product.id) == Decimal("0")

    def test_quantity_limited_to_column_range(self, product):
        _append(product, "purchase", "99999999999.999")
        assert projection.level_for(product.id) > Decimal("99999999999")

        with pytest.raises(ValidationError, match="cannot exceed"):
            _append(product, "purchase", "100000000000")

    def test_unknown_movement_type_rejected(self, product):
        with pytest.raises(ValidationError, match="Invalid movement type"):
            _append(product, "transfer", "1")

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            movement_service.append_movement(product_id=9999, movement_type="purchase", quantity="1")
        assert db_session.query(StockMovement).count() == 0

    def test_notes_and_actor_are_recorded(self, product):
        movement = _append(product, "consumption", "1", notes="  Used on appointment 42 ", performed_by="emp-7")
        assert movement.notes == "Used on appointment 42"
        assert movement.performed_by == "emp-7"

    def test_notes_too_long(self, product):
        with pytest.raises(ValidationError, match="notes"):
            _append(product, "purchase", "1", notes="x" * (movement_service.MAX_NOTES_LENGTH + 1))


class TestNegativeStockPolicy:
    def test_permissive_allows_negative_and_logs(self, product, caplog):
        _append(product, "purchase", "5")

        with caplog.at_level(logging.WARNING):
            movement = _append(product, "consumption", "7")

        assert movement.level_after == Decimal("-2")
        assert projection.level_for(product.id) == Decimal("-2")
        assert projection.is_out_of_stock(product.id)
        assert not projection.is_low_stock(product.id)
        assert any("stock_negative" in r.getMessage() for r in caplog.records)

    def test_strict_rejects_and_writes_nothing(self, product, strict_policy, db_session):
        _append(product, "purchase", "5")

        with pytest.raises(InsufficientStockError) as exc:
            _append(product, "consumption", "7")

        assert exc.value.current == Decimal("5")
        assert exc.value.delta == Decimal("-7")
        assert Decimal(exc.value.to_dict()["resulting"]) == Decimal("-2")
        assert projection.level_for(product.id) == Decimal("5")
        assert db_session.query(StockMovement).filter_by(product_id=product.id).count() == 1

    def test_strict_rejects_first_movement_below_zero(self, product, strict_policy, db_session):
        with pytest.raises(InsufficientStockError):
            _append(product, "consumption", "1")
        assert db_session.query(StockLevel).count() == 0

    def test_strict_allows_exactly_zero(self, product, strict_policy):
        _append(product, "purchase", "3")
        _append(product, "consumption", "3")
        assert projection.level_for(product.id) == Decimal("0")
        assert projection.is_out_of_stock(product.id)

    def test_strict_does_not_apply_to_untracked_products(self, make_product, strict_policy):
        service = make_product(name="Haircut", is_inventory_item=False)
        _append(service, "consumption", "4")
        assert projection.level_for(service.id) is None

    def test_negative_level_warning_names_active_policy(self, app, product, monkeypatch, caplog):
        _append(product, "consumption", "5")
        monkeypatch.setitem(app.config, "STOCK_NEGATIVE_POLICY", "strict")

        with caplog.at_level(logging.WARNING):
            _append(product, "purchase", "2")

        assert projection.level_for(product.id) == Decimal("-3")
        warnings = [r.getMessage() for r in caplog.records if "stock_negative" in r.getMessage()]
        assert warnings
        assert all("policy=strict" in w for w in warnings)


class TestImmutability:
    def test_update_rejected(self, product, db_session):
        movement = _append(product, "purchase", "1")
        movement.notes = "rewritten"
        with pytest.raises(ValidationError, match="immutable"):
            db_session.commit()
        db_session.rollback()

    def test_delete_rejected(self, product, db_session):
        movement = _append(product, "purchase", "1")
        db_session.delete(movement)
        with pytest.raises(ValidationError, match="cannot be deleted"):
            db_session.commit()
        db_session.rollback()
        assert db_session.query(StockMovement).count() == 1


class TestHistory:
    def test_ordered_oldest_first_with_cursor(self, product):
        first = _append(product, "purchase", "1")
        second = _append(product, "purchase", "2")
        third = _append(product, "consumption", "1")

        page = movement_service.list_movements(product_id=product.id, limit=2)
        assert [m.id for m in page] == [first.id, second.id]

        rest = movement_service.list_movements(product_id=product.id, after_id=second.id)
        assert [m.id for m in rest] == [third.id]

    def test_invalid_limit(self, product):
        with pytest.raises(ValidationError):
            movement_service.list_movements(product_id=product.id, limit=0)

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            movement_service.list_movements(product_id=12345)


class TestProjection:
    def test_fold_movements_is_pure(self):
        movements = [
            SimpleNamespace(direction="increase", quantity=Decimal("10")),
            SimpleNamespace(direction="decrease", quantity=Decimal("3.5")),
            SimpleNamespace(direction="increase", quantity=Decimal("0.5")),
        ]
        assert projection.fold_movements(movements) == Decimal("7")
        assert projection.fold_movements([]) == Decimal("0")

    def test_signed_quantity_rejects_unknown_direction(self):
        with pytest.raises(ValidationError):
            projection.signed_quantity("sideways", Decimal("1"))

    def test_replay_matches_incremental(self, product):
        _append(product, "purchase", "12")
        _append(product, "consumption", "4.25")
        _append(product, "adjustment", "0.75", direction="decrease")
        _append(product, "return", "1")

        assert projection.replay_level(product.id) == projection.level_for(product.id) == Decimal("8")

    def test_rebuild_repairs_drifted_projection(self, product, db_session):
        _append(product, "purchase", "6")
        _append(product, "consumption", "2")

        db_session.execute(
            update(StockLevel).where(StockLevel.product_id == product.id).values(quantity=999, movement_count=0)
        )
        db_session.commit()
        assert projection.level_for(product.id) == Decimal("999")

        rebuilt = projection.rebuild_projection(product.id)

        assert rebuilt == {product.id: Decimal("4")}
        summary = projection.get_stock_summary(product.id)
        assert summary["display"] == "4"
        assert summary["movement_count"] == 2

    def test_rebuild_all_products(self, make_product):
        a = make_product(name="Conditioner")
        b = make_product(name="Hair gel")
        _append(a, "purchase", "2")

        rebuilt = projection.rebuild_projection()

        assert rebuilt == {a.id: Decimal("2"), b.id: Decimal("0")}

    def test_low_and_out_of_stock_thresholds(self, product):
        assert projection.is_out_of_stock(product.id)
        assert not projection.is_low_stock(product.id)

        _append(product, "purchase", "5")
        assert projection.is_low_stock(product.id)
        assert not projection.is_out_of_stock(product.id)

        _append(product, "purchase", "1")
        assert not projection.is_low_stock(product.id)

    def test_untracked_product_reports_unlimited(self, make_product):
        service = make_product(name="Blow dry", is_inventory_item=False)
        _append(service, "consumption", "3")

        summary = projection.get_stock_summary(service.id)

        assert summary["unlimited"] is True
        assert summary["display"] == "∞"
        assert summary["stock_level"] is None
        assert summary["is_out_of_stock"] is False
        assert summary["movement_count"] == 1

    def test_summary_display_has_no_exponent(self, product):
        _append(product, "purchase", "20")
        summary = projection.get_stock_summary(product.id)
        assert summary["display"] == "20"
        assert Decimal(summary["stock_level"]) == Decimal("20")

    def test_list_stock_levels_by_salon(self, make_product):
        b = make_product(name="B wax", salon_id="salon-1")
        a = make_product(name="A oil", salon_id="salon-1")
        make_product(name="Other salon", salon_id="salon-2")
        _append(a, "purchase", "2")

        items = projection.list_stock_levels(salon_id="salon-1")

        assert [i["product_id"] for i in items] == [a.id, b.id]
        assert items[0]["is_low_stock"] is True
        assert items[1]["is_out_of_stock"] is True

    def test_level_for_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            projection.level_for(4242)
