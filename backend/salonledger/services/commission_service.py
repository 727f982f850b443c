# Overview: Service-layer operations for commissions; record creation, paid transition and reporting.

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from ..extensions import db
from ..errors import AlreadyPaidError, NotFoundError, ValidationError
from ..models import Commission
from ..time_utils import utcnow
from ..validation import (
    normalize_payment_method,
    normalize_payment_reference,
    parse_positive_decimal,
)
from .concurrency import run_with_retry


CENT = Decimal("0.01")


def _parse_non_negative(value, field: str) -> Decimal:
    if not isinstance(value, bool):
        try:
            if Decimal(str(value).strip()) == 0:
                return Decimal("0")
        except InvalidOperation:
            pass
    return parse_positive_decimal(value, field, places=2)


def calculate_commission_amount(sale_amount: Decimal, commission_rate: Decimal) -> Decimal:
    """sale_amount * rate / 100, rounded half-up to the cent."""
    return (Decimal(sale_amount) * Decimal(commission_rate) / Decimal("100")).quantize(
        CENT, rounding=ROUND_HALF_UP
    )


def create_commission(
    *,
    employee_id: str,
    sale_amount,
    commission_rate,
    sale_item_id: str | None = None,
    appointment_id: str | None = None,
    salon_id: str | None = None,
) -> Commission:
    """
    Record an unpaid commission earned on a sale item or an appointment.

    Normally called by the sales/appointments flow; exposed here so that flow
    and the CLI share one calculation.
    """
    employee_id = (str(employee_id).strip() if employee_id is not None else "")
    if not employee_id:
        raise ValidationError("employee_id is required")
    if (sale_item_id is None) == (appointment_id is None):
        raise ValidationError("Exactly one of sale_item_id or appointment_id is required")

    sale_amount = _parse_non_negative(sale_amount, "sale_amount")
    commission_rate = _parse_non_negative(commission_rate, "commission_rate")
    if commission_rate > 100:
        raise ValidationError("commission_rate cannot exceed 100")

    def _op():
        commission = Commission(
            employee_id=employee_id,
            salon_id=salon_id,
            sale_item_id=sale_item_id,
            appointment_id=appointment_id,
            sale_amount=sale_amount,
            commission_rate=commission_rate,
            amount=calculate_commission_amount(sale_amount, commission_rate),
            paid=False,
        )
        db.session.add(commission)
        db.session.commit()
        return commission

    return run_with_retry(_op)


def get_commission(commission_id: int) -> Commission:
    commission = db.session.get(Commission, commission_id)
    if commission is None:
        raise NotFoundError(f"Commission {commission_id} not found")
    return commission


def mark_paid(
    commission: Commission,
    method: str,
    reference: str | None = None,
    paid_at: datetime | None = None,
) -> Commission:
    """
    Flip one in-memory record from unpaid to paid. Does not commit.

    The settlement service is the only caller; it owns the transaction and
    the wallet debit.

    Raises:
        ValidationError: method not settleable, or mobile_money without reference
        AlreadyPaidError: record already paid (record is left untouched)
    """
    method = normalize_payment_method(method)
    reference = normalize_payment_reference(method, reference)

    if commission.paid:
        raise AlreadyPaidError([commission.id])

    commission.paid = True
    commission.paid_at = paid_at or utcnow()
    commission.payment_method = method
    commission.payment_reference = reference
    return commission


def list_commissions(
    *,
    employee_id: str | None = None,
    salon_id: str | None = None,
    paid: bool | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Commission]:
    q = db.session.query(Commission)
    if employee_id is not None:
        q = q.filter(Commission.employee_id == employee_id)
    if salon_id is not None:
        q = q.filter(Commission.salon_id == salon_id)
    if paid is not None:
        q = q.filter(Commission.paid.is_(paid))
    if start is not None:
        q = q.filter(Commission.created_at >= start)
    if end is not None:
        q = q.filter(Commission.created_at <= end)
    return q.order_by(Commission.created_at.desc(), Commission.id.desc()).all()


def get_employee_commission_summary(
    employee_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    commissions = list_commissions(employee_id=employee_id, start=start, end=end)

    total = sum((Decimal(c.amount) for c in commissions), Decimal("0"))
    paid = sum((Decimal(c.amount) for c in commissions if c.paid), Decimal("0"))
    total_sales = sum((Decimal(c.sale_amount) for c in commissions), Decimal("0"))

    return {
        "employee_id": employee_id,
        "total_commissions": str(total),
        "paid_commissions": str(paid),
        "unpaid_commissions": str(total - paid),
        "total_sales": str(total_sales),
        "count": len(commissions),
    }
