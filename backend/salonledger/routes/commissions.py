# Overview: Flask API routes for commissions and their settlement; parses input and returns JSON responses.

# backend/salonledger/routes/commissions.py
"""
Commission API Routes

DESIGN:
- Settlement (single or batch) goes through the settlement engine only
- Wallet settlements debit the employee's wallet; mobile_money requires a
  payment_reference and touches no wallet
- Optional idempotency key (body field or Idempotency-Key header): retrying
  the same request returns the stored settlement instead of a 409
"""

from flask import Blueprint, current_app, request

from ..errors import LedgerError
from ..services import commission_service, settlement_service
from ..time_utils import parse_date_range
from ..validation import ValidationError, parse_commission_ids


commissions_bp = Blueprint("commissions", __name__, url_prefix="/api/commissions")


def _idempotency_key(data: dict):
    return data.get("idempotency_key") or request.headers.get("Idempotency-Key")


def _parse_paid_filter(raw):
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    raise ValidationError("paid must be true or false")


# =============================================================================
# SETTLEMENT
# =============================================================================

@commissions_bp.post("/<int:commission_id>/mark-paid")
def mark_paid_route(commission_id: int):
    """
    Settle one commission.

    Request body:
    {
        "payment_method": "mobile_money",
        "payment_reference": "TXN123",   (required for mobile_money)
        "idempotency_key": "abc-123"     (optional)
    }

    Returns:
        200: Settlement result
        400: Invalid method or missing reference
        404: Commission or wallet not found
        409: Already paid, insufficient wallet balance, idempotency conflict
    """
    data = request.get_json(silent=True) or {}

    try:
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")
        result = settlement_service.settle_single(
            commission_id,
            data.get("payment_method"),
            data.get("payment_reference"),
            idempotency_key=_idempotency_key(data),
        )
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to settle commission")
        return {"error": "Internal server error"}, 500

    return {"settlement": result.to_dict()}, 200


@commissions_bp.post("/mark-paid-batch")
def mark_paid_batch_route():
    """
    Settle several commissions of one employee, all-or-nothing.

    Request body:
    {
        "commission_ids": [1, 2, 3],
        "payment_method": "wallet",
        "payment_reference": null,
        "idempotency_key": "payout-2024-05"
    }

    For wallet settlements the summed amount is checked against the balance
    first; a shortfall returns 409 with balance/required/shortfall and no
    record changes.
    """
    data = request.get_json(silent=True) or {}

    try:
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")
        commission_ids = parse_commission_ids(data.get("commission_ids"))
        result = settlement_service.settle_batch(
            commission_ids,
            data.get("payment_method"),
            data.get("payment_reference"),
            idempotency_key=_idempotency_key(data),
        )
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to settle commission batch")
        return {"error": "Internal server error"}, 500

    return {"settlement": result.to_dict()}, 200


@commissions_bp.get("/settlements/<int:settlement_id>")
def get_settlement_route(settlement_id: int):
    try:
        result = settlement_service.get_settlement(settlement_id)
    except LedgerError as e:
        return e.to_dict(), e.status_code
    return {"settlement": result.to_dict()}, 200


# =============================================================================
# QUERIES
# =============================================================================

@commissions_bp.get("")
def list_commissions_route():
    """
    List commissions, newest first.

    Query params:
    - employee_id, salon_id
    - paid: true|false
    - start_date, end_date: ISO-8601 (inclusive)
    """
    try:
        start, end = parse_date_range(request.args.get("start_date"), request.args.get("end_date"))
        commissions = commission_service.list_commissions(
            employee_id=request.args.get("employee_id"),
            salon_id=request.args.get("salon_id"),
            paid=_parse_paid_filter(request.args.get("paid")),
            start=start,
            end=end,
        )
    except ValueError as e:
        return {"error": str(e)}, 400

    return {"items": [c.to_dict() for c in commissions], "count": len(commissions)}, 200


@commissions_bp.get("/<int:commission_id>")
def get_commission_route(commission_id: int):
    try:
        commission = commission_service.get_commission(commission_id)
    except LedgerError as e:
        return e.to_dict(), e.status_code
    return {"commission": commission.to_dict()}, 200


@commissions_bp.get("/employee/<employee_id>/summary")
def employee_summary_route(employee_id: str):
    try:
        start, end = parse_date_range(request.args.get("start_date"), request.args.get("end_date"))
        summary = commission_service.get_employee_commission_summary(employee_id, start=start, end=end)
    except ValueError as e:
        return {"error": str(e)}, 400
    return summary, 200
