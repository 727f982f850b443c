# Overview: Flask API routes for wallets; balance, top-up and journal reads.

# backend/salonledger/routes/wallets.py
from flask import Blueprint, current_app, request

from ..errors import LedgerError, ValidationError
from ..services import wallet_service


wallets_bp = Blueprint("wallets", __name__, url_prefix="/api/wallets")


@wallets_bp.get("/<owner_id>/balance")
def get_balance_route(owner_id: str):
    try:
        wallet = wallet_service.get_wallet(owner_id)
        balance = wallet_service.get_balance(owner_id)
    except LedgerError as e:
        return e.to_dict(), e.status_code

    return {
        "owner_id": wallet.owner_id,
        "balance": str(balance),
        "currency": wallet.currency,
        "is_active": wallet.is_active,
    }, 200


@wallets_bp.post("/<owner_id>/credit")
def credit_wallet_route(owner_id: str):
    """
    Top up a wallet (created on first credit).

    Request body:
    {
        "amount": "5000.00",
        "description": "Salon top-up",
        "reference_id": "MOMO-998"   (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")
        balance = wallet_service.credit(
            owner_id,
            data.get("amount"),
            reference_type="top_up",
            reference_id=data.get("reference_id"),
            description=data.get("description"),
        )
    except LedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to credit wallet")
        return {"error": "Internal server error"}, 500

    return {"owner_id": owner_id.strip(), "balance": str(balance)}, 201


@wallets_bp.get("/<owner_id>/transactions")
def list_transactions_route(owner_id: str):
    limit = request.args.get("limit", default=200, type=int)
    limit = max(1, min(limit, 500))

    try:
        transactions = wallet_service.list_wallet_transactions(owner_id, limit=limit)
    except LedgerError as e:
        return e.to_dict(), e.status_code

    return {"owner_id": owner_id, "items": [t.to_dict() for t in transactions]}, 200
