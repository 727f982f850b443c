# Overview: Domain error taxonomy shared by services and routes.

from __future__ import annotations

from decimal import Decimal


class LedgerError(Exception):
    """Base class for every business error raised by the core."""

    status_code = 400

    def to_dict(self) -> dict:
        return {"error": str(self)}


class ValidationError(LedgerError, ValueError):
    """400-level input problem."""


class NotFoundError(LedgerError):
    """Referenced product, commission or wallet does not exist."""

    status_code = 404


class ConflictError(LedgerError):
    """409-level business rule conflict."""

    status_code = 409


class AlreadyPaidError(ConflictError):
    def __init__(self, commission_ids):
        self.commission_ids = sorted(commission_ids)
        ids = ", ".join(str(i) for i in self.commission_ids)
        super().__init__(f"Commission already paid: {ids}")

    def to_dict(self) -> dict:
        return {"error": str(self), "commission_ids": self.commission_ids}


class InsufficientBalanceError(ConflictError):
    """
    Wallet cannot cover a debit.

    Carries enough detail for the caller to offer a top-up.
    """

    def __init__(self, owner_id: str, balance: Decimal, required: Decimal):
        self.owner_id = owner_id
        self.balance = balance
        self.required = required
        super().__init__(
            f"Insufficient balance for wallet {owner_id}: "
            f"available {balance}, required {required}"
        )

    @property
    def shortfall(self) -> Decimal:
        return self.required - self.balance

    def to_dict(self) -> dict:
        return {
            "error": "Insufficient balance",
            "owner_id": self.owner_id,
            "balance": str(self.balance),
            "required": str(self.required),
            "shortfall": str(self.shortfall),
        }


class InsufficientStockError(ConflictError):
    def __init__(self, product_id: int, current: Decimal, delta: Decimal):
        self.product_id = product_id
        self.current = current
        self.delta = delta
        super().__init__(
            f"Insufficient stock for product {product_id}. "
            f"Current: {current}, Change: {delta}, Resulting: {current + delta}"
        )

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "product_id": self.product_id,
            "current": str(self.current),
            "change": str(self.delta),
            "resulting": str(self.current + self.delta),
        }


class IdempotencyConflictError(ConflictError):
    """Idempotency key reused for a different settlement request."""
