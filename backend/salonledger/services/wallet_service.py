# Overview: Service-layer operations for wallets; guards the non-negative balance invariant.

"""
Wallet Balance Guard

WHY: Wallet-sourced commission settlements must never overdraw the payer.

DESIGN PRINCIPLES:
- balance >= 0 at all times
- Debits are a single conditional UPDATE:
      UPDATE wallets SET balance = balance - :amt
      WHERE owner_id = :id AND balance >= :amt AND is_active
  and the affected-row count decides success. No read-modify-write, so two
  concurrent debits can never both pass on a balance that covers only one.
- Every balance change appends a WalletTransaction (balance before/after)
- Debits can run inside a caller's transaction (commit=False) so settlement
  can flip commissions and debit the wallet atomically
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import InsufficientBalanceError, NotFoundError, ValidationError
from ..models import Wallet, WalletTransaction
from ..validation import parse_positive_decimal
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)


TX_CREDIT = "CREDIT"
TX_DEBIT = "DEBIT"


def _normalize_owner(owner_id) -> str:
    owner = str(owner_id).strip() if owner_id is not None else ""
    if not owner:
        raise ValidationError("owner_id is required")
    return owner


def _find_wallet(owner_id: str) -> Wallet | None:
    return db.session.query(Wallet).filter_by(owner_id=owner_id).first()


def get_wallet(owner_id) -> Wallet:
    owner_id = _normalize_owner(owner_id)
    wallet = _find_wallet(owner_id)
    if wallet is None:
        raise NotFoundError(f"Wallet for owner {owner_id} not found")
    return wallet


def _ensure_wallet(owner_id: str, currency: str = "RWF") -> Wallet:
    """
    Get or create inside the current transaction (no commit).

    Must be the first write of its transaction: losing a creation race rolls
    the session back before re-reading the winner's row.
    """
    wallet = _find_wallet(owner_id)
    if wallet is not None:
        return wallet

    wallet = Wallet(owner_id=owner_id, balance=Decimal("0"), currency=currency)
    db.session.add(wallet)
    try:
        db.session.flush()
    except IntegrityError:
        # Created concurrently by another request
        db.session.rollback()
        wallet = _find_wallet(owner_id)
        if wallet is None:
            raise
    return wallet


def _expire_cached_wallet(wallet_id: int) -> None:
    """ORM copies loaded earlier in this session are stale after a Core update."""
    cached = db.session.identity_map.get(db.session.identity_key(Wallet, wallet_id))
    if cached is not None:
        db.session.expire(cached)


def get_or_create_wallet(owner_id, currency: str = "RWF") -> Wallet:
    owner_id = _normalize_owner(owner_id)

    def _op():
        wallet = _ensure_wallet(owner_id, currency)
        db.session.commit()
        return wallet

    return run_with_retry(_op)


def get_balance(owner_id) -> Decimal:
    """
    Current available balance.

    May be momentarily stale relative to an in-flight debit, but never
    reports a negative amount as available.
    """
    wallet = get_wallet(owner_id)
    db.session.refresh(wallet)
    return max(Decimal(wallet.balance), Decimal("0"))


def _current_balance(wallet_id: int) -> Decimal:
    return db.session.execute(
        select(Wallet.balance).where(Wallet.id == wallet_id)
    ).scalar_one()


def _log_wallet_transaction(
    *,
    wallet_id: int,
    transaction_type: str,
    amount: Decimal,
    balance_after: Decimal,
    reference_type: str | None,
    reference_id,
    description: str | None,
) -> WalletTransaction:
    balance_before = balance_after + amount if transaction_type == TX_DEBIT else balance_after - amount
    tx = WalletTransaction(
        wallet_id=wallet_id,
        transaction_type=transaction_type,
        amount=amount,
        balance_before=balance_before,
        balance_after=balance_after,
        reference_type=reference_type,
        reference_id=str(reference_id) if reference_id is not None else None,
        description=description,
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def debit_locked(
    owner_id: str,
    amount: Decimal,
    *,
    reference_type: str | None = None,
    reference_id=None,
    description: str | None = None,
) -> WalletTransaction:
    """
    Conditional debit inside the caller's transaction. Does not commit.

    Raises:
        NotFoundError: no wallet for owner
        ValidationError: wallet is blocked
        InsufficientBalanceError: balance < amount (nothing is changed)
    """
    result = db.session.execute(
        update(Wallet)
        .where(
            Wallet.owner_id == owner_id,
            Wallet.balance >= amount,
            Wallet.is_active.is_(True),
        )
        .values(balance=Wallet.balance - amount)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        wallet = _find_wallet(owner_id)
        if wallet is None:
            raise NotFoundError(f"Wallet for owner {owner_id} not found")
        db.session.refresh(wallet)
        if not wallet.is_active:
            raise ValidationError("Wallet is blocked. Outgoing transactions are not allowed.")
        raise InsufficientBalanceError(owner_id, Decimal(wallet.balance), amount)

    wallet_id = db.session.execute(
        select(Wallet.id).where(Wallet.owner_id == owner_id)
    ).scalar_one()
    balance_after = _current_balance(wallet_id)

    tx = _log_wallet_transaction(
        wallet_id=wallet_id,
        transaction_type=TX_DEBIT,
        amount=amount,
        balance_after=balance_after,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
    )

    _expire_cached_wallet(wallet_id)

    logger.info("wallet_debited owner=%s amount=%s balance_after=%s", owner_id, amount, balance_after)
    return tx


def debit(
    owner_id,
    amount,
    *,
    reference_type: str | None = None,
    reference_id=None,
    description: str | None = None,
) -> Decimal:
    """
    Debit a wallet and return the new balance.

    Linearizable per owner: the check and the subtraction are one statement.
    """
    owner_id = _normalize_owner(owner_id)
    amount = parse_positive_decimal(amount, "amount", places=2)

    def _op():
        tx = debit_locked(
            owner_id,
            amount,
            reference_type=reference_type,
            reference_id=reference_id,
            description=description,
        )
        db.session.commit()
        return Decimal(tx.balance_after)

    return run_with_retry(_op)


def credit(
    owner_id,
    amount,
    *,
    reference_type: str | None = None,
    reference_id=None,
    description: str | None = None,
) -> Decimal:
    """
    Credit (top up) a wallet, creating it on first use. Returns the new balance.

    Blocked wallets still accept incoming funds.
    """
    owner_id = _normalize_owner(owner_id)
    amount = parse_positive_decimal(amount, "amount", places=2)

    def _op():
        wallet = _ensure_wallet(owner_id)
        wallet_id = wallet.id

        db.session.execute(
            update(Wallet)
            .where(Wallet.id == wallet_id)
            .values(balance=Wallet.balance + amount)
            .execution_options(synchronize_session=False)
        )
        balance_after = _current_balance(wallet_id)

        _log_wallet_transaction(
            wallet_id=wallet_id,
            transaction_type=TX_CREDIT,
            amount=amount,
            balance_after=balance_after,
            reference_type=reference_type,
            reference_id=reference_id,
            description=description,
        )
        _expire_cached_wallet(wallet_id)
        db.session.commit()

        logger.info("wallet_credited owner=%s amount=%s balance_after=%s", owner_id, amount, balance_after)
        return Decimal(balance_after)

    return run_with_retry(_op)


def set_wallet_active(owner_id, is_active: bool) -> Wallet:
    wallet = get_wallet(owner_id)
    wallet.is_active = bool(is_active)
    db.session.commit()
    return wallet


def list_wallet_transactions(owner_id, limit: int = 200) -> list[WalletTransaction]:
    wallet = get_wallet(owner_id)
    return (
        db.session.query(WalletTransaction)
        .filter_by(wallet_id=wallet.id)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .limit(limit)
        .all()
    )
