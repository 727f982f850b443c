# Overview: Service-layer operations for commission settlement; the only writer of the paid transition.

"""
Commission Settlement Engine

WHY: Commission payouts must be settled exactly once, against either the
employee's wallet or an external mobile-money reference.

DESIGN PRINCIPLES:
- All-or-nothing: a call settles every requested record or none of them
- Fail fast: any missing or already-paid record aborts before any mutation
- Wallet settlements debit the SUM of the batch with one conditional update,
  never one debit per record
- Record flips, the settlement row and the wallet debit share one transaction
- Commission rows carry a version id; two calls racing on overlapping records
  cannot both flush, and the loser is retried into AlreadyPaidError
- Optional idempotency key: a retried request returns the stored settlement
  instead of failing or debiting twice, also when it raced the original and
  lost on the paid rows or on the unique key
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    AlreadyPaidError,
    IdempotencyConflictError,
    NotFoundError,
    ValidationError,
)
from ..models import Commission, CommissionSettlement
from ..time_utils import to_utc_z, utcnow
from ..validation import (
    METHOD_WALLET,
    normalize_payment_method,
    normalize_payment_reference,
)
from . import wallet_service
from .commission_service import mark_paid
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


MAX_IDEMPOTENCY_KEY_LENGTH = 128


@dataclass(frozen=True)
class SettlementResult:
    settlement_id: int
    commission_ids: list[int]
    owner_id: str
    payment_method: str
    payment_reference: str | None
    total_amount: Decimal
    paid_at: datetime
    balance_after: Decimal | None = None
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "settlement_id": self.settlement_id,
            "commission_ids": self.commission_ids,
            "owner_id": self.owner_id,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "total_amount": str(self.total_amount),
            "paid_at": to_utc_z(self.paid_at),
            "balance_after": str(self.balance_after) if self.balance_after is not None else None,
            "replayed": self.replayed,
        }


def _normalize_ids(commission_ids) -> list[int]:
    if not commission_ids:
        raise ValidationError("At least one commission id is required")
    ids = []
    for cid in commission_ids:
        if isinstance(cid, bool) or not isinstance(cid, int):
            raise ValidationError("Commission ids must be integers")
        ids.append(cid)
    return sorted(set(ids))


def _normalize_key(idempotency_key) -> str | None:
    if idempotency_key is None:
        return None
    key = str(idempotency_key).strip()
    if not key:
        return None
    if len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise ValidationError(f"idempotency_key exceeds max length {MAX_IDEMPOTENCY_KEY_LENGTH}")
    return key


def _result_from_settlement(settlement: CommissionSettlement, *, replayed: bool) -> SettlementResult:
    return SettlementResult(
        settlement_id=settlement.id,
        commission_ids=sorted(c.id for c in settlement.commissions),
        owner_id=settlement.owner_id,
        payment_method=settlement.payment_method,
        payment_reference=settlement.payment_reference,
        total_amount=Decimal(settlement.total_amount),
        paid_at=settlement.paid_at,
        balance_after=Decimal(settlement.balance_after) if settlement.balance_after is not None else None,
        replayed=replayed,
    )


def _replay(settlement: CommissionSettlement, ids: list[int], method: str, reference: str | None) -> SettlementResult:
    stored_ids = sorted(c.id for c in settlement.commissions)
    if (
        stored_ids != ids
        or settlement.payment_method != method
        or settlement.payment_reference != reference
    ):
        raise IdempotencyConflictError(
            f"Idempotency key {settlement.idempotency_key!r} was already used for a different settlement"
        )
    logger.info("settlement_replayed settlement_id=%s key=%s", settlement.id, settlement.idempotency_key)
    return _result_from_settlement(settlement, replayed=True)


def _replay_committed(key, ids: list[int], method: str, reference: str | None) -> SettlementResult | None:
    """Replay a settlement that a concurrent request committed under the same key."""
    if key is None:
        return None
    db.session.rollback()
    existing = db.session.query(CommissionSettlement).filter_by(idempotency_key=key).first()
    if existing is None:
        return None
    return _replay(existing, ids, method, reference)


def _settle(ids: list[int], method, reference, idempotency_key) -> SettlementResult:
    method = normalize_payment_method(method)
    reference = normalize_payment_reference(method, reference)
    key = _normalize_key(idempotency_key)

    def _op():
        if key is not None:
            existing = db.session.query(CommissionSettlement).filter_by(idempotency_key=key).first()
            if existing is not None:
                return _replay(existing, ids, method, reference)

        commissions = (
            lock_for_update(db.session.query(Commission).filter(Commission.id.in_(ids)))
            .order_by(Commission.id)
            .all()
        )

        missing = sorted(set(ids) - {c.id for c in commissions})
        if missing:
            raise NotFoundError(f"Commission not found: {', '.join(str(i) for i in missing)}")

        already_paid = [c.id for c in commissions if c.paid]
        if already_paid:
            replayed = _replay_committed(key, ids, method, reference)
            if replayed is not None:
                return replayed
            raise AlreadyPaidError(already_paid)

        owners = {c.employee_id for c in commissions}
        if len(owners) != 1:
            raise ValidationError("All commissions in a settlement must belong to the same employee")
        owner_id = owners.pop()

        total = sum((Decimal(c.amount) for c in commissions), Decimal("0"))
        paid_at = utcnow()

        settlement = CommissionSettlement(
            owner_id=owner_id,
            payment_method=method,
            payment_reference=reference,
            total_amount=total,
            commission_count=len(commissions),
            idempotency_key=key,
            paid_at=paid_at,
        )
        db.session.add(settlement)
        try:
            db.session.flush()
        except IntegrityError:
            replayed = _replay_committed(key, ids, method, reference)
            if replayed is not None:
                return replayed
            raise IdempotencyConflictError(f"Idempotency key {key!r} is already in use")

        if method == METHOD_WALLET:
            if total > 0:
                wallet_tx = wallet_service.debit_locked(
                    owner_id,
                    total,
                    reference_type="commission_settlement",
                    reference_id=settlement.id,
                    description=f"Commission payout ({len(commissions)} record(s))",
                )
                settlement.wallet_transaction_id = wallet_tx.id
                settlement.balance_after = wallet_tx.balance_after
            else:
                settlement.balance_after = wallet_service.get_wallet(owner_id).balance

        for commission in commissions:
            mark_paid(commission, method, reference, paid_at=paid_at)
            commission.settlement_id = settlement.id

        # Version check happens here: a concurrent winner raises StaleDataError
        db.session.flush()
        db.session.commit()

        logger.info(
            "commissions_settled settlement_id=%s owner=%s method=%s count=%s total=%s",
            settlement.id, owner_id, method, len(commissions), total,
        )
        return SettlementResult(
            settlement_id=settlement.id,
            commission_ids=ids,
            owner_id=owner_id,
            payment_method=method,
            payment_reference=reference,
            total_amount=total,
            paid_at=paid_at,
            balance_after=Decimal(settlement.balance_after) if settlement.balance_after is not None else None,
        )

    attempts = current_app.config.get("SETTLEMENT_RETRY_ATTEMPTS", 3)
    return run_with_retry(_op, attempts=attempts)


def settle_single(
    commission_id: int,
    method: str,
    reference: str | None = None,
    *,
    idempotency_key: str | None = None,
) -> SettlementResult:
    """
    Settle one unpaid commission.

    Raises:
        ValidationError: bad method, or mobile_money without reference
        NotFoundError: commission (or payer wallet) does not exist
        AlreadyPaidError: commission already paid; nothing changes
        InsufficientBalanceError: wallet cannot cover the amount; record stays unpaid
        IdempotencyConflictError: key reused for a different request
    """
    return _settle(_normalize_ids([commission_id]), method, reference, idempotency_key)


def settle_batch(
    commission_ids,
    method: str,
    reference: str | None = None,
    *,
    idempotency_key: str | None = None,
) -> SettlementResult:
    """
    Settle several unpaid commissions of one employee, all-or-nothing.

    For wallet settlements the whole batch total is checked and debited in a
    single atomic step; if it cannot be covered no record is paid and the
    balance is unchanged. Raises the same errors as settle_single.
    """
    return _settle(_normalize_ids(commission_ids), method, reference, idempotency_key)


def get_settlement(settlement_id: int) -> SettlementResult:
    settlement = db.session.get(CommissionSettlement, settlement_id)
    if settlement is None:
        raise NotFoundError(f"Settlement {settlement_id} not found")
    return _result_from_settlement(settlement, replayed=False)
