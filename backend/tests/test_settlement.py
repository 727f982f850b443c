"""
Commission settlement engine tests.

Scenarios mirror the payout screens: single and batch settlement from the
employee wallet or by mobile money, with all-or-nothing failure.
"""

from decimal import Decimal

import pytest

from salonledger.errors import (
    AlreadyPaidError,
    IdempotencyConflictError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from salonledger.models import Commission, CommissionSettlement, WalletTransaction
from salonledger.services import settlement_service, wallet_service


def _reload(db_session, commission_id):
    db_session.expire_all()
    return db_session.get(Commission, commission_id)


class TestWalletSettlement:
    def test_batch_exceeding_balance_changes_nothing(self, make_commission, funded_wallet, db_session):
        funded_wallet("emp-1", "10000.00")
        ids = [
            make_commission(amount="5000.00").id,
            make_commission(amount="4000.00").id,
            make_commission(amount="3000.00").id,
        ]

        with pytest.raises(InsufficientBalanceError) as exc:
            settlement_service.settle_batch(ids, "wallet")

        assert exc.value.balance == Decimal("10000")
        assert exc.value.required == Decimal("12000")
        assert exc.value.shortfall == Decimal("2000")
        assert wallet_service.get_balance("emp-1") == Decimal("10000")
        assert all(not _reload(db_session, cid).paid for cid in ids)
        assert db_session.query(CommissionSettlement).count() == 0
        assert db_session.query(WalletTransaction).filter_by(transaction_type="DEBIT").count() == 0

    def test_batch_within_balance(self, make_commission, funded_wallet, db_session):
        funded_wallet("emp-1", "10000.00")
        ids = [make_commission(amount="5000.00").id, make_commission(amount="4000.00").id]

        result = settlement_service.settle_batch(ids, "wallet")

        assert result.total_amount == Decimal("9000")
        assert result.balance_after == Decimal("1000")
        assert result.owner_id == "emp-1"
        assert result.replayed is False
        assert wallet_service.get_balance("emp-1") == Decimal("1000")

        records = [_reload(db_session, cid) for cid in ids]
        assert all(r.paid and r.payment_method == "wallet" for r in records)
        assert len({r.paid_at for r in records}) == 1
        assert {r.settlement_id for r in records} == {result.settlement_id}

        debits = db_session.query(WalletTransaction).filter_by(transaction_type="DEBIT").all()
        assert len(debits) == 1
        assert debits[0].amount == Decimal("9000")
        assert debits[0].balance_before == Decimal("10000")
        assert debits[0].reference_id == str(result.settlement_id)

    def test_exact_balance_drains_to_zero(self, make_commission, funded_wallet):
        funded_wallet("emp-1", "2500.00")
        commission = make_commission(amount="2500.00")

        result = settlement_service.settle_single(commission.id, "wallet")

        assert result.balance_after == Decimal("0")
        assert wallet_service.get_balance("emp-1") == Decimal("0")

    def test_missing_wallet(self, make_commission, db_session):
        commission = make_commission(employee_id="emp-no-wallet")

        with pytest.raises(NotFoundError, match="Wallet"):
            settlement_service.settle_single(commission.id, "wallet")

        assert not _reload(db_session, commission.id).paid

    def test_blocked_wallet(self, make_commission, funded_wallet, db_session):
        funded_wallet("emp-1", "10000.00")
        wallet_service.set_wallet_active("emp-1", False)
        commission = make_commission()

        with pytest.raises(ValidationError, match="blocked"):
            settlement_service.settle_single(commission.id, "wallet")

        assert not _reload(db_session, commission.id).paid


class TestMobileMoneySettlement:
    def test_single_with_reference(self, make_commission, db_session):
        commission = make_commission()

        result = settlement_service.settle_single(commission.id, "mobile_money", "TXN123")

        record = _reload(db_session, commission.id)
        assert record.paid is True
        assert record.payment_method == "mobile_money"
        assert record.payment_reference == "TXN123"
        assert result.payment_reference == "TXN123"
        assert result.balance_after is None
        assert db_session.query(WalletTransaction).count() == 0

    def test_reference_required(self, make_commission, db_session):
        commission = make_commission()

        with pytest.raises(ValidationError, match="payment_reference"):
            settlement_service.settle_single(commission.id, "mobile_money")

        assert not _reload(db_session, commission.id).paid

    def test_batch_shares_reference(self, make_commission, db_session):
        ids = [make_commission().id, make_commission().id]

        settlement_service.settle_batch(ids, "mobile_money", "TXN-BATCH-1")

        assert {_reload(db_session, cid).payment_reference for cid in ids} == {"TXN-BATCH-1"}


class TestSettlementPreconditions:
    def test_already_paid_single(self, make_commission, funded_wallet):
        funded_wallet("emp-1", "10000.00")
        commission = make_commission(amount="1000.00")
        settlement_service.settle_single(commission.id, "wallet")

        with pytest.raises(AlreadyPaidError) as exc:
            settlement_service.settle_single(commission.id, "wallet")

        assert exc.value.commission_ids == [commission.id]
        assert wallet_service.get_balance("emp-1") == Decimal("9000")

    def test_batch_with_one_paid_record_fails_whole(self, make_commission, funded_wallet, db_session):
        funded_wallet("emp-1", "10000.00")
        paid = make_commission(amount="1000.00")
        settlement_service.settle_single(paid.id, "mobile_money", "TXN1")
        unpaid = make_commission(amount="1000.00")

        with pytest.raises(AlreadyPaidError) as exc:
            settlement_service.settle_batch([unpaid.id, paid.id], "wallet")

        assert exc.value.commission_ids == [paid.id]
        assert not _reload(db_session, unpaid.id).paid
        assert wallet_service.get_balance("emp-1") == Decimal("10000")

    def test_unknown_commission(self, make_commission, db_session):
        existing = make_commission()

        with pytest.raises(NotFoundError, match="999"):
            settlement_service.settle_batch([existing.id, 999], "mobile_money", "TXN1")

        assert not _reload(db_session, existing.id).paid

    def test_mixed_owners_rejected(self, make_commission):
        a = make_commission(employee_id="emp-1")
        b = make_commission(employee_id="emp-2")

        with pytest.raises(ValidationError, match="same employee"):
            settlement_service.settle_batch([a.id, b.id], "mobile_money", "TXN1")

    @pytest.mark.parametrize("method", ["cash", "bank_transfer", "payroll", "", None])
    def test_unsettleable_methods(self, make_commission, method):
        with pytest.raises(ValidationError):
            settlement_service.settle_single(make_commission().id, method, "REF")

    def test_empty_batch(self, db_session):
        with pytest.raises(ValidationError):
            settlement_service.settle_batch([], "wallet")

    def test_duplicate_ids_settled_once(self, make_commission, funded_wallet):
        funded_wallet("emp-1", "10000.00")
        commission = make_commission(amount="1500.00")

        result = settlement_service.settle_batch([commission.id, commission.id], "wallet")

        assert result.commission_ids == [commission.id]
        assert result.total_amount == Decimal("1500")
        assert wallet_service.get_balance("emp-1") == Decimal("8500")


class TestIdempotency:
    def test_retry_with_same_key_replays(self, make_commission, funded_wallet, db_session):
        funded_wallet("emp-1", "10000.00")
        ids = [make_commission(amount="2000.00").id, make_commission(amount="1000.00").id]

        first = settlement_service.settle_batch(ids, "wallet", idempotency_key="payout-1")
        second = settlement_service.settle_batch(list(reversed(ids)), "wallet", idempotency_key="payout-1")

        assert second.replayed is True
        assert second.settlement_id == first.settlement_id
        assert second.commission_ids == sorted(ids)
        assert second.total_amount == Decimal("3000")
        assert wallet_service.get_balance("emp-1") == Decimal("7000")
        assert db_session.query(WalletTransaction).filter_by(transaction_type="DEBIT").count() == 1

    def test_key_reused_for_other_request(self, make_commission):
        first = make_commission()
        other = make_commission()
        settlement_service.settle_single(first.id, "mobile_money", "TXN1", idempotency_key="k-1")

        with pytest.raises(IdempotencyConflictError):
            settlement_service.settle_single(other.id, "mobile_money", "TXN1", idempotency_key="k-1")

    def test_key_too_long(self, make_commission):
        with pytest.raises(ValidationError, match="idempotency_key"):
            settlement_service.settle_single(
                make_commission().id, "mobile_money", "TXN1", idempotency_key="k" * 129
            )

    def test_get_settlement(self, make_commission):
        commission = make_commission()
        result = settlement_service.settle_single(commission.id, "mobile_money", "TXN7")

        stored = settlement_service.get_settlement(result.settlement_id)

        assert stored.commission_ids == [commission.id]
        assert stored.payment_reference == "TXN7"
        assert stored.to_dict()["paid_at"].endswith("Z")
