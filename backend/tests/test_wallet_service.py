from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from salonledger.errors import InsufficientBalanceError, NotFoundError, ValidationError
from salonledger.models import Wallet
from salonledger.services import wallet_service


def test_credit_creates_wallet_and_journals(db_session):
    balance = wallet_service.credit("emp-1", "5000", description="Top-up")

    assert balance == Decimal("5000")
    wallet = wallet_service.get_wallet("emp-1")
    assert wallet.currency == "RWF"

    [tx] = wallet_service.list_wallet_transactions("emp-1")
    assert tx.transaction_type == "CREDIT"
    assert tx.balance_before == Decimal("0")
    assert tx.balance_after == Decimal("5000")


def test_debit_reduces_balance(db_session):
    wallet_service.credit("emp-1", "5000")

    balance = wallet_service.debit("emp-1", "1250.50", reference_type="manual", reference_id=7)

    assert balance == Decimal("3749.50")
    assert wallet_service.get_balance("emp-1") == Decimal("3749.50")
    latest = wallet_service.list_wallet_transactions("emp-1")[0]
    assert latest.transaction_type == "DEBIT"
    assert latest.balance_before == Decimal("5000")
    assert latest.reference_id == "7"


def test_debit_exact_balance(db_session):
    wallet_service.credit("emp-1", "100")
    assert wallet_service.debit("emp-1", "100") == Decimal("0")


def test_overdraw_rejected_without_change(db_session):
    wallet_service.credit("emp-1", "10000")

    with pytest.raises(InsufficientBalanceError) as exc:
        wallet_service.debit("emp-1", "12000")

    assert exc.value.shortfall == Decimal("2000")
    body = exc.value.to_dict()
    assert Decimal(body["balance"]) == Decimal("10000")
    assert Decimal(body["required"]) == Decimal("12000")
    assert wallet_service.get_balance("emp-1") == Decimal("10000")
    assert len(wallet_service.list_wallet_transactions("emp-1")) == 1


@pytest.mark.parametrize("amount", ["0", "-5", "abc", "1.234", None, True, "NaN"])
def test_invalid_amounts(db_session, amount):
    wallet_service.credit("emp-1", "100")
    with pytest.raises(ValidationError):
        wallet_service.debit("emp-1", amount)
    with pytest.raises(ValidationError):
        wallet_service.credit("emp-1", amount)


def test_unknown_wallet(db_session):
    with pytest.raises(NotFoundError):
        wallet_service.get_balance("ghost")
    with pytest.raises(NotFoundError):
        wallet_service.debit("ghost", "1")


def test_owner_id_required(db_session):
    with pytest.raises(ValidationError):
        wallet_service.credit("  ", "10")


def test_blocked_wallet_accepts_credit_but_not_debit(db_session):
    wallet_service.credit("emp-1", "100")
    wallet_service.set_wallet_active("emp-1", False)

    with pytest.raises(ValidationError, match="blocked"):
        wallet_service.debit("emp-1", "10")

    assert wallet_service.credit("emp-1", "50") == Decimal("150")


def test_get_or_create_is_idempotent(db_session):
    first = wallet_service.get_or_create_wallet("emp-9")
    second = wallet_service.get_or_create_wallet("emp-9")
    assert first.id == second.id
    assert db_session.query(Wallet).count() == 1


def test_database_refuses_negative_balance(db_session):
    db_session.add(Wallet(owner_id="emp-x", balance=Decimal("-1"), currency="RWF"))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_transactions_newest_first_with_limit(db_session):
    wallet_service.credit("emp-1", "100")
    wallet_service.credit("emp-1", "200")
    wallet_service.debit("emp-1", "50")

    txs = wallet_service.list_wallet_transactions("emp-1", limit=2)

    assert [t.transaction_type for t in txs] == ["DEBIT", "CREDIT"]
    assert txs[1].amount == Decimal("200")
