from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Wallet(db.Model):
    """
    Balance held by an employee or a salon (owner_id is opaque).

    INVARIANT: balance >= 0. Only wallet_service mutates it, through a
    conditional UPDATE that refuses to overdraw.
    """
    __tablename__ = "wallets"
    __table_args__ = (
        db.UniqueConstraint("owner_id", name="uq_wallets_owner"),
        db.CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.String(64), nullable=False)

    balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="RWF")

    # Blocked wallets still accept credits but refuse debits
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "balance": str(self.balance),
            "currency": self.currency,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class WalletTransaction(db.Model):
    """Append-only journal of balance changes."""
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        db.Index("ix_wallet_transactions_wallet_created", "wallet_id", "created_at"),
        db.Index("ix_wallet_transactions_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    wallet_id = db.Column(db.Integer, db.ForeignKey("wallets.id"), nullable=False, index=True)

    # CREDIT | DEBIT
    transaction_type = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    balance_before = db.Column(db.Numeric(14, 2), nullable=False)
    balance_after = db.Column(db.Numeric(14, 2), nullable=False)

    reference_type = db.Column(db.String(64), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    wallet = db.relationship("Wallet", backref=db.backref("transactions", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "wallet_id": self.wallet_id,
            "transaction_type": self.transaction_type,
            "amount": str(self.amount),
            "balance_before": str(self.balance_before),
            "balance_after": str(self.balance_after),
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }
