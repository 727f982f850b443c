from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


def _decimal_str(value):
    return str(value) if value is not None else None


class Commission(db.Model):
    """
    One earned commission (from a sale item or an appointment).

    Lifecycle: UNPAID -> PAID (terminal). Created by the external sale or
    appointment flow; flipped to paid only by the settlement service.

    INVARIANTS:
    - paid => paid_at is set
    - paid and payment_method == 'mobile_money' => payment_reference is non-empty
    """
    __tablename__ = "commissions"
    __table_args__ = (
        db.Index("ix_commissions_employee_paid", "employee_id", "paid"),
        db.Index("ix_commissions_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Salon employee who earned the commission; also the wallet owner debited
    # by wallet settlements.
    employee_id = db.Column(db.String(64), nullable=False, index=True)
    salon_id = db.Column(db.String(64), nullable=True, index=True)

    sale_item_id = db.Column(db.String(64), nullable=True, index=True)
    appointment_id = db.Column(db.String(64), nullable=True, index=True)

    sale_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    commission_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    amount = db.Column(db.Numeric(14, 2), nullable=False)

    paid = db.Column(db.Boolean, nullable=False, default=False, index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # wallet | mobile_money (legacy rows may hold cash, bank_transfer, payroll)
    payment_method = db.Column(db.String(32), nullable=True)
    payment_reference = db.Column(db.String(255), nullable=True)

    settlement_id = db.Column(
        db.Integer, db.ForeignKey("commission_settlements.id"), nullable=True, index=True
    )

    # Optimistic lock: two settlements racing on one record cannot both flush
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    settlement = db.relationship("CommissionSettlement", backref=db.backref("commissions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Commission id={self.id} employee_id={self.employee_id!r} amount={self.amount} paid={self.paid}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "salon_id": self.salon_id,
            "sale_item_id": self.sale_item_id,
            "appointment_id": self.appointment_id,
            "sale_amount": _decimal_str(self.sale_amount),
            "commission_rate": _decimal_str(self.commission_rate),
            "amount": _decimal_str(self.amount),
            "paid": self.paid,
            "paid_at": to_utc_z(self.paid_at),
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "settlement_id": self.settlement_id,
            "created_at": to_utc_z(self.created_at),
        }


class CommissionSettlement(db.Model):
    """
    One successful settlement call (single or batch).

    Stores the idempotency key so a retried request returns the original
    outcome instead of failing with AlreadyPaidError or debiting twice.
    """
    __tablename__ = "commission_settlements"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", name="uq_commission_settlements_idempotency_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    owner_id = db.Column(db.String(64), nullable=False, index=True)

    payment_method = db.Column(db.String(32), nullable=False)
    payment_reference = db.Column(db.String(255), nullable=True)

    total_amount = db.Column(db.Numeric(14, 2), nullable=False)
    commission_count = db.Column(db.Integer, nullable=False)

    idempotency_key = db.Column(db.String(128), nullable=True)

    wallet_transaction_id = db.Column(db.Integer, db.ForeignKey("wallet_transactions.id"), nullable=True)
    balance_after = db.Column(db.Numeric(14, 2), nullable=True)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "total_amount": _decimal_str(self.total_amount),
            "commission_count": self.commission_count,
            "idempotency_key": self.idempotency_key,
            "wallet_transaction_id": self.wallet_transaction_id,
            "balance_after": _decimal_str(self.balance_after),
            "paid_at": to_utc_z(self.paid_at),
            "created_at": to_utc_z(self.created_at),
        }
