"""
Credit ledger data model

Two tables back the credit system:

1. ``credit_balances`` - one row per account holding the materialized cash/free
   credit pools. Only the credit repository writes to it.
2. ``credit_ledger`` - append-only log of every balance change. The sum of
   ``cash_delta`` / ``free_delta`` per user reconstructs the balance row.

Idempotency is enforced by the database: ``(payment_provider,
external_payment_id)`` and ``idempotency_key`` (client tokens, internal grant
keys) are both UNIQUE, so a retried delivery can never be inserted twice.
Transaction ids are only unique per provider.
"""

from enum import Enum

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.schema import UniqueConstraint

from localhy.models.base import Base, BaseModel, CreatedAtMixin


class CreditReason(str, Enum):
    """Allowed ledger entry categories"""

    PURCHASE = "purchase"  # real-money purchase -> cash pool
    POSTING_FEE = "posting_fee"  # paid action debit
    REFERRAL_REWARD = "referral_reward"  # promotional -> free pool
    SIGNUP_BONUS = "signup_bonus"  # promotional -> free pool
    ADMIN_ADJUSTMENT = "admin_adjustment"
    REFUND = "refund"  # reversal of a debit, restores its split

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


# Positive deltas for these reasons land in the cash pool; everything else
# (except refunds, which mirror the refunded entry) lands in the free pool.
CASH_CREDIT_REASONS = frozenset({CreditReason.PURCHASE})


class CreditBalance(BaseModel):
    """Materialized per-user balance"""

    __tablename__ = "credit_balances"
    __table_args__ = (
        CheckConstraint("cash_credits >= 0", name="ck_credit_balances_cash_non_negative"),
        CheckConstraint("free_credits >= 0", name="ck_credit_balances_free_non_negative"),
    )

    user_id = Column(String(64), primary_key=True)
    cash_credits = Column(BigInteger, nullable=False, default=0)
    free_credits = Column(BigInteger, nullable=False, default=0)

    # Optimistic lock: every UPDATE is issued with "WHERE version = :old" and
    # raises StaleDataError when another transaction got there first.
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def total_credits(self) -> int:
        return int(self.cash_credits or 0) + int(self.free_credits or 0)

    def __repr__(self):
        return (
            f"<CreditBalance(user_id={self.user_id}, cash={self.cash_credits}, "
            f"free={self.free_credits})>"
        )


class CreditLedgerEntry(Base, CreatedAtMixin):
    """Immutable ledger row - never updated, never deleted"""

    __tablename__ = "credit_ledger"
    __table_args__ = (
        UniqueConstraint(
            "payment_provider", "external_payment_id", name="uq_credit_ledger_provider_payment_id"
        ),
        CheckConstraint(
            "external_payment_id IS NULL OR payment_provider IS NOT NULL",
            name="ck_credit_ledger_payment_has_provider",
        ),
        UniqueConstraint("idempotency_key", name="uq_credit_ledger_idempotency_key"),
        CheckConstraint("delta = cash_delta + free_delta", name="ck_credit_ledger_split"),
        Index("idx_credit_ledger_user_id", "user_id", "id"),
    )

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)

    # Signed change and how it was split across the two pools
    delta = Column(BigInteger, nullable=False)
    cash_delta = Column(BigInteger, nullable=False, default=0)
    free_delta = Column(BigInteger, nullable=False, default=0)

    # Balance right after this entry was applied
    cash_balance_after = Column(BigInteger, nullable=False)
    free_balance_after = Column(BigInteger, nullable=False)

    reason = Column(String(32), nullable=False)
    description = Column(Text, nullable=True)

    # Idempotency keys
    external_payment_id = Column(String(128), nullable=True)
    payment_provider = Column(String(32), nullable=True)
    idempotency_key = Column(String(320), nullable=True)

    # e.g. "referral_job:42" for paid actions, "credit_ledger:17" for refunds
    resource_ref = Column(String(128), nullable=True)

    @property
    def is_debit(self) -> bool:
        return int(self.delta) < 0

    def __repr__(self):
        return (
            f"<CreditLedgerEntry(id={self.id}, user_id={self.user_id}, "
            f"delta={self.delta}, reason={self.reason})>"
        )
