from pydantic import BaseModel, Field, field_validator
from typing import List, Optional


class CreditBalanceResponse(BaseModel):
    """Current balance (cash and free pools are tracked separately)"""

    user_id: str = Field(..., description="Account id")
    cash_credits: int = Field(0, ge=0, description="Purchased credits")
    free_credits: int = Field(0, ge=0, description="Promotional credits")
    total_credits: int = Field(0, ge=0, description="cash + free")

    class Config:
        from_attributes = True

    @classmethod
    def zero(cls, user_id: str) -> "CreditBalanceResponse":
        return cls(user_id=user_id, cash_credits=0, free_credits=0, total_credits=0)

    @classmethod
    def of(cls, user_id: str, cash: int, free: int) -> "CreditBalanceResponse":
        return cls(
            user_id=user_id,
            cash_credits=cash,
            free_credits=free,
            total_credits=cash + free,
        )


class CreditLedgerEntrySchema(BaseModel):
    """Single ledger row"""

    id: int
    transaction_type: str = Field(..., description="CREDIT or DEBIT")
    delta: int
    cash_delta: int
    free_delta: int
    cash_balance_after: int
    free_balance_after: int
    reason: str
    description: Optional[str] = None
    external_payment_id: Optional[str] = None
    payment_provider: Optional[str] = None
    resource_ref: Optional[str] = None
    created_at: str = Field(..., description="Creation time")

    class Config:
        from_attributes = True


class CreditLedgerResponse(BaseModel):
    balance: CreditBalanceResponse
    entries: List[CreditLedgerEntrySchema]
    total_count: int
    has_next: bool


class CreditMutationResult(BaseModel):
    """Outcome of the atomic credit mutator"""

    entry_id: Optional[int] = Field(None, description="Ledger entry id")
    user_id: str
    delta: int
    cash_credits: int = Field(..., description="Cash credits after the entry")
    free_credits: int = Field(..., description="Free credits after the entry")
    applied: bool = Field(..., description="False when the call was an idempotent replay")
    message: str = ""

    @property
    def total_credits(self) -> int:
        return self.cash_credits + self.free_credits


class WalletSummaryResponse(BaseModel):
    balance: CreditBalanceResponse
    total_purchased: int = Field(0, description="Credits bought with real money")
    total_earned: int = Field(0, description="Promotional credits granted")
    total_spent: int = Field(0, description="Credits debited (net of refunds)")
    entry_count: int = 0


class CreditIntegrityResponse(BaseModel):
    """Ledger vs materialized balance comparison"""

    status: str = Field(..., description="OK or MISMATCH")
    user_id: str
    calculated_cash: int
    calculated_free: int
    recorded_cash: int
    recorded_free: int
    entry_count: int
    verified_at: str


class AdminCreditAdjustmentRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    amount: int = Field(..., description="Positive: grant free credits, negative: debit")
    reason: str = Field(..., min_length=1, max_length=255)

    @field_validator("amount")
    @classmethod
    def amount_not_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("Adjustment amount cannot be zero")
        return v


class ReferralRewardRequest(BaseModel):
    referrer_id: str = Field(..., min_length=1, max_length=64)
    referred_id: str = Field(..., min_length=1, max_length=64)

    @field_validator("referred_id")
    @classmethod
    def not_self_referral(cls, v: str, info) -> str:
        if v == info.data.get("referrer_id"):
            raise ValueError("A user cannot refer themselves")
        return v

