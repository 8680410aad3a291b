from pydantic import BaseModel, Field
from typing import Any, Dict, Optional

from localhy.schemas.credits import CreditBalanceResponse


class PaidActionQuote(BaseModel):
    """Affordability check shown before the confirm step"""

    action_kind: str
    cost: int = Field(..., ge=0, description="Fixed server-side price in credits")
    balance: CreditBalanceResponse
    can_afford: bool
    shortfall: int = Field(0, ge=0, description="Credits missing when can_afford is false")
    purchase_path: Optional[str] = Field(None, description="Where to buy more credits")


class PaidActionConfirmRequest(BaseModel):
    idempotency_token: str = Field(
        ...,
        min_length=8,
        max_length=128,
        description="Client-generated token; repeating it never charges twice",
    )
    payload: Dict[str, Any] = Field(default_factory=dict, description="Action input")


class PaidActionResult(BaseModel):
    action_kind: str
    cost: int
    balance: CreditBalanceResponse
    entry_id: Optional[int] = None
    resource: Optional[Dict[str, Any]] = None
    replayed: bool = Field(False, description="True when the token was already confirmed")
