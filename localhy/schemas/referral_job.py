from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


class ReferralJobCreate(BaseModel):
    """Input of the create_referral_job paid action"""

    title: str = Field(..., min_length=3, max_length=255)
    description: str = Field(..., min_length=1)
    reward_amount: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    location: Optional[str] = Field(None, max_length=255)
    contact_email: Optional[EmailStr] = None

    @field_validator("title", "description")
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        if v.strip() == "":
            raise ValueError("Field cannot be blank")
        return v.strip()


class ReferralJobResponse(BaseModel):
    id: int
    user_id: str
    title: str
    description: str
    reward_amount: Decimal
    location: Optional[str] = None
    contact_email: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
