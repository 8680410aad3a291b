"""
Payment webhook payloads

Inbound body: ``{"provider": "paypal" | "creem", "paymentData": {...}}``.
``PaymentWebhook`` is a tagged union on ``provider``: each provider gets its own
schema, and an unrecognized provider fails validation instead of being skipped.
Provider payloads keep unknown fields (``extra="allow"``) because the PayPal IPN
post-back must echo the notification back verbatim.
"""

from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class PaymentProvider(str, Enum):
    PAYPAL = "paypal"
    CREEM = "creem"


class WebhookState(str, Enum):
    RECEIVED = "received"
    VERIFIED = "verified"
    APPLIED = "applied"
    ACKNOWLEDGED = "acknowledged"
    REJECTED = "rejected"


def _to_str(v: Any) -> Any:
    # ids arrive as numbers from some checkout integrations
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return v


class PaypalCustomField(BaseModel):
    """JSON document PayPal passes through in the ``custom`` field"""

    model_config = ConfigDict(extra="allow")

    userId: str = Field(..., min_length=1, max_length=64)
    amount: Optional[Decimal] = None

    @field_validator("userId", mode="before")
    @classmethod
    def coerce_user_id(cls, v: Any) -> Any:
        return _to_str(v)


class PaypalPaymentData(BaseModel):
    model_config = ConfigDict(extra="allow")

    payment_status: str
    custom: str = Field(..., description="JSON string with userId and amount")
    mc_gross: Decimal
    txn_id: str = Field(..., min_length=1, max_length=128)
    receiver_email: Optional[str] = None
    mc_currency: Optional[str] = None

    @field_validator("txn_id", mode="before")
    @classmethod
    def coerce_transaction_id(cls, v: Any) -> Any:
        return _to_str(v)


class CreemMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    userId: str = Field(..., min_length=1, max_length=64)

    @field_validator("userId", mode="before")
    @classmethod
    def coerce_user_id(cls, v: Any) -> Any:
        return _to_str(v)


class CreemPaymentData(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: str
    metadata: CreemMetadata
    amount: Decimal
    transaction_id: str = Field(..., min_length=1, max_length=128)

    @field_validator("transaction_id", mode="before")
    @classmethod
    def coerce_transaction_id(cls, v: Any) -> Any:
        return _to_str(v)


class PaypalWebhook(BaseModel):
    provider: Literal["paypal"]
    paymentData: PaypalPaymentData


class CreemWebhook(BaseModel):
    provider: Literal["creem"]
    paymentData: CreemPaymentData


PaymentWebhook = Annotated[
    Union[PaypalWebhook, CreemWebhook], Field(discriminator="provider")
]

payment_webhook_adapter: TypeAdapter = TypeAdapter(PaymentWebhook)


class VerifiedPayment(BaseModel):
    """Provider-neutral view of a verified, completed payment"""

    provider: PaymentProvider
    user_id: str
    amount: Decimal
    credits: int
    transaction_id: str


class WebhookResponse(BaseModel):
    success: bool
    state: WebhookState
    provider: Optional[str] = None
    transaction_id: Optional[str] = None
    credits: Optional[int] = None
    duplicate: bool = False
    message: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)
