from abc import ABC, abstractmethod
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Dict, Mapping, Optional

import httpx

from localhy.config import Settings
from localhy.schemas.webhook import VerifiedPayment


def credits_for(amount: Decimal, exchange_rate: int) -> int:
    """floor(amount * rate); fractional credits are never granted"""
    return int((Decimal(amount) * Decimal(exchange_rate)).to_integral_value(rounding=ROUND_FLOOR))


class PaymentProviderAdapter(ABC):
    """Verifier and extractor for one payment provider's webhook"""

    name: str = ""
    completed_status: str = ""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.transport = transport

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.WEBHOOK_TIMEOUT_SECONDS, transport=self.transport
        )

    @abstractmethod
    async def verify(
        self,
        webhook: Any,
        raw_body: bytes,
        raw_payment_data: Dict[str, Any],
        headers: Mapping[str, str],
    ) -> None:
        """Raise WebhookVerificationError unless the notification is authentic"""

    @abstractmethod
    def status_of(self, webhook: Any) -> str:
        ...

    def is_completed(self, webhook: Any) -> bool:
        return self.status_of(webhook) == self.completed_status

    @abstractmethod
    def extract(self, webhook: Any) -> VerifiedPayment:
        """User, amount and credits; raises InvalidWebhookPayloadError"""
