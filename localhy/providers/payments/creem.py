import hashlib
import hmac
import logging
from typing import Any, Dict, Mapping

from localhy.core.exceptions import WebhookVerificationError
from localhy.providers.payments.base import PaymentProviderAdapter, credits_for
from localhy.schemas.webhook import CreemWebhook, PaymentProvider, VerifiedPayment

logger = logging.getLogger(__name__)


def sign(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class CreemAdapter(PaymentProviderAdapter):
    """Creem.io: HMAC-SHA256 of the raw request body in a header"""

    name = PaymentProvider.CREEM.value
    completed_status = "completed"

    async def verify(
        self,
        webhook: CreemWebhook,
        raw_body: bytes,
        raw_payment_data: Dict[str, Any],
        headers: Mapping[str, str],
    ) -> None:
        secret = self.settings.CREEM_WEBHOOK_SECRET
        if not secret:
            logger.error("CREEM_WEBHOOK_SECRET is not configured, rejecting webhook")
            raise WebhookVerificationError("Creem verification is not configured")

        signature = headers.get(self.settings.CREEM_SIGNATURE_HEADER) or ""
        if not signature or not hmac.compare_digest(signature.strip().lower(), sign(secret, raw_body)):
            logger.warning(f"Creem {webhook.paymentData.transaction_id}: bad signature")
            raise WebhookVerificationError("Invalid Creem signature")

    def status_of(self, webhook: CreemWebhook) -> str:
        return webhook.paymentData.status

    def extract(self, webhook: CreemWebhook) -> VerifiedPayment:
        data = webhook.paymentData
        return VerifiedPayment(
            provider=PaymentProvider.CREEM,
            user_id=data.metadata.userId,
            amount=data.amount,
            credits=credits_for(data.amount, self.settings.CREDIT_EXCHANGE_RATE),
            transaction_id=data.transaction_id,
        )
