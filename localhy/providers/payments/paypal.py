import json
import logging
from typing import Any, Dict, Mapping
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError as PydanticValidationError

from localhy.core.exceptions import InvalidWebhookPayloadError, WebhookVerificationError
from localhy.providers.payments.base import PaymentProviderAdapter, credits_for
from localhy.schemas.webhook import (
    PaymentProvider,
    PaypalCustomField,
    PaypalWebhook,
    VerifiedPayment,
)

logger = logging.getLogger(__name__)


class PaypalAdapter(PaymentProviderAdapter):
    """PayPal IPN: authenticity comes from posting the message back to PayPal"""

    name = PaymentProvider.PAYPAL.value
    completed_status = "Completed"

    async def verify(
        self,
        webhook: PaypalWebhook,
        raw_body: bytes,
        raw_payment_data: Dict[str, Any],
        headers: Mapping[str, str],
    ) -> None:
        receiver = self.settings.PAYPAL_RECEIVER_EMAIL
        if receiver and (webhook.paymentData.receiver_email or "").lower() != receiver.lower():
            logger.warning(
                f"PayPal IPN {webhook.paymentData.txn_id} addressed to "
                f"{webhook.paymentData.receiver_email}, expected {receiver}"
            )
            raise WebhookVerificationError("Payment receiver does not match")

        # echo the notification verbatim, prefixed with the validate command
        form = [("cmd", "_notify-validate")] + [
            (key, "" if value is None else str(value)) for key, value in raw_payment_data.items()
        ]
        try:
            async with self.http_client() as client:
                response = await client.post(
                    self.settings.PAYPAL_IPN_VERIFY_URL,
                    content=urlencode(form),
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.TimeoutException:
            logger.error("PayPal IPN verification timeout")
            raise WebhookVerificationError("PayPal verification timed out")
        except httpx.HTTPError as e:
            logger.error(f"PayPal IPN verification error: {str(e)}")
            raise WebhookVerificationError("PayPal verification unavailable")

        if response.status_code != 200 or response.text.strip() != "VERIFIED":
            logger.warning(
                f"PayPal IPN {webhook.paymentData.txn_id} not verified: "
                f"{response.status_code} {response.text[:64]}"
            )
            raise WebhookVerificationError("PayPal did not verify the notification")

    def status_of(self, webhook: PaypalWebhook) -> str:
        return webhook.paymentData.payment_status

    def extract(self, webhook: PaypalWebhook) -> VerifiedPayment:
        data = webhook.paymentData
        try:
            custom = PaypalCustomField.model_validate(json.loads(data.custom))
        except (ValueError, TypeError, PydanticValidationError):
            raise InvalidWebhookPayloadError(
                "PayPal custom field must be JSON with a userId",
                details={"transaction_id": data.txn_id},
            )

        # mc_gross is what PayPal actually captured; custom.amount is ours
        if custom.amount is not None and custom.amount != data.mc_gross:
            logger.warning(
                f"PayPal {data.txn_id}: custom amount {custom.amount} differs "
                f"from mc_gross {data.mc_gross}, using mc_gross"
            )

        return VerifiedPayment(
            provider=PaymentProvider.PAYPAL,
            user_id=custom.userId,
            amount=data.mc_gross,
            credits=credits_for(data.mc_gross, self.settings.CREDIT_EXCHANGE_RATE),
            transaction_id=data.txn_id,
        )
