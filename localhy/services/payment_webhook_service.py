"""
Payment webhook handler

    RECEIVED -> VERIFIED -> APPLIED -> ACKNOWLEDGED
    RECEIVED -> REJECTED

Verification always runs and fails closed. Rejections (bad payload, unknown
provider, bad signature, payment not completed) return a REJECTED response and
never touch the ledger. Errors while applying are raised to the caller so the
provider gets a 5xx and redelivers; redelivery is safe because (provider,
transaction id) is UNIQUE in the ledger.
"""

import json
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx
from pydantic import ValidationError as PydanticValidationError

from localhy.config import Settings, settings as default_settings
from localhy.core.exceptions import (
    BaseAPIException,
    InvalidWebhookPayloadError,
    WebhookVerificationError,
)
from localhy.models.credits import CreditReason
from localhy.models.notification import NotificationType
from localhy.providers.payments.base import PaymentProviderAdapter
from localhy.providers.payments.creem import CreemAdapter
from localhy.providers.payments.paypal import PaypalAdapter
from localhy.schemas.webhook import (
    PaymentProvider,
    VerifiedPayment,
    WebhookResponse,
    WebhookState,
    payment_webhook_adapter,
)
from localhy.services.change_feed import ChangeFeed
from localhy.services.credit_service import CreditService
from localhy.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class PaymentWebhookService:
    def __init__(
        self,
        db,
        settings: Optional[Settings] = None,
        change_feed: Optional[ChangeFeed] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.db = db
        self.settings = settings or default_settings
        self.credit_service = CreditService(db, settings=self.settings, change_feed=change_feed)
        self.notification_service = NotificationService(db, change_feed=change_feed)
        self.adapters: Dict[str, PaymentProviderAdapter] = {
            PaymentProvider.PAYPAL.value: PaypalAdapter(self.settings, transport),
            PaymentProvider.CREEM.value: CreemAdapter(self.settings, transport),
        }

    def _parse(self, raw_body: bytes) -> Tuple[Any, Dict[str, Any]]:
        try:
            body = json.loads(raw_body or b"")
        except (ValueError, UnicodeDecodeError):
            raise InvalidWebhookPayloadError("Request body is not valid JSON")
        if not isinstance(body, dict):
            raise InvalidWebhookPayloadError("Request body must be a JSON object")

        provider = body.get("provider")
        if provider not in self.adapters:
            raise InvalidWebhookPayloadError(
                "Unsupported payment provider",
                details={"provider": provider, "supported": sorted(self.adapters)},
            )

        try:
            webhook = payment_webhook_adapter.validate_python(body)
        except PydanticValidationError as e:
            raise InvalidWebhookPayloadError(
                f"Invalid {provider} payment data",
                details={
                    "errors": [
                        {"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()
                    ]
                },
            )

        raw_payment_data = body.get("paymentData") or {}
        return webhook, raw_payment_data

    async def _verify(
        self, raw_body: bytes, headers: Mapping[str, str]
    ) -> Tuple[PaymentProviderAdapter, VerifiedPayment]:
        webhook, raw_payment_data = self._parse(raw_body)
        adapter = self.adapters[webhook.provider]

        await adapter.verify(webhook, raw_body, raw_payment_data, headers)

        status = adapter.status_of(webhook)
        if not adapter.is_completed(webhook):
            raise InvalidWebhookPayloadError(
                "Payment is not completed",
                details={"provider": adapter.name, "status": status},
            )

        payment = adapter.extract(webhook)
        if payment.credits <= 0:
            raise InvalidWebhookPayloadError(
                "Payment amount does not buy any credits",
                details={"amount": str(payment.amount), "transaction_id": payment.transaction_id},
            )
        return adapter, payment

    async def handle(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookResponse:
        """
        Process one webhook delivery.

        Args:
            raw_body: request body exactly as received (signatures cover it)
            headers: request headers

        Returns:
            WebhookResponse: APPLIED/ACKNOWLEDGED (success) or REJECTED

        Raises:
            Exception: anything that goes wrong after verification; the caller
                answers 500 so the provider retries
        """
        logger.info(f"Payment webhook {WebhookState.RECEIVED.value}: {len(raw_body or b'')} bytes")

        try:
            adapter, payment = await self._verify(raw_body, headers)
        except (InvalidWebhookPayloadError, WebhookVerificationError) as e:
            return self._rejected(e)

        logger.info(
            f"Payment webhook {WebhookState.VERIFIED.value}: {adapter.name} "
            f"{payment.transaction_id} user={payment.user_id} amount={payment.amount}"
        )

        result = self.credit_service.apply_delta(
            user_id=payment.user_id,
            delta=payment.credits,
            reason=CreditReason.PURCHASE.value,
            external_payment_id=payment.transaction_id,
            payment_provider=adapter.name,
            description=f"{adapter.name} purchase {payment.transaction_id}",
        )
        logger.info(
            f"Payment webhook {WebhookState.APPLIED.value}: {payment.transaction_id} "
            f"entry={result.entry_id} duplicate={not result.applied}"
        )

        if not result.applied and (
            result.user_id != payment.user_id or result.delta != payment.credits
        ):
            # same transaction id, different payment: never acknowledge it
            logger.error(
                f"Payment webhook {adapter.name} {payment.transaction_id} conflicts with "
                f"entry {result.entry_id} (user={result.user_id} credits={result.delta})"
            )
            return self._rejected(
                InvalidWebhookPayloadError(
                    "Transaction id already recorded for a different payment",
                    details={
                        "provider": adapter.name,
                        "transaction_id": payment.transaction_id,
                        "entry_id": result.entry_id,
                    },
                )
            )

        self._acknowledge(payment)

        return WebhookResponse(
            success=True,
            state=WebhookState.ACKNOWLEDGED,
            provider=adapter.name,
            transaction_id=payment.transaction_id,
            credits=payment.credits,
            duplicate=not result.applied,
            message=(
                "Payment already processed"
                if not result.applied
                else f"{payment.credits} credits added"
            ),
        )

    @staticmethod
    def _rejected(e: BaseAPIException) -> WebhookResponse:
        logger.warning(f"Payment webhook {WebhookState.REJECTED.value}: {e.message} {e.details}")
        return WebhookResponse(
            success=False,
            state=WebhookState.REJECTED,
            message=e.message,
            details={"code": e.error_code, **e.details},
        )

    def _acknowledge(self, payment: VerifiedPayment) -> None:
        # keyed by transaction, so a redelivery never notifies twice
        try:
            self.notification_service.create(
                user_id=payment.user_id,
                title="Credits Added!",
                message=f"{payment.credits} credits have been added to your account.",
                type=NotificationType.SUCCESS,
                source_ref=f"payment:{payment.provider.value}:{payment.transaction_id}",
            )
        except BaseAPIException:
            logger.error(
                f"Credits applied for {payment.transaction_id} but the notification failed"
            )
            raise
        logger.info(f"Payment webhook {WebhookState.ACKNOWLEDGED.value}: {payment.transaction_id}")
