import asyncio
import json
from urllib.parse import parse_qsl

import pytest
from unittest.mock import patch

from localhy.models.credits import CreditLedgerEntry
from localhy.models.notification import Notification
from localhy.providers.payments.creem import sign
from localhy.schemas.webhook import WebhookState


def paypal_body(txn_id="T1", amount="25.00", user_id="u1", status="Completed", **extra):
    payment_data = {
        "payment_status": status,
        "custom": json.dumps({"userId": user_id, "amount": amount}),
        "mc_gross": amount,
        "txn_id": txn_id,
        "receiver_email": "payments@localhy.test",
        "mc_currency": "USD",
        **extra,
    }
    return json.dumps({"provider": "paypal", "paymentData": payment_data}).encode()


def creem_body(transaction_id="C1", amount=12.5, user_id="u1", status="completed"):
    return json.dumps(
        {
            "provider": "creem",
            "paymentData": {
                "status": status,
                "metadata": {"userId": user_id},
                "amount": amount,
                "transaction_id": transaction_id,
            },
        }
    ).encode()


def creem_headers(body: bytes, secret: str) -> dict:
    return {"creem-signature": sign(secret, body)}


def handle(service, body: bytes, headers=None):
    return asyncio.run(service.handle(body, headers or {}))


class TestPaypalWebhook:
    def test_completed_payment_is_applied_and_acknowledged(self, webhook_service, credit_service, db_session):
        # When
        result = handle(webhook_service, paypal_body())

        # Then
        assert result.success is True
        assert result.state == WebhookState.ACKNOWLEDGED
        assert result.credits == 25
        assert result.duplicate is False
        assert credit_service.get_balance("u1").cash_credits == 25
        notification = db_session.query(Notification).one()
        assert notification.title == "Credits Added!"
        assert notification.message == "25 credits have been added to your account."
        assert notification.type == "success"

    def test_same_txn_delivered_twice_credits_once(self, webhook_service, credit_service, db_session):
        first = handle(webhook_service, paypal_body(txn_id="T1"))
        second = handle(webhook_service, paypal_body(txn_id="T1"))

        assert first.success and second.success
        assert second.duplicate is True
        assert credit_service.get_balance("u1").total_credits == 25
        assert db_session.query(CreditLedgerEntry).count() == 1
        assert db_session.query(Notification).count() == 1

    def test_ipn_post_back_echoes_the_notification(self, webhook_service, ipn_requests):
        handle(webhook_service, paypal_body(txn_id="T7", item_name="50 credits"))

        assert len(ipn_requests) == 1
        request = ipn_requests[0]
        assert str(request.url) == "https://ipn.test/cgi-bin/webscr"
        fields = parse_qsl(request.content.decode())
        assert fields[0] == ("cmd", "_notify-validate")
        assert ("txn_id", "T7") in fields
        assert ("item_name", "50 credits") in fields

    @pytest.mark.parametrize("ipn_responses", [["INVALID"]])
    def test_unverified_ipn_is_rejected(self, webhook_service, db_session, ipn_responses):
        result = handle(webhook_service, paypal_body())

        assert result.success is False
        assert result.state == WebhookState.REJECTED
        assert result.details["code"] == "WEBHOOK_002"
        assert db_session.query(CreditLedgerEntry).count() == 0

    def test_incomplete_payment_is_rejected(self, webhook_service, db_session):
        result = handle(webhook_service, paypal_body(status="Pending"))

        assert result.state == WebhookState.REJECTED
        assert result.details["status"] == "Pending"
        assert db_session.query(CreditLedgerEntry).count() == 0

    def test_mc_gross_wins_over_custom_amount(self, webhook_service, credit_service):
        body = json.loads(paypal_body(amount="30.00"))
        body["paymentData"]["custom"] = json.dumps({"userId": "u1", "amount": "3000"})

        result = handle(webhook_service, json.dumps(body).encode())

        assert result.credits == 30
        assert credit_service.get_balance("u1").cash_credits == 30

    def test_fractional_amount_is_floored(self, webhook_service):
        result = handle(webhook_service, paypal_body(amount="9.99"))

        assert result.credits == 9

    def test_custom_field_without_user_is_rejected(self, webhook_service, db_session):
        body = json.loads(paypal_body())
        body["paymentData"]["custom"] = "not-json"

        result = handle(webhook_service, json.dumps(body).encode())

        assert result.state == WebhookState.REJECTED
        assert result.details["code"] == "WEBHOOK_001"
        assert db_session.query(CreditLedgerEntry).count() == 0

    def test_receiver_email_must_match_when_configured(self, db_session, test_settings, paypal_transport):
        from localhy.services.payment_webhook_service import PaymentWebhookService

        strict = test_settings.model_copy(update={"PAYPAL_RECEIVER_EMAIL": "real@localhy.test"})
        service = PaymentWebhookService(db_session, settings=strict, transport=paypal_transport)

        result = handle(service, paypal_body())

        assert result.state == WebhookState.REJECTED
        assert db_session.query(CreditLedgerEntry).count() == 0


class TestCreemWebhook:
    def test_signed_payment_is_applied(self, webhook_service, credit_service, test_settings):
        body = creem_body(amount=12.5)

        result = handle(webhook_service, body, creem_headers(body, test_settings.CREEM_WEBHOOK_SECRET))

        assert result.success is True
        assert result.credits == 12
        assert credit_service.get_balance("u1").cash_credits == 12

    def test_bad_signature_is_rejected_with_zero_entries(self, webhook_service, db_session):
        body = creem_body()

        result = handle(webhook_service, body, creem_headers(body, secret="wrong-secret"))

        assert result.success is False
        assert result.state == WebhookState.REJECTED
        assert db_session.query(CreditLedgerEntry).count() == 0
        assert db_session.query(Notification).count() == 0

    def test_missing_signature_is_rejected(self, webhook_service, db_session):
        result = handle(webhook_service, creem_body())

        assert result.state == WebhookState.REJECTED
        assert db_session.query(CreditLedgerEntry).count() == 0

    def test_signature_covers_the_raw_body(self, webhook_service, db_session, test_settings):
        signed = creem_body(amount=1)
        tampered = creem_body(amount=1000)

        result = handle(webhook_service, tampered, creem_headers(signed, test_settings.CREEM_WEBHOOK_SECRET))

        assert result.state == WebhookState.REJECTED
        assert db_session.query(CreditLedgerEntry).count() == 0

    def test_unconfigured_secret_fails_closed(self, db_session, test_settings):
        from localhy.services.payment_webhook_service import PaymentWebhookService

        service = PaymentWebhookService(
            db_session, settings=test_settings.model_copy(update={"CREEM_WEBHOOK_SECRET": ""})
        )
        body = creem_body()

        result = handle(service, body, {"creem-signature": sign("", body)})

        assert result.state == WebhookState.REJECTED


class TestRejectedPayloads:
    @pytest.mark.parametrize(
        "body",
        [
            b"not json",
            b"[]",
            json.dumps({"provider": "stripe", "paymentData": {}}).encode(),
            json.dumps({"paymentData": {}}).encode(),
            json.dumps({"provider": "paypal", "paymentData": {"txn_id": "T1"}}).encode(),
        ],
    )
    def test_invalid_payloads_are_rejected(self, webhook_service, db_session, body):
        result = handle(webhook_service, body)

        assert result.success is False
        assert result.state == WebhookState.REJECTED
        assert db_session.query(CreditLedgerEntry).count() == 0

    def test_oversized_transaction_id_is_rejected(self, webhook_service, db_session):
        result = handle(webhook_service, paypal_body(txn_id="T" * 129))

        assert result.state == WebhookState.REJECTED
        assert result.details["code"] == "WEBHOOK_001"
        assert db_session.query(CreditLedgerEntry).count() == 0

    def test_oversized_user_id_is_rejected(self, webhook_service, db_session, test_settings):
        paypal = handle(webhook_service, paypal_body(user_id="u" * 65))
        body = creem_body(user_id="u" * 65)
        creem = handle(webhook_service, body, creem_headers(body, test_settings.CREEM_WEBHOOK_SECRET))

        assert paypal.state == WebhookState.REJECTED
        assert creem.state == WebhookState.REJECTED
        assert creem.details["code"] == "WEBHOOK_001"
        assert db_session.query(CreditLedgerEntry).count() == 0

    def test_zero_credit_payment_is_rejected(self, webhook_service, db_session):
        result = handle(webhook_service, paypal_body(amount="0.50"))

        assert result.state == WebhookState.REJECTED
        assert db_session.query(CreditLedgerEntry).count() == 0


class TestApplyFailures:
    def test_failure_while_applying_is_raised(self, webhook_service, db_session):
        with patch.object(
            webhook_service.credit_service, "apply_delta", side_effect=RuntimeError("db gone")
        ):
            with pytest.raises(RuntimeError):
                handle(webhook_service, paypal_body())

        assert db_session.query(CreditLedgerEntry).count() == 0

    def test_redelivery_after_notification_failure_notifies_once(self, webhook_service, db_session):
        from localhy.core.exceptions import StoreUnavailableError

        with patch.object(
            webhook_service.notification_service, "create", side_effect=StoreUnavailableError()
        ):
            with pytest.raises(StoreUnavailableError):
                handle(webhook_service, paypal_body(txn_id="T5"))

        result = handle(webhook_service, paypal_body(txn_id="T5"))

        assert result.duplicate is True
        assert db_session.query(CreditLedgerEntry).count() == 1
        assert db_session.query(Notification).count() == 1


class TestTransactionIdScope:
    def test_same_id_from_another_provider_is_credited(
        self, webhook_service, credit_service, db_session, test_settings
    ):
        # Given: PayPal already delivered txn X1 for u1
        handle(webhook_service, paypal_body(txn_id="X1", amount="10.00", user_id="u1"))

        # When: Creem delivers its own X1 for u2
        body = creem_body(transaction_id="X1", amount=20, user_id="u2")
        result = handle(webhook_service, body, creem_headers(body, test_settings.CREEM_WEBHOOK_SECRET))

        # Then
        assert result.success is True
        assert result.duplicate is False
        assert credit_service.get_balance("u1").cash_credits == 10
        assert credit_service.get_balance("u2").cash_credits == 20
        assert db_session.query(CreditLedgerEntry).count() == 2
        assert db_session.query(Notification).filter_by(user_id="u2").count() == 1

    def test_reused_id_for_a_different_payment_is_rejected(
        self, webhook_service, credit_service, db_session
    ):
        handle(webhook_service, paypal_body(txn_id="T1", amount="25.00", user_id="u1"))

        result = handle(webhook_service, paypal_body(txn_id="T1", amount="25.00", user_id="u2"))

        assert result.success is False
        assert result.state == WebhookState.REJECTED
        assert result.details["code"] == "WEBHOOK_001"
        assert credit_service.get_balance("u2").total_credits == 0
        assert db_session.query(Notification).filter_by(user_id="u2").count() == 0

    def test_different_amount_under_same_id_is_rejected(self, webhook_service, credit_service):
        handle(webhook_service, paypal_body(txn_id="T2", amount="25.00"))

        result = handle(webhook_service, paypal_body(txn_id="T2", amount="40.00"))

        assert result.state == WebhookState.REJECTED
        assert credit_service.get_balance("u1").cash_credits == 25
