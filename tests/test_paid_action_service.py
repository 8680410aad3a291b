import pytest
from unittest.mock import patch

from localhy.core.exceptions import (
    InsufficientBalanceError,
    UnknownActionKindError,
    ValidationError,
)
from localhy.models.credits import CreditLedgerEntry
from localhy.models.referral_job import ReferralJob
from localhy.services.credit_service import CreditService
from localhy.services.paid_action_service import CreateReferralJobHandler, PaidActionService

JOB_PAYLOAD = {
    "title": "Barista referral",
    "description": "Looking for a barista in Berlin Mitte",
    "reward_amount": "50.00",
    "location": "Berlin",
    "contact_email": "owner@example.com",
}


@pytest.fixture
def funded_user(credit_service):
    credit_service.apply_delta("u1", 10, "purchase", payment_provider="paypal", external_payment_id="fund-u1")
    return "u1"


class TestEvaluate:
    def test_quote_when_affordable(self, paid_action_service, funded_user):
        quote = paid_action_service.evaluate(funded_user, "create_referral_job")

        assert quote.cost == 5
        assert quote.can_afford is True
        assert quote.shortfall == 0
        assert quote.balance.total_credits == 10

    def test_quote_reports_shortfall(self, paid_action_service, credit_service):
        credit_service.apply_delta("u2", 3, "signup_bonus")

        quote = paid_action_service.evaluate("u2", "create_referral_job")

        assert quote.can_afford is False
        assert quote.shortfall == 2
        assert quote.purchase_path

    def test_unknown_action_kind_raises(self, paid_action_service):
        with pytest.raises(UnknownActionKindError) as exc_info:
            paid_action_service.evaluate("u1", "post_business_page")

        assert exc_info.value.error_code == "ACTION_001"

    def test_unknown_action_kind_in_production_is_generic(self, db_session, test_settings):
        prod_settings = test_settings.model_copy(update={"ENVIRONMENT": "production"})
        service = PaidActionService(db_session, settings=prod_settings)

        with pytest.raises(ValidationError):
            service.evaluate("u1", "post_business_page")

    def test_cost_comes_from_configuration(self, db_session, test_settings):
        pricier = test_settings.model_copy(update={"PAID_ACTION_COSTS": {"create_referral_job": 8}})
        service = PaidActionService(db_session, settings=pricier)

        assert service.evaluate("u1", "create_referral_job").cost == 8


class TestConfirm:
    def test_creates_job_and_debits_cost(self, paid_action_service, funded_user, db_session):
        # When
        result = paid_action_service.confirm(
            funded_user, "create_referral_job", "token-0001", JOB_PAYLOAD
        )

        # Then
        assert result.replayed is False
        assert result.cost == 5
        assert result.balance.total_credits == 5
        assert result.resource["title"] == "Barista referral"
        job = db_session.query(ReferralJob).one()
        assert job.user_id == funded_user
        entry = db_session.query(CreditLedgerEntry).filter_by(reason="posting_fee").one()
        assert entry.delta == -5
        assert entry.resource_ref == f"referral_job:{job.id}"

    def test_same_token_replays_without_charging(self, paid_action_service, funded_user, db_session):
        first = paid_action_service.confirm(funded_user, "create_referral_job", "token-0001", JOB_PAYLOAD)
        second = paid_action_service.confirm(funded_user, "create_referral_job", "token-0001", JOB_PAYLOAD)

        assert second.replayed is True
        assert second.entry_id == first.entry_id
        assert second.resource["id"] == first.resource["id"]
        assert db_session.query(ReferralJob).count() == 1
        assert paid_action_service.credit_service.get_balance(funded_user).total_credits == 5

    def test_tokens_are_scoped_per_user(self, paid_action_service, credit_service, db_session):
        credit_service.apply_delta("a", 5, "purchase", payment_provider="paypal", external_payment_id="fund-a")
        credit_service.apply_delta("b", 5, "purchase", payment_provider="paypal", external_payment_id="fund-b")

        paid_action_service.confirm("a", "create_referral_job", "shared-token", JOB_PAYLOAD)
        result = paid_action_service.confirm("b", "create_referral_job", "shared-token", JOB_PAYLOAD)

        assert result.replayed is False
        assert db_session.query(ReferralJob).count() == 2

    def test_insufficient_balance_creates_nothing(self, paid_action_service, credit_service, db_session):
        # Given: 3 credits, cost 5
        credit_service.apply_delta("u3", 3, "purchase", payment_provider="paypal", external_payment_id="fund-u3")

        # When
        with pytest.raises(InsufficientBalanceError) as exc_info:
            paid_action_service.confirm("u3", "create_referral_job", "token-0002", JOB_PAYLOAD)

        # Then
        details = exc_info.value.details
        assert details["cost"] == 5
        assert details["available"] == 3
        assert details["shortfall"] == 2
        assert details["purchase_path"]
        assert db_session.query(ReferralJob).count() == 0
        assert credit_service.get_balance("u3").total_credits == 3

    def test_failed_action_rolls_back_debit(self, paid_action_service, funded_user, db_session):
        # Given: the debit succeeds but the protected action fails afterwards
        original = paid_action_service.credit_repo.apply_delta

        def debit_then_fail(*args, **kwargs):
            original(*args, **kwargs)
            raise RuntimeError("job store exploded")

        with patch.object(paid_action_service.credit_repo, "apply_delta", side_effect=debit_then_fail):
            with pytest.raises(RuntimeError):
                paid_action_service.confirm(funded_user, "create_referral_job", "token-0003", JOB_PAYLOAD)

        # Then: neither the job nor the charge survived
        assert db_session.query(ReferralJob).count() == 0
        assert db_session.query(CreditLedgerEntry).filter_by(reason="posting_fee").count() == 0
        assert paid_action_service.credit_service.get_balance(funded_user).total_credits == 10

    def test_job_creation_failure_leaves_balance_untouched(self, paid_action_service, funded_user, db_session):
        with patch.object(CreateReferralJobHandler, "perform", side_effect=RuntimeError("insert failed")):
            with pytest.raises(RuntimeError):
                paid_action_service.confirm(funded_user, "create_referral_job", "token-0004", JOB_PAYLOAD)

        assert paid_action_service.credit_service.get_balance(funded_user).total_credits == 10
        assert db_session.query(CreditLedgerEntry).filter_by(reason="posting_fee").count() == 0

    def test_invalid_payload_is_rejected_before_charging(self, paid_action_service, funded_user):
        with pytest.raises(ValidationError) as exc_info:
            paid_action_service.confirm(funded_user, "create_referral_job", "token-0005", {"title": "x"})

        assert exc_info.value.details["errors"]
        assert paid_action_service.credit_service.get_balance(funded_user).total_credits == 10

    def test_blank_token_is_rejected(self, paid_action_service, funded_user):
        with pytest.raises(ValidationError):
            paid_action_service.confirm(funded_user, "create_referral_job", "   ", JOB_PAYLOAD)

    def test_confirm_publishes_balance_change(self, paid_action_service, funded_user, change_feed):
        events = []
        change_feed.subscribe("balance_changed", events.append)

        paid_action_service.confirm(funded_user, "create_referral_job", "token-0006", JOB_PAYLOAD)
        paid_action_service.confirm(funded_user, "create_referral_job", "token-0006", JOB_PAYLOAD)

        assert [e.delta for e in events] == [-5]
        assert events[0].reason == "posting_fee"

    def test_token_reused_for_another_action_is_not_a_replay(self, db_session, test_settings, credit_service):
        # Given: two paid actions sharing one handler
        settings = test_settings.model_copy(
            update={"PAID_ACTION_COSTS": {"create_referral_job": 5, "feature_referral_job": 3}}
        )
        service = PaidActionService(
            db_session,
            settings=settings,
            handlers={
                "create_referral_job": CreateReferralJobHandler(),
                "feature_referral_job": CreateReferralJobHandler(),
            },
        )
        credit_service.apply_delta("u1", 10, "purchase", payment_provider="paypal", external_payment_id="fund-u1")

        # When
        first = service.confirm("u1", "create_referral_job", "token-0009", JOB_PAYLOAD)
        second = service.confirm("u1", "feature_referral_job", "token-0009", JOB_PAYLOAD)

        # Then
        assert first.replayed is False
        assert second.replayed is False
        assert second.cost == 3
        assert second.entry_id != first.entry_id
        assert credit_service.get_balance("u1").total_credits == 2
        assert db_session.query(ReferralJob).count() == 2


class InterleavingHandler(CreateReferralJobHandler):
    """Runs ``before_perform`` right before the resource is created"""

    def __init__(self, before_perform):
        self.before_perform = before_perform

    def perform(self, db, user_id, data):
        self.before_perform()
        return super().perform(db, user_id, data)


class TestConcurrentConfirm:
    @pytest.fixture
    def funded(self, session_factory, test_settings):
        CreditService(session_factory(), settings=test_settings).apply_delta(
            "u1", 10, "purchase", payment_provider="paypal", external_payment_id="fund-u1"
        )
        return "u1"

    def test_double_click_charges_once(self, session_factory, test_settings, funded):
        # Given: request B commits the same token while request A is mid-flight
        service_b = PaidActionService(session_factory(), settings=test_settings)
        winner = []

        def let_b_commit_first():
            if not winner:
                winner.append(
                    service_b.confirm(funded, "create_referral_job", "token-0007", JOB_PAYLOAD)
                )

        service_a = PaidActionService(
            session_factory(),
            settings=test_settings,
            handlers={"create_referral_job": InterleavingHandler(let_b_commit_first)},
        )

        # When
        loser = service_a.confirm(funded, "create_referral_job", "token-0007", JOB_PAYLOAD)

        # Then
        assert winner[0].replayed is False
        assert loser.replayed is True
        assert loser.entry_id == winner[0].entry_id
        assert loser.resource["id"] == winner[0].resource["id"]
        checker = session_factory()
        assert checker.query(ReferralJob).count() == 1
        assert checker.query(CreditLedgerEntry).filter_by(reason="posting_fee").count() == 1
        assert CreditService(checker, settings=test_settings).get_balance(funded).total_credits == 5

    def test_duplicate_key_on_insert_falls_back_to_replay(self, session_factory, test_settings, funded):
        # Given: B already committed; A's lookups miss it until its insert collides
        first = PaidActionService(session_factory(), settings=test_settings).confirm(
            funded, "create_referral_job", "token-0008", JOB_PAYLOAD
        )
        service_a = PaidActionService(session_factory(), settings=test_settings)
        real_find = service_a.credit_repo.find_existing
        lookups = []

        def miss_then_find(*args, **kwargs):
            lookups.append(args)
            # pre-check, twin check, and the check inside apply_delta
            if len(lookups) <= 3:
                return None
            return real_find(*args, **kwargs)

        # When
        with patch.object(service_a.credit_repo, "find_existing", side_effect=miss_then_find):
            second = service_a.confirm(funded, "create_referral_job", "token-0008", JOB_PAYLOAD)

        # Then
        assert second.replayed is True
        assert second.entry_id == first.entry_id
        checker = session_factory()
        assert checker.query(ReferralJob).count() == 1
        assert checker.query(CreditLedgerEntry).filter_by(reason="posting_fee").count() == 1
        assert CreditService(checker, settings=test_settings).get_balance(funded).total_credits == 5
