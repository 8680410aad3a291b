import logging
from typing import Callable, Optional, Tuple, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from localhy.config import Settings, settings as default_settings
from localhy.core.exceptions import (
    BaseAPIException,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from localhy.models.credits import CreditLedgerEntry, CreditReason
from localhy.providers.queue.events import BalanceChangedEvent
from localhy.repositories.credit_repository import CreditRepository
from localhy.schemas.credits import (
    CreditBalanceResponse,
    CreditIntegrityResponse,
    CreditLedgerResponse,
    CreditMutationResult,
    WalletSummaryResponse,
)
from localhy.services.change_feed import ChangeFeed

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CreditService:
    """Credit accessor and atomic credit mutator"""

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        change_feed: Optional[ChangeFeed] = None,
    ):
        self.db = db
        self.settings = settings or default_settings
        self.change_feed = change_feed
        self.credit_repo = CreditRepository(db)

    # ------------------------------------------------------------------
    # Credit accessor
    # ------------------------------------------------------------------

    def get_balance(self, user_id: str) -> CreditBalanceResponse:
        """Current balance

        Args:
            user_id: account id

        Returns:
            CreditBalanceResponse: zeroed for accounts that never had a mutation
        """
        try:
            balance = self.credit_repo.get_balance(user_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to get balance for user {user_id}: {str(e)}")
            raise StoreUnavailableError(details={"operation": "get_balance"})

        logger.debug(f"Balance for user {user_id}: {balance.total_credits}")
        return balance

    def get_ledger(self, user_id: str, limit: int = 50, offset: int = 0) -> CreditLedgerResponse:
        if limit > 100:
            limit = 100

        try:
            ledger = self.credit_repo.get_ledger(user_id=user_id, limit=limit, offset=offset)
        except SQLAlchemyError as e:
            logger.error(f"Failed to get ledger for user {user_id}: {str(e)}")
            raise StoreUnavailableError(details={"operation": "get_ledger"})

        logger.info(f"Retrieved ledger for user {user_id}: {ledger.total_count} entries")
        return ledger

    def get_wallet_summary(self, user_id: str) -> WalletSummaryResponse:
        try:
            return self.credit_repo.get_wallet_summary(user_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to build wallet summary for user {user_id}: {str(e)}")
            raise StoreUnavailableError(details={"operation": "get_wallet_summary"})

    def verify_integrity(self, user_id: str) -> CreditIntegrityResponse:
        try:
            result = self.credit_repo.verify_integrity(user_id)
        except SQLAlchemyError as e:
            logger.error(f"Integrity check failed for user {user_id}: {str(e)}")
            raise StoreUnavailableError(details={"operation": "verify_integrity"})

        if result.status != "OK":
            logger.error(
                f"Ledger mismatch for user {user_id}: ledger cash={result.calculated_cash} "
                f"free={result.calculated_free}, balance cash={result.recorded_cash} "
                f"free={result.recorded_free}"
            )
        return result

    # ------------------------------------------------------------------
    # Atomic credit mutator
    # ------------------------------------------------------------------

    def run_in_transaction(
        self,
        work: Callable[[], T],
        replay: Optional[Callable[[], Optional[T]]] = None,
    ) -> T:
        """
        Run ``work`` and commit, retrying on write conflicts.

        Args:
            work: unit of work; must flush but not commit
            replay: called after an IntegrityError to look up the result a
                concurrent twin already committed; None means retry

        Returns:
            whatever ``work`` (or ``replay``) returned

        Raises:
            StoreUnavailableError: store unreachable or still contended after
                LEDGER_MAX_RETRIES attempts
        """
        attempts = max(self.settings.LEDGER_MAX_RETRIES, 1)
        for attempt in range(1, attempts + 1):
            try:
                result = work()
                self.db.commit()
                return result
            except BaseAPIException:
                self.db.rollback()
                raise
            except IntegrityError as e:
                self.db.rollback()
                if replay is not None:
                    replayed = replay()
                    if replayed is not None:
                        return replayed
                logger.warning(f"Ledger write conflict (attempt {attempt}/{attempts}): {str(e.orig)}")
            except StaleDataError as e:
                self.db.rollback()
                logger.warning(f"Balance changed concurrently (attempt {attempt}/{attempts}): {str(e)}")
            except DBAPIError as e:
                self.db.rollback()
                logger.error(f"Ledger store unavailable: {str(e)}")
                raise StoreUnavailableError(details={"reason": "database_error"})
            except Exception:
                self.db.rollback()
                raise

        logger.error(f"Giving up after {attempts} conflicting attempts")
        raise StoreUnavailableError(
            "Ledger store is busy, please retry",
            details={"reason": "write_conflict", "attempts": attempts},
        )

    def apply_delta(
        self,
        user_id: str,
        delta: int,
        reason: str,
        external_payment_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        description: Optional[str] = None,
        payment_provider: Optional[str] = None,
        resource_ref: Optional[str] = None,
        split: Optional[Tuple[int, int]] = None,
    ) -> CreditMutationResult:
        """
        Apply a signed credit change atomically and idempotently.

        Args:
            user_id: account to change
            delta: signed credits, never zero
            reason: CreditReason value
            external_payment_id: provider transaction id; a repeat from the same
                provider is a no-op
            idempotency_key: replay key for client tokens and internal grants
            description: free text for the ledger entry
            payment_provider: provider name for purchases
            resource_ref: resource the change paid for
            split: explicit (cash_delta, free_delta) for refunds

        Returns:
            CreditMutationResult: ``applied`` is False for a replay, which
            carries the balance the original entry recorded

        Raises:
            InsufficientBalanceError, UnknownReasonError, ValidationError,
            StoreUnavailableError
        """

        def work() -> CreditMutationResult:
            result, _ = self.credit_repo.apply_delta(
                user_id=user_id,
                delta=delta,
                reason=reason,
                external_payment_id=external_payment_id,
                idempotency_key=idempotency_key,
                description=description,
                payment_provider=payment_provider,
                resource_ref=resource_ref,
                split=split,
                commit=False,
            )
            return result

        result = self.run_in_transaction(
            work,
            replay=lambda: self.find_replay(external_payment_id, idempotency_key, payment_provider),
        )
        self.record(result, reason)
        return result

    def find_replay(
        self,
        external_payment_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        payment_provider: Optional[str] = None,
    ) -> Optional[CreditMutationResult]:
        entry = self.credit_repo.find_existing(external_payment_id, idempotency_key, payment_provider)
        if entry is None:
            return None
        return self.credit_repo.replay_result(entry)

    def record(self, result: CreditMutationResult, reason: str) -> None:
        """Log a committed mutation and publish it on the change feed"""
        if not result.applied:
            logger.info(
                f"Replay for user {result.user_id}: entry {result.entry_id} already applied"
            )
            return

        logger.info(
            f"Applied {result.delta:+d} credits ({reason}) to user {result.user_id}: "
            f"cash={result.cash_credits} free={result.free_credits} entry={result.entry_id}"
        )
        if self.change_feed is not None:
            self.change_feed.publish(
                BalanceChangedEvent(
                    user_id=result.user_id,
                    cash_credits=result.cash_credits,
                    free_credits=result.free_credits,
                    delta=result.delta,
                    reason=reason,
                    entry_id=result.entry_id,
                )
            )

    # ------------------------------------------------------------------
    # Grants and corrections
    # ------------------------------------------------------------------

    def grant_signup_bonus(self, user_id: str) -> CreditMutationResult:
        """One-time welcome credits (free pool)"""
        return self.apply_delta(
            user_id=user_id,
            delta=self.settings.SIGNUP_BONUS_CREDITS,
            reason=CreditReason.SIGNUP_BONUS.value,
            idempotency_key=f"signup_bonus:{user_id}",
            description="Welcome bonus",
        )

    def grant_referral_reward(self, referrer_id: str, referred_id: str) -> CreditMutationResult:
        """Reward the referrer once per referred account"""
        if referrer_id == referred_id:
            raise ValidationError("A user cannot refer themselves")

        return self.apply_delta(
            user_id=referrer_id,
            delta=self.settings.REFERRAL_REWARD_CREDITS,
            reason=CreditReason.REFERRAL_REWARD.value,
            idempotency_key=f"referral_reward:{referrer_id}:{referred_id}",
            description=f"Referral reward for inviting {referred_id}",
        )

    def admin_adjust(
        self,
        admin_id: str,
        user_id: str,
        amount: int,
        reason_text: str,
        idempotency_key: Optional[str] = None,
    ) -> CreditMutationResult:
        """Manual correction; positive amounts land in the free pool"""
        logger.warning(f"Admin {admin_id} adjusting user {user_id} by {amount}: {reason_text}")
        return self.apply_delta(
            user_id=user_id,
            delta=amount,
            reason=CreditReason.ADMIN_ADJUSTMENT.value,
            idempotency_key=idempotency_key,
            description=f"Admin adjustment by {admin_id}: {reason_text}",
        )

    def refund_entry(self, entry_id: int, admin_id: str) -> CreditMutationResult:
        """
        Reverse a debit, restoring exactly the cash / free split it took.

        Args:
            entry_id: ledger entry to reverse
            admin_id: who asked for the refund

        Returns:
            CreditMutationResult: a replay when the entry was already refunded

        Raises:
            NotFoundError: no such entry
            ValidationError: the entry is not a debit
        """
        entry: Optional[CreditLedgerEntry] = self.credit_repo.get_entry(entry_id)
        if entry is None:
            raise NotFoundError("Ledger entry not found", details={"entry_id": entry_id})
        if not entry.is_debit:
            raise ValidationError(
                "Only debit entries can be refunded",
                details={"entry_id": entry_id, "reason": entry.reason},
            )

        return self.apply_delta(
            user_id=entry.user_id,
            delta=-int(entry.delta),
            reason=CreditReason.REFUND.value,
            idempotency_key=f"refund:{entry_id}",
            description=f"Refund of entry {entry_id} by {admin_id}",
            resource_ref=f"credit_ledger:{entry_id}",
            split=(-int(entry.cash_delta), -int(entry.free_delta)),
        )
