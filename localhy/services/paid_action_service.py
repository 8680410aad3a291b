"""
Paid action gate

Some actions cost credits. ``evaluate`` tells the client whether the user can
afford one; ``confirm`` performs the action and debits its cost in the same
database transaction, so either both are committed or neither is.

Every action kind has a cost in ``PAID_ACTION_COSTS`` and a handler in
``PaidActionService.handlers``. The client supplies an idempotency token; a
repeated confirm returns the original resource instead of charging again.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from localhy.config import Settings, settings as default_settings
from localhy.core.exceptions import (
    InsufficientBalanceError,
    UnknownActionKindError,
    ValidationError,
)
from localhy.models.credits import CreditLedgerEntry, CreditReason
from localhy.repositories.credit_repository import CreditRepository
from localhy.repositories.referral_job_repository import ReferralJobRepository
from localhy.schemas.credits import CreditBalanceResponse, CreditMutationResult
from localhy.schemas.paid_action import PaidActionQuote, PaidActionResult
from localhy.schemas.referral_job import ReferralJobCreate
from localhy.services.change_feed import ChangeFeed
from localhy.services.credit_service import CreditService

logger = logging.getLogger(__name__)


class PaidActionHandler:
    """Performs one kind of protected action inside the caller's transaction"""

    resource_type: str = ""
    payload_schema: type = BaseModel

    def perform(self, db: Session, user_id: str, data: Any) -> Tuple[int, Dict[str, Any]]:
        """Create the resource without committing; returns (id, representation)"""
        raise NotImplementedError

    def load(self, db: Session, resource_id: int) -> Optional[Dict[str, Any]]:
        raise NotImplementedError


class CreateReferralJobHandler(PaidActionHandler):
    resource_type = "referral_job"
    payload_schema = ReferralJobCreate

    def perform(self, db: Session, user_id: str, data: ReferralJobCreate) -> Tuple[int, Dict[str, Any]]:
        job = ReferralJobRepository(db).create_job(user_id, data, commit=False)
        return job.id, job.model_dump(mode="json")

    def load(self, db: Session, resource_id: int) -> Optional[Dict[str, Any]]:
        job = ReferralJobRepository(db).get_by_id(resource_id)
        return job.model_dump(mode="json") if job else None


DEFAULT_HANDLERS: Dict[str, PaidActionHandler] = {
    "create_referral_job": CreateReferralJobHandler(),
}


class PaidActionService:
    """Quote and confirm credit-gated actions"""

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        change_feed: Optional[ChangeFeed] = None,
        handlers: Optional[Dict[str, PaidActionHandler]] = None,
    ):
        self.db = db
        self.settings = settings or default_settings
        self.credit_service = CreditService(db, settings=self.settings, change_feed=change_feed)
        self.credit_repo: CreditRepository = self.credit_service.credit_repo
        self.handlers = handlers if handlers is not None else dict(DEFAULT_HANDLERS)

    def _resolve(self, action_kind: str) -> Tuple[int, PaidActionHandler]:
        """Server-side cost and handler; the client never supplies a price"""
        cost = self.settings.PAID_ACTION_COSTS.get(action_kind)
        handler = self.handlers.get(action_kind)
        if cost is None or handler is None:
            known = sorted(set(self.settings.PAID_ACTION_COSTS) & set(self.handlers))
            logger.error(f"Unknown paid action requested: {action_kind} (known: {known})")
            if self.settings.is_production:
                raise ValidationError("Unsupported action")
            raise UnknownActionKindError(action_kind, known)
        return int(cost), handler

    @staticmethod
    def _idempotency_key(user_id: str, action_kind: str, idempotency_token: str) -> str:
        # tokens are client-generated, so scope them to the caller and the action
        return f"paid_action:{user_id}:{action_kind}:{idempotency_token}"

    def evaluate(self, user_id: str, action_kind: str) -> PaidActionQuote:
        """
        Can the user afford ``action_kind`` right now?

        Args:
            user_id: caller
            action_kind: configured paid action

        Returns:
            PaidActionQuote: cost, balance, can_afford and the shortfall
        """
        cost, _ = self._resolve(action_kind)
        balance = self.credit_service.get_balance(user_id)
        can_afford = balance.total_credits >= cost

        return PaidActionQuote(
            action_kind=action_kind,
            cost=cost,
            balance=balance,
            can_afford=can_afford,
            shortfall=0 if can_afford else cost - balance.total_credits,
            purchase_path=None if can_afford else self.settings.CREDITS_PURCHASE_PATH,
        )

    def confirm(
        self,
        user_id: str,
        action_kind: str,
        idempotency_token: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> PaidActionResult:
        """
        Perform the action and debit its cost in one transaction.

        Args:
            user_id: caller
            action_kind: configured paid action
            idempotency_token: client token; the same token never charges twice
            payload: action input, validated by the handler's schema

        Returns:
            PaidActionResult: ``replayed`` is True when the token was seen before

        Raises:
            InsufficientBalanceError: balance below cost; nothing is created
            ValidationError: missing token or invalid payload
            UnknownActionKindError: action kind not configured
        """
        if not idempotency_token or not idempotency_token.strip():
            raise ValidationError("idempotency_token is required")

        cost, handler = self._resolve(action_kind)
        key = self._idempotency_key(user_id, action_kind, idempotency_token)

        existing = self.credit_repo.find_existing(idempotency_key=key)
        if existing is not None:
            return self._replay(action_kind, handler, existing)

        try:
            data = handler.payload_schema.model_validate(payload or {})
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid action payload",
                details={
                    "errors": [
                        {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
                        for err in e.errors()
                    ]
                },
            )

        def work() -> Tuple[PaidActionResult, Optional[CreditMutationResult]]:
            # lock first so a concurrent confirm with the same token waits here
            self.credit_repo.lock_balance(user_id)
            twin = self.credit_repo.find_existing(idempotency_key=key)
            if twin is not None:
                return self._replay(action_kind, handler, twin), None

            resource_id, resource = handler.perform(self.db, user_id, data)
            result, entry = self.credit_repo.apply_delta(
                user_id=user_id,
                delta=-cost,
                reason=CreditReason.POSTING_FEE.value,
                idempotency_key=key,
                description=f"Paid action: {action_kind}",
                resource_ref=f"{handler.resource_type}:{resource_id}",
                commit=False,
            )
            if not result.applied:
                # twin committed between the check and the insert; drop our resource
                self.db.rollback()
                return self._replay(action_kind, handler, entry), None

            return PaidActionResult(
                action_kind=action_kind,
                cost=cost,
                balance=CreditBalanceResponse.of(user_id, result.cash_credits, result.free_credits),
                entry_id=result.entry_id,
                resource=resource,
                replayed=False,
            ), result

        try:
            outcome, mutation = self.credit_service.run_in_transaction(
                work,
                replay=lambda: self._find_replay(action_kind, handler, key),
            )
        except InsufficientBalanceError as e:
            available = int(e.details.get("available", 0))
            logger.info(
                f"User {user_id} cannot afford {action_kind}: cost={cost} available={available}"
            )
            raise InsufficientBalanceError(
                f"Not enough credits for {action_kind}",
                details={
                    "action_kind": action_kind,
                    "cost": cost,
                    "available": available,
                    "shortfall": max(cost - available, 0),
                    "purchase_path": self.settings.CREDITS_PURCHASE_PATH,
                },
            )

        if outcome.replayed:
            logger.info(f"Replayed {action_kind} for user {user_id} (entry {outcome.entry_id})")
        elif mutation is not None:
            self.credit_service.record(mutation, CreditReason.POSTING_FEE.value)
            logger.info(f"User {user_id} confirmed {action_kind}: {outcome.resource}")
        return outcome

    def _find_replay(
        self, action_kind: str, handler: PaidActionHandler, key: str
    ) -> Optional[Tuple[PaidActionResult, None]]:
        entry = self.credit_repo.find_existing(idempotency_key=key)
        if entry is None:
            return None
        return self._replay(action_kind, handler, entry), None

    def _replay(
        self, action_kind: str, handler: PaidActionHandler, entry: CreditLedgerEntry
    ) -> PaidActionResult:
        resource = None
        if entry.resource_ref and ":" in entry.resource_ref:
            resource_type, _, resource_id = entry.resource_ref.partition(":")
            if resource_type == handler.resource_type and resource_id.isdigit():
                resource = handler.load(self.db, int(resource_id))

        return PaidActionResult(
            action_kind=action_kind,
            cost=-int(entry.delta),
            balance=CreditBalanceResponse.of(
                entry.user_id, int(entry.cash_balance_after), int(entry.free_balance_after)
            ),
            entry_id=entry.id,
            resource=resource,
            replayed=True,
        )
