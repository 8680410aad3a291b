"""
Credit repository - ledger store access

This module owns every write to ``credit_balances``:
1. Lock the balance row (SELECT ... FOR UPDATE, lazily created)
2. Replay check on external_payment_id / idempotency_key
3. Split the delta across the cash / free pools
4. Non-negativity check (no partial debits)
5. Append the ledger entry and update the balance row

Nothing here commits unless asked to: the service decides the transaction
boundary so a paid action can commit its resource and its debit together.
IntegrityError (duplicate key raced past the replay check) and StaleDataError
(version mismatch on the balance row) propagate to the caller, which rolls back
and retries.
"""

from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy import and_, asc, case, desc, func, or_
from sqlalchemy.orm import Session

from localhy.config import settings
from localhy.core.exceptions import (
    InsufficientBalanceError,
    UnknownReasonError,
    ValidationError,
)
from localhy.models.credits import (
    CASH_CREDIT_REASONS,
    CreditBalance,
    CreditLedgerEntry as CreditLedgerEntryModel,
    CreditReason,
)
from localhy.repositories.base import BaseRepository
from localhy.schemas.credits import (
    CreditBalanceResponse,
    CreditIntegrityResponse,
    CreditLedgerEntrySchema,
    CreditLedgerResponse,
    CreditMutationResult,
    WalletSummaryResponse,
)


class CreditRepository(BaseRepository[CreditLedgerEntryModel, CreditLedgerEntrySchema]):
    """Balance rows and the append-only ledger"""

    def __init__(self, db: Session):
        super().__init__(CreditLedgerEntryModel, CreditLedgerEntrySchema, db)

    def _to_schema(self, model_instance: CreditLedgerEntryModel) -> Optional[CreditLedgerEntrySchema]:
        if model_instance is None:
            return None

        return CreditLedgerEntrySchema(
            id=model_instance.id,
            transaction_type="DEBIT" if model_instance.is_debit else "CREDIT",
            delta=model_instance.delta,
            cash_delta=model_instance.cash_delta,
            free_delta=model_instance.free_delta,
            cash_balance_after=model_instance.cash_balance_after,
            free_balance_after=model_instance.free_balance_after,
            reason=model_instance.reason,
            description=model_instance.description,
            external_payment_id=model_instance.external_payment_id,
            payment_provider=model_instance.payment_provider,
            resource_ref=model_instance.resource_ref,
            created_at=(
                model_instance.created_at.strftime("%Y-%m-%d %H:%M:%S")
                if model_instance.created_at
                else ""
            ),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_balance(self, user_id: str) -> CreditBalanceResponse:
        """Committed balance; unknown users read as zero and no row is created."""
        row = (
            self.db.query(CreditBalance)
            .filter(CreditBalance.user_id == user_id)
            .populate_existing()
            .one_or_none()
        )
        if row is None:
            return CreditBalanceResponse.zero(user_id)
        return CreditBalanceResponse.of(user_id, int(row.cash_credits), int(row.free_credits))

    def get_entry(self, entry_id: int) -> Optional[CreditLedgerEntryModel]:
        return (
            self.db.query(self.model_class)
            .filter(self.model_class.id == entry_id)
            .one_or_none()
        )

    def find_existing(
        self,
        external_payment_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        payment_provider: Optional[str] = None,
    ) -> Optional[CreditLedgerEntryModel]:
        """Entry previously recorded under either idempotency key.

        Transaction ids only match within the same provider.
        """
        conditions = []
        if external_payment_id:
            conditions.append(
                and_(
                    self.model_class.payment_provider == payment_provider,
                    self.model_class.external_payment_id == external_payment_id,
                )
            )
        if idempotency_key:
            conditions.append(self.model_class.idempotency_key == idempotency_key)
        if not conditions:
            return None

        return (
            self.db.query(self.model_class)
            .filter(or_(*conditions))
            .order_by(asc(self.model_class.id))
            .first()
        )

    def get_ledger(self, user_id: str, limit: int = 50, offset: int = 0) -> CreditLedgerResponse:
        """Paginated history, newest first"""
        total_count = self.count({"user_id": user_id})
        instances = (
            self.db.query(self.model_class)
            .filter(self.model_class.user_id == user_id)
            .order_by(desc(self.model_class.id))
            .limit(limit)
            .offset(offset)
            .all()
        )

        return CreditLedgerResponse(
            balance=self.get_balance(user_id),
            entries=[self._to_schema(instance) for instance in instances],
            total_count=total_count,
            has_next=offset + limit < total_count,
        )

    def get_wallet_summary(self, user_id: str) -> WalletSummaryResponse:
        model = self.model_class
        purchased, earned, debited, refunded, entry_count = (
            self.db.query(
                func.coalesce(
                    func.sum(case((model.reason == CreditReason.PURCHASE.value, model.delta), else_=0)),
                    0,
                ),
                func.coalesce(
                    func.sum(
                        case(
                            (
                                model.reason.in_(
                                    [
                                        CreditReason.REFERRAL_REWARD.value,
                                        CreditReason.SIGNUP_BONUS.value,
                                    ]
                                ),
                                model.delta,
                            ),
                            (
                                (model.reason == CreditReason.ADMIN_ADJUSTMENT.value)
                                & (model.delta > 0),
                                model.delta,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ),
                func.coalesce(func.sum(case((model.delta < 0, -model.delta), else_=0)), 0),
                func.coalesce(
                    func.sum(case((model.reason == CreditReason.REFUND.value, model.delta), else_=0)),
                    0,
                ),
                func.count(model.id),
            )
            .filter(model.user_id == user_id)
            .one()
        )

        return WalletSummaryResponse(
            balance=self.get_balance(user_id),
            total_purchased=int(purchased),
            total_earned=int(earned),
            total_spent=max(int(debited) - int(refunded), 0),
            entry_count=int(entry_count),
        )

    def verify_integrity(self, user_id: str) -> CreditIntegrityResponse:
        """
        Rebuild both pools from the ledger and compare with the balance row.

        Args:
            user_id: account to check

        Returns:
            CreditIntegrityResponse: OK when both pool sums match, MISMATCH otherwise
        """
        cash_sum, free_sum, entry_count = (
            self.db.query(
                func.coalesce(func.sum(self.model_class.cash_delta), 0),
                func.coalesce(func.sum(self.model_class.free_delta), 0),
                func.count(self.model_class.id),
            )
            .filter(self.model_class.user_id == user_id)
            .one()
        )
        recorded = self.get_balance(user_id)

        matches = (
            int(cash_sum) == recorded.cash_credits
            and int(free_sum) == recorded.free_credits
        )
        return CreditIntegrityResponse(
            status="OK" if matches else "MISMATCH",
            user_id=user_id,
            calculated_cash=int(cash_sum),
            calculated_free=int(free_sum),
            recorded_cash=recorded.cash_credits,
            recorded_free=recorded.free_credits,
            entry_count=int(entry_count),
            verified_at=datetime.now(timezone.utc).isoformat(),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def lock_balance(self, user_id: str) -> CreditBalance:
        """Balance row locked for this transaction, inserted zeroed if missing"""
        row = (
            self.db.query(CreditBalance)
            .filter(CreditBalance.user_id == user_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if row is None:
            row = CreditBalance(user_id=user_id, cash_credits=0, free_credits=0)
            self.db.add(row)
            self.db.flush()
        return row

    @staticmethod
    def _split(
        row: CreditBalance,
        delta: int,
        reason: CreditReason,
        split: Optional[Tuple[int, int]],
    ) -> Tuple[int, int]:
        """(cash_delta, free_delta) for a delta against the current pools"""
        if split is not None:
            cash_delta, free_delta = split
            if cash_delta + free_delta != delta:
                raise ValidationError(
                    "Split does not add up to the delta",
                    details={"delta": delta, "cash_delta": cash_delta, "free_delta": free_delta},
                )
            return cash_delta, free_delta

        if delta > 0:
            if reason in CASH_CREDIT_REASONS:
                return delta, 0
            if reason == CreditReason.REFUND:
                raise ValidationError("Refunds must name the pools they restore")
            return 0, delta

        # Debits drain promotional credits first, then purchased ones
        amount = -delta
        free_taken = min(int(row.free_credits), amount)
        return -(amount - free_taken), -free_taken

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
        commit: bool = True,
    ) -> Tuple[CreditMutationResult, CreditLedgerEntryModel]:
        """
        Apply one signed credit change inside the current transaction.

        Args:
            user_id: account to change
            delta: signed credit amount, never zero
            reason: CreditReason value
            external_payment_id: provider transaction id (UNIQUE per provider)
            idempotency_key: client or internal replay key (UNIQUE)
            description: free text stored on the entry
            payment_provider: provider name for purchases
            resource_ref: resource created by a paid action
            split: explicit (cash_delta, free_delta), used by refunds
            commit: commit before returning

        Returns:
            (CreditMutationResult, ledger entry). ``applied`` is False when an
            entry already exists for one of the keys; the balances are then the
            ones that entry recorded.

        Raises:
            InsufficientBalanceError: debit exceeds cash + free
            UnknownReasonError: reason outside CreditReason
            ValidationError: delta is zero, split is inconsistent, or a
                transaction id comes without its provider
        """
        try:
            reason_enum = CreditReason(reason)
        except ValueError:
            raise UnknownReasonError(str(reason))
        if delta == 0:
            raise ValidationError("Credit delta cannot be zero", details={"user_id": user_id})
        if external_payment_id and not payment_provider:
            raise ValidationError(
                "payment_provider is required with external_payment_id",
                details={"external_payment_id": external_payment_id},
            )

        row = self.lock_balance(user_id)

        # Checked after taking the lock so a committed twin is visible
        existing = self.find_existing(external_payment_id, idempotency_key, payment_provider)
        if existing is not None:
            return self.replay_result(existing), existing

        cash_delta, free_delta = self._split(row, delta, reason_enum, split)
        new_cash = int(row.cash_credits) + cash_delta
        new_free = int(row.free_credits) + free_delta

        if new_cash < 0 or new_free < 0:
            available = int(row.cash_credits) + int(row.free_credits)
            raise InsufficientBalanceError(
                details={
                    "user_id": user_id,
                    "required": -delta if delta < 0 else 0,
                    "available": available,
                    "shortfall": max(-delta - available, 0) if delta < 0 else 0,
                    "purchase_path": settings.CREDITS_PURCHASE_PATH,
                }
            )

        entry = self.model_class(
            user_id=user_id,
            delta=delta,
            cash_delta=cash_delta,
            free_delta=free_delta,
            cash_balance_after=new_cash,
            free_balance_after=new_free,
            reason=reason_enum.value,
            description=description,
            external_payment_id=external_payment_id,
            payment_provider=payment_provider,
            idempotency_key=idempotency_key,
            resource_ref=resource_ref,
        )
        self.db.add(entry)

        row.cash_credits = new_cash
        row.free_credits = new_free

        # INSERT + versioned UPDATE; raises IntegrityError / StaleDataError
        self.db.flush()
        if commit:
            self.db.commit()

        return (
            CreditMutationResult(
                entry_id=entry.id,
                user_id=user_id,
                delta=delta,
                cash_credits=new_cash,
                free_credits=new_free,
                applied=True,
                message="Credits applied",
            ),
            entry,
        )

    @staticmethod
    def replay_result(entry: CreditLedgerEntryModel) -> CreditMutationResult:
        return CreditMutationResult(
            entry_id=entry.id,
            user_id=entry.user_id,
            delta=int(entry.delta),
            cash_credits=int(entry.cash_balance_after),
            free_credits=int(entry.free_balance_after),
            applied=False,
            message="Already applied (idempotent)",
        )

