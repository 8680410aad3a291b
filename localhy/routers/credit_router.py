"""
Credit API

User endpoints:
- GET /credits/balance: my balance (cash + free)
- GET /credits/ledger: my ledger, newest first
- GET /credits/summary: purchased / earned / spent totals
- GET /credits/integrity: ledger vs balance check for my account

Admin endpoints:
- POST /credits/admin/adjust
- GET /credits/admin/balance/{user_id}
- POST /credits/admin/refund/{entry_id}
- POST /credits/admin/signup-bonus/{user_id}
- POST /credits/admin/referral-reward
"""

import logging

from dependency_injector.wiring import inject, Provide
from fastapi import APIRouter, Depends, Path, Query

from localhy.containers import Container
from localhy.core.auth_middleware import get_current_active_user, require_admin
from localhy.schemas.credits import (
    AdminCreditAdjustmentRequest,
    CreditBalanceResponse,
    CreditIntegrityResponse,
    CreditLedgerResponse,
    CreditMutationResult,
    ReferralRewardRequest,
    WalletSummaryResponse,
)
from localhy.schemas.user import User as UserSchema
from localhy.services.credit_service import CreditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/balance", response_model=CreditBalanceResponse)
@inject
async def get_my_balance(
    current_user: UserSchema = Depends(get_current_active_user),
    credit_service: CreditService = Depends(Provide[Container.services.credit_service]),
) -> CreditBalanceResponse:
    """
    Current balance of the authenticated user.

    Unknown accounts read as zero. Always served from committed state.
    """
    return credit_service.get_balance(current_user.id)


@router.get("/ledger", response_model=CreditLedgerResponse)
@inject
async def get_my_ledger(
    limit: int = Query(50, ge=1, le=100, description="Page size"),
    offset: int = Query(0, ge=0, description="Offset"),
    current_user: UserSchema = Depends(get_current_active_user),
    credit_service: CreditService = Depends(Provide[Container.services.credit_service]),
) -> CreditLedgerResponse:
    return credit_service.get_ledger(current_user.id, limit=limit, offset=offset)


@router.get("/summary", response_model=WalletSummaryResponse)
@inject
async def get_my_summary(
    current_user: UserSchema = Depends(get_current_active_user),
    credit_service: CreditService = Depends(Provide[Container.services.credit_service]),
) -> WalletSummaryResponse:
    return credit_service.get_wallet_summary(current_user.id)


@router.get("/integrity", response_model=CreditIntegrityResponse)
@inject
async def verify_my_integrity(
    current_user: UserSchema = Depends(get_current_active_user),
    credit_service: CreditService = Depends(Provide[Container.services.credit_service]),
) -> CreditIntegrityResponse:
    return credit_service.verify_integrity(current_user.id)


# ----------------------------------------------------------------------
# Admin
# ----------------------------------------------------------------------


@router.post("/admin/adjust", response_model=CreditMutationResult)
@inject
async def admin_adjust_credits(
    request: AdminCreditAdjustmentRequest,
    current_user: UserSchema = Depends(require_admin),
    credit_service: CreditService = Depends(Provide[Container.services.credit_service]),
) -> CreditMutationResult:
    """
    Manual correction (admin only).

    Positive amounts are granted as free credits; negative amounts are debited
    free-first and fail with BALANCE_001 when the account cannot cover them.
    """
    return credit_service.admin_adjust(
        admin_id=current_user.id,
        user_id=request.user_id,
        amount=request.amount,
        reason_text=request.reason,
    )


@router.get("/admin/balance/{user_id}", response_model=CreditBalanceResponse)
@inject
async def admin_get_balance(
    user_id: str = Path(..., min_length=1, max_length=64),
    current_user: UserSchema = Depends(require_admin),
    credit_service: CreditService = Depends(Provide[Container.services.credit_service]),
) -> CreditBalanceResponse:
    return credit_service.get_balance(user_id)


@router.post("/admin/refund/{entry_id}", response_model=CreditMutationResult)
@inject
async def admin_refund_entry(
    entry_id: int = Path(..., ge=1),
    current_user: UserSchema = Depends(require_admin),
    credit_service: CreditService = Depends(Provide[Container.services.credit_service]),
) -> CreditMutationResult:
    """Reverse a debit; calling it again for the same entry is a no-op."""
    return credit_service.refund_entry(entry_id, admin_id=current_user.id)


@router.post("/admin/signup-bonus/{user_id}", response_model=CreditMutationResult)
@inject
async def admin_grant_signup_bonus(
    user_id: str = Path(..., min_length=1, max_length=64),
    current_user: UserSchema = Depends(require_admin),
    credit_service: CreditService = Depends(Provide[Container.services.credit_service]),
) -> CreditMutationResult:
    return credit_service.grant_signup_bonus(user_id)


@router.post("/admin/referral-reward", response_model=CreditMutationResult)
@inject
async def admin_grant_referral_reward(
    request: ReferralRewardRequest,
    current_user: UserSchema = Depends(require_admin),
    credit_service: CreditService = Depends(Provide[Container.services.credit_service]),
) -> CreditMutationResult:
    return credit_service.grant_referral_reward(request.referrer_id, request.referred_id)
