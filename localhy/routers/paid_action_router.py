from dependency_injector.wiring import inject, Provide
from fastapi import APIRouter, Depends, Path

from localhy.containers import Container
from localhy.core.auth_middleware import get_current_active_user
from localhy.schemas.paid_action import (
    PaidActionConfirmRequest,
    PaidActionQuote,
    PaidActionResult,
)
from localhy.schemas.user import User as UserSchema
from localhy.services.paid_action_service import PaidActionService

router = APIRouter(prefix="/paid-actions", tags=["paid-actions"])


@router.get("/{action_kind}/quote", response_model=PaidActionQuote)
@inject
async def quote_paid_action(
    action_kind: str = Path(..., min_length=1, max_length=64),
    current_user: UserSchema = Depends(get_current_active_user),
    paid_action_service: PaidActionService = Depends(
        Provide[Container.services.paid_action_service]
    ),
) -> PaidActionQuote:
    """Cost of the action and whether the caller can afford it."""
    return paid_action_service.evaluate(current_user.id, action_kind)


@router.post("/{action_kind}/confirm", response_model=PaidActionResult)
@inject
async def confirm_paid_action(
    request: PaidActionConfirmRequest,
    action_kind: str = Path(..., min_length=1, max_length=64),
    current_user: UserSchema = Depends(get_current_active_user),
    paid_action_service: PaidActionService = Depends(
        Provide[Container.services.paid_action_service]
    ),
) -> PaidActionResult:
    """
    Perform the action and charge for it in one transaction.

    Retrying with the same idempotency_token returns the original result with
    replayed=true. BALANCE_001 (400) carries cost, available, shortfall and
    purchase_path.
    """
    return paid_action_service.confirm(
        user_id=current_user.id,
        action_kind=action_kind,
        idempotency_token=request.idempotency_token,
        payload=request.payload,
    )
