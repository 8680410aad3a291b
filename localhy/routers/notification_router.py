from dependency_injector.wiring import inject, Provide
from fastapi import APIRouter, Depends, Path, Query

from localhy.containers import Container
from localhy.core.auth_middleware import get_current_active_user
from localhy.schemas.notification import (
    NotificationFilter,
    NotificationListResponse,
    NotificationUpdateResponse,
)
from localhy.schemas.user import User as UserSchema
from localhy.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
@inject
async def list_notifications(
    status: NotificationFilter = Query(NotificationFilter.ALL),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: UserSchema = Depends(get_current_active_user),
    notification_service: NotificationService = Depends(
        Provide[Container.services.notification_service]
    ),
) -> NotificationListResponse:
    return notification_service.list(current_user.id, status=status, limit=limit, offset=offset)


@router.post("/read-all", response_model=NotificationUpdateResponse)
@inject
async def mark_all_notifications_read(
    current_user: UserSchema = Depends(get_current_active_user),
    notification_service: NotificationService = Depends(
        Provide[Container.services.notification_service]
    ),
) -> NotificationUpdateResponse:
    return notification_service.mark_all_read(current_user.id)


@router.post("/{notification_id}/read", response_model=NotificationUpdateResponse)
@inject
async def mark_notification_read(
    notification_id: int = Path(..., ge=1),
    current_user: UserSchema = Depends(get_current_active_user),
    notification_service: NotificationService = Depends(
        Provide[Container.services.notification_service]
    ),
) -> NotificationUpdateResponse:
    return notification_service.mark_read(current_user.id, notification_id)


@router.delete("/{notification_id}", response_model=NotificationUpdateResponse)
@inject
async def delete_notification(
    notification_id: int = Path(..., ge=1),
    current_user: UserSchema = Depends(get_current_active_user),
    notification_service: NotificationService = Depends(
        Provide[Container.services.notification_service]
    ),
) -> NotificationUpdateResponse:
    return notification_service.delete(current_user.id, notification_id)
