import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from localhy.core.exceptions import NotFoundError, StoreUnavailableError
from localhy.models.notification import NotificationType
from localhy.providers.queue.events import NotificationCreatedEvent
from localhy.repositories.notification_repository import NotificationRepository
from localhy.schemas.notification import (
    NotificationFilter,
    NotificationListResponse,
    NotificationResponse,
    NotificationUpdateResponse,
)
from localhy.services.change_feed import ChangeFeed

logger = logging.getLogger(__name__)


class NotificationService:
    """User-facing notifications"""

    def __init__(self, db: Session, change_feed: Optional[ChangeFeed] = None):
        self.db = db
        self.notification_repo = NotificationRepository(db)
        self.change_feed = change_feed

    def create(
        self,
        user_id: str,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        source_ref: Optional[str] = None,
    ) -> NotificationResponse:
        """Create a notification

        Args:
            user_id: recipient
            title: short headline
            message: body text
            type: success / info / warning / error
            source_ref: makes the call idempotent (one notification per ref)

        Returns:
            NotificationResponse: the new row, or the existing one for a known source_ref
        """
        if source_ref:
            existing = self.notification_repo.find_by_source_ref(source_ref)
            if existing is not None:
                logger.info(f"Notification {source_ref} already exists, skipping")
                return existing

        try:
            notification = self.notification_repo.add_notification(
                user_id=user_id,
                title=title,
                message=message,
                type=type,
                source_ref=source_ref,
            )
        except IntegrityError:
            # a concurrent delivery inserted the same source_ref first
            existing = self.notification_repo.find_by_source_ref(source_ref) if source_ref else None
            if existing is None:
                raise
            return existing
        except SQLAlchemyError as e:
            logger.error(f"Failed to create notification for user {user_id}: {str(e)}")
            raise StoreUnavailableError(details={"operation": "create_notification"})

        logger.info(f"Created notification {notification.id} for user {user_id}")

        if self.change_feed is not None:
            self.change_feed.publish(
                NotificationCreatedEvent(
                    user_id=user_id,
                    notification_id=notification.id,
                    title=notification.title,
                )
            )
        return notification

    def list(
        self,
        user_id: str,
        status: NotificationFilter = NotificationFilter.ALL,
        limit: int = 20,
        offset: int = 0,
    ) -> NotificationListResponse:
        if limit > 100:
            limit = 100

        total_count = self.notification_repo.count_for_user(user_id, status)
        return NotificationListResponse(
            notifications=self.notification_repo.list_for_user(user_id, status, limit, offset),
            total_count=total_count,
            unread_count=self.unread_count(user_id),
            has_next=offset + limit < total_count,
        )

    def unread_count(self, user_id: str) -> int:
        return self.notification_repo.count_for_user(user_id, NotificationFilter.UNREAD)

    def mark_read(self, user_id: str, notification_id: int) -> NotificationUpdateResponse:
        updated = self.notification_repo.mark_read(user_id, notification_id)
        if not updated:
            raise NotFoundError(
                "Notification not found",
                details={"notification_id": notification_id},
            )
        return NotificationUpdateResponse(success=True, updated=updated)

    def mark_all_read(self, user_id: str) -> NotificationUpdateResponse:
        updated = self.notification_repo.mark_all_read(user_id)
        logger.info(f"Marked {updated} notifications read for user {user_id}")
        return NotificationUpdateResponse(success=True, updated=updated)

    def delete(self, user_id: str, notification_id: int) -> NotificationUpdateResponse:
        deleted = self.notification_repo.delete_for_user(user_id, notification_id)
        if not deleted:
            raise NotFoundError(
                "Notification not found",
                details={"notification_id": notification_id},
            )
        return NotificationUpdateResponse(success=True, updated=deleted)
