from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from localhy.models.notification import Notification as NotificationModel, NotificationType
from localhy.repositories.base import BaseRepository
from localhy.schemas.notification import NotificationFilter, NotificationResponse


class NotificationRepository(BaseRepository[NotificationModel, NotificationResponse]):
    def __init__(self, db: Session):
        super().__init__(NotificationModel, NotificationResponse, db)

    def _owned(self, user_id: str, status: NotificationFilter = NotificationFilter.ALL):
        query = self.db.query(self.model_class).filter(self.model_class.user_id == user_id)
        if status == NotificationFilter.UNREAD:
            query = query.filter(self.model_class.is_read.is_(False))
        elif status == NotificationFilter.READ:
            query = query.filter(self.model_class.is_read.is_(True))
        return query

    def find_by_source_ref(self, source_ref: str) -> Optional[NotificationResponse]:
        return self._to_schema(
            self.db.query(self.model_class)
            .filter(self.model_class.source_ref == source_ref)
            .one_or_none()
        )

    def add_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        source_ref: Optional[str] = None,
        commit: bool = True,
    ) -> Optional[NotificationResponse]:
        return self.create(
            commit=commit,
            user_id=user_id,
            title=title,
            message=message,
            type=NotificationType(type).value,
            is_read=False,
            source_ref=source_ref,
        )

    def list_for_user(
        self,
        user_id: str,
        status: NotificationFilter = NotificationFilter.ALL,
        limit: int = 20,
        offset: int = 0,
    ) -> List[NotificationResponse]:
        instances = (
            self._owned(user_id, status)
            .order_by(desc(self.model_class.id))
            .limit(limit)
            .offset(offset)
            .all()
        )
        return [self._to_schema(instance) for instance in instances]

    def count_for_user(self, user_id: str, status: NotificationFilter = NotificationFilter.ALL) -> int:
        return self._owned(user_id, status).count()

    def mark_read(self, user_id: str, notification_id: int) -> int:
        """Rows changed (0 when the notification is missing or not owned)"""
        updated = (
            self._owned(user_id)
            .filter(self.model_class.id == notification_id)
            .update({self.model_class.is_read: True}, synchronize_session=False)
        )
        self.db.commit()
        return updated

    def mark_all_read(self, user_id: str) -> int:
        updated = self._owned(user_id, NotificationFilter.UNREAD).update(
            {self.model_class.is_read: True}, synchronize_session=False
        )
        self.db.commit()
        return updated

    def delete_for_user(self, user_id: str, notification_id: int) -> int:
        deleted = (
            self._owned(user_id)
            .filter(self.model_class.id == notification_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted
