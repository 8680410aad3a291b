from enum import Enum

from sqlalchemy import BigInteger, Boolean, Column, Index, Integer, String, Text
from sqlalchemy.schema import UniqueConstraint

from localhy.models.base import BaseModel


class NotificationType(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    __tablename__ = "notifications"
    __table_args__ = (
        # source_ref makes system notifications idempotent (one per payment, ...)
        UniqueConstraint("source_ref", name="uq_notifications_source_ref"),
        Index("idx_notifications_user_id", "user_id", "is_read"),
    )

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(20), nullable=False, default=NotificationType.INFO.value)
    is_read = Column(Boolean, nullable=False, default=False)
    source_ref = Column(String(255), nullable=True)

    def __repr__(self):
        return f"<Notification(id={self.id}, user_id={self.user_id}, title={self.title})>"
