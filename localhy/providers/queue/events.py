from datetime import datetime, timezone
from typing import ClassVar, Optional

from pydantic import BaseModel, Field


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChangeEvent(BaseModel):
    event_type: ClassVar[str] = "change"

    user_id: str
    occurred_at: str = Field(default_factory=_now)

    def to_message(self) -> dict:
        return {"event_type": self.event_type, **self.model_dump()}


class BalanceChangedEvent(ChangeEvent):
    event_type: ClassVar[str] = "balance_changed"

    cash_credits: int
    free_credits: int
    delta: int
    reason: str
    entry_id: Optional[int] = None


class NotificationCreatedEvent(ChangeEvent):
    event_type: ClassVar[str] = "notification_created"

    notification_id: int
    title: str
