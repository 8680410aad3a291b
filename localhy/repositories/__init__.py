# Repository layer - Data access with Pydantic responses

from .base import BaseRepository
from .credit_repository import CreditRepository
from .notification_repository import NotificationRepository
from .referral_job_repository import ReferralJobRepository

__all__ = [
    "BaseRepository",
    "CreditRepository",
    "NotificationRepository",
    "ReferralJobRepository",
]
