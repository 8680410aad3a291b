from typing import Optional

from sqlalchemy.orm import Session

from localhy.models.referral_job import ReferralJob as ReferralJobModel, ReferralJobStatus
from localhy.repositories.base import BaseRepository
from localhy.schemas.referral_job import ReferralJobCreate, ReferralJobResponse


class ReferralJobRepository(BaseRepository[ReferralJobModel, ReferralJobResponse]):
    def __init__(self, db: Session):
        super().__init__(ReferralJobModel, ReferralJobResponse, db)

    def create_job(
        self, user_id: str, data: ReferralJobCreate, commit: bool = True
    ) -> Optional[ReferralJobResponse]:
        return self.create(
            commit=commit,
            user_id=user_id,
            title=data.title,
            description=data.description,
            reward_amount=data.reward_amount,
            location=data.location,
            contact_email=str(data.contact_email) if data.contact_email else None,
            status=ReferralJobStatus.ACTIVE.value,
        )
