from enum import Enum

from sqlalchemy import BigInteger, Column, Index, Integer, Numeric, String, Text

from localhy.models.base import BaseModel


class ReferralJobStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class ReferralJob(BaseModel):
    """Referral job posting - created only through the paid action gate"""

    __tablename__ = "referral_jobs"
    __table_args__ = (Index("idx_referral_jobs_user_id", "user_id"),)

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    reward_amount = Column(Numeric(12, 2), nullable=False, default=0)
    location = Column(String(255), nullable=True)
    contact_email = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=ReferralJobStatus.ACTIVE.value)

    def __repr__(self):
        return f"<ReferralJob(id={self.id}, user_id={self.user_id}, title={self.title})>"
