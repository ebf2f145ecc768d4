from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel
from sqlmodel import Field, SQLModel

from .doctor import DoctorReferralSettings, ReferralRewards, ReferralStats
from .enums import ReferralStatus, RewardStatus, RewardType


class Referral(SQLModel, table=True):
    """A doctor-to-doctor referral created when a new doctor signs up with a code.

    Moves ``pending -> confirmed`` once the referred doctor completes the
    profile; never moves back.
    """
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    referrer_doctor_id: UUID = Field(foreign_key="doctor.id", index=True)
    referred_doctor_id: UUID = Field(foreign_key="doctor.id", unique=True, index=True)
    referred_doctor_name: Optional[str] = Field(default=None, max_length=200)
    referred_doctor_email: Optional[str] = Field(default=None, max_length=320)
    referred_doctor_specialty: Optional[str] = Field(default=None, max_length=120)
    status: ReferralStatus = Field(default=ReferralStatus.pending, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    confirmed_at: Optional[datetime] = Field(default=None)


class ReferredDoctorProfile(SQLModel):
    """Snapshot of the referred doctor captured on the referral record."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None
    specialty: Optional[str] = None

    @property
    def full_name(self) -> str:
        if self.display_name:
            return self.display_name
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class RewardRequest(SQLModel, table=True):
    """A doctor's claim on one earned referral reward."""
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    doctor_id: UUID = Field(foreign_key="doctor.id", index=True)
    reward_type: RewardType = Field(default=RewardType.subscription_extension)
    status: RewardStatus = Field(default=RewardStatus.pending, index=True)
    reward_value: int = Field(ge=1, description="Subscription days granted on approval (snapshot of config)")
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    approved_at: Optional[datetime] = Field(default=None)
    approved_by: Optional[str] = Field(default=None, max_length=128)
    rejected_at: Optional[datetime] = Field(default=None)
    rejected_by: Optional[str] = Field(default=None, max_length=128)
    rejection_reason: Optional[str] = Field(default=None, max_length=500)
    fulfillment_subscription_id: Optional[UUID] = Field(default=None, description="Subscription extended or created on approval")


class PendingRewardView(SQLModel):
    """A pending reward request joined with the requesting doctor's ledger."""
    id: UUID
    doctor_id: UUID
    reward_type: RewardType
    reward_value: int
    created_at: datetime
    doctor_name: str
    doctor_email: Optional[str] = None
    doctor_specialty: Optional[str] = None
    total_referrals: int = 0
    confirmed_referrals: int = 0
    eligible_rewards: int = 0


class ReferralEligibility(BaseModel):
    can_refer: bool
    reason: Optional[str] = None


class RewardProgress(BaseModel):
    current: int
    needed: int
    remaining: int
    percentage: int


class ReferralOverview(BaseModel):
    """What a doctor sees on the referrals page."""
    doctor_id: UUID
    referral_code: Optional[str] = None
    referral_link: Optional[str] = None
    stats: ReferralStats
    rewards: ReferralRewards
    available_rewards: int
    progress: RewardProgress
    eligibility: ReferralEligibility
    settings: DoctorReferralSettings


class DoctorReferralListing(BaseModel):
    """A doctor row in the superadmin referral management table."""
    id: UUID
    display_name: str
    email: Optional[str] = None
    specialty: Optional[str] = None
    referral_code: Optional[str] = None
    stats: ReferralStats
    rewards: ReferralRewards
    settings: DoctorReferralSettings
    can_refer: bool
    referral_block_reason: Optional[str] = None
