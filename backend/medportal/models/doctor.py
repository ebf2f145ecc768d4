from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel
from sqlmodel import Field, SQLModel


class ReferralStats(BaseModel):
    total_referrals: int = 0
    pending_referrals: int = 0
    confirmed_referrals: int = 0
    last_referral_date: Optional[datetime] = None


class ReferralRewards(BaseModel):
    eligible_rewards: int = 0
    pending_rewards: int = 0
    approved_rewards: int = 0
    total_rewards_earned: int = 0  # days

    @property
    def available_rewards(self) -> int:
        return max(0, self.eligible_rewards - self.approved_rewards - self.pending_rewards)


class DoctorReferralSettings(BaseModel):
    enabled: bool = True
    last_toggled: Optional[datetime] = None
    toggled_by: Optional[str] = None
    reason_disabled: Optional[str] = None


class DoctorBase(SQLModel):
    display_name: str = Field(max_length=200)
    email: Optional[str] = Field(default=None, max_length=320, index=True)
    specialty: Optional[str] = Field(default=None, max_length=120)
    profile_complete: bool = Field(default=False)


class Doctor(DoctorBase, table=True):
    """A doctor's profile, its referral ledger counters and subscription mirror.

    Counters are only mutated through atomic UPDATE statements in
    ``medportal.services.referrals`` and ``medportal.services.rewards``.
    """
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    user_id: str = Field(unique=True, index=True, max_length=128, description="Auth provider principal id")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Subscription mirror (source of truth lives in the subscription table)
    subscription_status: Optional[str] = Field(default=None, max_length=32)
    subscription_plan: Optional[str] = Field(default=None, max_length=120)
    subscription_expires_at: Optional[datetime] = Field(default=None)

    referral_code: Optional[str] = Field(default=None, unique=True, index=True, max_length=16)
    referred_by_doctor_id: Optional[UUID] = Field(default=None, foreign_key="doctor.id", index=True)

    total_referrals: int = Field(default=0)
    pending_referrals: int = Field(default=0)
    confirmed_referrals: int = Field(default=0)
    last_referral_date: Optional[datetime] = Field(default=None)

    eligible_rewards: int = Field(default=0)
    pending_rewards: int = Field(default=0)
    approved_rewards: int = Field(default=0)
    total_rewards_earned: int = Field(default=0)

    referral_enabled: bool = Field(default=True)
    referral_last_toggled: Optional[datetime] = Field(default=None)
    referral_toggled_by: Optional[str] = Field(default=None, max_length=128)
    referral_reason_disabled: Optional[str] = Field(default=None, max_length=500)

    @property
    def referral_stats(self) -> ReferralStats:
        return ReferralStats(
            total_referrals=self.total_referrals,
            pending_referrals=self.pending_referrals,
            confirmed_referrals=self.confirmed_referrals,
            last_referral_date=self.last_referral_date,
        )

    @property
    def referral_rewards(self) -> ReferralRewards:
        return ReferralRewards(
            eligible_rewards=self.eligible_rewards,
            pending_rewards=self.pending_rewards,
            approved_rewards=self.approved_rewards,
            total_rewards_earned=self.total_rewards_earned,
        )

    @property
    def referral_settings(self) -> DoctorReferralSettings:
        return DoctorReferralSettings(
            enabled=self.referral_enabled,
            last_toggled=self.referral_last_toggled,
            toggled_by=self.referral_toggled_by,
            reason_disabled=self.referral_reason_disabled,
        )


class DoctorPublic(DoctorBase):
    """Schema for returning a doctor's profile to the portals."""
    id: UUID
    user_id: str
    subscription_status: Optional[str] = None
    subscription_plan: Optional[str] = None
    subscription_expires_at: Optional[datetime] = None
    referral_code: Optional[str] = None
    referral_stats: ReferralStats
    referral_rewards: ReferralRewards
    referral_settings: DoctorReferralSettings

    @classmethod
    def from_doctor(cls, doctor: Doctor) -> "DoctorPublic":
        return cls(
            id=doctor.id,
            user_id=doctor.user_id,
            display_name=doctor.display_name,
            email=doctor.email,
            specialty=doctor.specialty,
            profile_complete=doctor.profile_complete,
            subscription_status=doctor.subscription_status,
            subscription_plan=doctor.subscription_plan,
            subscription_expires_at=doctor.subscription_expires_at,
            referral_code=doctor.referral_code,
            referral_stats=doctor.referral_stats,
            referral_rewards=doctor.referral_rewards,
            referral_settings=doctor.referral_settings,
        )


class Patient(SQLModel, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    user_id: str = Field(unique=True, index=True, max_length=128)
    display_name: str = Field(max_length=200)
    email: Optional[str] = Field(default=None, max_length=320)
    phone: Optional[str] = Field(default=None, max_length=32)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class PatientPublic(SQLModel):
    id: UUID
    user_id: str
    display_name: str
    email: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_patient(cls, patient: Patient) -> "PatientPublic":
        return cls(
            id=patient.id,
            user_id=patient.user_id,
            display_name=patient.display_name,
            email=patient.email,
            phone=patient.phone,
        )
