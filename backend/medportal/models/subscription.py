from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from .enums import SubscriptionStatus


class Subscription(SQLModel, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    user_id: str = Field(index=True, max_length=128)
    plan_id: str = Field(max_length=64)
    plan_name: str = Field(max_length=200)
    price: float = Field(default=0.0)
    currency: str = Field(default="ARS", max_length=8)
    status: SubscriptionStatus = Field(default=SubscriptionStatus.pending, index=True)
    start_date: datetime = Field(default_factory=datetime.utcnow)
    end_date: Optional[datetime] = Field(default=None, description="Expiry; None means no expiry")
    payment_method: Optional[str] = Field(default=None, max_length=64)
    created_by: Optional[str] = Field(default=None, max_length=128)
    extended_by: Optional[str] = Field(default=None, max_length=128)
    extended_days: int = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SubscriptionCreate(SQLModel):
    user_id: str
    plan_id: str
    plan_name: str
    price: float = 0.0
    currency: str = "ARS"
    status: SubscriptionStatus = SubscriptionStatus.active
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    created_by: Optional[str] = None
    extended_by: Optional[str] = None
    extended_days: int = 0


class SubscriptionPublic(SQLModel):
    id: UUID
    plan_id: str
    plan_name: str
    price: float
    status: SubscriptionStatus
    start_date: datetime
    end_date: Optional[datetime]
