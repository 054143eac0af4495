from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from payments.database import Base


def epoch_now() -> int:
    return int(time.time())


class Plan(str, Enum):
    free = "free"
    pro = "pro"
    enterprise = "enterprise"


class SubscriptionStatus(str, Enum):
    active = "active"
    canceled = "canceled"
    past_due = "past_due"
    trialing = "trialing"


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # one row per user: checkout upserts converge on it
    user_id: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(255), index=True, nullable=True)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    plan: Mapped[str] = mapped_column(String(32), nullable=False, default=Plan.free.value)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=SubscriptionStatus.active.value)
    current_period_end: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[int] = mapped_column(BigInteger, default=epoch_now, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, default=epoch_now, onupdate=epoch_now, nullable=False)
