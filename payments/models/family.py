from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import BigInteger, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql.elements import ColumnElement

from payments.database import Base
from payments.models.subscription import epoch_now


class FamilyPlan(Base):
    __tablename__ = "family_plans"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    subscription_id: Mapped[str] = mapped_column(String(36), ForeignKey("subscriptions.id"), nullable=False)
    parent_user_id: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    # fixed at creation; not adjusted when the parent changes tier
    max_members: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, default=epoch_now, nullable=False)


class FamilyMember(Base):
    __tablename__ = "family_members"
    __table_args__ = (
        # a user holds at most one live membership system-wide
        Index(
            "uq_family_members_active_member",
            "member_user_id",
            unique=True,
            sqlite_where=text("removed_at IS NULL"),
            postgresql_where=text("removed_at IS NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    subscription_id: Mapped[str] = mapped_column(String(36), ForeignKey("subscriptions.id"), nullable=False)
    parent_user_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    member_user_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    member_type: Mapped[str] = mapped_column(String(64), nullable=False, default="child")
    added_at: Mapped[int] = mapped_column(BigInteger, default=epoch_now, nullable=False)
    removed_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    @classmethod
    def active_clause(cls) -> ColumnElement[bool]:
        """Links that have not been removed."""
        return cls.removed_at.is_(None)
