from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payments.exceptions import CapacityError, ConflictError, NotFoundError, StorageError
from payments.models import FamilyMember, FamilyPlan, epoch_now
from payments.services.records import FamilyMemberRecord, FamilyPlanRecord

logger = logging.getLogger(__name__)

_INSERT_FAMILY_PLAN = text(
    """
    INSERT INTO family_plans (id, subscription_id, parent_user_id, max_members, created_at)
    VALUES (:id, :subscription_id, :parent_user_id, :max_members, :now)
    ON CONFLICT (parent_user_id) DO NOTHING
    """
)


class FamilyStore:
    """Family plans and their member links. Links are soft-deleted via ``removed_at``."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def plan_for_parent(self, parent_user_id: str) -> Optional[FamilyPlanRecord]:
        row = await self._first(
            select(FamilyPlan).where(FamilyPlan.parent_user_id == parent_user_id),
            op="plan_for_parent",
        )
        return FamilyPlanRecord.from_row(row) if row is not None else None

    async def create_plan(
        self,
        parent_user_id: str,
        subscription_id: str,
        max_members: int,
    ) -> tuple[FamilyPlanRecord, bool]:
        """Insert a plan for the parent unless one exists.

        Returns the parent's plan and whether this call created it.
        """
        plan_id = str(uuid.uuid4())
        params = {
            "id": plan_id,
            "subscription_id": subscription_id,
            "parent_user_id": parent_user_id,
            "max_members": max_members,
            "now": epoch_now(),
        }
        try:
            await self.db.execute(_INSERT_FAMILY_PLAN, params)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.exception("family store create_plan failed")
            raise StorageError("family store create_plan failed") from exc

        plan = await self.plan_for_parent(parent_user_id)
        if plan is None:
            raise StorageError(f"family plan for {parent_user_id} missing after insert")
        return plan, plan.id == plan_id

    async def count_active_members(self, parent_user_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(FamilyMember)
            .where(FamilyMember.parent_user_id == parent_user_id, FamilyMember.active_clause())
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("family store count_active_members failed")
            raise StorageError("family store count_active_members failed") from exc
        return int(result.scalar_one())

    async def active_membership_for(self, member_user_id: str) -> Optional[FamilyMemberRecord]:
        row = await self._first(
            select(FamilyMember)
            .where(FamilyMember.member_user_id == member_user_id, FamilyMember.active_clause())
            .order_by(FamilyMember.added_at.desc()),
            op="active_membership_for",
        )
        return FamilyMemberRecord.from_row(row) if row is not None else None

    async def active_members(self, parent_user_id: str) -> list[FamilyMemberRecord]:
        stmt = (
            select(FamilyMember)
            .where(FamilyMember.parent_user_id == parent_user_id, FamilyMember.active_clause())
            .order_by(FamilyMember.added_at)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("family store active_members failed")
            raise StorageError("family store active_members failed") from exc
        return [FamilyMemberRecord.from_row(row) for row in result.scalars().all()]

    async def get_member(self, member_id: str) -> Optional[FamilyMemberRecord]:
        """Any member link, removed or not."""
        row = await self._first(select(FamilyMember).where(FamilyMember.id == member_id), op="get_member")
        return FamilyMemberRecord.from_row(row) if row is not None else None

    async def add_member(
        self,
        plan: FamilyPlanRecord,
        member_user_id: str,
        member_type: str = "child",
    ) -> FamilyMemberRecord:
        """Insert a link if the plan still has a free seat.

        The plan row is locked (FOR UPDATE) while counting so concurrent adds
        to one family cannot overshoot ``max_members``.
        """
        try:
            locked = await self.db.execute(
                select(FamilyPlan.max_members).where(FamilyPlan.id == plan.id).with_for_update()
            )
            max_members = locked.scalar_one_or_none()
            active = await self.db.execute(
                select(func.count())
                .select_from(FamilyMember)
                .where(FamilyMember.parent_user_id == plan.parent_user_id, FamilyMember.active_clause())
            )
            active_count = int(active.scalar_one())
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.exception("family store add_member seat check failed")
            raise StorageError("family store add_member failed") from exc

        if max_members is None:
            await self.db.rollback()
            raise NotFoundError("No family plan found")
        if active_count >= max_members:
            await self.db.rollback()
            raise CapacityError(f"Family plan is full ({max_members} members)")

        member = FamilyMember(
            id=str(uuid.uuid4()),
            subscription_id=plan.subscription_id,
            parent_user_id=plan.parent_user_id,
            member_user_id=member_user_id,
            member_type=member_type,
            added_at=epoch_now(),
        )
        self.db.add(member)
        try:
            await self.db.commit()
        except IntegrityError as exc:
            # partial unique index on active member_user_id lost a race
            await self.db.rollback()
            raise ConflictError(f"user {member_user_id} already belongs to a family plan") from exc
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.exception("family store add_member failed")
            raise StorageError("family store add_member failed") from exc
        return FamilyMemberRecord.from_row(member)

    async def mark_removed(self, parent_user_id: str, member_id: str) -> int:
        """Soft-delete an active link owned by the parent. Returns rows touched."""
        stmt = (
            update(FamilyMember)
            .where(
                FamilyMember.id == member_id,
                FamilyMember.parent_user_id == parent_user_id,
                FamilyMember.active_clause(),
            )
            .values(removed_at=epoch_now())
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.exception("family store mark_removed failed")
            raise StorageError("family store mark_removed failed") from exc
        return result.rowcount or 0

    async def _first(self, stmt, *, op: str):
        stmt = stmt.execution_options(populate_existing=True)
        try:
            result = await self.db.execute(stmt)
            return result.scalars().first()
        except SQLAlchemyError as exc:
            logger.exception("family store %s failed", op)
            raise StorageError(f"family store {op} failed") from exc
