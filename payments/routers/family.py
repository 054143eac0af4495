from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from payments.dependencies import get_family_manager
from payments.security import get_caller_id
from payments.services.family_manager import DEFAULT_MEMBER_TYPE, FamilyPlanManager

router = APIRouter(prefix="/family", tags=["family"])


class CreateFamilyResponse(BaseModel):
    success: bool
    id: str
    created: bool


class AddMemberRequest(BaseModel):
    memberUserId: str = Field(min_length=1)
    memberType: str = DEFAULT_MEMBER_TYPE


class MutationResponse(BaseModel):
    success: bool
    id: str


class FamilyMemberResponse(BaseModel):
    id: str
    member_user_id: str
    member_type: str
    added_at: int


class FamilyResponse(BaseModel):
    id: str
    parent_user_id: str
    max_members: int
    seats_left: int
    members: List[FamilyMemberResponse]


# the caller is always the parent; nobody acts on another parent's family


@router.post("", response_model=CreateFamilyResponse)
async def create_family_plan(
    caller_id: str = Depends(get_caller_id),
    manager: FamilyPlanManager = Depends(get_family_manager),
):
    plan_id, created = await manager.create_family_plan(caller_id)
    return CreateFamilyResponse(success=True, id=plan_id, created=created)


@router.get("", response_model=FamilyResponse)
async def get_family(
    caller_id: str = Depends(get_caller_id),
    manager: FamilyPlanManager = Depends(get_family_manager),
):
    family = await manager.get_family(caller_id)
    return FamilyResponse(
        id=family.plan.id,
        parent_user_id=family.plan.parent_user_id,
        max_members=family.plan.max_members,
        seats_left=family.seats_left,
        members=[
            FamilyMemberResponse(
                id=m.id,
                member_user_id=m.member_user_id,
                member_type=m.member_type,
                added_at=m.added_at,
            )
            for m in family.members
        ],
    )


@router.post("/members", response_model=MutationResponse)
async def add_family_member(
    body: AddMemberRequest,
    caller_id: str = Depends(get_caller_id),
    manager: FamilyPlanManager = Depends(get_family_manager),
):
    member_id = await manager.add_member(caller_id, body.memberUserId, body.memberType)
    return MutationResponse(success=True, id=member_id)


@router.delete("/members/{member_id}", response_model=MutationResponse)
async def remove_family_member(
    member_id: str,
    caller_id: str = Depends(get_caller_id),
    manager: FamilyPlanManager = Depends(get_family_manager),
):
    await manager.remove_member(caller_id, member_id)
    return MutationResponse(success=True, id=member_id)
