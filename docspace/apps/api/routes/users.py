from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from docspace.apps.api.deps import CurrentUser, get_current_user, get_db
from docspace.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from docspace.apps.api.response import success_response
from docspace.domain.models import User
from docspace.persistence.repos import users as users_repo
from docspace.persistence.repos import workspaces as workspaces_repo


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/user", tags=["user"], responses=DEFAULT_ERROR_RESPONSES)


class UserResponse(BaseModel):
    id: str
    email: str
    name: str | None
    avatar_url: str | None
    provider: str | None
    usage_tier: str
    created_at: str


class ProfileUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    avatar_url: str | None = Field(default=None, max_length=2048)

    model_config = {"extra": "forbid"}


def _to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        avatar_url=user.avatar_url,
        provider=user.provider,
        usage_tier=user.usage_tier,
        created_at=user.created_at.isoformat(),
    )


async def _load_user(db: AsyncSession, user_id: str) -> User:
    user = await users_repo.get_user(db, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "User not found"})
    return user


@router.get("/me")
async def me(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await _load_user(db, user.id)
    return success_response(user=_to_response(row))


@router.get("/profile")
async def get_profile(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await _load_user(db, user.id)
    workspaces = await workspaces_repo.list_user_workspaces(db, user.id)
    return success_response(
        user=_to_response(row),
        workspaces=[{"id": ws.id, "name": ws.name, "owner_id": ws.owner_id} for ws in workspaces],
    )


@router.patch("/profile")
async def update_profile(
    payload: ProfileUpdateRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await _load_user(db, user.id)
    await users_repo.update_profile(db, row, name=payload.name, avatar_url=payload.avatar_url)
    await db.commit()
    await db.refresh(row)
    logger.info("profile_updated user_id=%s", user.id)
    return success_response(user=_to_response(row))
