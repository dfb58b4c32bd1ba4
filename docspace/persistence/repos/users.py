from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docspace.domain.models import User


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def create_user(
    session: AsyncSession,
    *,
    user_id: str,
    email: str,
    name: str | None,
    avatar_url: str | None = None,
    provider: str | None = None,
) -> User:
    user = User(
        id=user_id,
        email=email.lower(),
        name=name,
        avatar_url=avatar_url,
        provider=provider,
        usage_tier="free",
    )
    session.add(user)
    return user


async def update_profile(
    session: AsyncSession,
    user: User,
    *,
    name: str | None = None,
    avatar_url: str | None = None,
) -> User:
    # Only overwrite fields the caller actually supplied.
    if name is not None:
        user.name = name
    if avatar_url is not None:
        user.avatar_url = avatar_url
    await session.flush()
    return user
