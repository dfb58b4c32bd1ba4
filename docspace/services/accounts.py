from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from docspace.domain.models import User, Workspace
from docspace.persistence.repos import users as users_repo
from docspace.persistence.repos import workspaces as workspaces_repo
from docspace.services.auth.tokens import AuthClaims, default_display_name


logger = logging.getLogger(__name__)


@dataclass
class SignupResult:
    user: User
    workspace: Workspace
    created: bool


async def ensure_user(session: AsyncSession, claims: AuthClaims) -> User:
    # Provision users on first authenticated request; existing rows are left untouched.
    user = await users_repo.get_user(session, claims.subject)
    if user is not None:
        return user
    user = await users_repo.create_user(
        session,
        user_id=claims.subject,
        email=claims.email or f"{claims.subject}@users.invalid",
        name=default_display_name(claims),
        avatar_url=claims.avatar_url,
        provider=claims.provider or "email",
    )
    await session.flush()
    logger.info("user_provisioned user_id=%s", user.id)
    return user


async def complete_signup(session: AsyncSession, claims: AuthClaims) -> SignupResult:
    """Ensure the user row and a default workspace exist; safe to call repeatedly."""
    user = await ensure_user(session, claims)
    existing = await workspaces_repo.list_user_workspaces(session, user.id)
    if existing:
        return SignupResult(user=user, workspace=existing[0], created=False)
    workspace = await workspaces_repo.create_workspace(
        session,
        name=f"{user.name or 'User'}'s Workspace",
        owner_id=user.id,
    )
    logger.info("default_workspace_created user_id=%s workspace_id=%s", user.id, workspace.id)
    return SignupResult(user=user, workspace=workspace, created=True)
