from __future__ import annotations

from uuid import uuid4

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from docspace.domain.models import Document, User, Workspace, WorkspaceMember


WORKSPACE_ROLES = ("admin", "editor", "viewer")


async def create_workspace(session: AsyncSession, *, name: str, owner_id: str) -> Workspace:
    # The owner always joins as admin so membership checks cover them.
    workspace = Workspace(id=str(uuid4()), name=name, owner_id=owner_id)
    session.add(workspace)
    await session.flush()
    session.add(
        WorkspaceMember(
            id=str(uuid4()),
            workspace_id=workspace.id,
            user_id=owner_id,
            role="admin",
        )
    )
    await session.flush()
    return workspace


async def get_workspace(session: AsyncSession, workspace_id: str) -> Workspace | None:
    result = await session.execute(select(Workspace).where(Workspace.id == workspace_id))
    return result.scalar_one_or_none()


async def get_membership(
    session: AsyncSession, workspace_id: str, user_id: str
) -> WorkspaceMember | None:
    result = await session.execute(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def add_member(
    session: AsyncSession, *, workspace_id: str, user_id: str, role: str
) -> WorkspaceMember:
    if role not in WORKSPACE_ROLES:
        raise ValueError(f"Unknown workspace role: {role}")
    member = WorkspaceMember(
        id=str(uuid4()),
        workspace_id=workspace_id,
        user_id=user_id,
        role=role,
    )
    session.add(member)
    await session.flush()
    return member


async def list_user_workspaces(session: AsyncSession, user_id: str) -> list[Workspace]:
    # Owned workspaces and those joined through membership.
    stmt = (
        select(Workspace)
        .outerjoin(WorkspaceMember, WorkspaceMember.workspace_id == Workspace.id)
        .where(or_(Workspace.owner_id == user_id, WorkspaceMember.user_id == user_id))
        .distinct()
        .order_by(Workspace.created_at)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_user_workspace_ids(session: AsyncSession, user_id: str) -> list[str]:
    return [workspace.id for workspace in await list_user_workspaces(session, user_id)]


async def list_members(session: AsyncSession, workspace_id: str) -> list[tuple[WorkspaceMember, User]]:
    result = await session.execute(
        select(WorkspaceMember, User)
        .join(User, User.id == WorkspaceMember.user_id)
        .where(WorkspaceMember.workspace_id == workspace_id)
        .order_by(WorkspaceMember.joined_at)
    )
    return [(member, user) for member, user in result.all()]


async def count_unique_members(session: AsyncSession, workspace_ids: list[str]) -> int:
    if not workspace_ids:
        return 0
    result = await session.execute(
        select(func.count(func.distinct(WorkspaceMember.user_id))).where(
            WorkspaceMember.workspace_id.in_(workspace_ids)
        )
    )
    return int(result.scalar() or 0)


async def count_documents(session: AsyncSession, workspace_id: str) -> int:
    result = await session.execute(
        select(func.count()).select_from(Document).where(Document.workspace_id == workspace_id)
    )
    return int(result.scalar() or 0)
