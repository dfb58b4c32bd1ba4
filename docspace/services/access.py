from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from docspace.core.errors import AccessDeniedError, NotFoundError
from docspace.domain.models import Document, Workspace, WorkspaceMember
from docspace.persistence.repos import documents as documents_repo
from docspace.persistence.repos import workspaces as workspaces_repo


# Roles allowed to change or delete documents they do not own.
DOCUMENT_EDITOR_ROLES = frozenset({"admin", "editor"})


async def can_access_document(session: AsyncSession, document: Document, user_id: str) -> bool:
    if document.user_id == user_id:
        return True
    member = await workspaces_repo.get_membership(session, document.workspace_id, user_id)
    return member is not None


async def can_modify_document(session: AsyncSession, document: Document, user_id: str) -> bool:
    if document.user_id == user_id:
        return True
    member = await workspaces_repo.get_membership(session, document.workspace_id, user_id)
    return member is not None and member.role in DOCUMENT_EDITOR_ROLES


async def require_document(
    session: AsyncSession,
    document_id: str,
    user_id: str,
    *,
    modify: bool = False,
) -> Document:
    """Load a document the user may read (or modify); 404 before 403."""
    document = await documents_repo.get_document(session, document_id)
    if document is None:
        raise NotFoundError("Document not found")
    allowed = (
        await can_modify_document(session, document, user_id)
        if modify
        else await can_access_document(session, document, user_id)
    )
    if not allowed:
        if modify:
            raise AccessDeniedError("You do not have permission to modify this document")
        raise AccessDeniedError("Access denied. You do not have permission to access this document.")
    return document


async def require_workspace_member(
    session: AsyncSession,
    workspace_id: str,
    user_id: str,
    *,
    roles: frozenset[str] | None = None,
) -> tuple[Workspace, WorkspaceMember | None]:
    workspace = await workspaces_repo.get_workspace(session, workspace_id)
    if workspace is None:
        raise NotFoundError("Workspace not found")
    member = await workspaces_repo.get_membership(session, workspace_id, user_id)
    is_owner = workspace.owner_id == user_id
    if member is None and not is_owner:
        raise AccessDeniedError("You do not have access to this workspace")
    if roles is not None and not is_owner and (member is None or member.role not in roles):
        raise AccessDeniedError("Your workspace role does not allow this action")
    return workspace, member
