from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from docspace.apps.api.deps import CurrentUser, get_current_user, get_db
from docspace.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from docspace.apps.api.response import success_response
from docspace.persistence.repos import documents as documents_repo
from docspace.persistence.repos import queries as queries_repo
from docspace.persistence.repos import workspaces as workspaces_repo
from docspace.services.uploads import format_file_size


router = APIRouter(prefix="/dashboard", tags=["dashboard"], responses=DEFAULT_ERROR_RESPONSES)

RECENT_DOCUMENTS_LIMIT = 5


@router.get("/stats")
async def dashboard_stats(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Aggregates span every workspace the user belongs to.
    workspace_ids = await workspaces_repo.list_user_workspace_ids(db, user.id)
    storage_bytes = await documents_repo.storage_bytes(db, workspace_ids)
    recent = await documents_repo.list_recent_documents(db, workspace_ids, limit=RECENT_DOCUMENTS_LIMIT)
    return success_response(
        stats={
            "total_documents": await documents_repo.count_documents(db, workspace_ids),
            "total_queries": await queries_repo.count_in_workspaces(db, workspace_ids),
            "storage_used": storage_bytes,
            "storage_used_formatted": format_file_size(storage_bytes),
            "team_members": await workspaces_repo.count_unique_members(db, workspace_ids),
            "workspaces": len(workspace_ids),
        },
        recent_documents=[
            {
                "id": doc.id,
                "name": doc.name,
                "type": doc.type,
                "processing_status": doc.processing_status,
                "created_at": doc.created_at.isoformat(),
            }
            for doc in recent
        ],
    )


@router.get("/activities")
async def dashboard_activities(
    limit: int = Query(default=20, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    workspace_ids = await workspaces_repo.list_user_workspace_ids(db, user.id)
    uploads = await documents_repo.list_recent_documents(db, workspace_ids, limit=limit)
    queries = await queries_repo.list_recent_in_workspaces(db, workspace_ids, limit=limit)
    activities = [
        {
            "id": f"upload-{doc.id}",
            "type": "upload",
            "description": f"Uploaded {doc.name}",
            "document_id": doc.id,
            "user_id": doc.user_id,
            "timestamp": doc.created_at,
        }
        for doc in uploads
    ]
    activities.extend(
        {
            "id": f"query-{row.id}",
            "type": "query",
            "description": f"Asked about {document.name}: {row.query[:100]}",
            "document_id": document.id,
            "user_id": row.user_id,
            "timestamp": row.created_at,
        }
        for row, document in queries
    )
    # Merge both feeds newest first, then cap.
    activities.sort(key=lambda item: item["timestamp"], reverse=True)
    return success_response(
        activities=[{**item, "timestamp": item["timestamp"].isoformat()} for item in activities[:limit]]
    )
