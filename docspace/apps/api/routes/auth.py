from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from docspace.apps.api.deps import get_auth_claims, get_db
from docspace.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from docspace.apps.api.response import success_response
from docspace.apps.api.routes.users import _to_response as user_to_response
from docspace.apps.api.routes.workspaces import _to_response as workspace_to_response
from docspace.services.accounts import complete_signup
from docspace.services.auth.tokens import AuthClaims


router = APIRouter(prefix="/auth", tags=["auth"], responses=DEFAULT_ERROR_RESPONSES)


@router.post("/signup-complete")
async def signup_complete(
    claims: AuthClaims = Depends(get_auth_claims),
    db: AsyncSession = Depends(get_db),
) -> dict:
    # Idempotent: a second call returns the existing default workspace.
    result = await complete_signup(db, claims)
    await db.commit()
    return success_response(
        user=user_to_response(result.user),
        workspace=workspace_to_response(result.workspace),
        created=result.created,
    )
