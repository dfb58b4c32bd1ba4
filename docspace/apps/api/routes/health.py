from __future__ import annotations

from fastapi import APIRouter

from docspace.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from docspace.apps.api.response import success_response


router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


@router.get("/health")
async def health() -> dict:
    # Liveness only; no database or model round-trips.
    return success_response(status="ok")
