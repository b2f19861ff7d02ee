from __future__ import annotations

from fastapi import APIRouter

from ..settings import settings

router = APIRouter()


@router.get("/", tags=["health"])
def health():
    return {
        "message": "CampusConnect Opportunity Lifecycle API",
        "version": "1.0.0",
        "status": "running",
        "port": settings.port,
        "environment": settings.normalized_environment,
        "dynamodb": "configured" if settings.ddb_table_name else "missing",
        "video": "configured" if settings.video_configured else "missing",
    }
