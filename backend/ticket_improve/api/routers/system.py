from __future__ import annotations

from fastapi import APIRouter

from ticket_improve.config import settings
from ticket_improve.version import APP_VERSION


router = APIRouter()


@router.get("/")
def root() -> dict[str, str]:
    return {"service": "ticket-improve", "status": "running"}


@router.get("/health")
def health() -> dict[str, object]:
    return {
        "status": "ok",
        "environment": settings.app_env,
        "version": APP_VERSION,
        "completion_configured": settings.completion_configured,
    }
