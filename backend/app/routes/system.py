from __future__ import annotations
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from app.config import settings
from app.db import get_session

router = APIRouter(tags=["system"])

@router.get("/health")
async def health(request: Request):
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "status": "ok",
        "env": settings.environment,
        "time": datetime.now(timezone.utc).isoformat(),
        "request_id": request.headers.get("x-request-id") or request.state.request_id,
        "scheduler": bool(scheduler and scheduler.running),
    }

@router.get("/health/db")
async def health_db(session: AsyncSession = Depends(get_session)):
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        return JSONResponse(status_code=503, content={"status": "unavailable", "error": type(e).__name__})
    return {"status": "ok"}

@router.get("/version")
async def version():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "git_sha": settings.git_sha,
        "scoring": {"wilson_z": settings.wilson_z, "super_vote_weight": settings.super_vote_weight},
    }
