from __future__ import annotations
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer
from app.config import settings
from app.errors import EngineError
from app.jobs.scheduler import default_scheduler
from app.logging_setup import configure_logging
from app.routes.system import router as system_router
from app.routes.voting import router as voting_router
from app.routes.boosts import router as boosts_router
from app.routes.leaderboards import router as leaderboards_router
import structlog

configure_logging()
log = structlog.get_logger()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log.info("startup", env=settings.environment, version=settings.app_version, git_sha=settings.git_sha)
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = default_scheduler()
        scheduler.start()
    app.state.scheduler = scheduler
    yield
    # Shutdown
    if scheduler is not None:
        await scheduler.stop()
    log.info("shutdown")

app = FastAPI(
    title=f"{settings.app_display_name} Ranking API",
    version=settings.app_version,
    lifespan=lifespan,
    description=f"{settings.app_display_name} vote queues, voting, boosts and leaderboards"
)

# Add security scheme for Swagger UI
security = HTTPBearer()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment == "dev" else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(system_router)
app.include_router(voting_router)
app.include_router(boosts_router)
app.include_router(leaderboards_router)

@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    log.info("engine_error", code=exc.code, status=exc.status_code, path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content={"code": exc.code, "detail": exc.detail})

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    structlog.contextvars.bind_contextvars(request_id=rid)
    response: Response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    structlog.contextvars.clear_contextvars()
    return response
