from __future__ import annotations
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from esave.config import settings
from esave.engine import Engine
from esave.logging_setup import configure_logging
from esave.routes.system import router as system_router
from esave.routes.challenges import router as challenges_router
from esave.routes.savings import router as savings_router
from esave.routes.rewards import router as rewards_router
import structlog

configure_logging()
log = structlog.get_logger()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log.info("startup", env=settings.environment, version=settings.app_version, git_sha=settings.git_sha,
             authority=settings.authority_principal, height=app.state.engine.height)
    yield
    # Shutdown
    log.info("shutdown")

def create_app(engine: Engine | None = None) -> FastAPI:
    app = FastAPI(
        title=f"{settings.app_display_name} API",
        version=settings.app_version,
        lifespan=lifespan,
        description=f"{settings.app_display_name} API for energy-savings challenges and reward pools",
    )
    app.state.engine = engine or Engine.from_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.environment == "dev" else settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(system_router)
    app.include_router(challenges_router)
    app.include_router(savings_router)
    app.include_router(rewards_router)

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        rid = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = rid
        structlog.contextvars.bind_contextvars(request_id=rid)
        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        structlog.contextvars.clear_contextvars()
        return response

    return app

app = create_app()
