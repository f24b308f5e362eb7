import asyncio
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.api.auth import router as auth_router
from app.api.jobs import router as jobs_router
from app.api.tasks import router as tasks_router
from app.core.config import Settings, get_settings
from app.core.container import ServiceContainer, build_services
from app.core.errors import install_error_handlers
from app.core.logging import configure_logging
from app.schemas.health import HealthResponse
from app.workers.sweeper import AuthorizationExpirySweeper


def create_app(settings: Settings | None = None, services: ServiceContainer | None = None) -> FastAPI:
    settings = settings or (services.settings if services else get_settings())
    configure_logging(settings.log_level)

    app = FastAPI(title="Storefront Provisioning Orchestrator", version="0.1.0")
    app.state.services = services or build_services(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    app.include_router(jobs_router)
    app.include_router(auth_router)
    app.include_router(tasks_router)

    sweeper: AuthorizationExpirySweeper | None = None
    sweeper_task: asyncio.Task | None = None

    @app.on_event("startup")
    async def startup_event() -> None:
        nonlocal sweeper, sweeper_task
        if settings.auth_expiry_hours > 0:
            sweeper = AuthorizationExpirySweeper(
                app.state.services.jobs,
                max_age=timedelta(hours=settings.auth_expiry_hours),
                interval_seconds=settings.auth_expiry_sweep_seconds,
            )
            sweeper_task = asyncio.create_task(sweeper.start())

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        if sweeper:
            sweeper.stop()
        if sweeper_task:
            sweeper_task.cancel()
        app.state.services.shutdown()

    @app.get("/healthz", response_model=HealthResponse)
    def healthz() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
