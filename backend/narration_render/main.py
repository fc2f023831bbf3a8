import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from narration_render.api import render_jobs
from narration_render.config import Settings, get_settings
from narration_render.constants.error_codes import get_error_spec
from narration_render.exceptions import NarrationRenderError
from narration_render.models.database import get_engine, init_db
from narration_render.services.render_orchestrator import RenderJobOrchestrator

logger = logging.getLogger(__name__)


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    spec = get_error_spec(code)
    error: dict[str, object] = {
        "code": code,
        "message": message,
        "retryable": spec.get("retryable", False),
    }
    if "suggested_fix" in spec:
        error["suggested_fix"] = spec["suggested_fix"]
    return JSONResponse(status_code=status_code, content={"error": error})


def create_app(
    settings: Settings | None = None,
    orchestrator: RenderJobOrchestrator | None = None,
) -> FastAPI:
    """Build the API app.

    Without an ``orchestrator`` one is built from settings at startup.
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        Path(settings.render_output_dir).mkdir(parents=True, exist_ok=True)
        owns_database = False
        if app.state.orchestrator is None:
            if settings.job_store_backend == "database":
                await init_db()
                owns_database = True
            app.state.orchestrator = RenderJobOrchestrator.from_settings(settings)
        yield
        # Shutdown
        await app.state.orchestrator.supervisor.drain()
        if owns_database:
            await get_engine().dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NarrationRenderError)
    async def app_exception_handler(request: Request, exc: NarrationRenderError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        if errors:
            first_error = errors[0]
            loc = " -> ".join(str(x) for x in first_error.get("loc", []))
            msg = first_error.get("msg", "Validation error")
            message = f"{loc}: {msg}" if loc else msg
        else:
            message = "Request validation failed"
        return _error_response(422, "VALIDATION_ERROR", message)

    # Global exception handler to ensure errors return proper JSON
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception: %s", exc)
        return _error_response(500, "INTERNAL_ERROR", "Internal server error")

    # Routers
    app.include_router(render_jobs.router, tags=["render-jobs"])

    # Rendered videos
    app.mount(
        "/static/videos",
        StaticFiles(directory=settings.render_output_dir, check_dir=False),
        name="videos",
    )

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "version": settings.app_version}

    return app


app = create_app()
