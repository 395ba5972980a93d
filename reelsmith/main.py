import logging
import shutil
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from reelsmith.api import export, storage
from reelsmith.api.websocket import progress_notifier
from reelsmith.config import get_settings
from reelsmith.exceptions import ReelsmithError
from reelsmith.render.job_engine import JobEngine

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    engine = getattr(app.state, "engine", None) or JobEngine(settings=settings)
    engine.add_listener(progress_notifier)
    engine.start()
    app.state.engine = engine
    logger.info(f"[APP] {settings.app_name} {settings.app_version} started ({settings.environment})")
    yield
    # Shutdown
    await engine.stop()
    engine.remove_listener(progress_notifier)


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_body(code: str, error_type: str, message: str) -> dict[str, Any]:
    return {"error": {"code": code, "type": error_type, "message": message}}


@app.exception_handler(ReelsmithError)
async def reelsmith_exception_handler(request: Request, exc: ReelsmithError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors with the common error envelope."""
    errors = exc.errors()
    if errors:
        first_error = errors[0]
        loc = " -> ".join(str(x) for x in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")
        message = f"{loc}: {msg}" if loc else msg
    else:
        message = "Request validation failed"
    return JSONResponse(
        status_code=400,
        content=_error_body("VALIDATION_ERROR", "ValidationError", message),
    )


# Global exception handler to ensure errors return proper JSON
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content=_error_body("INTERNAL_ERROR", "InternalError", "Internal server error"),
    )


# Routers
app.include_router(export.router, prefix="/api", tags=["exports"])
app.include_router(storage.router, tags=["storage"])


@app.get("/health")
async def health_check(request: Request) -> dict[str, Any]:
    engine: JobEngine | None = getattr(request.app.state, "engine", None)
    return {
        "status": "healthy",
        "version": settings.app_version,
        "ffmpeg": "available" if shutil.which(settings.ffmpeg_path) else "unavailable",
        "activeJobs": engine.active_jobs if engine else 0,
        "queuedJobs": engine.queued_jobs if engine else 0,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("reelsmith.main:app", host="0.0.0.0", port=8000)
