import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clipforge.api import exports
from clipforge.config import get_settings
from clipforge.constants.error_codes import get_error_spec
from clipforge.exceptions import ExportError
from clipforge.schemas.envelope import ErrorInfo, ErrorResponse
from clipforge.services.export_manager import get_export_manager
from clipforge.utils.media_info import check_ffmpeg_availability

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    if not await asyncio.to_thread(check_ffmpeg_availability):
        logger.warning("[STARTUP] ffmpeg/ffprobe not available; exports will fail")
    yield
    # Shutdown
    await get_export_manager().shutdown()


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


def _http_error_code(status_code: int) -> str:
    mapping = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        500: "INTERNAL_ERROR",
    }
    return mapping.get(status_code, "HTTP_ERROR")


def _error_response(status_code: int, error: ErrorInfo) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(ErrorResponse(error=error).model_dump(exclude_none=True)),
    )


@app.exception_handler(ExportError)
async def export_exception_handler(request: Request, exc: ExportError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[API] {request.url.path}: [{exc.code}] {exc.message}")
    return _error_response(exc.status_code, exc.to_error_info())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Request body validation errors (422)."""
    spec = get_error_spec("VALIDATION_ERROR")

    # Build a human-readable message from validation errors
    errors = exc.errors()
    if errors:
        first_error = errors[0]
        loc = " -> ".join(str(x) for x in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")
        message = f"{loc}: {msg}" if loc else msg
    else:
        message = "Request validation failed"

    error = ErrorInfo(
        code="VALIDATION_ERROR",
        message=message,
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _error_response(422, error)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    error_code = _http_error_code(exc.status_code)
    spec = get_error_spec(error_code)
    error = ErrorInfo(
        code=error_code,
        message=str(exc.detail),
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _error_response(exc.status_code, error)


# Global exception handler to ensure errors return proper JSON
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    spec = get_error_spec("INTERNAL_ERROR")
    error = ErrorInfo(
        code="INTERNAL_ERROR",
        message="Internal server error",
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _error_response(500, error)


# Routers
app.include_router(exports.router, prefix="/api", tags=["exports"])


@app.get("/health")
async def health_check() -> dict[str, Any]:
    return {
        "status": "healthy",
        "version": settings.app_version,
        "git_hash": settings.git_hash,
        "ffmpeg": await asyncio.to_thread(check_ffmpeg_availability),
    }


@app.get("/api/version")
async def get_version() -> dict[str, str]:
    """Return the backend version info."""
    return {"version": settings.app_version, "git_hash": settings.git_hash}
