from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from autoevaluacion.infrastructure.config import get_settings
from autoevaluacion.infrastructure.exceptions import (
    AssessmentNotFoundError,
    AutoevaluacionError,
    BackendConnectionError,
    BackendResponseError,
    BusinessLogicError,
    InvalidResponseError,
    ResponseDecodeError,
    ValidationError,
    log_error_details,
)
from autoevaluacion.infrastructure.logging import get_logger
from autoevaluacion.web.routes import api, assessment, proxy

logger = get_logger(__name__)


def status_for(exc: AutoevaluacionError) -> int:
    if isinstance(exc, AssessmentNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (ValidationError, InvalidResponseError)):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, BusinessLogicError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, BackendConnectionError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, ResponseDecodeError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, BackendResponseError) and exc.status_code:
        return exc.status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_application() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app.title,
        version=settings.app.version,
        debug=settings.app.debug,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(proxy.router)
    app.include_router(assessment.router)
    app.include_router(api.router)

    @app.exception_handler(AutoevaluacionError)
    async def autoevaluacion_error_handler(request: Request, exc: AutoevaluacionError):
        code = status_for(exc)
        log = logger.error if code >= 500 else logger.info
        log(
            f"{request.method} {request.url.path} -> {code}",
            extra=log_error_details(exc, {"path": request.url.path}),
        )
        return JSONResponse(
            status_code=code,
            content={"message": exc.user_message, "detail": exc.details},
        )

    return app


app = create_application()
