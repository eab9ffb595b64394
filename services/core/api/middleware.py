"""
API Middleware Module
CORS, request logging and domain error mapping
"""
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from config import ALLOWED_ORIGINS
from exceptions import BaseForgeException, status_for
from logging_config import (
    bind_request_context,
    clear_request_context,
    get_logger,
    http_request_summary,
    log_error,
)

logger = get_logger(__name__)


def add_cors_middleware(app: FastAPI) -> None:
    """CORS limited to ALLOWED_ORIGINS"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Owner-Id", "X-Request-Id"],
        expose_headers=["X-Process-Time", "X-Request-Id"]
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Binds request id and owner to every log line, then logs the summary"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
        bind_request_context(request_id=request_id, owner=request.headers.get("X-Owner-Id"))
        start_time = time.time()

        try:
            response = await call_next(request)

            process_time = time.time() - start_time
            http_request_summary(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(process_time * 1000, 2)
            )
        finally:
            clear_request_context()

        response.headers["X-Process-Time"] = str(process_time)
        response.headers["X-Request-Id"] = request_id
        return response


def register_exception_handlers(app: FastAPI) -> None:
    """Domain exceptions -> structured JSON with the mapped status code"""

    @app.exception_handler(BaseForgeException)
    async def forge_exception_handler(request: Request, exc: BaseForgeException):
        status_code = status_for(exc)
        if status_code >= 500:
            log_error(exc, {"path": request.url.path}, "WARNING")
        else:
            logger.info("request_rejected", path=request.url.path, code=type(exc).__name__, status=status_code)
        return JSONResponse(status_code=status_code, content=exc.to_dict())
