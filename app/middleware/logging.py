"""Logging middleware for request tracking and structured logging."""

import json
import logging
import sys
import time
import uuid
from typing import Any, Awaitable, Callable, Dict

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

# Response headers copied into the request log line
LOGGED_HEADERS = {
    "X-Generation-Stage": "generation_stage",
    "X-Failure-Kind": "failure_kind",
    "X-Model-Backend": "model_backend",
}


def configure_logging(level: str = "INFO") -> None:
    """Send log records to stdout; request logs are already JSON encoded."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        stream=sys.stdout,
        force=True,
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs one JSON line per request.

    Includes the request ID, method, path, status, processing time and client
    IP, plus the generation stage and activity count for generation calls.
    Never logs request bodies, uploaded document text or API keys.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        # Set by RequestIDMiddleware when it runs first
        request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()

        log_data: Dict[str, Any] = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "user_ip": request.client.host if request.client else "unknown",
        }

        try:
            response = await call_next(request)
        except Exception as e:
            processing_time_ms = (time.time() - start_time) * 1000
            error_log = {
                **log_data,
                "status_code": 500,
                "processing_time_ms": round(processing_time_ms, 2),
                "error": str(e),
                "error_type": type(e).__name__,
                "message": f"Request failed: {request.method} {request.url.path}",
            }
            logger.error(json.dumps(error_log), exc_info=True)
            raise

        processing_time_ms = (time.time() - start_time) * 1000
        log_data.update({
            "status_code": response.status_code,
            "processing_time_ms": round(processing_time_ms, 2),
        })

        for header, key in LOGGED_HEADERS.items():
            if header in response.headers:
                log_data[key] = response.headers[header]

        if "X-Activity-Count" in response.headers:
            try:
                log_data["activity_count"] = int(response.headers["X-Activity-Count"])
            except ValueError:
                log_data["activity_count"] = response.headers["X-Activity-Count"]

        logger.info(json.dumps(log_data))

        response.headers["X-Request-ID"] = request_id
        return response


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")
