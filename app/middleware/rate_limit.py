"""Rate limiting using slowapi for abuse prevention."""

import json
from typing import Any, Callable

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address


def get_client_ip(request: Request) -> str:
    """
    Get the client IP address from the request.

    Only trusts X-Forwarded-For from configured trusted proxies to prevent
    IP spoofing.
    """
    from app.config import get_settings

    direct_ip: str = get_remote_address(request)

    trusted_proxy_list = get_settings().trusted_proxy_list
    if not trusted_proxy_list:
        return direct_ip

    if direct_ip in trusted_proxy_list:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

    return direct_ip


# In-memory limiter keyed by client IP
limiter = Limiter(key_func=get_client_ip, default_limits=["200/minute"])


RATE_LIMITS = {
    "generate": "10/minute",   # POST /api/activities/generate - model call per request
    "upload": "30/minute",     # POST /api/documents - parsing on upload
    "reads": "100/minute",     # GET listings and exports
}

DEFAULT_RETRY_AFTER = 60


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """
    Return 429 with Retry-After, X-RateLimit-Limit and X-RateLimit-Remaining.
    """
    retry_after = getattr(exc, "retry_after", DEFAULT_RETRY_AFTER)

    error_body = {
        "detail": "Rate limit exceeded",
        "message": (
            f"Limite de requisições atingido. Por favor, aguarde {retry_after} "
            "segundos antes de tentar novamente."
        ),
        "retry_after": retry_after,
    }

    response = Response(
        content=json.dumps(error_body, ensure_ascii=False),
        status_code=429,
        media_type="application/json",
    )
    response.headers["Retry-After"] = str(retry_after)
    response.headers["X-RateLimit-Remaining"] = "0"
    if getattr(exc, "detail", None):
        response.headers["X-RateLimit-Limit"] = str(exc.detail)

    return response


def get_limiter() -> Limiter:
    return limiter

