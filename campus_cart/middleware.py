"""
Request logging middleware and logging setup.
"""
import hashlib
import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from campus_cart.config import Config

logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def hash_identifier(identifier: str) -> str:
    """Hash identifier for logging (no PII)"""
    return hashlib.sha256(identifier.encode()).hexdigest()[:8]


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Logs each request with status and latency; user ids appear only hashed"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()

        user_id = request.headers.get(Config.USER_HEADER)
        context = {
            "method": request.method,
            "path": request.url.path,
            "hashed_user_id": hash_identifier(user_id) if user_id else None,
        }
        label = f"{request.method} {request.url.path}"

        logger.debug(
            f"Request: {label}",
            extra=dict(context, remote_addr=request.client.host if request.client else None)
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Error: {label}",
                extra=dict(context, error=str(e), error_type=type(e).__name__),
                exc_info=True
            )
            raise

        latency_ms = (time.perf_counter() - started) * 1000
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            f"Response: {label} {response.status_code} in {latency_ms:.1f}ms",
            extra=dict(context, status_code=response.status_code, latency_ms=round(latency_ms, 2))
        )

        response.headers["X-Response-Time-Ms"] = f"{latency_ms:.2f}"
        return response
