import time
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("access")

class LoggingMiddleware(BaseHTTPMiddleware):
    """Access log line per request, plus an X-Process-Time header"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        process_time = time.perf_counter() - start_time

        client = request.client.host if request.client else "unknown"
        message = (
            f"{request.method} {request.url.path} - "
            f"Status: {response.status_code} - "
            f"Client: {client} - "
            f"Time: {process_time:.4f}s"
        )
        if response.status_code >= 400:
            logger.warning(f"⚠️ {message}")
        else:
            logger.info(f"✅ {message}")

        response.headers["X-Process-Time"] = f"{process_time:.4f}"
        return response
