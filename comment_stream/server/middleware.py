"""
MODULE OVERVIEW:
FastAPI middleware that measures request handling time.

WHAT IS HAPPENING HERE:
We add an `X-Process-Time-Ms` header so callers can see how long a comment post
took on the server, broadcast included. For the SSE endpoint the figure only
covers opening the stream, not its lifetime.
"""

import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from loguru import logger

STREAM_PATH_PREFIX = "/api/sse/"


class TimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()

        response = await call_next(request)

        process_time_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Process-Time-Ms"] = f"{process_time_ms:.2f}"

        # Stream opens are logged by the route itself
        if not request.url.path.startswith(STREAM_PATH_PREFIX):
            logger.debug(f"{request.method} {request.url.path} status={response.status_code} completed in {process_time_ms:.2f}ms")

        return response
