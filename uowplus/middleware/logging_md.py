import uuid
import time
from fastapi import Request
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from uowplus.config import settings
from uowplus.logging.logger import _current_request

class LoggingMiddleware(BaseHTTPMiddleware):
    """Tags every request with a trace id and logs its start, end and duration."""

    async def dispatch(self, request: Request, call_next):
        trace_id = request.headers.get(settings.TRACE_ID_HEADER) or uuid.uuid4().hex
        request.state.trace_id = trace_id
        token = _current_request.set(request)

        with logger.contextualize(trace_id=trace_id):
            start = time.perf_counter()
            logger.info(f"--> {request.method} {request.url.path}")

            try:
                response = await call_next(request)
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                logger.error(f"<-- {request.method} {request.url.path} failed: {e} ({elapsed:.2f}ms)")
                raise
            finally:
                _current_request.reset(token)

            elapsed = (time.perf_counter() - start) * 1000
            logger.info(f"<-- {request.method} {request.url.path} {response.status_code} ({elapsed:.2f}ms)")
            response.headers[settings.TRACE_ID_HEADER] = trace_id
            return response
