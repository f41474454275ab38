from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from uowplus.logging.logger import get_logger
from uowplus.response import ResponseModel
from typing import Any
from uowplus.config import settings
from .errors import InvalidOperation, RepositoryError, TransactionError

logger = get_logger("exception_handler")

# (error type, HTTP status, envelope code, public message or None for str(exc), log level)
DATA_ACCESS_ERRORS = [
    (InvalidOperation, status.HTTP_400_BAD_REQUEST, 400, None, "ERROR"),
    (TransactionError, status.HTTP_409_CONFLICT, 409, "Changes could not be saved", "ERROR"),
    (RepositoryError, status.HTTP_500_INTERNAL_SERVER_ERROR, 500, "Service temporarily unavailable", "CRITICAL"),
]

class BusinessException(Exception):
    """Base class for business exceptions."""
    def __init__(self, message: str, status_code: int = 200, code: int = 400, detail: Any = None):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.detail = detail

def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    trace_id = getattr(request.state, "trace_id", "unknown")
    
    if isinstance(exc, BusinessException):
        logger.warning(f"Trace[{trace_id}] - BusinessError: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content=ResponseModel.fail(code=exc.code, message=exc.message, data=exc.detail)
        )

    if isinstance(exc, RequestValidationError):
        logger.error(f"Trace[{trace_id}] - ValidationError: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=ResponseModel.fail(code=422, message="Invalid request parameters", data=exc.errors())
        )

    for error_type, status_code, code, message, level in DATA_ACCESS_ERRORS:
        if isinstance(exc, error_type):
            logger.log(level, f"Trace[{trace_id}] - {error_type.__name__}: {str(exc)}")
            return JSONResponse(
                status_code=status_code,
                content=ResponseModel.fail(code=code, message=message or str(exc))
            )

    logger.opt(exception=True).error(f"Trace[{trace_id}] - UncaughtException: {str(exc)}")
    
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ResponseModel.fail(
            code=500, 
            message="System busy, please try again later",
            data={"trace_id": trace_id} if settings.DEBUG else None
        )
    )
