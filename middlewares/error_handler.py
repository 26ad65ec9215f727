import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from schemas.common import ErrorDetail, ErrorResponse
from services.errors import (
    ConfigurationError,
    IdentityConflictError,
    RangeError,
    RecordNotFound,
    ResultsEngineError,
    StoreUnavailableError,
    TabularParseError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# most specific class first
_STATUS_BY_ERROR = (
    (RecordNotFound, 404),
    (ConfigurationError, 409),
    (ValidationError, 422),
    (RangeError, 422),
    (IdentityConflictError, 422),
    (TabularParseError, 400),
    (StoreUnavailableError, 503),
)


def _error_body(code: str, message: str, data=None) -> dict:
    return ErrorResponse(error=ErrorDetail(code=code, message=message), data=data).model_dump(mode="json")


def status_for(exc: ResultsEngineError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def add_error_handlers(app: FastAPI):
    # ✅ engine errors → code / status from the taxonomy
    @app.exception_handler(ResultsEngineError)
    async def engine_error_handler(request: Request, exc: ResultsEngineError):
        status = status_for(exc)
        data = None
        if isinstance(exc, StoreUnavailableError) and exc.summary is not None:
            data = exc.summary.to_response(len(exc.summary.issues))
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
        return JSONResponse(status_code=status, content=_error_body(exc.code, exc.message, data))

    # ✅ request body / query validation
    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        message = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
        )
        return JSONResponse(status_code=422, content=_error_body("REQUEST_VALIDATION_ERROR", message))

    # ✅ anything else
    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"{request.method} {request.url.path} crashed")
        return JSONResponse(status_code=500, content=_error_body("INTERNAL_ERROR", str(exc)))
