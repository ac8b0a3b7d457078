"""
Custom exception classes.

Every request-time failure is a GatewayError subclass carrying its HTTP
status and wire ``type``; ``error_response`` renders the shared envelope
``{"error": {"type", "message", "details"?, "stack"?}}``.
"""

import json
import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("funcgate.exceptions")


class DefinitionError(Exception):
    """Raised at load time when a function file can not be turned into a definition."""

    def __init__(self, message: str, source_path: Optional[str] = None):
        self.source_path = source_path
        if source_path:
            message = f"Function definition error ({source_path})\n{message}"
        super().__init__(message)


class GatewayError(Exception):
    """Base exception class for request-time gateway errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type: str = "ServerError"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        stack: Optional[str] = None,
    ):
        self.message = message
        self.details = details
        self.stack = stack
        super().__init__(message)

    def to_envelope(self, include_stack: bool = True) -> Dict[str, Any]:
        error: Dict[str, Any] = {"type": self.error_type, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        if self.stack and include_stack:
            error["stack"] = self.stack
        return {"error": error}


# ===========================================
# Routing
# ===========================================


class NotFoundError(GatewayError):
    status_code = status.HTTP_404_NOT_FOUND
    error_type = "NotFoundError"


class MethodNotImplementedError(GatewayError):
    status_code = status.HTTP_501_NOT_IMPLEMENTED
    error_type = "NotImplementedError"


class ClientError(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "ClientError"

    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST):
        self.status_code = status_code
        super().__init__(message)


class OriginError(GatewayError):
    status_code = status.HTTP_403_FORBIDDEN
    error_type = "OriginError"

    def __init__(self, origin: str):
        self.origin = origin
        super().__init__(f'Provided origin "{origin}" can not access this resource')


# ===========================================
# Parameters & execution modes
# ===========================================


class ParameterParseError(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "ParameterParseError"


class ParameterError(GatewayError):
    """One or more parameters failed validation; ``details`` is keyed by name."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "ParameterError"

    def __init__(self, details: Dict[str, Any]):
        fields = list(details.keys())
        if len(fields) == 1:
            message = f'Invalid parameter "{fields[0]}": {details[fields[0]]["message"]}'
        else:
            joined = '", "'.join(fields)
            message = f'Invalid parameters "{joined}", see details for more information'
        super().__init__(message, details=details)


class ExecutionModeError(GatewayError):
    status_code = status.HTTP_403_FORBIDDEN
    error_type = "ExecutionModeError"

    def __init__(self, mode: str):
        self.mode = mode
        super().__init__(f'Execution mode "{mode}" not available for this endpoint')


class DebugError(GatewayError):
    status_code = status.HTTP_403_FORBIDDEN
    error_type = "DebugError"

    def __init__(self, message: str = "You do not have permission to debug this endpoint"):
        super().__init__(message)


class StreamListenerError(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "StreamListenerError"

    def __init__(self, details: Dict[str, Any]):
        super().__init__(
            "One or more streams you specified to listen to do not exist.", details=details
        )


class StreamError(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "StreamError"


# ===========================================
# Resolve hook
# ===========================================


class AccessSourceError(GatewayError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "AccessSourceError"


class AccessPermissionError(GatewayError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "AccessPermissionError"


class AccessAuthError(GatewayError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "AccessAuthError"


class AccessSuspendedError(GatewayError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "AccessSuspendedError"


class OwnerSuspendedError(GatewayError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_type = "OwnerSuspendedError"


class OwnerPaymentRequiredError(GatewayError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_type = "OwnerPaymentRequiredError"


class RateLimitError(GatewayError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_type = "RateLimitError"

    def __init__(self, message: str, count: int, period: int):
        super().__init__(message, details={"rate": {"count": count, "period": period}})


class AuthRateLimitError(RateLimitError):
    error_type = "AuthRateLimitError"


class UnauthRateLimitError(RateLimitError):
    error_type = "UnauthRateLimitError"


class SaveError(GatewayError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_type = "SaveError"


class MaintenanceError(GatewayError):
    status_code = status.HTTP_403_FORBIDDEN
    error_type = "MaintenanceError"


class UpdateError(GatewayError):
    status_code = status.HTTP_409_CONFLICT
    error_type = "UpdateError"


# ===========================================
# Invocation outcome
# ===========================================


class BadRequestError(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "BadRequestError"


class UnauthorizedError(GatewayError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "UnauthorizedError"


class PaymentRequiredError(GatewayError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    error_type = "PaymentRequiredError"


class ForbiddenError(GatewayError):
    status_code = status.HTTP_403_FORBIDDEN
    error_type = "ForbiddenError"


class FunctionNotFoundError(GatewayError):
    """Raised by user code with a ``404:`` message; distinct from a routing miss."""

    status_code = status.HTTP_404_NOT_FOUND
    error_type = "NotFoundError"


class FunctionRuntimeError(GatewayError):
    status_code = 420
    error_type = "RuntimeError"


class FatalError(GatewayError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type = "FatalError"


class GatewayTimeoutError(GatewayError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    error_type = "TimeoutError"


class FunctionValueError(GatewayError):
    """The value returned by the function did not match its declared return type."""

    status_code = status.HTTP_502_BAD_GATEWAY
    error_type = "ValueError"

    def __init__(self, details: Dict[str, Any]):
        super().__init__(
            "The value returned by the function did not match the specified type",
            details=details,
        )


class InvalidResponseHeaderError(GatewayError):
    """An ``object.http`` return carried unusable headers; ``details`` is keyed by header name."""

    status_code = status.HTTP_502_BAD_GATEWAY
    error_type = "InvalidResponseHeaderError"

    def __init__(self, details: Dict[str, Any]):
        super().__init__("Your service returned invalid response headers", details=details)


# Status prefixes user code may raise, e.g. ``raise Exception("403: nope")``.
STATUS_ERRORS = {
    400: BadRequestError,
    401: UnauthorizedError,
    402: PaymentRequiredError,
    403: ForbiddenError,
    404: FunctionNotFoundError,
}


def format_stack(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip()


def render_envelope(exc: GatewayError, include_stack: bool = True, pretty: bool = False) -> str:
    envelope = exc.to_envelope(include_stack=include_stack)
    if pretty:
        return json.dumps(envelope, indent=2, ensure_ascii=False, default=repr)
    return json.dumps(envelope, ensure_ascii=False, default=repr)


def error_response(
    exc: GatewayError,
    headers: Optional[Dict[str, str]] = None,
    include_stack: bool = True,
    pretty: bool = False,
) -> Response:
    """Render a GatewayError as its JSON envelope."""
    response_headers = dict(headers or {})
    response_headers["content-type"] = "application/json"
    return Response(
        content=render_envelope(exc, include_stack, pretty),
        status_code=exc.status_code,
        headers=response_headers,
    )


# ===========================================
# Exception Handlers
# ===========================================


def _include_stack(request: Request) -> bool:
    app_config = getattr(request.app.state, "config", None)
    return not (app_config is not None and app_config.is_production)


def _standard_headers(request: Request) -> Optional[Dict[str, str]]:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return dispatcher.headers_for(request) if dispatcher is not None else None


async def gateway_exception_handler(request: Request, exc: GatewayError):
    """
    Handler for GatewayError raised outside the dispatcher's own rendering.
    """
    return error_response(
        exc, headers=_standard_headers(request), include_stack=_include_stack(request)
    )


async def global_exception_handler(request: Request, exc: Exception):
    """
    Catch-all handler for unhandled exceptions.

    Reports a FatalError to the invoker's error handler and answers 500.
    """
    logger.error(
        f"Global exception handler caught: {exc}",
        exc_info=True,
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )
    fatal = FatalError(str(exc) or "Fatal Error", stack=format_stack(exc))
    invoker = getattr(request.app.state, "function_invoker", None)
    if invoker is not None:
        invoker.report(f"Fatal Error: {fatal.message}", exc)
    return error_response(
        fatal, headers=_standard_headers(request), include_stack=_include_stack(request)
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """
    Handler for HTTPException.
    """
    error_type = "NotFoundError" if exc.status_code == 404 else "ClientError"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"type": error_type, "message": str(exc.detail)}},
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handler for validation errors.
    """
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": {
                "type": "ParameterParseError",
                "message": "Validation Error",
                "details": {"errors": str(exc.errors())},
            }
        },
    )
