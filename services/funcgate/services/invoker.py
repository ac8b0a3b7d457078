"""
Function Invoker Service

Loads a definition's handler, calls it under the invocation deadline and
classifies the outcome: a validated return value, or a GatewayError ready
to be rendered. Coroutine handlers run on the event loop; plain functions
run on Starlette's thread pool.
"""

import asyncio
import inspect
import json
import logging
import re
import time
from typing import Any, Callable, List, Optional

from starlette.concurrency import run_in_threadpool

from services.funcgate.core.exceptions import (
    STATUS_ERRORS,
    BadRequestError,
    FatalError,
    FunctionRuntimeError,
    FunctionValueError,
    GatewayError,
    GatewayTimeoutError,
    format_stack,
)
from services.funcgate.models.context import ExecutionContext
from services.funcgate.models.result import InvocationResult
from services.funcgate.models.schema import FunctionDefinition
from services.funcgate.services import type_schema
from services.funcgate.services.function_registry import FunctionRegistry

from ..config import GatewayConfig

logger = logging.getLogger("funcgate.invoker")

STATUS_PREFIX_RE = re.compile(r"^(\d{3}):\s*")

ErrorHandler = Callable[[str, BaseException], None]


def log_error_handler(message: str, exc: BaseException) -> None:
    """Default error handler: log at error level."""
    logger.error(message, extra={"error_type": type(exc).__name__})


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _non_error_value(exc: BaseException) -> Optional[Any]:
    """
    The payload of ``raise Exception(<non-string>)``, or None for ordinary errors.

    Only a bare ``Exception`` carries a thrown value; ``KeyError(5)`` and
    ``OSError(2)`` are ordinary errors.
    """
    if type(exc) is Exception and len(exc.args) == 1 and not isinstance(exc.args[0], str):
        return exc.args
    return None


class ProcessExit(Exception):
    """Carries a SystemExit raised by user code out of its task."""

    def __init__(self, exit_exc: SystemExit):
        self.exit_exc = exit_exc
        super().__init__(f"SystemExit: {exit_exc}")


def _retrieve(task: "asyncio.Future[Any]") -> None:
    # Consume results of invocations abandoned after a timeout.
    if not task.cancelled() and task.exception() is not None:
        logger.warning(f"Abandoned invocation failed: {task.exception()!r}")


class FunctionInvoker:
    def __init__(
        self,
        registry: FunctionRegistry,
        config: GatewayConfig,
        error_handler: Optional[ErrorHandler] = None,
    ):
        """
        Args:
            registry: FunctionRegistry used to import handlers
            config: GatewayConfig instance
            error_handler: callback for runtime, fatal, timeout and value errors
        """
        self.registry = registry
        self.config = config
        self.error_handler = error_handler or log_error_handler

    def timeout_ms(self) -> int:
        return max(1, min(self.config.DEFAULT_TIMEOUT_MS, self.config.MAX_TIMEOUT_MS))

    def report(self, message: str, exc: BaseException) -> None:
        try:
            self.error_handler(message, exc)
        except Exception:
            logger.exception("Error handler raised")

    async def invoke(
        self,
        definition: FunctionDefinition,
        args: List[Any],
        context: Optional[ExecutionContext] = None,
    ) -> InvocationResult:
        """
        Invoke a function and validate its return value.

        Args:
            definition: target definition
            args: validated positional arguments, in parameter order
            context: appended as the last argument when the definition has a context slot

        Returns:
            InvocationResult with either the validated value or a GatewayError
        """
        started = time.monotonic()
        logger.info(f"Execution Start: {definition.name}")

        try:
            handler = await run_in_threadpool(self.registry.load_handler, definition)
        except Exception as e:
            dt = _elapsed_ms(started)
            message = f"Fatal Error ({dt}ms): {e}"
            self.report(message, e)
            return InvocationResult.failed(FatalError(message, stack=format_stack(e)), dt)

        call_args = list(args)
        if definition.context_param:
            call_args.append(context)

        timeout_ms = self.timeout_ms()
        if inspect.iscoroutinefunction(handler):
            task = asyncio.ensure_future(self._call_async(handler, call_args))
        else:
            task = asyncio.ensure_future(run_in_threadpool(self._call_sync, handler, call_args))

        try:
            value = await asyncio.wait_for(asyncio.shield(task), timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            task.add_done_callback(_retrieve)
            dt = _elapsed_ms(started)
            message = f"Timeout Error ({dt}ms): Timeout of {timeout_ms}ms exceeded."
            self.report(message, e)
            return InvocationResult.failed(GatewayTimeoutError(message), dt)
        except ProcessExit as e:
            dt = _elapsed_ms(started)
            message = f"Fatal Error ({dt}ms): {e}"
            self.report(message, e)
            return InvocationResult.failed(FatalError(message, stack=format_stack(e)), dt)
        except Exception as e:
            dt = _elapsed_ms(started)
            return InvocationResult.failed(self.classify(e, dt), dt)

        dt = _elapsed_ms(started)
        returns = definition.returns
        result, details = type_schema.validate_slot(
            returns, type_schema.jsonify(value), root=returns.name or "$", label="return value"
        )
        if details is not None:
            error = FunctionValueError({"returns": details})
            self.report(f"Value Error ({dt}ms): {details['message']}", error)
            return InvocationResult.failed(error, dt)
        logger.info(f"Execution Complete ({dt}ms): {definition.name}")
        return InvocationResult.ok(result, dt)

    @staticmethod
    async def _call_async(handler: Callable, call_args: List[Any]) -> Any:
        try:
            return await handler(*call_args)
        except SystemExit as e:
            raise ProcessExit(e) from e

    @staticmethod
    def _call_sync(handler: Callable, call_args: List[Any]) -> Any:
        try:
            return handler(*call_args)
        except SystemExit as e:
            raise ProcessExit(e) from e

    def classify(self, exc: Exception, dt: int) -> GatewayError:
        """Map an exception raised by user code onto the error taxonomy."""
        payload = _non_error_value(exc)
        if payload is not None:
            try:
                encoded = json.dumps(payload[0], separators=(",", ":"))
            except (TypeError, ValueError):
                encoded = None
            message = (
                f"A non-error value (value: {encoded}) was thrown."
                if encoded
                else "A non-error value was thrown."
            )
            self.report(f"Runtime Error ({dt}ms): {message}", exc)
            return FunctionRuntimeError(message)

        message = str(exc) or type(exc).__name__
        logger.warning(f"Runtime Error Thrown ({dt}ms): {message}")
        status_code = None
        match = STATUS_PREFIX_RE.match(message)
        if match:
            status_code = int(match.group(1))
            message = message[match.end():]
        details = getattr(exc, "details", None)
        details = details if isinstance(details, dict) else None
        stack = format_stack(exc)

        error_class = STATUS_ERRORS.get(status_code)
        if error_class is BadRequestError:
            return BadRequestError(message, details=details, stack=stack)
        if error_class is not None:
            return error_class(message, stack=stack)
        self.report(f"Runtime Error ({dt}ms): {message}", exc)
        return FunctionRuntimeError(message, details=details, stack=stack)
