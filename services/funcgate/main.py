"""
Function Gateway - FaaS HTTP server

Turns a directory of annotated Python function files into HTTP endpoints.
Every path is served by the catch-all route through the GatewayDispatcher.
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from services.common.core.request_context import (
    clear_request_context,
    generate_request_id,
    set_execution_uuid,
)

from .api.deps import DispatcherDep
from .config import config
from .core.exceptions import (
    GatewayError,
    gateway_exception_handler,
    global_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from .core.logging_config import setup_logging
from .services.config_reloader import ConfigReloader
from .services.dispatcher import GatewayDispatcher
from .services.function_registry import FunctionRegistry
from .services.invoker import FunctionInvoker

# Logger setup
setup_logging()
logger = logging.getLogger("funcgate.main")

SHUTDOWN_DRAIN_SECONDS = 5.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    function_registry = FunctionRegistry(config.FUNCTIONS_ROOT, config.FUNCTIONS_IGNORE)

    # A broken function tree aborts startup.
    function_registry.load_functions()

    function_invoker = FunctionInvoker(registry=function_registry, config=config)
    dispatcher = GatewayDispatcher(
        registry=function_registry, invoker=function_invoker, config=config
    )

    reloader = ConfigReloader(function_registry, config)
    reloader.initialize()
    reloader.start()

    # Store in app.state for DI
    app.state.config = config
    app.state.function_registry = function_registry
    app.state.function_invoker = function_invoker
    app.state.dispatcher = dispatcher
    app.state.config_reloader = reloader

    logger.info(
        f"Function gateway initialized with {len(function_registry.definitions)} definitions."
    )

    yield

    # Cleanup
    reloader.stop()
    await dispatcher.drain(SHUTDOWN_DRAIN_SECONDS)
    logger.info("Function gateway shut down.")


app = FastAPI(
    title="Function Gateway",
    version="1.0.0",
    lifespan=lifespan,
    root_path=config.root_path,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)


@app.middleware("http")
async def access_log_middleware(request: Request, call_next):
    """
    Middleware for execution UUID propagation and structured access logging.
    """
    start_time = time.perf_counter()
    execution_uuid = set_execution_uuid()
    req_id = generate_request_id()

    try:
        response = await call_next(request)

        process_time_ms = round((time.perf_counter() - start_time) * 1000, 2)

        # Structured Access Log
        logger.info(
            f"{request.method} {request.url.path} {response.status_code}",
            extra={
                "execution_uuid": execution_uuid,
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_ms": process_time_ms,
                "user_agent": request.headers.get("user-agent"),
                "client_ip": request.client.host if request.client else None,
            },
        )

        return response
    finally:
        clear_request_context()


# Register exception handlers.
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(GatewayError, gateway_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)


# ===========================================
# Endpoint definitions.
# ===========================================


@app.api_route(
    "/{path:path}",
    methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "HEAD", "PATCH", "TRACE"],
    include_in_schema=False,
)
async def function_handler(request: Request, path: str, dispatcher: DispatcherDep):
    """
    Catch-all route: resolve the path to a function definition and run it.
    """
    return await dispatcher.dispatch(request)


if __name__ == "__main__":
    import uvicorn

    host, _, port = config.UVICORN_BIND_ADDR.rpartition(":")
    uvicorn.run(app, host=host or "0.0.0.0", port=int(port))
