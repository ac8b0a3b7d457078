"""
Gateway Dispatcher - Service Layer

Runs the per-request pipeline: route lookup, redirect, origin policy,
resolve hook, parameter assembly and validation, execution mode, invocation
and response shaping. Every failure is a GatewayError rendered through the
shared envelope with the standard headers.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

from fastapi import Request, status
from fastapi.responses import Response, StreamingResponse

from services.common.core.request_context import get_execution_uuid, set_execution_uuid
from services.funcgate.core.exceptions import (
    ClientError,
    GatewayError,
    InvalidResponseHeaderError,
    MethodNotImplementedError,
    OriginError,
    render_envelope,
)
from services.funcgate.core.utils import (
    EXECUTION_UUID_HEADER,
    header_text,
    parse_json_header,
    remote_address,
    response_header_error,
    standard_headers,
)
from services.funcgate.models.context import (
    ExecutionContext,
    FunctionInfo,
    HttpInfo,
    Keychain,
    PlatformKeys,
)
from services.funcgate.models.result import InvocationResult
from services.funcgate.models.schema import FunctionDefinition, TypeKind
from services.funcgate.models.value import Buffer
from services.funcgate.services import mode_resolver, type_schema
from services.funcgate.services.body_decoders import decode_body
from services.funcgate.services.function_registry import FunctionRegistry
from services.funcgate.services.invoker import FunctionInvoker
from services.funcgate.services.mode_resolver import ExecutionMode, ModeResolution
from services.funcgate.services.parameter_assembler import (
    assemble,
    extract_mode_flags,
    validate_params,
)
from services.funcgate.services.resolve_hook import (
    ResolveError,
    ResolveHook,
    ResolveResult,
    check_origin,
)
from services.funcgate.services.streaming import SSE_CONTENT_TYPE, ServerSentEmitter

from ..config import GatewayConfig

logger = logging.getLogger("funcgate.dispatcher")

SUPPORTED_METHODS = ("GET", "POST", "PUT", "DELETE", "OPTIONS", "HEAD")
REDIRECT_METHODS = ("GET",)
CONVERT_STRINGS_HEADER = "x-convert-strings"
PROVIDERS_HEADER = "x-authorization-providers"
DEBUG_HEADER = "x-debug"


class GatewayDispatcher:
    """
    Orchestrates the request processing lifecycle.

    Background and streaming invocations outlive the request handler; their
    tasks are retained in ``self.tasks`` until they finish.
    """

    def __init__(
        self,
        registry: FunctionRegistry,
        invoker: FunctionInvoker,
        config: GatewayConfig,
        resolve_hook: Optional[ResolveHook] = None,
    ):
        self.registry = registry
        self.invoker = invoker
        self.config = config
        self.resolve_hook = resolve_hook or ResolveHook(config)
        self.tasks: Set["asyncio.Task[Any]"] = set()

    # ===========================================
    # Rendering
    # ===========================================

    def headers_for(
        self, request: Request, headers: Optional[Dict[str, str]] = None
    ) -> Dict[str, str]:
        return standard_headers(
            "*",
            SUPPORTED_METHODS,
            request.headers.get("access-control-request-headers"),
            headers,
        )

    def render_error(
        self, request: Request, exc: GatewayError, headers: Optional[Dict[str, str]] = None
    ) -> Response:
        response_headers = dict(headers or {})
        response_headers["content-type"] = "application/json"
        body = render_envelope(
            exc, include_stack=not self.config.is_production, pretty=self.config.pretty_json
        )
        return Response(
            content=body,
            status_code=exc.status_code,
            headers=self.headers_for(request, response_headers),
        )

    def render_value(self, definition: FunctionDefinition, value: Any):
        """
        ``(content_type, body)`` for a validated return value.

        A buffer renders as raw bytes whatever the declared kind; under
        ``any`` a ``{"_base64": ...}`` object does too.
        """
        binary = value if isinstance(value, Buffer) else None
        if binary is None and definition.returns.type_schema.kind == TypeKind.ANY:
            binary = type_schema.as_binary_response(value)
        if binary is not None:
            return binary.content_type or "application/octet-stream", binary
        return "application/json", type_schema.dumps(value, pretty=self.config.pretty_json)

    def render_http(self, request: Request, value: Dict[str, Any], headers: Dict[str, str]):
        """
        ``(status_code, headers, body)`` for an ``object.http`` return value.

        Headers the function returns override the gateway's own.

        Raises:
            InvalidResponseHeaderError: a header name or value is unusable
        """
        response_headers = dict(headers)
        body = value["body"]
        if isinstance(body, Buffer):
            response_headers["content-type"] = body.content_type or "application/octet-stream"
        else:
            response_headers["content-type"] = "text/plain"

        errors = {}
        for name, header_value in (value.get("headers") or {}).items():
            problem = response_header_error(name, header_value)
            if problem is not None:
                errors[name] = {"message": problem, "invalid": True}
            else:
                response_headers[name.lower()] = header_text(header_value)
        if errors:
            raise InvalidResponseHeaderError(errors)

        status_code = value.get("statusCode", status.HTTP_200_OK)
        return status_code, self.headers_for(request, response_headers), body

    def outcome(
        self,
        request: Request,
        definition: FunctionDefinition,
        result: InvocationResult,
        headers: Dict[str, str],
    ):
        """``(status_code, headers, body)`` for a finished invocation."""
        response_headers = dict(headers)
        error = result.error
        if result.success and definition.returns.type_schema.kind == TypeKind.HTTP:
            try:
                return self.render_http(request, result.value, headers)
            except InvalidResponseHeaderError as e:
                self.invoker.report(f"Invalid Response Header Error: {e.details}", e)
                error = e
        if error is not None:
            response_headers["content-type"] = "application/json"
            body: Any = render_envelope(
                error,
                include_stack=not self.config.is_production,
                pretty=self.config.pretty_json,
            )
            return error.status_code, self.headers_for(request, response_headers), body
        content_type, body = self.render_value(definition, result.value)
        response_headers["content-type"] = content_type
        return status.HTTP_200_OK, self.headers_for(request, response_headers), body

    def spawn(self, coro) -> "asyncio.Task[Any]":
        task = asyncio.ensure_future(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    # ===========================================
    # Pipeline
    # ===========================================

    async def dispatch(self, request: Request) -> Response:
        method = request.method
        if method not in SUPPORTED_METHODS:
            logger.warning(f"Not Implemented: {method}")
            return self.render_error(
                request, MethodNotImplementedError(f'HTTP Method "{method}" Not Implemented')
            )
        if method in ("OPTIONS", "HEAD"):
            return Response(status_code=status.HTTP_200_OK, headers=self.headers_for(request))

        headers: Dict[str, str] = {}
        try:
            raw = await self.read_body(request)
            definition = self.registry.find_definition(request.url.path, method)
            redirect = self.redirect(request, definition)
            if redirect is not None:
                return redirect

            execution_uuid = get_execution_uuid() or set_execution_uuid()
            headers[EXECUTION_UUID_HEADER] = execution_uuid
            try:
                headers["access-control-allow-origin"] = check_origin(
                    definition, request.headers.get("origin")
                )
            except OriginError:
                headers["access-control-allow-origin"] = "!"
                raise

            resolved = await self.resolve(request, definition)

            convert = CONVERT_STRINGS_HEADER in request.headers
            decoded = await decode_body(request, method, raw, convert_strings=convert)
            parsed = assemble(request.url.query, decoded.params, decoded.convert)
            params, args = validate_params(definition, parsed)

            flags = extract_mode_flags(parsed)
            if mode_resolver.flag_enabled(flags.get("_debug")):
                headers[DEBUG_HEADER] = "true"
            resolution = mode_resolver.resolve(flags, definition, resolved.can_debug)
        except GatewayError as e:
            logger.info(f"{e.error_type}: {e.message}", extra={"status": e.status_code})
            return self.render_error(request, e, headers)

        logger.info(
            f"Dispatching {definition.route_key} ({resolution.mode.value})",
            extra={"function_name": definition.name, "mode": resolution.mode.value},
        )
        context_args = dict(
            request=request,
            definition=definition,
            params=params,
            raw=raw,
            resolved=resolved,
            resolution=resolution,
            execution_uuid=execution_uuid,
        )

        if resolution.mode == ExecutionMode.BACKGROUND:
            context = self.create_context(**context_args)
            self.spawn(self.invoker.invoke(definition, args, context))
            return self.background_response(request, definition, params, headers)

        if resolution.mode.is_streaming:
            return self.stream(request, definition, args, headers, context_args)

        context = self.create_context(**context_args)
        result = await self.invoker.invoke(definition, args, context)
        status_code, response_headers, body = self.outcome(request, definition, result, headers)
        return Response(content=body, status_code=status_code, headers=response_headers)

    async def read_body(self, request: Request) -> bytes:
        """
        Raises:
            ClientError: DELETE with a body, or body over the size limit (413)
        """
        raw = await request.body()
        if request.method == "DELETE" and raw:
            raise ClientError(
                "A client SHOULD NOT generate content in a DELETE request. "
                "See RFC 9110, 9.3.5 DELETE (June 2022) for more details."
            )
        if len(raw) > self.config.max_request_bytes:
            raise ClientError(
                f"Function Payload Exceeded, Max Size {self.config.MAX_REQUEST_SIZE_MB}MB",
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            )
        return raw

    def redirect(self, request: Request, definition: FunctionDefinition) -> Optional[Response]:
        path = request.url.path
        if (
            request.method not in REDIRECT_METHODS
            or not request.headers.get("user-agent")
            or path.endswith("/")
            or "." in path.split("/")[-1]
        ):
            return None
        location = f"{path}/"
        if request.url.query:
            location += f"?{request.url.query}"
        host = request.headers.get("host", "")
        logger.info(f"Redirect {definition.name} -> {location}")
        return Response(
            content=f"You are being redirected to: {host}{location}\n",
            status_code=status.HTTP_302_FOUND,
            headers=self.headers_for(request, {"location": location, "content-type": "text/plain"}),
        )

    async def resolve(self, request: Request, definition: FunctionDefinition) -> ResolveResult:
        try:
            return await self.resolve_hook.resolve(request, definition)
        except ResolveError as e:
            raise e.to_gateway_error() from e

    def create_context(
        self,
        request: Request,
        definition: FunctionDefinition,
        params: Dict[str, Any],
        raw: bytes,
        resolved: ResolveResult,
        resolution: ModeResolution,
        execution_uuid: str,
        sink: Optional[ServerSentEmitter] = None,
    ) -> ExecutionContext:
        body_text = raw.decode("utf-8", errors="replace")
        try:
            body_json = json.loads(body_text) if body_text else None
        except ValueError:
            body_json = None
        url = request.url.path + (f"?{request.url.query}" if request.url.query else "")
        return ExecutionContext(
            name=definition.name,
            alias=request.url.path.strip("/"),
            uuid=execution_uuid,
            params=params,
            http=HttpInfo(
                url=url,
                method=request.method,
                headers=dict(request.headers),
                body=body_text,
                json=body_json,
            ),
            mode=resolution.mode.value,
            remote_address=remote_address(
                request.headers.get("x-forwarded-for"),
                request.client.host if request.client else None,
            ),
            function=FunctionInfo(enums=definition.enums()),
            providers=parse_json_header(request.headers.get(PROVIDERS_HEADER)),
            platform=PlatformKeys(resolved.platform_keys),
            keychain=Keychain(resolved.keychain_keys, resolved.required_keys),
            sink=sink,
        )

    # ===========================================
    # Execution modes
    # ===========================================

    def background_response(
        self,
        request: Request,
        definition: FunctionDefinition,
        params: Dict[str, Any],
        headers: Dict[str, str],
    ) -> Response:
        spec = definition.background
        mode = spec.mode if spec is not None else "info"
        value: Any
        if mode == "empty":
            value = Buffer(b"")
        elif mode == "params":
            names = spec.param_names if spec is not None else []
            value = {k: v for k, v in params.items() if not names or k in names}
        else:
            value = Buffer(f'initiated "{definition.name}" ...'.encode("utf-8"))
        response_headers = dict(headers)
        if isinstance(value, Buffer):
            response_headers["content-type"] = "text/plain"
            body: Any = bytes(value)
        else:
            response_headers["content-type"] = "application/json"
            body = type_schema.dumps(value, pretty=self.config.pretty_json)
        logger.info(f"Background Function Responded to Client: {definition.name}")
        return Response(
            content=body,
            status_code=status.HTTP_202_ACCEPTED,
            headers=self.headers_for(request, response_headers),
        )

    def stream(
        self,
        request: Request,
        definition: FunctionDefinition,
        args,
        headers: Dict[str, str],
        context_args: Dict[str, Any],
    ) -> StreamingResponse:
        resolution: ModeResolution = context_args["resolution"]
        emitter = ServerSentEmitter(
            definition,
            context_args["execution_uuid"],
            mode_resolver.subscribed_events(resolution) or frozenset(),
        )
        context = self.create_context(sink=emitter, **context_args)
        emitter.begin()

        async def run() -> None:
            try:
                result = await self.invoker.invoke(definition, args, context)
                status_code, response_headers, body = self.outcome(
                    request, definition, result, headers
                )
                emitter.respond(status_code, response_headers, body)
            finally:
                emitter.close()

        self.spawn(run())
        response_headers = dict(headers)
        response_headers["content-type"] = SSE_CONTENT_TYPE
        logger.info(f"Begin Server-Sent Event: {definition.name}")
        return StreamingResponse(
            emitter.iter_events(),
            status_code=status.HTTP_200_OK,
            headers=self.headers_for(request, response_headers),
            media_type="text/event-stream",
        )

    async def drain(self, timeout: float) -> None:
        """Wait for in-flight background and streaming invocations."""
        if not self.tasks:
            return
        _, pending = await asyncio.wait(list(self.tasks), timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} invocations still running at shutdown")
