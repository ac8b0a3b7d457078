import asyncio
import os
from unittest.mock import Mock

import pytest

from services.funcgate.config import GatewayConfig
from services.funcgate.core.exceptions import (
    BadRequestError,
    FatalError,
    ForbiddenError,
    FunctionRuntimeError,
    FunctionValueError,
    GatewayTimeoutError,
)
from services.funcgate.services.function_registry import FunctionRegistry
from services.funcgate.services.invoker import FunctionInvoker


@pytest.fixture
def error_handler():
    return Mock()


@pytest.fixture
def invoker(registry, error_handler):
    return FunctionInvoker(registry, GatewayConfig(), error_handler=error_handler)


def _tmp_registry(tmp_path, files):
    for name, source in files.items():
        with open(os.path.join(str(tmp_path), name), "w", encoding="utf-8") as f:
            f.write(source)
    registry = FunctionRegistry(str(tmp_path))
    registry.load_functions()
    return registry


@pytest.mark.asyncio
async def test_sync_handler_success(registry, invoker):
    result = await invoker.invoke(registry.find_definition("hello", "GET"), ["you"])

    assert result.success is True
    assert result.value == "hello you"
    assert result.error is None
    assert result.duration_ms >= 0


@pytest.mark.asyncio
async def test_async_handler_success(registry, invoker):
    result = await invoker.invoke(registry.find_definition("add", "GET"), [2, 0.5])

    assert result.value == 2.5


@pytest.mark.asyncio
async def test_context_is_appended(registry, invoker):
    context = Mock()
    context.keychain.key.return_value = "s3cret"

    result = await invoker.invoke(registry.find_definition("keys", "GET"), [], context)

    assert result.value == "s3cret"
    context.keychain.key.assert_called_once_with("API_KEY")


@pytest.mark.asyncio
async def test_runtime_error(registry, invoker, error_handler):
    result = await invoker.invoke(registry.find_definition("errors/boom", "GET"), [])

    assert result.success is False
    assert isinstance(result.error, FunctionRuntimeError)
    assert result.error.status_code == 420
    assert result.error.message == "kaboom"
    assert "RuntimeError: kaboom" in result.error.stack
    message, exc = error_handler.call_args[0]
    assert message.startswith("Runtime Error (")
    assert isinstance(exc, RuntimeError)


@pytest.mark.asyncio
async def test_status_prefixed_errors(registry, invoker, error_handler):
    forbidden = await invoker.invoke(registry.find_definition("errors/forbidden", "GET"), [])
    bad = await invoker.invoke(registry.find_definition("errors/bad", "GET"), [])

    assert isinstance(forbidden.error, ForbiddenError)
    assert forbidden.error.status_code == 403
    assert forbidden.error.message == "nope"
    assert isinstance(bad.error, BadRequestError)
    assert bad.error.message == "bad input"
    error_handler.assert_not_called()


@pytest.mark.asyncio
async def test_non_error_value(registry, invoker):
    result = await invoker.invoke(registry.find_definition("errors/weird", "GET"), [])

    assert isinstance(result.error, FunctionRuntimeError)
    assert result.error.message == 'A non-error value (value: {"code":1}) was thrown.'


@pytest.mark.asyncio
async def test_builtin_error_with_non_string_arg_is_runtime_error(tmp_path, error_handler):
    registry = _tmp_registry(
        tmp_path,
        {"lookup.py": 'def handler():\n    """\n    @returns {any}\n    """\n    return {}[5]\n'},
    )
    invoker = FunctionInvoker(registry, GatewayConfig(), error_handler=error_handler)

    result = await invoker.invoke(registry.find_definition("lookup", "GET"), [])

    assert isinstance(result.error, FunctionRuntimeError)
    assert result.error.status_code == 420
    assert result.error.message == "5"
    assert "KeyError" in result.error.stack
    assert error_handler.call_args[0][0].startswith("Runtime Error (")


@pytest.mark.asyncio
async def test_return_value_mismatch(registry, invoker, error_handler):
    result = await invoker.invoke(registry.find_definition("errors/badreturn", "GET"), [])

    assert isinstance(result.error, FunctionValueError)
    assert result.error.status_code == 502
    details = result.error.details["returns"]
    assert details["expected"] == {"type": "string"}
    assert details["actual"] == {"value": 5, "type": "number"}
    assert error_handler.call_args[0][0].startswith("Value Error (")


@pytest.mark.asyncio
async def test_return_values_are_normalized(tmp_path, error_handler):
    registry = _tmp_registry(
        tmp_path,
        {"pair.py": 'def handler():\n    """\n    @returns {array<integer>}\n    """\n    return (1, 2)\n'},
    )
    invoker = FunctionInvoker(registry, GatewayConfig(), error_handler=error_handler)

    result = await invoker.invoke(registry.find_definition("pair", "GET"), [])

    assert result.value == [1, 2]


@pytest.mark.asyncio
async def test_timeout(tmp_path, error_handler):
    registry = _tmp_registry(
        tmp_path,
        {"slow.py": "import asyncio\n\nasync def handler():\n    await asyncio.sleep(0.2)\n"},
    )
    invoker = FunctionInvoker(
        registry, GatewayConfig(DEFAULT_TIMEOUT_MS=50), error_handler=error_handler
    )

    result = await invoker.invoke(registry.find_definition("slow", "GET"), [])
    await asyncio.sleep(0.25)

    assert isinstance(result.error, GatewayTimeoutError)
    assert result.error.status_code == 504
    assert result.error.message.endswith("Timeout of 50ms exceeded.")
    assert error_handler.call_args[0][0].startswith("Timeout Error (")


def test_timeout_is_capped_by_max(registry):
    invoker = FunctionInvoker(registry, GatewayConfig(DEFAULT_TIMEOUT_MS=9000, MAX_TIMEOUT_MS=100))

    assert invoker.timeout_ms() == 100


@pytest.mark.asyncio
async def test_system_exit_is_fatal(tmp_path, error_handler):
    registry = _tmp_registry(
        tmp_path, {"quit.py": "import sys\n\ndef handler():\n    sys.exit(3)\n"}
    )
    invoker = FunctionInvoker(registry, GatewayConfig(), error_handler=error_handler)

    result = await invoker.invoke(registry.find_definition("quit", "GET"), [])

    assert isinstance(result.error, FatalError)
    assert result.error.status_code == 500
    assert result.error.message.startswith("Fatal Error (")
    error_handler.assert_called_once()


@pytest.mark.asyncio
async def test_import_failure_is_fatal(tmp_path, error_handler):
    registry = _tmp_registry(
        tmp_path, {"broken.py": "import not_a_real_module_xyz\n\ndef handler():\n    return 1\n"}
    )
    invoker = FunctionInvoker(registry, GatewayConfig(), error_handler=error_handler)

    result = await invoker.invoke(registry.find_definition("broken", "GET"), [])

    assert isinstance(result.error, FatalError)
    assert "not_a_real_module_xyz" in result.error.message


@pytest.mark.asyncio
async def test_error_handler_failure_does_not_escape(registry):
    invoker = FunctionInvoker(
        registry, GatewayConfig(), error_handler=Mock(side_effect=RuntimeError("handler down"))
    )

    result = await invoker.invoke(registry.find_definition("errors/boom", "GET"), [])

    assert isinstance(result.error, FunctionRuntimeError)
