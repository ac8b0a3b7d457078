import json

from services.funcgate.core.exceptions import (
    FunctionValueError,
    NotFoundError,
    ParameterError,
    render_envelope,
)
from services.funcgate.core.utils import (
    format_header_key,
    parse_json_header,
    remote_address,
    standard_headers,
)


def test_format_header_key():
    assert format_header_key("content-type") == "Content-Type"
    assert format_header_key("x-execution-uuid") == "X-Execution-Uuid"


def test_standard_headers_defaults():
    headers = standard_headers("*", ["GET", "POST"], "x-custom")

    assert headers["access-control-allow-origin"] == "*"
    assert headers["access-control-allow-methods"] == "GET, POST"
    assert headers["access-control-allow-headers"] == "x-custom"
    assert headers["access-control-expose-headers"].endswith("x-execution-uuid")


def test_standard_headers_keep_existing_values():
    headers = standard_headers(
        "*", ["GET"], None, {"Access-Control-Allow-Origin": "https://a.com", "X-Extra": "1"}
    )

    assert headers["access-control-allow-origin"] == "https://a.com"
    exposed = headers["access-control-expose-headers"].split(", ")
    assert "x-extra" in exposed
    assert "x-execution-uuid" in exposed
    assert "access-control-expose-headers" not in exposed


def test_remote_address():
    assert remote_address("1.1.1.1, 2.2.2.2", "3.3.3.3") == "1.1.1.1"
    assert remote_address(None, "3.3.3.3") == "3.3.3.3"


def test_parse_json_header():
    assert parse_json_header('{"a": 1}') == {"a": 1}
    assert parse_json_header("[1]") == {}
    assert parse_json_header("{bad") == {}
    assert parse_json_header(None) == {}


def test_envelope_shapes():
    assert json.loads(render_envelope(NotFoundError("gone"))) == {
        "error": {"type": "NotFoundError", "message": "gone"}
    }
    value_error = FunctionValueError({"returns": {"message": "m", "invalid": True}})
    assert json.loads(render_envelope(value_error))["error"]["details"] == {
        "returns": {"message": "m", "invalid": True}
    }


def test_envelope_stack_and_pretty():
    error = NotFoundError("gone", stack="Traceback ...")

    assert "stack" not in json.loads(render_envelope(error, include_stack=False))["error"]
    assert render_envelope(error, pretty=True).startswith('{\n  "error"')


def test_parameter_error_messages():
    single = ParameterError({"a": {"message": "required", "required": True}})
    multiple = ParameterError({"a": {"message": "x"}, "b": {"message": "y"}})

    assert single.message == 'Invalid parameter "a": required'
    assert multiple.message == 'Invalid parameters "a", "b", see details for more information'
