import pytest

from services.funcgate.core.exceptions import ParameterError, ParameterParseError
from services.funcgate.services.parameter_assembler import (
    ParsedParam,
    assemble,
    extract_mode_flags,
    parse_urlencoded,
    validate_params,
)

# ===========================================
# URL-encoded grammar
# ===========================================


def test_plain_keys_stay_strings():
    assert parse_urlencoded("a=1&b=hello%20world&c=") == {"a": "1", "b": "hello world", "c": ""}


def test_repeated_keys_collect():
    assert parse_urlencoded("k=1&k=2") == {"k": ["1", "2"]}


def test_push_syntax():
    assert parse_urlencoded("key[]=v1&key[]=v2") == {"key": ["v1", "v2"]}


def test_indexed_and_pushed_entries():
    params = parse_urlencoded("a[1]=1&a[0]=2&a[]=100&a[5]=3&a[]=7")

    assert params == {"a": ["2", "1", None, None, None, "3", "100", "7"]}


def test_dotted_objects():
    assert parse_urlencoded("user.name=x&user.address.city=y") == {
        "user": {"name": "x", "address": {"city": "y"}}
    }


def test_objects_inside_arrays():
    params = parse_urlencoded("posts[0].title=a&posts[0].tags[]=x&posts[1].title=b")

    assert params == {"posts": [{"title": "a", "tags": ["x"]}, {"title": "b"}]}


def test_array_and_plain_key_conflict():
    with pytest.raises(ParameterParseError, match="already set"):
        parse_urlencoded("a[]=1&a=2")
    with pytest.raises(ParameterParseError, match="can not set as Array"):
        parse_urlencoded("a=2&a[]=1")


def test_array_index_errors():
    with pytest.raises(ParameterParseError, match="must be integer values"):
        parse_urlencoded("a[x]=1")
    with pytest.raises(ParameterParseError, match="limited to 65535"):
        parse_urlencoded("a[70000]=1")


def test_object_over_scalar_conflict():
    with pytest.raises(ParameterParseError, match='can not set subfield "b"'):
        parse_urlencoded("a=1&a.b=2")


# ===========================================
# Merge & validation
# ===========================================


def test_assemble_marks_query_values_for_conversion():
    params = assemble("a=1", {"b": 2}, convert_body=False)

    assert params == {"a": ParsedParam("1", True), "b": ParsedParam(2, False)}


def test_assemble_rejects_key_in_query_and_body():
    with pytest.raises(ParameterParseError, match='Can not specify "a" in both'):
        assemble("a=1", {"a": 2}, convert_body=False)


def test_extract_mode_flags_decodes_json_objects():
    parsed = assemble('_stream={"progress":true}&_debug=&x=1', None, False)

    flags = extract_mode_flags(parsed)

    assert flags == {"_stream": {"progress": True}, "_debug": ""}


def test_validate_params_converts_and_orders(registry):
    definition = registry.find_definition("add", "GET")

    params, args = validate_params(definition, assemble("b=2.5&a=3", None, False))

    assert params == {"a": 3, "b": 2.5}
    assert args == [3, 2.5]


def test_validate_params_applies_defaults_and_ignores_unknown(registry):
    definition = registry.find_definition("add", "GET")

    params, args = validate_params(definition, assemble("a=1&unknown=2&_stream=", None, False))

    assert params == {"a": 1, "b": 0}


def test_validate_params_reports_every_failure(registry):
    definition = registry.find_definition("add", "GET")

    with pytest.raises(ParameterError) as exc_info:
        validate_params(definition, assemble("b=500", None, False))

    error = exc_info.value
    assert error.status_code == 400
    assert set(error.details) == {"a", "b"}
    assert error.details["a"] == {"message": "required", "required": True}
    assert error.details["b"]["message"] == "must be less than or equal to 100"
    assert error.message == 'Invalid parameters "a", "b", see details for more information'


def test_validate_params_single_failure_message(registry):
    definition = registry.find_definition("add", "GET")

    with pytest.raises(ParameterError) as exc_info:
        validate_params(definition, {"a": ParsedParam(47.2, False)})

    details = exc_info.value.details["a"]
    assert exc_info.value.message.startswith('Invalid parameter "a": invalid value: 47.2')
    assert details["expected"]["type"] == "integer"
    assert details["actual"] == {"value": 47.2, "type": "number"}


def test_validate_params_enum_and_nested_object(registry):
    definition = registry.find_definition("units", "GET")

    params, _ = validate_params(
        definition, assemble("unit=imperial&opts.label=x&opts.count=2", None, False)
    )

    assert params == {"unit": {"length": "ft"}, "opts": {"label": "x", "count": 2}}

    with pytest.raises(ParameterError) as exc_info:
        validate_params(definition, assemble("unit=metric&opts.label=x", None, False))
    assert exc_info.value.details["opts"]["mismatch"] == "opts.count"
