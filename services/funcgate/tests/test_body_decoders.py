from unittest.mock import Mock

import pytest

from services.funcgate.core.exceptions import ParameterParseError
from services.funcgate.services.body_decoders import (
    decode_body,
    decode_json,
    decode_text_plain,
    decode_xml,
    media_type,
)


def _request(content_type=None):
    request = Mock()
    request.headers = {"content-type": content_type} if content_type else {}
    return request


def test_media_type_strips_parameters():
    assert media_type("Application/JSON; charset=utf-8") == "application/json"
    assert media_type(None) == ""


def test_decode_json_requires_object():
    assert decode_json(b'{"a": 1}') == {"a": 1}
    with pytest.raises(ParameterParseError, match="Must be an object"):
        decode_json(b"[1, 2]")
    with pytest.raises(ParameterParseError, match="Invalid JSON"):
        decode_json(b"{nope")


def test_decode_text_plain_accepts_double_encoded_json():
    assert decode_text_plain(b'"{\\"a\\": 1}"') == {"a": 1}
    with pytest.raises(ParameterParseError):
        decode_text_plain(b"plain words")


def test_decode_xml():
    raw = b'<order id="7"><item>a</item><item>b</item><note>hi</note></order>'

    assert decode_xml(raw) == {
        "order": {"@_id": "7", "item": ["a", "b"], "note": "hi"}
    }
    with pytest.raises(ParameterParseError, match="Invalid XML"):
        decode_xml(b"<open>")


@pytest.mark.asyncio
async def test_get_and_delete_ignore_body():
    decoded = await decode_body(_request(), "GET", b'{"a": 1}')

    assert decoded.params == {}


@pytest.mark.asyncio
async def test_missing_content_type_is_rejected():
    with pytest.raises(ParameterParseError, match='Must supply "Content-Type" header'):
        await decode_body(_request(), "POST", b"{}")


@pytest.mark.asyncio
async def test_json_body():
    decoded = await decode_body(_request("application/json"), "POST", b'{"a": "1"}')

    assert decoded.params == {"a": "1"}
    assert decoded.convert is False


@pytest.mark.asyncio
async def test_json_body_with_convert_strings():
    decoded = await decode_body(
        _request("application/json"), "POST", b'{"a": "1"}', convert_strings=True
    )

    assert decoded.convert is True


@pytest.mark.asyncio
async def test_urlencoded_body_converts():
    decoded = await decode_body(
        _request("application/x-www-form-urlencoded"), "PUT", b"a=1&tags[]=x&tags[]=y"
    )

    assert decoded.params == {"a": "1", "tags": ["x", "y"]}
    assert decoded.convert is True


@pytest.mark.asyncio
async def test_unknown_content_type_yields_empty_params():
    decoded = await decode_body(_request("application/octet-stream"), "POST", b"\x00\x01")

    assert decoded.params == {}


@pytest.mark.asyncio
async def test_empty_body():
    decoded = await decode_body(_request("application/json"), "POST", b"")

    assert decoded.params == {}
