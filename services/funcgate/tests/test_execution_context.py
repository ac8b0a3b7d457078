from unittest.mock import Mock

import pytest

from services.funcgate.models.context import (
    ExecutionContext,
    HttpInfo,
    Keychain,
    PlatformKeys,
)


def _context(**kwargs):
    defaults = dict(
        name="reports/daily",
        alias="reports/daily/extra",
        uuid="0f8fad5b-d9cb-469f-a165-70867728950e",
        params={"day": 1},
        http=HttpInfo(url="/reports/daily/extra/?day=1", method="GET"),
        mode="normal",
    )
    defaults.update(kwargs)
    return ExecutionContext(**defaults)


def test_path_segments():
    assert _context().path == ["reports", "daily", "extra"]


def test_stream_and_log_without_sink_are_noops():
    context = _context()

    context.stream("progress", 1)
    context.log("hello")
    context.error("oops")


def test_stream_and_log_write_to_sink():
    sink = Mock()
    context = _context(sink=sink)

    context.stream("progress", 1)
    context.log("count", 3, {"a": 1})
    context.error("bad")

    sink.write.assert_called_once_with("progress", 1)
    assert sink.log.call_args_list[0][0] == ("@stdout", 'count 3 {"a": 1}')
    assert sink.log.call_args_list[1][0] == ("@stderr", "bad")


def test_platform_keys_require_global_access():
    platform = PlatformKeys({"slack": {"enabled": True, "token": "x"}})

    with pytest.raises(PermissionError, match="^403: This function does not have access"):
        platform.ui("slack")


def test_platform_keys_require_enabled_ui():
    platform = PlatformKeys({"global": {"enabled": True}, "slack": {"enabled": False}})

    with pytest.raises(PermissionError, match='only works when called from "slack"'):
        platform.ui("slack")


def test_platform_key_lookup():
    platform = PlatformKeys({"global": {"enabled": True}, "slack": {"enabled": True, "token": "x"}})

    assert platform.ui("slack").key("token") == "x"
    with pytest.raises(PermissionError, match='"slack"."secret" which is missing'):
        platform.ui("slack").key("secret")


def test_keychain():
    keychain = Keychain({"API_KEY": "k"}, required=["API_KEY", "OTHER"])

    assert keychain.key("API_KEY") == "k"
    with pytest.raises(LookupError, match='requires the keychain key "OTHER"'):
        keychain.key("OTHER")
    with pytest.raises(LookupError, match="has not requested permission"):
        keychain.key("UNLISTED")
