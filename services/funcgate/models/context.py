"""
Execution context models.

The object handed to a function through its trailing ``context`` parameter:
request metadata, the stream and debug sinks, and lookup handles for
platform and keychain keys.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field


class StreamSink(Protocol):
    def write(self, channel: str, value: Any) -> None: ...

    def log(self, event: str, text: str) -> None: ...


@dataclass
class HttpInfo:
    url: str
    method: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""
    json: Any = None


class FunctionInfo(BaseModel):
    enums: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


def _log_text(args) -> str:
    return " ".join(arg if isinstance(arg, str) else json.dumps(arg, default=repr) for arg in args)


class PlatformUI:
    def __init__(self, name: str, entries: Dict[str, Any]):
        self.name = name
        self.entries = entries

    def key(self, key: str) -> Any:
        if key not in self.entries:
            raise PermissionError(
                f'403: This function requires the platform key "{self.name}"."{key}" which is missing.'
            )
        return self.entries[key]


class PlatformKeys:
    """``context.platform.ui(name).key(key)``"""

    def __init__(self, keys: Optional[Dict[str, Dict[str, Any]]] = None):
        self.keys = keys or {}

    def ui(self, name: str) -> PlatformUI:
        if not (self.keys.get("global") or {}).get("enabled"):
            raise PermissionError(
                "403: This function does not have access to platform keys.\n"
                "Platform keys are restricted to administrator accounts."
            )
        entries = self.keys.get(name) or {}
        if not entries.get("enabled"):
            raise PermissionError(
                f'403: This function only works when called from "{name}".\n'
                f'Try running this function again from "{name}".'
            )
        return PlatformUI(name, entries)


class Keychain:
    """``context.keychain.key(key)``"""

    def __init__(self, keys: Optional[Dict[str, Any]] = None, required: Optional[List[str]] = None):
        self.keys = keys or {}
        self.required = list(required or [])

    def key(self, key: str) -> Any:
        key = str(key)
        if key not in self.keys:
            if key in self.required:
                raise LookupError(
                    f'400: This function requires the keychain key "{key}", which has not been provided.'
                )
            raise LookupError(
                f'400: This function is attempting to read the keychain key "{key}" '
                f"which it has not requested permission to access."
            )
        return self.keys[key]


class ExecutionContext:
    """
    Per-invocation context.

    ``stream(channel, value)`` writes to a declared stream; ``log``/``error``
    write to ``@stdout``/``@stderr`` when debugging. Both are no-ops when the
    request is not streaming.
    """

    def __init__(
        self,
        name: str,
        alias: str,
        uuid: str,
        params: Dict[str, Any],
        http: HttpInfo,
        mode: str,
        remote_address: Optional[str] = None,
        function: Optional[FunctionInfo] = None,
        providers: Optional[Dict[str, Any]] = None,
        platform: Optional[PlatformKeys] = None,
        keychain: Optional[Keychain] = None,
        sink: Optional[StreamSink] = None,
    ):
        self.name = name
        self.alias = alias
        self.path = alias.split("/")
        self.uuid = uuid
        self.params = params
        self.http = http
        self.mode = mode
        self.remote_address = remote_address
        self.function = function or FunctionInfo()
        self.providers = providers if providers is not None else {}
        self.platform = platform or PlatformKeys()
        self.keychain = keychain or Keychain()
        self._sink = sink

    def stream(self, channel: str, value: Any) -> None:
        if self._sink is not None:
            self._sink.write(channel, value)

    def log(self, *args: Any) -> None:
        if self._sink is not None:
            self._sink.log("@stdout", _log_text(args))

    def error(self, *args: Any) -> None:
        if self._sink is not None:
            self._sink.log("@stderr", _log_text(args))

    def __repr__(self) -> str:
        return f"ExecutionContext(name={self.name!r}, uuid={self.uuid!r}, mode={self.mode!r})"
