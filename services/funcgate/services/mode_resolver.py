"""
Execution mode resolver.

Decides how a validated request runs (normal, background, streaming or
debug) from the ``_background``/``_stream``/``_debug`` flags and the
definition's capabilities, and which stream channels the caller listens to.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from services.funcgate.core.exceptions import (
    DebugError,
    ExecutionModeError,
    StreamListenerError,
)
from services.funcgate.models.schema import FunctionDefinition

logger = logging.getLogger("funcgate.mode_resolver")

WILDCARD = "*"
BEGIN_EVENT = "@begin"
STDOUT_EVENT = "@stdout"
STDERR_EVENT = "@stderr"
ERROR_EVENT = "@error"
RESPONSE_EVENT = "@response"
LOG_EVENTS = frozenset({STDOUT_EVENT, STDERR_EVENT})
DEBUG_LISTENERS = frozenset({WILDCARD, BEGIN_EVENT, ERROR_EVENT}) | LOG_EVENTS

_OFF_STRINGS = frozenset({"false", "f", "0"})


class ExecutionMode(str, Enum):
    NORMAL = "normal"
    BACKGROUND = "background"
    STREAM = "stream"
    DEBUG = "debug"
    STREAM_DEBUG = "stream_debug"

    @property
    def is_streaming(self) -> bool:
        return self in (ExecutionMode.STREAM, ExecutionMode.DEBUG, ExecutionMode.STREAM_DEBUG)

    @property
    def is_debug(self) -> bool:
        return self in (ExecutionMode.DEBUG, ExecutionMode.STREAM_DEBUG)


@dataclass(frozen=True)
class ModeResolution:
    mode: ExecutionMode
    debug_requested: bool = False
    channels: FrozenSet[str] = field(default_factory=frozenset)
    log_events: FrozenSet[str] = field(default_factory=frozenset)


def flag_enabled(value: Any) -> bool:
    """
    Truthiness of a mode flag.

    Absent, None, False, 0 and "false"/"f"/"0" are off; an empty string,
    any object (``{}`` included) and other scalars are on.
    """
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() not in _OFF_STRINGS
    return True


def _listener_keys(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _subscribed(value: Any, declared: FrozenSet[str]) -> FrozenSet[str]:
    keys = _listener_keys(value)
    if not keys or WILDCARD in keys:
        return declared
    return frozenset(k for k in keys if k in declared)


def _log_events(debug_value: Any) -> FrozenSet[str]:
    """``@stdout``/``@stderr`` unless a listener object names neither (nor ``*``)."""
    return _subscribed(debug_value, LOG_EVENTS)


def resolve(
    flags: Dict[str, Any], definition: FunctionDefinition, can_debug: bool
) -> ModeResolution:
    """
    Resolve the execution mode.

    Args:
        flags: mode flags extracted from the request
        definition: target definition
        can_debug: whether the resolve hook allows debugging

    Raises:
        DebugError: debug not allowed, combined with background, or unknown listener
        ExecutionModeError: background/stream requested without the capability
        StreamListenerError: stream object names undeclared channels
    """
    background = flag_enabled(flags.get("_background"))
    stream = flag_enabled(flags.get("_stream"))
    debug = flag_enabled(flags.get("_debug"))
    declared = frozenset(definition.streams.keys())

    if debug:
        if not can_debug or not definition.capabilities.debug:
            raise DebugError()
        if background:
            raise DebugError('Can not debug with "background" mode set')
        for key in _listener_keys(flags.get("_debug")):
            if key not in DEBUG_LISTENERS and key not in declared:
                raise DebugError(f'Invalid debug listener: "{key}"')

    if background:
        if not definition.capabilities.background:
            raise ExecutionModeError("background")
        return ModeResolution(ExecutionMode.BACKGROUND)

    channels: FrozenSet[str] = frozenset()
    if stream:
        if not definition.capabilities.stream:
            raise ExecutionModeError("stream")
        errors = {
            key: {"message": f'No such stream for this function: "{key}"', "invalid": True}
            for key in _listener_keys(flags.get("_stream"))
            if key != WILDCARD and key not in declared
        }
        if errors:
            raise StreamListenerError(errors)
        channels = _subscribed(flags.get("_stream"), declared)

    if debug:
        channels = channels | _subscribed(flags.get("_debug"), declared)
        mode = ExecutionMode.STREAM_DEBUG if stream else ExecutionMode.DEBUG
        return ModeResolution(
            mode,
            debug_requested=True,
            channels=channels,
            log_events=_log_events(flags.get("_debug")),
        )
    if stream:
        return ModeResolution(ExecutionMode.STREAM, channels=channels)
    return ModeResolution(ExecutionMode.NORMAL)


def subscribed_events(resolution: ModeResolution) -> Optional[FrozenSet[str]]:
    """Events written to the SSE body for a streaming resolution, None otherwise."""
    if not resolution.mode.is_streaming:
        return None
    events = {BEGIN_EVENT, ERROR_EVENT, RESPONSE_EVENT} | set(resolution.channels)
    if resolution.mode.is_debug:
        events |= resolution.log_events
    return frozenset(events)
