"""
RequestContext management.
Use ContextVar to share the execution UUID across async execution.
"""

import uuid
from contextvars import ContextVar
from typing import Optional


# Context variable for the execution UUID of the function being served.
_execution_uuid_var: ContextVar[Optional[str]] = ContextVar("execution_uuid", default=None)
# Context variable for Request ID (UUID).
_request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_execution_uuid() -> Optional[str]:
    """Get the current execution UUID."""
    return _execution_uuid_var.get()


def get_request_id() -> Optional[str]:
    """Get the current Request ID."""
    return _request_id_var.get()


def generate_request_id() -> str:
    """
    Generate and set a new Request ID (UUID) for the current context.
    """
    new_id = str(uuid.uuid4())
    _request_id_var.set(new_id)
    return new_id


def set_execution_uuid(execution_uuid: Optional[str] = None) -> str:
    """
    Set the execution UUID.

    Args:
        execution_uuid: UUID string, generated when omitted

    Returns:
        The execution UUID that was set
    """
    if execution_uuid is None:
        execution_uuid = str(uuid.uuid4())
    else:
        # Normalize; raises ValueError on malformed input.
        execution_uuid = str(uuid.UUID(execution_uuid))
    _execution_uuid_var.set(execution_uuid)
    return execution_uuid


def clear_request_context() -> None:
    """Clear the request context."""
    _execution_uuid_var.set(None)
    _request_id_var.set(None)
