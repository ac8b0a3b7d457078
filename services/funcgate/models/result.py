"""
Invocation result models.

Standardizes the output of the invocation pipeline.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from services.funcgate.core.exceptions import GatewayError


class InvocationResult(BaseModel):
    """
    Outcome of one function invocation.

    Used to decouple the invoker from FastAPI Response objects. ``value`` is
    the validated return value on success; ``error`` the classified failure.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    value: Any = None
    error: Optional[GatewayError] = None
    duration_ms: int = 0

    @classmethod
    def ok(cls, value: Any, duration_ms: int) -> "InvocationResult":
        return cls(success=True, value=value, duration_ms=duration_ms)

    @classmethod
    def failed(cls, error: GatewayError, duration_ms: int) -> "InvocationResult":
        return cls(success=False, error=error, duration_ms=duration_ms)
