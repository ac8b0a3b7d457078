"""
Resolve hook and origin policy.

The resolve hook runs after route lookup and supplies per-request data the
gateway does not own itself: whether debugging is allowed, platform keys
and keychain keys. Access decisions come back as a typed ResolveError that
maps onto the gateway error taxonomy.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from starlette.requests import Request

from services.funcgate.core.exceptions import (
    AccessAuthError,
    AccessPermissionError,
    AccessSourceError,
    AccessSuspendedError,
    AuthRateLimitError,
    GatewayError,
    MaintenanceError,
    OriginError,
    OwnerPaymentRequiredError,
    OwnerSuspendedError,
    PaymentRequiredError,
    RateLimitError,
    SaveError,
    UnauthRateLimitError,
    UpdateError,
)
from services.funcgate.models.schema import FunctionDefinition

from ..config import GatewayConfig

logger = logging.getLogger("funcgate.resolve_hook")


class ResolveErrorKind(str, Enum):
    ACCESS_SOURCE = "access_source"
    ACCESS_PERMISSION = "access_permission"
    ACCESS_AUTH = "access_auth"
    ACCESS_SUSPENDED = "access_suspended"
    OWNER_SUSPENDED = "owner_suspended"
    OWNER_PAYMENT_REQUIRED = "owner_payment_required"
    PAYMENT_REQUIRED = "payment_required"
    RATE_LIMIT = "rate_limit"
    AUTH_RATE_LIMIT = "auth_rate_limit"
    UNAUTH_RATE_LIMIT = "unauth_rate_limit"
    SAVE = "save"
    MAINTENANCE = "maintenance"
    UPDATE = "update"


_RATE_LIMIT_ERRORS = {
    ResolveErrorKind.RATE_LIMIT: RateLimitError,
    ResolveErrorKind.AUTH_RATE_LIMIT: AuthRateLimitError,
    ResolveErrorKind.UNAUTH_RATE_LIMIT: UnauthRateLimitError,
}

_ERRORS = {
    ResolveErrorKind.ACCESS_SOURCE: AccessSourceError,
    ResolveErrorKind.ACCESS_PERMISSION: AccessPermissionError,
    ResolveErrorKind.ACCESS_AUTH: AccessAuthError,
    ResolveErrorKind.ACCESS_SUSPENDED: AccessSuspendedError,
    ResolveErrorKind.OWNER_SUSPENDED: OwnerSuspendedError,
    ResolveErrorKind.OWNER_PAYMENT_REQUIRED: OwnerPaymentRequiredError,
    ResolveErrorKind.PAYMENT_REQUIRED: PaymentRequiredError,
    ResolveErrorKind.SAVE: SaveError,
    ResolveErrorKind.MAINTENANCE: MaintenanceError,
    ResolveErrorKind.UPDATE: UpdateError,
}


class ResolveError(Exception):
    """Raised by a resolve hook to reject a request."""

    def __init__(self, kind: ResolveErrorKind, message: str, count: int = 0, period: int = 0):
        self.kind = kind
        self.message = message
        self.count = count
        self.period = period
        super().__init__(message)

    def to_gateway_error(self) -> GatewayError:
        if self.kind in _RATE_LIMIT_ERRORS:
            return _RATE_LIMIT_ERRORS[self.kind](self.message, self.count, self.period)
        return _ERRORS[self.kind](self.message)


@dataclass
class ResolveResult:
    can_debug: bool = False
    platform_keys: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    keychain_keys: Dict[str, Any] = field(default_factory=dict)
    required_keys: List[str] = field(default_factory=list)


class ResolveHook:
    """
    Default resolve hook.

    Debugging is allowed outside production when enabled in config; platform
    keys come from ``PLATFORM_KEYS``. Subclass and override ``resolve`` to
    plug in authentication, rate limiting or keychain storage.
    """

    def __init__(self, app_config: GatewayConfig):
        self.config = app_config

    async def resolve(self, request: Request, definition: FunctionDefinition) -> ResolveResult:
        return ResolveResult(
            can_debug=self.config.DEBUG_ENABLED and not self.config.is_production,
            platform_keys=dict(self.config.PLATFORM_KEYS),
            required_keys=list(definition.keys),
        )


def check_origin(definition: FunctionDefinition, origin: Optional[str]) -> str:
    """
    Return the ``access-control-allow-origin`` value for a request.

    Raises:
        OriginError: the definition restricts origins and ``origin`` is not allowed
    """
    if definition.origins is None:
        return "*"
    if origin and origin in definition.origins:
        return origin
    logger.info(f"Origin {origin!r} rejected for {definition.name}")
    raise OriginError(origin or "")
