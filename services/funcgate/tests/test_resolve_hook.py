from unittest.mock import Mock

import pytest

from services.funcgate.config import GatewayConfig
from services.funcgate.core.exceptions import (
    AccessAuthError,
    AuthRateLimitError,
    OriginError,
    OwnerSuspendedError,
)
from services.funcgate.services.resolve_hook import (
    ResolveError,
    ResolveErrorKind,
    ResolveHook,
    check_origin,
)


@pytest.mark.parametrize(
    "kind,error_class,status_code",
    [
        (ResolveErrorKind.ACCESS_AUTH, AccessAuthError, 401),
        (ResolveErrorKind.OWNER_SUSPENDED, OwnerSuspendedError, 503),
    ],
)
def test_resolve_error_maps_to_gateway_error(kind, error_class, status_code):
    error = ResolveError(kind, "denied").to_gateway_error()

    assert isinstance(error, error_class)
    assert error.status_code == status_code
    assert error.message == "denied"


def test_rate_limit_error_carries_counters():
    error = ResolveError(
        ResolveErrorKind.AUTH_RATE_LIMIT, "slow down", count=10, period=60
    ).to_gateway_error()

    assert isinstance(error, AuthRateLimitError)
    assert error.status_code == 429
    assert error.to_envelope() == {
        "error": {
            "type": "AuthRateLimitError",
            "message": "slow down",
            "details": {"rate": {"count": 10, "period": 60}},
        }
    }


def test_every_kind_is_mapped():
    for kind in ResolveErrorKind:
        assert ResolveError(kind, "x").to_gateway_error().message == "x"


@pytest.mark.asyncio
async def test_default_hook_allows_debug_in_development(registry):
    hook = ResolveHook(
        GatewayConfig(ENVIRONMENT="development", PLATFORM_KEYS={"global": {"enabled": True}})
    )

    result = await hook.resolve(Mock(), registry.find_definition("keys", "GET"))

    assert result.can_debug is True
    assert result.platform_keys == {"global": {"enabled": True}}
    assert result.keychain_keys == {}
    assert result.required_keys == ["API_KEY"]


@pytest.mark.asyncio
async def test_default_hook_denies_debug_in_production(registry):
    hook = ResolveHook(GatewayConfig(ENVIRONMENT="production"))

    result = await hook.resolve(Mock(), registry.find_definition("hello", "GET"))

    assert result.can_debug is False


def test_check_origin(registry):
    open_definition = registry.find_definition("hello", "GET")
    restricted = registry.find_definition("secure", "GET")

    assert check_origin(open_definition, None) == "*"
    assert check_origin(restricted, "http://example.com") == "http://example.com"
    with pytest.raises(OriginError, match='"https://other.com" can not access'):
        check_origin(restricted, "https://other.com")
    with pytest.raises(OriginError):
        check_origin(restricted, None)
