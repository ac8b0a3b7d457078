"""
Core logic package.

Provides the error taxonomy and header helpers.
"""

from .exceptions import DefinitionError, GatewayError, error_response
from .utils import format_header_key, standard_headers

__all__ = [
    "DefinitionError",
    "GatewayError",
    "error_response",
    "format_header_key",
    "standard_headers",
]
