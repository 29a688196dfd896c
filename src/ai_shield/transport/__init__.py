"""
Transport layer - HTTP access to generation providers.
"""

from ai_shield.transport.auth import require_api_key, resolve_api_key
from ai_shield.transport.http import HttpTransport

__all__ = [
    "HttpTransport",
    "require_api_key",
    "resolve_api_key",
]
