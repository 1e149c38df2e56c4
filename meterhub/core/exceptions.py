"""
Exception hierarchy for the store and the device proxy.
"""
from typing import Dict


class MeterHubError(Exception):
    """Base exception for all meterhub errors."""


class StoreError(MeterHubError):
    """Persistence backend failed; the current request cannot be completed."""


class GatewayError(MeterHubError):
    """Proxy request could not be completed.

    ``status_code`` is the HTTP status the API answers with and ``error`` the
    short label placed in the response body.
    """

    status_code = 502
    error = "proxy error"

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.error, "message": str(self)}


class InvalidTargetError(GatewayError):
    """Proxy target is missing or cannot be parsed."""

    status_code = 400
    error = "invalid target"


class ForbiddenTargetError(GatewayError):
    """Proxy target is outside the private/local network space."""

    status_code = 403
    error = "target host not allowed"


class ProxyTimeoutError(GatewayError):
    """Upstream did not answer within the proxy timeout. Answered as a 502 with its own label."""

    status_code = 502
    error = "proxy timeout"


class ProxyError(GatewayError):
    """Transport-level failure talking to the upstream device."""
