"""
Egress guard: decides which hosts the device proxy may contact.

Only loopback, RFC1918 private IPv4 ranges and mDNS ``.local`` names are
allowed. Everything else, including public hostnames and IPv6 other than
``::1``, is denied. The decision is a pure function of the host.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union


class EgressDecision(Enum):
    """Outcome of classifying a proxy target"""
    ALLOWED = "allowed"
    DENIED = "denied"


@dataclass(frozen=True)
class ProxyTarget:
    """Normalized proxy destination"""
    scheme: str  # http | https
    host: str
    port: Optional[int] = None
    path: str = "/"

    @property
    def url(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        port = f":{self.port}" if self.port is not None else ""
        return f"{self.scheme}://{host}{port}{self.path}"


LOOPBACK_NAMES = frozenset({"localhost", "127.0.0.1", "::1"})
LOCAL_SUFFIX = ".local"

_DOTTED_QUAD = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})$")


def normalize_host(host: Optional[str]) -> str:
    if not host:
        return ""
    host = host.strip().lower()
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host


def parse_ipv4(host: str) -> Optional[Tuple[int, int, int, int]]:
    """Parse an exact dotted quad, or return None.

    Octets with a leading zero are rejected since some resolvers read them as octal.
    """
    match = _DOTTED_QUAD.match(host)
    if not match:
        return None
    octets = []
    for part in match.groups():
        if len(part) > 1 and part.startswith("0"):
            return None
        value = int(part)
        if value > 255:
            return None
        octets.append(value)
    return tuple(octets)


def _is_private_ipv4(octets: Tuple[int, int, int, int]) -> bool:
    first, second = octets[0], octets[1]
    if first == 10:
        return True
    if first == 172 and 16 <= second <= 31:
        return True
    if first == 192 and second == 168:
        return True
    if first == 127:
        return True
    return False


def is_private_host(host: Optional[str]) -> bool:
    """True when ``host`` is loopback, a private IPv4 address or a ``.local`` name"""
    hostname = normalize_host(host)
    if not hostname:
        return False
    if hostname in LOOPBACK_NAMES:
        return True
    if _DOTTED_QUAD.match(hostname):
        octets = parse_ipv4(hostname)
        return octets is not None and _is_private_ipv4(octets)
    return hostname.endswith(LOCAL_SUFFIX)


def classify(target: Union[ProxyTarget, str, None]) -> EgressDecision:
    """Classify a proxy target (or a bare hostname)"""
    host = target.host if isinstance(target, ProxyTarget) else target
    return EgressDecision.ALLOWED if is_private_host(host) else EgressDecision.DENIED
