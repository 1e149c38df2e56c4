"""
Device proxy: one guarded outbound GET on behalf of a dashboard.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

import aiohttp

from meterhub.core.config import settings
from meterhub.core.exceptions import (
    ForbiddenTargetError,
    InvalidTargetError,
    ProxyError,
    ProxyTimeoutError,
)
from meterhub.services.egress_guard import EgressDecision, ProxyTarget, classify, normalize_host

logger = logging.getLogger(__name__)

_HOST_DELIMITERS = set("/?#@\\ \t\r\n")


@dataclass
class ProxyResult:
    """Normalized upstream response"""
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status_code, "headers": self.headers, "body": self.body}


def parse_target(payload: Any) -> ProxyTarget:
    """Resolve ``{url}`` or ``{host, protocol?, port?, path?}`` into a ProxyTarget."""
    if isinstance(payload, str):
        payload = {"url": payload}
    if not isinstance(payload, dict):
        raise InvalidTargetError("missing target (url or host)")

    if payload.get("url"):
        return _parse_url(payload["url"])
    if payload.get("host"):
        return _parse_fields(payload)
    raise InvalidTargetError("missing target (url or host)")


def _parse_url(url: Any) -> ProxyTarget:
    if not isinstance(url, str):
        raise InvalidTargetError("invalid URL")
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError as e:
        raise InvalidTargetError(f"invalid URL: {e}") from e

    scheme = parts.scheme.lower()
    if scheme not in ("http", "https"):
        raise InvalidTargetError("invalid URL: only http and https are supported")
    host = normalize_host(parts.hostname)
    if not host:
        raise InvalidTargetError("invalid URL: missing host")
    try:
        host.encode("idna")
    except UnicodeError as e:
        raise InvalidTargetError(f"invalid host: {host}") from e

    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    return ProxyTarget(scheme=scheme, host=host, port=port, path=path)


def _parse_fields(payload: Dict[str, Any]) -> ProxyTarget:
    host = payload.get("host")
    if not isinstance(host, str) or any(ch in _HOST_DELIMITERS for ch in host.strip()):
        raise InvalidTargetError("invalid host")
    host = normalize_host(host)
    if not host:
        raise InvalidTargetError("invalid host")

    protocol = str(payload.get("protocol") or "").strip().lower().rstrip(":")
    scheme = "https" if protocol == "https" else "http"

    port = payload.get("port")
    if port in (None, "", 0):
        port = None
    else:
        if isinstance(port, bool):
            raise InvalidTargetError("invalid port")
        try:
            port = int(str(port).strip())
        except ValueError as e:
            raise InvalidTargetError("invalid port") from e
        if not 1 <= port <= 65535:
            raise InvalidTargetError("invalid port")

    path = payload.get("path") or "/"
    if not isinstance(path, str):
        raise InvalidTargetError("invalid path")
    if not path.startswith("/"):
        path = f"/{path}"

    # Round-trip through the URL parser so both input forms normalize identically.
    return _parse_url(ProxyTarget(scheme=scheme, host=host, port=port, path=path).url)


def _is_json_content_type(content_type: str) -> bool:
    mime = content_type.split(";", 1)[0].strip().lower()
    return mime == "application/json" or mime.endswith("+json")


class ProxyGateway:
    """Performs a single GET to an allowed device and returns its response.

    The method is fixed, no client headers, body or cookies are forwarded,
    redirects are not followed, and nothing is retried.
    """

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        max_response_bytes: Optional[int] = None,
    ):
        timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.PROXY_TIMEOUT_SECONDS
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.max_response_bytes = int(max_response_bytes or settings.PROXY_MAX_RESPONSE_BYTES)
        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch(self, target_payload: Any) -> ProxyResult:
        target = parse_target(target_payload)
        if classify(target) is not EgressDecision.ALLOWED:
            logger.warning("Proxy target denied: %s", target.host)
            raise ForbiddenTargetError(f"target host not allowed: {target.host}")

        session = await self._get_session()
        try:
            async with session.get(target.url, timeout=self.timeout, allow_redirects=False) as response:
                raw = bytearray()
                async for chunk in response.content.iter_chunked(64 * 1024):
                    raw.extend(chunk)
                    if len(raw) > self.max_response_bytes:
                        raise ProxyError(f"response exceeds {self.max_response_bytes} bytes")
                headers = {name.lower(): value for name, value in response.headers.items()}
                body = self._decode_body(bytes(raw), headers.get("content-type", ""), response.charset)
                return ProxyResult(status_code=response.status, headers=headers, body=body)
        except asyncio.TimeoutError as e:
            logger.warning("Proxy request to %s timed out", target.url)
            raise ProxyTimeoutError(f"no response from {target.host} within {self.timeout.total}s") from e
        except aiohttp.ClientError as e:
            logger.warning("Proxy request to %s failed: %s", target.url, e)
            raise ProxyError(str(e) or e.__class__.__name__) from e
        except ValueError as e:
            logger.warning("Proxy request to %s rejected by the client: %s", target.url, e)
            raise InvalidTargetError(f"invalid target: {e}") from e

    def _decode_body(self, raw: bytes, content_type: str, charset: Optional[str]) -> Any:
        try:
            text = raw.decode(charset or "utf-8", errors="replace")
        except LookupError:
            text = raw.decode("utf-8", errors="replace")
        if _is_json_content_type(content_type):
            try:
                return json.loads(text)
            except ValueError:
                pass
        return text

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(cookie_jar=aiohttp.DummyCookieJar())
        return self._session
