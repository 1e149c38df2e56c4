import asyncio
import socket
from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from meterhub.core.exceptions import (
    ForbiddenTargetError,
    InvalidTargetError,
    ProxyError,
    ProxyTimeoutError,
)
from meterhub.services.proxy_gateway import ProxyGateway, parse_target


async def _json_status(request):
    return web.json_response({"power": 42, "cookie": request.headers.get("Cookie")})


async def _text_status(request):
    return web.Response(text="relay=on", headers={"X-Device-Model": "shelly"})


async def _vendor_json(request):
    return web.Response(body=b'{"ok": true}', content_type="application/vnd.device+json")


async def _redirect(request):
    return web.Response(status=302, headers={"Location": "/elsewhere"})


async def _slow(request):
    await asyncio.sleep(1)
    return web.Response(text="late")


async def _large(request):
    return web.Response(body=b"x" * 4096)


@asynccontextmanager
async def device_server():
    app = web.Application()
    app.router.add_get("/status", _json_status)
    app.router.add_get("/text", _text_status)
    app.router.add_get("/vendor", _vendor_json)
    app.router.add_get("/redirect", _redirect)
    app.router.add_get("/slow", _slow)
    app.router.add_get("/large", _large)
    server = TestServer(app, host="127.0.0.1")
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_parse_target_accepts_url_and_field_forms():
    from_url = parse_target({"url": "http://192.168.1.50:8080/status?x=1"})
    from_fields = parse_target({"host": "192.168.1.50", "port": "8080", "path": "status?x=1"})

    assert from_url == from_fields
    assert from_url.url == "http://192.168.1.50:8080/status?x=1"


def test_parse_target_url_wins_over_host():
    target = parse_target({"url": "http://10.0.0.5/a", "host": "8.8.8.8"})
    assert target.host == "10.0.0.5"


def test_parse_target_field_defaults():
    target = parse_target({"host": "Printer.LOCAL"})
    assert (target.scheme, target.host, target.port, target.path) == ("http", "printer.local", None, "/")
    assert parse_target({"host": "10.0.0.1", "protocol": "https:"}).scheme == "https"


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {},
        {"url": ""},
        {"url": "ftp://192.168.1.1/"},
        {"url": "http:///nohost"},
        {"url": "http://10.0.0.1:99999/"},
        {"host": "10.0.0.1/evil"},
        {"host": "user@10.0.0.1"},
        {"host": "10.0.0.1", "port": 0.5},
        {"host": "10.0.0.1", "port": 70000},
        {"host": "10.0.0.1", "port": True},
        {"host": "10.0.0.1", "path": 12},
        {"host": "a" * 64 + ".local"},
        {"url": "http://printer..local/"},
        ["http://10.0.0.1/"],
    ],
)
def test_parse_target_rejects_invalid_targets(payload):
    with pytest.raises(InvalidTargetError):
        parse_target(payload)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"url": "http://8.8.8.8/"},
        {"url": "http://example.com/"},
        {"host": "172.32.0.1"},
        {"host": "010.0.0.1"},
        {"url": "http://[::2]/"},
    ],
)
async def test_public_targets_are_forbidden_without_a_request(payload):
    gateway = ProxyGateway()
    with pytest.raises(ForbiddenTargetError) as exc_info:
        await gateway.fetch(payload)

    assert exc_info.value.status_code == 403
    assert gateway._session is None


@pytest.mark.asyncio
async def test_json_body_is_decoded_and_headers_lowercased():
    async with device_server() as server:
        gateway = ProxyGateway(timeout_seconds=2)
        try:
            result = await gateway.fetch({"host": "127.0.0.1", "port": server.port, "path": "/status"})
        finally:
            await gateway.close()

    assert result.status_code == 200
    assert result.body == {"power": 42, "cookie": None}
    assert all(name == name.lower() for name in result.headers)
    assert result.headers["content-type"].startswith("application/json")
    assert set(result.to_dict()) == {"status", "headers", "body"}


@pytest.mark.asyncio
async def test_text_and_vendor_json_bodies():
    async with device_server() as server:
        gateway = ProxyGateway(timeout_seconds=2)
        try:
            text = await gateway.fetch({"url": str(server.make_url("/text"))})
            vendor = await gateway.fetch({"url": str(server.make_url("/vendor"))})
        finally:
            await gateway.close()

    assert text.body == "relay=on"
    assert text.headers["x-device-model"] == "shelly"
    assert vendor.body == {"ok": True}


@pytest.mark.asyncio
async def test_redirects_are_returned_not_followed():
    async with device_server() as server:
        gateway = ProxyGateway(timeout_seconds=2)
        try:
            result = await gateway.fetch({"url": str(server.make_url("/redirect"))})
        finally:
            await gateway.close()

    assert result.status_code == 302
    assert result.headers["location"] == "/elsewhere"


@pytest.mark.asyncio
async def test_upstream_error_statuses_pass_through():
    async with device_server() as server:
        gateway = ProxyGateway(timeout_seconds=2)
        try:
            result = await gateway.fetch({"url": str(server.make_url("/missing"))})
        finally:
            await gateway.close()

    assert result.status_code == 404


@pytest.mark.asyncio
async def test_slow_device_times_out():
    async with device_server() as server:
        gateway = ProxyGateway(timeout_seconds=0.2)
        try:
            with pytest.raises(ProxyTimeoutError) as exc_info:
                await gateway.fetch({"url": str(server.make_url("/slow"))})
        finally:
            await gateway.close()

    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_unreachable_device_is_a_proxy_error():
    gateway = ProxyGateway(timeout_seconds=2)
    try:
        with pytest.raises(ProxyError) as exc_info:
            await gateway.fetch({"host": "127.0.0.1", "port": _unused_port()})
    finally:
        await gateway.close()

    assert exc_info.value.status_code == 502
    assert exc_info.value.to_dict()["error"] == "proxy error"


@pytest.mark.asyncio
async def test_oversized_response_is_rejected():
    async with device_server() as server:
        gateway = ProxyGateway(timeout_seconds=2, max_response_bytes=1024)
        try:
            with pytest.raises(ProxyError):
                await gateway.fetch({"url": str(server.make_url("/large"))})
        finally:
            await gateway.close()


@pytest.mark.asyncio
async def test_unencodable_local_host_is_an_invalid_target():
    gateway = ProxyGateway(timeout_seconds=2)
    with pytest.raises(InvalidTargetError) as exc_info:
        await gateway.fetch({"host": "a" * 64 + ".local"})

    assert exc_info.value.status_code == 400
    assert gateway._session is None
