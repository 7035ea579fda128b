from __future__ import annotations

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from lke_driver.infra.http import BearerAuth, HttpClient, HttpError

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


def make_app() -> web.Application:
    app = web.Application()

    async def echo(request: web.Request) -> web.Response:
        body = await request.json() if request.can_read_body else None
        return web.json_response({
            "auth": request.headers.get("Authorization"),
            "body": body,
            "params": dict(request.query),
        })

    async def empty(_: web.Request) -> web.Response:
        return web.Response(status=200, body=b"")

    async def rate_limited(_: web.Request) -> web.Response:
        return web.json_response(
            {"errors": [{"reason": "Too many requests"}]}, status=429, headers={"Retry-After": "7"}
        )

    async def server_error(_: web.Request) -> web.Response:
        return web.Response(status=500, text="internal server error")

    app.router.add_route("*", "/echo", echo)
    app.router.add_delete("/empty", empty)
    app.router.add_get("/limited", rate_limited)
    app.router.add_get("/boom", server_error)
    return app


@pytest.fixture
async def server():
    srv = TestServer(make_app())
    await srv.start_server()
    yield srv
    await srv.close()


@pytest.fixture
async def http(server: TestServer):
    async with HttpClient(f"http://{server.host}:{server.port}/", BearerAuth("tok")) as client:
        yield client


class TestHttpClient:
    @pytest.mark.asyncio
    async def test_json_round_trip_with_auth(self, http: HttpClient):
        result = await http.request("POST", "/echo", json={"a": 1}, params={"page": 2})

        assert result == {"auth": "Bearer tok", "body": {"a": 1}, "params": {"page": "2"}}

    @pytest.mark.asyncio
    async def test_empty_body_is_none(self, http: HttpClient):
        assert await http.request("DELETE", "/empty") is None

    @pytest.mark.asyncio
    async def test_rate_limit_carries_retry_after(self, http: HttpClient):
        with pytest.raises(HttpError) as exc_info:
            await http.request("GET", "/limited")

        assert exc_info.value.status == 429
        assert exc_info.value.retry_after == 7
        assert "Too many requests" in exc_info.value.body

    @pytest.mark.asyncio
    async def test_server_error(self, http: HttpClient):
        with pytest.raises(HttpError) as exc_info:
            await http.request("GET", "/boom")

        assert exc_info.value.status == 500
        assert exc_info.value.retry_after is None
        assert str(exc_info.value) == "HTTP 500: internal server error"

    @pytest.mark.asyncio
    async def test_unreachable_host_is_status_zero(self):
        async with HttpClient("http://127.0.0.1:1") as client:
            with pytest.raises(HttpError) as exc_info:
                await client.request("GET", "/anything")

        assert exc_info.value.status == 0

    def test_bearer_token_is_not_in_repr(self):
        assert "secret" not in repr(BearerAuth("secret"))
