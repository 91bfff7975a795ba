from typing import Any, Dict, List, Union

import pytest
import aiohttp
from aiohttp import web
from aiohttp.test_utils import TestServer

from ekiden.config.models import CoordinatorConfig
from ekiden.exceptions import TokenError
from ekiden.runner.token_provider import TokenProvider


def _coordinator(url: str) -> CoordinatorConfig:
    return CoordinatorConfig(
        api_token="ghp_secret",
        registration_endpoint=url,
        runner_url="https://github.com/acme",
    )


def _app(status: int, body: Union[str, bytes], seen: List[Dict[str, Any]]) -> web.Application:
    async def handler(request: web.Request) -> web.Response:
        seen.append({"method": request.method, "headers": dict(request.headers)})
        if isinstance(body, bytes):
            return web.Response(status=status, body=body, content_type="application/json")
        return web.Response(status=status, text=body, content_type="application/json")

    app = web.Application()
    app.router.add_post("/orgs/acme/actions/runners/registration-token", handler)
    return app


_PATH = "/orgs/acme/actions/runners/registration-token"


@pytest.mark.asyncio
async def test_returns_token_and_expiry() -> None:
    seen: List[Dict[str, Any]] = []
    body = '{"token": "AABBCC", "expires_at": "2026-01-01T00:00:00Z"}'
    async with TestServer(_app(201, body, seen)) as server:
        async with TokenProvider(_coordinator(str(server.make_url(_PATH)))) as provider:
            token = await provider.get_registration_token()

    assert token.token == "AABBCC"
    assert token.expires_at is not None and token.expires_at.year == 2026
    assert "AABBCC" not in repr(token)
    headers = seen[0]["headers"]
    assert seen[0]["method"] == "POST"
    assert headers["Authorization"] == "Bearer ghp_secret"
    assert headers["Accept"] == "application/vnd.github.v3+json"
    assert headers["X-GitHub-Api-Version"] == "2022-11-28"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,body,match",
    [
        (401, '{"message": "Bad credentials"}', "status 401"),
        (200, '{"token": "AABBCC"}', "status 200"),
        (201, "not json", "failed to parse"),
        (201, b'{"token": "\xff\xfe"}', "failed to parse"),
        (201, '{"token": ""}', "empty token"),
        (201, "[]", "empty token"),
    ],
)
async def test_error_responses_raise_token_error(status: int, body: Union[str, bytes], match: str) -> None:
    async with TestServer(_app(status, body, [])) as server:
        async with TokenProvider(_coordinator(str(server.make_url(_PATH)))) as provider:
            with pytest.raises(TokenError, match=match):
                await provider.get_registration_token()


@pytest.mark.asyncio
async def test_connection_failure_raises_token_error() -> None:
    async with TestServer(_app(201, "{}", [])) as server:
        url = str(server.make_url(_PATH))

    async with TokenProvider(_coordinator(url), timeout=2) as provider:
        with pytest.raises(TokenError, match="request failed"):
            await provider.get_registration_token()


@pytest.mark.asyncio
async def test_borrowed_session_is_not_closed() -> None:
    async with aiohttp.ClientSession() as session:
        provider = TokenProvider(_coordinator("http://127.0.0.1:9/"), session=session)
        await provider.close()
        assert not session.closed
