"""
Tests for the X poster.
"""

import json

import httpx
import pytest

from nexus.services.social import (
    MAX_POST_LENGTH,
    NullPoster,
    SocialPostError,
    XPoster,
    truncate_post,
)


def x_client(status: int, captured: list[httpx.Request]) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        if status >= 400:
            return httpx.Response(status, json={"title": "Forbidden"})
        return httpx.Response(status, json={"data": {"id": "1790000000000000000", "text": "x"}})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestTruncate:
    def test_short_text_unchanged(self) -> None:
        assert truncate_post("  hello  ") == "hello"

    def test_long_text_cut_with_ellipsis(self) -> None:
        text = truncate_post("a" * 500)

        assert len(text) == MAX_POST_LENGTH
        assert text.endswith("…")


class TestXPoster:
    @pytest.mark.asyncio
    async def test_post_sends_bearer_and_text(self) -> None:
        captured: list[httpx.Request] = []
        poster = XPoster("user-token", http_client=x_client(201, captured))

        post_id = await poster.post("Alert " + "x" * 400)
        await poster.close()

        assert post_id == "1790000000000000000"
        request = captured[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.twitter.com/2/tweets"
        assert request.headers["Authorization"] == "Bearer user-token"
        assert len(json.loads(request.content)["text"]) == MAX_POST_LENGTH

    @pytest.mark.asyncio
    async def test_error_status_raises(self) -> None:
        poster = XPoster("user-token", http_client=x_client(403, []))

        with pytest.raises(SocialPostError) as exc_info:
            await poster.post("Alert")

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_transport_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable")

        poster = XPoster(
            "user-token", http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )

        with pytest.raises(SocialPostError):
            await poster.post("Alert")

    def test_token_required(self) -> None:
        with pytest.raises(ValueError):
            XPoster("")


class TestNullPoster:
    @pytest.mark.asyncio
    async def test_returns_none(self) -> None:
        assert await NullPoster().post("Alert") is None
