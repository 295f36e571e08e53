"""
Social Posting

Publishes community alerts to X (Twitter) using the v2 ``/2/tweets``
endpoint with an OAuth 2.0 user access token.
"""

from typing import Any, Protocol

import httpx
import structlog

logger = structlog.get_logger(__name__)

MAX_POST_LENGTH = 280


class SocialPostError(Exception):
    """The social platform rejected or failed to accept a post."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SocialPoster(Protocol):
    async def post(self, text: str) -> str | None: ...

    async def close(self) -> None: ...


def truncate_post(text: str, limit: int = MAX_POST_LENGTH) -> str:
    """Trim text to the platform limit, ending with an ellipsis when cut."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


class XPoster:
    """Posts text updates to X."""

    def __init__(
        self,
        access_token: str,
        api_base: str = "https://api.twitter.com",
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        if not access_token:
            raise ValueError("X access token is required")
        self._access_token = access_token
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._http_client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def post(self, text: str) -> str | None:
        """
        Publish a post.

        Returns:
            ID of the created post, if the API returned one

        Raises:
            SocialPostError: On transport failure or a non-2xx response
        """
        body = truncate_post(text)
        try:
            response = await self._get_client().post(
                f"{self._api_base}/2/tweets",
                headers={"Authorization": f"Bearer {self._access_token}"},
                json={"text": body},
            )
        except httpx.HTTPError as e:
            raise SocialPostError(f"X request failed: {e}") from e

        if response.is_error:
            raise SocialPostError(
                f"X rejected post: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )

        data: dict[str, Any] = response.json().get("data") or {}
        post_id = data.get("id")
        logger.info("social_post_published", platform="x", post_id=post_id, length=len(body))
        return post_id

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


class NullPoster:
    """Stand-in used when announcements are disabled; only logs."""

    async def post(self, text: str) -> str | None:
        logger.info("social_post_skipped", reason="announcements_disabled", length=len(text))
        return None

    async def close(self) -> None:
        return None
