"""
Community Watch Client

Async httpx client that signs reports and verifications with a local
wallet key, producing exactly the messages the server recovers signers
from.

Usage:
    from eth_account import Account

    async with WatchClient("http://localhost:8000", Account.from_key(key)) as client:
        incident_id = await client.report("0xabc...", "Fake airdrop site")
        await client.verify(incident_id)
"""

import time
from types import TracebackType
from typing import Any

import httpx
import structlog
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from nexus.security.signatures import canonical_report_message, verification_message

logger = structlog.get_logger(__name__)

API_PREFIX = "/api/communityWatch"


class WatchClientError(Exception):
    """The server rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def sign_text(account: LocalAccount, text: str) -> str:
    """personal_sign ``text`` and return the 0x-prefixed hex signature."""
    signed = account.sign_message(encode_defunct(text=text))
    return "0x" + bytes(signed.signature).hex()


class WatchClient:
    """Signs and submits community watch requests for one wallet."""

    def __init__(
        self,
        base_url: str,
        account: LocalAccount,
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._account = account
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout
        )

    @property
    def address(self) -> str:
        return str(self._account.address)

    async def __aenter__(self) -> "WatchClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._http_client.request(method, f"{API_PREFIX}{path}", **kwargs)
        except httpx.HTTPError as e:
            raise WatchClientError(f"Request failed: {e}") from e

        try:
            body: dict[str, Any] = response.json()
        except ValueError as e:
            raise WatchClientError(
                f"Unexpected response ({response.status_code})", response.status_code
            ) from e

        if response.is_error or not body.get("success", False):
            raise WatchClientError(
                str(body.get("error") or f"HTTP {response.status_code}"),
                response.status_code,
            )
        return body

    async def report(
        self,
        suspicious_address: str,
        details: str,
        timestamp: int | None = None,
    ) -> str:
        """
        Report an incident as this wallet.

        Returns:
            The new incident's ID
        """
        timestamp = timestamp if timestamp is not None else int(time.time() * 1000)
        reporter = self.address
        message = canonical_report_message(suspicious_address, details, reporter, timestamp)

        body = await self._request(
            "POST",
            "/report",
            json={
                "suspiciousAddress": suspicious_address,
                "details": details,
                "reporter": reporter,
                "timestamp": timestamp,
                "signature": sign_text(self._account, message),
            },
        )
        incident_id = str(body["incidentId"])
        logger.info("watch_client_reported", incident_id=incident_id)
        return incident_id

    async def verify(self, incident_id: str) -> dict[str, Any]:
        """Attest to an incident as this wallet."""
        return await self._request(
            "POST",
            "/verify",
            json={
                "incidentId": incident_id,
                "watcherAddress": self.address,
                "signature": sign_text(self._account, verification_message(incident_id)),
            },
        )

    async def list_incidents(self, status: str | None = None) -> list[dict[str, Any]]:
        params = {"status": status} if status else None
        body = await self._request("GET", "/incidents", params=params)
        incidents: list[dict[str, Any]] = body["incidents"]
        return incidents

    async def get_incident(self, incident_id: str) -> dict[str, Any]:
        body = await self._request("GET", f"/incidents/{incident_id}")
        incident: dict[str, Any] = body["incident"]
        return incident
