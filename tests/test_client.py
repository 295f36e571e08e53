"""
Tests for the signing WatchClient against the in-process API.
"""

from collections.abc import AsyncGenerator

import httpx
import pytest

from nexus.api.app import NexusApp, create_app
from nexus.client import WatchClient, WatchClientError
from nexus.repositories.incident_repository import InMemoryIncidentRepository
from tests.conftest import SUSPICIOUS_ADDRESS, RecordingBroadcaster


@pytest.fixture
async def http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    nexus = NexusApp(repository=InMemoryIncidentRepository(), broadcaster=RecordingBroadcaster())
    await nexus.initialize()
    transport = httpx.ASGITransport(app=create_app(nexus=nexus))
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    await nexus.shutdown(timeout_seconds=2.0)


class TestWatchClient:
    @pytest.mark.asyncio
    async def test_report_and_verify_to_quorum(self, http_client, reporter, watchers) -> None:
        async with WatchClient("http://testserver", reporter, http_client=http_client) as client:
            incident_id = await client.report(SUSPICIOUS_ADDRESS, "Phishing dApp")

        results = []
        for watcher in watchers[:3]:
            watch = WatchClient("http://testserver", watcher, http_client=http_client)
            results.append(await watch.verify(incident_id))

        assert [r["watchers"] for r in results] == [1, 2, 3]
        assert results[-1]["status"] == "VERIFIED"

        incident = await watch.get_incident(incident_id)
        assert incident["suspiciousAddress"] == SUSPICIOUS_ADDRESS
        assert incident["reporter"] == reporter.address.lower()

        verified = await watch.list_incidents(status="VERIFIED")
        assert [i["id"] for i in verified] == [incident_id]

    @pytest.mark.asyncio
    async def test_reporter_verification_rejected(self, http_client, reporter) -> None:
        client = WatchClient("http://testserver", reporter, http_client=http_client)
        incident_id = await client.report(SUSPICIOUS_ADDRESS, "Rug pull", timestamp=1)

        with pytest.raises(WatchClientError) as exc_info:
            await client.verify(incident_id)

        assert exc_info.value.status_code == 400
        assert "own incident" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_unknown_incident(self, http_client, watchers) -> None:
        client = WatchClient("http://testserver", watchers[0], http_client=http_client)

        with pytest.raises(WatchClientError) as exc_info:
            await client.get_incident("missing")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_transport_failure_wrapped(self, reporter) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused")

        http = httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://testserver"
        )
        client = WatchClient("http://testserver", reporter, http_client=http)

        with pytest.raises(WatchClientError):
            await client.list_incidents()
        await http.aclose()
