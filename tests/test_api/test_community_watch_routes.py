"""
Tests for the community watch HTTP API.

Runs the full application (lifespan, event bus, notification sink) with
an in-memory incident store and a recording chat broadcaster.
"""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from nexus.api.app import NexusApp, create_app
from nexus.repositories.incident_repository import InMemoryIncidentRepository
from tests.conftest import RecordingBroadcaster

PREFIX = "/api/communityWatch"


@pytest.fixture
def chat() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def nexus(chat: RecordingBroadcaster) -> NexusApp:
    return NexusApp(repository=InMemoryIncidentRepository(), broadcaster=chat)


@pytest.fixture
def client(nexus: NexusApp) -> Generator[TestClient, None, None]:
    with TestClient(create_app(nexus=nexus)) as test_client:
        yield test_client


@pytest.fixture
def report_body(make_report):
    """camelCase request body for a signed report."""

    def _body(account, **kwargs: Any) -> dict[str, Any]:
        report = make_report(account, **kwargs)
        return {
            "suspiciousAddress": report["suspicious_address"],
            "details": report["details"],
            "reporter": report["reporter"],
            "timestamp": report["timestamp"],
            "signature": report["signature"],
        }

    return _body


def verify_body(account, incident_id: str, sign_verification) -> dict[str, Any]:
    return {
        "incidentId": incident_id,
        "watcherAddress": account.address,
        "signature": sign_verification(account, incident_id),
    }


def drain_events(client: TestClient, nexus: NexusApp) -> None:
    assert nexus.event_bus is not None
    assert client.portal.call(nexus.event_bus.drain, 2.0)


class TestReport:
    def test_flat_body(self, client, reporter, report_body) -> None:
        response = client.post(f"{PREFIX}/report", json=report_body(reporter))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"] == "Incident reported successfully"
        assert data["incidentId"]

    def test_nested_form_data_body(self, client, reporter, report_body) -> None:
        body = report_body(reporter)
        signature = body.pop("signature")

        response = client.post(
            f"{PREFIX}/report", json={"formData": body, "signature": signature}
        )

        assert response.status_code == 200
        incident_id = response.json()["incidentId"]
        stored = client.get(f"{PREFIX}/incidents/{incident_id}").json()["incident"]
        assert stored["reporter"] == reporter.address.lower()
        assert stored["status"] == "REPORTED"
        assert stored["verifiers"] == []
        assert stored["watchers"] == 0

    def test_incomplete_form_data(self, client, reporter, report_body) -> None:
        body = report_body(reporter)
        del body["details"]

        response = client.post(f"{PREFIX}/report", json=body)

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Incomplete form data"}

    def test_signature_mismatch(self, client, reporter, watchers, report_body) -> None:
        body = report_body(reporter, reporter=watchers[0].address)

        response = client.post(f"{PREFIX}/report", json=body)

        assert response.status_code == 400
        assert response.json()["error"] == "Signature does not match the reported address"
        assert client.get(f"{PREFIX}/incidents").json()["incidents"] == []

    def test_unknown_field_rejected(self, client, reporter, report_body) -> None:
        body = report_body(reporter)
        body["status"] = "VERIFIED"

        response = client.post(f"{PREFIX}/report", json=body)

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["error"] == "Invalid request"
        assert "VERIFIED" not in str(data["details"])

    def test_report_announced_in_chat(self, client, nexus, chat, reporter, report_body) -> None:
        incident_id = client.post(f"{PREFIX}/report", json=report_body(reporter)).json()[
            "incidentId"
        ]
        drain_events(client, nexus)

        assert len(chat.messages) == 1
        assert f"Incident #{incident_id} is reported" in chat.messages[0].content


class TestVerify:
    def test_quorum_flow(
        self, client, nexus, chat, reporter, watchers, report_body, sign_verification
    ) -> None:
        incident_id = client.post(f"{PREFIX}/report", json=report_body(reporter)).json()[
            "incidentId"
        ]

        responses = [
            client.post(f"{PREFIX}/verify", json=verify_body(w, incident_id, sign_verification))
            for w in watchers[:3]
        ]

        assert [r.status_code for r in responses] == [200, 200, 200]
        assert [r.json()["watchers"] for r in responses] == [1, 2, 3]
        assert [r.json()["status"] for r in responses] == ["REPORTED", "REPORTED", "VERIFIED"]
        assert responses[0].json()["message"] == "Verification recorded"
        assert responses[2].json()["message"] == "Incident verified"

        late = client.post(
            f"{PREFIX}/verify", json=verify_body(watchers[3], incident_id, sign_verification)
        )
        assert late.status_code == 200
        assert late.json()["message"] == "Already verified"
        assert late.json()["watchers"] == 3

        incident = client.get(f"{PREFIX}/incidents/{incident_id}").json()["incident"]
        assert incident["status"] == "VERIFIED"
        assert incident["verifiedAt"] is not None
        assert incident["verifiers"] == [w.address.lower() for w in watchers[:3]]

        drain_events(client, nexus)
        assert [m.color for m in chat.messages] == [
            "text-red-400",
            "text-yellow-400",
            "text-yellow-400",
            "text-green-400",
        ]

    def test_duplicate_verification_is_idempotent(
        self, client, reporter, watchers, report_body, sign_verification
    ) -> None:
        incident_id = client.post(f"{PREFIX}/report", json=report_body(reporter)).json()[
            "incidentId"
        ]
        body = verify_body(watchers[0], incident_id, sign_verification)

        first = client.post(f"{PREFIX}/verify", json=body)
        second = client.post(f"{PREFIX}/verify", json=body)

        assert second.status_code == 200
        assert second.json()["message"] == "Already recorded"
        assert first.json()["watchers"] == second.json()["watchers"] == 1

    def test_missing_fields(self, client) -> None:
        response = client.post(f"{PREFIX}/verify", json={"incidentId": "abc"})

        assert response.status_code == 400
        assert response.json()["error"] == "Missing fields"

    def test_unknown_incident(self, client, watchers, sign_verification) -> None:
        response = client.post(
            f"{PREFIX}/verify", json=verify_body(watchers[0], "missing", sign_verification)
        )

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Incident not found"}

    def test_signature_for_other_incident(
        self, client, reporter, watchers, report_body, sign_verification
    ) -> None:
        incident_id = client.post(f"{PREFIX}/report", json=report_body(reporter)).json()[
            "incidentId"
        ]
        body = verify_body(watchers[0], incident_id, sign_verification)
        body["signature"] = sign_verification(watchers[0], "some-other-incident")

        response = client.post(f"{PREFIX}/verify", json=body)

        assert response.status_code == 400
        assert response.json()["error"] == "Signature mismatch"

    def test_reporter_cannot_verify(
        self, client, reporter, report_body, sign_verification
    ) -> None:
        incident_id = client.post(f"{PREFIX}/report", json=report_body(reporter)).json()[
            "incidentId"
        ]

        response = client.post(
            f"{PREFIX}/verify", json=verify_body(reporter, incident_id, sign_verification)
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Reporters cannot verify their own incident"


class TestIncidents:
    def test_list_filters_by_status(
        self, client, reporter, watchers, report_body, sign_verification
    ) -> None:
        verified_id = client.post(
            f"{PREFIX}/report", json=report_body(reporter, details="first")
        ).json()["incidentId"]
        open_id = client.post(
            f"{PREFIX}/report", json=report_body(reporter, details="second")
        ).json()["incidentId"]
        for watcher in watchers[:3]:
            client.post(
                f"{PREFIX}/verify", json=verify_body(watcher, verified_id, sign_verification)
            )

        everything = client.get(f"{PREFIX}/incidents").json()["incidents"]
        verified = client.get(f"{PREFIX}/incidents", params={"status": "VERIFIED"}).json()
        reported = client.get(f"{PREFIX}/incidents", params={"status": "REPORTED"}).json()

        assert {i["id"] for i in everything} == {verified_id, open_id}
        assert [i["id"] for i in verified["incidents"]] == [verified_id]
        assert [i["id"] for i in reported["incidents"]] == [open_id]
        assert verified["incidents"][0]["watchers"] == 3

    def test_invalid_status_filter(self, client) -> None:
        response = client.get(f"{PREFIX}/incidents", params={"status": "PENDING"})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    def test_get_unknown_incident(self, client) -> None:
        response = client.get(f"{PREFIX}/incidents/nope")

        assert response.status_code == 404
        assert response.json()["error"] == "Incident not found"


class TestProbes:
    def test_health_and_ready(self, client) -> None:
        assert client.get("/health").json() == {"status": "healthy"}

        ready = client.get("/ready")
        assert ready.status_code == 200
        assert ready.json() == {"status": "ready"}

    def test_root_reports_status(self, client) -> None:
        data = client.get("/").json()

        assert data["status"]["status"] == "ready"
        assert data["status"]["store_backend"] == "memory"

    def test_correlation_id_header(self, client) -> None:
        response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})

        assert response.headers["X-Correlation-ID"] == "abc-123"


class TestChatWebSocket:
    def test_system_messages_reach_chat_clients(self, reporter, report_body) -> None:
        nexus = NexusApp(repository=InMemoryIncidentRepository())

        with TestClient(create_app(nexus=nexus)) as client:
            with client.websocket_connect("/ws/chat") as ws:
                assert ws.receive_json()["type"] == "connected"

                ws.send_json({"type": "ping"})
                assert ws.receive_json() == {"type": "pong"}

                incident_id = client.post(
                    f"{PREFIX}/report", json=report_body(reporter)
                ).json()["incidentId"]

                message = ws.receive_json()
                assert message["type"] == "chatMessage"
                assert message["data"]["username"] == "System"
                assert message["data"]["color"] == "text-red-400"
                assert incident_id in message["data"]["content"]
