"""
Tests for incident and chat models.
"""

from datetime import UTC, datetime

from nexus.models import Incident, IncidentCreate, IncidentStatus, SystemChatMessage


class TestIncidentCreate:
    def test_reporter_lower_cased(self) -> None:
        data = IncidentCreate(
            suspiciousAddress="0xBad",
            details="d",
            reporter="0xABCDEF",
            reportSignature="0xsig",
            timestamp=1,
        )

        assert data.reporter == "0xabcdef"
        assert data.suspicious_address == "0xBad"


class TestIncident:
    def test_defaults(self) -> None:
        incident = Incident(
            suspicious_address="0xBad",
            details="d",
            reporter="0xabc",
            report_signature="0xsig",
            timestamp=1,
        )

        assert incident.status == IncidentStatus.REPORTED
        assert incident.verifiers == []
        assert incident.watcher_count == 0
        assert incident.is_verified is False
        assert incident.verified_at is None

    def test_null_verifiers_from_store_become_empty_list(self) -> None:
        incident = Incident.model_validate(
            {
                "id": "i1",
                "suspicious_address": "0xBad",
                "details": "d",
                "reporter": "0xabc",
                "report_signature": "0xsig",
                "timestamp": 1,
                "status": "VERIFIED",
                "verifiers": None,
                "created_at": "2024-05-29T12:00:00Z",
            }
        )

        assert incident.verifiers == []
        assert incident.is_verified is True
        assert incident.created_at == datetime(2024, 5, 29, 12, 0, tzinfo=UTC)

    def test_has_verifier_is_case_insensitive(self) -> None:
        incident = Incident(
            suspicious_address="0xBad",
            details="d",
            reporter="0xabc",
            report_signature="0xsig",
            timestamp=1,
            verifiers=["0xdef"],
        )

        assert incident.has_verifier("0xDEF")
        assert not incident.has_verifier("0x123")

    def test_json_uses_camel_case(self) -> None:
        incident = Incident(
            suspicious_address="0xBad",
            details="d",
            reporter="0xabc",
            report_signature="0xsig",
            timestamp=1,
        )

        payload = incident.model_dump(mode="json", by_alias=True)

        assert payload["suspiciousAddress"] == "0xBad"
        assert payload["reportSignature"] == "0xsig"
        assert payload["status"] == "REPORTED"
        assert "createdAt" in payload


class TestSystemChatMessage:
    def test_wire_format(self) -> None:
        message = SystemChatMessage(content="hi", color="text-red-400")

        wire = message.to_wire()

        assert wire["username"] == "System"
        assert wire["type"] == "text"
        assert wire["userAddress"] == ""
        assert wire["color"] == "text-red-400"
        assert isinstance(wire["createdAt"], str)
