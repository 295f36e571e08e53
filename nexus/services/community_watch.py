"""
Community Watch Service

Incident workflow engine: accepts signed incident reports, collects
signed attestations from watchers, and promotes an incident from
REPORTED to VERIFIED once a quorum of distinct watchers has signed.

Every state change goes through the repository's atomic
``append_verifier``; the service only decides whether a request is
allowed and which domain event the outcome deserves.

Usage:
    service = CommunityWatchService(repository, event_bus, quorum=3)
    incident = await service.submit(
        suspicious_address="0xabc...",
        details="Fake airdrop site",
        reporter="0x123...",
        timestamp=1717000000000,
        signature="0x...",
    )
    result = await service.verify(incident.id, watcher_address, signature)
"""

import asyncio
from dataclasses import dataclass
from typing import Any

import structlog

from nexus.kernel.event_system import EventBus, EventQueueFullError
from nexus.models.events import EventType
from nexus.models.incident import Incident, IncidentCreate, IncidentStatus
from nexus.repositories.incident_repository import (
    DEFAULT_LIST_LIMIT,
    IncidentNotFoundError,
    IncidentRepository,
)
from nexus.security.signatures import (
    InvalidSignatureError,
    addresses_match,
    canonical_report_message,
    recover_signer,
    verification_message,
)

logger = structlog.get_logger(__name__)

EVENT_SOURCE = "service:community_watch"


# =============================================================================
# Errors
# =============================================================================


class CommunityWatchError(Exception):
    """Base error for rejected community watch requests."""

    status_code: int = 500

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class BadRequestError(CommunityWatchError):
    """The request itself is unacceptable."""

    status_code = 400


class MissingFieldsError(BadRequestError):
    """A required field is absent or empty."""

    def __init__(self, reason: str, missing: list[str] | None = None):
        super().__init__(reason)
        self.missing = missing or []


class SignatureMismatchError(BadRequestError):
    """The signature was not produced by the claimed account."""

    pass


class SelfVerificationError(BadRequestError):
    """A reporter tried to count towards their own incident's quorum."""

    pass


@dataclass(frozen=True)
class VerifyResult:
    """Outcome of a verification request."""

    incident_id: str
    status: IncidentStatus
    watchers: int
    transitioned: bool = False
    already_verified: bool = False
    duplicate: bool = False

    @property
    def message(self) -> str:
        if self.already_verified:
            return "Already verified"
        if self.transitioned:
            return "Incident verified"
        if self.duplicate:
            return "Already recorded"
        return "Verification recorded"


def _missing(fields: dict[str, Any]) -> list[str]:
    """Names of fields that are None or blank strings."""
    return [
        name
        for name, value in fields.items()
        if value is None or (isinstance(value, str) and not value.strip())
    ]


class CommunityWatchService:
    """
    Orchestrates incident submission and multi-party verification.

    Quorum and self-verification policy are fixed for the lifetime of
    the instance.
    """

    def __init__(
        self,
        repository: IncidentRepository,
        event_bus: EventBus,
        quorum: int = 3,
        allow_self_verification: bool = False,
        list_limit: int = DEFAULT_LIST_LIMIT,
    ):
        if quorum < 1:
            raise ValueError("quorum must be at least 1")

        self._repository = repository
        self._event_bus = event_bus
        self.quorum = quorum
        self.allow_self_verification = allow_self_verification
        self.list_limit = list_limit

    # =========================================================================
    # Submit
    # =========================================================================

    async def submit(
        self,
        suspicious_address: str | None,
        details: str | None,
        reporter: str | None,
        timestamp: int | float | None,
        signature: str | None,
    ) -> Incident:
        """
        Accept a signed incident report.

        The reporter signs ``canonical_report_message`` of the four form
        fields; the recovered signer must equal ``reporter``.

        Raises:
            MissingFieldsError: If any field is absent or empty
            SignatureMismatchError: If the signature is not the reporter's
            IncidentStoreError: If the incident could not be persisted
        """
        missing = _missing(
            {
                "suspiciousAddress": suspicious_address,
                "details": details,
                "reporter": reporter,
                "timestamp": timestamp,
                "signature": signature,
            }
        )
        if missing:
            logger.info("incident_report_rejected", reason="missing_fields", missing=missing)
            raise MissingFieldsError("Incomplete form data", missing=missing)

        # Narrowed by the presence check above
        assert suspicious_address is not None and details is not None
        assert reporter is not None and timestamp is not None and signature is not None

        message = canonical_report_message(suspicious_address, details, reporter, timestamp)
        self._require_signer(
            message,
            signature,
            reporter,
            reason="Signature does not match the reported address",
            log_event="incident_report_rejected",
        )

        data = IncidentCreate(
            suspicious_address=suspicious_address,
            details=details,
            reporter=reporter,
            report_signature=signature,
            timestamp=timestamp,
        )
        incident = await asyncio.shield(self._repository.create(data))

        logger.info(
            "incident_reported",
            incident_id=incident.id,
            reporter=incident.reporter,
        )
        await self._emit(EventType.INCIDENT_REPORTED, {"incident_id": incident.id})
        return incident

    # =========================================================================
    # Verify
    # =========================================================================

    async def verify(
        self,
        incident_id: str | None,
        watcher_address: str | None,
        signature: str | None,
    ) -> VerifyResult:
        """
        Record a watcher's signed attestation for an incident.

        Raises:
            MissingFieldsError: If any field is absent or empty
            IncidentNotFoundError: If the incident does not exist
            SignatureMismatchError: If the signature is not the watcher's
            SelfVerificationError: If the watcher reported the incident
                and self-verification is disabled
            IncidentStoreError: If the verification could not be recorded
        """
        missing = _missing(
            {
                "incidentId": incident_id,
                "watcherAddress": watcher_address,
                "signature": signature,
            }
        )
        if missing:
            logger.info("incident_verification_rejected", reason="missing_fields", missing=missing)
            raise MissingFieldsError("Missing fields", missing=missing)

        assert incident_id is not None and watcher_address is not None and signature is not None

        incident = await self._repository.get_by_id(incident_id)
        if incident is None:
            logger.info("incident_verification_rejected", reason="not_found", incident_id=incident_id)
            raise IncidentNotFoundError(incident_id)

        if incident.is_verified:
            return VerifyResult(
                incident_id=incident.id,
                status=IncidentStatus.VERIFIED,
                watchers=incident.watcher_count,
                already_verified=True,
            )

        self._require_signer(
            verification_message(incident_id),
            signature,
            watcher_address,
            reason="Signature mismatch",
            log_event="incident_verification_rejected",
            incident_id=incident_id,
        )

        watcher = watcher_address.lower()
        if not self.allow_self_verification and addresses_match(watcher, incident.reporter):
            logger.info(
                "incident_verification_rejected",
                reason="self_verification",
                incident_id=incident_id,
                watcher=watcher,
            )
            raise SelfVerificationError("Reporters cannot verify their own incident")

        outcome = await asyncio.shield(
            self._repository.append_verifier(incident_id, watcher, self.quorum)
        )
        updated = outcome.incident

        if outcome.transitioned:
            logger.info(
                "incident_verified",
                incident_id=incident_id,
                watchers=updated.watcher_count,
            )
            await self._emit(EventType.INCIDENT_VERIFIED, {"incident_id": incident_id})
        elif outcome.appended:
            logger.info(
                "incident_partially_verified",
                incident_id=incident_id,
                watcher=watcher,
                watchers=updated.watcher_count,
            )
            await self._emit(
                EventType.INCIDENT_PARTIALLY_VERIFIED,
                {
                    "incident_id": incident_id,
                    "watcher_id": watcher,
                    "count": updated.watcher_count,
                },
            )
        else:
            logger.info(
                "incident_verification_duplicate",
                incident_id=incident_id,
                watcher=watcher,
            )

        return VerifyResult(
            incident_id=incident_id,
            status=IncidentStatus(updated.status),
            watchers=updated.watcher_count,
            transitioned=outcome.transitioned,
            already_verified=updated.is_verified and not outcome.transitioned,
            duplicate=not outcome.appended and not updated.is_verified,
        )

    # =========================================================================
    # Reads
    # =========================================================================

    async def list_incidents(
        self,
        status: IncidentStatus | None = None,
        limit: int | None = None,
    ) -> list[Incident]:
        """List incidents newest first, optionally filtered by status."""
        effective = min(limit or self.list_limit, self.list_limit)
        return await self._repository.list_by_status(status, limit=effective)

    async def get_incident(self, incident_id: str) -> Incident:
        """
        Raises:
            IncidentNotFoundError: If the incident does not exist
        """
        incident = await self._repository.get_by_id(incident_id)
        if incident is None:
            raise IncidentNotFoundError(incident_id)
        return incident

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_signer(
        self,
        message: str,
        signature: str,
        claimed: str,
        reason: str,
        log_event: str,
        **log_context: Any,
    ) -> None:
        try:
            signer = recover_signer(message, signature)
        except InvalidSignatureError as e:
            logger.info(log_event, reason="invalid_signature", error=str(e), **log_context)
            raise SignatureMismatchError(reason) from e

        if not addresses_match(signer, claimed):
            logger.info(
                log_event,
                reason="signature_mismatch",
                claimed=claimed.lower(),
                recovered=signer.lower(),
                **log_context,
            )
            raise SignatureMismatchError(reason)

    async def _emit(self, event_type: EventType, payload: dict[str, Any]) -> None:
        """Hand an event to the bus; delivery problems never fail the request."""
        if not self._event_bus.is_running:
            logger.warning("incident_event_dropped", event_type=event_type.value, reason="bus_stopped")
            return
        try:
            await self._event_bus.publish(event_type, payload, source=EVENT_SOURCE)
        except EventQueueFullError as e:
            logger.warning("incident_event_dropped", event_type=event_type.value, error=str(e))
