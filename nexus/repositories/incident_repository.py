"""
Incident Repository

Keyed store for community watch incidents. The only mutation after
creation is ``append_verifier``, which each backend executes atomically
per incident so concurrent verifications can neither lose a watcher nor
fire the REPORTED -> VERIFIED transition twice.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import structlog
from neo4j.exceptions import DriverError, Neo4jError

from nexus.database.client import Neo4jClient
from nexus.models.base import generate_id, utc_now
from nexus.models.incident import (
    Incident,
    IncidentCreate,
    IncidentStatus,
    VerificationOutcome,
)

logger = structlog.get_logger(__name__)

DEFAULT_LIST_LIMIT = 200

STORE_EXCEPTIONS = (Neo4jError, DriverError, OSError)


class IncidentNotFoundError(LookupError):
    """No incident exists with the requested ID."""

    def __init__(self, incident_id: str):
        super().__init__(f"Incident not found: {incident_id}")
        self.incident_id = incident_id


class IncidentStoreError(RuntimeError):
    """The backing store could not complete the operation."""

    pass


class IncidentRepository(ABC):
    """
    Storage contract for incidents.

    Implementations own every persisted Incident; callers receive copies
    and can only change state through ``append_verifier``.
    """

    def __init__(self) -> None:
        self.logger = structlog.get_logger(self.__class__.__name__)

    async def initialize(self) -> None:
        """Prepare the backend (indexes, constraints). Idempotent."""
        return None

    @abstractmethod
    async def create(self, data: IncidentCreate) -> Incident:
        """Insert a new REPORTED incident with no verifiers."""

    @abstractmethod
    async def get_by_id(self, incident_id: str) -> Incident | None:
        """Fetch an incident, or None if it does not exist."""

    @abstractmethod
    async def list_by_status(
        self,
        status: IncidentStatus | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[Incident]:
        """List incidents newest ``timestamp`` first; ``None`` lists all."""

    @abstractmethod
    async def append_verifier(
        self,
        incident_id: str,
        verifier_id: str,
        quorum: int,
    ) -> VerificationOutcome:
        """
        Atomically add a verifier and promote the incident at quorum.

        A verifier already present, or any verifier once the incident is
        VERIFIED, is a no-op. ``transitioned`` is True only for the single
        call that moved the incident to VERIFIED.

        Raises:
            IncidentNotFoundError: If the incident does not exist
            IncidentStoreError: If the backend fails
        """

    @staticmethod
    def _new_incident(data: IncidentCreate) -> Incident:
        return Incident(
            id=generate_id(),
            suspicious_address=data.suspicious_address,
            details=data.details,
            reporter=data.reporter.lower(),
            report_signature=data.report_signature,
            timestamp=data.timestamp,
            status=IncidentStatus.REPORTED,
            verifiers=[],
            created_at=utc_now(),
        )


# =============================================================================
# In-memory backend
# =============================================================================


class InMemoryIncidentRepository(IncidentRepository):
    """
    Process-local store for development and tests.

    Each incident has its own asyncio.Lock, created on first use.
    """

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[str, Incident] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, incident_id: str) -> asyncio.Lock:
        lock = self._locks.get(incident_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[incident_id] = lock
        return lock

    async def create(self, data: IncidentCreate) -> Incident:
        incident = self._new_incident(data)
        self._records[incident.id] = incident
        self.logger.info("incident_created", incident_id=incident.id, reporter=incident.reporter)
        return incident.model_copy(deep=True)

    async def get_by_id(self, incident_id: str) -> Incident | None:
        incident = self._records.get(incident_id)
        return incident.model_copy(deep=True) if incident else None

    async def list_by_status(
        self,
        status: IncidentStatus | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[Incident]:
        matches = [
            incident
            for incident in self._records.values()
            if status is None or incident.status == status
        ]
        matches.sort(key=lambda incident: incident.timestamp, reverse=True)
        return [incident.model_copy(deep=True) for incident in matches[:limit]]

    async def append_verifier(
        self,
        incident_id: str,
        verifier_id: str,
        quorum: int,
    ) -> VerificationOutcome:
        verifier = verifier_id.lower()

        async with self._lock_for(incident_id):
            incident = self._records.get(incident_id)
            if incident is None:
                raise IncidentNotFoundError(incident_id)

            if incident.is_verified or incident.has_verifier(verifier):
                return VerificationOutcome(
                    incident=incident.model_copy(deep=True),
                    appended=False,
                    transitioned=False,
                )

            verifiers = [*incident.verifiers, verifier]
            transitioned = len(verifiers) >= quorum
            updated = incident.model_copy(
                update={
                    "verifiers": verifiers,
                    "status": IncidentStatus.VERIFIED if transitioned else incident.status,
                    "verified_at": utc_now() if transitioned else incident.verified_at,
                },
                deep=True,
            )
            self._records[incident_id] = updated

        return VerificationOutcome(
            incident=updated.model_copy(deep=True),
            appended=True,
            transitioned=transitioned,
        )


# =============================================================================
# Neo4j backend
# =============================================================================


class Neo4jIncidentRepository(IncidentRepository):
    """Durable store keeping each incident as an ``(:Incident)`` node."""

    node_label = "Incident"

    def __init__(self, client: Neo4jClient):
        super().__init__()
        self.client = client

    def _to_model(self, record: dict[str, Any] | None) -> Incident | None:
        if not record:
            return None
        return Incident.model_validate(record)

    async def initialize(self) -> None:
        try:
            await self.client.execute(
                "CREATE CONSTRAINT incident_id_unique IF NOT EXISTS "
                "FOR (i:Incident) REQUIRE i.id IS UNIQUE"
            )
            await self.client.execute(
                "CREATE INDEX incident_status_idx IF NOT EXISTS "
                "FOR (i:Incident) ON (i.status)"
            )
        except STORE_EXCEPTIONS as e:
            raise IncidentStoreError(f"Failed to initialize incident schema: {e}") from e
        self.logger.info("incident_schema_ready")

    async def create(self, data: IncidentCreate) -> Incident:
        incident = self._new_incident(data)

        query = """
        CREATE (i:Incident {
            id: $id,
            suspicious_address: $suspicious_address,
            details: $details,
            reporter: $reporter,
            report_signature: $report_signature,
            timestamp: $timestamp,
            status: $status,
            verifiers: [],
            created_at: $created_at
        })
        RETURN i {.*} AS entity
        """

        try:
            result = await self.client.write_single(
                query,
                {
                    "id": incident.id,
                    "suspicious_address": incident.suspicious_address,
                    "details": incident.details,
                    "reporter": incident.reporter,
                    "report_signature": incident.report_signature,
                    "timestamp": incident.timestamp,
                    "status": IncidentStatus.REPORTED.value,
                    "created_at": incident.created_at.isoformat(),
                },
            )
        except STORE_EXCEPTIONS as e:
            raise IncidentStoreError(f"Failed to create incident: {e}") from e

        created = self._to_model(result["entity"] if result else None)
        if created is None:
            raise IncidentStoreError("Incident create returned no record")

        self.logger.info("incident_created", incident_id=created.id, reporter=created.reporter)
        return created

    async def get_by_id(self, incident_id: str) -> Incident | None:
        query = """
        MATCH (i:Incident {id: $id})
        RETURN i {.*} AS entity
        """
        try:
            result = await self.client.execute_single(query, {"id": incident_id})
        except STORE_EXCEPTIONS as e:
            raise IncidentStoreError(f"Failed to fetch incident: {e}") from e

        return self._to_model(result.get("entity") if result else None)

    async def list_by_status(
        self,
        status: IncidentStatus | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[Incident]:
        query = """
        MATCH (i:Incident)
        WHERE $status IS NULL OR i.status = $status
        RETURN i {.*} AS entity
        ORDER BY i.timestamp DESC
        LIMIT $limit
        """
        status_value = IncidentStatus(status).value if status is not None else None
        try:
            results = await self.client.execute(
                query,
                {"status": status_value, "limit": max(1, limit)},
            )
        except STORE_EXCEPTIONS as e:
            raise IncidentStoreError(f"Failed to list incidents: {e}") from e

        return [
            incident
            for incident in (self._to_model(r.get("entity")) for r in results)
            if incident is not None
        ]

    async def append_verifier(
        self,
        incident_id: str,
        verifier_id: str,
        quorum: int,
    ) -> VerificationOutcome:
        # Writing _lock first takes the node's write lock for the rest of the
        # transaction, so the membership test and the status flip see the
        # latest committed verifier list.
        query = """
        MATCH (i:Incident {id: $id})
        SET i._lock = true
        WITH i, coalesce(i.verifiers, []) AS current
        WITH i, current, (i.status = 'VERIFIED' OR $verifier IN current) AS skip
        WITH i, skip,
             CASE WHEN skip THEN current ELSE current + $verifier END AS next_verifiers
        WITH i, skip, next_verifiers,
             (NOT skip AND size(next_verifiers) >= $quorum) AS transitioned
        SET i.verifiers = next_verifiers,
            i.status = CASE WHEN transitioned THEN 'VERIFIED' ELSE i.status END,
            i.verified_at = CASE WHEN transitioned THEN $now ELSE i.verified_at END
        REMOVE i._lock
        RETURN i {.*} AS entity, NOT skip AS appended, transitioned
        """

        try:
            result = await self.client.write_single(
                query,
                {
                    "id": incident_id,
                    "verifier": verifier_id.lower(),
                    "quorum": quorum,
                    "now": utc_now().isoformat(),
                },
            )
        except STORE_EXCEPTIONS as e:
            raise IncidentStoreError(f"Failed to record verification: {e}") from e

        if not result:
            raise IncidentNotFoundError(incident_id)

        incident = self._to_model(result.get("entity"))
        if incident is None:
            raise IncidentStoreError("Verification update returned no record")

        return VerificationOutcome(
            incident=incident,
            appended=bool(result.get("appended")),
            transitioned=bool(result.get("transitioned")),
        )
