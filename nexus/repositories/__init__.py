"""
Nexus Repositories

Data access layer for incidents.
"""

from nexus.repositories.incident_repository import (
    IncidentNotFoundError,
    IncidentRepository,
    IncidentStoreError,
    InMemoryIncidentRepository,
    Neo4jIncidentRepository,
)

__all__ = [
    "IncidentRepository",
    "InMemoryIncidentRepository",
    "Neo4jIncidentRepository",
    "IncidentNotFoundError",
    "IncidentStoreError",
]
