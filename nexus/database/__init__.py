"""
Nexus Database Module

Async Neo4j client used by the durable incident store.
"""

from nexus.database.client import Neo4jClient

__all__ = ["Neo4jClient"]
