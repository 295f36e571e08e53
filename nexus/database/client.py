"""
Neo4j Async Client

Async wrapper for the Neo4j Python driver with connection pooling,
transaction management, and retry logic.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncManagedTransaction, AsyncSession
from neo4j.exceptions import (
    Neo4jError,
    ServiceUnavailable,
    SessionExpired,
    TransientError,
)
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from nexus.config import settings

logger = structlog.get_logger(__name__)


# Retry configuration for transient errors
RETRYABLE_EXCEPTIONS = (ServiceUnavailable, SessionExpired, TransientError)


class Neo4jClient:
    """
    Async Neo4j client.

    Provides connection pooling, transaction management,
    and helper methods for common operations.
    """

    def __init__(
        self,
        uri: str | None = None,
        user: str | None = None,
        password: str | None = None,
        database: str | None = None,
    ):
        self._uri = uri or settings.neo4j_uri
        self._user = user or settings.neo4j_user
        self._password = password or settings.neo4j_password or ""
        self._database = database or settings.neo4j_database

        self._driver: AsyncDriver | None = None
        self._connected = False

    async def connect(self) -> None:
        """Establish connection to Neo4j."""
        if self._driver is not None:
            return

        logger.info(
            "neo4j_connecting",
            uri=self._uri,
            database=self._database,
        )

        self._driver = AsyncGraphDatabase.driver(
            self._uri,
            auth=(self._user, self._password),
            max_connection_lifetime=settings.neo4j_max_connection_lifetime,
            max_connection_pool_size=settings.neo4j_max_connection_pool_size,
            connection_timeout=settings.neo4j_connection_timeout,
        )

        try:
            await self._driver.verify_connectivity()
            self._connected = True
            logger.info("neo4j_connected")
        except (Neo4jError, ServiceUnavailable, OSError) as e:
            logger.error("neo4j_connection_failed", error=str(e))
            await self._driver.close()
            self._driver = None
            raise

    async def close(self) -> None:
        """Close the Neo4j connection."""
        if self._driver is not None:
            await self._driver.close()
            self._driver = None
            self._connected = False
            logger.info("neo4j_connection_closed")

    @property
    def is_connected(self) -> bool:
        """Check if client is connected."""
        return self._connected and self._driver is not None

    def _get_driver(self) -> AsyncDriver:
        """Get the driver instance, raising if not connected."""
        if self._driver is None:
            raise RuntimeError("Neo4j client not connected. Call connect() first.")
        return self._driver

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get a Neo4j session.

        Usage:
            async with client.session() as session:
                result = await session.run("MATCH (n) RETURN n")
        """
        driver = self._get_driver()
        async with driver.session(database=self._database) as session:
            yield session

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
    )
    async def execute(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Execute a Cypher query and return results.

        Args:
            query: Cypher query string
            parameters: Query parameters

        Returns:
            List of result records as dictionaries
        """
        async with self.session() as session:
            result = await session.run(query, parameters or {})
            records = [dict(record) async for record in result]
            return records

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(RETRYABLE_EXCEPTIONS),
    )
    async def execute_single(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """
        Execute a query and return a single result.

        Args:
            query: Cypher query string
            parameters: Query parameters

        Returns:
            Single result record or None
        """
        async with self.session() as session:
            result = await session.run(query, parameters or {})
            record = await result.single()
            return dict(record) if record else None

    async def write_single(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """
        Run a write query in a managed transaction and return one record.

        The driver retries the whole unit of work on transient failures
        (deadlocks, leader switches), so the query must be safe to re-run.
        """

        async def _work(tx: AsyncManagedTransaction) -> dict[str, Any] | None:
            result = await tx.run(query, parameters or {})
            record = await result.single()
            return dict(record) if record else None

        async with self.session() as session:
            return await session.execute_write(_work)

    async def health_check(self) -> dict[str, Any]:
        """
        Perform a health check on the database connection.

        Returns:
            Health check result
        """
        try:
            result = await self.execute_single("RETURN 1 AS ok")
            return {
                "status": "healthy" if result and result.get("ok") == 1 else "unhealthy",
                "database": self._database,
            }
        except (Neo4jError, ServiceUnavailable, SessionExpired, OSError, RuntimeError) as e:
            logger.error("neo4j_health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "database": self._database,
                "error": str(e),
            }

    async def verify_connection(self) -> bool:
        """Return True when the database answers a trivial query."""
        health = await self.health_check()
        return health.get("status") == "healthy"
