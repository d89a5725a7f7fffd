"""
Document store contract consumed by the search, ingestion and archival code.

Partitions are named indices, aliases or wildcard patterns. Queries are plain
query-DSL dictionaries as produced by ``docindex.core.query``.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional

from .types import BulkItemResult, KnnQuery, SearchPage


class StoreError(Exception):
    """Raised when the store is unreachable or answers with a non-success status."""

    def __init__(self, operation: str, reason: str, status: Optional[int] = None):
        self.operation = operation
        self.reason = reason
        self.status = status
        message = f"{operation} failed: {reason}"
        if status is not None:
            message += f" (status {status})"
        super().__init__(message)


class IDocumentStore(ABC):
    """Abstract interface for the document store."""

    @abstractmethod
    async def exists(self, name: str) -> bool:
        """Return True if an index or alias with this name exists."""

    @abstractmethod
    async def alias_exists(self, name: str) -> bool:
        """Return True if an alias with this name exists."""

    @abstractmethod
    async def create_partition(self, name: str, schema: Dict[str, Any], alias: Optional[str] = None) -> None:
        """Create an index with the given settings/mappings, optionally behind an alias."""

    @abstractmethod
    async def create_partition_template(self, name: str, pattern: str, schema: Dict[str, Any]) -> None:
        """Register a template applied to every index later created under ``pattern``."""

    @abstractmethod
    async def search(
        self,
        partitions: List[str],
        query: Dict[str, Any],
        sort: Optional[List[Dict[str, Any]]] = None,
        size: int = 10,
        from_: int = 0,
        knn: Optional[KnnQuery] = None,
        post_filter: Optional[Dict[str, Any]] = None,
    ) -> SearchPage:
        """Search across the given partitions."""

    @abstractmethod
    async def bulk_write(self, partition: str, documents: List[Dict[str, Any]]) -> List[BulkItemResult]:
        """Index documents in one request and return one result per document, in order."""

    @abstractmethod
    async def reindex(self, sources: List[str], query: Dict[str, Any], destination: str) -> int:
        """Copy matching documents into ``destination`` and return how many were written."""

    @abstractmethod
    async def delete_by_query(self, partition: str, query: Dict[str, Any]) -> int:
        """Delete matching documents and return how many were removed."""

    @abstractmethod
    async def aggregate_by_year(self, partition: str, query: Dict[str, Any], field: str = "createdAt") -> Dict[int, int]:
        """Return {calendar year: document count} for matching documents. Empty years are omitted."""

    @abstractmethod
    def scan(self, partition: str, query: Dict[str, Any], page_size: int = 1000) -> AsyncIterator[Dict[str, Any]]:
        """Stream every matching document source."""

    async def ping(self) -> bool:
        """Return True if the store answers."""
        return True

    async def close(self) -> None:
        """Release client resources."""
        return None
