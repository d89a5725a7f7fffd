"""
Elasticsearch-backed document store.

Every call goes through ``_call`` so client exceptions leave this module as
``StoreError`` with the server's reason attached.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Dict, List, Optional

from elasticsearch import ApiError, AsyncElasticsearch, TransportError
from elasticsearch.helpers import async_scan

from .base import IDocumentStore, StoreError
from .types import BulkItemResult, KnnQuery, SearchPage

logger = logging.getLogger(__name__)


def _error_reason(exc: Exception) -> str:
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("reason"):
            return str(error["reason"])
        if isinstance(error, str):
            return error
    message = getattr(exc, "message", None)
    return str(message or exc) or "Unknown error"


def _error_status(exc: Exception) -> Optional[int]:
    meta = getattr(exc, "meta", None)
    status = getattr(meta, "status", None)
    if isinstance(status, int):
        return status
    return None


def _failures_reason(failures: List[Dict[str, Any]]) -> str:
    first = failures[0] if failures else {}
    cause = first.get("cause") if isinstance(first, dict) else None
    if isinstance(cause, dict) and cause.get("reason"):
        return f"{len(failures)} failures, first: {cause['reason']}"
    return f"{len(failures)} failures"


def _create_client(
    url: str,
    username: Optional[str],
    password: Optional[str],
    verify_certs: bool,
    request_timeout: float,
) -> AsyncElasticsearch:
    kwargs: Dict[str, Any] = {
        "hosts": [url],
        "verify_certs": verify_certs,
        "request_timeout": request_timeout,
    }
    if username:
        kwargs["basic_auth"] = (username, password or "")
    return AsyncElasticsearch(**kwargs)


class ElasticDocumentStore(IDocumentStore):
    """IDocumentStore over an AsyncElasticsearch client (injected, not created here)."""

    def __init__(self, client: AsyncElasticsearch):
        self.client = client

    @classmethod
    def from_config(cls, url: str, username: Optional[str] = None, password: Optional[str] = None,
                    verify_certs: bool = True, request_timeout: float = 60) -> "ElasticDocumentStore":
        return cls(_create_client(url, username, password, verify_certs, request_timeout))

    async def _call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except ApiError as exc:
            raise StoreError(operation, _error_reason(exc), _error_status(exc)) from exc
        except TransportError as exc:
            raise StoreError(operation, f"{type(exc).__name__}: {exc}") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (ApiError, TransportError) as exc:
            logger.warning(f"Elasticsearch ping failed: {exc}")
            return False

    async def exists(self, name: str) -> bool:
        response = await self._call("exists", self.client.indices.exists(index=name))
        return bool(response)

    async def alias_exists(self, name: str) -> bool:
        response = await self._call("alias_exists", self.client.indices.exists_alias(name=name))
        return bool(response)

    async def create_partition(self, name: str, schema: Dict[str, Any], alias: Optional[str] = None) -> None:
        kwargs: Dict[str, Any] = {
            "index": name,
            "settings": schema.get("settings"),
            "mappings": schema.get("mappings"),
        }
        if alias:
            kwargs["aliases"] = {alias: {}}
        await self._call("create_partition", self.client.indices.create(**kwargs))

    async def create_partition_template(self, name: str, pattern: str, schema: Dict[str, Any]) -> None:
        template = {k: v for k, v in schema.items() if k in ("settings", "mappings")}
        await self._call("create_partition_template", self.client.indices.put_index_template(
            name=name,
            index_patterns=[pattern],
            template=template,
        ))

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
        kwargs: Dict[str, Any] = {
            "index": partitions,
            "size": size,
            "from_": from_,
            "track_total_hits": True,
        }
        if knn is not None:
            kwargs["knn"] = knn.to_dict()
            if query and "match_all" not in query:
                kwargs["query"] = query
        else:
            kwargs["query"] = query
        if sort:
            kwargs["sort"] = sort
        if post_filter:
            kwargs["post_filter"] = post_filter

        response = await self._call("search", self.client.search(**kwargs))
        hits = response["hits"]
        total = hits.get("total", {})
        total_value = total.get("value", 0) if isinstance(total, dict) else int(total or 0)
        return SearchPage(
            documents=[hit["_source"] for hit in hits.get("hits", [])],
            total=total_value,
        )

    async def bulk_write(self, partition: str, documents: List[Dict[str, Any]]) -> List[BulkItemResult]:
        if not documents:
            return []
        operations: List[Dict[str, Any]] = []
        for document in documents:
            action: Dict[str, Any] = {"_index": partition}
            if document.get("id"):
                action["_id"] = document["id"]
            operations.append({"index": action})
            operations.append(document)

        response = await self._call("bulk_write", self.client.bulk(operations=operations, refresh=True))

        results = []
        for item in response.get("items", []):
            outcome = item.get("index") or item.get("create") or item.get("update") or {}
            error = outcome.get("error")
            reason = None
            if error:
                reason = error.get("reason") if isinstance(error, dict) else str(error)
            results.append(BulkItemResult(
                id=outcome.get("_id"),
                ok=error is None,
                status=outcome.get("status", 200),
                error=reason,
            ))
        return results

    async def reindex(self, sources: List[str], query: Dict[str, Any], destination: str) -> int:
        response = await self._call("reindex", self.client.reindex(
            source={"index": sources, "query": query},
            dest={"index": destination},
            refresh=True,
            wait_for_completion=True,
        ))
        failures = response.get("failures") or []
        if failures:
            # A partial copy must never be followed by a delete of the same window
            raise StoreError("reindex", _failures_reason(failures))
        return int(response.get("created", 0)) + int(response.get("updated", 0))

    async def delete_by_query(self, partition: str, query: Dict[str, Any]) -> int:
        response = await self._call("delete_by_query", self.client.delete_by_query(
            index=partition,
            query=query,
            refresh=True,
        ))
        failures = response.get("failures") or []
        if failures:
            raise StoreError("delete_by_query", _failures_reason(failures))
        return int(response.get("deleted", 0))

    async def aggregate_by_year(self, partition: str, query: Dict[str, Any], field: str = "createdAt") -> Dict[int, int]:
        response = await self._call("aggregate_by_year", self.client.search(
            index=partition,
            size=0,
            query=query,
            aggs={
                "years": {
                    "date_histogram": {
                        "field": field,
                        "calendar_interval": "year",
                        "min_doc_count": 1,
                    }
                }
            },
        ))
        buckets = (response.get("aggregations") or {}).get("years", {}).get("buckets", [])
        years: Dict[int, int] = {}
        for bucket in buckets:
            count = int(bucket.get("doc_count", 0))
            if count <= 0:
                continue
            year = datetime.fromtimestamp(bucket["key"] / 1000, tz=timezone.utc).year
            years[year] = years.get(year, 0) + count
        return years

    async def scan(self, partition: str, query: Dict[str, Any], page_size: int = 1000) -> AsyncIterator[Dict[str, Any]]:
        try:
            async for hit in async_scan(self.client, index=partition, query={"query": query}, size=page_size):
                yield hit["_source"]
        except ApiError as exc:
            raise StoreError("scan", _error_reason(exc), _error_status(exc)) from exc
        except TransportError as exc:
            raise StoreError("scan", f"{type(exc).__name__}: {exc}") from exc

    async def close(self) -> None:
        await self.client.close()
