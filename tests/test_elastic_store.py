"""
Tests for the Elasticsearch adapter with a mocked AsyncElasticsearch client.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from elasticsearch import ConnectionError as ESConnectionError

from docindex.store import ElasticDocumentStore, KnnQuery, StoreError


@pytest.fixture
def es():
    client = MagicMock()
    client.indices = MagicMock()
    client.indices.exists = AsyncMock(return_value=True)
    client.indices.exists_alias = AsyncMock(return_value=False)
    client.indices.create = AsyncMock(return_value={"acknowledged": True})
    client.indices.put_index_template = AsyncMock(return_value={"acknowledged": True})
    client.search = AsyncMock()
    client.bulk = AsyncMock()
    client.reindex = AsyncMock()
    client.delete_by_query = AsyncMock()
    client.ping = AsyncMock(return_value=True)
    client.close = AsyncMock()
    return client


@pytest.fixture
def store(es):
    return ElasticDocumentStore(es)


class TestIndices:

    @pytest.mark.asyncio
    async def test_exists_and_alias_exists(self, store, es):
        assert await store.exists("products") is True
        assert await store.alias_exists("applications") is False
        es.indices.exists_alias.assert_awaited_once_with(name="applications")

    @pytest.mark.asyncio
    async def test_create_partition_with_alias(self, store, es):
        schema = {"settings": {"a": 1}, "mappings": {"properties": {}}}
        await store.create_partition("applications_v3", schema, alias="applications-v2")

        es.indices.create.assert_awaited_once_with(
            index="applications_v3",
            settings={"a": 1},
            mappings={"properties": {}},
            aliases={"applications-v2": {}},
        )

    @pytest.mark.asyncio
    async def test_template_uses_pattern(self, store, es):
        await store.create_partition_template("products-archive-template", "products-archive-*",
                                              {"settings": {}, "mappings": {"properties": {}}})

        kwargs = es.indices.put_index_template.await_args.kwargs
        assert kwargs["index_patterns"] == ["products-archive-*"]
        assert set(kwargs["template"]) == {"settings", "mappings"}


class TestSearch:

    @pytest.mark.asyncio
    async def test_search_maps_hits(self, store, es):
        es.search.return_value = {"hits": {"total": {"value": 2}, "hits": [
            {"_source": {"id": "a"}}, {"_source": {"id": "b"}},
        ]}}

        page = await store.search(["products", "products-archive-*"], {"match_all": {}},
                                  sort=[{"createdAt": {"order": "desc"}}], size=5, from_=10)

        assert page.total == 2
        assert [d["id"] for d in page.documents] == ["a", "b"]
        kwargs = es.search.await_args.kwargs
        assert kwargs["index"] == ["products", "products-archive-*"]
        assert kwargs["from_"] == 10
        assert kwargs["track_total_hits"] is True

    @pytest.mark.asyncio
    async def test_knn_search_omits_match_all(self, store, es):
        es.search.return_value = {"hits": {"total": {"value": 0}, "hits": []}}
        knn = KnnQuery(field="embedding", query_vector=[0.1, 0.2], k=3, num_candidates=30, similarity=0.5)

        await store.search(["products"], {"match_all": {}}, size=3, knn=knn,
                           post_filter={"bool": {"must": []}})

        kwargs = es.search.await_args.kwargs
        assert "query" not in kwargs
        assert kwargs["knn"] == {"field": "embedding", "query_vector": [0.1, 0.2], "k": 3,
                                 "num_candidates": 30, "similarity": 0.5}
        assert kwargs["post_filter"] == {"bool": {"must": []}}

    @pytest.mark.asyncio
    async def test_transport_error_becomes_store_error(self, store, es):
        es.search.side_effect = ESConnectionError("connection refused")

        with pytest.raises(StoreError) as exc_info:
            await store.search(["products"], {"match_all": {}})

        assert exc_info.value.operation == "search"

    @pytest.mark.asyncio
    async def test_ping_failure_is_false(self, store, es):
        es.ping.side_effect = ESConnectionError("down")
        assert await store.ping() is False


class TestWrites:

    @pytest.mark.asyncio
    async def test_bulk_maps_per_item_results(self, store, es):
        es.bulk.return_value = {"errors": True, "items": [
            {"index": {"_id": "a", "status": 201}},
            {"index": {"_id": "b", "status": 400, "error": {"type": "strict_dynamic_mapping_exception",
                                                            "reason": "mapping set to strict"}}},
        ]}

        results = await store.bulk_write("applications-v2", [{"id": "a"}, {"id": "b"}])

        assert [r.ok for r in results] == [True, False]
        assert results[1].error == "mapping set to strict"
        operations = es.bulk.await_args.kwargs["operations"]
        assert operations[0] == {"index": {"_index": "applications-v2", "_id": "a"}}
        assert es.bulk.await_args.kwargs["refresh"] is True

    @pytest.mark.asyncio
    async def test_empty_bulk_makes_no_request(self, store, es):
        assert await store.bulk_write("products", []) == []
        es.bulk.assert_not_called()

    @pytest.mark.asyncio
    async def test_reindex_counts_created_and_updated(self, store, es):
        es.reindex.return_value = {"created": 3, "updated": 2, "failures": []}
        assert await store.reindex(["products"], {"match_all": {}}, "products-archive-2023") == 5

    @pytest.mark.asyncio
    async def test_reindex_failures_raise(self, store, es):
        es.reindex.return_value = {"created": 1, "failures": [{"cause": {"reason": "version conflict"}}]}

        with pytest.raises(StoreError, match="version conflict"):
            await store.reindex(["products"], {"match_all": {}}, "products-archive-2023")

    @pytest.mark.asyncio
    async def test_delete_by_query(self, store, es):
        es.delete_by_query.return_value = {"deleted": 4, "failures": []}
        assert await store.delete_by_query("products", {"match_all": {}}) == 4


class TestAggregationAndScan:

    @pytest.mark.asyncio
    async def test_aggregate_by_year(self, store, es):
        es.search.return_value = {"aggregations": {"years": {"buckets": [
            {"key": 1672531200000, "key_as_string": "2023-01-01", "doc_count": 7},
            {"key": 1704067200000, "key_as_string": "2024-01-01", "doc_count": 0},
        ]}}}

        assert await store.aggregate_by_year("products", {"match_all": {}}) == {2023: 7}
        histogram = es.search.await_args.kwargs["aggs"]["years"]["date_histogram"]
        assert histogram["calendar_interval"] == "year"

    @pytest.mark.asyncio
    async def test_scan_yields_sources(self, store, es):
        async def fake_scan(client, index, query, size):
            for hit in [{"_source": {"id": "a"}}, {"_source": {"id": "b"}}]:
                yield hit

        with patch("docindex.store.elastic_store.async_scan", fake_scan):
            ids = [doc["id"] async for doc in store.scan("applications", {"match_all": {}})]

        assert ids == ["a", "b"]

    @pytest.mark.asyncio
    async def test_close(self, store, es):
        await store.close()
        es.close.assert_awaited_once()
