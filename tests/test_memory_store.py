"""
Tests for the in-memory document store's query evaluation and index bookkeeping.
"""

import pytest

from docindex.core.indices import (
    APPLICATIONS_V2,
    CLIENT_NORMALIZED_FIELDS,
    PRODUCTS,
    application_v2_schema,
    initialize_layout,
    product_schema,
)
from docindex.core.query import QueryBuilder, match_all, range_clause, tagged_clients_layout
from docindex.store import KnnQuery, MemoryDocumentStore, StoreError

TAGGED = tagged_clients_layout(normalized_fields=CLIENT_NORMALIZED_FIELDS)


def client(first, last, role, client_id, email=None, parent=None):
    return {
        "email": email or f"{first.lower()}@example.com",
        "firstName": first,
        "lastName": last,
        "nationalId": f"N-{client_id}",
        "clientId": client_id,
        "role": role,
        "parentClientId": parent,
    }


def application(doc_id, created_at, clients, **fields):
    doc = {
        "id": doc_id,
        "product": "Mortgage",
        "transaction": "New",
        "channel": "online",
        "status": "submitted",
        "user": "agent1",
        "createdAt": created_at,
        "updatedAt": created_at,
        "clients": clients,
    }
    doc.update(fields)
    return doc


@pytest.fixture
async def store():
    store = MemoryDocumentStore()
    await initialize_layout(store, APPLICATIONS_V2, application_v2_schema())
    await store.bulk_write(APPLICATIONS_V2.hot, [
        application("app-1", "2025-03-01T10:00:00+00:00", [
            client("Ana", "Lee", "MainClient", "C1"),
            client("Bob", "Lee", "Spouse", "C2", parent="C1"),
        ]),
        application("app-2", "2025-04-01T10:00:00+00:00", [
            client("Bob", "Diaz", "MainClient", "C3"),
            client("Ana", "Diaz", "Spouse", "C4", parent="C3"),
        ]),
        application("app-3", "2025-05-01T10:00:00+00:00", [
            client("Carl", "Moe", "MainClient", "C5", email="Carl.Moe@Example.COM"),
            client("Dina", "Moe", "CoApplicant", "C6"),
        ], status="approved"),
    ])
    return store


async def ids(store, query, partitions=None):
    page = await store.search(partitions or [APPLICATIONS_V2.hot], query, size=100)
    return sorted(doc["id"] for doc in page.documents)


class TestNestedIsolation:
    """Person filters must hold on one person, never split across two."""

    @pytest.mark.asyncio
    async def test_main_client_match(self, store):
        query = QueryBuilder(TAGGED).sub_entity("firstName", "Ana").build()
        assert await ids(store, query) == ["app-1"]

    @pytest.mark.asyncio
    async def test_spouse_match(self, store):
        query = QueryBuilder(TAGGED).roles(["Spouse"]).sub_entity("firstName", "Ana").build()
        assert await ids(store, query) == ["app-2"]

    @pytest.mark.asyncio
    async def test_fields_from_different_people_do_not_combine(self, store):
        # app-1 has an Ana (MainClient) and a Bob; "Bob as MainClient with last name Lee" matches nobody
        query = (QueryBuilder(TAGGED)
                 .sub_entity("firstName", "Bob")
                 .sub_entity("lastName", "Lee")
                 .build())
        assert await ids(store, query) == []

    @pytest.mark.asyncio
    async def test_multiple_roles_match_either(self, store):
        query = (QueryBuilder(TAGGED)
                 .roles(["MainClient", "Spouse"])
                 .sub_entity("firstName", "Ana")
                 .build())
        assert await ids(store, query) == ["app-1", "app-2"]

    @pytest.mark.asyncio
    async def test_role_nobody_has_yields_nothing(self, store):
        query = QueryBuilder(TAGGED).roles(["CoApplicant"]).sub_entity("firstName", "Ana").build()
        assert await ids(store, query) == []

    @pytest.mark.asyncio
    async def test_nested_fields_invisible_outside_nested_query(self, store):
        assert await ids(store, {"term": {"clients.firstName": {"value": "ana"}}}) == []


class TestTermSemantics:

    @pytest.mark.asyncio
    async def test_normalizer_makes_equality_case_insensitive(self, store):
        query = QueryBuilder(TAGGED).sub_entity("email", "carl.moe@example.com").build()
        assert await ids(store, query) == ["app-3"]

    @pytest.mark.asyncio
    async def test_plain_keyword_is_case_sensitive(self, store):
        query = QueryBuilder(TAGGED).sub_entity("nationalId", "n-c5").build()
        assert await ids(store, query) == []

    @pytest.mark.asyncio
    async def test_match_all_returns_everything(self, store):
        assert await ids(store, match_all()) == ["app-1", "app-2", "app-3"]

    @pytest.mark.asyncio
    async def test_date_range(self, store):
        query = range_clause("createdAt", gte="2025-03-15T00:00:00+00:00", lte="2025-04-30T00:00:00Z")
        assert await ids(store, query) == ["app-2"]

    @pytest.mark.asyncio
    async def test_should_needs_minimum_match(self, store):
        query = {"bool": {"should": [
            {"term": {"status": {"value": "approved"}}},
            {"term": {"status": {"value": "rejected"}}},
        ], "minimum_should_match": 1}}
        assert await ids(store, query) == ["app-3"]

    @pytest.mark.asyncio
    async def test_unsupported_query_is_rejected(self, store):
        with pytest.raises(StoreError):
            await store.search([APPLICATIONS_V2.hot], {"fuzzy": {"status": "x"}})


class TestSortingAndPaging:

    @pytest.mark.asyncio
    async def test_sort_desc_and_total(self, store):
        page = await store.search([APPLICATIONS_V2.hot], match_all(),
                                  sort=[{"createdAt": {"order": "desc"}}], size=2)
        assert page.total == 3
        assert [doc["id"] for doc in page.documents] == ["app-3", "app-2"]

    @pytest.mark.asyncio
    async def test_from_offset(self, store):
        page = await store.search([APPLICATIONS_V2.hot], match_all(),
                                  sort=[{"createdAt": {"order": "asc"}}], size=10, from_=2)
        assert [doc["id"] for doc in page.documents] == ["app-3"]


class TestIndexBookkeeping:

    @pytest.mark.asyncio
    async def test_alias_points_at_concrete_index(self, store):
        assert await store.alias_exists("applications-v2")
        assert not await store.alias_exists("applications_v3")
        assert await store.exists("applications_v3")

    @pytest.mark.asyncio
    async def test_missing_concrete_index_is_an_error(self, store):
        with pytest.raises(StoreError) as exc_info:
            await store.search(["nope"], match_all())
        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_unmatched_pattern_is_empty(self, store):
        page = await store.search([APPLICATIONS_V2.hot, APPLICATIONS_V2.cold_pattern], match_all())
        assert page.total == 3

    @pytest.mark.asyncio
    async def test_strict_mapping_rejects_unknown_fields_per_item(self, store):
        good = application("app-4", "2025-05-02T00:00:00Z", [])
        bad = application("app-5", "2025-05-02T00:00:00Z", [], unexpected="x")

        results = await store.bulk_write(APPLICATIONS_V2.hot, [good, bad])

        assert [r.ok for r in results] == [True, False]
        assert "unexpected" in results[1].error

    @pytest.mark.asyncio
    async def test_cold_partition_inherits_template(self, store):
        await store.reindex([APPLICATIONS_V2.hot], match_all(), "applications-v2-archive-2025")
        query = QueryBuilder(TAGGED).sub_entity("email", "CARL.MOE@example.com").build()

        assert await ids(store, query, ["applications-v2-archive-*"]) == ["app-3"]

    @pytest.mark.asyncio
    async def test_create_existing_partition_fails(self, store):
        with pytest.raises(StoreError):
            await store.create_partition("applications_v3", application_v2_schema())

    @pytest.mark.asyncio
    async def test_aggregate_reindex_delete_scan(self, store):
        assert await store.aggregate_by_year(APPLICATIONS_V2.hot, match_all()) == {2025: 3}

        window = range_clause("createdAt", lt="2025-04-15T00:00:00Z")
        assert await store.reindex([APPLICATIONS_V2.hot], window, "applications-v2-archive-2025") == 2
        assert await store.delete_by_query(APPLICATIONS_V2.hot, window) == 2

        remaining = [doc["id"] async for doc in store.scan(APPLICATIONS_V2.hot, match_all())]
        assert remaining == ["app-3"]


class TestVectorSearch:

    @pytest.fixture
    async def products(self):
        store = MemoryDocumentStore()
        await initialize_layout(store, PRODUCTS, product_schema(3))
        await store.bulk_write(PRODUCTS.hot, [
            {"id": "p1", "name": "Red shirt", "description": "cotton", "category": "tops",
             "price": 10.0, "createdAt": "2025-01-01T00:00:00Z", "embedding": [1.0, 0.0, 0.0]},
            {"id": "p2", "name": "Blue shirt", "description": "linen", "category": "tops",
             "price": 30.0, "createdAt": "2025-01-02T00:00:00Z", "embedding": [0.8, 0.6, 0.0]},
            {"id": "p3", "name": "Boots", "description": "leather", "category": "shoes",
             "price": 90.0, "createdAt": "2025-01-03T00:00:00Z", "embedding": [0.0, 0.0, 1.0]},
        ])
        return store

    @pytest.mark.asyncio
    async def test_knn_orders_by_similarity(self, products):
        knn = KnnQuery(field="embedding", query_vector=[1.0, 0.1, 0.0], k=2, num_candidates=10)
        page = await products.search([PRODUCTS.hot], match_all(), size=2, knn=knn)
        assert [doc["id"] for doc in page.documents] == ["p1", "p2"]

    @pytest.mark.asyncio
    async def test_post_filter_applies_after_knn(self, products):
        knn = KnnQuery(field="embedding", query_vector=[1.0, 0.1, 0.0], k=2, num_candidates=10)
        post_filter = {"bool": {"must": [{"term": {"category": {"value": "shoes"}}}]}}

        page = await products.search([PRODUCTS.hot], match_all(), size=2, knn=knn, post_filter=post_filter)

        # p3 is not among the two nearest neighbours, so nothing survives the filter
        assert page.documents == []

    @pytest.mark.asyncio
    async def test_similarity_threshold(self, products):
        knn = KnnQuery(field="embedding", query_vector=[0.0, 0.0, 1.0], k=3, num_candidates=10, similarity=0.9)
        page = await products.search([PRODUCTS.hot], match_all(), size=3, knn=knn)
        assert [doc["id"] for doc in page.documents] == ["p3"]

    @pytest.mark.asyncio
    async def test_text_match_is_case_insensitive(self, products):
        query = QueryBuilder().text(["name", "description"], "SHIRT Linen").build()
        page = await products.search([PRODUCTS.hot], query)
        assert [doc["id"] for doc in page.documents] == ["p2"]
