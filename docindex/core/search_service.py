"""
Search orchestration: compile the request's filters, route to partitions, query the store.

Request validation (sort token, ranges, roles) happens while the query is
compiled, so a caller error is raised as ``QueryError`` before any store call.
Store failures propagate as ``StoreError``.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .indices import (
    APPLICATION_V2_NORMALIZED_FIELDS,
    APPLICATIONS_V1_ALIAS,
    APPLICATIONS_V2,
    CLIENT_NORMALIZED_FIELDS,
    PRODUCTS,
    VARIANT_NORMALIZED_FIELDS,
)
from .query import (
    QueryBuilder,
    QueryError,
    all_of,
    flattened_applicants_layout,
    is_blank,
    match_all,
    parse_sort,
    sort_clause,
    tagged_clients_layout,
)
from .routing import partitions_for_search, utc_now
from .schema import ApplicationSearchRequest, ProductSearchRequest, SemanticSearchRequest
from ..store.base import IDocumentStore
from ..store.types import KnnQuery
from ..vector.embeddings import IEmbeddingProvider
from util.logging import logger as structured_logger

PRODUCT_TEXT_FIELDS = ["name", "description"]
PRODUCT_NESTED_TEXT_FIELDS = {"variants": ["variants.color"]}
APPLICATION_SCALAR_FIELDS = ["product", "transaction", "channel", "status"]

LEGACY_LAYOUT = flattened_applicants_layout(normalized_fields=CLIENT_NORMALIZED_FIELDS)
TAGGED_LAYOUT = tagged_clients_layout(normalized_fields=CLIENT_NORMALIZED_FIELDS)


@dataclass
class SearchResult:
    documents: List[Dict[str, Any]]
    total: int
    partitions: List[str]


def _product_filters(builder: QueryBuilder, category: Optional[str], min_price: Optional[float],
                     max_price: Optional[float], created_at_from: Optional[datetime],
                     created_at_to: Optional[datetime]) -> QueryBuilder:
    return (builder
            .term("category", category)
            .range("price", gte=min_price, lte=max_price)
            .range("createdAt", gte=created_at_from, lte=created_at_to))


def _application_filters(builder: QueryBuilder, request: ApplicationSearchRequest,
                         normalized: set) -> QueryBuilder:
    for name in APPLICATION_SCALAR_FIELDS:
        builder.term(name, getattr(request, name), normalize=name in normalized)
    builder.range("createdAt", gte=request.created_at_from, lte=request.created_at_to)
    builder.roles(request.roles)
    for name, value in request.client_filters().items():
        builder.sub_entity(name, value)
    return builder


async def search_products(
    store: IDocumentStore,
    request: ProductSearchRequest,
    now: Optional[datetime] = None,
    retention_years: int = 1,
) -> SearchResult:
    """Keyword and filter search over hot and/or cold product partitions."""
    order = parse_sort(request.sort)
    builder = QueryBuilder().text(PRODUCT_TEXT_FIELDS, request.query, nested=PRODUCT_NESTED_TEXT_FIELDS)
    _product_filters(builder, request.category, request.min_price, request.max_price,
                     request.created_at_from, request.created_at_to)
    builder.nested_terms("variants", {
        "sku": request.variant_sku,
        "size": request.variant_size,
        "color": request.variant_color,
    }, normalized=VARIANT_NORMALIZED_FIELDS)
    query = builder.build()

    partitions = partitions_for_search(PRODUCTS, request.created_at_from, request.created_at_to,
                                       now or utc_now(), retention_years)
    page = await store.search(partitions, query, sort=sort_clause(order),
                              size=request.size, from_=request.from_)
    structured_logger.log_search("products", partitions, page.total)
    return SearchResult(page.documents, page.total, partitions)


async def semantic_search_products(
    store: IDocumentStore,
    embedder: IEmbeddingProvider,
    request: SemanticSearchRequest,
    now: Optional[datetime] = None,
    retention_years: int = 1,
) -> SearchResult:
    """
    k-NN search over product embeddings.

    Structured filters do not shape the candidate set; they are applied to the
    nearest neighbours as a post filter.
    """
    if is_blank(request.query):
        raise QueryError("Query is required for semantic search")
    if request.num_candidates < request.k:
        raise QueryError("numCandidates must be greater than or equal to k")

    builder = _product_filters(QueryBuilder(), request.category, request.min_price, request.max_price,
                               request.created_at_from, request.created_at_to)
    clauses = builder.clauses()
    post_filter = all_of(clauses) if clauses else None

    partitions = partitions_for_search(PRODUCTS, request.created_at_from, request.created_at_to,
                                       now or utc_now(), retention_years)

    vector = await embedder.embed_text(request.query)
    knn = KnnQuery(
        field="embedding",
        query_vector=vector,
        k=request.k,
        num_candidates=request.num_candidates,
        similarity=request.similarity,
    )
    page = await store.search(partitions, match_all(), size=request.k, knn=knn, post_filter=post_filter)
    structured_logger.log_search("products.semantic", partitions, page.total)
    return SearchResult(page.documents, page.total, partitions)


async def search_applications(store: IDocumentStore, request: ApplicationSearchRequest) -> SearchResult:
    """Search legacy slot-based applications. They are never archived, so only the alias is queried."""
    order = parse_sort(request.sort)
    query = _application_filters(QueryBuilder(LEGACY_LAYOUT), request, set()).build()

    partitions = [APPLICATIONS_V1_ALIAS]
    page = await store.search(partitions, query, sort=sort_clause(order), size=request.size)
    structured_logger.log_search("applications", partitions, page.total)
    return SearchResult(page.documents, page.total, partitions)


async def search_applications_v2(
    store: IDocumentStore,
    request: ApplicationSearchRequest,
    now: Optional[datetime] = None,
    retention_years: int = 1,
) -> SearchResult:
    """Search tagged-role applications across hot and/or cold partitions."""
    order = parse_sort(request.sort)
    query = _application_filters(QueryBuilder(TAGGED_LAYOUT), request, APPLICATION_V2_NORMALIZED_FIELDS).build()

    partitions = partitions_for_search(APPLICATIONS_V2, request.created_at_from, request.created_at_to,
                                       now or utc_now(), retention_years)
    page = await store.search(partitions, query, sort=sort_clause(order), size=request.size)
    structured_logger.log_search("applications.v2", partitions, page.total)
    return SearchResult(page.documents, page.total, partitions)
