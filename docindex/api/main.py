"""
HTTP API over search, seeding, migration and archival.

Store and embedding provider come in through ``get_store`` / ``get_embedder``
so tests can override them with in-memory implementations.
"""

import logging
from datetime import datetime
from typing import AsyncIterator, Dict, Type

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    ApplicationSearchResponse,
    ArchiveResponse,
    HealthResponse,
    InitResponse,
    MigrateResponse,
    ProductSearchResponse,
    SeedResponse,
)
from ..core.archive import archive_layout
from ..core.config import (
    VERSION,
    debug_enabled,
    get_batch_size,
    get_document_store,
    get_embedding_provider,
    get_retention_years,
    get_store_timeout,
    validate_config,
)
from ..core.indices import (
    APPLICATIONS_V1_ALIAS,
    APPLICATIONS_V2,
    PRODUCTS,
    application_v2_schema,
    initialize_layout,
    initialize_legacy_applications,
    product_schema,
)
from ..core.ingest import IngestReport, embedding_enricher, ingest_documents, parse_ndjson_line
from ..core.migration import migrate_applications
from ..core.query import QueryError
from ..core.routing import utc_now
from ..core.schema import (
    ApplicationSearchRequest,
    ApplicationV1,
    ApplicationV2,
    Product,
    ProductSearchRequest,
    SemanticSearchRequest,
    WireModel,
)
from ..core.search_service import (
    search_applications,
    search_applications_v2,
    search_products,
    semantic_search_products,
)
from ..store.base import IDocumentStore, StoreError
from ..vector.embeddings import IEmbeddingProvider

logger = logging.getLogger(__name__)


def get_store() -> IDocumentStore:
    return get_document_store()


def get_embedder() -> IEmbeddingProvider:
    return get_embedding_provider()


def get_clock() -> datetime:
    return utc_now()


app = FastAPI(
    title="Document Index API",
    version=VERSION,
    description="Search, ingestion and hot/cold lifecycle for products and loan applications",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(QueryError)
async def query_error_handler(request: Request, exc: QueryError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"Store call failed on {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": f"Search failed: {exc.reason}"})


def _seed_response(report: IngestReport):
    response = SeedResponse(**report.to_dict())
    if report.input_error is not None:
        # Unreadable input is a caller error; the counts still cover what was written before it
        return JSONResponse(status_code=400,
                            content={"detail": report.input_error, **response.model_dump(by_alias=True)})
    return response


async def ndjson_documents(request: Request, model: Type[WireModel]) -> AsyncIterator[Dict]:
    """Parse the request body one line at a time without buffering the whole upload."""
    buffer = b""
    line_number = 0
    async for chunk in request.stream():
        buffer += chunk
        while b"\n" in buffer:
            line, buffer = buffer.split(b"\n", 1)
            line_number += 1
            document = parse_ndjson_line(line, line_number, model)
            if document is not None:
                yield document
    if buffer.strip():
        document = parse_ndjson_line(buffer, line_number + 1, model)
        if document is not None:
            yield document


@app.get("/health", response_model=HealthResponse)
async def health_check_endpoint(store: IDocumentStore = Depends(get_store)):
    """Check service and store health."""
    reachable = await store.ping()
    return HealthResponse(
        status="healthy" if reachable else "unhealthy",
        version=VERSION,
        store_reachable=reachable,
        config_issues=validate_config(),
    )


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

@app.post("/api/products/init", response_model=InitResponse)
async def init_products(store: IDocumentStore = Depends(get_store),
                        embedder: IEmbeddingProvider = Depends(get_embedder)):
    result = await initialize_layout(store, PRODUCTS, product_schema(embedder.get_dimension()))
    return InitResponse(success=result.success, message=result.message)


@app.post("/api/products/seed", response_model=SeedResponse)
async def seed_products(request: Request,
                        store: IDocumentStore = Depends(get_store),
                        embedder: IEmbeddingProvider = Depends(get_embedder)):
    report = await ingest_documents(
        store,
        PRODUCTS.hot,
        ndjson_documents(request, Product),
        get_batch_size("products"),
        enrich=embedding_enricher(embedder),
        timeout=get_store_timeout(),
        noun="products",
    )
    return _seed_response(report)


@app.post("/api/products/search", response_model=ProductSearchResponse)
async def search_products_endpoint(req: ProductSearchRequest,
                                   store: IDocumentStore = Depends(get_store),
                                   now: datetime = Depends(get_clock)):
    result = await search_products(store, req, now=now, retention_years=get_retention_years())
    return ProductSearchResponse(products=result.documents, total=result.total)


@app.post("/api/products/semantic-search", response_model=ProductSearchResponse)
async def semantic_search_endpoint(req: SemanticSearchRequest,
                                   store: IDocumentStore = Depends(get_store),
                                   embedder: IEmbeddingProvider = Depends(get_embedder),
                                   now: datetime = Depends(get_clock)):
    result = await semantic_search_products(store, embedder, req, now=now,
                                            retention_years=get_retention_years())
    return ProductSearchResponse(products=result.documents, total=result.total)


@app.post("/api/products/archive", response_model=ArchiveResponse)
async def archive_products(store: IDocumentStore = Depends(get_store),
                           now: datetime = Depends(get_clock)):
    report = await archive_layout(store, PRODUCTS, now=now, retention_years=get_retention_years(),
                                  timeout=get_store_timeout(), noun="products")
    return ArchiveResponse(**report.to_dict())


# ---------------------------------------------------------------------------
# Applications (legacy slot-based roles)
# ---------------------------------------------------------------------------

@app.post("/api/applications/init", response_model=InitResponse)
async def init_applications(store: IDocumentStore = Depends(get_store)):
    result = await initialize_legacy_applications(store)
    return InitResponse(success=result.success, message=result.message)


@app.post("/api/applications/seed", response_model=SeedResponse)
async def seed_applications(request: Request, store: IDocumentStore = Depends(get_store)):
    report = await ingest_documents(
        store,
        APPLICATIONS_V1_ALIAS,
        ndjson_documents(request, ApplicationV1),
        get_batch_size("applications"),
        timeout=get_store_timeout(),
        noun="applications",
    )
    return _seed_response(report)


@app.post("/api/applications/search", response_model=ApplicationSearchResponse)
async def search_applications_endpoint(req: ApplicationSearchRequest,
                                       store: IDocumentStore = Depends(get_store)):
    result = await search_applications(store, req)
    return ApplicationSearchResponse(applications=result.documents, total=result.total)


# ---------------------------------------------------------------------------
# Applications V2 (tagged roles)
# ---------------------------------------------------------------------------

@app.post("/api/applications/v2/init", response_model=InitResponse)
async def init_applications_v2(store: IDocumentStore = Depends(get_store)):
    result = await initialize_layout(store, APPLICATIONS_V2, application_v2_schema())
    return InitResponse(success=result.success, message=result.message)


@app.post("/api/applications/v2/seed", response_model=SeedResponse)
async def seed_applications_v2(request: Request, store: IDocumentStore = Depends(get_store)):
    report = await ingest_documents(
        store,
        APPLICATIONS_V2.hot,
        ndjson_documents(request, ApplicationV2),
        get_batch_size("applications"),
        timeout=get_store_timeout(),
        noun="applications",
    )
    return _seed_response(report)


@app.post("/api/applications/v2/search", response_model=ApplicationSearchResponse)
async def search_applications_v2_endpoint(req: ApplicationSearchRequest,
                                          store: IDocumentStore = Depends(get_store),
                                          now: datetime = Depends(get_clock)):
    result = await search_applications_v2(store, req, now=now, retention_years=get_retention_years())
    return ApplicationSearchResponse(applications=result.documents, total=result.total)


@app.post("/api/applications/v2/migrate", response_model=MigrateResponse)
async def migrate_applications_v2(store: IDocumentStore = Depends(get_store)):
    result = await migrate_applications(store, get_batch_size("applications"), timeout=get_store_timeout())
    return MigrateResponse(**result.to_dict())


@app.post("/api/applications/v2/archive", response_model=ArchiveResponse)
async def archive_applications_v2(store: IDocumentStore = Depends(get_store),
                                  now: datetime = Depends(get_clock)):
    report = await archive_layout(store, APPLICATIONS_V2, now=now, retention_years=get_retention_years(),
                                  timeout=get_store_timeout(), noun="applications")
    return ArchiveResponse(**report.to_dict())
