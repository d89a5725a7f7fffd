"""
Partition naming, index mappings and index provisioning.

A layout has one hot partition (an index or an alias in front of one) and
one cold partition per calendar year named ``{cold_prefix}-{year}``. Cold
partitions are created lazily by the archival reindex, so the hot schema is
also registered as an index template for the cold pattern.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..store.base import IDocumentStore, StoreError
from util.logging import logger as structured_logger

logger = logging.getLogger(__name__)

LOWERCASE_NORMALIZER = "lowercase"

# Keyword fields matched case-insensitively
CLIENT_NORMALIZED_FIELDS = {"email", "firstName", "lastName"}
APPLICATION_V2_NORMALIZED_FIELDS = {"channel", "status", "user"}
VARIANT_NORMALIZED_FIELDS = {"size", "color"}


@dataclass(frozen=True)
class PartitionLayout:
    hot: str
    cold_prefix: str
    concrete_hot: Optional[str] = None

    @property
    def cold_pattern(self) -> str:
        return f"{self.cold_prefix}-*"

    @property
    def template_name(self) -> str:
        return f"{self.cold_prefix}-template"

    def cold_for_year(self, year: int) -> str:
        return f"{self.cold_prefix}-{year}"


PRODUCTS = PartitionLayout(hot="products", cold_prefix="products-archive")
APPLICATIONS_V2 = PartitionLayout(hot="applications-v2", cold_prefix="applications-v2-archive",
                                  concrete_hot="applications_v3")

# Legacy slot-based applications are searched and migrated, never archived
APPLICATIONS_V1_ALIAS = "applications"
APPLICATIONS_V1_INDEX = "applications_v2"


@dataclass
class InitResult:
    success: bool
    message: str


def _keyword(normalized: bool = False) -> Dict[str, Any]:
    if normalized:
        return {"type": "keyword", "normalizer": LOWERCASE_NORMALIZER}
    return {"type": "keyword"}


def _analysis_settings() -> Dict[str, Any]:
    return {
        "analysis": {
            "normalizer": {
                LOWERCASE_NORMALIZER: {"type": "custom", "filter": ["lowercase"]}
            }
        }
    }


def client_properties(tagged: bool) -> Dict[str, Any]:
    props = {
        "email": _keyword(True),
        "firstName": _keyword(True),
        "lastName": _keyword(True),
        "nationalId": _keyword(),
        "clientId": _keyword(),
    }
    if tagged:
        props["role"] = _keyword()
        props["parentClientId"] = _keyword()
    return props


def product_schema(dimensions: int) -> Dict[str, Any]:
    return {
        "settings": _analysis_settings(),
        "mappings": {
            "properties": {
                "id": _keyword(),
                "name": {"type": "text", "analyzer": "standard"},
                "description": {"type": "text", "analyzer": "standard"},
                "category": _keyword(),
                "price": {"type": "double"},
                "tags": _keyword(),
                "inStock": {"type": "boolean"},
                "createdAt": {"type": "date"},
                "variants": {
                    "type": "nested",
                    "properties": {
                        "sku": _keyword(),
                        "size": _keyword("size" in VARIANT_NORMALIZED_FIELDS),
                        "color": _keyword("color" in VARIANT_NORMALIZED_FIELDS),
                        "priceAdjustment": {"type": "double"},
                        "stock": {"type": "integer"},
                    },
                },
                "embedding": {
                    "type": "dense_vector",
                    "dims": dimensions,
                    "index": True,
                    "similarity": "cosine",
                },
            }
        },
    }


def _application_scalars(normalized: set) -> Dict[str, Any]:
    return {
        "id": _keyword(),
        "product": _keyword(),
        "transaction": _keyword(),
        "channel": _keyword("channel" in normalized),
        "branch": _keyword(),
        "status": _keyword("status" in normalized),
        "user": _keyword("user" in normalized),
        "createdAt": {"type": "date"},
        "updatedAt": {"type": "date"},
    }


def application_v1_schema() -> Dict[str, Any]:
    applicant = {
        "properties": {
            "client": {"type": "object", "properties": client_properties(tagged=False)},
            "spouse": {"type": "object", "properties": client_properties(tagged=False)},
        }
    }
    props = _application_scalars(set())
    props["mainApplicant"] = {"type": "object", **applicant}
    props["coApplicants"] = {"type": "nested", **applicant}
    return {"settings": _analysis_settings(), "mappings": {"properties": props}}


def application_v2_schema() -> Dict[str, Any]:
    props = _application_scalars(APPLICATION_V2_NORMALIZED_FIELDS)
    props["clients"] = {"type": "nested", "properties": client_properties(tagged=True)}
    return {
        "settings": _analysis_settings(),
        "mappings": {"dynamic": "strict", "properties": props},
    }


async def initialize_layout(store: IDocumentStore, layout: PartitionLayout, schema: Dict[str, Any]) -> InitResult:
    """Create the hot partition and the cold-partition template if the hot one is missing."""
    try:
        if await store.exists(layout.hot):
            return InitResult(True, f"Index '{layout.hot}' already exists")

        if layout.concrete_hot:
            await store.create_partition(layout.concrete_hot, schema, alias=layout.hot)
        else:
            await store.create_partition(layout.hot, schema)
        await store.create_partition_template(layout.template_name, layout.cold_pattern, schema)
    except StoreError as e:
        logger.error(f"Failed to initialize {layout.hot}: {e}")
        return InitResult(False, f"Failed to create index: {e.reason}")

    structured_logger.log_operation("index.init", "created", {
        "hot": layout.hot,
        "concrete": layout.concrete_hot,
        "template": layout.template_name,
    })
    if layout.concrete_hot:
        return InitResult(True, f"Created index '{layout.concrete_hot}' with alias '{layout.hot}'")
    return InitResult(True, f"Created index '{layout.hot}' and template '{layout.template_name}'")


async def initialize_legacy_applications(store: IDocumentStore) -> InitResult:
    """Create the slot-based application index behind its alias."""
    try:
        if await store.exists(APPLICATIONS_V1_ALIAS):
            return InitResult(True, f"Index '{APPLICATIONS_V1_ALIAS}' already exists")
        await store.create_partition(APPLICATIONS_V1_INDEX, application_v1_schema(), alias=APPLICATIONS_V1_ALIAS)
    except StoreError as e:
        logger.error(f"Failed to initialize {APPLICATIONS_V1_ALIAS}: {e}")
        return InitResult(False, f"Failed to create index: {e.reason}")
    return InitResult(True, f"Created index '{APPLICATIONS_V1_INDEX}' with alias '{APPLICATIONS_V1_ALIAS}'")
