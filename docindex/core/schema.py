"""
Document models stored in the search index.

Products carry nested variants. Loan applications exist in two shapes:
V1 stores people in fixed slots (mainApplicant / coApplicants), V2 stores
them in a single tagged ``clients`` list where each entry names its role.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base model that speaks camelCase on the wire and snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict:
        """Serialize to the JSON shape written to the store."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ClientRole(str, Enum):
    MAIN_CLIENT = "MainClient"
    SPOUSE = "Spouse"
    CO_APPLICANT = "CoApplicant"


class ProductVariant(WireModel):
    sku: str
    size: Optional[str] = None
    color: Optional[str] = None
    price_adjustment: float = 0.0
    stock: int = 0


class Product(WireModel):
    id: str = Field(default_factory=_new_id)
    name: str
    description: str
    category: str
    price: float = 0.0
    tags: List[str] = Field(default_factory=list)
    in_stock: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    variants: List[ProductVariant] = Field(default_factory=list)
    embedding: Optional[List[float]] = None

    @field_validator('name', 'category')
    @classmethod
    def must_not_be_blank(cls, v):
        if not v.strip():
            raise ValueError('value cannot be blank')
        return v


class Client(WireModel):
    email: str
    first_name: str
    last_name: str
    national_id: str
    client_id: str


class Applicant(WireModel):
    client: Client
    spouse: Optional[Client] = None


class ApplicationV1(WireModel):
    """Legacy application shape with one slot per role."""
    id: str = Field(default_factory=_new_id)
    product: str
    transaction: str
    channel: str
    branch: Optional[str] = None
    status: str
    user: str
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    main_applicant: Applicant
    co_applicants: List[Applicant] = Field(default_factory=list)


class ApplicationClient(Client):
    role: ClientRole
    parent_client_id: Optional[str] = None


class ApplicationV2(WireModel):
    """Current application shape: every person is a tagged entry in ``clients``."""
    id: str = Field(default_factory=_new_id)
    product: str
    transaction: str
    channel: str
    branch: Optional[str] = None
    status: str
    user: str
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    clients: List[ApplicationClient] = Field(default_factory=list)


def application_schema_version(document: dict) -> int:
    """Return 1 for the slot-based shape, 2 for the tagged shape."""
    if "mainApplicant" in document or "coApplicants" in document:
        return 1
    return 2


# ---------------------------------------------------------------------------
# SEARCH REQUESTS
# ---------------------------------------------------------------------------


class ProductSearchRequest(WireModel):
    query: Optional[str] = None
    category: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    created_at_from: Optional[datetime] = None
    created_at_to: Optional[datetime] = None
    variant_sku: Optional[str] = None
    variant_size: Optional[str] = None
    variant_color: Optional[str] = None
    from_: int = Field(0, alias="from", ge=0)
    size: int = Field(10, ge=0, le=10000)
    sort: str = "desc"


class SemanticSearchRequest(WireModel):
    query: Optional[str] = None
    category: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    created_at_from: Optional[datetime] = None
    created_at_to: Optional[datetime] = None
    k: int = Field(10, ge=1, le=10000)
    num_candidates: int = Field(100, ge=1, le=10000)
    similarity: Optional[float] = None


class ApplicationSearchRequest(WireModel):
    product: Optional[str] = None
    transaction: Optional[str] = None
    channel: Optional[str] = None
    status: Optional[str] = None
    created_at_from: Optional[datetime] = None
    created_at_to: Optional[datetime] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    national_id: Optional[str] = None
    client_id: Optional[str] = None
    email: Optional[str] = None
    roles: Optional[List[str]] = None
    size: int = Field(100, ge=0, le=10000)
    sort: str = "desc"

    def client_filters(self) -> dict:
        """Person filters keyed by their stored field name."""
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "nationalId": self.national_id,
            "clientId": self.client_id,
            "email": self.email,
        }
