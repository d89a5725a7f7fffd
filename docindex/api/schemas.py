"""
Response bodies for the HTTP API. Request bodies live with the document models.
"""

from typing import Any, Dict, List, Optional

from ..core.schema import WireModel


class HealthResponse(WireModel):
    status: str
    version: str
    store_reachable: bool
    config_issues: List[str] = []


class InitResponse(WireModel):
    success: bool
    message: str


class ProductSearchResponse(WireModel):
    products: List[Dict[str, Any]]
    total: int


class ApplicationSearchResponse(WireModel):
    applications: List[Dict[str, Any]]
    total: int


class SeedResponse(WireModel):
    success: bool
    message: str
    total_processed: int
    success_count: int
    failed_count: int
    batch_count: int
    errors: Optional[List[str]] = None
    input_error: Optional[str] = None


class ArchiveYearResult(WireModel):
    year: int
    partition: str
    status: str
    copied: int = 0
    deleted: int = 0
    error: Optional[str] = None


class ArchiveResponse(WireModel):
    success: bool
    message: str
    archived_count: int
    years_processed: int
    cutoff: str
    started_at: str
    completed_at: Optional[str] = None
    years: List[ArchiveYearResult] = []
    failed_years: List[int] = []
    duplicated_years: List[int] = []


class MigrateResponse(WireModel):
    success: bool
    message: str
    total: Optional[int] = None
    success_count: Optional[int] = None
    failed_count: Optional[int] = None
    batch_count: Optional[int] = None
    errors: Optional[List[str]] = None
