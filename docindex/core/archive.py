"""
Archival of aged documents from the hot partition into per-year cold partitions.

A run discovers which calendar years of the hot partition hold documents older
than the retention cutoff, then handles each year on its own: copy the year's
window into ``{cold_prefix}-{year}``, and only after the copy succeeded delete
the same window from the hot partition.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .indices import PartitionLayout
from .query import as_utc, range_clause
from .routing import retention_cutoff, utc_now
from ..store.base import IDocumentStore, StoreError
from util.logging import logger as structured_logger

logger = logging.getLogger(__name__)

ARCHIVED = "archived"
COPY_FAILED = "copy_failed"
# Copy succeeded, hot delete did not: the year's documents exist in both places
DUPLICATED = "duplicated"


@dataclass(frozen=True)
class YearOutcome:
    """What happened to one calendar year during a run."""
    year: int
    partition: str
    status: str
    copied: int = 0
    deleted: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ARCHIVED

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "year": self.year,
            "partition": self.partition,
            "status": self.status,
            "copied": self.copied,
            "deleted": self.deleted,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class ArchiveReport:
    """Result of one archival run."""
    hot: str
    cutoff: datetime
    started_at: datetime
    noun: str = "documents"
    retention_years: int = 1
    years: Tuple[YearOutcome, ...] = ()
    discovery_error: Optional[str] = None
    completed_at: Optional[datetime] = None

    def record(self, outcome: YearOutcome) -> "ArchiveReport":
        return replace(self, years=self.years + (outcome,))

    def fail_discovery(self, reason: str) -> "ArchiveReport":
        return replace(self, discovery_error=reason)

    def finish(self, completed_at: datetime) -> "ArchiveReport":
        return replace(self, completed_at=completed_at)

    @property
    def archived_count(self) -> int:
        """Documents removed from the hot partition by fully archived years."""
        return sum(outcome.deleted for outcome in self.years if outcome.ok)

    @property
    def failed_years(self) -> Tuple[YearOutcome, ...]:
        return tuple(outcome for outcome in self.years if not outcome.ok)

    @property
    def duplicated_years(self) -> Tuple[int, ...]:
        return tuple(outcome.year for outcome in self.years if outcome.status == DUPLICATED)

    @property
    def success(self) -> bool:
        if self.discovery_error is not None:
            return False
        if not self.years:
            return True
        return any(outcome.ok for outcome in self.years)

    @property
    def message(self) -> str:
        if self.discovery_error is not None:
            return f"Failed to query hot partition '{self.hot}': {self.discovery_error}"
        if not self.years:
            return f"No {self.noun} older than {self.retention_years} year(s) to archive"

        message = f"Archived {self.archived_count} {self.noun} across {len(self.years)} year(s)"
        failed = self.failed_years
        if failed:
            summary = ", ".join(f"{outcome.year} ({outcome.status})" for outcome in failed)
            message += f"; {len(failed)} year(s) failed: {summary}"
        return message

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        data = {
            "success": self.success,
            "message": self.message,
            "archivedCount": self.archived_count,
            "yearsProcessed": len(self.years),
            "cutoff": self.cutoff.isoformat(),
            "startedAt": self.started_at.isoformat(),
            "years": [outcome.to_dict() for outcome in self.years],
            "failedYears": [outcome.year for outcome in self.failed_years],
            "duplicatedYears": list(self.duplicated_years),
        }
        if self.completed_at:
            data["completedAt"] = self.completed_at.isoformat()
        return data


def year_window(year: int, cutoff: datetime) -> Dict[str, Any]:
    """createdAt window of ``year`` clamped so it never reaches the cutoff."""
    start = datetime(year, 1, 1, tzinfo=timezone.utc)
    end = min(datetime(year + 1, 1, 1, tzinfo=timezone.utc), cutoff)
    return range_clause("createdAt", gte=start, lt=end)


async def archive_year(
    store: IDocumentStore,
    layout: PartitionLayout,
    year: int,
    cutoff: datetime,
    timeout: Optional[float] = None,
) -> YearOutcome:
    """Copy one year into its cold partition, then delete it from the hot one."""
    cold = layout.cold_for_year(year)
    window = year_window(year, cutoff)
    structured_logger.log_archive_year(year, cold, "started")

    try:
        copied = await asyncio.wait_for(store.reindex([layout.hot], window, cold), timeout)
    except StoreError as e:
        outcome = YearOutcome(year, cold, COPY_FAILED, error=e.reason)
        structured_logger.log_archive_year(year, cold, outcome.status, {"error": e.reason})
        return outcome
    except asyncio.TimeoutError:
        reason = f"reindex timed out after {timeout}s"
        structured_logger.log_archive_year(year, cold, COPY_FAILED, {"error": reason})
        return YearOutcome(year, cold, COPY_FAILED, error=reason)

    structured_logger.log_archive_year(year, cold, "copied", {"copied": copied})

    try:
        deleted = await asyncio.wait_for(store.delete_by_query(layout.hot, window), timeout)
    except StoreError as e:
        reason = e.reason
    except asyncio.TimeoutError:
        reason = f"delete timed out after {timeout}s"
    else:
        structured_logger.log_archive_year(year, cold, ARCHIVED, {"copied": copied, "deleted": deleted})
        return YearOutcome(year, cold, ARCHIVED, copied=copied, deleted=deleted)

    structured_logger.log_archive_year(year, cold, DUPLICATED, {"copied": copied, "error": reason})
    return YearOutcome(year, cold, DUPLICATED, copied=copied, error=reason)


async def archive_layout(
    store: IDocumentStore,
    layout: PartitionLayout,
    now: Optional[datetime] = None,
    retention_years: int = 1,
    timeout: Optional[float] = None,
    noun: str = "documents",
) -> ArchiveReport:
    """
    Move every hot document older than the retention cutoff into its year's cold partition.

    Years are processed one after another. A failing year is recorded and the
    run continues; the run as a whole only fails if discovery fails or no
    discovered year could be archived.

    Returns:
        ArchiveReport: per-year outcomes and totals
    """
    now = as_utc(now) if now is not None else utc_now()
    cutoff = retention_cutoff(now, retention_years)
    report = ArchiveReport(hot=layout.hot, cutoff=cutoff, started_at=now, noun=noun,
                           retention_years=retention_years)

    discovery = range_clause("createdAt", lt=cutoff)
    try:
        years = await asyncio.wait_for(store.aggregate_by_year(layout.hot, discovery), timeout)
    except StoreError as e:
        logger.error(f"Archive discovery failed for {layout.hot}: {e}")
        return report.fail_discovery(e.reason).finish(utc_now())
    except asyncio.TimeoutError:
        logger.error(f"Archive discovery timed out for {layout.hot}")
        return report.fail_discovery(f"timed out after {timeout}s").finish(utc_now())

    for year in sorted(year for year, count in years.items() if count > 0):
        report = report.record(await archive_year(store, layout, year, cutoff, timeout))

    report = report.finish(utc_now())
    structured_logger.log_archive_summary(layout.hot, report.archived_count, len(report.years),
                                          len(report.failed_years))
    return report
