"""
Index router: picks the partitions a date-bounded query has to touch.

The retention cutoff is recomputed on every call with the same formula the
archival pipeline uses, so a document is always in at least one of the
partitions returned here, also while an archival run is in flight.
"""

from datetime import datetime, timezone
from typing import List, Optional

from .indices import PartitionLayout
from .query import as_utc
from util.logging import logger as structured_logger


class RoutingInvariantError(AssertionError):
    """Neither hot nor cold partitions were selected. Only reachable with an inverted range."""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def subtract_years(moment: datetime, years: int) -> datetime:
    """Calendar-aware year subtraction; Feb 29 falls back to Feb 28."""
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:
        return moment.replace(year=moment.year - years, day=28)


def retention_cutoff(now: datetime, retention_years: int = 1) -> datetime:
    """Documents created before this instant belong in cold storage."""
    return subtract_years(as_utc(now), retention_years)


def partitions_for_search(
    layout: PartitionLayout,
    date_from: Optional[datetime],
    date_to: Optional[datetime],
    now: datetime,
    retention_years: int = 1,
) -> List[str]:
    """
    Return the minimal ordered set of partitions for a createdAt range.

    - No range, or a range straddling the cutoff: hot + cold pattern
    - Range entirely within the retention window: hot only
    - Range entirely before the cutoff: cold pattern only

    Raises:
        RoutingInvariantError: if neither side is selected
    """
    cutoff = retention_cutoff(now, retention_years)

    needs_hot = date_to is None or as_utc(date_to) >= cutoff
    needs_cold = date_from is None or as_utc(date_from) < cutoff

    if needs_hot and needs_cold:
        partitions = [layout.hot, layout.cold_pattern]
    elif needs_hot:
        partitions = [layout.hot]
    elif needs_cold:
        partitions = [layout.cold_pattern]
    else:
        structured_logger.log_invariant_violation("router", {
            "hot": layout.hot,
            "from": date_from.isoformat() if date_from else None,
            "to": date_to.isoformat() if date_to else None,
            "cutoff": cutoff.isoformat(),
        })
        raise RoutingInvariantError(
            f"No partition selected for range [{date_from}, {date_to}] with cutoff {cutoff}"
        )

    structured_logger.log_route_decision(needs_hot, needs_cold, partitions)
    return partitions
