#!/usr/bin/env python3
"""
Command-line archival: move documents older than the retention window into
per-year cold partitions.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add the repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from docindex.core.archive import ArchiveReport, archive_layout
from docindex.core.config import get_document_store, get_retention_years, get_store_timeout
from docindex.core.indices import APPLICATIONS_V2, PRODUCTS

TARGETS = {
    "products": (PRODUCTS, "products"),
    "applications-v2": (APPLICATIONS_V2, "applications"),
}


def format_report(report: ArchiveReport) -> str:
    """Format an archive report for display."""
    lines = []

    lines.append(f"Hot partition: {report.hot}")
    lines.append(f"Cutoff: {report.cutoff.isoformat()}")
    if report.completed_at and report.started_at:
        duration = report.completed_at - report.started_at
        lines.append(f"Duration: {duration.total_seconds():.2f} seconds")

    if not report.success:
        lines.append("Status: FAILED")
    elif report.failed_years:
        lines.append(f"Status: PARTIAL ({len(report.failed_years)} year(s) failed)")
    else:
        lines.append("Status: SUCCESS")

    lines.append(report.message)

    if report.years:
        lines.append("Years:")
        for outcome in report.years:
            line = f"  {outcome.year} -> {outcome.partition}: {outcome.status}, copied {outcome.copied}, deleted {outcome.deleted}"
            if outcome.error:
                line += f" ({outcome.error})"
            lines.append(line)

    if report.duplicated_years:
        lines.append("Documents of these years exist in both hot and cold partitions:")
        for year in report.duplicated_years:
            lines.append(f"  - {year}")

    return "\n".join(lines)


async def run(target: str, retention_years: int):
    layout, noun = TARGETS[target]
    store = get_document_store()
    try:
        return await archive_layout(store, layout, retention_years=retention_years,
                                    timeout=get_store_timeout(), noun=noun)
    finally:
        await store.close()


def main():
    parser = argparse.ArgumentParser(
        description="Archive aged documents into per-year cold partitions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --target products                 # Archive products older than the retention window
  %(prog)s --target applications-v2 --json   # Archive applications, print JSON

Environment variables:
- ES_URL=http://localhost:9200 (store location)
- RETENTION_YEARS=1 (hot retention window)
- STORE_CALL_TIMEOUT_SEC=300 (timeout per archived year)
        """
    )

    parser.add_argument(
        "--target", "-t",
        choices=sorted(TARGETS),
        required=True,
        help="Which document family to archive"
    )

    parser.add_argument(
        "--retention-years",
        type=int,
        default=None,
        help="Override RETENTION_YEARS"
    )

    parser.add_argument(
        "--json", "-j",
        action="store_true",
        help="Output results as JSON instead of human-readable text"
    )

    args = parser.parse_args()

    retention_years = args.retention_years if args.retention_years is not None else get_retention_years()
    if retention_years < 1:
        parser.error("--retention-years must be >= 1")

    try:
        report = asyncio.run(run(args.target, retention_years))
    except Exception as e:
        print(f"ERROR: Unexpected error: {e}")
        return 1

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        print(format_report(report))

    if not report.success:
        return 1
    if report.failed_years:
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
