#!/usr/bin/env python3
"""
Copy legacy slot-based applications into the tagged-roles index.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add the repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from docindex.core.config import get_batch_size, get_document_store, get_store_timeout
from docindex.core.indices import APPLICATIONS_V1_ALIAS, APPLICATIONS_V2
from docindex.core.migration import MigrationResult, migrate_applications


async def run(source: str, destination: str, batch_size: int) -> MigrationResult:
    store = get_document_store()
    try:
        return await migrate_applications(store, batch_size, source=source, destination=destination,
                                          timeout=get_store_timeout())
    finally:
        await store.close()


def main():
    parser = argparse.ArgumentParser(description="Migrate applications to tagged client roles")
    parser.add_argument("--source", default=APPLICATIONS_V1_ALIAS, help="Legacy alias to read from")
    parser.add_argument("--destination", default=APPLICATIONS_V2.hot, help="Tagged alias to write to")
    parser.add_argument("--batch-size", "-b", type=int, default=None,
                        help="Override APPLICATION_BATCH_SIZE")
    parser.add_argument("--json", "-j", action="store_true", help="Output the result as JSON")
    args = parser.parse_args()

    batch_size = args.batch_size if args.batch_size is not None else get_batch_size("applications")
    if batch_size < 1:
        parser.error("--batch-size must be >= 1")

    result = asyncio.run(run(args.source, args.destination, batch_size))

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(result.message)
        if result.ingest is not None:
            for error in result.ingest.errors:
                print(f"  - {error}")

    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
