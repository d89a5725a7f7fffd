#!/usr/bin/env python3
"""
Bulk-load products or applications from an NDJSON file, one document per line.
The file is streamed; it is never held in memory as a whole.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Dict, Iterator, Type

# Add the repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from docindex.core.config import get_batch_size, get_document_store, get_embedding_provider, get_store_timeout
from docindex.core.indices import APPLICATIONS_V1_ALIAS, APPLICATIONS_V2, PRODUCTS
from docindex.core.ingest import IngestReport, embedding_enricher, ingest_documents, parse_ndjson_line
from docindex.core.schema import ApplicationV1, ApplicationV2, Product, WireModel

TARGETS = {
    "products": (PRODUCTS.hot, Product, "products"),
    "applications": (APPLICATIONS_V1_ALIAS, ApplicationV1, "applications"),
    "applications-v2": (APPLICATIONS_V2.hot, ApplicationV2, "applications"),
}


def read_documents(path: Path, model: Type[WireModel]) -> Iterator[Dict]:
    """Yield validated wire documents, reading the file line by line.

    Raises:
        DocumentFormatError: at the first unreadable line
    """
    with open(path, "rb") as f:
        for line_number, line in enumerate(f, 1):
            document = parse_ndjson_line(line, line_number, model)
            if document is not None:
                yield document


async def run(target: str, path: Path, batch_size: int) -> IngestReport:
    partition, model, noun = TARGETS[target]
    store = get_document_store()
    enrich = embedding_enricher(get_embedding_provider()) if target == "products" else None
    try:
        return await ingest_documents(store, partition, read_documents(path, model), batch_size,
                                      enrich=enrich, timeout=get_store_timeout(), noun=noun)
    finally:
        await store.close()


def main():
    parser = argparse.ArgumentParser(description="Seed documents into the hot partition")
    parser.add_argument("file", type=Path, help="NDJSON file, one document per line")
    parser.add_argument("--target", "-t", choices=sorted(TARGETS), required=True,
                        help="Which document family the file holds")
    parser.add_argument("--batch-size", "-b", type=int, default=None,
                        help="Override the configured batch size")
    parser.add_argument("--json", "-j", action="store_true", help="Output the report as JSON")
    args = parser.parse_args()

    if not args.file.exists():
        parser.error(f"File not found: {args.file}")

    kind = "products" if args.target == "products" else "applications"
    batch_size = args.batch_size if args.batch_size is not None else get_batch_size(kind)
    if batch_size < 1:
        parser.error("--batch-size must be >= 1")

    report = asyncio.run(run(args.target, args.file, batch_size))

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(report.message)
        print(f"Processed: {report.total_processed}, succeeded: {report.success_count}, "
              f"failed: {report.failed_count}, batches: {report.batch_count}")
        for error in report.errors:
            print(f"  - {error}")

    return 0 if report.success else 1


if __name__ == "__main__":
    sys.exit(main())
