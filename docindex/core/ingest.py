"""
Batched bulk ingestion.

Documents are consumed lazily from any sync or async iterable, grouped into
batches of a fixed capacity and written one bulk request at a time, in input
order. Each batch is accounted for on its own: a failed batch is recorded and
the stream carries on with the next one. A source that hits unreadable input
stops the run there; everything read before it is still written and reported.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, replace
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Type, Union

from pydantic import ValidationError

from .schema import WireModel
from ..store.base import IDocumentStore, StoreError
from ..vector.embeddings import IEmbeddingProvider, product_embedding_text
from util.logging import audit_event, logger as structured_logger

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
DocumentSource = Union[Iterable[Document], AsyncIterable[Document]]
Enricher = Callable[[List[Document]], Awaitable[List[Document]]]


class DocumentFormatError(ValueError):
    """A line of NDJSON input is not valid UTF-8, not valid JSON or not a valid document."""


def parse_ndjson_line(line: Union[bytes, str], line_number: int, model: Type[WireModel]) -> Optional[Document]:
    """
    Validate one NDJSON line into a wire document.

    Returns:
        The document, or None for a blank line

    Raises:
        DocumentFormatError: naming the line and what is wrong with it
    """
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError:
            raise DocumentFormatError(f"Line {line_number}: invalid UTF-8")
    text = line.strip()
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise DocumentFormatError(f"Line {line_number}: invalid JSON: {e.msg}")
    try:
        return model.model_validate(data).to_document()
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        audit_event("ingest.rejected", {"line": line_number, "model": model.__name__, "field": location},
                    payload=data if isinstance(data, dict) else None)
        raise DocumentFormatError(f"Line {line_number}: {location}: {first.get('msg')}")


async def batched(documents: DocumentSource, size: int) -> AsyncIterator[List[Document]]:
    """Yield lists of at most ``size`` documents, holding one batch in memory at a time.

    If the source raises ``DocumentFormatError`` the documents read before it
    are yielded as a last batch and the error is re-raised.
    """
    if size < 1:
        raise ValueError("Batch size must be >= 1")

    batch: List[Document] = []
    try:
        if hasattr(documents, "__aiter__"):
            async for document in documents:
                batch.append(document)
                if len(batch) >= size:
                    yield batch
                    batch = []
        else:
            for document in documents:
                batch.append(document)
                if len(batch) >= size:
                    yield batch
                    batch = []
    except DocumentFormatError:
        if batch:
            yield batch
        raise

    if batch:
        yield batch


@dataclass(frozen=True)
class BatchOutcome:
    number: int
    size: int
    succeeded: int
    failed: int
    error: Optional[str] = None


@dataclass(frozen=True)
class IngestReport:
    """Running totals of an ingestion run. ``record`` returns a new report."""
    noun: str = "documents"
    total_processed: int = 0
    success_count: int = 0
    failed_count: int = 0
    batch_count: int = 0
    errors: Tuple[str, ...] = ()
    input_error: Optional[str] = None

    def record(self, outcome: BatchOutcome) -> "IngestReport":
        errors = self.errors + (outcome.error,) if outcome.error else self.errors
        return replace(
            self,
            total_processed=self.total_processed + outcome.size,
            success_count=self.success_count + outcome.succeeded,
            failed_count=self.failed_count + outcome.failed,
            batch_count=self.batch_count + 1,
            errors=errors,
        )

    def halt(self, reason: str) -> "IngestReport":
        """Stop the run at unreadable input. Batches already recorded stay counted."""
        return replace(self, input_error=reason, errors=self.errors + (reason,))

    @property
    def success(self) -> bool:
        return self.success_count > 0 and self.input_error is None

    @property
    def message(self) -> str:
        if self.input_error is not None:
            return (f"Stopped at invalid input after seeding {self.success_count} {self.noun} "
                    f"in {self.batch_count} batches: {self.input_error}")
        if not self.success:
            return f"Failed to seed {self.noun}: {self.failed_count} failures across {self.batch_count} batches"
        if self.failed_count > 0:
            return (f"Partially completed: {self.success_count} {self.noun} seeded, "
                    f"{self.failed_count} failed across {self.batch_count} batches")
        return f"Successfully seeded {self.success_count} {self.noun} in {self.batch_count} batches"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "totalProcessed": self.total_processed,
            "successCount": self.success_count,
            "failedCount": self.failed_count,
            "batchCount": self.batch_count,
            "errors": list(self.errors) if self.errors else None,
            "inputError": self.input_error,
        }


async def _write_batch(store: IDocumentStore, partition: str, batch: List[Document],
                       enrich: Optional[Enricher]) -> List[Any]:
    if enrich is not None:
        batch = await enrich(batch)
    return await store.bulk_write(partition, batch)


async def send_batch(
    store: IDocumentStore,
    partition: str,
    batch: List[Document],
    number: int,
    enrich: Optional[Enricher] = None,
    timeout: Optional[float] = None,
) -> BatchOutcome:
    """Write one batch and classify the result as success, partial or failed."""
    size = len(batch)
    try:
        results = await asyncio.wait_for(_write_batch(store, partition, batch, enrich), timeout)
    except StoreError as e:
        outcome = BatchOutcome(number, size, 0, size, f"Batch {number} request failed: {e.reason}")
    except asyncio.TimeoutError:
        outcome = BatchOutcome(number, size, 0, size, f"Batch {number} request failed: timed out after {timeout}s")
    except Exception as e:
        logger.exception(f"Batch {number} threw exception")
        outcome = BatchOutcome(number, size, 0, size, f"Batch {number} exception: {e}")
    else:
        failed = sum(1 for item in results if not item.ok)
        if failed:
            outcome = BatchOutcome(number, size, size - failed, failed,
                                   f"Batch {number} had {failed} document errors")
        else:
            outcome = BatchOutcome(number, size, size, 0)

    structured_logger.log_batch_result(outcome.number, outcome.size, outcome.succeeded,
                                       outcome.failed, outcome.error)
    return outcome


async def ingest_documents(
    store: IDocumentStore,
    partition: str,
    documents: DocumentSource,
    batch_size: int,
    enrich: Optional[Enricher] = None,
    timeout: Optional[float] = None,
    noun: str = "documents",
) -> IngestReport:
    """
    Stream ``documents`` into ``partition`` in sequential batches.

    Args:
        store: Target document store
        partition: Index or alias to write to
        documents: Sync or async iterable of wire-format documents
        batch_size: Batch capacity
        enrich: Optional coroutine applied to each batch before it is written
        timeout: Seconds allowed per batch (enrichment plus bulk write)
        noun: What the documents are, for the report message

    Returns:
        IngestReport: totals over every batch. When the source raised
        ``DocumentFormatError`` the report is halted with that reason.
    """
    report = IngestReport(noun=noun)
    try:
        async for batch in batched(documents, batch_size):
            outcome = await send_batch(store, partition, batch, report.batch_count + 1, enrich, timeout)
            report = report.record(outcome)
    except DocumentFormatError as e:
        logger.warning(f"Ingestion into {partition} stopped at invalid input: {e}")
        report = report.halt(str(e))

    structured_logger.log_ingest_summary(partition, report.total_processed, report.success_count,
                                         report.failed_count, report.batch_count)
    return report


def embedding_enricher(embedder: IEmbeddingProvider) -> Enricher:
    """Attach an ``embedding`` to every product of a batch with one provider call."""

    async def enrich(batch: List[Document]) -> List[Document]:
        texts = [product_embedding_text(product) for product in batch]
        vectors = await embedder.embed_texts(texts)
        if len(vectors) != len(batch):
            raise ValueError(f"Expected {len(batch)} embeddings, got {len(vectors)}")
        return [{**product, "embedding": vector} for product, vector in zip(batch, vectors)]

    return enrich
