"""
Migration of applications from slot-based roles to the tagged clients list.

``mainApplicant`` and ``coApplicants`` are flattened into ``clients``: each
person keeps its fields, gains a ``role`` and, for spouses, the clientId of the
person it is attached to in ``parentClientId``.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

from .indices import APPLICATIONS_V1_ALIAS, APPLICATIONS_V2
from .ingest import IngestReport, ingest_documents
from .query import match_all
from .schema import ClientRole, application_schema_version
from ..store.base import IDocumentStore, StoreError
from util.logging import logger as structured_logger

logger = logging.getLogger(__name__)


def _tagged(person: Dict[str, Any], role: ClientRole, parent_client_id: Optional[str]) -> Dict[str, Any]:
    tagged = copy.deepcopy(person)
    tagged["role"] = role.value
    tagged["parentClientId"] = parent_client_id
    return tagged


def _applicant_clients(applicant: Optional[Dict[str, Any]], role: ClientRole) -> List[Dict[str, Any]]:
    if not applicant:
        return []
    clients = []
    parent_id = None
    if applicant.get("client"):
        client = _tagged(applicant["client"], role, None)
        parent_id = client.get("clientId")
        clients.append(client)
    if applicant.get("spouse"):
        clients.append(_tagged(applicant["spouse"], ClientRole.SPOUSE, parent_id))
    return clients


def migrate_application(document: Dict[str, Any]) -> Dict[str, Any]:
    """Return the tagged-clients form of ``document``. Already migrated documents come back unchanged."""
    if application_schema_version(document) == 2:
        return copy.deepcopy(document)

    migrated = {k: copy.deepcopy(v) for k, v in document.items() if k not in ("mainApplicant", "coApplicants")}
    clients = _applicant_clients(document.get("mainApplicant"), ClientRole.MAIN_CLIENT)
    for co_applicant in document.get("coApplicants") or []:
        clients.extend(_applicant_clients(co_applicant, ClientRole.CO_APPLICANT))
    migrated["clients"] = clients
    return migrated


@dataclass(frozen=True)
class MigrationResult:
    success: bool
    message: str
    ingest: Optional[IngestReport] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"success": self.success, "message": self.message}
        if self.ingest is not None:
            data.update({
                "total": self.ingest.total_processed,
                "successCount": self.ingest.success_count,
                "failedCount": self.ingest.failed_count,
                "batchCount": self.ingest.batch_count,
                "errors": list(self.ingest.errors) if self.ingest.errors else None,
            })
        return data


async def _migrated(store: IDocumentStore, source: str) -> AsyncIterator[Dict[str, Any]]:
    async for document in store.scan(source, match_all()):
        yield migrate_application(document)


async def migrate_applications(
    store: IDocumentStore,
    batch_size: int,
    source: str = APPLICATIONS_V1_ALIAS,
    destination: str = APPLICATIONS_V2.hot,
    timeout: Optional[float] = None,
) -> MigrationResult:
    """Copy every application from ``source`` to ``destination`` in the tagged shape."""
    try:
        if not await store.alias_exists(destination):
            return MigrationResult(False, f"Target index alias '{destination}' does not exist. "
                                          f"Initialize V2 index first.")
        if not await store.alias_exists(source):
            return MigrationResult(False, f"Source index alias '{source}' does not exist. No data to migrate.")
    except StoreError as e:
        return MigrationResult(False, f"Migration failed: {e.reason}")

    try:
        report = await ingest_documents(store, destination, _migrated(store, source), batch_size,
                                        timeout=timeout, noun="applications")
    except StoreError as e:
        # Scan broke off mid-stream; batches already written stay written
        logger.error(f"Migration scan of {source} failed: {e}")
        return MigrationResult(False, f"Migration failed: {e.reason}")

    structured_logger.log_operation("migration.completed", "done" if report.success else "failed", {
        "source": source,
        "destination": destination,
        "total": report.total_processed,
        "failed": report.failed_count,
    })

    if report.total_processed == 0:
        return MigrationResult(True, f"No documents to migrate from '{source}'", report)
    if not report.success:
        return MigrationResult(False, f"Migration failed: {report.failed_count} documents could not be written", report)
    message = f"Migrated {report.success_count} documents from '{source}' to '{destination}'"
    if report.failed_count:
        message += f", {report.failed_count} failed"
    return MigrationResult(True, message, report)
