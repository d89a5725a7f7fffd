"""
Result types returned by document store implementations.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class SearchPage:
    """One page of search hits."""

    documents: List[Dict[str, Any]]
    """Document sources in ranking/sort order"""

    total: int
    """Total number of matching documents across all targeted partitions"""


@dataclass
class BulkItemResult:
    """Outcome of a single document inside a bulk write."""

    id: Optional[str]
    """Document id the store assigned or received"""

    ok: bool
    """True if the document was indexed"""

    status: int = 200
    """Per-item status code reported by the store"""

    error: Optional[str] = None
    """Reason reported by the store when the item failed"""


@dataclass
class KnnQuery:
    """Approximate nearest-neighbour clause for vector search."""

    field: str
    query_vector: List[float]
    k: int = 10
    num_candidates: int = 100
    similarity: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "field": self.field,
            "query_vector": list(self.query_vector),
            "k": self.k,
            "num_candidates": self.num_candidates,
        }
        if self.similarity is not None:
            body["similarity"] = self.similarity
        return body
