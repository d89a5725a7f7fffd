"""
In-process document store for development and tests.

Evaluates the query-DSL subset produced by the query compiler against plain
dictionaries, following the search engine's rules where they matter for
correctness:

- nested fields are only reachable through a ``nested`` query, and each
  nested element is matched on its own
- keyword fields with the ``lowercase`` normalizer compare case-insensitively
- text fields match on lowercased word tokens
- indices created under a registered template pattern inherit its schema
- ``dynamic: strict`` mappings reject documents carrying unknown fields
"""

import copy
import fnmatch
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import numpy as np

from .base import IDocumentStore, StoreError
from .types import BulkItemResult, KnnQuery, SearchPage

_TOKEN_RE = re.compile(r"\w+")


def parse_date(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _tokens(value: Any) -> List[str]:
    return _TOKEN_RE.findall(str(value).lower())


@dataclass
class _Index:
    schema: Dict[str, Any]
    docs: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def mappings(self) -> Dict[str, Any]:
        return self.schema.get("mappings") or {}


class MemoryDocumentStore(IDocumentStore):
    """Dictionary-backed IDocumentStore."""

    def __init__(self):
        self._indices: Dict[str, _Index] = {}
        self._aliases: Dict[str, str] = {}
        self._templates: Dict[str, Tuple[str, Dict[str, Any]]] = {}

    # ------------------------------------------------------------------
    # Index bookkeeping
    # ------------------------------------------------------------------

    def index_names(self) -> List[str]:
        return sorted(self._indices)

    def documents(self, name: str) -> List[Dict[str, Any]]:
        """All documents in an index or alias, for inspection."""
        docs = []
        for index_name in self._resolve(name, "documents"):
            docs.extend(copy.deepcopy(list(self._indices[index_name].docs.values())))
        return docs

    def _resolve(self, name: str, operation: str) -> List[str]:
        if "*" in name:
            return sorted(n for n in self._indices if fnmatch.fnmatchcase(n, name))
        if name in self._aliases:
            return [self._aliases[name]]
        if name in self._indices:
            return [name]
        raise StoreError(operation, f"no such index [{name}]", 404)

    def _write_target(self, name: str) -> _Index:
        """Resolve a write target, auto-creating the index from a matching template."""
        if name in self._aliases:
            return self._indices[self._aliases[name]]
        if name in self._indices:
            return self._indices[name]
        schema: Dict[str, Any] = {}
        for pattern, template_schema in self._templates.values():
            if fnmatch.fnmatchcase(name, pattern):
                schema = copy.deepcopy(template_schema)
                break
        index = _Index(schema=schema)
        self._indices[name] = index
        return index

    # ------------------------------------------------------------------
    # IDocumentStore
    # ------------------------------------------------------------------

    async def exists(self, name: str) -> bool:
        return name in self._indices or name in self._aliases

    async def alias_exists(self, name: str) -> bool:
        return name in self._aliases

    async def create_partition(self, name: str, schema: Dict[str, Any], alias: Optional[str] = None) -> None:
        if name in self._indices or name in self._aliases:
            raise StoreError("create_partition", f"index [{name}] already exists", 400)
        if alias and (alias in self._indices or alias in self._aliases):
            raise StoreError("create_partition", f"alias [{alias}] already exists", 400)
        self._indices[name] = _Index(schema=copy.deepcopy(schema))
        if alias:
            self._aliases[alias] = name

    async def create_partition_template(self, name: str, pattern: str, schema: Dict[str, Any]) -> None:
        self._templates[name] = (pattern, copy.deepcopy(schema))

    async def search(
        self,
        partitions: List[str],
        query: Dict[str, Any],
        sort: Optional[List[Dict[str, Any]]] = None,
        size: int = 10,
        from_: int = 0,
        knn: Optional[KnnQuery] = None,
        post_filter: Optional[Dict[str, Any]] = None,
    ) -> SearchPage:
        candidates: List[Tuple[_Index, Dict[str, Any]]] = []
        for partition in partitions:
            for index_name in self._resolve(partition, "search"):
                index = self._indices[index_name]
                candidates.extend((index, doc) for doc in index.docs.values())

        if knn is not None:
            hits = self._knn(candidates, knn)
            if query and "match_all" not in query:
                hits = [(index, doc) for index, doc in hits if self._matches(query, doc, index.mappings)]
        else:
            hits = [(index, doc) for index, doc in candidates if self._matches(query, doc, index.mappings)]

        if post_filter:
            hits = [(index, doc) for index, doc in hits if self._matches(post_filter, doc, index.mappings)]

        documents = [doc for _, doc in hits]
        if sort:
            documents = self._sorted(documents, sort)

        total = len(documents)
        page = documents[from_:from_ + size]
        return SearchPage(documents=copy.deepcopy(page), total=total)

    async def bulk_write(self, partition: str, documents: List[Dict[str, Any]]) -> List[BulkItemResult]:
        index = self._write_target(partition)
        results = []
        for document in documents:
            doc_id = document.get("id") or uuid.uuid4().hex
            problem = self._validate(document, index.mappings)
            if problem:
                results.append(BulkItemResult(id=doc_id, ok=False, status=400, error=problem))
                continue
            index.docs[doc_id] = copy.deepcopy(document)
            results.append(BulkItemResult(id=doc_id, ok=True, status=201))
        return results

    async def reindex(self, sources: List[str], query: Dict[str, Any], destination: str) -> int:
        matched = []
        for source in sources:
            for index_name in self._resolve(source, "reindex"):
                index = self._indices[index_name]
                matched.extend(doc for doc in index.docs.values() if self._matches(query, doc, index.mappings))

        target = self._write_target(destination)
        for doc in matched:
            doc_id = doc.get("id") or uuid.uuid4().hex
            target.docs[doc_id] = copy.deepcopy(doc)
        return len(matched)

    async def delete_by_query(self, partition: str, query: Dict[str, Any]) -> int:
        deleted = 0
        for index_name in self._resolve(partition, "delete_by_query"):
            index = self._indices[index_name]
            doomed = [doc_id for doc_id, doc in index.docs.items() if self._matches(query, doc, index.mappings)]
            for doc_id in doomed:
                del index.docs[doc_id]
            deleted += len(doomed)
        return deleted

    async def aggregate_by_year(self, partition: str, query: Dict[str, Any], field: str = "createdAt") -> Dict[int, int]:
        years: Dict[int, int] = {}
        for index_name in self._resolve(partition, "aggregate_by_year"):
            index = self._indices[index_name]
            for doc in index.docs.values():
                if not self._matches(query, doc, index.mappings):
                    continue
                moment = parse_date(doc.get(field))
                if moment is None:
                    continue
                years[moment.year] = years.get(moment.year, 0) + 1
        return dict(sorted(years.items()))

    async def scan(self, partition: str, query: Dict[str, Any], page_size: int = 1000) -> AsyncIterator[Dict[str, Any]]:
        for index_name in self._resolve(partition, "scan"):
            index = self._indices[index_name]
            for doc in list(index.docs.values()):
                if self._matches(query, doc, index.mappings):
                    yield copy.deepcopy(doc)

    # ------------------------------------------------------------------
    # Mapping helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _field_mapping(mappings: Dict[str, Any], dotted: str) -> Optional[Dict[str, Any]]:
        node = mappings
        for part in dotted.split("."):
            props = node.get("properties") or {}
            if part not in props:
                return None
            node = props[part]
        return node

    @staticmethod
    def _nested_paths(mappings: Dict[str, Any], prefix: str = "") -> List[str]:
        paths = []
        for name, spec in (mappings.get("properties") or {}).items():
            full = f"{prefix}{name}"
            if spec.get("type") == "nested":
                paths.append(full)
            if spec.get("properties"):
                paths.extend(MemoryDocumentStore._nested_paths(spec, full + "."))
        return paths

    def _validate(self, document: Dict[str, Any], mappings: Dict[str, Any]) -> Optional[str]:
        if mappings.get("dynamic") == "strict":
            unknown = self._unknown_field(document, mappings.get("properties") or {}, "")
            if unknown:
                return f"strict_dynamic_mapping_exception: mapping set to strict, dynamic introduction of [{unknown}] is not allowed"
        for name, spec in (mappings.get("properties") or {}).items():
            if spec.get("type") == "date" and document.get(name) is not None:
                try:
                    parse_date(document[name])
                except (TypeError, ValueError):
                    return f"mapper_parsing_exception: failed to parse field [{name}] of type [date]"
        return None

    def _unknown_field(self, node: Any, properties: Dict[str, Any], path: str) -> Optional[str]:
        if isinstance(node, list):
            for item in node:
                unknown = self._unknown_field(item, properties, path)
                if unknown:
                    return unknown
            return None
        if not isinstance(node, dict):
            return None
        for key, value in node.items():
            full = f"{path}{key}"
            if key not in properties:
                return full
            child = properties[key].get("properties")
            if child is not None and isinstance(value, (dict, list)):
                unknown = self._unknown_field(value, child, full + ".")
                if unknown:
                    return unknown
        return None

    # ------------------------------------------------------------------
    # Query evaluation
    # ------------------------------------------------------------------

    def _field_values(self, source: Any, dotted: str, mappings: Dict[str, Any], prefix: str) -> List[Any]:
        """Leaf values for ``dotted`` relative to a (possibly nested) context."""
        if prefix:
            if not dotted.startswith(prefix + "."):
                return []
            relative = dotted[len(prefix) + 1:]
        else:
            relative = dotted

        # Nested objects are invisible outside their own nested query
        for nested in self._nested_paths(mappings):
            if nested == prefix or (prefix and not nested.startswith(prefix + ".")):
                continue
            if dotted == nested or dotted.startswith(nested + "."):
                return []

        return list(self._walk(source, relative.split(".")))

    def _walk(self, node: Any, parts: List[str]):
        if isinstance(node, list):
            for item in node:
                yield from self._walk(item, parts)
            return
        if not parts:
            if node is not None:
                yield node
            return
        if isinstance(node, dict) and parts[0] in node:
            yield from self._walk(node[parts[0]], parts[1:])

    def _normalizer(self, spec: Optional[Dict[str, Any]]):
        if spec and spec.get("normalizer") == "lowercase":
            return lambda v: v.lower() if isinstance(v, str) else v
        return lambda v: v

    def _term_matches(self, field_name: str, value: Any, source: Any, mappings: Dict[str, Any], prefix: str) -> bool:
        spec = self._field_mapping(mappings, field_name)
        values = self._field_values(source, field_name, mappings, prefix)
        field_type = (spec or {}).get("type")

        if field_type == "text":
            return any(str(value) in _tokens(v) for v in values)
        if field_type == "date":
            wanted = parse_date(value)
            return any(parse_date(v) == wanted for v in values)

        normalize = self._normalizer(spec)
        wanted = normalize(value)
        return any(normalize(v) == wanted for v in values)

    def _range_matches(self, field_name: str, bounds: Dict[str, Any], source: Any,
                       mappings: Dict[str, Any], prefix: str) -> bool:
        spec = self._field_mapping(mappings, field_name) or {}
        if spec.get("type") == "date":
            convert = parse_date
        else:
            convert = float

        values = [convert(v) for v in self._field_values(source, field_name, mappings, prefix)]
        checks = []
        for op, bound in bounds.items():
            if op not in ("gte", "gt", "lte", "lt"):
                continue
            checks.append((op, convert(bound)))

        def within(v):
            for op, bound in checks:
                if op == "gte" and not v >= bound:
                    return False
                if op == "gt" and not v > bound:
                    return False
                if op == "lte" and not v <= bound:
                    return False
                if op == "lt" and not v < bound:
                    return False
            return True

        return any(within(v) for v in values)

    def _multi_match(self, body: Dict[str, Any], source: Any, mappings: Dict[str, Any], prefix: str) -> bool:
        words = _tokens(body.get("query", ""))
        for field_name in body.get("fields", []):
            spec = self._field_mapping(mappings, field_name) or {}
            values = self._field_values(source, field_name, mappings, prefix)
            if spec.get("type") == "keyword":
                normalize = self._normalizer(spec)
                if any(normalize(v) == normalize(body.get("query")) for v in values):
                    return True
                continue
            doc_tokens = {t for v in values for t in _tokens(v)}
            if any(w in doc_tokens for w in words):
                return True
        return False

    def _matches(self, query: Dict[str, Any], source: Any, mappings: Dict[str, Any], prefix: str = "") -> bool:
        if not query:
            return True
        kind, body = next(iter(query.items()))

        if kind == "match_all":
            return True

        if kind == "bool":
            must = body.get("must", []) + body.get("filter", [])
            if any(not self._matches(q, source, mappings, prefix) for q in must):
                return False
            if any(self._matches(q, source, mappings, prefix) for q in body.get("must_not", [])):
                return False
            should = body.get("should", [])
            if should:
                default = 0 if must else 1
                required = int(body.get("minimum_should_match", default))
                hits = sum(1 for q in should if self._matches(q, source, mappings, prefix))
                return hits >= required
            return True

        if kind == "term":
            field_name, spec = next(iter(body.items()))
            value = spec.get("value") if isinstance(spec, dict) else spec
            return self._term_matches(field_name, value, source, mappings, prefix)

        if kind == "terms":
            field_name, values = next(iter(body.items()))
            return any(self._term_matches(field_name, v, source, mappings, prefix) for v in values)

        if kind == "range":
            field_name, bounds = next(iter(body.items()))
            return self._range_matches(field_name, bounds, source, mappings, prefix)

        if kind == "exists":
            return bool(self._field_values(source, body["field"], mappings, prefix))

        if kind == "multi_match":
            return self._multi_match(body, source, mappings, prefix)

        if kind == "nested":
            path = body["path"]
            relative = path[len(prefix) + 1:] if prefix else path
            elements = []
            node = source
            for part in relative.split("."):
                node = node.get(part) if isinstance(node, dict) else None
            if isinstance(node, list):
                elements = node
            elif isinstance(node, dict):
                elements = [node]
            return any(self._matches(body["query"], element, mappings, path) for element in elements)

        raise StoreError("search", f"unsupported query [{kind}]", 400)

    def _knn(self, candidates: List[Tuple[_Index, Dict[str, Any]]], knn: KnnQuery) -> List[Tuple[_Index, Dict[str, Any]]]:
        query_vector = np.asarray(knn.query_vector, dtype=float)
        query_norm = np.linalg.norm(query_vector)
        if query_norm == 0:
            raise StoreError("search", "the query vector has a magnitude of 0", 400)

        scored = []
        for index, doc in candidates:
            vector = doc.get(knn.field)
            if not vector:
                continue
            vector = np.asarray(vector, dtype=float)
            norm = np.linalg.norm(vector)
            if norm == 0 or vector.shape != query_vector.shape:
                continue
            similarity = float(np.dot(vector, query_vector) / (norm * query_norm))
            if knn.similarity is not None and similarity < knn.similarity:
                continue
            scored.append((similarity, index, doc))

        scored.sort(key=lambda item: item[0], reverse=True)
        top = scored[:knn.num_candidates][:knn.k]
        return [(index, doc) for _, index, doc in top]

    @staticmethod
    def _sorted(documents: List[Dict[str, Any]], sort: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        result = list(documents)
        for clause in reversed(sort):
            field_name, spec = next(iter(clause.items()))
            order = spec.get("order", "asc") if isinstance(spec, dict) else spec
            present = [d for d in result if d.get(field_name) is not None]
            missing = [d for d in result if d.get(field_name) is None]

            def key(doc, field_name=field_name):
                value = doc[field_name]
                if isinstance(value, str):
                    try:
                        return parse_date(value)
                    except ValueError:
                        return value
                return value

            present.sort(key=key, reverse=(order == "desc"))
            result = present + missing
        return result
