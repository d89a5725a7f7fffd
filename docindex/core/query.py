"""
Query compiler: turns optional search filters into one boolean query.

Scalar filters become ``must`` clauses. Filters on people attached to an
application are role scoped: for each requested role every supplied person
field has to hold on the *same* person entry, and several roles are OR-ed
together. How a role maps onto the stored document depends on the layout
(tagged ``clients`` list vs. the legacy fixed slots), so each layout supplies
a role -> clause builder table.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .schema import ClientRole

DEFAULT_ROLE = ClientRole.MAIN_CLIENT
SORT_FIELD = "createdAt"

FieldTerms = List[Tuple[str, Any]]


class QueryError(ValueError):
    """Caller supplied an invalid filter, sort token or range."""


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


def parse_sort(token: Optional[str]) -> SortOrder:
    """Accept exactly 'asc' or 'desc'. Anything else is rejected, never defaulted."""
    try:
        return SortOrder(token)
    except ValueError:
        raise QueryError("Sort parameter must be either 'asc' or 'desc'")


def sort_clause(order: SortOrder, sort_field: str = SORT_FIELD) -> List[Dict[str, Any]]:
    return [{sort_field: {"order": order.value}}]


def is_blank(value: Any) -> bool:
    """None, empty and whitespace-only strings count as 'not supplied'."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def normalize_value(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


def as_utc(value: Any) -> Any:
    """Naive datetimes are taken to be UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return value


def format_bound(value: Any) -> Any:
    """Dates go out as ISO-8601 in UTC, numbers unchanged."""
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value


def match_all() -> Dict[str, Any]:
    return {"match_all": {}}


def term_clause(field_name: str, value: Any) -> Dict[str, Any]:
    return {"term": {field_name: {"value": value}}}


def range_clause(field_name: str, gte: Any = None, lte: Any = None, lt: Any = None) -> Dict[str, Any]:
    bounds = {}
    if gte is not None:
        bounds["gte"] = format_bound(gte)
    if lte is not None:
        bounds["lte"] = format_bound(lte)
    if lt is not None:
        bounds["lt"] = format_bound(lt)
    return {"range": {field_name: bounds}}


def nested_clause(path: str, clauses: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"nested": {"path": path, "query": {"bool": {"must": clauses}}}}


def all_of(clauses: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"bool": {"must": clauses}}


def any_of(clauses: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"bool": {"should": clauses, "minimum_should_match": 1}}


def _prefixed_terms(prefix: str, terms: FieldTerms) -> List[Dict[str, Any]]:
    return [term_clause(f"{prefix}.{name}", value) for name, value in terms]


# ---------------------------------------------------------------------------
# ROLE-SCOPED SUB-ENTITY LAYOUTS
# ---------------------------------------------------------------------------

RoleBuilder = Callable[[FieldTerms], Dict[str, Any]]


@dataclass
class RoleScopedLayout:
    """Where the people of each role live inside a document."""
    name: str
    builders: Dict[ClientRole, RoleBuilder]
    normalized_fields: Set[str] = field(default_factory=set)

    def build(self, role: ClientRole, terms: FieldTerms) -> Dict[str, Any]:
        builder = self.builders.get(role)
        if builder is None:
            raise QueryError(f"Role '{role.value}' is not searchable in layout '{self.name}'")
        return builder(terms)


def tagged_clients_layout(path: str = "clients", role_field: str = "role",
                          normalized_fields: Iterable[str] = ()) -> RoleScopedLayout:
    """One nested list of people, each tagged with its role."""

    def for_role(role: ClientRole) -> RoleBuilder:
        def build(terms: FieldTerms) -> Dict[str, Any]:
            clauses = _prefixed_terms(path, terms)
            clauses.append(term_clause(f"{path}.{role_field}", role.value))
            return nested_clause(path, clauses)
        return build

    return RoleScopedLayout(
        name="tagged",
        builders={role: for_role(role) for role in ClientRole},
        normalized_fields=set(normalized_fields),
    )


def flattened_applicants_layout(main: str = "mainApplicant", co: str = "coApplicants",
                                normalized_fields: Iterable[str] = ()) -> RoleScopedLayout:
    """Legacy layout: a single main applicant object plus nested co-applicants,
    each holding a ``client`` and an optional ``spouse``."""

    def main_client(terms: FieldTerms) -> Dict[str, Any]:
        return all_of(_prefixed_terms(f"{main}.client", terms))

    def spouse(terms: FieldTerms) -> Dict[str, Any]:
        return any_of([
            all_of(_prefixed_terms(f"{main}.spouse", terms)),
            nested_clause(co, _prefixed_terms(f"{co}.spouse", terms)),
        ])

    def co_applicant(terms: FieldTerms) -> Dict[str, Any]:
        return nested_clause(co, _prefixed_terms(f"{co}.client", terms))

    return RoleScopedLayout(
        name="flattened",
        builders={
            ClientRole.MAIN_CLIENT: main_client,
            ClientRole.SPOUSE: spouse,
            ClientRole.CO_APPLICANT: co_applicant,
        },
        normalized_fields=set(normalized_fields),
    )


# ---------------------------------------------------------------------------
# BUILDER
# ---------------------------------------------------------------------------


class QueryBuilder:
    """Accumulates optional filters and compiles them into a single query.

    Blank values are skipped, so callers can pass request fields straight in.
    """

    def __init__(self, layout: Optional[RoleScopedLayout] = None):
        self._layout = layout
        self._clauses: List[Dict[str, Any]] = []
        self._sub_terms: FieldTerms = []
        self._roles: List[ClientRole] = []

    def term(self, field_name: str, value: Any, normalize: bool = False) -> "QueryBuilder":
        if not is_blank(value):
            self._clauses.append(term_clause(field_name, normalize_value(value) if normalize else value))
        return self

    def range(self, field_name: str, gte: Any = None, lte: Any = None) -> "QueryBuilder":
        if gte is None and lte is None:
            return self
        if gte is not None and lte is not None and as_utc(gte) > as_utc(lte):
            raise QueryError(f"Invalid range for '{field_name}': lower bound is after upper bound")
        self._clauses.append(range_clause(field_name, gte=gte, lte=lte))
        return self

    def text(self, fields: Sequence[str], text: Optional[str],
             nested: Optional[Dict[str, Sequence[str]]] = None) -> "QueryBuilder":
        """Every whitespace-separated word must match at least one of ``fields``.

        ``nested`` maps a nested path to fields inside it that a word may match too.
        """
        if is_blank(text):
            return self
        for word in text.split():
            clause = {"multi_match": {"query": word, "fields": list(fields)}}
            if nested:
                alternatives = [clause]
                for path, nested_fields in nested.items():
                    alternatives.append({"nested": {
                        "path": path,
                        "query": {"multi_match": {"query": word, "fields": list(nested_fields)}},
                    }})
                clause = any_of(alternatives)
            self._clauses.append(clause)
        return self

    def nested_terms(self, path: str, values: Dict[str, Any], normalized: Iterable[str] = ()) -> "QueryBuilder":
        """All supplied values must hold on the same element of the nested list at ``path``."""
        normalized = set(normalized)
        terms = [
            (name, normalize_value(value) if name in normalized else value)
            for name, value in values.items()
            if not is_blank(value)
        ]
        if terms:
            self._clauses.append(nested_clause(path, _prefixed_terms(path, terms)))
        return self

    def sub_entity(self, field_name: str, value: Any) -> "QueryBuilder":
        if is_blank(value):
            return self
        if self._layout is None:
            raise QueryError(f"Filter '{field_name}' needs a role-scoped layout")
        if field_name in self._layout.normalized_fields:
            value = normalize_value(value)
        self._sub_terms.append((field_name, value))
        return self

    def roles(self, roles: Optional[Iterable[ClientRole]]) -> "QueryBuilder":
        for role in roles or []:
            try:
                role = ClientRole(role)
            except ValueError:
                raise QueryError(f"Unknown role: {role}")
            if role not in self._roles:
                self._roles.append(role)
        return self

    def role_clause(self) -> Optional[Dict[str, Any]]:
        if not self._sub_terms:
            return None
        roles = self._roles or [DEFAULT_ROLE]
        per_role = [self._layout.build(role, list(self._sub_terms)) for role in roles]
        if len(per_role) == 1:
            return per_role[0]
        return any_of(per_role)

    def clauses(self) -> List[Dict[str, Any]]:
        """Every mandatory clause, role-scoped clause last."""
        clauses = list(self._clauses)
        role_clause = self.role_clause()
        if role_clause is not None:
            clauses.append(role_clause)
        return clauses

    def build(self) -> Dict[str, Any]:
        clauses = self.clauses()
        if not clauses:
            return match_all()
        return all_of(clauses)
