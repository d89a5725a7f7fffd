"""
Tests for the query compiler: scalar filters, role-scoped person filters and sorting.
"""

from datetime import datetime, timezone

import pytest

from docindex.core.indices import CLIENT_NORMALIZED_FIELDS
from docindex.core.query import (
    QueryBuilder,
    QueryError,
    SortOrder,
    flattened_applicants_layout,
    match_all,
    parse_sort,
    sort_clause,
    tagged_clients_layout,
)
from docindex.core.schema import ClientRole


@pytest.fixture
def tagged():
    return tagged_clients_layout(normalized_fields=CLIENT_NORMALIZED_FIELDS)


@pytest.fixture
def flattened():
    return flattened_applicants_layout(normalized_fields=CLIENT_NORMALIZED_FIELDS)


class TestScalarFilters:
    """Plain equality and range clauses."""

    def test_no_filters_is_match_all(self):
        assert QueryBuilder().build() == match_all()

    def test_blank_values_are_absent(self):
        query = (QueryBuilder()
                 .term("product", None)
                 .term("channel", "")
                 .term("status", "   ")
                 .text(["name"], "  ")
                 .build())
        assert query == {"match_all": {}}

    def test_single_filter_is_wrapped_in_must(self):
        query = QueryBuilder().term("product", "Mortgage").build()
        assert query == {"bool": {"must": [{"term": {"product": {"value": "Mortgage"}}}]}}

    def test_normalized_term_is_lowercased_and_trimmed(self):
        query = QueryBuilder().term("status", "  Approved ", normalize=True).build()
        assert query["bool"]["must"][0] == {"term": {"status": {"value": "approved"}}}

    def test_range_bounds_are_independent(self):
        lower_only = QueryBuilder().range("price", gte=10).build()
        upper_only = QueryBuilder().range("price", lte=20).build()

        assert lower_only["bool"]["must"][0] == {"range": {"price": {"gte": 10}}}
        assert upper_only["bool"]["must"][0] == {"range": {"price": {"lte": 20}}}

    def test_date_range_is_iso_utc(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        end = datetime(2024, 6, 30, 12, 0)
        query = QueryBuilder().range("createdAt", gte=start, lte=end).build()

        bounds = query["bool"]["must"][0]["range"]["createdAt"]
        assert bounds == {"gte": "2024-01-01T00:00:00+00:00", "lte": "2024-06-30T12:00:00+00:00"}

    def test_inverted_range_is_rejected(self):
        with pytest.raises(QueryError):
            QueryBuilder().range("createdAt",
                                 gte=datetime(2024, 6, 1, tzinfo=timezone.utc),
                                 lte=datetime(2024, 1, 1, tzinfo=timezone.utc))

    def test_text_requires_every_word(self):
        query = QueryBuilder().text(["name", "description"], "red  shoes").build()
        clauses = query["bool"]["must"]

        assert len(clauses) == 2
        assert clauses[0] == {"multi_match": {"query": "red", "fields": ["name", "description"]}}
        assert clauses[1]["multi_match"]["query"] == "shoes"

    def test_text_with_nested_fields_offers_alternatives(self):
        query = QueryBuilder().text(["name"], "blue", nested={"variants": ["variants.color"]}).build()
        clause = query["bool"]["must"][0]

        assert clause["bool"]["minimum_should_match"] == 1
        nested = clause["bool"]["should"][1]["nested"]
        assert nested["path"] == "variants"
        assert nested["query"]["multi_match"]["fields"] == ["variants.color"]

    def test_nested_terms_share_one_nested_clause(self):
        query = QueryBuilder().nested_terms("variants", {"sku": "SKU-1", "size": " XL", "color": None},
                                            normalized={"size"}).build()
        nested = query["bool"]["must"][0]["nested"]

        assert nested["path"] == "variants"
        assert nested["query"]["bool"]["must"] == [
            {"term": {"variants.sku": {"value": "SKU-1"}}},
            {"term": {"variants.size": {"value": "xl"}}},
        ]


class TestRoleScopedFilters:
    """Person filters combined per role on the same person entry."""

    def test_default_role_is_main_client(self, tagged):
        query = QueryBuilder(tagged).sub_entity("firstName", "Ana").build()
        nested = query["bool"]["must"][0]["nested"]

        assert nested["path"] == "clients"
        assert {"term": {"clients.role": {"value": "MainClient"}}} in nested["query"]["bool"]["must"]

    def test_all_person_fields_in_one_nested_clause(self, tagged):
        query = (QueryBuilder(tagged)
                 .sub_entity("firstName", "ANA")
                 .sub_entity("nationalId", "X-1")
                 .build())
        must = query["bool"]["must"]

        assert len(must) == 1
        inner = must[0]["nested"]["query"]["bool"]["must"]
        assert {"term": {"clients.firstName": {"value": "ana"}}} in inner
        assert {"term": {"clients.nationalId": {"value": "X-1"}}} in inner

    def test_single_role_has_no_or_wrapper(self, tagged):
        query = QueryBuilder(tagged).roles([ClientRole.SPOUSE]).sub_entity("lastName", "Lee").build()
        assert "nested" in query["bool"]["must"][0]

    def test_multiple_roles_are_or_composed(self, tagged):
        query = (QueryBuilder(tagged)
                 .roles(["MainClient", "Spouse"])
                 .sub_entity("lastName", "Lee")
                 .build())
        clause = query["bool"]["must"][0]

        assert clause["bool"]["minimum_should_match"] == 1
        roles = [branch["nested"]["query"]["bool"]["must"][-1]["term"]["clients.role"]["value"]
                 for branch in clause["bool"]["should"]]
        assert roles == ["MainClient", "Spouse"]

    def test_duplicate_roles_collapse(self, tagged):
        query = (QueryBuilder(tagged)
                 .roles(["Spouse", "Spouse"])
                 .sub_entity("lastName", "Lee")
                 .build())
        assert "nested" in query["bool"]["must"][0]

    def test_roles_without_person_filters_add_nothing(self, tagged):
        assert QueryBuilder(tagged).roles(["Spouse"]).build() == match_all()

    def test_unknown_role_is_a_caller_error(self, tagged):
        with pytest.raises(QueryError):
            QueryBuilder(tagged).roles(["Grandparent"])

    def test_person_filter_without_layout_is_rejected(self):
        with pytest.raises(QueryError):
            QueryBuilder().sub_entity("firstName", "Ana")

    def test_scalar_and_role_clauses_combine(self, tagged):
        query = (QueryBuilder(tagged)
                 .term("product", "Loan")
                 .sub_entity("email", "A@B.COM")
                 .build())
        must = query["bool"]["must"]

        assert must[0] == {"term": {"product": {"value": "Loan"}}}
        assert "nested" in must[1]


class TestFlattenedLayout:
    """Legacy slot layout: mainApplicant object plus nested coApplicants."""

    def test_main_client_uses_object_fields(self, flattened):
        query = QueryBuilder(flattened).sub_entity("firstName", "Ana").build()
        clause = query["bool"]["must"][0]
        assert clause == {"bool": {"must": [{"term": {"mainApplicant.client.firstName": {"value": "ana"}}}]}}

    def test_spouse_checks_main_and_co_applicant_spouses(self, flattened):
        query = QueryBuilder(flattened).roles(["Spouse"]).sub_entity("clientId", "C-9").build()
        should = query["bool"]["must"][0]["bool"]["should"]

        assert should[0] == {"bool": {"must": [{"term": {"mainApplicant.spouse.clientId": {"value": "C-9"}}}]}}
        assert should[1]["nested"]["path"] == "coApplicants"
        assert should[1]["nested"]["query"]["bool"]["must"] == [
            {"term": {"coApplicants.spouse.clientId": {"value": "C-9"}}}
        ]

    def test_co_applicant_is_nested(self, flattened):
        query = QueryBuilder(flattened).roles(["CoApplicant"]).sub_entity("lastName", "Diaz").build()
        nested = query["bool"]["must"][0]["nested"]
        assert nested["path"] == "coApplicants"
        assert nested["query"]["bool"]["must"][0]["term"] == {"coApplicants.client.lastName": {"value": "diaz"}}


class TestSort:

    def test_sort_tokens(self):
        assert parse_sort("asc") is SortOrder.ASC
        assert parse_sort("desc") is SortOrder.DESC
        assert sort_clause(SortOrder.ASC) == [{"createdAt": {"order": "asc"}}]

    @pytest.mark.parametrize("token", ["", "ASC", "ascending", None, "random"])
    def test_invalid_sort_is_rejected(self, token):
        with pytest.raises(QueryError, match="Sort parameter must be either 'asc' or 'desc'"):
            parse_sort(token)
