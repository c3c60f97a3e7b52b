"""
Unit tests for the schema reconciler.
"""

from unittest.mock import MagicMock

import pytest

from warehouse_recon.errors import InputValidationError, SchemaAccessError
from warehouse_recon.reconciliation.schema import SchemaReconciler, is_key_candidate
from warehouse_recon.store.base import StoreError


class TestKeyCandidates:

    @pytest.mark.parametrize("name", ["id", "customer_id", "ID", "api_key", "account_number"])
    def test_key_like_names(self, name):
        assert is_key_candidate(name)

    @pytest.mark.parametrize("name", ["name", "email", "city"])
    def test_other_names(self, name):
        assert not is_key_candidate(name)


class TestSchemaReconciler:
    """Test field partitioning between staging and target."""

    @pytest.fixture
    def reconciler(self, store):
        return SchemaReconciler(store, max_parallel_queries=2)

    @pytest.fixture
    def customers(self, make_table):
        return make_table(
            "customers",
            {"id": "INTEGER", "name": "TEXT", "city": "TEXT"},
            [(1, "a", "Oslo")]
        )

    def test_fields_of_keeps_declaration_order(self, reconciler, customers):
        assert reconciler.fields_of(customers) == ["id", "name", "city"]

    def test_fields_of_empty_relation(self, reconciler, make_table):
        make_table("empty_target", {"id": "TEXT", "value": "TEXT"}, [])

        assert reconciler.fields_of("empty_target") == ["id", "value"]

    def test_partitions(self, reconciler, staged, customers):
        staged("stg", [{"id": "1", "name": "a", "email": "x@example.com"}])

        descriptor = reconciler.common_fields("stg", customers)

        assert descriptor.common == ["id", "name"]
        assert descriptor.source_only == ["email"]
        assert descriptor.target_only == ["city"]
        assert descriptor.compatibility == pytest.approx(2 / 3)
        assert descriptor.key_candidates == ["id"]
        assert descriptor.suggested_key() == "id"
        assert descriptor.case_insensitive_matches == []

    def test_common_fields_are_subset_of_both(self, reconciler, staged, customers):
        staged("stg", [{"id": "1", "zip": "0150"}])

        descriptor = reconciler.common_fields("stg", customers)
        target_fields = reconciler.fields_of(customers)
        source_fields = reconciler.fields_of("stg")

        assert set(descriptor.common) <= set(source_fields)
        assert set(descriptor.common) <= set(target_fields)
        assert descriptor.total_source_fields == len(source_fields)
        assert descriptor.total_target_fields == len(target_fields)

    def test_case_only_differences_reported(self, reconciler, staged, make_table):
        staged("stg", [{"Name": "a", "Code": "1"}])
        make_table("target", {"name": "TEXT", "other": "TEXT"}, [])

        descriptor = reconciler.common_fields("stg", "target")

        assert descriptor.common == []
        assert descriptor.compatibility == 0.0
        assert descriptor.case_insensitive_matches == [{"source": "Name", "target": "name"}]

    def test_missing_relation_raises_schema_access_error(self, reconciler, staged):
        staged("stg", [{"id": "1"}])

        with pytest.raises(SchemaAccessError) as exc_info:
            reconciler.common_fields("stg", "no_such_table")

        assert exc_info.value.kind == "SCHEMA_ACCESS_ERROR"
        assert exc_info.value.details["relation"] == "no_such_table"

    def test_malformed_relation_rejected(self, reconciler):
        with pytest.raises(InputValidationError):
            reconciler.fields_of("bad name")

    def test_probe_uses_limit_one(self):
        store = MagicMock()
        store.placeholder = "%s"
        store.execute_query.side_effect = StoreError("permission denied")

        with pytest.raises(SchemaAccessError):
            SchemaReconciler(store).fields_of("analytics.customers")

        store.execute_query.assert_called_once_with('SELECT * FROM "analytics"."customers" LIMIT 1')

    def test_to_dict(self, reconciler, staged, customers):
        staged("stg", [{"id": "1", "name": "a"}])

        result = reconciler.common_fields("stg", customers).to_dict()

        assert result["common_fields"] == ["id", "name"]
        assert result["total_target_fields"] == 3
        assert result["schema_compatibility"] == round(2 / 3, 4)
