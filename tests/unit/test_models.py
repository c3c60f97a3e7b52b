"""
Unit tests for data model helpers and result types.
"""

from datetime import datetime, timedelta, timezone

import pytest

from warehouse_recon.errors import InputValidationError
from warehouse_recon.models import (
    DualDuplicateReport,
    DuplicateReport,
    FieldDiffAnalysis,
    FieldDifference,
    RelationKeyStats,
    SchemaDescriptor,
    StagingHandle,
    format_rate,
    to_field_value,
    validate_identifier,
    validate_relation_id,
)


class TestIdentifierValidation:
    """Test identifier and relation id validation."""

    @pytest.mark.parametrize("name", ["id", "_private", "Customer_ID2"])
    def test_valid_identifiers(self, name):
        assert validate_identifier(name) == name

    @pytest.mark.parametrize("name", ["", "1abc", "bad-name", "a b", 'x";DROP', None, 42])
    def test_invalid_identifiers(self, name):
        with pytest.raises(InputValidationError):
            validate_identifier(name)

    def test_relation_ids(self):
        assert validate_relation_id("customers") == "customers"
        assert validate_relation_id("analytics.customers") == "analytics.customers"
        assert validate_relation_id("db.analytics.customers") == "db.analytics.customers"

    @pytest.mark.parametrize("relation", ["", "   ", "a.b.c.d", "a..b", "schema.bad-table"])
    def test_invalid_relation_ids(self, relation):
        with pytest.raises(InputValidationError):
            validate_relation_id(relation)


class TestToFieldValue:
    """Test the single stringification point."""

    def test_conversions(self):
        assert to_field_value(None) is None
        assert to_field_value(False) == "false"
        assert to_field_value(3) == "3"
        assert to_field_value(3.0) == "3"
        assert to_field_value(3.25) == "3.25"
        assert to_field_value("text") == "text"
        assert to_field_value({"b": 1}) == '{"b":1}'
        assert to_field_value(["é"]) == '["é"]'


class TestFormatRate:

    def test_zero_denominator(self):
        assert format_rate(0, 0) == "0.0"
        assert format_rate(5, 0) == "0.0"

    def test_one_decimal(self):
        assert format_rate(2, 3) == "66.7"
        assert format_rate(3, 3) == "100.0"


class TestResultTypes:
    """Test derived properties of result types."""

    def test_relation_key_stats(self):
        stats = RelationKeyStats(total=10, non_null=9, distinct=7)

        assert stats.null_keys == 1
        assert stats.duplicate_records == 3
        assert stats.to_dict()["unique_keys"] == 7

    def test_schema_descriptor_suggested_key(self):
        schema = SchemaDescriptor(common=["name", "id"], source_only=[], target_only=[], compatibility=1.0,
                                  key_candidates=["id"])

        assert schema.suggested_key() == "id"
        assert SchemaDescriptor(["name"], [], [], 1.0).suggested_key() == "name"
        assert SchemaDescriptor([], [], [], 0.0).suggested_key() is None

    def test_field_diff_analysis_counts(self):
        analysis = FieldDiffAnalysis(
            fields=[
                FieldDifference(field="a", total=4, match_count=4),
                FieldDifference(field="b", total=4, match_count=2, diff_count=2),
                FieldDifference(field="c", error="boom"),
            ],
            records_analyzed=4,
            summary="",
        )

        assert analysis.fields_analyzed == 3
        assert analysis.total_field_issues == 2
        assert analysis.perfect_fields == 1
        assert analysis.problematic_fields == 2
        assert analysis.fields[1].match_rate == "50.0"
        assert analysis.to_dict()["field_comparison"][2]["error"] == "boom"

    def test_dual_duplicate_summary(self):
        source = DuplicateReport("s", "id", duplicate_keys=[{"key": "1", "count": 3}], duplicate_count=1,
                                 total_duplicate_records=2)
        target = DuplicateReport("t", "id")
        dual = DualDuplicateReport(source=source, target=target, source_only_duplicate_keys=["1"])

        summary = dual.summary
        assert summary["systems_with_duplicates"] == 1
        assert summary["total_duplicate_records"] == 2
        assert summary["both_clean"] is False
        assert summary["data_quality"] == "Good"

    def test_dual_duplicate_summary_unknown_on_error(self):
        dual = DualDuplicateReport(source=DuplicateReport("s", "id", error="x"), target=DuplicateReport("t", "id"))

        assert dual.summary["data_quality"] == "Unknown"

    def test_staging_handle_to_dict(self):
        created = datetime(2026, 1, 1, tzinfo=timezone.utc)
        handle = StagingHandle("recon_stg_x", 3, 1, ["id"], created, created + timedelta(days=1))

        data = handle.to_dict()
        assert data["relation_id"] == "recon_stg_x"
        assert data["expires_at"] == "2026-01-02T00:00:00+00:00"
