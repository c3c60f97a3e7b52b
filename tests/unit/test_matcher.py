"""
Unit tests for the match analyzer.
"""

from unittest.mock import MagicMock

import pytest

from warehouse_recon.errors import QueryExecutionError
from warehouse_recon.reconciliation.matcher import MatchAnalyzer
from warehouse_recon.store.base import StoreError


class TestMatchAnalyzer:
    """Test key partitioning between staging and target."""

    @pytest.fixture
    def analyzer(self, store):
        return MatchAnalyzer(store, max_parallel_queries=2)

    @pytest.fixture
    def relations(self, staged, make_table):
        staged("stg", [{"id": "1", "name": "a"}, {"id": "2", "name": "b"}, {"id": "3", "name": "c"}])
        make_table("target", {"id": "INTEGER", "name": "TEXT"}, [(2, "b"), (3, "x"), (4, "d")])
        return "stg", "target"

    def test_match_partition(self, analyzer, relations):
        """Source ids [1,2,3] against target ids [2,3,4]."""
        matches = analyzer.match(*relations, "id")

        assert matches.matched == ["2", "3"]
        assert matches.source_only == ["1"]
        assert "4" in matches.target_only

    def test_partition_properties(self, analyzer, relations):
        matches = analyzer.match(*relations, "id")
        source_keys = analyzer.source_keys("stg", "id")

        assert set(matches.matched) | set(matches.source_only) == set(source_keys)
        assert not set(matches.matched) & set(matches.source_only)
        assert not set(matches.target_only) & set(source_keys)

    def test_duplicate_keys_counted_once(self, analyzer, staged, make_table):
        staged("stg", [{"id": "1"}, {"id": "1"}, {"id": None}])
        make_table("target", {"id": "TEXT"}, [("1",), ("1",)])

        matches = analyzer.match("stg", "target", "id")

        assert matches.matched == ["1"]
        assert matches.source_only == []

    def test_target_only_is_capped(self, store, staged, make_table):
        staged("stg", [{"id": "0"}])
        make_table("target", {"id": "INTEGER"}, [(i,) for i in range(1, 30)])
        analyzer = MatchAnalyzer(store, target_only_sample_size=10)

        matches = analyzer.match("stg", "target", "id")

        assert len(matches.target_only) == 10
        assert matches.source_only == ["0"]

    def test_sample_matches(self, analyzer, relations):
        matches = analyzer.match(*relations, "id", display_fields=["id", "name"])

        assert matches.sample_matches == [
            {"key": "2", "source": {"name": "b"}, "target": {"name": "b"}},
            {"key": "3", "source": {"name": "c"}, "target": {"name": "x"}},
        ]

    def test_sample_display_fields_capped(self, store, staged, make_table):
        staged("stg", [{"id": "1", "a": "1", "b": "2", "c": "3"}])
        make_table("target", {"id": "TEXT", "a": "TEXT", "b": "TEXT", "c": "TEXT"}, [("1", "1", "2", "3")])
        analyzer = MatchAnalyzer(store, sample_display_fields=2)

        matches = analyzer.match("stg", "target", "id", display_fields=["a", "b", "c"])

        assert list(matches.sample_matches[0]["source"]) == ["a", "b"]

    def test_no_sample_without_matches(self, analyzer, staged, make_table):
        staged("stg", [{"id": "1"}])
        make_table("target", {"id": "TEXT"}, [("2",)])

        matches = analyzer.match("stg", "target", "id", display_fields=["id"])

        assert matches.matched == []
        assert matches.sample_matches == []

    def test_sample_failure_degrades_to_empty(self, analyzer, relations):
        assert analyzer.sample_matches(*relations, "id", ["missing_field"]) == []

    def test_primary_query_failure_raises(self):
        store = MagicMock()
        store.placeholder = "%s"
        store.execute_query.side_effect = StoreError('relation "target" does not exist')

        with pytest.raises(QueryExecutionError) as exc_info:
            MatchAnalyzer(store).match("stg", "target", "id")

        assert exc_info.value.details["reason"] == "RELATION_NOT_FOUND"

    def test_to_dict(self, analyzer, relations):
        result = analyzer.match(*relations, "id").to_dict()

        assert result["match_count"] == 2
        assert result["source_only_count"] == 1
        assert result["target_only_sample"] == ["4"]
