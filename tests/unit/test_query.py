"""
Unit tests for the identifier-safe query builder.
"""

import pytest

from warehouse_recon.errors import InputValidationError
from warehouse_recon.store.query import QueryBuilder


class TestQueryBuilder:

    def test_ident_quotes_valid_names(self):
        assert QueryBuilder().ident("customer_id") == '"customer_id"'

    def test_ident_rejects_injection(self):
        with pytest.raises(InputValidationError):
            QueryBuilder().ident('id" OR 1=1 --')

    def test_relation_quotes_each_part(self):
        assert QueryBuilder().relation("analytics.customers") == '"analytics"."customers"'

    def test_column_is_alias_qualified(self):
        assert QueryBuilder().column("s", "id") == 's."id"'

    def test_params_use_store_placeholder(self):
        qb = QueryBuilder("?")

        sql = f"SELECT * FROM t WHERE {qb.ident('id')} = {qb.param(5)} LIMIT {qb.param(10)}"

        assert sql == 'SELECT * FROM t WHERE "id" = ? LIMIT ?'
        assert qb.params == [5, 10]

    def test_param_list(self):
        qb = QueryBuilder("%s")

        assert qb.param_list(["a", "b", "c"]) == "%s, %s, %s"
        assert qb.params == ["a", "b", "c"]

    def test_param_list_rejects_empty(self):
        with pytest.raises(ValueError):
            QueryBuilder().param_list([])

    def test_text_cast(self):
        assert QueryBuilder.text_cast('t."id"') == 'CAST(t."id" AS TEXT)'
