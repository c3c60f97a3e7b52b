"""
Query Builder for Warehouse Reconciliation

Separates identifiers from values when building SQL. Identifiers (field
and relation names) are validated against the safe charset and quoted;
values are always bound parameters in the store's paramstyle.
"""

from typing import Any, Iterable, List

from warehouse_recon.models import validate_identifier, validate_relation_id


class QueryBuilder:
    """
    Collects bound parameters while a query is assembled.

    Usage:
        qb = QueryBuilder(store.placeholder)
        sql = f"SELECT {qb.ident('id')} FROM {qb.relation('s.t')} WHERE {qb.ident('id')} = {qb.param('7')}"
        store.execute_query(sql, qb.params)
    """

    def __init__(self, placeholder: str = "%s"):
        self.placeholder = placeholder
        self.params: List[Any] = []

    def ident(self, name: str) -> str:
        """Quoted, validated identifier."""
        validate_identifier(name, what="field name")
        return f'"{name}"'

    def column(self, alias: str, name: str) -> str:
        """Alias-qualified quoted column (``s."id"``)."""
        validate_identifier(alias, what="table alias")
        return f"{alias}.{self.ident(name)}"

    def relation(self, relation_id: str) -> str:
        """Quoted relation reference; each dotted part is validated."""
        validate_relation_id(relation_id)
        return ".".join(f'"{part}"' for part in relation_id.split("."))

    def param(self, value: Any) -> str:
        """Bind a value and return its placeholder."""
        self.params.append(value)
        return self.placeholder

    def param_list(self, values: Iterable[Any]) -> str:
        """Bind several values for an ``IN (...)`` list."""
        placeholders = [self.param(value) for value in values]
        if not placeholders:
            raise ValueError("Cannot build an IN list from no values")
        return ", ".join(placeholders)

    @staticmethod
    def text_cast(expression: str) -> str:
        return f"CAST({expression} AS TEXT)"
