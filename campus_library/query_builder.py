"""Parameter-bound SQL statement builders.

Values never reach the SQL text. Each value is stored next to a generated
placeholder (``:p1``, ``:p2``, ...) and bound when the statement is rendered.
Table and column names come from code; update columns are additionally checked
against an allow-list because their names arrive as payload keys.
"""

import re
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import text
from sqlalchemy.sql.elements import TextClause

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

LIKE_ESCAPE = '\\'


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f'Invalid SQL identifier: {name!r}')
    return name


def _placeholder(position: int) -> str:
    return f':p{position}'


def _render(sql: str, values: list[Any]) -> TextClause:
    params = {f'p{position}': value for position, value in enumerate(values, start=1)}
    statement = text(sql)
    return statement.bindparams(**params) if params else statement


def like_pattern(term: str) -> str:
    """Case-folded ``%term%`` pattern with LIKE wildcards escaped."""
    escaped = (
        term.lower()
        .replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace('%', LIKE_ESCAPE + '%')
        .replace('_', LIKE_ESCAPE + '_')
    )
    return f'%{escaped}%'


class UpdateStatement:
    """Accumulates ``(column, placeholder, value)`` triples for one UPDATE."""

    def __init__(self, table: str, allowed_columns: Iterable[str]):
        self.table = _check_identifier(table)
        self.allowed_columns = frozenset(allowed_columns)
        self.assignments: list[tuple[str, str, Any]] = []

    def set(self, column: str, value: Any) -> 'UpdateStatement':
        if column not in self.allowed_columns:
            raise ValueError(f'Column {column!r} cannot be updated.')
        if value is None:
            return self
        if any(existing == column for existing, _, _ in self.assignments):
            raise ValueError(f'Column {column!r} is already set.')

        self.assignments.append((column, _placeholder(len(self.assignments) + 1), value))
        return self

    def set_many(self, fields: Mapping[str, Any]) -> 'UpdateStatement':
        for column, value in fields.items():
            self.set(column, value)
        return self

    @property
    def values(self) -> list[Any]:
        return [value for _, _, value in self.assignments]

    def is_empty(self) -> bool:
        return not self.assignments

    def build(self, id_column: str, id_value: Any) -> tuple[TextClause, list[Any]]:
        """Render the statement; the identifier is always the last bound value."""
        if self.is_empty():
            raise ValueError('No updates provided')

        values = [*self.values, id_value]
        set_clause = ', '.join(f'{column} = {placeholder}' for column, placeholder, _ in self.assignments)
        sql = (
            f'UPDATE {self.table} SET {set_clause} '
            f'WHERE {_check_identifier(id_column)} = {_placeholder(len(values))}'
        )
        return _render(sql, values), values


class SelectStatement:
    """Builds ``SELECT ... WHERE ... ORDER BY ...`` with bound conditions."""

    def __init__(self, table: str, columns: str = '*'):
        self.table = _check_identifier(table)
        self.columns = columns
        self.conditions: list[str] = []
        self.ordering: list[str] = []
        self._values: list[Any] = []

    def where(self, template: str, *values: Any) -> 'SelectStatement':
        """Add a condition; each ``{}`` in ``template`` takes the next value."""
        placeholders = []
        for value in values:
            self._values.append(value)
            placeholders.append(_placeholder(len(self._values)))
        self.conditions.append(template.format(*placeholders))
        return self

    def order_by(self, *clauses: str) -> 'SelectStatement':
        self.ordering.extend(clauses)
        return self

    @property
    def values(self) -> list[Any]:
        return list(self._values)

    def build(self) -> tuple[TextClause, list[Any]]:
        sql = f'SELECT {self.columns} FROM {self.table}'
        if self.conditions:
            sql += ' WHERE ' + ' AND '.join(self.conditions)
        if self.ordering:
            sql += ' ORDER BY ' + ', '.join(self.ordering)
        return _render(sql, self.values), self.values
