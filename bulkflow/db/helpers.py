from __future__ import annotations

import re
from typing import Iterable

from sqlalchemy.sql import TextClause

_OPERATION_PATTERNS = (
    ("insert", re.compile(r"^\s*INSERT\s+(?:INTO\s+)?[`\"]?(\w+)", re.IGNORECASE)),
    ("update", re.compile(r"^\s*UPDATE\s+[`\"]?(\w+)", re.IGNORECASE)),
    ("delete", re.compile(r"^\s*DELETE\s+FROM\s+[`\"]?(\w+)", re.IGNORECASE)),
)


def _validate_identifier(name: str, identifier_type: str = "identifier") -> str:
    """
    Validate that an identifier (table/column name) is safe for SQL interpolation.

    Identifiers are restricted to alphanumerics and underscores, starting with
    a letter or underscore, at most 64 characters.

    ⚠️ SECURITY CONTRACT ⚠️
    This function validates identifier format but does NOT prevent SQL injection
    if identifiers come from untrusted user input. Identifiers MUST be trusted
    (hardcoded or validated at application boundaries, not directly from user input).

    Args:
        name: The identifier to validate
        identifier_type: Description of the identifier (for error messages)

    Returns:
        The validated identifier (unchanged if valid)

    Raises:
        TypeError: If identifier is not a string
        ValueError: If identifier contains unsafe characters or is invalid

    Example:
        >>> _validate_identifier("orders", "table")
        'orders'
        >>> _validate_identifier("'; DROP TABLE--", "table")
        ValueError: Invalid table '; DROP TABLE--': ...
    """
    if not isinstance(name, str):
        raise TypeError(f"{identifier_type} must be a string, got {type(name).__name__}")

    if not name:
        raise ValueError(f"{identifier_type} cannot be empty")

    if not re.match(r'^[a-zA-Z_][a-zA-Z0-9_]*$', name):
        raise ValueError(
            f"Invalid {identifier_type} {name!r}: "
            "must start with letter/underscore and contain only alphanumeric characters and underscores"
        )

    if len(name) > 64:
        raise ValueError(f"{identifier_type} {name!r} exceeds the 64-character limit")

    return name


def _validate_columns(columns: Iterable[str]) -> list[str]:
    return [_validate_identifier(col, "column name") for col in columns]


def _parse_sql_operation(sql: str | TextClause) -> tuple[str, str]:
    """
    Best-effort extraction of (table, op_type) from a write statement, for metrics.

    Returns ("unknown", "unknown") for anything that is not a plain
    INSERT, UPDATE or DELETE.
    """
    raw = sql if isinstance(sql, str) else sql.text
    for op_type, pattern in _OPERATION_PATTERNS:
        match = pattern.match(raw)
        if match:
            return match.group(1), op_type
    return "unknown", "unknown"


def insert_sql(table: str, columns: Iterable[str]) -> str:
    table = _validate_identifier(table, "table")
    cols = _validate_columns(columns)
    if not cols:
        raise ValueError("insert requires at least one column")
    col_names = ", ".join(cols)
    placeholders = ", ".join(f":{c}" for c in cols)
    return f"INSERT INTO {table} ({col_names}) VALUES ({placeholders})"


def update_sql(table: str, id_column: str, columns: Iterable[str]) -> str:
    """
    UPDATE by primary key. The id is bound as ``:id_value`` so that the key
    column may also appear in the SET list without a name clash.
    """
    table = _validate_identifier(table, "table")
    id_column = _validate_identifier(id_column, "id_column")
    cols = [c for c in _validate_columns(columns) if c != id_column]
    if not cols:
        raise ValueError("update requires at least one non-key column")
    set_clause = ", ".join(f"{c} = :{c}" for c in cols)
    return f"UPDATE {table} SET {set_clause} WHERE {id_column} = :id_value"


def delete_sql(table: str, id_column: str) -> str:
    table = _validate_identifier(table, "table")
    id_column = _validate_identifier(id_column, "id_column")
    return f"DELETE FROM {table} WHERE {id_column} = :id_value"


def select_id_sql(table: str, id_column: str, key_column: str) -> str:
    table = _validate_identifier(table, "table")
    id_column = _validate_identifier(id_column, "id_column")
    key_column = _validate_identifier(key_column, "key column")
    return f"SELECT {id_column} FROM {table} WHERE {key_column} = :key_value"
