"""
Identity-preserving inserts.

Restored rows must keep their original primary keys. How a caller-chosen
key is written into an auto-increment column depends on the database, so
each dialect gets an insert strategy. Every strategy acts on a single
statement and leaves no session state behind.
"""

import logging
from typing import Any, Callable, Dict

from sqlalchemy import Table, text
from sqlalchemy.engine import Connection

logger = logging.getLogger(__name__)

IdentityInsert = Callable[[Connection, Table, Dict[str, Any]], None]


def _identity_columns(table: Table, values: Dict[str, Any]) -> list:
    """Auto-generated key columns for which ``values`` supplies a value."""
    columns = []
    for column in table.primary_key.columns:
        if column.name not in values:
            continue
        generated = getattr(column, "identity", None) is not None or (
            column is table.autoincrement_column
        )
        if generated:
            columns.append(column)
    return columns


def plain_insert(connection: Connection, table: Table, values: Dict[str, Any]) -> None:
    """Insert with explicit keys; SQLite and MySQL accept them as-is."""
    connection.execute(table.insert().values(values))


def mssql_insert(connection: Connection, table: Table, values: Dict[str, Any]) -> None:
    """Insert into SQL Server with IDENTITY_INSERT enabled for this statement only."""
    if not _identity_columns(table, values):
        plain_insert(connection, table, values)
        return

    quoted = connection.dialect.identifier_preparer.format_table(table)
    connection.exec_driver_sql(f"SET IDENTITY_INSERT {quoted} ON")
    try:
        plain_insert(connection, table, values)
    finally:
        connection.exec_driver_sql(f"SET IDENTITY_INSERT {quoted} OFF")


def postgresql_insert(
    connection: Connection, table: Table, values: Dict[str, Any]
) -> None:
    """Insert, then move the serial sequence past the restored key."""
    plain_insert(connection, table, values)

    preparer = connection.dialect.identifier_preparer
    quoted_table = preparer.format_table(table)
    for column in _identity_columns(table, values):
        quoted_column = preparer.quote(column.name)
        connection.execute(
            text(
                "SELECT setval(seq, GREATEST(max_id, "
                "COALESCE(pg_sequence_last_value(seq::regclass), 1))) "
                f"FROM (SELECT pg_get_serial_sequence(:table, :column) AS seq, "
                f"(SELECT MAX({quoted_column}) FROM {quoted_table}) AS max_id) AS s "
                "WHERE seq IS NOT NULL"
            ),
            {"table": quoted_table, "column": column.name},
        )


_STRATEGIES: Dict[str, IdentityInsert] = {
    "mssql": mssql_insert,
    "postgresql": postgresql_insert,
}


def register_identity_insert(dialect_name: str, strategy: IdentityInsert) -> None:
    """Install or replace the insert strategy of a dialect."""
    _STRATEGIES[dialect_name] = strategy


def insert_with_identity(
    connection: Connection, table: Table, values: Dict[str, Any]
) -> None:
    """
    Insert one row keeping the primary key given in ``values``.

    Args:
        connection: Connection of the restoring transaction
        table: Live destination table
        values: Column values, primary key included
    """
    strategy = _STRATEGIES.get(connection.dialect.name, plain_insert)
    logger.debug(f"Restoring row into {table.name} using {strategy.__name__}")
    strategy(connection, table, values)
