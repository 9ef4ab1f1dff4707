"""
Serialization of live rows into snapshot values and back.

Rows are read through the reflected live table, so a snapshot holds what
the database stores (enum names, interval encodings, UUID text) rather than
what the mapped class turns it into. Snapshot values are stored as JSON, so
scalars without a JSON form are encoded on capture and decoded against the
same reflected column types on restore.
"""

import base64
import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Sequence, Tuple, Type

from dateutil.parser import isoparse
from sqlalchemy import Column, Table, literal, select, tuple_, type_coerce
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session

from .exceptions import RecycleBinError

_KEY_LABEL = "__recycle_bin_pk_{}"


def encode_value(value: Any) -> Any:
    """Convert a column value to a JSON-compatible scalar."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        # SQLAlchemy persists enum members by name
        return value.name
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, (Decimal, uuid.UUID)):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (dict, list)):
        # JSON columns
        return value
    return str(value)


def decode_value(column: Column, value: Any) -> Any:
    """Convert a snapshot value back to the Python type the column expects."""
    if value is None:
        return value

    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value

    if python_type is timedelta and isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if not isinstance(value, str):
        return value

    if python_type is datetime:
        return isoparse(value)
    if python_type is date:
        return date.fromisoformat(value)
    if python_type is time:
        return time.fromisoformat(value)
    if python_type is Decimal:
        return Decimal(value)
    if python_type is uuid.UUID:
        return uuid.UUID(value)
    if python_type is bytes:
        return base64.b64decode(value)
    return value


def capture_rows(
    session: Session, model: Type[Any], records: Sequence[Any], live_table: Table
) -> List[Dict[str, Any]]:
    """
    Read the stored values of mapped instances through the live table.

    Keys are database column names, not attribute names, so the values can
    be inserted with Core without the mapped class. Every column of the
    live table is captured, mapped or not.

    Args:
        session: Session of the deletion
        model: Mapped class of the records
        records: Instances to capture, all of ``model``
        live_table: Reflected definition of the table the records live in

    Returns:
        Encoded values, one dict per record in the order of ``records``

    Raises:
        RecycleBinError: If a record has no row in the live table
    """
    if not records:
        return []

    mapper = sa_inspect(model)
    pk_columns = list(mapper.primary_key)
    live_pk = [live_table.c[column.name] for column in pk_columns]
    identities = [tuple(mapper.primary_key_from_instance(r)) for r in records]

    # Keys are bound and read back with the mapped types so they match the
    # identities of the instances
    keys = [
        type_coerce(live, column.type).label(_KEY_LABEL.format(position))
        for position, (live, column) in enumerate(zip(live_pk, pk_columns))
    ]
    bound = [
        [literal(value, column.type) for value, column in zip(identity, pk_columns)]
        for identity in identities
    ]
    if len(live_pk) == 1:
        condition = live_pk[0].in_([values[0] for values in bound])
    else:
        condition = tuple_(*live_pk).in_([tuple_(*values) for values in bound])

    stmt = select(live_table, *keys).where(condition)
    captured: Dict[Tuple[Any, ...], Dict[str, Any]] = {}
    for row in session.execute(stmt):
        mapping = row._mapping
        identity = tuple(mapping[key.name] for key in keys)
        captured[identity] = {
            column.name: encode_value(mapping[column.name]) for column in live_table.columns
        }

    missing = [identity for identity in identities if identity not in captured]
    if missing:
        raise RecycleBinError(
            f"{len(missing)} {mapper.class_.__name__} row(s) vanished from "
            f"{live_table.name} before they could be captured"
        )
    return [captured[identity] for identity in identities]


def filter_to_columns(
    values: Dict[str, Any], table: Table
) -> Tuple[Dict[str, Any], List[str]]:
    """
    Keep only the values whose keys are columns of ``table``.

    Returns:
        The filtered values and the names of the dropped keys
    """
    live_columns = set(table.columns.keys())
    kept = {name: value for name, value in values.items() if name in live_columns}
    dropped = [name for name in values if name not in live_columns]
    return kept, dropped


def decode_row(values: Dict[str, Any], table: Table) -> Dict[str, Any]:
    """Decode filtered snapshot values against the columns of ``table``."""
    return {name: decode_value(table.c[name], value) for name, value in values.items()}
