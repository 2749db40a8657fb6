from __future__ import annotations

import asyncio
from collections.abc import Iterator
from enum import Enum

from sqlalchemy.exc import DBAPIError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

SQLSTATE_SERIALIZATION_FAILURE = "40001"
SQLSTATE_DEADLOCK_DETECTED = "40P01"
SQLSTATE_UNIQUE_VIOLATION = "23505"
SQLSTATE_QUERY_CANCELED = "57014"
SQLSTATE_ADMIN_SHUTDOWN = "57P01"
SQLSTATE_CONNECTION_CLASS = "08"


class StoreErrorKind(str, Enum):
    SERIALIZATION_FAILURE = "serialization_failure"
    DEADLOCK = "deadlock"
    CONNECTION = "connection"
    UNIQUE_VIOLATION = "unique_violation"
    OTHER = "other"


RETRYABLE_KINDS = frozenset(
    {
        StoreErrorKind.SERIALIZATION_FAILURE,
        StoreErrorKind.DEADLOCK,
        StoreErrorKind.CONNECTION,
    }
)


def _iter_error_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    pending: list[BaseException | None] = [exc]
    while pending:
        current = pending.pop(0)
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        pending.append(getattr(current, "orig", None))
        pending.append(current.__cause__)


def extract_sqlstate(exc: BaseException) -> str | None:
    """Returns the first SQLSTATE found on the exception or the driver errors it wraps."""
    for candidate in _iter_error_chain(exc):
        for attr in ("sqlstate", "pgcode"):
            value = getattr(candidate, attr, None)
            if isinstance(value, str) and value:
                return value
    return None


def classify_store_error(exc: BaseException) -> StoreErrorKind:
    sqlstate = extract_sqlstate(exc)
    if sqlstate == SQLSTATE_SERIALIZATION_FAILURE:
        return StoreErrorKind.SERIALIZATION_FAILURE
    if sqlstate == SQLSTATE_DEADLOCK_DETECTED:
        return StoreErrorKind.DEADLOCK
    if sqlstate == SQLSTATE_UNIQUE_VIOLATION:
        return StoreErrorKind.UNIQUE_VIOLATION
    if sqlstate is not None and (
        sqlstate.startswith(SQLSTATE_CONNECTION_CLASS)
        or sqlstate in {SQLSTATE_QUERY_CANCELED, SQLSTATE_ADMIN_SHUTDOWN}
    ):
        return StoreErrorKind.CONNECTION

    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return StoreErrorKind.CONNECTION
    if isinstance(exc, (PoolTimeoutError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return StoreErrorKind.CONNECTION
    return StoreErrorKind.OTHER


def is_retryable(kind: StoreErrorKind) -> bool:
    return kind in RETRYABLE_KINDS


def extract_constraint_name(exc: BaseException) -> str | None:
    for candidate in _iter_error_chain(exc):
        value = getattr(candidate, "constraint_name", None)
        if isinstance(value, str) and value:
            return value
    return None
