from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from myrad.db.errors import (
    StoreErrorKind,
    classify_store_error,
    extract_constraint_name,
    extract_sqlstate,
    is_retryable,
)


@pytest.mark.parametrize(
    ("sqlstate", "kind"),
    [
        ("40001", StoreErrorKind.SERIALIZATION_FAILURE),
        ("40P01", StoreErrorKind.DEADLOCK),
        ("23505", StoreErrorKind.UNIQUE_VIOLATION),
        ("08006", StoreErrorKind.CONNECTION),
        ("57P01", StoreErrorKind.CONNECTION),
        ("42P01", StoreErrorKind.OTHER),
    ],
)
def test_classify_wrapped_driver_errors_by_sqlstate(driver_error, sqlstate, kind) -> None:
    exc = OperationalError("SELECT 1", {}, driver_error(sqlstate))

    assert classify_store_error(exc) is kind


def test_only_transient_kinds_are_retryable() -> None:
    assert is_retryable(StoreErrorKind.SERIALIZATION_FAILURE)
    assert is_retryable(StoreErrorKind.DEADLOCK)
    assert is_retryable(StoreErrorKind.CONNECTION)
    assert not is_retryable(StoreErrorKind.UNIQUE_VIOLATION)
    assert not is_retryable(StoreErrorKind.OTHER)


def test_sqlstate_is_found_through_exception_cause(driver_error) -> None:
    try:
        try:
            raise driver_error("40001")
        except Exception as inner:
            raise RuntimeError("wrapped") from inner
    except RuntimeError as exc:
        assert extract_sqlstate(exc) == "40001"


def test_invalidated_connection_counts_as_connection_failure() -> None:
    exc = DBAPIError("SELECT 1", {}, Exception("gone"), connection_invalidated=True)

    assert classify_store_error(exc) is StoreErrorKind.CONNECTION


def test_timeouts_count_as_connection_failure() -> None:
    assert classify_store_error(asyncio.TimeoutError()) is StoreErrorKind.CONNECTION
    assert classify_store_error(ConnectionResetError()) is StoreErrorKind.CONNECTION


def test_plain_exceptions_are_not_store_errors() -> None:
    assert classify_store_error(ValueError("bad input")) is StoreErrorKind.OTHER


def test_constraint_name_is_read_from_driver_error(driver_error) -> None:
    exc = IntegrityError(
        "INSERT",
        {},
        driver_error("23505", constraint_name="uq_zepto_contributions_active_fingerprint"),
    )

    assert extract_constraint_name(exc) == "uq_zepto_contributions_active_fingerprint"
    assert extract_constraint_name(ValueError("nope")) is None
