import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from storefront.errors import (
    CheckoutError,
    ConflictError,
    ReferentialError,
    TransientInfraError,
    ValidationError,
    translate_db_error,
)


class PgError(Exception):
    def __init__(self, message, sqlstate):
        super().__init__(message)
        self.sqlstate = sqlstate


def integrity(orig) -> IntegrityError:
    return IntegrityError("INSERT ...", {}, orig)


@pytest.mark.parametrize(
    "orig, expected",
    [
        (PgError("duplicate key value violates unique constraint", "23505"), ConflictError),
        (PgError("insert or update violates foreign key constraint", "23503"), ReferentialError),
        (Exception("UNIQUE constraint failed: orders.order_number"), ConflictError),
        (Exception("FOREIGN KEY constraint failed"), ReferentialError),
    ],
)
def test_integrity_errors_are_classified(orig, expected):
    error = translate_db_error(integrity(orig))

    assert type(error) is expected


def test_conflict_message_and_retry_flag():
    error = translate_db_error(integrity(PgError("dup", "23505")))

    assert error.status_code == 409
    assert error.retryable is True
    assert error.message == "Duplicate order detected"


def test_referential_error_is_client_error():
    error = translate_db_error(integrity(PgError("fk", "23503")))

    assert error.status_code == 400
    assert error.message == "Invalid product reference"


@pytest.mark.parametrize(
    "exc",
    [
        OperationalError("SELECT 1", {}, Exception("connection refused")),
        ConnectionRefusedError("connect ECONNREFUSED"),
        TimeoutError("timed out"),
    ],
)
def test_connectivity_failures_are_transient(exc):
    error = translate_db_error(exc)

    assert isinstance(error, TransientInfraError)
    assert error.status_code == 500
    assert error.retryable is True


def test_other_database_errors_are_internal():
    error = translate_db_error(ProgrammingError("SELEC 1", {}, Exception("syntax error")))

    assert type(error) is CheckoutError
    assert error.status_code == 500
    assert error.retryable is False
    assert "syntax error" in error.message


def test_checkout_errors_pass_through():
    original = ValidationError("Missing required order data")

    assert translate_db_error(original) is original
