"""
Database-specific exception classes.
"""
import re

import pymysql

RETRYABLE_PATTERNS = [
    # SSL/TLS errors
    r'ssl',
    r'tls',
    # Connection drops
    r'connection.*(closed|reset|refused|lost|terminated|broken)',
    r'server has gone away',
    r'lost connection',
    r'broken pipe',
    # Timeouts
    r'timeout',
    r'timed out',
    # Network issues
    r"can't connect",
    r'could not connect',
    r'no route to host',
    r'network.*(unreachable|error)',
    # Server unavailable
    r'too many connections',
    r'server.*shutdown',
]

_RETRYABLE_REGEX = re.compile('|'.join(RETRYABLE_PATTERNS), re.IGNORECASE)


def is_retryable_error(exc: BaseException) -> bool:
    """Check if an exception represents a transient error worth retrying.

    Returns True for errors that are likely transient and may succeed on retry:
    - SSL/TLS errors
    - Connection drops/resets
    - Timeouts
    - Network issues

    Returns False for errors that will definitely fail again:
    - Syntax errors
    - Unsupported value types
    - Constraint violations
    - Permission errors

    :param exc: The exception to check.
    :returns: True if the error is likely transient and worth retrying.
    """
    if isinstance(exc, UnsupportedValueType | ValidationError):
        return False
    error_msg = str(exc).lower()
    return bool(_RETRYABLE_REGEX.search(error_msg))


class DatabaseError(Exception):
    """Base class for all dbagent errors.
    """


class ConnectionFailure(DatabaseError):
    """Error establishing or maintaining database connection.
    """

    def __init__(self, message: str, code: int | None = None,
                 sql_state: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.sql_state = sql_state


class QueryError(DatabaseError):
    """Error in query syntax or execution.

    Carries the server error code and SQLSTATE when the driver reports them.
    """

    def __init__(self, message: str, code: int | None = None,
                 sql_state: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.sql_state = sql_state


class InvalidQueryError(DatabaseError):
    """Query could not be built (empty statement, missing table).
    """


class UnsupportedValueType(DatabaseError):
    """Value of a kind the escaper has no rule for.

    Always a programming error on the caller side; never retried.
    """

    def __init__(self, value_type: str, detail: str | None = None) -> None:
        message = f'Unsupported value type {value_type!r}'
        if detail:
            message = f'{message}: {detail}'
        super().__init__(message)
        self.value_type = value_type


class IntegrityViolationError(QueryError):
    """Database constraint violation error.
    """


class ValidationError(DatabaseError):
    """Error in input validation.
    """


DbConnectionError = (
    pymysql.err.OperationalError,
    pymysql.err.InterfaceError,
    ConnectionFailure,
    )

IntegrityError = (
    pymysql.err.IntegrityError,
    IntegrityViolationError,
    )

ProgrammingError = (
    pymysql.err.ProgrammingError,
    pymysql.err.DatabaseError,
    QueryError,
    )

OperationalError = (
    pymysql.err.OperationalError,
    )
