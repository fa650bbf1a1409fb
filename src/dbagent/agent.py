"""
MySQL agent: one connection, query execution, escaping and CRUD helpers.

This module provides:
1. The `connect()` function returning a connected `Agent`
2. The `Agent` class owning one SQLAlchemy connection and its PyMySQL handle
3. Engine creation and management through a thread-safe registry
4. The `check_connection` retry decorator

The Agent is the primary database client:
- query(sql, params) - Prepare, execute and return a `Result`
- get(sql, params) / get_all(sql, params) - First row / all rows
- select/insert/update/delete/count - Table helpers built on escaping
- escape/escape_identifier/prepare - Safe SQL text assembly

On connect the agent reads `information_schema.columns` once and publishes
the resulting type directory to its `Mapper`; every fetched row is cast
through it. A failed metadata query only disables casting.
"""
import atexit
import logging
import re
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import fields
from functools import wraps
from typing import Any, Self, TypeVar

import pymysql
import pymysql.converters
import pymysql.cursors
import sqlalchemy as sa
from dbagent import sql as sqlutil
from dbagent.batch import Batch
from dbagent.exceptions import ConnectionFailure, DbConnectionError
from dbagent.exceptions import IntegrityViolationError, InvalidQueryError
from dbagent.exceptions import QueryError, is_retryable_error
from dbagent.mapper import COLUMNS_QUERY, CastOptions, Mapper
from dbagent.options import AgentOptions
from dbagent.profiler import Profiler
from dbagent.result import Result
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from libb import issequence, load_options

__all__ = [
    'Agent',
    'connect',
    'check_connection',
    'create_url_from_options',
    'get_engine_for_options',
    'dispose_all_engines',
    'describe_connection_error',
    'describe_query_error',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')
_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()


def create_url_from_options(options: AgentOptions,
                            url_creator: Callable[..., sa.URL] = sa.URL.create) -> sa.URL:
    """Convert AgentOptions to SQLAlchemy URL.
    """
    query = {'charset': options.charset} if options.charset else {}
    if options.socket:
        query['unix_socket'] = options.socket

    return url_creator(
        drivername='mysql+pymysql',
        username=options.username,
        password=options.password,
        host=options.hostname,
        port=options.port,
        database=options.database,
        query=query
    )


def check_connection(func: Callable[..., T] | None = None, *, max_retries: int = 3,
                     retry_delay: float = 1, retry_errors: type | tuple[type, ...] | None = None,
                     retry_backoff: float = 1.5,
                     sleep_func: Callable[[float], None] | None = None) -> Callable[..., T]:
    """Connection retry decorator with backoff.

    Retries the wrapped call on transient connection errors. Errors that
    are not retryable (see `is_retryable_error`) and calls made inside a
    transaction are never retried.

    Supports both @check_connection and @check_connection() syntax.
    """
    def decorator(f: Callable[..., T]) -> Callable[..., T]:
        @wraps(f)
        def inner(*args: Any, **kwargs: Any) -> T:
            error_types = retry_errors if retry_errors is not None else DbConnectionError

            if args and getattr(args[0], 'in_transaction', False):
                return f(*args, **kwargs)

            tries = 0
            delay = retry_delay
            while tries < max_retries:
                try:
                    return f(*args, **kwargs)
                except error_types as err:
                    if not is_retryable_error(err):
                        raise
                    tries += 1
                    if tries >= max_retries:
                        logger.error(f'Maximum retries ({max_retries}) exceeded: {err}')
                        raise
                    logger.warning(f'Connection error (attempt {tries}/{max_retries}): {err}')
                    (sleep_func or time.sleep)(delay)
                    delay *= retry_backoff

        return inner

    if func is None:
        return decorator
    return decorator(func)


def get_engine_for_options(options: AgentOptions,
                           engine_factory: Callable[..., Engine] = sa.create_engine,
                           **kwargs: Any) -> Engine:
    """Get or create a SQLAlchemy engine for the given options.

    Engines never pool: each agent owns exactly one connection.
    """
    key = str(create_url_from_options(options).render_as_string(hide_password=False))

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {options.drivername}')
            return _engine_registry[key]

        connect_args: dict[str, Any] = {'autocommit': True}
        if options.timeout:
            connect_args['connect_timeout'] = options.timeout
        connect_args.update(options.connect_options or {})

        engine_kwargs: dict[str, Any] = {
            'echo': False,
            'poolclass': NullPool,
            'connect_args': connect_args,
        }
        engine_kwargs.update(kwargs)

        engine = engine_factory(create_url_from_options(options), **engine_kwargs)

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {options.drivername}')

        return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in list(_engine_registry.values()):
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


def _error_code(err: BaseException) -> int | None:
    orig = getattr(err, 'orig', None) or err
    args = getattr(orig, 'args', ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


def _error_message(err: BaseException) -> str:
    orig = getattr(err, 'orig', None) or err
    args = getattr(orig, 'args', ())
    if len(args) >= 2:
        return str(args[1])
    return str(orig)


def describe_connection_error(err: BaseException, options: AgentOptions) -> ConnectionFailure:
    """Translate a driver connection error into a `ConnectionFailure`.
    """
    code = _error_code(err)
    host = options.socket or options.hostname
    if code in {2002, 2003, 2005}:
        message = (f'Unable to connect to MySQL server at "{host}", '
                   f'could not reach host "{host}".')
    elif code in {1044, 1049}:
        message = (f'Unable to connect to MySQL server at "{host}", '
                   f'database "{options.database}" does not exist or is not accessible.')
    elif code == 1045:
        message = (f'Unable to connect to MySQL server at "{host}", '
                   f'password authentication failed for user "{options.username}".')
    else:
        message = f'{_error_message(err).rstrip(".")}.'
    return ConnectionFailure(message, code)


_SYNTAX_NEAR = re.compile(r"syntax to use near '(?P<query>.*)' at line (?P<line>\d+)", re.DOTALL)


def describe_query_error(err: BaseException, sql: str | None = None) -> QueryError:
    """Translate a driver query error into a `QueryError`.

    Syntax errors (1064) are shortened to the offending token and line.
    """
    code = _error_code(err)
    message = _error_message(err)
    if code == 1064:
        match = _SYNTAX_NEAR.search(message)
        if match:
            near = match.group('query')
            token = near.split()[0] if near.split() else near
            message = (f'Syntax error at or near "{token}", line {match.group("line")}. '
                       f'Query: "... {near}".')
    if isinstance(getattr(err, 'orig', err), pymysql.err.IntegrityError):
        return IntegrityViolationError(message, code)
    if sql and code != 1064:
        message = f'{message} Query: "{sql}".'
    return QueryError(message, code)


def _table_name(table: str) -> str:
    """Bare table name for type mapping, e.g. '`db`.`users` u' -> 'users'."""
    first = str(table).strip().split()[0] if str(table).strip() else ''
    return first.split('.')[-1].strip('`')


class Agent:
    """Owns one MySQL connection and exposes query/escape operations.

    Lifecycle:
    1. `connect()` opens the connection, applies the timezone and builds
       the column type directory (when `map_result` is on)
    2. `query()` and the table helpers run statements; fetched rows are
       cast through the `Mapper`
    3. `disconnect()` closes the connection and drops the directory

    The agent supports the context manager protocol and disconnects on exit.
    """

    def __init__(self, options: AgentOptions) -> None:
        self.options = options
        self.sa_connection: sa.engine.Connection | None = None
        self.dbapi_connection: Any = None
        self.in_transaction = False
        self.mapper: Mapper | None = None
        if options.map_result:
            self.mapper = Mapper(CastOptions(bool_narrow=bool(options.map_result_bool)))
        self.profiler = Profiler() if options.profile else None

    def __enter__(self) -> Self:
        return self.connect()

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        try:
            self.disconnect()
            logger.debug('Closed connection via context manager')
        except Exception as e:
            logger.debug(f'Error closing connection in __exit__: {e}')

    def __repr__(self) -> str:
        state = 'connected' if self.is_connected() else 'disconnected'
        return (f'Agent({self.options.username}@{self.options.hostname}:'
                f'{self.options.port}/{self.options.database}, {state})')

    def connect(self) -> Self:
        """Open the connection; a no-op when already connected.

        Raises
            ConnectionFailure: server unreachable, unknown database, bad credentials
        """
        if self.is_connected():
            return self

        if self.profiler:
            self.profiler.start(Profiler.CONNECTION)

        try:
            engine = get_engine_for_options(self.options)
            self.sa_connection = engine.connect()
        except (sa.exc.DBAPIError, pymysql.err.MySQLError) as err:
            failure = describe_connection_error(err, self.options)
            logger.error(f'Connection failed: {failure}')
            raise failure from err
        finally:
            if self.profiler:
                self.profiler.stop(Profiler.CONNECTION)

        self.dbapi_connection = self.sa_connection.connection.driver_connection
        logger.debug(f'New connection to {self.options.hostname}:{self.options.port}/'
                     f'{self.options.database} for {self.options.appname}')

        if self.options.timezone:
            self.query('SET time_zone = ?', [self.options.timezone], handle_errors=False)

        if self.mapper is not None:
            self._build_directory()

        return self

    def _build_directory(self) -> None:
        """Read column metadata once and publish it to the mapper.
        """
        try:
            result = self.query(COLUMNS_QUERY, [self.options.database],
                                fetch_type='assoc', handle_errors=False)
        except (QueryError, *DbConnectionError) as err:
            logger.warning(f'Could not build type directory, results will not be cast: {err}')
            self.mapper.reset()
            return
        self.mapper.load(result.data)

    def disconnect(self) -> None:
        """Close the connection and drop the type directory.
        """
        if self.mapper is not None:
            self.mapper.reset()
        if self.sa_connection is not None:
            if not getattr(self.sa_connection, 'closed', False):
                self.sa_connection.close()
            if self.profiler:
                logger.debug(f'Connection closed: {self.profiler.query_count} queries '
                             f'in {self.profiler.total_time:.2f}s')
        self.sa_connection = None
        self.dbapi_connection = None
        self.in_transaction = False

    close = disconnect

    def is_connected(self) -> bool:
        if self.sa_connection is None or getattr(self.sa_connection, 'closed', False):
            return False
        return bool(getattr(self.dbapi_connection, 'open', True))

    def cursor(self) -> Any:
        """Dict cursor on the driver connection, reconnecting when needed.
        """
        if not self.is_connected():
            self.connect()
        return self.dbapi_connection.cursor(pymysql.cursors.DictCursor)

    @check_connection
    def _execute(self, sql: str) -> Any:
        cursor = self.cursor()
        logger.debug(f'SQL:\n{sql}')
        if self.profiler:
            self.profiler.start(Profiler.QUERY)
        try:
            cursor.execute(sql)
        except DbConnectionError as err:
            cursor.close()
            if is_retryable_error(err) and not self.in_transaction:
                self.disconnect()
            raise
        except Exception:
            cursor.close()
            raise
        finally:
            if self.profiler:
                self.profiler.stop(Profiler.QUERY)
        return cursor

    def query(self, sql: str, params: Any = None, limit: int | None = None,
              fetch_type: str | None = None, table: str | None = None,
              *, handle_errors: bool = True) -> Result:
        """Prepare and execute a statement.

        Parameters
            sql: SQL text, optionally with placeholders
            params: Positional sequence or named mapping for the placeholders
            limit: Maximum number of rows to fetch
            fetch_type: `object`, `assoc`, `num` or `dataframe`
            table: Source table for result type mapping (detected when omitted)
            handle_errors: Route failures to `query_error_handler` when configured

        Returns
            Result of the statement

        Raises
            InvalidQueryError: empty statement
            QueryError: statement failed and no error handler is configured
        """
        sql = (sql or '').strip()
        if not sql:
            raise InvalidQueryError('Query cannot be empty')

        if params is not None:
            sql = self.prepare(sql, params)

        if self.options.query_log:
            logger.info(f'New query [{sql}] via {self.options.appname}')
        if self.profiler:
            self.profiler.add_query(sql)

        try:
            cursor = self._execute(sql)
        except pymysql.err.MySQLError as err:
            if isinstance(err, DbConnectionError) and is_retryable_error(err):
                raise
            exc = describe_query_error(err, sql)
            logger.error(f'Query failed: {exc}')
            handler = self.options.query_error_handler
            if handle_errors and handler is not None:
                handler(exc, sql, params)
                return Result(self, self.options.fetch_type)
            raise exc from err

        try:
            return Result(self, self.options.fetch_type).process(cursor, limit, fetch_type, table)
        finally:
            cursor.close()

    def get(self, sql: str, params: Any = None, fetch_type: str | None = None) -> Any:
        """First row of the query, or None.
        """
        return self.query(sql, params, 1, fetch_type).first()

    def get_all(self, sql: str, params: Any = None, fetch_type: str | None = None) -> Any:
        """All rows of the query.
        """
        return self.query(sql, params, None, fetch_type).data

    def _table_sql(self, table: str) -> str:
        """Quoted table reference; a trailing alias is kept as written.

        Examples
            agent._table_sql('users u')  # '`users` u'
        """
        name, _, alias = str(table).strip().partition(' ')
        quoted = self.escape_identifier(name)
        alias = alias.strip()
        return f'{quoted} {alias}' if alias else quoted

    def select(self, table: str, fields: Any = None, where: str | None = None,
               params: Any = None, limit: Any = None, fetch_type: str | None = None) -> Any:
        """Select rows from a table.

        Examples
            agent.select('users', ['id', 'name'], 'age > ?', [30], limit=10)
        """
        sql = ' '.join(filter(None, [
            f'SELECT {self.escape_identifier(fields or "*")}',
            f'FROM {self._table_sql(table)}',
            self.where(where, params),
            self.limit(limit),
            ]))
        return self.query(sql, fetch_type=fetch_type, table=_table_name(table)).data

    def select_one(self, table: str, fields: Any = None, where: str | None = None,
                   params: Any = None, fetch_type: str | None = None) -> Any:
        """First row of `select()`, or None.
        """
        sql = ' '.join(filter(None, [
            f'SELECT {self.escape_identifier(fields or "*")}',
            f'FROM {self._table_sql(table)}',
            self.where(where, params),
            'LIMIT 1',
            ]))
        return self.query(sql, fetch_type=fetch_type, table=_table_name(table)).first()

    def insert(self, table: str, data: Mapping[str, Any] | list[Mapping[str, Any]]) -> Any:
        """Insert one row (returns its id) or many rows (returns their ids).
        """
        multi = issequence(data) and not isinstance(data, Mapping)
        rows = list(data) if multi else [data]
        if not rows or not rows[0]:
            raise InvalidQueryError(f'No data to insert into {table}')

        keys = list(rows[0].keys())
        values = ', '.join(f'({self.escape([row[k] for k in keys])})' for row in rows)
        sql = (f'INSERT INTO {self.escape_identifier(table)} '
               f'({self.escape_identifier(keys)}) VALUES {values}')

        result = self.query(sql, handle_errors=True)
        return result.ids if multi else result.id

    def update(self, table: str, data: Mapping[str, Any], where: str | None = None,
               params: Any = None, limit: Any = None) -> int:
        """Update rows and return the affected row count.
        """
        if not data:
            raise InvalidQueryError(f'No data to update in {table}')
        assignments = ', '.join(f'{self.escape_identifier(k)} = {self.escape(v)}'
                                for k, v in data.items())
        sql = ' '.join(filter(None, [
            f'UPDATE {self.escape_identifier(table)} SET {assignments}',
            self.where(where, params),
            self.limit(limit),
            ]))
        return self.query(sql).rows_affected

    def delete(self, table: str, where: str | None = None, params: Any = None,
               limit: Any = None) -> int:
        """Delete rows and return the affected row count.
        """
        sql = ' '.join(filter(None, [
            f'DELETE FROM {self.escape_identifier(table)}',
            self.where(where, params),
            self.limit(limit),
            ]))
        return self.query(sql).rows_affected

    def count(self, table: str | None = None, query: str | None = None,
              params: Any = None) -> int | None:
        """Row count of a table or of an arbitrary query.
        """
        if table:
            sql = f'SELECT count(*) AS count FROM {self.escape_identifier(table)}'
        else:
            if not query:
                raise InvalidQueryError('count() needs a table or a query')
            if params is not None:
                query = self.prepare(query, params)
            sql = f'SELECT count(*) AS count FROM ({query}) AS tmp'
        row = self.get(sql, fetch_type='assoc')
        return int(row['count']) if row and row.get('count') is not None else None

    def _escape_string_raw(self, value: str) -> str:
        if self.dbapi_connection is not None:
            return self.dbapi_connection.escape_string(value)
        return pymysql.converters.escape_string(value)

    def escape(self, value: Any, hint: str | None = None) -> str:
        """Render a value as a SQL literal (see `dbagent.sql.escape`).
        """
        return sqlutil.escape(value, hint, self._escape_string_raw)

    def escape_string(self, value: str, quote: bool = True) -> str:
        """Escape a string with the driver primitive, optionally quoted.
        """
        escaped = self._escape_string_raw(str(value))
        return f"'{escaped}'" if quote else escaped

    def escape_identifier(self, name: Any) -> str:
        return sqlutil.escape_identifier(name)

    def prepare(self, sql: str, params: Any = None) -> str:
        return sqlutil.prepare(sql, params, self._escape_string_raw)

    def where(self, where: str | None = None, params: Any = None) -> str:
        return sqlutil.where(where, params, self._escape_string_raw)

    def limit(self, limit: Any) -> str:
        return sqlutil.limit(limit)

    def batch(self) -> Batch:
        """New batch of statements run in one transaction.
        """
        return Batch(self)


@load_options(cls=AgentOptions)
def connect(options: AgentOptions | dict[str, Any] | str,
            config: Any | None = None, **kw: Any) -> Agent:
    """Connect to a MySQL database and return a connected `Agent`.

    Args:
        options: Can be:
                - AgentOptions object
                - String name of a configuration entry
                - Dictionary of options
                - Options specified as keyword arguments
        config: Configuration object (for loading from config files)
        **kw: Additional keyword arguments to override options

    Returns
        Connected Agent
    """
    if isinstance(options, AgentOptions):
        for field in fields(options):
            kw.pop(field.name, None)
    else:
        options_func = load_options(cls=AgentOptions)(lambda o, c: o)
        options = options_func(options, config, **kw)

    return Agent(options).connect()
