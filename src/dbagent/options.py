from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import pandas as pd

from libb import ConfigOptions, attrdict, scriptname

__all__ = [
    'AgentOptions',
    'FETCH_OBJECT',
    'FETCH_ASSOC',
    'FETCH_NUM',
    'FETCH_DATAFRAME',
    'get_data_loader',
    'attrdict_data_loader',
    'iterdict_data_loader',
    'tuple_data_loader',
    'pandas_data_loader',
]

FETCH_OBJECT = 'object'
FETCH_ASSOC = 'assoc'
FETCH_NUM = 'num'
FETCH_DATAFRAME = 'dataframe'

SUPPORTED_DRIVERS = ('mysql',)


def iterdict_data_loader(data, columns, **kwargs) -> list[dict]:
    """Minimal data loader, rows as plain dicts."""
    if not data:
        return []
    return [dict(row) for row in data]


def attrdict_data_loader(data, columns, **kwargs) -> list[attrdict]:
    """Rows as attribute dictionaries (`row.name` and `row['name']`)."""
    if not data:
        return []
    return [attrdict(row) for row in data]


def tuple_data_loader(data, columns, **kwargs) -> list[tuple]:
    """Rows as tuples in column order."""
    if not data:
        return []
    return [tuple(row[col] for col in columns) for row in data]


def pandas_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """Standard pandas DataFrame loader.

    Always returns a DataFrame, never None, with columns preserved for empty results.
    """
    if not data:
        return pd.DataFrame(columns=list(columns))
    return pd.DataFrame.from_records(list(data), columns=list(columns))


_DATA_LOADERS: dict[str, Callable[..., Any]] = {
    FETCH_OBJECT: attrdict_data_loader,
    FETCH_ASSOC: iterdict_data_loader,
    FETCH_NUM: tuple_data_loader,
    FETCH_DATAFRAME: pandas_data_loader,
}


def get_data_loader(fetch_type: str) -> Callable[..., Any]:
    """Return the data loader for a fetch type name.
    """
    try:
        return _DATA_LOADERS[fetch_type]
    except KeyError:
        raise ValueError(f'fetch_type must be one of: {list(_DATA_LOADERS)}') from None


@dataclass
class AgentOptions(ConfigOptions):
    """Options

    supported driver names: `mysql`

    Result mapping options:
    - map_result: Build the column type directory and cast fetched rows (default: True)
    - map_result_bool: Cast tinyint(1)/bit(1) values 0/1 to booleans (default: False)

    Diagnostics options:
    - query_log: Log every query at INFO level (default: False)
    - profile: Track connection/query timings and query count (default: False)
    - query_error_handler: Callable(exc, sql, params) invoked instead of raising
    """
    drivername: str = 'mysql'
    hostname: str = 'localhost'
    username: str = None
    password: str = None
    database: str = None
    port: int = 3306
    socket: str = None
    charset: str = 'utf8mb4'
    timezone: str = None
    timeout: int = 0
    appname: str = None
    connect_options: dict = None
    fetch_type: str = FETCH_OBJECT
    map_result: bool = True
    map_result_bool: bool = False
    query_log: bool = False
    profile: bool = False
    query_error_handler: Callable[..., Any] | None = None

    def __post_init__(self):
        if self.drivername not in SUPPORTED_DRIVERS:
            raise ValueError(f'drivername must be one of: {list(SUPPORTED_DRIVERS)}')
        if not self.database:
            raise ValueError('database is required')
        if not isinstance(self.port, int) or not 0 <= self.port <= 65535:
            raise ValueError(f'Invalid port: {self.port!r}')
        get_data_loader(self.fetch_type)
        if self.query_error_handler is not None and not callable(self.query_error_handler):
            raise ValueError('query_error_handler must be callable')
        self.appname = self.appname or scriptname() or 'python_console'
