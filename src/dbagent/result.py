"""
Query result container.

A `Result` is filled from a DBAPI cursor after each query: rows are fetched
as dicts, cast through the agent's `Mapper` (keyed by the source table),
then shaped by the fetch-type data loader. Insert ids and affected row
counts are captured for write statements.
"""
import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any, Self

from dbagent.options import get_data_loader

if TYPE_CHECKING:
    from dbagent.agent import Agent

logger = logging.getLogger(__name__)

__all__ = ['Result', 'source_table']


def source_table(cursor: Any) -> str | None:
    """Original table of the first result column, as reported by the driver.

    PyMySQL exposes field packets on the cursor's last result; each carries
    `org_table`. Returns None for computed columns or other drivers.
    """
    result = getattr(cursor, '_result', None)
    fields = getattr(result, 'fields', None) or ()
    for field in fields:
        table = getattr(field, 'org_table', None)
        if isinstance(table, bytes):
            table = table.decode()
        if table:
            return table
    return None


class Result:
    """Rows and write statistics of the last query.
    """

    def __init__(self, agent: 'Agent | None' = None, fetch_type: str | None = None) -> None:
        self.agent = agent
        self.fetch_type = fetch_type
        self.reset()

    def reset(self) -> None:
        self.data: Any = []
        self.columns: list[str] = []
        self.ids: list[int] = []
        self.rows_count = 0
        self.rows_affected = 0
        self.table: str | None = None

    def process(self, cursor: Any, limit: int | None = None,
                fetch_type: str | None = None, table: str | None = None) -> Self:
        """Fill the result from an executed cursor.

        Parameters
            cursor: Executed DBAPI cursor returning dict rows
            limit: Maximum rows to fetch
            fetch_type: Loader name overriding the result default
            table: Source table for type mapping (detected when omitted)
        """
        self.reset()

        if cursor.description is not None:
            self.columns = [desc[0] for desc in cursor.description]
            rows = cursor.fetchall() if not limit else cursor.fetchmany(limit)
            rows = list(rows or [])
            self.table = table or source_table(cursor)
            mapper = getattr(self.agent, 'mapper', None)
            if mapper is not None and self.table:
                rows = mapper.map_rows(self.table, rows)
            loader = get_data_loader(fetch_type or self.fetch_type or 'object')
            self.data = loader(rows, self.columns)
            self.rows_count = len(rows)
        else:
            self.rows_affected = max(cursor.rowcount or 0, 0)
            last_id = getattr(cursor, 'lastrowid', None)
            if last_id:
                # MySQL reports the first id of a multi-row insert
                self.ids = list(range(last_id, last_id + max(self.rows_affected, 1)))

        logger.debug(f'Result: {self.rows_count} rows, {self.rows_affected} affected')
        return self

    @property
    def id(self) -> int | None:
        """Last insert id."""
        return self.ids[-1] if self.ids else None

    def count(self) -> int:
        return self.rows_count

    def first(self) -> Any:
        if not self.rows_count:
            return None
        if hasattr(self.data, 'iloc'):
            return self.data.iloc[0]
        return self.data[0]

    def get_data(self, index: int | None = None) -> Any:
        """All rows, or the row at `index` (None when out of range)."""
        if index is None:
            return self.data
        if not 0 <= index < self.rows_count:
            return None
        if hasattr(self.data, 'iloc'):
            return self.data.iloc[index]
        return self.data[index]

    def __len__(self) -> int:
        return self.rows_count

    def __bool__(self) -> bool:
        return self.rows_count > 0 or self.rows_affected > 0

    def __iter__(self) -> Iterator[Any]:
        if hasattr(self.data, 'itertuples'):
            return (row for _, row in self.data.iterrows())
        return iter(self.data)

    def __getitem__(self, index: int) -> Any:
        if hasattr(self.data, 'iloc'):
            return self.data.iloc[index]
        return self.data[index]

    def __repr__(self) -> str:
        return (f'Result(rows_count={self.rows_count}, rows_affected={self.rows_affected}, '
                f'ids={self.ids})')
