"""
Fluent SQL query builder bound to an agent.

Examples
    builder = Builder(agent, 'users u')
    builder.select('u.id, u.name').where('u.id > ?', [10]).order_by('u.id', 'DESC').limit(5)
    builder.to_string()
    "SELECT u.id, u.name FROM users u WHERE u.id > 10 ORDER BY u.id DESC LIMIT 5"
"""
import logging
import re
from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any, Self

from dbagent.exceptions import InvalidQueryError
from dbagent.sql import escape_like_pattern

from libb import issequence

if TYPE_CHECKING:
    from dbagent.agent import Agent
    from dbagent.result import Result

logger = logging.getLogger(__name__)

__all__ = ['Builder']


class Builder:
    """Build SELECT, INSERT, UPDATE and DELETE statements step by step.

    `select()`, `insert()`, `update()` and `delete()` start a new statement;
    the other methods add clauses and return the builder for chaining.
    Field names and conditions are emitted as given, values are escaped.
    """

    OP_AND = 'AND'
    OP_OR = 'OR'
    OP_ASC = 'ASC'
    OP_DESC = 'DESC'

    def __init__(self, agent: 'Agent', table: str | None = None) -> None:
        self.agent = agent
        self.table = table
        self.reset()

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        return f'Builder(table={self.table!r}, parts={sorted(self._parts)})'

    def reset(self) -> Self:
        self._parts: dict[str, Any] = {}
        return self

    def _push(self, key: str, value: Any) -> Self:
        self._parts.setdefault(key, []).append(value)
        return self

    def _prepare(self, query: str, params: Any) -> str:
        if params is None:
            return query
        return self.agent.prepare(query, params)

    def select(self, fields: str | Iterable[str] | None = None) -> Self:
        self.reset()
        self._parts['select'] = []
        if fields:
            if issequence(fields) and not isinstance(fields, str):
                fields = ', '.join(fields)
            self._push('select', fields)
        return self

    def insert(self, data: Mapping[str, Any] | list[Mapping[str, Any]]) -> Self:
        self.reset()
        rows = [data] if isinstance(data, Mapping) else list(data)
        if not rows or not rows[0]:
            raise InvalidQueryError('No data to insert')
        self._parts['insert'] = rows
        return self

    def update(self, data: Mapping[str, Any]) -> Self:
        self.reset()
        if not data:
            raise InvalidQueryError('No data to update')
        self._parts['update'] = dict(data)
        return self

    def delete(self) -> Self:
        self.reset()
        self._parts['delete'] = True
        return self

    def join(self, table: str, on: str, params: Any = None) -> Self:
        return self._push('join', f'JOIN {table} ON {self._prepare(on, params)}')

    def join_using(self, table: str, using: str, params: Any = None) -> Self:
        return self._push('join', f'JOIN {table} USING ({self._prepare(using, params)})')

    def join_left(self, table: str, on: str, params: Any = None) -> Self:
        return self._push('join', f'LEFT JOIN {table} ON {self._prepare(on, params)}')

    def join_left_using(self, table: str, using: str, params: Any = None) -> Self:
        return self._push('join', f'LEFT JOIN {table} USING ({self._prepare(using, params)})')

    def where(self, query: str, params: Any = None, op: str = OP_AND) -> Self:
        """Add a condition, joined to previous ones with `op`.
        """
        query = self._prepare(query, params)
        if self._parts.get('where'):
            query = f'{op} {query}'
        return self._push('where', query)

    def or_where(self, query: str, params: Any = None) -> Self:
        return self.where(query, params, self.OP_OR)

    def where_like(self, query: str, params: Any = None, op: str = OP_AND) -> Self:
        """Like `where()`, escaping `%` and `_` inside each pattern param.

        Examples
            builder.where_like('name LIKE ?', ['%50%_off%'])
        """
        if params is not None:
            if not issequence(params) or isinstance(params, str):
                params = [params]
            params = [escape_like_pattern(p) if isinstance(p, str) else p for p in params]
        return self.where(query, params, op)

    def where_null(self, field: str, op: str = OP_AND) -> Self:
        return self.where(f'{field} IS NULL', op=op)

    def where_not_null(self, field: str, op: str = OP_AND) -> Self:
        return self.where(f'{field} IS NOT NULL', op=op)

    def where_in(self, field: str, values: Iterable[Any], op: str = OP_AND) -> Self:
        values = list(values)
        if not values:
            # empty IN() is invalid SQL and matches nothing
            return self.where('1 = 0', op=op)
        return self.where(f'{field} IN ({self.agent.escape(values)})', op=op)

    def having(self, query: str, params: Any = None) -> Self:
        return self._push('having', self._prepare(query, params))

    def group_by(self, field: str) -> Self:
        return self._push('group_by', field)

    def order_by(self, field: str, op: str | None = None) -> Self:
        if op and op.upper() in {self.OP_ASC, self.OP_DESC}:
            return self._push('order_by', f'{field} {op.upper()}')
        return self._push('order_by', field)

    def limit(self, start: int, stop: int | None = None) -> Self:
        self._parts['limit'] = (int(start),) if stop is None else (int(start), int(stop))
        return self

    def aggregate(self, aggr: str, field: str = '*', alias: str | None = None) -> Self:
        """Add an aggregate column, aliased `aggr_field` by default.

        Examples
            builder.select().aggregate('count', 'u.id')   # count(u.id) count_uid
        """
        if not alias:
            alias = re.sub(r'\W', '', f'{aggr}_{field}') if field and field != '*' else aggr
        return self._push('aggregate', f'{aggr}({field}) {alias}')

    def _table_sql(self) -> str:
        table = self.table.strip()
        if re.search(r'\s', table):
            return table
        return self.agent.escape_identifier(table)

    def _clause(self, key: str, keyword: str, sep: str = ', ') -> str:
        parts = self._parts.get(key)
        return f'{keyword} {sep.join(parts)}' if parts else ''

    def _limit_sql(self, single: bool = False) -> str:
        limit = self._parts.get('limit')
        if not limit:
            return ''
        if single or len(limit) == 1:
            return f'LIMIT {limit[0]}'
        return f'LIMIT {limit[0]}, {limit[1]}'

    def to_string(self) -> str:
        """Render the current statement; empty string when nothing was built.

        Raises
            InvalidQueryError: no table set
        """
        if not self._parts:
            return ''
        if not self.table:
            raise InvalidQueryError('Table is not defined, set builder.table first')

        table = self._table_sql()
        where = self._clause('where', 'WHERE', ' ')
        order_by = self._clause('order_by', 'ORDER BY')

        if 'select' in self._parts:
            columns = self._parts['select'] + self._parts.get('aggregate', [])
            parts = [
                f'SELECT {", ".join(columns) or "*"} FROM {table}',
                ' '.join(self._parts.get('join', [])),
                where,
                self._clause('group_by', 'GROUP BY'),
                self._clause('having', 'HAVING', ' AND '),
                order_by,
                self._limit_sql(),
                ]
        elif 'insert' in self._parts:
            rows = self._parts['insert']
            keys = list(rows[0].keys())
            values = ', '.join(f'({self.agent.escape([row[k] for k in keys])})' for row in rows)
            parts = [f'INSERT INTO {table} ({self.agent.escape_identifier(keys)}) VALUES {values}']
        elif 'update' in self._parts:
            assignments = ', '.join(f'{self.agent.escape_identifier(k)} = {self.agent.escape(v)}'
                                    for k, v in self._parts['update'].items())
            parts = [f'UPDATE {table} SET {assignments}', where, order_by,
                     self._limit_sql(single=True)]
        elif 'delete' in self._parts:
            parts = [f'DELETE FROM {table}', where, order_by, self._limit_sql(single=True)]
        else:
            raise InvalidQueryError('No statement started, call select/insert/update/delete first')

        return ' '.join(p for p in parts if p)

    def execute(self, callback: Callable[['Result'], Any] | None = None) -> Any:
        result = self.agent.query(self.to_string())
        return callback(result) if callback else result

    def get(self, callback: Callable[[Any], Any] | None = None) -> Any:
        row = self.agent.get(self.to_string())
        return callback(row) if callback else row

    def get_all(self, callback: Callable[[Any], Any] | None = None) -> Any:
        rows = self.agent.get_all(self.to_string())
        return callback(rows) if callback else rows
