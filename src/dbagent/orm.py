"""
Minimal table-gateway ORM.

Subclass `Orm` with a `table` and `primary_key`, bind an agent once with
`Orm.set_agent(agent)`, then load and store rows as `Entity` objects.

Examples
    class Users(Orm):
        table = 'users'
        primary_key = 'id'

    users = Users()
    user = users.find(1)
    user.name = 'Deli'
    users.save(user)
"""
import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any, ClassVar

from dbagent.exceptions import InvalidQueryError

from libb import issequence

if TYPE_CHECKING:
    from dbagent.agent import Agent

logger = logging.getLogger(__name__)

__all__ = ['Orm', 'Entity', 'EntityCollection']


class Entity:
    """One row, with attribute access to its columns.
    """

    def __init__(self, orm: 'Orm', data: Mapping[str, Any] | None = None) -> None:
        object.__setattr__(self, '_orm', orm)
        object.__setattr__(self, '_data', dict(data or {}))

    def __getattr__(self, name: str) -> Any:
        try:
            return self._data[name]
        except KeyError:
            raise AttributeError(name) from None

    def __setattr__(self, name: str, value: Any) -> None:
        self._data[name] = value

    def __delattr__(self, name: str) -> None:
        try:
            del self._data[name]
        except KeyError:
            raise AttributeError(name) from None

    def __contains__(self, name: str) -> bool:
        return name in self._data

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Entity) and self._data == other._data

    def __repr__(self) -> str:
        return f'{type(self._orm).__name__}.Entity({self._data!r})'

    def is_found(self) -> bool:
        return bool(self._data)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)

    def save(self) -> Any:
        return self._orm.save(self)

    def remove(self) -> int:
        pk = self._orm.primary_key
        if self._data.get(pk) is None:
            raise InvalidQueryError(f'Entity has no {pk} value to remove')
        return self._orm.remove(self._data[pk])


class EntityCollection(list):
    """List of entities returned by `Orm.find_all()`.
    """

    def is_found(self) -> bool:
        return len(self) > 0


class Orm:
    """Table gateway: find, save and remove rows of one table.
    """

    agent: ClassVar['Agent | None'] = None
    table: ClassVar[str | None] = None
    primary_key: ClassVar[str] = 'id'

    def __init__(self) -> None:
        if not self.table:
            raise InvalidQueryError(f'{type(self).__name__}.table is not defined')

    @classmethod
    def set_agent(cls, agent: 'Agent') -> None:
        Orm.agent = agent

    @classmethod
    def get_agent(cls) -> 'Agent':
        if Orm.agent is None:
            raise InvalidQueryError('No agent bound, call Orm.set_agent() first')
        return Orm.agent

    def entity(self, data: Mapping[str, Any] | None = None) -> Entity:
        return Entity(self, data)

    def find(self, id: Any) -> Entity:
        """Row with the given primary key; an empty entity when not found.
        """
        agent = self.get_agent()
        row = agent.select_one(self.table, where=f'{agent.escape_identifier(self.primary_key)} = ?',
                               params=[id], fetch_type='assoc')
        return Entity(self, row)

    def find_all(self, query: Iterable[Any] | str | None = None,
                 params: Any = None, limit: Any = None) -> EntityCollection:
        """Rows matching a list of ids, a where condition, or every row.

        Examples
            users.find_all([1, 2, 3])
            users.find_all('id in(?, ?, ?)', [1, 2, 3])
        """
        agent = self.get_agent()
        where = None
        if isinstance(query, str):
            where = query
        elif query is not None:
            ids = list(query)
            if not ids:
                return EntityCollection()
            where = f'{agent.escape_identifier(self.primary_key)} IN (?)'
            params = [ids]
        rows = agent.select(self.table, where=where, params=params, limit=limit,
                            fetch_type='assoc')
        return EntityCollection(Entity(self, row) for row in rows)

    def save(self, entity: Entity) -> Any:
        """Insert the entity when it has no primary key value, update it otherwise.

        Returns the new id on insert (also set on the entity), the affected
        row count on update.
        """
        agent = self.get_agent()
        data = entity.to_dict()
        pk = self.primary_key
        if data.get(pk) is None:
            data.pop(pk, None)
            new_id = agent.insert(self.table, data)
            setattr(entity, pk, new_id)
            logger.debug(f'Inserted {self.table} {pk}={new_id}')
            return new_id
        values = {k: v for k, v in data.items() if k != pk}
        return agent.update(self.table, values, f'{agent.escape_identifier(pk)} = ?', [data[pk]])

    def remove(self, ids: Any) -> int:
        """Delete rows by one id or a list of ids, returning the affected count.
        """
        agent = self.get_agent()
        if not issequence(ids) or isinstance(ids, str):
            ids = [ids]
        ids = list(ids)
        if not ids:
            return 0
        return agent.delete(self.table, f'{agent.escape_identifier(self.primary_key)} IN (?)',
                            [ids])
