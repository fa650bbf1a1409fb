"""
Batch of statements executed in one transaction.
"""
import logging
from typing import TYPE_CHECKING, Any, Self

from dbagent.result import Result

if TYPE_CHECKING:
    from dbagent.agent import Agent

logger = logging.getLogger(__name__)

__all__ = ['Batch']


class Batch:
    """Queue statements, then run them all in a single transaction.

    A failing statement rolls back the whole batch and the error is
    re-raised. Retries are disabled while the batch runs, since the agent
    is marked `in_transaction`.

    Examples
        with agent.batch() as batch:
            batch.queue('delete from users where id = ?', [1])
            batch.queue('update users set active = 0 where id = ?', [2])
        batch.results[1].rows_affected
    """

    def __init__(self, agent: 'Agent') -> None:
        self.agent = agent
        self.reset()

    def reset(self) -> None:
        self._queue: list[tuple[str, Any]] = []
        self.results: list[Result] = []
        self.cancelled = False

    def __len__(self) -> int:
        return len(self._queue)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        if exc_type is None and not self.cancelled:
            self.run()
        else:
            self._queue.clear()

    def queue(self, sql: str, params: Any = None) -> Self:
        self._queue.append((sql, params))
        return self

    def _begin(self) -> Any:
        if not self.agent.is_connected():
            self.agent.connect()
        conn = self.agent.dbapi_connection
        self.agent.in_transaction = True
        conn.autocommit(False)
        conn.begin()
        logger.debug(f'Started batch transaction for connection {id(conn)}')
        return conn

    def _end(self, conn: Any) -> None:
        self.agent.in_transaction = False
        try:
            conn.autocommit(True)
        except Exception as e:
            logger.debug(f'Could not restore autocommit: {e}')

    def run(self) -> list[Result]:
        """Execute every queued statement, commit, and return their results.
        """
        if not self._queue:
            return self.results

        conn = self._begin()
        results = []
        try:
            for sql, params in self._queue:
                results.append(self.agent.query(sql, params, handle_errors=False))
        except Exception:
            conn.rollback()
            logger.warning('Rolling back the current batch')
            raise
        else:
            conn.commit()
            logger.debug(f'Committed batch of {len(results)} statements')
        finally:
            self._queue.clear()
            self._end(conn)

        self.results = results
        return results

    def cancel(self) -> None:
        """Drop queued statements and roll back any open transaction.
        """
        self._queue.clear()
        self.cancelled = True
        if self.agent.in_transaction and self.agent.dbapi_connection is not None:
            conn = self.agent.dbapi_connection
            conn.rollback()
            self._end(conn)
            logger.warning('Cancelled batch, transaction rolled back')
        else:
            logger.debug('Cancelled batch')
