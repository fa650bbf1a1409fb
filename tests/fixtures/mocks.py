"""
Mock connection utilities for agent tests.

Provides a scripted stand-in for a PyMySQL connection so the agent can be
exercised without a server. Responses are queued and consumed in order;
the `information_schema.columns` query is answered from `conn.columns`.

Usage:
    def test_select(agent, fake_conn):
        fake_conn.respond(rows=[{'id': 1}], table='users')
        assert agent.get_all('select id from users') == [{'id': 1}]
"""
from types import SimpleNamespace

import pymysql
import pytest
from dbagent.agent import Agent
from dbagent.options import AgentOptions
from pymysql.converters import escape_string


class FakeCursor:
    """Cursor returning dict rows, shaped like `pymysql.cursors.DictCursor`."""

    def __init__(self, conn):
        self.conn = conn
        self.description = None
        self.rowcount = -1
        self.lastrowid = 0
        self._rows = []
        self._result = None
        self.closed = False

    def execute(self, sql):
        self.conn.executed.append(sql)
        for fragment, exc in list(self.conn.failures.items()):
            if fragment in sql:
                if self.conn.fail_once:
                    self.conn.failures.pop(fragment)
                raise exc
        if 'information_schema.columns' in sql:
            response = {'rows': list(self.conn.columns), 'table': None}
        elif self.conn.responses:
            response = self.conn.responses.pop(0)
        else:
            response = {'rowcount': 0}

        rows = response.get('rows')
        if rows is not None:
            columns = response.get('columns') or (list(rows[0].keys()) if rows else [])
            self.description = [(col, None, None, None, None, None, None) for col in columns]
            self._rows = [dict(row) for row in rows]
            self.rowcount = len(rows)
            table = response.get('table') or ''
            self._result = SimpleNamespace(fields=[SimpleNamespace(org_table=table)
                                                   for _ in columns])
        else:
            self.description = None
            self._rows = []
            self.rowcount = response.get('rowcount', 0)
            self.lastrowid = response.get('lastrowid', 0)
            self._result = SimpleNamespace(fields=[])
        return self.rowcount

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def fetchmany(self, size):
        rows, self._rows = self._rows[:size], self._rows[size:]
        return rows

    def close(self):
        self.closed = True


class FakeConnection:
    """Driver connection with the PyMySQL transaction and escape API."""

    def __init__(self, columns=None):
        self.columns = list(columns or [])
        self.responses = []
        self.executed = []
        self.failures = {}
        self.fail_once = False
        self.calls = []
        self.open = True

    def respond(self, rows=None, columns=None, table=None, rowcount=0, lastrowid=0):
        self.responses.append({'rows': rows, 'columns': columns, 'table': table,
                               'rowcount': rowcount, 'lastrowid': lastrowid})
        return self

    def fail(self, fragment, exc, once=False):
        self.failures[fragment] = exc
        self.fail_once = once
        return self

    def cursor(self, cursorclass=None):
        return FakeCursor(self)

    def escape_string(self, value):
        return escape_string(value)

    def autocommit(self, value):
        self.calls.append(('autocommit', value))

    def begin(self):
        self.calls.append(('begin',))

    def commit(self):
        self.calls.append(('commit',))

    def rollback(self):
        self.calls.append(('rollback',))

    def close(self):
        self.open = False


class FakeSAConnection:
    """The part of `sqlalchemy.engine.Connection` the agent relies on."""

    def __init__(self, driver_connection):
        self.connection = SimpleNamespace(driver_connection=driver_connection)
        self.closed = False

    def close(self):
        self.closed = True
        self.connection.driver_connection.close()


class FakeEngine:

    def __init__(self, conn):
        self.conn = conn
        self.connects = 0

    def connect(self):
        self.connects += 1
        self.conn.open = True
        return FakeSAConnection(self.conn)

    def dispose(self):
        pass


USERS_COLUMNS = [
    {'table_name': 'users', 'column_name': 'id', 'data_type': 'int',
     'is_nullable': 'NO', 'numeric_precision': 10, 'column_type': 'int(10) unsigned'},
    {'table_name': 'users', 'column_name': 'name', 'data_type': 'varchar',
     'is_nullable': 'YES', 'numeric_precision': None, 'column_type': 'varchar(255)'},
    {'table_name': 'users', 'column_name': 'active', 'data_type': 'tinyint',
     'is_nullable': 'NO', 'numeric_precision': 3, 'column_type': 'tinyint(1)'},
    {'table_name': 'users', 'column_name': 'score', 'data_type': 'decimal',
     'is_nullable': 'YES', 'numeric_precision': 10, 'column_type': 'decimal(10,2)'},
    ]


@pytest.fixture
def fake_conn():
    return FakeConnection(columns=USERS_COLUMNS)


@pytest.fixture
def fake_engine(fake_conn, mocker):
    engine = FakeEngine(fake_conn)
    mocker.patch('dbagent.agent.get_engine_for_options', return_value=engine)
    return engine


@pytest.fixture
def agent_options():
    return AgentOptions(hostname='localhost', username='test', password='test',
                        database='test_db', fetch_type='assoc')


@pytest.fixture
def agent(agent_options, fake_engine):
    """Connected agent backed by `fake_conn`."""
    agent = Agent(agent_options).connect()
    yield agent
    agent.disconnect()


def operational_error(code=2013, message='Lost connection to MySQL server during query'):
    return pymysql.err.OperationalError(code, message)
