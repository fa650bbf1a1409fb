"""
MySQL access toolkit: connection agent, value escaping and result type mapping.

All query/data operations are methods of the connected `Agent`:
    agent = dbagent.connect(hostname='localhost', username='u', password='p', database='test')
    agent.select('users', ['id', 'name'], 'active = ?', [True])

The escaping helpers are also usable without a connection:
    dbagent.escape(['a', 1, None])   # "'a', 1, NULL"
"""
__version__ = '0.1.0'

from dbagent.agent import Agent, connect
from dbagent.batch import Batch
from dbagent.builder import Builder
from dbagent.exceptions import ConnectionFailure, DatabaseError, DbConnectionError
from dbagent.exceptions import IntegrityError, IntegrityViolationError
from dbagent.exceptions import InvalidQueryError, OperationalError
from dbagent.exceptions import ProgrammingError, QueryError
from dbagent.exceptions import UnsupportedValueType, ValidationError
from dbagent.mapper import CastOptions, ColumnDescriptor, Mapper
from dbagent.options import AgentOptions
from dbagent.orm import Entity, Orm
from dbagent.profiler import Profiler
from dbagent.result import Result
from dbagent.sql import Sql, escape, escape_identifier, prepare

__all__ = [
    'Agent',
    'AgentOptions',
    'Batch',
    'Builder',
    'CastOptions',
    'ColumnDescriptor',
    'ConnectionFailure',
    'DatabaseError',
    'DbConnectionError',
    'Entity',
    'IntegrityError',
    'IntegrityViolationError',
    'InvalidQueryError',
    'Mapper',
    'OperationalError',
    'Orm',
    'Profiler',
    'ProgrammingError',
    'QueryError',
    'Result',
    'Sql',
    'UnsupportedValueType',
    'ValidationError',
    'connect',
    'escape',
    'escape_identifier',
    'prepare',
]
