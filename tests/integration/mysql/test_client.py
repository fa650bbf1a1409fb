import config
import dbagent
import pytest
from dbagent.builder import Builder
from dbagent.exceptions import ConnectionFailure, IntegrityViolationError, QueryError
from dbagent.options import AgentOptions
from dbagent.orm import Orm
from dbagent.sql import Sql


def test_type_mapping(mysql_docker, conn):
    """Fetched values are cast by declared column type"""
    row = conn.select_one('users', where='name = ?', params=['Alice'])
    assert row['id'] == 1
    assert row['active'] is True
    assert row['score'] == 10.5
    assert isinstance(row['score'], float)
    assert row['flag'] is True

    row = conn.select_one('users', where='name = ?', params=['Bob'])
    assert row['active'] is False
    assert row['flag'] is False


def test_nulls_stay_null(mysql_docker, conn):
    row = conn.select_one('users', where='name = ?', params=['Charlie'])
    assert row['score'] is None
    assert row['flag'] is None


def test_tinyint_outside_boolean_range(mysql_docker, conn):
    conn.update('users', {'active': 2}, 'name = ?', ['Bob'])
    assert conn.select_one('users', ['active'], 'name = ?', ['Bob'])['active'] == 2


def test_crud(mysql_docker, conn):
    new_id = conn.insert('users', {'name': "O'Hara", 'active': 1, 'score': 1.25})
    assert new_id == 4
    assert conn.get('select name from users where id = ?', [new_id])['name'] == "O'Hara"

    ids = conn.insert('users', [{'name': 'Dana', 'active': 0}, {'name': 'Eve', 'active': 0}])
    assert ids == [5, 6]

    assert conn.update('users', {'score': Sql('score + 1')}, 'id = ?', [new_id]) == 1
    assert conn.select_one('users', ['score'], 'id = ?', [new_id])['score'] == 2.25

    assert conn.delete('users', 'id in (?)', [ids]) == 2
    assert conn.count('users') == 4


def test_prepare_placeholders(mysql_docker, conn):
    rows = conn.get_all('select name from %n where id in (?) order by id', ['users', [1, 3]])
    assert [r['name'] for r in rows] == ['Alice', 'Charlie']

    row = conn.get('select name from users where id = :id and name <> :name',
                   {'id': 2, 'name': 'x'})
    assert row['name'] == 'Bob'


def test_syntax_error(mysql_docker, conn):
    with pytest.raises(QueryError) as exc_info:
        conn.query('select * form users')
    assert exc_info.value.code == 1064
    assert str(exc_info.value).startswith('Syntax error at or near')


def test_duplicate_key(mysql_docker, conn):
    with pytest.raises(IntegrityViolationError):
        conn.insert('users', {'id': 1, 'name': 'dup'})


def test_batch(mysql_docker, conn):
    with conn.batch() as batch:
        batch.queue('update users set score = ? where name = ?', [99, 'Alice'])
        batch.queue('delete from users where name = ?', ['Bob'])
    assert conn.count('users') == 2

    with pytest.raises(QueryError):
        conn.batch().queue('delete from users').queue('insert into missing values (1)').run()
    assert conn.count('users') == 2


def test_builder(mysql_docker, conn):
    rows = (Builder(conn, 'users')
            .select('name')
            .where_like('name LIKE ?', ['%li%'])
            .order_by('name')
            .get_all())
    assert [r['name'] for r in rows] == ['Alice', 'Charlie']


def test_orm(mysql_docker, conn):
    class Users(Orm):
        table = 'users'

    Orm.set_agent(conn)
    users = Users()
    user = users.entity({'name': 'Frank', 'active': 1})
    new_id = users.save(user)
    assert users.find(new_id).name == 'Frank'
    assert users.remove(new_id) == 1
    assert not users.find(new_id).is_found()


def test_bad_database(mysql_docker):
    options = AgentOptions(hostname=config.mysql.hostname, port=config.mysql.port,
                           username=config.mysql.username, password=config.mysql.password,
                           database='no_such_db')
    with pytest.raises(ConnectionFailure) as exc_info:
        dbagent.connect(options)
    assert 'does not exist' in str(exc_info.value)


if __name__ == '__main__':
    __import__('pytest').main([__file__])
