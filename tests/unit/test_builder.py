import pytest
from dbagent.builder import Builder
from dbagent.exceptions import InvalidQueryError
from dbagent.result import Result


@pytest.fixture
def users(agent):
    return Builder(agent, 'users')


class TestSelect:

    def test_full_select(self, users):
        sql = (users.select(['id', 'name'])
               .where('id > ?', [1])
               .or_where('name = ?', ['x'])
               .order_by('id', 'desc')
               .limit(10, 5)
               .to_string())
        assert sql == "SELECT id, name FROM `users` WHERE id > 1 OR name = 'x' ORDER BY id DESC LIMIT 10, 5"

    def test_default_columns(self, users):
        assert users.select().to_string() == 'SELECT * FROM `users`'

    def test_aliased_table_and_joins(self, agent):
        builder = Builder(agent, 'users u')
        sql = (builder.select('u.id, p.title')
               .join('posts p', 'p.user_id = u.id')
               .join_left('tags t', 't.post_id = p.id AND t.kind = ?', ['main'])
               .join_using('profiles', 'user_id')
               .join_left_using('settings', 'user_id')
               .to_string())
        assert sql == (
            'SELECT u.id, p.title FROM users u '
            'JOIN posts p ON p.user_id = u.id '
            "LEFT JOIN tags t ON t.post_id = p.id AND t.kind = 'main' "
            'JOIN profiles USING (user_id) '
            'LEFT JOIN settings USING (user_id)')

    def test_aggregate(self, users):
        assert users.select().aggregate('count', 'u.id').to_string() == \
            'SELECT count(u.id) count_uid FROM `users`'
        assert users.select('id').aggregate('sum', 'score', 'total').to_string() == \
            'SELECT id, sum(score) total FROM `users`'
        assert users.select().aggregate('count').to_string() == \
            'SELECT count(*) count FROM `users`'

    def test_group_by_having(self, users):
        sql = (users.select('active')
               .aggregate('count')
               .group_by('active')
               .having('count(*) > ?', [1])
               .having('active = 1')
               .to_string())
        assert sql == ('SELECT active, count(*) count FROM `users` '
                       'GROUP BY active HAVING count(*) > 1 AND active = 1')

    def test_where_like_escapes_inner_wildcards(self, users):
        sql = users.select().where_like('name LIKE ?', ['%50%_off%']).to_string()
        assert sql == "SELECT * FROM `users` WHERE name LIKE '%50\\\\%\\\\_off%'"

    def test_where_null(self, users):
        sql = users.select().where_null('deleted_at').where_not_null('name').to_string()
        assert sql == 'SELECT * FROM `users` WHERE deleted_at IS NULL AND name IS NOT NULL'

    def test_where_null_or(self, users):
        sql = users.select().where('a = 1').where_null('b', op=Builder.OP_OR).to_string()
        assert sql == 'SELECT * FROM `users` WHERE a = 1 OR b IS NULL'

    def test_where_in(self, users):
        assert users.select().where_in('id', [1, 2]).to_string() == \
            'SELECT * FROM `users` WHERE id IN (1, 2)'
        assert users.select().where_in('id', []).to_string() == \
            'SELECT * FROM `users` WHERE 1 = 0'

    def test_select_resets(self, users):
        users.select('id').where('id = 1')
        assert users.select('name').to_string() == 'SELECT name FROM `users`'


class TestWrite:

    def test_insert(self, users):
        sql = users.insert([{'name': 'a', 'active': True}, {'name': 'b', 'active': False}]).to_string()
        assert sql == "INSERT INTO `users` (`name`, `active`) VALUES ('a', 1), ('b', 0)"

    def test_insert_single(self, users):
        assert users.insert({'name': 'a'}).to_string() == "INSERT INTO `users` (`name`) VALUES ('a')"

    def test_insert_empty(self, users):
        with pytest.raises(InvalidQueryError):
            users.insert([])

    def test_update(self, users):
        sql = users.update({'name': 'x'}).where('id = ?', [1]).limit(1).to_string()
        assert sql == "UPDATE `users` SET `name` = 'x' WHERE id = 1 LIMIT 1"

    def test_delete(self, users):
        sql = users.delete().where('id > ?', [1]).order_by('id').limit(5, 10).to_string()
        assert sql == 'DELETE FROM `users` WHERE id > 1 ORDER BY id LIMIT 5'


class TestRender:

    def test_empty(self, users):
        assert users.to_string() == ''

    def test_no_table(self, agent):
        builder = Builder(agent).select()
        with pytest.raises(InvalidQueryError):
            builder.to_string()
        builder.table = 'users'
        assert str(builder) == 'SELECT * FROM `users`'

    def test_clause_without_statement(self, users):
        with pytest.raises(InvalidQueryError):
            users.where('id = 1').to_string()


class TestExecute:

    def test_get_all(self, users, fake_conn):
        fake_conn.respond(rows=[{'id': '1'}, {'id': '2'}], table='users')
        assert users.select('id').get_all() == [{'id': 1}, {'id': 2}]
        assert fake_conn.executed[-1] == 'SELECT id FROM `users`'

    def test_get(self, users, fake_conn):
        fake_conn.respond(rows=[{'id': 1}])
        assert users.select('id').get(lambda row: row['id']) == 1

    def test_execute(self, users, fake_conn):
        fake_conn.respond(rowcount=3)
        result = users.delete().execute()
        assert isinstance(result, Result)
        assert result.rows_affected == 3
        assert users.delete().execute(lambda r: r.rows_affected) == 0


if __name__ == '__main__':
    __import__('pytest').main([__file__])
