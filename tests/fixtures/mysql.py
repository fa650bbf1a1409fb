import logging
import pathlib
import sys

import dbagent
import docker
import pytest
from testcontainers.mysql import MySqlContainer

from libb import Setting

HERE = pathlib.Path(pathlib.Path(__file__).resolve()).parent
sys.path.insert(0, HERE)
sys.path.append('..')
import config

logger = logging.getLogger(__name__)


def docker_available():
    try:
        docker.from_env().ping()
        return True
    except Exception as e:
        logger.debug(f'Docker not available: {e}')
        return False


@pytest.fixture(scope='session')
def mysql_docker(request):
    """Session-scoped MySQL container using testcontainers.

    Skips the requesting tests when no Docker daemon is reachable.
    """
    if not docker_available():
        pytest.skip('Docker is not available')

    container = MySqlContainer(
        image='mysql:8.0',
        username=config.mysql.username,
        password=config.mysql.password,
        dbname=config.mysql.database,
    )

    try:
        container.start()

        Setting.unlock()
        config.mysql.hostname = container.get_container_host_ip()
        config.mysql.port = int(container.get_exposed_port(3306))
        Setting.lock()

        logger.info(f'MySQL container started at {config.mysql.hostname}:{config.mysql.port}')

        agent = dbagent.connect('mysql', config=config)
        agent.disconnect()

        def finalizer():
            try:
                container.stop()
                logger.info('MySQL container stopped')
            except Exception as e:
                logger.warning(f'Error stopping container: {e}')

        request.addfinalizer(finalizer)
        return container

    except Exception as e:
        logger.error(f'Error setting up mysql container: {e}')
        try:
            container.stop()
        except Exception:
            pass
        raise


def stage_test_data(agent):
    agent.query('drop table if exists users')
    agent.query("""
create table users (
    id int unsigned not null auto_increment,
    name varchar(255) not null,
    active tinyint(1) not null default 0,
    score decimal(10,2) null,
    flag bit(1) null,
    primary key (id)
)
""")
    agent.insert('users', [
        {'name': 'Alice', 'active': 1, 'score': 10.5, 'flag': 1},
        {'name': 'Bob', 'active': 0, 'score': 20, 'flag': 0},
        {'name': 'Charlie', 'active': 1, 'score': None, 'flag': None},
        ])


@pytest.fixture
def conn(mysql_docker):
    """
    Agent fixture with function scope for clean tests.
    Each test gets a fresh agent with reset test data; the type directory
    is rebuilt after staging so it includes the `users` table.
    """
    agent = dbagent.connect('mysql', config=config)
    try:
        stage_test_data(agent)
        agent.disconnect()
        agent.connect()
        yield agent
    finally:
        try:
            agent.disconnect()
        except Exception as e:
            logger.warning(f'Error during connection cleanup: {e}')
