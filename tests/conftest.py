import logging
import pathlib
import site

import pytest
from dbagent.agent import dispose_all_engines
from dbagent.orm import Orm

HERE = pathlib.Path(pathlib.Path(__file__).resolve()).parent
site.addsitedir(HERE)


@pytest.fixture(autouse=True)
def clear_engines():
    """Drop registered engines and the ORM agent binding around each test."""
    dispose_all_engines()
    Orm.agent = None
    yield
    dispose_all_engines()
    Orm.agent = None


@pytest.fixture(autouse=True)
def dbagent_log_level(caplog):
    caplog.set_level(logging.DEBUG, logger='dbagent')


pytest_plugins = [
    'tests.fixtures.mocks',
    'tests.fixtures.mysql',
]
