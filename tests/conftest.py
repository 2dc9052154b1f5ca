import pytest

from blockupload import config, pool as pool_module
from blockupload.pool import WorkerPool

from .fakes import FakeBackend, ZeroSource


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def worker_pool():
    return WorkerPool(workers=4, task_qsize=16)


@pytest.fixture
def zero_source():
    return ZeroSource()


@pytest.fixture(autouse=True)
def restore_settings():
    saved = config.get_settings()
    saved_pool = pool_module._default_pool
    yield
    config.set_settings(saved)
    pool_module._default_pool = saved_pool
