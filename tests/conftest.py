import pytest

from pariter import config


def pytest_addoption(parser):
    parser.addoption(
        "--workers", action="store", type=int, default=3, help="Pool size used by the multi-worker tests"
    )


@pytest.fixture(scope="session")
def n_workers(request):
    return request.config.getoption("--workers")


@pytest.fixture(autouse=True)
def fresh_defaults(monkeypatch):
    """
    Clear the cached process-wide default so tests may change PARITER_WORKERS or fork availability.
    """
    monkeypatch.delenv(config.WORKERS_ENV, raising=False)
    config.default_workers.cache_clear()
    config._report_no_fork.cache_clear()
    yield
    config.default_workers.cache_clear()
    config._report_no_fork.cache_clear()


@pytest.fixture
def no_fork(monkeypatch):
    """Pretend the platform cannot fork."""
    monkeypatch.setattr(config, "fork_available", lambda: False)
