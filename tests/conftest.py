import pytest

from alpo.utils.logger import LoggerManager


@pytest.fixture(scope="session", autouse=True)
def log_to_tmp(tmp_path_factory):
    """Keep log files produced during the run out of the working tree."""
    LoggerManager.configure(log_dir=str(tmp_path_factory.mktemp("logs")))
    yield
