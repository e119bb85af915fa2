import pytest

from adaptive_research.config.settings import reset_settings
from fakes import fast_settings


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings():
    return fast_settings()
