import pytest

from cache import chart_cache


@pytest.fixture(autouse=True)
def _clear_chart_cache():
    chart_cache.clear()
    yield
    chart_cache.clear()
