from datetime import date

import pytest

from cache import CacheProperties, ChartCache
from models import Budget


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_properties_are_order_sensitive_and_stable() -> None:
    first = CacheProperties().add("chart").add(date(2017, 1, 1)).add([1, 2])
    again = CacheProperties().add("chart").add(date(2017, 1, 1)).add([1, 2])
    swapped = CacheProperties().add(date(2017, 1, 1)).add("chart").add([1, 2])
    assert first.fingerprint() == again.fingerprint()
    assert first.fingerprint() != swapped.fingerprint()


def test_models_are_keyed_by_table_and_id() -> None:
    one = CacheProperties().add([Budget(id=1)]).fingerprint()
    two = CacheProperties().add([Budget(id=2)]).fingerprint()
    assert one != two


def test_unknown_property_types_are_rejected() -> None:
    with pytest.raises(TypeError):
        CacheProperties().add(object())


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache = ChartCache(ttl_secs=60, max_entries=10, clock=clock)
    props = cache.properties(1, "chart")
    cache.store(props, {"count": 0})
    assert cache.has(props)
    assert cache.get(props) == {"count": 0}

    clock.now += 61
    assert cache.get(props) is None
    assert len(cache) == 0


def test_touch_invalidates_only_that_user() -> None:
    cache = ChartCache(ttl_secs=60, max_entries=10, clock=FakeClock())
    mine = cache.properties(1, "chart")
    theirs = cache.properties(2, "chart")
    cache.store(mine, "mine")
    cache.store(theirs, "theirs")

    cache.touch(1)

    assert cache.get(cache.properties(1, "chart")) is None
    assert cache.get(cache.properties(2, "chart")) == "theirs"


def test_oldest_entries_are_evicted() -> None:
    cache = ChartCache(ttl_secs=60, max_entries=2, clock=FakeClock())
    keys = [cache.properties(1, f"chart-{i}") for i in range(3)]
    for index, props in enumerate(keys):
        cache.store(props, index)
    assert not cache.has(keys[0])
    assert cache.has(keys[1]) and cache.has(keys[2])


def test_purge_expired_counts_removed_entries() -> None:
    clock = FakeClock()
    cache = ChartCache(ttl_secs=10, max_entries=10, clock=clock)
    cache.store(cache.properties(1, "a"), 1)
    clock.now += 5
    cache.store(cache.properties(1, "b"), 2)
    clock.now += 6
    assert cache.purge_expired() == 1
    assert len(cache) == 1
