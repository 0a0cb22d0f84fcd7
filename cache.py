import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from config import get_settings

logger = logging.getLogger(__name__)


def _normalize(prop: object) -> object:
    if prop is None or isinstance(prop, (bool, int, float, str)):
        return prop
    if isinstance(prop, Enum):
        return prop.value
    if isinstance(prop, (date, datetime)):
        return prop.isoformat()
    if isinstance(prop, Decimal):
        return str(prop)
    if isinstance(prop, (set, frozenset)):
        return sorted((_normalize(p) for p in prop), key=repr)
    if isinstance(prop, (list, tuple)):
        return [_normalize(p) for p in prop]
    if isinstance(prop, dict):
        return {str(k): _normalize(v) for k, v in prop.items()}
    table = getattr(prop, "__tablename__", None)
    if table is not None:
        return f"{table}:{getattr(prop, 'id', None)}"
    raise TypeError(f"Cannot use {type(prop).__name__} as a cache property")


class CacheProperties:
    """Collects the parameters of a request and turns them into a cache key."""

    def __init__(self) -> None:
        self._properties: list[object] = []

    def add(self, prop: object) -> "CacheProperties":
        self._properties.append(_normalize(prop))
        return self

    def fingerprint(self) -> str:
        raw = json.dumps(self._properties, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class ChartCache:
    def __init__(
        self,
        ttl_secs: int,
        max_entries: int,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_secs = ttl_secs
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, tuple[float, object]]" = OrderedDict()
        self._generations: dict[int, int] = {}
        self._lock = threading.Lock()

    def generation(self, user_id: int) -> int:
        with self._lock:
            return self._generations.get(user_id, 0)

    def touch(self, user_id: int) -> None:
        """Invalidate every cached payload of ``user_id`` after a write."""
        with self._lock:
            self._generations[user_id] = self._generations.get(user_id, 0) + 1

    def properties(self, user_id: int, name: str) -> CacheProperties:
        return CacheProperties().add(name).add(user_id).add(self.generation(user_id))

    def _lookup(self, key: str) -> Optional[tuple[float, object]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[0] <= self._clock():
            del self._entries[key]
            return None
        return entry

    def has(self, props: CacheProperties) -> bool:
        with self._lock:
            return self._lookup(props.fingerprint()) is not None

    def get(self, props: CacheProperties) -> Optional[object]:
        key = props.fingerprint()
        with self._lock:
            entry = self._lookup(key)
        if entry is None:
            logger.debug(f"chart_cache miss: key={key[:12]}")
            return None
        logger.debug(f"chart_cache hit: key={key[:12]}")
        return entry[1]

    def store(self, props: CacheProperties, payload: object) -> None:
        key = props.fingerprint()
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_secs, payload)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, (exp, _) in self._entries.items() if exp <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _create_chart_cache() -> ChartCache:
    settings = get_settings()
    return ChartCache(settings.cache_ttl_secs, settings.cache_max_entries)


chart_cache = _create_chart_cache()
