"""Explicit read-through cache shared by the knowledge store and catalog client."""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

_MISSING = object()


class TTLCache:
    """Small key/value cache with optional per-entry expiry."""

    def __init__(
        self,
        default_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Purpose: Create an empty cache.
        Inputs/Outputs: default_ttl in seconds (None means entries never expire) and a
            clock callable; no return value.
        Side Effects / State: Allocates the entry map.
        Dependencies: time.monotonic by default.
        Failure Modes: None.
        If Removed: Knowledge JSON and products are re-read on every request.
        Testing Notes: Inject a fake clock to step past a TTL deterministically.
        """
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[Any, Optional[float]]] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            self._entries.pop(key, None)
            return default
        return value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        expires_at = self._clock() + ttl if ttl is not None else None
        self._entries[key] = (value, expires_at)

    def clear(self) -> None:
        self._entries.clear()

    def get_or_load(
        self,
        key: Hashable,
        loader: Callable[[], Any],
        ttl: Optional[float] = None,
    ) -> Any:
        """Purpose: Return a cached value or populate it from loader.
        Inputs/Outputs: key, a zero-arg loader, optional ttl; returns the value.
        Side Effects / State: Stores the loaded value unless the loader returned None.
        Dependencies: get/set.
        Failure Modes: Loader exceptions propagate; nothing is cached in that case.
        If Removed: Callers must hand-roll the check-then-fill sequence.
        Testing Notes: Loader runs once for repeated reads within the TTL.
        """
        # Concurrent fills simply load twice; the last write wins.
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = loader()
        if value is not None:
            self.set(key, value, ttl)
        return value

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        return len(self._entries)
