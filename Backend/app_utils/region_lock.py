"""
Region locks

Writers that may create or merge a ticket lock every grid cell their
search box touches. Two reports closer than the search radius always share
a cell (each box contains the other report's point), so they serialise.

Cells above POLAR_LATITUDE collapse into a single polar key per category,
otherwise a box near the pole would span thousands of longitude cells.
The grid is never finer than the box height, which keeps a box below the
polar cap to a few dozen cells.
"""
import math
import hashlib
import threading
import weakref
from contextlib import contextmanager, ExitStack

from app_utils.constants import EARTH_RADIUS_METERS, LOCK_GRID_DEGREES

POLAR_LATITUDE = 89.0


def grid_for_radius(radius_m):
    return max(LOCK_GRID_DEGREES, 2 * math.degrees(radius_m / EARTH_RADIUS_METERS))


class RegionLocks:
    """In-process lock table keyed by (category, cell)."""

    def __init__(self, grid_degrees=LOCK_GRID_DEGREES):
        self.grid_degrees = grid_degrees
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def keys_for(self, category, box):
        g = self.grid_degrees
        cat = getattr(category, "value", category)
        keys = set()

        if box.max_lat >= POLAR_LATITUDE:
            keys.add(f"{cat}:polar:N")
        if box.min_lat <= -POLAR_LATITUDE:
            keys.add(f"{cat}:polar:S")

        lat_lo = max(box.min_lat, -POLAR_LATITUDE)
        lat_hi = min(box.max_lat, POLAR_LATITUDE)
        if lat_lo >= lat_hi:
            return sorted(keys)

        rows = range(math.floor(lat_lo / g), math.floor(lat_hi / g) + 1)
        if box.wraps:
            spans = [(box.min_lon, 180.0), (-180.0, box.max_lon)]
        else:
            spans = [(box.min_lon, box.max_lon)]
        cols = set()
        for lo, hi in spans:
            cols.update(range(math.floor(lo / g), math.floor(hi / g) + 1))

        keys.update(f"{cat}:{r}:{c}" for r in rows for c in cols)
        return sorted(keys)

    def _lock(self, key):
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, keys, timeout=-1):
        """Acquire every key in sorted order; raise TimeoutError if one is not granted in time."""
        with ExitStack() as stack:
            for key in sorted(keys):
                lock = self._lock(key)
                if not lock.acquire(timeout=timeout):
                    raise TimeoutError(f"Timed out waiting for region lock {key}")
                stack.callback(lock.release)
            yield


def advisory_key(key):
    """Stable signed 64-bit id for pg_advisory_xact_lock."""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)
