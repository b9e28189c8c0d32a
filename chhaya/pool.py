#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

Reusable 2D buffer cache keyed by grid shape.

A `MemoryPool` is an explicit object owned by the caller and handed to each
projection; there is no module-level pool. A buffer is either available
(pool-owned) or checked out (caller-owned), never both. Buffers are zeroed
when they are checked out, not when they are returned.

"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np

logger = logging.getLogger("chhaya.pool")

Shape = Tuple[int, int]


def _as_shape(shape) -> Shape:
    return (int(shape[0]), int(shape[1]))


class MemoryPool:
    """
    Per-shape bounded lists of float buffers.

    Args:
        max_size: buffers kept per shape when they are released.
        high_water_mark: per-shape count above which `cleanup()` trims a list
            back to `max_size` (lists only grow past `max_size` via `warm()`).
        dtype: dtype of allocated buffers.
    """

    def __init__(self, max_size: int = 10, high_water_mark: int = 20, dtype=np.float64):
        if max_size < 0:
            raise ValueError("max_size must be >= 0")
        if high_water_mark < max_size:
            raise ValueError("high_water_mark must be >= max_size")

        self.max_size = int(max_size)
        self.high_water_mark = int(high_water_mark)
        self.dtype = np.dtype(dtype)

        self._available: Dict[Shape, List[np.ndarray]] = {}
        self._shape_locks: Dict[Shape, threading.Lock] = {}
        self._checked_out: Dict[int, np.ndarray] = {}
        self._manager_lock = threading.Lock()

        self.hits = 0
        self.misses = 0
        self.returned = 0
        self.dropped = 0

    def _lock_for(self, shape: Shape) -> threading.Lock:
        with self._manager_lock:
            lock = self._shape_locks.get(shape)
            if lock is None:
                lock = self._shape_locks[shape] = threading.Lock()
                self._available[shape] = []
            return lock

    def checkout(self, shape) -> np.ndarray:
        """Hand out a zeroed buffer of `shape`, reusing an available one if possible."""
        shape = _as_shape(shape)
        buf: Optional[np.ndarray] = None

        with self._lock_for(shape):
            free = self._available[shape]
            if free:
                buf = free.pop()

        if buf is None:
            buf = np.zeros(shape, dtype=self.dtype)
            hit = False
        else:
            buf.fill(0)
            hit = True

        with self._manager_lock:
            if hit:
                self.hits += 1
            else:
                self.misses += 1
            self._checked_out[id(buf)] = buf
        return buf

    def release(self, buf: np.ndarray) -> bool:
        """
        Give a checked-out buffer back.

        Buffers this pool did not hand out are ignored. Returns True when the
        buffer was kept for reuse, False when it was dropped or ignored.
        """
        with self._manager_lock:
            if self._checked_out.pop(id(buf), None) is None:
                return False

        shape = _as_shape(buf.shape)
        with self._lock_for(shape):
            free = self._available[shape]
            keep = len(free) < self.max_size
            if keep:
                free.append(buf)

        with self._manager_lock:
            if keep:
                self.returned += 1
            else:
                self.dropped += 1
        return keep

    @contextmanager
    def borrowed(self, shape) -> Iterator[np.ndarray]:
        buf = self.checkout(shape)
        try:
            yield buf
        finally:
            self.release(buf)

    def warm(self, shape, count: int) -> int:
        """Pre-allocate up to `count` available buffers of `shape` (bounded by the high-water mark)."""
        shape = _as_shape(shape)
        with self._lock_for(shape):
            free = self._available[shape]
            n_new = max(0, min(int(count), self.high_water_mark) - len(free))
            for _ in range(n_new):
                free.append(np.zeros(shape, dtype=self.dtype))
        logger.debug("warmed %d buffer(s) of shape %s", n_new, shape)
        return n_new

    def cleanup(self, force: bool = False) -> int:
        """
        Shrink over-grown shape lists back to `max_size`.

        A list is trimmed once it reaches the high-water mark, or whenever it
        exceeds `max_size` when `force` is set. Returns the number of buffers
        freed.
        """
        with self._manager_lock:
            shapes = list(self._shape_locks.items())

        freed = 0
        for shape, lock in shapes:
            with lock:
                free = self._available[shape]
                limit = self.max_size if force else self.high_water_mark - 1
                if len(free) > limit:
                    freed += len(free) - self.max_size
                    del free[self.max_size:]
        if freed:
            logger.debug("pool cleanup freed %d buffer(s)", freed)
        return freed

    def reset(self) -> None:
        """Forget every buffer and zero the counters."""
        with self._manager_lock:
            self._available.clear()
            self._shape_locks.clear()
            self._checked_out.clear()
            self.hits = self.misses = self.returned = self.dropped = 0

    @property
    def checked_out(self) -> int:
        with self._manager_lock:
            return len(self._checked_out)

    def available(self, shape=None) -> int:
        with self._manager_lock:
            if shape is not None:
                return len(self._available.get(_as_shape(shape), ()))
            return sum(len(v) for v in self._available.values())

    def stats(self) -> Dict[str, object]:
        with self._manager_lock:
            requests = self.hits + self.misses
            n_available = sum(len(v) for v in self._available.values())
            nbytes = sum(b.nbytes for v in self._available.values() for b in v)
            return {
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": self.hits / requests if requests else 0.0,
                "returned": self.returned,
                "dropped": self.dropped,
                "checked_out": len(self._checked_out),
                "available": n_available,
                "shapes": len(self._available),
                "bytes_available": nbytes,
            }


class BufferSource:
    """
    Allocation front-end of one projection.

    Whether a pool is in use is decided once, when the source is built;
    without a pool every checkout is a fresh ``np.zeros`` and releases are
    no-ops.
    """

    def __init__(self, pool: Optional[MemoryPool] = None):
        self.pool = pool
        self.enabled = pool is not None

    def checkout(self, shape) -> np.ndarray:
        if self.enabled:
            return self.pool.checkout(shape)
        return np.zeros(_as_shape(shape), dtype=np.float64)

    def release(self, buf: Optional[np.ndarray]) -> None:
        if self.enabled and buf is not None:
            self.pool.release(buf)

    def stats(self) -> Optional[Dict[str, object]]:
        return self.pool.stats() if self.enabled else None
