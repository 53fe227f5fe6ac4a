"""Reusable byte buffers and string builders, pooled by size class."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from typing import Generic, TypeVar

__all__ = [
    "PoolConfig",
    "PoolStats",
    "MemoryPool",
    "PooledBuffer",
    "get_pooled_buffer",
    "StringPool",
    "PooledString",
]

_SMALL_CAPACITY = 1024
_MEDIUM_CAPACITY = 8192
_LARGE_CAPACITY = 65536
_SMALL_STRING_CAPACITY = 256
_LARGE_STRING_CAPACITY = 1024
_WARM_UP_COUNT = 10

ItemT = TypeVar("ItemT")


@dataclass(frozen=True)
class PoolConfig:
    """Buffer sizes used for warming up and the per-size pool limit."""

    small_buffer_size: int = _SMALL_CAPACITY
    medium_buffer_size: int = _MEDIUM_CAPACITY
    large_buffer_size: int = _LARGE_CAPACITY
    max_pool_size: int = 100


@dataclass(frozen=True)
class PoolStats:
    """Number of idle buffers held in each size class."""

    small_buffers_available: int
    medium_buffers_available: int
    large_buffers_available: int


class _Shelf(Generic[ItemT]):
    """A thread-safe queue of idle pooled items."""

    def __init__(self, max_size: int) -> None:
        self._items: deque[ItemT] = deque()
        self._lock = threading.Lock()
        self.max_size = max_size

    def pop(self) -> ItemT | None:
        with self._lock:
            return self._items.popleft() if self._items else None

    def push(self, item: ItemT, *, bounded: bool = True) -> bool:
        with self._lock:
            if bounded and len(self._items) >= self.max_size:
                return False
            self._items.append(item)
            return True

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


def _check_size(value: int, name: str) -> None:
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")


class PooledBuffer:
    """A byte buffer that goes back to its pool when released.

    A buffer is returned only if its capacity is still the one it was handed
    out with, so buffers that grew or gave their contents away are discarded.
    """

    def __init__(
        self,
        buffer: bytearray,
        capacity: int,
        shelf: _Shelf[tuple[bytearray, int]],
        original_capacity: int,
    ) -> None:
        self._buffer = buffer
        self._capacity = capacity
        self._shelf = shelf
        self._original_capacity = original_capacity
        self._released = False

    @property
    def capacity(self) -> int:
        """Bytes the buffer can hold before it has to grow."""
        return self._capacity

    def _ensure_live(self) -> None:
        if self._released:
            raise ValueError("buffer has been released to its pool")

    def _grow(self) -> None:
        needed = len(self._buffer)
        if needed > self._capacity:
            self._capacity = max(self._capacity * 2, needed)

    def extend(self, data: bytes | bytearray | memoryview) -> None:
        """Append bytes to the buffer."""
        self._ensure_live()
        self._buffer.extend(data)
        self._grow()

    def resize(self, new_len: int, value: int) -> None:
        """Truncate the buffer or pad it with value up to new_len bytes."""
        self._ensure_live()
        _check_size(new_len, "new_len")
        current = len(self._buffer)
        if new_len <= current:
            del self._buffer[new_len:]
        else:
            self._buffer.extend(bytes([value]) * (new_len - current))
            self._grow()

    def take_bytes(self) -> bytes:
        """Return the contents and leave the buffer empty with no capacity."""
        self._ensure_live()
        data = bytes(self._buffer)
        self._buffer = bytearray()
        self._capacity = 0
        return data

    def as_bytes(self) -> bytes:
        """Return a copy of the contents."""
        return bytes(self._buffer)

    def clear(self) -> None:
        """Drop the contents but keep the capacity."""
        self._ensure_live()
        self._buffer.clear()

    def release(self) -> None:
        """Hand the buffer back to its pool; later calls do nothing."""
        if getattr(self, "_released", True):
            return
        self._released = True
        buffer, capacity = self._buffer, self._capacity
        self._buffer = bytearray()
        self._capacity = 0
        buffer.clear()
        if capacity == self._original_capacity:
            self._shelf.push((buffer, capacity))

    def __len__(self) -> int:
        return len(self._buffer)

    def __bytes__(self) -> bytes:
        return bytes(self._buffer)

    def __enter__(self) -> PooledBuffer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    def __del__(self) -> None:
        self.release()


class MemoryPool:
    """Pools of small (1 KiB), medium (8 KiB) and large (64 KiB+) buffers."""

    def __init__(self, config: PoolConfig | None = None) -> None:
        config = config if config is not None else PoolConfig()
        self.max_pool_size = config.max_pool_size
        self._small: _Shelf[tuple[bytearray, int]] = _Shelf(config.max_pool_size)
        self._medium: _Shelf[tuple[bytearray, int]] = _Shelf(config.max_pool_size)
        self._large: _Shelf[tuple[bytearray, int]] = _Shelf(config.max_pool_size)

    def get_buffer(self, min_size: int) -> PooledBuffer:
        """Return an empty buffer from the size class suited to min_size."""
        _check_size(min_size, "min_size")
        if min_size <= _SMALL_CAPACITY:
            shelf, capacity = self._small, _SMALL_CAPACITY
        elif min_size <= _MEDIUM_CAPACITY:
            shelf, capacity = self._medium, _MEDIUM_CAPACITY
        else:
            shelf, capacity = self._large, max(_LARGE_CAPACITY, min_size)

        item = shelf.pop()
        buffer, buffer_capacity = item if item is not None else (bytearray(), capacity)
        return PooledBuffer(buffer, buffer_capacity, shelf, capacity)

    def warm_up(self) -> None:
        """Put ten fresh buffers of each default size into the pool."""
        defaults = PoolConfig()
        for _ in range(_WARM_UP_COUNT):
            self._small.push((bytearray(), defaults.small_buffer_size), bounded=False)
            self._medium.push((bytearray(), defaults.medium_buffer_size), bounded=False)
            self._large.push((bytearray(), defaults.large_buffer_size), bounded=False)

    def stats(self) -> PoolStats:
        """Return how many idle buffers each size class holds."""
        return PoolStats(len(self._small), len(self._medium), len(self._large))

    def clear(self) -> None:
        """Discard all idle buffers."""
        self._small.clear()
        self._medium.clear()
        self._large.clear()


_thread_state = threading.local()


def _local_pool() -> MemoryPool:
    pool = getattr(_thread_state, "pool", None)
    if pool is None:
        pool = MemoryPool()
        pool.warm_up()
        _thread_state.pool = pool
    return pool


def get_pooled_buffer(min_size: int) -> PooledBuffer:
    """Return a buffer from this thread's pre-warmed pool."""
    return _local_pool().get_buffer(min_size)


class PooledString:
    """A string builder that goes back to its pool when released."""

    def __init__(self, parts: list[str], shelf: _Shelf[list[str]]) -> None:
        self._parts = parts
        self._shelf = shelf
        self._released = False

    def _ensure_live(self) -> None:
        if self._released:
            raise ValueError("string has been released to its pool")

    def push_str(self, text: str) -> None:
        """Append text."""
        self._ensure_live()
        self._parts.append(text)

    def clear(self) -> None:
        """Drop the contents."""
        self._ensure_live()
        self._parts.clear()

    def into_string(self) -> str:
        """Return the built string without handing the builder back to the pool."""
        self._ensure_live()
        self._released = True
        text = "".join(self._parts)
        self._parts = []
        return text

    def release(self) -> None:
        """Hand the builder back to its pool; later calls do nothing."""
        if getattr(self, "_released", True):
            return
        self._released = True
        parts = self._parts
        self._parts = []
        parts.clear()
        self._shelf.push(parts)

    def __str__(self) -> str:
        return "".join(self._parts)

    def __len__(self) -> int:
        return sum(len(part) for part in self._parts)

    def __enter__(self) -> PooledString:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    def __del__(self) -> None:
        self.release()


class StringPool:
    """Pools of string builders for short and long command strings."""

    def __init__(self, max_pool_size: int = 50) -> None:
        self.max_pool_size = max_pool_size
        self._small: _Shelf[list[str]] = _Shelf(max_pool_size)
        self._large: _Shelf[list[str]] = _Shelf(max_pool_size)

    def get_string(self, min_capacity: int) -> PooledString:
        """Return an empty builder from the class suited to min_capacity."""
        _check_size(min_capacity, "min_capacity")
        shelf = self._small if min_capacity <= _SMALL_STRING_CAPACITY else self._large
        parts = shelf.pop()
        return PooledString(parts if parts is not None else [], shelf)