"""Grouping of commands into batches, synchronously or in a background task."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace

from rabia.errors import InternalError, RabiaTimeoutError
from rabia.types import Command, CommandBatch

__all__ = [
    "BatchConfig",
    "BatchStats",
    "CommandBatcher",
    "AsyncCommandBatcher",
    "BatchProcessor",
]

_MIN_ADAPTIVE_BATCH_SIZE = 10
_STOP = object()


@dataclass(frozen=True)
class BatchConfig:
    """Limits that decide when a batch is cut.

    max_batch_delay is in seconds.
    """

    max_batch_size: int = 100
    max_batch_delay: float = 0.010
    buffer_capacity: int = 1000
    adaptive: bool = True


@dataclass
class BatchStats:
    """Counters describing the batches produced so far."""

    total_commands: int = 0
    total_batches: int = 0
    average_batch_size: float = 0.0
    commands_dropped: int = 0
    flush_timeouts: int = 0
    adaptive_adjustments: int = 0

    def record_batch(self, batch_size: int) -> None:
        """Account for one batch of batch_size commands."""
        self.total_commands += batch_size
        self.total_batches += 1
        self.average_batch_size = self.total_commands / self.total_batches


class CommandBatcher:
    """Buffers commands and cuts a batch when it is full or old enough."""

    def __init__(self, config: BatchConfig | None = None) -> None:
        self._config = config if config is not None else BatchConfig()
        self._buffer: deque[Command] = deque()
        self._stats = BatchStats()
        self._last_flush = time.monotonic()
        self._adaptive_batch_size = self._config.max_batch_size

    @property
    def config(self) -> BatchConfig:
        return self._config

    @property
    def stats(self) -> BatchStats:
        """The statistics gathered so far."""
        return self._stats

    def add_command(self, command: Command) -> CommandBatch | None:
        """Buffer a command; return a batch if one is ready.

        Raises InternalError when the buffer is already full.
        """
        if len(self._buffer) >= self._config.buffer_capacity:
            self._stats.commands_dropped += 1
            raise InternalError("Command buffer overflow")

        self._buffer.append(command)

        if len(self._buffer) >= self._current_batch_size():
            return self._flush_batch()

        elapsed = time.monotonic() - self._last_flush
        if elapsed >= self._config.max_batch_delay and self._buffer:
            self._stats.flush_timeouts += 1
            return self._flush_batch()

        return None

    def flush(self) -> CommandBatch | None:
        """Cut a batch from whatever is buffered, or return None if empty."""
        return self._flush_batch() if self._buffer else None

    def update_config(self, config: BatchConfig) -> None:
        """Replace the configuration at run time."""
        self._adaptive_batch_size = config.max_batch_size
        self._config = config

    def buffer_len(self) -> int:
        return len(self._buffer)

    def is_empty(self) -> bool:
        return not self._buffer

    def _current_batch_size(self) -> int:
        if self._config.adaptive:
            return self._adaptive_batch_size
        return self._config.max_batch_size

    def _flush_batch(self) -> CommandBatch:
        size = min(self._current_batch_size(), len(self._buffer))
        commands = [self._buffer.popleft() for _ in range(size)]
        batch = CommandBatch.create(commands)
        self._stats.record_batch(len(batch.commands))
        self._last_flush = time.monotonic()
        if self._config.adaptive:
            self._adjust_adaptive_batch_size()
        return batch

    def _adjust_adaptive_batch_size(self) -> None:
        # Grow when most flushes are size-driven, shrink when most are timeouts.
        stats = self._stats
        size_ratio = stats.total_batches / (stats.flush_timeouts + 1)
        limit = self._config.max_batch_size
        if size_ratio > 2.0 and self._adaptive_batch_size < limit:
            self._adaptive_batch_size = min(self._adaptive_batch_size * 11 // 10, limit)
            stats.adaptive_adjustments += 1
        elif size_ratio < 0.5 and self._adaptive_batch_size > _MIN_ADAPTIVE_BATCH_SIZE:
            self._adaptive_batch_size = max(
                self._adaptive_batch_size * 9 // 10, _MIN_ADAPTIVE_BATCH_SIZE
            )
            stats.adaptive_adjustments += 1


class AsyncCommandBatcher:
    """Batches commands in a background task, flushing on size and on a timer.

    The task starts on first use inside a running event loop, or by start().
    """

    def __init__(self, config: BatchConfig | None = None) -> None:
        self._config = config if config is not None else BatchConfig()
        if self._config.max_batch_delay <= 0:
            raise ValueError("max_batch_delay must be positive for the async batcher")
        self._commands: asyncio.Queue[object] = asyncio.Queue()
        self._batches: asyncio.Queue[object] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    def start(self) -> None:
        """Start the background task; calling it again does nothing."""
        if self._task is None and not self._closed:
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        batcher = CommandBatcher(self._config)
        delay = self._config.max_batch_delay
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        try:
            while True:
                remaining = next_tick - loop.time()
                if remaining <= 0:
                    batch = batcher.flush()
                    if batch is not None:
                        self._batches.put_nowait(batch)
                    next_tick += delay
                    continue
                try:
                    command = await asyncio.wait_for(self._commands.get(), remaining)
                except asyncio.TimeoutError:
                    continue
                if command is _STOP:
                    break
                try:
                    batch = batcher.add_command(command)  # type: ignore[arg-type]
                except InternalError:
                    continue
                if batch is not None:
                    self._batches.put_nowait(batch)
        finally:
            self._batches.put_nowait(_STOP)

    def add_command(self, command: Command) -> None:
        """Queue a command for batching; raises InternalError once stopped."""
        if self._closed:
            raise InternalError("Batcher task has stopped")
        self.start()
        self._commands.put_nowait(command)

    async def next_batch(self) -> CommandBatch | None:
        """Wait for the next batch; return None once the batcher has stopped."""
        self.start()
        item = await self._batches.get()
        if item is _STOP:
            self._batches.put_nowait(_STOP)
            return None
        return item  # type: ignore[return-value]

    def try_next_batch(self) -> CommandBatch | None:
        """Return a ready batch without waiting, or None."""
        try:
            item = self._batches.get_nowait()
        except asyncio.QueueEmpty:
            return None
        if item is _STOP:
            self._batches.put_nowait(_STOP)
            return None
        return item  # type: ignore[return-value]

    async def next_batch_timeout(self, timeout: float) -> CommandBatch:
        """Wait at most timeout seconds for the next batch.

        Raises RabiaTimeoutError on timeout and InternalError once stopped.
        """
        try:
            batch = await asyncio.wait_for(self.next_batch(), timeout)
        except asyncio.TimeoutError:
            raise RabiaTimeoutError("batch receive") from None
        if batch is None:
            raise InternalError("Batcher task has stopped")
        return batch

    async def close(self) -> None:
        """Stop the background task; buffered commands are discarded."""
        if self._closed:
            return
        self._closed = True
        if self._task is None:
            self._batches.put_nowait(_STOP)
            return
        self._commands.put_nowait(_STOP)
        await self._task

    async def __aenter__(self) -> AsyncCommandBatcher:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


@dataclass(frozen=True)
class BatchProcessor:
    """Applies a per-command coroutine function to every command of a batch."""

    transform: Callable[[Command], Command] | None = None
    parallel: bool = False

    def with_transform(self, transform: Callable[[Command], Command]) -> BatchProcessor:
        """Return a processor that rewrites each command before processing."""
        return replace(self, transform=transform)

    def with_parallel(self, parallel: bool) -> BatchProcessor:
        """Return a processor that runs commands concurrently when parallel is set."""
        return replace(self, parallel=parallel)

    async def process_batch(
        self,
        batch: CommandBatch,
        processor: Callable[[Command], Awaitable[bytes]],
    ) -> list[bytes]:
        """Process every command and return the results in command order."""
        commands = list(batch.commands)
        if self.transform is not None:
            commands = [self.transform(command) for command in commands]

        if self.parallel and len(commands) > 1:
            return list(await asyncio.gather(*(processor(command) for command in commands)))
        return [await processor(command) for command in commands]