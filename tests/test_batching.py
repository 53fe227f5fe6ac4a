import asyncio

import pytest

from rabia.batching import (
    AsyncCommandBatcher,
    BatchConfig,
    BatchProcessor,
    BatchStats,
    CommandBatcher,
)
from rabia.errors import InternalError, RabiaTimeoutError, StateMachineError
from rabia.types import Command, CommandBatch


def _commands(count):
    return [Command.create(f"SET key{i} value{i}") for i in range(count)]


def _drive(batcher, commands):
    batches = [b for b in (batcher.add_command(c) for c in commands) if b is not None]
    rest = batcher.flush()
    if rest is not None:
        batches.append(rest)
    return batches


def test_command_batcher_basic():
    batcher = CommandBatcher(
        BatchConfig(max_batch_size=3, max_batch_delay=0.1, buffer_capacity=10, adaptive=False)
    )
    assert batcher.add_command(Command.create("SET key1 value1")) is None
    assert batcher.add_command(Command.create("SET key2 value2")) is None
    batch = batcher.add_command(Command.create("SET key3 value3"))
    assert batch is not None
    assert len(batch.commands) == 3


def test_batcher_flush():
    batcher = CommandBatcher(BatchConfig())
    batcher.add_command(Command.create("SET key1 value1"))
    batcher.add_command(Command.create("SET key2 value2"))
    batch = batcher.flush()
    assert len(batch.commands) == 2
    assert batcher.is_empty()
    assert batcher.flush() is None


def test_batch_preserves_command_order():
    commands = _commands(3)
    batcher = CommandBatcher(BatchConfig(max_batch_size=3, max_batch_delay=60, adaptive=False))
    batches = _drive(batcher, commands)
    assert [c.id for c in batches[0].commands] == [c.id for c in commands]


def test_fixed_batching_size_10():
    batcher = CommandBatcher(
        BatchConfig(max_batch_size=10, max_batch_delay=60, buffer_capacity=200, adaptive=False)
    )
    batches = _drive(batcher, _commands(100))
    assert len(batches) == 10
    assert all(len(b.commands) == 10 for b in batches)


def test_adaptive_batching_uses_max_size():
    batcher = CommandBatcher(
        BatchConfig(max_batch_size=20, max_batch_delay=60, buffer_capacity=200, adaptive=True)
    )
    batches = _drive(batcher, _commands(100))
    assert len(batches) == 5
    assert batcher.stats.adaptive_adjustments == 0


def test_optimized_pipeline_leaves_remainder_for_flush():
    batcher = CommandBatcher(
        BatchConfig(max_batch_size=10, max_batch_delay=60, buffer_capacity=100, adaptive=False)
    )
    batches = _drive(batcher, _commands(55))
    assert [len(b.commands) for b in batches] == [10, 10, 10, 10, 10, 5]


def test_peak_streaming_keeps_every_command():
    batcher = CommandBatcher(
        BatchConfig(max_batch_size=500, max_batch_delay=60, buffer_capacity=10000, adaptive=True)
    )
    batches = _drive(batcher, _commands(5000))
    assert sum(len(b.commands) for b in batches) == 5000
    assert len(batches) == 10


def test_parallel_nodes_batch_counts():
    total = 0
    for _ in range(5):
        batcher = CommandBatcher(
            BatchConfig(max_batch_size=100, max_batch_delay=60, buffer_capacity=1000, adaptive=True)
        )
        total += len(_drive(batcher, _commands(1000)))
    assert total == 50


def test_timeout_flush():
    batcher = CommandBatcher(BatchConfig(max_batch_size=10, max_batch_delay=0, adaptive=False))
    batch = batcher.add_command(Command.create("SET a 1"))
    assert batch is not None
    assert len(batch.commands) == 1
    assert batcher.stats.flush_timeouts == 1


def test_buffer_overflow():
    batcher = CommandBatcher(
        BatchConfig(max_batch_size=10, max_batch_delay=60, buffer_capacity=2, adaptive=False)
    )
    batcher.add_command(Command.create("SET a 1"))
    batcher.add_command(Command.create("SET b 2"))
    with pytest.raises(InternalError, match="Command buffer overflow"):
        batcher.add_command(Command.create("SET c 3"))
    assert batcher.stats.commands_dropped == 1
    assert batcher.buffer_len() == 2


def test_update_config_shrinks_batches():
    batcher = CommandBatcher(BatchConfig(max_batch_size=10, max_batch_delay=60, adaptive=False))
    for command in _commands(3):
        assert batcher.add_command(command) is None
    batcher.update_config(BatchConfig(max_batch_size=3, max_batch_delay=60, adaptive=False))
    batch = batcher.add_command(Command.create("SET x y"))
    assert len(batch.commands) == 3
    assert batcher.buffer_len() == 1


def test_stats_record_batch():
    stats = BatchStats()
    stats.record_batch(4)
    stats.record_batch(2)
    assert stats.total_commands == 6
    assert stats.total_batches == 2
    assert stats.average_batch_size == 3.0


def test_batcher_stats_after_batches():
    batcher = CommandBatcher(BatchConfig(max_batch_size=2, max_batch_delay=60, adaptive=False))
    _drive(batcher, _commands(5))
    assert batcher.stats.total_commands == 5
    assert batcher.stats.total_batches == 3


@pytest.mark.asyncio
async def test_async_command_batcher():
    batcher = AsyncCommandBatcher(
        BatchConfig(max_batch_size=2, max_batch_delay=0.05, buffer_capacity=10, adaptive=False)
    )
    batcher.add_command(Command.create("SET key1 value1"))
    batcher.add_command(Command.create("SET key2 value2"))
    batch = await batcher.next_batch()
    assert len(batch.commands) == 2
    await batcher.close()


@pytest.mark.asyncio
async def test_async_batcher_timeout():
    batcher = AsyncCommandBatcher(
        BatchConfig(max_batch_size=10, max_batch_delay=0.05, buffer_capacity=10, adaptive=False)
    )
    batcher.add_command(Command.create("SET key1 value1"))
    batch = await batcher.next_batch_timeout(0.5)
    assert len(batch.commands) == 1
    await batcher.close()


@pytest.mark.asyncio
async def test_async_batcher_times_out_without_commands():
    async with AsyncCommandBatcher(BatchConfig(max_batch_delay=1.0)) as batcher:
        with pytest.raises(RabiaTimeoutError):
            await batcher.next_batch_timeout(0.02)
        assert batcher.try_next_batch() is None


@pytest.mark.asyncio
async def test_async_batcher_closed():
    batcher = AsyncCommandBatcher(BatchConfig(max_batch_delay=1.0))
    batcher.start()
    await batcher.close()
    assert await batcher.next_batch() is None
    with pytest.raises(InternalError):
        batcher.add_command(Command.create("SET a 1"))
    with pytest.raises(InternalError):
        await batcher.next_batch_timeout(0.1)


def test_async_batcher_rejects_zero_delay():
    with pytest.raises(ValueError):
        AsyncCommandBatcher(BatchConfig(max_batch_delay=0))


@pytest.mark.asyncio
async def test_batch_processor():
    processor = BatchProcessor().with_parallel(False)
    batch = CommandBatch.create(
        [Command.create("SET key1 value1"), Command.create("SET key2 value2")]
    )

    async def handle(cmd):
        return b"processed: " + cmd.data

    results = await processor.process_batch(batch, handle)
    assert len(results) == 2
    assert results[0].startswith(b"processed:")
    assert results[1] == b"processed: SET key2 value2"


@pytest.mark.asyncio
async def test_batch_processor_parallel_keeps_order():
    processor = BatchProcessor().with_parallel(True)
    batch = CommandBatch.create([Command.create(f"CMD {i}") for i in range(5)])

    async def handle(cmd):
        index = int(cmd.data.split()[1])
        await asyncio.sleep(0.01 * (5 - index))
        return cmd.data

    results = await processor.process_batch(batch, handle)
    assert results == [f"CMD {i}".encode() for i in range(5)]


@pytest.mark.asyncio
async def test_batch_processor_transform():
    processor = BatchProcessor().with_transform(lambda c: Command.create(c.data.upper()))
    batch = CommandBatch.create([Command.create("set a b")])

    async def handle(cmd):
        return cmd.data

    assert await processor.process_batch(batch, handle) == [b"SET A B"]


@pytest.mark.asyncio
async def test_batch_processor_propagates_errors():
    batch = CommandBatch.create([Command.create("a"), Command.create("b")])

    async def handle(cmd):
        if cmd.data == b"b":
            raise StateMachineError("boom")
        return cmd.data

    for processor in (BatchProcessor(), BatchProcessor().with_parallel(True)):
        with pytest.raises(StateMachineError):
            await processor.process_batch(batch, handle)