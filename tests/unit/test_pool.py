import threading
import time
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from smart_compress.pool import BatchScheduler, BufferPool, ItemResult, run_parallel


def test_buffer_pool_preallocates_zeroed_buffers():
    pool = BufferPool(16, 3)
    assert len(pool) == 3
    buf = pool.get_buffer()
    assert buf.size == 16
    assert not buf.any()
    assert len(pool) == 2


def test_buffer_pool_miss_allocates():
    pool = BufferPool(8, 1)
    first = pool.get_buffer()
    second = pool.get_buffer()
    assert second.size == 8
    assert first is not second
    assert len(pool) == 0


def test_buffer_pool_returns_are_cleared():
    pool = BufferPool(8, 1)
    buf = pool.get_buffer()
    buf.fill(7)
    pool.return_buffer(buf)
    again = pool.get_buffer()
    assert again is buf
    assert not again.any()


def test_buffer_pool_drops_mismatched_and_excess_buffers():
    pool = BufferPool(8, 1)
    pool.return_buffer(np.ones(4, dtype=np.uint8))
    assert len(pool) == 1

    extra = np.ones(8, dtype=np.uint8)
    pool.return_buffer(extra)
    assert len(pool) == 1


def test_buffer_pool_with_zero_capacity():
    pool = BufferPool(8, 0)
    buf = pool.get_buffer()
    pool.return_buffer(buf)
    assert len(pool) == 0


def test_buffer_pool_concurrent_get_and_return():
    pool = BufferPool(64, 4)
    lock = threading.Lock()
    held = set()
    sizes = []
    shared = []

    def worker(marker):
        for _ in range(200):
            buf = pool.get_buffer()
            with lock:
                if id(buf) in held:
                    shared.append(id(buf))
                held.add(id(buf))
                sizes.append(len(pool))
            assert not buf.any()
            buf.fill(marker)
            time.sleep(0)
            assert (buf == marker).all()
            with lock:
                held.discard(id(buf))
            pool.return_buffer(buf)

    with ThreadPoolExecutor(max_workers=8) as executor:
        list(executor.map(worker, range(1, 9)))

    assert shared == []
    assert max(sizes) <= 4
    assert len(pool) == 4


def test_run_parallel_keeps_task_order():
    assert run_parallel(lambda x: x * x, list(range(50))) == [x * x for x in range(50)]
    assert run_parallel(lambda x: x, []) == []


def test_chunk_size():
    scheduler = BatchScheduler(max_workers=4)
    assert scheduler.chunk_size(100) == 12
    assert scheduler.chunk_size(3) == 1


def _double_or_fail(x):
    if x == 7:
        raise ValueError('item 7 is broken')
    return x * 2


@pytest.mark.parametrize('workers', [1, 2, 4, 8])
def test_process_batch_isolates_failures(workers):
    results = BatchScheduler(max_workers=workers).process_batch(range(20), _double_or_fail)

    assert len(results) == 20
    failed = [i for i, result in enumerate(results) if not result.ok]
    assert failed == [7]
    assert isinstance(results[7].error, ValueError)
    assert [r.value for i, r in enumerate(results) if i != 7] == [x * 2 for x in range(20) if x != 7]


def test_process_batch_empty():
    assert BatchScheduler(max_workers=2).process_batch([], _double_or_fail) == []


def test_item_result_unwrap():
    assert ItemResult(value=3).unwrap() == 3
    with pytest.raises(KeyError):
        ItemResult(error=KeyError('missing')).unwrap()
