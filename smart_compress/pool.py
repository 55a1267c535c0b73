"""
Shared resources for parallel work: the process-wide worker pool, reusable
scratch buffers and a bounded batch scheduler.
"""

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

import numpy as np

from smart_compress.config import get_config
from smart_compress.logger import get_logger

T = TypeVar('T')
R = TypeVar('R')

_POOL_LOCK = threading.Lock()
_WORKER_POOL: Optional[ThreadPoolExecutor] = None
_SCRATCH_POOLS: Dict[int, 'BufferPool'] = {}


def available_parallelism() -> int:
    return get_config().max_workers


def get_worker_pool() -> ThreadPoolExecutor:
    """Process-wide executor used by the pixel kernels."""
    global _WORKER_POOL
    with _POOL_LOCK:
        if _WORKER_POOL is None:
            _WORKER_POOL = ThreadPoolExecutor(
                max_workers=available_parallelism(),
                thread_name_prefix='smart-compress-kernel',
            )
        return _WORKER_POOL


def run_parallel(fn: Callable[[T], R], tasks: Sequence[T]) -> List[R]:
    """
    Run ``fn`` over ``tasks`` on the shared pool and return results in task order.

    Single tasks (or a single-worker configuration) run inline. ``fn`` must not
    itself call ``run_parallel``.
    """
    if len(tasks) <= 1 or available_parallelism() == 1:
        return [fn(task) for task in tasks]
    return list(get_worker_pool().map(fn, tasks))


class BufferPool:
    """
    Fixed-capacity pool of equally sized, zero-filled uint8 scratch buffers.

    A pool miss allocates a fresh buffer; returning a buffer of the wrong size,
    or into a full pool, drops it.
    """

    def __init__(self, buffer_size: int, capacity: int):
        self.buffer_size = int(buffer_size)
        self.capacity = int(capacity)
        self._buffers: 'queue.Queue[np.ndarray]' = queue.Queue(maxsize=max(self.capacity, 0))

        for _ in range(self.capacity):
            self._buffers.put_nowait(np.zeros(self.buffer_size, dtype=np.uint8))

    def __len__(self) -> int:
        return self._buffers.qsize()

    def get_buffer(self) -> np.ndarray:
        """Take a pooled buffer, or allocate a new one when the pool is empty."""
        try:
            return self._buffers.get_nowait()
        except queue.Empty:
            return np.zeros(self.buffer_size, dtype=np.uint8)

    def return_buffer(self, buffer: np.ndarray) -> None:
        """Zero and re-enqueue ``buffer`` if it matches the pool's buffer size."""
        if len(buffer) != self.buffer_size:
            return
        buffer.fill(0)
        if self.capacity <= 0:
            return
        try:
            self._buffers.put_nowait(buffer)
        except queue.Full:
            pass


def scratch_pool(buffer_size: int) -> BufferPool:
    """Shared scratch pool for the given buffer size, created on first use."""
    with _POOL_LOCK:
        pool = _SCRATCH_POOLS.get(buffer_size)
        if pool is None:
            pool = BufferPool(buffer_size, get_config().scratch_buffers)
            _SCRATCH_POOLS[buffer_size] = pool
        return pool


@dataclass(frozen=True)
class ItemResult:
    """Outcome of one batch item: either ``value`` or ``error`` is set."""

    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.value


class BatchScheduler:
    """Fan independent items out over a bounded pool, keeping input order."""

    def __init__(self, max_workers: Optional[int] = None,
                 logger: Optional[logging.Logger] = None):
        self.max_workers = max(1, int(max_workers or available_parallelism()))
        self.logger = logger or get_logger(__name__)

    def chunk_size(self, item_count: int) -> int:
        # about two chunks per worker
        return max(1, item_count // (self.max_workers * 2))

    def process_batch(self, items: Iterable[T], worker_fn: Callable[[T], R]) -> List[ItemResult]:
        """
        Apply ``worker_fn`` to every item.

        Args:
            items: Independent work items.
            worker_fn: Callable run once per item.

        Returns:
            One ``ItemResult`` per input, in input order. A failing item does
            not affect the others.
        """
        items = list(items)
        if not items:
            return []

        size = self.chunk_size(len(items))
        chunks = [items[i:i + size] for i in range(0, len(items), size)]

        def run_chunk(chunk: List[T]) -> List[ItemResult]:
            results = []
            for item in chunk:
                try:
                    results.append(ItemResult(value=worker_fn(item)))
                except Exception as e:
                    self.logger.warning(f"Batch item failed: {e}")
                    results.append(ItemResult(error=e))
            return results

        workers = min(self.max_workers, len(chunks))
        if workers == 1:
            chunk_results = [run_chunk(chunk) for chunk in chunks]
        else:
            with ThreadPoolExecutor(max_workers=workers,
                                    thread_name_prefix='smart-compress-batch') as executor:
                chunk_results = list(executor.map(run_chunk, chunks))

        return [result for chunk in chunk_results for result in chunk]
