"""
core/embeddings.py - Embedding Worker Pool
===========================================

Query embedding is the one CPU-heavy step of a request, so it runs on a
small pool of long-lived workers instead of the event loop.

- Each worker owns one thread and its own embedding function, built lazily
  from a factory the first time the worker is used.
- Requests wait on a bounded asyncio queue; when it's full, callers wait.
- The pool grows from min_workers to max_workers when the backlog exceeds
  the idle workers, and idle workers above the minimum shut down after
  idle_timeout seconds.
- A worker whose embedding call raises is discarded and replaced; only the
  job it was running fails.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, Sequence

from config import (
    EMBEDDING_IDLE_TIMEOUT,
    EMBEDDING_MAX_WORKERS,
    EMBEDDING_MIN_WORKERS,
    EMBEDDING_MODEL_NAME,
    EMBEDDING_QUEUE_SIZE,
)

logger = logging.getLogger(__name__)

EmbedFn = Callable[[str], Sequence[float]]
EmbedderFactory = Callable[[], EmbedFn]


class EmbeddingError(Exception):
    """An embedding could not be computed."""


# =============================================================================
# EMBEDDING MODEL
# =============================================================================

def load_sentence_transformer(model_name: str = EMBEDDING_MODEL_NAME) -> EmbedFn:
    """
    Load a sentence-transformers model and return its embed function.

    Vectors are L2-normalized, matching scripts/build_index.py.
    """
    from sentence_transformers import SentenceTransformer

    logger.info("Loading embedding model: %s", model_name)
    model = SentenceTransformer(model_name)

    def embed(text: str) -> list[float]:
        return model.encode(text, normalize_embeddings=True).tolist()

    return embed


class EmbeddingWorker:
    """One worker thread with a lazily created embedding function."""

    def __init__(self, worker_id: int, factory: EmbedderFactory):
        self.worker_id = worker_id
        self._factory = factory
        self._embed: Optional[EmbedFn] = None
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"embedding-worker-{worker_id}",
        )

    def _run(self, text: str) -> list[float]:
        # Runs on the worker thread
        if self._embed is None:
            self._embed = self._factory()
            logger.info("[Worker %s] Embedding model loaded", self.worker_id)
        return [float(v) for v in self._embed(text)]

    async def embed(self, text: str) -> list[float]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._run, text)

    def close(self) -> None:
        self._executor.shutdown(wait=False)


# =============================================================================
# GATEWAY
# =============================================================================

class EmbeddingGateway:
    """
    Bounded pool that turns text into embedding vectors.

    Usage:
        gateway = EmbeddingGateway()
        await gateway.start()
        vector = await gateway.embed("How do I book a session?")
        await gateway.stop()
    """

    def __init__(
        self,
        factory: Optional[EmbedderFactory] = None,
        min_workers: int = EMBEDDING_MIN_WORKERS,
        max_workers: int = EMBEDDING_MAX_WORKERS,
        idle_timeout: float = EMBEDDING_IDLE_TIMEOUT,
        queue_size: int = EMBEDDING_QUEUE_SIZE,
    ):
        if min_workers < 1 or max_workers < min_workers:
            raise ValueError(
                f"Invalid pool size: min_workers={min_workers}, max_workers={max_workers}"
            )
        self._factory = factory or load_sentence_transformer
        self._min_workers = min_workers
        self._max_workers = max_workers
        self._idle_timeout = idle_timeout
        self._queue_size = queue_size

        self._queue: Optional[asyncio.Queue] = None
        self._workers: dict[int, asyncio.Task] = {}
        self._busy = 0
        self._next_worker_id = 0
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def worker_count(self) -> int:
        return len(self._workers)

    async def start(self) -> None:
        if self._running:
            return
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._running = True
        for _ in range(self._min_workers):
            self._spawn_worker()
        logger.info(
            "Embedding worker pool initialized (min=%d, max=%d, idle_timeout=%.0fs)",
            self._min_workers, self._max_workers, self._idle_timeout,
        )

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False

        tasks = list(self._workers.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()

        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            if not future.done():
                future.set_exception(EmbeddingError("Embedding pool stopped"))
            self._queue.task_done()

    async def embed(self, text: str) -> list[float]:
        """
        Embed one text on the pool, waiting for a free worker if needed.

        Raises:
            EmbeddingError: If the worker computing this text failed
        """
        if not self._running:
            await self.start()

        future = asyncio.get_running_loop().create_future()
        await self._queue.put((text, future))
        self._scale_up_if_needed()
        return await future

    def _scale_up_if_needed(self) -> None:
        idle = len(self._workers) - self._busy
        if self._queue.qsize() > idle and len(self._workers) < self._max_workers:
            self._spawn_worker()

    def _spawn_worker(self) -> None:
        self._next_worker_id += 1
        worker = EmbeddingWorker(self._next_worker_id, self._factory)
        self._workers[worker.worker_id] = asyncio.create_task(self._worker_loop(worker))

    async def _worker_loop(self, worker: EmbeddingWorker) -> None:
        crashed = False
        try:
            while True:
                try:
                    text, future = await asyncio.wait_for(
                        self._queue.get(), timeout=self._idle_timeout
                    )
                except asyncio.TimeoutError:
                    if len(self._workers) > self._min_workers:
                        logger.info("[Worker %s] Idle, shutting down", worker.worker_id)
                        return
                    continue

                try:
                    if future.done():
                        # Caller gave up while queued
                        continue
                    self._busy += 1
                    try:
                        vector = await worker.embed(text)
                    finally:
                        self._busy -= 1
                    if not future.done():
                        future.set_result(vector)
                except asyncio.CancelledError:
                    if not future.done():
                        future.set_exception(EmbeddingError("Embedding pool stopped"))
                    raise
                except Exception as e:
                    logger.exception("[Worker %s] Embedding failed, replacing worker", worker.worker_id)
                    if not future.done():
                        future.set_exception(EmbeddingError(f"Embedding failed: {e}"))
                    crashed = True
                    return
                finally:
                    self._queue.task_done()
        finally:
            worker.close()
            self._workers.pop(worker.worker_id, None)
            if crashed and self._running:
                self._spawn_worker()
