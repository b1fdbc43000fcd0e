"""Bounded worker pool for external sender calls."""
from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from ..config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class QueuePolicy(str, enum.Enum):
    BLOCK = "block"  # wait up to submit_timeout for a free slot, then reject
    REJECT = "reject"  # reject immediately when full


class DeliveryWorkerPool:
    """Thread pool with a hard cap on running + queued jobs.

    Rejected jobs are not lost: their deliveries stay ``pending`` and are picked
    up again by the stale-delivery sweeper.
    """

    def __init__(
        self,
        *,
        max_workers: int,
        max_queue: int,
        policy: QueuePolicy = QueuePolicy.BLOCK,
        submit_timeout: float | None = None,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if max_queue < 0:
            raise ValueError("max_queue must be >= 0")
        self.policy = QueuePolicy(policy)
        self.capacity = max_workers + max_queue
        self._submit_timeout = submit_timeout
        self._slots = threading.BoundedSemaphore(self.capacity)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="delivery")
        self.rejected = 0

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "DeliveryWorkerPool":
        cfg = config or default_settings
        return cls(
            max_workers=cfg.DISPATCH_MAX_WORKERS,
            max_queue=cfg.DISPATCH_QUEUE_SIZE,
            policy=QueuePolicy(cfg.DISPATCH_QUEUE_POLICY.lower()),
            submit_timeout=cfg.DISPATCH_SUBMIT_TIMEOUT_SECONDS,
        )

    def _acquire(self) -> bool:
        if self.policy is QueuePolicy.REJECT:
            return self._slots.acquire(blocking=False)
        if self._submit_timeout is None:
            return self._slots.acquire()
        return self._slots.acquire(timeout=self._submit_timeout)

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future | None:
        """Schedule a job; returns None when the pool is saturated."""
        if not self._acquire():
            self.rejected += 1
            logger.warning(
                "Delivery pool saturated (capacity=%s, policy=%s); job rejected",
                self.capacity,
                self.policy.value,
            )
            return None

        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except RuntimeError:
            self._slots.release()
            raise
        future.add_done_callback(self._on_done)
        return future

    def _on_done(self, future: Future) -> None:
        self._slots.release()
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Delivery job crashed: %s", exc, exc_info=exc)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "DeliveryWorkerPool":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.shutdown(wait=True)
