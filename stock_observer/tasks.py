"""Structured fan-out of independent fetch/parse tasks.

Two wait-all policies:

- fail-fast: tasks are interdependent (e.g. tables that get joined). The first
  failure cancels the group and the caller gets ``CycleAbortError`` with no
  partial results.
- best-effort: tasks are independent observations. Failures are logged and
  collected; the batch itself never raises.

Every task is a callable receiving the group's cancellation event. Each task's
``Future`` is its single-slot handoff: it either holds exactly one result or is
discarded.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, Generic, Mapping, Optional, TypeVar

from .errors import CycleAbortError


logger = logging.getLogger(__name__)

T = TypeVar("T")
Task = Callable[[threading.Event], T]


@dataclass
class BatchResult(Generic[T]):
    results: Dict[str, T] = field(default_factory=dict)
    errors: Dict[str, BaseException] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def check_cancelled(cancel: threading.Event) -> None:
    """Raise if the owning group was cancelled. Call before network I/O."""
    if cancel.is_set():
        raise CycleAbortError("cancelled")


def _submit(executor: ThreadPoolExecutor, tasks: Mapping[str, Task[T]], cancel: threading.Event) -> Dict[Future, str]:
    return {executor.submit(fn, cancel): key for key, fn in tasks.items()}


def run_fail_fast(
    tasks: Mapping[str, Task[T]],
    *,
    max_workers: Optional[int] = None,
    name: str = "fail-fast",
) -> Dict[str, T]:
    """Run all tasks; return every result keyed as given, or raise on the first failure."""
    if not tasks:
        return {}
    cancel = threading.Event()
    executor = ThreadPoolExecutor(max_workers=max_workers or len(tasks), thread_name_prefix=name)
    results: Dict[str, T] = {}
    try:
        futures = _submit(executor, tasks, cancel)
        for future in as_completed(futures):
            key = futures[future]
            try:
                results[key] = future.result()
            except Exception as e:
                cancel.set()
                raise CycleAbortError(f"task {key!r} failed: {e}", task=key) from e
    finally:
        # After a failure, queued tasks are dropped and running ones are not awaited.
        executor.shutdown(wait=not cancel.is_set(), cancel_futures=True)
    return {key: results[key] for key in tasks}


def run_best_effort(
    tasks: Mapping[str, Task[T]],
    *,
    max_workers: Optional[int] = None,
    name: str = "best-effort",
) -> BatchResult[T]:
    """Run all tasks to completion; failures only drop their own result."""
    batch: BatchResult[T] = BatchResult()
    if not tasks:
        return batch
    cancel = threading.Event()
    with ThreadPoolExecutor(max_workers=max_workers or len(tasks), thread_name_prefix=name) as executor:
        futures = _submit(executor, tasks, cancel)
        for future in as_completed(futures):
            key = futures[future]
            try:
                batch.results[key] = future.result()
            except Exception as e:
                logger.warning("task %s failed: %s", key, e)
                batch.errors[key] = e
    return batch
