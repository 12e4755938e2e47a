"""
Parallel frame orchestrator.

Splits the sampled frames into contiguous batches, analyzes them on a
bounded ``multiprocessing`` pool (processes or threads), and joins the
results back into original frame order.

    Idle -> Dispatched -> Completed ------------> Done
                       -> FallbackRunning ------> Done
    (any) -> Cancelled

A batch whose worker raises or misses the deadline is re-run
synchronously in the calling process; if that fails too, its frames are
reported as failed and left out of the results.

Thread workers share memory, so unless the detector declares
``thread_safe = True`` every batch, and every fallback re-run, gets its own
pickled copy of it.
"""

import functools
import logging
import math
import pickle
import queue
import threading
import time
from enum import Enum
from multiprocessing import Pool
from multiprocessing.pool import ThreadPool
from typing import Callable, Optional, Sequence

from pydantic import BaseModel, Field

from .catalog import get_exercise
from .config import FRAMES_PER_WORKER, MAX_WORKERS, WORKER_BACKEND, WORKER_TIMEOUT_S
from .frame_analysis import analyze_batch
from .geometry import round_half_up
from .schemas import FrameResult, VideoFrame

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

BACKENDS = ("process", "thread")
_WAKE = object()


class AnalysisCancelledError(RuntimeError):
    """Raised by ``FrameOrchestrator.run`` after ``cancel()``."""


class OrchestratorState(str, Enum):
    IDLE = "idle"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    FALLBACK_RUNNING = "fallback_running"
    DONE = "done"
    CANCELLED = "cancelled"


_RUNNING_STATES = (
    OrchestratorState.DISPATCHED,
    OrchestratorState.COMPLETED,
    OrchestratorState.FALLBACK_RUNNING,
)


class OrchestrationResult(BaseModel):
    results: list[FrameResult] = Field(default_factory=list)
    failed_indices: list[int] = Field(default_factory=list)
    fallback_batches: list[int] = Field(default_factory=list)


def plan_batches(
    n_frames: int,
    max_workers: int = MAX_WORKERS,
    frames_per_worker: int = FRAMES_PER_WORKER,
) -> list[range]:
    """Contiguous index ranges, one per worker.

    ``workers = min(max_workers, ceil(n / frames_per_worker))`` and every
    batch except possibly the last holds ``ceil(n / workers)`` frames.
    """
    if n_frames < 0:
        raise ValueError(f"n_frames must be >= 0, got {n_frames}.")
    if n_frames == 0:
        return []
    workers = max(1, min(max_workers, math.ceil(n_frames / frames_per_worker)))
    size = math.ceil(n_frames / workers)
    return [range(start, min(start + size, n_frames)) for start in range(0, n_frames, size)]


class FrameOrchestrator:
    """Fan frame batches out to a worker pool and join the results.

    Args:
        detector: Picklable pose detector shipped with every batch.
        exercise_id: Catalog id; validated up front.
        max_workers: Upper bound on concurrent workers.
        worker_timeout: Seconds from dispatch before an unfinished batch
            falls back to in-process analysis.
        backend: ``"process"`` (multiprocessing.Pool) or ``"thread"``
            (ThreadPool).
        progress: Optional callback receiving non-decreasing 0-100 values.
    """

    def __init__(
        self,
        detector,
        exercise_id: str,
        max_workers: int = MAX_WORKERS,
        worker_timeout: float = WORKER_TIMEOUT_S,
        backend: str = WORKER_BACKEND,
        progress: Optional[ProgressCallback] = None,
    ):
        if backend not in BACKENDS:
            raise ValueError(f"backend must be one of {BACKENDS}, got '{backend}'.")
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}.")
        get_exercise(exercise_id)

        self.detector = detector
        self.exercise_id = exercise_id
        self.max_workers = max_workers
        self.worker_timeout = worker_timeout
        self.backend = backend
        self.progress = progress

        self._state = OrchestratorState.IDLE
        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._completions: Optional[queue.Queue] = None
        self._last_progress = -1

    @property
    def state(self) -> OrchestratorState:
        return self._state

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Stop the run; the pool is terminated and ``run`` raises."""
        with self._lock:
            self._cancelled.set()
            if self._completions is not None:
                self._completions.put(_WAKE)
        logger.info("Cancellation requested for '%s' analysis", self.exercise_id)

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            self._state = OrchestratorState.CANCELLED
            raise AnalysisCancelledError("Analysis cancelled")

    def _set_state(self, state: OrchestratorState) -> None:
        with self._lock:
            self._state = state

    def _emit(self, percent: int) -> None:
        if self.progress is None or percent <= self._last_progress:
            return
        self._last_progress = percent
        self.progress(percent)

    def _batch_detector(self):
        if self.backend == "thread" and not getattr(self.detector, "thread_safe", False):
            return pickle.loads(pickle.dumps(self.detector))
        return self.detector

    def _make_pool(self, workers: int):
        if self.backend == "thread":
            return ThreadPool(workers)
        return Pool(workers)

    @staticmethod
    def _on_done(completions: queue.Queue, batch_no: int, results) -> None:
        completions.put((batch_no, True, results))

    @staticmethod
    def _on_error(completions: queue.Queue, batch_no: int, exc: BaseException) -> None:
        completions.put((batch_no, False, exc))

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, frames: Sequence[VideoFrame]) -> OrchestrationResult:
        """Analyze ``frames`` and return results sorted by original index.

        Raises:
            AnalysisCancelledError: ``cancel()`` was called before or during the run.
            RuntimeError: The orchestrator is already running.
        """
        frames = list(frames)
        with self._lock:
            if self._state not in (OrchestratorState.IDLE, OrchestratorState.DONE):
                raise RuntimeError(f"Orchestrator cannot run from state '{self._state.value}'.")
            self._check_cancelled()
            completions: queue.Queue = queue.Queue()
            self._completions = completions
            self._last_progress = -1

        batches = plan_batches(len(frames), self.max_workers)
        self._emit(0)
        if not batches:
            self._set_state(OrchestratorState.DONE)
            return OrchestrationResult()

        payloads = [
            (self._batch_detector(), self.exercise_id, frames[batch.start:batch.stop], list(batch))
            for batch in batches
        ]
        logger.info(
            "Dispatching %d frames in %d batches (%s backend, timeout %.1fs)",
            len(frames), len(batches), self.backend, self.worker_timeout,
        )

        completed: dict[int, list[FrameResult]] = {}
        fallback_batches: list[int] = []
        failed_indices: list[int] = []

        pool = self._make_pool(len(batches))
        try:
            for batch_no, payload in enumerate(payloads):
                pool.apply_async(
                    analyze_batch,
                    (payload,),
                    callback=functools.partial(self._on_done, completions, batch_no),
                    error_callback=functools.partial(self._on_error, completions, batch_no),
                )
            pool.close()
            self._set_state(OrchestratorState.DISPATCHED)

            outstanding = set(range(len(batches)))
            worker_errors: dict[int, BaseException] = {}
            deadline = time.monotonic() + self.worker_timeout
            while outstanding:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                try:
                    item = completions.get(timeout=remaining)
                except queue.Empty:
                    break
                self._check_cancelled()
                if item is _WAKE:
                    continue
                batch_no, ok, value = item
                if batch_no not in outstanding:
                    continue
                outstanding.discard(batch_no)
                if ok:
                    completed[batch_no] = value
                    self._emit(round_half_up(100 * len(completed) / len(batches)))
                else:
                    worker_errors[batch_no] = value
            self._check_cancelled()

            retry = sorted(outstanding | set(worker_errors))
            if retry:
                self._set_state(OrchestratorState.FALLBACK_RUNNING)
            else:
                self._set_state(OrchestratorState.COMPLETED)

            resolved = len(completed)
            for batch_no in retry:
                reason = worker_errors.get(batch_no, "timed out")
                logger.warning(
                    "Batch %d (frames %d-%d) failed in worker (%s); running in-process",
                    batch_no, batches[batch_no].start, batches[batch_no].stop - 1, reason,
                )
                try:
                    retry_payload = (self._batch_detector(),) + payloads[batch_no][1:]
                    completed[batch_no] = analyze_batch(retry_payload)
                    fallback_batches.append(batch_no)
                except Exception as exc:
                    logger.warning(
                        "Fallback for batch %d failed, dropping %d frames: %s",
                        batch_no, len(batches[batch_no]), exc,
                    )
                    failed_indices.extend(batches[batch_no])
                self._check_cancelled()
                resolved += 1
                self._emit(round_half_up(100 * resolved / len(batches)))

            results = sorted(
                (result for batch in completed.values() for result in batch),
                key=lambda r: r.original_index,
            )
            self._set_state(OrchestratorState.DONE)
        finally:
            pool.terminate()
            with self._lock:
                self._completions = None
                if self._state in _RUNNING_STATES:
                    self._state = OrchestratorState.IDLE

        logger.info(
            "Orchestration done: %d frames analyzed, %d failed, %d fallback batches",
            len(results), len(failed_indices), len(fallback_batches),
        )
        return OrchestrationResult(
            results=results,
            failed_indices=sorted(failed_indices),
            fallback_batches=fallback_batches,
        )
