"""Tests for the parallel frame orchestrator.

Covers:
  - Batch planning
  - Ordered joins on both backends
  - Worker failure / timeout fallback and failed batches
  - Per-frame detector errors
  - Cancellation and progress reporting
  - Per-batch detector copies on the thread backend
"""

import sys
import threading
import time
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from formcoach.pipelines import orchestrator as orchestrator_module
from formcoach.pipelines.catalog import UnknownExerciseError
from formcoach.pipelines.detector import MediaPipePoseDetector, PrecomputedLandmarkDetector
from formcoach.pipelines.frame_analysis import analyze_batch
from formcoach.pipelines.orchestrator import (
    AnalysisCancelledError,
    FrameOrchestrator,
    OrchestratorState,
    plan_batches,
)
from formcoach.pipelines.preprocessing import frames_from_pose_sequence
from formcoach.pipelines.schemas import VideoFrame

from helpers import make_squat_sequence


def _frames(n=90):
    return frames_from_pose_sequence(make_squat_sequence(n), fps=30)


def _in_worker() -> bool:
    return threading.current_thread() is not threading.main_thread()


class SlowWorkerDetector(PrecomputedLandmarkDetector):
    """Stalls inside pool threads only; the in-process fallback is fast."""

    def __init__(self, delay):
        self.delay = delay

    def detect(self, image):
        if _in_worker():
            time.sleep(self.delay)
        return super().detect(image)


class BlockingDetector(PrecomputedLandmarkDetector):
    """Blocks pool threads until released."""

    def __init__(self):
        self.release = threading.Event()
        self.started = threading.Event()

    def detect(self, image):
        if _in_worker():
            self.started.set()
            self.release.wait(5)
        return super().detect(image)


_calls_lock = threading.Lock()


class ConcurrencyCountingDetector(PrecomputedLandmarkDetector):
    """Records, per instance, the most detect() calls in flight at once."""

    thread_safe = False
    active: dict = {}
    peak: dict = {}

    def detect(self, image):
        key = id(self)
        with _calls_lock:
            self.active[key] = self.active.get(key, 0) + 1
            self.peak[key] = max(self.peak.get(key, 0), self.active[key])
        try:
            time.sleep(0.001)
            return super().detect(image)
        finally:
            with _calls_lock:
                self.active[key] -= 1


# ============================================================================
# Test: Batch planning
# ============================================================================

class TestPlanBatches:

    @pytest.mark.parametrize("n, sizes", [
        (0, []),
        (1, [1]),
        (50, [50]),
        (51, [26, 25]),
        (90, [45, 45]),
        (180, [45, 45, 45, 45]),
        (401, [101, 101, 101, 98]),
    ])
    def test_sizes(self, n, sizes):
        assert [len(b) for b in plan_batches(n)] == sizes

    def test_batches_cover_all_indices_once(self):
        batches = plan_batches(233)
        assert [i for b in batches for i in b] == list(range(233))
        assert len(batches) <= 4

    def test_negative(self):
        with pytest.raises(ValueError):
            plan_batches(-1)


# ============================================================================
# Test: Successful runs
# ============================================================================

class TestRun:

    def test_thread_backend_results_in_order(self):
        result = FrameOrchestrator(PrecomputedLandmarkDetector(), "squat", backend="thread").run(_frames())
        assert [r.original_index for r in result.results] == list(range(90))
        assert result.failed_indices == []
        assert result.fallback_batches == []
        assert all(r.has_landmarks for r in result.results)

    def test_process_backend_matches_thread_backend(self):
        frames = _frames(120)
        threaded = FrameOrchestrator(PrecomputedLandmarkDetector(), "squat", backend="thread").run(frames)
        forked = FrameOrchestrator(PrecomputedLandmarkDetector(), "squat", backend="process").run(frames)
        assert [r.original_index for r in forked.results] == list(range(120))
        assert [r.features["knee_angle"] for r in forked.results] == pytest.approx(
            [r.features["knee_angle"] for r in threaded.results]
        )

    def test_order_kept_for_every_length(self):
        orchestrator = FrameOrchestrator(PrecomputedLandmarkDetector(), "squat", backend="thread")
        for n in range(1, 401):
            frames = [VideoFrame(time=i / 30, image=None) for i in range(n)]
            result = orchestrator.run(frames)
            assert [r.original_index for r in result.results] == list(range(n)), n
            assert [r.time for r in result.results] == [f.time for f in frames], n

    @pytest.mark.parametrize("n", [1, 49, 50, 51, 97, 199, 200, 201, 333])
    def test_order_kept_with_detections(self, n):
        result = FrameOrchestrator(PrecomputedLandmarkDetector(), "squat", backend="thread").run(_frames(n))
        assert [r.original_index for r in result.results] == list(range(n))
        assert all(r.has_landmarks for r in result.results)

    def test_empty_input(self):
        progress = []
        orchestrator = FrameOrchestrator(PrecomputedLandmarkDetector(), "squat", backend="thread",
                                         progress=progress.append)
        result = orchestrator.run([])
        assert result.results == []
        assert progress == [0]
        assert orchestrator.state is OrchestratorState.DONE

    def test_progress_monotonic_to_100(self):
        progress = []
        FrameOrchestrator(PrecomputedLandmarkDetector(), "squat", backend="thread",
                          progress=progress.append).run(_frames(200))
        assert progress[0] == 0
        assert progress[-1] == 100
        assert progress == sorted(progress)
        assert len(progress) == len(set(progress))

    def test_unknown_exercise_fails_fast(self):
        with pytest.raises(UnknownExerciseError):
            FrameOrchestrator(PrecomputedLandmarkDetector(), "lunge")

    def test_bad_backend(self):
        with pytest.raises(ValueError, match="backend"):
            FrameOrchestrator(PrecomputedLandmarkDetector(), "squat", backend="gpu")


# ============================================================================
# Test: Failures & fallback
# ============================================================================

class TestFallback:

    def test_detector_exception_is_a_miss(self):
        class Exploding(PrecomputedLandmarkDetector):
            def detect(self, image):
                if image[23, 1] > 0.64:
                    raise RuntimeError("boom")
                return super().detect(image)

        result = FrameOrchestrator(Exploding(), "squat", backend="thread").run(_frames())
        assert len(result.results) == 90
        misses = [r for r in result.results if not r.has_landmarks]
        assert misses and all(r.success for r in misses)
        assert result.fallback_batches == []

    def test_worker_error_falls_back_in_process(self, monkeypatch):
        def failing_in_worker(payload):
            if _in_worker():
                raise RuntimeError("worker crashed")
            return analyze_batch(payload)

        frames = _frames()
        monkeypatch.setattr(orchestrator_module, "analyze_batch", failing_in_worker)
        result = FrameOrchestrator(PrecomputedLandmarkDetector(), "squat", backend="thread").run(frames)
        assert result.fallback_batches == [0, 1]
        assert [r.original_index for r in result.results] == list(range(90))
        assert result.results == analyze_batch(
            (PrecomputedLandmarkDetector(), "squat", frames, list(range(90)))
        )

    def test_fallback_failure_drops_batch(self, monkeypatch):
        def failing_first_batch(payload):
            if payload[3][0] == 0:
                raise RuntimeError("always broken")
            return analyze_batch(payload)

        monkeypatch.setattr(orchestrator_module, "analyze_batch", failing_first_batch)
        progress = []
        result = FrameOrchestrator(PrecomputedLandmarkDetector(), "squat", backend="thread",
                                   progress=progress.append).run(_frames())
        assert result.failed_indices == list(range(45))
        assert [r.original_index for r in result.results] == list(range(45, 90))
        assert progress[-1] == 100

    def test_timeout_falls_back(self):
        orchestrator = FrameOrchestrator(SlowWorkerDetector(0.05), "squat", backend="thread",
                                         worker_timeout=0.2)
        result = orchestrator.run(_frames(60))
        assert result.fallback_batches == [0, 1]
        assert [r.original_index for r in result.results] == list(range(60))
        assert orchestrator.state is OrchestratorState.DONE


# ============================================================================
# Test: Cancellation
# ============================================================================

class TestCancel:

    def test_cancel_during_run(self):
        detector = BlockingDetector()
        orchestrator = FrameOrchestrator(detector, "squat", backend="thread", worker_timeout=10)

        def cancel_when_started():
            detector.started.wait(5)
            orchestrator.cancel()

        canceller = threading.Thread(target=cancel_when_started)
        canceller.start()
        try:
            with pytest.raises(AnalysisCancelledError):
                orchestrator.run(_frames())
        finally:
            detector.release.set()
            canceller.join()
        assert orchestrator.state is OrchestratorState.CANCELLED

    def test_cancel_before_run(self):
        orchestrator = FrameOrchestrator(PrecomputedLandmarkDetector(), "squat", backend="thread")
        orchestrator.cancel()
        with pytest.raises(AnalysisCancelledError):
            orchestrator.run(_frames())

    def test_progress_callback_error_leaves_orchestrator_reusable(self):
        def exploding_progress(percent):
            if percent > 0:
                raise ValueError("listener gone")

        orchestrator = FrameOrchestrator(PrecomputedLandmarkDetector(), "squat", backend="thread",
                                         progress=exploding_progress)
        with pytest.raises(ValueError, match="listener gone"):
            orchestrator.run(_frames())
        assert orchestrator.state is OrchestratorState.IDLE

        progress = []
        orchestrator.progress = progress.append
        result = orchestrator.run(_frames())
        assert [r.original_index for r in result.results] == list(range(90))
        assert progress[-1] == 100
        assert orchestrator.state is OrchestratorState.DONE


# ============================================================================
# Test: Detector isolation on the thread backend
# ============================================================================

class TestDetectorIsolation:

    def test_each_batch_gets_its_own_detector(self):
        ConcurrencyCountingDetector.active.clear()
        ConcurrencyCountingDetector.peak.clear()
        detector = ConcurrencyCountingDetector()

        result = FrameOrchestrator(detector, "squat", backend="thread").run(_frames(200))

        assert [r.original_index for r in result.results] == list(range(200))
        assert len(ConcurrencyCountingDetector.peak) == len(plan_batches(200))
        assert id(detector) not in ConcurrencyCountingDetector.peak
        assert max(ConcurrencyCountingDetector.peak.values()) == 1

    def test_thread_safe_detector_is_shared(self):
        detector = PrecomputedLandmarkDetector()
        orchestrator = FrameOrchestrator(detector, "squat", backend="thread")
        assert orchestrator._batch_detector() is detector

    def test_mediapipe_detector_is_copied_without_its_graph(self):
        detector = MediaPipePoseDetector(model_complexity=0)
        detector._pose = object()
        orchestrator = FrameOrchestrator(detector, "squat", backend="thread")
        copy = orchestrator._batch_detector()
        assert copy is not detector
        assert copy._pose is None
        assert copy.model_complexity == 0

    def test_process_backend_ships_detector_as_is(self):
        detector = ConcurrencyCountingDetector()
        orchestrator = FrameOrchestrator(detector, "squat", backend="process")
        assert orchestrator._batch_detector() is detector
