"""
Stage 7 — End-to-end workout analysis.

Pipeline:
    1. Orchestrator: detection + features + validation per frame (parallel)
    2. Completeness: analysis mode and confidence multiplier
    3. Aggregation: significant errors and base score
    4. Rep counting and per-rep quality
    5. Workout Report with feedback
"""

import logging
import time
from typing import Optional, Sequence

from .catalog import get_exercise
from .completeness import generate_report
from .config import MAX_WORKERS, WORKER_BACKEND, WORKER_TIMEOUT_S
from .detector import PrecomputedLandmarkDetector
from .orchestrator import FrameOrchestrator, ProgressCallback
from .rep_counting import count_reps, summarize_rep_timing
from .rep_progression import analyze_rep, compare_reps
from .schemas import ExtremumPoint, FrameResult, RepetitionRange, VideoFrame, WorkoutReport
from .scoring import aggregate_issues, collect_issue_samples, compute_scores
from .utils import generate_feedback

logger = logging.getLogger(__name__)


def _to_original_index(point: ExtremumPoint, results: Sequence[FrameResult]) -> ExtremumPoint:
    return point.model_copy(update={"frame_index": results[point.frame_index].original_index})


def _reindex_range(rep: RepetitionRange, results: Sequence[FrameResult]) -> RepetitionRange:
    return rep.model_copy(update={
        "start": _to_original_index(rep.start, results),
        "turn": _to_original_index(rep.turn, results),
        "end": _to_original_index(rep.end, results),
    })


def build_report(
    exercise_id: str,
    results: Sequence[FrameResult],
    frame_count: Optional[int] = None,
    failed_count: int = 0,
) -> WorkoutReport:
    """Run every post-join stage over analyzed frames and build the report.

    Args:
        exercise_id: Catalog id.
        results: Successfully analyzed frames sorted by original index.
        frame_count: Frames submitted; defaults to analyzed + failed.
        failed_count: Frames dropped after a failed fallback.
    """
    get_exercise(exercise_id)
    results = list(results)
    if frame_count is None:
        frame_count = len(results) + failed_count

    completeness = generate_report(exercise_id, results)
    usable = sum(1 for r in results if r.has_landmarks)

    significant_errors = aggregate_issues(results, exercise_id)
    base_score, score = compute_scores(significant_errors, usable, completeness.confidence)

    reps = count_reps(results, exercise_id)
    per_rep = [
        analyze_rep(results[rep.start_index:rep.end_index + 1], exercise_id, rep_number)
        for rep_number, rep in enumerate(reps.ranges, start=1)
    ]
    comparison = compare_reps(per_rep)

    report = WorkoutReport(
        exercise_id=exercise_id,
        score=score,
        base_score=base_score,
        confidence_multiplier=completeness.confidence,
        significant_errors=significant_errors,
        rep_count=reps.count,
        repetition_ranges=[_reindex_range(rep, results) for rep in reps.ranges],
        per_rep_quality=per_rep,
        rep_comparison=comparison,
        rep_timing=summarize_rep_timing(reps.ranges),
        completeness=completeness,
        issue_samples=collect_issue_samples(results),
        frame_count=frame_count,
        analyzed_frame_count=len(results),
        failed_frame_count=failed_count,
        feedback=generate_feedback(score, significant_errors, reps.count, comparison, completeness),
    )
    logger.info(
        "Report for '%s': score=%d (base %d × %.2f), %d errors, %d reps",
        exercise_id, score, base_score, completeness.confidence,
        len(significant_errors), reps.count,
    )
    return report


def analyze_workout(
    frames: Sequence[VideoFrame],
    exercise_id: str,
    detector=None,
    backend: str = WORKER_BACKEND,
    progress: Optional[ProgressCallback] = None,
    max_workers: int = MAX_WORKERS,
    worker_timeout: float = WORKER_TIMEOUT_S,
) -> WorkoutReport:
    """Analyze sampled video frames and return the Workout Report.

    Args:
        frames: Time-stamped frames; ``image`` is whatever ``detector`` takes.
        exercise_id: Catalog id (e.g. ``"squat"``).
        detector: Pose detector; defaults to ``PrecomputedLandmarkDetector``.
        backend: ``"process"`` or ``"thread"`` worker pool.
        progress: Optional 0-100 progress callback.
        max_workers: Worker cap.
        worker_timeout: Per-batch deadline before in-process fallback.

    Raises:
        UnknownExerciseError: Unknown exercise id.
        AnalysisCancelledError: The orchestrator was cancelled.
    """
    t0 = time.time()
    orchestrator = FrameOrchestrator(
        detector or PrecomputedLandmarkDetector(),
        exercise_id,
        max_workers=max_workers,
        worker_timeout=worker_timeout,
        backend=backend,
        progress=progress,
    )
    outcome = orchestrator.run(frames)
    report = build_report(
        exercise_id,
        outcome.results,
        frame_count=len(frames),
        failed_count=len(outcome.failed_indices),
    )
    logger.info("Workout analysis complete in %.2fs", time.time() - t0)
    return report
