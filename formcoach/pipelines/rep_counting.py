"""
Stage 4 — Repetition counting from a 1-D motion signal.

Pipeline:
    1. Extract a per-frame tracking metric (e.g. mean hip y); switch to the
       exercise's fallback metric when fewer than half the frames have one
    2. Smooth with a centered moving average (window 5, shrinking at edges)
    3. Adaptive threshold = max(static threshold, 0.15 × observed range)
    4. Find interior peaks/valleys with a ±2 neighbourhood check, anchor
       the series ends, and drop extrema that move less than the threshold
    5. Match valley→peak→valley ("down") or peak→valley→peak ("up")
       triplets left to right into repetition ranges

Boundary anchoring in step 4 extends the plain ±2 peak definition: a
series that begins or ends at rest has its turning point on the first or
last sample, which no ±2 window can contain, so without the anchors a
recording that starts standing would lose its first repetition. Anchors are
still subject to the threshold filter.

Parameters per exercise come from the catalog and may be overridden in
``config/rep_counting.yaml``.
"""

import logging
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
from pydantic import BaseModel

from ..utils.io_utils import load_optional_config
from .catalog import RepCountingConfig, get_exercise
from .config import (
    ADAPTIVE_RANGE_FRACTION,
    METRIC_FALLBACK_FRACTION,
    MIN_REP_FRAMES,
    NUM_LANDMARKS,
    REP_COUNTING_CONFIG_PATH,
    REP_METRIC_VISIBILITY,
    SMOOTHING_WINDOW,
)
from .geometry import is_visible, joint_angle
from .preprocessing import (
    LEFT_ANKLE,
    LEFT_ELBOW,
    LEFT_HIP,
    LEFT_KNEE,
    LEFT_SHOULDER,
    LEFT_WRIST,
    NOSE,
    RIGHT_ELBOW,
    RIGHT_HIP,
    RIGHT_SHOULDER,
    RIGHT_WRIST,
)
from .schemas import (
    ExtremumKind,
    ExtremumPoint,
    FrameResult,
    Landmark,
    RepetitionRange,
    RepTimingSummary,
)

logger = logging.getLogger(__name__)

# Height metrics average a left/right landmark pair.
_HEIGHT_PAIRS: dict[str, tuple[int, int]] = {
    "hip_height": (LEFT_HIP, RIGHT_HIP),
    "wrist_height": (LEFT_WRIST, RIGHT_WRIST),
    "shoulder_height": (LEFT_SHOULDER, RIGHT_SHOULDER),
    "elbow_height": (LEFT_ELBOW, RIGHT_ELBOW),
}
METRIC_NAMES: tuple[str, ...] = (*_HEIGHT_PAIRS, "chin_height", "knee_angle")

_DIRECTION_PATTERNS: dict[str, tuple[ExtremumKind, ExtremumKind, ExtremumKind]] = {
    "down": (ExtremumKind.VALLEY, ExtremumKind.PEAK, ExtremumKind.VALLEY),
    "up": (ExtremumKind.PEAK, ExtremumKind.VALLEY, ExtremumKind.PEAK),
}


class RepCountResult(BaseModel):
    count: int = 0
    ranges: list[RepetitionRange] = []
    metric: Optional[str] = None
    threshold: float = 0.0
    extrema: list[ExtremumPoint] = []


# ============================================================================
# Config
# ============================================================================

def _load_rep_counting_config(config_path: Optional[Path] = None) -> dict:
    """Load rep counting overrides from YAML config."""
    return load_optional_config(config_path or REP_COUNTING_CONFIG_PATH)


_REP_COUNTING_CONFIG: Optional[dict] = None


def _get_rep_counting_config() -> dict:
    """Lazy-load and cache the YAML config."""
    global _REP_COUNTING_CONFIG
    if _REP_COUNTING_CONFIG is None:
        _REP_COUNTING_CONFIG = _load_rep_counting_config()
    return _REP_COUNTING_CONFIG


def resolve_rep_config(exercise_id: str, overrides: Optional[dict] = None) -> RepCountingConfig:
    """Catalog defaults for ``exercise_id`` with YAML (or explicit) overrides applied.

    Raises:
        UnknownExerciseError: Unknown exercise id.
        ValueError: An override names an unknown metric or direction.
    """
    defaults = get_exercise(exercise_id).rep_counting
    if overrides is None:
        overrides = (_get_rep_counting_config().get("exercises") or {}).get(exercise_id) or {}
    if not overrides:
        return defaults

    config = RepCountingConfig(**{**defaults.model_dump(), **overrides})
    for metric in (config.metric, config.fallback_metric):
        if metric not in METRIC_NAMES:
            raise ValueError(
                f"Unknown rep metric '{metric}' for '{exercise_id}'. "
                f"Valid metrics: {', '.join(METRIC_NAMES)}"
            )
    return config


# ============================================================================
# Metric extraction
# ============================================================================

def metric_value(landmarks: Optional[Sequence[Landmark]], metric: str) -> Optional[float]:
    """Scalar tracking value for one frame, or None when it cannot be read."""
    if landmarks is None or len(landmarks) < NUM_LANDMARKS:
        return None

    if metric in _HEIGHT_PAIRS:
        left, right = (landmarks[i] for i in _HEIGHT_PAIRS[metric])
        if is_visible(left, REP_METRIC_VISIBILITY) and is_visible(right, REP_METRIC_VISIBILITY):
            return (left.y + right.y) / 2
        return None
    if metric == "chin_height":
        nose = landmarks[NOSE]
        return nose.y if is_visible(nose, REP_METRIC_VISIBILITY) else None
    if metric == "knee_angle":
        value = joint_angle(landmarks[LEFT_HIP], landmarks[LEFT_KNEE], landmarks[LEFT_ANKLE])
        return None if value is None else value / 180.0
    raise ValueError(f"Unknown rep metric '{metric}'. Valid metrics: {', '.join(METRIC_NAMES)}")


def extract_metric(frames: Sequence[FrameResult], metric: str) -> list[dict]:
    """Per-frame ``{"index", "time", "value"}`` samples; value may be None."""
    return [
        {"index": i, "time": frame.time, "value": metric_value(frame.landmarks, metric)}
        for i, frame in enumerate(frames)
    ]


# ============================================================================
# Signal primitives
# ============================================================================

def smooth_series(values: Sequence[float], window: int = SMOOTHING_WINDOW) -> np.ndarray:
    """Centered moving average whose window shrinks at both ends."""
    x = np.asarray(values, dtype=np.float64)
    half = int(window) // 2
    if half == 0 or x.size == 0:
        return x.copy()

    csum = np.concatenate([[0.0], np.cumsum(x)])
    idx = np.arange(x.size)
    lo = np.maximum(0, idx - half)
    hi = np.minimum(x.size, idx + half + 1)
    return (csum[hi] - csum[lo]) / (hi - lo)


def adaptive_threshold(values: Sequence[float], static_threshold: float) -> float:
    values = np.asarray(values, dtype=np.float64)
    if values.size == 0:
        return float(static_threshold)
    observed = float(values.max() - values.min())
    return max(float(static_threshold), ADAPTIVE_RANGE_FRACTION * observed)


def _interior_extrema(s: np.ndarray) -> list[tuple[int, ExtremumKind]]:
    found = []
    for i in range(2, s.size - 2):
        c = s[i]
        if c > s[i - 1] and c > s[i + 1] and c >= s[i - 2] and c >= s[i + 2]:
            found.append((i, ExtremumKind.PEAK))
        elif c < s[i - 1] and c < s[i + 1] and c <= s[i - 2] and c <= s[i + 2]:
            found.append((i, ExtremumKind.VALLEY))
    return found


def _anchor_boundaries(
    s: np.ndarray,
    extrema: list[tuple[int, ExtremumKind]],
) -> list[tuple[int, ExtremumKind]]:
    """Add the opposite-kind extremum in the stretch before the first and after the last one.

    A series that starts or ends at rest has its resting point on the
    boundary, where the ±2 neighbourhood check cannot see it.
    """
    if not extrema:
        return extrema

    anchored = list(extrema)
    first_pos, first_kind = anchored[0]
    if first_pos > 0:
        head = s[:first_pos]
        if first_kind is ExtremumKind.PEAK:
            anchored.insert(0, (int(np.argmin(head)), ExtremumKind.VALLEY))
        else:
            anchored.insert(0, (int(np.argmax(head)), ExtremumKind.PEAK))

    last_pos, last_kind = anchored[-1]
    if last_pos < s.size - 1:
        tail = s[last_pos + 1:]
        if last_kind is ExtremumKind.PEAK:
            anchored.append((last_pos + 1 + int(np.argmin(tail)), ExtremumKind.VALLEY))
        else:
            anchored.append((last_pos + 1 + int(np.argmax(tail)), ExtremumKind.PEAK))
    return anchored


def filter_significant(points: list[ExtremumPoint], threshold: float) -> list[ExtremumPoint]:
    """Drop extrema closer than ``threshold`` in value to the last kept one."""
    kept: list[ExtremumPoint] = []
    for point in points:
        if not kept or abs(point.value - kept[-1].value) >= threshold:
            kept.append(point)
    return kept


def find_extrema(samples: Sequence[dict], threshold: float) -> list[ExtremumPoint]:
    """Significant peaks and valleys of the smoothed valid samples, in time order."""
    valid = [sample for sample in samples if sample["value"] is not None]
    if len(valid) < MIN_REP_FRAMES:
        return []

    smoothed = smooth_series([sample["value"] for sample in valid])
    candidates = _anchor_boundaries(smoothed, _interior_extrema(smoothed))
    points = [
        ExtremumPoint(
            frame_index=valid[pos]["index"],
            time=valid[pos]["time"],
            value=float(smoothed[pos]),
            kind=kind,
        )
        for pos, kind in candidates
    ]
    return filter_significant(points, threshold)


def match_repetitions(extrema: Sequence[ExtremumPoint], direction: str) -> list[RepetitionRange]:
    """Match extremum triplets left to right into repetition ranges.

    A matched triplet's end point becomes the next candidate start, so
    consecutive ranges are contiguous and never overlap.
    """
    try:
        pattern = _DIRECTION_PATTERNS[direction]
    except KeyError:
        raise ValueError(f"direction must be 'down' or 'up', got '{direction}'.") from None

    ranges: list[RepetitionRange] = []
    i = 0
    while i + 2 < len(extrema):
        start, turn, end = extrema[i], extrema[i + 1], extrema[i + 2]
        if (start.kind, turn.kind, end.kind) == pattern:
            ranges.append(RepetitionRange(
                start=start,
                turn=turn,
                end=end,
                duration_seconds=end.time - start.time,
                range_of_motion=abs(start.value - turn.value),
            ))
            i += 2
        else:
            i += 1
    return ranges


# ============================================================================
# Public API
# ============================================================================

def count_reps(
    frames: Sequence[FrameResult],
    exercise_id: str,
    config: Optional[RepCountingConfig] = None,
) -> RepCountResult:
    """Count repetitions over time-ordered frame results.

    Args:
        frames: Frame results sorted by time; detector misses are allowed.
        exercise_id: Catalog id selecting metric, threshold and direction.
        config: Explicit parameters; defaults to :func:`resolve_rep_config`.

    Returns:
        ``RepCountResult``. Range and extremum ``frame_index`` values are
        positions in ``frames``.
    """
    config = config or resolve_rep_config(exercise_id)
    if len(frames) < MIN_REP_FRAMES:
        logger.info("Not enough frames for rep counting (%d < %d)", len(frames), MIN_REP_FRAMES)
        return RepCountResult()

    metric = config.metric
    samples = extract_metric(frames, metric)
    n_valid = sum(1 for s in samples if s["value"] is not None)
    if n_valid < len(frames) * METRIC_FALLBACK_FRACTION:
        logger.info(
            "Metric '%s' available in %d/%d frames, falling back to '%s'",
            metric, n_valid, len(frames), config.fallback_metric,
        )
        metric = config.fallback_metric
        samples = extract_metric(frames, metric)

    values = [s["value"] for s in samples if s["value"] is not None]
    if len(values) < MIN_REP_FRAMES:
        logger.info("Not enough valid '%s' samples for rep counting (%d)", metric, len(values))
        return RepCountResult(metric=metric)

    threshold = adaptive_threshold(values, config.threshold)
    extrema = find_extrema(samples, threshold)
    ranges = match_repetitions(extrema, config.direction)

    logger.info(
        "Rep counting (%s, metric=%s, threshold=%.3f): %d extrema, %d reps",
        exercise_id, metric, threshold, len(extrema), len(ranges),
    )
    return RepCountResult(
        count=len(ranges),
        ranges=ranges,
        metric=metric,
        threshold=threshold,
        extrema=extrema,
    )


def _tempo_points(duration: float) -> float:
    if 2.0 <= duration <= 4.0:
        return 100.0
    if 1.0 <= duration <= 6.0:
        return 70.0
    return 40.0


def summarize_rep_timing(ranges: Sequence[RepetitionRange]) -> RepTimingSummary:
    """Average duration and range of motion, rep-to-rep consistency, tempo score."""
    if not ranges:
        return RepTimingSummary()

    durations = np.array([r.duration_seconds for r in ranges], dtype=np.float64)
    roms = np.array([r.range_of_motion for r in ranges], dtype=np.float64)
    spread = float(durations.var() + roms.var())

    return RepTimingSummary(
        avg_duration=float(durations.mean()),
        avg_rom=float(roms.mean()),
        consistency=100.0 - min(100.0, spread * 200.0),
        tempo_score=float(np.mean([_tempo_points(d) for d in durations])),
    )
