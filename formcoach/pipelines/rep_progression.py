"""
Stage 5 — Per-repetition phase and quality analysis.

Pipeline (per rep):
    1. Read the exercise's primary metric (a joint angle in degrees) from
       each frame's features
    2. Walk the values, advancing through the exercise's four-phase cycle
       on every direction reversal
    3. Flag uncontrolled eccentric phases and sluggish concentric phases
    4. Score smoothness, left/right symmetry and eccentric:concentric tempo

Across reps, ``compare_reps`` averages the quality scores and flags
fatigue when smoothness falls off in the last third of the set.

Phase issues are advisory: they are reported per rep and never change the
workout score.
"""

import logging
import math
from typing import Optional, Sequence

import numpy as np

from .catalog import get_exercise
from .config import (
    FATIGUE_SMOOTHNESS_RATIO,
    IDEAL_TEMPO_RATIO,
    SLOW_CONCENTRIC_VELOCITY,
    UNCONTROLLED_VELOCITY,
)
from .geometry import round_half_up
from .schemas import (
    FrameResult,
    PhaseIssue,
    PhaseSegment,
    RepComparison,
    RepQuality,
    Severity,
)

logger = logging.getLogger(__name__)

FATIGUE_RECOMMENDATION = (
    "Form degradation detected - you may be fatiguing. Consider rest or reducing volume."
)


def _is_eccentric(phase: str) -> bool:
    return "descent" in phase


def _is_concentric(phase: str) -> bool:
    return "ascent" in phase or "drive" in phase


def _feature_value(frame: FrameResult, name: str) -> Optional[float]:
    value = frame.features.get(name)
    if value is None:
        return None
    value = float(value)
    return value if math.isfinite(value) else None


# ============================================================================
# Progression & phases
# ============================================================================

def extract_progression(frames: Sequence[FrameResult], metric: str) -> list[Optional[float]]:
    """Per-frame value of ``metric`` from the frame features (None where absent)."""
    return [_feature_value(frame, metric) for frame in frames]


def identify_phases(
    values: Sequence[Optional[float]],
    phase_names: Sequence[str],
) -> list[PhaseSegment]:
    """Assign frame positions to the exercise's phase cycle.

    The walk starts in the first phase, moving down. Position 0 only
    seeds the previous value (0.0 when it is missing) and belongs to no
    phase. Every later valid value whose direction differs from the
    current one advances the walk to the next phase, wrapping around, and
    then joins that phase. A rep that opens with a descent therefore
    files it under the first phase; jitter around a turning point can
    split one real phase into several.
    """
    phases = [PhaseSegment(name=name) for name in phase_names]
    if not values:
        return phases

    current = 0
    decreasing = True
    previous = values[0] if values[0] is not None else 0.0

    for i in range(1, len(values)):
        value = values[i]
        if value is None:
            continue
        moving_down = value < previous
        if moving_down != decreasing:
            current = (current + 1) % len(phases)
            decreasing = moving_down
        phases[current].frame_indices.append(i)
        previous = value
    return phases


def _max_velocity(values: Sequence[float]) -> Optional[float]:
    if len(values) < 2:
        return None
    return float(np.max(np.abs(np.diff(values))))


def analyze_phase_quality(phase: str, values: Sequence[float]) -> list[PhaseIssue]:
    """Velocity checks for one phase given its metric values in frame order."""
    issues: list[PhaseIssue] = []
    peak = _max_velocity(values)
    if peak is None:
        return issues

    if _is_eccentric(phase) and peak > UNCONTROLLED_VELOCITY:
        issues.append(PhaseIssue(
            phase=phase,
            type="uncontrolled_movement",
            severity=Severity.HIGH,
            description=f"Uncontrolled movement during {phase} phase",
            correction="Slow down the eccentric (lowering) phase. Count 2-3 seconds for control.",
        ))
    if _is_concentric(phase) and peak < SLOW_CONCENTRIC_VELOCITY:
        issues.append(PhaseIssue(
            phase=phase,
            type="slow_concentric",
            severity=Severity.LOW,
            description=f"{phase} phase appears slow",
            correction="Increase power and speed during the lifting phase.",
        ))
    return issues


# ============================================================================
# Quality scores
# ============================================================================

def calculate_smoothness(values: Sequence[Optional[float]]) -> int:
    """100 minus 5× the mean absolute change in frame-to-frame velocity."""
    valid = np.array([v for v in values if v is not None], dtype=np.float64)
    if valid.size < 3:
        return 100
    velocities = np.diff(valid)
    jerk = float(np.abs(np.diff(velocities)).sum()) / velocities.size
    return round_half_up(max(0.0, 100.0 - jerk * 5.0))


def calculate_symmetry(frames: Sequence[FrameResult]) -> int:
    asymmetry = [v for v in (_feature_value(f, "asymmetry") for f in frames) if v is not None]
    if not asymmetry:
        return 100
    return round_half_up(max(0.0, 100.0 - float(np.mean(asymmetry)) * 10.0))


def analyze_tempo_control(phases: Sequence[PhaseSegment]) -> int:
    """Score how close the eccentric:concentric frame ratio is to 1.75."""
    eccentric = sum(len(p.frame_indices) for p in phases if _is_eccentric(p.name))
    concentric = sum(len(p.frame_indices) for p in phases if _is_concentric(p.name))
    if eccentric == 0 or concentric == 0:
        return 50
    deviation = abs(eccentric / concentric - IDEAL_TEMPO_RATIO) / IDEAL_TEMPO_RATIO
    return round_half_up(max(0.0, 100.0 - deviation * 100.0))


# ============================================================================
# Public API
# ============================================================================

def analyze_rep(frames: Sequence[FrameResult], exercise_id: str, rep_number: int) -> RepQuality:
    """Phase breakdown and quality scores for the frames of one repetition.

    Args:
        frames: The rep's frame results in time order (start to end inclusive).
        exercise_id: Catalog id selecting the primary metric and phase cycle.
        rep_number: 1-based rep number echoed into the result.

    Raises:
        UnknownExerciseError: Unknown exercise id.
    """
    progression = get_exercise(exercise_id).progression
    values = extract_progression(frames, progression.primary_metric)
    phases = identify_phases(values, progression.phases)

    issues: list[PhaseIssue] = []
    for phase in phases:
        phase_values = [values[i] for i in phase.frame_indices]
        issues.extend(analyze_phase_quality(phase.name, phase_values))

    duration = frames[-1].time - frames[0].time if frames else 0.0
    quality = RepQuality(
        rep_number=rep_number,
        frame_count=len(frames),
        duration_seconds=duration,
        phases=phases,
        smoothness=calculate_smoothness(values),
        symmetry=calculate_symmetry(frames),
        controlled_tempo=analyze_tempo_control(phases),
        issues=issues,
    )
    logger.debug(
        "Rep %d: smoothness=%d symmetry=%d tempo=%d issues=%d",
        rep_number, quality.smoothness, quality.symmetry, quality.controlled_tempo, len(issues),
    )
    return quality


def compare_reps(analyses: Sequence[RepQuality]) -> Optional[RepComparison]:
    """Set-level quality summary; None with fewer than two reps."""
    n = len(analyses)
    if n < 2:
        return None

    smoothness = np.array([a.smoothness for a in analyses], dtype=np.float64)
    symmetry = np.array([a.symmetry for a in analyses], dtype=np.float64)
    tempo = np.array([a.controlled_tempo for a in analyses], dtype=np.float64)
    comparison = RepComparison(
        total_reps=n,
        average_quality=round_half_up((smoothness.mean() + symmetry.mean() + tempo.mean()) / 3),
    )

    if n >= 3:
        first_third = smoothness[: n // 3]
        last_third = smoothness[(2 * n) // 3:]
        if last_third.mean() < first_third.mean() * FATIGUE_SMOOTHNESS_RATIO:
            logger.info(
                "Fatigue detected: smoothness %.1f -> %.1f",
                first_third.mean(), last_third.mean(),
            )
            comparison.fatigue_detected = True
            comparison.recommendations.append(FATIGUE_RECOMMENDATION)
    return comparison
