"""
Stage 3 — Adaptive completeness analysis.

Decides how much of an exercise can be judged from the frames at hand:

    1. Count, per landmark, how often it is visible across frames
    2. Pick the visibility profile (full / partial / side) that best
       matches the consistently visible landmarks
    3. Classify the camera angle from shoulder and hip geometry
    4. Build non-blocking recommendations for the next recording

The selected profile's confidence later scales the workout score.
"""

import logging
from typing import Iterable, Optional, Sequence

from .catalog import get_exercise
from .config import (
    COMPLETENESS_CONSISTENCY,
    COMPLETENESS_VISIBILITY,
    NUM_LANDMARKS,
)
from .geometry import is_usable
from .preprocessing import (
    LEFT_HIP,
    LEFT_SHOULDER,
    RIGHT_HIP,
    RIGHT_SHOULDER,
    landmarks_to_body_parts,
)
from .schemas import (
    AnalysisMode,
    CameraAngle,
    CameraGuidanceReport,
    CompletenessReport,
    FrameResult,
    Landmark,
    LandmarkAvailability,
    LandmarkStats,
    QualityMetrics,
    Recommendation,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Camera-angle thresholds (normalized image widths / depth differences)
# ---------------------------------------------------------------------------
SIDE_MAX_WIDTH: float = 0.1
FRONTAL_MIN_WIDTH: float = 0.25
FRONTAL_MAX_DEPTH: float = 0.05
ANGLED_MIN_WIDTH: float = 0.15

ANGLE_IMPROVEMENTS: dict[str, str] = {
    "side_to_frontal": "Rotate camera 90° to face you directly",
    "side_to_frontal_45deg": "Rotate camera 45° toward your front",
    "frontal_to_side": "Rotate camera 90° to show your side profile",
    "unclear_to_frontal": "Position camera directly in front, hip height, 6-8 feet away",
    "unclear_to_side": "Position camera perpendicular to your side, hip height",
}
DEFAULT_IMPROVEMENT = "Adjust camera position for optimal angle"


# ---------------------------------------------------------------------------
# Landmark availability
# ---------------------------------------------------------------------------

def detect_available_landmarks(
    frames: Iterable[Optional[Sequence[Landmark]]],
    visibility_threshold: float = COMPLETENESS_VISIBILITY,
    consistency_threshold: float = COMPLETENESS_CONSISTENCY,
) -> LandmarkAvailability:
    """Find landmarks visible in at least ``consistency_threshold`` of frames.

    Args:
        frames: Per-frame landmark lists; None entries (detector misses)
            are skipped.
        visibility_threshold: Minimum visibility for a landmark to count as
            seen in one frame. Landmarks without visibility count as seen.
        consistency_threshold: Minimum visible fraction across frames.

    Returns:
        ``LandmarkAvailability`` with sorted available indices, per-index
        visible/total counts, and the number of frames inspected.
    """
    frames = list(frames)
    stats: dict[int, LandmarkStats] = {}

    for landmarks in frames:
        if landmarks is None:
            continue
        for index, lm in enumerate(landmarks):
            entry = stats.setdefault(index, LandmarkStats())
            entry.total_count += 1
            if lm is not None and lm.is_visible(visibility_threshold):
                entry.visible_count += 1

    available = sorted(
        index for index, entry in stats.items()
        if entry.total_count > 0
        and entry.visible_count / entry.total_count >= consistency_threshold
    )
    return LandmarkAvailability(available=available, stats=stats, total_frames=len(frames))


def determine_analysis_mode(exercise_id: str, available: Iterable[int]) -> AnalysisMode:
    """Pick the visibility profile with the highest coverage.

    Coverage is ``|required ∩ available| / |required|``; only a strictly
    higher score replaces the current best, so ties keep catalog order.

    Raises:
        UnknownExerciseError: If ``exercise_id`` is not in the catalog.
    """
    variant = get_exercise(exercise_id)
    available_set = set(available)

    best: Optional[AnalysisMode] = None
    best_score = 0.0
    for profile in variant.profiles:
        hits = [idx for idx in profile.required if idx in available_set]
        score = len(hits) / len(profile.required)
        if score > best_score:
            best_score = score
            best = AnalysisMode(
                name=profile.name,
                description=profile.description,
                confidence=score,
                required_landmarks=list(profile.required),
                available_checks=list(profile.checks),
                missing_landmarks=[idx for idx in profile.required if idx not in available_set],
            )

    if best is None:
        full = variant.full_profile
        return AnalysisMode(
            name="insufficient",
            description="Required landmarks not visible",
            confidence=0.0,
            required_landmarks=list(full.required),
            available_checks=[],
            missing_landmarks=list(full.required),
        )
    return best


# ---------------------------------------------------------------------------
# Camera angle
# ---------------------------------------------------------------------------

def detect_camera_angle(landmarks: Optional[Sequence[Landmark]]) -> CameraAngle:
    """Classify the camera view from one well-populated frame."""
    if landmarks is None or len(landmarks) < NUM_LANDMARKS:
        return CameraAngle(angle="unknown", confidence=0.0)

    ls, rs = landmarks[LEFT_SHOULDER], landmarks[RIGHT_SHOULDER]
    lh, rh = landmarks[LEFT_HIP], landmarks[RIGHT_HIP]
    if not all(is_usable(p) for p in (ls, rs, lh, rh)):
        return CameraAngle(angle="unknown", confidence=0.0)

    shoulder_width = abs(rs.x - ls.x)
    hip_width = abs(rh.x - lh.x)
    shoulder_depth = abs((rs.z or 0.0) - (ls.z or 0.0))
    hip_depth = abs((rh.z or 0.0) - (lh.z or 0.0))

    if shoulder_width < SIDE_MAX_WIDTH and hip_width < SIDE_MAX_WIDTH:
        return CameraAngle(angle="side", confidence=0.9, description="Side view detected")
    if shoulder_width > FRONTAL_MIN_WIDTH and hip_width > FRONTAL_MIN_WIDTH:
        if shoulder_depth < FRONTAL_MAX_DEPTH and hip_depth < FRONTAL_MAX_DEPTH:
            return CameraAngle(angle="frontal", confidence=0.85, description="Frontal view detected")
        return CameraAngle(angle="frontal_45deg", confidence=0.8, description="45° frontal view detected")
    if shoulder_width > ANGLED_MIN_WIDTH or hip_width > ANGLED_MIN_WIDTH:
        return CameraAngle(angle="angled", confidence=0.7, description="Angled view detected")
    return CameraAngle(angle="unclear", confidence=0.5, description="Camera angle unclear")


def camera_guidance(exercise_id: str, camera: CameraAngle, mode: AnalysisMode) -> CameraGuidanceReport:
    """Compare the detected view with the exercise's recommended views."""
    guidance = get_exercise(exercise_id).camera_guidance
    is_optimal = camera.angle == guidance.optimal or camera.angle in guidance.alternatives

    improvement = None
    if not is_optimal:
        key = f"{camera.angle}_to_{guidance.optimal}"
        improvement = ANGLE_IMPROVEMENTS.get(key, DEFAULT_IMPROVEMENT)

    return CameraGuidanceReport(
        current_angle=camera.angle,
        is_optimal=is_optimal,
        optimal_angle=guidance.optimal,
        description=guidance.description,
        tips=list(guidance.tips),
        improvement=improvement,
        confidence=mode.confidence,
        limited_analysis=mode.confidence < 1.0,
    )


def _recommendations(
    mode: AnalysisMode,
    guidance: CameraGuidanceReport,
    unavailable_checks: list[str],
) -> list[Recommendation]:
    recommendations: list[Recommendation] = []

    if unavailable_checks:
        recommendations.append(Recommendation(
            type="warning",
            category="analysis_scope",
            message=f"Cannot check: {', '.join(unavailable_checks)}",
            action=(
                "Improve camera angle to enable full analysis. "
                f"Missing {len(unavailable_checks)} checks."
            ),
        ))

    if not guidance.is_optimal:
        recommendations.append(Recommendation(
            type="info",
            category="optimization",
            message="Camera angle can be improved",
            action=guidance.improvement or guidance.description,
            tips=guidance.tips,
        ))

    if mode.missing_landmarks:
        parts = landmarks_to_body_parts(mode.missing_landmarks)
        recommendations.append(Recommendation(
            type="warning",
            category="visibility",
            message=f"Cannot see: {', '.join(parts)}",
            action="Ensure full body is visible in frame",
        ))

    return recommendations


def _insufficient_report(exercise_id: str) -> CompletenessReport:
    variant = get_exercise(exercise_id)
    full = variant.full_profile
    return CompletenessReport(
        mode=AnalysisMode(
            name="insufficient",
            description="No frames with detected pose",
            confidence=0.0,
            required_landmarks=list(full.required),
            missing_landmarks=list(full.required),
        ),
        completeness_score=0.0,
        available_landmarks=[],
        total_required=len(full.required),
        unavailable_checks=variant.rule_ids,
        camera=CameraAngle(angle="unknown", confidence=0.0),
        recommendations=[Recommendation(
            type="warning",
            category="visibility",
            message="Could not detect pose in any frames. Ensure full body is visible.",
            action="Ensure full body is visible in frame",
        )],
        quality_metrics=QualityMetrics(),
    )


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------

def generate_report(exercise_id: str, frames: Sequence[FrameResult]) -> CompletenessReport:
    """Compose availability, mode, camera angle and recommendations.

    Frames without landmarks are ignored; if none remain the report is
    a zero-confidence ``insufficient`` one rather than an error.
    """
    variant = get_exercise(exercise_id)
    posed = [frame.landmarks for frame in frames if frame.landmarks is not None]
    if not posed:
        logger.warning("No frames with a detected pose for '%s'", exercise_id)
        return _insufficient_report(exercise_id)

    availability = detect_available_landmarks(posed)
    mode = determine_analysis_mode(exercise_id, availability.available)

    good_frame = next((lms for lms in posed if len(lms) >= NUM_LANDMARKS), None)
    camera = detect_camera_angle(good_frame)
    guidance = camera_guidance(exercise_id, camera, mode)

    unavailable = [rule_id for rule_id in variant.rule_ids if rule_id not in mode.available_checks]

    logger.info(
        "Completeness for '%s': mode=%s confidence=%.2f camera=%s",
        exercise_id, mode.name, mode.confidence, camera.angle,
    )
    return CompletenessReport(
        mode=mode,
        completeness_score=mode.confidence * 100,
        available_landmarks=availability.available,
        total_required=len(variant.full_profile.required),
        unavailable_checks=unavailable,
        camera=camera,
        camera_guidance=guidance,
        recommendations=_recommendations(mode, guidance, unavailable),
        quality_metrics=QualityMetrics(
            landmark_visibility=mode.confidence,
            camera_angle_confidence=camera.confidence,
            overall_quality=(mode.confidence + camera.confidence) / 2,
        ),
    )
