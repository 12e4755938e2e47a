"""
Exercise catalog: one ``ExerciseVariant`` per supported exercise.

A variant bundles everything the pipeline needs to analyze one exercise:
its feature extractor, ordered validation rules, visibility profiles,
camera guidance, rep-counting metric and phase configuration. Every stage
reaches exercise-specific behavior through :func:`get_exercise` only, so
adding an exercise means adding an extractor, a rule table and an entry
here.
"""

from typing import Callable, Literal, Sequence

from pydantic import BaseModel, ConfigDict

from . import features, rules
from .rules import ValidationRule
from .schemas import Landmark


class UnknownExerciseError(ValueError):
    """Raised when an exercise id has no catalog entry."""


class VisibilityProfile(BaseModel):
    """Landmarks a camera view must show, and the checks it supports."""
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    required: tuple[int, ...]
    checks: tuple[str, ...]


class CameraGuidance(BaseModel):
    model_config = ConfigDict(frozen=True)

    optimal: str
    alternatives: tuple[str, ...]
    description: str
    tips: tuple[str, ...]


class RepCountingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    metric: str
    fallback_metric: str
    threshold: float
    direction: Literal["down", "up"]


class ProgressionConfig(BaseModel):
    """Primary metric plus the phase cycle walked on each direction reversal."""
    model_config = ConfigDict(frozen=True)

    primary_metric: str
    phases: tuple[str, ...]


class ExerciseVariant(BaseModel):
    model_config = ConfigDict(frozen=True)

    exercise_id: str
    name: str
    category: str
    description: str
    muscles_targeted: tuple[str, ...]
    common_mistakes: tuple[str, ...]
    form_tips: tuple[str, ...]
    landmarks: dict[str, int]
    rules: tuple[ValidationRule, ...]
    profiles: tuple[VisibilityProfile, ...]
    camera_guidance: CameraGuidance
    rep_counting: RepCountingConfig
    progression: ProgressionConfig
    extract_features: Callable[[Sequence[Landmark]], dict]

    @property
    def rule_ids(self) -> list[str]:
        return [rule.id for rule in self.rules]

    @property
    def full_profile(self) -> VisibilityProfile:
        return self.profiles[0]

    def rule(self, rule_id: str) -> ValidationRule:
        for candidate in self.rules:
            if candidate.id == rule_id:
                return candidate
        raise KeyError(f"Rule '{rule_id}' not defined for '{self.exercise_id}'")


# ---------------------------------------------------------------------------
# Landmark name maps used by rule predicates
# ---------------------------------------------------------------------------
_LOWER_BODY = {
    "left_shoulder": 11, "right_shoulder": 12,
    "left_hip": 23, "right_hip": 24,
    "left_knee": 25, "right_knee": 26,
    "left_ankle": 27, "right_ankle": 28,
}
_UPPER_BODY = {
    "left_shoulder": 11, "right_shoulder": 12,
    "left_elbow": 13, "right_elbow": 14,
    "left_wrist": 15, "right_wrist": 16,
}
_UPPER_BODY_HIPS = {**_UPPER_BODY, "left_hip": 23, "right_hip": 24}
_UPPER_BODY_LEGS = {**_UPPER_BODY_HIPS, "left_knee": 25, "right_knee": 26}


# ============================================================================
# Variants
# ============================================================================

SQUAT = ExerciseVariant(
    exercise_id="squat",
    name="Barbell Squat",
    category="lower_body",
    description="Compound lower body exercise targeting quads, glutes, and core",
    muscles_targeted=("Quadriceps", "Glutes", "Hamstrings", "Core", "Spinal Erectors"),
    common_mistakes=(
        "Knees caving inward (valgus)",
        "Not reaching proper depth",
        "Excessive forward lean",
        "Heels lifting off ground",
        "Asymmetrical stance or descent",
    ),
    form_tips=(
        "Feet shoulder-width apart, toes slightly out (15-30°)",
        "Knees track over 2nd-3rd toes throughout movement",
        "Keep chest up and maintain neutral spine",
        "Descend until hip crease is below knee (parallel or deeper)",
        "Drive through midfoot and heels on ascent",
    ),
    landmarks=_LOWER_BODY,
    rules=rules.SQUAT_RULES,
    profiles=(
        VisibilityProfile(
            name="full",
            description="Full frontal or back view",
            required=(11, 12, 23, 24, 25, 26, 27, 28),
            checks=("knee_valgus", "shallow_depth", "excessive_lean", "heel_lift",
                    "knee_forward_travel", "asymmetric_descent", "back_rounding_squat",
                    "hips_too_far_back"),
        ),
        VisibilityProfile(
            name="partial_front",
            description="Lower body visible",
            required=(23, 24, 25, 26, 27, 28),
            checks=("knee_valgus", "shallow_depth", "heel_lift", "knee_forward_travel",
                    "asymmetric_descent"),
        ),
        VisibilityProfile(
            name="side_left",
            description="Left side view",
            required=(11, 23, 25, 27),
            checks=("shallow_depth", "excessive_lean", "hips_too_far_back"),
        ),
        VisibilityProfile(
            name="side_right",
            description="Right side view",
            required=(12, 24, 26, 28),
            checks=("shallow_depth", "excessive_lean"),
        ),
    ),
    camera_guidance=CameraGuidance(
        optimal="frontal_45deg",
        alternatives=("frontal", "back", "side"),
        description="Best: 45° angle from front showing full body",
        tips=(
            "Position camera at hip height",
            "Stand 6-8 feet away",
            "Ensure full body is visible (head to feet)",
            "A slight angle (45°) captures depth and knee tracking",
        ),
    ),
    rep_counting=RepCountingConfig(
        metric="hip_height", fallback_metric="knee_angle", threshold=0.08, direction="down",
    ),
    progression=ProgressionConfig(
        primary_metric="knee_angle", phases=("bottom", "ascent", "top", "descent"),
    ),
    extract_features=features.extract_squat_features,
)

DEADLIFT = ExerciseVariant(
    exercise_id="deadlift",
    name="Deadlift",
    category="lower_body",
    description="Full body compound exercise emphasizing the posterior chain",
    muscles_targeted=("Hamstrings", "Glutes", "Lower Back", "Lats", "Traps", "Grip"),
    common_mistakes=(
        "Rounded back (lumbar/thoracic flexion)",
        "Hips starting too low (squatting the weight)",
        "Hyperextending at lockout",
        "Hips rising faster than shoulders",
    ),
    form_tips=(
        "Neutral spine throughout - no rounding",
        "Bar stays close to shins and thighs",
        "Hip hinge pattern - not a squat",
        'Engage lats - "bend the bar"',
        "Full lockout: squeeze glutes, do not hyperextend",
    ),
    landmarks=_LOWER_BODY,
    rules=rules.DEADLIFT_RULES,
    profiles=(
        VisibilityProfile(
            name="full",
            description="Full side view",
            required=(11, 12, 23, 24, 25, 26),
            checks=("rounded_back", "mid_back_rounding", "hips_too_low", "hips_rising_first",
                    "hyperextension", "shoulders_behind_bar"),
        ),
        VisibilityProfile(
            name="side_left",
            description="Left side view",
            required=(11, 23, 25),
            checks=("rounded_back", "hips_too_low", "hips_rising_first", "hyperextension"),
        ),
        VisibilityProfile(
            name="side_right",
            description="Right side view",
            required=(12, 24, 26),
            checks=("hips_too_low",),
        ),
    ),
    camera_guidance=CameraGuidance(
        optimal="side",
        alternatives=("side_45deg",),
        description="Best: direct side view at hip height",
        tips=(
            "Position camera at hip height",
            "Keep the camera perpendicular to your body",
            "Capture the full range: bar on ground to lockout",
            "Show your full side profile",
        ),
    ),
    rep_counting=RepCountingConfig(
        metric="hip_height", fallback_metric="knee_angle", threshold=0.10, direction="down",
    ),
    progression=ProgressionConfig(
        primary_metric="back_angle", phases=("bottom", "ascent", "top", "descent"),
    ),
    extract_features=features.extract_deadlift_features,
)

OVERHEAD_PRESS = ExerciseVariant(
    exercise_id="overhead_press",
    name="Overhead Press",
    category="upper_body",
    description="Shoulder and triceps builder with core stabilization",
    muscles_targeted=("Anterior Deltoids", "Lateral Deltoids", "Triceps", "Upper Chest", "Core"),
    common_mistakes=(
        "Excessive back arching",
        "Not locking out fully",
        "Bar path not vertical",
        "Elbows flaring out",
        "Using leg drive (push press)",
    ),
    form_tips=(
        "Core engaged, squeeze glutes, ribs down",
        "Press the bar in a straight vertical line",
        "Full lockout with scapular elevation at top",
        "Strict press - no leg drive or hip thrust",
    ),
    landmarks=_UPPER_BODY_LEGS,
    rules=rules.OVERHEAD_PRESS_RULES,
    profiles=(
        VisibilityProfile(
            name="full",
            description="Full frontal view",
            required=(11, 12, 13, 14, 15, 16, 23, 24),
            checks=("back_arch", "mid_back_rounding_press", "incomplete_lockout",
                    "elbow_flare_press", "forward_press_path", "using_leg_drive"),
        ),
        VisibilityProfile(
            name="front_upper",
            description="Upper body frontal",
            required=(11, 12, 13, 14, 15, 16),
            checks=("incomplete_lockout", "elbow_flare_press", "forward_press_path"),
        ),
        VisibilityProfile(
            name="side",
            description="Side view",
            required=(11, 13, 15, 23),
            checks=("back_arch", "forward_press_path"),
        ),
    ),
    camera_guidance=CameraGuidance(
        optimal="frontal_45deg",
        alternatives=("frontal", "side"),
        description="Best: 45° front angle showing shoulders to hips",
        tips=(
            "Position camera at shoulder height",
            "Capture from shoulders to hips at minimum",
            "A 45° angle shows bar path and body position",
            "Ensure both arms are visible",
        ),
    ),
    rep_counting=RepCountingConfig(
        metric="wrist_height", fallback_metric="shoulder_height", threshold=0.12, direction="up",
    ),
    progression=ProgressionConfig(
        primary_metric="elbow_angle", phases=("bottom", "drive", "overhead", "descent"),
    ),
    extract_features=features.extract_overhead_press_features,
)

BENCH_PRESS = ExerciseVariant(
    exercise_id="bench_press",
    name="Bench Press",
    category="upper_body",
    description="Upper body pressing movement for chest, shoulders, and triceps",
    muscles_targeted=("Pectoralis Major", "Anterior Deltoids", "Triceps", "Serratus Anterior"),
    common_mistakes=(
        "Elbows flared too wide",
        "Bouncing bar off chest",
        "Uneven bar path",
        "Wrists bent back",
    ),
    form_tips=(
        "Retract and depress shoulder blades",
        "Elbows at roughly 45-75° from torso",
        "Touch mid-sternum, pause, press",
        "Wrists straight, bar over forearm",
    ),
    landmarks=_UPPER_BODY,
    rules=rules.BENCH_PRESS_RULES,
    profiles=(
        VisibilityProfile(
            name="full",
            description="Full upper body view",
            required=(11, 12, 13, 14, 15, 16),
            checks=("elbow_flare", "bar_bounce", "uneven_press", "wrist_extension",
                    "incomplete_lockout_bench"),
        ),
        VisibilityProfile(
            name="side_left",
            description="Left side view",
            required=(11, 13, 15),
            checks=("wrist_extension",),
        ),
        VisibilityProfile(
            name="side_right",
            description="Right side view",
            required=(12, 14, 16),
            checks=("wrist_extension",),
        ),
    ),
    camera_guidance=CameraGuidance(
        optimal="side",
        alternatives=("frontal_45deg", "angled"),
        description="Best: side view at bench height",
        tips=(
            "Position camera level with the bench",
            "Capture from hands to hips",
            "Keep both elbows in frame",
        ),
    ),
    rep_counting=RepCountingConfig(
        metric="wrist_height", fallback_metric="elbow_height", threshold=0.10, direction="down",
    ),
    progression=ProgressionConfig(
        primary_metric="elbow_angle", phases=("top", "descent", "bottom", "ascent"),
    ),
    extract_features=features.extract_bench_press_features,
)

PULL_UP = ExerciseVariant(
    exercise_id="pull_up",
    name="Pull-Up",
    category="upper_body",
    description="Vertical pulling exercise for back and biceps",
    muscles_targeted=("Latissimus Dorsi", "Biceps", "Rear Deltoids", "Rhomboids", "Core"),
    common_mistakes=(
        "Not going full range",
        "Kipping or swinging",
        "Shoulders shrugged at bottom",
        "Chin not clearing bar",
        "Elbows flaring forward",
    ),
    form_tips=(
        "Dead hang at bottom with arms fully extended",
        "Initiate by depressing and retracting the scapula",
        "Pull chin clearly over the bar",
        "Controlled descent - 2-3 seconds",
    ),
    landmarks=_UPPER_BODY_HIPS,
    rules=rules.PULL_UP_RULES,
    profiles=(
        VisibilityProfile(
            name="full",
            description="Full frontal view",
            required=(11, 12, 13, 14, 15, 16, 23, 24),
            checks=("partial_rep", "shoulder_shrug", "excessive_kip", "elbows_forward",
                    "chin_not_over"),
        ),
        VisibilityProfile(
            name="upper",
            description="Upper body only",
            required=(11, 12, 13, 14, 15, 16),
            checks=("partial_rep", "elbows_forward", "chin_not_over"),
        ),
        VisibilityProfile(
            name="side_left",
            description="Left side view",
            required=(11, 13, 15, 23),
            checks=("partial_rep", "chin_not_over"),
        ),
    ),
    camera_guidance=CameraGuidance(
        optimal="frontal",
        alternatives=("frontal_45deg", "back"),
        description="Best: frontal view showing bar to hips",
        tips=(
            "Position camera at chest height, a few steps back",
            "Keep the bar and your hips in frame",
            "Ensure both arms are visible",
        ),
    ),
    rep_counting=RepCountingConfig(
        metric="shoulder_height", fallback_metric="chin_height", threshold=0.15, direction="up",
    ),
    progression=ProgressionConfig(
        primary_metric="elbow_angle", phases=("bottom", "ascent", "top", "descent"),
    ),
    extract_features=features.extract_pull_up_features,
)


EXERCISES: dict[str, ExerciseVariant] = {
    variant.exercise_id: variant
    for variant in (SQUAT, DEADLIFT, OVERHEAD_PRESS, BENCH_PRESS, PULL_UP)
}


def get_exercise(exercise_id: str) -> ExerciseVariant:
    """Return the catalog entry for ``exercise_id``.

    Raises:
        UnknownExerciseError: If the id is not in the catalog.
    """
    try:
        return EXERCISES[exercise_id]
    except KeyError:
        raise UnknownExerciseError(
            f"Exercise '{exercise_id}' not found. Valid ids: {', '.join(EXERCISES)}"
        ) from None


def list_exercises() -> list[ExerciseVariant]:
    """All catalog entries in catalog order."""
    return list(EXERCISES.values())
