"""
Validation rule tables for every supported exercise.

Each rule is an immutable record carrying an id, a severity, user-facing
text, the landmark indices it concerns, and a ``check`` predicate over the
frame's named landmarks and extracted features. Thresholds are in
normalized image units (0-1) or degrees.
"""

from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

from .schemas import Landmark, Severity

NamedLandmarks = dict[str, Optional[Landmark]]
RuleCheck = Callable[[NamedLandmarks, dict], bool]


class ValidationRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    severity: Severity
    description: str
    correction: str
    affected_joints: tuple[int, ...]
    check: RuleCheck


# ---------------------------------------------------------------------------
# Predicate helpers (an unknown feature never fires)
# ---------------------------------------------------------------------------

def _gt(value: Optional[float], limit: float) -> bool:
    return value is not None and value > limit


def _lt(value: Optional[float], limit: float) -> bool:
    return value is not None and value < limit


def _between(value: Optional[float], low: float, high: float) -> bool:
    return value is not None and low < value < high


def _flag(features: dict, key: str, flag: str) -> bool:
    entry = features.get(key)
    return bool(entry and entry.get(flag))


def _mean(lm: NamedLandmarks, left: str, right: str, axis: str) -> float:
    return (getattr(lm[left], axis) + getattr(lm[right], axis)) / 2


def _width(lm: NamedLandmarks, left: str, right: str) -> float:
    return abs(lm[left].x - lm[right].x)


# ============================================================================
# Squat
# ============================================================================

def _knee_valgus(lm, f):
    return _width(lm, "left_knee", "right_knee") < _width(lm, "left_ankle", "right_ankle") * 0.85


def _heel_lift(lm, f):
    return _mean(lm, "left_ankle", "right_ankle", "y") < _mean(lm, "left_knee", "right_knee", "y") - 0.15


def _knee_forward_travel(lm, f):
    return abs(_mean(lm, "left_knee", "right_knee", "x") - _mean(lm, "left_ankle", "right_ankle", "x")) > 0.15


def _asymmetric_descent(lm, f):
    return abs(lm["left_knee"].y - lm["right_knee"].y) > 0.08


SQUAT_RULES: tuple[ValidationRule, ...] = (
    ValidationRule(
        id="knee_valgus",
        name="Knee Valgus",
        severity=Severity.HIGH,
        description="Knees caving inward - increases ACL/MCL injury risk",
        correction='Push knees outward over toes. Cue: "Spread the floor" with feet. Strengthen glute medius.',
        affected_joints=(25, 26),
        check=_knee_valgus,
    ),
    ValidationRule(
        id="shallow_depth",
        name="Insufficient Depth",
        severity=Severity.MEDIUM,
        description="Not squatting deep enough - reduces muscle activation",
        correction="Lower until hip crease is below knee level (parallel or below).",
        affected_joints=(23, 24, 25, 26),
        check=lambda lm, f: _gt(f.get("knee_angle"), 100),
    ),
    ValidationRule(
        id="excessive_lean",
        name="Excessive Forward Lean",
        severity=Severity.MEDIUM,
        description="Leaning too far forward - shifts stress to lower back",
        correction="Keep chest up, core tight. May indicate weak quads or limited ankle mobility.",
        affected_joints=(11, 12, 23, 24),
        check=lambda lm, f: _lt(f.get("hip_angle"), 70),
    ),
    ValidationRule(
        id="heel_lift",
        name="Heel Elevation",
        severity=Severity.HIGH,
        description="Heels lifting off ground - compromises balance and power",
        correction="Keep weight on whole foot. Work on ankle dorsiflexion mobility.",
        affected_joints=(27, 28),
        check=_heel_lift,
    ),
    ValidationRule(
        id="knee_forward_travel",
        name="Excessive Knee Forward Travel",
        severity=Severity.LOW,
        description="Knees traveling excessively past toes",
        correction="Some forward travel is normal; excessive travel puts weight on the toes. Sit back into the hips.",
        affected_joints=(25, 26, 27, 28),
        check=_knee_forward_travel,
    ),
    ValidationRule(
        id="asymmetric_descent",
        name="Asymmetric Squat Pattern",
        severity=Severity.MEDIUM,
        description="Uneven weight distribution or hip shift",
        correction="Address mobility or strength imbalances between sides.",
        affected_joints=(23, 24, 25, 26),
        check=_asymmetric_descent,
    ),
    ValidationRule(
        id="back_rounding_squat",
        name="Excessive Back Rounding",
        severity=Severity.CRITICAL,
        description="Thoracic/lumbar spine flexing excessively - high injury risk",
        correction='Keep chest up and engage lats ("proud chest"). Lower the weight if needed.',
        affected_joints=(11, 12, 23, 24),
        check=lambda lm, f: _flag(f, "back_rounding", "is_rounded"),
    ),
    ValidationRule(
        id="hips_too_far_back",
        name="Hips Too Far Back",
        severity=Severity.MEDIUM,
        description="Hips shifting excessively behind knees",
        correction="Keep hips centered over midfoot; ankle mobility work or squat shoes allow a more upright torso.",
        affected_joints=(23, 24, 25, 26),
        check=lambda lm, f: _flag(f, "hip_position", "hips_too_far_back"),
    ),
)


# ============================================================================
# Deadlift
# ============================================================================

def _hips_too_low(lm, f):
    shoulder_hip = abs(lm["left_shoulder"].y - lm["left_hip"].y)
    hip_knee = abs(lm["left_hip"].y - lm["left_knee"].y)
    return shoulder_hip < hip_knee * 0.7


def _hips_rising_first(lm, f):
    return _lt(f.get("back_angle"), 140) and lm["left_hip"].y < lm["left_shoulder"].y


def _shoulders_behind_bar(lm, f):
    return _mean(lm, "left_shoulder", "right_shoulder", "x") > _mean(lm, "left_hip", "right_hip", "x") + 0.1


DEADLIFT_RULES: tuple[ValidationRule, ...] = (
    ValidationRule(
        id="rounded_back",
        name="Spinal Flexion",
        severity=Severity.CRITICAL,
        description="Back rounding detected - high injury risk to spinal discs",
        correction="Maintain a neutral spine at all times. Engage lats, chest up.",
        affected_joints=(11, 12, 23, 24),
        check=lambda lm, f: _lt(f.get("back_angle"), 150),
    ),
    ValidationRule(
        id="mid_back_rounding",
        name="Mid-Back Rounding",
        severity=Severity.CRITICAL,
        description="Thoracic spine rounding - loss of lat engagement and spinal stability",
        correction='"Bend the bar" to engage lats. Keep chest proud, shoulders back.',
        affected_joints=(11, 12, 23, 24),
        check=lambda lm, f: _flag(f, "back_rounding", "is_rounded"),
    ),
    ValidationRule(
        id="hips_too_low",
        name="Low Hip Position",
        severity=Severity.MEDIUM,
        description="Hips starting too low - turning the deadlift into a squat",
        correction="Raise hips until shoulders are slightly in front of the bar. This is a hip hinge.",
        affected_joints=(23, 24),
        check=_hips_too_low,
    ),
    ValidationRule(
        id="hips_rising_first",
        name="Hips Rising First",
        severity=Severity.HIGH,
        description="Hips shooting up faster than shoulders",
        correction='Push through the floor while holding the hip-shoulder angle. Cue: "Leg press the floor away".',
        affected_joints=(11, 12, 23, 24),
        check=_hips_rising_first,
    ),
    ValidationRule(
        id="hyperextension",
        name="Lumbar Hyperextension",
        severity=Severity.MEDIUM,
        description="Over-arching at lockout - compresses lumbar spine",
        correction="Finish by squeezing glutes and standing tall. Do not lean back.",
        affected_joints=(23, 24),
        check=lambda lm, f: _gt(f.get("back_angle"), 185),
    ),
    ValidationRule(
        id="shoulders_behind_bar",
        name="Shoulders Behind Bar",
        severity=Severity.MEDIUM,
        description="Starting with shoulders behind the bar",
        correction="Start with shoulders slightly in front of or directly over the bar.",
        affected_joints=(11, 12),
        check=_shoulders_behind_bar,
    ),
)


# ============================================================================
# Overhead press
# ============================================================================

def _elbow_flare(ratio: float) -> RuleCheck:
    def check(lm, f):
        return _width(lm, "left_elbow", "right_elbow") > _width(lm, "left_shoulder", "right_shoulder") * ratio
    return check


def _forward_press_path(lm, f):
    return _mean(lm, "left_wrist", "right_wrist", "x") > _mean(lm, "left_shoulder", "right_shoulder", "x") + 0.12


def _using_leg_drive(lm, f):
    knees = (lm.get("left_knee"), lm.get("right_knee"))
    if any(k is None for k in knees):
        return False
    knee_y = (knees[0].y + knees[1].y) / 2
    return abs(knee_y - _mean(lm, "left_hip", "right_hip", "y")) > 0.2


OVERHEAD_PRESS_RULES: tuple[ValidationRule, ...] = (
    ValidationRule(
        id="back_arch",
        name="Excessive Lumbar Extension",
        severity=Severity.HIGH,
        description="Excessive back arching - compresses lumbar spine under load",
        correction="Squeeze glutes, tuck hips under, keep ribs down. Lower the weight if arching persists.",
        affected_joints=(23, 24),
        check=lambda lm, f: _lt(f.get("body_angle"), 165),
    ),
    ValidationRule(
        id="mid_back_rounding_press",
        name="Thoracic Rounding",
        severity=Severity.MEDIUM,
        description="Upper back rounding during press - reduces power and stability",
        correction='Keep chest proud, squeeze shoulder blades together. Think "tall spine".',
        affected_joints=(11, 12, 23, 24),
        check=lambda lm, f: _flag(f, "back_rounding", "is_rounded"),
    ),
    ValidationRule(
        id="incomplete_lockout",
        name="Incomplete Lockout",
        severity=Severity.MEDIUM,
        description="Not fully locking out overhead",
        correction="Press until arms are fully extended and ears are in front of arms.",
        affected_joints=(13, 14, 15, 16),
        check=lambda lm, f: _lt(f.get("elbow_angle"), 165),
    ),
    ValidationRule(
        id="elbow_flare_press",
        name="Elbow Flare",
        severity=Severity.MEDIUM,
        description="Elbows flaring out at start - reduces power and stresses shoulder",
        correction="Start with elbows about 45° in front of the body. Stack wrists over elbows.",
        affected_joints=(13, 14),
        check=_elbow_flare(1.3),
    ),
    ValidationRule(
        id="forward_press_path",
        name="Forward Press Path",
        severity=Severity.MEDIUM,
        description="Pressing the bar forward instead of straight up",
        correction="Move head back at start, press straight up, then move head forward under the bar.",
        affected_joints=(15, 16),
        check=_forward_press_path,
    ),
    ValidationRule(
        id="using_leg_drive",
        name="Using Leg Drive",
        severity=Severity.LOW,
        description="Using legs to initiate the press",
        correction="Keep legs locked and still. Needing leg drive means the weight may be too heavy.",
        affected_joints=(25, 26),
        check=_using_leg_drive,
    ),
)


# ============================================================================
# Bench press
# ============================================================================

def _uneven_press(lm, f):
    return abs(lm["left_elbow"].y - lm["right_elbow"].y) > 0.08


def _wrist_extension(lm, f):
    return abs(_mean(lm, "left_wrist", "right_wrist", "x") - _mean(lm, "left_elbow", "right_elbow", "x")) > 0.1


BENCH_PRESS_RULES: tuple[ValidationRule, ...] = (
    ValidationRule(
        id="elbow_flare",
        name="Excessive Elbow Flare",
        severity=Severity.HIGH,
        description="Elbows flared too wide - high shoulder injury risk",
        correction="Keep elbows at 45-75° from the torso.",
        affected_joints=(13, 14),
        check=_elbow_flare(1.4),
    ),
    ValidationRule(
        id="bar_bounce",
        name="No Pause at Bottom",
        severity=Severity.MEDIUM,
        description="Bouncing bar off chest",
        correction="Touch the chest lightly, pause briefly, then press.",
        affected_joints=(15, 16),
        check=lambda lm, f: _lt(f.get("elbow_angle"), 60),
    ),
    ValidationRule(
        id="uneven_press",
        name="Uneven Bar Path",
        severity=Severity.MEDIUM,
        description="One arm extending faster than the other",
        correction="Press evenly. A persistent gap may indicate a strength imbalance.",
        affected_joints=(13, 14, 15, 16),
        check=_uneven_press,
    ),
    ValidationRule(
        id="wrist_extension",
        name="Wrist Bent Back",
        severity=Severity.MEDIUM,
        description="Wrists bent backward - strains wrist joint",
        correction="Keep wrists straight and stacked over forearms.",
        affected_joints=(15, 16),
        check=_wrist_extension,
    ),
    ValidationRule(
        id="incomplete_lockout_bench",
        name="Incomplete Lockout",
        severity=Severity.LOW,
        description="Not fully extending arms at top",
        correction="Lock out elbows at the top of each rep without hyperextending.",
        affected_joints=(13, 14),
        check=lambda lm, f: _between(f.get("elbow_angle"), 120, 160),
    ),
)


# ============================================================================
# Pull-up
# ============================================================================

def _shoulder_shrug(lm, f):
    return _mean(lm, "left_hip", "right_hip", "y") - _mean(lm, "left_shoulder", "right_shoulder", "y") > 0.4


def _excessive_kip(lm, f):
    return abs(_mean(lm, "left_hip", "right_hip", "x") - _mean(lm, "left_shoulder", "right_shoulder", "x")) > 0.15


def _elbows_forward(lm, f):
    return _mean(lm, "left_elbow", "right_elbow", "x") > _mean(lm, "left_shoulder", "right_shoulder", "x") + 0.1


PULL_UP_RULES: tuple[ValidationRule, ...] = (
    ValidationRule(
        id="partial_rep",
        name="Partial Range of Motion",
        severity=Severity.MEDIUM,
        description="Not completing full range of motion",
        correction="Chin must clearly pass the bar at the top; arms fully extended at the bottom.",
        affected_joints=(13, 14),
        check=lambda lm, f: _between(f.get("elbow_angle"), 140, 170),
    ),
    ValidationRule(
        id="shoulder_shrug",
        name="Shoulders Shrugged",
        severity=Severity.MEDIUM,
        description="Shoulders elevated at bottom - lats not engaged",
        correction="At dead hang, actively pull the shoulders down before pulling.",
        affected_joints=(11, 12),
        check=_shoulder_shrug,
    ),
    ValidationRule(
        id="excessive_kip",
        name="Excessive Kipping",
        severity=Severity.LOW,
        description="Using body swing instead of strict pulling",
        correction="Keep the body still in a slight hollow position and pull with the lats.",
        affected_joints=(23, 24),
        check=_excessive_kip,
    ),
    ValidationRule(
        id="elbows_forward",
        name="Elbows Coming Forward",
        severity=Severity.MEDIUM,
        description="Elbows drifting forward during the pull",
        correction="Drive elbows down and back, not forward.",
        affected_joints=(13, 14),
        check=_elbows_forward,
    ),
    ValidationRule(
        id="chin_not_over",
        name="Chin Not Over Bar",
        severity=Severity.MEDIUM,
        description="Not pulling high enough",
        correction="Pull until the chin clearly passes bar height. Squeeze at the top.",
        affected_joints=(11, 12, 13, 14),
        check=lambda lm, f: _between(f.get("elbow_angle"), 90, 120),
    ),
)
