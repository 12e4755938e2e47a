"""
Stage 1 — Per-exercise feature extraction.

Each extractor maps one frame's 33 landmarks to a flat dict of named
features (joint angles in degrees, derived posture checks). A feature is
None when the landmarks it needs are not usable.
"""

from typing import Optional, Sequence

from .geometry import back_rounding, hip_position, is_usable, joint_angle
from .preprocessing import (
    LEFT_ANKLE,
    LEFT_ELBOW,
    LEFT_HIP,
    LEFT_KNEE,
    LEFT_SHOULDER,
    LEFT_WRIST,
    RIGHT_ANKLE,
    RIGHT_ELBOW,
    RIGHT_HIP,
    RIGHT_KNEE,
    RIGHT_SHOULDER,
    RIGHT_WRIST,
    get_landmark,
)
from .schemas import Landmark

Features = dict


def _pair_mean(left: Optional[float], right: Optional[float]) -> tuple[Optional[float], Optional[float]]:
    """(mean, |left - right|) when both sides are known, else (None, None)."""
    if left is None or right is None:
        return None, None
    return (left + right) / 2, abs(left - right)


def _below(point: Landmark) -> Landmark:
    """A point one unit straight down the image from ``point``."""
    return Landmark(x=point.x, y=point.y + 1.0)


def _torso_features(landmarks: Sequence[Landmark]) -> Features:
    """Mid-back estimate and rounding check, when both shoulders and hips are usable."""
    rounding = back_rounding(
        get_landmark(landmarks, LEFT_SHOULDER),
        get_landmark(landmarks, RIGHT_SHOULDER),
        get_landmark(landmarks, LEFT_HIP),
        get_landmark(landmarks, RIGHT_HIP),
    )
    return {
        "back_rounding": rounding,
        "mid_back": rounding["mid_back"] if rounding else None,
    }


def _elbow_features(landmarks: Sequence[Landmark]) -> Features:
    left = joint_angle(
        get_landmark(landmarks, LEFT_SHOULDER),
        get_landmark(landmarks, LEFT_ELBOW),
        get_landmark(landmarks, LEFT_WRIST),
    )
    right = joint_angle(
        get_landmark(landmarks, RIGHT_SHOULDER),
        get_landmark(landmarks, RIGHT_ELBOW),
        get_landmark(landmarks, RIGHT_WRIST),
    )
    mean, asymmetry = _pair_mean(left, right)
    return {
        "left_elbow_angle": left,
        "right_elbow_angle": right,
        "elbow_angle": mean,
        "asymmetry": asymmetry,
    }


def _body_angle(landmarks: Sequence[Landmark]) -> Optional[float]:
    """Torso lean: angle at the left hip between the shoulder and the vertical."""
    shoulder = get_landmark(landmarks, LEFT_SHOULDER)
    hip = get_landmark(landmarks, LEFT_HIP)
    if not (is_usable(shoulder) and is_usable(hip)):
        return None
    return joint_angle(
        Landmark(x=shoulder.x, y=shoulder.y),
        Landmark(x=hip.x, y=hip.y),
        _below(hip),
    )


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------

def extract_squat_features(landmarks: Sequence[Landmark]) -> Features:
    left_knee = joint_angle(
        get_landmark(landmarks, LEFT_HIP),
        get_landmark(landmarks, LEFT_KNEE),
        get_landmark(landmarks, LEFT_ANKLE),
    )
    right_knee = joint_angle(
        get_landmark(landmarks, RIGHT_HIP),
        get_landmark(landmarks, RIGHT_KNEE),
        get_landmark(landmarks, RIGHT_ANKLE),
    )
    knee_angle, asymmetry = _pair_mean(left_knee, right_knee)

    features: Features = {
        "left_knee_angle": left_knee,
        "right_knee_angle": right_knee,
        "knee_angle": knee_angle,
        "asymmetry": asymmetry,
        "hip_angle": joint_angle(
            get_landmark(landmarks, LEFT_SHOULDER),
            get_landmark(landmarks, LEFT_HIP),
            get_landmark(landmarks, LEFT_KNEE),
        ),
        "hip_position": None,
    }
    features.update(_torso_features(landmarks))

    if is_usable(get_landmark(landmarks, LEFT_HIP)) and is_usable(get_landmark(landmarks, RIGHT_HIP)):
        features["hip_position"] = hip_position(
            get_landmark(landmarks, LEFT_SHOULDER),
            get_landmark(landmarks, LEFT_HIP),
            get_landmark(landmarks, LEFT_KNEE),
        )
    return features


def extract_deadlift_features(landmarks: Sequence[Landmark]) -> Features:
    features: Features = {
        "back_angle": joint_angle(
            get_landmark(landmarks, LEFT_SHOULDER),
            get_landmark(landmarks, LEFT_HIP),
            get_landmark(landmarks, LEFT_KNEE),
        ),
    }
    features.update(_torso_features(landmarks))
    return features


def extract_overhead_press_features(landmarks: Sequence[Landmark]) -> Features:
    features = _elbow_features(landmarks)
    features["body_angle"] = _body_angle(landmarks)
    features.update(_torso_features(landmarks))
    return features


def extract_bench_press_features(landmarks: Sequence[Landmark]) -> Features:
    return _elbow_features(landmarks)


def extract_pull_up_features(landmarks: Sequence[Landmark]) -> Features:
    return {
        "elbow_angle": joint_angle(
            get_landmark(landmarks, LEFT_SHOULDER),
            get_landmark(landmarks, LEFT_ELBOW),
            get_landmark(landmarks, LEFT_WRIST),
        ),
        "body_angle": _body_angle(landmarks),
    }
