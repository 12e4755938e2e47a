"""
Geometry kernel: pure functions over normalized pose landmarks.

Angles are measured at the middle point in the image plane, as the
difference of the two rays' atan2 headings folded into [0, 180]. Within this
module only the back-rounding check reads depth. An angle that
cannot be computed is ``None`` rather than 0, so a flat angle and an
unknown angle never collide.
"""

import math
from typing import Optional

import numpy as np

from .schemas import Landmark

# Fraction of the hip-to-shoulder line where the mid-back estimate sits.
MID_BACK_FRACTION: float = 0.4
BACK_ROUNDING_Z_LIMIT: float = 0.14
BACK_ROUNDING_X_LIMIT: float = 0.16
HIPS_BACK_ANGLE_LIMIT: float = 75.0
HIPS_BACK_OFFSET_LIMIT: float = 0.12

_EPS = 1e-9


def is_usable(lm: Optional[Landmark]) -> bool:
    """A landmark is usable iff it exists and x and y are finite."""
    return lm is not None and lm.usable


def is_visible(lm: Optional[Landmark], threshold: float) -> bool:
    """Usable and either carries no visibility or reaches ``threshold``."""
    return is_usable(lm) and lm.is_visible(threshold)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves going up (``round`` rounds halves to even)."""
    return int(math.floor(float(value) + 0.5))


def joint_angle(
    a: Optional[Landmark],
    b: Optional[Landmark],
    c: Optional[Landmark],
) -> Optional[float]:
    """Angle at vertex ``b`` between rays b→a and b→c, in degrees [0, 180].

    Measured in the image plane; depth is ignored. Returns None if any point
    is missing or unusable, or if either ray has zero length.
    """
    if not (is_usable(a) and is_usable(b) and is_usable(c)):
        return None
    if np.hypot(a.x - b.x, a.y - b.y) < _EPS or np.hypot(c.x - b.x, c.y - b.y) < _EPS:
        return None

    radians = np.arctan2(c.y - b.y, c.x - b.x) - np.arctan2(a.y - b.y, a.x - b.x)
    degrees = abs(float(np.degrees(radians)))
    if degrees > 180.0:
        degrees = 360.0 - degrees
    return degrees


def angle(
    a: Optional[Landmark],
    b: Optional[Landmark],
    c: Optional[Landmark],
) -> float:
    """Sentinel form of :func:`joint_angle`: 0.0 stands for "unknown"."""
    value = joint_angle(a, b, c)
    return 0.0 if value is None else value


def distance(a: Optional[Landmark], b: Optional[Landmark]) -> Optional[float]:
    """Euclidean distance in the image plane, or None for unusable input."""
    if not (is_usable(a) and is_usable(b)):
        return None
    return float(np.hypot(a.x - b.x, a.y - b.y))


def _min_visibility(*points: Landmark) -> Optional[float]:
    values = [p.visibility for p in points if p.visibility is not None]
    return min(values) if values else None


def interpolate(p: Landmark, q: Landmark, t: float) -> Landmark:
    """Point at fraction ``t`` from ``p`` toward ``q``.

    A missing depth is read as 0; the result inherits the lower visibility.
    """
    pz = p.z or 0.0
    qz = q.z or 0.0
    return Landmark(
        x=p.x + (q.x - p.x) * t,
        y=p.y + (q.y - p.y) * t,
        z=pz + (qz - pz) * t,
        visibility=_min_visibility(p, q),
    )


def midpoint(p: Landmark, q: Landmark) -> Landmark:
    return interpolate(p, q, 0.5)


def mid_back(
    left_shoulder: Landmark,
    right_shoulder: Landmark,
    left_hip: Landmark,
    right_hip: Landmark,
) -> Landmark:
    """Synthetic lower-thoracic point, 40% of the way from mid-hip to mid-shoulder."""
    mid_shoulder = midpoint(left_shoulder, right_shoulder)
    mid_hip = midpoint(left_hip, right_hip)
    point = interpolate(mid_hip, mid_shoulder, MID_BACK_FRACTION)
    return point.model_copy(update={
        "visibility": _min_visibility(left_shoulder, right_shoulder, left_hip, right_hip),
    })


def back_rounding(
    left_shoulder: Optional[Landmark],
    right_shoulder: Optional[Landmark],
    left_hip: Optional[Landmark],
    right_hip: Optional[Landmark],
) -> Optional[dict]:
    """Deviation of the mid-back estimate from a straight shoulder-hip line.

    Returns a dict with ``mid_back``, ``z_deviation`` (positive = rounding
    away from the camera), ``x_deviation`` (lateral) and ``is_rounded``.
    """
    points = (left_shoulder, right_shoulder, left_hip, right_hip)
    if not all(is_usable(p) for p in points):
        return None

    back = mid_back(*points)
    expected_x = (
        (left_hip.x + right_hip.x) / 2
        + ((left_shoulder.x + right_shoulder.x) / 2 - (left_hip.x + right_hip.x) / 2)
        * MID_BACK_FRACTION
    )
    z_deviation = back.z - ((left_shoulder.z or 0.0) + (left_hip.z or 0.0)) / 2
    x_deviation = back.x - expected_x

    return {
        "mid_back": back,
        "z_deviation": float(z_deviation),
        "x_deviation": float(x_deviation),
        "is_rounded": bool(
            z_deviation > BACK_ROUNDING_Z_LIMIT or abs(x_deviation) > BACK_ROUNDING_X_LIMIT
        ),
    }


def hip_position(
    left_shoulder: Optional[Landmark],
    left_hip: Optional[Landmark],
    left_knee: Optional[Landmark],
) -> Optional[dict]:
    """Shoulder-hip-knee angle and horizontal hip offset behind the knee."""
    if not (is_usable(left_shoulder) and is_usable(left_hip) and is_usable(left_knee)):
        return None

    hip_angle = joint_angle(left_shoulder, left_hip, left_knee)
    offset = left_hip.x - left_knee.x
    too_far_back = offset > HIPS_BACK_OFFSET_LIMIT or (
        hip_angle is not None and hip_angle < HIPS_BACK_ANGLE_LIMIT
    )
    return {
        "shoulder_hip_knee_angle": hip_angle,
        "hip_knee_horizontal_offset": float(offset),
        "hips_too_far_back": bool(too_far_back),
    }
