"""Synthetic landmark builders shared by the test modules."""

import math
from typing import Optional

import numpy as np

from formcoach.pipelines.schemas import FrameResult, Issue, Landmark, Severity

FPS = 30.0


def squat_depth(hip_y: float) -> float:
    """0 when standing (hips at 0.40), 1 at the bottom (hips at 0.65)."""
    return min(1.0, max(0.0, (hip_y - 0.40) / 0.25))


def make_pose_array(
    hip_y: float,
    knee_offset: Optional[float] = None,
    visibility: float = 0.9,
    visible: Optional[set[int]] = None,
) -> np.ndarray:
    """One (33, 4) frame of a squatter facing the camera.

    The lifter's left side sits at x = 0.60, the right at x = 0.40, with
    shoulders 0.25 above the hips, knees at y = 0.75 and ankles at y = 0.90.
    ``knee_offset`` moves each knee sideways away from the midline (negative
    caves it in); by default it tracks depth, 0 standing and 0.15 at the
    bottom. The image-plane knee angle then runs from 180° standing to about
    79° at the bottom and crosses 100° near depth 0.82.
    Landmarks outside ``visible`` (when given) get visibility 0.1.
    """
    if knee_offset is None:
        knee_offset = 0.15 * squat_depth(hip_y)
    arr = np.tile([0.5, 0.1, 0.0, visibility], (33, 1)).astype(np.float64)
    for side, x, outward in ((0, 0.60, 1.0), (1, 0.40, -1.0)):
        arr[11 + side] = [x, hip_y - 0.25, 0.0, visibility]                  # shoulder
        arr[23 + side] = [x, hip_y, 0.0, visibility]                         # hip
        arr[25 + side] = [x + outward * knee_offset, 0.75, 0.0, visibility]  # knee
        arr[27 + side] = [x, 0.90, 0.0, visibility]                          # ankle
    if visible is not None:
        for idx in range(33):
            if idx not in visible:
                arr[idx, 3] = 0.1
    return arr


def squat_hip_y(i: int, period: int = 30) -> float:
    """Hip height oscillating 0.40 (standing) ↔ 0.65 (bottom)."""
    return 0.525 - 0.125 * math.cos(2 * math.pi * i / period)


def make_squat_sequence(n_frames: int = 90, **kwargs) -> np.ndarray:
    """(N, 33, 4) sequence of three squats at 30 fps for N = 90."""
    return np.stack([make_pose_array(squat_hip_y(i), **kwargs) for i in range(n_frames)])


def make_landmarks(arr: np.ndarray) -> list[Landmark]:
    return [Landmark(x=r[0], y=r[1], z=r[2], visibility=r[3]) for r in arr]


def make_frame_result(
    index: int,
    landmarks: Optional[list[Landmark]] = None,
    issues: Optional[list[Issue]] = None,
    features: Optional[dict] = None,
    fps: float = FPS,
) -> FrameResult:
    return FrameResult(
        original_index=index,
        time=index / fps,
        landmarks=landmarks,
        issues=issues or [],
        features=features or {},
    )


def make_issue(rule_id: str, index: int, severity: Severity = Severity.HIGH, name: str = "") -> Issue:
    return Issue(
        rule_id=rule_id,
        name=name or rule_id,
        severity=severity,
        time=index / FPS,
        frame_index=index,
    )


def lm(x: float, y: float, z: Optional[float] = None, visibility: Optional[float] = None) -> Landmark:
    return Landmark(x=x, y=y, z=z, visibility=visibility)
