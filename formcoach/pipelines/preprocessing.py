"""
Stage 0 — Landmark conventions & input preprocessing.

Receives raw pose landmarks (frames × 33 × 4) from a client or a detector
and turns them into the typed objects the pipeline consumes.

Pipeline:
    1. Validate input shape (N, 33, 4)
    2. Convert each row into a ``Landmark`` (NaN coordinates stay unusable)
    3. Stamp frames with monotonically increasing times from the fps
"""

import logging
from typing import Iterable, Optional, Sequence

import numpy as np

from .config import LANDMARK_VALUES, NUM_LANDMARKS
from .schemas import Landmark, VideoFrame

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# 33-point body model indices
# ---------------------------------------------------------------------------
NOSE = 0
LEFT_SHOULDER = 11
RIGHT_SHOULDER = 12
LEFT_ELBOW = 13
RIGHT_ELBOW = 14
LEFT_WRIST = 15
RIGHT_WRIST = 16
LEFT_HIP = 23
RIGHT_HIP = 24
LEFT_KNEE = 25
RIGHT_KNEE = 26
LEFT_ANKLE = 27
RIGHT_ANKLE = 28

LANDMARK_NAMES: dict[str, int] = {
    "nose": NOSE,
    "left_shoulder": LEFT_SHOULDER,
    "right_shoulder": RIGHT_SHOULDER,
    "left_elbow": LEFT_ELBOW,
    "right_elbow": RIGHT_ELBOW,
    "left_wrist": LEFT_WRIST,
    "right_wrist": RIGHT_WRIST,
    "left_hip": LEFT_HIP,
    "right_hip": RIGHT_HIP,
    "left_knee": LEFT_KNEE,
    "right_knee": RIGHT_KNEE,
    "left_ankle": LEFT_ANKLE,
    "right_ankle": RIGHT_ANKLE,
}

# Joint names used in user-facing visibility hints.
BODY_PARTS: dict[int, str] = {
    LEFT_SHOULDER: "shoulder", RIGHT_SHOULDER: "shoulder",
    LEFT_ELBOW: "elbow", RIGHT_ELBOW: "elbow",
    LEFT_WRIST: "wrist", RIGHT_WRIST: "wrist",
    LEFT_HIP: "hip", RIGHT_HIP: "hip",
    LEFT_KNEE: "knee", RIGHT_KNEE: "knee",
    LEFT_ANKLE: "ankle", RIGHT_ANKLE: "ankle",
}


def landmarks_to_body_parts(indices: Iterable[int]) -> list[str]:
    """Map landmark indices to de-duplicated joint names, first-seen order."""
    parts: list[str] = []
    for idx in indices:
        part = BODY_PARTS.get(idx)
        if part and part not in parts:
            parts.append(part)
    return parts


def get_landmark(landmarks: Optional[Sequence[Landmark]], index: int) -> Optional[Landmark]:
    """Return ``landmarks[index]`` or None when the frame is short or missing."""
    if landmarks is None or index >= len(landmarks):
        return None
    return landmarks[index]


def named_landmarks(
    landmarks: Sequence[Landmark],
    names: dict[str, int],
) -> dict[str, Optional[Landmark]]:
    """Select landmarks by name, e.g. ``{"left_knee": 25}`` → ``{"left_knee": Landmark}``."""
    return {name: get_landmark(landmarks, idx) for name, idx in names.items()}


# ---------------------------------------------------------------------------
# Array conversion
# ---------------------------------------------------------------------------

def validate_pose_sequence(pose_sequence) -> np.ndarray:
    """Validate and convert a raw pose sequence to a numpy array.

    Args:
        pose_sequence: 3D list/array (frames × 33 × 4).

    Returns:
        np.ndarray of shape (N, 33, 4), dtype float64.

    Raises:
        ValueError: If the shape is invalid.
    """
    try:
        arr = np.asarray(pose_sequence, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"pose_sequence must be numeric (frames × 33 × 4): {exc}") from exc

    if arr.ndim != 3:
        raise ValueError(
            f"pose_sequence must be 3-dimensional (frames × 33 × 4), "
            f"got shape {arr.shape}."
        )
    if arr.shape[1] != NUM_LANDMARKS:
        raise ValueError(
            f"Expected {NUM_LANDMARKS} landmarks per frame, got {arr.shape[1]}."
        )
    if arr.shape[2] != LANDMARK_VALUES:
        raise ValueError(
            f"Expected {LANDMARK_VALUES} values per landmark (x, y, z, visibility), "
            f"got {arr.shape[2]}."
        )
    return arr


def landmarks_from_array(frame_array) -> list[Landmark]:
    """Convert one (33, 3) or (33, 4) array into ``Landmark`` objects.

    NaN depth or visibility values become None.
    """
    arr = np.asarray(frame_array, dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] < 2:
        raise ValueError(
            f"landmark array must have shape (33, 2..4), got {arr.shape}."
        )

    result = []
    for row in arr:
        z = float(row[2]) if arr.shape[1] > 2 and np.isfinite(row[2]) else None
        vis = float(row[3]) if arr.shape[1] > 3 and np.isfinite(row[3]) else None
        result.append(Landmark(x=float(row[0]), y=float(row[1]), z=z, visibility=vis))
    return result


def frames_from_pose_sequence(pose_sequence, fps: float) -> list[VideoFrame]:
    """Wrap a validated (N, 33, 4) sequence into time-stamped frames.

    Each frame's ``image`` is its (33, 4) landmark array, ready for
    ``PrecomputedLandmarkDetector``.
    """
    if fps <= 0:
        raise ValueError(f"fps must be positive, got {fps}.")

    arr = validate_pose_sequence(pose_sequence)
    logger.info("Received pose sequence: %d frames at %.1f fps", arr.shape[0], fps)
    return [VideoFrame(time=i / fps, image=arr[i]) for i in range(arr.shape[0])]
