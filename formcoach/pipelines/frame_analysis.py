"""
Per-frame analysis: Stages 1-2 inside orchestrator workers.

Pipeline (per frame):
    1. Detect landmarks with the batch's detector
    2. Extract the exercise's features
    3. Validate against the exercise's rule table

A detector exception is logged and treated as a miss, so one bad frame
never fails its batch.
"""

import logging
from typing import Any, Sequence

from .catalog import get_exercise
from .schemas import FrameResult, VideoFrame
from .validation import validate

logger = logging.getLogger(__name__)

# (detector, exercise_id, frames, original_indices)
BatchPayload = tuple[Any, str, Sequence[VideoFrame], Sequence[int]]


def analyze_frame(detector, exercise_id: str, frame: VideoFrame, original_index: int) -> FrameResult:
    """Run detection, feature extraction and validation on one frame."""
    try:
        landmarks = detector.detect(frame.image)
    except Exception as exc:
        logger.warning("Detector failed on frame %d (t=%.3fs): %s", original_index, frame.time, exc)
        landmarks = None

    if landmarks is None:
        return FrameResult(original_index=original_index, time=frame.time)

    features = get_exercise(exercise_id).extract_features(landmarks)
    issues = validate(exercise_id, landmarks, features, time=frame.time, frame_index=original_index)
    return FrameResult(
        original_index=original_index,
        time=frame.time,
        landmarks=list(landmarks),
        issues=issues,
        features=features,
    )


def analyze_batch(payload: BatchPayload) -> list[FrameResult]:
    """Worker entry point: analyze every frame of one batch in order."""
    detector, exercise_id, frames, indices = payload
    if len(frames) != len(indices):
        raise ValueError(
            f"Batch has {len(frames)} frames but {len(indices)} indices."
        )
    return [
        analyze_frame(detector, exercise_id, frame, index)
        for frame, index in zip(frames, indices)
    ]
