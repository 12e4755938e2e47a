"""
Pose detectors and video frame sampling.

A detector is anything with ``detect(image) -> list[Landmark] | None``;
None means no person was found. Detectors travel inside each worker batch,
so they must pickle. On the thread backend each batch gets its own pickled
copy unless the detector sets ``thread_safe = True``.

``mediapipe`` and ``opencv-python`` are optional (``pip install
formcoach[detector]``) and imported only when a video is actually
processed.
"""

import logging
import math
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence, Union

import numpy as np

from .config import (
    FRAME_INTERVAL_STEPS,
    LONG_VIDEO_FRAME_INTERVAL,
    MAX_SAMPLED_FRAMES,
)
from .preprocessing import landmarks_from_array
from .schemas import Landmark, VideoFrame

logger = logging.getLogger(__name__)


class Detector(Protocol):
    def detect(self, image: Any) -> Optional[list[Landmark]]:
        ...


class PrecomputedLandmarkDetector:
    """Treat each frame's image as landmarks detected upstream.

    Accepts a (33, 3|4) array or a sequence of ``Landmark``. A None image, or
    an array with no finite x/y, is a miss.
    """

    thread_safe = True

    def detect(self, image: Any) -> Optional[list[Landmark]]:
        if image is None:
            return None
        if isinstance(image, (list, tuple)) and image and isinstance(image[0], Landmark):
            return list(image)

        arr = np.asarray(image, dtype=np.float64)
        if arr.ndim == 2 and arr.shape[1] >= 2 and not np.isfinite(arr[:, :2]).any():
            return None
        return landmarks_from_array(arr)


class MediaPipePoseDetector:
    """MediaPipe Pose on RGB uint8 images.

    The MediaPipe graph is created on first use in each process and dropped
    when the detector is pickled into a worker.
    """

    thread_safe = False

    def __init__(self, model_complexity: int = 1, min_detection_confidence: float = 0.5):
        self.model_complexity = model_complexity
        self.min_detection_confidence = min_detection_confidence
        self._pose = None

    def __getstate__(self):
        state = self.__dict__.copy()
        state["_pose"] = None
        return state

    def _get_pose(self):
        if self._pose is None:
            import mediapipe as mp

            self._pose = mp.solutions.pose.Pose(
                static_image_mode=True,
                model_complexity=self.model_complexity,
                min_detection_confidence=self.min_detection_confidence,
            )
        return self._pose

    def detect(self, image: Any) -> Optional[list[Landmark]]:
        res = self._get_pose().process(np.asarray(image))
        if not res.pose_landmarks:
            return None
        return [
            Landmark(x=p.x, y=p.y, z=p.z, visibility=p.visibility)
            for p in res.pose_landmarks.landmark
        ]

    def close(self) -> None:
        if self._pose is not None:
            self._pose.close()
            self._pose = None


# ---------------------------------------------------------------------------
# Video sampling
# ---------------------------------------------------------------------------

def choose_frame_interval(
    duration: float,
    steps: Sequence[tuple[float, float]] = FRAME_INTERVAL_STEPS,
    max_frames: int = MAX_SAMPLED_FRAMES,
) -> float:
    """Sampling interval (seconds) for a video of ``duration`` seconds.

    Shorter clips are sampled more densely; the result is widened so no
    more than ``max_frames`` frames are taken.
    """
    if duration <= 0:
        raise ValueError(f"duration must be positive, got {duration}.")

    interval = LONG_VIDEO_FRAME_INTERVAL
    for max_duration, step in steps:
        if duration <= max_duration:
            interval = step
            break
    return max(interval, duration / max_frames)


def sample_video_frames(
    video_path: Union[str, Path],
    frame_interval: Optional[float] = None,
) -> list[VideoFrame]:
    """Decode a video with OpenCV and return RGB frames at a fixed interval.

    Raises:
        FileNotFoundError: ``video_path`` does not exist.
        RuntimeError: OpenCV cannot open or read the file.
    """
    import cv2

    video_path = Path(video_path)
    if not video_path.exists():
        raise FileNotFoundError(f"Video not found: {video_path}")

    cap = cv2.VideoCapture(str(video_path))
    if not cap.isOpened():
        raise RuntimeError(f"Could not open video: {video_path}")

    try:
        fps = cap.get(cv2.CAP_PROP_FPS) or 30.0
        total = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
        duration = total / fps if total > 0 else 0.0
        if frame_interval is None:
            frame_interval = choose_frame_interval(duration) if duration > 0 else LONG_VIDEO_FRAME_INTERVAL
        stride = max(1, math.ceil(frame_interval * fps))

        frames: list[VideoFrame] = []
        frame_i = 0
        while True:
            ret, frame = cap.read()
            if not ret:
                break
            if frame_i % stride == 0:
                rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
                frames.append(VideoFrame(time=frame_i / fps, image=rgb))
            frame_i += 1
    finally:
        cap.release()

    if not frames:
        raise RuntimeError(f"No frames could be read from {video_path}")
    logger.info(
        "Sampled %d frames from %s (%.1fs, interval %.3fs)",
        len(frames), video_path.name, duration, frame_interval,
    )
    return frames
