"""
Analyze one recorded set and write the Workout Report as JSON.

Usage:
    python -m formcoach.scripts.analyze_workout --landmarks set.json --exercise squat
    python -m formcoach.scripts.analyze_workout --video set.mp4 --exercise squat --out report.json

``--landmarks`` takes either a bare ``frames × 33 × 4`` array or an API
request body (``{"pose_sequence": ..., "fps": ...}``). ``--video`` needs
the ``detector`` extra (mediapipe + opencv-python).
"""

import argparse
import json
import logging

from formcoach.pipelines.catalog import EXERCISES
from formcoach.pipelines.config import WORKER_BACKEND
from formcoach.pipelines.detector import (
    MediaPipePoseDetector,
    PrecomputedLandmarkDetector,
    sample_video_frames,
)
from formcoach.pipelines.orchestrator import BACKENDS
from formcoach.pipelines.preprocessing import frames_from_pose_sequence
from formcoach.pipelines.utils import configure_logging
from formcoach.pipelines.workout import analyze_workout
from formcoach.utils.io_utils import save_report

logger = logging.getLogger("formcoach")


def _load_landmark_file(path: str, fps: float):
    with open(path) as f:
        data = json.load(f)
    if isinstance(data, dict):
        fps = float(data.get("fps", fps))
        data = data.get("pose_sequence")
    return frames_from_pose_sequence(data, fps)


def main(argv=None):
    ap = argparse.ArgumentParser(description="Analyze exercise form from pose landmarks or video.")
    src = ap.add_mutually_exclusive_group(required=True)
    src.add_argument("--landmarks", help="JSON file with a frames × 33 × 4 pose sequence.")
    src.add_argument("--video", help="Video file; landmarks are detected with MediaPipe.")
    ap.add_argument("--exercise", required=True, choices=list(EXERCISES))
    ap.add_argument("--fps", type=float, default=30.0, help="Frame rate of --landmarks input.")
    ap.add_argument("--out", default="workout_report.json")
    ap.add_argument("--backend", default=WORKER_BACKEND, choices=BACKENDS)
    ap.add_argument("--debug", action="store_true")
    args = ap.parse_args(argv)

    configure_logging(debug=args.debug)

    if args.video:
        frames = sample_video_frames(args.video)
        detector = MediaPipePoseDetector()
    else:
        frames = _load_landmark_file(args.landmarks, args.fps)
        detector = PrecomputedLandmarkDetector()

    report = analyze_workout(
        frames,
        args.exercise,
        detector=detector,
        backend=args.backend,
        progress=lambda pct: logger.debug("Progress: %d%%", pct),
    )
    save_report(report, args.out)

    print(f"\nScore: {report.score}/100 (base {report.base_score}, "
          f"confidence {report.confidence_multiplier:.0%}), reps: {report.rep_count}")
    for line in report.feedback:
        print(f"  - {line}")
    return report


if __name__ == "__main__":
    main()
