"""
Configuration constants for the FormCoach motion-analysis backend.

Centralizes project paths, visibility thresholds, scoring constants,
orchestration limits, and environment variable loading.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Project paths
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_PATH = PROJECT_ROOT / ".env"
load_dotenv(_ENV_PATH)

CONFIG_DIR = PROJECT_ROOT / "config"
REP_COUNTING_CONFIG_PATH = Path(
    os.environ.get("FORMCOACH_REP_CONFIG", str(CONFIG_DIR / "rep_counting.yaml"))
)

# ---------------------------------------------------------------------------
# Landmark model
# ---------------------------------------------------------------------------
NUM_LANDMARKS: int = 33
LANDMARK_VALUES: int = 4       # x, y, z, visibility

# Each call site has its own visibility threshold.
REP_METRIC_VISIBILITY: float = 0.3
COMPLETENESS_VISIBILITY: float = 0.5
COMPLETENESS_CONSISTENCY: float = 0.7

# ---------------------------------------------------------------------------
# Aggregation & scoring
# ---------------------------------------------------------------------------
SEVERITY_FREQUENCY_THRESHOLDS: dict[str, float] = {
    "critical": 0.15,
    "high": 0.20,
    "medium": 0.25,
    "low": 0.30,
}
ERROR_PENALTY: int = 15        # points lost per significant error
ISSUE_SAMPLE_GAP: int = 2      # max frame gap inside one issue run
ISSUE_SAMPLE_COUNT: int = 3

# ---------------------------------------------------------------------------
# Repetition counting
# ---------------------------------------------------------------------------
MIN_REP_FRAMES: int = 5
SMOOTHING_WINDOW: int = 5
ADAPTIVE_RANGE_FRACTION: float = 0.15
METRIC_FALLBACK_FRACTION: float = 0.5

# ---------------------------------------------------------------------------
# Repetition progression
# ---------------------------------------------------------------------------
IDEAL_TEMPO_RATIO: float = 1.75        # eccentric frames / concentric frames
UNCONTROLLED_VELOCITY: float = 20.0    # degrees per frame
SLOW_CONCENTRIC_VELOCITY: float = 3.0
FATIGUE_SMOOTHNESS_RATIO: float = 0.85

# ---------------------------------------------------------------------------
# Parallel orchestration
# ---------------------------------------------------------------------------
MAX_WORKERS: int = int(os.environ.get("FORMCOACH_MAX_WORKERS", "4"))
FRAMES_PER_WORKER: int = 50
WORKER_TIMEOUT_S: float = float(os.environ.get("FORMCOACH_WORKER_TIMEOUT", "60"))
WORKER_BACKEND: str = os.environ.get("FORMCOACH_WORKER_BACKEND", "process")

# ---------------------------------------------------------------------------
# Video sampling
# ---------------------------------------------------------------------------
MAX_SAMPLED_FRAMES: int = 180
# (max duration in seconds, sampling interval in seconds)
FRAME_INTERVAL_STEPS: list[tuple[float, float]] = [
    (3.0, 0.05),
    (5.0, 0.067),
    (10.0, 0.083),
    (20.0, 0.1),
    (30.0, 0.133),
]
LONG_VIDEO_FRAME_INTERVAL: float = 0.167

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL: str = os.environ.get("FORMCOACH_LOG_LEVEL", "INFO")
LOG_FORMAT: str = "%(levelname)s | %(name)s | %(message)s"
