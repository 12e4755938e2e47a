"""
Data model for the motion-analysis pipeline.

Landmarks, per-frame results, issues, repetition ranges and the final
Workout Report are pydantic models so they validate on construction,
pickle cleanly across worker processes, and serialize straight into the
HTTP response.
"""

import math
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Enumerations
# ============================================================================

class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Higher rank sorts first.
SEVERITY_RANK: dict[Severity, int] = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


class ExtremumKind(str, Enum):
    PEAK = "peak"
    VALLEY = "valley"


# ============================================================================
# Landmarks & frames
# ============================================================================

class Landmark(BaseModel):
    """One tracked body-joint position in normalized image coordinates."""
    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    z: Optional[float] = None
    visibility: Optional[float] = None

    @property
    def usable(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y)

    def is_visible(self, threshold: float) -> bool:
        """Visible iff visibility is absent or at least ``threshold``."""
        return self.visibility is None or self.visibility >= threshold


class VideoFrame(BaseModel):
    """Orchestrator input: a timestamp plus an opaque image handed to the detector."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    time: float
    image: Any = None


class Issue(BaseModel):
    """A validation rule firing on one frame."""
    model_config = ConfigDict(frozen=True)

    rule_id: str
    name: str
    severity: Severity
    time: float
    frame_index: Optional[int] = None


class FrameResult(BaseModel):
    """Per-frame output of the frame-analysis pipeline.

    ``landmarks`` is None on a detector miss. ``success`` is False only for
    frames whose batch failed in both the worker and the fallback path.
    """
    model_config = ConfigDict(frozen=True)

    original_index: int
    time: float
    landmarks: Optional[list[Landmark]] = None
    issues: list[Issue] = Field(default_factory=list)
    features: dict[str, Any] = Field(default_factory=dict)
    success: bool = True

    @property
    def has_landmarks(self) -> bool:
        return self.landmarks is not None


# ============================================================================
# Completeness
# ============================================================================

class AnalysisMode(BaseModel):
    name: str
    description: str = ""
    confidence: float = Field(ge=0.0, le=1.0)
    required_landmarks: list[int] = Field(default_factory=list)
    available_checks: list[str] = Field(default_factory=list)
    missing_landmarks: list[int] = Field(default_factory=list)


class LandmarkStats(BaseModel):
    visible_count: int = 0
    total_count: int = 0


class LandmarkAvailability(BaseModel):
    available: list[int]
    stats: dict[int, LandmarkStats]
    total_frames: int


class CameraAngle(BaseModel):
    angle: str
    confidence: float
    description: str = ""


class CameraGuidanceReport(BaseModel):
    current_angle: str
    is_optimal: bool
    optimal_angle: str
    description: str
    tips: list[str]
    improvement: Optional[str] = None
    confidence: float
    limited_analysis: bool


class Recommendation(BaseModel):
    type: str
    category: str
    message: str
    action: str
    tips: list[str] = Field(default_factory=list)


class QualityMetrics(BaseModel):
    landmark_visibility: float = 0.0
    camera_angle_confidence: float = 0.0
    overall_quality: float = 0.0


class CompletenessReport(BaseModel):
    """Adaptive-completeness summary for one analyzed video."""
    mode: AnalysisMode
    completeness_score: float
    available_landmarks: list[int]
    total_required: int
    unavailable_checks: list[str]
    camera: CameraAngle
    camera_guidance: Optional[CameraGuidanceReport] = None
    recommendations: list[Recommendation] = Field(default_factory=list)
    quality_metrics: QualityMetrics = Field(default_factory=QualityMetrics)

    @property
    def confidence(self) -> float:
        return self.mode.confidence


# ============================================================================
# Repetitions
# ============================================================================

class ExtremumPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    frame_index: int
    time: float
    value: float
    kind: ExtremumKind


class RepetitionRange(BaseModel):
    """A validated start/turn/end triplet of extrema."""
    model_config = ConfigDict(frozen=True)

    start: ExtremumPoint
    turn: ExtremumPoint
    end: ExtremumPoint
    duration_seconds: float
    range_of_motion: float

    @property
    def start_index(self) -> int:
        return self.start.frame_index

    @property
    def end_index(self) -> int:
        return self.end.frame_index

    @property
    def frame_indices(self) -> range:
        return range(self.start.frame_index, self.end.frame_index + 1)


class RepTimingSummary(BaseModel):
    avg_duration: float = 0.0
    avg_rom: float = 0.0
    consistency: float = 0.0
    tempo_score: float = 0.0


class PhaseSegment(BaseModel):
    name: str
    frame_indices: list[int] = Field(default_factory=list)


class PhaseIssue(BaseModel):
    phase: str
    type: str
    severity: Severity
    description: str
    correction: str


class RepQuality(BaseModel):
    rep_number: int
    frame_count: int
    duration_seconds: float
    phases: list[PhaseSegment]
    smoothness: int
    symmetry: int
    controlled_tempo: int
    issues: list[PhaseIssue] = Field(default_factory=list)


class RepComparison(BaseModel):
    total_reps: int
    average_quality: int
    fatigue_detected: bool = False
    recommendations: list[str] = Field(default_factory=list)


# ============================================================================
# Aggregation & report
# ============================================================================

class SignificantError(BaseModel):
    rule_id: str
    name: str
    severity: Severity
    description: str = ""
    correction: str = ""
    affected_joints: list[int] = Field(default_factory=list)
    count: int
    frequency: float
    threshold: float
    times: list[float] = Field(default_factory=list)


class WorkoutReport(BaseModel):
    """Pipeline output for one analyzed video. Immutable once built."""
    model_config = ConfigDict(frozen=True)

    exercise_id: str
    score: int = Field(ge=0, le=100)
    base_score: int = Field(ge=0, le=100)
    confidence_multiplier: float = Field(ge=0.0, le=1.0)
    significant_errors: list[SignificantError] = Field(default_factory=list)
    rep_count: int = 0
    repetition_ranges: list[RepetitionRange] = Field(default_factory=list)
    per_rep_quality: list[RepQuality] = Field(default_factory=list)
    rep_comparison: Optional[RepComparison] = None
    rep_timing: Optional[RepTimingSummary] = None
    completeness: CompletenessReport
    issue_samples: dict[str, list[int]] = Field(default_factory=dict)
    frame_count: int = 0
    analyzed_frame_count: int = 0
    failed_frame_count: int = 0
    feedback: list[str] = Field(default_factory=list)
