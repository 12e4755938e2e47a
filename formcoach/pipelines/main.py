"""
FastAPI entry point for the FormCoach motion-analysis backend.

Endpoints:
    GET  /health
    GET  /api/exercises
        Catalog metadata for every supported exercise.
    POST /api/workout/analyze
        Receives a pose-landmark sequence for one set, runs the full
        pipeline, and returns the Workout Report.

Run:
    cd <project_root>
    uvicorn formcoach.pipelines.main:app --host 0.0.0.0 --port 8000 --reload
"""

import logging
import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Ensure project root is on sys.path so ``formcoach.*`` imports work when
# running with ``uvicorn formcoach.pipelines.main:app`` from the project root.
# ---------------------------------------------------------------------------
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from formcoach.pipelines.catalog import UnknownExerciseError, get_exercise, list_exercises
from formcoach.pipelines.config import WORKER_TIMEOUT_S
from formcoach.pipelines.detector import PrecomputedLandmarkDetector
from formcoach.pipelines.preprocessing import frames_from_pose_sequence
from formcoach.pipelines.schemas import WorkoutReport
from formcoach.pipelines.utils import configure_logging
from formcoach.pipelines.workout import analyze_workout

logger = logging.getLogger("formcoach")
configure_logging()


# ============================================================================
# Pydantic request / response models
# ============================================================================

class WorkoutMetadata(BaseModel):
    frame_count: Optional[int] = None
    device: Optional[str] = None


class WorkoutRequest(BaseModel):
    exercise_id: str = Field(..., description="Catalog id, e.g. 'squat'")
    pose_sequence: list[list[list[float]]] = Field(
        ..., description="frames × 33 landmarks × 4 values (x, y, z, visibility)"
    )
    fps: float = Field(..., gt=0, description="Frames per second of the sequence")
    metadata: Optional[WorkoutMetadata] = None


class ExerciseInfo(BaseModel):
    exercise_id: str
    name: str
    category: str
    description: str
    muscles_targeted: list[str]
    common_mistakes: list[str]
    form_tips: list[str]
    optimal_camera: str
    checks: list[str]


class ErrorResponse(BaseModel):
    error_code: str
    message: str


# ============================================================================
# App lifecycle
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log the catalog at startup."""
    logger.info("Starting FormCoach backend …")
    logger.info("Exercises: %s", ", ".join(v.exercise_id for v in list_exercises()))
    yield
    logger.info("Shutting down.")


app = FastAPI(
    title="FormCoach API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Health-check & catalog
# ============================================================================

@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/exercises", response_model=list[ExerciseInfo])
async def exercises():
    return [
        ExerciseInfo(
            exercise_id=v.exercise_id,
            name=v.name,
            category=v.category,
            description=v.description,
            muscles_targeted=list(v.muscles_targeted),
            common_mistakes=list(v.common_mistakes),
            form_tips=list(v.form_tips),
            optimal_camera=v.camera_guidance.optimal,
            checks=v.rule_ids,
        )
        for v in list_exercises()
    ]


# ============================================================================
# Main analysis endpoint
# ============================================================================

@app.post(
    "/api/workout/analyze",
    response_model=WorkoutReport,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
def analyze(request: WorkoutRequest):
    """Full pipeline: landmarks → per-frame validation → completeness →
    scoring → reps → report.

    Sync on purpose: FastAPI runs it in its threadpool, and the frame
    workers use the thread backend so no processes are forked per request.
    """
    t0 = time.time()

    # ── Exercise lookup ──────────────────────────────────────────────────
    try:
        get_exercise(request.exercise_id)
    except UnknownExerciseError as exc:
        return JSONResponse(
            status_code=404,
            content={"error_code": "UNKNOWN_EXERCISE", "message": str(exc)},
        )

    # ── Input validation ─────────────────────────────────────────────────
    try:
        frames = frames_from_pose_sequence(request.pose_sequence, request.fps)
    except ValueError as exc:
        return JSONResponse(
            status_code=400,
            content={"error_code": "INVALID_REQUEST", "message": str(exc)},
        )

    # ── Analysis ─────────────────────────────────────────────────────────
    try:
        report = analyze_workout(
            frames,
            request.exercise_id,
            detector=PrecomputedLandmarkDetector(),
            backend="thread",
            worker_timeout=WORKER_TIMEOUT_S,
        )
    except Exception as exc:
        logger.exception("Workout analysis failed")
        return JSONResponse(
            status_code=500,
            content={"error_code": "ANALYSIS_FAILED", "message": f"Analysis error: {exc}"},
        )

    logger.info(
        "Request complete in %.2fs: exercise='%s' frames=%d reps=%d score=%d",
        time.time() - t0, request.exercise_id, report.frame_count, report.rep_count, report.score,
    )
    return report
