"""
Shared utilities for the FormCoach pipeline.

- Rule-based feedback generator for the Workout Report
- Logging setup for the API and CLI entry points
"""

import logging
from typing import Optional, Sequence

from .config import LOG_FORMAT, LOG_LEVEL
from .schemas import CompletenessReport, RepComparison, SignificantError

logger = logging.getLogger(__name__)

MAX_CORRECTIONS = 3


# ---------------------------------------------------------------------------
# Feedback
# ---------------------------------------------------------------------------

def generate_feedback(
    score: int,
    significant_errors: Sequence[SignificantError],
    rep_count: int,
    comparison: Optional[RepComparison] = None,
    completeness: Optional[CompletenessReport] = None,
) -> list[str]:
    """Produce human-readable feedback lines for one workout.

    Args:
        score: Final score (0-100).
        significant_errors: Aggregated errors, most severe first.
        rep_count: Number of detected repetitions.
        comparison: Cross-rep summary, if at least two reps were found.
        completeness: Completeness report, used to flag limited analysis.

    Returns:
        List of feedback strings, summary first.
    """
    tips: list[str] = []

    if completeness is not None and completeness.mode.name == "insufficient":
        tips.append(
            "We could not see enough of your body to assess form. "
            "Make sure your full body is in frame and well lit."
        )
        return tips

    # Overall summary
    if score >= 85:
        tips.append(f"Excellent form! Your score was {score}/100. Keep it up!")
    elif score >= 70:
        tips.append(f"Good form overall ({score}/100). A few areas to refine.")
    elif score >= 50:
        tips.append(f"Your score was {score}/100. There's room for improvement.")
    else:
        tips.append(
            f"Your form needs attention ({score}/100). "
            "Consider reviewing proper technique or lowering the weight."
        )

    if rep_count:
        tips.append(f"Detected {rep_count} rep{'s' if rep_count != 1 else ''}.")

    for error in list(significant_errors)[:MAX_CORRECTIONS]:
        tips.append(f"{error.name}: {error.correction}" if error.correction else error.name)

    if comparison is not None:
        tips.extend(comparison.recommendations)

    if completeness is not None and completeness.confidence < 1.0:
        tips.append(
            f"Analysis ran in '{completeness.mode.name}' mode "
            f"({completeness.confidence:.0%} confidence); some checks were skipped."
        )
        if completeness.camera_guidance is not None and completeness.camera_guidance.improvement:
            tips.append(completeness.camera_guidance.improvement)

    return tips


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def configure_logging(level: Optional[str] = None, debug: bool = False) -> None:
    """Configure root logging with the project format."""
    if debug:
        level = "DEBUG"
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
