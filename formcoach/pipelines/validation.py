"""
Stage 2 — Rule-based form validation.

Evaluates one frame's landmarks and features against the exercise's rule
table. A rule whose check raises is logged and skipped so the remaining
rules still run for that frame.
"""

import logging
from typing import Optional, Sequence

from .catalog import get_exercise
from .preprocessing import named_landmarks
from .schemas import Issue, Landmark

logger = logging.getLogger(__name__)


def validate(
    exercise_id: str,
    landmarks: Sequence[Landmark],
    features: dict,
    time: float = 0.0,
    frame_index: Optional[int] = None,
) -> list[Issue]:
    """Return the issues triggered on one frame, in catalog rule order.

    Args:
        exercise_id: Catalog id (e.g. ``"squat"``).
        landmarks: The frame's 33 landmarks.
        features: Output of the exercise's feature extractor.
        time: Frame timestamp in seconds, copied onto each issue.
        frame_index: Original frame index, copied onto each issue.

    Raises:
        UnknownExerciseError: If ``exercise_id`` is not in the catalog.
    """
    variant = get_exercise(exercise_id)
    named = named_landmarks(landmarks, variant.landmarks)

    issues: list[Issue] = []
    for rule in variant.rules:
        try:
            fired = bool(rule.check(named, features))
        except Exception as exc:
            logger.debug(
                "Rule '%s' (%s) failed on frame %s: %s",
                rule.id, exercise_id, frame_index, exc,
            )
            continue
        if fired:
            issues.append(Issue(
                rule_id=rule.id,
                name=rule.name,
                severity=rule.severity,
                time=time,
                frame_index=frame_index,
            ))
    return issues
