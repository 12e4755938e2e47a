"""
Stage 6 — Issue aggregation and workout scoring.

Pipeline:
    1. Count per-frame issues by rule id (first-seen order)
    2. Keep rules whose frequency over analyzed frames reaches the
       severity threshold (critical 15%, high 20%, medium 25%, low 30%)
    3. Sort the survivors by severity (stable)
    4. Base score = 100 - 15 per significant error, scaled by the
       completeness confidence into the final score
"""

import logging
from typing import Sequence

from .catalog import get_exercise
from .config import (
    ERROR_PENALTY,
    ISSUE_SAMPLE_COUNT,
    ISSUE_SAMPLE_GAP,
    SEVERITY_FREQUENCY_THRESHOLDS,
)
from .geometry import round_half_up
from .schemas import SEVERITY_RANK, FrameResult, SignificantError

logger = logging.getLogger(__name__)


def aggregate_issues(frames: Sequence[FrameResult], exercise_id: str) -> list[SignificantError]:
    """Rules that fired often enough to count as significant, most severe first.

    ``frames`` are the successfully analyzed frames; detector misses count
    toward the frequency denominator.
    """
    variant = get_exercise(exercise_id)
    analyzed = len(frames)
    if analyzed == 0:
        return []

    occurrences: dict[str, list] = {}
    for frame in frames:
        for issue in frame.issues:
            occurrences.setdefault(issue.rule_id, []).append(issue)

    significant: list[SignificantError] = []
    for rule_id, issues in occurrences.items():
        first = issues[0]
        frequency = len(issues) / analyzed
        threshold = SEVERITY_FREQUENCY_THRESHOLDS[first.severity.value]
        if frequency < threshold:
            logger.debug(
                "Dropping '%s': frequency %.3f below %.2f", rule_id, frequency, threshold,
            )
            continue

        try:
            rule = variant.rule(rule_id)
            details = {
                "description": rule.description,
                "correction": rule.correction,
                "affected_joints": list(rule.affected_joints),
            }
        except KeyError:
            details = {}
        significant.append(SignificantError(
            rule_id=rule_id,
            name=first.name,
            severity=first.severity,
            count=len(issues),
            frequency=frequency,
            threshold=threshold,
            times=[issue.time for issue in issues],
            **details,
        ))

    significant.sort(key=lambda e: SEVERITY_RANK[e.severity], reverse=True)
    return significant


def compute_scores(
    significant_errors: Sequence[SignificantError],
    usable_frame_count: int,
    confidence: float,
) -> tuple[int, int]:
    """Return ``(base_score, score)``.

    ``usable_frame_count`` is the number of frames with landmarks; without
    any the base score is 0 regardless of errors.
    """
    if usable_frame_count == 0:
        return 0, 0
    base = max(0, min(100, 100 - ERROR_PENALTY * len(significant_errors)))
    return base, round_half_up(base * confidence)


def _runs(indices: Sequence[int], max_gap: int) -> list[list[int]]:
    runs: list[list[int]] = []
    for index in sorted(indices):
        if runs and index - runs[-1][-1] <= max_gap:
            runs[-1].append(index)
        else:
            runs.append([index])
    return runs


def collect_issue_samples(
    frames: Sequence[FrameResult],
    max_gap: int = ISSUE_SAMPLE_GAP,
    sample_count: int = ISSUE_SAMPLE_COUNT,
) -> dict[str, list[int]]:
    """Representative frame indices per rule id for visual review.

    Issue frames are grouped into runs (index gap <= ``max_gap``); up to
    ``sample_count`` indices are spread evenly over the longest run, the
    earliest run winning ties.
    """
    by_rule: dict[str, list[int]] = {}
    for frame in frames:
        for issue in frame.issues:
            index = issue.frame_index if issue.frame_index is not None else frame.original_index
            by_rule.setdefault(issue.rule_id, []).append(index)

    samples: dict[str, list[int]] = {}
    for rule_id, indices in by_rule.items():
        longest: list[int] = []
        for run in _runs(indices, max_gap):
            if len(run) > len(longest):
                longest = run
        count = min(sample_count, len(longest))
        step = max(count - 1, 1)
        samples[rule_id] = [longest[(i * (len(longest) - 1)) // step] for i in range(count)]
    return samples
