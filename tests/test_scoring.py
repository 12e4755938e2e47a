"""Tests for issue aggregation, scoring and issue-sample selection."""

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from formcoach.pipelines.schemas import Severity, SignificantError
from formcoach.pipelines.scoring import aggregate_issues, collect_issue_samples, compute_scores

from helpers import make_frame_result, make_issue


def _frames_with(n_frames, rule_hits):
    """``rule_hits`` maps (rule_id, severity) -> frame indices where it fires."""
    frames = []
    for i in range(n_frames):
        issues = [
            make_issue(rule_id, i, severity)
            for (rule_id, severity), hits in rule_hits.items()
            if i in hits
        ]
        frames.append(make_frame_result(i, issues=issues))
    return frames


def _error(rule_id="knee_valgus", severity=Severity.HIGH):
    return SignificantError(rule_id=rule_id, name=rule_id, severity=severity,
                            count=1, frequency=1.0, threshold=0.2)


# ============================================================================
# Test: Aggregation
# ============================================================================

class TestAggregateIssues:

    def test_frequency_threshold_inclusive(self):
        # high threshold is 0.20: 20/100 passes, 19/100 does not
        frames = _frames_with(100, {("knee_valgus", Severity.HIGH): set(range(20))})
        errors = aggregate_issues(frames, "squat")
        assert [e.rule_id for e in errors] == ["knee_valgus"]
        assert errors[0].frequency == pytest.approx(0.20)
        assert errors[0].count == 20

        frames = _frames_with(100, {("knee_valgus", Severity.HIGH): set(range(19))})
        assert aggregate_issues(frames, "squat") == []

    def test_severity_thresholds(self):
        hits = set(range(16))
        frames = _frames_with(100, {
            ("back_rounding_squat", Severity.CRITICAL): hits,
            ("shallow_depth", Severity.MEDIUM): hits,
        })
        assert [e.rule_id for e in aggregate_issues(frames, "squat")] == ["back_rounding_squat"]

    def test_sorted_by_severity_stable(self):
        frames = _frames_with(10, {
            ("knee_forward_travel", Severity.LOW): set(range(10)),
            ("shallow_depth", Severity.MEDIUM): set(range(10)),
            ("excessive_lean", Severity.MEDIUM): set(range(10)),
            ("back_rounding_squat", Severity.CRITICAL): set(range(10)),
        })
        ids = [e.rule_id for e in aggregate_issues(frames, "squat")]
        assert ids == ["back_rounding_squat", "shallow_depth", "excessive_lean", "knee_forward_travel"]

    def test_rule_details_copied(self):
        frames = _frames_with(5, {("knee_valgus", Severity.HIGH): {0, 1, 2}})
        error = aggregate_issues(frames, "squat")[0]
        assert error.correction.startswith("Push knees outward")
        assert error.affected_joints == [25, 26]
        assert error.times == pytest.approx([0.0, 1 / 30, 2 / 30])

    def test_detector_misses_count_in_denominator(self):
        frames = _frames_with(10, {("knee_valgus", Severity.HIGH): {0}})
        assert aggregate_issues(frames, "squat") == []
        assert aggregate_issues(frames[:4], "squat")[0].frequency == pytest.approx(0.25)

    def test_no_frames(self):
        assert aggregate_issues([], "squat") == []


# ============================================================================
# Test: Scores
# ============================================================================

class TestComputeScores:

    def test_clean(self):
        assert compute_scores([], 90, 1.0) == (100, 100)

    def test_penalty_per_error(self):
        assert compute_scores([_error()], 90, 1.0) == (85, 85)
        assert compute_scores([_error()] * 3, 90, 1.0) == (55, 55)

    def test_clamped_at_zero(self):
        assert compute_scores([_error()] * 8, 90, 1.0) == (0, 0)

    def test_confidence_scales_and_rounds_half_up(self):
        assert compute_scores([_error()], 90, 0.5) == (85, 43)
        assert compute_scores([], 90, 0.5) == (100, 50)

    def test_no_usable_frames(self):
        assert compute_scores([], 0, 1.0) == (0, 0)


# ============================================================================
# Test: Issue samples
# ============================================================================

class TestIssueSamples:

    def test_longest_run_sampled_evenly(self):
        frames = _frames_with(40, {("knee_valgus", Severity.HIGH): {1, 2} | set(range(10, 21))})
        assert collect_issue_samples(frames) == {"knee_valgus": [10, 15, 20]}

    def test_gap_of_two_stays_in_run(self):
        frames = _frames_with(20, {("knee_valgus", Severity.HIGH): {0, 2, 4, 8}})
        assert collect_issue_samples(frames) == {"knee_valgus": [0, 2, 4]}

    def test_tie_prefers_earlier_run(self):
        frames = _frames_with(30, {("knee_valgus", Severity.HIGH): {1, 2, 20, 21}})
        assert collect_issue_samples(frames) == {"knee_valgus": [1, 2]}

    def test_single_frame(self):
        frames = _frames_with(5, {("knee_valgus", Severity.HIGH): {3}})
        assert collect_issue_samples(frames) == {"knee_valgus": [3]}

    def test_no_issues(self):
        assert collect_issue_samples(_frames_with(5, {})) == {}
