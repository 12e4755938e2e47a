"""Tests for repetition counting.

Covers:
  - Smoothing, adaptive threshold, significance filter
  - Triplet matching (contiguous ranges, mismatch skipping)
  - End-to-end counting with boundary anchoring and metric fallback
  - Per-exercise YAML overrides
  - Rep timing summary
"""

import sys
from pathlib import Path

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from formcoach.pipelines.rep_counting import (
    _anchor_boundaries,
    _interior_extrema,
    _load_rep_counting_config,
    adaptive_threshold,
    count_reps,
    filter_significant,
    match_repetitions,
    metric_value,
    resolve_rep_config,
    smooth_series,
    summarize_rep_timing,
)
from formcoach.pipelines.schemas import ExtremumKind, ExtremumPoint, RepetitionRange

from helpers import make_frame_result, make_landmarks, make_pose_array, make_squat_sequence

P, V = ExtremumKind.PEAK, ExtremumKind.VALLEY


def _point(index, kind, value, fps=30.0):
    return ExtremumPoint(frame_index=index, time=index / fps, value=value, kind=kind)


def _squat_frames(n=90, **kwargs):
    seq = make_squat_sequence(n, **kwargs)
    return [make_frame_result(i, make_landmarks(seq[i])) for i in range(n)]


def _range(duration, rom):
    start = _point(0, V, 0.4)
    turn = _point(1, P, 0.4 + rom)
    end = ExtremumPoint(frame_index=2, time=duration, value=0.4, kind=V)
    return RepetitionRange(start=start, turn=turn, end=end, duration_seconds=duration, range_of_motion=rom)


# ============================================================================
# Test: Signal primitives
# ============================================================================

class TestSignalPrimitives:

    def test_shrinking_window_average(self):
        np.testing.assert_allclose(smooth_series([1, 2, 3, 4, 5]), [2.0, 2.5, 3.0, 3.5, 4.0])

    def test_constant_series_unchanged(self):
        np.testing.assert_allclose(smooth_series([0.3] * 8), [0.3] * 8)

    def test_adaptive_threshold(self):
        assert adaptive_threshold([0.0, 1.0], 0.08) == pytest.approx(0.15)
        assert adaptive_threshold([0.5, 0.6], 0.08) == pytest.approx(0.08)

    def test_significance_filter_keeps_first(self):
        points = [_point(0, V, 0.40), _point(5, P, 0.42), _point(10, P, 0.60), _point(15, V, 0.41)]
        kept = filter_significant(points, 0.08)
        assert [p.frame_index for p in kept] == [0, 10, 15]

    def test_metric_value_visibility(self):
        arr = make_pose_array(0.5)
        assert metric_value(make_landmarks(arr), "hip_height") == pytest.approx(0.5)
        arr[23, 3] = 0.29
        assert metric_value(make_landmarks(arr), "hip_height") is None
        arr[23, 3] = 0.3
        assert metric_value(make_landmarks(arr), "hip_height") == pytest.approx(0.5)

    def test_metric_value_missing_frame(self):
        assert metric_value(None, "hip_height") is None

    def test_unknown_metric(self):
        with pytest.raises(ValueError, match="Unknown rep metric"):
            metric_value(make_landmarks(make_pose_array(0.5)), "ankle_height")


# ============================================================================
# Test: Triplet matching
# ============================================================================

class TestMatchRepetitions:

    def test_contiguous_ranges(self):
        extrema = [_point(0, V, 0.4), _point(15, P, 0.65), _point(30, V, 0.4),
                   _point(45, P, 0.65), _point(60, V, 0.4)]
        ranges = match_repetitions(extrema, "down")
        assert [(r.start_index, r.turn.frame_index, r.end_index) for r in ranges] == [(0, 15, 30), (30, 45, 60)]
        assert ranges[0].end == ranges[1].start
        np.testing.assert_allclose(ranges[0].duration_seconds, 1.0)
        np.testing.assert_allclose(ranges[0].range_of_motion, 0.25)

    def test_mismatch_advances_by_one(self):
        extrema = [_point(0, P, 0.65), _point(15, V, 0.4), _point(30, P, 0.65), _point(45, V, 0.4)]
        ranges = match_repetitions(extrema, "down")
        assert [(r.start_index, r.end_index) for r in ranges] == [(15, 45)]

    def test_up_direction(self):
        extrema = [_point(0, P, 0.65), _point(15, V, 0.4), _point(30, P, 0.65)]
        assert len(match_repetitions(extrema, "up")) == 1
        assert match_repetitions(extrema, "down") == []

    def test_ranges_never_overlap(self):
        kinds = [V, P, V, V, P, V, P, P, V]
        extrema = [_point(i * 10, k, 0.4 if k is V else 0.7) for i, k in enumerate(kinds)]
        ranges = match_repetitions(extrema, "down")
        for a, b in zip(ranges, ranges[1:]):
            assert a.end_index <= b.start_index

    def test_bad_direction(self):
        with pytest.raises(ValueError, match="direction"):
            match_repetitions([], "sideways")

# ============================================================================
# Test: Boundary anchoring
# ============================================================================

class TestAnchorBoundaries:

    def test_resting_ends_are_not_interior_extrema(self):
        s = np.array([0.0, 0.0, 1.0, 2.0, 1.0, 0.0, 0.0])
        assert _interior_extrema(s) == [(3, P)]

    def test_resting_ends_become_valleys(self):
        s = np.array([0.0, 0.0, 1.0, 2.0, 1.0, 0.0, 0.0])
        assert _anchor_boundaries(s, _interior_extrema(s)) == [(0, V), (3, P), (5, V)]

    def test_valley_is_flanked_by_peaks(self):
        s = np.array([3.0, 2.0, 1.0, 0.0, 1.0, 2.0, 2.5])
        assert _anchor_boundaries(s, _interior_extrema(s)) == [(0, P), (3, V), (6, P)]

    def test_no_interior_extrema_adds_nothing(self):
        s = np.linspace(0.0, 1.0, 10)
        assert _anchor_boundaries(s, _interior_extrema(s)) == []

    def test_first_rep_starts_on_frame_zero(self):
        result = count_reps(_squat_frames(), "squat")
        assert result.extrema[0].frame_index == 0
        assert result.ranges[0].start_index == 0


# ============================================================================
# Test: count_reps
# ============================================================================

class TestCountReps:

    def test_three_clean_squats(self):
        result = count_reps(_squat_frames(), "squat")
        assert result.count == 3
        assert result.metric == "hip_height"
        assert result.threshold == pytest.approx(0.08)
        assert [(r.start_index, r.end_index) for r in result.ranges] == [(0, 30), (30, 60), (60, 89)]
        assert [p.kind for p in result.extrema] == [V, P, V, P, V, P, V]

    def test_durations_follow_frame_times(self):
        result = count_reps(_squat_frames(), "squat")
        np.testing.assert_allclose([r.duration_seconds for r in result.ranges], [1.0, 1.0, 29 / 30])

    def test_too_few_frames(self):
        result = count_reps(_squat_frames(4), "squat")
        assert result.count == 0
        assert result.ranges == []

    def test_all_detector_misses(self):
        result = count_reps([make_frame_result(i) for i in range(30)], "squat")
        assert result.count == 0

    def test_fallback_metric_when_hips_hidden(self):
        visible = set(range(33)) - {23, 24}
        result = count_reps(_squat_frames(visible=visible), "squat")
        assert result.metric == "knee_angle"
        # Knee angle peaks while standing, so the series opens and closes on peaks.
        assert result.count == 2

    def test_flat_signal_has_no_reps(self):
        frames = [make_frame_result(i, make_landmarks(make_pose_array(0.5))) for i in range(60)]
        assert count_reps(frames, "squat").count == 0

    def test_sparse_detector_misses_tolerated(self):
        frames = _squat_frames()
        misses = {7, 22, 52, 80}
        frames = [make_frame_result(f.original_index) if f.original_index in misses else f for f in frames]
        assert count_reps(frames, "squat").count == 3


# ============================================================================
# Test: Config overrides
# ============================================================================

class TestRepConfig:

    def test_shipped_yaml_matches_catalog(self):
        config = _load_rep_counting_config(PROJECT_ROOT / "config" / "rep_counting.yaml")
        squat = config["exercises"]["squat"]
        assert squat["metric"] == "hip_height"
        assert squat["direction"] == "down"

    def test_missing_yaml_is_empty(self, tmp_path):
        assert _load_rep_counting_config(tmp_path / "missing.yaml") == {}

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("exercises: [unclosed\n")
        with pytest.raises(ValueError, match="not valid YAML"):
            _load_rep_counting_config(path)

    def test_override_threshold(self):
        config = resolve_rep_config("squat", overrides={"threshold": 0.3})
        assert config.threshold == 0.3
        assert config.metric == "hip_height"

    def test_override_unknown_metric(self):
        with pytest.raises(ValueError, match="Unknown rep metric"):
            resolve_rep_config("squat", overrides={"metric": "toe_height"})

    def test_override_bad_direction(self):
        with pytest.raises(ValueError):
            resolve_rep_config("squat", overrides={"direction": "left"})

    def test_higher_threshold_suppresses_reps(self):
        config = resolve_rep_config("squat", overrides={"threshold": 0.5})
        assert count_reps(_squat_frames(), "squat", config=config).count == 0


# ============================================================================
# Test: Rep timing
# ============================================================================

class TestRepTiming:

    def test_empty(self):
        summary = summarize_rep_timing([])
        assert (summary.avg_duration, summary.avg_rom, summary.consistency, summary.tempo_score) == (0, 0, 0, 0)

    def test_identical_reps_fully_consistent(self):
        summary = summarize_rep_timing([_range(3.0, 0.2)] * 3)
        assert summary.consistency == pytest.approx(100.0)
        assert summary.tempo_score == pytest.approx(100.0)
        assert summary.avg_rom == pytest.approx(0.2)

    def test_variance_penalty_and_tempo_bands(self):
        summary = summarize_rep_timing([_range(2.0, 0.2), _range(3.0, 0.2)])
        assert summary.avg_duration == pytest.approx(2.5)
        assert summary.consistency == pytest.approx(50.0)
        assert summary.tempo_score == pytest.approx(100.0)
        summary = summarize_rep_timing([_range(1.0, 0.2), _range(8.0, 0.2)])
        assert summary.tempo_score == pytest.approx(55.0)
        assert summary.consistency == pytest.approx(0.0)
