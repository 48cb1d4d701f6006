"""
Session recording and the after-session trend analysis.
"""
import json

import pytest

from form_engine.exercise_analysis.base_analyzer import AnalysisResult
from form_engine.exercise_analysis.phase_detector import SquatPhase
from form_engine.session import (SessionRecorder, TrendDirection, calculate_consistency_scores,
                                 calculate_fatigue_pattern, compare_sessions, identify_best_worst_reps,
                                 summarize_session)
from form_engine.session.recorder import AngleData, JointAngleSample, RepAngleData, SessionRecord, joint_values
from form_engine.session.trend_analyzer import (FatigueSeverity, RepRanking, find_fatigue_onset_rep,
                                                linear_regression_slope, summary_to_dict)


def frame(score, raw, rep_completed=False, is_valid=True):
    return AnalysisResult(score=score, feedbacks={}, phase=SquatPhase.STANDING, rep_completed=rep_completed,
                          raw_angles=raw, is_valid=is_valid)


def make_rep(number, knee, hip=90.0):
    angles = [
        JointAngleSample("knee_flexion", knee, knee, knee, abs(knee - 90)),
        JointAngleSample("hip_flexion", hip, hip, hip, abs(hip - 90)),
    ]
    return RepAngleData(number, number * 1000.0, angles, 1000.0, 90)


def make_record(session_id, timestamp_ms, score, average, std_dev, exercise="squat"):
    angles = [AngleData("knee_flexion", average - 10, average + 10, average, std_dev, 10)]
    return SessionRecord(session_id, timestamp_ms, exercise, 30.0, 5, score, angles)


class TestSessionRecorder:
    def test_rep_statistics(self):
        recorder = SessionRecorder("squat", session_id="s1", start_ms=0)
        assert recorder.record(frame(80, {"knee_angle": 100.0}), 0) is None
        recorder.record(frame(90, {"knee_angle": 90.0}), 100)
        rep = recorder.record(frame(100, {"knee_angle": 80.0}, rep_completed=True), 200)

        assert rep.rep_number == 1
        assert rep.rep_duration_ms == 200
        assert rep.overall_quality == 90
        knee = rep.angle("knee_flexion")
        assert knee.value == 90.0
        assert (knee.min, knee.max) == (80.0, 100.0)
        assert knee.deviation == 0.0
        assert rep.angle("hip_flexion") is None

    def test_invalid_frames_are_skipped(self):
        recorder = SessionRecorder("squat", start_ms=0)
        recorder.record(frame(0, {}, is_valid=False))
        recorder.record(frame(90, {"knee_angle": 90.0}))
        record = recorder.finish()
        assert record.invalid_frames == 1
        assert record.overall_score == 90
        assert record.rep_count == 0

    def test_session_record(self):
        recorder = SessionRecorder("squat", session_id="s1", start_ms=5000)
        for i, knee in enumerate([100.0, 90.0, 80.0]):
            recorder.record(frame(90, {"knee_angle": knee}, rep_completed=i == 2), i * 100)
        record = recorder.finish()
        assert record.id == "s1"
        assert record.timestamp_ms == 5000
        assert record.exercise == "squat"
        assert record.duration_s == 0.2
        assert record.rep_count == 1
        knee = record.angles[0]
        assert knee.joint_type == "knee_flexion"
        assert knee.average == 90.0
        assert knee.std_dev == 8.2
        assert knee.sample_count == 3

    def test_frame_clock_without_timestamps(self):
        recorder = SessionRecorder("squat", start_ms=0)
        for i in range(31):
            recorder.record(frame(90, {"knee_angle": 90.0}))
        assert recorder.finish().duration_s == 1.0

    def test_sided_values_are_averaged_as_magnitudes(self):
        sources = {"knee_valgus": ("left_knee_deviation", "right_knee_deviation")}
        assert joint_values({"left_knee_deviation": -4.0, "right_knee_deviation": 6.0}, sources) == {
            "knee_valgus": 5.0}
        assert joint_values({}, sources) == {}

    def test_unknown_exercise(self):
        with pytest.raises(ValueError):
            SessionRecorder("burpee")


class TestFatigue:
    def test_slope(self):
        assert linear_regression_slope([1.0, 2.0, 3.0]) == pytest.approx(1.0)
        assert linear_regression_slope([5.0]) == 0.0

    def test_onset(self):
        assert find_fatigue_onset_rep([90, 92, 94, 96, 98]) == 4
        assert find_fatigue_onset_rep([90, 90, 90, 90]) == 4
        assert find_fatigue_onset_rep([90, 91]) == 2

    def test_needs_five_reps(self):
        reps = [make_rep(i, 90 + i * 3) for i in range(1, 5)]
        pattern = calculate_fatigue_pattern(reps)
        assert not pattern.is_detected
        assert pattern.onset_rep_number is None

    def test_gradual_drift(self):
        """Two degrees per rep of knee drift is moderate fatigue from rep 4."""
        reps = [make_rep(i, knee) for i, knee in enumerate([90, 92, 94, 96, 98], start=1)]
        pattern = calculate_fatigue_pattern(reps)
        assert pattern.is_detected
        assert pattern.severity == FatigueSeverity.MODERATE
        assert pattern.affected_joints == ["knee_flexion"]
        assert pattern.onset_rep_number == 4
        assert pattern.degradation_rate == pytest.approx(2.0)

    def test_steady_form(self):
        pattern = calculate_fatigue_pattern([make_rep(i, 90) for i in range(1, 7)])
        assert not pattern.is_detected
        assert "No signs" in pattern.insight


class TestConsistency:
    def test_scores(self):
        metrics = calculate_consistency_scores([make_rep(1, 80), make_rep(2, 100)])
        scores = {j.joint_type: j.score for j in metrics.per_joint_scores}
        assert scores == {"knee_flexion": 0, "hip_flexion": 100}
        assert metrics.overall_score == 50
        assert metrics.most_consistent_joint == "hip_flexion"
        assert metrics.least_consistent_joint == "knee_flexion"

    def test_joint_trend(self):
        metrics = calculate_consistency_scores([make_rep(1, 80), make_rep(2, 100)])
        knee = next(j for j in metrics.per_joint_scores if j.joint_type == "knee_flexion")
        assert knee.trend == TrendDirection.IMPROVING
        assert knee.standard_deviation == 10.0

    def test_no_reps(self):
        metrics = calculate_consistency_scores([])
        assert metrics.overall_score == 0
        assert metrics.most_consistent_joint is None


class TestRepRanking:
    def test_quality_from_deviation(self):
        scores = identify_best_worst_reps([make_rep(1, 90), make_rep(2, 130)])
        assert [s.quality_score for s in scores] == [100, 60]
        assert scores[0].ranking == RepRanking.BEST
        assert scores[1].ranking == RepRanking.AVERAGE
        assert "knee bend is within the ideal range" in scores[0].strengths
        assert "knee bend is outside the ideal range" in scores[1].weaknesses

    def test_rep_order_is_kept(self):
        scores = identify_best_worst_reps([make_rep(1, 130), make_rep(2, 90), make_rep(3, 100)])
        assert [s.rep_number for s in scores] == [1, 2, 3]


class TestCompareSessions:
    def test_improvement(self):
        previous = make_record("a", 1000, 70, 90.0, 2.0)
        current = make_record("b", 2000, 77, 95.0, 1.0)
        comparison = compare_sessions(current, [previous])
        assert comparison.previous_session_id == "a"
        assert comparison.overall_improvement == 10
        assert comparison.joint_improvements[0].change == 5.0
        assert comparison.joint_improvements[0].direction == TrendDirection.IMPROVING
        assert comparison.previous_consistency == 80
        assert comparison.current_consistency == 90
        assert comparison.consistency_improved
        assert comparison.insight.startswith("10% better")

    def test_consistency_floor(self):
        """Very scattered sessions both bottom out at 0 instead of going negative."""
        previous = make_record("a", 1000, 70, 90.0, 15.0)
        current = make_record("b", 2000, 70, 90.0, 12.0)
        comparison = compare_sessions(current, [previous])
        assert comparison.previous_consistency == 0
        assert comparison.current_consistency == 0
        assert not comparison.consistency_improved

    def test_most_recent_earlier_session_of_same_exercise(self):
        current = make_record("b", 2000, 77, 95.0, 1.0)
        sessions = [
            make_record("old", 500, 60, 90.0, 2.0),
            make_record("a", 1000, 70, 90.0, 2.0),
            make_record("push", 1500, 50, 90.0, 2.0, exercise="pushup"),
            make_record("later", 3000, 90, 90.0, 2.0),
        ]
        assert compare_sessions(current, sessions).previous_session_id == "a"

    def test_no_previous_session(self):
        current = make_record("b", 2000, 77, 95.0, 1.0)
        assert compare_sessions(current, [make_record("later", 3000, 90, 90.0, 2.0)]) is None

    def test_about_the_same(self):
        comparison = compare_sessions(make_record("b", 2000, 71, 90.5, 2.0), [make_record("a", 1000, 70, 90.0, 2.0)])
        assert comparison.joint_improvements[0].direction == TrendDirection.STABLE
        assert comparison.insight == "About the same level as your previous session."


class TestSummary:
    def test_no_reps(self):
        assert summarize_session(make_record("a", 1000, 70, 90.0, 2.0), []) is None

    def test_best_and_worst(self):
        reps = [make_rep(1, 100), make_rep(2, 90), make_rep(3, 130)]
        record = make_record("s", 5000, 80, 105.0, 3.0)
        summary = summarize_session(record, reps, [make_record("a", 1000, 70, 90.0, 2.0)])
        assert summary.best_rep_number == 2
        assert summary.best_rep_score == 100
        assert summary.worst_rep_number == 3
        assert summary.comparison_to_previous is not None
        assert summary.improvement_suggestions

    def test_json_view(self):
        reps = [make_rep(i, 90) for i in range(1, 4)]
        summary = summarize_session(make_record("s", 5000, 90, 90.0, 0.0), reps)
        data = summary_to_dict(summary)
        assert data["overall_trend"] == "stable"
        assert data["rep_quality_scores"][0]["ranking"] in {r.value for r in RepRanking}
        assert data["comparison_to_previous"] is None
        json.dumps(data)
