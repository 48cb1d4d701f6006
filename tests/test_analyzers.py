"""
Per-exercise analyzers driven through the shared analyze() pipeline.
"""
import pytest

from conftest import (make_keypoints, overhead_lockout_pose, plank_pose, pushup_pose, squat_bottom_pose, squat_pose,
                      squat_rep_angles)
from form_engine.exercise_analysis import (ANALYZER_REGISTRY, ExerciseKind, FeedbackLevel, ItemScores, analyze,
                                           create_initial_state, get_analyzer)
from form_engine.exercise_analysis.deadlift_analyzer import (HingeTracking, hip_dominant_ratio, initiation_timing,
                                                             is_squat_style, tighten_upper_bound, track_hinge)
from form_engine.exercise_analysis.lunge_analyzer import detect_front_leg, knee_over_toe_ratio
from form_engine.exercise_analysis.phase_detector import (DeadliftPhase, OverheadPhase, PlankPhase, PushupPhase,
                                                          SquatPhase)
from form_engine.exercise_analysis.plank_analyzer import PlankHoldState, update_hold
from form_engine.exercise_analysis.scoring import AngleThreshold, Range
from form_engine.pose_detection.landmarks import Keypoint, LandmarkIndex as L, Point3D

NO_SMOOTHING = {"enabled": False}


def run(kind, frames, smoothing=None, timestamps=None):
    state = create_initial_state(kind, smoothing=smoothing)
    results = []
    for i, keypoints in enumerate(frames):
        timestamp = timestamps[i] if timestamps is not None else None
        result, state = analyze(keypoints, state, timestamp)
        results.append(result)
    return results, state


class TestRegistry:
    def test_every_exercise_is_registered(self):
        assert set(ANALYZER_REGISTRY) == set(ExerciseKind)

    def test_aliases(self):
        assert ExerciseKind.from_value("Overhead-Press") == ExerciseKind.OVERHEAD
        assert ExerciseKind.from_value("push_up") == ExerciseKind.PUSHUP
        with pytest.raises(ValueError):
            ExerciseKind.from_value("burpee")

    def test_get_analyzer(self):
        analyzer = get_analyzer("squat", "advanced")
        assert analyzer.kind == ExerciseKind.SQUAT
        assert analyzer.config.name == "squat"


class TestSymmetry:
    @pytest.mark.parametrize("right,expected", [(87, 90), (78, 60), (90, 100)])
    def test_symmetry_score_is_used_directly(self, right, expected):
        items = ItemScores()
        get_analyzer("squat").add_symmetry(items, {"knee_symmetry": ("left", "right")}, {"left": 90, "right": right})
        assert items.scores["symmetry"] == expected
        assert items.raw_values["knee_symmetry_score"] == expected

    def test_pairs_are_averaged(self):
        items = ItemScores()
        pairs = {"knee_symmetry": ("left_knee", "right_knee"), "hip_symmetry": ("left_hip", "right_hip")}
        angles = {"left_knee": 90, "right_knee": 87, "left_hip": 90, "right_hip": 78}
        summary = get_analyzer("squat").add_symmetry(items, pairs, angles)
        assert items.scores["symmetry"] == 75
        assert summary is items.feedbacks["hip_symmetry"]


class TestInvalidPose:
    @pytest.mark.parametrize("kind", list(ExerciseKind))
    def test_returns_same_state(self, kind, invalid_keypoints):
        """Frames without a usable pose leave the state untouched."""
        state = create_initial_state(kind)
        result, new_state = analyze(invalid_keypoints, state)
        assert new_state is state
        assert not result.is_valid
        assert result.score == 0
        assert not result.rep_completed
        assert result.raw_angles == {}
        assert result.phase == state.phase

    def test_invalid_feedback_for_every_item(self, invalid_keypoints):
        state = create_initial_state("squat")
        result, _ = analyze(invalid_keypoints, state)
        assert "knee_angle" in result.feedbacks
        for item in result.feedbacks.values():
            assert item.level == FeedbackLevel.WARNING
            assert item.score == 0
            assert "Pose not recognized" in item.message

    def test_one_missing_required_landmark(self):
        keypoints = squat_bottom_pose()
        keypoints[L.LEFT_HEEL] = Keypoint(0.4, 0.8, 0.0, 0.2)
        state = create_initial_state("squat")
        result, new_state = analyze(keypoints, state)
        assert not result.is_valid
        assert new_state is state

    @pytest.mark.parametrize("kind", list(ExerciseKind))
    def test_degenerate_geometry_stays_finite(self, kind):
        """All landmarks on one point still produce a bounded score."""
        state = create_initial_state(kind)
        result, _ = analyze(make_keypoints(), state)
        assert result.is_valid
        assert 0 <= result.score <= 100
        assert all(value == value for value in result.raw_angles.values())


class TestSquat:
    def test_good_bottom_position(self):
        results, _ = run("squat", [squat_bottom_pose()])
        result = results[0]
        assert result.is_valid
        assert result.phase == SquatPhase.BOTTOM
        assert result.raw_angles["knee_angle"] == pytest.approx(90, abs=0.5)
        assert result.raw_angles["hip_angle"] == pytest.approx(95, abs=0.5)
        assert result.raw_angles["torso_angle"] == pytest.approx(20, abs=0.5)
        assert result.raw_angles["ankle_angle"] == pytest.approx(25, abs=0.5)
        for item in ("knee_angle", "hip_angle", "torso_inclination", "ankle_angle", "knee_valgus", "symmetry"):
            assert result.feedbacks[item].level == FeedbackLevel.GOOD, item
        assert result.feedbacks["neck_alignment"].level == FeedbackLevel.GOOD
        assert result.score >= 95
        assert result.details["heel_rise"] is False
        assert not result.rep_completed

    def test_heel_rise_overrides_ankle_feedback(self):
        keypoints = squat_bottom_pose()
        for heel in (L.LEFT_HEEL, L.RIGHT_HEEL):
            keypoints[heel] = Keypoint(0.4091, 0.78, 0.0, 0.9)
        results, _ = run("squat", [keypoints])
        ankle = results[0].feedbacks["ankle_angle"]
        assert results[0].details["heel_rise"] is True
        assert ankle.level == FeedbackLevel.WARNING
        assert "Heels" in ankle.message

    def test_shallow_squat_feedback(self):
        results, _ = run("squat", [squat_pose(130)], smoothing=NO_SMOOTHING)
        knee = results[0].feedbacks["knee_angle"]
        assert knee.level == FeedbackLevel.ERROR
        assert knee.correction.value == "down"

    def test_counts_reps(self):
        frames = [squat_pose(angle) for angle in squat_rep_angles(reps=2)]
        results, state = run("squat", frames)
        assert state.rep_count == 2
        assert sum(r.rep_completed for r in results) == 2
        assert results[-1].phase == SquatPhase.STANDING

    def test_input_state_is_never_modified(self):
        state = create_initial_state("squat")
        _, new_state = analyze(squat_bottom_pose(), state)
        assert state.frame_count == 0
        assert new_state.frame_count == 1
        assert not state.smoother_set.get_state("left_knee_angle").initialized
        assert new_state.smoother_set.get_state("left_knee_angle").initialized

    def test_same_input_same_output(self):
        state = create_initial_state("squat")
        first, _ = analyze(squat_bottom_pose(), state)
        second, _ = analyze(squat_bottom_pose(), state)
        assert first.to_dict() == second.to_dict()

    def test_three_dimensional_knee_tracking(self):
        """With depth the knee item reports degrees off the hip-ankle line."""
        keypoints = squat_bottom_pose()
        for idx, kp in enumerate(keypoints):
            keypoints[idx] = Keypoint(kp.x, kp.y, -0.05, kp.score)
        keypoints[L.LEFT_KNEE] = Keypoint(0.7266, 0.6057, -0.1, 0.9)
        results, _ = run("squat", [keypoints])
        assert "left_knee_deviation" in results[0].raw_angles


class TestPushup:
    def test_top_position(self):
        results, _ = run("pushup", [pushup_pose(180)], smoothing=NO_SMOOTHING)
        result = results[0]
        assert result.phase == PushupPhase.UP
        assert result.feedbacks["body_alignment"].level == FeedbackLevel.GOOD
        assert result.feedbacks["hip_position"].level == FeedbackLevel.GOOD
        assert result.raw_angles["arm_symmetry_score"] == 100

    def test_bottom_position(self):
        results, _ = run("pushup", [pushup_pose(90)], smoothing=NO_SMOOTHING)
        result = results[0]
        assert result.phase == PushupPhase.BOTTOM
        assert result.feedbacks["elbow_angle"].level == FeedbackLevel.GOOD
        assert result.raw_angles["depth_percent"] == pytest.approx(100)

    def test_counts_reps(self):
        frames = [pushup_pose(angle) for angle in (180, 120, 90, 130, 170)]
        results, state = run("pushup", frames, smoothing=NO_SMOOTHING)
        assert [r.rep_completed for r in results] == [False, False, False, False, True]
        assert state.rep_count == 1


class TestLunge:
    def test_front_leg_from_depth(self):
        points = {L.LEFT_KNEE: Point3D(0.5, 0.6, -0.2), L.RIGHT_KNEE: Point3D(0.5, 0.6, 0.0),
                  L.LEFT_FOOT_INDEX: Point3D(0.6, 0.9), L.RIGHT_FOOT_INDEX: Point3D(0.4, 0.9)}
        assert detect_front_leg(points) == "left"

    def test_front_leg_from_foot_height(self):
        points = {L.LEFT_KNEE: Point3D(0.5, 0.6), L.RIGHT_KNEE: Point3D(0.5, 0.6),
                  L.LEFT_FOOT_INDEX: Point3D(0.6, 0.85), L.RIGHT_FOOT_INDEX: Point3D(0.4, 0.92)}
        assert detect_front_leg(points) == "right"

    def test_front_leg_unknown(self):
        points = {L.LEFT_KNEE: Point3D(0.5, 0.6), L.RIGHT_KNEE: Point3D(0.5, 0.6),
                  L.LEFT_FOOT_INDEX: Point3D(0.6, 0.9), L.RIGHT_FOOT_INDEX: Point3D(0.4, 0.9)}
        assert detect_front_leg(points) == "unknown"

    def test_knee_over_toe(self):
        ratio = knee_over_toe_ratio(Point3D(0.75, 0.7), Point3D(0.6, 0.9), Point3D(0.7, 0.9), Point3D(0.6, 0.5))
        assert ratio == pytest.approx(0.125)

    def test_front_leg_reported(self):
        keypoints = make_keypoints({L.LEFT_KNEE: (0.5, 0.5, -0.2)})
        results, _ = run("lunge", [keypoints])
        assert results[0].details["front_leg"] == "left"


class TestPlank:
    def test_hold_timing(self):
        frames = [plank_pose()] * 3 + [plank_pose(hip_y=0.7)]
        results, state = run("plank", frames, smoothing=NO_SMOOTHING, timestamps=[0, 1000, 2000, 3000])
        assert results[0].phase == PlankPhase.HOLDING
        assert results[2].details["hold_time"] == 2.0
        assert results[2].details["is_valid_plank"] is True
        assert results[3].phase == PlankPhase.RESTING
        assert results[3].details["is_valid_plank"] is False
        assert results[3].details["total_hold_time"] == 2.0
        assert state.rep_count == 0

    def test_good_plank_scores_full(self):
        results, _ = run("plank", [plank_pose()], smoothing=NO_SMOOTHING)
        assert results[0].score == 100

    def test_update_hold(self):
        hold = update_hold(PlankHoldState(), 80, 0.0, 60)
        hold = update_hold(hold, 70, 500.0, 60)
        assert hold.is_holding
        assert hold.current_hold_ms == 500.0
        assert hold.average_score == pytest.approx(75.0)
        hold = update_hold(hold, 40, 600.0, 60)
        assert not hold.is_holding
        assert hold.total_hold_ms == 500.0


class TestDeadlift:
    def test_starts_in_setup_phase(self):
        state = create_initial_state("deadlift")
        assert state.phase == DeadliftPhase.SETUP
        assert state.phase_state.last_angle == 90.0

    def test_hip_dominant_ratio(self):
        assert hip_dominant_ratio(4.0, 1.0, True) == pytest.approx(4.0)
        assert hip_dominant_ratio(3.0, 0.2, True) == 5.0
        assert hip_dominant_ratio(0.5, 0.2, True) == 2.0
        assert hip_dominant_ratio(4.0, 1.0, False) == 2.0

    def test_squat_style(self):
        assert is_squat_style(2.0, 3.0, 120.0)
        assert not is_squat_style(5.0, 1.0, 120.0)
        assert is_squat_style(0.5, 4.0, 120.0)
        assert not is_squat_style(2.0, 3.0, 150.0)

    def test_initiation_timing(self):
        assert initiation_timing([6, 0, 0], [0, 0, 6], DeadliftPhase.LIFT) == "hip_first"
        assert initiation_timing([0, 0, 0], [6, 0, 0], DeadliftPhase.LIFT) == "knee_first"
        assert initiation_timing([0, 6, 0], [0, 0, 6], DeadliftPhase.LIFT) == "simultaneous"
        assert initiation_timing([6, 0, 0], [0, 0, 6], DeadliftPhase.SETUP) == "unknown"
        assert initiation_timing([6], [0], DeadliftPhase.LIFT) == "unknown"

    def test_track_hinge(self):
        quality, tracking = track_hinge(HingeTracking(), 100.0, 150.0, DeadliftPhase.LIFT)
        assert quality.ratio == 2.0
        quality, tracking = track_hinge(tracking, 104.0, 151.0, DeadliftPhase.LIFT)
        assert quality.ratio == pytest.approx(4.0)
        assert tracking.hip_deltas == (0.0, 4.0)

    def test_tighten_upper_bound(self):
        threshold = tighten_upper_bound(AngleThreshold(Range(0, 15), Range(0, 25)), 0.8)
        assert threshold.ideal.max == pytest.approx(12)
        assert threshold.acceptable.max == pytest.approx(20)
        assert threshold.ideal.min == 0

    def test_standing_lockout(self):
        keypoints = make_keypoints({
            L.LEFT_SHOULDER: (0.5, 0.2), L.RIGHT_SHOULDER: (0.5, 0.2),
            L.LEFT_KNEE: (0.5, 0.7), L.RIGHT_KNEE: (0.5, 0.7),
            L.LEFT_ANKLE: (0.5, 0.9), L.RIGHT_ANKLE: (0.5, 0.9),
        })
        results, state = run("deadlift", [keypoints])
        result = results[0]
        assert result.phase == DeadliftPhase.LOCKOUT
        assert result.details["neutral_spine"] is True
        assert result.raw_angles["hip_dominant_ratio"] == 2.0
        assert {"lumbar_curvature", "thoracic_curvature", "spine_curvature", "hip_hinge_quality"} <= set(
            result.feedbacks)
        assert state.extras["hinge_tracking"].previous_hip == pytest.approx(180.0)


class TestOverhead:
    def test_lockout(self):
        results, _ = run("overhead", [overhead_lockout_pose()])
        result = results[0]
        assert result.phase == OverheadPhase.LOCKOUT
        assert result.details["lockout"] is True
        assert result.feedbacks["elevation"].level == FeedbackLevel.GOOD
        assert result.feedbacks["shoulder_angle"].level == FeedbackLevel.GOOD
        assert result.feedbacks["wrist_angle"].level == FeedbackLevel.GOOD
        assert result.score == 100

    def test_starts_in_start_phase(self):
        state = create_initial_state("overhead")
        assert state.phase == OverheadPhase.START
