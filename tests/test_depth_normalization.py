"""
Depth confidence, perspective correction and T-pose calibration.
"""
import pytest

from conftest import make_keypoints, squat_bottom_pose
from form_engine.exercise_analysis.base_analyzer import analyze, create_initial_state
from form_engine.exercise_analysis.depth_normalization import (CalibrationState, DepthNormalizationConfig,
                                                               DEPTH_KEY_JOINTS, apply_perspective_correction,
                                                               calculate_depth_confidence,
                                                               calculate_perspective_factor,
                                                               create_config_from_calibration, detect_t_pose,
                                                               perform_calibration)
from form_engine.pose_detection.landmarks import Keypoint, LandmarkIndex as L


def key_joints_at_depth(z):
    return make_keypoints({idx: (0.5, 0.5, z) for idx in DEPTH_KEY_JOINTS})


def flat_keypoints():
    return [Keypoint(0.5, 0.5, None, 0.9) for _ in range(33)]


def t_pose(wrist_y=0.3):
    return make_keypoints({
        L.LEFT_SHOULDER: (0.4, 0.3), L.RIGHT_SHOULDER: (0.6, 0.3),
        L.LEFT_ELBOW: (0.3, 0.3), L.RIGHT_ELBOW: (0.7, 0.3),
        L.LEFT_WRIST: (0.2, wrist_y), L.RIGHT_WRIST: (0.8, wrist_y),
        L.LEFT_HIP: (0.45, 0.6), L.RIGHT_HIP: (0.55, 0.6),
        L.LEFT_ANKLE: (0.45, 0.9), L.RIGHT_ANKLE: (0.55, 0.9),
    })


class TestDepthConfidence:
    def test_steady_depth_is_reliable(self):
        confidence = calculate_depth_confidence(make_keypoints())
        assert confidence.is_reliable
        assert confidence.score == 0.9
        assert confidence.fallback_mode == "3d"

    def test_no_depth(self):
        confidence = calculate_depth_confidence(flat_keypoints())
        assert not confidence.is_reliable
        assert confidence.score == 0.0
        assert confidence.fallback_mode == "2d"

    def test_noisy_depth_is_unreliable(self):
        keypoints = make_keypoints({
            L.LEFT_HIP: (0.5, 0.5, -0.4), L.RIGHT_HIP: (0.5, 0.5, 0.4),
            L.LEFT_KNEE: (0.5, 0.5, -0.4), L.RIGHT_KNEE: (0.5, 0.5, 0.4),
        })
        assert not calculate_depth_confidence(keypoints).is_reliable


class TestPerspective:
    @pytest.mark.parametrize("z,expected", [(0.5, 1.0), (0.4, 1.2), (0.625, 0.8), (0.55, 0.909)])
    def test_factor(self, z, expected):
        assert calculate_perspective_factor(key_joints_at_depth(z)).factor == pytest.approx(expected)

    def test_neutral_without_positive_depth(self):
        assert calculate_perspective_factor(make_keypoints()).factor == 1.0

    def test_neutral_when_unreliable(self):
        assert calculate_perspective_factor(flat_keypoints()).factor == 1.0

    def test_correction_weights(self):
        assert apply_perspective_correction(100.0, 1.2, "knee") == pytest.approx(117.0)
        assert apply_perspective_correction(100.0, 1.2, "torso") == pytest.approx(112.0)
        assert apply_perspective_correction(100.0, 1.2, "elbow") == 100.0

    def test_correction_is_clamped(self):
        assert apply_perspective_correction(170.0, 1.2, "knee") == 180.0


class TestCalibration:
    def test_t_pose(self):
        assert detect_t_pose(t_pose())
        assert not detect_t_pose(t_pose(wrist_y=0.6))

    def test_t_pose_needs_confident_landmarks(self, invalid_keypoints):
        assert not detect_t_pose(invalid_keypoints)

    def test_baseline_captured(self):
        keypoints = key_joints_at_depth(0.4)
        calibration = perform_calibration(keypoints, CalibrationState(), timestamp=123.0)
        assert calibration.is_calibrated
        assert calibration.baseline_depth == 0.4
        assert calibration.calibration_timestamp == 123.0

    def test_skipped_without_depth(self):
        calibration = perform_calibration(flat_keypoints(), CalibrationState())
        assert not calibration.is_calibrated

    def test_config_from_calibration(self):
        calibration = CalibrationState(is_calibrated=True, baseline_depth=0.4)
        config = create_config_from_calibration(calibration, min_confidence=0.7)
        assert config.baseline_depth == 0.4
        assert config.min_confidence == 0.7
        assert create_config_from_calibration(CalibrationState(baseline_depth=0.9)).baseline_depth == 0.5

    def test_partial_config(self):
        assert DepthNormalizationConfig.coerce(None) is None
        config = DepthNormalizationConfig.coerce({"baseline_depth": 0.6, "unused": 1})
        assert config.baseline_depth == 0.6
        assert config.enabled


class TestAnalyzerIntegration:
    def test_opt_in(self):
        assert create_initial_state("squat").depth_config is None
        assert create_initial_state("squat", depth_config={}).depth_config == DepthNormalizationConfig()

    def test_neutral_factor_leaves_scores_alone(self):
        plain, _ = analyze(squat_bottom_pose(), create_initial_state("squat", smoothing={"enabled": False}))
        corrected, _ = analyze(squat_bottom_pose(),
                               create_initial_state("squat", smoothing={"enabled": False}, depth_config={}))
        assert corrected.score == plain.score
        assert corrected.raw_angles["knee_angle"] == pytest.approx(plain.raw_angles["knee_angle"], abs=0.05)
