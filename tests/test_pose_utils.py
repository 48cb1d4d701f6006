"""
Geometry kernel and landmark parsing.
"""
import math

import pytest

from form_engine.exercise_analysis.pose_utils import (angle_with_horizontal, angle_with_vertical, calculate_angle,
                                                      calculate_torso_rotation, check_landmark_visibility,
                                                      clamp_angle, estimate_mid_spine, has_3d_coordinates,
                                                      is_valid_keypoint, midpoint, missing_landmarks,
                                                      point_to_line_distance, symmetry_score)
from form_engine.pose_detection.landmarks import (LANDMARK_NAMES, Keypoint, LandmarkIndex, Point3D,
                                                  keypoints_to_landmark_dict, parse_keypoints, to_keypoint)


class TestAngles:
    def test_right_angle(self):
        """Perpendicular segments meet at 90 degrees."""
        assert calculate_angle(Point3D(0, 0, 0), Point3D(1, 0, 0), Point3D(1, 1, 0)) == pytest.approx(90.0)

    def test_straight_line(self):
        assert calculate_angle(Point3D(0, 0, 0), Point3D(1, 0, 0), Point3D(2, 0, 0)) == pytest.approx(180.0)

    def test_zero_length_segment_reads_zero(self):
        """Coincident points never produce NaN."""
        angle = calculate_angle(Point3D(1, 1, 0), Point3D(1, 1, 0), Point3D(2, 2, 0))
        assert angle == 0.0

    def test_angle_uses_depth(self):
        angle = calculate_angle(Point3D(0, 0, 1), Point3D(0, 0, 0), Point3D(1, 0, 0))
        assert angle == pytest.approx(90.0)

    def test_upright_segment_is_zero_from_vertical(self):
        """Screen y grows downward, so hip below shoulder reads upright."""
        assert angle_with_vertical(Point3D(0.5, 0.8), Point3D(0.5, 0.2)) == pytest.approx(0.0)

    def test_horizontal_segment_is_ninety_from_vertical(self):
        assert angle_with_vertical(Point3D(0.2, 0.5), Point3D(0.8, 0.5)) == pytest.approx(90.0)

    def test_hanging_segment_is_one_eighty_from_vertical(self):
        assert angle_with_vertical(Point3D(0.5, 0.2), Point3D(0.5, 0.6)) == pytest.approx(180.0)

    def test_signed_horizontal_angle(self):
        """Rising lines are positive, falling lines negative."""
        assert angle_with_horizontal(Point3D(0, 1), Point3D(1, 0)) == pytest.approx(45.0)
        assert angle_with_horizontal(Point3D(0, 0), Point3D(1, 1)) == pytest.approx(-45.0)
        assert angle_with_horizontal(Point3D(1, 1), Point3D(1, 1)) == 0.0

    def test_clamp_angle(self):
        assert clamp_angle(float("nan")) == 0.0
        assert clamp_angle(-3.0) == 0.0
        assert clamp_angle(200.0) == 180.0


class TestTorsoRotation:
    def test_no_depth_reads_zero(self):
        ls, rs = Point3D(0.4, 0.3, 0.0), Point3D(0.6, 0.3, 0.0)
        lh, rh = Point3D(0.4, 0.6, 0.0), Point3D(0.6, 0.6, 0.0)
        assert calculate_torso_rotation(ls, rs, lh, rh) == 0.0

    def test_side_view_reads_zero(self):
        """Collapsed shoulder width is unmeasurable, not a 90 degree twist."""
        ls = rs = Point3D(0.5, 0.3, 0.0)
        lh, rh = Point3D(0.4, 0.6, 0.0), Point3D(0.6, 0.6, 0.0)
        assert calculate_torso_rotation(ls, rs, lh, rh) == 0.0

    def test_rotated_shoulders(self):
        ls, rs = Point3D(0.4, 0.3, 0.0), Point3D(0.6, 0.3, 0.2)
        lh, rh = Point3D(0.4, 0.6, 0.0), Point3D(0.6, 0.6, 0.0)
        assert calculate_torso_rotation(ls, rs, lh, rh) == pytest.approx(45.0)


class TestPointHelpers:
    def test_midpoint(self):
        assert midpoint(Point3D(0, 0, 0), Point3D(1, 2, 4)) == Point3D(0.5, 1.0, 2.0)

    def test_mid_spine_sits_forty_percent_down(self):
        spine = estimate_mid_spine(Point3D(0.5, 0.2, 0.0), Point3D(0.5, 0.7, 0.0))
        assert spine.y == pytest.approx(0.4)

    def test_point_to_line_distance(self):
        distance = point_to_line_distance(Point3D(0.5, 1.0), Point3D(0, 0), Point3D(1, 0))
        assert distance == pytest.approx(1.0)

    def test_degenerate_line_falls_back_to_point_distance(self):
        distance = point_to_line_distance(Point3D(3, 4), Point3D(0, 0), Point3D(0, 0))
        assert distance == pytest.approx(5.0)

    def test_has_3d_coordinates(self):
        assert not has_3d_coordinates([Point3D(0.1, 0.2, 0.0), Point3D(0.3, 0.4, 0.0)])
        assert has_3d_coordinates([Point3D(0.1, 0.2, 0.0), Point3D(0.3, 0.4, -0.1)])


class TestSymmetry:
    @pytest.mark.parametrize("left,right,expected", [
        (90, 90, 100),
        (90, 105, 50),
        (90, 120, 0),
        (90, 150, 0),
    ])
    def test_symmetry_score(self, left, right, expected):
        assert symmetry_score(left, right) == expected


class TestKeypointValidity:
    def test_low_score_is_invalid(self):
        assert not is_valid_keypoint(Keypoint(0.5, 0.5, 0.0, 0.4))
        assert is_valid_keypoint(Keypoint(0.5, 0.5, 0.0, 0.5))

    def test_non_finite_is_invalid(self):
        assert not is_valid_keypoint(Keypoint(math.nan, 0.5, 0.0, 0.9))
        assert not is_valid_keypoint(Keypoint(0.5, 0.5, math.inf, 0.9))

    def test_missing_score_is_invalid(self):
        assert not is_valid_keypoint(Keypoint(0.5, 0.5))

    def test_short_list_fails_visibility(self):
        keypoints = [Keypoint(0.5, 0.5, 0.0, 0.9)] * 10
        assert not check_landmark_visibility(keypoints, [LandmarkIndex.LEFT_HIP])
        assert missing_landmarks(keypoints, [LandmarkIndex.NOSE, LandmarkIndex.LEFT_HIP]) == [LandmarkIndex.LEFT_HIP]


class TestLandmarkParsing:
    def test_rows(self):
        keypoint = to_keypoint([0.1, 0.2, 0.3, 0.9])
        assert keypoint == Keypoint(0.1, 0.2, 0.3, 0.9)

    def test_row_without_depth(self):
        keypoint = to_keypoint([0.1, 0.2])
        assert keypoint.z is None
        assert keypoint.score is None

    def test_mapping_with_visibility(self):
        keypoint = to_keypoint({"x": 0.1, "y": 0.2, "visibility": 0.7})
        assert keypoint.score == 0.7

    def test_row_too_short(self):
        with pytest.raises(ValueError):
            to_keypoint([0.1])

    def test_name_keyed_frame(self):
        """Landmarks missing from a name-keyed frame become zero-score keypoints."""
        keypoints = parse_keypoints({"left_knee": [0.4, 0.6, 0.0, 0.95]})
        assert len(keypoints) == len(LANDMARK_NAMES)
        assert keypoints[LandmarkIndex.LEFT_KNEE].x == 0.4
        assert keypoints[LandmarkIndex.NOSE].score == 0.0

    def test_landmark_dict_round_trip(self):
        keypoints = parse_keypoints([[0.1 * (i % 10), 0.5, 0.0, 0.9] for i in range(len(LANDMARK_NAMES))])
        landmarks = keypoints_to_landmark_dict(keypoints)
        assert parse_keypoints(landmarks) == keypoints
