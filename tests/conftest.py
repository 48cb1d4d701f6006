"""
Shared fixtures: synthetic BlazePose frames for the analyzers.
"""
import math

import pytest

from form_engine.exercise_analysis.config_utils import clear_config_cache
from form_engine.pose_detection.landmarks import NUM_LANDMARKS, Keypoint, LandmarkIndex as L


def make_keypoints(overrides=None, score=0.9):
    """33 keypoints parked at the image centre, with ``overrides`` as {index: (x, y[, z])}."""
    keypoints = [Keypoint(0.5, 0.5, 0.0, score) for _ in range(NUM_LANDMARKS)]
    for idx, coords in (overrides or {}).items():
        x, y = coords[0], coords[1]
        z = coords[2] if len(coords) > 2 else 0.0
        keypoints[idx] = Keypoint(x, y, z, score)
    return keypoints


def both_sides(left, right, point):
    return {left: point, right: point}


def squat_bottom_pose():
    """
    Side-view squat at the bottom: knee 90, hip 95, torso lean 20, ankle
    dorsiflexion 25, heels down, head stacked over the shoulders.
    """
    overrides = {}
    overrides.update(both_sides(L.LEFT_HIP, L.RIGHT_HIP, (0.5, 0.5)))
    overrides.update(both_sides(L.LEFT_SHOULDER, L.RIGHT_SHOULDER, (0.6026, 0.2181)))
    overrides.update(both_sides(L.LEFT_KNEE, L.RIGHT_KNEE, (0.7266, 0.6057)))
    overrides.update(both_sides(L.LEFT_ANKLE, L.RIGHT_ANKLE, (0.6209, 0.8323)))
    overrides.update(both_sides(L.LEFT_FOOT_INDEX, L.RIGHT_FOOT_INDEX, (0.7009, 0.8323)))
    overrides.update(both_sides(L.LEFT_HEEL, L.RIGHT_HEEL, (0.4091, 0.8323)))
    overrides.update(both_sides(L.LEFT_EAR, L.RIGHT_EAR, (0.6026, 0.1181)))
    overrides[L.NOSE] = (0.6526, 0.1181)
    return make_keypoints(overrides)


def squat_pose(knee_angle):
    """Side-view squat with vertical shins and an upright torso; hip angle equals the knee angle."""
    theta = math.radians(knee_angle)
    knee = (0.6, 0.6)
    ankle = (0.6, 0.85)
    hip = (knee[0] - 0.25 * math.sin(theta), knee[1] + 0.25 * math.cos(theta))
    shoulder = (hip[0], hip[1] - 0.3)
    overrides = {}
    overrides.update(both_sides(L.LEFT_HIP, L.RIGHT_HIP, hip))
    overrides.update(both_sides(L.LEFT_SHOULDER, L.RIGHT_SHOULDER, shoulder))
    overrides.update(both_sides(L.LEFT_KNEE, L.RIGHT_KNEE, knee))
    overrides.update(both_sides(L.LEFT_ANKLE, L.RIGHT_ANKLE, ankle))
    overrides.update(both_sides(L.LEFT_FOOT_INDEX, L.RIGHT_FOOT_INDEX, (0.68, 0.85)))
    overrides.update(both_sides(L.LEFT_HEEL, L.RIGHT_HEEL, (0.52, 0.85)))
    overrides.update(both_sides(L.LEFT_EAR, L.RIGHT_EAR, (shoulder[0], shoulder[1] - 0.1)))
    overrides[L.NOSE] = (shoulder[0] + 0.05, shoulder[1] - 0.1)
    return make_keypoints(overrides)


def squat_rep_angles(reps=1, hold=8):
    """Knee angles for full reps in 10 degree steps, pausing at the top and bottom."""
    angles = [180.0] * hold
    for _ in range(reps):
        angles += [float(a) for a in range(170, 90, -10)]
        angles += [90.0] * hold
        angles += [float(a) for a in range(100, 180, 10)]
        angles += [180.0] * hold
    return angles


def pushup_pose(elbow_angle):
    """Side-view push-up with a straight body; the forearm swings about a fixed elbow."""
    theta = math.radians(elbow_angle)
    shoulder = (0.3, 0.5)
    elbow = (0.3, 0.6)
    wrist = (elbow[0] + 0.1 * math.sin(theta), elbow[1] - 0.1 * math.cos(theta))
    overrides = {}
    overrides.update(both_sides(L.LEFT_SHOULDER, L.RIGHT_SHOULDER, shoulder))
    overrides.update(both_sides(L.LEFT_ELBOW, L.RIGHT_ELBOW, elbow))
    overrides.update(both_sides(L.LEFT_WRIST, L.RIGHT_WRIST, wrist))
    overrides.update(both_sides(L.LEFT_HIP, L.RIGHT_HIP, (0.55, 0.5)))
    overrides.update(both_sides(L.LEFT_ANKLE, L.RIGHT_ANKLE, (0.85, 0.5)))
    overrides.update(both_sides(L.LEFT_EAR, L.RIGHT_EAR, (0.2, 0.5)))
    overrides[L.NOSE] = (0.18, 0.52)
    return make_keypoints(overrides)


def plank_pose(hip_y=0.5):
    """Forearm plank seen from the side; ``hip_y`` above 0.5 sags the hips."""
    overrides = {}
    overrides.update(both_sides(L.LEFT_SHOULDER, L.RIGHT_SHOULDER, (0.3, 0.5)))
    overrides.update(both_sides(L.LEFT_ELBOW, L.RIGHT_ELBOW, (0.3, 0.7)))
    overrides.update(both_sides(L.LEFT_WRIST, L.RIGHT_WRIST, (0.3, 0.7)))
    overrides.update(both_sides(L.LEFT_HIP, L.RIGHT_HIP, (0.55, hip_y)))
    overrides.update(both_sides(L.LEFT_ANKLE, L.RIGHT_ANKLE, (0.85, 0.5)))
    overrides.update(both_sides(L.LEFT_EAR, L.RIGHT_EAR, (0.2, 0.5)))
    return make_keypoints(overrides)


def overhead_lockout_pose():
    """Front view, both arms locked out straight overhead."""
    overrides = {
        L.LEFT_SHOULDER: (0.4, 0.4), L.RIGHT_SHOULDER: (0.6, 0.4),
        L.LEFT_ELBOW: (0.4, 0.25), L.RIGHT_ELBOW: (0.6, 0.25),
        L.LEFT_WRIST: (0.4, 0.1), L.RIGHT_WRIST: (0.6, 0.1),
        L.LEFT_INDEX: (0.4, 0.05), L.RIGHT_INDEX: (0.6, 0.05),
        L.LEFT_HIP: (0.4, 0.8), L.RIGHT_HIP: (0.6, 0.8),
    }
    return make_keypoints(overrides)


@pytest.fixture(autouse=True)
def fresh_config_cache():
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def invalid_keypoints():
    """Every landmark below the confidence cut-off."""
    return make_keypoints(score=0.1)
