"""
torso_rotation.py - Shoulder line against hip line, in two planes.

Transverse rotation comes from the top-down projection (needs depth); frontal
tilt compares the shoulder and hip lines' slopes in the image plane. Both are
folded into one compound score, 60% transverse and 40% frontal.
"""
import math
from dataclasses import dataclass
from typing import Optional, Sequence

from ..exercise_analysis.config_utils import load_biomechanics_config, threshold_from
from ..exercise_analysis.pose_utils import (angle_between_segments, calculate_torso_rotation, check_landmark_visibility,
                                            keypoint_to_point3d, round1)
from ..exercise_analysis.scoring import (AngleThreshold, Correction, FeedbackItem, FeedbackLevel, Range,
                                         round_half_up)
from ..pose_detection.landmarks import Keypoint, LandmarkIndex, Point3D

TORSO_LANDMARKS = [
    LandmarkIndex.LEFT_SHOULDER, LandmarkIndex.RIGHT_SHOULDER,
    LandmarkIndex.LEFT_HIP, LandmarkIndex.RIGHT_HIP,
]


@dataclass
class TorsoRotationResult:
    rotation_angle: float = 0.0
    rotation_direction: str = "none"
    frontal_tilt_angle: float = 0.0
    frontal_tilt_direction: str = "none"
    full_3d_angle: float = 0.0
    compound_score: int = 100
    is_valid: bool = False


def _settings():
    return load_biomechanics_config()["torso_rotation"]


def calculate_frontal_plane_tilt(left_shoulder: Point3D, right_shoulder: Point3D,
                                 left_hip: Point3D, right_hip: Point3D):
    """
    Shoulder-line tilt relative to hip-line tilt in the image plane.

    Returns (tilt_angle, tilt_direction); (0, "none") when either line is too
    narrow to measure (side view).
    """
    settings = _settings()
    shoulder_width = abs(left_shoulder.x - right_shoulder.x)
    hip_width = abs(left_hip.x - right_hip.x)
    if shoulder_width < settings["min_width"] or hip_width < settings["min_width"]:
        return 0.0, "none"

    shoulder_tilt = math.atan2(left_shoulder.y - right_shoulder.y, shoulder_width)
    hip_tilt = math.atan2(left_hip.y - right_hip.y, hip_width)
    relative = shoulder_tilt - hip_tilt
    tilt = abs(math.degrees(relative))

    direction = "none"
    if tilt > settings["tilt_direction_threshold"]:
        direction = "left" if relative < 0 else "right"
    return round1(tilt), direction


def calculate_plane_score(angle: float, ideal_max: float, acceptable_max: float) -> int:
    """100 inside ideal, 100 -> 60 across the warning band, then 3 points per degree."""
    if angle <= ideal_max:
        return 100
    if angle <= acceptable_max:
        ratio = (angle - ideal_max) / (acceptable_max - ideal_max)
        return round_half_up(100 - ratio * 40)
    return max(0, round_half_up(60 - (angle - acceptable_max) * 3))


def calculate_compound_rotation_score(transverse_angle: float, frontal_tilt_angle: float,
                                      rotation: Optional[AngleThreshold] = None) -> int:
    settings = _settings()
    rotation = rotation or threshold_from(settings, "rotation")
    frontal = threshold_from(settings, "frontal_tilt")
    weights = settings["compound_weights"]
    transverse_score = calculate_plane_score(transverse_angle, rotation.ideal.max, rotation.acceptable.max)
    frontal_score = calculate_plane_score(frontal_tilt_angle, frontal.ideal.max, frontal.acceptable.max)
    return round_half_up(transverse_score * weights["transverse"] + frontal_score * weights["frontal"])


def analyze_torso_rotation(keypoints: Sequence[Keypoint], min_score: float = 0.5) -> TorsoRotationResult:
    if not check_landmark_visibility(keypoints, TORSO_LANDMARKS, min_score):
        return TorsoRotationResult()

    ls, rs, lh, rh = (keypoint_to_point3d(keypoints[idx]) for idx in TORSO_LANDMARKS)
    rotation = calculate_torso_rotation(ls, rs, lh, rh)

    # Shoulder depth difference relative to the hips gives the turning side.
    relative = (ls.z - rs.z) - (lh.z - rh.z)
    direction = "none"
    if rotation > _settings()["direction_threshold"]:
        direction = "left" if relative < 0 else "right"

    tilt, tilt_direction = calculate_frontal_plane_tilt(ls, rs, lh, rh)
    return TorsoRotationResult(
        rotation_angle=rotation,
        rotation_direction=direction,
        frontal_tilt_angle=tilt,
        frontal_tilt_direction=tilt_direction,
        full_3d_angle=round1(angle_between_segments(ls, rs, lh, rh)),
        compound_score=calculate_compound_rotation_score(rotation, tilt),
        is_valid=True,
    )


def effective_rotation(result: TorsoRotationResult, exercise: str, front_leg: Optional[str] = None) -> float:
    """Lunges allow a few degrees of rotation towards the front leg."""
    allowance = _settings()["lunge_rotation_allowance"]
    if (exercise == "lunge" and front_leg in ("left", "right")
            and result.rotation_direction == front_leg and result.rotation_angle > allowance):
        return max(0.0, result.rotation_angle - allowance)
    return result.rotation_angle


def rotation_threshold(exercise: str, is_lift_phase: bool = False) -> AngleThreshold:
    settings = _settings()
    threshold = threshold_from(settings, "rotation")
    if exercise == "deadlift" and is_lift_phase:
        factor = settings["lift_phase_multiplier"]
        threshold = AngleThreshold(
            Range(threshold.ideal.min, threshold.ideal.max * factor),
            Range(threshold.acceptable.min, threshold.acceptable.max * factor),
        )
    return threshold


def create_torso_rotation_feedback(result: TorsoRotationResult, exercise: str, is_lift_phase: bool = False,
                                   front_leg: Optional[str] = None) -> Optional[FeedbackItem]:
    """
    Rotation feedback, or None when the torso landmarks were missing.

    The item score is the compound score recomputed with the effective
    rotation and the phase-adjusted thresholds.
    """
    if not result.is_valid:
        return None

    threshold = rotation_threshold(exercise, is_lift_phase)
    frontal = threshold_from(_settings(), "frontal_tilt")
    rotation = effective_rotation(result, exercise, front_leg)
    tilt = result.frontal_tilt_angle
    score = calculate_compound_rotation_score(rotation, tilt, threshold)

    turned = "left" if result.rotation_direction == "left" else "right"
    other = "right" if turned == "left" else "left"
    tilted = "left" if result.frontal_tilt_direction == "left" else "right"
    tilt_other = "right" if tilted == "left" else "left"

    reported = rotation
    if rotation > threshold.acceptable.max or tilt > frontal.acceptable.max:
        level = FeedbackLevel.ERROR
        if rotation > threshold.acceptable.max and tilt > frontal.acceptable.max:
            message = "Torso is both rotated and tilted. Align shoulders with hips"
            reported = score
        elif tilt > frontal.acceptable.max:
            message = f"{tilted.capitalize()} shoulder is too high. Raise your {tilt_other} shoulder"
            reported = tilt
        else:
            message = f"Excessive torso rotation to the {turned}. Bring your {other} shoulder forward"
    elif rotation > threshold.ideal.max or tilt > frontal.ideal.max:
        level = FeedbackLevel.WARNING
        if rotation > threshold.ideal.max and tilt > frontal.ideal.max:
            message = "Slight torso misalignment. Align shoulders with hips"
            reported = score
        elif tilt > frontal.ideal.max:
            message = f"{tilted.capitalize()} shoulder is slightly high. Level your shoulders"
            reported = tilt
        else:
            message = f"Slight torso rotation to the {turned}. Align shoulders with hips"
    else:
        level = FeedbackLevel.GOOD
        message = "Good torso alignment"

    return FeedbackItem(
        level=level,
        message=message,
        correction=Correction.NONE,
        value=round1(reported),
        ideal_range=threshold.ideal,
        acceptable_range=threshold.acceptable,
        score=score,
    )
