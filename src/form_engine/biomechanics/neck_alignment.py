"""
neck_alignment.py - Head and neck position relative to the trunk.

Three measurements are taken from the ears, nose and shoulders:

- neck angle: ear-shoulder line against vertical
- forward posture: horizontal ear offset ahead of the shoulders, as a
  percentage of torso length
- extension/flexion: nose-ear-shoulder angle minus 90 (positive = looking up)

Missing ears make the result invalid instead of guessing; the analyzers then
leave the neck out of the score.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Sequence

from ..exercise_analysis.config_utils import load_biomechanics_config, threshold_from
from ..exercise_analysis.pose_utils import (angle_with_vertical, calculate_angle, distance_2d, is_valid_keypoint,
                                            keypoint_to_point3d, midpoint, round1)
from ..exercise_analysis.scoring import AngleThreshold, Correction, FeedbackItem, FeedbackLevel, make_feedback
from ..pose_detection.landmarks import Keypoint, LandmarkIndex

logger = logging.getLogger(__name__)

FALLBACK_TORSO_LENGTH = 100.0


class NeckPostureType(str, Enum):
    NEUTRAL = "neutral"
    FORWARD = "forward"
    EXTENDED = "extended"
    FLEXED = "flexed"


@dataclass
class NeckThresholds:
    neck_angle: AngleThreshold
    forward_posture: AngleThreshold
    extension_flexion: AngleThreshold


@dataclass
class NeckAlignmentResult:
    neck_angle: float = 0.0
    forward_posture: float = 0.0
    extension_flexion: float = 0.0
    posture_type: NeckPostureType = NeckPostureType.NEUTRAL
    is_valid: bool = False


class NeckFeedbackMessages:
    @staticmethod
    def good():
        return "Neck is in line with your spine"

    @staticmethod
    def forward_warning():
        return "Tuck your chin slightly and bring your head back"

    @staticmethod
    def forward_error():
        return "Head is pushed forward. Keep your ears over your shoulders"

    @staticmethod
    def extension_warning():
        return "Lower your gaze slightly"

    @staticmethod
    def extension_error():
        return "Neck is overextended. Look at the floor ahead of you"

    @staticmethod
    def flexion_warning():
        return "Chin is tucked too far. Lift your gaze a little"

    @staticmethod
    def flexion_error():
        return "Neck is overflexed. Keep a neutral spine"


def get_neck_thresholds(exercise: str = "general", config_path: str = None) -> NeckThresholds:
    """Neck thresholds for an exercise; unknown exercises use the general table."""
    tables = load_biomechanics_config(config_path)["neck"]
    table = tables.get(exercise)
    if table is None:
        logger.warning(f"No neck thresholds for '{exercise}', using general thresholds")
        table = tables["general"]
    return NeckThresholds(
        neck_angle=threshold_from(table, "neck_angle"),
        forward_posture=threshold_from(table, "forward_posture"),
        extension_flexion=threshold_from(table, "extension_flexion"),
    )


def determine_posture_type(forward_posture: float, extension_flexion: float,
                           thresholds: NeckThresholds) -> NeckPostureType:
    if forward_posture > thresholds.forward_posture.acceptable.max:
        return NeckPostureType.FORWARD
    if extension_flexion > thresholds.extension_flexion.acceptable.max:
        return NeckPostureType.EXTENDED
    if extension_flexion < thresholds.extension_flexion.acceptable.min:
        return NeckPostureType.FLEXED
    return NeckPostureType.NEUTRAL


def analyze_neck_alignment(keypoints: Sequence[Keypoint], exercise: str = "general",
                           min_score: float = 0.5) -> NeckAlignmentResult:
    """
    Measure the neck from one frame.

    Args:
        keypoints: 33 landmarks
        exercise: selects the threshold table used for the posture type
        min_score: landmark confidence needed

    Returns:
        NeckAlignmentResult; is_valid is False when no ear or either shoulder
        is missing
    """
    left_ear = keypoints[LandmarkIndex.LEFT_EAR]
    right_ear = keypoints[LandmarkIndex.RIGHT_EAR]
    left_ear_valid = is_valid_keypoint(left_ear, min_score)
    right_ear_valid = is_valid_keypoint(right_ear, min_score)
    shoulders_valid = (is_valid_keypoint(keypoints[LandmarkIndex.LEFT_SHOULDER], min_score)
                       and is_valid_keypoint(keypoints[LandmarkIndex.RIGHT_SHOULDER], min_score))
    if not (left_ear_valid or right_ear_valid) or not shoulders_valid:
        return NeckAlignmentResult()

    if left_ear_valid and right_ear_valid:
        ear = midpoint(keypoint_to_point3d(left_ear), keypoint_to_point3d(right_ear))
    elif left_ear_valid:
        ear = keypoint_to_point3d(left_ear)
    else:
        ear = keypoint_to_point3d(right_ear)

    shoulder_center = midpoint(keypoint_to_point3d(keypoints[LandmarkIndex.LEFT_SHOULDER]),
                               keypoint_to_point3d(keypoints[LandmarkIndex.RIGHT_SHOULDER]))

    if (is_valid_keypoint(keypoints[LandmarkIndex.LEFT_HIP], min_score)
            and is_valid_keypoint(keypoints[LandmarkIndex.RIGHT_HIP], min_score)):
        hip_center = midpoint(keypoint_to_point3d(keypoints[LandmarkIndex.LEFT_HIP]),
                              keypoint_to_point3d(keypoints[LandmarkIndex.RIGHT_HIP]))
        torso_length = distance_2d(shoulder_center, hip_center)
    else:
        torso_length = FALLBACK_TORSO_LENGTH

    neck_angle = angle_with_vertical(shoulder_center, ear)
    displacement = ear[0] - shoulder_center[0]
    forward_posture = max(0.0, displacement / torso_length * 100) if torso_length > 0 else 0.0

    extension_flexion = 0.0
    nose = keypoints[LandmarkIndex.NOSE]
    if is_valid_keypoint(nose, min_score):
        extension_flexion = calculate_angle(keypoint_to_point3d(nose), ear, shoulder_center) - 90

    thresholds = get_neck_thresholds(exercise)
    return NeckAlignmentResult(
        neck_angle=round1(neck_angle),
        forward_posture=round1(forward_posture),
        extension_flexion=round1(extension_flexion),
        posture_type=determine_posture_type(forward_posture, extension_flexion, thresholds),
        is_valid=True,
    )


def _graded(value: float, threshold: AngleThreshold, warning: str, error: str,
            correction: Correction, good: str, within) -> FeedbackItem:
    if within(threshold.ideal):
        return make_feedback(FeedbackLevel.GOOD, good, value, threshold)
    if within(threshold.acceptable):
        return make_feedback(FeedbackLevel.WARNING, warning, value, threshold, correction)
    return make_feedback(FeedbackLevel.ERROR, error, value, threshold, correction)


def create_neck_alignment_feedback(result: NeckAlignmentResult,
                                   exercise: str = "general") -> Optional[FeedbackItem]:
    """
    Feedback for the most severe neck fault, or None when the result is invalid.

    Forward head posture is checked first, then extension, then flexion. The
    item score and ranges come from the measurement that drove the feedback.
    """
    if not result.is_valid:
        return None
    thresholds = get_neck_thresholds(exercise)
    fwd = result.forward_posture
    ext = result.extension_flexion
    ext_threshold = thresholds.extension_flexion

    if result.posture_type == NeckPostureType.FORWARD or fwd > thresholds.forward_posture.ideal.max:
        return _graded(fwd, thresholds.forward_posture,
                       NeckFeedbackMessages.forward_warning(), NeckFeedbackMessages.forward_error(),
                       Correction.BACKWARD, NeckFeedbackMessages.good(),
                       lambda r: fwd <= r.max)
    if result.posture_type == NeckPostureType.EXTENDED or ext > ext_threshold.ideal.max:
        return _graded(ext, ext_threshold,
                       NeckFeedbackMessages.extension_warning(), NeckFeedbackMessages.extension_error(),
                       Correction.DOWN, NeckFeedbackMessages.good(),
                       lambda r: ext <= r.max)
    if result.posture_type == NeckPostureType.FLEXED or ext < ext_threshold.ideal.min:
        item = _graded(ext, ext_threshold,
                       NeckFeedbackMessages.flexion_warning(), NeckFeedbackMessages.flexion_error(),
                       Correction.UP, NeckFeedbackMessages.good(),
                       lambda r: ext >= r.min)
        item.value = round1(abs(ext))
        return item

    # Neutral: the neck angle is reported, not penalised.
    return make_feedback(FeedbackLevel.GOOD, NeckFeedbackMessages.good(), result.neck_angle,
                         thresholds.neck_angle, score=100)


def neck_alignment_score(result: NeckAlignmentResult, exercise: str = "general") -> Optional[int]:
    feedback = create_neck_alignment_feedback(result, exercise)
    return feedback.score if feedback is not None else None


def neck_result_to_dict(result: NeckAlignmentResult) -> Dict[str, object]:
    return {
        "neck_angle": result.neck_angle,
        "forward_posture": result.forward_posture,
        "extension_flexion": result.extension_flexion,
        "posture_type": result.posture_type.value,
        "is_valid": result.is_valid,
    }
