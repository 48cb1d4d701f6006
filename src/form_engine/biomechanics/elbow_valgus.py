"""
elbow_valgus.py - Elbow flare in the frontal plane.

The wrist is compared with where it would sit if the forearm continued the
upper arm's line. Deviation away from the body is flare (positive), towards
the body is tuck (negative).
"""
import math
from dataclasses import dataclass

from ..exercise_analysis.config_utils import ExerciseConfig
from ..exercise_analysis.pose_utils import project_to_xy, round1
from ..exercise_analysis.scoring import Correction, FeedbackItem, FeedbackLevel, classify, make_feedback
from ..pose_detection.landmarks import Point3D


@dataclass
class ElbowValgusResult:
    left_angle: float
    right_angle: float

    @property
    def average(self) -> float:
        return (abs(self.left_angle) + abs(self.right_angle)) / 2

    @property
    def signed_mean(self) -> float:
        return (self.left_angle + self.right_angle) / 2


def elbow_valgus_angle(shoulder: Point3D, elbow: Point3D, wrist: Point3D, side: str) -> float:
    """
    Signed flare angle for one arm, in degrees.

    For the left arm a wrist left of the extended upper-arm line (smaller x)
    is flare; for the right arm, a wrist to the right.
    """
    s, e, w = project_to_xy(shoulder), project_to_xy(elbow), project_to_xy(wrist)
    expected_x = e.x + (e.x - s.x)
    deviation = w.x - expected_x
    forearm = math.hypot(w.x - e.x, w.y - e.y)
    if forearm == 0:
        return 0.0
    angle = math.degrees(math.asin(min(1.0, abs(deviation) / forearm)))
    flaring = deviation < 0 if side == "left" else deviation > 0
    return angle if flaring else -angle


def analyze_elbow_valgus(left_shoulder: Point3D, left_elbow: Point3D, left_wrist: Point3D,
                         right_shoulder: Point3D, right_elbow: Point3D, right_wrist: Point3D) -> ElbowValgusResult:
    return ElbowValgusResult(
        left_angle=elbow_valgus_angle(left_shoulder, left_elbow, left_wrist, "left"),
        right_angle=elbow_valgus_angle(right_shoulder, right_elbow, right_wrist, "right"),
    )


def create_elbow_valgus_feedback(left_angle: float, right_angle: float, config: ExerciseConfig,
                                 item: str = "elbow_valgus") -> FeedbackItem:
    """Scores the mean absolute flare; the message follows the sign of the mean."""
    result = ElbowValgusResult(left_angle, right_angle)
    threshold = config.threshold(item)
    value = round1(result.average)
    level, _ = classify(value, threshold)
    if level == FeedbackLevel.GOOD:
        return make_feedback(level, config.message(item, "good"), value, threshold)
    if result.signed_mean >= 0:
        return make_feedback(level, config.message(item, f"{level.value}_flare"), value, threshold, Correction.INWARD)
    return make_feedback(level, config.message(item, f"{level.value}_tuck"), value, threshold, Correction.OUTWARD)
