"""
knee_alignment.py - Knee valgus/varus against the hip-ankle line.

Two measurements exist:

- 3D: perpendicular knee distance from the hip-ankle line, signed medial
  (valgus, positive) or lateral (varus, negative), converted to degrees with
  the leg length. Used whenever the frame carries real depth.
- 2D: how much narrower the knees are than the hips, as a percentage. Used
  as the fallback for flat (z = 0) input.
"""
import math
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from ..exercise_analysis.config_utils import ExerciseConfig, load_biomechanics_config
from ..exercise_analysis.pose_utils import distance_2d, distance_3d, has_3d_coordinates, point_to_line_distance, round1
from ..exercise_analysis.scoring import Correction, FeedbackItem, FeedbackLevel, classify, make_feedback
from ..pose_detection.landmarks import Point3D


@dataclass
class KneeAlignmentResult:
    left_deviation: float = 0.0
    right_deviation: float = 0.0
    left_deviation_degrees: float = 0.0
    right_deviation_degrees: float = 0.0
    left_deviation_type: str = "neutral"
    right_deviation_type: str = "neutral"
    dynamic_valgus_change: float = 0.0
    peak_deviation: float = 0.0
    is_valid: bool = False

    @property
    def average_deviation(self) -> float:
        return (abs(self.left_deviation_degrees) + abs(self.right_deviation_degrees)) / 2


@dataclass(frozen=True)
class KneeAlignmentState:
    """Standing baseline (left, right degrees) and the current rep's peak deviation."""
    standing_baseline: Optional[Tuple[float, float]] = None
    current_rep_peak: float = 0.0


def _neutral_limit() -> float:
    return load_biomechanics_config()["knee_alignment"]["deviation"]["ideal"][1]


def _deviation_type(degrees: float) -> str:
    if abs(degrees) <= _neutral_limit():
        return "neutral"
    return "valgus" if degrees > 0 else "varus"


def _signed_degrees(deviation: float, leg_length: float) -> float:
    if leg_length <= 0 or deviation == 0:
        return 0.0
    return math.copysign(math.degrees(math.asin(min(1.0, abs(deviation) / leg_length))), deviation)


def analyze_knee_alignment_3d(left_hip: Point3D, left_knee: Point3D, left_ankle: Point3D,
                              right_hip: Point3D, right_knee: Point3D, right_ankle: Point3D,
                              standing_baseline: Optional[Tuple[float, float]] = None) -> KneeAlignmentResult:
    """
    Signed knee deviation for both legs.

    A left knee to the right of its hip-ankle midpoint (or a right knee to the
    left of it) is medial, i.e. valgus. dynamic_valgus_change is the mean
    deviation minus the standing baseline's mean.
    """
    left_distance = point_to_line_distance(left_knee, left_hip, left_ankle)
    right_distance = point_to_line_distance(right_knee, right_hip, right_ankle)

    left_medial = left_knee.x > (left_hip.x + left_ankle.x) / 2
    right_medial = right_knee.x < (right_hip.x + right_ankle.x) / 2
    left_deviation = left_distance if left_medial else -left_distance
    right_deviation = right_distance if right_medial else -right_distance

    left_length = distance_3d(left_hip, left_ankle)
    right_length = distance_3d(right_hip, right_ankle)
    left_degrees = _signed_degrees(left_deviation, left_length)
    right_degrees = _signed_degrees(right_deviation, right_length)

    dynamic_change = 0.0
    if standing_baseline is not None:
        dynamic_change = (left_degrees + right_degrees) / 2 - sum(standing_baseline) / 2

    return KneeAlignmentResult(
        left_deviation=left_deviation,
        right_deviation=right_deviation,
        left_deviation_degrees=round1(left_degrees),
        right_deviation_degrees=round1(right_degrees),
        left_deviation_type=_deviation_type(left_degrees),
        right_deviation_type=_deviation_type(right_degrees),
        dynamic_valgus_change=round1(dynamic_change),
        peak_deviation=max(abs(left_degrees), abs(right_degrees)),
        is_valid=left_length > 0 and right_length > 0,
    )


def calculate_valgus_percent(left_hip: Point3D, right_hip: Point3D,
                             left_knee: Point3D, right_knee: Point3D) -> float:
    """How much narrower the knees are than the hips, in percent of hip width (never negative)."""
    hip_width = distance_2d(left_hip, right_hip)
    if hip_width <= 0:
        return 0.0
    knee_width = distance_2d(left_knee, right_knee)
    return max(0.0, (hip_width - knee_width) / hip_width * 100)


def use_3d_alignment(alignment: Optional[KneeAlignmentResult], *points: Point3D) -> bool:
    """The 3D metric takes precedence whenever it is valid and the frame has depth."""
    return alignment is not None and alignment.is_valid and has_3d_coordinates(points)


def update_knee_alignment_state(state: KneeAlignmentState, alignment: Optional[KneeAlignmentResult],
                                standing: bool) -> KneeAlignmentState:
    """Capture the first standing baseline; reset the rep peak while standing, track the max otherwise."""
    if alignment is None or not alignment.is_valid:
        return state
    baseline = state.standing_baseline
    if standing and baseline is None:
        baseline = (alignment.left_deviation_degrees, alignment.right_deviation_degrees)
    peak = alignment.peak_deviation if standing else max(state.current_rep_peak, alignment.peak_deviation)
    return replace(state, standing_baseline=baseline, current_rep_peak=round1(peak))


def create_knee_valgus_feedback(valgus_percent: float, alignment: Optional[KneeAlignmentResult],
                                use_3d: bool, config: ExerciseConfig) -> FeedbackItem:
    """
    Knee tracking feedback.

    With 3D data the value is the mean absolute deviation in degrees and the
    message names valgus or varus; otherwise the 2D percentage is scored
    against the knee_valgus item.
    """
    if not use_3d or alignment is None:
        return config.evaluate("knee_valgus", valgus_percent)

    threshold = config.threshold("knee_valgus_3d")
    value = alignment.average_deviation
    level, _ = classify(value, threshold)
    types = (alignment.left_deviation_type, alignment.right_deviation_type)
    if level == FeedbackLevel.GOOD:
        message = config.message("knee_valgus_3d", "good")
        correction = Correction.NONE
    elif "valgus" in types:
        message = config.message("knee_valgus_3d", "valgus")
        correction = Correction.OUTWARD
    elif "varus" in types:
        message = config.message("knee_valgus_3d", "varus")
        correction = Correction.INWARD
    else:
        message = config.message("knee_valgus_3d", f"{level.value}_above")
        correction = Correction.NONE

    if alignment.dynamic_valgus_change > load_biomechanics_config()["knee_alignment"]["dynamic_valgus_warning"]:
        message += " (knees caving more than when standing)"
    return make_feedback(level, message, value, threshold, correction)
