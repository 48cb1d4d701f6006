"""
weight_shift.py - Centre of mass against the base of support.

The centre of mass is a weighted centroid of the shoulder, hip and ankle
centres (0.30 / 0.50 / 0.20). Both shifts are measured on the ground (x-z)
plane:

- lateral: along the left ankle -> right ankle axis
- anterior-posterior: along the heel centre -> toe centre axis

Each is reported as a percentage split (50/50 is centred) and scored against
exercise-specific bands on the dominant side's percentage.
"""
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

from ..exercise_analysis.angle_smoother import AngleSmootherSet, SmoothingConfig, create_weight_shift_smoother_set
from ..exercise_analysis.config_utils import load_biomechanics_config, threshold_from
from ..exercise_analysis.pose_utils import (check_landmark_visibility, clamp, create_vector, distance_3d, dot,
                                            keypoint_to_point3d, midpoint, project_to_xz, weighted_centroid)
from ..exercise_analysis.scoring import (AngleThreshold, Correction, FeedbackItem, FeedbackLevel, classify,
                                         invalid_feedback, make_feedback, round_half_up)
from ..pose_detection.landmarks import Keypoint, LandmarkIndex, Point3D

logger = logging.getLogger(__name__)

WEIGHT_SHIFT_LANDMARKS = [
    LandmarkIndex.LEFT_SHOULDER, LandmarkIndex.RIGHT_SHOULDER,
    LandmarkIndex.LEFT_HIP, LandmarkIndex.RIGHT_HIP,
    LandmarkIndex.LEFT_ANKLE, LandmarkIndex.RIGHT_ANKLE,
    LandmarkIndex.LEFT_HEEL, LandmarkIndex.RIGHT_HEEL,
    LandmarkIndex.LEFT_FOOT_INDEX, LandmarkIndex.RIGHT_FOOT_INDEX,
]
MIN_AXIS_LENGTH = 1e-6


@dataclass
class WeightShiftConfig:
    smoothing: Optional[SmoothingConfig] = None
    status_threshold: float = 0.1

    @classmethod
    def coerce(cls, config: Union["WeightShiftConfig", Mapping[str, Any], None]) -> "WeightShiftConfig":
        if config is None:
            return cls()
        if isinstance(config, WeightShiftConfig):
            return replace(config)
        smoothing = config.get("smoothing")
        return cls(
            smoothing=SmoothingConfig.coerce(smoothing) if smoothing is not None else None,
            status_threshold=float(config.get("status_threshold", 0.1)),
        )


@dataclass
class BaseOfSupport:
    center: Point3D
    left: Point3D
    right: Point3D
    heel_center: Point3D
    toe_center: Point3D
    width: float
    depth: float


@dataclass
class LateralShift:
    left_percent: float = 50.0
    right_percent: float = 50.0
    deviation: float = 0.0
    status: str = "balanced"


@dataclass
class AnteriorPosteriorShift:
    forward_percent: float = 50.0
    backward_percent: float = 50.0
    deviation: float = 0.0
    status: str = "balanced"


@dataclass
class WeightShiftResult:
    score: int = 0
    center_of_mass: Point3D = Point3D(0.0, 0.0, 0.0)
    confidence: float = 0.0
    base_of_support: Optional[BaseOfSupport] = None
    lateral: LateralShift = field(default_factory=LateralShift)
    anterior_posterior: AnteriorPosteriorShift = field(default_factory=AnteriorPosteriorShift)
    feedbacks: Dict[str, FeedbackItem] = field(default_factory=dict)
    is_valid: bool = False


@dataclass(frozen=True)
class WeightShiftState:
    previous_lateral_deviation: Optional[float] = None
    previous_ap_deviation: Optional[float] = None
    smoother_set: Optional[AngleSmootherSet] = field(default=None, compare=False)
    status_threshold: float = 0.1


def create_initial_weight_shift_state(config=None) -> WeightShiftState:
    config = WeightShiftConfig.coerce(config)
    return WeightShiftState(
        smoother_set=create_weight_shift_smoother_set(config.smoothing) if config.smoothing is not None else None,
        status_threshold=config.status_threshold,
    )


def _settings():
    return load_biomechanics_config()["weight_shift"]


def weight_shift_thresholds(exercise: str) -> Tuple[AngleThreshold, AngleThreshold]:
    """(lateral, anterior_posterior) bands; exercises without a table use the squat bands."""
    settings = _settings()
    table = settings.get(exercise)
    if table is None:
        logger.warning(f"No weight shift thresholds for '{exercise}', using squat thresholds")
        table = settings["squat"]
    return threshold_from(table, "lateral"), threshold_from(table, "anterior_posterior")


def calculate_center_of_mass(shoulder_center: Point3D, hip_center: Point3D, ankle_center: Point3D) -> Point3D:
    weights = _settings()["segment_weights"]
    return weighted_centroid([shoulder_center, hip_center, ankle_center],
                             [weights["shoulders"], weights["hips"], weights["ankles"]])


def calculate_base_of_support(left_ankle: Point3D, right_ankle: Point3D, left_heel: Point3D, right_heel: Point3D,
                              left_foot: Point3D, right_foot: Point3D) -> BaseOfSupport:
    heel_center = midpoint(left_heel, right_heel)
    toe_center = midpoint(left_foot, right_foot)
    return BaseOfSupport(
        center=midpoint(left_ankle, right_ankle),
        left=left_ankle,
        right=right_ankle,
        heel_center=heel_center,
        toe_center=toe_center,
        width=distance_3d(project_to_xz(left_ankle), project_to_xz(right_ankle)),
        depth=distance_3d(project_to_xz(heel_center), project_to_xz(toe_center)),
    )


def _axis_position(point: Point3D, start: Point3D, end: Point3D) -> float:
    """Signed deviation of ``point`` from the axis midpoint, -1 at ``start`` and +1 at ``end``."""
    axis = create_vector(project_to_xz(start), project_to_xz(end))
    length_sq = dot(axis, axis)
    if length_sq < MIN_AXIS_LENGTH ** 2:
        return 0.0
    t = dot(create_vector(project_to_xz(start), project_to_xz(point)), axis) / length_sq
    return clamp((t - 0.5) * 2, -1.0, 1.0)


def lateral_shift_from_deviation(deviation: float, status_threshold: float = 0.1) -> LateralShift:
    deviation = clamp(deviation, -1.0, 1.0)
    right = 50 + deviation * 50
    if deviation < -status_threshold:
        status = "shifted_left"
    elif deviation > status_threshold:
        status = "shifted_right"
    else:
        status = "balanced"
    return LateralShift(round(100 - right, 1), round(right, 1), round(deviation, 2), status)


def ap_shift_from_deviation(deviation: float, status_threshold: float = 0.1) -> AnteriorPosteriorShift:
    deviation = clamp(deviation, -1.0, 1.0)
    forward = 50 + deviation * 50
    if deviation > status_threshold:
        status = "forward"
    elif deviation < -status_threshold:
        status = "backward"
    else:
        status = "balanced"
    return AnteriorPosteriorShift(round(forward, 1), round(100 - forward, 1), round(deviation, 2), status)


def calculate_lateral_shift(com: Point3D, base: BaseOfSupport, status_threshold: float = 0.1) -> LateralShift:
    if base.width < MIN_AXIS_LENGTH:
        return LateralShift()
    return lateral_shift_from_deviation(_axis_position(com, base.left, base.right), status_threshold)


def calculate_ap_shift(com: Point3D, base: BaseOfSupport, status_threshold: float = 0.1) -> AnteriorPosteriorShift:
    if base.depth < MIN_AXIS_LENGTH:
        return AnteriorPosteriorShift()
    return ap_shift_from_deviation(_axis_position(com, base.heel_center, base.toe_center), status_threshold)


def lateral_feedback(shift: LateralShift, threshold: AngleThreshold) -> FeedbackItem:
    dominant = max(shift.left_percent, shift.right_percent)
    level, _ = classify(dominant, threshold)
    if level == FeedbackLevel.GOOD:
        return make_feedback(level, "Good left/right balance", dominant, threshold)
    leaning_left = shift.status == "shifted_left"
    side = "left" if leaning_left else "right"
    percent = shift.left_percent if leaning_left else shift.right_percent
    prefix = "Leaning" if level == FeedbackLevel.WARNING else "Excessive lean to the"
    message = f"{prefix} {side} ({percent:.0f}%)"
    correction = Correction.RIGHT if leaning_left else Correction.LEFT
    return make_feedback(level, message, dominant, threshold, correction)


def ap_feedback(shift: AnteriorPosteriorShift, threshold: AngleThreshold) -> FeedbackItem:
    dominant = max(shift.forward_percent, shift.backward_percent)
    level, _ = classify(dominant, threshold)
    if level == FeedbackLevel.GOOD:
        return make_feedback(level, "Good front/back balance", dominant, threshold)
    forward = shift.status == "forward"
    side = "forward" if forward else "backward"
    percent = shift.forward_percent if forward else shift.backward_percent
    prefix = "Weight is shifting" if level == FeedbackLevel.WARNING else "Excessive weight shift"
    message = f"{prefix} {side} ({percent:.0f}%)"
    correction = Correction.BACKWARD if forward else Correction.FORWARD
    return make_feedback(level, message, dominant, threshold, correction)


def _invalid_result() -> WeightShiftResult:
    item = invalid_feedback("Unable to detect feet and hips for balance analysis")
    return WeightShiftResult(feedbacks={"lateral": item, "anterior_posterior": item})


def analyze_weight_shift(keypoints: Sequence[Keypoint], exercise: str = "squat",
                         state: Optional[WeightShiftState] = None,
                         min_score: float = 0.5) -> Tuple[WeightShiftResult, WeightShiftState]:
    """
    Balance for one frame.

    Returns (result, new_state). Any missing landmark returns an invalid result
    and the state passed in.
    """
    state = state if state is not None else create_initial_weight_shift_state()
    if not check_landmark_visibility(keypoints, WEIGHT_SHIFT_LANDMARKS, min_score):
        return _invalid_result(), state

    ls, rs, lh, rh, la, ra, lhe, rhe, lf, rf = (keypoint_to_point3d(keypoints[idx]) for idx in WEIGHT_SHIFT_LANDMARKS)
    com = calculate_center_of_mass(midpoint(ls, rs), midpoint(lh, rh), midpoint(la, ra))
    base = calculate_base_of_support(la, ra, lhe, rhe, lf, rf)
    lateral = calculate_lateral_shift(com, base, state.status_threshold)
    ap = calculate_ap_shift(com, base, state.status_threshold)

    smoother_set = state.smoother_set
    if smoother_set is not None:
        smoother_set = smoother_set.copy()
        smoothed = smoother_set.smoothed_values({"lateral_deviation": lateral.deviation,
                                                 "ap_deviation": ap.deviation})
        lateral = lateral_shift_from_deviation(smoothed["lateral_deviation"], state.status_threshold)
        ap = ap_shift_from_deviation(smoothed["ap_deviation"], state.status_threshold)

    lateral_threshold, ap_threshold = weight_shift_thresholds(exercise)
    feedbacks = {
        "lateral": lateral_feedback(lateral, lateral_threshold),
        "anterior_posterior": ap_feedback(ap, ap_threshold),
    }
    score = round_half_up(feedbacks["lateral"].score * 0.5 + feedbacks["anterior_posterior"].score * 0.5)
    scores = [keypoints[idx].score for idx in WEIGHT_SHIFT_LANDMARKS if keypoints[idx].score is not None]
    confidence = sum(scores) / len(scores) if scores else 0.0

    result = WeightShiftResult(
        score=score,
        center_of_mass=com,
        confidence=round(confidence, 2),
        base_of_support=base,
        lateral=lateral,
        anterior_posterior=ap,
        feedbacks=feedbacks,
        is_valid=True,
    )
    new_state = replace(state, previous_lateral_deviation=lateral.deviation,
                        previous_ap_deviation=ap.deviation, smoother_set=smoother_set)
    return result, new_state


def create_weight_shift_feedback(result: WeightShiftResult) -> Optional[FeedbackItem]:
    """The worse of the two balance items, carrying the combined score; None when invalid."""
    if not result.is_valid:
        return None
    lateral = result.feedbacks["lateral"]
    ap = result.feedbacks["anterior_posterior"]
    worst = lateral if lateral.score <= ap.score else ap
    return FeedbackItem(
        level=worst.level,
        message=worst.message,
        correction=worst.correction,
        value=worst.value,
        ideal_range=worst.ideal_range,
        acceptable_range=worst.acceptable_range,
        score=result.score,
    )
