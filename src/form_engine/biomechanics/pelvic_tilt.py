"""
pelvic_tilt.py - Anterior/posterior and lateral pelvic tilt plus stability.

Anterior tilt is read from an estimated sacrum point placed behind and below
the hip centre; lateral tilt from the hip line against horizontal. Stability is
derived from the variance of the last 30 readings of both.
"""
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from ..exercise_analysis.angle_smoother import AngleSmootherSet, SmoothingConfig
from ..exercise_analysis.config_utils import load_biomechanics_config, threshold_from
from ..exercise_analysis.depth_normalization import (DepthNormalizationConfig, apply_perspective_correction,
                                                     calculate_perspective_factor)
from ..exercise_analysis.pose_utils import (angle_with_horizontal, angle_with_vertical, check_landmark_visibility,
                                            distance_3d, keypoint_to_point3d, midpoint, round1)
from ..exercise_analysis.scoring import (AngleThreshold, Correction, FeedbackItem, FeedbackLevel, Range,
                                         make_feedback, round_half_up, score_value)
from ..pose_detection.landmarks import Keypoint, LandmarkIndex, Point3D

logger = logging.getLogger(__name__)

PELVIC_LANDMARKS = [
    LandmarkIndex.LEFT_HIP, LandmarkIndex.RIGHT_HIP,
    LandmarkIndex.LEFT_SHOULDER, LandmarkIndex.RIGHT_SHOULDER,
]
# Sacrum sits 10% of torso length behind the hip centre and 3% below it.
SACRUM_DEPTH_RATIO = 0.1
SACRUM_DROP_RATIO = 0.03
NEUTRAL_PELVIC_ANGLE = math.degrees(math.atan(SACRUM_DEPTH_RATIO / SACRUM_DROP_RATIO))
ANTERIOR_DIRECTION_THRESHOLD = 5.0
LATERAL_DIRECTION_THRESHOLD = 3.0
PELVIC_SMOOTHED_ANGLES = ["anterior_tilt", "lateral_tilt"]


@dataclass(frozen=True)
class PelvicTiltState:
    anterior_history: Tuple[float, ...] = ()
    lateral_history: Tuple[float, ...] = ()
    frame_count: int = 0
    smoother_set: Optional[AngleSmootherSet] = field(default=None, compare=False)
    depth_config: Optional[DepthNormalizationConfig] = None


@dataclass
class PelvicTiltResult:
    anterior_tilt_angle: float = 0.0
    lateral_tilt_angle: float = 0.0
    stability_score: int = 0
    tilt_direction: str = "neutral"
    lateral_direction: str = "neutral"
    is_valid: bool = False


def _settings():
    return load_biomechanics_config()["pelvic_tilt"]


def create_initial_pelvic_tilt_state(smoothing=None, depth_config=None) -> PelvicTiltState:
    """Empty history; a smoother set and depth correction only when configured."""
    return PelvicTiltState(
        smoother_set=AngleSmootherSet(PELVIC_SMOOTHED_ANGLES, SmoothingConfig.coerce(smoothing))
        if smoothing is not None else None,
        depth_config=DepthNormalizationConfig.coerce(depth_config),
    )


def estimate_sacrum_position(hip_center: Point3D, shoulder_center: Point3D) -> Point3D:
    """
    Sacrum estimate behind and slightly below the hip centre.

    The point follows the trunk's forward lean in depth: when the shoulders sit
    further from the camera than the hips, the sacrum is carried with them.
    """
    torso = distance_3d(hip_center, shoulder_center)
    lean = shoulder_center.z - hip_center.z
    return Point3D(
        hip_center.x,
        hip_center.y + torso * SACRUM_DROP_RATIO,
        hip_center.z - torso * SACRUM_DEPTH_RATIO + lean,
    )


def calculate_anterior_tilt(hip_center: Point3D, shoulder_center: Point3D) -> float:
    """Positive = anterior, negative = posterior, 0 for a neutral pelvis or 2D input."""
    sacrum = estimate_sacrum_position(hip_center, shoulder_center)
    return angle_with_vertical(sacrum, hip_center) - NEUTRAL_PELVIC_ANGLE


def calculate_lateral_tilt(left_hip: Point3D, right_hip: Point3D) -> float:
    """Positive when the right hip is higher, negative when the left hip is higher."""
    magnitude = abs(angle_with_horizontal(left_hip, right_hip))
    if right_hip.y < left_hip.y:
        return magnitude
    if left_hip.y < right_hip.y:
        return -magnitude
    return 0.0


def calculate_stability_score(anterior_history: Sequence[float], lateral_history: Sequence[float],
                              min_samples: int = 5) -> float:
    if len(anterior_history) < min_samples:
        return 100.0
    combined = float(np.var(anterior_history)) * 0.6 + float(np.var(lateral_history)) * 0.4
    return max(0.0, 100.0 - min(100.0, combined))


def _signed_correction(angle: float, factor: float) -> float:
    corrected = apply_perspective_correction(abs(angle), factor, "hip")
    return corrected if angle >= 0 else -corrected


def analyze_pelvic_tilt(keypoints: Sequence[Keypoint], state: Optional[PelvicTiltState] = None,
                        min_score: float = 0.5) -> Tuple[PelvicTiltResult, PelvicTiltState]:
    """
    Pelvic tilt for one frame.

    Returns (result, new_state). Missing hips or shoulders return an invalid
    result and the state passed in.
    """
    state = state if state is not None else create_initial_pelvic_tilt_state()
    if not check_landmark_visibility(keypoints, PELVIC_LANDMARKS, min_score):
        return PelvicTiltResult(), state

    lh, rh, ls, rs = (keypoint_to_point3d(keypoints[idx]) for idx in PELVIC_LANDMARKS)
    hip_center = midpoint(lh, rh)
    shoulder_center = midpoint(ls, rs)
    anterior = calculate_anterior_tilt(hip_center, shoulder_center)
    lateral = calculate_lateral_tilt(lh, rh)

    smoother_set = state.smoother_set
    if smoother_set is not None:
        smoother_set = smoother_set.copy()
        smoothed = smoother_set.smoothed_values({"anterior_tilt": anterior, "lateral_tilt": lateral})
        anterior, lateral = smoothed["anterior_tilt"], smoothed["lateral_tilt"]

    if state.depth_config is not None and state.depth_config.enabled:
        perspective = calculate_perspective_factor(keypoints, state.depth_config)
        if perspective.confidence.is_reliable:
            anterior = _signed_correction(anterior, perspective.factor)

    settings = _settings()
    size = settings["buffer_size"]
    anterior_history = (state.anterior_history + (anterior,))[-size:]
    lateral_history = (state.lateral_history + (lateral,))[-size:]
    stability = calculate_stability_score(anterior_history, lateral_history, settings["min_stability_samples"])

    if anterior > ANTERIOR_DIRECTION_THRESHOLD:
        tilt_direction = "anterior"
    elif anterior < -ANTERIOR_DIRECTION_THRESHOLD:
        tilt_direction = "posterior"
    else:
        tilt_direction = "neutral"
    if lateral > LATERAL_DIRECTION_THRESHOLD:
        lateral_direction = "right_high"
    elif lateral < -LATERAL_DIRECTION_THRESHOLD:
        lateral_direction = "left_high"
    else:
        lateral_direction = "neutral"

    result = PelvicTiltResult(
        anterior_tilt_angle=round1(anterior),
        lateral_tilt_angle=round1(lateral),
        stability_score=round_half_up(stability),
        tilt_direction=tilt_direction,
        lateral_direction=lateral_direction,
        is_valid=True,
    )
    new_state = replace(state, anterior_history=anterior_history, lateral_history=lateral_history,
                        frame_count=state.frame_count + 1, smoother_set=smoother_set)
    return result, new_state


# --- Feedback ---
def _anterior_feedback(result: PelvicTiltResult, threshold: AngleThreshold) -> FeedbackItem:
    value = abs(result.anterior_tilt_angle)
    anterior = result.tilt_direction != "posterior"
    if value <= threshold.ideal.max:
        return make_feedback(FeedbackLevel.GOOD, "Pelvis position is good", value, threshold)
    if value <= threshold.acceptable.max:
        message = ("Pelvis is tilting forward slightly. Brace your core" if anterior
                   else "Pelvis is tucking under slightly. Keep a natural arch")
        level = FeedbackLevel.WARNING
    else:
        message = ("Excessive anterior pelvic tilt. Brace your abs and squeeze your glutes" if anterior
                   else "Excessive posterior pelvic tilt. Keep the natural curve of your lower back")
        level = FeedbackLevel.ERROR
    return make_feedback(level, message, value, threshold, Correction.BACKWARD if anterior else Correction.FORWARD)


def _lateral_feedback(result: PelvicTiltResult, threshold: AngleThreshold) -> FeedbackItem:
    value = abs(result.lateral_tilt_angle)
    side = "Right" if result.lateral_tilt_angle > 0 else "Left"
    if value <= threshold.ideal.max:
        return make_feedback(FeedbackLevel.GOOD, "Hips are level", value, threshold)
    if value <= threshold.acceptable.max:
        return make_feedback(FeedbackLevel.WARNING, f"{side} hip is slightly high. Level your hips",
                             value, threshold, Correction.LOWER)
    return make_feedback(FeedbackLevel.ERROR, f"{side} hip is much higher. Check your left/right weight distribution",
                         value, threshold, Correction.LOWER)


def _stability_feedback(result: PelvicTiltResult) -> FeedbackItem:
    stability = _settings()["stability"]
    threshold = AngleThreshold(Range(stability["high"], 100), Range(stability["medium"], 100))
    score = result.stability_score
    if score >= stability["high"]:
        level, message = FeedbackLevel.GOOD, "Pelvis is stable"
    elif score >= stability["medium"]:
        level, message = FeedbackLevel.WARNING, "Keep your pelvis steady. Some wobble detected"
    else:
        level, message = FeedbackLevel.ERROR, "Pelvis is unstable. Brace your core and move slowly"
    return make_feedback(level, message, score, threshold, score=score)


def create_pelvic_tilt_feedback(result: PelvicTiltResult) -> Optional[Dict[str, FeedbackItem]]:
    """Feedback for anterior tilt, lateral tilt and stability; None when invalid."""
    if not result.is_valid:
        return None
    settings = _settings()
    return {
        "anterior_tilt": _anterior_feedback(result, threshold_from(settings, "anterior_tilt")),
        "lateral_tilt": _lateral_feedback(result, threshold_from(settings, "lateral_tilt")),
        "stability": _stability_feedback(result),
    }


def pelvic_tilt_score(result: PelvicTiltResult) -> Optional[int]:
    """0.4 anterior + 0.3 lateral + 0.3 stability, or None when invalid."""
    if not result.is_valid:
        return None
    settings = _settings()
    weights = settings["score_weights"]
    anterior = score_value(abs(result.anterior_tilt_angle), threshold_from(settings, "anterior_tilt"))
    lateral = score_value(abs(result.lateral_tilt_angle), threshold_from(settings, "lateral_tilt"))
    return round_half_up(anterior * weights["anterior"] + lateral * weights["lateral"]
                         + result.stability_score * weights["stability"])
