"""
depth_normalization.py - Perspective correction from landmark depth.

A user standing closer to the camera than the calibrated baseline distorts the
apparent joint angles. When the z signal of the key joints is trustworthy we
derive a correction factor and nudge each angle by an angle-type sensitivity.
"""
import logging
import math
import time
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional, Sequence, Union

import numpy as np

from ..pose_detection.landmarks import Keypoint, LandmarkIndex

logger = logging.getLogger(__name__)

ANGLE_SENSITIVITY_WEIGHTS = {
    "knee": 0.85,
    "hip": 0.80,
    "torso": 0.60,
    "ankle": 0.70,
}

DEPTH_KEY_JOINTS = [
    LandmarkIndex.LEFT_HIP,
    LandmarkIndex.RIGHT_HIP,
    LandmarkIndex.LEFT_KNEE,
    LandmarkIndex.RIGHT_KNEE,
    LandmarkIndex.LEFT_SHOULDER,
    LandmarkIndex.RIGHT_SHOULDER,
]

MIN_DEPTH_JOINTS = 3
# z variance at which depth is considered useless.
MAX_DEPTH_VARIANCE = 0.05
TPOSE_ARM_HORIZONTAL_THRESHOLD = 20.0
TPOSE_BODY_VERTICAL_THRESHOLD = 15.0


@dataclass
class DepthNormalizationConfig:
    enabled: bool = True
    baseline_depth: float = 0.5
    min_confidence: float = 0.5
    max_correction_factor: float = 1.2
    min_correction_factor: float = 0.8

    @classmethod
    def coerce(cls, config: Union["DepthNormalizationConfig", Mapping[str, Any], None]) -> Optional["DepthNormalizationConfig"]:
        if config is None:
            return None
        if isinstance(config, DepthNormalizationConfig):
            return replace(config)
        fields = cls.__dataclass_fields__
        return cls(**{k: v for k, v in config.items() if k in fields})


@dataclass
class DepthConfidence:
    score: float
    is_reliable: bool
    variance: float
    average_keypoint_score: float

    @property
    def fallback_mode(self) -> str:
        return "3d" if self.is_reliable else "2d"


@dataclass
class PerspectiveResult:
    factor: float
    baseline_depth: float
    average_depth: float
    confidence: DepthConfidence


@dataclass
class CalibrationState:
    is_calibrated: bool = False
    baseline_depth: float = 0.5
    calibration_timestamp: Optional[float] = None
    t_pose_detected: bool = False


def _depth_samples(keypoints: Sequence[Keypoint]):
    z_values, scores = [], []
    for idx in DEPTH_KEY_JOINTS:
        if idx >= len(keypoints):
            continue
        kp = keypoints[idx]
        if kp is not None and kp.z is not None and math.isfinite(kp.z):
            z_values.append(kp.z)
            scores.append(kp.score if kp.score is not None else 0.0)
    return z_values, scores


def calculate_depth_confidence(keypoints: Sequence[Keypoint],
                               config: Optional[DepthNormalizationConfig] = None) -> DepthConfidence:
    """
    Confidence that the z signal can be used for correction.

    score = mean keypoint score * (1 - min(1, variance / 0.05)) over the key
    joints that carry a z value; fewer than three such joints is unreliable.
    """
    config = config or DepthNormalizationConfig()
    z_values, scores = _depth_samples(keypoints)
    if len(z_values) < MIN_DEPTH_JOINTS:
        return DepthConfidence(0.0, False, 1.0, 0.0)

    variance = float(np.var(z_values))
    normalized_variance = min(1.0, variance / MAX_DEPTH_VARIANCE)
    avg_score = float(np.mean(scores))
    score = avg_score * (1 - normalized_variance)
    return DepthConfidence(
        score=round(score, 2),
        is_reliable=score >= config.min_confidence,
        variance=round(variance, 4),
        average_keypoint_score=round(avg_score, 2),
    )


def calculate_perspective_factor(keypoints: Sequence[Keypoint],
                                 config: Optional[DepthNormalizationConfig] = None) -> PerspectiveResult:
    """Correction multiplier in [min_correction_factor, max_correction_factor]; 1.0 when unreliable."""
    config = config or DepthNormalizationConfig()
    confidence = calculate_depth_confidence(keypoints, config)
    if not confidence.is_reliable:
        return PerspectiveResult(1.0, config.baseline_depth, config.baseline_depth, confidence)

    z_values, _ = _depth_samples(keypoints)
    average_depth = float(np.mean(z_values))
    if average_depth <= 0 or config.baseline_depth <= 0:
        # Relative depth around the hips is often <= 0; no meaningful ratio.
        return PerspectiveResult(1.0, config.baseline_depth, round(average_depth, 3), confidence)

    raw_factor = config.baseline_depth / average_depth
    factor = max(config.min_correction_factor, min(config.max_correction_factor, raw_factor))
    return PerspectiveResult(round(factor, 3), config.baseline_depth, round(average_depth, 3), confidence)


def apply_perspective_correction(raw_angle: float, factor: float, angle_type: str) -> float:
    """
    Scale an angle by the perspective factor, weighted by angle-type sensitivity.

    Unknown angle types are returned unchanged. The result stays in [0, 180].
    """
    weight = ANGLE_SENSITIVITY_WEIGHTS.get(angle_type)
    if weight is None:
        return raw_angle
    corrected = raw_angle * (1 + (factor - 1.0) * weight)
    return round(max(0.0, min(180.0, corrected)), 1)


def detect_t_pose(keypoints: Sequence[Keypoint]) -> bool:
    """Arms horizontal (within 20 degrees) and body upright (within 15 degrees)."""
    required = [
        LandmarkIndex.LEFT_SHOULDER, LandmarkIndex.RIGHT_SHOULDER,
        LandmarkIndex.LEFT_ELBOW, LandmarkIndex.RIGHT_ELBOW,
        LandmarkIndex.LEFT_WRIST, LandmarkIndex.RIGHT_WRIST,
        LandmarkIndex.LEFT_HIP, LandmarkIndex.RIGHT_HIP,
        LandmarkIndex.LEFT_ANKLE, LandmarkIndex.RIGHT_ANKLE,
    ]
    for idx in required:
        if idx >= len(keypoints):
            return False
        kp = keypoints[idx]
        if kp is None or (kp.score is not None and kp.score < 0.5):
            return False

    def arm_horizontal(shoulder: Keypoint, wrist: Keypoint) -> bool:
        angle = abs(math.degrees(math.atan2(wrist.y - shoulder.y, wrist.x - shoulder.x)))
        return angle < TPOSE_ARM_HORIZONTAL_THRESHOLD or abs(angle - 180) < TPOSE_ARM_HORIZONTAL_THRESHOLD

    ls, rs = keypoints[LandmarkIndex.LEFT_SHOULDER], keypoints[LandmarkIndex.RIGHT_SHOULDER]
    lw, rw = keypoints[LandmarkIndex.LEFT_WRIST], keypoints[LandmarkIndex.RIGHT_WRIST]
    la, ra = keypoints[LandmarkIndex.LEFT_ANKLE], keypoints[LandmarkIndex.RIGHT_ANKLE]

    shoulder_mid = ((ls.x + rs.x) / 2, (ls.y + rs.y) / 2)
    ankle_mid = ((la.x + ra.x) / 2, (la.y + ra.y) / 2)
    body_angle = abs(math.degrees(math.atan2(ankle_mid[0] - shoulder_mid[0], ankle_mid[1] - shoulder_mid[1])))

    return (arm_horizontal(ls, lw) and arm_horizontal(rs, rw)
            and body_angle < TPOSE_BODY_VERTICAL_THRESHOLD)


def perform_calibration(keypoints: Sequence[Keypoint], current: CalibrationState,
                        timestamp: Optional[float] = None) -> CalibrationState:
    """Capture the average key-joint depth as the new baseline."""
    t_pose = detect_t_pose(keypoints)
    z_values, _ = _depth_samples(keypoints)
    if len(z_values) < MIN_DEPTH_JOINTS:
        logger.warning("Calibration skipped: not enough joints with depth")
        return replace(current, t_pose_detected=t_pose)

    baseline = round(float(np.mean(z_values)), 3)
    logger.info(f"Depth calibration performed: baseline={baseline} t_pose={t_pose}")
    return CalibrationState(
        is_calibrated=True,
        baseline_depth=baseline,
        calibration_timestamp=time.time() if timestamp is None else timestamp,
        t_pose_detected=t_pose,
    )


def create_config_from_calibration(calibration: CalibrationState, **overrides) -> DepthNormalizationConfig:
    baseline = calibration.baseline_depth if calibration.is_calibrated else DepthNormalizationConfig.baseline_depth
    config = DepthNormalizationConfig(baseline_depth=baseline)
    return replace(config, **overrides)
