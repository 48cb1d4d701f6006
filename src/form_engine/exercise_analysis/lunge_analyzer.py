"""
lunge_analyzer.py - Lunge form analysis.

All leg metrics are measured on the front/back leg, so each frame first
decides which leg is forward.
"""
from enum import Enum
from typing import Any, Dict, List, Mapping, Sequence

from ..biomechanics.capabilities import (NeckAlignmentCapability, PelvicTiltCapability, TorsoRotationCapability,
                                         WeightShiftCapability)
from ..pose_detection.landmarks import Keypoint, LandmarkIndex as L, Point3D
from .base_analyzer import AnalyzerState, BaseExerciseAnalyzer, ExerciseKind, ItemScores, register_analyzer
from .phase_detector import LUNGE_CYCLE, LungePhase
from .pose_utils import angle_with_horizontal, angle_with_vertical, calculate_angle, distance_2d, midpoint
from .scoring import Correction, FeedbackLevel, make_feedback

FRONT_LEG_DEPTH_GAP = 0.05
FRONT_LEG_FOOT_GAP = 0.03
HIP_FLEXOR_PHASES = (LungePhase.BOTTOM, LungePhase.ASCENDING)

SIDES = {
    "left": (L.LEFT_SHOULDER, L.LEFT_HIP, L.LEFT_KNEE, L.LEFT_ANKLE, L.LEFT_FOOT_INDEX),
    "right": (L.RIGHT_SHOULDER, L.RIGHT_HIP, L.RIGHT_KNEE, L.RIGHT_ANKLE, L.RIGHT_FOOT_INDEX),
}


def detect_front_leg(points: Mapping[int, Point3D]) -> str:
    """
    "left", "right" or "unknown".

    Depth decides first (the knee closer to the camera, smaller z, is in
    front); without a usable depth gap the lower foot on screen is in front.
    """
    z_gap = points[L.LEFT_KNEE].z - points[L.RIGHT_KNEE].z
    if abs(z_gap) > FRONT_LEG_DEPTH_GAP:
        return "left" if z_gap < 0 else "right"
    y_gap = points[L.LEFT_FOOT_INDEX].y - points[L.RIGHT_FOOT_INDEX].y
    if abs(y_gap) > FRONT_LEG_FOOT_GAP:
        return "left" if y_gap > 0 else "right"
    return "unknown"


def knee_over_toe_ratio(knee: Point3D, ankle: Point3D, foot_index: Point3D, hip: Point3D) -> float:
    """
    Horizontal knee position relative to the toes, as a share of the hip-ankle length.

    Positive when the knee travels past the toes in the direction the foot points.
    """
    leg_length = distance_2d(hip, ankle)
    if leg_length <= 0:
        return 0.0
    facing = 1.0 if foot_index.x >= ankle.x else -1.0
    return (knee.x - foot_index.x) * facing / leg_length


@register_analyzer(ExerciseKind.LUNGE)
class LungeAnalyzer(BaseExerciseAnalyzer):
    cycle = LUNGE_CYCLE
    depth_corrected_angles = {
        "front_knee_angle": "knee",
        "back_knee_angle": "knee",
        "front_hip_angle": "hip",
        "torso_angle": "torso",
    }

    def build_capabilities(self):
        return [NeckAlignmentCapability(), TorsoRotationCapability(), PelvicTiltCapability(),
                WeightShiftCapability()]

    def get_required_landmarks(self) -> List[int]:
        return [
            L.LEFT_SHOULDER, L.RIGHT_SHOULDER,
            L.LEFT_HIP, L.RIGHT_HIP,
            L.LEFT_KNEE, L.RIGHT_KNEE,
            L.LEFT_ANKLE, L.RIGHT_ANKLE,
            L.LEFT_FOOT_INDEX, L.RIGHT_FOOT_INDEX,
        ]

    def compute_angles(self, points: Dict[int, Point3D], keypoints: Sequence[Keypoint]) -> Dict[str, Any]:
        front_leg = detect_front_leg(points)
        front_side = "left" if front_leg == "left" else "right"
        back_side = "right" if front_side == "left" else "left"
        f_shoulder, f_hip, f_knee, f_ankle, f_foot = (points[idx] for idx in SIDES[front_side])
        b_shoulder, b_hip, b_knee, b_ankle, _ = (points[idx] for idx in SIDES[back_side])

        shoulder_center = midpoint(points[L.LEFT_SHOULDER], points[L.RIGHT_SHOULDER])
        hip_center = midpoint(points[L.LEFT_HIP], points[L.RIGHT_HIP])
        return {
            "front_leg": front_leg,
            "front_knee_angle": calculate_angle(f_hip, f_knee, f_ankle),
            "back_knee_angle": calculate_angle(b_hip, b_knee, b_ankle),
            "front_hip_angle": calculate_angle(f_shoulder, f_hip, f_knee),
            "torso_angle": angle_with_vertical(hip_center, shoulder_center),
            "back_hip_extension_angle": calculate_angle(b_shoulder, b_hip, b_knee),
            "knee_over_toe": knee_over_toe_ratio(f_knee, f_ankle, f_foot, f_hip),
            "hip_line_tilt": abs(angle_with_horizontal(b_hip, f_hip)),
        }

    def primary_angle(self, angles: Mapping[str, Any]) -> float:
        return angles["front_knee_angle"]

    def frame_hints(self, angles: Mapping[str, Any], phase: Enum) -> Dict[str, Any]:
        front_leg = angles.get("front_leg")
        return {"front_leg": front_leg if front_leg in ("left", "right") else None}

    def hip_flexor_feedback(self, extension: float, hip_tilt: float):
        """Back hip extension; an excessive hip-line tilt turns a good reading into a warning."""
        item = self.config.evaluate("hip_flexor", extension)
        limit = self.config.extras.get("hip_flexor_pelvic_tilt_limit", 15)
        if hip_tilt > limit and item.level != FeedbackLevel.ERROR:
            return make_feedback(FeedbackLevel.WARNING, self.config.message("hip_flexor", "pelvic_tilt"),
                                 extension, self.config.threshold("hip_flexor"), Correction.FORWARD)
        return item

    def score_items(self, angles: Dict[str, Any], phase: Enum, state: AnalyzerState) -> ItemScores:
        items = ItemScores()
        config = self.config
        items.add("front_knee_angle", config.evaluate("front_knee_angle", angles["front_knee_angle"], phase))
        items.add("back_knee_angle", config.evaluate("back_knee_angle", angles["back_knee_angle"], phase))
        items.add("hip_angle", config.evaluate("hip_angle", angles["front_hip_angle"], phase))
        items.add("torso_inclination", config.evaluate("torso_inclination", angles["torso_angle"], phase))
        items.add("knee_over_toe", config.evaluate("knee_over_toe", angles["knee_over_toe"], precision=3))
        if phase in HIP_FLEXOR_PHASES:
            items.add("hip_flexor", self.hip_flexor_feedback(angles["back_hip_extension_angle"],
                                                             angles["hip_line_tilt"]))
        items.details["front_leg"] = angles["front_leg"]
        return items
