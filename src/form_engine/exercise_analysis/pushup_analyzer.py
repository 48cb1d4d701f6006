"""
pushup_analyzer.py - Push-up form analysis.
"""
import math
from enum import Enum
from typing import Any, Dict, List, Mapping, Sequence

from ..biomechanics.capabilities import NeckAlignmentCapability
from ..biomechanics.elbow_valgus import analyze_elbow_valgus, create_elbow_valgus_feedback
from ..pose_detection.landmarks import Keypoint, LandmarkIndex as L, Point3D
from .base_analyzer import AnalyzerState, BaseExerciseAnalyzer, ExerciseKind, ItemScores, register_analyzer
from .phase_detector import PUSHUP_CYCLE
from .pose_utils import calculate_angle, clamp, distance_2d, midpoint, point_to_line_distance, project_to_xy, symmetry_score


def hip_offset_angle(shoulder_center: Point3D, hip_center: Point3D, ankle_center: Point3D) -> float:
    """
    Signed angle of the hips off the shoulder-ankle line, seen from the side.

    The perpendicular offset is measured against half the body length;
    positive means the hips sag below the line, negative means they pike.
    """
    s, h, a = project_to_xy(shoulder_center), project_to_xy(hip_center), project_to_xy(ankle_center)
    half_length = distance_2d(s, a) / 2
    if half_length <= 0:
        return 0.0
    offset = point_to_line_distance(h, s, a)
    angle = math.degrees(math.atan2(offset, half_length))
    return angle if h.y > (s.y + a.y) / 2 else -angle


def pushup_depth_percent(elbow_angle: float) -> float:
    """Straight arms (180) are 0%, a 90 degree elbow is full depth."""
    return clamp((180.0 - elbow_angle) / 90.0 * 100.0, 0.0, 100.0)


@register_analyzer(ExerciseKind.PUSHUP)
class PushupAnalyzer(BaseExerciseAnalyzer):
    cycle = PUSHUP_CYCLE

    def build_capabilities(self):
        return [NeckAlignmentCapability()]

    def get_required_landmarks(self) -> List[int]:
        return [
            L.LEFT_SHOULDER, L.RIGHT_SHOULDER,
            L.LEFT_ELBOW, L.RIGHT_ELBOW,
            L.LEFT_WRIST, L.RIGHT_WRIST,
            L.LEFT_HIP, L.RIGHT_HIP,
            L.LEFT_ANKLE, L.RIGHT_ANKLE,
        ]

    def compute_angles(self, points: Dict[int, Point3D], keypoints: Sequence[Keypoint]) -> Dict[str, Any]:
        p = points
        shoulder_center = midpoint(p[L.LEFT_SHOULDER], p[L.RIGHT_SHOULDER])
        hip_center = midpoint(p[L.LEFT_HIP], p[L.RIGHT_HIP])
        ankle_center = midpoint(p[L.LEFT_ANKLE], p[L.RIGHT_ANKLE])
        valgus = analyze_elbow_valgus(p[L.LEFT_SHOULDER], p[L.LEFT_ELBOW], p[L.LEFT_WRIST],
                                      p[L.RIGHT_SHOULDER], p[L.RIGHT_ELBOW], p[L.RIGHT_WRIST])
        return {
            "left_elbow_angle": calculate_angle(p[L.LEFT_SHOULDER], p[L.LEFT_ELBOW], p[L.LEFT_WRIST]),
            "right_elbow_angle": calculate_angle(p[L.RIGHT_SHOULDER], p[L.RIGHT_ELBOW], p[L.RIGHT_WRIST]),
            "body_alignment_angle": abs(180.0 - calculate_angle(shoulder_center, hip_center, ankle_center)),
            "hip_sag_angle": abs(hip_offset_angle(shoulder_center, hip_center, ankle_center)),
            "left_elbow_valgus": valgus.left_angle,
            "right_elbow_valgus": valgus.right_angle,
        }

    def primary_angle(self, angles: Mapping[str, Any]) -> float:
        return (angles["left_elbow_angle"] + angles["right_elbow_angle"]) / 2

    def score_items(self, angles: Dict[str, Any], phase: Enum, state: AnalyzerState) -> ItemScores:
        items = ItemScores()
        config = self.config
        elbow = self.primary_angle(angles)
        angles["elbow_angle"] = elbow
        angles["depth_percent"] = pushup_depth_percent(elbow)

        items.add("elbow_angle", config.evaluate("elbow_angle", elbow, phase))
        items.add("body_alignment", config.evaluate("body_alignment", angles["body_alignment_angle"]))
        items.add("hip_position", config.evaluate("hip_position", angles["hip_sag_angle"]))
        items.add("depth", config.evaluate("depth", angles["depth_percent"]))
        items.add("elbow_valgus", create_elbow_valgus_feedback(angles["left_elbow_valgus"],
                                                               angles["right_elbow_valgus"], config))

        arm_symmetry = symmetry_score(angles["left_elbow_angle"], angles["right_elbow_angle"])
        items.add("arm_symmetry", config.evaluate("arm_symmetry", arm_symmetry))
        items.raw_values["arm_symmetry_score"] = arm_symmetry
        return items
