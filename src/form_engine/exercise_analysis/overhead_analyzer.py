"""
overhead_analyzer.py - Overhead press form analysis.

Elevation is the upper arm's angle with the vertical: about 90 with the bar
at the shoulders and near 0 at lockout, so the phase machine's "top"
position is the start of the press and its "bottom" is the lockout.
"""
from enum import Enum
from typing import Any, Dict, List, Mapping, Sequence

from ..pose_detection.landmarks import Keypoint, LandmarkIndex as L, Point3D
from .base_analyzer import AnalyzerState, BaseExerciseAnalyzer, ExerciseKind, ItemScores, register_analyzer
from .phase_detector import OVERHEAD_CYCLE, OverheadPhase
from .pose_utils import angle_with_vertical, calculate_angle


@register_analyzer(ExerciseKind.OVERHEAD)
class OverheadAnalyzer(BaseExerciseAnalyzer):
    cycle = OVERHEAD_CYCLE
    initial_angle = 90.0

    def get_required_landmarks(self) -> List[int]:
        return [
            L.LEFT_SHOULDER, L.RIGHT_SHOULDER,
            L.LEFT_ELBOW, L.RIGHT_ELBOW,
            L.LEFT_WRIST, L.RIGHT_WRIST,
            L.LEFT_HIP, L.RIGHT_HIP,
            L.LEFT_INDEX, L.RIGHT_INDEX,
        ]

    def compute_angles(self, points: Dict[int, Point3D], keypoints: Sequence[Keypoint]) -> Dict[str, Any]:
        p = points
        return {
            "left_shoulder_angle": calculate_angle(p[L.LEFT_ELBOW], p[L.LEFT_SHOULDER], p[L.LEFT_HIP]),
            "right_shoulder_angle": calculate_angle(p[L.RIGHT_ELBOW], p[L.RIGHT_SHOULDER], p[L.RIGHT_HIP]),
            "left_wrist_angle": calculate_angle(p[L.LEFT_ELBOW], p[L.LEFT_WRIST], p[L.LEFT_INDEX]),
            "right_wrist_angle": calculate_angle(p[L.RIGHT_ELBOW], p[L.RIGHT_WRIST], p[L.RIGHT_INDEX]),
            "left_elevation": angle_with_vertical(p[L.LEFT_SHOULDER], p[L.LEFT_ELBOW]),
            "right_elevation": angle_with_vertical(p[L.RIGHT_SHOULDER], p[L.RIGHT_ELBOW]),
        }

    def primary_angle(self, angles: Mapping[str, Any]) -> float:
        return (angles["left_elevation"] + angles["right_elevation"]) / 2

    def score_items(self, angles: Dict[str, Any], phase: Enum, state: AnalyzerState) -> ItemScores:
        items = ItemScores()
        config = self.config
        shoulder = (angles["left_shoulder_angle"] + angles["right_shoulder_angle"]) / 2
        wrist = (angles["left_wrist_angle"] + angles["right_wrist_angle"]) / 2
        elevation = self.primary_angle(angles)
        angles["shoulder_angle"] = shoulder
        angles["wrist_angle"] = wrist
        angles["elevation"] = elevation

        items.add("shoulder_angle", config.evaluate("shoulder_angle", shoulder))
        items.add("wrist_angle", config.evaluate("wrist_angle", wrist))
        # Lockout is judged against its own, much tighter table.
        table = "elevation_lockout" if phase == OverheadPhase.LOCKOUT else "elevation"
        items.add("elevation", config.evaluate(table, elevation, phase))
        items.details["lockout"] = phase == OverheadPhase.LOCKOUT

        self.add_symmetry(items, {"arm_symmetry": ("left_elevation", "right_elevation")}, angles)
        return items
