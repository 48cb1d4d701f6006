"""
squat_analyzer.py - Squat form analysis.

Knee, hip and ankle angles per side, torso inclination, knee tracking (3D
deviation from the hip-ankle line when depth is available, 2D knee/hip width
ratio otherwise), heel rise and left/right symmetry.
"""
from dataclasses import replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Sequence

from ..biomechanics.capabilities import (NeckAlignmentCapability, PelvicTiltCapability, TorsoConsistencyCapability,
                                         TorsoRotationCapability, WeightShiftCapability)
from ..biomechanics.knee_alignment import (KneeAlignmentState, analyze_knee_alignment_3d, calculate_valgus_percent,
                                           create_knee_valgus_feedback, update_knee_alignment_state, use_3d_alignment)
from ..pose_detection.landmarks import Keypoint, LandmarkIndex as L, Point3D
from .base_analyzer import AnalyzerState, BaseExerciseAnalyzer, ExerciseKind, ItemScores, register_analyzer
from .phase_detector import SQUAT_CYCLE, SquatPhase
from .pose_utils import angle_with_vertical, calculate_angle, clamp_angle, midpoint, round1
from .scoring import Correction, FeedbackLevel, make_feedback

# Heel counts as lifted when the toe sits lower than the heel by this share of the heel-ankle height.
HEEL_RISE_RATIO = 0.02


def ankle_dorsiflexion(knee: Point3D, ankle: Point3D, foot_index: Point3D) -> float:
    """Forward shin lean over the foot: 90 minus the knee-ankle-toe angle."""
    return clamp_angle(90.0 - calculate_angle(knee, ankle, foot_index))


def heel_lifted(heel: Point3D, ankle: Point3D, foot_index: Point3D) -> bool:
    return (foot_index.y - heel.y) > abs(ankle.y - heel.y) * HEEL_RISE_RATIO


@register_analyzer(ExerciseKind.SQUAT)
class SquatAnalyzer(BaseExerciseAnalyzer):
    """Analyzer for bodyweight and barbell squats."""
    cycle = SQUAT_CYCLE
    depth_corrected_angles = {
        "left_knee_angle": "knee",
        "right_knee_angle": "knee",
        "left_hip_angle": "hip",
        "right_hip_angle": "hip",
        "torso_angle": "torso",
        "left_ankle_angle": "ankle",
        "right_ankle_angle": "ankle",
    }

    def build_capabilities(self):
        return [NeckAlignmentCapability(), TorsoRotationCapability(), PelvicTiltCapability(),
                TorsoConsistencyCapability("knee_angle"), WeightShiftCapability()]

    def get_required_landmarks(self) -> List[int]:
        return [
            L.LEFT_SHOULDER, L.RIGHT_SHOULDER,
            L.LEFT_HIP, L.RIGHT_HIP,
            L.LEFT_KNEE, L.RIGHT_KNEE,
            L.LEFT_ANKLE, L.RIGHT_ANKLE,
            L.LEFT_HEEL, L.RIGHT_HEEL,
            L.LEFT_FOOT_INDEX, L.RIGHT_FOOT_INDEX,
        ]

    def initial_extras(self) -> Dict[str, Any]:
        return {"knee_alignment": KneeAlignmentState()}

    def compute_angles(self, points: Dict[int, Point3D], keypoints: Sequence[Keypoint]) -> Dict[str, Any]:
        p = points
        alignment = analyze_knee_alignment_3d(p[L.LEFT_HIP], p[L.LEFT_KNEE], p[L.LEFT_ANKLE],
                                              p[L.RIGHT_HIP], p[L.RIGHT_KNEE], p[L.RIGHT_ANKLE])
        leg_points = [p[idx] for idx in (L.LEFT_HIP, L.RIGHT_HIP, L.LEFT_KNEE, L.RIGHT_KNEE,
                                          L.LEFT_ANKLE, L.RIGHT_ANKLE)]
        return {
            "left_knee_angle": calculate_angle(p[L.LEFT_HIP], p[L.LEFT_KNEE], p[L.LEFT_ANKLE]),
            "right_knee_angle": calculate_angle(p[L.RIGHT_HIP], p[L.RIGHT_KNEE], p[L.RIGHT_ANKLE]),
            "left_hip_angle": calculate_angle(p[L.LEFT_SHOULDER], p[L.LEFT_HIP], p[L.LEFT_KNEE]),
            "right_hip_angle": calculate_angle(p[L.RIGHT_SHOULDER], p[L.RIGHT_HIP], p[L.RIGHT_KNEE]),
            "torso_angle": angle_with_vertical(midpoint(p[L.LEFT_HIP], p[L.RIGHT_HIP]),
                                               midpoint(p[L.LEFT_SHOULDER], p[L.RIGHT_SHOULDER])),
            "left_ankle_angle": ankle_dorsiflexion(p[L.LEFT_KNEE], p[L.LEFT_ANKLE], p[L.LEFT_FOOT_INDEX]),
            "right_ankle_angle": ankle_dorsiflexion(p[L.RIGHT_KNEE], p[L.RIGHT_ANKLE], p[L.RIGHT_FOOT_INDEX]),
            "valgus_percent": calculate_valgus_percent(p[L.LEFT_HIP], p[L.RIGHT_HIP],
                                                       p[L.LEFT_KNEE], p[L.RIGHT_KNEE]),
            "heel_rise": (heel_lifted(p[L.LEFT_HEEL], p[L.LEFT_ANKLE], p[L.LEFT_FOOT_INDEX])
                          or heel_lifted(p[L.RIGHT_HEEL], p[L.RIGHT_ANKLE], p[L.RIGHT_FOOT_INDEX])),
            "knee_alignment_result": alignment,
            "use_3d_alignment": use_3d_alignment(alignment, *leg_points),
        }

    def primary_angle(self, angles: Mapping[str, Any]) -> float:
        return (angles["left_knee_angle"] + angles["right_knee_angle"]) / 2

    def score_items(self, angles: Dict[str, Any], phase: Enum, state: AnalyzerState) -> ItemScores:
        items = ItemScores()
        config = self.config

        knee = self.primary_angle(angles)
        hip = (angles["left_hip_angle"] + angles["right_hip_angle"]) / 2
        ankle = (angles["left_ankle_angle"] + angles["right_ankle_angle"]) / 2
        angles["knee_angle"] = knee
        angles["hip_angle"] = hip
        angles["ankle_angle"] = ankle

        items.add("knee_angle", config.evaluate("knee_angle", knee, phase))
        items.add("hip_angle", config.evaluate("hip_angle", hip, phase))
        items.add("torso_inclination", config.evaluate("torso_inclination", angles["torso_angle"], phase))

        # Knee tracking: 3D when valid and the frame has depth, 2D otherwise.
        knee_state: KneeAlignmentState = state.extras["knee_alignment"]
        alignment = angles.pop("knee_alignment_result")
        if knee_state.standing_baseline is not None and alignment.is_valid:
            baseline = sum(knee_state.standing_baseline) / 2
            current = (alignment.left_deviation_degrees + alignment.right_deviation_degrees) / 2
            alignment = replace(alignment, dynamic_valgus_change=round1(current - baseline))
        use_3d = angles.pop("use_3d_alignment")
        items.add("knee_valgus", create_knee_valgus_feedback(angles["valgus_percent"], alignment, use_3d, config))
        if use_3d:
            items.raw_values.update({
                "left_knee_deviation": alignment.left_deviation_degrees,
                "right_knee_deviation": alignment.right_deviation_degrees,
                "dynamic_valgus_change": alignment.dynamic_valgus_change,
            })
        new_knee_state = update_knee_alignment_state(knee_state, alignment if use_3d else None,
                                                     phase == SquatPhase.STANDING)
        items.extras["knee_alignment"] = new_knee_state
        items.raw_values["knee_deviation_peak"] = new_knee_state.current_rep_peak

        heel_rise = angles.pop("heel_rise")
        if heel_rise:
            items.add("ankle_angle", make_feedback(FeedbackLevel.WARNING,
                                                   config.message("ankle_angle", "heel_rise"),
                                                   ankle, config.threshold("ankle_angle"), Correction.DOWN))
        else:
            items.add("ankle_angle", config.evaluate("ankle_angle", ankle, phase))
        items.details["heel_rise"] = heel_rise

        self.add_symmetry(items, {
            "knee_symmetry": ("left_knee_angle", "right_knee_angle"),
            "hip_symmetry": ("left_hip_angle", "right_hip_angle"),
            "ankle_symmetry": ("left_ankle_angle", "right_ankle_angle"),
        }, angles)
        return items
