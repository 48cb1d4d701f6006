"""
deadlift_analyzer.py - Conventional deadlift form analysis.

Besides the joint angles, the analyzer checks spinal curvature in two
segments (the lumbar limits tighten during the lift) and whether the hips,
not the knees, drive the movement.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..biomechanics.capabilities import (NeckAlignmentCapability, PelvicTiltCapability, TorsoRotationCapability,
                                         WeightShiftCapability)
from ..pose_detection.landmarks import Keypoint, LandmarkIndex as L, Point3D
from .base_analyzer import AnalyzerState, BaseExerciseAnalyzer, ExerciseKind, ItemScores, register_analyzer
from .phase_detector import DEADLIFT_CYCLE, DeadliftPhase
from .pose_utils import angle_with_vertical, calculate_angle, distance_2d, estimate_mid_spine, midpoint
from .scoring import AngleThreshold, Correction, FeedbackItem, FeedbackLevel, Range, make_feedback

LIFT_PHASE_MULTIPLIER = 0.8
LUMBAR_SHARE = 0.6
DELTA_HISTORY = 10
# Hip-dominant ratio when the knees barely move.
NEUTRAL_RATIO = 2.0
HIP_ONLY_RATIO = 5.0
KNEE_STILL_DELTA = 0.5
HIP_MOVING_DELTA = 1.0
SQUAT_STYLE_KNEE_RATIO = 0.8
SQUAT_STYLE_KNEE_ANGLE = 140.0
INITIATION_FRAMES = 3
INITIATION_DELTA = 5.0


@dataclass(frozen=True)
class HingeTracking:
    previous_hip: Optional[float] = None
    previous_knee: Optional[float] = None
    hip_deltas: Tuple[float, ...] = ()
    knee_deltas: Tuple[float, ...] = ()


@dataclass
class HipHingeQuality:
    ratio: float
    squat_style: bool
    initiation: str


def hip_dominant_ratio(hip_delta: float, knee_delta: float, has_previous: bool) -> float:
    if not has_previous:
        return NEUTRAL_RATIO
    if knee_delta < KNEE_STILL_DELTA:
        return HIP_ONLY_RATIO if hip_delta > HIP_MOVING_DELTA else NEUTRAL_RATIO
    return hip_delta / knee_delta


def is_squat_style(hip_delta: float, knee_delta: float, knee_angle: float) -> bool:
    """Knees bent well below 140 degrees and moving at least as much as the hips."""
    bent = knee_angle < SQUAT_STYLE_KNEE_ANGLE
    if hip_delta < 1:
        return knee_delta > 3 and bent
    return knee_delta / hip_delta > SQUAT_STYLE_KNEE_RATIO and bent


def initiation_timing(hip_deltas: Sequence[float], knee_deltas: Sequence[float], phase: Enum) -> str:
    """Which joint moved first over the last few frames of the lift."""
    if phase != DeadliftPhase.LIFT or len(hip_deltas) < INITIATION_FRAMES:
        return "unknown"
    recent_hip = list(hip_deltas)[-INITIATION_FRAMES:]
    recent_knee = list(knee_deltas)[-INITIATION_FRAMES:]

    def first_move(deltas):
        return next((i for i, delta in enumerate(deltas) if delta > INITIATION_DELTA), None)

    hip_frame, knee_frame = first_move(recent_hip), first_move(recent_knee)
    if hip_frame is None and knee_frame is None:
        return "unknown"
    if hip_frame is None:
        return "knee_first"
    if knee_frame is None:
        return "hip_first"
    if abs(hip_frame - knee_frame) <= 1:
        return "simultaneous"
    return "hip_first" if hip_frame < knee_frame else "knee_first"


def track_hinge(tracking: HingeTracking, hip: float, knee: float,
                phase: Enum) -> Tuple[HipHingeQuality, HingeTracking]:
    has_previous = tracking.previous_hip is not None and tracking.previous_knee is not None
    hip_delta = abs(hip - tracking.previous_hip) if has_previous else 0.0
    knee_delta = abs(knee - tracking.previous_knee) if has_previous else 0.0
    hip_deltas = (tracking.hip_deltas + (hip_delta,))[-DELTA_HISTORY:]
    knee_deltas = (tracking.knee_deltas + (knee_delta,))[-DELTA_HISTORY:]
    quality = HipHingeQuality(
        ratio=round(hip_dominant_ratio(hip_delta, knee_delta, has_previous), 2),
        squat_style=is_squat_style(hip_delta, knee_delta, knee),
        initiation=initiation_timing(hip_deltas, knee_deltas, phase),
    )
    return quality, HingeTracking(hip, knee, hip_deltas, knee_deltas)


def tighten_upper_bound(threshold: AngleThreshold, factor: float) -> AngleThreshold:
    """Lower both maxima by ``factor``, keeping the minima."""
    if factor == 1.0:
        return threshold
    ideal_max = threshold.ideal.max * factor
    acceptable_max = max(threshold.acceptable.max * factor, ideal_max)
    return AngleThreshold(Range(threshold.ideal.min, ideal_max), Range(threshold.acceptable.min, acceptable_max))


@register_analyzer(ExerciseKind.DEADLIFT)
class DeadliftAnalyzer(BaseExerciseAnalyzer):
    cycle = DEADLIFT_CYCLE
    # bar on the floor, hips bent
    initial_phase = DeadliftPhase.SETUP
    initial_angle = 90.0
    depth_corrected_angles = {
        "left_hip_hinge_angle": "hip",
        "right_hip_hinge_angle": "hip",
        "left_knee_angle": "knee",
        "right_knee_angle": "knee",
        "spine_angle": "torso",
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
            L.LEFT_WRIST, L.RIGHT_WRIST,
        ]

    def initial_extras(self) -> Dict[str, Any]:
        return {"hinge_tracking": HingeTracking()}

    def compute_angles(self, points: Dict[int, Point3D], keypoints: Sequence[Keypoint]) -> Dict[str, Any]:
        p = points
        hip_center = midpoint(p[L.LEFT_HIP], p[L.RIGHT_HIP])
        shoulder_center = midpoint(p[L.LEFT_SHOULDER], p[L.RIGHT_SHOULDER])
        mid_spine = estimate_mid_spine(shoulder_center, hip_center)

        torso_length = distance_2d(hip_center, shoulder_center)
        wrist_center = midpoint(p[L.LEFT_WRIST], p[L.RIGHT_WRIST])
        body_midline = midpoint(hip_center, shoulder_center)
        bar_path = abs(wrist_center.x - body_midline.x) / torso_length * 100 if torso_length > 0 else 0.0

        return {
            "left_hip_hinge_angle": calculate_angle(p[L.LEFT_SHOULDER], p[L.LEFT_HIP], p[L.LEFT_KNEE]),
            "right_hip_hinge_angle": calculate_angle(p[L.RIGHT_SHOULDER], p[L.RIGHT_HIP], p[L.RIGHT_KNEE]),
            "left_knee_angle": calculate_angle(p[L.LEFT_HIP], p[L.LEFT_KNEE], p[L.LEFT_ANKLE]),
            "right_knee_angle": calculate_angle(p[L.RIGHT_HIP], p[L.RIGHT_KNEE], p[L.RIGHT_ANKLE]),
            "spine_angle": angle_with_vertical(hip_center, shoulder_center),
            "upper_spine_angle": angle_with_vertical(mid_spine, shoulder_center),
            "lower_spine_angle": angle_with_vertical(hip_center, mid_spine),
            "bar_path_deviation": bar_path,
        }

    def primary_angle(self, angles: Mapping[str, Any]) -> float:
        return (angles["left_hip_hinge_angle"] + angles["right_hip_hinge_angle"]) / 2

    def frame_hints(self, angles: Mapping[str, Any], phase: Enum) -> Dict[str, Any]:
        return {"lift_phase": phase == DeadliftPhase.LIFT}

    def spine_curvature(self, items: ItemScores, upper: float, lower: float, phase: Enum) -> FeedbackItem:
        """Lumbar and thoracic segments; the summary carries the worse segment and the 60/40 blend score."""
        factor = LIFT_PHASE_MULTIPLIER if phase == DeadliftPhase.LIFT else 1.0
        lumbar = self.config.evaluate("lumbar_curvature", lower,
                                      threshold=tighten_upper_bound(self.config.threshold("lumbar_curvature"), factor))
        thoracic = self.config.evaluate("thoracic_curvature", upper,
                                        threshold=tighten_upper_bound(self.config.threshold("thoracic_curvature"),
                                                                      factor))
        items.feedbacks["lumbar_curvature"] = lumbar
        items.feedbacks["thoracic_curvature"] = thoracic
        items.details["neutral_spine"] = lumbar.level == FeedbackLevel.GOOD and thoracic.level == FeedbackLevel.GOOD
        worst = thoracic if thoracic.score < lumbar.score else lumbar
        blended = lumbar.score * LUMBAR_SHARE + thoracic.score * (1 - LUMBAR_SHARE)
        return items.add("spine_curvature", worst, blended)

    def hinge_quality_feedback(self, quality: HipHingeQuality, phase: Enum) -> FeedbackItem:
        threshold = self.config.threshold("hip_hinge_quality")
        if quality.squat_style:
            item = make_feedback(FeedbackLevel.ERROR, self.config.message("hip_hinge_quality", "squat_style"),
                                 quality.ratio, threshold, Correction.BACKWARD)
        else:
            item = self.config.evaluate("hip_hinge_quality", quality.ratio, precision=2)
        if phase == DeadliftPhase.LIFT and quality.initiation == "knee_first":
            level = FeedbackLevel.WARNING if item.level == FeedbackLevel.GOOD else item.level
            item = make_feedback(level, self.config.message("hip_hinge_quality", "knee_first"),
                                 quality.ratio, threshold, item.correction, score=item.score)
        item.value = quality.ratio
        return item

    def score_items(self, angles: Dict[str, Any], phase: Enum, state: AnalyzerState) -> ItemScores:
        items = ItemScores()
        config = self.config
        hip = self.primary_angle(angles)
        knee = (angles["left_knee_angle"] + angles["right_knee_angle"]) / 2
        angles["hip_hinge_angle"] = hip
        angles["knee_angle"] = knee

        items.add("hip_hinge", config.evaluate("hip_hinge", hip, phase))
        items.add("knee_angle", config.evaluate("knee_angle", knee, phase))
        items.add("spine_alignment", config.evaluate("spine_alignment", angles["spine_angle"], phase))
        items.add("bar_path", config.evaluate("bar_path", angles["bar_path_deviation"], phase))
        self.spine_curvature(items, angles["upper_spine_angle"], angles["lower_spine_angle"], phase)

        quality, tracking = track_hinge(state.extras["hinge_tracking"], hip, knee, phase)
        items.add("hip_hinge_quality", self.hinge_quality_feedback(quality, phase))
        items.extras["hinge_tracking"] = tracking
        items.raw_values["hip_dominant_ratio"] = quality.ratio
        items.details["hip_hinge_quality"] = {"ratio": quality.ratio, "squat_style": quality.squat_style,
                                              "initiation": quality.initiation}

        self.add_symmetry(items, {
            "knee_symmetry": ("left_knee_angle", "right_knee_angle"),
            "hip_hinge_symmetry": ("left_hip_hinge_angle", "right_hip_hinge_angle"),
        }, angles)
        return items
