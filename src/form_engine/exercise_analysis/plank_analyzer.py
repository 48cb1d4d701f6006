"""
plank_analyzer.py - Plank hold analysis.

A plank has no reps. Frames scoring at or above the hold threshold count as
holding; the analyzer tracks the current hold, the accumulated hold time and
the average score of the current hold.
"""
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..pose_detection.landmarks import Keypoint, LandmarkIndex as L, Point3D
from .base_analyzer import AnalyzerState, BaseExerciseAnalyzer, ExerciseKind, ItemScores, register_analyzer
from .phase_detector import PhaseState, PhaseUpdate, PlankPhase
from .pose_utils import (angle_between_segments, calculate_angle, distance_2d, is_valid_keypoint, keypoint_to_point3d,
                         midpoint)

DEFAULT_HOLD_THRESHOLD = 60
# Frame clock used when frames carry no timestamp.
FRAME_INTERVAL_MS = 1000.0 / 30.0


@dataclass(frozen=True)
class PlankHoldState:
    hold_start_ms: Optional[float] = None
    current_hold_ms: float = 0.0
    total_hold_ms: float = 0.0
    is_holding: bool = False
    average_score: float = 0.0
    frame_count: int = 0


def update_hold(hold: PlankHoldState, score: int, now_ms: float, threshold: float) -> PlankHoldState:
    """Start, extend or end a hold depending on whether this frame is a valid plank."""
    valid = score >= threshold
    if valid and not hold.is_holding:
        return replace(hold, hold_start_ms=now_ms, current_hold_ms=0.0, is_holding=True,
                       average_score=float(score), frame_count=1)
    if valid:
        count = hold.frame_count + 1
        return replace(hold,
                       current_hold_ms=now_ms - hold.hold_start_ms,
                       average_score=(hold.average_score * hold.frame_count + score) / count,
                       frame_count=count)
    if hold.is_holding:
        return replace(hold, total_hold_ms=hold.total_hold_ms + hold.current_hold_ms,
                       hold_start_ms=None, current_hold_ms=0.0, is_holding=False)
    return hold


def hip_deviation_angle(shoulder_center: Point3D, hip_center: Point3D, ankle_center: Point3D) -> float:
    """Hip height against the shoulder-ankle midpoint; negative is sag, positive is pike."""
    length = distance_2d(shoulder_center, ankle_center)
    if length <= 0:
        return 0.0
    deviation = hip_center.y - (shoulder_center.y + ankle_center.y) / 2
    return -math.degrees(math.atan(deviation / (length / 2)))


def ear_point(keypoints: Sequence[Keypoint], min_score: float) -> Optional[Point3D]:
    ears = [keypoint_to_point3d(keypoints[idx]) for idx in (L.LEFT_EAR, L.RIGHT_EAR)
            if idx < len(keypoints) and is_valid_keypoint(keypoints[idx], min_score)]
    if not ears:
        return None
    return ears[0] if len(ears) == 1 else midpoint(*ears)


@register_analyzer(ExerciseKind.PLANK)
class PlankAnalyzer(BaseExerciseAnalyzer):
    initial_angle = 0.0

    def get_required_landmarks(self) -> List[int]:
        return [
            L.LEFT_SHOULDER, L.RIGHT_SHOULDER,
            L.LEFT_ELBOW, L.RIGHT_ELBOW,
            L.LEFT_WRIST, L.RIGHT_WRIST,
            L.LEFT_HIP, L.RIGHT_HIP,
            L.LEFT_ANKLE, L.RIGHT_ANKLE,
        ]

    def initial_extras(self) -> Dict[str, Any]:
        return {"plank_hold": PlankHoldState()}

    def initial_phase_state(self) -> PhaseState:
        return PhaseState(phase=PlankPhase.RESTING, last_angle=self.initial_angle)

    def compute_angles(self, points: Dict[int, Point3D], keypoints: Sequence[Keypoint]) -> Dict[str, Any]:
        p = points
        shoulder_center = midpoint(p[L.LEFT_SHOULDER], p[L.RIGHT_SHOULDER])
        hip_center = midpoint(p[L.LEFT_HIP], p[L.RIGHT_HIP])
        ankle_center = midpoint(p[L.LEFT_ANKLE], p[L.RIGHT_ANKLE])
        wrist_center = midpoint(p[L.LEFT_WRIST], p[L.RIGHT_WRIST])

        # Shoulder width collapses in side view; the torso length does not.
        torso_length = distance_2d(shoulder_center, hip_center)
        offset = abs(shoulder_center.x - wrist_center.x) / torso_length * 100 if torso_length > 0 else 0.0

        angles = {
            "body_alignment_angle": abs(180.0 - calculate_angle(shoulder_center, hip_center, ankle_center)),
            "hip_deviation_angle": hip_deviation_angle(shoulder_center, hip_center, ankle_center),
            "shoulder_wrist_offset": offset,
        }
        ear = ear_point(keypoints, self.config.min_keypoint_score)
        if ear is not None:
            angles["neck_angle"] = angle_between_segments(hip_center, shoulder_center, shoulder_center, ear)
        return angles

    def primary_angle(self, angles: Mapping[str, Any]) -> float:
        return angles["body_alignment_angle"]

    def advance_phase(self, angles: Mapping[str, Any], state: AnalyzerState) -> PhaseUpdate:
        # Holding/resting is decided from the overall score in finish_frame.
        return PhaseUpdate(state.phase, False, state.phase_state)

    def score_items(self, angles: Dict[str, Any], phase: Enum, state: AnalyzerState) -> ItemScores:
        items = ItemScores()
        config = self.config
        items.add("body_alignment", config.evaluate("body_alignment", angles["body_alignment_angle"]))
        items.add("hip_position", config.evaluate("hip_position", angles["hip_deviation_angle"]))
        items.add("shoulder_alignment", config.evaluate("shoulder_alignment", angles["shoulder_wrist_offset"]))
        if "neck_angle" in angles:
            items.add("neck_alignment", config.evaluate("neck_alignment", angles["neck_angle"]))
        return items

    def finish_frame(self, score: int, update: PhaseUpdate, extras: Dict[str, Any],
                     state: AnalyzerState, timestamp_ms: Optional[float]) -> Tuple[PhaseUpdate, Dict[str, Any]]:
        now_ms = timestamp_ms if timestamp_ms is not None else state.frame_count * FRAME_INTERVAL_MS
        threshold = self.config.extras.get("hold_threshold", DEFAULT_HOLD_THRESHOLD)
        hold = update_hold(extras["plank_hold"], score, now_ms, threshold)
        extras["plank_hold"] = hold

        phase = PlankPhase.HOLDING if hold.is_holding else PlankPhase.RESTING
        details = {
            "is_valid_plank": hold.is_holding,
            "hold_time": round(hold.current_hold_ms / 1000.0, 1),
            "total_hold_time": round((hold.total_hold_ms + hold.current_hold_ms) / 1000.0, 1),
            "average_score": round(hold.average_score, 1),
        }
        return PhaseUpdate(phase, False, replace(update.state, phase=phase)), details
