"""
torso_consistency.py - How steadily the torso angle is held through a movement.

Tracks the torso-vertical angle per phase, over a 30 frame window and at four
depth checkpoints per rep, and reports:

- variance within the current phase
- sudden shifts: 5 consecutive frames moving more than 5 degrees each
- cross-rep drift of the checkpoint angle against previous reps
"""
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..exercise_analysis.config_utils import load_biomechanics_config, threshold_from
from ..exercise_analysis.pose_utils import (angle_with_vertical, check_landmark_visibility, keypoint_to_point3d,
                                            midpoint, round1)
from ..exercise_analysis.scoring import (AngleThreshold, Correction, FeedbackItem, FeedbackLevel, Range,
                                         round_half_up)
from ..pose_detection.landmarks import Keypoint, LandmarkIndex

TORSO_LANDMARKS = [
    LandmarkIndex.LEFT_SHOULDER, LandmarkIndex.RIGHT_SHOULDER,
    LandmarkIndex.LEFT_HIP, LandmarkIndex.RIGHT_HIP,
]
STANDING_KNEE_ANGLE = 180.0
BOTTOM_KNEE_ANGLE = 90.0


@dataclass(frozen=True)
class TorsoConsistencyState:
    angle_history: Tuple[float, ...] = ()
    delta_history: Tuple[float, ...] = ()
    # phase value -> torso angles seen in that phase during the current rep
    phase_angles: Tuple[Tuple[str, Tuple[float, ...]], ...] = ()
    current_phase: Optional[str] = None
    # checkpoint name -> angles recorded in completed reps
    depth_checkpoints: Tuple[Tuple[str, Tuple[float, ...]], ...] = ()
    # checkpoint name -> angle recorded in the current rep
    current_rep_checkpoints: Tuple[Tuple[str, float], ...] = ()
    rep_count: int = 0
    last_knee_angle: float = STANDING_KNEE_ANGLE
    sustained_shift_frames: int = 0

    def phase_angle_map(self) -> Dict[str, Tuple[float, ...]]:
        return dict(self.phase_angles)

    def checkpoint_map(self) -> Dict[str, Tuple[float, ...]]:
        return dict(self.depth_checkpoints)

    def all_checkpoint_angles(self) -> List[float]:
        return [angle for _, angles in self.depth_checkpoints for angle in angles]


@dataclass
class TorsoConsistencyResult:
    current_angle: float = 0.0
    phase_variance: float = 0.0
    rolling_variance: float = 0.0
    sudden_shift_detected: bool = False
    shift_magnitude: float = 0.0
    depth_checkpoint_angle: Optional[float] = None
    consistency_score: int = 0
    is_valid: bool = False


@dataclass
class CrossRepComparison:
    current_angle: float
    average_angle: float
    deviation_percent: float


def _settings():
    return load_biomechanics_config()["torso_consistency"]


def _variance(values: Sequence[float]) -> float:
    if len(values) < 2:
        return 0.0
    return float(np.var(values))


def _push(buffer: Tuple[float, ...], value: float, size: int) -> Tuple[float, ...]:
    return (buffer + (value,))[-size:]


def create_initial_torso_consistency_state() -> TorsoConsistencyState:
    return TorsoConsistencyState()


def reset_rep_state(state: TorsoConsistencyState) -> TorsoConsistencyState:
    """Archive this rep's checkpoint angles and start a new rep."""
    archived = state.checkpoint_map()
    for name, angle in state.current_rep_checkpoints:
        archived[name] = archived.get(name, ()) + (angle,)
    return replace(
        state,
        phase_angles=(),
        depth_checkpoints=tuple(sorted(archived.items())),
        current_rep_checkpoints=(),
        rep_count=state.rep_count + 1,
        sustained_shift_frames=0,
    )


def normalize_knee_depth(knee_angle: float) -> float:
    """Standing (180) is 0% depth, a 90 degree knee is 100%."""
    depth = (STANDING_KNEE_ANGLE - knee_angle) / (STANDING_KNEE_ANGLE - BOTTOM_KNEE_ANGLE) * 100
    return max(0.0, min(100.0, depth))


def update_depth_checkpoints(torso_angle: float, knee_angle: float,
                             current: Dict[str, float]) -> Tuple[Optional[float], Dict[str, float]]:
    """Record the torso angle the first time each checkpoint band is entered in this rep."""
    depth = normalize_knee_depth(knee_angle)
    updated = dict(current)
    recorded = None
    for name, (low, high) in _settings()["depth_checkpoints"].items():
        if low <= depth <= high and name not in updated:
            updated[name] = torso_angle
            recorded = torso_angle
    return recorded, updated


def detect_sudden_shift(delta_history: Sequence[float], sustained_frames: int) -> Tuple[bool, int, float]:
    """Returns (detected, new sustained frame count, mean delta)."""
    if not delta_history:
        return False, 0, 0.0
    shift = _settings()["sudden_shift"]
    sustained = sustained_frames + 1 if delta_history[-1] > shift["threshold"] else 0
    return sustained >= shift["sustained_frames"], sustained, float(np.mean(delta_history))


def analyze_cross_rep_consistency(angle: float, state: TorsoConsistencyState) -> Optional[CrossRepComparison]:
    history = state.all_checkpoint_angles()
    if not history:
        return None
    average = float(np.mean(history))
    deviation = abs((angle - average) / average) * 100 if average != 0 else 0.0
    return CrossRepComparison(angle, average, deviation)


def _spread_score(std_dev: float, ideal_std: float, acceptable_std: float) -> float:
    if std_dev > acceptable_std:
        return max(0.0, 60 - (std_dev - acceptable_std) * 10)
    if std_dev > ideal_std:
        return 90 - (std_dev - ideal_std) / (acceptable_std - ideal_std) * 30
    return 100.0


def calculate_consistency_score(phase_variance: float, sudden_shift: bool, angle: float,
                                state: TorsoConsistencyState) -> int:
    settings = _settings()
    weights = settings["score_weights"]
    variance = threshold_from(settings, "variance")
    cross_rep = threshold_from(settings, "cross_rep")
    ideal_std = math.sqrt(variance.ideal.max)
    acceptable_std = math.sqrt(variance.acceptable.max)

    variance_score = _spread_score(math.sqrt(phase_variance), ideal_std, acceptable_std)
    shift_score = 40.0 if sudden_shift else 100.0

    cross_rep_score = 100.0
    comparison = analyze_cross_rep_consistency(angle, state)
    if comparison is not None:
        deviation = comparison.deviation_percent
        if deviation > cross_rep.acceptable.max:
            cross_rep_score = max(0.0, 60 - (deviation - cross_rep.acceptable.max) * 3)
        elif deviation > cross_rep.ideal.max:
            span = cross_rep.acceptable.max - cross_rep.ideal.max
            cross_rep_score = 90 - (deviation - cross_rep.ideal.max) / span * 30

    checkpoint_score = 100.0
    checkpoints = state.all_checkpoint_angles()
    if len(checkpoints) >= 2:
        checkpoint_score = _spread_score(math.sqrt(_variance(checkpoints)), ideal_std, acceptable_std)

    return round_half_up(variance_score * weights["phase_variance"]
                         + shift_score * weights["sudden_shift"]
                         + cross_rep_score * weights["cross_rep"]
                         + checkpoint_score * weights["depth_checkpoints"])


def analyze_torso_consistency(keypoints: Sequence[Keypoint], state: TorsoConsistencyState,
                              phase: Union[Enum, str], knee_angle: float,
                              min_score: float = 0.5) -> Tuple[TorsoConsistencyResult, TorsoConsistencyState]:
    """
    Update torso tracking with one frame.

    Args:
        keypoints: 33 landmarks
        state: previous consistency state
        phase: the analyzer's phase for this frame
        knee_angle: knee angle used to place the frame on the depth scale

    Returns:
        (result, new_state); missing torso landmarks return an invalid result
        and the state passed in
    """
    if not check_landmark_visibility(keypoints, TORSO_LANDMARKS, min_score):
        return TorsoConsistencyResult(), state

    settings = _settings()
    phase_key = getattr(phase, "value", phase)
    ls, rs, lh, rh = (keypoint_to_point3d(keypoints[idx]) for idx in TORSO_LANDMARKS)
    angle = angle_with_vertical(midpoint(lh, rh), midpoint(ls, rs))

    previous = state.angle_history[-1] if state.angle_history else angle
    angle_history = _push(state.angle_history, angle, settings["angle_window"])
    delta_history = _push(state.delta_history, abs(angle - previous), settings["delta_window"])

    phase_angles = state.phase_angle_map()
    phase_angles[phase_key] = phase_angles.get(phase_key, ()) + (angle,)
    phase_variance = _variance(phase_angles[phase_key])

    detected, sustained, magnitude = detect_sudden_shift(delta_history, state.sustained_shift_frames)
    checkpoint_angle, rep_checkpoints = update_depth_checkpoints(angle, knee_angle,
                                                                 dict(state.current_rep_checkpoints))
    score = calculate_consistency_score(phase_variance, detected, angle, state)

    new_state = replace(
        state,
        angle_history=angle_history,
        delta_history=delta_history,
        phase_angles=tuple(sorted(phase_angles.items())),
        current_phase=phase_key,
        current_rep_checkpoints=tuple(sorted(rep_checkpoints.items())),
        last_knee_angle=knee_angle,
        sustained_shift_frames=sustained,
    )
    result = TorsoConsistencyResult(
        current_angle=round1(angle),
        phase_variance=round(phase_variance, 2),
        rolling_variance=round(_variance(angle_history), 2),
        sudden_shift_detected=detected,
        shift_magnitude=round1(magnitude),
        depth_checkpoint_angle=checkpoint_angle,
        consistency_score=score,
        is_valid=True,
    )
    return result, new_state


def create_torso_consistency_feedback(result: TorsoConsistencyResult,
                                      state: TorsoConsistencyState) -> Optional[FeedbackItem]:
    """
    Highest priority consistency issue, or None when the result is invalid.

    Priority: sudden shift, unstable phase angle, cross-rep drift, then good.
    The item score is the weighted consistency score.
    """
    if not result.is_valid:
        return None
    settings = _settings()
    variance = threshold_from(settings, "variance")
    std_threshold = AngleThreshold(Range(0.0, math.sqrt(variance.ideal.max)),
                                   Range(0.0, math.sqrt(variance.acceptable.max)))
    std_dev = round1(math.sqrt(result.phase_variance))
    score = result.consistency_score

    def item(level, message, value, threshold=std_threshold, correction=Correction.NONE):
        return FeedbackItem(level, message, correction, round1(value), threshold.ideal, threshold.acceptable, score)

    if result.sudden_shift_detected:
        return item(FeedbackLevel.ERROR, "Sudden torso shift detected. Stabilize your core",
                    result.shift_magnitude, variance, Correction.BACKWARD)
    if result.phase_variance > variance.acceptable.max:
        return item(FeedbackLevel.ERROR, "Torso angle is unstable. Hold a consistent posture", std_dev)
    if result.phase_variance > variance.ideal.max:
        return item(FeedbackLevel.WARNING, "Keep your torso a little steadier", std_dev)
    if state.rep_count > 0 and result.depth_checkpoint_angle is not None:
        comparison = analyze_cross_rep_consistency(result.depth_checkpoint_angle, state)
        cross_rep = threshold_from(settings, "cross_rep")
        if comparison is not None and comparison.deviation_percent > cross_rep.acceptable.max:
            correction = (Correction.BACKWARD if comparison.current_angle > comparison.average_angle
                          else Correction.FORWARD)
            return item(FeedbackLevel.WARNING,
                        f"Torso angle differs from previous reps ({comparison.deviation_percent:.1f}%)",
                        comparison.deviation_percent, cross_rep, correction)
    return item(FeedbackLevel.GOOD, "Good torso stability", std_dev)
