"""
capabilities.py - Sub-analyzers as optional capabilities of an exercise analyzer.

Each capability looks at the frame, returns a scored FeedbackItem (or None when
its landmarks were missing) and its next sub-state. The analyzer folds only
the capabilities that produced feedback into its weighted score.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from ..exercise_analysis.scoring import FeedbackItem
from ..pose_detection.landmarks import Keypoint
from .neck_alignment import analyze_neck_alignment, create_neck_alignment_feedback
from .pelvic_tilt import (analyze_pelvic_tilt, create_initial_pelvic_tilt_state, create_pelvic_tilt_feedback,
                          pelvic_tilt_score)
from .torso_consistency import (analyze_torso_consistency, create_initial_torso_consistency_state,
                                create_torso_consistency_feedback, reset_rep_state)
from .torso_rotation import analyze_torso_rotation, create_torso_rotation_feedback
from .weight_shift import analyze_weight_shift, create_initial_weight_shift_state, create_weight_shift_feedback

logger = logging.getLogger(__name__)


@dataclass
class FrameContext:
    """What an exercise analyzer knows about the current frame after its own scoring."""
    keypoints: Sequence[Keypoint]
    exercise: str
    phase: Enum
    rep_completed: bool = False
    angles: Dict[str, float] = field(default_factory=dict)
    front_leg: Optional[str] = None
    lift_phase: bool = False
    min_score: float = 0.5


@dataclass
class CapabilityOutcome:
    feedback: Optional[FeedbackItem]
    state: Any = None
    details: Dict[str, FeedbackItem] = field(default_factory=dict)
    raw_values: Dict[str, float] = field(default_factory=dict)


class Capability(ABC):
    """One cross-cutting sub-analyzer; ``name`` is its key in feedbacks and score weights."""
    name: str = ""

    def initial_state(self, smoothing=None, depth_config=None) -> Any:
        return None

    @abstractmethod
    def evaluate(self, frame: FrameContext, state: Any) -> CapabilityOutcome:
        pass


class NeckAlignmentCapability(Capability):
    name = "neck_alignment"

    def evaluate(self, frame: FrameContext, state: Any) -> CapabilityOutcome:
        result = analyze_neck_alignment(frame.keypoints, frame.exercise, frame.min_score)
        feedback = create_neck_alignment_feedback(result, frame.exercise)
        raw = {"neck_angle": result.neck_angle, "forward_head_posture": result.forward_posture,
               "neck_extension_flexion": result.extension_flexion} if result.is_valid else {}
        return CapabilityOutcome(feedback, state, raw_values=raw)


class TorsoRotationCapability(Capability):
    name = "torso_rotation"

    def evaluate(self, frame: FrameContext, state: Any) -> CapabilityOutcome:
        result = analyze_torso_rotation(frame.keypoints, frame.min_score)
        feedback = create_torso_rotation_feedback(result, frame.exercise, frame.lift_phase, frame.front_leg)
        raw = {"torso_rotation_angle": result.rotation_angle,
               "frontal_tilt_angle": result.frontal_tilt_angle} if result.is_valid else {}
        return CapabilityOutcome(feedback, state, raw_values=raw)


class PelvicTiltCapability(Capability):
    name = "pelvic_tilt"

    def initial_state(self, smoothing=None, depth_config=None) -> Any:
        return create_initial_pelvic_tilt_state(smoothing, depth_config)

    def evaluate(self, frame: FrameContext, state: Any) -> CapabilityOutcome:
        result, new_state = analyze_pelvic_tilt(frame.keypoints, state, frame.min_score)
        details = create_pelvic_tilt_feedback(result)
        if details is None:
            return CapabilityOutcome(None, new_state)
        # The anterior item represents the pelvis; it carries the combined score.
        summary = details["anterior_tilt"]
        worst = min(details.values(), key=lambda item: item.score)
        feedback = FeedbackItem(worst.level, worst.message, worst.correction, summary.value,
                                summary.ideal_range, summary.acceptable_range, pelvic_tilt_score(result))
        raw = {"pelvic_tilt_angle": result.anterior_tilt_angle, "lateral_pelvic_tilt": result.lateral_tilt_angle,
               "pelvic_stability_score": float(result.stability_score)}
        return CapabilityOutcome(feedback, new_state, details={f"pelvic_{k}": v for k, v in details.items()},
                                 raw_values=raw)


class WeightShiftCapability(Capability):
    name = "weight_shift"

    def initial_state(self, smoothing=None, depth_config=None) -> Any:
        return create_initial_weight_shift_state({"smoothing": smoothing} if smoothing is not None else None)

    def evaluate(self, frame: FrameContext, state: Any) -> CapabilityOutcome:
        result, new_state = analyze_weight_shift(frame.keypoints, frame.exercise, state, frame.min_score)
        feedback = create_weight_shift_feedback(result)
        if feedback is None:
            return CapabilityOutcome(None, new_state)
        raw = {"weight_lateral_right_percent": result.lateral.right_percent,
               "weight_forward_percent": result.anterior_posterior.forward_percent}
        details = {f"weight_shift_{k}": v for k, v in result.feedbacks.items()}
        return CapabilityOutcome(feedback, new_state, details=details, raw_values=raw)


class TorsoConsistencyCapability(Capability):
    """Needs a knee angle in the frame angles to place checkpoints on the depth scale."""
    name = "torso_consistency"

    def __init__(self, knee_angle_key: str = "knee_angle"):
        self.knee_angle_key = knee_angle_key

    def initial_state(self, smoothing=None, depth_config=None) -> Any:
        return create_initial_torso_consistency_state()

    def evaluate(self, frame: FrameContext, state: Any) -> CapabilityOutcome:
        knee_angle = frame.angles.get(self.knee_angle_key, 180.0)
        result, new_state = analyze_torso_consistency(frame.keypoints, state, frame.phase, knee_angle,
                                                      frame.min_score)
        feedback = create_torso_consistency_feedback(result, new_state)
        if frame.rep_completed:
            new_state = reset_rep_state(new_state)
        raw = {"torso_consistency_score": float(result.consistency_score)} if result.is_valid else {}
        return CapabilityOutcome(feedback, new_state, raw_values=raw)


def run_capabilities(capabilities: Sequence[Capability], frame: FrameContext,
                     states: Dict[str, Any]):
    """
    Evaluate every capability against one frame.

    Returns (feedbacks, item_scores, raw_values, new_states). Capabilities
    without feedback contribute nothing, so their weight later counts as 100.
    """
    feedbacks: Dict[str, FeedbackItem] = {}
    scores: Dict[str, float] = {}
    raw_values: Dict[str, float] = {}
    new_states = dict(states)
    for capability in capabilities:
        outcome = capability.evaluate(frame, states.get(capability.name))
        new_states[capability.name] = outcome.state
        if outcome.feedback is None:
            logger.debug(f"{capability.name}: unavailable for this frame")
            continue
        feedbacks[capability.name] = outcome.feedback
        feedbacks.update(outcome.details)
        scores[capability.name] = outcome.feedback.score
        raw_values.update(outcome.raw_values)
    return feedbacks, scores, raw_values, new_states
