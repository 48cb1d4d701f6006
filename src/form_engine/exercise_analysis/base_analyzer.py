"""
base_analyzer.py - Shared per-frame pipeline for every exercise analyzer.

An analyzer is a stateless object holding resolved threshold tables; all
frame-to-frame memory lives in an AnalyzerState that the caller threads
through analyze(). Each frame runs:

1. landmark validation (invalid frames return a fixed result and the same state)
2. raw angles from the geometry kernel
3. smoothing on a copy of the state's smoother set
4. optional perspective correction
5. phase / rep detection on the primary angle
6. item scoring against the threshold tables
7. cross-cutting capabilities (neck, rotation, pelvis, balance, consistency)
8. weighted overall score
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..biomechanics.capabilities import Capability, FrameContext, run_capabilities
from ..pose_detection.landmarks import Keypoint, Point3D
from .angle_smoother import AngleSmootherSet, SmoothingConfig, create_smoother_set
from .config_utils import ExerciseConfig, JointRange, UserLevel, get_exercise_config
from .depth_normalization import DepthNormalizationConfig, apply_perspective_correction, calculate_perspective_factor
from .phase_detector import PhaseCycle, PhaseState, PhaseUpdate, initial_phase_state, update_phase
from .pose_utils import check_landmark_visibility, keypoint_to_point3d, missing_landmarks, symmetry_score
from .scoring import FeedbackItem, average_score, invalid_feedback, weighted_score

logger = logging.getLogger(__name__)


class ExerciseKind(str, Enum):
    SQUAT = "squat"
    PUSHUP = "pushup"
    LUNGE = "lunge"
    PLANK = "plank"
    DEADLIFT = "deadlift"
    OVERHEAD = "overhead"

    @classmethod
    def from_value(cls, value: Union["ExerciseKind", str]) -> "ExerciseKind":
        if isinstance(value, ExerciseKind):
            return value
        normalized = str(value).lower().replace("-", "").replace("_", "")
        aliases = {"overheadpress": "overhead", "press": "overhead"}
        try:
            return cls(aliases.get(normalized, normalized))
        except ValueError:
            raise ValueError(f"Unknown exercise '{value}'. Expected one of: "
                             f"{', '.join(kind.value for kind in cls)}") from None


@dataclass(frozen=True)
class AnalyzerState:
    """
    Everything an analyzer remembers between frames.

    capability_states holds one entry per capability name, extras holds
    exercise-specific memory (knee alignment baseline, plank hold, deadlift
    deltas). Both are replaced, never mutated, by analyze().
    """
    kind: ExerciseKind
    user_level: UserLevel
    phase_state: PhaseState
    smoother_set: AngleSmootherSet
    depth_config: Optional[DepthNormalizationConfig] = None
    capability_states: Dict[str, Any] = field(default_factory=dict)
    extras: Dict[str, Any] = field(default_factory=dict)
    profile: Optional[Mapping[str, JointRange]] = None
    frame_count: int = 0

    @property
    def phase(self) -> Enum:
        return self.phase_state.phase

    @property
    def rep_count(self) -> int:
        return self.phase_state.rep_count


@dataclass
class AnalysisResult:
    score: int
    feedbacks: Dict[str, FeedbackItem]
    phase: Enum
    rep_completed: bool
    raw_angles: Dict[str, float]
    is_valid: bool = True
    rep_count: int = 0
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "feedbacks": {name: item.to_dict() for name, item in self.feedbacks.items()},
            "phase": self.phase.value,
            "rep_completed": self.rep_completed,
            "rep_count": self.rep_count,
            "raw_angles": dict(self.raw_angles),
            "is_valid": self.is_valid,
            "details": dict(self.details),
        }


@dataclass
class ItemScores:
    """Feedback and weight-keyed scores produced by one analyzer's own items."""
    feedbacks: Dict[str, FeedbackItem] = field(default_factory=dict)
    scores: Dict[str, float] = field(default_factory=dict)
    raw_values: Dict[str, float] = field(default_factory=dict)
    extras: Dict[str, Any] = field(default_factory=dict)
    details: Dict[str, Any] = field(default_factory=dict)

    def add(self, name: str, item: FeedbackItem, score: Optional[float] = None) -> FeedbackItem:
        self.feedbacks[name] = item
        self.scores[name] = item.score if score is None else score
        return item


ANALYZER_REGISTRY: Dict[ExerciseKind, type] = {}


def register_analyzer(kind: ExerciseKind):
    """Decorator adding an analyzer class to the registry under its exercise kind."""
    def decorator(cls):
        cls.kind = kind
        ANALYZER_REGISTRY[kind] = cls
        return cls
    return decorator


class BaseExerciseAnalyzer(ABC):
    """Base class for exercise analysis implementations."""
    kind: ExerciseKind
    cycle: Optional[PhaseCycle] = None
    initial_angle: float = 180.0
    # None starts in the cycle's top phase
    initial_phase: Optional[Enum] = None
    # smoothed angle key -> perspective correction type
    depth_corrected_angles: Dict[str, str] = {}

    def __init__(self, config: ExerciseConfig):
        self.config = config
        self.capabilities: List[Capability] = self.build_capabilities()

    def build_capabilities(self) -> List[Capability]:
        """Cross-cutting sub-analyzers this exercise folds into its score."""
        return []

    @abstractmethod
    def get_required_landmarks(self) -> List[int]:
        """
        Get the landmark indices that must be visible for a frame to be analyzed.

        Returns:
            List of LandmarkIndex values
        """
        pass

    @abstractmethod
    def compute_angles(self, points: Dict[int, Point3D], keypoints: Sequence[Keypoint]) -> Dict[str, Any]:
        """
        Measure the raw quantities for one frame.

        Args:
            points: required landmarks converted to Point3D, keyed by index
            keypoints: the full landmark list, for optional landmarks

        Returns:
            Dictionary of measurements; numeric entries whose key the smoother
            set tracks are smoothed before scoring
        """
        pass

    @abstractmethod
    def primary_angle(self, angles: Mapping[str, Any]) -> float:
        """The angle driving the phase state machine."""
        pass

    @abstractmethod
    def score_items(self, angles: Dict[str, Any], phase: Enum, state: AnalyzerState) -> ItemScores:
        """
        Score this exercise's own items.

        Args:
            angles: smoothed (and corrected) measurements
            phase: phase of the current frame
            state: the state passed into analyze()

        Returns:
            ItemScores with feedback keyed by item name
        """
        pass

    def add_symmetry(self, items: ItemScores, pairs: Mapping[str, Tuple[str, str]],
                     angles: Mapping[str, Any], item: str = "symmetry") -> FeedbackItem:
        """
        Score left/right pairs against the symmetry table.

        Each pair gets its own feedback; the summary item carries the least
        symmetric pair's message and is scored with the mean symmetry score,
        which is already on the 0-100 scale.
        """
        pair_items = []
        values = []
        for name, (left, right) in pairs.items():
            value = symmetry_score(angles[left], angles[right])
            pair_item = self.config.evaluate(item, value)
            items.feedbacks[name] = pair_item
            items.raw_values[f"{name}_score"] = value
            pair_items.append(pair_item)
            values.append(value)
        worst = min(pair_items, key=lambda pair_item: pair_item.value)
        return items.add(item, worst, average_score(values))

    def initial_extras(self) -> Dict[str, Any]:
        return {}

    def frame_hints(self, angles: Mapping[str, Any], phase: Enum) -> Dict[str, Any]:
        """Extra FrameContext fields (front leg, lift phase) for the capabilities."""
        return {}

    def advance_phase(self, angles: Mapping[str, Any], state: AnalyzerState) -> PhaseUpdate:
        return update_phase(self.primary_angle(angles), state.phase_state, self.config.phase, self.cycle)

    def finish_frame(self, score: int, update: PhaseUpdate, extras: Dict[str, Any],
                     state: AnalyzerState, timestamp_ms: Optional[float]) -> Tuple[PhaseUpdate, Dict[str, Any]]:
        """Hook for phases that depend on the overall score (plank hold)."""
        return update, {}

    def create_initial_state(self, user_level: UserLevel, smoothing=None, depth_config=None,
                             profile: Optional[Mapping[str, JointRange]] = None) -> AnalyzerState:
        smoothing_config = SmoothingConfig.coerce(smoothing)
        depth = DepthNormalizationConfig.coerce(depth_config)
        capability_states = {c.name: c.initial_state(smoothing_config, depth) for c in self.capabilities}
        return AnalyzerState(
            kind=self.kind,
            user_level=user_level,
            phase_state=self.initial_phase_state(),
            smoother_set=create_smoother_set(self.kind.value, smoothing_config),
            depth_config=depth,
            capability_states=capability_states,
            extras=self.initial_extras(),
            profile=profile,
        )

    def initial_phase_state(self) -> PhaseState:
        return initial_phase_state(self.cycle, self.initial_angle, self.initial_phase)

    def invalid_result(self, state: AnalyzerState) -> AnalysisResult:
        message = self.config.invalid_pose_message
        feedbacks = {name: invalid_feedback(message) for name in self.config.thresholds
                     if name in self.config.weights}
        return AnalysisResult(
            score=0,
            feedbacks=feedbacks,
            phase=state.phase,
            rep_completed=False,
            raw_angles={},
            is_valid=False,
            rep_count=state.rep_count,
        )

    def _smooth(self, raw: Dict[str, Any], smoother_set: AngleSmootherSet) -> Dict[str, Any]:
        tracked = {k: v for k, v in raw.items()
                   if k in smoother_set.angle_keys and isinstance(v, (int, float)) and not isinstance(v, bool)}
        angles = dict(raw)
        angles.update(smoother_set.smoothed_values(tracked))
        return angles

    def _correct_perspective(self, angles: Dict[str, Any], keypoints: Sequence[Keypoint],
                             depth_config: DepthNormalizationConfig) -> Dict[str, Any]:
        if not depth_config.enabled or not self.depth_corrected_angles:
            return angles
        perspective = calculate_perspective_factor(keypoints, depth_config)
        if not perspective.confidence.is_reliable:
            return angles
        logger.debug(f"Perspective factor {perspective.factor} (depth {perspective.average_depth})")
        corrected = dict(angles)
        for key, angle_type in self.depth_corrected_angles.items():
            if key in corrected:
                corrected[key] = apply_perspective_correction(corrected[key], perspective.factor, angle_type)
        corrected["perspective_factor"] = perspective.factor
        return corrected

    def analyze(self, keypoints: Sequence[Keypoint], state: AnalyzerState,
                timestamp_ms: Optional[float] = None) -> Tuple[AnalysisResult, AnalyzerState]:
        """
        Analyze one frame.

        Args:
            keypoints: at least 33 landmarks in BlazePose order
            state: state returned by the previous call (or create_initial_state)
            timestamp_ms: frame time, used by hold timing

        Returns:
            (result, new_state); an unrecognized pose returns the invalid
            result and ``state`` itself
        """
        required = self.get_required_landmarks()
        min_score = self.config.min_keypoint_score
        if not check_landmark_visibility(keypoints, required, min_score):
            logger.debug(f"{self.kind.value}: missing landmarks {missing_landmarks(keypoints, required, min_score)}")
            return self.invalid_result(state), state

        points = {idx: keypoint_to_point3d(keypoints[idx]) for idx in required}
        raw = self.compute_angles(points, keypoints)

        smoother_set = state.smoother_set.copy()
        angles = self._smooth(raw, smoother_set)
        if state.depth_config is not None:
            angles = self._correct_perspective(angles, keypoints, state.depth_config)

        update = self.advance_phase(angles, state)
        items = self.score_items(angles, update.phase, state)

        frame = FrameContext(
            keypoints=keypoints,
            exercise=self.kind.value,
            phase=update.phase,
            rep_completed=update.rep_completed,
            angles=angles,
            min_score=min_score,
            **self.frame_hints(angles, update.phase),
        )
        cap_feedbacks, cap_scores, cap_raw, capability_states = run_capabilities(
            self.capabilities, frame, state.capability_states)

        scores = dict(items.scores)
        scores.update(cap_scores)
        score = weighted_score(scores, self.config.weights)

        extras = dict(state.extras)
        extras.update(items.extras)
        update, finish_details = self.finish_frame(score, update, extras, state, timestamp_ms)

        feedbacks = dict(items.feedbacks)
        feedbacks.update(cap_feedbacks)
        raw_angles = {k: v for k, v in angles.items()
                      if isinstance(v, (int, float)) and not isinstance(v, bool)}
        raw_angles.update(items.raw_values)
        raw_angles.update(cap_raw)
        details = dict(items.details)
        details.update(finish_details)

        result = AnalysisResult(
            score=score,
            feedbacks=feedbacks,
            phase=update.phase,
            rep_completed=update.rep_completed,
            raw_angles=raw_angles,
            is_valid=True,
            rep_count=update.state.rep_count,
            details=details,
        )
        new_state = replace(
            state,
            phase_state=update.state,
            smoother_set=smoother_set,
            capability_states=capability_states,
            extras=extras,
            frame_count=state.frame_count + 1,
        )
        return result, new_state


def get_analyzer(kind: Union[ExerciseKind, str], user_level: Union[UserLevel, str, None] = None,
                 profile: Optional[Mapping[str, JointRange]] = None,
                 config_path: str = None) -> BaseExerciseAnalyzer:
    """Build the registered analyzer for ``kind`` with its resolved threshold tables."""
    kind = ExerciseKind.from_value(kind)
    try:
        analyzer_cls = ANALYZER_REGISTRY[kind]
    except KeyError:
        raise ValueError(f"No analyzer registered for exercise '{kind.value}'") from None
    config = get_exercise_config(kind.value, UserLevel.from_value(user_level), profile, config_path)
    return analyzer_cls(config)


def create_initial_state(kind: Union[ExerciseKind, str], user_level: Union[UserLevel, str, None] = None,
                         smoothing=None, depth_config=None,
                         profile: Optional[Mapping[str, JointRange]] = None) -> AnalyzerState:
    """
    Fresh state for one exercise session.

    Args:
        kind: exercise to analyze
        user_level: skill level, intermediate when omitted
        smoothing: SmoothingConfig or a partial dict
        depth_config: DepthNormalizationConfig or a partial dict; None disables
            perspective correction
        profile: calibrated joint ranges for personalised thresholds
    """
    level = UserLevel.from_value(user_level)
    analyzer = get_analyzer(kind, level, profile)
    state = analyzer.create_initial_state(level, smoothing, depth_config, profile)
    logger.info(f"Started {state.kind.value} session at {level.value} level")
    return state


def analyze(keypoints: Sequence[Keypoint], state: AnalyzerState,
            timestamp_ms: Optional[float] = None) -> Tuple[AnalysisResult, AnalyzerState]:
    """Analyze one frame with the analyzer matching ``state``."""
    analyzer = get_analyzer(state.kind, state.user_level, state.profile)
    return analyzer.analyze(keypoints, state, timestamp_ms)
