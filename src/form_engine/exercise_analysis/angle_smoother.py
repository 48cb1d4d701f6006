"""
angle_smoother.py - EMA filter with outlier rejection for per-frame joint angles.
"""
import copy
import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from ..exceptions import UnknownJointError

logger = logging.getLogger(__name__)

MIN_ALPHA = 0.1
MAX_ALPHA = 0.5
# Consecutive rejected samples after which a jump is accepted as real movement.
MAX_CONSECUTIVE_OUTLIERS = 3


@dataclass
class SmoothingConfig:
    """
    alpha: EMA factor. Lower is smoother but lags more.
    outlier_threshold: largest believable frame-to-frame jump, in degrees.
    enabled: when False smoothing is the identity.
    """
    alpha: float = 0.3
    outlier_threshold: float = 30.0
    enabled: bool = True

    def __post_init__(self):
        self.alpha = _clamp_alpha(self.alpha)

    @classmethod
    def coerce(cls, config: Union["SmoothingConfig", Mapping[str, Any], None]) -> "SmoothingConfig":
        """Accept a config instance, a partial dict or None."""
        if config is None:
            return cls()
        if isinstance(config, SmoothingConfig):
            return replace(config)
        known = {k: v for k, v in config.items() if k in ("alpha", "outlier_threshold", "enabled")}
        return cls(**known)


def _clamp_alpha(alpha: float) -> float:
    if alpha < MIN_ALPHA or alpha > MAX_ALPHA:
        clamped = max(MIN_ALPHA, min(MAX_ALPHA, alpha))
        logger.warning(f"Smoothing alpha {alpha} outside [{MIN_ALPHA}, {MAX_ALPHA}], clamping to {clamped}")
        return clamped
    return alpha


@dataclass
class SmootherState:
    previous_value: Optional[float] = None
    previous_raw_value: Optional[float] = None
    outlier_count: int = 0
    initialized: bool = False


@dataclass
class SmoothResult:
    smoothed_value: float
    raw_value: float
    was_outlier: bool


class AngleSmoother:
    """Smooths a single angle stream."""

    def __init__(self, config: Union[SmoothingConfig, Mapping[str, Any], None] = None):
        self.config = SmoothingConfig.coerce(config)
        self.state = SmootherState()

    def smooth(self, raw_value: float) -> SmoothResult:
        if not self.config.enabled:
            return SmoothResult(raw_value, raw_value, False)

        state = self.state
        if not state.initialized or state.previous_value is None:
            self.state = SmootherState(raw_value, raw_value, 0, True)
            return SmoothResult(raw_value, raw_value, False)

        # previous_raw_value is the last accepted sample, so a sustained jump
        # keeps counting as an outlier until it is accepted outright.
        if abs(raw_value - state.previous_raw_value) > self.config.outlier_threshold:
            outlier_count = state.outlier_count + 1
            if outlier_count > MAX_CONSECUTIVE_OUTLIERS:
                self.state = SmootherState(raw_value, raw_value, 0, True)
                return SmoothResult(raw_value, raw_value, True)
            self.state = SmootherState(state.previous_value, state.previous_raw_value, outlier_count, True)
            return SmoothResult(state.previous_value, raw_value, True)

        alpha = self.config.alpha
        smoothed = alpha * raw_value + (1 - alpha) * state.previous_value
        self.state = SmootherState(smoothed, raw_value, 0, True)
        return SmoothResult(smoothed, raw_value, False)

    def reset(self) -> None:
        self.state = SmootherState()

    def get_state(self) -> SmootherState:
        return replace(self.state)

    def update_config(self, config: Union[SmoothingConfig, Mapping[str, Any]]) -> None:
        updates = asdict(config) if isinstance(config, SmoothingConfig) else dict(config)
        merged = asdict(self.config)
        merged.update({k: v for k, v in updates.items() if k in merged})
        self.config = SmoothingConfig(**merged)


class AngleSmootherSet:
    """One AngleSmoother per named angle, smoothed together each frame."""

    def __init__(self, angle_keys: Iterable[str],
                 config: Union[SmoothingConfig, Mapping[str, Any], None] = None):
        self.config = SmoothingConfig.coerce(config)
        self.angle_keys: List[str] = list(angle_keys)
        self._smoothers: Dict[str, AngleSmoother] = {key: AngleSmoother(self.config) for key in self.angle_keys}

    def _get(self, key: str) -> AngleSmoother:
        try:
            return self._smoothers[key]
        except KeyError:
            raise UnknownJointError(key, self.angle_keys) from None

    def smooth(self, key: str, raw_value: float) -> SmoothResult:
        return self._get(key).smooth(raw_value)

    def smooth_all(self, raw_values: Mapping[str, float]) -> Dict[str, SmoothResult]:
        """
        Smooth every tracked key present in ``raw_values``.

        Keys in ``raw_values`` that this set does not track raise UnknownJointError.
        """
        for key in raw_values:
            if key not in self._smoothers:
                raise UnknownJointError(key, self.angle_keys)
        return {key: self._smoothers[key].smooth(raw_values[key])
                for key in self.angle_keys if key in raw_values}

    def smoothed_values(self, raw_values: Mapping[str, float]) -> Dict[str, float]:
        return {key: result.smoothed_value for key, result in self.smooth_all(raw_values).items()}

    def reset(self) -> None:
        for smoother in self._smoothers.values():
            smoother.reset()

    def get_state(self, key: Optional[str] = None):
        """State of one smoother, or of all of them keyed by angle."""
        if key is not None:
            return self._get(key).get_state()
        return {k: s.get_state() for k, s in self._smoothers.items()}

    def update_config(self, config: Union[SmoothingConfig, Mapping[str, Any]]) -> None:
        for smoother in self._smoothers.values():
            smoother.update_config(config)
        self.config = replace(next(iter(self._smoothers.values())).config) if self._smoothers \
            else SmoothingConfig.coerce(config)

    def copy(self) -> "AngleSmootherSet":
        return copy.deepcopy(self)


# --- Per-exercise factories ---
SQUAT_SMOOTHED_ANGLES = [
    "left_knee_angle", "right_knee_angle",
    "left_hip_angle", "right_hip_angle",
    "torso_angle",
    "left_ankle_angle", "right_ankle_angle",
    "neck_angle",
    "torso_rotation_angle",
]

PUSHUP_SMOOTHED_ANGLES = [
    "left_elbow_angle", "right_elbow_angle",
    "body_alignment_angle", "hip_sag_angle",
    "left_elbow_valgus", "right_elbow_valgus",
    "neck_angle",
]

LUNGE_SMOOTHED_ANGLES = [
    "front_knee_angle", "back_knee_angle",
    "front_hip_angle", "back_hip_angle",
    "torso_angle",
    "neck_angle",
    "back_hip_extension_angle",
    "torso_rotation_angle",
]

PLANK_SMOOTHED_ANGLES = [
    "body_alignment_angle", "hip_deviation_angle",
    "shoulder_wrist_offset", "neck_angle",
]

DEADLIFT_SMOOTHED_ANGLES = [
    "left_hip_hinge_angle", "right_hip_hinge_angle",
    "left_knee_angle", "right_knee_angle",
    "spine_angle", "upper_spine_angle", "lower_spine_angle",
    "neck_angle",
    "torso_rotation_angle",
]

OVERHEAD_SMOOTHED_ANGLES = [
    "left_shoulder_angle", "right_shoulder_angle",
    "left_wrist_angle", "right_wrist_angle",
    "left_elevation", "right_elevation",
]

WEIGHT_SHIFT_SMOOTHED_VALUES = ["lateral_deviation", "ap_deviation"]

SMOOTHED_ANGLES_BY_EXERCISE = {
    "squat": SQUAT_SMOOTHED_ANGLES,
    "pushup": PUSHUP_SMOOTHED_ANGLES,
    "lunge": LUNGE_SMOOTHED_ANGLES,
    "plank": PLANK_SMOOTHED_ANGLES,
    "deadlift": DEADLIFT_SMOOTHED_ANGLES,
    "overhead": OVERHEAD_SMOOTHED_ANGLES,
}


def create_smoother_set(exercise: str, config=None) -> AngleSmootherSet:
    """Smoother set for the angles an exercise analyzer tracks."""
    try:
        keys = SMOOTHED_ANGLES_BY_EXERCISE[exercise]
    except KeyError:
        raise ValueError(f"No smoother set defined for exercise '{exercise}'") from None
    return AngleSmootherSet(keys, config)


def create_weight_shift_smoother_set(config=None) -> AngleSmootherSet:
    return AngleSmootherSet(WEIGHT_SHIFT_SMOOTHED_VALUES, config)
