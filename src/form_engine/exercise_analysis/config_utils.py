"""
config_utils.py - Threshold tables, skill levels and personalised ranges.

Tables are plain JSON so they can be tuned without code changes. Each table is
validated once when loaded and cached per file path.
"""
import copy
import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from ..exceptions import ConfigError
from .phase_detector import PhaseThresholds
from .scoring import AngleThreshold, FeedbackItem, Range, evaluate

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), 'exercise_config.json')
BIOMECHANICS_CONFIG_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), 'biomechanics',
                                        'biomechanics_config.json')
WEIGHT_TOLERANCE = 1e-6
# Half-widths of personalised ranges as a share of the user's range of motion.
PERSONAL_IDEAL_SHARE = 0.3
PERSONAL_ACCEPTABLE_SHARE = 0.4

_CONFIG_CACHE: Dict[str, Dict[str, Any]] = {}


class UserLevel(Enum):
    """Enum representing different user experience levels."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

    @classmethod
    def from_value(cls, value: Union["UserLevel", str, None]) -> "UserLevel":
        if value is None:
            return cls.INTERMEDIATE
        if isinstance(value, UserLevel):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown user level '{value}'. Expected one of: "
                             f"{', '.join(level.value for level in cls)}") from None


@dataclass(frozen=True)
class JointRange:
    """A user's calibrated range of motion for one joint."""
    min: float
    max: float
    optimal: float


def _validate(config: Dict[str, Any], path: str) -> None:
    exercises = config.get("exercises")
    if not isinstance(exercises, dict) or not exercises:
        raise ConfigError(f"{path}: no 'exercises' table")
    if "symmetry" in config:
        AngleThreshold.from_dict(config["symmetry"])
    for name, table in exercises.items():
        items = table.get("items", {})
        for item_name, item in items.items():
            try:
                AngleThreshold.from_dict(item)
            except ConfigError as e:
                raise ConfigError(f"{path}: {name}.{item_name}: {e}") from e
        weights = table.get("weights", {})
        total = sum(weights.values())
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ConfigError(f"{path}: weights for '{name}' sum to {total}, expected 1.0")
        if "phase" in table:
            phase = PhaseThresholds.from_dict(table["phase"])
            if phase.bottom >= phase.top:
                raise ConfigError(f"{path}: '{name}' bottom threshold must be below top threshold")


def load_exercise_config(config_path: str = None) -> Dict[str, Any]:
    """Load and validate the exercise config from JSON file."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    key = os.path.abspath(config_path)
    if key not in _CONFIG_CACHE:
        try:
            with open(config_path, 'r') as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e
        _validate(config, config_path)
        _CONFIG_CACHE[key] = config
    return _CONFIG_CACHE[key]


def load_biomechanics_config(config_path: str = None) -> Dict[str, Any]:
    """Load the sub-analyzer constants (neck tables, rotation, pelvic, balance, consistency)."""
    if config_path is None:
        config_path = BIOMECHANICS_CONFIG_PATH
    key = os.path.abspath(config_path)
    if key not in _CONFIG_CACHE:
        try:
            with open(config_path, 'r') as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e
        for exercise, table in config.get("neck", {}).items():
            for metric, threshold in table.items():
                try:
                    AngleThreshold.from_dict(threshold)
                except ConfigError as e:
                    raise ConfigError(f"{config_path}: neck.{exercise}.{metric}: {e}") from e
        _CONFIG_CACHE[key] = config
    return _CONFIG_CACHE[key]


def threshold_from(table: Mapping[str, Any], key: str) -> AngleThreshold:
    return AngleThreshold.from_dict(table[key])


def clear_config_cache() -> None:
    _CONFIG_CACHE.clear()


def apply_phase_modifier(threshold: AngleThreshold, modifier: float) -> AngleThreshold:
    """Scale both half-widths; below 1.0 is stricter."""
    if modifier == 1.0:
        return threshold
    return threshold.scaled(modifier)


def apply_skill_modifier(threshold: AngleThreshold, level_config: Mapping[str, Any]) -> AngleThreshold:
    ideal_multiplier = level_config.get("ideal_multiplier", 1.0)
    acceptable_multiplier = level_config.get("acceptable_multiplier", 1.0)
    if ideal_multiplier == 1.0 and acceptable_multiplier == 1.0:
        return threshold
    return threshold.scaled(ideal_multiplier, acceptable_multiplier)


def personalize_threshold(joint_range: JointRange, bounds: Tuple[float, float]) -> AngleThreshold:
    """
    Build a threshold centred on the user's calibrated optimal angle.

    ideal = optimal +/- 30% of the range of motion, acceptable = optimal +/- 40%,
    both clamped to the joint's physiological bounds.
    """
    low, high = bounds
    spread = joint_range.max - joint_range.min

    def clamp(value):
        return max(low, min(high, value))

    centre = joint_range.optimal
    ideal = Range(clamp(centre - spread * PERSONAL_IDEAL_SHARE), clamp(centre + spread * PERSONAL_IDEAL_SHARE))
    acceptable = Range(clamp(centre - spread * PERSONAL_ACCEPTABLE_SHARE),
                       clamp(centre + spread * PERSONAL_ACCEPTABLE_SHARE))
    return AngleThreshold(ideal, acceptable)


@dataclass
class ExerciseConfig:
    """Resolved tables for one exercise at one skill level."""
    name: str
    thresholds: Dict[str, AngleThreshold]
    messages: Dict[str, Dict[str, str]]
    corrections: Dict[str, Tuple[str, str]]
    weights: Dict[str, float]
    primary_item: str
    phase: Optional[PhaseThresholds] = None
    phase_modifiers: Dict[str, float] = field(default_factory=dict)
    extras: Dict[str, Any] = field(default_factory=dict)
    invalid_pose_message: str = "Pose not recognized"
    min_keypoint_score: float = 0.5

    def threshold(self, item: str, phase: Optional[Enum] = None) -> AngleThreshold:
        """Threshold for an item; the primary item is scaled by the current phase's modifier."""
        threshold = self.thresholds[item]
        if phase is not None and item == self.primary_item:
            modifier = self.phase_modifiers.get(getattr(phase, "value", phase), 1.0)
            threshold = apply_phase_modifier(threshold, modifier)
        return threshold

    def message(self, item: str, key: str) -> str:
        return self.messages.get(item, {}).get(key, "")

    def evaluate(self, item: str, value: float, phase: Optional[Enum] = None,
                 threshold: Optional[AngleThreshold] = None, precision: int = 1) -> FeedbackItem:
        return evaluate(
            value,
            threshold if threshold is not None else self.threshold(item, phase),
            self.messages.get(item, {}),
            self.corrections.get(item, ("none", "none")),
            precision,
        )


def get_exercise_config(exercise: str,
                        user_level: Union[UserLevel, str, None] = UserLevel.INTERMEDIATE,
                        profile: Optional[Mapping[str, JointRange]] = None,
                        config_path: str = None) -> ExerciseConfig:
    """
    Resolve an exercise's tables.

    Args:
        exercise: key under "exercises" in the config file
        user_level: skill level whose modifiers are applied
        profile: calibrated ranges keyed by joint type (e.g. "knee_flexion");
            matching items use personalised thresholds instead of skill-scaled ones
        config_path: alternative JSON file

    Returns:
        ExerciseConfig
    """
    raw = load_exercise_config(config_path)
    level = UserLevel.from_value(user_level)
    try:
        table = raw["exercises"][exercise]
    except KeyError:
        raise ValueError(f"No threshold table for exercise '{exercise}'") from None

    level_config = raw.get("skill_levels", {}).get(level.value)
    if level_config is None:
        logger.warning(f"No skill modifiers for level '{level.value}' in config, using unmodified thresholds")
        level_config = {}

    calibration_joints = table.get("calibration_joints", {})
    bounds_table = raw.get("physiological_bounds", {})
    thresholds, messages, corrections = {}, {}, {}
    for item_name, item in table.get("items", {}).items():
        threshold = AngleThreshold.from_dict(item)
        joint_type = calibration_joints.get(item_name)
        if profile and joint_type in profile and joint_type in bounds_table:
            threshold = personalize_threshold(profile[joint_type], tuple(bounds_table[joint_type]))
        else:
            threshold = apply_skill_modifier(threshold, level_config)
        thresholds[item_name] = threshold
        messages[item_name] = dict(item.get("messages", {}))
        corrections[item_name] = tuple(item.get("corrections", ("none", "none")))

    extras = {k: copy.deepcopy(v) for k, v in table.items()
              if k not in ("items", "weights", "phase", "phase_modifiers", "primary_item", "calibration_joints")}
    return ExerciseConfig(
        name=exercise,
        thresholds=thresholds,
        messages=messages,
        corrections=corrections,
        weights=dict(table.get("weights", {})),
        primary_item=table.get("primary_item", ""),
        phase=PhaseThresholds.from_dict(table["phase"]) if "phase" in table else None,
        phase_modifiers=dict(table.get("phase_modifiers", {})),
        extras=extras,
        invalid_pose_message=raw.get("invalid_pose_message", "Pose not recognized"),
        min_keypoint_score=float(raw.get("min_keypoint_score", 0.5)),
    )
