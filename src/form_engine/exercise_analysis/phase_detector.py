"""
phase_detector.py - Hysteresis state machine for movement phases and rep counting.

Every repetitive exercise follows the same cycle on its primary angle:
top -> descending -> bottom -> ascending -> top. Only the thresholds and the
phase names differ per exercise.
"""
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Mapping, NamedTuple, Union

logger = logging.getLogger(__name__)


class SquatPhase(str, Enum):
    STANDING = "standing"
    DESCENDING = "descending"
    BOTTOM = "bottom"
    ASCENDING = "ascending"


class PushupPhase(str, Enum):
    UP = "up"
    DESCENDING = "descending"
    BOTTOM = "bottom"
    ASCENDING = "ascending"


class LungePhase(str, Enum):
    STANDING = "standing"
    DESCENDING = "descending"
    BOTTOM = "bottom"
    ASCENDING = "ascending"


class DeadliftPhase(str, Enum):
    SETUP = "setup"
    LIFT = "lift"
    LOCKOUT = "lockout"
    DESCENT = "descent"


class OverheadPhase(str, Enum):
    START = "start"
    PRESSING = "pressing"
    LOCKOUT = "lockout"
    LOWERING = "lowering"


class PlankPhase(str, Enum):
    HOLDING = "holding"
    RESTING = "resting"


Phase = Union[SquatPhase, PushupPhase, LungePhase, DeadliftPhase, OverheadPhase, PlankPhase]


class PhaseCycle(NamedTuple):
    """Exercise-specific names for the four positions of the generic cycle."""
    top: Enum
    descending: Enum
    bottom: Enum
    ascending: Enum


SQUAT_CYCLE = PhaseCycle(SquatPhase.STANDING, SquatPhase.DESCENDING, SquatPhase.BOTTOM, SquatPhase.ASCENDING)
PUSHUP_CYCLE = PhaseCycle(PushupPhase.UP, PushupPhase.DESCENDING, PushupPhase.BOTTOM, PushupPhase.ASCENDING)
LUNGE_CYCLE = PhaseCycle(LungePhase.STANDING, LungePhase.DESCENDING, LungePhase.BOTTOM, LungePhase.ASCENDING)
DEADLIFT_CYCLE = PhaseCycle(DeadliftPhase.LOCKOUT, DeadliftPhase.DESCENT, DeadliftPhase.SETUP, DeadliftPhase.LIFT)
OVERHEAD_CYCLE = PhaseCycle(OverheadPhase.START, OverheadPhase.PRESSING, OverheadPhase.LOCKOUT, OverheadPhase.LOWERING)


@dataclass(frozen=True)
class PhaseThresholds:
    top: float
    bottom: float
    hysteresis: float = 5.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PhaseThresholds":
        return cls(float(data["top"]), float(data["bottom"]), float(data.get("hysteresis", 5.0)))


@dataclass(frozen=True)
class PhaseState:
    """
    phase: current phase.
    bottom_reached: the bottom was visited since the last top entry.
    rep_count: completed reps.
    last_angle: reference angle for the hysteresis comparison.
    """
    phase: Enum
    bottom_reached: bool = False
    rep_count: int = 0
    last_angle: float = 180.0


class PhaseUpdate(NamedTuple):
    phase: Enum
    rep_completed: bool
    state: PhaseState


def initial_phase_state(cycle: PhaseCycle, initial_angle: float = 180.0, initial_phase: Enum = None) -> PhaseState:
    """Start at the top unless told otherwise; starting at the bottom counts as having reached it."""
    phase = initial_phase if initial_phase is not None else cycle.top
    return PhaseState(phase=phase, bottom_reached=phase == cycle.bottom, last_angle=initial_angle)


def update_phase(angle: float, state: PhaseState, thresholds: PhaseThresholds, cycle: PhaseCycle) -> PhaseUpdate:
    """
    Advance the phase state machine by one frame.

    Above ``thresholds.top`` is the top phase; entering it from the ascending
    phase after the bottom was reached completes a rep. Below
    ``thresholds.bottom`` is the bottom phase. In between, the direction is
    taken from the change against the reference angle, but only once that
    change exceeds the hysteresis band; smaller changes keep the previous
    phase and the reference angle.

    Returns a new PhaseState, the input is never modified.
    """
    phase = state.phase
    bottom_reached = state.bottom_reached
    rep_count = state.rep_count
    reference = state.last_angle
    rep_completed = False

    if angle > thresholds.top:
        if state.phase == cycle.ascending and state.bottom_reached:
            rep_completed = True
            rep_count += 1
        bottom_reached = False
        phase = cycle.top
        reference = angle
    elif angle < thresholds.bottom:
        phase = cycle.bottom
        bottom_reached = True
        reference = angle
    else:
        delta = angle - state.last_angle
        if abs(delta) > thresholds.hysteresis:
            phase = cycle.descending if delta < 0 else cycle.ascending
            reference = angle

    if phase != state.phase:
        logger.debug(f"Phase {state.phase.value} -> {phase.value} at {angle:.1f}")
    if rep_completed:
        logger.info(f"Rep {rep_count} completed")

    new_state = replace(state, phase=phase, bottom_reached=bottom_reached,
                        rep_count=rep_count, last_angle=reference)
    return PhaseUpdate(phase, rep_completed, new_state)
