"""
landmarks.py - Landmark model consumed by the analysis engine.

The engine never runs pose estimation itself. An upstream detector hands over
33 BlazePose landmarks per frame, either as a list ordered by landmark index or
as the name-keyed ``{"left_knee": [x, y, z, visibility], ...}`` dictionary that
MediaPipe wrappers usually produce. Both shapes are normalised here.
"""
import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Union

import numpy as np

LANDMARK_NAMES = [
    "nose", "left_eye_inner", "left_eye", "left_eye_outer",
    "right_eye_inner", "right_eye", "right_eye_outer", "left_ear",
    "right_ear", "mouth_left", "mouth_right", "left_shoulder",
    "right_shoulder", "left_elbow", "right_elbow", "left_wrist",
    "right_wrist", "left_pinky", "right_pinky", "left_index",
    "right_index", "left_thumb", "right_thumb", "left_hip",
    "right_hip", "left_knee", "right_knee", "left_ankle",
    "right_ankle", "left_heel", "right_heel", "left_foot_index",
    "right_foot_index"
]

NUM_LANDMARKS = len(LANDMARK_NAMES)


class LandmarkIndex(IntEnum):
    """BlazePose landmark indices."""
    NOSE = 0
    LEFT_EYE_INNER = 1
    LEFT_EYE = 2
    LEFT_EYE_OUTER = 3
    RIGHT_EYE_INNER = 4
    RIGHT_EYE = 5
    RIGHT_EYE_OUTER = 6
    LEFT_EAR = 7
    RIGHT_EAR = 8
    MOUTH_LEFT = 9
    MOUTH_RIGHT = 10
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_PINKY = 17
    RIGHT_PINKY = 18
    LEFT_INDEX = 19
    RIGHT_INDEX = 20
    LEFT_THUMB = 21
    RIGHT_THUMB = 22
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32

    @property
    def landmark_name(self) -> str:
        return LANDMARK_NAMES[self.value]


@dataclass(frozen=True)
class Keypoint:
    """One detected landmark. ``score`` is the detector's confidence in [0, 1]."""
    x: float
    y: float
    z: Optional[float] = None
    score: Optional[float] = None

    def is_finite(self) -> bool:
        values = [self.x, self.y] + ([self.z] if self.z is not None else [])
        return all(math.isfinite(v) for v in values)


class Point3D(NamedTuple):
    x: float
    y: float
    z: float = 0.0

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=float)

    @classmethod
    def from_array(cls, arr) -> "Point3D":
        return cls(float(arr[0]), float(arr[1]), float(arr[2]))


KeypointLike = Union[Keypoint, Mapping[str, Any], Sequence[float]]


def to_keypoint(raw: KeypointLike) -> Keypoint:
    """
    Convert one raw landmark into a Keypoint.

    Accepts a Keypoint, a mapping with ``x``/``y`` and optional ``z`` and
    ``score`` (or ``visibility``), or a ``[x, y, z, visibility]`` row.
    """
    if isinstance(raw, Keypoint):
        return raw
    if isinstance(raw, Mapping):
        score = raw.get("score", raw.get("visibility"))
        z = raw.get("z")
        return Keypoint(
            x=float(raw["x"]),
            y=float(raw["y"]),
            z=None if z is None else float(z),
            score=None if score is None else float(score),
        )
    values = list(raw)
    if len(values) < 2:
        raise ValueError(f"Landmark row needs at least x and y, got {values!r}")
    z = float(values[2]) if len(values) > 2 and values[2] is not None else None
    score = float(values[3]) if len(values) > 3 and values[3] is not None else None
    return Keypoint(float(values[0]), float(values[1]), z, score)


def parse_keypoints(frame: Union[Sequence[KeypointLike], Mapping[str, KeypointLike]]) -> List[Keypoint]:
    """
    Normalise a frame into an index-ordered list of Keypoints.

    Name-keyed dictionaries are laid out by LANDMARK_NAMES; landmarks missing
    from the dictionary become zero-score keypoints so that index lookups stay
    total and validation rejects them.
    """
    if isinstance(frame, Mapping):
        keypoints = []
        for name in LANDMARK_NAMES:
            if name in frame:
                keypoints.append(to_keypoint(frame[name]))
            else:
                keypoints.append(Keypoint(0.0, 0.0, None, 0.0))
        return keypoints
    return [to_keypoint(raw) for raw in frame]


def keypoints_to_landmark_dict(keypoints: Sequence[Keypoint]) -> Dict[str, List[float]]:
    """Inverse of parse_keypoints for name-keyed consumers."""
    landmarks = {}
    for name, kp in zip(LANDMARK_NAMES, keypoints):
        landmarks[name] = [kp.x, kp.y, kp.z if kp.z is not None else 0.0,
                           kp.score if kp.score is not None else 0.0]
    return landmarks
