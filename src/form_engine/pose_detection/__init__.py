"""
Landmark input model for the analysis engine.
"""

from .landmarks import (
    LANDMARK_NAMES,
    NUM_LANDMARKS,
    Keypoint,
    LandmarkIndex,
    Point3D,
    keypoints_to_landmark_dict,
    parse_keypoints,
    to_keypoint,
)

__all__ = [
    'LANDMARK_NAMES',
    'NUM_LANDMARKS',
    'Keypoint',
    'LandmarkIndex',
    'Point3D',
    'keypoints_to_landmark_dict',
    'parse_keypoints',
    'to_keypoint',
]
