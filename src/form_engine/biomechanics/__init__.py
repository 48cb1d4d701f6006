"""
Cross-cutting biomechanical sub-analyzers shared by the exercise analyzers.
"""

from .capabilities import (
    Capability,
    FrameContext,
    NeckAlignmentCapability,
    PelvicTiltCapability,
    TorsoConsistencyCapability,
    TorsoRotationCapability,
    WeightShiftCapability,
    run_capabilities,
)
from .knee_alignment import KneeAlignmentResult, analyze_knee_alignment_3d
from .neck_alignment import NeckAlignmentResult, analyze_neck_alignment
from .pelvic_tilt import PelvicTiltResult, analyze_pelvic_tilt
from .torso_consistency import TorsoConsistencyResult, analyze_torso_consistency
from .torso_rotation import TorsoRotationResult, analyze_torso_rotation
from .weight_shift import WeightShiftResult, analyze_weight_shift

__all__ = [
    'Capability',
    'FrameContext',
    'KneeAlignmentResult',
    'NeckAlignmentCapability',
    'NeckAlignmentResult',
    'PelvicTiltCapability',
    'PelvicTiltResult',
    'TorsoConsistencyCapability',
    'TorsoConsistencyResult',
    'TorsoRotationCapability',
    'TorsoRotationResult',
    'WeightShiftCapability',
    'WeightShiftResult',
    'analyze_knee_alignment_3d',
    'analyze_neck_alignment',
    'analyze_pelvic_tilt',
    'analyze_torso_consistency',
    'analyze_torso_rotation',
    'analyze_weight_shift',
    'run_capabilities',
]
