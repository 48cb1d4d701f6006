"""
exceptions.py - Programmer-error exceptions raised by the engine.

Data-quality problems (missing landmarks, degenerate geometry) are never raised;
they are reported as feedback. Only integration mistakes end up here.
"""


class FormEngineError(Exception):
    """Base class for all engine errors."""


class UnknownJointError(FormEngineError, KeyError):
    """Raised when a smoother set is asked for a key it was not created with."""

    def __init__(self, key: str, known):
        self.key = key
        self.known = sorted(known)
        super().__init__(f"Unknown joint key '{key}'. Known keys: {', '.join(self.known)}")

    def __str__(self) -> str:
        return self.args[0]


class ConfigError(FormEngineError, ValueError):
    """Raised when a threshold table or config file is malformed."""
