"""Core modules for configuration, errors, and telemetry."""

from training_operator.core.config import Settings, get_settings
from training_operator.core.errors import (
    ConflictError,
    InvalidSpecError,
    OperatorError,
    TransientError,
    UnsupportedKindError,
)
from training_operator.core.telemetry import get_tracer, setup_telemetry

__all__ = [
    "ConflictError",
    "InvalidSpecError",
    "OperatorError",
    "Settings",
    "TransientError",
    "UnsupportedKindError",
    "get_settings",
    "get_tracer",
    "setup_telemetry",
]
