from typing import Any, Dict, Optional


class ScoringError(Exception):
    """Base class for failures raised by the scoring engine."""

    kind = "scoring_error"
    recoverable = False

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class InsufficientDataError(ScoringError):
    """Required joints never reach the confidence threshold for a usable run."""

    kind = "insufficient_data"


class PhaseDetectionError(ScoringError):
    """Velocity signal too noisy or ambiguous to locate the swing landmarks."""

    kind = "phase_detection"
    recoverable = True


class ConfigurationError(ScoringError):
    """Malformed weight or threshold tables, detected at load time."""

    kind = "configuration"


class InvariantViolation(ScoringError):
    """Internal guard tripped; indicates a logic defect."""

    kind = "invariant_violation"
