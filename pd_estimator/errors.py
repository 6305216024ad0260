"""
Exceptions raised by the PD estimator.

Measurement problems are reported as issues on the result, not raised.
These cover caller errors and I/O failures around the engine.
"""


class PDEstimatorError(Exception):
    """Base class for estimator errors."""


class InvalidMeasurementError(PDEstimatorError):
    """Raised when saving a measurement that still has validation issues."""
    
    def __init__(self, issues):
        self.issues = list(issues)
        super().__init__("Fix highlighted issues before saving this measurement.")


class ExportError(PDEstimatorError):
    """Raised when a measurement image cannot be rendered or encoded."""


class SessionNotFoundError(PDEstimatorError):
    """Raised when a measurement session id is unknown."""
