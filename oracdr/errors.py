"""
Exceptions raised by the calibration selection engine.

Every failure raised out of a calibration query derives from CalibrationError so that
the caller (usually the walker) can decide whether to abort the observation or skip
the processing step that needed the calibration.
"""


class CalibrationError(Exception):
    """
    Base exception for all calibration selection errors

    Args:
        message (str): human readable description of the problem
        details (dict): [optional] extra context (calibration name, index file, etc.)

    Attributes:
        message (str): human readable description of the problem
        details (dict): extra context about the failure
    """

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return "{0} (Details: {1})".format(self.message, self.details)
        return self.message


class ConfigurationError(CalibrationError, ValueError):
    """
    Raised when the engine is not set up well enough to answer a query: missing rules
    or static index files, index/rules schema mismatches, bad rule syntax, or an
    override demanded without a value.
    """
    pass


class CalibrationNotFoundError(CalibrationError, LookupError):
    """
    Raised when no index entry satisfies the rules and there is no fallback default,
    or when a matched entry is missing a required column.
    """
    pass


class OverrideRejectedError(CalibrationError):
    """Raised when a value forced by the user fails verification against the current observation."""
    pass


StaleOverrideError = OverrideRejectedError


class TauConversionError(CalibrationError, ValueError):
    """Raised when an opacity cannot be converted between wavelengths (e.g. the opacity is too high)."""
    pass
