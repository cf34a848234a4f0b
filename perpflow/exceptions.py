"""
Exceptions thrown by perpflow package that are specific to this package only
"""


class PerpflowError(Exception):
    """Base class for every error raised by perpflow"""
    pass


class DataValidationError(PerpflowError):
    """Raised when a market dataset fails validation and a run cannot start"""

    def __init__(self, errors, warnings=None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__(f"data validation failed: {', '.join(self.errors)}")


class ConfigurationError(PerpflowError, ValueError):
    """Raised when a run configuration holds an unusable value"""
    pass


class InsufficientDataError(PerpflowError):
    """Raised when a dataset is too short to be split for analysis"""
    pass
