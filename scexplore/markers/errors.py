"""Exceptions raised by marker testing."""


class MarkerTestError(Exception):
    """Base class for marker testing errors."""


class ConfigurationError(MarkerTestError, ValueError):
    """Invalid arguments, detected before any feature is tested."""


class InvalidGroupError(ConfigurationError):
    """The two label sets cannot define a valid two-group comparison."""


class ModelFitError(MarkerTestError, RuntimeError):
    """A per-feature model fit or test failed."""

    def __init__(self, feature: str, reason: str):
        self.feature = feature
        self.reason = reason
        super().__init__(f"Model fit failed for '{feature}': {reason}")
