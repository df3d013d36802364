# src/early_r/errors.py
"""Exceptions raised by the early_r package."""


class EarlyRError(Exception):
    """Base class for every error raised by early_r."""


class InvalidParameterError(EarlyRError, ValueError):
    """A parameter failed validation before any computation started."""

    def __init__(self, parameter, reason):
        self.parameter = parameter
        self.reason = reason
        super().__init__(f"invalid {parameter}: {reason}")


class EmptyProfileError(EarlyRError):
    """Too few informative days to fit R."""


class DegenerateLikelihoodError(EarlyRError):
    """A day with zero force of infection reported a positive count."""
