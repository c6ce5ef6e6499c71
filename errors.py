# errors.py
"""Exceptions raised by the contact solver."""


class ConfigurationError(ValueError):
    """Invalid construction data (footprint, friction, frames...)."""


class SolverFailure(RuntimeError):
    """A timestep could not be resolved numerically."""

    def __init__(self, message: str, status: str = "unknown"):
        super().__init__(message)
        self.status = status
