from __future__ import annotations

from .validators import ValidationError


class OrdrecError(RuntimeError):
    """Base class for failures raised by the prediction pipeline."""


class PreconditionError(OrdrecError):
    """Raised when a required setup stage has not been run."""


class DivergenceError(OrdrecError):
    """
    Raised when gradient updates produce non-finite values.

    Usually a sign of an excessive learning rate or too little regularization.
    The run is aborted; callers are expected to fix the configuration.
    """


class ShapeMismatchError(ValidationError):
    """Raised when two matrices combined by an operation differ in shape."""


__all__ = [
    "OrdrecError",
    "PreconditionError",
    "DivergenceError",
    "ShapeMismatchError",
    "ValidationError",
]
