from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
import pandas as pd


class ValidationError(ValueError):
    """Raised when input data fails validation."""


REQUIRED_COLUMNS = {"userId", "itemId", "rating"}


def validate_required_columns(df: pd.DataFrame, required: set[str]) -> None:
    """
    Validate that DataFrame contains all required columns.
    """
    missing = required - set(df.columns)
    if missing:
        raise ValidationError(f"Missing required columns: {sorted(missing)}")


def validate_ratings_schema(
    df: pd.DataFrame,
    logger: logging.Logger | None = None,
    step_name: str = "ratings_schema_validation"
) -> None:
    """
    Validate the schema of the ratings DataFrame.

    Checks:
        - required columns exist
        - rating column is numeric
        - no rating is zero (zero is reserved for "unrated")
    """
    if logger:
        logger.info(
            "Validating ratings schema",
            extra={"event": f"validate_schema_{step_name}"}
        )

    validate_required_columns(df, REQUIRED_COLUMNS)

    if not pd.api.types.is_numeric_dtype(df["rating"]):
        raise ValidationError("Column 'rating' must be numeric.")

    if (df["rating"] == 0).any():
        raise ValidationError("Column 'rating' must not contain zeros; zero means unrated.")

    if logger:
        logger.info(
            "Ratings schema validated successfully",
            extra={"event": f"validate_schema_{step_name}_success"}
        )


def validate_same_shape(left: tuple[int, int], right: tuple[int, int], what: str = "matrices") -> None:
    """
    Raise ShapeMismatchError when two (userCount, itemCount) shapes differ.
    """
    if tuple(left) != tuple(right):
        from .errors import ShapeMismatchError

        raise ShapeMismatchError(f"Shape mismatch between {what}: {tuple(left)} != {tuple(right)}")


def validate_quantizer(quantizer: Sequence[float]) -> np.ndarray:
    """
    Validate a quantizer and return it as a float array.

    A quantizer needs at least two levels, all finite and strictly increasing.
    """
    levels = np.asarray(list(quantizer), dtype=float)
    if levels.ndim != 1 or levels.size < 2:
        raise ValidationError(f"Quantizer needs at least 2 levels, got {list(quantizer)}")
    if not np.all(np.isfinite(levels)):
        raise ValidationError(f"Quantizer levels must be finite, got {list(quantizer)}")
    if np.any(np.diff(levels) <= 0):
        raise ValidationError(f"Quantizer levels must be strictly increasing, got {list(quantizer)}")
    return levels
