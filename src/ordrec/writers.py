from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd

from .validators import ValidationError


def save_similarity_matrix_to_csv(
    similarity: np.ndarray,
    output_path: Path,
    logger: logging.Logger | None = None,
) -> None:
    """
    Save a dense similarity matrix to a CSV file indexed by entity index.
    Ensures output folder exists and logs the operation using JSON logs.
    """
    _logger = logger or logging.getLogger("ordrec.io")
    similarity_df = pd.DataFrame(similarity)

    _logger.info(
        "Saving similarity matrix to CSV",
        extra={
            "event": "save_similarity_csv",
            "shape": similarity_df.shape,
            "output_path": str(output_path),
        },
    )

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    similarity_df.to_csv(output_path, encoding="utf-8-sig")

    _logger.info(
        "Similarity matrix saved",
        extra={"event": "save_similarity_csv_success", "output_path": str(output_path)},
    )


def load_similarity_matrix_from_csv(
    input_path: Path,
    logger: logging.Logger | None = None,
) -> np.ndarray:
    """
    Load a similarity matrix written by save_similarity_matrix_to_csv.

    Raises:
        FileNotFoundError: If the cache file does not exist.
        ValidationError: If the stored matrix is not square.
    """
    _logger = logger or logging.getLogger("ordrec.io")

    similarity_df = pd.read_csv(input_path, index_col=0, encoding="utf-8-sig")
    similarity = similarity_df.to_numpy(dtype=float)
    if similarity.ndim != 2 or similarity.shape[0] != similarity.shape[1]:
        raise ValidationError(f"Similarity matrix in {input_path} is not square: {similarity.shape}")

    _logger.info(
        "Similarity matrix loaded",
        extra={
            "event": "load_similarity_csv_success",
            "shape": similarity.shape,
            "output_path": str(input_path),
        },
    )
    return similarity
