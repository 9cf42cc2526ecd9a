from __future__ import annotations

import logging
from typing import Optional

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from .config import Preferences
from .core.pref_relations import PrefRelations
from .core.rating_matrix import RatingMatrix


def _mean_centered(matrix: RatingMatrix) -> np.ndarray:
    """
    Dense user x item array centered on each user's mean; unknown cells stay 0.
    """
    dense = matrix.to_dense()
    known = dense != 0
    means = matrix.user_means()
    return np.where(known, dense - means[:, None], 0.0)


def _cosine(rows: np.ndarray) -> np.ndarray:
    if rows.shape[0] == 0:
        return np.zeros((0, 0))
    similarity = cosine_similarity(rows)
    return np.clip(similarity, -1.0, 1.0)


def pearson_of_rows(matrix: RatingMatrix) -> np.ndarray:
    """
    User-user Pearson correlation: cosine of mean-centered rating rows.
    """
    return _cosine(_mean_centered(matrix))


def pearson_of_columns(matrix: RatingMatrix) -> np.ndarray:
    """
    Item-item Pearson correlation: cosine of mean-centered rating columns.
    """
    transposed = RatingMatrix(matrix.matrix.T)
    return _cosine(_mean_centered(transposed))


def _centered_positions(pr: PrefRelations) -> np.ndarray:
    positions = pr.get_position_matrix()
    dense = positions.to_dense()
    return np.where(dense != 0, dense - Preferences.EQUALLY_PREFERRED, 0.0)


def cosine_of_pref_relations(pr: PrefRelations) -> np.ndarray:
    """
    User-user cosine over preference positions centered on EQUALLY_PREFERRED.
    """
    return _cosine(_centered_positions(pr))


def item_cosine_of_pref_relations(pr: PrefRelations) -> np.ndarray:
    """
    Item-item cosine over preference positions centered on EQUALLY_PREFERRED.
    """
    return _cosine(_centered_positions(pr).T)


class RatingSimilarityEngine:
    """
    Engine for computing user-user and item-item similarities from ratings.

    High-level workflow:
        1. Mean-center the rating matrix.
        2. Compute cosine similarity of rows (users) or columns (items).
        3. Return the dense similarity matrix.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("ordrec.similarity")

    def _log_summary(self, event: str, similarity: np.ndarray) -> None:
        self.logger.info(
            "Similarity matrix computed",
            extra={
                "event": f"{event}_success",
                "shape": similarity.shape,
                "value": {
                    "sum": round(float(similarity.sum()), 4),
                    "abs_sum": round(float(np.abs(similarity).sum()), 4),
                },
            },
        )

    def user_similarities(self, r_train: RatingMatrix) -> np.ndarray:
        self.logger.info(
            "Computing user-user Pearson similarity",
            extra={"event": "compute_user_user_pearson", "shape": r_train.shape},
        )
        similarity = pearson_of_rows(r_train)
        self._log_summary("compute_user_user_pearson", similarity)
        return similarity

    def item_similarities(self, r_train: RatingMatrix) -> np.ndarray:
        self.logger.info(
            "Computing item-item Pearson similarity",
            extra={"event": "compute_item_item_pearson", "shape": r_train.shape},
        )
        similarity = pearson_of_columns(r_train)
        self._log_summary("compute_item_item_pearson", similarity)
        return similarity


class PreferenceSimilarityEngine(RatingSimilarityEngine):
    """
    Engine for similarities derived from preference relations.
    """

    def user_similarities(self, pr_train: PrefRelations) -> np.ndarray:
        self.logger.info(
            "Computing user-user preference cosine similarity",
            extra={"event": "compute_user_user_pref_cosine", "shape": pr_train.shape},
        )
        similarity = cosine_of_pref_relations(pr_train)
        self._log_summary("compute_user_user_pref_cosine", similarity)
        return similarity

    def item_similarities(self, pr_train: PrefRelations) -> np.ndarray:
        self.logger.info(
            "Computing item-item preference cosine similarity",
            extra={"event": "compute_item_item_pref_cosine", "shape": pr_train.shape},
        )
        similarity = item_cosine_of_pref_relations(pr_train)
        self._log_summary("compute_item_item_pref_cosine", similarity)
        return similarity
