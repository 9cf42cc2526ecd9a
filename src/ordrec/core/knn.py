from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from ..validators import ValidationError, validate_same_shape
from .pref_relations import PrefRelations
from .rating_matrix import RatingMatrix


def _mean_centered_knn(
    values: RatingMatrix,
    unknown: RatingMatrix,
    user_similarity: np.ndarray,
    neighbor_count: int,
) -> RatingMatrix:
    """
    r_ui = mean_u + sum_v s_uv (r_vi - mean_v) / sum_v |s_uv|

    over the `neighbor_count` most similar users v != u with positive
    similarity who rated item i. Falls back to mean_u without neighbours.
    """
    if neighbor_count < 1:
        raise ValidationError(f"neighbor_count must be >= 1, got {neighbor_count}")
    similarity = np.asarray(user_similarity, dtype=float)
    validate_same_shape(similarity.shape, (values.user_count, values.user_count), "user similarity and user count")
    validate_same_shape(values.shape, unknown.shape, "train and unknown matrices")

    means = values.user_means()
    dense = values.to_dense()
    known = dense != 0
    centered = np.where(known, dense - means[:, None], 0.0)

    users, items = unknown.known_indexes()
    predictions = np.empty(len(users), dtype=float)
    for row, (u, i) in enumerate(zip(users, items)):
        raters = np.flatnonzero(known[:, i])
        raters = raters[raters != u]
        sims = similarity[u, raters]
        positive = sims > 0
        raters, sims = raters[positive], sims[positive]
        if raters.size == 0:
            predictions[row] = means[u]
            continue
        if raters.size > neighbor_count:
            # stable: highest similarity first, lower user index on ties
            order = np.lexsort((raters, -sims))[:neighbor_count]
            raters, sims = raters[order], sims[order]
        predictions[row] = means[u] + sims @ centered[raters, i] / np.abs(sims).sum()

    return RatingMatrix.from_triplets(users, items, predictions, unknown.shape, keep_zeros=True)


class UserKNN:
    """
    Rating-based user-user neighbourhood predictor.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("ordrec.user_knn")

    def predict_ratings(
        self,
        r_train: RatingMatrix,
        r_unknown: RatingMatrix,
        user_similarity: np.ndarray,
        neighbor_count: int,
    ) -> RatingMatrix:
        predicted = _mean_centered_knn(r_train, r_unknown, user_similarity, neighbor_count)
        self.logger.info(
            "UserKNN predictions computed",
            extra={"event": "user_knn_predict_success", "shape": predicted.shape},
        )
        return predicted


class PrefUserKNN:
    """
    Preference-based user-user neighbourhood predictor.

    Works on preference positions instead of ratings; the output is a score
    for ranking, on the [LESS_PREFERRED, PREFERRED] position scale.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("ordrec.pref_knn")

    def predict_ratings(
        self,
        pr_train: PrefRelations,
        r_unknown: RatingMatrix,
        neighbor_count: int,
        user_similarity: np.ndarray,
    ) -> RatingMatrix:
        positions = pr_train.get_position_matrix()
        predicted = _mean_centered_knn(positions, r_unknown, user_similarity, neighbor_count)
        self.logger.info(
            "PrefKNN predictions computed",
            extra={"event": "pref_knn_predict_success", "shape": predicted.shape},
        )
        return predicted
