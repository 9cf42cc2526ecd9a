"""
Matrix-level evaluation metrics.

RMSE and MAE are computed over the cells known in the truth matrix; a cell
missing from the prediction counts as a prediction of 0. NDCG@n is averaged
over users with at least one relevant item, as are precision@k and recall@k.
"""

from __future__ import annotations

from typing import Mapping, Sequence, Tuple

import numpy as np

from ..core.rating_matrix import RatingMatrix
from ..validators import validate_same_shape
from .protocol import ndcg_at_k, precision_at_k, recall_at_k


def _errors(r_truth: RatingMatrix, r_predicted: RatingMatrix) -> np.ndarray:
    validate_same_shape(r_truth.shape, r_predicted.shape, "truth and predicted matrices")
    users, items, truth = r_truth.known_triplets()
    if truth.size == 0:
        raise ValueError("Truth matrix has no known cells to evaluate.")
    predicted = np.asarray(r_predicted.matrix[users, items], dtype=float).ravel()
    return predicted - truth


def rmse(r_truth: RatingMatrix, r_predicted: RatingMatrix) -> float:
    errors = _errors(r_truth, r_predicted)
    return float(np.sqrt(np.mean(errors ** 2)))


def mae(r_truth: RatingMatrix, r_predicted: RatingMatrix) -> float:
    errors = _errors(r_truth, r_predicted)
    return float(np.mean(np.abs(errors)))


def ndcg(
    relevant_items_by_user: Mapping[int, Sequence[int]],
    top_n_items_by_user: Mapping[int, Sequence[int]],
    n: int,
) -> float:
    """
    Mean NDCG@n over users that have at least one relevant item.

    Users with relevant items but no ranked list score 0. Returns 0.0 when
    no user has a relevant item.
    """
    scores = []
    for user, relevant in relevant_items_by_user.items():
        relevant_set = set(relevant)
        if not relevant_set:
            continue
        ranked = list(top_n_items_by_user.get(user, []))
        scores.append(ndcg_at_k(ranked, relevant_set, n))
    if not scores:
        return 0.0
    return float(np.mean(scores))


def precision_recall(
    relevant_items_by_user: Mapping[int, Sequence[int]],
    top_n_items_by_user: Mapping[int, Sequence[int]],
    k: int,
) -> Tuple[float, float]:
    """
    Mean precision@k and recall@k over users with at least one relevant item.
    """
    precisions, recalls = [], []
    for user, relevant in relevant_items_by_user.items():
        relevant_set = set(relevant)
        if not relevant_set:
            continue
        ranked = list(top_n_items_by_user.get(user, []))
        precisions.append(precision_at_k(ranked, relevant_set, k))
        recalls.append(recall_at_k(ranked, relevant_set, k))
    if not precisions:
        return 0.0, 0.0
    return float(np.mean(precisions)), float(np.mean(recalls))
