"""
Ordinal random field (ORF) smoothing of OMF distributions.

Every (user, item) cell is a node of a pairwise field. Two items of the same
user are linked when their similarity exceeds `min_similarity`; the potential
rewards both nodes taking the same level. Training cells are observed nodes
with a one-hot distribution on their level. Unknown nodes are relaxed with
damped mean-field updates:

    log q_ui' = log omf_ui + regularization * sum_j w_ij q_uj / sum_j |w_ij|
    q_ui     <- (1 - learn_rate) q_ui + learn_rate softmax(log q_ui')
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from ..errors import PreconditionError
from ..validators import ValidationError, validate_quantizer, validate_same_shape
from .ordinal import OrdinalDistribution, OrdinalPrediction, summarize_distributions
from .rating_matrix import RatingMatrix, level_indexes

CONVERGENCE_TOLERANCE = 1e-6
LOG_FLOOR = 1e-12


def _softmax(logits: np.ndarray) -> np.ndarray:
    shifted = logits - logits.max(axis=1, keepdims=True)
    exp = np.exp(shifted)
    return exp / exp.sum(axis=1, keepdims=True)


class ORF:
    """
    Similarity field smoother over OMF distributions.

    The smoother never touches the scorer or the calibrator; it only reads
    their distributions and returns a new OrdinalPrediction.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("ordrec.orf")
        self.sweeps_by_user: dict[int, int] = {}

    def _relax_user(
        self,
        omf_rows: np.ndarray,
        weights: np.ndarray,
        observed: np.ndarray,
        regularization: float,
        learn_rate: float,
        max_epoch: int,
    ) -> tuple[np.ndarray, int]:
        """
        Relax one user's unknown rows.

        Args:
            omf_rows: (n_unknown, K) calibrated distributions.
            weights: (n_unknown, n_unknown + n_observed) similarity weights,
                zero where no edge exists.
            observed: (n_observed, K) one-hot rows of training cells.
        """
        norms = np.abs(weights).sum(axis=1)
        linked = norms > 0
        current = omf_rows.copy()
        if not linked.any():
            return current, 0

        log_prior = np.log(np.clip(omf_rows[linked], LOG_FLOOR, None))
        edge_weights = weights[linked] / norms[linked, None]

        sweeps = 0
        for sweep in range(1, max_epoch + 1):
            sweeps = sweep
            states = np.vstack([current, observed])
            field = edge_weights @ states
            target = _softmax(log_prior + regularization * field)
            updated = (1.0 - learn_rate) * current[linked] + learn_rate * target
            updated /= updated.sum(axis=1, keepdims=True)
            change = float(np.max(np.abs(updated - current[linked])))
            current[linked] = updated
            if change < CONVERGENCE_TOLERANCE:
                break

        return current, sweeps

    def predict_ratings(
        self,
        r_train: RatingMatrix,
        r_unknown: RatingMatrix,
        item_similarity,
        omf_distributions: OrdinalDistribution,
        quantizer: Sequence[float],
        regularization: float = 1.0,
        learn_rate: float = 0.5,
        min_similarity: float = 0.1,
        max_epoch: int = 20,
    ) -> OrdinalPrediction:
        """
        Smooth OMF distributions over the item-item similarity graph.

        Cells without any neighbour above `min_similarity` are returned
        exactly as OMF produced them.
        """
        levels = validate_quantizer(quantizer)
        validate_same_shape(r_train.shape, r_unknown.shape, "train and unknown matrices")
        if isinstance(item_similarity, pd.DataFrame):
            item_similarity = item_similarity.to_numpy()
        similarity = np.asarray(item_similarity, dtype=float)
        validate_same_shape(
            similarity.shape, (r_unknown.item_count, r_unknown.item_count),
            "item similarity and item count",
        )
        if not 0 < learn_rate <= 1:
            raise ValidationError(f"ORF learn_rate must be in (0, 1], got {learn_rate}")
        if max_epoch < 0:
            raise ValidationError(f"max_epoch must be >= 0, got {max_epoch}")

        users, items = r_unknown.known_indexes()
        level_count = len(levels)
        probabilities = np.empty((len(users), level_count), dtype=float)
        for row, (u, i) in enumerate(zip(users, items)):
            try:
                distribution = np.asarray(omf_distributions[(int(u), int(i))], dtype=float)
            except KeyError:
                raise PreconditionError(f"No OMF distribution for cell ({u}, {i}); run OMF first.") from None
            if distribution.shape != (level_count,):
                raise ValidationError(
                    f"Distribution of cell ({u}, {i}) has {distribution.size} levels, expected {level_count}"
                )
            probabilities[row] = distribution

        indptr = r_unknown.matrix.indptr
        smoothed_cells = 0
        self.sweeps_by_user = {}
        for user in range(r_unknown.user_count):
            start, end = indptr[user], indptr[user + 1]
            if start == end:
                continue
            unknown_items = items[start:end]
            train_items, train_values = r_train.row_values(user)
            observed = np.eye(level_count)[level_indexes(train_values, levels)]
            nodes = np.concatenate([unknown_items, train_items])

            block = similarity[np.ix_(unknown_items, nodes)]
            weights = np.where(block > min_similarity, block, 0.0)
            weights[unknown_items[:, None] == nodes[None, :]] = 0.0

            relaxed, sweeps = self._relax_user(
                probabilities[start:end], weights, observed,
                regularization, learn_rate, max_epoch,
            )
            if sweeps:
                probabilities[start:end] = relaxed
                self.sweeps_by_user[user] = sweeps
                smoothed_cells += int((np.abs(weights).sum(axis=1) > 0).sum())

        self.logger.info(
            "ORF smoothing finished",
            extra={
                "event": "orf_predict_success",
                "shape": r_unknown.shape,
                "value": smoothed_cells,
            },
        )
        return summarize_distributions(users, items, probabilities, levels, r_unknown.shape)
