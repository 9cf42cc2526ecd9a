"""
Ordinal calibration (OMF): from a continuous score to a distribution over
rating levels.

Each user u owns K-1 increasing thresholds t_u and

    P(level <= k | u, i) = sigmoid(t_uk - f_ui)

where f_ui is the scorer's prediction. Thresholds are fitted with torch
autograd by minimizing the negative log-likelihood of the training levels.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import torch

from ..errors import DivergenceError, PreconditionError
from ..validators import ValidationError, validate_quantizer, validate_same_shape
from .rating_matrix import RatingMatrix, level_indexes

MIN_THRESHOLD_GAP = 1e-3
QUANTILE_BOUNDS = (0.01, 0.99)

OrdinalDistribution = Dict[Tuple[int, int], np.ndarray]


@dataclass(frozen=True)
class OrdinalPrediction:
    """
    Result of an ordinal predictor.

    Attributes:
        expectations: Probability-weighted mean level of every unknown cell.
        most_likely: Level with the highest probability of every unknown cell.
        distributions: (user, item) -> K probabilities, one per level.
    """
    expectations: RatingMatrix
    most_likely: RatingMatrix
    distributions: OrdinalDistribution


def summarize_distributions(
    users: np.ndarray,
    items: np.ndarray,
    probabilities: np.ndarray,
    levels: np.ndarray,
    shape: Tuple[int, int],
) -> OrdinalPrediction:
    """
    Build an OrdinalPrediction from per-cell probability rows.

    Row r of `probabilities` belongs to cell (users[r], items[r]).
    """
    expectations = np.sum(probabilities * levels, axis=1)
    most_likely = levels[np.argmax(probabilities, axis=1)]
    distributions = {
        (int(u), int(i)): probabilities[row].copy()
        for row, (u, i) in enumerate(zip(users, items))
    }
    return OrdinalPrediction(
        expectations=RatingMatrix.from_triplets(users, items, expectations, shape, keep_zeros=True),
        most_likely=RatingMatrix.from_triplets(users, items, most_likely, shape, keep_zeros=True),
        distributions=distributions,
    )


def project_thresholds(thresholds: np.ndarray) -> np.ndarray:
    """
    Make every row strictly increasing by pushing each threshold to at least
    MIN_THRESHOLD_GAP above its predecessor, left to right.
    """
    projected = np.array(thresholds, dtype=float, copy=True)
    for k in range(1, projected.shape[-1]):
        projected[..., k] = np.maximum(projected[..., k], projected[..., k - 1] + MIN_THRESHOLD_GAP)
    return projected


def level_probabilities(thresholds: np.ndarray, scores: np.ndarray) -> np.ndarray:
    """
    K-level distributions for rows of thresholds (N, K-1) and scores (N,).
    """
    cumulative = 0.5 * (1.0 + np.tanh(0.5 * (thresholds - scores[:, None])))
    padded = np.hstack([
        np.zeros((len(scores), 1)),
        cumulative,
        np.ones((len(scores), 1)),
    ])
    probabilities = np.clip(np.diff(padded, axis=1), 0.0, None)
    return probabilities / probabilities.sum(axis=1, keepdims=True)


def _torch_level_probabilities(thresholds: torch.Tensor, scores: torch.Tensor) -> torch.Tensor:
    cumulative = torch.sigmoid(thresholds - scores.unsqueeze(1))
    zeros = torch.zeros((scores.shape[0], 1), dtype=cumulative.dtype)
    ones = torch.ones((scores.shape[0], 1), dtype=cumulative.dtype)
    padded = torch.cat([zeros, cumulative, ones], dim=1)
    return padded[:, 1:] - padded[:, :-1]


class OMF:
    """
    Ordinal matrix factorization calibrator.

    Example:
        omf = OMF()
        prediction = omf.predict_ratings(r_train, r_unknown, r_scores, [1, 2, 3, 4, 5])
        prediction.expectations, prediction.most_likely, prediction.distributions
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("ordrec.omf")
        self.thresholds: Optional[np.ndarray] = None
        self.global_thresholds: Optional[np.ndarray] = None

    # ------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------
    @staticmethod
    def initial_thresholds(scores: np.ndarray, level_idx: np.ndarray, level_count: int) -> np.ndarray:
        """
        Global thresholds at the score quantiles matching the cumulative
        frequency of each training level.
        """
        if scores.size == 0:
            return project_thresholds(np.arange(level_count - 1, dtype=float) + 0.5)
        cumulative = np.array([np.mean(level_idx <= k) for k in range(level_count - 1)])
        quantiles = np.clip(cumulative, *QUANTILE_BOUNDS)
        return project_thresholds(np.quantile(scores, quantiles))

    # ------------------------------------------------------------
    # Fitting
    # ------------------------------------------------------------
    def fit(
        self,
        users: np.ndarray,
        scores: np.ndarray,
        level_idx: np.ndarray,
        user_count: int,
        level_count: int,
        max_epoch: int,
        learn_rate: float,
        regularization: float,
    ) -> np.ndarray:
        """
        Fit per-user thresholds and return them as a (user_count, K-1) array.

        The loss is the sum over users of their mean negative log-likelihood
        plus regularization * ||t_u - t_global||^2.
        """
        init = self.initial_thresholds(scores, level_idx, level_count)
        self.global_thresholds = init

        anchor = torch.tensor(init, dtype=torch.float64)
        theta = torch.tensor(np.tile(init, (user_count, 1)), dtype=torch.float64, requires_grad=True)
        user_t = torch.as_tensor(users, dtype=torch.long)
        score_t = torch.as_tensor(scores, dtype=torch.float64)
        level_t = torch.as_tensor(level_idx, dtype=torch.long)
        counts = torch.bincount(user_t, minlength=user_count).clamp(min=1).to(torch.float64)
        weights = 1.0 / counts[user_t]

        optimizer = torch.optim.SGD([theta], lr=learn_rate)

        for epoch in range(1, max_epoch + 1):
            optimizer.zero_grad()
            probabilities = _torch_level_probabilities(theta[user_t], score_t)
            likelihood = probabilities.gather(1, level_t.unsqueeze(1)).squeeze(1).clamp_min(1e-12)
            nll = -(torch.log(likelihood) * weights).sum()
            loss = nll + regularization * ((theta - anchor) ** 2).sum()

            if not torch.isfinite(loss):
                raise DivergenceError(f"OMF loss became non-finite at epoch {epoch}.")

            loss.backward()
            optimizer.step()

            with torch.no_grad():
                for k in range(1, level_count - 1):
                    theta[:, k] = torch.maximum(theta[:, k], theta[:, k - 1] + MIN_THRESHOLD_GAP)
                if not torch.all(torch.isfinite(theta)):
                    raise DivergenceError(f"OMF thresholds became non-finite at epoch {epoch}.")

            self.logger.debug(
                "OMF epoch finished",
                extra={"event": "omf_epoch", "epoch": epoch, "loss": float(loss.item())},
            )

        thresholds = theta.detach().numpy().copy()
        self.thresholds = thresholds
        return thresholds

    # ------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------
    def predict_ratings(
        self,
        r_train: RatingMatrix,
        r_unknown: RatingMatrix,
        r_scores: RatingMatrix,
        quantizer: Sequence[float],
        max_epoch: int = 200,
        learn_rate: float = 0.5,
        regularization: float = 0.01,
    ) -> OrdinalPrediction:
        """
        Calibrate `r_scores` against the training levels and predict the
        distribution of every cell of `r_unknown`.

        Args:
            r_train: True levels (ratings or quantized positions) of training cells.
            r_unknown: Mask of cells to predict.
            r_scores: Scorer output covering the training and the unknown cells.
            quantizer: K increasing level values.
        """
        levels = validate_quantizer(quantizer)
        validate_same_shape(r_train.shape, r_unknown.shape, "train and unknown matrices")
        validate_same_shape(r_train.shape, r_scores.shape, "train and scorer matrices")
        if max_epoch < 0 or learn_rate <= 0 or regularization < 0:
            raise ValidationError(
                f"Invalid OMF hyperparameters: max_epoch={max_epoch}, "
                f"learn_rate={learn_rate}, regularization={regularization}"
            )

        train_users, train_items, train_values = r_train.known_triplets()
        scored = r_scores.known_mask()[train_users, train_items]
        if train_users.size and not scored.any():
            raise PreconditionError("Scorer predictions do not cover any training cell.")
        if not scored.all():
            self.logger.warning(
                "Scorer is missing some training cells; treating them as score 0",
                extra={"event": "omf_scorer_partial", "value": int((~scored).sum())},
            )

        train_scores = np.asarray(r_scores.matrix[train_users, train_items], dtype=float).ravel()
        thresholds = self.fit(
            users=train_users,
            scores=train_scores,
            level_idx=level_indexes(train_values, levels),
            user_count=r_train.user_count,
            level_count=len(levels),
            max_epoch=max_epoch,
            learn_rate=learn_rate,
            regularization=regularization,
        )

        users, items = r_unknown.known_indexes()
        unknown_scores = np.asarray(r_scores.matrix[users, items], dtype=float).ravel()
        probabilities = level_probabilities(thresholds[users], unknown_scores)

        self.logger.info(
            "OMF predictions computed",
            extra={"event": "omf_predict_success", "shape": r_unknown.shape, "value": int(users.size)},
        )
        return summarize_distributions(users, items, probabilities, levels, r_unknown.shape)
