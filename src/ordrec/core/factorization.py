"""
Latent factor predictors trained with stochastic gradient descent.

NMF learns from ratings, PrefNMF learns from pairwise preference relations.
Both share FactorModel and return a RatingMatrix covering every cell of the
"unknown" mask they are given.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

import numpy as np

from ..config import Preferences
from ..errors import DivergenceError, PreconditionError
from ..validators import ValidationError, validate_same_shape
from .pref_relations import PrefRelations, UserRelations
from .rating_matrix import RatingMatrix

INIT_SCALE = 0.1


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 0.5 * (1.0 + np.tanh(0.5 * x))


def _validate_hyperparameters(max_epoch: int, learn_rate: float, factor_count: int, *regularizations: float) -> None:
    if max_epoch < 0:
        raise ValidationError(f"max_epoch must be >= 0, got {max_epoch}")
    if learn_rate <= 0:
        raise ValidationError(f"learn_rate must be positive, got {learn_rate}")
    if factor_count < 1:
        raise ValidationError(f"factor_count must be >= 1, got {factor_count}")
    for reg in regularizations:
        if reg < 0:
            raise ValidationError(f"regularization must be >= 0, got {reg}")


class FactorModel:
    """
    User/item factor matrices shared by the rating and preference learners.

    Factors start in [0, INIT_SCALE) from a seeded generator. With
    `nonnegative=True` every update is clipped at zero.
    """

    def __init__(
        self,
        user_count: int,
        item_count: int,
        factor_count: int,
        seed: int = 1,
        nonnegative: bool = True,
    ) -> None:
        self.rng = np.random.default_rng(seed)
        self.nonnegative = nonnegative
        self.user_factors = self.rng.random((user_count, factor_count)) * INIT_SCALE
        self.item_factors = self.rng.random((item_count, factor_count)) * INIT_SCALE

    def score(self, user: int, item: int) -> float:
        return float(self.user_factors[user] @ self.item_factors[item])

    def scores_of_user(self, user: int, items: np.ndarray) -> np.ndarray:
        return self.item_factors[items] @ self.user_factors[user]

    def clip(self) -> None:
        if self.nonnegative:
            np.maximum(self.user_factors, 0.0, out=self.user_factors)
            np.maximum(self.item_factors, 0.0, out=self.item_factors)

    def check_finite(self, epoch: int) -> None:
        if not (np.all(np.isfinite(self.user_factors)) and np.all(np.isfinite(self.item_factors))):
            raise DivergenceError(
                f"Factor values became non-finite at epoch {epoch}; "
                "lower the learning rate or raise the regularization."
            )

    def predict(self, unknown: RatingMatrix) -> RatingMatrix:
        """Dot product of user and item factors for every cell of `unknown`."""
        users, items = unknown.known_indexes()
        values = np.einsum("ij,ij->i", self.user_factors[users], self.item_factors[items])
        return RatingMatrix.from_triplets(users, items, values, unknown.shape, keep_zeros=True)


class NMF:
    """
    Rating-based non-negative matrix factorization.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("ordrec.nmf")
        self.model: Optional[FactorModel] = None

    def fit(
        self,
        r_train: RatingMatrix,
        max_epoch: int,
        learn_rate: float,
        regularization: float,
        factor_count: int,
        seed: int = 1,
        nonnegative: bool = True,
    ) -> FactorModel:
        _validate_hyperparameters(max_epoch, learn_rate, factor_count, regularization)

        model = FactorModel(r_train.user_count, r_train.item_count, factor_count, seed, nonnegative)
        users, items, ratings = r_train.known_triplets()
        P, Q = model.user_factors, model.item_factors

        for epoch in range(1, max_epoch + 1):
            squared_error = 0.0
            for idx in model.rng.permutation(len(ratings)):
                u, i = users[idx], items[idx]
                pu = P[u].copy()
                qi = Q[i]
                err = ratings[idx] - pu @ qi
                squared_error += err * err
                P[u] += learn_rate * (err * qi - regularization * pu)
                Q[i] += learn_rate * (err * pu - regularization * qi)
                if nonnegative:
                    np.maximum(P[u], 0.0, out=P[u])
                    np.maximum(Q[i], 0.0, out=Q[i])

            model.check_finite(epoch)
            self.logger.debug(
                "NMF epoch finished",
                extra={
                    "event": "nmf_epoch",
                    "epoch": epoch,
                    "loss": float(np.sqrt(squared_error / max(len(ratings), 1))),
                },
            )

        self.model = model
        return model

    def predict_ratings(
        self,
        r_train: RatingMatrix,
        r_unknown: RatingMatrix,
        max_epoch: int,
        learn_rate: float,
        regularization: float,
        factor_count: int,
        seed: int = 1,
    ) -> RatingMatrix:
        """
        Train on `r_train` and predict every cell of `r_unknown`.

        No clipping to the rating range is applied.
        """
        validate_same_shape(r_train.shape, r_unknown.shape, "train and unknown matrices")
        model = self.fit(r_train, max_epoch, learn_rate, regularization, factor_count, seed)
        return model.predict(r_unknown)


class PrefNMF:
    """
    Preference-relation based matrix factorization.

    For user u and rated pair (a, b) the model predicts
    P(a preferred to b) = sigmoid(p_u . (q_a - q_b)) and is trained towards
    the relation label mapped to {0, 0.5, 1}. Each user contributes one
    mini-batch step per epoch, averaged over every item's comparisons.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("ordrec.prefnmf")
        self.model: Optional[FactorModel] = None

    @staticmethod
    def _targets(matrix: np.ndarray) -> np.ndarray:
        span = Preferences.PREFERRED - Preferences.LESS_PREFERRED
        return (matrix - Preferences.LESS_PREFERRED) / span

    def fit(
        self,
        pr_train: PrefRelations,
        max_epoch: int,
        learn_rate: float,
        regularization_of_user: float,
        regularization_of_item: float,
        factor_count: int,
        seed: int = 1,
        nonnegative: bool = True,
    ) -> FactorModel:
        if not pr_train.quantized:
            raise PreconditionError("PrefNMF trains on quantized preference relations.")
        _validate_hyperparameters(
            max_epoch, learn_rate, factor_count, regularization_of_user, regularization_of_item
        )

        model = FactorModel(pr_train.user_count, pr_train.item_count, factor_count, seed, nonnegative)
        P, Q = model.user_factors, model.item_factors

        batches = []
        for user, items, matrix in pr_train:
            if len(items) < 2:
                continue
            targets = self._targets(matrix)
            off_diagonal = ~np.eye(len(items), dtype=bool)
            batches.append((user, items, targets, off_diagonal))

        for epoch in range(1, max_epoch + 1):
            log_loss = 0.0
            pairs = 0
            for idx in model.rng.permutation(len(batches)):
                user, items, targets, off_diagonal = batches[idx]
                pu = P[user].copy()
                qs = Q[items]
                scores = qs @ pu
                predicted = _sigmoid(scores[:, None] - scores[None, :])
                errors = np.where(off_diagonal, targets - predicted, 0.0)

                # errors is antisymmetric, so row sums carry both directions
                per_item = errors.sum(axis=1) / (len(items) - 1)
                grad_user = per_item @ qs
                grad_items = np.outer(per_item, pu)

                P[user] += learn_rate * (grad_user - regularization_of_user * pu)
                Q[items] += learn_rate * (grad_items - regularization_of_item * qs)
                if nonnegative:
                    np.maximum(P[user], 0.0, out=P[user])
                    Q[items] = np.maximum(Q[items], 0.0)

                clipped = np.clip(predicted[off_diagonal], 1e-12, 1 - 1e-12)
                y = targets[off_diagonal]
                log_loss -= float(np.sum(y * np.log(clipped) + (1 - y) * np.log(1 - clipped)))
                pairs += int(off_diagonal.sum())

            model.check_finite(epoch)
            self.logger.debug(
                "PrefNMF epoch finished",
                extra={"event": "prefnmf_epoch", "epoch": epoch, "loss": log_loss / max(pairs, 1)},
            )

        self.model = model
        return model

    def predict_ratings(
        self,
        pr_train: PrefRelations,
        r_unknown: RatingMatrix,
        max_epoch: int,
        learn_rate: float,
        regularization_of_user: float,
        regularization_of_item: float,
        factor_count: int,
        seed: int = 1,
    ) -> RatingMatrix:
        """
        Train on relations and return the predicted score of every unknown cell.

        Scores are only meaningful for ranking items of the same user.
        """
        validate_same_shape(pr_train.shape, r_unknown.shape, "relations and unknown matrix")
        model = self.fit(
            pr_train, max_epoch, learn_rate, regularization_of_user,
            regularization_of_item, factor_count, seed,
        )
        return model.predict(r_unknown)

    def predict_pref_relations(
        self,
        pr_train: PrefRelations,
        pr_unknown: PrefRelations,
        max_epoch: int,
        learn_rate: float,
        regularization_of_user: float,
        regularization_of_item: float,
        factor_count: int,
        seed: int = 1,
    ) -> PrefRelations:
        """
        Train on relations and predict a relation for every pair in `pr_unknown`.

        The result holds P(row item preferred to column item) and is not
        quantized; call quantization(0, 1.0) before taking positions.
        """
        validate_same_shape(pr_train.shape, pr_unknown.shape, "train and unknown relations")
        model = self.fit(
            pr_train, max_epoch, learn_rate, regularization_of_user,
            regularization_of_item, factor_count, seed,
        )

        predicted: Dict[int, UserRelations] = {}
        for user, items, _ in pr_unknown:
            scores = model.scores_of_user(user, items)
            matrix = _sigmoid(scores[:, None] - scores[None, :])
            np.fill_diagonal(matrix, Preferences.UNKNOWN)
            predicted[user] = (items, matrix)

        return PrefRelations(pr_unknown.user_count, pr_unknown.item_count, predicted, quantized=False)
