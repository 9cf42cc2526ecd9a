from __future__ import annotations

import numpy as np

from ..core.rating_matrix import RatingMatrix
from ..validators import validate_same_shape


def global_mean_baseline(r_train: RatingMatrix, r_unknown: RatingMatrix) -> RatingMatrix:
    """
    Predict every unknown cell as the training global mean.
    """
    validate_same_shape(r_train.shape, r_unknown.shape, "train and unknown matrices")
    return r_unknown.multiply(r_train.global_mean())


def most_popular_baseline(r_train: RatingMatrix, r_unknown: RatingMatrix) -> RatingMatrix:
    """
    Score every unknown cell with the item's mean training rating.

    Items never rated in train get the global mean.
    """
    validate_same_shape(r_train.shape, r_unknown.shape, "train and unknown matrices")
    item_means = r_train.item_means()
    users, items = r_unknown.known_indexes()
    return RatingMatrix.from_triplets(users, items, item_means[items], r_unknown.shape, keep_zeros=True)
