from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict

import numpy as np
import pandas as pd

from ..core.rating_matrix import RatingMatrix
from ..validators import ValidationError, validate_ratings_schema

RATING_COLUMNS = ["userId", "itemId", "rating", "timestamp"]


@dataclass(frozen=True)
class DatasetSplit:
    """
    Train/test matrices sharing one user and item index space.

    Attributes:
        train: Training ratings.
        test: Test ratings; no cell is known in both train and test.
        user_ids: Original user id of each user index.
        item_ids: Original item id of each item index.
    """
    train: RatingMatrix
    test: RatingMatrix
    user_ids: np.ndarray
    item_ids: np.ndarray

    def user_index(self) -> Dict[int, int]:
        return {int(uid): idx for idx, uid in enumerate(self.user_ids)}

    def item_index(self) -> Dict[int, int]:
        return {int(iid): idx for idx, iid in enumerate(self.item_ids)}


def load_ratings(
    path: Path,
    sep: str = "\t",
    logger: logging.Logger | None = None,
) -> pd.DataFrame:
    """
    Load a header-less ratings file (user, item, rating[, timestamp]).

    The MovieLens 100k `u.data` layout is the default.
    """
    _logger = logger or logging.getLogger("ordrec.io")
    _logger.info("Loading ratings file", extra={"event": "load_ratings", "output_path": str(path)})

    df = pd.read_csv(path, sep=sep, header=None, engine="python")
    if df.shape[1] < 3:
        raise ValidationError(f"Ratings file {path} needs at least 3 columns, found {df.shape[1]}")
    df = df.iloc[:, :4]
    df.columns = RATING_COLUMNS[: df.shape[1]]

    df["userId"] = df["userId"].astype(int)
    df["itemId"] = df["itemId"].astype(int)
    df["rating"] = df["rating"].astype(float)

    validate_ratings_schema(df, logger=_logger, step_name="load_ratings")

    _logger.info("Ratings loaded", extra={"event": "load_ratings_success", "shape": df.shape})
    return df


def split_by_count(
    ratings: pd.DataFrame,
    min_count: int,
    train_count: int,
    shuffle: bool = False,
    seed: int = 1,
    logger: logging.Logger | None = None,
) -> DatasetSplit:
    """
    Per-user split by rating count.

    Users with fewer than `min_count` ratings are dropped. For every kept
    user the first `train_count` ratings (file order, or a seeded shuffle)
    go to train and the rest to test.
    """
    _logger = logger or logging.getLogger("ordrec.io")
    validate_ratings_schema(ratings, logger=_logger, step_name="split_by_count")
    if train_count < 1 or train_count >= min_count:
        raise ValidationError(
            f"train_count must be in [1, min_count); got train_count={train_count}, min_count={min_count}"
        )

    deduplicated = ratings.drop_duplicates(subset=["userId", "itemId"], keep="last")
    if len(deduplicated) != len(ratings):
        _logger.warning(
            "Duplicate (user, item) ratings dropped",
            extra={"event": "split_duplicates_dropped", "value": len(ratings) - len(deduplicated)},
        )

    counts = deduplicated.groupby("userId").size()
    eligible_users = counts[counts >= min_count].index
    eligible = deduplicated[deduplicated["userId"].isin(eligible_users)]
    if eligible.empty:
        raise ValidationError(f"No user has at least {min_count} ratings.")

    if shuffle:
        eligible = eligible.sample(frac=1.0, random_state=seed)

    user_ids = np.sort(eligible["userId"].unique())
    item_ids = np.sort(eligible["itemId"].unique())
    users = np.searchsorted(user_ids, eligible["userId"].to_numpy())
    items = np.searchsorted(item_ids, eligible["itemId"].to_numpy())
    values = eligible["rating"].to_numpy(dtype=float)

    in_train = eligible.groupby("userId", sort=False).cumcount().to_numpy() < train_count
    shape = (len(user_ids), len(item_ids))

    train = RatingMatrix.from_triplets(users[in_train], items[in_train], values[in_train], shape)
    test = RatingMatrix.from_triplets(users[~in_train], items[~in_train], values[~in_train], shape)

    _logger.info(
        "Dataset split by count",
        extra={
            "event": "split_by_count_success",
            "shape": shape,
            "value": {"train": train.nnz, "test": test.nnz},
        },
    )
    return DatasetSplit(train=train, test=test, user_ids=user_ids, item_ids=item_ids)
