from __future__ import annotations

from typing import Dict, List

import pandas as pd

from .rating_matrix import RatingMatrix

RankedItemsByUser = Dict[int, List[int]]


def _predictions_frame(predicted: RatingMatrix) -> pd.DataFrame:
    users, items, scores = predicted.known_triplets()
    return pd.DataFrame({"userId": users, "itemId": items, "score": scores})


def _stable_rank(df: pd.DataFrame) -> pd.DataFrame:
    # score desc, itemId asc
    if df.empty:
        return df
    return df.sort_values(
        ["userId", "score", "itemId"],
        ascending=[True, False, True],
        kind="mergesort",
    ).reset_index(drop=True)


def get_top_n_items_by_user(predicted: RatingMatrix, top_n: int) -> RankedItemsByUser:
    """
    For each user, the indexes of its `top_n` highest predicted cells.

    Only cells present in `predicted` are candidates, so passing a matrix
    restricted to unknown cells ranks unknown items only. Ties are broken by
    item index ascending. Users without predictions are omitted.
    """
    if top_n < 1:
        raise ValueError(f"top_n must be >= 1, got {top_n}")

    ranked = _stable_rank(_predictions_frame(predicted))
    if ranked.empty:
        return {}

    head = ranked.groupby("userId", sort=True).head(top_n)
    return {
        int(user): group["itemId"].astype(int).tolist()
        for user, group in head.groupby("userId", sort=True)
    }


def get_relevant_items_by_user(r_test: RatingMatrix, relevance_threshold: float) -> RankedItemsByUser:
    """
    For each user, the test items rated at least `relevance_threshold`.

    Users without any relevant item are omitted.
    """
    frame = _predictions_frame(r_test)
    relevant = frame[frame["score"] >= relevance_threshold]
    return {
        int(user): sorted(group["itemId"].astype(int).tolist())
        for user, group in relevant.groupby("userId", sort=True)
    }
