from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterable, Mapping, Sequence

from ..core.ranking import get_top_n_items_by_user
from ..core.rating_matrix import RatingMatrix
from .metrics import mae, ndcg, precision_recall, rmse


def evaluate_rating_predictions(r_test: RatingMatrix, r_predicted: RatingMatrix) -> Dict[str, float]:
    """
    RMSE and MAE of a predicted matrix against the test ratings.
    """
    return {
        "rmse": rmse(r_test, r_predicted),
        "mae": mae(r_test, r_predicted),
    }


def evaluate_top_n(
    relevant_items_by_user: Mapping[int, Sequence[int]],
    r_predicted: RatingMatrix,
    top_n: int,
    prefix: str = "",
) -> Dict[str, float]:
    """
    NDCG@1..NDCG@top_n, precision@top_n and recall@top_n of the top-N
    lists extracted from a predicted matrix.
    """
    top_n_items_by_user = get_top_n_items_by_user(r_predicted, top_n)
    metrics = {
        f"{prefix}ndcg@{n}": ndcg(relevant_items_by_user, top_n_items_by_user, n)
        for n in range(1, top_n + 1)
    }
    precision, recall = precision_recall(relevant_items_by_user, top_n_items_by_user, top_n)
    metrics[f"{prefix}precision@{top_n}"] = precision
    metrics[f"{prefix}recall@{top_n}"] = recall
    return metrics


def run_and_save(
    reports: Iterable,
    output_path: str = "metrics.json",
    meta: Mapping | None = None,
) -> Dict:
    """
    Collect method reports into one JSON document and write it to disk.

    Each report needs `name` and `metrics` attributes.
    """
    metrics: Dict = {report.name: dict(report.metrics) for report in reports}
    metrics["meta"] = dict(meta or {})

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(metrics, indent=2))
    return metrics
