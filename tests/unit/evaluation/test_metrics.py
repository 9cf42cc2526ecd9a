import json
import math

import numpy as np
import pytest

from ordrec.core.rating_matrix import RatingMatrix
from ordrec.errors import ShapeMismatchError
from ordrec.evaluation.baselines import global_mean_baseline, most_popular_baseline
from ordrec.evaluation.metrics import mae, ndcg, precision_recall, rmse
from ordrec.evaluation.protocol import ndcg_at_k, precision_at_k, recall_at_k
from ordrec.evaluation.runner import evaluate_rating_predictions, evaluate_top_n, run_and_save
from ordrec.experiment import MethodReport


# ---------------------------------------------------------------------------
# Per-user protocol Tests
# ---------------------------------------------------------------------------

def test_precision_and_recall_at_k():
    recommended = [1, 2, 3, 4]
    relevant = {2, 4, 9}

    assert precision_at_k(recommended, relevant, 2) == pytest.approx(0.5)
    assert recall_at_k(recommended, relevant, 4) == pytest.approx(2 / 3)


@pytest.mark.parametrize(
    "recommended, relevant, k, expected",
    [
        ([1], {1}, 1, 1.0),
        ([2, 1], {1}, 2, 1.0 / math.log2(3)),
        ([2, 1], {1}, 1, 0.0),
        ([1, 2, 3], {1, 3}, 3, (1.0 + 0.5) / (1.0 + 1.0 / math.log2(3))),
        ([], {1}, 5, 0.0),
    ],
)
def test_ndcg_at_k(recommended, relevant, k, expected):
    assert ndcg_at_k(recommended, relevant, k) == pytest.approx(expected)


def test_ndcg_at_k_only_reads_the_first_k_items():
    assert ndcg_at_k([5, 6, 1], {1}, 2) == ndcg_at_k([5, 6], {1}, 2) == 0.0


def test_ndcg_at_k_is_undefined_without_relevant_items():
    with pytest.raises(ValueError):
        ndcg_at_k([1, 2], set(), 2)


# ---------------------------------------------------------------------------
# Matrix metric Tests
# ---------------------------------------------------------------------------

def test_rmse_and_mae_over_truth_cells():
    truth = RatingMatrix(np.array([[4.0, 0.0], [2.0, 5.0]]))
    predicted = RatingMatrix(np.array([[3.0, 1.0], [2.0, 3.0]]))

    assert rmse(truth, predicted) == pytest.approx(math.sqrt((1.0 + 0.0 + 4.0) / 3))
    assert mae(truth, predicted) == pytest.approx(1.0)


def test_missing_predictions_count_as_zero():
    truth = RatingMatrix(np.array([[4.0, 2.0]]))
    predicted = RatingMatrix(np.array([[4.0, 0.0]]))

    assert mae(truth, predicted) == pytest.approx(1.0)


def test_metrics_reject_shape_mismatch():
    with pytest.raises(ShapeMismatchError):
        rmse(RatingMatrix(np.ones((2, 2))), RatingMatrix(np.ones((2, 3))))


def test_ndcg_skips_users_without_relevant_items():
    relevant = {0: [1], 1: [], 2: [7]}
    top_n = {0: [1, 2], 1: [3, 4], 2: [8, 7]}

    score = ndcg(relevant, top_n, 2)

    assert score == pytest.approx((1.0 + 1.0 / math.log2(3)) / 2)


def test_ndcg_scores_users_without_a_list_as_zero():
    assert ndcg({0: [1], 1: [2]}, {0: [1]}, 1) == pytest.approx(0.5)


def test_ndcg_without_any_relevant_user_is_zero():
    assert ndcg({}, {0: [1]}, 3) == 0.0


def test_precision_recall_skips_users_without_relevant_items():
    relevant = {0: [1, 2], 1: []}
    top_n = {0: [1, 3], 1: [4, 5]}

    precision, recall = precision_recall(relevant, top_n, 2)

    assert precision == pytest.approx(0.5)
    assert recall == pytest.approx(0.5)


# ---------------------------------------------------------------------------
# Baseline Tests
# ---------------------------------------------------------------------------

def test_global_mean_baseline_rmse_is_the_test_spread():
    rng = np.random.default_rng(0)
    ratings = rng.integers(1, 6, size=(200, 50)).astype(float)
    in_train = rng.random((200, 50)) < 0.5
    r_train = RatingMatrix(np.where(in_train, ratings, 0.0))
    r_test = RatingMatrix(np.where(in_train, 0.0, ratings))

    predicted = global_mean_baseline(r_train, r_test.indexes_of_non_zero_elements())

    _, _, test_values = r_test.known_triplets()
    assert rmse(r_test, predicted) == pytest.approx(test_values.std(), rel=1e-2)


def test_most_popular_baseline_scores_item_means(toy_split):
    r_train, r_test = toy_split
    r_unknown = r_test.indexes_of_non_zero_elements()

    predicted = most_popular_baseline(r_train, r_unknown)

    item_means = r_train.item_means()
    for user, item, value in predicted.enumerate_known():
        assert value == pytest.approx(item_means[item])
    np.testing.assert_array_equal(predicted.known_mask(), r_unknown.known_mask())


# ---------------------------------------------------------------------------
# Runner Tests
# ---------------------------------------------------------------------------

def test_evaluate_top_n_reports_every_cutoff():
    predicted = RatingMatrix(np.array([[1.0, 3.0, 2.0], [3.0, 1.0, 2.0]]))
    relevant = {0: [1], 1: [2]}

    metrics = evaluate_top_n(relevant, predicted, top_n=3, prefix="x_")

    assert list(metrics) == ["x_ndcg@1", "x_ndcg@2", "x_ndcg@3", "x_precision@3", "x_recall@3"]
    assert metrics["x_ndcg@1"] == pytest.approx(0.5)
    assert metrics["x_ndcg@2"] == pytest.approx((1.0 + 1.0 / math.log2(3)) / 2)
    assert metrics["x_precision@3"] == pytest.approx(1.0 / 3.0)
    assert metrics["x_recall@3"] == pytest.approx(1.0)


def test_evaluate_rating_predictions_keys(toy_split):
    r_train, r_test = toy_split

    metrics = evaluate_rating_predictions(r_test, global_mean_baseline(r_train, r_test.indexes_of_non_zero_elements()))

    assert set(metrics) == {"rmse", "mae"}
    assert metrics["mae"] <= metrics["rmse"]


def test_run_and_save_writes_json(tmp_path):
    output_path = tmp_path / "reports" / "metrics.json"
    reports = [MethodReport(name="global_mean", metrics={"rmse": 1.1, "mae": 0.9})]

    metrics = run_and_save(reports, output_path=str(output_path), meta={"users": 3})

    saved = json.loads(output_path.read_text())
    assert saved == metrics
    assert saved["global_mean"]["rmse"] == 1.1
    assert saved["meta"] == {"users": 3}
