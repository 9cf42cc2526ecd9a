import numpy as np
import pytest

from ordrec.core.ordinal import OMF, level_probabilities, project_thresholds
from ordrec.core.rating_matrix import RatingMatrix
from ordrec.errors import DivergenceError, PreconditionError, ShapeMismatchError

QUANTIZER = [1, 2, 3, 4, 5]
OMF_PARAMS = dict(max_epoch=100, learn_rate=0.5, regularization=0.01)


@pytest.fixture
def perfect_scores(toy_matrix):
    # a scorer that returns the true rating on every cell
    return toy_matrix


@pytest.fixture
def omf_run(toy_split, perfect_scores):
    r_train, r_test = toy_split
    r_unknown = r_test.indexes_of_non_zero_elements()
    omf = OMF()
    prediction = omf.predict_ratings(r_train, r_unknown, perfect_scores, QUANTIZER, **OMF_PARAMS)
    return omf, r_unknown, prediction


# ---------------------------------------------------------------------------
# Threshold helper Tests
# ---------------------------------------------------------------------------

def test_project_thresholds_enforces_strict_order():
    projected = project_thresholds(np.array([[1.0, 0.5, 0.5, 3.0]]))

    assert np.all(np.diff(projected, axis=1) > 0)
    assert projected[0, 0] == 1.0
    assert projected[0, 3] == 3.0


def test_level_probabilities_sum_to_one():
    thresholds = np.array([[1.5, 2.5, 3.5, 4.5], [0.0, 1.0, 2.0, 3.0]])
    probabilities = level_probabilities(thresholds, np.array([3.0, 10.0]))

    np.testing.assert_allclose(probabilities.sum(axis=1), 1.0)
    assert np.argmax(probabilities[0]) == 2
    assert np.argmax(probabilities[1]) == 4


def test_initial_thresholds_follow_score_quantiles():
    scores = np.array([1.0, 2.0, 3.0, 4.0])
    level_idx = np.array([0, 0, 1, 1])

    init = OMF.initial_thresholds(scores, level_idx, level_count=2)

    assert init.shape == (1,)
    assert init[0] == pytest.approx(np.quantile(scores, 0.5))


# ---------------------------------------------------------------------------
# predict_ratings Tests
# ---------------------------------------------------------------------------

def test_distributions_are_valid(omf_run):
    _, r_unknown, prediction = omf_run
    users, items = r_unknown.known_indexes()

    assert set(prediction.distributions) == set(zip(users.tolist(), items.tolist()))
    for distribution in prediction.distributions.values():
        assert distribution.shape == (5,)
        assert np.all(distribution >= 0)
        assert distribution.sum() == pytest.approx(1.0, abs=1e-6)


def test_summaries_match_distributions(omf_run):
    _, r_unknown, prediction = omf_run
    levels = np.array(QUANTIZER, dtype=float)

    np.testing.assert_array_equal(prediction.expectations.known_mask(), r_unknown.known_mask())
    np.testing.assert_array_equal(prediction.most_likely.known_mask(), r_unknown.known_mask())
    for (user, item), distribution in prediction.distributions.items():
        assert prediction.expectations[user, item] == pytest.approx(float(distribution @ levels))
        assert prediction.most_likely[user, item] == levels[np.argmax(distribution)]


def test_fitted_thresholds_are_strictly_increasing(omf_run):
    omf, _, _ = omf_run

    assert omf.thresholds.shape == (10, 4)
    assert np.all(np.diff(omf.thresholds, axis=1) > 0)


def test_thresholds_stay_ordered_with_a_large_learning_rate(toy_split, perfect_scores):
    r_train, r_test = toy_split
    omf = OMF()

    omf.predict_ratings(
        r_train, r_test.indexes_of_non_zero_elements(), perfect_scores, QUANTIZER,
        max_epoch=50, learn_rate=5.0, regularization=0.0,
    )

    assert np.all(np.diff(omf.thresholds, axis=1) > 0)


def test_expectation_is_monotone_in_the_score():
    # one user, train covers every level, two unknown cells with different scores
    r_train = RatingMatrix(np.array([[1.0, 2.0, 3.0, 4.0, 5.0, 0.0, 0.0]]))
    r_unknown = RatingMatrix(np.array([[0, 0, 0, 0, 0, 1.0, 1.0]]))
    r_scores = RatingMatrix(np.array([[1.0, 2.0, 3.0, 4.0, 5.0, 2.2, 4.1]]))

    prediction = OMF().predict_ratings(r_train, r_unknown, r_scores, QUANTIZER, **OMF_PARAMS)

    assert prediction.expectations[0, 5] < prediction.expectations[0, 6]
    assert prediction.most_likely[0, 5] <= prediction.most_likely[0, 6]


def test_scorer_must_cover_training_cells(toy_split):
    r_train, r_test = toy_split
    r_unknown = r_test.indexes_of_non_zero_elements()

    with pytest.raises(PreconditionError):
        OMF().predict_ratings(r_train, r_unknown, r_test, QUANTIZER, **OMF_PARAMS)


def test_scorer_shape_must_match(toy_split):
    r_train, r_test = toy_split

    with pytest.raises(ShapeMismatchError):
        OMF().predict_ratings(
            r_train, r_test.indexes_of_non_zero_elements(), RatingMatrix.zeros(10, 3), QUANTIZER, **OMF_PARAMS
        )


def test_non_finite_thresholds_raise(toy_split, perfect_scores):
    r_train, r_test = toy_split

    with pytest.raises(DivergenceError):
        OMF().predict_ratings(
            r_train, r_test.indexes_of_non_zero_elements(), perfect_scores, QUANTIZER,
            max_epoch=5, learn_rate=float("inf"), regularization=0.01,
        )


def test_summaries_keep_cells_whose_level_is_zero():
    quantizer = [0, 1, 2]
    r_train = RatingMatrix.from_triplets(
        [0, 0, 0, 0, 0], [0, 1, 2, 3, 4], [0.0, 0.0, 1.0, 2.0, 2.0], (1, 7), keep_zeros=True
    )
    r_unknown = RatingMatrix(np.array([[0, 0, 0, 0, 0, 1.0, 1.0]]))
    r_scores = RatingMatrix(np.array([[1.0, 1.5, 3.0, 5.0, 5.5, -5.0, 6.0]]))

    prediction = OMF().predict_ratings(r_train, r_unknown, r_scores, quantizer, **OMF_PARAMS)

    assert len(prediction.distributions) == 2
    np.testing.assert_array_equal(prediction.most_likely.known_mask(), r_unknown.known_mask())
    np.testing.assert_array_equal(prediction.expectations.known_mask(), r_unknown.known_mask())
    assert prediction.most_likely[0, 5] == 0.0
    assert prediction.most_likely[0, 6] == 2.0
