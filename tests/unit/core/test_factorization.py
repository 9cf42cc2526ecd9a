import numpy as np
import pytest

from ordrec.core.factorization import NMF, FactorModel, PrefNMF
from ordrec.core.pref_relations import PrefRelations
from ordrec.core.rating_matrix import RatingMatrix
from ordrec.errors import DivergenceError, PreconditionError, ShapeMismatchError
from ordrec.validators import ValidationError

NMF_PARAMS = dict(max_epoch=30, learn_rate=0.01, regularization=0.05, factor_count=3)
PREF_PARAMS = dict(
    max_epoch=200,
    learn_rate=0.5,
    regularization_of_user=0.001,
    regularization_of_item=0.001,
    factor_count=2,
)


# ---------------------------------------------------------------------------
# NMF Tests
# ---------------------------------------------------------------------------

def test_nmf_predicts_exactly_the_unknown_cells(toy_split):
    r_train, r_test = toy_split
    r_unknown = r_test.indexes_of_non_zero_elements()

    predicted = NMF().predict_ratings(r_train, r_unknown, **NMF_PARAMS)

    np.testing.assert_array_equal(predicted.known_mask(), r_unknown.known_mask())


def test_nmf_is_deterministic_for_a_seed(toy_split):
    r_train, r_test = toy_split
    r_unknown = r_test.indexes_of_non_zero_elements()

    first = NMF().predict_ratings(r_train, r_unknown, seed=7, **NMF_PARAMS)
    second = NMF().predict_ratings(r_train, r_unknown, seed=7, **NMF_PARAMS)

    np.testing.assert_array_equal(first.to_dense(), second.to_dense())


def test_nmf_factors_stay_non_negative(toy_split):
    r_train, _ = toy_split

    model = NMF().fit(r_train, **NMF_PARAMS)

    assert np.all(model.user_factors >= 0)
    assert np.all(model.item_factors >= 0)


def test_nmf_training_reduces_error(toy_split):
    r_train, _ = toy_split
    users, items, ratings = r_train.known_triplets()

    untrained = NMF().fit(r_train, max_epoch=0, learn_rate=0.01, regularization=0.05, factor_count=3)
    trained = NMF().fit(r_train, max_epoch=100, learn_rate=0.01, regularization=0.05, factor_count=3)

    def train_rmse(model):
        predicted = np.array([model.score(u, i) for u, i in zip(users, items)])
        return np.sqrt(np.mean((predicted - ratings) ** 2))

    assert train_rmse(trained) < train_rmse(untrained)


def test_nmf_raises_on_divergence(toy_split):
    r_train, _ = toy_split

    with pytest.raises(DivergenceError):
        NMF().fit(
            r_train, max_epoch=50, learn_rate=100.0, regularization=0.0,
            factor_count=2, nonnegative=False,
        )


def test_nmf_rejects_shape_mismatch(toy_split):
    r_train, _ = toy_split

    with pytest.raises(ShapeMismatchError):
        NMF().predict_ratings(r_train, RatingMatrix.zeros(10, 6), **NMF_PARAMS)


@pytest.mark.parametrize(
    "override",
    [{"learn_rate": 0.0}, {"factor_count": 0}, {"regularization": -1.0}, {"max_epoch": -1}],
)
def test_nmf_rejects_invalid_hyperparameters(toy_split, override):
    r_train, _ = toy_split

    with pytest.raises(ValidationError):
        NMF().fit(r_train, **{**NMF_PARAMS, **override})


# ---------------------------------------------------------------------------
# PrefNMF Tests
# ---------------------------------------------------------------------------

def test_pref_nmf_learns_a_shared_item_order(consistent_ratings):
    r_train = RatingMatrix(consistent_ratings)
    pr_train = PrefRelations.create_discrete(r_train)
    r_unknown = RatingMatrix(np.ones_like(consistent_ratings))

    scores = PrefNMF().predict_ratings(pr_train, r_unknown, **PREF_PARAMS)

    for user in range(r_unknown.user_count):
        assert scores[user, 0] > scores[user, 4]


def test_pref_nmf_relations_are_complementary_probabilities(consistent_ratings):
    pr_train = PrefRelations.create_discrete(RatingMatrix(consistent_ratings))
    pr_unknown = PrefRelations.create_discrete(RatingMatrix(np.ones_like(consistent_ratings)))

    predicted = PrefNMF().predict_pref_relations(pr_train, pr_unknown, **PREF_PARAMS)

    assert not predicted.quantized
    for _, items, matrix in predicted:
        off_diagonal = ~np.eye(len(items), dtype=bool)
        assert np.all((matrix[off_diagonal] >= 0) & (matrix[off_diagonal] <= 1))
        np.testing.assert_allclose((matrix + matrix.T)[off_diagonal], 1.0)
    assert predicted.relation(0, 0, 4) > 0.5


def test_pref_nmf_is_deterministic_for_a_seed(consistent_ratings):
    pr_train = PrefRelations.create_discrete(RatingMatrix(consistent_ratings))

    first = PrefNMF().fit(pr_train, seed=3, **PREF_PARAMS)
    second = PrefNMF().fit(pr_train, seed=3, **PREF_PARAMS)

    np.testing.assert_array_equal(first.user_factors, second.user_factors)
    np.testing.assert_array_equal(first.item_factors, second.item_factors)


def test_pref_nmf_needs_quantized_relations():
    raw = PrefRelations(1, 2, {0: (np.array([0, 1]), np.array([[0.0, 0.8], [0.2, 0.0]]))}, quantized=False)

    with pytest.raises(PreconditionError):
        PrefNMF().fit(raw, **PREF_PARAMS)


def test_pref_nmf_raises_on_divergence(consistent_ratings):
    pr_train = PrefRelations.create_discrete(RatingMatrix(consistent_ratings))

    with pytest.raises(DivergenceError):
        PrefNMF().fit(
            pr_train, max_epoch=50, learn_rate=1e6, regularization_of_user=10.0,
            regularization_of_item=10.0, factor_count=2, nonnegative=False,
        )


def test_pref_nmf_rejects_shape_mismatch_of_unknown_cells(consistent_ratings):
    pr_train = PrefRelations.create_discrete(RatingMatrix(consistent_ratings))

    with pytest.raises(ShapeMismatchError):
        PrefNMF().predict_ratings(pr_train, RatingMatrix.zeros(8, 6), **PREF_PARAMS)


def test_pref_nmf_rejects_shape_mismatch_of_unknown_relations(consistent_ratings):
    pr_train = PrefRelations.create_discrete(RatingMatrix(consistent_ratings))
    pr_unknown = PrefRelations.create_discrete(RatingMatrix(np.ones((8, 6))))

    with pytest.raises(ShapeMismatchError):
        PrefNMF().predict_pref_relations(pr_train, pr_unknown, **PREF_PARAMS)


# ---------------------------------------------------------------------------
# FactorModel Tests
# ---------------------------------------------------------------------------

def test_factor_model_keeps_exact_zero_scores():
    model = FactorModel(user_count=2, item_count=3, factor_count=2)
    model.user_factors[0] = 0.0
    r_unknown = RatingMatrix(np.ones((2, 3)))

    predicted = model.predict(r_unknown)

    assert predicted.nnz == 6
    np.testing.assert_array_equal(predicted.known_mask(), r_unknown.known_mask())
    np.testing.assert_array_equal(predicted.to_dense()[0], [0.0, 0.0, 0.0])
