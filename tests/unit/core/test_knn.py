import numpy as np
import pytest

from ordrec.core.knn import PrefUserKNN, UserKNN
from ordrec.core.pref_relations import PrefRelations
from ordrec.core.rating_matrix import RatingMatrix
from ordrec.errors import ShapeMismatchError
from ordrec.validators import ValidationError


@pytest.fixture
def three_users():
    r_train = RatingMatrix(
        np.array(
            [
                [4.0, 2.0, 0.0],
                [5.0, 1.0, 5.0],
                [1.0, 5.0, 1.0],
            ]
        )
    )
    r_unknown = RatingMatrix(np.array([[0.0, 0.0, 1.0], [0.0, 0.0, 0.0], [0.0, 0.0, 0.0]]))
    return r_train, r_unknown


def test_user_knn_uses_positive_neighbours_only(three_users):
    r_train, r_unknown = three_users
    similarity = np.array([[1.0, 0.8, -0.9], [0.8, 1.0, -1.0], [-0.9, -1.0, 1.0]])

    predicted = UserKNN().predict_ratings(r_train, r_unknown, similarity, neighbor_count=5)

    # mean_0 = 3, neighbour 1 deviates by 5 - 11/3 on item 2
    assert predicted[0, 2] == pytest.approx(3.0 + (5.0 - 11.0 / 3.0))
    assert predicted.nnz == 1


def test_user_knn_falls_back_to_user_mean(three_users):
    r_train, r_unknown = three_users
    similarity = np.eye(3)

    predicted = UserKNN().predict_ratings(r_train, r_unknown, similarity, neighbor_count=5)

    assert predicted[0, 2] == pytest.approx(3.0)


def test_user_knn_keeps_the_most_similar_neighbours(three_users):
    r_train, r_unknown = three_users
    similarity = np.array([[1.0, 0.9, 0.2], [0.9, 1.0, 0.1], [0.2, 0.1, 1.0]])

    one = UserKNN().predict_ratings(r_train, r_unknown, similarity, neighbor_count=1)

    assert one[0, 2] == pytest.approx(3.0 + (5.0 - 11.0 / 3.0))


def test_user_knn_rejects_bad_inputs(three_users):
    r_train, r_unknown = three_users

    with pytest.raises(ValidationError):
        UserKNN().predict_ratings(r_train, r_unknown, np.eye(3), neighbor_count=0)
    with pytest.raises(ShapeMismatchError):
        UserKNN().predict_ratings(r_train, r_unknown, np.eye(2), neighbor_count=3)


def test_pref_knn_scores_on_position_scale(three_users):
    r_train, r_unknown = three_users
    similarity = np.array([[1.0, 0.8, -0.9], [0.8, 1.0, -1.0], [-0.9, -1.0, 1.0]])
    pr_train = PrefRelations.create_discrete(r_train)

    predicted = PrefUserKNN().predict_ratings(pr_train, r_unknown, neighbor_count=5, user_similarity=similarity)

    # user 0 positions: item 0 = 3, item 1 = 1 -> mean 2
    # user 1 positions: item 0 = 2.5, item 1 = 1, item 2 = 2.5 -> mean 2
    assert predicted[0, 2] == pytest.approx(2.0 + (2.5 - 2.0))
