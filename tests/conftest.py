import numpy as np
import pandas as pd
import pytest

from ordrec.core.rating_matrix import RatingMatrix

# 10 users x 5 items, 0 = unrated
TOY_RATINGS = np.array(
    [
        [5, 4, 0, 1, 2],
        [4, 0, 4, 1, 1],
        [1, 1, 0, 5, 4],
        [0, 2, 1, 4, 5],
        [5, 5, 4, 0, 1],
        [3, 3, 3, 3, 0],
        [2, 0, 2, 4, 4],
        [4, 5, 5, 1, 0],
        [1, 2, 0, 5, 5],
        [5, 4, 4, 2, 1],
    ],
    dtype=float,
)

# one held-out cell per user
TOY_TEST_CELLS = [(0, 4), (1, 0), (2, 3), (3, 1), (4, 2), (5, 0), (6, 4), (7, 1), (8, 3), (9, 0)]


@pytest.fixture
def toy_ratings() -> np.ndarray:
    return TOY_RATINGS.copy()


@pytest.fixture
def toy_matrix() -> RatingMatrix:
    return RatingMatrix(TOY_RATINGS)


@pytest.fixture
def toy_split():
    """
    (r_train, r_test) of the toy matrix with one test cell per user.
    """
    train = TOY_RATINGS.copy()
    test = np.zeros_like(TOY_RATINGS)
    for user, item in TOY_TEST_CELLS:
        test[user, item] = train[user, item]
        train[user, item] = 0.0
    return RatingMatrix(train), RatingMatrix(test)


@pytest.fixture
def consistent_ratings() -> np.ndarray:
    """
    Every user agrees on the order of the items: item 0 best, item 4 worst.
    """
    ratings = np.tile(np.array([5.0, 4.0, 3.0, 2.0, 1.0]), (8, 1))
    # hide one cell per user
    for user in range(8):
        ratings[user, user % 5] = 0.0
    return ratings


@pytest.fixture
def ratings_df() -> pd.DataFrame:
    """
    Long-format ratings in file order: 3 users, user 30 has too few ratings.
    """
    rows = [
        (10, 100, 5, 1), (10, 101, 3, 2), (10, 102, 4, 3), (10, 103, 1, 4), (10, 104, 2, 5),
        (20, 100, 2, 6), (20, 102, 5, 7), (20, 104, 4, 8), (20, 105, 3, 9), (20, 101, 1, 10),
        (30, 100, 4, 11), (30, 103, 5, 12),
    ]
    return pd.DataFrame(rows, columns=["userId", "itemId", "rating", "timestamp"])
