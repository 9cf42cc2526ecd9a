"""
Pairwise preference relations derived from ratings.

For each user we keep the sorted indexes of the items that user rated and a
square relation matrix over them. Pairs involving an unrated item are never
materialized, so memory grows with the square of each user's rating count
rather than with the item catalogue.
"""

from __future__ import annotations

from typing import Dict, Iterator, Mapping, Sequence, Tuple

import numpy as np

from ..config import Preferences
from ..errors import PreconditionError
from ..validators import ValidationError, validate_quantizer
from .rating_matrix import RatingMatrix, snap_to_levels

UserRelations = Tuple[np.ndarray, np.ndarray]


class PrefRelations:
    """
    Per-user preference relation matrices.

    Args:
        user_count: Number of users (rows of the source rating matrix).
        item_count: Number of items (columns of the source rating matrix).
        relations: Mapping user -> (item indexes, relation matrix). The
            relation matrix is indexed by position in the item index array.
        quantized: True when relation values are on the Preferences scale,
            False for raw predicted probabilities.
    """

    def __init__(
        self,
        user_count: int,
        item_count: int,
        relations: Mapping[int, UserRelations],
        quantized: bool = True,
    ) -> None:
        self.user_count = user_count
        self.item_count = item_count
        self.quantized = quantized
        self._relations: Dict[int, UserRelations] = {}
        for user, (items, matrix) in relations.items():
            items = np.asarray(items, dtype=int)
            matrix = np.asarray(matrix, dtype=float)
            if matrix.shape != (len(items), len(items)):
                raise ValidationError(
                    f"Relation matrix of user {user} has shape {matrix.shape}, "
                    f"expected {(len(items), len(items))}"
                )
            items.setflags(write=False)
            matrix.setflags(write=False)
            self._relations[int(user)] = (items, matrix)

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.user_count, self.item_count)

    @classmethod
    def create_discrete(cls, rating_matrix: RatingMatrix) -> "PrefRelations":
        """
        Build relations from ratings.

        For every pair of items rated by the same user: equal ratings give
        EQUALLY_PREFERRED, a higher rating gives PREFERRED for the row item,
        a lower one LESS_PREFERRED. The diagonal stays UNKNOWN.
        """
        relations: Dict[int, UserRelations] = {}
        for user in range(rating_matrix.user_count):
            items, ratings = rating_matrix.row_values(user)
            if items.size == 0:
                continue
            diff = ratings[:, None] - ratings[None, :]
            matrix = np.where(
                diff > 0,
                Preferences.PREFERRED,
                np.where(diff < 0, Preferences.LESS_PREFERRED, Preferences.EQUALLY_PREFERRED),
            )
            np.fill_diagonal(matrix, Preferences.UNKNOWN)
            relations[user] = (items, matrix)

        return cls(rating_matrix.user_count, rating_matrix.item_count, relations, quantized=True)

    # ------------------------------------------------------------
    # Access
    # ------------------------------------------------------------
    def users(self) -> Iterator[int]:
        return iter(sorted(self._relations))

    def items_of(self, user: int) -> np.ndarray:
        if user not in self._relations:
            return np.empty(0, dtype=int)
        return self._relations[user][0]

    def matrix_of(self, user: int) -> np.ndarray:
        if user not in self._relations:
            return np.empty((0, 0), dtype=float)
        return self._relations[user][1]

    def __iter__(self) -> Iterator[Tuple[int, np.ndarray, np.ndarray]]:
        for user in self.users():
            items, matrix = self._relations[user]
            yield user, items, matrix

    def __len__(self) -> int:
        return len(self._relations)

    def relation(self, user: int, item_a: int, item_b: int) -> float:
        """
        Relation of item_a to item_b for user; UNKNOWN if either is unrated.
        """
        items = self.items_of(user)
        pos_a = np.searchsorted(items, item_a)
        pos_b = np.searchsorted(items, item_b)
        if pos_a >= len(items) or pos_b >= len(items):
            return Preferences.UNKNOWN
        if items[pos_a] != item_a or items[pos_b] != item_b:
            return Preferences.UNKNOWN
        return float(self._relations[user][1][pos_a, pos_b])

    def pair_count(self) -> int:
        """Number of materialized ordered pairs (diagonal excluded)."""
        return sum(len(items) * (len(items) - 1) for items, _ in self._relations.values())

    # ------------------------------------------------------------
    # Derivations
    # ------------------------------------------------------------
    def quantization(
        self,
        min_value: float,
        value_range: float,
        levels: Sequence[float] = Preferences.LEVELS,
    ) -> "PrefRelations":
        """
        Snap every off-diagonal relation value onto `levels`.

        Uses the same normalization as RatingMatrix.quantization, e.g.
        quantization(0, 1.0, Preferences.LEVELS) turns predicted
        probabilities into LESS / EQUALLY / PREFERRED.
        """
        level_array = validate_quantizer(levels)
        if value_range <= 0:
            raise ValidationError(f"value_range must be positive, got {value_range}")

        quantized: Dict[int, UserRelations] = {}
        for user, items, matrix in self:
            position = np.clip((matrix - min_value) / value_range, 0.0, 1.0)
            target = level_array[0] + position * (level_array[-1] - level_array[0])
            snapped = snap_to_levels(target, level_array)
            np.fill_diagonal(snapped, Preferences.UNKNOWN)
            quantized[user] = (items, snapped)

        return PrefRelations(self.user_count, self.item_count, quantized, quantized=True)

    def get_position_matrix(self) -> RatingMatrix:
        """
        Collapse relations into one preference position per rated item.

        The position of item a is the mean of its off-diagonal relation
        values, EQUALLY_PREFERRED + (wins - losses) / (n - 1) for discrete
        relations. It lies in [LESS_PREFERRED, PREFERRED] and is strictly
        larger for a than for b whenever a is preferred to b.
        """
        if not self.quantized:
            raise PreconditionError(
                "get_position_matrix needs quantized relations; call quantization() first."
            )

        users, items_out, values = [], [], []
        for user, items, matrix in self:
            count = len(items)
            if count == 1:
                positions = np.array([Preferences.EQUALLY_PREFERRED])
            else:
                positions = matrix.sum(axis=1) / (count - 1)
            users.extend([user] * count)
            items_out.extend(items.tolist())
            values.extend(positions.tolist())

        return RatingMatrix.from_triplets(users, items_out, values, self.shape, keep_zeros=True)
