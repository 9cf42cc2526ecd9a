"""
Sparse user x item rating container.

An absent entry means "unrated". Matrices built from raw ratings drop zeros,
since a zero rating is unrated. Derived and predicted matrices keep the
sparsity pattern of their source, so a cell whose value is 0.0 (a level-0
quantization, a score clipped to zero) stays known. Every method that derives
a new matrix returns a new RatingMatrix; the wrapped CSR matrix is never
modified after construction.
"""

from __future__ import annotations

from typing import Iterator, Sequence, Tuple, Union

import numpy as np
import scipy.sparse as sp

from ..validators import ValidationError, validate_quantizer, validate_same_shape


def snap_to_levels(values: np.ndarray, levels: np.ndarray) -> np.ndarray:
    """
    Map each value to the nearest level. Ties go to the lower level.
    """
    values = np.asarray(values, dtype=float)
    distances = np.abs(values[..., None] - levels)
    return levels[np.argmin(distances, axis=-1)]


def level_indexes(values: np.ndarray, levels: np.ndarray) -> np.ndarray:
    """
    Index of the nearest level for each value.
    """
    values = np.asarray(values, dtype=float)
    return np.argmin(np.abs(values[..., None] - levels), axis=-1)


class RatingMatrix:
    """
    Immutable wrapper around a scipy CSR matrix of ratings.

    Rows are user indexes, columns are item indexes. Explicit zeros are
    dropped on construction unless `keep_zeros=True`; either way `nnz` is the
    number of known cells.
    """

    def __init__(
        self,
        matrix: Union[sp.spmatrix, np.ndarray, "RatingMatrix"],
        keep_zeros: bool = False,
    ) -> None:
        if isinstance(matrix, RatingMatrix):
            csr = matrix.matrix.copy()
        elif sp.issparse(matrix):
            csr = sp.csr_matrix(matrix, dtype=float, copy=True)
        else:
            dense = np.asarray(matrix, dtype=float)
            if dense.ndim != 2:
                raise ValidationError(f"RatingMatrix needs a 2-d matrix, got ndim={dense.ndim}")
            csr = sp.csr_matrix(dense)

        csr.sum_duplicates()
        if not keep_zeros:
            csr.eliminate_zeros()
        csr.sort_indices()
        self._matrix = csr

    # ------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------
    @classmethod
    def zeros(cls, user_count: int, item_count: int) -> "RatingMatrix":
        return cls(sp.csr_matrix((user_count, item_count), dtype=float))

    @classmethod
    def from_triplets(
        cls,
        users: Sequence[int],
        items: Sequence[int],
        values: Sequence[float],
        shape: Tuple[int, int],
        keep_zeros: bool = False,
    ) -> "RatingMatrix":
        """
        Build a matrix from (user, item, value) triplets.

        Duplicate cells are rejected rather than summed. With `keep_zeros=True`
        every triplet stays a known cell, including those with value 0.0.
        """
        users = np.asarray(users, dtype=int)
        items = np.asarray(items, dtype=int)
        values = np.asarray(values, dtype=float)
        if not (len(users) == len(items) == len(values)):
            raise ValidationError("users, items and values must have equal length.")

        cells = users.astype(np.int64) * int(shape[1]) + items
        if len(np.unique(cells)) != len(cells):
            raise ValidationError("Duplicate (user, item) cells in triplets.")

        coo = sp.coo_matrix((values, (users, items)), shape=shape, dtype=float)
        return cls(coo, keep_zeros=keep_zeros)

    # ------------------------------------------------------------
    # Basic properties
    # ------------------------------------------------------------
    @property
    def matrix(self) -> sp.csr_matrix:
        return self._matrix

    @property
    def shape(self) -> Tuple[int, int]:
        return self._matrix.shape

    @property
    def user_count(self) -> int:
        return self._matrix.shape[0]

    @property
    def item_count(self) -> int:
        return self._matrix.shape[1]

    @property
    def nnz(self) -> int:
        return self._matrix.nnz

    def __getitem__(self, index: Tuple[int, int]) -> float:
        user, item = index
        return float(self._matrix[user, item])

    def __repr__(self) -> str:
        return f"RatingMatrix(shape={self.shape}, nnz={self.nnz})"

    def to_dense(self) -> np.ndarray:
        return self._matrix.toarray()

    def known_mask(self) -> np.ndarray:
        """Dense boolean mask of known cells."""
        mask = np.zeros(self.shape, dtype=bool)
        users, items = self.known_indexes()
        mask[users, items] = True
        return mask

    def known_indexes(self) -> Tuple[np.ndarray, np.ndarray]:
        """(users, items) arrays of known cells in row-major order."""
        coo = self._matrix.tocoo()
        return coo.row.astype(int), coo.col.astype(int)

    def known_triplets(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(users, items, values) arrays of known cells in row-major order."""
        coo = self._matrix.tocoo()
        return coo.row.astype(int), coo.col.astype(int), coo.data.astype(float)

    def enumerate_known(self) -> Iterator[Tuple[int, int, float]]:
        """
        Iterate over (user, item, value) for every known cell, row-major.
        """
        coo = self._matrix.tocoo()
        for user, item, value in zip(coo.row, coo.col, coo.data):
            yield int(user), int(item), float(value)

    def items_of_user(self, user: int) -> np.ndarray:
        row = self._matrix.getrow(user)
        return row.indices.astype(int)

    def row_values(self, user: int) -> Tuple[np.ndarray, np.ndarray]:
        """(items, values) of one user's known cells."""
        start, end = self._matrix.indptr[user], self._matrix.indptr[user + 1]
        return (
            self._matrix.indices[start:end].astype(int),
            self._matrix.data[start:end].astype(float),
        )

    # ------------------------------------------------------------
    # Derivations
    # ------------------------------------------------------------
    def indexes_of_non_zero_elements(self) -> "RatingMatrix":
        """
        Same-shape matrix holding 1.0 at every known cell.
        """
        mask = self._matrix.copy()
        mask.data = np.ones_like(mask.data)
        return RatingMatrix(mask, keep_zeros=True)

    def multiply(self, scalar: float) -> "RatingMatrix":
        return RatingMatrix(self._matrix * float(scalar), keep_zeros=True)

    def merge_non_overlap(self, other: "RatingMatrix") -> "RatingMatrix":
        """
        Union of the known cells of two matrices.

        Cells known in both must carry the same value; a conflicting value
        raises ValidationError.
        """
        validate_same_shape(self.shape, other.shape, "merged rating matrices")

        users, items, values = self.known_triplets()
        other_users, other_items, other_values = other.known_triplets()
        item_count = self.item_count
        cells = users.astype(np.int64) * item_count + items
        other_cells = other_users.astype(np.int64) * item_count + other_items

        _, mine, theirs = np.intersect1d(cells, other_cells, return_indices=True)
        if np.any(values[mine] != other_values[theirs]):
            raise ValidationError("merge_non_overlap found overlapping cells with conflicting values.")

        extra = np.ones(len(other_cells), dtype=bool)
        extra[theirs] = False
        return RatingMatrix.from_triplets(
            np.concatenate([users, other_users[extra]]),
            np.concatenate([items, other_items[extra]]),
            np.concatenate([values, other_values[extra]]),
            self.shape,
            keep_zeros=True,
        )

    def quantization(
        self,
        min_value: float,
        value_range: float,
        quantizer: Sequence[float],
    ) -> "RatingMatrix":
        """
        Rewrite every known value as a quantizer level.

        Values are normalized with (min_value, value_range) onto the span of
        the quantizer and snapped to the nearest level. With
        min_value = quantizer[0] and value_range = quantizer[-1] - quantizer[0]
        this is plain nearest-level rounding.
        """
        levels = validate_quantizer(quantizer)
        if value_range <= 0:
            raise ValidationError(f"value_range must be positive, got {value_range}")

        quantized = self._matrix.copy()
        position = np.clip((quantized.data - min_value) / value_range, 0.0, 1.0)
        target = levels[0] + position * (levels[-1] - levels[0])
        quantized.data = snap_to_levels(target, levels)
        return RatingMatrix(quantized, keep_zeros=True)

    # ------------------------------------------------------------
    # Reductions over known cells
    # ------------------------------------------------------------
    def global_mean(self) -> float:
        if self.nnz == 0:
            return 0.0
        return float(self._matrix.data.mean())

    def _axis_means(self, axis: int) -> np.ndarray:
        sums = np.asarray(self._matrix.sum(axis=axis)).ravel()
        if axis == 1:
            counts = np.diff(self._matrix.indptr)
        else:
            counts = np.bincount(self._matrix.indices, minlength=self.item_count)
        means = np.full(sums.shape, self.global_mean())
        rated = counts > 0
        means[rated] = sums[rated] / counts[rated]
        return means

    def user_means(self) -> np.ndarray:
        """Per-user mean over known cells; unrated users get the global mean."""
        return self._axis_means(axis=1)

    def item_means(self) -> np.ndarray:
        """Per-item mean over known cells; unrated items get the global mean."""
        return self._axis_means(axis=0)

    def dataset_brief(self, title: str) -> str:
        density = self.nnz / float(max(self.user_count * self.item_count, 1))
        return (
            f"{title}: users={self.user_count}, items={self.item_count}, "
            f"ratings={self.nnz}, density={density:.4%}, mean={self.global_mean():.4f}"
        )
