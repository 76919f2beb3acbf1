# fisherface/lda.py
import logging

import numpy as np

from fisherface.exceptions import DimensionMismatchError, InsufficientClassesError, InvalidArgumentError
from fisherface.linalg import get_backend

logger = logging.getLogger(__name__)

MIN_FISHERFACES = 2


class FisherLDA:
    """
    Fisher projection on top of the PCA coefficients.

    Keeps the leading n_classes - 1 directions of within^-1 * between, as
    ordered by the SVD's descending singular values, and stores one
    Fisherspace centroid per class.
    """

    def __init__(self, linalg=None):
        self.linalg = get_backend(linalg)
        self.n_fisherfaces = None
        self.eigenvectors_ = None
        self.eigenvalues_ = None
        self.projected_classes_ = None

    def fit(self, scatter):
        n_classes, n_eigen = scatter.class_means.shape
        self.n_fisherfaces = n_classes - 1

        if self.n_fisherfaces < MIN_FISHERFACES:
            raise InsufficientClassesError("Number of classes needs to be more than 2",
                                           expected=MIN_FISHERFACES + 1, actual=n_classes)
        if self.n_fisherfaces > n_eigen:
            raise DimensionMismatchError("More Fisherfaces than PCA components",
                                         expected=n_eigen, actual=self.n_fisherfaces)

        product = self.linalg.matmul(scatter.within_inverse, scatter.between)
        U, S, Vt = self.linalg.svd(product)

        # rows of U^T are the directions, already sorted by singular value
        self.eigenvectors_ = np.array(self.linalg.transpose(U)[:self.n_fisherfaces], dtype=np.float64)
        self.eigenvalues_ = np.array(S[:self.n_fisherfaces], dtype=np.float64)

        self.projected_classes_ = self.transform(scatter.class_means)

        logger.info("Fisher subspace built: %d Fisherfaces from %d PCA components",
                    self.n_fisherfaces, n_eigen)
        return self

    def transform(self, coefficients):
        """Project PCA coefficients (vector or matrix of rows) into Fisherspace."""
        if self.eigenvectors_ is None:
            raise InvalidArgumentError("Fisher projection has not been fitted")

        coefficients = np.asarray(coefficients, dtype=np.float64)
        single = coefficients.ndim == 1
        rows = coefficients.reshape(1, -1) if single else coefficients

        if rows.shape[1] != self.eigenvectors_.shape[1]:
            raise DimensionMismatchError("Coefficient length does not match the Fisher basis",
                                         expected=self.eigenvectors_.shape[1], actual=rows.shape[1])

        projected = self.linalg.transpose(
            self.linalg.matmul(self.eigenvectors_, self.linalg.transpose(rows))
        )
        return projected[0] if single else projected

    @classmethod
    def from_arrays(cls, eigenvectors, eigenvalues, projected_classes, linalg=None):
        lda = cls(linalg=linalg)
        lda.eigenvectors_ = np.asarray(eigenvectors, dtype=np.float64)
        lda.eigenvalues_ = np.asarray(eigenvalues, dtype=np.float64)
        lda.projected_classes_ = np.asarray(projected_classes, dtype=np.float64)
        lda.n_fisherfaces = lda.eigenvectors_.shape[0]
        return lda
