# fisherface/pca.py
import logging

import numpy as np

from fisherface.exceptions import (
    AllocationError, DimensionMismatchError, InvalidArgumentError, SingularMatrixError
)
from fisherface.linalg import get_backend

logger = logging.getLogger(__name__)


class EigenSubspace:
    """
    PCA subspace of the training faces (eigenfaces).

    fit() builds the mean image and the leading eigenvectors of the sample
    covariance; transform()/project() map pixel data to PCA coefficients.
    """

    def __init__(self, n_components, linalg=None):
        self.n_components = n_components
        self.linalg = get_backend(linalg)
        self.components_ = None
        self.mean_ = None
        self.eigenvalues_ = None
        self.image_shape = None

    def fit(self, X, image_shape=None):
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 3:
            image_shape = X.shape[1:]
            X = X.reshape(X.shape[0], -1)

        n_images, n_pixels = X.shape
        if n_images < 2:
            raise InvalidArgumentError("Need at least 2 face images to build a subspace",
                                       actual=n_images)
        if not 1 <= self.n_components <= n_images - 1:
            raise InvalidArgumentError("Number of components out of range",
                                       expected=(1, n_images - 1), actual=self.n_components)

        self.image_shape = tuple(image_shape) if image_shape is not None else (n_pixels,)

        try:
            self.mean_ = np.mean(X, axis=0)
            X_centered = X - self.mean_

            # Snapshot method: eigenvectors of the small n_images x n_images matrix
            gram = self.linalg.matmul(X_centered, self.linalg.transpose(X_centered)) / n_images
            values, vectors = self.linalg.eigen_decompose(gram, max_components=self.n_components)

            components = self.linalg.transpose(self.linalg.matmul(self.linalg.transpose(X_centered), vectors))
        except MemoryError as e:
            raise AllocationError("Could not allocate eigenvector buffers",
                                  expected=(self.n_components, n_pixels)) from e

        values = np.asarray(values, dtype=np.float64)
        tolerance = np.finfo(np.float64).eps * n_images * max(float(values[0]), 0.0)
        if values[0] <= 0 or np.any(values <= tolerance):
            raise SingularMatrixError("Training images span fewer dimensions than requested",
                                      expected=self.n_components,
                                      actual=int(np.count_nonzero(values > tolerance)))

        norms = np.linalg.norm(components, axis=1)
        self.components_ = components / norms[:, np.newaxis]

        # L1 normalisation keeps later divisions away from tiny values
        self.eigenvalues_ = values / np.sum(np.abs(values))

        logger.info("PCA subspace built: %d eigenvectors of %d pixels", self.n_components, n_pixels)
        return self

    def _check_fitted(self):
        if self.components_ is None or self.mean_ is None:
            raise InvalidArgumentError("Eigen subspace has not been fitted")

    def transform(self, X):
        self._check_fitted()
        X = np.asarray(X, dtype=np.float64)
        X = X.reshape(X.shape[0], -1) if X.ndim == 3 else X
        if X.ndim == 1:
            X = X.reshape(1, -1)

        if X.shape[1] != self.mean_.shape[0]:
            raise DimensionMismatchError("Image size does not match the subspace",
                                         expected=self.mean_.shape[0], actual=X.shape[1])

        X_centered = X - self.mean_
        return self.linalg.matmul(X_centered, self.linalg.transpose(self.components_))

    def project(self, image):
        """PCA coefficients of a single image."""
        return self.transform(np.asarray(image, dtype=np.float64).reshape(1, -1))[0]

    def inverse_transform(self, X_reduced):
        self._check_fitted()
        return np.dot(X_reduced, self.components_) + self.mean_

    def eigenvector_images(self):
        return self.components_.reshape((self.components_.shape[0],) + tuple(self.image_shape))

    def average_image(self):
        return self.mean_.reshape(self.image_shape)

    @classmethod
    def from_arrays(cls, mean_image, eigenvectors, eigenvalues, linalg=None):
        """Rebuild a fitted subspace from persisted arrays."""
        mean_image = np.asarray(mean_image, dtype=np.float64)
        eigenvectors = np.asarray(eigenvectors, dtype=np.float64)

        subspace = cls(eigenvectors.shape[0], linalg=linalg)
        subspace.image_shape = mean_image.shape
        subspace.mean_ = mean_image.reshape(-1)
        subspace.components_ = eigenvectors.reshape(eigenvectors.shape[0], -1)
        subspace.eigenvalues_ = np.asarray(eigenvalues, dtype=np.float64)
        return subspace
