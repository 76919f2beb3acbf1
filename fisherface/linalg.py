# fisherface/linalg.py
"""
Linear-algebra capability injected into the training and recognition stages.

The pipeline only talks to the five primitives below, so a deterministic fake
can stand in for numpy in tests or a different backend can be plugged in.
"""

import numpy as np


class NumpyLinearAlgebra:
    """Default backend built on ``numpy.linalg``."""

    name = "numpy"

    def eigen_decompose(self, matrix, max_components=None):
        """
        Eigen-decomposition of a symmetric matrix.

        Args:
            matrix: Square symmetric array
            max_components: Keep at most this many leading eigenpairs

        Returns:
            tuple: (eigenvalues, eigenvectors) sorted by descending eigenvalue,
                   eigenvectors stored as columns
        """
        eigenvalues, eigenvectors = np.linalg.eigh(matrix)

        # eigh returns ascending order
        order = np.argsort(eigenvalues, kind="stable")[::-1]
        eigenvalues = eigenvalues[order]
        eigenvectors = eigenvectors[:, order]

        if max_components is not None:
            eigenvalues = eigenvalues[:max_components]
            eigenvectors = eigenvectors[:, :max_components]

        return eigenvalues, eigenvectors

    def svd(self, matrix):
        U, S, Vt = np.linalg.svd(matrix, full_matrices=True)
        return U, S, Vt

    def matmul(self, a, b):
        return np.matmul(a, b)

    def invert(self, matrix):
        return np.linalg.inv(matrix)

    def transpose(self, matrix):
        return np.transpose(matrix).copy()


_default_backend = NumpyLinearAlgebra()


def get_backend(linalg=None):
    """Return ``linalg`` or the shared numpy backend."""
    return _default_backend if linalg is None else linalg
