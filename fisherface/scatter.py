# fisherface/scatter.py
"""
Within-class and between-class scatter in PCA-coefficient space.

Working on the nEigenVals-long coefficient vectors keeps both scatter
matrices small (nEigenVals x nEigenVals) instead of pixels x pixels.
"""

import logging

import numpy as np

import config
from fisherface.exceptions import DimensionMismatchError, SingularMatrixError
from fisherface.linalg import get_backend

logger = logging.getLogger(__name__)


class ScatterMatrices:
    """
    Result of the scatter computation.

    Attributes:
        average_projected: Global mean of the projected faces, (n_eigen,)
        class_means: Per-class means, (n_classes, n_eigen), rows in class id order
        within: Within-class scatter matrix
        within_inverse: Inverse of the within-class scatter matrix
        between: Between-class scatter matrix
    """

    def __init__(self, average_projected, class_means, within, within_inverse, between):
        self.average_projected = average_projected
        self.class_means = class_means
        self.within = within
        self.within_inverse = within_inverse
        self.between = between


def calc_average(rows):
    return np.mean(np.asarray(rows, dtype=np.float64), axis=0)


def calc_class_means(projected, class_groups):
    means = np.zeros((class_groups.n_classes, projected.shape[1]))
    for row, (class_id, indices) in enumerate(class_groups.items()):
        means[row] = calc_average(projected[indices])
    return means


def calc_within_scatter(projected, class_groups, class_means, linalg=None):
    linalg = get_backend(linalg)
    n_eigen = projected.shape[1]
    within = np.zeros((n_eigen, n_eigen))

    for row, (class_id, indices) in enumerate(class_groups.items()):
        # rows are (member - class mean)
        deviations = projected[indices] - class_means[row]
        class_scatter = linalg.matmul(linalg.transpose(deviations), deviations)
        within += class_scatter / len(indices)

    return within


def calc_between_scatter(class_means, average_projected, class_groups, linalg=None):
    linalg = get_backend(linalg)
    n_eigen = class_means.shape[1]
    between = np.zeros((n_eigen, n_eigen))

    for row, (class_id, indices) in enumerate(class_groups.items()):
        diff = (class_means[row] - average_projected).reshape(-1, 1)
        between += linalg.matmul(diff, linalg.transpose(diff)) / len(indices)

    return between


def invert_within_scatter(within, linalg=None, condition_limit=None):
    """
    Invert the within-class scatter matrix.

    Args:
        within: Square within-class scatter matrix
        linalg: Linear-algebra backend providing invert()
        condition_limit: Largest condition number accepted as invertible

    Returns:
        numpy.ndarray: A new array holding the inverse

    Raises:
        SingularMatrixError: If the matrix is singular or numerically so
    """
    linalg = get_backend(linalg)
    if condition_limit is None:
        condition_limit = config.SINGULAR_CONDITION_LIMIT

    condition = np.linalg.cond(within)
    if not np.isfinite(condition) or condition > condition_limit:
        raise SingularMatrixError("Within-class scatter matrix is not invertible",
                                  expected=f"cond <= {condition_limit:g}", actual=float(condition))

    try:
        inverse = np.array(linalg.invert(within), dtype=np.float64, copy=True)
    except np.linalg.LinAlgError as e:
        raise SingularMatrixError("Within-class scatter matrix is not invertible") from e

    if not np.all(np.isfinite(inverse)):
        raise SingularMatrixError("Within-class scatter inverse is not finite")

    return inverse


def compute_scatter_matrices(projected, class_groups, linalg=None):
    """
    Compute class means and both scatter matrices of the projected faces.

    Args:
        projected: Projected face matrix, (n_images, n_eigen)
        class_groups: ClassGroups mapping class ids to rows of projected
        linalg: Linear-algebra backend

    Returns:
        ScatterMatrices: Means, scatter matrices and the within-class inverse
    """
    projected = np.asarray(projected, dtype=np.float64)
    n_rows = sum(len(indices) for _, indices in class_groups.items())
    if projected.ndim != 2 or n_rows != projected.shape[0]:
        raise DimensionMismatchError("Projected face matrix does not match class groups",
                                     expected=n_rows, actual=projected.shape)

    average_projected = calc_average(projected)
    class_means = calc_class_means(projected, class_groups)
    within = calc_within_scatter(projected, class_groups, class_means, linalg)
    between = calc_between_scatter(class_means, average_projected, class_groups, linalg)
    within_inverse = invert_within_scatter(within, linalg)

    logger.info("Scatter matrices computed for %d classes (%dx%d)",
                class_groups.n_classes, within.shape[0], within.shape[1])

    return ScatterMatrices(average_projected, class_means, within, within_inverse, between)
