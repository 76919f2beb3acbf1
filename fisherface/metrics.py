"""
This module provides the distance measures used for recognition, the
training-time rejection thresholds, and the metrics used to evaluate a
trained model on a labelled probe set.

Distances are squared Euclidean; the Mahalanobis variant divides each squared
coefficient difference by the matching (L1-normalised) PCA eigenvalue.
Rejected probes are reported with the label REJECTED_LABEL (0), which can
never collide with a class id because class ids start at 1.
"""

import json
import os

import numpy as np
import pandas as pd
from sklearn.metrics import (
    accuracy_score, precision_score, recall_score, f1_score,
    confusion_matrix, classification_report
)

import config
from fisherface.exceptions import DimensionMismatchError

REJECTED_LABEL = 0


def squared_distances_to(point, rows, weights=None):
    """
    Squared distance from one point to every row of a matrix.

    Args:
        point: Vector of shape (n_features,)
        rows: Matrix of shape (n_rows, n_features)
        weights: Optional per-feature divisors (Mahalanobis-style)

    Returns:
        numpy.ndarray: Distances of shape (n_rows,)
    """
    point = np.asarray(point, dtype=np.float64)
    rows = np.atleast_2d(np.asarray(rows, dtype=np.float64))

    if rows.shape[1] != point.shape[0]:
        raise DimensionMismatchError("Point and rows have different lengths",
                                     expected=rows.shape[1], actual=point.shape[0])

    diff_sq = (rows - point) ** 2
    if weights is not None:
        diff_sq = diff_sq / np.asarray(weights, dtype=np.float64)
    return np.sum(diff_sq, axis=1)


def pairwise_squared_distances(points, weights=None):
    """
    Symmetric matrix of squared distances between every pair of rows.

    Args:
        points: Matrix of shape (n_points, n_features)
        weights: Optional per-feature divisors

    Returns:
        numpy.ndarray: Matrix of shape (n_points, n_points) with zero diagonal
    """
    points = np.atleast_2d(np.asarray(points, dtype=np.float64))
    n_points = points.shape[0]
    distances = np.zeros((n_points, n_points))

    for i in range(n_points):
        distances[i, i:] = squared_distances_to(points[i], points[i:], weights)
        distances[i:, i] = distances[i, i:]

    return distances


def compute_threshold(points, weights=None, factor=None):
    """
    Rejection threshold: factor times the largest pairwise squared distance.

    With the default factor of 0.5 this is half the maximum distance between
    any two of the given points (class centroids for the Fisher variant,
    training projections for the PCA variants).
    """
    if factor is None:
        factor = config.THRESHOLD_FACTOR

    distances = pairwise_squared_distances(points, weights)
    if distances.size == 0:
        return 0.0
    return float(factor * np.max(distances))


def nearest_row(point, rows, weights=None):
    """
    Index and distance of the closest row.

    Ties go to the first minimum in ascending row order.

    Returns:
        tuple: (row_index, distance)
    """
    distances = squared_distances_to(point, rows, weights)
    best = int(np.argmin(distances))
    return best, float(distances[best])


def compute_recognition_metrics(y_true, y_pred, target_names=None):
    """
    Compute classification metrics for a batch of recognition results.

    Rejected probes carry REJECTED_LABEL in y_pred and always count as errors
    for accuracy. The rejection rate is reported separately.

    Args:
        y_true: Ground truth class ids
        y_pred: Predicted class ids (REJECTED_LABEL for rejections)
        target_names: Optional mapping class id -> person name for the report

    Returns:
        dict: Dictionary containing all computed metrics including confusion matrix
    """
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    metrics = {}

    metrics["n_probes"] = int(len(y_true))
    metrics["accuracy"] = accuracy_score(y_true, y_pred)
    metrics["precision_macro"] = precision_score(y_true, y_pred, average="macro", zero_division=0)
    metrics["recall_macro"] = recall_score(y_true, y_pred, average="macro", zero_division=0)
    metrics["f1_macro"] = f1_score(y_true, y_pred, average="macro", zero_division=0)
    metrics["f1_weighted"] = f1_score(y_true, y_pred, average="weighted", zero_division=0)
    metrics["rejection_rate"] = float(np.mean(y_pred == REJECTED_LABEL)) if len(y_pred) else 0.0

    labels = sorted(set(y_true.tolist()) | set(y_pred.tolist()))
    metrics["labels"] = [int(label) for label in labels]
    metrics["confusion_matrix"] = confusion_matrix(y_true, y_pred, labels=labels).tolist()

    if target_names is not None:
        true_labels = sorted(set(y_true.tolist()))
        names = [str(target_names.get(label, label)) for label in true_labels]
        metrics["classification_report"] = classification_report(
            y_true, y_pred, labels=true_labels, target_names=names,
            output_dict=True, zero_division=0
        )

    return metrics


def calculate_confidence_intervals(y_true, y_pred, n_bootstrap=1000, confidence_level=0.95, seed=0):
    """
    Compute confidence intervals for accuracy using bootstrap sampling.

    Args:
        y_true: Ground truth labels array
        y_pred: Predicted labels array
        n_bootstrap: Number of bootstrap iterations
        confidence_level: Desired confidence level (default 0.95 for 95% CI)
        seed: Seed of the resampling generator

    Returns:
        dict: Dictionary containing mean accuracy, lower/upper bounds, and std
    """
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    n_samples = len(y_true)

    if n_samples == 0:
        return {"accuracy": 0.0, "lower_bound": 0.0, "upper_bound": 0.0, "std": 0.0}

    rng = np.random.default_rng(seed)
    bootstrap_accuracies = np.empty(n_bootstrap)
    for i in range(n_bootstrap):
        indices = rng.integers(0, n_samples, size=n_samples)
        bootstrap_accuracies[i] = accuracy_score(y_true[indices], y_pred[indices])

    alpha = 1 - confidence_level
    return {
        "accuracy": float(np.mean(bootstrap_accuracies)),
        "lower_bound": float(np.percentile(bootstrap_accuracies, (alpha / 2) * 100)),
        "upper_bound": float(np.percentile(bootstrap_accuracies, (1 - alpha / 2) * 100)),
        "confidence_level": confidence_level,
        "std": float(np.std(bootstrap_accuracies))
    }


def create_metrics_dataframe(metrics_dict, variant):
    row = {
        "variant": variant,
        "accuracy": metrics_dict["accuracy"],
        "precision_macro": metrics_dict["precision_macro"],
        "recall_macro": metrics_dict["recall_macro"],
        "f1_macro": metrics_dict["f1_macro"],
        "rejection_rate": metrics_dict["rejection_rate"]
    }

    if "confidence_interval" in metrics_dict:
        ci = metrics_dict["confidence_interval"]
        row["acc_lower"] = ci["lower_bound"]
        row["acc_upper"] = ci["upper_bound"]

    return pd.DataFrame([row])


def compare_variants(metrics_list, save_path=None):
    """
    Aggregate metrics of several recognizer variants into one table.

    Args:
        metrics_list: List of tuples (variant, metrics_dict)
        save_path: Optional CSV path

    Returns:
        pd.DataFrame: One row per variant, sorted by accuracy
    """
    dfs = [create_metrics_dataframe(metrics_dict, variant) for variant, metrics_dict in metrics_list]
    if not dfs:
        return pd.DataFrame()

    df_comparison = pd.concat(dfs, ignore_index=True)
    df_comparison = df_comparison.sort_values("accuracy", ascending=False).reset_index(drop=True)

    if save_path:
        os.makedirs(os.path.dirname(os.path.abspath(save_path)), exist_ok=True)
        df_comparison.to_csv(save_path, index=False)

    return df_comparison


def _to_builtin(value):
    if isinstance(value, dict):
        return {str(k): _to_builtin(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_builtin(v) for v in value]
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    return value


def save_metrics_to_json(metrics, path):
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w") as f:
        json.dump(_to_builtin(metrics), f, indent=2)


def print_metrics_summary(metrics, title):
    print(f"\n{title}")
    print(f"- Probes: {metrics['n_probes']}")
    print(f"- Accuracy: {metrics['accuracy']:.4f}")
    print(f"- Precision (macro): {metrics['precision_macro']:.4f}")
    print(f"- Recall (macro): {metrics['recall_macro']:.4f}")
    print(f"- F1 (macro): {metrics['f1_macro']:.4f}")
    print(f"- Rejection rate: {metrics['rejection_rate']:.4f}")
    if "confidence_interval" in metrics:
        ci = metrics["confidence_interval"]
        print(f"- Accuracy CI: [{ci['lower_bound']:.4f}, {ci['upper_bound']:.4f}]")
