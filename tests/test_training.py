import os

import numpy as np
import pytest

from fisherface.exceptions import (
    InsufficientClassesError, InvalidArgumentError, ParseError, ResourceError
)
from fisherface.linalg import NumpyLinearAlgebra
from fisherface.metrics import pairwise_squared_distances
from fisherface.recognition import recognize
from fisherface.training import Trainer, fit_model, train


class RecordingLinearAlgebra(NumpyLinearAlgebra):
    """Numpy backend that records which primitives were used."""

    name = "recording"

    def __init__(self):
        self.calls = []

    def eigen_decompose(self, matrix, max_components=None):
        self.calls.append("eigen_decompose")
        return super().eigen_decompose(matrix, max_components)

    def svd(self, matrix):
        self.calls.append("svd")
        return super().svd(matrix)

    def matmul(self, a, b):
        self.calls.append("matmul")
        return super().matmul(a, b)

    def invert(self, matrix):
        self.calls.append("invert")
        return super().invert(matrix)

    def transpose(self, matrix):
        self.calls.append("transpose")
        return super().transpose(matrix)


def test_train_writes_model(face_set, model_path):
    model = train(face_set.manifest, model_path)

    assert os.path.isfile(model_path)
    assert model.n_images == 9
    assert model.n_classes == 3
    assert model.n_lda_eigens == 9 - 3
    assert model.n_fisherfaces == 2
    assert model.image_shape == (8, 8)
    assert model.class_ids == [1, 2, 3]


def test_threshold_is_half_max_centroid_distance(trained):
    model, _ = trained
    expected = 0.5 * pairwise_squared_distances(model.projected_lda_faces).max()
    assert model.euclidean_threshold == pytest.approx(expected)
    assert model.euclidean_threshold > 0


def test_pca_thresholds(trained):
    model, _ = trained
    expected = 0.5 * pairwise_squared_distances(model.projected_face_matrix).max()
    weighted = 0.5 * pairwise_squared_distances(model.projected_face_matrix,
                                                weights=model.pca_eigenvalues).max()
    assert model.pca_euclidean_threshold == pytest.approx(expected)
    assert model.mahalanobis_threshold == pytest.approx(weighted)


def test_two_samples_per_class(make_face_set, tmp_path):
    face_set = make_face_set(n_classes=3, per_class=2)
    model = train(face_set.manifest, str(tmp_path / "small.joblib"))

    assert model.n_lda_eigens == 3
    assert model.projected_lda_faces.shape == (3, 2)


def test_retraining_is_stable_up_to_sign(face_set, tmp_path):
    first = train(face_set.manifest, str(tmp_path / "a.joblib"))
    second = train(face_set.manifest, str(tmp_path / "b.joblib"))

    np.testing.assert_allclose(np.abs(first.pca_eigenvectors), np.abs(second.pca_eigenvectors))
    np.testing.assert_allclose(np.abs(first.lda_eigenvectors), np.abs(second.lda_eigenvectors))
    np.testing.assert_allclose(np.abs(first.projected_lda_faces), np.abs(second.projected_lda_faces))
    assert first.euclidean_threshold == pytest.approx(second.euclidean_threshold)


def test_two_classes_rejected(make_face_set, model_path):
    face_set = make_face_set(n_classes=2, per_class=3)
    with pytest.raises(InsufficientClassesError):
        train(face_set.manifest, model_path)
    assert not os.path.exists(model_path)


def test_one_image_per_class_rejected(make_face_set, model_path):
    face_set = make_face_set(n_classes=4, per_class=1)
    with pytest.raises(InvalidArgumentError):
        train(face_set.manifest, model_path)


def test_too_few_images_for_fisher_basis(make_face_set, model_path, monkeypatch):
    # 6 images, 4 classes: 2 PCA components cannot hold 3 Fisherfaces
    face_set = make_face_set(n_classes=4, per_class=(3, 1, 1, 1))

    def fail_fit(self, X, image_shape=None):
        raise AssertionError("PCA must not run")

    monkeypatch.setattr("fisherface.training.EigenSubspace.fit", fail_fit)
    with pytest.raises(InvalidArgumentError) as excinfo:
        train(face_set.manifest, model_path)

    assert excinfo.value.expected == 7
    assert excinfo.value.actual == 6
    assert not os.path.exists(model_path)


def test_smallest_valid_class_sizes(make_face_set, model_path):
    face_set = make_face_set(n_classes=4, per_class=(3, 2, 1, 1))
    model = train(face_set.manifest, model_path)

    assert model.n_lda_eigens == 3
    assert model.n_fisherfaces == 3
    for class_id, path, _ in face_set.all_images():
        assert recognize(path, model_path).class_id == class_id


def test_malformed_manifest(tmp_path, model_path):
    manifest = tmp_path / "bad.txt"
    manifest.write_text("0 alice a.png\n")
    with pytest.raises(ParseError):
        train(str(manifest), model_path)


def test_missing_manifest(tmp_path, model_path):
    with pytest.raises(ResourceError):
        train(str(tmp_path / "missing.txt"), model_path)


def test_stages_out_of_order(dataset):
    trainer = Trainer()
    trainer.set_dataset(dataset)
    with pytest.raises(InvalidArgumentError):
        trainer.do_lda()


def test_fit_model_in_memory(dataset):
    model = fit_model(dataset)
    assert model.n_fisherfaces == 2
    assert model.names == dataset.names


def test_injected_backend(dataset):
    backend = RecordingLinearAlgebra()
    model = fit_model(dataset, linalg=backend)

    assert {"eigen_decompose", "svd", "invert", "matmul", "transpose"} <= set(backend.calls)
    assert backend.calls.count("eigen_decompose") == 1
    assert backend.calls.count("svd") == 1

    reference = fit_model(dataset)
    np.testing.assert_allclose(model.projected_lda_faces, reference.projected_lda_faces)
    assert model.euclidean_threshold == pytest.approx(reference.euclidean_threshold)
