# fisherface/training.py
"""
Training session: manifest -> PCA -> scatter -> Fisher projection ->
thresholds -> model file.

Each stage fails fast; nothing is retried and a failed session leaves no
model file behind.
"""

import logging

from fisherface.exceptions import InsufficientClassesError, InvalidArgumentError
from fisherface.lda import FisherLDA, MIN_FISHERFACES
from fisherface.linalg import get_backend
from fisherface.metrics import compute_threshold
from fisherface.model_store import FisherfaceModel, save_model
from fisherface.pca import EigenSubspace
from fisherface.preprocessing import DatasetLoader
from fisherface.scatter import compute_scatter_matrices

logger = logging.getLogger(__name__)


class Trainer:
    """
    One training session over a manifest.

    Stage methods are meant to be called in order; run() does so and
    returns the stored model.
    """

    def __init__(self, manifest_path=None, model_path=None, linalg=None):
        self.manifest_path = manifest_path
        self.model_path = model_path
        self.linalg = get_backend(linalg)

        self.dataset = None
        self.n_eigen_vals = 0
        self.subspace = None
        self.projected_faces = None
        self.scatter = None
        self.lda = None
        self.euclidean_threshold = 0.0
        self.pca_euclidean_threshold = 0.0
        self.mahalanobis_threshold = 0.0
        self.model = None

    def load_images(self):
        self.dataset = DatasetLoader(self.manifest_path).load()
        return self.dataset.n_images

    def set_dataset(self, dataset):
        self.dataset = dataset
        return dataset.n_images

    def _require(self, attribute, stage):
        if getattr(self, attribute) is None:
            raise InvalidArgumentError(f"Training stage '{stage}' must run first")

    def create_subspace(self):
        self._require("dataset", "load_images")
        dataset = self.dataset

        # Fisher projection needs at least MIN_FISHERFACES + 1 classes
        if dataset.n_classes - 1 < MIN_FISHERFACES:
            raise InsufficientClassesError("Number of classes needs to be more than 2",
                                           expected=MIN_FISHERFACES + 1, actual=dataset.n_classes)

        # only nImages - nClasses components keep the within-class scatter invertible,
        # and the Fisher basis needs nClasses - 1 of them
        self.n_eigen_vals = dataset.n_images - dataset.n_classes
        if self.n_eigen_vals < dataset.n_classes - 1:
            raise InvalidArgumentError("Need at least 2 * nClasses - 1 images",
                                       expected=2 * dataset.n_classes - 1, actual=dataset.n_images)

        self.subspace = EigenSubspace(self.n_eigen_vals, linalg=self.linalg)
        self.subspace.fit(dataset.images)
        return self.subspace

    def project_onto_subspace(self):
        self._require("subspace", "create_subspace")
        self.projected_faces = self.subspace.transform(self.dataset.as_matrix())
        return self.projected_faces

    def do_lda(self):
        self._require("projected_faces", "project_onto_subspace")
        self.scatter = compute_scatter_matrices(self.projected_faces, self.dataset.class_groups,
                                                linalg=self.linalg)
        self.lda = FisherLDA(linalg=self.linalg).fit(self.scatter)
        return self.lda

    def calculate_thresholds(self):
        self._require("lda", "do_lda")
        self.euclidean_threshold = compute_threshold(self.lda.projected_classes_)

        # thresholds of the plain PCA variants, over every training image
        self.pca_euclidean_threshold = compute_threshold(self.projected_faces)
        self.mahalanobis_threshold = compute_threshold(self.projected_faces,
                                                       weights=self.subspace.eigenvalues_)

        logger.info("Thresholds: fisher=%.6g pca_euclidean=%.6g mahalanobis=%.6g",
                    self.euclidean_threshold, self.pca_euclidean_threshold,
                    self.mahalanobis_threshold)
        return self.euclidean_threshold

    def build_model(self):
        self._require("lda", "do_lda")
        dataset = self.dataset

        self.model = FisherfaceModel(
            names=dataset.names,
            image_paths=dataset.image_paths,
            person_ids=dataset.person_ids,
            pca_eigenvectors=self.subspace.eigenvector_images(),
            pca_eigenvalues=self.subspace.eigenvalues_,
            average_image=self.subspace.average_image(),
            average_projected_image=self.scatter.average_projected,
            lda_eigenvectors=self.lda.eigenvectors_,
            lda_eigenvalues=self.lda.eigenvalues_,
            projected_lda_faces=self.lda.projected_classes_,
            euclidean_threshold=self.euclidean_threshold,
            projected_face_matrix=self.projected_faces,
            class_means=self.scatter.class_means,
            pca_euclidean_threshold=self.pca_euclidean_threshold,
            mahalanobis_threshold=self.mahalanobis_threshold,
        )
        return self.model

    def store_data(self):
        if self.model is None:
            self.build_model()
        if self.model_path is not None:
            save_model(self.model, self.model_path)
        return self.model

    def run(self):
        if self.dataset is None:
            self.load_images()
        self.create_subspace()
        self.project_onto_subspace()
        self.do_lda()
        self.calculate_thresholds()
        return self.store_data()


def fit_model(dataset, linalg=None):
    """Train on an in-memory FaceDataset without touching the filesystem."""
    trainer = Trainer(linalg=linalg)
    trainer.set_dataset(dataset)
    return trainer.run()


def train(manifest_path, model_output_path, linalg=None):
    """
    Train a Fisherface model from a manifest and write it to disk.

    Args:
        manifest_path: Manifest of "<classId> <personName> <imagePath>" lines
        model_output_path: Where the model file is written
        linalg: Optional linear-algebra backend

    Returns:
        FisherfaceModel: The trained and stored model
    """
    logger.info("Training from %s", manifest_path)
    model = Trainer(manifest_path, model_output_path, linalg=linalg).run()
    logger.info("Database created: %s", model_output_path)
    return model
