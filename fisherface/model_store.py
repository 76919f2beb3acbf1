"""
Persistence of trained Fisherface models.

A model file is a flat key/value mapping written with joblib. Keys follow the
training database schema:

    nImages, nPeople, PersonID_{1..nPeople}, ImageID_{0..nImages-1},
    nLDAEigens, nClasses, nFisherFaces, PersonIDMatrix,
    PCAEigenVector_{0..nLDAEigens-1}, PCAEigenValues, LDAEigenVectors,
    LDAEigenValues, ProjectedLDAFaceMat, AverageImage, AverageProjectedImage,
    EuclideanThreshold

plus Class_{i}, ClassAverageImage_ID{id}, ProjectedFaceMatrix, ImageHeight,
ImageWidth, PCAEuclideanThreshold, MahalanobisThreshold and FormatVersion. Loading is
all-or-nothing: every count is checked against the arrays it describes.
"""

import logging
import os

import joblib
import numpy as np

import config
from fisherface.exceptions import CorruptModelError, ResourceError
from fisherface.lda import FisherLDA
from fisherface.pca import EigenSubspace
from fisherface.preprocessing import ClassGroups

logger = logging.getLogger(__name__)


class FisherfaceModel:
    """
    Everything a recognizer needs, as produced by a training session.

    Attributes:
        names: Person name per training image (PersonID_1 is names[0])
        image_paths: Source path per training image
        person_ids: Class id per training image
        pca_eigenvectors: (n_lda_eigens, height, width) eigenface images
        pca_eigenvalues: L1-normalised PCA eigenvalues
        average_image: Mean training image, (height, width)
        average_projected_image: Mean PCA coefficients of the training set
        lda_eigenvectors: (n_fisherfaces, n_lda_eigens) Fisher basis
        lda_eigenvalues: Singular values of the retained Fisher directions
        projected_lda_faces: (n_classes, n_fisherfaces) class centroids
        euclidean_threshold: Fisherspace rejection threshold
        projected_face_matrix: (n_images, n_lda_eigens) PCA coefficients, or None
        class_means: (n_classes, n_lda_eigens) PCA-space class means, or None
        pca_euclidean_threshold: Threshold of the PCA Euclidean variant
        mahalanobis_threshold: Threshold of the PCA Mahalanobis variant
    """

    def __init__(self, names, image_paths, person_ids, pca_eigenvectors, pca_eigenvalues,
                 average_image, average_projected_image, lda_eigenvectors, lda_eigenvalues,
                 projected_lda_faces, euclidean_threshold, projected_face_matrix=None,
                 class_means=None, pca_euclidean_threshold=None, mahalanobis_threshold=None):
        self.names = list(names)
        self.image_paths = list(image_paths)
        self.person_ids = np.asarray(person_ids, dtype=np.int32)
        self.pca_eigenvectors = np.asarray(pca_eigenvectors, dtype=np.float64)
        self.pca_eigenvalues = np.asarray(pca_eigenvalues, dtype=np.float64)
        self.average_image = np.asarray(average_image, dtype=np.float64)
        self.average_projected_image = np.asarray(average_projected_image, dtype=np.float64)
        self.lda_eigenvectors = np.asarray(lda_eigenvectors, dtype=np.float64)
        self.lda_eigenvalues = np.asarray(lda_eigenvalues, dtype=np.float64)
        self.projected_lda_faces = np.asarray(projected_lda_faces, dtype=np.float64)
        self.euclidean_threshold = float(euclidean_threshold)
        self.projected_face_matrix = (None if projected_face_matrix is None
                                      else np.asarray(projected_face_matrix, dtype=np.float64))
        self.class_means = None if class_means is None else np.asarray(class_means, dtype=np.float64)
        self.pca_euclidean_threshold = (None if pca_euclidean_threshold is None
                                        else float(pca_euclidean_threshold))
        self.mahalanobis_threshold = (None if mahalanobis_threshold is None
                                      else float(mahalanobis_threshold))

        self.class_groups = ClassGroups.from_person_ids(self.person_ids)

    @property
    def n_images(self):
        return len(self.person_ids)

    @property
    def n_people(self):
        return len(self.names)

    @property
    def n_lda_eigens(self):
        return self.pca_eigenvectors.shape[0]

    @property
    def n_classes(self):
        return self.class_groups.n_classes

    @property
    def n_fisherfaces(self):
        return self.lda_eigenvectors.shape[0]

    @property
    def image_shape(self):
        return self.average_image.shape

    @property
    def class_ids(self):
        return list(self.class_groups.class_ids)

    def class_name(self, class_id):
        """Name of a class: the manifest name of its first training image."""
        first_index = self.class_groups.indices(class_id)[0]
        return self.names[first_index]

    def subspace(self, linalg=None):
        return EigenSubspace.from_arrays(self.average_image, self.pca_eigenvectors,
                                         self.pca_eigenvalues, linalg=linalg)

    def fisher(self, linalg=None):
        return FisherLDA.from_arrays(self.lda_eigenvectors, self.lda_eigenvalues,
                                     self.projected_lda_faces, linalg=linalg)

    def to_record(self):
        """Flatten the model into the persisted key/value schema."""
        record = {
            "FormatVersion": config.MODEL_FORMAT_VERSION,
            "nImages": self.n_images,
            "nPeople": self.n_people,
        }

        for i, name in enumerate(self.names):
            record[f"PersonID_{i + 1}"] = name
        for i, path in enumerate(self.image_paths):
            record[f"ImageID_{i}"] = path

        record["nLDAEigens"] = self.n_lda_eigens
        record["nClasses"] = self.n_classes
        record["nFisherFaces"] = self.n_fisherfaces
        record["ImageHeight"], record["ImageWidth"] = (int(n) for n in self.image_shape)
        record["PersonIDMatrix"] = self.person_ids.copy()

        for i in range(self.n_lda_eigens):
            record[f"PCAEigenVector_{i}"] = self.pca_eigenvectors[i].copy()

        record["PCAEigenValues"] = self.pca_eigenvalues.copy()
        record["LDAEigenVectors"] = self.lda_eigenvectors.copy()
        record["LDAEigenValues"] = self.lda_eigenvalues.copy()
        record["ProjectedLDAFaceMat"] = self.projected_lda_faces.copy()
        record["AverageImage"] = self.average_image.copy()
        record["AverageProjectedImage"] = self.average_projected_image.copy()

        for i, class_id in enumerate(self.class_ids):
            record[f"Class_{i}"] = int(class_id)
        if self.class_means is not None:
            for row, class_id in enumerate(self.class_ids):
                record[f"ClassAverageImage_ID{class_id}"] = self.class_means[row].copy()
        if self.projected_face_matrix is not None:
            record["ProjectedFaceMatrix"] = self.projected_face_matrix.copy()

        record["EuclideanThreshold"] = self.euclidean_threshold
        if self.pca_euclidean_threshold is not None:
            record["PCAEuclideanThreshold"] = self.pca_euclidean_threshold
        if self.mahalanobis_threshold is not None:
            record["MahalanobisThreshold"] = self.mahalanobis_threshold

        return record

    @classmethod
    def from_record(cls, record, path=None):
        """
        Rebuild a model from its key/value record.

        Args:
            record: Mapping produced by to_record()
            path: Source file, used for error context

        Returns:
            FisherfaceModel: The reconstructed model

        Raises:
            CorruptModelError: If a key is missing, malformed, or its length
                               disagrees with the declared counts
        """
        if not isinstance(record, dict):
            raise CorruptModelError("Model file does not hold a key/value record",
                                    path=path, actual=type(record).__name__)

        reader = _RecordReader(record, path)

        n_images = reader.count("nImages")
        n_people = reader.count("nPeople")
        n_lda_eigens = reader.count("nLDAEigens")
        n_classes = reader.count("nClasses")
        n_fisherfaces = reader.count("nFisherFaces")

        # one PersonID entry per training image
        if n_people != n_images:
            raise CorruptModelError("nPeople disagrees with nImages",
                                    path=path, expected=n_images, actual=n_people)

        names = [reader.string(f"PersonID_{i + 1}") for i in range(n_people)]
        image_paths = [reader.string(f"ImageID_{i}") for i in range(n_images)]

        person_ids = reader.array("PersonIDMatrix", (n_images,), dtype=np.int32)
        average_image = reader.array("AverageImage", ndim=2)
        stored_shape = (reader.optional_count("ImageHeight"), reader.optional_count("ImageWidth"))
        if stored_shape != (None, None) and stored_shape != average_image.shape:
            raise CorruptModelError("Image size disagrees with AverageImage",
                                    path=path, expected=stored_shape, actual=average_image.shape)
        pca_eigenvectors = np.stack(
            [reader.array(f"PCAEigenVector_{i}", average_image.shape) for i in range(n_lda_eigens)]
        ) if n_lda_eigens else np.zeros((0,) + average_image.shape)

        pca_eigenvalues = reader.array("PCAEigenValues", (n_lda_eigens,))
        lda_eigenvectors = reader.array("LDAEigenVectors", (n_fisherfaces, n_lda_eigens))
        lda_eigenvalues = reader.array("LDAEigenValues", (n_fisherfaces,))
        projected_lda_faces = reader.array("ProjectedLDAFaceMat", (n_classes, n_fisherfaces))
        average_projected = reader.array("AverageProjectedImage", (n_lda_eigens,))
        euclidean_threshold = reader.real("EuclideanThreshold")

        distinct = sorted(set(int(i) for i in person_ids))
        if len(distinct) != n_classes:
            raise CorruptModelError("nClasses disagrees with PersonIDMatrix",
                                    path=path, expected=n_classes, actual=len(distinct))
        if n_fisherfaces != n_classes - 1:
            raise CorruptModelError("nFisherFaces must be nClasses - 1",
                                    path=path, expected=n_classes - 1, actual=n_fisherfaces)

        stored_ids = [reader.optional_count(f"Class_{i}") for i in range(n_classes)]
        if any(class_id is not None for class_id in stored_ids) and stored_ids != distinct:
            raise CorruptModelError("Class list disagrees with PersonIDMatrix",
                                    path=path, expected=distinct, actual=stored_ids)

        class_means = None
        mean_keys = [f"ClassAverageImage_ID{class_id}" for class_id in distinct]
        if all(key in record for key in mean_keys):
            class_means = np.stack([reader.array(key, (n_lda_eigens,)) for key in mean_keys])

        projected_face_matrix = None
        if "ProjectedFaceMatrix" in record:
            projected_face_matrix = reader.array("ProjectedFaceMatrix", (n_images, n_lda_eigens))

        return cls(
            names=names,
            image_paths=image_paths,
            person_ids=person_ids,
            pca_eigenvectors=pca_eigenvectors,
            pca_eigenvalues=pca_eigenvalues,
            average_image=average_image,
            average_projected_image=average_projected,
            lda_eigenvectors=lda_eigenvectors,
            lda_eigenvalues=lda_eigenvalues,
            projected_lda_faces=projected_lda_faces,
            euclidean_threshold=euclidean_threshold,
            projected_face_matrix=projected_face_matrix,
            class_means=class_means,
            pca_euclidean_threshold=reader.optional_real("PCAEuclideanThreshold"),
            mahalanobis_threshold=reader.optional_real("MahalanobisThreshold"),
        )

    def __eq__(self, other):
        if not isinstance(other, FisherfaceModel):
            return NotImplemented

        mine, theirs = self.to_record(), other.to_record()
        if mine.keys() != theirs.keys():
            return False
        for key, value in mine.items():
            if isinstance(value, np.ndarray):
                if not np.array_equal(value, theirs[key]) or value.dtype != theirs[key].dtype:
                    return False
            elif value != theirs[key]:
                return False
        return True

    __hash__ = None


class _RecordReader:
    """Typed accessors over a raw record that raise CorruptModelError."""

    def __init__(self, record, path):
        self.record = record
        self.path = path

    def _get(self, key):
        if key not in self.record:
            raise CorruptModelError("Model record is missing a field", path=self.path, key=key)
        return self.record[key]

    def count(self, key):
        value = self._get(key)
        if isinstance(value, (bool, np.bool_)) or not isinstance(value, (int, np.integer)) or value < 0:
            raise CorruptModelError("Model field is not a count", path=self.path, key=key, actual=value)
        return int(value)

    def optional_count(self, key):
        return self.count(key) if key in self.record else None

    def string(self, key):
        value = self._get(key)
        if not isinstance(value, str):
            raise CorruptModelError("Model field is not a string", path=self.path, key=key)
        return value

    def real(self, key):
        value = self._get(key)
        try:
            return float(value)
        except (TypeError, ValueError):
            raise CorruptModelError("Model field is not a number",
                                    path=self.path, key=key) from None

    def optional_real(self, key):
        return self.real(key) if key in self.record else None

    def array(self, key, shape=None, ndim=None, dtype=np.float64):
        value = self._get(key)
        if not isinstance(value, np.ndarray):
            raise CorruptModelError("Model field is not an array", path=self.path, key=key)
        if shape is not None and value.shape != tuple(shape):
            raise CorruptModelError("Stored array length disagrees with declared count",
                                    path=self.path, key=key, expected=tuple(shape), actual=value.shape)
        if ndim is not None and value.ndim != ndim:
            raise CorruptModelError("Stored array has the wrong rank",
                                    path=self.path, key=key, expected=ndim, actual=value.ndim)
        return value.astype(dtype, copy=False)


def save_model(model, path, compress=None):
    """
    Write a model to disk.

    Args:
        model: FisherfaceModel to persist
        path: Destination file; parent directories are created
        compress: joblib compression level (defaults to config.MODEL_COMPRESS)

    Returns:
        str: The path written

    Raises:
        ResourceError: If the file cannot be written
    """
    path = str(path)
    if compress is None:
        compress = config.MODEL_COMPRESS

    try:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        joblib.dump(model.to_record(), path, compress=compress)
    except OSError as e:
        raise ResourceError("Could not open database for writing", path=path) from e

    logger.info("Model saved: %s (%d images, %d classes)", path, model.n_images, model.n_classes)
    return path


def load_model(path):
    """
    Read a model written by save_model().

    Raises:
        ResourceError: If the file is missing or cannot be decoded
        CorruptModelError: If the record is malformed or inconsistent
    """
    path = str(path)
    if not os.path.isfile(path):
        raise ResourceError("Could not open database", path=path)

    try:
        record = joblib.load(path)
    except Exception as e:
        raise ResourceError("Could not decode database", path=path) from e

    model = FisherfaceModel.from_record(record, path)
    logger.info("Model loaded: %s (%d images, %d classes, %d Fisherfaces)",
                path, model.n_images, model.n_classes, model.n_fisherfaces)
    return model
