# fisherface/recognition.py
"""
Recognition of a single pre-processed probe face against a trained model.

The Recognizer moves through UNLOADED -> MODEL_LOADED -> PROBE_PROJECTED ->
CLASSIFIED. The canonical classifier compares the probe's Fisherspace
projection with the per-class centroids; the plain PCA classifiers
(Euclidean and Mahalanobis over every training image) can be selected
instead through the same interface.
"""

import enum
import logging

import numpy as np

import config
from fisherface.exceptions import DimensionMismatchError, InvalidArgumentError
from fisherface.metrics import REJECTED_LABEL, nearest_row
from fisherface.model_store import load_model
from fisherface.preprocessing import load_grayscale_image, read_manifest

logger = logging.getLogger(__name__)


class RecognizerState(enum.Enum):
    UNLOADED = "unloaded"
    MODEL_LOADED = "model_loaded"
    PROBE_PROJECTED = "probe_projected"
    CLASSIFIED = "classified"


class RecognitionResult:
    """Outcome of classifying one probe; class_id/person_name are None on reject."""

    def __init__(self, class_id, person_name, distance, threshold, variant):
        self.class_id = class_id
        self.person_name = person_name
        self.distance = distance
        self.threshold = threshold
        self.variant = variant

    @property
    def accepted(self):
        return self.class_id is not None

    @property
    def label(self):
        return self.class_id if self.accepted else REJECTED_LABEL

    def as_tuple(self):
        if self.accepted:
            return self.class_id, self.person_name, self.distance
        return None, self.distance

    def to_dict(self):
        return {
            "variant": self.variant,
            "accepted": self.accepted,
            "class_id": self.class_id,
            "person_name": self.person_name,
            "distance": self.distance,
            "threshold": self.threshold
        }

    def __repr__(self):
        if self.accepted:
            return (f"RecognitionResult(class_id={self.class_id}, person_name={self.person_name!r}, "
                    f"distance={self.distance:.6g}, variant={self.variant!r})")
        return f"RecognitionResult(rejected, distance={self.distance:.6g}, variant={self.variant!r})"


class FisherClassifier:
    """Nearest class centroid in Fisherspace."""

    name = config.VARIANT_FISHER

    def project(self, coefficients, fisher):
        return fisher.transform(coefficients)

    def references(self, model):
        return model.projected_lda_faces

    def label_of(self, model, row):
        return model.class_groups.class_at(row)

    def distance_weights(self, model):
        return None

    def threshold(self, model):
        return model.euclidean_threshold


class PCAEuclideanClassifier:
    """Nearest training image in PCA-coefficient space."""

    name = config.VARIANT_PCA_EUCLIDEAN

    def project(self, coefficients, fisher):
        return coefficients

    def references(self, model):
        if model.projected_face_matrix is None:
            raise InvalidArgumentError("Model has no projected face matrix for PCA recognition",
                                       variant=self.name)
        return model.projected_face_matrix

    def label_of(self, model, row):
        return int(model.person_ids[row])

    def distance_weights(self, model):
        return None

    def threshold(self, model):
        if model.pca_euclidean_threshold is None:
            raise InvalidArgumentError("Model has no PCA Euclidean threshold", variant=self.name)
        return model.pca_euclidean_threshold


class PCAMahalanobisClassifier(PCAEuclideanClassifier):
    """PCA nearest neighbour with each coefficient scaled by its eigenvalue."""

    name = config.VARIANT_PCA_MAHALANOBIS

    def distance_weights(self, model):
        return model.pca_eigenvalues

    def threshold(self, model):
        if model.mahalanobis_threshold is None:
            raise InvalidArgumentError("Model has no Mahalanobis threshold", variant=self.name)
        return model.mahalanobis_threshold


CLASSIFIERS = {
    FisherClassifier.name: FisherClassifier,
    PCAEuclideanClassifier.name: PCAEuclideanClassifier,
    PCAMahalanobisClassifier.name: PCAMahalanobisClassifier,
}


def get_classifier(variant):
    try:
        return CLASSIFIERS[variant]()
    except KeyError:
        raise InvalidArgumentError("Unknown recognizer variant",
                                   expected=sorted(CLASSIFIERS), actual=variant) from None


class Recognizer:
    """
    Recognition session for one probe.

    Attributes:
        state: Current RecognizerState
        model: Loaded FisherfaceModel
        result: RecognitionResult once classified
    """

    def __init__(self, model_path=None, variant=None, linalg=None, model=None):
        self.model_path = model_path
        self.classifier = get_classifier(variant or config.DEFAULT_VARIANT)
        self.linalg = linalg

        self.model = None
        self.subspace = None
        self.fisher = None
        self.faces = []
        self.probe_path = None
        self.projected_probe = None
        self.result = None
        self.state = RecognizerState.UNLOADED

        if model is not None:
            self._use_model(model)

    @property
    def variant(self):
        return self.classifier.name

    def _expect(self, *states):
        if self.state not in states:
            raise InvalidArgumentError("Recognizer is in the wrong state for this operation",
                                       expected=[s.value for s in states], actual=self.state.value)

    def _use_model(self, model):
        self.model = model
        self.subspace = model.subspace(self.linalg)
        self.fisher = model.fisher(self.linalg)
        self.faces = []
        self.projected_probe = None
        self.result = None
        self.state = RecognizerState.MODEL_LOADED

    def load_model(self):
        """Load the training database; raises ResourceError if missing or malformed."""
        self._expect(RecognizerState.UNLOADED)
        if self.model_path is None:
            raise InvalidArgumentError("No model path given")
        self._use_model(load_model(self.model_path))
        return self.model

    def set_probe(self, pixels, probe_path=None):
        """Use an in-memory single-channel face as the probe."""
        self._expect(RecognizerState.MODEL_LOADED, RecognizerState.PROBE_PROJECTED,
                     RecognizerState.CLASSIFIED)

        pixels = np.asarray(pixels, dtype=np.float64)
        if pixels.ndim != 2:
            raise DimensionMismatchError("Probe must be a single-channel image",
                                         path=probe_path, expected=2, actual=pixels.ndim)
        if pixels.shape != self.model.image_shape:
            raise DimensionMismatchError("Probe size differs from the training images",
                                         path=probe_path, expected=self.model.image_shape,
                                         actual=pixels.shape)

        self.faces = [pixels]
        self.probe_path = probe_path
        self.projected_probe = None
        self.result = None
        self.state = RecognizerState.MODEL_LOADED
        return pixels

    def load_probe(self, probe_path):
        pixels = load_grayscale_image(probe_path, require_single_channel=True)
        return self.set_probe(pixels, probe_path=str(probe_path))

    def project_probe(self, face_num=0):
        """Project a probe face through the PCA subspace, then the classifier's space."""
        self._expect(RecognizerState.MODEL_LOADED)
        if not 0 <= face_num < len(self.faces):
            raise InvalidArgumentError("Invalid face number argument",
                                       expected=(0, len(self.faces) - 1), actual=face_num)

        coefficients = self.subspace.project(self.faces[face_num])
        self.projected_probe = self.classifier.project(coefficients, self.fisher)
        self.state = RecognizerState.PROBE_PROJECTED
        return self.projected_probe

    def classify(self):
        self._expect(RecognizerState.PROBE_PROJECTED)
        model = self.model

        references = self.classifier.references(model)
        row, distance = nearest_row(self.projected_probe, references,
                                    self.classifier.distance_weights(model))
        threshold = self.classifier.threshold(model)

        if distance <= threshold:
            class_id = self.classifier.label_of(model, row)
            self.result = RecognitionResult(class_id, model.class_name(class_id), distance,
                                            threshold, self.variant)
            logger.info("Found %s (class %d), distance %.6g <= threshold %.6g",
                        self.result.person_name, class_id, distance, threshold)
        else:
            self.result = RecognitionResult(None, None, distance, threshold, self.variant)
            logger.info("Could not find person, distance %.6g > threshold %.6g", distance, threshold)

        self.state = RecognizerState.CLASSIFIED
        return self.result

    def find_face(self, face_num=0):
        """
        Project and classify one probe face.

        A probe that is already projected is classified as is; face_num is
        only used when a projection is still needed.
        """
        if self.state is RecognizerState.CLASSIFIED:
            self.state = RecognizerState.MODEL_LOADED
        if self.state is not RecognizerState.PROBE_PROJECTED:
            self.project_probe(face_num)
        return self.classify()


def recognize(probe_image_path, model_path, variant=None, linalg=None):
    """
    Classify a pre-processed probe image against a stored model.

    Args:
        probe_image_path: Single-channel face image, same size as the training faces
        model_path: Model file written by training
        variant: Classifier variant (defaults to config.DEFAULT_VARIANT)
        linalg: Optional linear-algebra backend

    Returns:
        RecognitionResult: Accepted match or rejection, with the distance
    """
    recognizer = Recognizer(model_path, variant=variant, linalg=linalg)
    recognizer.load_model()
    recognizer.load_probe(probe_image_path)
    return recognizer.find_face(0)


def evaluate_manifest(manifest_path, model_path, variants=None, linalg=None):
    """
    Recognize every probe of a labelled manifest with each variant.

    Args:
        manifest_path: Manifest whose class ids are the expected answers
        model_path: Model file written by training
        variants: Variants to run (defaults to config.VARIANTS)

    Returns:
        dict: variant -> list of per-probe dicts (expected id, result fields)
    """
    model = load_model(model_path)
    records = read_manifest(manifest_path)
    variants = variants or config.VARIANTS

    results = {}
    for variant in variants:
        recognizer = Recognizer(variant=variant, linalg=linalg, model=model)
        rows = []
        for record in records:
            recognizer.load_probe(record.image_path)
            result = recognizer.find_face(0)

            row = result.to_dict()
            row["expected_id"] = record.class_id
            row["predicted_id"] = result.label
            row["probe"] = record.image_path
            rows.append(row)

        logger.info("Evaluated %d probes with %s", len(rows), variant)
        results[variant] = rows

    return results
