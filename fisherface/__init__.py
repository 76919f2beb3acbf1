"""
Fisherface (PCA + LDA) face recognition package.

This package provides modules for:
- preprocessing: Manifest parsing, image loading and class groupings
- pca: Eigenface subspace construction and projection
- scatter: Within-class and between-class scatter matrices
- lda: Fisher projection and per-class centroids
- metrics: Distances, rejection thresholds and evaluation metrics
- model_store: Model file persistence
- training: Training session and train()
- recognition: Recognizer state machine and recognize()
- linalg: Injectable linear-algebra backend
- exceptions: Error taxonomy
"""

from fisherface.exceptions import (
    AllocationError, CorruptModelError, DimensionMismatchError, FisherfaceError,
    ImageSizeMismatchError, InsufficientClassesError, InvalidArgumentError, ParseError, ResourceError,
    SingularMatrixError
)
from fisherface.model_store import FisherfaceModel, load_model, save_model
from fisherface.recognition import RecognitionResult, Recognizer, recognize
from fisherface.training import Trainer, train

__version__ = "1.0.0"
