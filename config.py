# config.py
import logging
import os

VERBOSE = True

# Manifest lines are "<classId> <personName> <imagePath>"
MANIFEST_DELIMITER = ' '
MANIFEST_ENCODING = 'utf-8'

# Classifier variants served by the recognizer
VARIANT_FISHER = 'fisher'
VARIANT_PCA_EUCLIDEAN = 'pca_euclidean'
VARIANT_PCA_MAHALANOBIS = 'pca_mahalanobis'
VARIANTS = [VARIANT_FISHER, VARIANT_PCA_EUCLIDEAN, VARIANT_PCA_MAHALANOBIS]
DEFAULT_VARIANT = VARIANT_FISHER

# Within-class scatter with a larger condition number is treated as singular
SINGULAR_CONDITION_LIMIT = 1e12

THRESHOLD_FACTOR = 0.5

MODEL_FORMAT_VERSION = 1
MODEL_COMPRESS = 3

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
RESULTS_PATH = os.environ.get("FISHERFACE_RESULTS", os.path.join(BASE_DIR, "results"))
MODELS_PATH = os.path.join(RESULTS_PATH, "models")
METRICS_PATH = os.path.join(RESULTS_PATH, "metrics")
DEFAULT_MODEL_FILE = os.path.join(MODELS_PATH, "fisherfaces.joblib")

LOG_FILE = os.path.join(RESULTS_PATH, "fisherface.log")
LOG_LEVEL = os.environ.get("FISHERFACE_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level=None, log_file=LOG_FILE):
    """Attach console and file handlers to the root logger."""
    handlers = [logging.StreamHandler()]
    if log_file:
        os.makedirs(os.path.dirname(log_file), exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level or LOG_LEVEL,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )


def get_config_summary():
    return {
        'Recognition': {
            'Default Variant': DEFAULT_VARIANT,
            'Variants': VARIANTS,
            'Threshold Factor': THRESHOLD_FACTOR
        },
        'Numerics': {
            'Singular Condition Limit': SINGULAR_CONDITION_LIMIT
        },
        'Storage': {
            'Model Format Version': MODEL_FORMAT_VERSION,
            'Models Path': MODELS_PATH,
            'Metrics Path': METRICS_PATH,
            'Log File': LOG_FILE
        }
    }


def print_config():
    print("FISHERFACE CONFIGURATION")
    summary = get_config_summary()
    for section, params in summary.items():
        print(f"\n{section}:")
        for key, value in params.items():
            print(f"  {key}: {value}")
