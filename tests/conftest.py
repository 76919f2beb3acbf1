import numpy as np
import pytest
from PIL import Image

from fisherface.preprocessing import DatasetLoader, ManifestWriter
from fisherface.training import train

IMAGE_SHAPE = (8, 8)
NAMES = ["alice", "bob", "carol", "dave", "erin"]


def synthetic_faces(n_classes=3, per_class=3, shape=IMAGE_SHAPE, noise=4.0, seed=0):
    """
    Well-separated classes: one random prototype per class plus small noise.

    per_class is either one count for every class or a count per class.
    """
    rng = np.random.default_rng(seed)
    prototypes = rng.uniform(30, 225, size=(n_classes,) + tuple(shape))
    counts = list(per_class) if isinstance(per_class, (list, tuple)) else [per_class] * n_classes

    faces = {}
    for c in range(n_classes):
        faces[c + 1] = [
            np.clip(np.rint(prototypes[c] + rng.normal(0, noise, shape)), 0, 255).astype(np.uint8)
            for _ in range(counts[c])
        ]
    return faces


def write_png(path, pixels):
    Image.fromarray(np.asarray(pixels, dtype=np.uint8)).save(path)
    return str(path)


class FaceSet:
    """Synthetic faces written as PNGs plus a manifest listing them."""

    def __init__(self, root, faces, manifest_name="train.txt"):
        self.root = root
        self.faces = faces
        self.paths = {}
        self.manifest = str(root / manifest_name)

        writer = ManifestWriter(self.manifest, base_dir=root)
        for class_id, images in faces.items():
            name = NAMES[class_id - 1]
            for i, pixels in enumerate(images):
                file_name = f"{name}_{i}.png"
                write_png(root / file_name, pixels)
                record = writer.add_entry(name, file_name)
                self.paths.setdefault(class_id, []).append(record.image_path)
        writer.write()

    def all_images(self):
        for class_id, images in self.faces.items():
            for i, pixels in enumerate(images):
                yield class_id, self.paths[class_id][i], pixels


@pytest.fixture
def make_face_set(tmp_path):
    def _make(n_classes=3, per_class=3, seed=0, subdir="faces"):
        root = tmp_path / subdir
        root.mkdir(exist_ok=True)
        return FaceSet(root, synthetic_faces(n_classes, per_class, seed=seed))
    return _make


@pytest.fixture
def face_set(make_face_set):
    return make_face_set()


@pytest.fixture
def dataset(face_set):
    return DatasetLoader(face_set.manifest).load()


@pytest.fixture
def model_path(tmp_path):
    return str(tmp_path / "models" / "fisherfaces.joblib")


@pytest.fixture
def trained(face_set, model_path):
    model = train(face_set.manifest, model_path)
    return model, model_path
