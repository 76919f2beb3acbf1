"""
This module handles loading of the training manifest and its face images.

It provides functionality for:
- Parsing "<classId> <personName> <imagePath>" manifest lines
- Loading pre-processed single-channel face images
- Validating that every image shares the same dimensions
- Grouping image rows by class id once, at load time
- Writing new manifests from (person name, file name) entries
"""

import logging
import os

import numpy as np
from PIL import Image, UnidentifiedImageError

import config
from fisherface.exceptions import DimensionMismatchError, ImageSizeMismatchError, ParseError, ResourceError

logger = logging.getLogger(__name__)


class ManifestRecord:
    """One manifest line: class id, person name and image path."""

    __slots__ = ("class_id", "person_name", "image_path")

    def __init__(self, class_id, person_name, image_path):
        self.class_id = class_id
        self.person_name = person_name
        self.image_path = image_path

    def __eq__(self, other):
        if not isinstance(other, ManifestRecord):
            return NotImplemented
        return (self.class_id, self.person_name, self.image_path) == \
               (other.class_id, other.person_name, other.image_path)

    def __repr__(self):
        return f"ManifestRecord({self.class_id!r}, {self.person_name!r}, {self.image_path!r})"

    def to_line(self):
        return config.MANIFEST_DELIMITER.join([str(self.class_id), self.person_name, self.image_path])


def parse_manifest_line(line, line_number=None, manifest_path=None):
    """
    Parse a single manifest line.

    The line is split on the first two delimiters only, so the image path may
    contain spaces while the person name may not.

    Args:
        line: Raw manifest line (trailing newline allowed)
        line_number: 1-based line number, used for error context
        manifest_path: Manifest path, used for error context

    Returns:
        ManifestRecord: The parsed record

    Raises:
        ParseError: If a delimiter is missing, the id is not an integer,
                    or the id is not a positive integer
    """
    text = line.rstrip("\r\n")
    delimiter = config.MANIFEST_DELIMITER

    first = text.find(delimiter)
    if first == -1:
        raise ParseError("Manifest line is missing the class id delimiter",
                         path=manifest_path, line_number=line_number, line=text)

    second = text.find(delimiter, first + 1)
    if second == -1:
        raise ParseError("Manifest line is missing the person name delimiter",
                         path=manifest_path, line_number=line_number, line=text)

    raw_id = text[:first]
    person_name = text[first + 1:second]
    image_path = text[second + 1:]

    try:
        class_id = int(raw_id)
    except ValueError:
        raise ParseError("Class id is not an integer",
                         path=manifest_path, line_number=line_number, line=text) from None

    if class_id == 0:
        raise ParseError("Training person ids should start with 1",
                         path=manifest_path, line_number=line_number, line=text)
    if class_id < 0:
        raise ParseError("Class id must be a positive integer",
                         path=manifest_path, line_number=line_number, line=text)
    if not person_name:
        raise ParseError("Person name is empty",
                         path=manifest_path, line_number=line_number, line=text)
    if not image_path:
        raise ParseError("Image path is empty",
                         path=manifest_path, line_number=line_number, line=text)

    return ManifestRecord(class_id, person_name, image_path)


def read_manifest(manifest_path):
    """
    Read every record of a manifest file.

    Reading stops at end of file or at the first blank line.

    Args:
        manifest_path: Path to the manifest text file

    Returns:
        list: ManifestRecord objects in file order

    Raises:
        ResourceError: If the manifest cannot be opened
        ParseError: If any line is malformed
    """
    try:
        with open(manifest_path, "r", encoding=config.MANIFEST_ENCODING) as f:
            lines = f.readlines()
    except OSError as e:
        raise ResourceError("Could not open images file", path=str(manifest_path)) from e

    records = []
    for line_number, line in enumerate(lines, start=1):
        if not line.strip():
            break
        records.append(parse_manifest_line(line, line_number, str(manifest_path)))

    return records


def load_grayscale_image(image_path, require_single_channel=False):
    """
    Load an image as a 2D float64 array of raw grayscale intensities.

    Args:
        image_path: Path to the image file
        require_single_channel: Reject multi-band images instead of converting

    Returns:
        numpy.ndarray: Array of shape (height, width)

    Raises:
        ResourceError: If the image cannot be found or decoded
        DimensionMismatchError: If require_single_channel is set and the
                                image has more than one band
    """
    try:
        with Image.open(image_path) as img:
            bands = len(img.getbands())
            if require_single_channel and bands != 1:
                raise DimensionMismatchError("Image is not single-channel",
                                             path=str(image_path), expected=1, actual=bands)
            if img.mode not in ("L", "I", "I;16", "F"):
                img = img.convert("L")
            pixels = np.asarray(img, dtype=np.float64)
    except (OSError, UnidentifiedImageError) as e:
        raise ResourceError("Could not load image", path=str(image_path)) from e

    return pixels


class ClassGroups:
    """
    Explicit class id -> row indices mapping.

    Built once from the per-image class ids. Class ids are kept in ascending
    order; that order is the row order of every per-class matrix (class means,
    Fisherspace centroids).
    """

    def __init__(self, person_ids):
        self._groups = {}
        for row, class_id in enumerate(person_ids):
            self._groups.setdefault(int(class_id), []).append(row)

        self.class_ids = sorted(self._groups)
        self._rows = {class_id: i for i, class_id in enumerate(self.class_ids)}

    @classmethod
    def from_person_ids(cls, person_ids):
        return cls(person_ids)

    @property
    def n_classes(self):
        return len(self.class_ids)

    @property
    def counts(self):
        return {class_id: len(self._groups[class_id]) for class_id in self.class_ids}

    def indices(self, class_id):
        return list(self._groups[class_id])

    def row_of(self, class_id):
        return self._rows[class_id]

    def class_at(self, row):
        return self.class_ids[row]

    def items(self):
        for class_id in self.class_ids:
            yield class_id, list(self._groups[class_id])

    def __len__(self):
        return self.n_classes

    def __contains__(self, class_id):
        return class_id in self._groups

    def __eq__(self, other):
        if not isinstance(other, ClassGroups):
            return NotImplemented
        return self._groups == other._groups


class FaceDataset:
    """
    Ordered training images plus their class bookkeeping.

    Attributes:
        records: ManifestRecord per image, in manifest order
        images: Array of shape (n_images, height, width)
        person_ids: Integer class id per image
        names: Person name per image
        image_paths: Source path per image
        class_groups: ClassGroups built from person_ids
    """

    def __init__(self, records, images):
        self.records = list(records)
        self.images = np.asarray(images, dtype=np.float64)

        if self.images.ndim != 3 or len(self.records) != self.images.shape[0]:
            raise DimensionMismatchError("Images must be a stack matching the records",
                                         expected=len(self.records), actual=self.images.shape)

        self.person_ids = np.array([r.class_id for r in self.records], dtype=np.int32)
        self.names = [r.person_name for r in self.records]
        self.image_paths = [r.image_path for r in self.records]
        self.class_groups = ClassGroups(self.person_ids)

    @property
    def n_images(self):
        return self.images.shape[0]

    @property
    def n_classes(self):
        return self.class_groups.n_classes

    @property
    def image_shape(self):
        return self.images.shape[1:]

    def as_matrix(self):
        """Flatten every image into a row: (n_images, height * width)."""
        return self.images.reshape(self.n_images, -1)


class DatasetLoader:
    """
    Manifest-driven loader for pre-processed training faces.

    Attributes:
        manifest_path: Manifest file to read
        data_info: Dictionary containing dataset metadata after load()
    """

    def __init__(self, manifest_path):
        """Initialize the loader with the manifest path and empty state."""
        self.manifest_path = str(manifest_path)
        self.data_info = {}

    def load(self):
        """
        Read the manifest and load every image it lists.

        Returns:
            FaceDataset: Loaded images and class groupings

        Raises:
            ResourceError: If the manifest or an image cannot be read
            ParseError: If a manifest line is malformed
            DimensionMismatchError: If an image differs in size from the first one
        """
        logger.info("Loading manifest %s", self.manifest_path)
        records = read_manifest(self.manifest_path)

        if not records:
            raise ResourceError("Manifest lists no images", path=self.manifest_path)

        images = []
        expected_shape = None
        for record in records:
            pixels = load_grayscale_image(record.image_path)

            # All images must be the same size as the first one
            if expected_shape is None:
                expected_shape = pixels.shape
            elif pixels.shape != expected_shape:
                raise ImageSizeMismatchError("Images should be same size",
                                             path=record.image_path,
                                             expected=expected_shape, actual=pixels.shape)
            images.append(pixels)

        dataset = FaceDataset(records, np.stack(images, axis=0))

        h, w = dataset.image_shape
        self.data_info = {
            "n_images": dataset.n_images,
            "n_classes": dataset.n_classes,
            "n_features": h * w,
            "image_shape": (h, w),
            "class_ids": list(dataset.class_groups.class_ids)
        }

        logger.info("Dataset loaded: %d images, %d classes, image shape %dx%d",
                    dataset.n_images, dataset.n_classes, h, w)
        return dataset

    def get_data_info(self):
        """
        Retrieve stored dataset metadata.

        Returns:
            dict: Dataset information including dimensions and class count
        """
        return self.data_info


class ManifestWriter:
    """
    Builds a manifest from (person name, file name) entries.

    Class ids are handed out as 1, 2, ... in the order each person name is
    first seen. File names are joined onto base_dir.
    """

    def __init__(self, manifest_path, base_dir=""):
        self.manifest_path = str(manifest_path)
        self.base_dir = str(base_dir)
        self.records = []
        self._ids = {}

    def set_base_dir(self, base_dir):
        self.base_dir = str(base_dir)

    def add_entry(self, person_name, file_name):
        if not person_name or config.MANIFEST_DELIMITER in person_name:
            raise ParseError("Person name must be non-empty and contain no spaces",
                             person_name=person_name)

        class_id = self._ids.setdefault(person_name, len(self._ids) + 1)
        image_path = os.path.join(self.base_dir, file_name) if self.base_dir else file_name
        record = ManifestRecord(class_id, person_name, image_path)
        self.records.append(record)
        return record

    def write(self):
        """Write the manifest; returns the number of records written."""
        directory = os.path.dirname(self.manifest_path)
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.manifest_path, "w", encoding=config.MANIFEST_ENCODING) as f:
                for record in self.records:
                    f.write(record.to_line() + "\n")
        except OSError as e:
            raise ResourceError("Could not write manifest", path=self.manifest_path) from e

        logger.info("Wrote %d manifest entries to %s", len(self.records), self.manifest_path)
        return len(self.records)


def compute_dataset_statistics(dataset):
    """Images per class and overall counts for a loaded dataset."""
    counts = dataset.class_groups.counts
    per_class = np.array(list(counts.values()))
    names = {}
    for class_id in dataset.class_groups.class_ids:
        names[class_id] = dataset.names[dataset.class_groups.indices(class_id)[0]]

    return {
        "n_images": dataset.n_images,
        "n_classes": dataset.n_classes,
        "image_shape": tuple(dataset.image_shape),
        "images_per_class": counts,
        "class_names": names,
        "min_per_class": int(per_class.min()),
        "max_per_class": int(per_class.max()),
        "mean_per_class": float(per_class.mean())
    }


def print_dataset_statistics(stats):
    print("DATASET STATISTICS")
    print(f"- Images: {stats['n_images']}")
    print(f"- Classes: {stats['n_classes']}")
    h, w = stats["image_shape"]
    print(f"- Image shape: {h}x{w}")
    print(f"- Images per class: min={stats['min_per_class']}, "
          f"max={stats['max_per_class']}, mean={stats['mean_per_class']:.2f}")
    for class_id, count in stats["images_per_class"].items():
        print(f"  {class_id:>4} {stats['class_names'][class_id]:<24} {count}")
