import joblib
import numpy as np
import pytest

import config
from fisherface.exceptions import CorruptModelError, ResourceError
from fisherface.model_store import FisherfaceModel, load_model, save_model


def test_round_trip(trained, tmp_path):
    model, _ = trained
    path = save_model(model, tmp_path / "copy.joblib")
    loaded = load_model(path)

    assert loaded == model
    assert loaded.image_paths == model.image_paths
    assert loaded.projected_face_matrix.shape == (9, 6)
    assert loaded.class_means.shape == (3, 6)
    assert loaded.mahalanobis_threshold == model.mahalanobis_threshold


def test_record_schema(trained):
    model, path = trained
    record = joblib.load(path)

    assert record["FormatVersion"] == config.MODEL_FORMAT_VERSION
    assert record["nImages"] == 9
    assert record["nPeople"] == 9
    assert record["nLDAEigens"] == 6
    assert record["nClasses"] == 3
    assert record["nFisherFaces"] == 2
    assert (record["ImageHeight"], record["ImageWidth"]) == (8, 8)
    assert record["PersonID_1"] == "alice"
    assert record["PersonID_9"] == "carol"
    assert "ImageID_8" in record
    assert record["PCAEigenVector_5"].shape == (8, 8)
    assert record["LDAEigenVectors"].shape == (2, 6)
    assert record["ProjectedLDAFaceMat"].shape == (3, 2)
    assert [record[f"Class_{i}"] for i in range(3)] == [1, 2, 3]
    assert record["ClassAverageImage_ID2"].shape == (6,)
    assert record["EuclideanThreshold"] == model.euclidean_threshold


def test_class_name_is_first_image_name(trained):
    model, _ = trained
    assert model.class_name(1) == "alice"
    assert model.class_name(3) == "carol"


def test_missing_file(tmp_path):
    with pytest.raises(ResourceError):
        load_model(tmp_path / "absent.joblib")


def test_undecodable_file(tmp_path):
    path = tmp_path / "garbage.joblib"
    path.write_bytes(b"this is not a model")
    with pytest.raises(ResourceError):
        load_model(path)


def _rewrite(path, tmp_path, **changes):
    record = joblib.load(path)
    for key, value in changes.items():
        if value is None:
            del record[key]
        else:
            record[key] = value
    out = tmp_path / "corrupt.joblib"
    joblib.dump(record, out)
    return out


@pytest.mark.parametrize("changes", [
    {"PCAEigenValues": np.zeros(4)},
    {"nImages": 10},
    {"nClasses": 4},
    {"LDAEigenVectors": None},
    {"PersonID_3": None},
    {"EuclideanThreshold": "far"},
    {"Class_0": 99},
    {"ProjectedFaceMatrix": np.zeros((9, 5))},
    {"ImageHeight": 9},
])
def test_corrupt_record(trained, tmp_path, changes):
    _, path = trained
    with pytest.raises(CorruptModelError):
        load_model(_rewrite(path, tmp_path, **changes))


def test_record_that_is_not_a_mapping(tmp_path):
    path = tmp_path / "list.joblib"
    joblib.dump([1, 2, 3], path)
    with pytest.raises(CorruptModelError):
        load_model(path)


def test_optional_keys_may_be_absent(trained, tmp_path):
    model, path = trained
    out = _rewrite(path, tmp_path, ProjectedFaceMatrix=None, MahalanobisThreshold=None,
                   PCAEuclideanThreshold=None, ClassAverageImage_ID1=None)
    loaded = load_model(out)

    assert loaded.projected_face_matrix is None
    assert loaded.class_means is None
    assert loaded.mahalanobis_threshold is None
    np.testing.assert_array_equal(loaded.projected_lda_faces, model.projected_lda_faces)


def test_save_to_unwritable_path(trained, tmp_path):
    model, _ = trained
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(ResourceError):
        save_model(model, blocker / "model.joblib")


def test_models_not_hashable(trained):
    model, _ = trained
    assert FisherfaceModel.__hash__ is None
    with pytest.raises(TypeError):
        hash(model)
