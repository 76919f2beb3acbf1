import numpy as np
import pytest

from conftest import write_png
from fisherface.exceptions import DimensionMismatchError, ParseError, ResourceError
from fisherface.preprocessing import (
    ClassGroups, DatasetLoader, ManifestRecord, ManifestWriter, compute_dataset_statistics,
    load_grayscale_image, parse_manifest_line, read_manifest
)


class TestParseManifestLine:

    def test_valid_line(self):
        record = parse_manifest_line("3 alice /data/alice_0.png\n")
        assert record == ManifestRecord(3, "alice", "/data/alice_0.png")

    def test_path_may_contain_spaces(self):
        record = parse_manifest_line("1 bob /my faces/bob 1.png")
        assert record.person_name == "bob"
        assert record.image_path == "/my faces/bob 1.png"

    @pytest.mark.parametrize("line", ["1", "1alice", "1 alice"])
    def test_missing_delimiter(self, line):
        with pytest.raises(ParseError):
            parse_manifest_line(line)

    def test_zero_id(self):
        with pytest.raises(ParseError, match="should start with 1"):
            parse_manifest_line("0 alice a.png", line_number=4, manifest_path="m.txt")

    def test_error_context(self):
        with pytest.raises(ParseError) as excinfo:
            parse_manifest_line("x alice a.png", line_number=7, manifest_path="m.txt")
        assert excinfo.value.line_number == 7
        assert excinfo.value.path == "m.txt"

    @pytest.mark.parametrize("line", ["-2 alice a.png", "one alice a.png", "1  a.png", "1 alice "])
    def test_invalid_fields(self, line):
        with pytest.raises(ParseError):
            parse_manifest_line(line)

    def test_parse_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_manifest_line("no-delimiters")


class TestReadManifest:

    def test_stops_at_blank_line(self, tmp_path):
        manifest = tmp_path / "m.txt"
        manifest.write_text("1 a a.png\n2 b b.png\n\n3 c c.png\n")
        records = read_manifest(manifest)
        assert [r.class_id for r in records] == [1, 2]

    def test_missing_manifest(self, tmp_path):
        with pytest.raises(ResourceError):
            read_manifest(tmp_path / "missing.txt")


class TestLoadImage:

    def test_grayscale_values_kept(self, tmp_path):
        pixels = np.arange(12, dtype=np.uint8).reshape(3, 4) * 20
        path = write_png(tmp_path / "g.png", pixels)
        loaded = load_grayscale_image(path)
        assert loaded.dtype == np.float64
        np.testing.assert_array_equal(loaded, pixels)

    def test_rgb_converted_unless_single_channel_required(self, tmp_path):
        path = write_png(tmp_path / "rgb.png", np.full((4, 4, 3), 100, dtype=np.uint8))
        assert load_grayscale_image(path).shape == (4, 4)
        with pytest.raises(DimensionMismatchError):
            load_grayscale_image(path, require_single_channel=True)

    def test_unreadable_image(self, tmp_path):
        path = tmp_path / "broken.png"
        path.write_text("not an image")
        with pytest.raises(ResourceError):
            load_grayscale_image(path)

    def test_missing_image(self, tmp_path):
        with pytest.raises(ResourceError):
            load_grayscale_image(tmp_path / "nope.png")


class TestClassGroups:

    def test_groups_sorted_by_class_id(self):
        groups = ClassGroups([5, 2, 5, 9, 2])
        assert groups.class_ids == [2, 5, 9]
        assert groups.indices(5) == [0, 2]
        assert groups.counts == {2: 2, 5: 2, 9: 1}
        assert groups.row_of(9) == 2
        assert groups.class_at(0) == 2
        assert 9 in groups and 3 not in groups
        assert len(groups) == 3


class TestDatasetLoader:

    def test_load(self, face_set):
        loader = DatasetLoader(face_set.manifest)
        dataset = loader.load()

        assert dataset.n_images == 9
        assert dataset.n_classes == 3
        assert dataset.image_shape == (8, 8)
        assert dataset.as_matrix().shape == (9, 64)
        assert dataset.names[:3] == ["alice"] * 3
        assert list(dataset.person_ids) == [1, 1, 1, 2, 2, 2, 3, 3, 3]
        assert loader.get_data_info()["n_features"] == 64
        np.testing.assert_array_equal(dataset.images[0], face_set.faces[1][0])

    def test_size_mismatch(self, tmp_path):
        a = write_png(tmp_path / "a.png", np.zeros((8, 8)))
        b = write_png(tmp_path / "b.png", np.zeros((8, 9)))
        manifest = tmp_path / "m.txt"
        manifest.write_text(f"1 a {a}\n2 b {b}\n")

        with pytest.raises(DimensionMismatchError, match="same size") as excinfo:
            DatasetLoader(manifest).load()
        assert isinstance(excinfo.value, ResourceError)
        assert excinfo.value.expected == (8, 8)
        assert excinfo.value.actual == (8, 9)

    def test_empty_manifest(self, tmp_path):
        manifest = tmp_path / "m.txt"
        manifest.write_text("")
        with pytest.raises(ResourceError):
            DatasetLoader(manifest).load()

    def test_statistics(self, dataset):
        stats = compute_dataset_statistics(dataset)
        assert stats["images_per_class"] == {1: 3, 2: 3, 3: 3}
        assert stats["class_names"][2] == "bob"
        assert stats["mean_per_class"] == 3.0


class TestManifestWriter:

    def test_ids_by_first_appearance(self, tmp_path):
        manifest = tmp_path / "out" / "m.txt"
        writer = ManifestWriter(manifest, base_dir="imgs")
        writer.add_entry("zoe", "z1.png")
        writer.add_entry("adam", "a1.png")
        writer.add_entry("zoe", "z2.png")

        assert writer.write() == 3
        lines = manifest.read_text().splitlines()
        assert lines[0].split(" ")[:2] == ["1", "zoe"]
        assert lines[1].split(" ")[:2] == ["2", "adam"]
        assert lines[2].split(" ")[:2] == ["1", "zoe"]
        assert [r.class_id for r in read_manifest(manifest)] == [1, 2, 1]

    def test_name_with_space(self, tmp_path):
        writer = ManifestWriter(tmp_path / "m.txt")
        with pytest.raises(ParseError):
            writer.add_entry("john smith", "j.png")

    def test_base_dir_change(self, tmp_path):
        writer = ManifestWriter(tmp_path / "m.txt")
        assert writer.add_entry("a", "a.png").image_path == "a.png"
        writer.set_base_dir("faces")
        assert writer.add_entry("a", "b.png").image_path.endswith("b.png")
        assert writer.records[-1].image_path.startswith("faces")
