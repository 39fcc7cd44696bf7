"""
Tests for the metadata store and library layout.

To run: pytest tests/test_metadata_store.py -v
"""

import json
import threading

import pytest

from artwall.meta import FileMetadataStore, Library, MemoryMetadataStore, extract_base_name
from artwall.meta.library import split_variant_filename, thumbnail_path


@pytest.fixture
def file_store(library):
    return FileMetadataStore(library)


# =============================================================================
# FileMetadataStore
# =============================================================================

class TestFileStore:
    def test_load_absent(self, file_store):
        assert file_store.load("IMG_1") == {}

    def test_merges_union(self, file_store):
        file_store.merge("IMG_1", {"a": 1})
        result = file_store.merge("IMG_1", {"b": 2})
        assert result == {"a": 1, "b": 2}
        assert file_store.load("IMG_1") == {"a": 1, "b": 2}

    def test_document_location(self, file_store, library):
        file_store.merge("IMG_1", {"a": 1})
        path = library.images_dir / "IMG_1_original.jpg.json"
        assert json.loads(path.read_text()) == {"a": 1}
        assert (library.images_dir / "IMG_1_original.jpg.json.corrupt").read_text() == "{not json"
        assert file_store.keys() == ["IMG_1"]

    def test_existing_png_document_wins(self, file_store, library):
        path = library.images_dir / "IMG_2_original.png.json"
        path.write_text(json.dumps({"keep": True}))
        file_store.merge("IMG_2", {"new": 1})
        assert json.loads(path.read_text()) == {"keep": True, "new": 1}
        assert not (library.images_dir / "IMG_2_original.jpg.json").exists()

    def test_unknown_keys_preserved(self, file_store):
        file_store.merge("IMG_1", {"custom": {"nested": [1, 2]}, "title": "Sunset"})
        file_store.merge("IMG_1", {"title": "Dawn"})
        assert file_store.load("IMG_1") == {"custom": {"nested": [1, 2]}, "title": "Dawn"}

    def test_failed_mutator_writes_nothing(self, file_store):
        file_store.merge("IMG_1", {"a": 1})

        def boom(doc):
            doc["a"] = 2
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            file_store.update("IMG_1", boom)
        assert file_store.load("IMG_1") == {"a": 1}

    def test_corrupt_document_treated_as_absent(self, file_store, library):
        path = library.images_dir / "IMG_1_original.jpg.json"
        path.write_text("{not json")
        assert file_store.load("IMG_1") == {}
        file_store.merge("IMG_1", {"a": 1})
        assert json.loads(path.read_text()) == {"a": 1}
        assert (library.images_dir / "IMG_1_original.jpg.json.corrupt").read_text() == "{not json"
        assert file_store.keys() == ["IMG_1"]

    def test_non_object_treated_as_absent(self, file_store, library):
        (library.images_dir / "IMG_1_original.jpg.json").write_text("[1, 2]")
        assert file_store.load("IMG_1") == {}

    def test_no_temp_files_left(self, file_store, library):
        for i in range(3):
            file_store.merge("IMG_1", {f"k{i}": i})
        leftovers = [p.name for p in library.images_dir.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_concurrent_disjoint_merges(self, file_store):
        threads = [
            threading.Thread(target=file_store.merge, args=("IMG_1", {f"k{i}": i}))
            for i in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert file_store.load("IMG_1") == {f"k{i}": i for i in range(8)}

    def test_concurrent_read_modify_write(self, file_store):
        file_store.merge("IMG_1", {"count": 0})

        def bump():
            for _ in range(10):
                file_store.update("IMG_1", lambda d: d.update(count=d["count"] + 1))

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert file_store.load("IMG_1")["count"] == 40

    def test_keys(self, file_store):
        file_store.merge("IMG_2", {"a": 1})
        file_store.merge("IMG_1", {"a": 1})
        assert file_store.keys() == ["IMG_1", "IMG_2"]


# =============================================================================
# MemoryMetadataStore
# =============================================================================

class TestMemoryStore:
    def test_load_returns_copy(self):
        store = MemoryMetadataStore({"IMG_1": {"a": {"b": 1}}})
        doc = store.load("IMG_1")
        doc["a"]["b"] = 2
        assert store.load("IMG_1") == {"a": {"b": 1}}

    def test_merge(self):
        store = MemoryMetadataStore()
        store.merge("IMG_1", {"a": 1})
        assert store.merge("IMG_1", {"b": 2}) == {"a": 1, "b": 2}
        assert store.keys() == ["IMG_1"]


# =============================================================================
# Library layout
# =============================================================================

class TestLibrary:
    @pytest.mark.parametrize("filename,base", [
        ("IMG_2106_2_original.jpg.json", "IMG_2106_2"),
        ("IMG_2106_2_original.jpg", "IMG_2106_2"),
        ("IMG_2106_2_final.png", "IMG_2106_2"),
        ("IMG_2106_2_final_thumb.jpg", "IMG_2106_2"),
        ("IMG_2106_2_variant_loft.jpg", "IMG_2106_2"),
        ("IMG_2106_2_variant_loft_thumb.jpg", "IMG_2106_2"),
        ("IMG_2106_2_ai_form.jpg", "IMG_2106_2"),
    ])
    def test_extract_base_name(self, filename, base):
        assert extract_base_name(filename) == base

    def test_split_variant_filename(self):
        assert split_variant_filename("IMG_1_variant_old_loft.jpg") == ("IMG_1", "old_loft")
        assert split_variant_filename("IMG_1_final.jpg") is None

    def test_thumbnail_path(self, library):
        path = library.variant_target_path("IMG_1", "loft")
        assert path.name == "IMG_1_variant_loft.jpg"
        assert thumbnail_path(path).name == "IMG_1_variant_loft_thumb.jpg"

    def test_find_final_skips_thumbnails(self, library):
        (library.images_dir / "IMG_1_final_thumb.jpg").write_bytes(b"t")
        assert library.find_final_image("IMG_1") is None
        (library.images_dir / "IMG_1_final.png").write_bytes(b"f")
        assert library.find_final_image("IMG_1").name == "IMG_1_final.png"

    def test_templates(self, library):
        for name in ("studio.png", "loft.jpg", "notes.txt"):
            (library.variants_dir / name).write_bytes(b"x")
        templates = library.list_variant_templates()
        assert [t.name for t in templates] == ["loft", "studio"]

    def test_home_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ARTWALL_HOME", str(tmp_path))
        assert Library().root == tmp_path
