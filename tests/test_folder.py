"""Tests for the model store."""

import json
import threading
import time

import pytest

from conftest import MODEL_ID, PNG_BYTES
from pbrtapi.processing.exceptions import SecurityViolation
from pbrtapi.utils.folder import ModelStore


@pytest.fixture
def source(tmp_path):
    directory = tmp_path / "upload"
    directory.mkdir()
    return directory


class TestCreateModel:
    def test_from_single_file(self, store, source):
        (source / "chair.obj").write_text("v 0 0 0\n")
        manifest = store.create_model(source / "chair.obj", declared_type="furniture")

        assert manifest["name"] == "chair"
        assert manifest["type"] == "furniture"
        assert manifest["model_type"] == "OBJ"
        assert manifest["model_path"] == "chair.obj"
        assert manifest["pbrt_converted"] is False
        assert manifest["converted_available"] is False
        assert manifest["transform"] is None
        assert store.exists(manifest["uuid"])
        assert store.read_manifest(manifest["uuid"]) == manifest

    def test_from_folder_cleans_up(self, store, source):
        (source / "scene.gltf").write_text("{}")
        (source / "scene.bin").write_bytes(b"\x00")
        (source / "notes.txt").write_text("remove me")
        (source / "textures").mkdir()
        (source / "textures" / "albedo").write_bytes(PNG_BYTES)
        (source / "textures" / "readme.txt").write_text("kept with the textures")
        (source / "junk").mkdir()
        (source / "junk" / "thumbs.db").write_bytes(b"")

        manifest = store.create_model(source, name="Scene")
        directory = store.model_dir(manifest["uuid"])
        names = sorted(p.relative_to(directory).as_posix() for p in directory.rglob("*"))

        assert names == [
            "info.json",
            "scene.bin",
            "scene.gltf",
            "textures",
            "textures/albedo",
            "textures/readme.txt",
        ]
        assert manifest["name"] == "Scene"
        assert manifest["model_type"] == "GLTF"

    def test_glb_reports_gltf(self, store, source):
        (source / "robot.glb").write_bytes(b"glTF")
        assert store.create_model(source / "robot.glb")["model_type"] == "GLTF"

    def test_nested_model_path(self, store, source):
        (source / "export").mkdir()
        (source / "export" / "car.fbx").write_bytes(b"fbx")
        assert store.create_model(source)["model_path"] == "export/car.fbx"

    @pytest.mark.parametrize("files", [["a.obj", "b.fbx"], ["readme.txt"]])
    def test_requires_exactly_one_model(self, store, source, files):
        for name in files:
            (source / name).write_text("x")
        with pytest.raises(ValueError):
            store.create_model(source)
        assert store.list_models() == []
        assert not any(store.models_root.iterdir())

    def test_missing_source(self, store, tmp_path):
        with pytest.raises(FileNotFoundError):
            store.create_model(tmp_path / "nope.obj")


class TestManifest:
    def test_update_manifest(self, store, source):
        (source / "chair.obj").write_text("v 0 0 0\n")
        model_id = store.create_model(source / "chair.obj")["uuid"]
        store.update_manifest(model_id, pbrt_converted=True)
        assert store.read_manifest(model_id)["pbrt_converted"] is True
        assert json.loads((store.model_dir(model_id) / "info.json").read_text())["name"] == "chair"

    def test_list_skips_unreadable(self, store, source, model_dir):
        (model_dir / "info.json").write_text("{not json")
        (source / "chair.obj").write_text("v 0 0 0\n")
        store.create_model(source / "chair.obj")
        assert [m["name"] for m in store.list_models()] == ["chair"]

    def test_delete(self, store, source):
        (source / "chair.obj").write_text("v 0 0 0\n")
        model_id = store.create_model(source / "chair.obj")["uuid"]
        assert store.delete_model(model_id)
        assert not store.exists(model_id)
        assert not store.delete_model(model_id)

    @pytest.mark.parametrize("model_id", ["../etc", "", "not-a-uuid"])
    def test_invalid_ids(self, store, model_id):
        with pytest.raises(ValueError):
            store.model_dir(model_id)

    def test_id_is_normalized(self, store):
        assert store.model_dir(MODEL_ID.upper()).name == MODEL_ID


class TestValidateModelPath:
    def test_inside(self, model_dir):
        (model_dir / "chair.obj").write_text("x")
        assert ModelStore.validate_model_path(model_dir, "chair.obj") == (model_dir / "chair.obj").resolve()

    def test_escape(self, model_dir):
        with pytest.raises(SecurityViolation):
            ModelStore.validate_model_path(model_dir, "../../secret.obj")

    def test_missing(self, model_dir):
        with pytest.raises(FileNotFoundError):
            ModelStore.validate_model_path(model_dir, "missing.obj")


class TestLock:
    def test_same_model_is_serialized(self, store):
        order = []

        def worker():
            with store.lock(MODEL_ID):
                order.append("worker")

        with store.lock(MODEL_ID):
            thread = threading.Thread(target=worker)
            thread.start()
            time.sleep(0.1)
            order.append("main")
        thread.join(5)
        assert order == ["main", "worker"]

    def test_other_models_do_not_block(self, store):
        acquired = threading.Event()

        def worker():
            with store.lock("11111111-2222-3333-4444-555555555555"):
                acquired.set()

        with store.lock(MODEL_ID):
            thread = threading.Thread(target=worker)
            thread.start()
            assert acquired.wait(5)
        thread.join(5)
