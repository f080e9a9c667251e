"""
Folder and file management for uploaded models.

Every model lives in ``<uploads>/<models>/<uuid>/`` next to an ``info.json``
manifest. Filesystem changes to a model directory are serialized with a
per-model lock.
"""

import os
import json
import shutil
import threading
import uuid as uuid_lib
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from pbrtapi.config.constants import (
    CONVERTED_SCENE,
    MANIFEST_FILE,
    TEXTURE_FOLDER_NAMES,
    TRANSFORMED_SCENE,
)
from pbrtapi.processing.exceptions import SecurityViolation
from pbrtapi.utils.common import atomic_write, ensure_directory
from pbrtapi.utils.logger import RichLogger
from pbrtapi.utils.timing import timeit

logger = RichLogger.get_logger("pbrtapi.utils.folder")


class ModelStore:
    """
    Storage layout, manifests and locks for uploaded models.
    """

    def __init__(
        self,
        uploads_root: Optional[Union[str, os.PathLike]] = None,
        models_folder: Optional[str] = None,
        supported_extensions: Optional[List[str]] = None,
        keep_extensions: Optional[List[str]] = None,
    ):
        from pbrtapi.config.config import config_class as config

        self.uploads_root = Path(uploads_root or config.UPLOADS_ROOT).resolve()
        self.models_root = self.uploads_root / (models_folder or config.MODELS_FOLDER)
        self.tmp_dir = self.uploads_root / os.path.basename(config.TMP_DIR)
        self.supported_extensions = [e.lower() for e in (supported_extensions or config.SUPPORTED_MODEL_EXTENSIONS)]
        self.keep_extensions = [e.lower() for e in (keep_extensions or config.KEEP_FILE_EXTENSIONS)]

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def lock(self, model_id: str) -> Iterator[None]:
        """Hold the per-model lock for the duration of the block."""
        key = str(model_id).lower()
        with self._locks_guard:
            model_lock = self._locks.setdefault(key, threading.Lock())
        with model_lock:
            yield

    @contextmanager
    def conversion_lock(self, model_id: str) -> Iterator[None]:
        """
        Serialize conversions of one model.

        Separate from ``lock`` so the rewrite chain can still take the model
        lock while a conversion is in progress.
        """
        key = "convert:" + str(model_id).lower()
        with self._locks_guard:
            convert_lock = self._locks.setdefault(key, threading.Lock())
        with convert_lock:
            yield

    @staticmethod
    def normalize_id(model_id: str) -> str:
        try:
            return str(uuid_lib.UUID(str(model_id)))
        except ValueError:
            raise ValueError(f"Invalid model id: {model_id!r}")

    def model_dir(self, model_id: str) -> Path:
        return self.models_root / self.normalize_id(model_id)

    def exists(self, model_id: str) -> bool:
        return (self.model_dir(model_id) / MANIFEST_FILE).is_file()

    def converted_scene_path(self, model_id: str) -> Path:
        return self.model_dir(model_id) / CONVERTED_SCENE

    def transformed_scene_path(self, model_id: str) -> Path:
        return self.model_dir(model_id) / TRANSFORMED_SCENE

    def read_manifest(self, model_id: str) -> Dict[str, Any]:
        """
        Load a model's manifest.

        Raises:
            FileNotFoundError: If the model or its manifest does not exist
        """
        path = self.model_dir(model_id) / MANIFEST_FILE
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def write_manifest(self, model_id: str, manifest: Dict[str, Any]) -> Path:
        path = self.model_dir(model_id) / MANIFEST_FILE
        return atomic_write(path, json.dumps(manifest, indent=2))

    def update_manifest(self, model_id: str, **fields: Any) -> Dict[str, Any]:
        """Merge ``fields`` into the manifest and write it back."""
        manifest = self.read_manifest(model_id)
        manifest.update(fields)
        self.write_manifest(model_id, manifest)
        return manifest

    def list_models(self) -> List[Dict[str, Any]]:
        """Return every readable manifest, oldest upload first."""
        if not self.models_root.is_dir():
            return []
        manifests = []
        for entry in sorted(self.models_root.iterdir()):
            path = entry / MANIFEST_FILE
            if not path.is_file():
                continue
            try:
                with open(path, "r", encoding="utf-8") as f:
                    manifests.append(json.load(f))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable manifest {path}: {e}")
        return sorted(manifests, key=lambda m: m.get("upload_date") or "")

    def delete_model(self, model_id: str) -> bool:
        directory = self.model_dir(model_id)
        with self.lock(model_id):
            if not directory.is_dir():
                return False
            shutil.rmtree(directory)
        logger.info(f"Deleted model {model_id}")
        return True

    def find_model_files(self, directory: Union[str, os.PathLike]) -> List[Path]:
        """Recursively find files with a supported model extension."""
        directory = Path(directory)
        return sorted(
            p for p in directory.rglob("*")
            if p.is_file() and p.suffix.lower() in self.supported_extensions
        )

    @timeit(log_level="debug")
    def cleanup_files(self, directory: Union[str, os.PathLike]) -> int:
        """
        Delete files that are neither model data nor textures, then empty folders.

        Texture folders are kept with all their contents.

        Args:
            directory: Model directory to clean

        Returns:
            Number of files removed
        """
        directory = Path(directory)
        removed = 0
        for current, dirs, files in os.walk(directory, topdown=True):
            dirs[:] = [d for d in dirs if d.lower() not in TEXTURE_FOLDER_NAMES]
            for name in files:
                path = Path(current) / name
                if name == MANIFEST_FILE and path.parent == directory:
                    continue
                if path.suffix.lower() not in self.keep_extensions:
                    path.unlink()
                    removed += 1
                    logger.debug(f"Removed {path.relative_to(directory)}")

        for current, dirs, files in os.walk(directory, topdown=False):
            path = Path(current)
            if path == directory or path.name.lower() in TEXTURE_FOLDER_NAMES:
                continue
            if any(part.lower() in TEXTURE_FOLDER_NAMES for part in path.relative_to(directory).parts):
                continue
            if not any(path.iterdir()):
                path.rmdir()
        return removed

    @staticmethod
    def validate_model_path(directory: Union[str, os.PathLike], relative_path: str) -> Path:
        """
        Resolve a model file path and make sure it stays inside ``directory``.

        Raises:
            SecurityViolation: If the path escapes the model directory
            FileNotFoundError: If the file does not exist
        """
        root = Path(directory).resolve()
        candidate = (root / relative_path).resolve()
        try:
            candidate.relative_to(root)
        except ValueError:
            raise SecurityViolation(relative_path, "escapes the model directory")
        if not candidate.is_file():
            raise FileNotFoundError(f"Model file not found: {relative_path}")
        return candidate

    @staticmethod
    def model_type(path: Union[str, os.PathLike]) -> str:
        tag = Path(path).suffix.lstrip(".").upper()
        return "GLTF" if tag == "GLB" else tag

    @timeit(log_level="debug")
    def create_model(
        self,
        source: Union[str, os.PathLike],
        name: Optional[str] = None,
        declared_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Import a model file or an extracted model folder.

        Args:
            source: A single model file, or a directory holding exactly one model file
            name: Display name, defaults to the model file stem
            declared_type: Free-form type supplied by the uploader

        Returns:
            The new manifest

        Raises:
            FileNotFoundError: If ``source`` does not exist
            ValueError: If the source does not hold exactly one model file
        """
        source = Path(source)
        if not source.exists():
            raise FileNotFoundError(f"Model source not found: {source}")

        model_id = str(uuid_lib.uuid4())
        directory = self.model_dir(model_id)

        with self.lock(model_id):
            ensure_directory(directory)
            try:
                if source.is_dir():
                    shutil.copytree(source, directory, dirs_exist_ok=True)
                else:
                    shutil.copy2(source, directory / source.name)

                self.cleanup_files(directory)
                models = self.find_model_files(directory)
                if len(models) != 1:
                    raise ValueError(
                        f"Expected exactly one model file in {source}, found {len(models)}"
                    )

                relative = models[0].relative_to(directory).as_posix()
                self.validate_model_path(directory, relative)
                manifest = {
                    "uuid": model_id,
                    "name": name or models[0].stem,
                    "type": declared_type,
                    "model_type": self.model_type(models[0]),
                    "model_path": relative,
                    "upload_date": datetime.now(timezone.utc).isoformat(),
                    "pbrt_converted": False,
                    "converted_available": False,
                    "transformed_available": False,
                    "pbrt_convert_date": None,
                    "transform": None,
                }
                self.write_manifest(model_id, manifest)
            except (OSError, ValueError, SecurityViolation):
                shutil.rmtree(directory, ignore_errors=True)
                raise

        logger.info(f"Imported model {manifest['name']} as {model_id}")
        return manifest
