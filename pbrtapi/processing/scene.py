import shutil
import tempfile
from pathlib import Path
from typing import Optional

from ..utils.logger import RichLogger
from ..config.config import config_class as config
from ..config.constants import PathMode
from ..utils.timing import timeit
from ..utils.common import atomic_write, ensure_directory
from .namespace import NamespaceRewriter, make_prefix
from .paths import PathSanitizer
from .textures import TexturePlaceholderResolver
from .transform import SceneTransform, TransformInjector, utc_timestamp

logger = RichLogger.get_logger("pbrtapi.processing.scene")


class ScenePipeline:
    """
    Runs converted scene text through sanitization, texture resolution,
    namespacing and transform injection, and keeps the model manifest in step.
    """

    def __init__(self, store, converter=None, textures_marker: Optional[str] = None):
        """
        Args:
            store: ModelStore owning the model directories
            converter: Object with ``convert(model_file, output_path)``, needed by ``convert_model``
            textures_marker: Line that starts the part of converter output to keep
        """
        self.store = store
        self.converter = converter
        self.textures_marker = textures_marker or config.TEXTURES_MARKER
        self.sanitizer = PathSanitizer(store.uploads_root)
        self.resolver = TexturePlaceholderResolver(
            store.uploads_root,
            models_folder=store.models_root.name,
            textures_folder=config.TEXTURES_FOLDER,
        )
        self.injector = TransformInjector(self.sanitizer, opt_out_marker=config.OPT_OUT_MARKER)

    def strip_preamble(self, raw_text: str) -> str:
        """Drop everything before the textures marker line."""
        index = raw_text.find(self.textures_marker)
        if index == -1:
            logger.warning(f"Converter output has no '{self.textures_marker}' marker, keeping the whole text")
            return raw_text
        return raw_text[index:]

    @timeit(log_level="debug")
    def convert_text(self, model_id: str, raw_text: str) -> str:
        """
        Turn raw converter output into a scene ready to store.

        Args:
            model_id: UUID of the model the text belongs to
            raw_text: Scene text written by the converter

        Returns:
            Sanitized, texture-resolved and namespaced scene text

        Raises:
            SecurityViolation: If the text references unsafe paths
            AmbiguousRename: If identifiers cannot be namespaced
            MalformedScope: If the text cannot be tokenized
        """
        text = self.strip_preamble(raw_text)
        text = self.sanitizer.sanitize(text, PathMode.RELATIVE)
        with self.store.lock(model_id):
            text = self.resolver.resolve(self.store.model_dir(model_id), text)
        return NamespaceRewriter(make_prefix(model_id, config.PREFIX_LENGTH)).rewrite(text)

    def transform_text(self, text: str, transform: SceneTransform, timestamp: Optional[str] = None) -> str:
        return self.injector.inject(text, transform, timestamp)

    @timeit(log_level="info", with_args=True)
    def convert_model(self, model_id: str, force: bool = False) -> str:
        """
        Convert a stored model to PBRT and write ``converted.pbrt``.

        Args:
            model_id: UUID of the model
            force: Convert again even if a converted scene exists

        Returns:
            The converted scene text

        Raises:
            ExternalToolError: If the converter fails
            ScenePipelineError: If the rewrite chain rejects the output
        """
        with self.store.conversion_lock(model_id):
            manifest = self.store.read_manifest(model_id)
            directory = self.store.model_dir(model_id)
            converted_path = self.store.converted_scene_path(model_id)

            if manifest.get("pbrt_converted") and converted_path.is_file() and not force:
                logger.info(f"Model {model_id} is already converted, reusing {converted_path.name}")
                return converted_path.read_text(encoding="utf-8")

            if self.converter is None:
                raise RuntimeError("No converter configured for this pipeline")

            model_file = self.store.validate_model_path(directory, manifest["model_path"])
            work_dir = tempfile.mkdtemp(prefix="convert_", dir=ensure_directory(self.store.tmp_dir))
            try:
                output_path = Path(work_dir) / f"{model_id}.pbrt"
                self.converter.convert(model_file, output_path)
                raw_text = output_path.read_text(encoding="utf-8", errors="replace")
            finally:
                shutil.rmtree(work_dir, ignore_errors=True)

            text = self.convert_text(model_id, raw_text)

            with self.store.lock(model_id):
                atomic_write(converted_path, text)
                self.store.update_manifest(
                    model_id,
                    pbrt_converted=True,
                    converted_available=True,
                    transformed_available=False,
                    pbrt_convert_date=utc_timestamp(),
                )
        logger.success(f"Converted model {model_id} to {converted_path.name}")
        return text

    @timeit(log_level="debug")
    def transform_model(self, model_id: str, transform: SceneTransform) -> str:
        """
        Apply a transform to the converted scene and write ``transformed.pbrt``.

        Raises:
            FileNotFoundError: If the model has not been converted yet
        """
        converted_path = self.store.converted_scene_path(model_id)
        if not converted_path.is_file():
            raise FileNotFoundError(f"Model {model_id} has no converted scene, run convert first")

        timestamp = utc_timestamp()
        text = self.transform_text(converted_path.read_text(encoding="utf-8"), transform, timestamp)

        transformed_path = self.store.transformed_scene_path(model_id)
        with self.store.lock(model_id):
            atomic_write(transformed_path, text)
            self.store.update_manifest(
                model_id,
                transformed_available=True,
                transform=transform.to_record(timestamp),
            )
        logger.success(f"Transformed model {model_id} into {transformed_path.name}")
        return text
