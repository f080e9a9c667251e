"""
CLI parameter handling for the PBRT scene service.

This module processes parameters for the command-line interface: config
files, logging options, vector arguments, and the objects commands work on.
"""

import os
from typing import Dict, List, Optional, Tuple

import typer
from rich.console import Console
from rich.table import Table
from tqdm import tqdm

from pbrtapi.config.config import config_class as config
from pbrtapi.config.constants import LogLevel
from pbrtapi.processing import AssimpConverter, ScenePipeline, ScenePipelineError, SceneTransform
from pbrtapi.processing.exceptions import ExternalToolError
from pbrtapi.renderers import PbrtRenderer
from pbrtapi.utils.cache import RenderCache
from pbrtapi.utils.folder import ModelStore
from pbrtapi.utils.logger import RichLogger

logger = RichLogger.get_logger("pbrtapi.cli.parameters")


def process_config_file(config_file: Optional[str]) -> Optional[str]:
    """
    Process a custom config file if specified.

    Args:
        config_file: Path to config file or None

    Returns:
        The config file path, unchanged

    Raises:
        typer.Exit: If the config file cannot be loaded
    """
    if not config_file:
        return config_file

    if not os.path.exists(config_file):
        logger.error(f"Config file not found: {config_file}")
        typer.echo(f"Config file not found: {config_file}", err=True)
        raise typer.Exit(code=1)

    if not config.replace_global_instance(config_file):
        typer.echo(f"Error loading config file: {config_file}", err=True)
        raise typer.Exit(code=1)

    logger.info(f"Loaded custom configuration from {config_file}")
    return config_file


def setup_logging(debug: bool, log_level: Optional[str], log_file: Optional[str]) -> None:
    """
    Configure logging based on command line parameters and config.

    Args:
        debug: Whether debug mode is enabled
        log_level: Logging level (debug, info, warning, error)
        log_file: Path to log file if specified
    """
    level = "DEBUG" if debug else LogLevel.get_level(log_level or config.LOG_LEVEL)
    logging_settings = {
        "file": log_file or config.LOG_FILE,
        "level": level,
        "console": config.logging.get("console", True),
        "debug": {
            "enabled": debug,
            "show_locals": debug,
            "log_config": debug,
        },
    }
    RichLogger.configure_from_settings(logging_settings)
    if debug:
        logger.debug("Debug mode enabled with verbose logging")


def parse_vector(value: Optional[str], length: int, name: str) -> Optional[List[float]]:
    """
    Parse a comma-separated vector option such as ``"1,0,0"``.

    Raises:
        typer.BadParameter: If the value has the wrong length or is not numeric
    """
    if value is None or not value.strip():
        return None
    parts = [p for p in value.replace(" ", ",").split(",") if p]
    if len(parts) != length:
        raise typer.BadParameter(f"{name} needs {length} comma-separated numbers, got {value!r}")
    try:
        return [float(p) for p in parts]
    except ValueError:
        raise typer.BadParameter(f"{name} values must be numbers, got {value!r}")


def build_transform(translate: Optional[str], rotate: Optional[str], scale: Optional[str]) -> SceneTransform:
    return SceneTransform(
        translate=parse_vector(translate, 3, "--translate"),
        rotate=parse_vector(rotate, 4, "--rotate"),
        scale=parse_vector(scale, 3, "--scale"),
    )


class Services:
    """
    Lazily built store, pipeline and renderer for one CLI invocation.
    """

    def __init__(self, uploads_root: Optional[str] = None):
        self.uploads_root = os.path.abspath(uploads_root or config.UPLOADS_ROOT)
        self._store: Optional[ModelStore] = None
        self._cache: Optional[RenderCache] = None

    @property
    def store(self) -> ModelStore:
        if self._store is None:
            self._store = ModelStore(self.uploads_root)
        return self._store

    @property
    def cache(self) -> RenderCache:
        if self._cache is None:
            cache_dir = os.path.join(self.uploads_root, os.path.basename(config.CACHE_DIR))
            self._cache = RenderCache(cache_dir, config.CACHE_EXT, config.CACHE_MAX_AGE)
        return self._cache

    def pipeline(self) -> ScenePipeline:
        return ScenePipeline(self.store, AssimpConverter())

    def renderer(self) -> PbrtRenderer:
        if config.ENABLE_CACHE:
            self.cache.start_sweeper(config.CACHE_SWEEP_INTERVAL)
        return PbrtRenderer(cache=self.cache, uploads_root=self.uploads_root)

    def close(self) -> None:
        """Stop background work started by this invocation."""
        if self._cache is not None:
            self._cache.stop_sweeper(timeout=5)


def fail(message: str, error: Optional[BaseException] = None) -> None:
    """Report an error and exit with code 1."""
    if isinstance(error, ExternalToolError):
        message = f"{message}\n{error.details()}"
    elif error is not None:
        message = f"{message}: {error}"
    logger.debug(message)
    typer.echo(message, err=True)
    raise typer.Exit(code=1)


def convert_models(pipeline: ScenePipeline, model_ids: List[str], force: bool = False) -> Tuple[List[str], Dict[str, str]]:
    """
    Convert several models, showing a progress bar.

    Returns:
        Tuple of (converted ids, {failed id: error message})
    """
    converted: List[str] = []
    failed: Dict[str, str] = {}
    with tqdm(total=len(model_ids), desc="Converting models", unit="model") as pbar:
        for model_id in model_ids:
            try:
                pipeline.convert_model(model_id, force=force)
                converted.append(model_id)
            except (ScenePipelineError, OSError, ValueError) as e:
                failed[model_id] = str(e)
                pbar.write(f"{model_id}: {e}")
            pbar.update(1)
    return converted, failed


def print_models(manifests: List[dict]) -> None:
    console = Console()
    table = Table(title="Models")
    table.add_column("UUID", style="cyan", no_wrap=True)
    table.add_column("Name", style="magenta")
    table.add_column("Type", style="green")
    table.add_column("Converted")
    table.add_column("Transformed")
    table.add_column("Uploaded", style="dim")
    for manifest in manifests:
        table.add_row(
            manifest.get("uuid", "?"),
            str(manifest.get("name", "")),
            str(manifest.get("model_type", "")),
            "yes" if manifest.get("converted_available") else "no",
            "yes" if manifest.get("transformed_available") else "no",
            str(manifest.get("upload_date", "")),
        )
    console.print(table)


def print_cache_stats(stats: dict) -> None:
    console = Console()
    table = Table(title="Render Cache")
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="magenta")
    for key in ("directory", "entries", "total_size_mb", "oldest_entry", "newest_entry", "in_flight"):
        value = stats.get(key, "N/A")
        if key == "total_size_mb":
            value = f"{value:.2f}"
        table.add_row(key, str(value))
    console.print(table)
