"""
Configuration management for the PBRT scene service.

This module loads and manages application configuration from various sources,
including JSON files, environment variables, and .env files.
"""

import os
import copy
import json
from jsonschema import validate, ValidationError
from dotenv import load_dotenv
from typing import Any, Dict, Optional

from pbrtapi.config.constants import (
    UPLOADS_FOLDER,
    MODELS_FOLDER,
    CACHE_FOLDER,
    TMP_FOLDER,
    TEXTURES_FOLDER,
    EXR_EXT,
    SUPPORTED_MODEL_EXTENSIONS,
    KEEP_FILE_EXTENSIONS,
    TEXTURES_MARKER,
    OPT_OUT_MARKER,
    PREFIX_LENGTH,
    PBRT_PATH,
    ASSIMP_PATH,
    PBRT_TIMEOUT,
    ASSIMP_TIMEOUT,
    CACHE_MAX_AGE_DAYS,
    CACHE_SWEEP_INTERVAL_HOURS,
    CONFIG_JSON_FILENAME,
    CONFIG_SCHEMA_PATH,
    ENV_FILE,
    ENV_VARS,
    DEFAULT_LOG_SETTINGS,
)
from rich.console import Console
from rich.table import Table
from pbrtapi.utils.logger import RichLogger

logger = RichLogger.get_logger("pbrtapi.config")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into ``base`` and return ``base``."""
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _as_bool(value: str) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """
    Configuration manager that loads settings from various sources
    with a priority order: environment variables > .env > config.json > defaults.

    Implements the singleton pattern to ensure only one instance exists.
    """
    _instance = None

    def __new__(cls) -> "Config":
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance._setup()
        return cls._instance

    def _setup(self) -> None:
        """Set up the configuration by loading from various sources."""
        self.defaults: Dict[str, Any] = {
            "paths": {
                "uploads": UPLOADS_FOLDER,
                "folders": {
                    "models": MODELS_FOLDER,
                    "cache": CACHE_FOLDER,
                    "tmp": TMP_FOLDER,
                    "textures": TEXTURES_FOLDER,
                },
            },
            "tools": {
                "pbrt": {
                    "path": PBRT_PATH,
                    "timeout": PBRT_TIMEOUT,
                    "gpu": False,
                    "gpuDevice": 0,
                    "threads": None,
                },
                "assimp": {
                    "path": ASSIMP_PATH,
                    "timeout": ASSIMP_TIMEOUT,
                },
            },
            "cache": {
                "enabled": True,
                "extension": EXR_EXT,
                "maxAgeDays": CACHE_MAX_AGE_DAYS,
                "sweepIntervalHours": CACHE_SWEEP_INTERVAL_HOURS,
            },
            "models": {
                "supportedExtensions": list(SUPPORTED_MODEL_EXTENSIONS),
                "keepFileExtensions": list(KEEP_FILE_EXTENSIONS),
            },
            "scene": {
                "texturesMarker": TEXTURES_MARKER,
                "optOutMarker": OPT_OUT_MARKER,
                "prefixLength": PREFIX_LENGTH,
            },
            "logging": DEFAULT_LOG_SETTINGS,
        }

        # Begin with the defaults
        config_data: Dict[str, Any] = copy.deepcopy(self.defaults)

        # Load configuration from config.json if it exists
        self._load_from_json(config_data)

        # Load a .env file, then let the process environment win
        self._load_from_env()
        self._override_from_env(config_data)

        for key, value in config_data.items():
            setattr(self, key, value)

        self._update_convenience_attributes()
        self._setup_logging()

    def _update_convenience_attributes(self) -> None:
        """Update flattened attributes to reflect the current configuration."""
        self.UPLOADS_ROOT = os.path.abspath(self.paths.get("uploads", UPLOADS_FOLDER))
        folders = self.paths.get("folders", {})
        self.MODELS_FOLDER = folders.get("models", MODELS_FOLDER)
        self.MODELS_ROOT = os.path.join(self.UPLOADS_ROOT, self.MODELS_FOLDER)
        self.CACHE_DIR = os.path.join(self.UPLOADS_ROOT, folders.get("cache", CACHE_FOLDER))
        self.TMP_DIR = os.path.join(self.UPLOADS_ROOT, folders.get("tmp", TMP_FOLDER))
        self.TEXTURES_FOLDER = folders.get("textures", TEXTURES_FOLDER)

        pbrt = self.tools.get("pbrt", {})
        self.PBRT_PATH = pbrt.get("path", PBRT_PATH)
        self.PBRT_TIMEOUT = int(pbrt.get("timeout", PBRT_TIMEOUT))
        self.PBRT_GPU = bool(pbrt.get("gpu", False))
        self.PBRT_GPU_DEVICE = int(pbrt.get("gpuDevice", 0))
        self.PBRT_THREADS = pbrt.get("threads") or os.cpu_count() or 1

        assimp = self.tools.get("assimp", {})
        self.ASSIMP_PATH = assimp.get("path", ASSIMP_PATH)
        self.ASSIMP_TIMEOUT = int(assimp.get("timeout", ASSIMP_TIMEOUT))

        self.ENABLE_CACHE = bool(self.cache.get("enabled", True))
        self.CACHE_EXT = self.cache.get("extension", EXR_EXT)
        self.CACHE_MAX_AGE = float(self.cache.get("maxAgeDays", CACHE_MAX_AGE_DAYS)) * 24 * 3600
        self.CACHE_SWEEP_INTERVAL = float(
            self.cache.get("sweepIntervalHours", CACHE_SWEEP_INTERVAL_HOURS)
        ) * 3600

        self.SUPPORTED_MODEL_EXTENSIONS = [e.lower() for e in self.models.get("supportedExtensions", [])]
        self.KEEP_FILE_EXTENSIONS = [e.lower() for e in self.models.get("keepFileExtensions", [])]

        self.TEXTURES_MARKER = self.scene.get("texturesMarker", TEXTURES_MARKER)
        self.OPT_OUT_MARKER = self.scene.get("optOutMarker", OPT_OUT_MARKER)
        self.PREFIX_LENGTH = int(self.scene.get("prefixLength", PREFIX_LENGTH))

        logging_config = getattr(self, "logging", {})
        self.LOG_FILE = logging_config.get("file", None)
        self.LOG_LEVEL = logging_config.get("level", "INFO").upper()

    def _setup_logging(self) -> None:
        """Configure logging based on current settings."""
        RichLogger.configure_from_settings(self.logging)

    def load_from_file(self, config_file: str) -> None:
        """
        Load configuration from a specific JSON file.

        Args:
            config_file: Path to the JSON configuration file

        Raises:
            FileNotFoundError: If the file doesn't exist
            json.JSONDecodeError: If the file contains invalid JSON
            jsonschema.ValidationError: If the file does not match the schema
        """
        if not os.path.exists(config_file):
            raise FileNotFoundError(f"Configuration file not found: {config_file}")

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                config_data = json.load(f)

            self._validate(config_data)

            for key, value in config_data.items():
                current = getattr(self, key, None)
                if isinstance(current, dict) and isinstance(value, dict):
                    _deep_merge(current, value)
                else:
                    setattr(self, key, value)

            self._update_convenience_attributes()
            logger.info(f"Configuration loaded from {config_file}")

            if self.logging.get("debug", {}).get("log_config", False):
                self._log_config_values()

        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in configuration file {config_file}: {e}")
            raise
        except ValidationError as e:
            logger.error(f"Configuration file {config_file} does not match the schema: {e.message}")
            raise

    def replace_global_instance(self, new_config_file: str) -> bool:
        """
        Replace this config instance with settings from a new config file.

        Args:
            new_config_file: Path to the configuration file

        Returns:
            True if successful, False otherwise
        """
        try:
            self.load_from_file(new_config_file)
            self._setup_logging()
            logger.info(f"Global configuration replaced with values from {new_config_file}")
            return True
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Failed to replace configuration: {e}")
            return False

    def _log_config_values(self) -> None:
        """Log all configuration values for debugging."""
        logger.debug("Current configuration values:")
        for key, value in self.__dict__.items():
            if not key.startswith('_'):
                if isinstance(value, dict):
                    logger.debug(f"  {key}: {json.dumps(value, indent=2)}")
                else:
                    logger.debug(f"  {key}: {value}")

    @staticmethod
    def _validate(config_data: Dict[str, Any]) -> None:
        """Validate a configuration dictionary against the bundled schema."""
        if not os.path.exists(CONFIG_SCHEMA_PATH):
            logger.warning(f"Configuration schema not found at {CONFIG_SCHEMA_PATH}, skipping validation")
            return
        with open(CONFIG_SCHEMA_PATH, "r", encoding="utf-8") as f:
            schema = json.load(f)
        validate(instance=config_data, schema=schema)

    def _load_from_json(self, config_data: Dict[str, Any]) -> None:
        """Load configuration from config.json in the working directory."""
        json_path = os.path.join(os.getcwd(), CONFIG_JSON_FILENAME)
        if not os.path.exists(json_path):
            return
        try:
            with open(json_path, "r", encoding='utf-8') as f:
                json_config = json.load(f)
        except json.JSONDecodeError as je:
            logger.error(f"JSON syntax error in {json_path}: {str(je)}")
            logger.error(f"Error at line {je.lineno}, column {je.colno}")
            return

        try:
            self._validate(json_config)
        except ValidationError as ve:
            logger.error(f"Validation error in {json_path}: {ve.message}")
            logger.debug("Using default configuration")
            return

        _deep_merge(config_data, json_config)

    def _load_from_env(self) -> None:
        """Load variables from a .env file into the process environment."""
        env_path = os.path.join(os.getcwd(), ENV_FILE)
        if os.path.exists(env_path):
            load_dotenv(dotenv_path=env_path)

    def _override_from_env(self, config_data: Dict[str, Any]) -> None:
        """Override configuration with PBRTAPI_* environment variables."""
        overrides = {
            ENV_VARS["UPLOADS_ROOT"]: (("paths", "uploads"), str),
            ENV_VARS["LOG_LEVEL"]: (("logging", "level"), str),
            ENV_VARS["LOG_FILE"]: (("logging", "file"), str),
            ENV_VARS["PBRT"]: (("tools", "pbrt", "path"), str),
            ENV_VARS["PBRT_TIMEOUT"]: (("tools", "pbrt", "timeout"), int),
            ENV_VARS["PBRT_GPU"]: (("tools", "pbrt", "gpu"), _as_bool),
            ENV_VARS["ASSIMP"]: (("tools", "assimp", "path"), str),
            ENV_VARS["ASSIMP_TIMEOUT"]: (("tools", "assimp", "timeout"), int),
            ENV_VARS["CACHE_MAX_AGE_DAYS"]: (("cache", "maxAgeDays"), float),
        }
        for env_name, (keys, cast) in overrides.items():
            env_val = os.getenv(env_name)
            if env_val is None:
                continue
            try:
                value = cast(env_val)
            except ValueError:
                logger.warning(f"Ignoring invalid value for {env_name}: {env_val!r}")
                continue
            section = config_data
            for key in keys[:-1]:
                section = section.setdefault(key, {})
            section[keys[-1]] = value


# Instantiate the config singleton
config_class = Config()


def display_config(config: Optional[Config] = None) -> None:
    """Display the current configuration in a formatted table."""
    config = config or config_class
    console = Console()

    table = Table(title="PBRT API Configuration")
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="magenta")

    keys = [
        "UPLOADS_ROOT", "MODELS_ROOT", "CACHE_DIR", "TMP_DIR",
        "PBRT_PATH", "PBRT_TIMEOUT", "PBRT_GPU", "PBRT_THREADS",
        "ASSIMP_PATH", "ASSIMP_TIMEOUT", "ENABLE_CACHE", "CACHE_EXT",
        "CACHE_MAX_AGE", "TEXTURES_MARKER", "OPT_OUT_MARKER", "LOG_LEVEL", "LOG_FILE",
    ]

    for key in keys:
        value = getattr(config, key, "N/A")
        table.add_row(key, str(value))

    console.print(table)


if __name__ == "__main__":
    display_config()
