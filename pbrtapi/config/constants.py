"""
Application-wide constants for the PBRT scene service.

This module defines constants used throughout the application,
including folder names, file names, scene markers and default settings.
"""

import os
import shutil
import platform
from enum import Enum

# Storage layout
UPLOADS_FOLDER = "uploads"
MODELS_FOLDER = "models"
CACHE_FOLDER = "exr_cache"
TMP_FOLDER = "tmp"
TEXTURES_FOLDER = "textures"
TEXTURE_FOLDER_NAMES = ("texture", "textures")
LOGS_FOLDER = "logs"

# Model directory files
MANIFEST_FILE = "info.json"
CONVERTED_SCENE = "converted.pbrt"
TRANSFORMED_SCENE = "transformed.pbrt"
RAW_CONVERTER_OUTPUT = "converter_output.pbrt"

# File extensions
EXR_EXT = ".exr"
PBRT_EXT = ".pbrt"
LOG_FILE = "pbrtapi.log"

SUPPORTED_MODEL_EXTENSIONS = [
    ".obj", ".fbx", ".gltf", ".glb", ".dae", ".3ds", ".blend", ".ply", ".stl",
]
KEEP_FILE_EXTENSIONS = [
    ".obj", ".mtl", ".fbx", ".gltf", ".glb", ".bin", ".dae", ".3ds", ".blend",
    ".ply", ".stl", ".json", ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp",
    ".tif", ".tiff", ".tga", ".exr", ".hdr", ".dds",
]

# Scene text markers
TEXTURES_MARKER = "# Textures"
OPT_OUT_MARKER = "#[no-more-transformation]"
NONAME_MATERIAL = "noname_material"
PREFIX_LENGTH = 8
PREFIX_SEPARATOR = "_"

# External tools
PBRT_PATH = shutil.which("pbrt") or "pbrt"
ASSIMP_PATH = shutil.which("assimp") or "assimp"
PBRT_TIMEOUT = 60
ASSIMP_TIMEOUT = 300
PROCESS_POLL_INTERVAL = 0.5

# Render cache
CACHE_MAX_AGE_DAYS = 7
CACHE_SWEEP_INTERVAL_HOURS = 24
STALE_PARTIAL_SECONDS = 3600

# Configuration file names
CONFIG_JSON_FILENAME = "config.json"
CONFIG_SCHEMA_PATH = os.path.join(
    os.path.dirname(os.path.dirname(__file__)), "assets", "schema", "config_schema.json"
)
ENV_FILE = ".env"

# Logging and debug settings
DEFAULT_LOG_SETTINGS = {
    "file": None,
    "level": "INFO",
    "console": True,
    "debug": {
        "enabled": False,
        "show_locals": False,
        "log_config": False
    }
}

# Environment variable names
ENV_VAR_PREFIX = "PBRTAPI_"
ENV_VARS = {
    "UPLOADS_ROOT": f"{ENV_VAR_PREFIX}UPLOADS_ROOT",
    "LOG_LEVEL": f"{ENV_VAR_PREFIX}LOG_LEVEL",
    "LOG_FILE": f"{ENV_VAR_PREFIX}LOG_FILE",
    "PBRT": f"{ENV_VAR_PREFIX}PBRT",
    "PBRT_TIMEOUT": f"{ENV_VAR_PREFIX}PBRT_TIMEOUT",
    "PBRT_GPU": f"{ENV_VAR_PREFIX}PBRT_GPU",
    "ASSIMP": f"{ENV_VAR_PREFIX}ASSIMP",
    "ASSIMP_TIMEOUT": f"{ENV_VAR_PREFIX}ASSIMP_TIMEOUT",
    "CACHE_MAX_AGE_DAYS": f"{ENV_VAR_PREFIX}CACHE_MAX_AGE_DAYS",
}

# System information
SYSTEM_INFO = {
    "platform": platform.system(),
    "python_version": platform.python_version(),
    "cpu_count": os.cpu_count(),
}


class PathMode(Enum):
    """Output mode for path sanitization."""
    RELATIVE = "relative"
    ABSOLUTE = "absolute"

    @classmethod
    def from_value(cls, value: "str | PathMode") -> "PathMode":
        """Get the mode from a string name, case-insensitive."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown path mode '{value}', expected 'relative' or 'absolute'")


class LogLevel(Enum):
    """Enum for log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @classmethod
    def get_level(cls, name: str) -> str:
        """Get the log level from a string name, case-insensitive."""
        try:
            return getattr(cls, name.upper()).value
        except (AttributeError, TypeError):
            return cls.INFO.value
