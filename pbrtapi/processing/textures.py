"""
Resolution of indexed texture placeholders (``*N``) against a model's texture folder.

The converter writes texture references as ``*0``, ``*1``... which mean "the
Nth texture file of this model". The files are first given a real extension
by sniffing their leading bytes, then listed in lexicographic order, and that
order fixes which file each index names.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from pbrtapi.config.constants import MODELS_FOLDER, TEXTURE_FOLDER_NAMES, TEXTURES_FOLDER
from pbrtapi.utils.logger import RichLogger
from pbrtapi.utils.timing import timeit
from .exceptions import PlaceholderUnresolved, UnknownSignature
from .paths import FILENAME_PARAMETERS, PLACEHOLDER_RE
from .tokenizer import Edit, Token, apply_edits, parse_directives, tokenize

logger = RichLogger.get_logger("pbrtapi.processing.textures")

IMAGE_EXTENSIONS = {
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".tif", ".tiff",
    ".exr", ".hdr", ".dds", ".tga", ".pfm", ".ktx",
}
SNIFF_BYTES = 16


def sniff_signature(head: bytes) -> Optional[str]:
    """
    Guess an image extension from the first bytes of a file.

    Args:
        head: Leading bytes of the file (16 are enough)

    Returns:
        Extension without the dot, or None when the signature is unknown
    """
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "png"
    if head.startswith(b"\xff\xd8\xff"):
        return "jpg"
    if head.startswith((b"GIF87a", b"GIF89a")):
        return "gif"
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "webp"
    if head.startswith((b"II*\x00", b"MM\x00*")):
        return "tiff"
    if head.startswith(b"v/1\x01"):
        return "exr"
    if head.startswith((b"#?RADIANCE", b"#?RGBE")):
        return "hdr"
    if head.startswith(b"DDS "):
        return "dds"
    if head.startswith(b"BM"):
        return "bmp"
    return None


def placeholder_shape(value: str, models_folder: str = MODELS_FOLDER) -> str:
    """Name the syntactic form of a placeholder, for log messages."""
    normalized = value.replace("\\", "/")
    prefix = PLACEHOLDER_RE.match(normalized).group("prefix") or ""
    if not prefix:
        return "bare"
    if f"{models_folder}/" in prefix:
        return "model-qualified"
    return "arbitrary-prefix"


class TexturePlaceholderResolver:
    """
    Replace ``*N`` filename placeholders with paths to a model's texture files.

    Resolved paths are relative to the storage root:
    ``<models>/<uuid>/textures/<file>``.
    """

    def __init__(
        self,
        storage_root: Union[str, os.PathLike],
        models_folder: str = MODELS_FOLDER,
        textures_folder: str = TEXTURES_FOLDER,
    ):
        self.storage_root = Path(storage_root)
        self.models_folder = models_folder
        self.textures_folder = textures_folder
        self.last_unresolved: List[PlaceholderUnresolved] = []
        self.last_unknown_signatures: List[UnknownSignature] = []

    def texture_dir(self, model_dir: Union[str, os.PathLike]) -> Optional[Path]:
        """Return the model's texture folder, or None if it has none."""
        names = [self.textures_folder] + [n for n in TEXTURE_FOLDER_NAMES if n != self.textures_folder]
        for name in names:
            candidate = Path(model_dir) / name
            if candidate.is_dir():
                return candidate
        return None

    @staticmethod
    def _texture_files(texture_dir: Path) -> List[Path]:
        return [
            entry for entry in texture_dir.iterdir()
            if entry.is_file() and not entry.name.startswith(".")
        ]

    @timeit(log_level="debug")
    def normalize_extensions(self, texture_dir: Union[str, os.PathLike]) -> List[Tuple[str, str]]:
        """
        Give extension-less texture files the extension their signature implies.

        Files that already end in a known image extension are left alone, as
        are files whose signature is unknown or whose target name is taken.

        Args:
            texture_dir: Directory holding the texture files

        Returns:
            List of (old name, new name) renames performed
        """
        texture_dir = Path(texture_dir)
        self.last_unknown_signatures = []
        renamed = []
        for path in sorted(self._texture_files(texture_dir)):
            if path.suffix.lower() in IMAGE_EXTENSIONS:
                continue
            with open(path, "rb") as f:
                head = f.read(SNIFF_BYTES)
            extension = sniff_signature(head)
            if extension is None:
                record = UnknownSignature(str(path), head)
                self.last_unknown_signatures.append(record)
                logger.warning(f"Unknown image signature for {path.name} ({head[:8].hex()}), leaving it as is")
                continue
            target = path.with_name(f"{path.name}.{extension}")
            if target.exists():
                logger.warning(f"Cannot rename {path.name}: {target.name} already exists")
                continue
            os.rename(path, target)
            renamed.append((path.name, target.name))
            logger.debug(f"Renamed texture {path.name} -> {target.name}")
        return renamed

    def enumerate_textures(self, texture_dir: Union[str, os.PathLike]) -> List[str]:
        """List texture file names in the order placeholder indices refer to."""
        return sorted(p.name for p in self._texture_files(Path(texture_dir)))

    @staticmethod
    def _placeholders(text: str) -> List[Token]:
        found = []
        for directive in parse_directives(tokenize(text)):
            for param in directive.find_parameters(*FILENAME_PARAMETERS):
                if param.type != "string":
                    continue
                for token in param.string_values():
                    if PLACEHOLDER_RE.match(token.value.replace("\\", "/")):
                        found.append(token)
        return found

    def _unresolved(self, token: Token, index: int, reason: str, available: int = 0) -> None:
        record = PlaceholderUnresolved(token.value, index, reason, available)
        self.last_unresolved.append(record)
        logger.warning(f"Texture placeholder {token.value!r} left unresolved: {reason}")

    @timeit(log_level="debug")
    def resolve(self, model_dir: Union[str, os.PathLike], text: str) -> str:
        """
        Resolve every ``*N`` placeholder in ``text`` for one model.

        Args:
            model_dir: The model's directory; its name is the model UUID
            text: Scene text

        Returns:
            Scene text with placeholders replaced where the index is in range
        """
        model_dir = Path(model_dir)
        self.last_unresolved = []
        placeholders = self._placeholders(text)
        if not placeholders:
            return text

        texture_dir = self.texture_dir(model_dir)
        if texture_dir is None:
            for token in placeholders:
                index = int(PLACEHOLDER_RE.match(token.value.replace("\\", "/")).group("index"))
                self._unresolved(token, index, "model has no texture directory")
            return text

        self.normalize_extensions(texture_dir)
        files = self.enumerate_textures(texture_dir)
        relative_dir = f"{self.models_folder}/{model_dir.name}/{texture_dir.name}"

        resolved: Dict[int, str] = {}
        edits = []
        for token in placeholders:
            index = int(PLACEHOLDER_RE.match(token.value.replace("\\", "/")).group("index"))
            if index >= len(files):
                self._unresolved(token, index, f"index out of range ({len(files)} textures)", len(files))
                continue
            target = resolved.setdefault(index, f"{relative_dir}/{files[index]}")
            logger.debug(f"Placeholder {token.value!r} ({placeholder_shape(token.value, self.models_folder)}) -> {target}")
            edits.append(Edit(token.start, token.end, f'"{target}"'))

        return apply_edits(text, edits)
