"""
Classification and normalization of file references inside scene text.
"""

import os
import posixpath
import re
from enum import Enum
from typing import List, Optional, Tuple, Union

from pbrtapi.config.constants import PathMode
from pbrtapi.utils.logger import RichLogger
from pbrtapi.utils.timing import timeit
from .exceptions import SecurityViolation
from .tokenizer import STRING, Edit, Token, apply_edits, parse_directives, tokenize

logger = RichLogger.get_logger("pbrtapi.processing.paths")

PLACEHOLDER_RE = re.compile(r"^(?P<prefix>.*[\\/])?\*(?P<index>\d+)$")
FILENAME_PARAMETERS = ("filename", "mapname")
PATH_DIRECTIVES = ("Include", "Import")

SYSTEM_PREFIXES = (
    "/etc", "/proc", "/sys", "/dev", "/root", "/boot",
    "/bin", "/sbin", "/usr", "/var", "/home", "/lib",
)
_HOME_RE = re.compile(r"\$HOME\b|\$\{HOME\}|%USERPROFILE%|%HOMEPATH%", re.IGNORECASE)
_DRIVE_RE = re.compile(r"^[A-Za-z]:(/|$)")
_WINDOWS_SYSTEM_RE = re.compile(r"^[A-Za-z]:/(windows|program files|programdata|users)(/|$)", re.IGNORECASE)


class PathKind(Enum):
    SAFE_RELATIVE = "safe_relative"
    MODEL_ABSOLUTE = "model_absolute"
    PLACEHOLDER = "placeholder"
    SUSPICIOUS = "suspicious"


class PathSanitizer:
    """
    Reject unsafe file references and rewrite safe ones relative to the storage root.

    The storage root is the directory the renderer runs in, so every reference
    that survives sanitization resolves below it.
    """

    def __init__(self, storage_root: Union[str, os.PathLike]):
        root = os.path.abspath(os.fspath(storage_root)).replace("\\", "/")
        self.storage_root = root.rstrip("/") or "/"

    def _under_root(self, path: str) -> bool:
        return path == self.storage_root or path.startswith(self.storage_root + "/")

    def inspect(self, path: str) -> Tuple[PathKind, Optional[str]]:
        """
        Classify a path and give the reason when it is suspicious.

        Args:
            path: Raw path string as it appears in the scene

        Returns:
            Tuple of (kind, reason); reason is None unless the kind is SUSPICIOUS
        """
        if path.startswith("\\\\") or path.startswith("//"):
            return PathKind.SUSPICIOUS, "UNC network path"

        normalized = path.replace("\\", "/")
        if normalized.startswith("~") or _HOME_RE.search(normalized):
            return PathKind.SUSPICIOUS, "home-relative path"
        if ".." in normalized.split("/"):
            return PathKind.SUSPICIOUS, "parent-directory traversal"

        if normalized.startswith("/") and self._under_root(normalized):
            return PathKind.MODEL_ABSOLUTE, None

        for prefix in SYSTEM_PREFIXES:
            if normalized == prefix or normalized.startswith(prefix + "/"):
                return PathKind.SUSPICIOUS, f"system path under {prefix}"
        if _WINDOWS_SYSTEM_RE.match(normalized):
            return PathKind.SUSPICIOUS, "Windows system path"

        if PLACEHOLDER_RE.match(normalized):
            return PathKind.PLACEHOLDER, None

        if _DRIVE_RE.match(normalized):
            return PathKind.SUSPICIOUS, "absolute drive path outside storage root"
        if normalized.startswith("/"):
            return PathKind.SUSPICIOUS, "absolute path outside storage root"
        return PathKind.SAFE_RELATIVE, None

    def classify(self, path: str) -> PathKind:
        return self.inspect(path)[0]

    def _candidates(self, text: str) -> List[Token]:
        """Collect every string token that names a file."""
        tokens = tokenize(text)
        found = {}
        for directive in parse_directives(tokens):
            if directive.name in PATH_DIRECTIVES:
                for token in directive.positional():
                    found[token.start] = token
            for param in directive.find_parameters(*FILENAME_PARAMETERS):
                if param.type != "string":
                    continue
                for token in param.string_values():
                    found[token.start] = token
        for token in tokens:
            if token.kind == STRING and self._under_root(token.value.replace("\\", "/")):
                found[token.start] = token
        return [found[k] for k in sorted(found)]

    def _rewrite(self, value: str, kind: PathKind, mode: PathMode) -> str:
        normalized = value.replace("\\", "/")
        if kind is PathKind.MODEL_ABSOLUTE:
            relative = posixpath.normpath(normalized[len(self.storage_root):].lstrip("/"))
            if relative == ".":
                relative = ""
            if mode is PathMode.RELATIVE:
                return relative
            return posixpath.join(self.storage_root, relative)
        if kind is PathKind.SAFE_RELATIVE and mode is PathMode.ABSOLUTE:
            return posixpath.join(self.storage_root, normalized)
        if kind is PathKind.PLACEHOLDER:
            prefix = PLACEHOLDER_RE.match(normalized).group("prefix") or ""
            if prefix.startswith("/") or _DRIVE_RE.match(prefix):
                # Only the index of a foreign export path is kept
                return "*" + PLACEHOLDER_RE.match(normalized).group("index")
        return normalized

    @timeit(log_level="debug")
    def sanitize(self, text: str, mode: Union[str, PathMode] = PathMode.RELATIVE) -> str:
        """
        Validate and normalize every file reference in ``text``.

        Args:
            text: Scene text
            mode: ``relative`` to rewrite references relative to the storage
                root, ``absolute`` to anchor them at the root

        Returns:
            The rewritten scene text

        Raises:
            SecurityViolation: If any reference is suspicious; nothing is rewritten
        """
        mode = PathMode.from_value(mode)
        candidates = self._candidates(text)

        plan = []
        for token in candidates:
            kind, reason = self.inspect(token.value)
            if kind is PathKind.SUSPICIOUS:
                logger.error(f"Rejecting scene: {reason} in {token.value!r}")
                raise SecurityViolation(token.value, reason)
            plan.append((token, kind))

        edits = []
        for token, kind in plan:
            rewritten = self._rewrite(token.value, kind, mode)
            if rewritten != token.value:
                edits.append(Edit(token.start, token.end, f'"{rewritten}"'))

        if edits:
            logger.debug(f"Rewriting {len(edits)} of {len(candidates)} file references ({mode.value})")
        return apply_edits(text, edits)
