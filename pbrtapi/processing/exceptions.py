"""
Error types raised by the scene rewrite pipeline and its external tools.

Fatal conditions derive from ``ScenePipelineError``. Conditions that only
deserve a log line (unresolved placeholders, unknown texture signatures) are
plain records and are never raised.
"""

from dataclasses import dataclass
from typing import Optional, Sequence


class ScenePipelineError(Exception):
    """Base class for every typed pipeline failure."""


class SecurityViolation(ScenePipelineError):
    """A scene references a path that must never reach the renderer."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Unsafe path {path!r}: {reason}")


class AmbiguousRename(ScenePipelineError):
    """Identifier renaming cannot be done without merging distinct names."""

    def __init__(self, names: Sequence[str], message: Optional[str] = None):
        self.names = list(names)
        if message is None:
            message = f"Ambiguous rename for names {self.names!r}"
        super().__init__(message)


class MalformedScope(ScenePipelineError):
    """Unbalanced AttributeBegin/AttributeEnd or otherwise unreadable scene text."""

    def __init__(self, message: str, offset: int, line: int):
        self.offset = offset
        self.line = line
        super().__init__(f"{message} (line {line}, offset {offset})")


class TransformParameterError(ScenePipelineError, ValueError):
    """A translate/rotate/scale component has the wrong shape or a non-finite value."""


class ExternalToolError(ScenePipelineError):
    """The renderer or converter failed, timed out or produced no output."""

    def __init__(
        self,
        tool: str,
        message: str,
        returncode: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
    ):
        self.tool = tool
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.timed_out = timed_out
        super().__init__(f"{tool}: {message}")

    def details(self) -> str:
        """Return the message followed by the captured process output."""
        parts = [str(self)]
        if self.returncode is not None:
            parts.append(f"exit code: {self.returncode}")
        if self.stdout.strip():
            parts.append(f"stdout:\n{self.stdout.rstrip()}")
        if self.stderr.strip():
            parts.append(f"stderr:\n{self.stderr.rstrip()}")
        return "\n".join(parts)


@dataclass
class PlaceholderUnresolved:
    token: str
    index: int
    reason: str
    available: int = 0


@dataclass
class UnknownSignature:
    path: str
    head: bytes = b""
