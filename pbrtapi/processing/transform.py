"""
Injection of Translate/Rotate/Scale blocks into every AttributeBegin scope.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from numbers import Real
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

from pbrtapi.config.constants import OPT_OUT_MARKER, PathMode
from pbrtapi.utils.logger import RichLogger
from pbrtapi.utils.timing import timeit
from .exceptions import TransformParameterError
from .paths import PathSanitizer
from .tokenizer import SCOPE_BEGIN, SCOPE_END, Directive, Edit, Scope, apply_edits, parse_scene

logger = RichLogger.get_logger("pbrtapi.processing.transform")

# Directives that end a scope's header region
BODY_KEYWORDS = {
    "Shape", "Material", "NamedMaterial", "LightSource", "AreaLightSource",
    "CoordSysTransform", "ObjectInstance", SCOPE_BEGIN, SCOPE_END,
}
TRANSFORM_DIRECTIVES = {"Translate", "Rotate", "Scale", "Transform", "ConcatTransform", "LookAt"}
HEADER_RULE = "#-------------------------------------------"
INDENT_STEP = "  "


def format_number(value: float) -> str:
    """Format a number without a trailing ``.0`` for integral values."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _format_vector(values: Optional[Sequence[float]]) -> str:
    if values is None:
        return "none"
    return "[" + ", ".join(format_number(v) for v in values) + "]"


def _validate_component(name: str, values: Any, length: int) -> Optional[Tuple[float, ...]]:
    if values is None:
        return None
    if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
        raise TransformParameterError(f"{name} must be a sequence of {length} numbers, got {values!r}")
    if len(values) != length:
        raise TransformParameterError(f"{name} needs exactly {length} values, got {len(values)}")
    result = []
    for v in values:
        if isinstance(v, bool) or not isinstance(v, Real):
            raise TransformParameterError(f"{name} values must be numbers, got {v!r}")
        if not math.isfinite(v):
            raise TransformParameterError(f"{name} values must be finite, got {v!r}")
        result.append(float(v))
    return tuple(result)


@dataclass
class SceneTransform:
    """A translate/rotate/scale triple; each component may be absent."""
    translate: Optional[Sequence[float]] = None
    rotate: Optional[Sequence[float]] = None
    scale: Optional[Sequence[float]] = None

    def __post_init__(self):
        self.translate = _validate_component("translate", self.translate, 3)
        self.rotate = _validate_component("rotate", self.rotate, 4)
        self.scale = _validate_component("scale", self.scale, 3)

    @property
    def is_empty(self) -> bool:
        return self.translate is None and self.rotate is None and self.scale is None

    def directives(self) -> List[str]:
        """Return the directive lines in Translate, Rotate, Scale order."""
        lines = []
        for keyword, values in (("Translate", self.translate), ("Rotate", self.rotate), ("Scale", self.scale)):
            if values is not None:
                lines.append(keyword + " " + " ".join(format_number(v) for v in values))
        return lines

    def to_record(self, timestamp: str) -> Dict[str, Any]:
        """Manifest representation of this transform."""
        return {
            "timestamp": timestamp,
            "translate": list(self.translate) if self.translate is not None else None,
            "rotate": list(self.rotate) if self.rotate is not None else None,
            "scale": list(self.scale) if self.scale is not None else None,
        }


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TransformInjector:
    """
    Insert a transform block into every eligible scope of a scene.

    A scope is skipped when the comment right before its ``AttributeBegin``
    contains the opt-out marker. Inside a scope, the block goes after the last
    transform of the header region, or right after ``AttributeBegin``.
    """

    def __init__(self, sanitizer: Optional[PathSanitizer] = None, opt_out_marker: str = OPT_OUT_MARKER):
        if sanitizer is None:
            from pbrtapi.config.config import config_class as config
            sanitizer = PathSanitizer(config.UPLOADS_ROOT)
        self.sanitizer = sanitizer
        self.opt_out_marker = opt_out_marker

    def _opted_out(self, scope: Scope) -> bool:
        comment = scope.opt_out_comment
        return comment is not None and self.opt_out_marker in comment.value

    @staticmethod
    def _anchor(scope: Scope) -> Directive:
        anchor = scope.begin
        for directive in scope.body:
            if directive.name in BODY_KEYWORDS:
                break
            if directive.name in TRANSFORM_DIRECTIVES:
                anchor = directive
        return anchor

    @staticmethod
    def _insertion(text: str, anchor: Directive, lines: List[str]) -> Edit:
        line_start = text.rfind("\n", 0, anchor.start) + 1
        indent = re.match(r"[ \t]*", text[line_start:]).group(0)
        if anchor.name == SCOPE_BEGIN:
            indent += INDENT_STEP
        newline = "\r\n" if "\r\n" in text else "\n"
        block = "".join(newline + indent + line for line in lines)

        line_end = text.find("\n", anchor.end)
        line_end = len(text) if line_end == -1 else line_end
        if text[anchor.end:line_end].endswith("\r"):
            line_end -= 1
        rest = text[anchor.end:line_end]
        if not rest.strip() or rest.lstrip().startswith("#"):
            # Trailing whitespace or a comment stays on the anchor line
            return Edit(line_end, line_end, block)

        # More directives follow on the anchor line; move them to their own line
        gap = len(rest) - len(rest.lstrip())
        return Edit(anchor.end, anchor.end + gap, block + newline + indent)

    @staticmethod
    def _line_breaks(text: str, directives: List[Directive], taken: Set[int]) -> List[Edit]:
        """Put scope keywords that share a line with the previous scope keyword on their own line."""
        newline = "\r\n" if "\r\n" in text else "\n"
        scope_keywords = (SCOPE_BEGIN, SCOPE_END)
        edits = []
        for previous, directive in zip(directives, directives[1:]):
            if previous.name not in scope_keywords or directive.name not in scope_keywords:
                continue
            if previous.end in taken or "\n" in text[previous.end:directive.start]:
                continue
            line_start = text.rfind("\n", 0, previous.start) + 1
            indent = re.match(r"[ \t]*", text[line_start:]).group(0)
            edits.append(Edit(previous.end, directive.start, newline + indent))
        return edits

    @staticmethod
    def header(transform: SceneTransform, timestamp: str) -> str:
        return (
            f"# Transform applied on {timestamp}\n"
            "# Parameters:\n"
            f"# - Translate: {_format_vector(transform.translate)}\n"
            f"# - Rotate: {_format_vector(transform.rotate)}\n"
            f"# - Scale: {_format_vector(transform.scale)}\n"
            f"{HEADER_RULE}\n\n"
        )

    @timeit(log_level="debug")
    def inject(
        self,
        text: str,
        transform: SceneTransform,
        timestamp: Optional[Union[str, datetime]] = None,
    ) -> str:
        """
        Apply ``transform`` to every eligible scope of ``text``.

        Args:
            text: Scene text
            transform: Components to inject
            timestamp: Value written in the header comment, defaults to now (UTC)

        Returns:
            Transformed, path-sanitized scene text

        Raises:
            MalformedScope: If the scope structure is unbalanced
            SecurityViolation: If the result still references unsafe paths
        """
        if isinstance(timestamp, datetime):
            timestamp = timestamp.isoformat()
        timestamp = timestamp or utc_timestamp()

        directives, scopes = parse_scene(text)
        lines = transform.directives()

        edits = []
        skipped = 0
        if lines:
            for scope in scopes:
                if self._opted_out(scope):
                    skipped += 1
                    continue
                edits.append(self._insertion(text, self._anchor(scope), lines))

        injected = len(edits)
        edits.extend(self._line_breaks(text, directives, {edit.start for edit in edits}))
        body = apply_edits(text, edits)
        logger.debug(f"Injected transform into {injected} scopes, {skipped} opted out")

        return self.sanitizer.sanitize(self.header(transform, timestamp) + body, PathMode.RELATIVE)
