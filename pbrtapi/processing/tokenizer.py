"""
Single-pass tokenizer and scope tracker for PBRT scene text.

The rewriters never re-scan mutated text. They tokenize once, decide every
change against the token offsets, and hand the resulting edit plan to
``apply_edits``.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, NamedTuple, Optional

from .exceptions import MalformedScope

COMMENT = "comment"
STRING = "string"
WORD = "word"
NUMBER = "number"
LBRACKET = "lbracket"
RBRACKET = "rbracket"

SCOPE_BEGIN = "AttributeBegin"
SCOPE_END = "AttributeEnd"

# Number of leading quoted strings that are positional arguments, not parameters
POSITIONAL_STRINGS = {
    "Texture": 3,
    "MakeNamedMaterial": 1,
    "NamedMaterial": 1,
    "Material": 1,
    "Shape": 1,
    "LightSource": 1,
    "AreaLightSource": 1,
    "Camera": 1,
    "Sampler": 1,
    "Film": 1,
    "Integrator": 1,
    "PixelFilter": 1,
    "Accelerator": 1,
    "MakeNamedMedium": 1,
    "MediumInterface": 2,
    "ObjectBegin": 1,
    "ObjectInstance": 1,
    "CoordinateSystem": 1,
    "CoordSysTransform": 1,
    "Include": 1,
    "Import": 1,
    "ColorSpace": 1,
    "Option": 0,
}

_WORD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")
_BARE_VALUES = {"true", "false"}
_DELIMITERS = set(' \t\r\n\f\v"#[]')
_DECLARATION_RE = re.compile(r"^\s*(?P<type>[A-Za-z_][\w]*)\s+(?P<name>\S+)\s*$")


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    start: int
    end: int


@dataclass
class Parameter:
    """A ``"type name" value`` pair, with the value tokens it spans."""
    type: str
    name: str
    declaration: Token
    values: List[Token]

    def string_values(self) -> List[Token]:
        return [t for t in self.values if t.kind == STRING]


@dataclass
class Directive:
    name: str
    keyword: Token
    args: List[Token] = field(default_factory=list)
    leading_comment: Optional[Token] = None

    @property
    def start(self) -> int:
        return self.keyword.start

    @property
    def end(self) -> int:
        return self.args[-1].end if self.args else self.keyword.end

    def positional(self) -> List[Token]:
        """Return the leading quoted strings that are not parameter declarations."""
        count = POSITIONAL_STRINGS.get(self.name)
        result = []
        for token in self.args:
            if token.kind != STRING:
                break
            if count is not None:
                if len(result) >= count:
                    break
            elif _DECLARATION_RE.match(token.value):
                break
            result.append(token)
        return result

    def parameters(self) -> List[Parameter]:
        """Parse the ``"type name" value`` / ``"type name" [ values ]`` pairs."""
        tokens = self.args[len(self.positional()):]
        params = []
        i = 0
        while i < len(tokens):
            token = tokens[i]
            match = _DECLARATION_RE.match(token.value) if token.kind == STRING else None
            if match is None or i + 1 >= len(tokens):
                i += 1
                continue
            following = tokens[i + 1]
            if following.kind == LBRACKET:
                values = []
                j = i + 2
                while j < len(tokens) and tokens[j].kind != RBRACKET:
                    values.append(tokens[j])
                    j += 1
                i = j + 1
            elif following.kind == RBRACKET:
                i += 1
                continue
            else:
                values = [following]
                i += 2
            params.append(Parameter(match.group("type"), match.group("name"), token, values))
        return params

    def find_parameters(self, *names: str) -> Iterator[Parameter]:
        wanted = {n.lower() for n in names}
        for param in self.parameters():
            if param.name.lower() in wanted:
                yield param


@dataclass
class Scope:
    begin: Directive
    depth: int
    end: Optional[Directive] = None
    body: List[Directive] = field(default_factory=list)

    @property
    def opt_out_comment(self) -> Optional[Token]:
        return self.begin.leading_comment


class Edit(NamedTuple):
    start: int
    end: int
    replacement: str


def line_of(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


def tokenize(text: str) -> List[Token]:
    """
    Split scene text into tokens in a single pass.

    Args:
        text: Scene text

    Returns:
        Tokens in document order, each carrying its offsets in ``text``

    Raises:
        MalformedScope: If a quoted string is never closed
    """
    tokens: List[Token] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
        elif ch == "#":
            end = text.find("\n", i)
            end = n if end == -1 else end
            tokens.append(Token(COMMENT, text[i:end].rstrip("\r"), i, end))
            i = end
        elif ch == '"':
            end = text.find('"', i + 1)
            if end == -1:
                raise MalformedScope("unterminated string", i, line_of(text, i))
            tokens.append(Token(STRING, text[i + 1:end], i, end + 1))
            i = end + 1
        elif ch == "[":
            tokens.append(Token(LBRACKET, ch, i, i + 1))
            i += 1
        elif ch == "]":
            tokens.append(Token(RBRACKET, ch, i, i + 1))
            i += 1
        else:
            j = i + 1
            while j < n and text[j] not in _DELIMITERS:
                j += 1
            raw = text[i:j]
            kind = WORD if _WORD_RE.match(raw) and raw not in _BARE_VALUES else NUMBER
            tokens.append(Token(kind, raw, i, j))
            i = j
    return tokens


def _comment_on_line_above(text: str, comment: Token, keyword: Token) -> bool:
    """True if ``comment`` is alone on its line and that line is right above ``keyword``."""
    line_start = text.rfind("\n", 0, comment.start) + 1
    if text[line_start:comment.start].strip():
        return False
    return text.count("\n", comment.end, keyword.start) == 1


def parse_directives(tokens: Iterable[Token], text: Optional[str] = None) -> List[Directive]:
    """
    Group tokens into directives; each bare word starts a new one.

    Args:
        tokens: Output of ``tokenize``
        text: Source text; when given, a directive's ``leading_comment`` is
            only set for a comment on its own line directly above the keyword

    Returns:
        Directives in document order
    """
    directives: List[Directive] = []
    current: Optional[Directive] = None
    previous: Optional[Token] = None
    for token in tokens:
        if token.kind == WORD:
            leading = previous if previous is not None and previous.kind == COMMENT else None
            if leading is not None and text is not None and not _comment_on_line_above(text, leading, token):
                leading = None
            current = Directive(token.value, token, leading_comment=leading)
            directives.append(current)
        elif token.kind != COMMENT and current is not None:
            current.args.append(token)
        previous = token
    return directives


def track_scopes(directives: Iterable[Directive], text: str = "") -> List[Scope]:
    """
    Match AttributeBegin/AttributeEnd pairs with an explicit stack.

    Args:
        directives: Parsed directives in document order
        text: Source text, used only for line numbers in errors

    Returns:
        Every scope in order of its AttributeBegin, outermost first

    Raises:
        MalformedScope: On an unmatched AttributeEnd or an unclosed AttributeBegin
    """
    scopes: List[Scope] = []
    stack: List[Scope] = []
    for directive in directives:
        if directive.name == SCOPE_END:
            if not stack:
                raise MalformedScope(
                    "AttributeEnd without matching AttributeBegin",
                    directive.start, line_of(text, directive.start),
                )
            stack.pop().end = directive
            continue
        if stack:
            stack[-1].body.append(directive)
        if directive.name == SCOPE_BEGIN:
            scope = Scope(directive, depth=len(stack))
            scopes.append(scope)
            stack.append(scope)
    if stack:
        unclosed = stack[-1].begin
        raise MalformedScope(
            "AttributeBegin is never closed",
            unclosed.start, line_of(text, unclosed.start),
        )
    return scopes


def parse_scene(text: str):
    """Tokenize ``text`` and return ``(directives, scopes)``."""
    directives = parse_directives(tokenize(text), text)
    return directives, track_scopes(directives, text)


def apply_edits(text: str, edits: Iterable[Edit]) -> str:
    """
    Apply a plan of non-overlapping edits in a single pass.

    Raises:
        ValueError: If two edits overlap
    """
    ordered = sorted(edits, key=lambda e: (e.start, e.end))
    pieces = []
    cursor = 0
    for edit in ordered:
        if edit.start < cursor:
            raise ValueError(f"Overlapping edit at offset {edit.start}")
        pieces.append(text[cursor:edit.start])
        pieces.append(edit.replacement)
        cursor = edit.end
    pieces.append(text[cursor:])
    return "".join(pieces)
