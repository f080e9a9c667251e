"""
Per-model renaming of material and texture identifiers.
"""

import re
from typing import Dict, List

from pbrtapi.config.constants import NONAME_MATERIAL, PREFIX_LENGTH, PREFIX_SEPARATOR
from pbrtapi.utils.logger import RichLogger
from pbrtapi.utils.timing import timeit
from .exceptions import AmbiguousRename
from .tokenizer import STRING, Directive, Edit, Token, apply_edits, parse_directives, tokenize

logger = RichLogger.get_logger("pbrtapi.processing.namespace")

MATERIAL_PARAMETERS = ("namedmaterial1", "namedmaterial2", "materials")


def make_prefix(model_id: str, length: int = PREFIX_LENGTH) -> str:
    """
    Derive the identifier prefix for a model.

    Args:
        model_id: Model UUID, with or without dashes
        length: Number of hex characters to keep

    Returns:
        Lower-case prefix ending with the separator, e.g. ``"3f2a9c1d_"``
    """
    compact = str(model_id).replace("-", "").lower()
    if not re.fullmatch(r"[0-9a-f]+", compact):
        raise ValueError(f"Model id {model_id!r} is not a hexadecimal identifier")
    return compact[:length] + PREFIX_SEPARATOR


class NamespaceRewriter:
    """
    Prefix every material and texture name of a scene with a model-derived prefix.

    Definitions (``MakeNamedMaterial``, ``Texture``) and their reference sites
    are renamed together. Names that already carry the prefix are left as they
    are, so running the rewriter twice changes nothing the second time.
    """

    def __init__(self, prefix: str):
        if not prefix:
            raise ValueError("Namespace prefix must not be empty")
        self.prefix = prefix

    def _target(self, name: str) -> str:
        return self.prefix + (name or NONAME_MATERIAL)

    def _build_map(self, kind: str, definitions: List[Token]) -> Dict[str, str]:
        existing = {t.value for t in definitions}
        mapping: Dict[str, str] = {}
        for token in definitions:
            name = token.value
            if name.startswith(self.prefix) or name in mapping:
                continue
            mapping[name] = self._target(name)

        seen: Dict[str, str] = {}
        for source, target in mapping.items():
            if target in existing or target in seen:
                other = seen.get(target, target)
                logger.error(f"{kind} names {source!r} and {other!r} both map to {target!r}")
                raise AmbiguousRename(
                    [source, other],
                    f"{kind} names {source!r} and {other!r} would both become {target!r}",
                )
            seen[target] = source
        return mapping

    @staticmethod
    def _definitions(directives: List[Directive], keyword: str) -> List[Token]:
        tokens = []
        for directive in directives:
            if directive.name != keyword:
                continue
            positional = directive.positional()
            if positional:
                tokens.append(positional[0])
        return tokens

    @timeit(log_level="debug")
    def rewrite(self, text: str) -> str:
        """
        Rename materials and textures in ``text``.

        Args:
            text: Scene text

        Returns:
            Scene text with prefixed identifiers

        Raises:
            AmbiguousRename: If the document has more than one anonymous material,
                or two names would collapse into one; ``text`` is left untouched
        """
        directives = parse_directives(tokenize(text))

        material_defs = self._definitions(directives, "MakeNamedMaterial")
        anonymous = [t for t in material_defs if t.value == ""]
        if len(anonymous) > 1:
            logger.error(f"Found {len(anonymous)} anonymous material definitions, refusing to rename")
            raise AmbiguousRename(
                [""] * len(anonymous),
                f"{len(anonymous)} anonymous MakeNamedMaterial definitions",
            )

        texture_defs = [t for t in self._definitions(directives, "Texture") if t.value]
        materials = self._build_map("Material", material_defs)
        textures = self._build_map("Texture", texture_defs)

        edits: Dict[int, Edit] = {}

        def rename(token: Token, mapping: Dict[str, str]) -> None:
            if token.kind == STRING and token.value in mapping:
                edits[token.start] = Edit(token.start, token.end, f'"{mapping[token.value]}"')

        for token in material_defs:
            rename(token, materials)
        for token in texture_defs:
            rename(token, textures)

        for directive in directives:
            if directive.name == "NamedMaterial":
                for token in directive.positional()[:1]:
                    rename(token, materials)
            for param in directive.parameters():
                if param.type == "texture":
                    for token in param.string_values():
                        rename(token, textures)
                elif param.type == "string" and param.name in MATERIAL_PARAMETERS:
                    for token in param.string_values():
                        rename(token, materials)

        logger.debug(
            f"Namespace {self.prefix}: {len(materials)} materials, "
            f"{len(textures)} textures, {len(edits)} edits"
        )
        return apply_edits(text, edits.values())
