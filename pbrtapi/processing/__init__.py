"""
Scene text processing for PBRT scenes.

This package contains the tokenizer, the rewriters that make converted scenes
safe and collision-free, and the converter wrapper.
"""

from .exceptions import (
    ScenePipelineError,
    SecurityViolation,
    AmbiguousRename,
    MalformedScope,
    TransformParameterError,
    ExternalToolError,
    PlaceholderUnresolved,
    UnknownSignature,
)
from .paths import PathSanitizer, PathKind
from .namespace import NamespaceRewriter, make_prefix
from .textures import TexturePlaceholderResolver, sniff_signature
from .transform import SceneTransform, TransformInjector
from .scene import ScenePipeline
from .assimp import AssimpConverter

__all__ = [
    'ScenePipelineError',
    'SecurityViolation',
    'AmbiguousRename',
    'MalformedScope',
    'TransformParameterError',
    'ExternalToolError',
    'PlaceholderUnresolved',
    'UnknownSignature',
    'PathSanitizer',
    'PathKind',
    'NamespaceRewriter',
    'make_prefix',
    'TexturePlaceholderResolver',
    'sniff_signature',
    'SceneTransform',
    'TransformInjector',
    'ScenePipeline',
    'AssimpConverter',
]
