"""
Renderer wrappers for the PBRT scene service.
"""

from .pbrt import PbrtRenderer

__all__ = ['PbrtRenderer']
