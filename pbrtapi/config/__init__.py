"""
Configuration module for the PBRT scene service.
"""

from .config import config_class, Config, display_config

__all__ = ['config_class', 'Config', 'display_config']
