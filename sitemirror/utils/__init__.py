"""
Utility modules for the site mirror.
"""

from .config import Config, ConfigManager, load_config

__all__ = ['Config', 'ConfigManager', 'load_config']
