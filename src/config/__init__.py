"""
Configuration package for the HumanitZ log tracker.
"""

from config.config import Config, DEFAULT_SETTINGS

__all__ = ['Config', 'DEFAULT_SETTINGS']
