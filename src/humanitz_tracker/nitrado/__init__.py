"""
Nitrado API integration.
"""

from .api_client import NitradoAPIClient

__all__ = ['NitradoAPIClient']
