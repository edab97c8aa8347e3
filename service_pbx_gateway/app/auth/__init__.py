"""
Session token handling for the gateway.
"""

from .token_store import TokenStore

__all__ = ["TokenStore"]
