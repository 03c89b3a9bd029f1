"""
Persistence interface

Implementations live in `ranked.store.memory` and `ranked.store.sql`.
"""

from .base import Store

__all__ = ("Store",)
