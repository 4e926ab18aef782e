"""
Object storage module.

Usage:
    from app.features.storage import LocalObjectStore, ObjectStore
"""

from .object_store import ObjectStore, LocalObjectStore, ObjectStoreError

__all__ = [
    "ObjectStore",
    "LocalObjectStore",
    "ObjectStoreError",
]
