"""
adhandshake Store Module

Components:
- memory: ObjectStore interface and in-memory backend
- persister: Update-in-place writer for the provider record
"""

from adhandshake.store.memory import InMemoryObjectStore, ObjectStore
from adhandshake.store.persister import ConfigPersister

__all__ = [
    "ObjectStore",
    "InMemoryObjectStore",
    "ConfigPersister",
]
