"""Persistence facade consumed by the channel layer."""

from omnichannel.storage.base import Storage
from omnichannel.storage.memory import InMemoryStorage

__all__ = ["InMemoryStorage", "Storage"]
