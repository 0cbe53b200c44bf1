"""Durable media for persisted sync state."""

from stakesync.backends.base import DurableMedium
from stakesync.backends.file import JsonFileMedium
from stakesync.backends.inmemory import InMemoryMedium, MediumFullError
from stakesync.backends.redis_medium import RedisMedium

__all__ = ["DurableMedium", "InMemoryMedium", "JsonFileMedium", "MediumFullError", "RedisMedium"]
