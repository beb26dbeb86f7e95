"""Storage module: the store interface and its in-memory implementation."""

from spendgate.storage.base import Store
from spendgate.storage.memory import MemoryStore

__all__ = ["Store", "MemoryStore"]
