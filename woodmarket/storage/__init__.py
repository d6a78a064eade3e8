from woodmarket.storage.base import Storage
from woodmarket.storage.memory import MemoryStorage
from woodmarket.storage.sql import SqlStorage

__all__ = ["Storage", "MemoryStorage", "SqlStorage"]
