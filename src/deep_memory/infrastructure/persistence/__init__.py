from .memory_store import InMemoryKeyValueStore
from .writer import CoalescingWriter

__all__ = ["CoalescingWriter", "InMemoryKeyValueStore"]
