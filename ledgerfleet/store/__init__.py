from .memory import InMemoryStore as InMemoryStore
from .protocol import ResourceStore as ResourceStore
from .protocol import owned_by as owned_by

__all__ = ["InMemoryStore", "ResourceStore", "owned_by"]
