from smartgroups.stores.interfaces import OfferingStore
from smartgroups.stores.memory_store import InMemoryOfferingStore

__all__ = ["OfferingStore", "InMemoryOfferingStore"]
