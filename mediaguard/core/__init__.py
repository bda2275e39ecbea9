"""
Core registry modules: error taxonomy, record stores, events and the registry service.
"""

from .errors import *
from .events import EventBus
from .registry import Registry
from .store import MemoryStore, RegistryStore
