from .base import BaseStore, StoreSession
from .ocado import OcadoStore

STORE_MAP = {
    "ocado": OcadoStore,
}

__all__ = [
    "BaseStore",
    "OcadoStore",
    "STORE_MAP",
    "StoreSession",
]
