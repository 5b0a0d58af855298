"""
vaultdrop/holders/

Marker token holder discovery and winner sampling.
"""

from .listing import TokenAccountsClient, HolderPage
from .store import HolderCountStore, MemoryHolderCountStore, FileHolderCountStore
from .directory import HolderDirectory, PAGE_SIZE, MAX_PAGES

__all__ = [
    "TokenAccountsClient",
    "HolderPage",
    "HolderCountStore",
    "MemoryHolderCountStore",
    "FileHolderCountStore",
    "HolderDirectory",
    "PAGE_SIZE",
    "MAX_PAGES",
]
