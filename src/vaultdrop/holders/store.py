"""
vaultdrop/holders/store.py

Durable storage for the discovered holder count.

The count is a resumption hint for discovery, so persistence is best
effort: the in-memory value stays authoritative for the process lifetime.
Writes are upserts keyed by marker mint, so several processes sharing a
store file never clobber each other's mints.

Backends:
1. Memory - tests and persistence-disabled runs
2. JSON file - survives restarts
"""

import json
import logging
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger("vaultdrop.holders.store")


class HolderCountStore(ABC):
    """Abstract base class for holder count stores."""

    @abstractmethod
    async def load(self, mint: str) -> Optional[int]:
        """Return the stored count for mint, or None if absent."""
        pass

    @abstractmethod
    async def save(self, mint: str, count: int) -> None:
        """Upsert the count for mint."""
        pass


class MemoryHolderCountStore(HolderCountStore):
    """In-memory store."""

    def __init__(self, initial: Optional[Dict[str, int]] = None):
        self._data: Dict[str, int] = dict(initial or {})

    async def load(self, mint: str) -> Optional[int]:
        return self._data.get(mint)

    async def save(self, mint: str, count: int) -> None:
        self._data[mint] = count


class FileHolderCountStore(HolderCountStore):
    """
    JSON file store.

    Layout:
        {"<mint>": {"holders_number": 2400, "updated_at": 1700000000.0}}
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read(self) -> Dict[str, dict]:
        if not self.path.exists():
            return {}
        with open(self.path, "r") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not contain a JSON object")
        return data

    async def load(self, mint: str) -> Optional[int]:
        try:
            entry = self._read().get(mint)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read holder count store {self.path}: {e}")
            return None

        if not isinstance(entry, dict):
            return None
        count = entry.get("holders_number")
        if not isinstance(count, int) or count < 0:
            logger.warning(f"Ignoring invalid stored holder count for {mint}: {count!r}")
            return None
        return count

    async def save(self, mint: str, count: int) -> None:
        """
        Upsert the count for mint.

        Raises:
            OSError: If the file cannot be written
            ValueError: If the existing file is not a JSON object
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = self._read()
        data[mint] = {"holders_number": count, "updated_at": time.time()}

        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self.path)
