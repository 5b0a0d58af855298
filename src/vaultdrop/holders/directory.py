"""
vaultdrop/holders/directory.py

Holder directory for the marker token.

Keeps a cached count of holder records and draws random winners without
enumerating the whole population:

1. refresh_count() resumes paging from the cached count, so steady-state
   discovery costs one or two listing calls
2. draw_winners(n) samples distinct indices, then fetches only the pages
   those indices fall on

The count is owned by whoever drives the directory (the distribution
actor); nothing else may call refresh_count concurrently.
"""

import logging
import random
from itertools import groupby
from typing import Dict, List, Optional, Set, TYPE_CHECKING

from ..exceptions import HolderListingError, InsufficientHoldersError, TooManyPagesError
from .store import HolderCountStore

if TYPE_CHECKING:
    from .listing import TokenAccountsClient

logger = logging.getLogger("vaultdrop.holders.directory")


# ============================================================================
# CONSTANTS
# ============================================================================

PAGE_SIZE = 1000            # Records per getTokenAccounts page
MAX_PAGES = 2000            # Discovery gives up past this page
MAX_REDRAW_PASSES = 8       # Sampling passes before giving up on duplicates


class HolderDirectory:
    """
    Cached holder count plus random winner sampling.

    Usage:
        directory = await HolderDirectory.load(listing, state.marker_mint, store)
        await directory.refresh_count()
        winners = await directory.draw_winners(state.winners_per_round)
    """

    def __init__(
        self,
        listing: "TokenAccountsClient",
        mint: str,
        store: Optional[HolderCountStore] = None,
        holders_number: int = 0,
        rng: Optional[random.Random] = None,
        page_size: int = PAGE_SIZE,
        max_pages: int = MAX_PAGES,
    ):
        """
        Initialize the directory.

        Args:
            listing: Paginated holder listing client
            mint: Marker token mint
            store: Optional durable store for the count
            holders_number: Initial cached count
            rng: Random source (defaults to SystemRandom)
            page_size: Records per listing page
            max_pages: Page ceiling for discovery
        """
        self.listing = listing
        self.mint = str(mint)
        self.store = store
        self.rng = rng or random.SystemRandom()
        self.page_size = page_size
        self.max_pages = max_pages
        self._holders_number = holders_number

    @classmethod
    async def load(
        cls,
        listing: "TokenAccountsClient",
        mint: str,
        store: Optional[HolderCountStore] = None,
        **kwargs,
    ) -> "HolderDirectory":
        """Create a directory seeded from the store (0 if nothing stored)."""
        holders_number = 0
        if store is not None:
            stored = await store.load(str(mint))
            if stored is not None:
                holders_number = stored
        logger.info(f"Loaded holder count for {mint}: {holders_number}")
        return cls(listing, mint, store=store, holders_number=holders_number, **kwargs)

    @property
    def holders_number(self) -> int:
        return self._holders_number

    # ========================================================================
    # DISCOVERY
    # ========================================================================

    async def discover_count(self, start_page: int = 1) -> int:
        """
        Page through the listing from start_page and return the record count.

        The count is page_size * (last_page - 1) + total of the first short
        page. Does not touch the cache.

        Raises:
            TooManyPagesError: If no short page appears before max_pages
            HolderListingError: If a page fetch fails
        """
        page = start_page
        while page <= self.max_pages:
            holder_page = await self.listing.get_page(self.mint, page, self.page_size)

            if holder_page.total == 0 and page == start_page and start_page > 1:
                # Population shrank below the cached count
                logger.info(
                    f"Page {page} empty on resumed scan, restarting discovery from page 1"
                )
                return await self.discover_count(start_page=1)

            if holder_page.total < self.page_size:
                return self.page_size * (page - 1) + holder_page.total

            page += 1

        raise TooManyPagesError(
            f"Holder discovery for {self.mint} exceeded {self.max_pages} pages"
        )

    async def refresh_count(self) -> int:
        """
        Refresh the cached count, resuming from the page it last ended on.

        The cache is only replaced after a complete scan; persistence is
        best effort.

        Returns:
            The new holder count
        """
        start_page = self._holders_number // self.page_size + 1
        count = await self.discover_count(start_page=start_page)

        if count != self._holders_number:
            logger.info(f"Holder count for {self.mint}: {self._holders_number} -> {count}")
        self._holders_number = count

        await self.try_persist()
        return count

    async def try_persist(self) -> bool:
        """Save the current count; failures are logged and swallowed."""
        if self.store is None:
            return False
        try:
            await self.store.save(self.mint, self._holders_number)
            return True
        except Exception as e:
            logger.warning(f"Failed to persist holder count for {self.mint}: {e}")
            return False

    # ========================================================================
    # SAMPLING
    # ========================================================================

    def _draw_indices(self, count: int, excluded: Set[int]) -> List[int]:
        picked: Set[int] = set()
        while len(picked) < count:
            index = self.rng.randrange(self._holders_number)
            if index not in excluded:
                picked.add(index)
        return sorted(picked)

    async def draw_winners(self, n: int) -> List[str]:
        """
        Draw n distinct holder owners uniformly at random.

        Args:
            n: Number of winners

        Returns:
            Owner addresses ordered by their listing index

        Raises:
            InsufficientHoldersError: If n >= holders_number, or duplicates
                could not be replaced
            HolderListingError: If a page is shorter than the count implies
        """
        if n >= self._holders_number:
            raise InsufficientHoldersError(n, self._holders_number)
        if n == 0:
            return []

        used_indices: Set[int] = set()
        seen_owners: Set[str] = set()
        winners: Dict[int, str] = {}

        for attempt in range(MAX_REDRAW_PASSES):
            needed = n - len(winners)
            if self._holders_number - len(used_indices) < needed:
                break

            indices = self._draw_indices(needed, used_indices)
            used_indices.update(indices)

            for page, group in groupby(indices, key=lambda i: i // self.page_size + 1):
                holder_page = await self.listing.get_page(self.mint, page, self.page_size)
                for index in group:
                    offset = index % self.page_size
                    if offset >= len(holder_page.owners):
                        raise HolderListingError(
                            f"Page {page} has {len(holder_page.owners)} records, "
                            f"index {index} needs offset {offset}"
                        )
                    owner = holder_page.owners[offset]
                    if owner in seen_owners:
                        logger.debug(f"Duplicate owner {owner} at index {index}, redrawing")
                        continue
                    seen_owners.add(owner)
                    winners[index] = owner

            if len(winners) == n:
                logger.info(f"Drew {n} winners from {self._holders_number} holders")
                return [winners[index] for index in sorted(winners)]

            logger.debug(f"Pass {attempt + 1}: {n - len(winners)} winners still needed")

        raise InsufficientHoldersError(
            n,
            len(winners),
            f"Only {len(winners)} distinct owners found for {n} winners "
            f"among {self._holders_number} holder records",
        )
