"""
vaultdrop/tests/test_holders.py

Tests for holder listing, count storage and the holder directory.
"""

import json
import random
from typing import List, Optional
from unittest.mock import AsyncMock, Mock

import pytest
from solders.pubkey import Pubkey

from vaultdrop.exceptions import (
    HolderListingError,
    InsufficientHoldersError,
    JsonRpcError,
    TooManyPagesError,
)
from vaultdrop.holders.directory import HolderDirectory, MAX_PAGES, PAGE_SIZE
from vaultdrop.holders.listing import HolderPage, TokenAccountsClient
from vaultdrop.holders.store import FileHolderCountStore, HolderCountStore, MemoryHolderCountStore

MINT = str(Pubkey.new_unique())


# ============================================================================
# TEST DATA
# ============================================================================

class FakeListing:
    """In-process holder listing over a fixed list of owners."""

    def __init__(self, owners: List[str]):
        self.owners = owners
        self.calls: List[int] = []

    async def get_page(self, mint, page: int, limit: int) -> HolderPage:
        self.calls.append(page)
        start = (page - 1) * limit
        chunk = self.owners[start:start + limit]
        return HolderPage(page=page, total=len(chunk), owners=list(chunk))


class FailingListing:
    """Listing that always fails."""

    async def get_page(self, mint, page: int, limit: int) -> HolderPage:
        raise HolderListingError("listing unavailable")


class FailingStore(HolderCountStore):
    """Store whose writes always fail."""

    async def load(self, mint: str) -> Optional[int]:
        return None

    async def save(self, mint: str, count: int) -> None:
        raise OSError("disk full")


def create_owners(count: int) -> List[str]:
    """Distinct owner addresses."""
    return [str(Pubkey.new_unique()) for _ in range(count)]


def create_directory(owners: List[str], holders_number: int = 0, **kwargs) -> HolderDirectory:
    return HolderDirectory(
        FakeListing(owners),
        MINT,
        holders_number=holders_number,
        rng=random.Random(42),
        **kwargs,
    )


# ============================================================================
# LISTING CLIENT TESTS
# ============================================================================

class TestTokenAccountsClient:
    """Tests for the getTokenAccounts client."""

    @pytest.mark.trio
    async def test_request_and_parse(self):
        owners = create_owners(3)
        rpc = Mock()
        rpc.call = AsyncMock(return_value={
            "total": 3,
            "limit": 1000,
            "page": 2,
            "token_accounts": [{"address": str(Pubkey.new_unique()), "owner": o} for o in owners],
        })

        page = await TokenAccountsClient(rpc).get_page(MINT, 2, 1000)

        rpc.call.assert_awaited_once_with(
            "getTokenAccounts", {"mint": MINT, "page": 2, "limit": 1000}
        )
        assert page.page == 2
        assert page.total == 3
        assert page.owners == owners

    @pytest.mark.trio
    async def test_empty_page(self):
        rpc = Mock()
        rpc.call = AsyncMock(return_value={"total": 0, "token_accounts": []})
        page = await TokenAccountsClient(rpc).get_page(MINT, 7, 1000)
        assert page.total == 0
        assert page.owners == []

    @pytest.mark.trio
    async def test_rpc_error_wrapped(self):
        rpc = Mock()
        rpc.call = AsyncMock(side_effect=JsonRpcError("boom"))
        with pytest.raises(HolderListingError):
            await TokenAccountsClient(rpc).get_page(MINT, 1, 1000)

    @pytest.mark.trio
    async def test_missing_owner(self):
        rpc = Mock()
        rpc.call = AsyncMock(return_value={"total": 1, "token_accounts": [{"address": "x"}]})
        with pytest.raises(HolderListingError):
            await TokenAccountsClient(rpc).get_page(MINT, 1, 1000)

    @pytest.mark.trio
    async def test_invalid_owner(self):
        rpc = Mock()
        rpc.call = AsyncMock(return_value={"total": 1, "token_accounts": [{"owner": "not-a-key"}]})
        with pytest.raises(HolderListingError):
            await TokenAccountsClient(rpc).get_page(MINT, 1, 1000)

    @pytest.mark.trio
    async def test_non_object_result(self):
        rpc = Mock()
        rpc.call = AsyncMock(return_value=[1, 2, 3])
        with pytest.raises(HolderListingError):
            await TokenAccountsClient(rpc).get_page(MINT, 1, 1000)

    @pytest.mark.trio
    async def test_total_above_limit(self):
        rpc = Mock()
        rpc.call = AsyncMock(return_value={"total": 1001, "token_accounts": []})
        with pytest.raises(HolderListingError):
            await TokenAccountsClient(rpc).get_page(MINT, 1, 1000)


# ============================================================================
# STORE TESTS
# ============================================================================

class TestMemoryHolderCountStore:
    """Tests for MemoryHolderCountStore."""

    @pytest.mark.trio
    async def test_load_absent(self):
        assert await MemoryHolderCountStore().load(MINT) is None

    @pytest.mark.trio
    async def test_save_and_load(self):
        store = MemoryHolderCountStore()
        await store.save(MINT, 2400)
        assert await store.load(MINT) == 2400


class TestFileHolderCountStore:
    """Tests for FileHolderCountStore."""

    @pytest.mark.trio
    async def test_missing_file(self, tmp_path):
        store = FileHolderCountStore(tmp_path / "holders.json")
        assert await store.load(MINT) is None

    @pytest.mark.trio
    async def test_save_creates_parent(self, tmp_path):
        path = tmp_path / "nested" / "holders.json"
        store = FileHolderCountStore(path)
        await store.save(MINT, 2400)

        assert path.exists()
        assert await store.load(MINT) == 2400

    @pytest.mark.trio
    async def test_upsert_keeps_other_mints(self, tmp_path):
        store = FileHolderCountStore(tmp_path / "holders.json")
        other = str(Pubkey.new_unique())
        await store.save(other, 10)
        await store.save(MINT, 2400)
        await store.save(MINT, 2300)

        assert await store.load(other) == 10
        assert await store.load(MINT) == 2300

        data = json.loads((tmp_path / "holders.json").read_text())
        assert set(data) == {other, MINT}
        assert data[MINT]["holders_number"] == 2300

    @pytest.mark.trio
    async def test_corrupt_file_loads_none(self, tmp_path):
        path = tmp_path / "holders.json"
        path.write_text("{not json")
        assert await FileHolderCountStore(path).load(MINT) is None

    @pytest.mark.trio
    async def test_invalid_count_loads_none(self, tmp_path):
        path = tmp_path / "holders.json"
        path.write_text(json.dumps({MINT: {"holders_number": -5}}))
        assert await FileHolderCountStore(path).load(MINT) is None

    @pytest.mark.trio
    async def test_save_over_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "holders.json"
        path.write_text("[]")
        with pytest.raises(ValueError):
            await FileHolderCountStore(path).save(MINT, 1)


# ============================================================================
# DISCOVERY TESTS
# ============================================================================

class TestRefreshCount:
    """Tests for holder count discovery."""

    def test_constants(self):
        assert PAGE_SIZE == 1000
        assert MAX_PAGES == 2000

    @pytest.mark.trio
    async def test_two_full_pages_and_partial(self):
        """Pages of 1000, 1000 and 400 give 2400."""
        directory = create_directory(create_owners(2400))
        assert await directory.refresh_count() == 2400
        assert directory.holders_number == 2400
        assert directory.listing.calls == [1, 2, 3]

    @pytest.mark.trio
    @pytest.mark.parametrize("cached", [0, 999, 1000, 1500, 2000, 2399, 2400])
    async def test_any_start_page_gives_same_count(self, cached):
        """Resuming from any page up to the last one finds the same count."""
        directory = create_directory(create_owners(2400), holders_number=cached)
        assert await directory.refresh_count() == 2400

    @pytest.mark.trio
    async def test_resume_skips_known_pages(self):
        directory = create_directory(create_owners(2400), holders_number=2100)
        await directory.refresh_count()
        assert directory.listing.calls == [3]

    @pytest.mark.trio
    async def test_exact_multiple_of_page_size(self):
        """A trailing empty page ends the scan."""
        directory = create_directory(create_owners(2000))
        assert await directory.refresh_count() == 2000
        assert directory.listing.calls == [1, 2, 3]

    @pytest.mark.trio
    async def test_empty_population(self):
        directory = create_directory([])
        assert await directory.refresh_count() == 0

    @pytest.mark.trio
    async def test_growth(self):
        directory = create_directory(create_owners(2400), holders_number=1200)
        assert await directory.refresh_count() == 2400
        assert directory.listing.calls == [2, 3]

    @pytest.mark.trio
    async def test_shrink_below_cached_page_restarts(self):
        """An empty first page on a resumed scan restarts from page 1."""
        directory = create_directory(create_owners(1200), holders_number=5000)
        assert await directory.refresh_count() == 1200
        assert directory.listing.calls == [6, 1, 2]

    @pytest.mark.trio
    async def test_shrink_within_cached_page(self):
        directory = create_directory(create_owners(2100), holders_number=2500)
        assert await directory.refresh_count() == 2100
        assert directory.listing.calls == [3]

    @pytest.mark.trio
    async def test_page_ceiling(self):
        directory = create_directory(create_owners(50), holders_number=0, page_size=10, max_pages=3)
        with pytest.raises(TooManyPagesError):
            await directory.refresh_count()
        assert directory.holders_number == 0
        assert directory.listing.calls == [1, 2, 3]

    @pytest.mark.trio
    async def test_listing_failure_keeps_cache(self):
        directory = HolderDirectory(FailingListing(), MINT, holders_number=1234)
        with pytest.raises(HolderListingError):
            await directory.refresh_count()
        assert directory.holders_number == 1234

    @pytest.mark.trio
    async def test_persists_after_refresh(self):
        store = MemoryHolderCountStore()
        directory = HolderDirectory(FakeListing(create_owners(2400)), MINT, store=store)
        await directory.refresh_count()
        assert await store.load(MINT) == 2400

    @pytest.mark.trio
    async def test_persist_failure_is_not_fatal(self):
        directory = HolderDirectory(FakeListing(create_owners(30)), MINT, store=FailingStore())
        assert await directory.refresh_count() == 30
        assert directory.holders_number == 30
        assert await directory.try_persist() is False

    @pytest.mark.trio
    async def test_load_from_store(self):
        store = MemoryHolderCountStore({MINT: 2100})
        directory = await HolderDirectory.load(FakeListing(create_owners(2400)), MINT, store)
        assert directory.holders_number == 2100

        await directory.refresh_count()
        assert directory.listing.calls == [3]

    @pytest.mark.trio
    async def test_load_without_store(self):
        directory = await HolderDirectory.load(FakeListing([]), MINT)
        assert directory.holders_number == 0


# ============================================================================
# SAMPLING TESTS
# ============================================================================

class TestDrawWinners:
    """Tests for random winner sampling."""

    @pytest.mark.trio
    async def test_draw_nine_of_ten(self):
        owners = create_owners(10)
        directory = create_directory(owners, holders_number=10)

        winners = await directory.draw_winners(9)

        assert len(winners) == 9
        assert len(set(winners)) == 9
        assert set(winners) <= set(owners)

    @pytest.mark.trio
    @pytest.mark.parametrize("n", [10, 11])
    async def test_draw_all_or_more_fails(self, n):
        directory = create_directory(create_owners(10), holders_number=10)
        with pytest.raises(InsufficientHoldersError) as exc_info:
            await directory.draw_winners(n)
        assert exc_info.value.requested == n
        assert exc_info.value.available == 10

    @pytest.mark.trio
    async def test_draw_with_no_holders(self):
        directory = create_directory([], holders_number=0)
        with pytest.raises(InsufficientHoldersError):
            await directory.draw_winners(1)

    @pytest.mark.trio
    async def test_draw_zero(self):
        directory = create_directory(create_owners(5), holders_number=5)
        assert await directory.draw_winners(0) == []
        assert directory.listing.calls == []

    @pytest.mark.trio
    async def test_winners_ordered_by_index(self):
        owners = create_owners(2400)
        directory = create_directory(owners, holders_number=2400)

        winners = await directory.draw_winners(50)

        positions = [owners.index(w) for w in winners]
        assert positions == sorted(positions)

    @pytest.mark.trio
    async def test_each_page_fetched_once(self):
        owners = create_owners(5000)
        directory = create_directory(owners, holders_number=5000)

        await directory.draw_winners(40)

        calls = directory.listing.calls
        assert len(calls) == len(set(calls))
        assert all(1 <= page <= 5 for page in calls)

    @pytest.mark.trio
    async def test_duplicate_owner_is_replaced(self):
        """One owner holding two token accounts is drawn at most once."""
        owners = create_owners(5)
        records = [owners[0]] + owners
        directory = create_directory(records, holders_number=6)

        winners = await directory.draw_winners(5)

        assert sorted(winners) == sorted(owners)

    @pytest.mark.trio
    async def test_too_few_distinct_owners(self):
        owners = create_owners(3)
        records = owners * 7
        directory = create_directory(records, holders_number=len(records))

        with pytest.raises(InsufficientHoldersError):
            await directory.draw_winners(5)

    @pytest.mark.trio
    async def test_short_page_raises(self):
        """The listing returned fewer records than the cached count implies."""
        directory = create_directory([], holders_number=10)
        with pytest.raises(HolderListingError):
            await directory.draw_winners(9)

    @pytest.mark.trio
    async def test_seeded_rng_is_reproducible(self):
        owners = create_owners(3000)
        a = await create_directory(owners, holders_number=3000).draw_winners(20)
        b = await create_directory(owners, holders_number=3000).draw_winners(20)
        assert a == b
