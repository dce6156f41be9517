"""
Paginated listing fetches over the Trading API

Fetching is all-or-nothing per list: any client error aborts the fetch and
propagates with the operation and page number attached.
"""
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from listings_exporter.config.ebay_config import (
    ACTIVE_LIST,
    DEFAULT_ENTRIES_PER_PAGE,
    HISTORY_FALLBACK_THRESHOLD,
    HISTORY_MAX_WINDOWS,
    HISTORY_MIN_WINDOWS,
    HISTORY_WINDOW_DAYS,
    HISTORY_WINDOW_DELAY,
    INTER_PAGE_DELAY,
    MAX_ENTRIES_PER_PAGE,
    SELLER_LIST_PAGE_DELAY,
)
from listings_exporter.exceptions import FetchCancelled, RequestError
from listings_exporter.models.ebay_export import Node, PageResult
from listings_exporter.services.response_decoder import as_list

logger = logging.getLogger(__name__)

LIST_DESCRIPTIONS = {
    "ActiveList": "active listings",
    "SoldList": "sold listings",
    "UnsoldList": "unsold listings",
    "ScheduledList": "scheduled listings",
}


def extract_items(container: Node) -> List[Node]:
    """Items of a container's ItemArray; a bare Item (even a scalar) counts as one item"""
    if not isinstance(container, dict):
        return []
    item_array = container.get("ItemArray")
    if not isinstance(item_array, dict):
        return []
    return [item for item in as_list(item_array.get("Item")) if item is not None]


def has_more_items(container: Node) -> bool:
    return isinstance(container, dict) and container.get("HasMoreItems") == "true"


def dedupe_by_item_id(items: List[Node]) -> List[Node]:
    """Drop repeated ItemIDs, keeping the first occurrence (items without an ID are kept)"""
    seen = set()
    unique: List[Node] = []
    for item in items:
        item_id = item.get("ItemID") if isinstance(item, dict) else None
        if isinstance(item_id, str) and item_id:
            if item_id in seen:
                continue
            seen.add(item_id)
        unique.append(item)
    return unique


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


class ListingsFetcher:
    """Drives TradingApiClient across pages, accumulating items in server order"""

    def __init__(
        self,
        client,
        page_size: int = MAX_ENTRIES_PER_PAGE,
        inter_page_delay: float = INTER_PAGE_DELAY,
        cancel_event: Optional[threading.Event] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.page_size = min(page_size, MAX_ENTRIES_PER_PAGE)
        self.inter_page_delay = inter_page_delay
        self.cancel_event = cancel_event
        self._sleep = sleep

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise FetchCancelled("Listings fetch cancelled")

    def _pause(self, seconds: float) -> None:
        if seconds <= 0:
            return
        if self.cancel_event is not None:
            if self.cancel_event.wait(seconds):
                raise FetchCancelled("Listings fetch cancelled")
        else:
            self._sleep(seconds)

    def _call(self, operation: str, body: Dict[str, Any], page: int) -> Dict[str, Node]:
        try:
            return self.client.call(operation, body, cancel_event=self.cancel_event)
        except RequestError as e:
            e.with_context(operation=operation, page=page)
            raise

    def _paginate(
        self,
        description: str,
        fetch_page: Callable[[int], PageResult],
        delay: float,
    ) -> List[Node]:
        all_items: List[Node] = []
        page = 1

        while True:
            self._check_cancelled()
            result = fetch_page(page)

            if result.is_empty:
                logger.info(f"No more {description} found (page {page})")
                break

            all_items.extend(result.items)
            logger.info(f"{description} page {page}: {len(result.items)} items (total: {len(all_items)})")

            if not result.has_more:
                break

            page += 1
            self._pause(delay)

        return all_items

    # ===== GetMyeBaySelling =====

    def fetch_page(self, list_kind: str, page: int) -> PageResult:
        body = {
            list_kind: {
                "Include": True,
                "Sort": "TimeLeft",
                "Pagination": {
                    "EntriesPerPage": self.page_size,
                    "PageNumber": page,
                },
            },
        }
        response = self._call("GetMyeBaySelling", body, page)
        container = response.get(list_kind)
        return PageResult(page=page, items=extract_items(container), has_more=has_more_items(container))

    def fetch_all(self, list_kind: str = ACTIVE_LIST) -> List[Node]:
        """
        Fetch every item of a My eBay list category across all pages.

        Stops on an empty page or when HasMoreItems is not "true".
        """
        description = LIST_DESCRIPTIONS.get(list_kind, list_kind)
        logger.info(f"Fetching {description}...")
        items = self._paginate(description, lambda page: self.fetch_page(list_kind, page), self.inter_page_delay)
        logger.info(f"Fetched {len(items)} {description}")
        return items

    # ===== GetSellerList (historical search) =====

    def fetch_seller_list_page(self, start: datetime, end: datetime, page: int, page_size: int) -> PageResult:
        body = {
            "DetailLevel": "ReturnAll",
            "Pagination": {
                "EntriesPerPage": page_size,
                "PageNumber": page,
            },
            "StartTimeFrom": _iso(start),
            "StartTimeTo": _iso(end),
            "GranularityLevel": "Coarse",
        }
        response = self._call("GetSellerList", body, page)
        return PageResult(page=page, items=extract_items(response), has_more=has_more_items(response))

    def fetch_time_window(
        self,
        start: datetime,
        end: datetime,
        page_size: int = DEFAULT_ENTRIES_PER_PAGE,
    ) -> List[Node]:
        """Fetch listings started between start and end"""
        page_size = min(page_size, MAX_ENTRIES_PER_PAGE)
        return self._paginate(
            f"listings {start.date()} to {end.date()}",
            lambda page: self.fetch_seller_list_page(start, end, page, page_size),
            SELLER_LIST_PAGE_DELAY,
        )

    def fetch_historical(
        self,
        now: Optional[datetime] = None,
        window_days: int = HISTORY_WINDOW_DAYS,
        max_windows: int = HISTORY_MAX_WINDOWS,
        window_delay: float = HISTORY_WINDOW_DELAY,
    ) -> List[Node]:
        """
        Walk back in time in non-overlapping windows.

        Stops after max_windows, or at the first empty window once at least
        HISTORY_MIN_WINDOWS windows have been searched.
        """
        all_items: List[Node] = []
        window_end = now or datetime.now(timezone.utc)

        logger.info(f"Searching historical listings in {window_days}-day windows...")

        for searched in range(max_windows):
            window_start = window_end - timedelta(days=window_days)
            logger.info(f"Searching window {searched + 1}: {window_start.date()} to {window_end.date()}")

            window_items = self.fetch_time_window(window_start, window_end)
            if window_items:
                all_items.extend(window_items)
                logger.info(f"Found {len(window_items)} listings in this window (total: {len(all_items)})")
            else:
                logger.info("No listings found in this window")
                if searched >= HISTORY_MIN_WINDOWS:
                    logger.info("No recent listings found, stopping historical search")
                    break

            window_end = window_start - timedelta(days=1)
            if searched + 1 < max_windows:
                self._pause(window_delay)

        return all_items

    def fetch_seller_listings(self, history_threshold: int = HISTORY_FALLBACK_THRESHOLD) -> List[Node]:
        """Active listings, extended with the historical search when few are found"""
        logger.info("Starting complete seller listings fetch...")
        items = self.fetch_all(ACTIVE_LIST)

        if len(items) < history_threshold:
            logger.info(f"Only {len(items)} active listings, searching historical listings...")
            items = dedupe_by_item_id(items + self.fetch_historical())

        logger.info(f"Seller listings fetch completed: {len(items)} items")
        return items
