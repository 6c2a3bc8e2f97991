"""
Cursor pagination for Shopify collections.

Shopify REST collections are paged with ``since_id``: each request asks for
items whose id is above the highest id seen so far. One paginator serves
every entity stream of the sync pipeline.
"""

from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from core.exceptions import ShopifyError
from core.observability import get_logger
from core.resilience import CircuitOpenError

logger = get_logger(__name__)

FetchPage = Callable[[int, int], Awaitable[List[Dict[str, Any]]]]


def _item_id(item: Any) -> Optional[int]:
    try:
        return int(item["id"])
    except (KeyError, TypeError, ValueError):
        return None


class ShopifyPaginator:
    """
    Async ``since_id`` paginator with page-level error accounting.

    Handles:
    - Cursor iteration (``since_id``/``limit``) until an empty or short page
    - Counting failed pages
    - Aborting after too many consecutive failed pages

    A failed page leaves the cursor where it was, so the next request asks
    for the same items again. Retrying transient HTTP errors is the client's
    job; by the time a page fails here its retries are already exhausted.

    Usage:
        paginator = ShopifyPaginator(
            lambda since_id, limit: client.get_page(EntityType.PRODUCTS, since_id, limit)
        )
        async for batch in paginator:
            for product in batch:
                process(product)

        paginator.page_errors  # failed pages
        paginator.aborted      # True if stopped by consecutive failures
    """

    def __init__(
        self,
        fetch_page: FetchPage,
        page_size: int = 50,
        max_consecutive_errors: int = 3,
        max_pages: Optional[int] = None,
        label: str = "items",
    ):
        """
        Initialize paginator.

        Args:
            fetch_page: Async function ``(since_id, limit) -> list``
            page_size: Number of items per page
            max_consecutive_errors: Stop once failures in a row exceed this
            max_pages: Maximum page requests, failed ones included (None = unlimited)
            label: Entity name used in log messages
        """
        self.fetch_page = fetch_page
        self.page_size = page_size
        self.max_consecutive_errors = max_consecutive_errors
        self.max_pages = max_pages
        self.label = label

        self.since_id = 0
        self.requests = 0
        self.pages_fetched = 0
        self.page_errors = 0
        self.consecutive_errors = 0
        self.aborted = False

    def __aiter__(self) -> AsyncIterator[List[Dict[str, Any]]]:
        return self.pages()

    async def pages(self) -> AsyncIterator[List[Dict[str, Any]]]:
        """
        Yield non-empty pages in id order.

        Raises nothing for API failures; see ``page_errors`` and ``aborted``.
        """
        while self.max_pages is None or self.requests < self.max_pages:
            self.requests += 1
            try:
                batch = await self.fetch_page(self.since_id, self.page_size)
            except (ShopifyError, CircuitOpenError) as e:
                self.page_errors += 1
                self.consecutive_errors += 1
                logger.error(
                    f"Failed to fetch {self.label} after id {self.since_id}: {e}",
                    extra={"since_id": self.since_id, "consecutive_errors": self.consecutive_errors},
                )
                if self.consecutive_errors > self.max_consecutive_errors:
                    self.aborted = True
                    logger.error(
                        f"Aborting {self.label} sync after {self.consecutive_errors} consecutive page errors"
                    )
                    break
                continue

            self.consecutive_errors = 0
            self.pages_fetched += 1

            if batch:
                yield batch

            if len(batch) < self.page_size:
                break

            ids = [i for i in map(_item_id, batch) if i is not None]
            if not ids or max(ids) <= self.since_id:
                logger.warning(f"{self.label} page has no ids past {self.since_id}, stopping")
                break
            self.since_id = max(ids)
