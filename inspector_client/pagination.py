import re
from typing import Any, Awaitable, Callable, Generic, List, Optional, Set, TypeVar
from urllib.parse import parse_qs, urlsplit

from loguru import logger

from inspector_client.errors import (
    PageDecodeError,
    PageFetchError,
    PageLimitExceededError,
    PaginationLoopError,
)
from inspector_client.models import DEFAULT_PAGE_SIZE, MAX_PAGINATION_PAGES, Pagination

T = TypeVar("T")

PageFetcher = Callable[[int, int], Awaitable[Pagination]]
ItemDecoder = Callable[[Any], List[T]]

_INT_LITERAL = re.compile(r"[+-]?\d+")


def parse_next_offset(next_url: str) -> Optional[int]:
    """Return the ``offset`` query parameter of a next-page URL, or None.

    Only the first ``offset`` value is looked at; the rest of the URL is
    ignored. None means the caller should fall back to an additive offset.
    """
    try:
        query = urlsplit(next_url).query
    except ValueError:
        return None

    values = parse_qs(query).get("offset")
    if not values:
        return None

    raw = values[0].strip()
    if not _INT_LITERAL.fullmatch(raw):
        return None
    return int(raw)


class PageIterator(Generic[T]):
    """Lazy, forward-only iteration over an offset-paginated collection.

    ``next_page()`` returns a list of items (possibly empty) while the server
    advertises more data and ``None`` once it does not. The iterator cannot be
    rewound; a failed fetch is terminal because retrying the same offset is
    reported as a pagination loop.
    """

    max_pages = MAX_PAGINATION_PAGES

    def __init__(
        self,
        fetch_page: PageFetcher,
        decode_items: ItemDecoder,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self._fetch_page = fetch_page
        self._decode_items = decode_items
        self.page_size = page_size if page_size > 0 else DEFAULT_PAGE_SIZE
        self.offset = 0
        self.has_more = True
        self.seen_offsets: Set[int] = set()
        self.logger = logger

    async def next_page(self) -> Optional[List[T]]:
        if not self.has_more:
            return None

        if self.offset in self.seen_offsets:
            raise PaginationLoopError(self.offset)
        if len(self.seen_offsets) >= self.max_pages:
            raise PageLimitExceededError(self.max_pages)

        offset = self.offset
        self.seen_offsets.add(offset)

        self.logger.debug(f"Fetching page at offset {offset} (limit {self.page_size})")
        try:
            page = await self._fetch_page(offset, self.page_size)
        except Exception as e:
            raise PageFetchError(offset) from e

        try:
            items = self._decode_items(page.results)
        except Exception as e:
            raise PageDecodeError(offset) from e

        self.has_more = page.next is not None
        self.offset = self._advance(offset, page.next, len(items))
        return items

    def _advance(self, offset: int, next_url: Optional[str], item_count: int) -> int:
        if next_url is not None:
            next_offset = parse_next_offset(next_url)
            if next_offset is not None:
                return next_offset
            self.logger.debug(
                f"Next cursor {next_url!r} carries no offset, advancing by {item_count}"
            )
        return offset + item_count

    def __aiter__(self) -> "PageIterator[T]":
        return self

    async def __anext__(self) -> List[T]:
        page = await self.next_page()
        if page is None:
            raise StopAsyncIteration
        return page


async def collect_all(iterator: PageIterator[T]) -> List[T]:
    """Drain ``iterator`` into one list, stopping at the first error."""
    items: List[T] = []
    async for page in iterator:
        items.extend(page)
    return items
