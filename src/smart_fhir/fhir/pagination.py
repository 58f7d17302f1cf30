"""Lazy traversal of paginated search results (Bundle ``link[relation=next]``)."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from typing import Any

logger = logging.getLogger(__name__)


def next_link(page: dict) -> str | None:
    for link in page.get("link") or []:
        if isinstance(link, dict) and link.get("relation") == "next" and isinstance(link.get("url"), str):
            return link["url"]
    return None


class BundlePaginator:
    """Forward-only, non-restartable iterator over Bundle pages.

    The next page is fetched only when the caller asks for it. Setting
    ``cancel_event`` (or calling :meth:`cancel`) stops the crawl before the
    next fetch. ``limit`` caps the number of pages yielded.
    """

    def __init__(
        self,
        fetch: Callable[[str], Any],
        bundle_or_url: dict | str,
        limit: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._fetch = fetch
        self._limit = limit
        self.cancel_event = cancel_event or threading.Event()
        self.pages_yielded = 0
        self._pages = self._crawl(bundle_or_url)

    def __iter__(self) -> "BundlePaginator":
        return self

    def __next__(self) -> dict:
        return next(self._pages)

    def cancel(self) -> None:
        self.cancel_event.set()

    def _crawl(self, bundle_or_url: dict | str) -> Iterator[dict]:
        if self._limit is not None and self._limit <= 0:
            return
        page = self._fetch(bundle_or_url) if isinstance(bundle_or_url, str) else bundle_or_url
        while isinstance(page, dict) and page.get("resourceType") == "Bundle":
            self.pages_yielded += 1
            yield page
            if self._limit is not None and self.pages_yielded >= self._limit:
                return
            if self.cancel_event.is_set():
                logger.debug("Pagination cancelled after %d page(s)", self.pages_yielded)
                return
            url = next_link(page)
            if url is None:
                return
            page = self._fetch(url)


def iter_resources(
    fetch: Callable[[str], Any],
    bundle_or_url: dict | str,
    limit: int | None = None,
    cancel_event: threading.Event | None = None,
) -> Iterator[dict]:
    """Yield ``entry[].resource`` across all pages; ``limit`` caps the item count."""
    if limit is not None and limit <= 0:
        return
    count = 0
    for page in BundlePaginator(fetch, bundle_or_url, cancel_event=cancel_event):
        for entry in page.get("entry") or []:
            resource = entry.get("resource") if isinstance(entry, dict) else None
            if resource is None:
                continue
            yield resource
            count += 1
            if limit is not None and count >= limit:
                return
