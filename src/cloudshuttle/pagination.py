"""
Pagination over provider listings.

Every backend returns ``ListPage(entries, next_cursor)``; these helpers walk
pages until the provider reports no cursor. Errors from any page propagate
and end the walk, so no page is ever skipped silently.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional

from .models import Cursor, ListPage, ObjectEntry
from .providers.base import ProviderAdapter

logger = logging.getLogger(__name__)

SEARCH_CHUNK = "results-chunk"
SEARCH_END = "end"
SEARCH_ERROR = "error"


def iter_pages(
    adapter: ProviderAdapter,
    prefix: str = "",
    delimiter: Optional[str] = None,
    cursor: Optional[Cursor] = None,
) -> Iterator[ListPage]:
    """Yield every page of a listing, starting at ``cursor``."""
    pages = 0
    while True:
        page = adapter.list(prefix, cursor, delimiter)
        pages += 1
        yield page
        if not page.has_more:
            break
        cursor = page.next_cursor
    logger.debug(f"Walked {pages} pages under '{prefix}'")


def iter_entries(adapter: ProviderAdapter, prefix: str = "", delimiter: Optional[str] = None) -> Iterator[ObjectEntry]:
    """Yield every entry of a listing across all pages."""
    for page in iter_pages(adapter, prefix, delimiter):
        yield from page.entries


def list_folder(
    adapter: ProviderAdapter,
    prefix: str = "",
    cursor: Optional[Cursor] = None,
    delimiter: Optional[str] = "/",
) -> ListPage:
    """
    Fetch one page of a folder view.

    The synthetic entry for the folder itself (key equal to ``prefix``) is
    dropped, and folders and files are merged and sorted by key.
    """
    page = adapter.list(prefix, cursor, delimiter)
    entries = [e for e in page.entries if not (prefix and e.key == prefix)]
    entries.sort(key=lambda e: e.key)
    return ListPage(entries=entries, next_cursor=page.next_cursor)


def matches(entry: ObjectEntry, term: str) -> bool:
    """Case-insensitive substring match on the key."""
    return term.lower() in entry.key.lower()


def search(adapter: ProviderAdapter, term: str) -> Iterator[Dict[str, Any]]:
    """
    Search the whole bucket for keys containing ``term``.

    Yields ``results-chunk`` events for every page with at least one match,
    then exactly one ``end`` event. If a page fails, a single ``error``
    event is yielded and the stream stops.
    """
    total = 0
    try:
        for page in iter_pages(adapter, "", None):
            found: List[ObjectEntry] = [e for e in page.entries if not e.is_folder and matches(e, term)]
            if found:
                total += len(found)
                yield {"type": SEARCH_CHUNK, "term": term, "results": [e.to_dict() for e in found]}
    except Exception as e:
        logger.error(f"Search for '{term}' failed after {total} matches: {e}")
        yield {"type": SEARCH_ERROR, "term": term, "error": str(e)}
        return
    logger.info(f"Search for '{term}' finished with {total} matches")
    yield {"type": SEARCH_END, "term": term, "total": total}
