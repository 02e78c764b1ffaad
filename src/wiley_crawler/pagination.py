"""Paginate a search query and collect its deduplicated result links."""
from __future__ import annotations

import asyncio
import logging
import math
from typing import List, Optional
from urllib.parse import urljoin

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import FetchError, ParseFailure
from .fetcher import PageFetcher
from .models import (
    STOP_EXHAUSTED,
    STOP_FETCH_FAILED,
    STOP_NO_NEW_LINKS,
    WILEY_SEARCH_RULE,
    ExtractionRule,
    LinkCollection,
    ResultPage,
    SearchQuery,
)
from .parsing import parse_result_count
from .throttle import Sleeper

logger = logging.getLogger(__name__)


def resolve_total(raw_count: Optional[str], page_size: int) -> int:
    """Total result count, falling back to exactly one page when unusable."""
    try:
        total = parse_result_count(raw_count)
    except ParseFailure as e:
        logger.warning(f"⚠️ {e}; assuming a single page of {page_size}")
        return page_size
    if total < 1:
        logger.warning(f"⚠️ Result count {total} is below 1; assuming a single page of {page_size}")
        return page_size
    return total


def compute_max_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size)


async def load_page(
    fetcher: PageFetcher,
    url: str,
    ready_selector: str,
    timeout_ms: Optional[int] = None,
    retries: int = 0,
    backoff_ms: int = 1000,
    sleep: Sleeper = asyncio.sleep,
) -> None:
    """Navigate and wait for ``ready_selector``, retrying with exponential backoff.

    Waits ``backoff_ms * 2**attempt`` between attempts. With ``retries=0`` the
    first failure propagates.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_exponential(multiplier=backoff_ms / 1000.0),
        retry=retry_if_exception_type(FetchError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
        sleep=sleep,
    )
    async for attempt in retrying:
        with attempt:
            await fetcher.navigate(url, timeout_ms)
            await fetcher.wait_for(ready_selector, timeout_ms)


async def extract_page_links(fetcher: PageFetcher, rule: ExtractionRule, base_url: str, index: int) -> ResultPage:
    """Links on the current page: one per row, or every link when rows yield none."""
    page = ResultPage(index=index)
    hrefs = await fetcher.extract_all(rule.row_selector, rule.link_selector, rule.attribute)
    if not hrefs:
        hrefs = await fetcher.extract_all(None, rule.fallback, rule.attribute)
        page.used_fallback = True
    page.links = [_absolute(base_url, href) for href in hrefs]
    return page


def _absolute(base_url: str, href: str) -> str:
    return urljoin(base_url.rstrip("/") + "/", href)


async def collect_links(
    query: SearchQuery,
    fetcher: PageFetcher,
    rule: ExtractionRule = WILEY_SEARCH_RULE,
    *,
    timeout_ms: Optional[int] = None,
    retries: int = 0,
    backoff_ms: int = 1000,
    sleep: Sleeper = asyncio.sleep,
) -> LinkCollection:
    """Fetch result pages of ``query`` until exhausted, stalled, or failed.

    Page 1 is always fetched and determines the page budget from the result
    counter. Later pages stop the loop as soon as one adds no new link. A
    failed fetch ends the query and returns what was collected so far.
    """
    result = LinkCollection(query=query)
    label = f'"{query.keyword}" (ConceptID={query.subject_filter_id})'

    url = query.page_url(1)
    logger.info(f"🔎 {label} page=1 | {url}")
    try:
        await load_page(fetcher, url, rule.ready, timeout_ms, retries, backoff_ms, sleep)
    except FetchError as e:
        logger.error(f"❌ Error loading page 1 for {label}: {e}")
        result.stop_reason = STOP_FETCH_FAILED
        return result
    result.pages_visited = 1

    raw_count = None
    if rule.count_selector:
        try:
            raw_count = await fetcher.extract_text(rule.count_selector)
        except FetchError as e:
            logger.warning(f"⚠️ Could not read result count for {label}: {e}")
    result.total_results = resolve_total(raw_count, query.page_size)
    result.max_pages = compute_max_pages(result.total_results, query.page_size)
    logger.info(
        f"📊 totalCount={result.total_results}; pageSize={query.page_size}; maxPages={result.max_pages}"
    )

    first = await _extract_or_empty(fetcher, rule, query, 1, label)
    first.total_results = result.total_results
    result.links.update(first.links)
    logger.info(
        f"🔗 Page 1{' (fallback)' if first.used_fallback else ''}: extracted {len(first.links)} links "
        f"(total so far: {len(result.links)})"
    )

    for index in range(2, result.max_pages + 1):
        url = query.page_url(index)
        logger.info(f"🔎 {label} page={index}/{result.max_pages} | {url}")
        try:
            await load_page(fetcher, url, rule.ready, timeout_ms, retries, backoff_ms, sleep)
        except FetchError as e:
            logger.error(f"❌ Error loading page {index} for {label}: {e}")
            result.stop_reason = STOP_FETCH_FAILED
            return result
        result.pages_visited += 1

        before = len(result.links)
        page = await _extract_or_empty(fetcher, rule, query, index, label)
        result.links.update(page.links)
        grew = len(result.links) - before
        logger.info(
            f"🔗 Page {index}{' (fallback)' if page.used_fallback else ''}: extracted {len(page.links)} links, "
            f"set grew by {grew}"
        )
        if grew == 0:
            logger.info(f"⏹️ No new links on page {index}, stopping early")
            result.stop_reason = STOP_NO_NEW_LINKS
            return result

    result.stop_reason = STOP_EXHAUSTED
    return result


async def _extract_or_empty(
    fetcher: PageFetcher, rule: ExtractionRule, query: SearchQuery, index: int, label: str
) -> ResultPage:
    try:
        return await extract_page_links(fetcher, rule, query.base_url, index)
    except FetchError as e:
        logger.error(f"❌ Error extracting links on page {index} for {label}: {e}")
        return ResultPage(index=index)


def sorted_links(collection: LinkCollection) -> List[str]:
    return sorted(collection.links)
