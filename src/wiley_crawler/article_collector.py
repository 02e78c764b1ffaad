"""Visit article pages from a resumable URL list and extract their metadata."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union
from urllib.parse import urljoin

from tqdm import tqdm

from .config import CrawlerConfig
from .errors import FetchError, IOFailure
from .fetcher import PageFetcher
from .models import ArticleRecord, AuthorRecord, FieldValue, UrlEntry
from .parsing import FieldSpec
from .progress import ProgressTracker
from .storage import ArticleCsvSink, SummaryCsvSink, snapshot_file_name, write_snapshot
from .throttle import RatePolicy

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


@dataclass(frozen=True)
class ArticleSelectors:
    """Where each field lives on an article page (and on an author profile page)."""

    ready: str = "h1.citation__title"
    title: FieldSpec = ("h1.citation__title", None)
    journal: FieldSpec = ("meta[name='citation_journal_title']", "content")
    doi: FieldSpec = ("meta[name='citation_doi']", "content")
    publication_date: FieldSpec = ("span.epub-date", None)
    abstract: FieldSpec = (".article-section__content p", None)
    author_row: str = "div.accordion-tabbed__tab-mobile"
    author_name: FieldSpec = ("a.author-name span", None)
    author_profile: FieldSpec = ("a.author-name", "href")
    author_email: FieldSpec = ("a[href^='mailto:']", "href")
    contributions: FieldSpec = ("section.article-section__author-contributions", None)
    profile_ready: str = "body"
    profile_email: FieldSpec = ("a[href^='mailto:']", "href")


WILEY_ARTICLE_SELECTORS = ArticleSelectors()

_SENTENCE_SPLIT = re.compile(r"(?<=[.;])\s+")


async def read_field(fetcher: PageFetcher, spec: FieldSpec) -> FieldValue:
    """Extract one field; failures become an unavailable value instead of an error."""
    selector, attribute = spec
    try:
        value = await fetcher.extract_text(selector, attribute)
    except FetchError as e:
        logger.warning(f"⚠️ Could not extract {selector}: {e}")
        return FieldValue.unavailable(str(e))
    if value is None:
        return FieldValue.unavailable(f"no match for {selector}")
    return FieldValue.available(value)


def _optional(value: Optional[str], reason: str) -> FieldValue:
    return FieldValue.available(value) if value else FieldValue.unavailable(reason)


def _email(raw: Optional[str]) -> FieldValue:
    if not raw:
        return FieldValue.unavailable("no email")
    address = raw[len("mailto:"):] if raw.lower().startswith("mailto:") else raw
    address = address.split("?", 1)[0].strip()
    return _optional(address, "no email")


def _initials(name: str) -> str:
    return "".join(part[0] for part in re.split(r"[\s\-]+", name) if part).upper()


def contributions_for(name: FieldValue, contributions: FieldValue) -> FieldValue:
    """Sentences of the contributions section that mention the author.

    Matches on surname or initials; when nothing matches, the whole section
    applies to every author.
    """
    if not contributions.is_available:
        return contributions
    if not name.is_available:
        return contributions

    surname = re.sub(r"[^\w\-']", "", name.value.split()[-1]) if name.value.split() else ""
    initials = _initials(name.value)
    matched: List[str] = []
    for sentence in _SENTENCE_SPLIT.split(contributions.value):
        if surname and re.search(rf"\b{re.escape(surname)}\b", sentence, flags=re.IGNORECASE):
            matched.append(sentence)
            continue
        tokens = {t.replace(".", "") for t in re.split(r"[\s,;:()]+", sentence) if t}
        if len(initials) >= 2 and initials in tokens:
            matched.append(sentence)
    if not matched:
        return contributions
    return FieldValue.available(" ".join(matched))


async def fetch_profile_email(
    fetcher: PageFetcher,
    profile_url: str,
    selectors: ArticleSelectors = WILEY_ARTICLE_SELECTORS,
    timeout_ms: Optional[int] = None,
) -> FieldValue:
    """Open the author's profile on an auxiliary page and read an email from it."""
    async with fetcher.auxiliary() as aux:
        try:
            await aux.navigate(profile_url, timeout_ms)
            await aux.wait_for(selectors.profile_ready, timeout_ms)
        except FetchError as e:
            logger.warning(f"⚠️ Could not load author profile {profile_url}: {e}")
            return FieldValue.unavailable(str(e))
        raw = await read_field(aux, selectors.profile_email)
    return _email(raw.value)


async def extract_article(
    fetcher: PageFetcher,
    url: str,
    selectors: ArticleSelectors = WILEY_ARTICLE_SELECTORS,
    *,
    fetch_profiles: bool = False,
    timeout_ms: Optional[int] = None,
) -> ArticleRecord:
    """Load ``url`` and extract an :class:`ArticleRecord`.

    Raises FetchError when the page itself cannot be loaded. Individual
    missing fields never abort the record.
    """
    await fetcher.navigate(url, timeout_ms)
    await fetcher.wait_for(selectors.ready, timeout_ms)

    title = await read_field(fetcher, selectors.title)
    journal = await read_field(fetcher, selectors.journal)
    doi = await read_field(fetcher, selectors.doi)
    publication_date = await read_field(fetcher, selectors.publication_date)
    abstract = await read_field(fetcher, selectors.abstract)
    contributions = await read_field(fetcher, selectors.contributions)

    try:
        rows = await fetcher.extract_rows(
            selectors.author_row,
            {
                "name": selectors.author_name,
                "profile_url": selectors.author_profile,
                "email": selectors.author_email,
            },
        )
    except FetchError as e:
        logger.warning(f"⚠️ Could not extract authors from {url}: {e}")
        rows = []

    authors: List[AuthorRecord] = []
    for row in rows:
        name = _optional(row.get("name"), "no author name")
        href = row.get("profile_url")
        profile = _optional(urljoin(url, href) if href else None, "no profile link")
        email = _email(row.get("email"))
        if fetch_profiles and not email.is_available and profile.is_available:
            email = await fetch_profile_email(fetcher, profile.value, selectors, timeout_ms)
        authors.append(AuthorRecord(name, email, profile, contributions_for(name, contributions)))

    return ArticleRecord(
        source_url=url,
        title=title,
        journal=journal,
        doi=doi,
        publication_date=publication_date,
        abstract=abstract,
        authors=tuple(authors),
    )


@dataclass
class ArticleRunSummary:
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    mark_failures: int = 0
    rows: int = 0


def _mark(tracker: ProgressTracker, entry: UrlEntry, summary: ArticleRunSummary) -> None:
    try:
        tracker.mark_processed(entry)
    except IOFailure as e:
        summary.mark_failures += 1
        logger.error(f"❌ Could not mark {entry.url} as processed, it will be fetched again next run: {e}")


async def run_article_collection(
    list_path: Union[str, Path],
    output_csv: Union[str, Path],
    fetcher: PageFetcher,
    config: CrawlerConfig,
    *,
    selectors: ArticleSelectors = WILEY_ARTICLE_SELECTORS,
    policy: Optional[RatePolicy] = None,
    snapshot_dir: Optional[Union[str, Path]] = None,
    summary_csv: Optional[Union[str, Path]] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> ArticleRunSummary:
    """Process every pending entry of ``list_path`` in order.

    Each successful entry is persisted (article rows, then snapshot and
    summary row) and only then marked processed. Failed entries are left
    pending.
    Entries whose URL already has rows in ``output_csv`` are marked without
    being fetched again.
    """
    tracker = ProgressTracker.load(list_path)
    sink = ArticleCsvSink(output_csv)
    summary_sink = SummaryCsvSink(summary_csv) if summary_csv else None
    policy = policy or RatePolicy.from_config(config)
    already_written = sink.existing_urls()
    summary = ArticleRunSummary()

    pending = list(tracker.pending())
    total = tracker.pending_count()
    pbar = tqdm(total=total, desc="Scraping articles", unit="article") if progress_callback is None else None

    try:
        for current, entry in enumerate(pending, 1):
            if entry.url in already_written:
                logger.info(f"⏭️ {entry.url} already has rows in {sink.path}, marking as processed")
                summary.skipped += 1
                _mark(tracker, entry, summary)
                _report(pbar, progress_callback, current, total, f"Skipped: {entry.url}")
                continue

            try:
                record = await extract_article(
                    fetcher,
                    entry.url,
                    selectors,
                    fetch_profiles=config.fetch_profiles,
                    timeout_ms=config.timeout_ms,
                )
                summary.rows += sink.append(record)
                if snapshot_dir is not None:
                    write_snapshot(snapshot_dir, entry.position, record)
                if summary_sink is not None:
                    summary_sink.append(snapshot_file_name(entry.position), record)
            except (FetchError, IOFailure) as e:
                summary.failed += 1
                logger.error(f"❌ Failed to scrape {entry.url}: {e}")
                _report(pbar, progress_callback, current, total, f"Failed: {entry.url}")
            else:
                already_written.add(entry.url)
                summary.processed += 1
                _mark(tracker, entry, summary)
                logger.info(f"✅ Scraped {current}/{total}: {record.title.text()[:60]}")
                _report(pbar, progress_callback, current, total, f"Scraped: {record.title.text()[:40]}")

            await policy.wait()
    finally:
        if pbar is not None:
            pbar.close()

    logger.info(
        f"🎉 {list_path}: {summary.processed} scraped, {summary.failed} failed, "
        f"{summary.skipped} already present, {summary.mark_failures} unmarked"
    )
    return summary


def _report(pbar, progress_callback: Optional[ProgressCallback], current: int, total: int, status: str) -> None:
    if pbar is not None:
        pbar.update(1)
    elif progress_callback is not None:
        progress_callback(current, total, status)


def find_url_lists(source: Union[str, Path]) -> List[Path]:
    source = Path(source)
    if source.is_dir():
        return sorted(source.glob("*.txt"))
    return [source]


async def run_article_lists(
    source: Union[str, Path],
    output_dir: Union[str, Path],
    fetcher: PageFetcher,
    config: CrawlerConfig,
    *,
    snapshots: bool = False,
    **kwargs,
) -> Dict[str, ArticleRunSummary]:
    """Run every URL list in ``source`` (a file or a directory of ``*.txt``).

    Each list ``<stem>.txt`` produces ``<output_dir>/<stem>.csv``; with
    ``snapshots``, per-article JSON goes to ``<output_dir>/articles/<stem>/``
    and the summary CSV to ``<output_dir>/<stem>_summary.csv``.
    """
    output_dir = Path(output_dir)
    results: Dict[str, ArticleRunSummary] = {}
    for list_path in find_url_lists(source):
        logger.info(f"📄 Processing list: {list_path}")
        stem = list_path.stem
        results[stem] = await run_article_collection(
            list_path,
            output_dir / f"{stem}.csv",
            fetcher,
            config,
            snapshot_dir=(output_dir / "articles" / stem) if snapshots else None,
            summary_csv=(output_dir / f"{stem}_summary.csv") if snapshots else None,
            **kwargs,
        )
    return results
