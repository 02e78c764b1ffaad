"""Collect DOI links for every (subject, keyword) pair and persist them."""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

from tqdm import tqdm

from .config import CrawlerConfig
from .errors import IOFailure, ScraperError
from .fetcher import PageFetcher
from .models import STOP_FETCH_FAILED, WILEY_SEARCH_RULE, ExtractionRule, Subject
from .pagination import collect_links, sorted_links
from .progress import ProgressTracker, list_safe_url
from .storage import read_json, write_json
from .throttle import Sleeper

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


def load_keywords(path: Union[str, Path]) -> List[str]:
    """One keyword per line; blank lines are dropped."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            keywords = [line.strip() for line in f.read().splitlines()]
    except OSError as e:
        raise IOFailure(f"Could not read keywords from {path}: {e}") from e
    keywords = [k for k in keywords if k]
    if not keywords:
        raise ScraperError(f"No keywords found in {path}")
    logger.info(f"📚 Loaded {len(keywords)} keywords from {path}")
    return keywords


def safe_keyword(keyword: str) -> str:
    """File-name-safe form: whitespace runs become ``_``, other symbols are dropped."""
    collapsed = re.sub(r"\s+", "_", keyword.strip())
    return re.sub(r"[^\w-]", "", collapsed, flags=re.ASCII)


def subject_dir(output_dir: Union[str, Path], subject: Subject) -> Path:
    return Path(output_dir) / f"links-{subject.name}"


def pair_output_path(output_dir: Union[str, Path], subject: Subject, keyword: str) -> Path:
    return subject_dir(output_dir, subject) / f"{subject.name}_{safe_keyword(keyword)}.json"


def master_path(output_dir: Union[str, Path], subject: Subject) -> Path:
    return subject_dir(output_dir, subject) / f"all_{subject.name}_links.json"


def build_master(output_dir: Union[str, Path], subject: Subject) -> Dict[str, List[str]]:
    """Merge every pair file of ``subject`` into ``all_<subject>_links.json``."""
    directory = subject_dir(output_dir, subject)
    prefix = f"{subject.name}_"
    master: Dict[str, List[str]] = {}
    for path in sorted(directory.glob(f"{prefix}*.json")):
        master[path.stem[len(prefix):]] = read_json(path)
    write_json(master_path(output_dir, subject), master)
    logger.info(f"✔ Wrote master JSON for subject={subject.name} ({len(master)} keywords)")
    return master


@dataclass
class SubjectSummary:
    subject: Subject
    collected: int = 0
    skipped: int = 0
    failed: int = 0
    links: int = 0
    master: Dict[str, List[str]] = field(default_factory=dict)


async def run_link_collection(
    config: CrawlerConfig,
    keywords: Sequence[str],
    fetcher: PageFetcher,
    rule: ExtractionRule = WILEY_SEARCH_RULE,
    progress_callback: Optional[ProgressCallback] = None,
    sleep: Sleeper = asyncio.sleep,
) -> List[SubjectSummary]:
    """Collect links for every configured subject and keyword.

    Pairs that already have an output file are skipped. A pair whose first
    page could not be loaded gets no file, so the next run retries it.
    """
    summaries: List[SubjectSummary] = []
    total = len(config.subjects) * len(keywords)
    done = 0
    pbar = tqdm(total=total, desc="Collecting links", unit="query") if progress_callback is None else None

    try:
        for subject in config.subjects:
            logger.info(f"📂 Starting subject: {subject.name} (ConceptID={subject.concept_id})")
            subject_dir(config.output_dir, subject).mkdir(parents=True, exist_ok=True)
            summary = SubjectSummary(subject)

            for keyword in keywords:
                out_path = pair_output_path(config.output_dir, subject, keyword)
                done += 1
                if out_path.exists():
                    logger.info(f'⏭️ [{subject.name}] skipping "{keyword}" (already have {out_path})')
                    summary.skipped += 1
                else:
                    collection = await collect_links(
                        config.query(keyword, subject),
                        fetcher,
                        rule,
                        timeout_ms=config.timeout_ms,
                        retries=config.page_retries,
                        backoff_ms=config.retry_backoff_ms,
                        sleep=sleep,
                    )
                    if collection.first_page_failed:
                        summary.failed += 1
                    else:
                        write_json(out_path, sorted_links(collection))
                        summary.collected += 1
                        summary.links += len(collection.links)
                        if collection.stop_reason == STOP_FETCH_FAILED:
                            logger.warning(
                                f'⚠️ [{subject.name}] "{keyword}" stopped after {collection.pages_visited} '
                                f"of {collection.max_pages} pages"
                            )
                        logger.info(f"✔ [{subject.name}] saved {len(collection.links)} URLs → {out_path}")

                if pbar is not None:
                    pbar.update(1)
                else:
                    progress_callback(done, total, f"{subject.name}: {keyword}")

            summary.master = build_master(config.output_dir, subject)
            summaries.append(summary)
    finally:
        if pbar is not None:
            pbar.close()

    logger.info("🎉 Link collection finished")
    return summaries


def _master_files(sources: Iterable[Union[str, Path]]) -> List[Path]:
    files: List[Path] = []
    for source in sources:
        source = Path(source)
        if source.is_dir():
            files.extend(sorted(source.rglob("all_*_links.json")))
        else:
            files.append(source)
    return files


def write_url_list(sources: Iterable[Union[str, Path]], out_path: Union[str, Path]) -> int:
    """Append ``label;url`` lines for links in master files to ``out_path``.

    ``sources`` are master files or directories searched for them. A ``;``
    inside a URL is written as ``%3B``. URLs already in the list (from any
    earlier run) are not appended again, so existing done flags survive.
    Returns the number of lines added.
    """
    out_path = Path(out_path)
    seen = set()
    if out_path.exists():
        seen = {entry.url for entry in ProgressTracker.load(out_path).entries}

    lines: List[str] = []
    for path in _master_files(sources):
        data = read_json(path)
        groups = data.items() if isinstance(data, dict) else [(path.stem, data)]
        for label, urls in groups:
            for url in urls:
                url = list_safe_url(url)
                if url in seen:
                    continue
                seen.add(url)
                lines.append(f"{label};{url}")

    if lines:
        try:
            out_path.parent.mkdir(parents=True, exist_ok=True)
            needs_newline = out_path.exists() and out_path.stat().st_size > 0 and not _ends_with_newline(out_path)
            with open(out_path, "a", encoding="utf-8", newline="\n") as f:
                if needs_newline:
                    f.write("\n")
                f.write("\n".join(lines) + "\n")
        except OSError as e:
            raise IOFailure(f"Could not write URL list {out_path}: {e}") from e
    logger.info(f"📝 Added {len(lines)} URLs to {out_path}")
    return len(lines)


def _ends_with_newline(path: Path) -> bool:
    with open(path, "rb") as f:
        f.seek(-1, 2)
        return f.read(1) == b"\n"
