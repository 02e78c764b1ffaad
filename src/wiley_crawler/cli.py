#!/usr/bin/env python3
"""Command line entry point: ``wiley-crawler links|prepare|articles``."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .article_collector import run_article_lists
from .config import CrawlerConfig, parse_subjects
from .errors import ScraperError
from .fetcher import BrowserSession
from .link_collector import load_keywords, run_link_collection, write_url_list
from .models import DateRange

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Wiley Online Library link and article scraper")
    parser.add_argument("--env-file", default=None, help="Optional .env file with crawler settings")
    parser.add_argument("--output-dir", default=None, help="Root folder for all outputs (default: output)")
    parser.add_argument("--headful", action="store_true", help="Show the browser window")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    links = sub.add_parser("links", help="Collect DOI links for every subject and keyword")
    links.add_argument("--keywords", required=True, help="Text file with one keyword per line")
    links.add_argument(
        "--subject",
        action="append",
        default=None,
        metavar="NAME=ID",
        help="Subject filter, repeatable (default: accounting=87, business_and_management=41)",
    )
    links.add_argument("--after-year", type=int, default=2015)
    links.add_argument("--after-month", type=int, default=1)
    links.add_argument("--before-year", type=int, default=None)
    links.add_argument("--before-month", type=int, default=None)
    links.add_argument("--page-size", type=int, default=None)

    prepare = sub.add_parser("prepare", help="Turn collected link files into a resumable URL list")
    prepare.add_argument("--links-dir", default=None, help="Folder searched for all_*_links.json (default: output dir)")
    prepare.add_argument("--out", required=True, help="URL list to create or extend (label;url lines)")

    articles = sub.add_parser("articles", help="Scrape article metadata from a URL list")
    articles.add_argument("source", help="URL list file, or a folder of *.txt lists")
    articles.add_argument("--out", default=None, help="Folder for CSV outputs (default: <output-dir>/author_csv)")
    articles.add_argument("--profiles", action="store_true", help="Visit author profile pages for missing emails")
    articles.add_argument("--snapshots", action="store_true", help="Also write per-article JSON and a summary CSV")
    return parser


def _config(args: argparse.Namespace) -> CrawlerConfig:
    overrides = {
        "output_dir": Path(args.output_dir) if args.output_dir else None,
        "headless": False if args.headful else None,
    }
    if args.command == "links":
        overrides["date_range"] = DateRange(args.after_year, args.after_month, args.before_year, args.before_month)
        overrides["page_size"] = args.page_size
        if args.subject:
            overrides["subjects"] = parse_subjects(args.subject)
    if args.command == "articles" and args.profiles:
        overrides["fetch_profiles"] = True
    return CrawlerConfig.from_env(args.env_file, **overrides)


async def _run_links(config: CrawlerConfig, keywords: List[str]) -> None:
    async with BrowserSession(config) as session:
        fetcher = await session.new_fetcher()
        summaries = await run_link_collection(config, keywords, fetcher)
    for s in summaries:
        logger.info(
            f"📊 {s.subject.name}: {s.collected} collected, {s.skipped} skipped, "
            f"{s.failed} failed, {s.links} new links"
        )


async def _run_articles(config: CrawlerConfig, source: str, out_dir: Path, snapshots: bool) -> None:
    async with BrowserSession(config) as session:
        fetcher = await session.new_fetcher()
        await run_article_lists(source, out_dir, fetcher, config, snapshots=snapshots)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _config(args)
        if args.command == "links":
            asyncio.run(_run_links(config, load_keywords(args.keywords)))
        elif args.command == "prepare":
            added = write_url_list([args.links_dir or config.output_dir], args.out)
            print(f"Wrote {added} URLs to {args.out}")
        elif args.command == "articles":
            out_dir = Path(args.out) if args.out else config.output_dir / "author_csv"
            asyncio.run(_run_articles(config, args.source, out_dir, args.snapshots))
    except ScraperError as e:
        logger.error(f"❌ {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
