"""Streamlit UI for the Wiley crawler.

Run with:
    poetry run streamlit run scripts/run_crawler_streamlit.py
"""
from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import streamlit as st

# ensure src package is importable when running from repo root
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from wiley_crawler.article_collector import run_article_collection
from wiley_crawler.config import CrawlerConfig, parse_subjects
from wiley_crawler.errors import ScraperError
from wiley_crawler.fetcher import BrowserSession
from wiley_crawler.link_collector import run_link_collection, write_url_list
from wiley_crawler.models import DateRange


async def _collect_links(config, keywords, callback):
    async with BrowserSession(config) as session:
        fetcher = await session.new_fetcher()
        return await run_link_collection(config, keywords, fetcher, progress_callback=callback)


async def _collect_articles(config, list_path, out_csv, snapshot_dir, summary_csv, callback):
    async with BrowserSession(config) as session:
        fetcher = await session.new_fetcher()
        return await run_article_collection(
            list_path,
            out_csv,
            fetcher,
            config,
            snapshot_dir=snapshot_dir,
            summary_csv=summary_csv,
            progress_callback=callback,
        )


def _progress(bar, status_text):
    def callback(current, total, status_message):
        if total > 0:
            bar.progress(current / total, text=f"{current}/{total} ({current / total * 100:.1f}%)")
        status_text.text(f"📊 {status_message}")
    return callback


st.set_page_config(page_title="Wiley Online Library Crawler", layout="wide")
st.title("Wiley Online Library Crawler")
st.markdown("Collect **DOI links** per subject and keyword, then scrape **article metadata** from the collected list.")

output_dir = st.text_input("Output folder", value="./output")
headless = st.checkbox("Headless mode (browser in background)", value=True)

st.divider()

with st.form("links_form"):
    st.subheader("🔗 Step 1: Collect links")
    keywords_text = st.text_area("Keywords (one per line)", value="audit\nArtificial Intelligence")
    subjects_text = st.text_area("Subjects (NAME=ConceptID, one per line)", value="accounting=87\nbusiness_and_management=41")
    col1, col2 = st.columns(2)
    with col1:
        after_year = st.number_input("Published after (year)", min_value=1900, max_value=2100, value=2015)
    with col2:
        page_size = st.number_input("Results per page", min_value=10, max_value=100, value=100)
    links_submit = st.form_submit_button("🚀 Collect links")

if links_submit:
    keywords = [k.strip() for k in keywords_text.splitlines() if k.strip()]
    if not keywords:
        st.error("❌ Please enter at least one keyword")
    else:
        bar = st.progress(0, text="Initializing...")
        status_text = st.empty()
        try:
            config = CrawlerConfig.from_env(
                output_dir=Path(output_dir),
                headless=headless,
                page_size=int(page_size),
                date_range=DateRange(after_year=int(after_year)),
                subjects=parse_subjects([s for s in subjects_text.splitlines() if s.strip()]),
            )
            summaries = asyncio.run(_collect_links(config, keywords, _progress(bar, status_text)))
            bar.progress(1.0, text="Done")
            for s in summaries:
                st.write(f"**{s.subject.name}**: {s.collected} collected, {s.skipped} skipped, {s.failed} failed, {s.links} links")
            added = write_url_list([config.output_dir], config.output_dir / "urls.txt")
            st.success(f"🎉 Link collection complete. {added} new URLs added to {config.output_dir / 'urls.txt'}")
        except ScraperError as e:
            st.error(f"❌ {e}")

st.divider()

with st.form("articles_form"):
    st.subheader("📄 Step 2: Scrape articles")
    list_path = st.text_input("URL list (label;url[;1] per line)", value="./output/urls.txt")
    fetch_profiles = st.checkbox("Visit author profile pages for missing emails", value=False)
    snapshots = st.checkbox("Write per-article JSON and summary CSV", value=True)
    articles_submit = st.form_submit_button("🚀 Scrape articles")

if articles_submit:
    bar = st.progress(0, text="Initializing...")
    status_text = st.empty()
    try:
        config = CrawlerConfig.from_env(output_dir=Path(output_dir), headless=headless, fetch_profiles=fetch_profiles)
        out_dir = config.output_dir / "author_csv"
        stem = Path(list_path).stem
        summary = asyncio.run(
            _collect_articles(
                config,
                list_path,
                out_dir / f"{stem}.csv",
                (out_dir / "articles" / stem) if snapshots else None,
                (out_dir / f"{stem}_summary.csv") if snapshots else None,
                _progress(bar, status_text),
            )
        )
        bar.progress(1.0, text="Done")
        st.success(
            f"🎉 {summary.processed} scraped, {summary.failed} failed, "
            f"{summary.skipped} already present. Output in {os.path.abspath(out_dir)}"
        )
        if summary.mark_failures:
            st.warning(f"⚠️ {summary.mark_failures} entries could not be marked and will be fetched again next run")
    except ScraperError as e:
        st.error(f"❌ {e}")
