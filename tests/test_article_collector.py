from __future__ import annotations

import asyncio
import csv
import json
from pathlib import Path

import pytest

import wiley_crawler.progress as progress
from fakes import HtmlPageFetcher, article_page
from wiley_crawler.article_collector import (
    contributions_for,
    extract_article,
    run_article_collection,
    run_article_lists,
)
from wiley_crawler.errors import IOFailure, NavigationFailed
from wiley_crawler.models import FieldValue
from wiley_crawler.storage import ARTICLE_CSV_COLUMNS, ArticleCsvSink

URL_1 = "https://onlinelibrary.wiley.com/doi/10.1111/acr.1"
URL_2 = "https://onlinelibrary.wiley.com/doi/10.1111/acr.2"
URL_3 = "https://onlinelibrary.wiley.com/doi/10.1111/acr.3"


def _rows(path: Path):
    with path.open(newline="", encoding="utf-8") as fh:
        return list(csv.DictReader(fh, delimiter=";"))


def _list(tmp_path: Path, *lines: str) -> Path:
    path = tmp_path / "urls.txt"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def test_extract_article_reads_all_fields() -> None:
    fetcher = HtmlPageFetcher({URL_1: article_page()})

    record = asyncio.run(extract_article(fetcher, URL_1))

    assert record.title.value == "Audit Quality and AI"
    assert record.journal.value == "Accounting Review"
    assert record.doi.value == "10.1111/acr.12345"
    assert record.publication_date.value == "12 March 2021"
    assert record.abstract.value == "We study audits."
    assert [a.name.value for a in record.authors] == ["Jane Doe", "John Smith"]

    jane, john = record.authors
    assert jane.email.value == "jane@example.edu"
    assert jane.profile_url.value == "https://onlinelibrary.wiley.com/authored-by/Doe/Jane"
    assert jane.contributions.value == "Doe designed the study."
    assert john.email.is_available is False
    assert john.contributions.value == "J.S. analysed the data."


def test_missing_fields_are_unavailable_not_fatal() -> None:
    page = article_page(title="", journal=None, date=None, contributions=None)
    fetcher = HtmlPageFetcher({URL_1: page})

    record = asyncio.run(extract_article(fetcher, URL_1))

    assert record.title.is_available is False
    assert record.journal.text() == "N/A"
    assert record.publication_date.text() == "N/A"
    assert record.doi.value == "10.1111/acr.12345"
    assert all(not a.contributions.is_available for a in record.authors)


def test_profile_fetch_fills_missing_email() -> None:
    profile = "https://onlinelibrary.wiley.com/authored-by/Smith/John"
    pages = {
        URL_1: article_page(),
        profile: '<html><body><a href="mailto:john@example.com?subject=hi">Email</a></body></html>',
    }
    fetcher = HtmlPageFetcher(pages)

    record = asyncio.run(extract_article(fetcher, URL_1, fetch_profiles=True))

    assert record.authors[1].email.value == "john@example.com"
    assert fetcher.auxiliary_opened == 1
    assert fetcher.visited == [URL_1, profile]


def test_failed_profile_fetch_leaves_email_unavailable() -> None:
    fetcher = HtmlPageFetcher({URL_1: article_page()})

    record = asyncio.run(extract_article(fetcher, URL_1, fetch_profiles=True))

    assert record.authors[1].email.is_available is False
    assert record.title.value == "Audit Quality and AI"


def test_extract_article_raises_when_page_missing() -> None:
    with pytest.raises(NavigationFailed):
        asyncio.run(extract_article(HtmlPageFetcher({}), URL_1))


def test_contributions_fall_back_to_whole_section() -> None:
    section = FieldValue.available("All authors wrote the paper.")
    assert contributions_for(FieldValue.available("Ann Lee"), section).value == "All authors wrote the paper."


def test_run_processes_pending_entries_and_marks_them(tmp_path: Path, config, policy, sleeps) -> None:
    list_path = _list(tmp_path, f"audit;{URL_1}", f"audit;{URL_2};1", f"audit;{URL_3}")
    out_csv = tmp_path / "out" / "urls.csv"
    fetcher = HtmlPageFetcher({URL_1: article_page(), URL_3: article_page(title="Third")})

    summary = asyncio.run(run_article_collection(list_path, out_csv, fetcher, config, policy=policy))

    assert summary.processed == 2
    assert summary.failed == 0
    assert fetcher.visited == [URL_1, URL_3]
    rows = _rows(out_csv)
    assert list(rows[0].keys()) == ARTICLE_CSV_COLUMNS
    assert [r["URL"] for r in rows] == [URL_1, URL_1, URL_3, URL_3]
    assert rows[1]["Email"] == "N/A"
    assert list_path.read_text(encoding="utf-8").splitlines() == [
        f"audit;{URL_1};1",
        f"audit;{URL_2};1",
        f"audit;{URL_3};1",
    ]
    assert len(sleeps.calls) == 2
    assert all(2.0 <= d <= 4.0 for d in sleeps.calls)


def test_failed_entry_stays_pending_and_is_delayed(tmp_path: Path, config, policy, sleeps) -> None:
    list_path = _list(tmp_path, f"audit;{URL_1}", f"audit;{URL_2}")
    out_csv = tmp_path / "urls.csv"
    fetcher = HtmlPageFetcher({URL_2: article_page()})

    summary = asyncio.run(run_article_collection(list_path, out_csv, fetcher, config, policy=policy))

    assert summary.failed == 1
    assert summary.processed == 1
    assert len(sleeps.calls) == 2
    assert {r["URL"] for r in _rows(out_csv)} == {URL_2}
    assert list_path.read_text(encoding="utf-8").splitlines() == [f"audit;{URL_1}", f"audit;{URL_2};1"]


def test_restart_skips_completed_entries(tmp_path: Path, config, policy) -> None:
    list_path = _list(tmp_path, f"audit;{URL_1}", f"audit;{URL_2}")
    out_csv = tmp_path / "urls.csv"
    pages = {URL_1: article_page(), URL_2: article_page()}

    asyncio.run(run_article_collection(list_path, out_csv, HtmlPageFetcher(pages), config, policy=policy))
    rows_after_first = _rows(out_csv)
    second = HtmlPageFetcher(pages)
    summary = asyncio.run(run_article_collection(list_path, out_csv, second, config, policy=policy))

    assert second.visited == []
    assert summary.processed == 0
    assert _rows(out_csv) == rows_after_first


def test_entry_already_in_output_is_marked_without_refetch(tmp_path: Path, config, policy, sleeps) -> None:
    list_path = _list(tmp_path, f"audit;{URL_1}", f"audit;{URL_2}")
    out_csv = tmp_path / "urls.csv"
    pages = {URL_1: article_page(), URL_2: article_page()}
    asyncio.run(run_article_collection(list_path, out_csv, HtmlPageFetcher(pages), config, policy=policy))
    # simulate a crash between writing rows and marking the line
    list_path.write_text(f"audit;{URL_1}\naudit;{URL_2};1\n", encoding="utf-8")
    sleeps.calls.clear()

    fetcher = HtmlPageFetcher(pages)
    summary = asyncio.run(run_article_collection(list_path, out_csv, fetcher, config, policy=policy))

    assert summary.skipped == 1
    assert fetcher.visited == []
    assert sleeps.calls == []
    assert [r["URL"] for r in _rows(out_csv)].count(URL_1) == 2
    assert list_path.read_text(encoding="utf-8").splitlines()[0] == f"audit;{URL_1};1"


def test_mark_failure_is_counted_and_run_continues(tmp_path: Path, config, policy, monkeypatch) -> None:
    list_path = _list(tmp_path, f"audit;{URL_1}", f"audit;{URL_2}")
    out_csv = tmp_path / "urls.csv"

    def broken(path, raw_line):
        raise IOFailure("disk full")

    monkeypatch.setattr(progress, "mark_line_processed", broken)
    fetcher = HtmlPageFetcher({URL_1: article_page(), URL_2: article_page()})

    summary = asyncio.run(run_article_collection(list_path, out_csv, fetcher, config, policy=policy))

    assert summary.processed == 2
    assert summary.mark_failures == 2
    assert fetcher.visited == [URL_1, URL_2]


def test_snapshots_and_summary_csv(tmp_path: Path, config, policy) -> None:
    list_path = _list(tmp_path, f"audit;{URL_1}", f"audit;{URL_2}")
    fetcher = HtmlPageFetcher({URL_2: article_page(title="Second")})

    asyncio.run(
        run_article_collection(
            list_path,
            tmp_path / "urls.csv",
            fetcher,
            config,
            policy=policy,
            snapshot_dir=tmp_path / "articles",
            summary_csv=tmp_path / "merged.csv",
        )
    )

    snapshot = json.loads((tmp_path / "articles" / "article_2.json").read_text(encoding="utf-8"))
    assert snapshot == {
        "url": URL_2,
        "title": "Second",
        "authors": "Jane Doe; John Smith",
        "abstract": "We study audits.",
    }
    assert not (tmp_path / "articles" / "article_1.json").exists()
    with (tmp_path / "merged.csv").open(newline="", encoding="utf-8") as fh:
        rows = list(csv.DictReader(fh))
    assert rows == [{"file": "article_2.json", "title": "Second", "authors": "Jane Doe; John Smith", "abstract": "We study audits."}]


def test_run_article_lists_writes_one_csv_per_list(tmp_path: Path, config, policy) -> None:
    lists = tmp_path / "lists"
    lists.mkdir()
    (lists / "accounting.txt").write_text(f"audit;{URL_1}\n", encoding="utf-8")
    (lists / "business.txt").write_text(f"audit;{URL_2}\n", encoding="utf-8")
    (lists / "notes.md").write_text("ignored", encoding="utf-8")
    fetcher = HtmlPageFetcher({URL_1: article_page(), URL_2: article_page()})

    results = asyncio.run(run_article_lists(lists, tmp_path / "csv", fetcher, config, policy=policy))

    assert sorted(results) == ["accounting", "business"]
    assert {r["URL"] for r in _rows(tmp_path / "csv" / "accounting.csv")} == {URL_1}
    assert {r["URL"] for r in _rows(tmp_path / "csv" / "business.csv")} == {URL_2}


def test_failed_csv_write_leaves_no_summary_row(tmp_path: Path, config, policy, monkeypatch) -> None:
    list_path = _list(tmp_path, f"audit;{URL_1}")
    out_csv = tmp_path / "urls.csv"
    merged = tmp_path / "merged.csv"
    pages = {URL_1: article_page()}

    def full_disk(self, record):
        raise IOFailure("disk full")

    with monkeypatch.context() as patch:
        patch.setattr(ArticleCsvSink, "append", full_disk)
        first = asyncio.run(
            run_article_collection(
                list_path, out_csv, HtmlPageFetcher(pages), config,
                policy=policy, snapshot_dir=tmp_path / "articles", summary_csv=merged,
            )
        )

    assert first.failed == 1
    assert not merged.exists()
    assert not (tmp_path / "articles").exists()
    assert list_path.read_text(encoding="utf-8").splitlines() == [f"audit;{URL_1}"]

    second = asyncio.run(
        run_article_collection(
            list_path, out_csv, HtmlPageFetcher(pages), config,
            policy=policy, snapshot_dir=tmp_path / "articles", summary_csv=merged,
        )
    )

    assert second.processed == 1
    with merged.open(newline="", encoding="utf-8") as fh:
        assert [r["file"] for r in csv.DictReader(fh)] == ["article_1.json"]


class _Interrupted(Exception):
    pass


class CrashingFetcher(HtmlPageFetcher):
    """Stops the whole run when it is asked to load ``crash_url``."""

    def __init__(self, pages, crash_url):
        super().__init__(pages)
        self.crash_url = crash_url

    async def navigate(self, url, timeout_ms=None):
        if url == self.crash_url:
            raise _Interrupted(url)
        await super().navigate(url, timeout_ms)


def test_restart_after_interrupted_run_resumes_at_first_pending_entry(tmp_path: Path, config, policy) -> None:
    list_path = _list(tmp_path, f"audit;{URL_1}", f"audit;{URL_2}", f"audit;{URL_3}")
    out_csv = tmp_path / "urls.csv"
    pages = {URL_1: article_page(), URL_2: article_page(), URL_3: article_page()}

    with pytest.raises(_Interrupted):
        asyncio.run(run_article_collection(list_path, out_csv, CrashingFetcher(pages, URL_2), config, policy=policy))

    assert list_path.read_text(encoding="utf-8").splitlines() == [
        f"audit;{URL_1};1",
        f"audit;{URL_2}",
        f"audit;{URL_3}",
    ]

    fetcher = HtmlPageFetcher(pages)
    summary = asyncio.run(run_article_collection(list_path, out_csv, fetcher, config, policy=policy))

    assert fetcher.visited == [URL_2, URL_3]
    assert summary.processed == 2
    urls = [r["URL"] for r in _rows(out_csv)]
    assert urls.count(URL_1) == 2
    assert urls.count(URL_2) == 2
    assert urls.count(URL_3) == 2
