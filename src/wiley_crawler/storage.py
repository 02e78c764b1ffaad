"""JSON and CSV outputs."""
from __future__ import annotations

import csv
import json
import logging
import os
from pathlib import Path
from typing import Any, List, Set, Union

from .errors import IOFailure
from .models import NOT_AVAILABLE, ArticleRecord

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

ARTICLE_CSV_COLUMNS = [
    "Title",
    "Journal",
    "DOI",
    "PublicationDate",
    "Author",
    "Email",
    "AuthorProfileURL",
    "AuthorContributions",
    "URL",
]
ARTICLE_CSV_DELIMITER = ";"

SUMMARY_CSV_COLUMNS = ["file", "title", "authors", "abstract"]


def write_json(path: PathLike, data: Any) -> None:
    """Write ``data`` as indented JSON through a temp file and atomic rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)
    except OSError as e:
        discard_temp(tmp)
        raise IOFailure(f"Could not write {path}: {e}") from e


def discard_temp(tmp: Path) -> None:
    """Remove a leftover temporary file after a failed atomic write."""
    try:
        tmp.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"⚠️ Could not remove temporary file {tmp}: {e}")


def read_json(path: PathLike) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise IOFailure(f"Could not read {path}: {e}") from e


def _needs_header(path: Path) -> bool:
    return not path.exists() or path.stat().st_size == 0


def article_rows(record: ArticleRecord) -> List[dict]:
    """One row per author; an article without authors still yields one row."""
    base = {
        "Title": record.title.text(),
        "Journal": record.journal.text(),
        "DOI": record.doi.text(),
        "PublicationDate": record.publication_date.text(),
        "URL": record.source_url,
    }
    if not record.authors:
        return [
            dict(
                base,
                Author=NOT_AVAILABLE,
                Email=NOT_AVAILABLE,
                AuthorProfileURL=NOT_AVAILABLE,
                AuthorContributions=NOT_AVAILABLE,
            )
        ]
    return [
        dict(
            base,
            Author=author.name.text(),
            Email=author.email.text(),
            AuthorProfileURL=author.profile_url.text(),
            AuthorContributions=author.contributions.text(),
        )
        for author in record.authors
    ]


class ArticleCsvSink:
    """Append-only semicolon CSV with one row per (article, author)."""

    def __init__(self, path: PathLike):
        self.path = Path(path)

    def existing_urls(self) -> Set[str]:
        """Source URLs that already have rows in the file."""
        if not self.path.exists():
            return set()
        try:
            with self.path.open(newline="", encoding="utf-8") as fh:
                reader = csv.DictReader(fh, delimiter=ARTICLE_CSV_DELIMITER)
                return {row["URL"] for row in reader if row.get("URL")}
        except OSError as e:
            raise IOFailure(f"Could not read {self.path}: {e}") from e

    def append(self, record: ArticleRecord) -> int:
        rows = article_rows(record)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            write_header = _needs_header(self.path)
            with self.path.open("a", newline="", encoding="utf-8") as fh:
                writer = csv.DictWriter(fh, fieldnames=ARTICLE_CSV_COLUMNS, delimiter=ARTICLE_CSV_DELIMITER)
                if write_header:
                    writer.writeheader()
                writer.writerows(rows)
        except OSError as e:
            raise IOFailure(f"Could not append to {self.path}: {e}") from e
        logger.debug(f"Wrote {len(rows)} rows for {record.source_url} to {self.path}")
        return len(rows)


class SummaryCsvSink:
    """Comma CSV ``file,title,authors,abstract``, one row per article snapshot."""

    def __init__(self, path: PathLike):
        self.path = Path(path)

    def append(self, file_name: str, record: ArticleRecord) -> None:
        snapshot = record.snapshot()
        row = {
            "file": file_name,
            "title": snapshot["title"],
            "authors": snapshot["authors"],
            "abstract": snapshot["abstract"],
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            write_header = _needs_header(self.path)
            with self.path.open("a", newline="", encoding="utf-8") as fh:
                writer = csv.DictWriter(fh, fieldnames=SUMMARY_CSV_COLUMNS)
                if write_header:
                    writer.writeheader()
                writer.writerow(row)
        except OSError as e:
            raise IOFailure(f"Could not append to {self.path}: {e}") from e


def snapshot_file_name(position: int) -> str:
    return f"article_{position}.json"


def write_snapshot(directory: PathLike, position: int, record: ArticleRecord) -> Path:
    """Per-article JSON ``{url, title, authors, abstract}``."""
    path = Path(directory) / snapshot_file_name(position)
    write_json(path, record.snapshot())
    return path
