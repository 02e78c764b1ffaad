"""Resume tracking over a ``label;url[;doneFlag]`` URL list.

An entry is marked done by rewriting its exact source line in place, right
after its output has been persisted, so an interrupted run picks up where it
stopped.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterator, List, Optional, Union

from .errors import IOFailure
from .models import UrlEntry
from .storage import discard_temp

logger = logging.getLogger(__name__)

DONE_FLAG = "1"
SEPARATOR = ";"

PathLike = Union[str, "os.PathLike[str]"]


def list_safe_url(url: str) -> str:
    """Percent-encode the separator so the URL stays one field (SICI DOIs contain ``;``)."""
    return url.strip().replace(SEPARATOR, "%3B")


def parse_line(raw_line: str, position: int = 0) -> Optional[UrlEntry]:
    """Parse one list line; returns None for blank lines or lines without a URL."""
    parts = [p.strip() for p in raw_line.split(SEPARATOR)]
    if len(parts) < 2 or not parts[1]:
        return None
    flag = parts[2] if len(parts) > 2 else ""
    return UrlEntry(
        raw_line=raw_line,
        label=parts[0],
        url=parts[1],
        processed=flag == DONE_FLAG,
        position=position,
    )


def _read_lines(path: Path) -> List[str]:
    try:
        with open(path, "r", encoding="utf-8", newline="") as f:
            content = f.read()
    except OSError as e:
        raise IOFailure(f"Could not read URL list {path}: {e}") from e
    return content.splitlines()


def mark_line_processed(path: PathLike, raw_line: str) -> bool:
    """Flag every line equal to ``raw_line`` as done. Returns True if the file changed.

    Matching is by full-line equality, never by URL alone. The rewrite goes
    through a temporary file and an atomic rename. Not safe against other
    processes writing the same file.
    """
    path = Path(path)
    lines = _read_lines(path)
    changed = False
    for i, line in enumerate(lines):
        if line != raw_line:
            continue
        marked = _with_done_flag(line)
        if marked != line:
            lines[i] = marked
            changed = True
    if not changed:
        return False

    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp, "w", encoding="utf-8", newline="\n") as f:
            f.write("\n".join(lines) + "\n")
        os.replace(tmp, path)
    except OSError as e:
        discard_temp(tmp)
        raise IOFailure(f"Could not rewrite URL list {path}: {e}") from e
    return True


def _with_done_flag(line: str) -> str:
    parts = line.split(SEPARATOR)
    if len(parts) >= 3:
        if parts[2].strip() == DONE_FLAG:
            return line
        parts[2] = DONE_FLAG
        return SEPARATOR.join(parts)
    return line + SEPARATOR + DONE_FLAG


class ProgressTracker:
    """In-memory working set of a persisted URL list."""

    def __init__(self, path: PathLike, entries: List[UrlEntry], duplicates: int = 0):
        self.path = Path(path)
        self.entries = entries
        self.duplicates = duplicates

    @classmethod
    def load(cls, path: PathLike) -> "ProgressTracker":
        """Parse the list, keeping only the first line seen for each URL."""
        path = Path(path)
        entries: List[UrlEntry] = []
        seen = set()
        duplicates = 0
        for position, raw_line in enumerate(_read_lines(path), 1):
            entry = parse_line(raw_line, position)
            if entry is None:
                if raw_line.strip():
                    logger.debug(f"Ignoring malformed line {position} in {path}: {raw_line!r}")
                continue
            if entry.url in seen:
                duplicates += 1
                continue
            seen.add(entry.url)
            entries.append(entry)

        tracker = cls(path, entries, duplicates)
        logger.info(
            f"📋 Loaded {len(entries)} URLs from {path} "
            f"({tracker.done_count} done, {tracker.pending_count()} pending, {duplicates} duplicates dropped)"
        )
        return tracker

    @property
    def done_count(self) -> int:
        return sum(1 for e in self.entries if e.processed)

    def pending(self) -> Iterator[UrlEntry]:
        for entry in self.entries:
            if not entry.processed:
                yield entry

    def pending_count(self) -> int:
        return len(self.entries) - self.done_count

    def mark_processed(self, entry: UrlEntry) -> bool:
        """Persist the done flag for ``entry``, then flip it in memory.

        Raises IOFailure when the list cannot be rewritten; the entry then
        stays unprocessed in memory too.
        """
        if entry.processed:
            return False
        changed = mark_line_processed(self.path, entry.raw_line)
        entry.processed = True
        return changed
