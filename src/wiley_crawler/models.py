"""Typed records passed between the crawler components."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple
from urllib.parse import urlencode

DEFAULT_BASE_URL = "https://onlinelibrary.wiley.com"
NOT_AVAILABLE = "N/A"


@dataclass(frozen=True)
class Subject:
    """A subject filter on the search page (name + numeric ConceptID)."""

    name: str
    concept_id: int


DEFAULT_SUBJECTS: Tuple[Subject, ...] = (
    Subject("accounting", 87),
    Subject("business_and_management", 41),
)


@dataclass(frozen=True)
class DateRange:
    after_year: int = 2015
    after_month: int = 1
    before_year: Optional[int] = None
    before_month: Optional[int] = None


@dataclass(frozen=True)
class SearchQuery:
    """One (keyword, subject) search, able to build the URL of any result page."""

    keyword: str
    subject_filter_id: int
    date_range: Optional[DateRange] = None
    page_size: int = 100
    base_url: str = DEFAULT_BASE_URL
    pub_type: str = "journal"
    content: str = "articlesChapters"

    def __post_init__(self):
        if self.page_size <= 0:
            raise ValueError(f"page_size must be positive, got {self.page_size}")

    def page_url(self, index: int) -> str:
        """Return the doSearch URL for 1-based result page ``index``."""
        if index < 1:
            raise ValueError(f"page index must be >= 1, got {index}")

        dr = self.date_range
        params = [
            ("AfterMonth", _opt(dr.after_month if dr else None)),
            ("AfterYear", _opt(dr.after_year if dr else None)),
            ("BeforeMonth", _opt(dr.before_month if dr else None)),
            ("BeforeYear", _opt(dr.before_year if dr else None)),
            ("ConceptID", str(self.subject_filter_id)),
            ("PubType", self.pub_type),
            ("field1", "AllField"),
            ("text1", self.keyword),
            ("publication", ""),
            ("content", self.content),
            ("pageSize", str(self.page_size)),
            ("startPage", str(index)),
        ]
        return f"{self.base_url.rstrip('/')}/action/doSearch?{urlencode(params)}"


def _opt(value: Optional[int]) -> str:
    return "" if value is None else str(value)


@dataclass(frozen=True)
class ExtractionRule:
    """Where result links live on a search page.

    Each element matching ``row_selector`` contributes the ``attribute`` of its
    first ``link_selector`` match. When that yields nothing, every element
    matching ``fallback_selector`` contributes directly.
    """

    row_selector: Optional[str]
    link_selector: str
    fallback_selector: Optional[str] = None
    ready_selector: Optional[str] = None
    count_selector: Optional[str] = None
    attribute: str = "href"

    @property
    def fallback(self) -> str:
        return self.fallback_selector or self.link_selector

    @property
    def ready(self) -> str:
        return self.ready_selector or self.link_selector


WILEY_SEARCH_RULE = ExtractionRule(
    row_selector="li.search__item",
    link_selector="a[href^='/doi/']",
    count_selector="span.result__count",
)


@dataclass
class ResultPage:
    index: int
    links: List[str] = field(default_factory=list)
    total_results: Optional[int] = None
    used_fallback: bool = False


STOP_EXHAUSTED = "exhausted"
STOP_NO_NEW_LINKS = "no_new_links"
STOP_FETCH_FAILED = "fetch_failed"


@dataclass
class LinkCollection:
    """Outcome of paginating one search query."""

    query: SearchQuery
    links: Set[str] = field(default_factory=set)
    pages_visited: int = 0
    max_pages: int = 0
    total_results: Optional[int] = None
    stop_reason: str = STOP_EXHAUSTED

    @property
    def first_page_failed(self) -> bool:
        return self.pages_visited == 0


@dataclass
class UrlEntry:
    """One line of a persisted URL list."""

    raw_line: str
    label: str
    url: str
    processed: bool = False
    position: int = 0


@dataclass(frozen=True)
class FieldValue:
    """A scraped value that is either available or explicitly missing."""

    value: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def available(cls, value: str) -> "FieldValue":
        return cls(value=value)

    @classmethod
    def unavailable(cls, reason: str = "not found") -> "FieldValue":
        return cls(value=None, reason=reason)

    @property
    def is_available(self) -> bool:
        return self.value is not None

    def text(self, sentinel: str = NOT_AVAILABLE) -> str:
        return self.value if self.value is not None else sentinel


@dataclass(frozen=True)
class AuthorRecord:
    name: FieldValue
    email: FieldValue = FieldValue.unavailable()
    profile_url: FieldValue = FieldValue.unavailable()
    contributions: FieldValue = FieldValue.unavailable()


@dataclass(frozen=True)
class ArticleRecord:
    source_url: str
    title: FieldValue
    journal: FieldValue
    doi: FieldValue
    publication_date: FieldValue
    abstract: FieldValue = FieldValue.unavailable()
    authors: Tuple[AuthorRecord, ...] = ()

    def author_names(self) -> List[str]:
        return [a.name.value for a in self.authors if a.name.is_available]

    def snapshot(self) -> Dict[str, str]:
        """Flat view written to per-article JSON and the summary CSV."""
        return {
            "url": self.source_url,
            "title": self.title.text(),
            "authors": "; ".join(self.author_names()),
            "abstract": self.abstract.text(),
        }
