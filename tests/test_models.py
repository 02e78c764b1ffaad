from __future__ import annotations

from urllib.parse import parse_qsl, urlparse

import pytest

from wiley_crawler.models import ArticleRecord, AuthorRecord, DateRange, FieldValue, SearchQuery


def test_page_url_carries_all_search_parameters() -> None:
    query = SearchQuery(
        keyword="Artificial Intelligence",
        subject_filter_id=87,
        date_range=DateRange(after_year=2015, after_month=1),
        page_size=100,
    )

    url = query.page_url(2)
    parsed = urlparse(url)
    params = parse_qsl(parsed.query, keep_blank_values=True)

    assert parsed.netloc == "onlinelibrary.wiley.com"
    assert parsed.path == "/action/doSearch"
    assert "text1=Artificial+Intelligence" in url
    assert [k for k, _ in params] == [
        "AfterMonth",
        "AfterYear",
        "BeforeMonth",
        "BeforeYear",
        "ConceptID",
        "PubType",
        "field1",
        "text1",
        "publication",
        "content",
        "pageSize",
        "startPage",
    ]
    values = dict(params)
    assert values["ConceptID"] == "87"
    assert values["AfterYear"] == "2015"
    assert values["BeforeYear"] == ""
    assert values["pageSize"] == "100"
    assert values["startPage"] == "2"


def test_page_url_rejects_non_positive_index() -> None:
    with pytest.raises(ValueError):
        SearchQuery("audit", 87).page_url(0)


def test_query_rejects_non_positive_page_size() -> None:
    with pytest.raises(ValueError):
        SearchQuery("audit", 87, page_size=0)


def test_field_value_sentinel() -> None:
    assert FieldValue.available("x").text() == "x"
    missing = FieldValue.unavailable("no match")
    assert not missing.is_available
    assert missing.text() == "N/A"
    assert missing.text("") == ""


def test_snapshot_joins_available_author_names() -> None:
    record = ArticleRecord(
        source_url="https://x.org/doi/1",
        title=FieldValue.available("T"),
        journal=FieldValue.unavailable(),
        doi=FieldValue.unavailable(),
        publication_date=FieldValue.unavailable(),
        authors=(AuthorRecord(FieldValue.available("A")), AuthorRecord(FieldValue.unavailable())),
    )

    assert record.snapshot() == {"url": "https://x.org/doi/1", "title": "T", "authors": "A", "abstract": "N/A"}
