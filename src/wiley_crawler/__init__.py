"""wiley_crawler package"""

from .article_collector import extract_article, run_article_collection, run_article_lists
from .config import CrawlerConfig, ProxySettings
from .fetcher import BrowserSession, PageFetcher, PlaywrightPageFetcher
from .link_collector import run_link_collection, write_url_list
from .models import ArticleRecord, ExtractionRule, FieldValue, SearchQuery, Subject
from .pagination import collect_links
from .progress import ProgressTracker, mark_line_processed
from .throttle import RatePolicy

__all__ = [
    "ArticleRecord",
    "BrowserSession",
    "CrawlerConfig",
    "ExtractionRule",
    "FieldValue",
    "PageFetcher",
    "PlaywrightPageFetcher",
    "ProgressTracker",
    "ProxySettings",
    "RatePolicy",
    "SearchQuery",
    "Subject",
    "collect_links",
    "extract_article",
    "mark_line_processed",
    "run_article_collection",
    "run_article_lists",
    "run_link_collection",
    "write_url_list",
]
