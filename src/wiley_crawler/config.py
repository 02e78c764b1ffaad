"""Run configuration, built once at startup and passed to every run."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple

from dotenv import load_dotenv

from .errors import ConfigurationError
from .models import DEFAULT_BASE_URL, DEFAULT_SUBJECTS, DateRange, SearchQuery, Subject

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProxySettings:
    server: str
    username: Optional[str] = None
    password: Optional[str] = None

    def as_playwright(self) -> Dict[str, str]:
        proxy = {"server": self.server}
        if self.username:
            proxy["username"] = self.username
        if self.password:
            proxy["password"] = self.password
        return proxy


@dataclass(frozen=True)
class CrawlerConfig:
    base_url: str = DEFAULT_BASE_URL
    subjects: Tuple[Subject, ...] = DEFAULT_SUBJECTS
    date_range: DateRange = field(default_factory=DateRange)
    page_size: int = 100
    timeout_ms: int = 30000
    min_delay_ms: int = 2000
    max_delay_ms: int = 4000
    headless: bool = True
    executable_path: Optional[str] = None
    proxy: Optional[ProxySettings] = None
    output_dir: Path = Path("output")
    fetch_profiles: bool = False
    page_retries: int = 0
    retry_backoff_ms: int = 1000

    def __post_init__(self):
        if self.page_size <= 0:
            raise ConfigurationError(f"page_size must be positive, got {self.page_size}")
        if self.timeout_ms <= 0:
            raise ConfigurationError(f"timeout_ms must be positive, got {self.timeout_ms}")
        if self.min_delay_ms < 0 or self.max_delay_ms < self.min_delay_ms:
            raise ConfigurationError(
                f"invalid delay interval [{self.min_delay_ms}, {self.max_delay_ms}] ms"
            )
        if self.page_retries < 0:
            raise ConfigurationError(f"page_retries must be >= 0, got {self.page_retries}")

    def query(self, keyword: str, subject: Subject) -> SearchQuery:
        return SearchQuery(
            keyword=keyword,
            subject_filter_id=subject.concept_id,
            date_range=self.date_range,
            page_size=self.page_size,
            base_url=self.base_url,
        )

    @classmethod
    def from_env(
        cls,
        env_file: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
        **overrides,
    ) -> "CrawlerConfig":
        """Build a config from environment variables (and an optional .env file).

        Explicit keyword overrides win over the environment.
        """
        if environ is None:
            load_dotenv(env_file)
            environ = os.environ

        values = {}
        if environ.get("CHROME_PATH"):
            values["executable_path"] = environ["CHROME_PATH"]
        if environ.get("OUTPUT_DIR"):
            values["output_dir"] = Path(environ["OUTPUT_DIR"])
        if environ.get("BASE_URL"):
            values["base_url"] = environ["BASE_URL"]
        for env_name, key in (
            ("TIMEOUT", "timeout_ms"),
            ("PAGE_SIZE", "page_size"),
            ("MIN_DELAY_MS", "min_delay_ms"),
            ("MAX_DELAY_MS", "max_delay_ms"),
            ("PAGE_RETRIES", "page_retries"),
        ):
            if environ.get(env_name):
                values[key] = _int(env_name, environ[env_name])
        if environ.get("HEADLESS"):
            values["headless"] = _bool("HEADLESS", environ["HEADLESS"])
        if environ.get("PROXY_SERVER"):
            values["proxy"] = ProxySettings(
                server=environ["PROXY_SERVER"],
                username=environ.get("PROXY_USERNAME") or None,
                password=environ.get("PROXY_PASSWORD") or None,
            )

        values.update({k: v for k, v in overrides.items() if v is not None})
        config = cls(**values)
        logger.debug(f"Loaded configuration: {config}")
        return config


def _int(name: str, raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _bool(name: str, raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def parse_subjects(specs: Sequence[str]) -> Tuple[Subject, ...]:
    """Parse ``name=concept_id`` pairs, e.g. ``accounting=87``."""
    subjects = []
    for spec in specs:
        name, sep, concept = spec.partition("=")
        if not sep or not name.strip():
            raise ConfigurationError(f"subject must look like NAME=ID, got {spec!r}")
        subjects.append(Subject(name.strip(), _int(f"subject {name.strip()}", concept)))
    return tuple(subjects)
