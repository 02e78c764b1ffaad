from __future__ import annotations

import random
from pathlib import Path
from typing import List

import pytest

from wiley_crawler.config import CrawlerConfig
from wiley_crawler.models import Subject
from wiley_crawler.throttle import RatePolicy


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def policy(sleeps: SleepRecorder) -> RatePolicy:
    return RatePolicy(2000, 4000, rng=random.Random(7), sleep=sleeps)


@pytest.fixture
def config(tmp_path: Path) -> CrawlerConfig:
    return CrawlerConfig(
        subjects=(Subject("accounting", 87),),
        output_dir=tmp_path / "output",
        page_size=100,
    )
