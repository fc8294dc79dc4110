"""Shared fixtures for analysis consumer tests."""

from datetime import datetime, timezone
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiokafka.structs import ConsumerRecord

from analysis_consumer.config import ConsumerConfig
from analysis_consumer.errors import analysis_not_found
from analysis_consumer.schemas import AnalysisRecord

TOPIC = "test.analysis.pending"


@pytest.fixture
def consumer_config():
    """Create test consumer configuration."""
    return ConsumerConfig(
        bootstrap_servers="localhost:9092",
        analysis_topic=TOPIC,
        consumer_group="test-analyzer",
        redelivery_backoff_ms=0,
        blacklist={"evil-pkg": "Crashes the analyzer"},
        github_tokens=("token-a", "token-b"),
        git_ref_overrides={"left-pad": "v1.3.0"},
    )


@pytest.fixture
def mock_store():
    """Analysis store with no stored analyses."""

    async def get(name):
        raise analysis_not_found(name)

    store = MagicMock()
    store.get = AsyncMock(side_effect=get)
    return store


@pytest.fixture
def mock_index():
    index = MagicMock()
    index.upsert_score = AsyncMock()
    index.remove_entry = AsyncMock()
    return index


@pytest.fixture
def mock_analyzer():
    analyzer = MagicMock()
    analyzer.analyze = AsyncMock(return_value={"collected": {}, "evaluation": {}})
    return analyzer


@pytest.fixture
def mock_scorer():
    scorer = MagicMock()
    scorer.score = AsyncMock(return_value={"score": {"final": 0.9}})
    return scorer


@pytest.fixture
def make_record():
    """Factory for stored analysis records."""

    def _make(name: str, started_at: Optional[datetime], revision: Optional[str] = "3-abc"):
        return AnalysisRecord(name=name, started_at=started_at, revision=revision)

    return _make


@pytest.fixture
def make_message():
    """Factory for ConsumerRecords carrying a change event (or a raw value)."""

    def _make(
        name: Optional[str] = None,
        offset: int = 0,
        partition: int = 0,
        pushed_at: str = "2024-03-01T10:00:00Z",
        raw: Optional[bytes] = None,
    ) -> ConsumerRecord:
        if raw is None and name is not None:
            raw = f'{{"data": "{name}", "pushedAt": "{pushed_at}"}}'.encode("utf-8")
        return ConsumerRecord(
            topic=TOPIC,
            partition=partition,
            offset=offset,
            timestamp=int(datetime.now(timezone.utc).timestamp() * 1000),
            timestamp_type=0,
            key=None,
            value=raw,
            checksum=None,
            serialized_key_size=0,
            serialized_value_size=len(raw) if raw else 0,
            headers=[],
        )

    return _make
