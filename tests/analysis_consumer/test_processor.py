"""
Unit tests for ModuleProcessor.

Tests blacklist and staleness skips, analysis and scoring, and the
handling of each analysis error kind.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from analysis_consumer.errors import (
    AnalysisError,
    ErrorKind,
    MODULE_NOT_FOUND,
    module_not_found,
)
from analysis_consumer.processor import ModuleProcessor, ProcessingOutcome
from analysis_consumer.schemas import ChangeEvent
from analysis_consumer.services import AnalysisOptions
from analysis_consumer.storage import CouchAnalysisStore

T1 = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


class UpstreamError(Exception):
    """Error raised by a third-party analyzer that sets a code attribute."""

    def __init__(self, message, code=None, unrecoverable=False):
        super().__init__(message)
        self.code = code
        self.unrecoverable = unrecoverable


@pytest.fixture
def processor(consumer_config, mock_store, mock_index, mock_analyzer, mock_scorer):
    return ModuleProcessor(consumer_config, mock_store, mock_index, mock_analyzer, mock_scorer)


def event(name: str, pushed_at: datetime = T1) -> ChangeEvent:
    return ChangeEvent(name=name, pushed_at=pushed_at)


@pytest.mark.asyncio
class TestBlacklist:
    """Blacklisted modules are acknowledged without any service calls."""

    async def test_blacklisted_module_is_skipped(
        self, processor, mock_store, mock_analyzer, mock_scorer
    ):
        outcome = await processor.process(event("evil-pkg"))

        assert outcome == ProcessingOutcome.BLACKLISTED
        mock_store.get.assert_not_awaited()
        mock_analyzer.analyze.assert_not_awaited()
        mock_scorer.score.assert_not_awaited()

    async def test_blacklist_is_logged_with_reason(self, processor, caplog):
        with caplog.at_level("INFO", logger="analysis_consumer.processor"):
            await processor.process(event("evil-pkg"))

        record = next(r for r in caplog.records if "blacklisted" in r.getMessage())
        assert record.reason == "Crashes the analyzer"
        assert record.module_name == "evil-pkg"


@pytest.mark.asyncio
class TestStaleness:
    """Events already covered by a newer analysis are acknowledged."""

    async def test_left_pad_already_analyzed(
        self, processor, mock_store, mock_analyzer, mock_scorer, make_record
    ):
        mock_store.get = AsyncMock(return_value=make_record("left-pad", T1 + timedelta(minutes=5)))

        outcome = await processor.process(event("left-pad"))

        assert outcome == ProcessingOutcome.ALREADY_ANALYZED
        mock_analyzer.analyze.assert_not_awaited()
        mock_scorer.score.assert_not_awaited()

    async def test_equal_timestamps_skip(self, processor, mock_store, mock_analyzer, make_record):
        mock_store.get = AsyncMock(return_value=make_record("left-pad", T1))

        outcome = await processor.process(event("left-pad"))

        assert outcome == ProcessingOutcome.ALREADY_ANALYZED
        mock_analyzer.analyze.assert_not_awaited()

    async def test_older_analysis_is_refreshed_with_revision(
        self, processor, mock_store, mock_analyzer, make_record
    ):
        mock_store.get = AsyncMock(
            return_value=make_record("left-pad", T1 - timedelta(days=3), revision="12-abc")
        )

        outcome = await processor.process(event("left-pad"))

        assert outcome == ProcessingOutcome.ANALYZED
        mock_analyzer.analyze.assert_awaited_once()
        _, options = mock_analyzer.analyze.await_args.args
        assert options.revision == "12-abc"

    async def test_stored_document_without_started_at_is_analyzed(
        self, consumer_config, mock_index, mock_analyzer, mock_scorer
    ):
        store = CouchAnalysisStore("http://couch:5984", "npms")
        store._request = AsyncMock(return_value=(200, {"_id": "module!left-pad", "_rev": "4-x"}))
        processor = ModuleProcessor(consumer_config, store, mock_index, mock_analyzer, mock_scorer)

        outcome = await processor.process(event("left-pad"))

        assert outcome == ProcessingOutcome.ANALYZED
        mock_analyzer.analyze.assert_awaited_once()
        name, options = mock_analyzer.analyze.await_args.args
        assert name == "left-pad"
        assert options.revision == "4-x"

    async def test_store_failure_propagates(self, processor, mock_store, mock_analyzer):
        mock_store.get = AsyncMock(side_effect=AnalysisError("couch down"))

        with pytest.raises(AnalysisError, match="couch down"):
            await processor.process(event("left-pad"))

        mock_analyzer.analyze.assert_not_awaited()


@pytest.mark.asyncio
class TestAnalysis:
    """Modules needing analysis are analyzed once and then scored."""

    async def test_left_pad_first_analysis(
        self, processor, consumer_config, mock_analyzer, mock_scorer
    ):
        outcome = await processor.process(event("left-pad"))

        assert outcome == ProcessingOutcome.ANALYZED
        mock_analyzer.analyze.assert_awaited_once_with(
            "left-pad",
            AnalysisOptions(
                revision=None,
                github_tokens=("token-a", "token-b"),
                git_ref_overrides=consumer_config.git_ref_overrides,
                wait_rate_limit=True,
            ),
        )
        mock_scorer.score.assert_awaited_once_with(mock_analyzer.analyze.return_value)

    async def test_options_carry_configuration(self, processor, mock_analyzer):
        await processor.process(event("left-pad"))

        _, options = mock_analyzer.analyze.await_args.args
        assert options.revision is None
        assert options.wait_rate_limit is True
        assert options.git_ref_overrides["left-pad"] == "v1.3.0"

    @pytest.mark.parametrize(
        "error",
        [
            RuntimeError("scoring exploded"),
            module_not_found("left-pad"),
            AnalysisError("bad", kind=ErrorKind.UNRECOVERABLE),
        ],
    )
    async def test_scoring_errors_are_swallowed(self, processor, mock_scorer, mock_index, error):
        mock_scorer.score = AsyncMock(side_effect=error)

        outcome = await processor.process(event("left-pad"))

        assert outcome == ProcessingOutcome.ANALYZED
        mock_scorer.score.assert_awaited_once()
        # Scoring errors are never classified, so no compensation happens
        mock_index.remove_entry.assert_not_awaited()


@pytest.mark.asyncio
class TestAnalysisErrors:
    """Analysis failures are handled according to their kind."""

    async def test_ghost_pkg_not_found_removes_entry_and_propagates(
        self, processor, mock_analyzer, mock_index, mock_scorer
    ):
        error = module_not_found("ghost-pkg")
        mock_analyzer.analyze = AsyncMock(side_effect=error)

        with pytest.raises(AnalysisError) as exc_info:
            await processor.process(event("ghost-pkg"))

        assert exc_info.value is error
        mock_index.remove_entry.assert_awaited_once_with("ghost-pkg")
        mock_scorer.score.assert_not_awaited()

    async def test_not_found_code_from_untyped_error(self, processor, mock_analyzer, mock_index):
        error = UpstreamError("Module does not exist", code=MODULE_NOT_FOUND)
        mock_analyzer.analyze = AsyncMock(side_effect=error)

        with pytest.raises(UpstreamError) as exc_info:
            await processor.process(event("ghost-pkg"))

        assert exc_info.value is error
        mock_index.remove_entry.assert_awaited_once_with("ghost-pkg")

    async def test_failed_removal_does_not_mask_not_found(
        self, processor, mock_analyzer, mock_index, caplog
    ):
        error = module_not_found("ghost-pkg")
        mock_analyzer.analyze = AsyncMock(side_effect=error)
        mock_index.remove_entry = AsyncMock(side_effect=AnalysisError("es down"))

        with caplog.at_level("ERROR", logger="analysis_consumer.processor"):
            with pytest.raises(AnalysisError) as exc_info:
                await processor.process(event("ghost-pkg"))

        assert exc_info.value is error
        mock_index.remove_entry.assert_awaited_once_with("ghost-pkg")
        assert any("Failed to remove index entry" in r.getMessage() for r in caplog.records)

    async def test_unrecoverable_error_is_swallowed(
        self, processor, mock_analyzer, mock_index, mock_scorer
    ):
        mock_analyzer.analyze = AsyncMock(
            side_effect=AnalysisError("broken package.json", kind=ErrorKind.UNRECOVERABLE)
        )

        outcome = await processor.process(event("left-pad"))

        assert outcome == ProcessingOutcome.UNRECOVERABLE
        mock_index.remove_entry.assert_not_awaited()
        mock_scorer.score.assert_not_awaited()

    async def test_unrecoverable_flag_from_untyped_error(self, processor, mock_analyzer):
        mock_analyzer.analyze = AsyncMock(
            side_effect=UpstreamError("broken tarball", unrecoverable=True)
        )

        outcome = await processor.process(event("left-pad"))

        assert outcome == ProcessingOutcome.UNRECOVERABLE

    @pytest.mark.parametrize(
        "error",
        [
            AnalysisError("rate limited"),
            UpstreamError("EHTTP", code="EHTTP"),
            ConnectionError("network down"),
        ],
    )
    async def test_other_errors_propagate(self, processor, mock_analyzer, mock_index, error):
        mock_analyzer.analyze = AsyncMock(side_effect=error)

        with pytest.raises(type(error)) as exc_info:
            await processor.process(event("left-pad"))

        assert exc_info.value is error
        mock_index.remove_entry.assert_not_awaited()


@pytest.mark.asyncio
class TestConcurrentProcessing:
    """Concurrent calls share one processor safely."""

    async def test_each_module_analyzed_once(self, processor, mock_analyzer):
        names = [f"pkg-{i}" for i in range(10)]
        outcomes = await asyncio.gather(*(processor.process(event(n)) for n in names))

        assert outcomes == [ProcessingOutcome.ANALYZED] * 10
        analyzed = sorted(call.args[0] for call in mock_analyzer.analyze.await_args_list)
        assert analyzed == sorted(names)
