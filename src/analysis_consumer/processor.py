"""
Module processor: decides and runs the work for one change event.

For each event:
1. Skip blacklisted modules
2. Skip modules analyzed since the event was pushed
3. Analyze the module
4. Score the analysis (best effort, failures are swallowed)
5. Classify analysis failures: remove the stale index entry and re-raise
   for vanished modules, swallow unrecoverable ones, re-raise the rest
"""

import logging
from enum import Enum
from typing import Any

from analysis_consumer.blacklist import BlacklistFilter
from analysis_consumer.config import ConsumerConfig
from analysis_consumer.errors import RecoveryAction, classify
from analysis_consumer.logging import get_logger, log_exception, log_with_context
from analysis_consumer.metrics import (
    record_analysis_error,
    record_compensation,
    record_outcome,
    record_scoring_error,
)
from analysis_consumer.schemas import ChangeEvent
from analysis_consumer.services import (
    AnalysisOptions,
    AnalysisStore,
    Analyzer,
    Scorer,
    SearchIndex,
)
from analysis_consumer.staleness import StalenessChecker

logger = get_logger(__name__)


class ProcessingOutcome(str, Enum):
    """How a change event was handled when processing did not fail."""

    BLACKLISTED = "blacklisted"
    ALREADY_ANALYZED = "already_analyzed"
    ANALYZED = "analyzed"
    UNRECOVERABLE = "unrecoverable"


class ModuleProcessor:
    """
    Runs the analysis state machine for one module per call.

    ``process`` returning means the delivery may be acknowledged; raising
    means it must not be. Configuration is read-only and shared by all
    concurrent calls.

    Usage:
        >>> processor = ModuleProcessor(config, store, index, analyzer, scorer)
        >>> outcome = await processor.process(event)
    """

    def __init__(
        self,
        config: ConsumerConfig,
        store: AnalysisStore,
        index: SearchIndex,
        analyzer: Analyzer,
        scorer: Scorer,
    ):
        self.config = config
        self.index = index
        self.analyzer = analyzer
        self.scorer = scorer
        self.blacklist = BlacklistFilter(config.blacklist)
        self.staleness = StalenessChecker(store)

    async def process(self, event: ChangeEvent) -> ProcessingOutcome:
        """
        Process one change event.

        Args:
            event: The change event of the delivery

        Returns:
            ProcessingOutcome for acknowledged deliveries

        Raises:
            Exception: The original analysis error for vanished modules
                (after removing their index entry) and for unclassified
                failures; store errors other than "not found"
        """
        name = event.name

        reason = self.blacklist.reason_for(name)
        if reason:
            log_with_context(
                logger,
                logging.INFO,
                f"Module {name} is blacklisted",
                module_name=name,
                reason=reason,
            )
            return self._finish(ProcessingOutcome.BLACKLISTED)

        log_with_context(logger, logging.INFO, f"Processing module {name}", module_name=name)

        decision = await self.staleness.check(name, event.pushed_at)
        if decision.skip:
            log_with_context(
                logger,
                logging.INFO,
                f"Skipping analysis of {name} because it was already analyzed meanwhile",
                module_name=name,
                pushed_at=event.pushed_at.isoformat(),
                started_at=decision.record.started_at.isoformat(),
            )
            return self._finish(ProcessingOutcome.ALREADY_ANALYZED)

        options = AnalysisOptions(
            revision=decision.revision,
            github_tokens=self.config.github_tokens,
            git_ref_overrides=self.config.git_ref_overrides,
            wait_rate_limit=True,
        )

        try:
            analysis = await self.analyzer.analyze(name, options)
        except Exception as e:
            return await self._handle_analysis_error(name, e)

        await self._score(name, analysis)
        return self._finish(ProcessingOutcome.ANALYZED)

    async def _score(self, name: str, analysis: Any) -> None:
        """Score the analysis for a "real-time" update, ignoring any errors."""
        try:
            await self.scorer.score(analysis)
        except Exception as e:
            record_scoring_error()
            log_exception(
                logger,
                e,
                f"Scoring of {name} failed, ignoring",
                level=logging.WARNING,
                module_name=name,
            )

    async def _handle_analysis_error(self, name: str, error: Exception) -> ProcessingOutcome:
        classified = classify(error)
        record_analysis_error(classified.kind.value)

        if classified.action == RecoveryAction.SKIP:
            log_exception(
                logger,
                error,
                f"Unrecoverable error analyzing {name}, not retrying",
                level=logging.INFO,
                include_traceback=False,
                module_name=name,
                error_kind=classified.kind.value,
            )
            return self._finish(ProcessingOutcome.UNRECOVERABLE)

        if classified.action == RecoveryAction.COMPENSATE_THEN_PROPAGATE:
            log_exception(
                logger,
                error,
                f"Module {name} no longer exists, removing it from the index",
                level=logging.WARNING,
                include_traceback=False,
                module_name=name,
                error_kind=classified.kind.value,
            )
            await self._remove_stale_entry(name)

        raise error

    async def _remove_stale_entry(self, name: str) -> None:
        """Remove the module's index entry. Failures are logged, never raised."""
        try:
            await self.index.remove_entry(name)
        except Exception as e:
            record_compensation(success=False)
            log_exception(
                logger,
                e,
                f"Failed to remove index entry of {name}",
                module_name=name,
            )
            return

        record_compensation(success=True)
        log_with_context(
            logger,
            logging.INFO,
            f"Removed index entry of {name}",
            module_name=name,
        )

    @staticmethod
    def _finish(outcome: ProcessingOutcome) -> ProcessingOutcome:
        record_outcome(outcome.value)
        return outcome
