"""Staleness check deciding whether a change event still needs analysis."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from analysis_consumer.errors import ErrorKind, classify_kind
from analysis_consumer.logging import get_logger, log_with_context
from analysis_consumer.schemas import AnalysisRecord
from analysis_consumer.services import AnalysisStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class StalenessDecision:
    """Result of a staleness check.

    Attributes:
        skip: True if an analysis started at or after the event was pushed
        revision: Revision of the stored record, passed through to the analyzer
        record: The stored record, if one exists
    """

    skip: bool
    revision: Optional[str] = None
    record: Optional[AnalysisRecord] = None


class StalenessChecker:
    """
    Compares a change event against the module's stored analysis.

    The read-compare sequence is not atomic: two deliveries for the same
    module may both see no record and both proceed. Duplicate analysis
    is wasted work, not a correctness problem.
    """

    def __init__(self, store: AnalysisStore):
        self.store = store

    async def check(self, name: str, pushed_at: datetime) -> StalenessDecision:
        """
        Decide whether the change pushed at ``pushed_at`` is already covered.

        Args:
            name: Module name
            pushed_at: When the change event was pushed to the queue

        Returns:
            StalenessDecision; skip is True when the stored analysis
            started at or after pushed_at. A record without started_at
            never skips

        Raises:
            Exception: Store errors other than "not found"
        """
        record = await self._fetch(name)
        if record is None:
            return StalenessDecision(skip=False)

        if record.started_at is not None and record.started_at >= pushed_at:
            return StalenessDecision(skip=True, revision=record.revision, record=record)

        return StalenessDecision(skip=False, revision=record.revision, record=record)

    async def _fetch(self, name: str) -> Optional[AnalysisRecord]:
        try:
            return await self.store.get(name)
        except Exception as e:
            if classify_kind(e) != ErrorKind.NOT_FOUND:
                raise
            log_with_context(
                logger,
                logging.DEBUG,
                "No stored analysis",
                module_name=name,
            )
            return None
