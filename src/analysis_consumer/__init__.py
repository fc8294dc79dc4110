"""
Analysis consumer.

Consumes module change events from Kafka and re-analyzes each module:
blacklist and staleness checks, analysis, best-effort scoring, and
classification of analysis failures into acknowledge, compensate or
redeliver.
"""

from analysis_consumer.errors import (
    AnalysisError,
    ClassifiedError,
    ErrorKind,
    RecoveryAction,
    classify,
)
from analysis_consumer.processor import ModuleProcessor, ProcessingOutcome
from analysis_consumer.schemas import AnalysisRecord, ChangeEvent

__version__ = "0.1.0"

__all__ = [
    "AnalysisError",
    "AnalysisRecord",
    "ChangeEvent",
    "ClassifiedError",
    "ErrorKind",
    "ModuleProcessor",
    "ProcessingOutcome",
    "RecoveryAction",
    "classify",
]
