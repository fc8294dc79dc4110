"""
Interfaces of the services the consumer depends on.

The analysis and scoring implementations live outside this package and
are loaded from dotted paths named in configuration. The store and the
index have concrete adapters in analysis_consumer.storage.
"""

import importlib
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Protocol, Tuple, runtime_checkable

from analysis_consumer.logging import get_logger, log_with_context
from analysis_consumer.schemas import AnalysisRecord

logger = get_logger(__name__)


@dataclass(frozen=True)
class AnalysisOptions:
    """Options passed to the analysis service for one module.

    Attributes:
        revision: Known store revision of the module's analysis, if any
        github_tokens: Pool of API credentials the analyzer may rotate through
        git_ref_overrides: Module name -> git ref to analyze instead of the default
        wait_rate_limit: Wait for rate limits to reset instead of failing
    """

    revision: Optional[str] = None
    github_tokens: Tuple[str, ...] = ()
    git_ref_overrides: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({})
    )
    wait_rate_limit: bool = True


@runtime_checkable
class AnalysisStore(Protocol):
    async def get(self, name: str) -> AnalysisRecord:
        """Return the stored analysis record, raising a NOT_FOUND error if absent."""
        ...


@runtime_checkable
class SearchIndex(Protocol):
    async def upsert_score(self, name: str, document: Mapping[str, Any]) -> None:
        ...

    async def remove_entry(self, name: str) -> None:
        ...


@runtime_checkable
class Analyzer(Protocol):
    async def analyze(self, name: str, options: AnalysisOptions) -> Any:
        ...


@runtime_checkable
class Scorer(Protocol):
    async def score(self, analysis: Any) -> Any:
        ...


def import_object(path: str) -> Any:
    """
    Import an object from a ``package.module:attribute`` path.

    A path without a colon is split on its last dot.

    Raises:
        ValueError: If the path is malformed or cannot be imported
    """
    if ":" in path:
        module_path, _, attr = path.partition(":")
    else:
        module_path, _, attr = path.rpartition(".")

    if not module_path or not attr:
        raise ValueError(f"Invalid import path: {path!r}")

    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise ValueError(f"Cannot import module {module_path!r} from {path!r}: {e}") from e

    try:
        return getattr(module, attr)
    except AttributeError as e:
        raise ValueError(f"Module {module_path!r} has no attribute {attr!r}") from e


def load_service(path: str, protocol: type, **dependencies: Any) -> Any:
    """
    Build a service from a factory named by a dotted path.

    The factory is called with the given dependencies as keyword
    arguments and must return an object implementing ``protocol``.

    Args:
        path: Dotted path of the factory (e.g. "npms.analyze:build_analyzer")
        protocol: Protocol the built service must satisfy
        **dependencies: Store, index and config handed to the factory

    Raises:
        ValueError: If the factory cannot be loaded or returns the wrong type
    """
    factory: Callable[..., Any] = import_object(path)
    if not callable(factory):
        raise ValueError(f"{path!r} is not callable")

    service = factory(**dependencies)
    if not isinstance(service, protocol):
        raise ValueError(
            f"Factory {path!r} returned {type(service).__name__}, "
            f"which does not implement {protocol.__name__}"
        )

    log_with_context(
        logger,
        logging.INFO,
        "Loaded service",
        service=path,
        protocol=protocol.__name__,
    )
    return service
