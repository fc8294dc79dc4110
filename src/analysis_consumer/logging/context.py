"""Context variables injected into every log line."""

from contextvars import ContextVar
from typing import Any, Dict, Optional

_domain: ContextVar[Optional[str]] = ContextVar("domain", default=None)
_stage: ContextVar[Optional[str]] = ContextVar("stage", default=None)
_worker_id: ContextVar[Optional[str]] = ContextVar("worker_id", default=None)
_message: ContextVar[Optional[Dict[str, Any]]] = ContextVar("message", default=None)


def set_log_context(
    domain: Optional[str] = None,
    stage: Optional[str] = None,
    worker_id: Optional[str] = None,
) -> None:
    """Set process-level log context. Only provided values are changed."""
    if domain is not None:
        _domain.set(domain)
    if stage is not None:
        _stage.set(stage)
    if worker_id is not None:
        _worker_id.set(worker_id)


def get_log_context() -> Dict[str, Any]:
    """Return the current log context, including message context if any."""
    return {
        "domain": _domain.get(),
        "stage": _stage.get(),
        "worker_id": _worker_id.get(),
        "message": _message.get(),
    }


def clear_log_context() -> None:
    _domain.set(None)
    _stage.set(None)
    _worker_id.set(None)
    _message.set(None)


class MessageLogContext:
    """
    Context manager adding queue delivery details to all logs in scope.

    Each asyncio task gets its own copy of the context, so concurrent
    deliveries do not leak fields into each other's log lines.

    Usage:
        with MessageLogContext(topic="t", partition=0, offset=42, module_name="left-pad"):
            logger.info("Processing")  # carries topic/partition/offset/module_name
    """

    def __init__(self, **fields: Any):
        self._fields = {k: v for k, v in fields.items() if v is not None}
        self._token = None

    def __enter__(self) -> "MessageLogContext":
        current = _message.get() or {}
        self._token = _message.set({**current, **self._fields})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _message.reset(self._token)
            self._token = None
