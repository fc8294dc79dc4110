"""Blacklist lookup for modules that must never be analyzed."""

from types import MappingProxyType
from typing import Mapping, Optional


class BlacklistFilter:
    """
    Read-only lookup of blacklisted module names.

    Usage:
        >>> blacklist = BlacklistFilter({"evil-pkg": "Crashes the analyzer"})
        >>> blacklist.reason_for("evil-pkg")
        'Crashes the analyzer'
        >>> blacklist.reason_for("left-pad") is None
        True
    """

    def __init__(self, entries: Optional[Mapping[str, str]] = None):
        # An entry without a reason does not blacklist the module
        self._entries: Mapping[str, str] = MappingProxyType(
            {name: reason for name, reason in (entries or {}).items() if reason}
        )

    def reason_for(self, name: str) -> Optional[str]:
        """Return the blacklist reason for a module, or None if allowed."""
        return self._entries.get(name)

    def __len__(self) -> int:
        return len(self._entries)
