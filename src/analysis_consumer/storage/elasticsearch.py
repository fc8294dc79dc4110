"""Elasticsearch-backed search index of module scores."""

import logging
from typing import Any, Mapping
from urllib.parse import quote

from analysis_consumer.logging import get_logger, log_with_context
from analysis_consumer.storage.http import JsonHttpClient, http_error

logger = get_logger(__name__)


class ElasticsearchIndex(JsonHttpClient):
    """
    Writes and removes module score documents in an Elasticsearch index.

    Usage:
        async with ElasticsearchIndex("http://es:9200", "npms-current") as index:
            await index.remove_entry("ghost-pkg")
    """

    def __init__(self, base_url: str, index: str, timeout_seconds: float = 15.0):
        super().__init__(base_url, timeout_seconds=timeout_seconds)
        self.index = index

    def _doc_path(self, name: str) -> str:
        return f"{quote(self.index, safe='')}/_doc/{quote(name, safe='')}"

    async def upsert_score(self, name: str, document: Mapping[str, Any]) -> None:
        """Create or replace the score document of a module."""
        path = self._doc_path(name)
        status, body = await self._request("PUT", path, json_body=dict(document))
        if status not in (200, 201):
            raise http_error(status, "PUT", path, body)

    async def remove_entry(self, name: str) -> None:
        """Remove the score document of a module. A missing document is not an error."""
        path = self._doc_path(name)
        status, body = await self._request("DELETE", path)

        if status == 404:
            log_with_context(
                logger,
                logging.DEBUG,
                "Index entry already absent",
                module_name=name,
            )
            return
        if status != 200:
            raise http_error(status, "DELETE", path, body)
