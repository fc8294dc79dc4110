"""CouchDB-backed analysis store."""

import logging
from urllib.parse import quote

from pydantic import ValidationError

from analysis_consumer.errors import analysis_not_found
from analysis_consumer.logging import get_logger, log_with_context
from analysis_consumer.schemas import AnalysisRecord
from analysis_consumer.storage.http import JsonHttpClient, http_error

logger = get_logger(__name__)


def analysis_doc_id(name: str) -> str:
    """Document id of a module's analysis."""
    return f"module!{name}"


class CouchAnalysisStore(JsonHttpClient):
    """
    Reads analysis records from a CouchDB database.

    Usage:
        async with CouchAnalysisStore("http://couchdb:5984", "npms") as store:
            record = await store.get("left-pad")
    """

    def __init__(self, base_url: str, database: str, timeout_seconds: float = 15.0):
        super().__init__(base_url, timeout_seconds=timeout_seconds)
        self.database = database

    async def get(self, name: str) -> AnalysisRecord:
        """
        Fetch the analysis record of a module.

        A stored document without a valid startedAt yields a record with
        no started_at, so the module is analyzed again against its revision.

        Raises:
            AnalysisError: NOT_FOUND (code ANALYSIS_NOT_FOUND) when no
                analysis is stored, OTHER for any other failure
        """
        path = f"{quote(self.database, safe='')}/{quote(analysis_doc_id(name), safe='')}"
        status, body = await self._request("GET", path)

        if status == 404:
            raise analysis_not_found(name)
        if status != 200 or not isinstance(body, dict):
            raise http_error(status, "GET", path, body)

        try:
            record = AnalysisRecord.model_validate({**body, "name": name})
        except ValidationError:
            revision = body.get("_rev")
            record = AnalysisRecord(
                name=name, revision=revision if isinstance(revision, str) else None
            )

        if record.started_at is None:
            log_with_context(
                logger,
                logging.WARNING,
                f"Stored analysis of {name} has no valid startedAt, analyzing again",
                module_name=name,
            )
        return record
