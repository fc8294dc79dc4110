"""Clients for the analysis store and the search index."""

from analysis_consumer.storage.couchdb import CouchAnalysisStore
from analysis_consumer.storage.elasticsearch import ElasticsearchIndex

__all__ = [
    "CouchAnalysisStore",
    "ElasticsearchIndex",
]
