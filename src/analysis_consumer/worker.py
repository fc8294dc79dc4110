"""
Analysis worker consuming module change events.

Consumes ChangeEvent messages from the analysis topic and runs the
ModuleProcessor for each, up to N at a time. Owns the store and index
clients and loads the analysis and scoring services from configuration.
"""

import logging
from typing import Optional

from aiokafka.structs import ConsumerRecord
from pydantic import ValidationError

from analysis_consumer.config import ConsumerConfig
from analysis_consumer.consumer import DEFAULT_CONCURRENCY, AnalysisConsumer
from analysis_consumer.logging import MessageLogContext, get_logger, log_with_context
from analysis_consumer.metrics import record_message_consumed
from analysis_consumer.processor import ModuleProcessor
from analysis_consumer.schemas import ChangeEvent
from analysis_consumer.services import Analyzer, Scorer, load_service
from analysis_consumer.storage import CouchAnalysisStore, ElasticsearchIndex

logger = get_logger(__name__)


class AnalysisWorker:
    """
    Worker that processes module change events from Kafka.

    For each delivery:
    1. Parse the ChangeEvent (undecodable messages are dropped)
    2. Run ModuleProcessor.process()
    3. Return normally to acknowledge, or raise to leave it for redelivery

    Usage:
        config = ConsumerConfig.load()
        worker = AnalysisWorker(config, concurrency=5)
        await worker.start()  # Runs until stopped
        await worker.stop()
    """

    def __init__(
        self,
        config: ConsumerConfig,
        concurrency: int = DEFAULT_CONCURRENCY,
        processor: Optional[ModuleProcessor] = None,
    ):
        """
        Initialize the analysis worker.

        Args:
            config: Consumer configuration
            concurrency: Number of modules to consume concurrently
            processor: Optional pre-built processor (built in start() if None)
        """
        self.config = config
        self.concurrency = concurrency
        self.processor = processor

        self.consumer = AnalysisConsumer(
            config=config,
            message_handler=self._handle_message,
            concurrency=concurrency,
        )

        # Clients (created in start() unless a processor was given)
        self.store: Optional[CouchAnalysisStore] = None
        self.index: Optional[ElasticsearchIndex] = None

        logger.info(
            "Initialized analysis worker",
            extra={
                "consumer_group": config.consumer_group,
                "topic": config.analysis_topic,
                "concurrency": concurrency,
                "blacklisted": len(config.blacklist),
            },
        )

    async def start(self) -> None:
        """
        Start the worker. Runs until stop() is called or an error occurs.

        Raises:
            ValueError: If the analysis or scoring service cannot be loaded
        """
        logger.info("Starting analysis worker")

        if self.processor is None:
            self.processor = await self._build_processor()

        await self.consumer.start()

    async def stop(self) -> None:
        """Stop consuming and close clients. Safe to call multiple times."""
        logger.info("Stopping analysis worker")

        await self.consumer.stop()

        if self.store is not None:
            await self.store.close()
            self.store = None
        if self.index is not None:
            await self.index.close()
            self.index = None

    async def _build_processor(self) -> ModuleProcessor:
        if not self.config.analyzer_factory or not self.config.scorer_factory:
            raise ValueError(
                "Both an analyzer and a scorer factory must be configured "
                "('analyzer'/'scorer' in the config file or ANALYZER_FACTORY/SCORER_FACTORY)"
            )

        self.store = CouchAnalysisStore(
            self.config.couchdb_url,
            self.config.couchdb_database,
            timeout_seconds=self.config.http_timeout_seconds,
        )
        self.index = ElasticsearchIndex(
            self.config.elasticsearch_url,
            self.config.elasticsearch_index,
            timeout_seconds=self.config.http_timeout_seconds,
        )
        await self.store.__aenter__()
        await self.index.__aenter__()

        dependencies = {"store": self.store, "index": self.index, "config": self.config}
        analyzer = load_service(self.config.analyzer_factory, Analyzer, **dependencies)
        scorer = load_service(self.config.scorer_factory, Scorer, **dependencies)

        return ModuleProcessor(self.config, self.store, self.index, analyzer, scorer)

    async def _handle_message(self, message: ConsumerRecord) -> None:
        """
        Process a single change event message.

        Called by AnalysisConsumer for each delivery.

        Args:
            message: ConsumerRecord with a ChangeEvent as value

        Raises:
            Exception: When processing failed and the delivery must be redelivered
        """
        assert self.processor is not None, "Processor not initialized"

        try:
            if message.value is None:
                raise ValueError("message has no value")
            event = ChangeEvent.model_validate_json(message.value)
        except (ValidationError, ValueError) as e:
            # Redelivery cannot fix a malformed message
            record_message_consumed(message.topic, self.config.consumer_group, "invalid")
            log_with_context(
                logger,
                logging.ERROR,
                "Dropping undecodable change event",
                topic=message.topic,
                partition=message.partition,
                offset=message.offset,
                error_message=str(e)[:500],
            )
            return

        with MessageLogContext(module_name=event.name):
            await self.processor.process(event)

    @property
    def is_running(self) -> bool:
        """Check if worker is running and processing messages."""
        return self.consumer.is_running


__all__ = ["AnalysisWorker"]
