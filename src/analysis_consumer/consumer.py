"""
Kafka consumer with bounded concurrency and outcome-gated commits.

Provides async Kafka consumer functionality with:
- Up to N deliveries processed concurrently
- Manual offset commit for at-least-once processing
- Commits gated on handler outcome: failed deliveries are never
  acknowledged and are redelivered by seeking back to them
- Graceful shutdown that lets in-flight deliveries finish
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, Set

from aiokafka import AIOKafkaConsumer
from aiokafka.structs import ConsumerRecord, TopicPartition

from analysis_consumer.config import ConsumerConfig
from analysis_consumer.logging import (
    MessageLogContext,
    get_logger,
    log_exception,
    log_with_context,
)
from analysis_consumer.metrics import (
    deliveries_in_flight,
    message_processing_duration_seconds,
    record_message_consumed,
)
from analysis_consumer.offsets import OffsetTracker

logger = get_logger(__name__)

DEFAULT_CONCURRENCY = 5


class AnalysisConsumer:
    """
    Async Kafka consumer running a bounded pool of message handlers.

    A delivery is acknowledged (its offset becomes committable) only when
    the handler returns. When the handler raises, the offset stays
    pending, commits for that partition stop short of it, and the
    partition is rewound so the broker delivers it again.

    Usage:
        >>> config = ConsumerConfig.load()
        >>> async def handle_message(record: ConsumerRecord):
        ...     print(f"Received: {record.value}")
        >>>
        >>> consumer = AnalysisConsumer(
        ...     config=config,
        ...     message_handler=handle_message,
        ...     concurrency=5,
        ... )
        >>> await consumer.start()
        >>> # Consumer runs until stopped
        >>> await consumer.stop()
    """

    def __init__(
        self,
        config: ConsumerConfig,
        message_handler: Callable[[ConsumerRecord], Awaitable[None]],
        concurrency: int = DEFAULT_CONCURRENCY,
        max_batches: Optional[int] = None,
        client: Optional[AIOKafkaConsumer] = None,
    ):
        """
        Initialize the consumer.

        Args:
            config: Consumer configuration
            message_handler: Async callback processing one delivery
            concurrency: Maximum number of handlers running at once
            max_batches: Optional limit on number of polls (None = unlimited).
                        Useful for testing. A batch is one getmany() result.
            client: Optional pre-built aiokafka consumer (created in start() if None)
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.config = config
        self.message_handler = message_handler
        self.concurrency = concurrency
        self.topic = config.analysis_topic
        self.group_id = config.consumer_group

        self._consumer: Optional[AIOKafkaConsumer] = client
        self._running = False

        # Concurrency control
        self._semaphore = asyncio.Semaphore(concurrency)
        self._in_flight: Set[asyncio.Task] = set()

        # Acknowledgement bookkeeping
        self._offsets = OffsetTracker()
        self._rewinds: Dict[TopicPartition, int] = {}
        self._commit_lock = asyncio.Lock()

        # Batch limiting for testing
        self.max_batches = max_batches
        self._batch_count = 0

        log_with_context(
            logger,
            logging.INFO,
            "Initialized analysis consumer",
            topic=self.topic,
            consumer_group=self.group_id,
            concurrency=concurrency,
        )

    def _create_client(self) -> AIOKafkaConsumer:
        consumer_config = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "group_id": self.group_id,
            "enable_auto_commit": False,
            "auto_offset_reset": self.config.auto_offset_reset,
            "max_poll_interval_ms": self.config.max_poll_interval_ms,
            "session_timeout_ms": self.config.session_timeout_ms,
        }

        if self.config.security_protocol != "PLAINTEXT":
            consumer_config["security_protocol"] = self.config.security_protocol
            consumer_config["sasl_mechanism"] = self.config.sasl_mechanism
            if self.config.sasl_mechanism == "PLAIN":
                consumer_config["sasl_plain_username"] = self.config.sasl_plain_username
                consumer_config["sasl_plain_password"] = self.config.sasl_plain_password

        return AIOKafkaConsumer(self.topic, **consumer_config)

    async def start(self) -> None:
        """
        Start the consumer and process deliveries until stopped.

        Raises:
            Exception: If the consumer fails to start or connect
        """
        if self._running:
            logger.warning("Consumer already running, ignoring duplicate start call")
            return

        log_with_context(
            logger,
            logging.INFO,
            "Starting analysis consumer",
            topic=self.topic,
            consumer_group=self.group_id,
            concurrency=self.concurrency,
        )

        if self._consumer is None:
            self._consumer = self._create_client()

        await self._consumer.start()
        self._running = True

        try:
            await self._consume_loop()
        except asyncio.CancelledError:
            logger.info("Consumer loop cancelled, shutting down")
            raise
        except Exception as e:
            log_exception(logger, e, "Consumer loop terminated with error")
            raise
        finally:
            self._running = False
            await self._drain()

    async def stop(self) -> None:
        """
        Stop the consumer.

        Waits for in-flight deliveries to complete, commits what can be
        committed and closes the connection. Safe to call multiple times.
        """
        if self._consumer is None:
            logger.debug("Consumer not started or already stopped")
            return

        logger.info("Stopping analysis consumer")
        self._running = False

        try:
            await self._drain()
            await self._commit()
            await self._consumer.stop()
            logger.info("Analysis consumer stopped successfully")
        except Exception as e:
            log_exception(logger, e, "Error stopping analysis consumer")
            raise
        finally:
            self._consumer = None

    async def _consume_loop(self) -> None:
        """
        Main consumption loop.

        Waits for a free slot before dispatching each delivery, so at most
        ``concurrency`` handlers run at once. If max_batches is set, exits
        after that many polls.
        """
        while self._running and self._consumer is not None:
            try:
                if self.max_batches is not None and self._batch_count >= self.max_batches:
                    log_with_context(
                        logger,
                        logging.INFO,
                        "Reached max_batches limit, stopping consumer",
                        batches_processed=self._batch_count,
                    )
                    return

                await self._apply_rewinds()

                data = await self._consumer.getmany(
                    timeout_ms=1000, max_records=self.concurrency
                )
                self._batch_count += 1

                for messages in data.values():
                    for message in messages:
                        await self._semaphore.acquire()
                        if not self._running:
                            self._semaphore.release()
                            logger.info("Consumer stopped, breaking message loop")
                            return
                        self._dispatch(message)

            except asyncio.CancelledError:
                logger.info("Consumption loop cancelled")
                raise
            except Exception as e:
                log_exception(logger, e, "Error in consumption loop")
                await asyncio.sleep(1)

    def _dispatch(self, message: ConsumerRecord) -> None:
        tp = TopicPartition(message.topic, message.partition)
        self._offsets.track(tp, message.offset)

        task = asyncio.create_task(self._process_message(message, tp))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _process_message(self, message: ConsumerRecord, tp: TopicPartition) -> None:
        """
        Run the handler for one delivery and record its outcome.

        The semaphore slot taken by the loop is released here.
        """
        start_time = time.perf_counter()
        deliveries_in_flight.labels(consumer_group=self.group_id).inc()

        try:
            with MessageLogContext(
                topic=message.topic,
                partition=message.partition,
                offset=message.offset,
                consumer_group=self.group_id,
            ):
                try:
                    await self.message_handler(message)
                except Exception as e:
                    self._handle_processing_error(message, tp, e, time.perf_counter() - start_time)
                else:
                    self._offsets.complete(tp, message.offset)
                    record_message_consumed(message.topic, self.group_id, "acked")
                    log_with_context(
                        logger,
                        logging.DEBUG,
                        "Message processed successfully",
                        duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                    )
                    await self._commit()
        finally:
            message_processing_duration_seconds.labels(
                topic=message.topic, consumer_group=self.group_id
            ).observe(time.perf_counter() - start_time)
            deliveries_in_flight.labels(consumer_group=self.group_id).dec()
            self._semaphore.release()

    def _handle_processing_error(
        self,
        message: ConsumerRecord,
        tp: TopicPartition,
        error: Exception,
        duration: float,
    ) -> None:
        """
        Leave a failed delivery unacknowledged and schedule its redelivery.

        The error is not re-raised: the loop keeps processing other
        deliveries while this one waits to be delivered again.
        """
        self._offsets.fail(tp, message.offset)
        current = self._rewinds.get(tp)
        if current is None or message.offset < current:
            self._rewinds[tp] = message.offset

        record_message_consumed(message.topic, self.group_id, "redelivered")
        log_exception(
            logger,
            error,
            "Error processing message - will be redelivered",
            level=logging.WARNING,
            duration_ms=round(duration * 1000, 2),
        )

    async def _apply_rewinds(self) -> None:
        """Seek partitions back to their earliest failed delivery."""
        if not self._rewinds or self._consumer is None:
            return

        rewinds, self._rewinds = self._rewinds, {}
        await asyncio.sleep(self.config.redelivery_backoff_ms / 1000)

        assigned = self._consumer.assignment()
        for tp, offset in rewinds.items():
            if tp not in assigned:
                continue
            self._consumer.seek(tp, offset)
            log_with_context(
                logger,
                logging.INFO,
                "Rewound partition for redelivery",
                topic=tp.topic,
                partition=tp.partition,
                offset=offset,
            )

    async def _commit(self) -> None:
        """Commit the highest acknowledged position of each assigned partition."""
        async with self._commit_lock:
            if self._consumer is None:
                return

            assigned = set(self._consumer.assignment())
            revoked = self._offsets.partitions() - assigned
            if revoked:
                self._offsets.forget(revoked)

            offsets = self._offsets.committable()
            if not offsets:
                return

            try:
                await self._consumer.commit(offsets)
            except Exception as e:
                # Left committable; the next commit retries it
                log_exception(
                    logger,
                    e,
                    "Failed to commit offsets",
                    level=logging.WARNING,
                    offsets={f"{tp.topic}:{tp.partition}": o for tp, o in offsets.items()},
                )
                return

            self._offsets.mark_committed(offsets)

    async def _drain(self) -> None:
        """Wait for all in-flight deliveries to finish."""
        if not self._in_flight:
            return

        log_with_context(
            logger,
            logging.INFO,
            "Waiting for in-flight deliveries to complete",
            in_flight=len(self._in_flight),
        )
        await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def is_running(self) -> bool:
        """Check if consumer is running and processing messages."""
        return self._running and self._consumer is not None


__all__ = ["AnalysisConsumer", "DEFAULT_CONCURRENCY"]
