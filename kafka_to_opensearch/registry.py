# kafka_to_opensearch/registry.py
import logging
import threading
from typing import Callable, Dict, List, Optional

from kafka import KafkaConsumer

from kafka_to_opensearch.config import BridgeConfig, user_agent
from kafka_to_opensearch.consumer import ConsumerConfig, TopicConsumer
from kafka_to_opensearch.errors import (
    ConsumerConnectError,
    PublisherSetupError,
    RegistrationError,
    RegistryClosedError,
    TopicAlreadyRegistered,
)
from kafka_to_opensearch.publisher import OpenSearchPublisher

log = logging.getLogger(__name__)


def default_publisher_factory(cfg: BridgeConfig) -> OpenSearchPublisher:
    return OpenSearchPublisher(
        cfg.index_name,
        cfg.index_type,
        cfg.status_every,
        cfg.opensearch,
        timeout=cfg.http_timeout,
    )


class ConsumerRegistry:
    """Owns one consumer + publisher pair per registered topic.

    Setup of a topic runs outside the lock; only adding the finished pair
    to the registry, and stopping everything, happen under it. Once stop()
    has been called no topic can be registered again.
    """

    def __init__(
        self,
        config: BridgeConfig,
        publisher_factory: Callable[[BridgeConfig], OpenSearchPublisher] = default_publisher_factory,
        consumer_factory=KafkaConsumer,
    ):
        self.config = config
        self.publisher_factory = publisher_factory
        self.consumer_factory = consumer_factory
        self._lock = threading.Lock()
        self._consumers: Dict[str, TopicConsumer] = {}
        self._publishers: Dict[str, OpenSearchPublisher] = {}
        self._closed = False

    @property
    def topics(self) -> List[str]:
        with self._lock:
            return list(self._consumers)

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def consumer_config(self) -> ConsumerConfig:
        return ConsumerConfig(
            user_agent=user_agent(),
            max_in_flight=self.config.max_in_flight,
            options=dict(self.config.consumer_opts),
            max_attempts=self.config.max_attempts,
            requeue_delay=self.config.requeue_delay,
            max_backoff=self.config.max_backoff,
        )

    def register_topic(self, name: str) -> None:
        with self._lock:
            if self._closed:
                raise RegistryClosedError(name)
            if name in self._consumers:
                raise TopicAlreadyRegistered(name)
        log.info(f"Registering topic {name}")

        try:
            publisher = self.publisher_factory(self.config)
        except Exception as e:
            raise PublisherSetupError(name, f"opensearch client setup failed: {e}") from e

        consumer = TopicConsumer(name, self.config.group, self.consumer_config(), self.consumer_factory)
        consumer.add_concurrent_handlers(publisher.handle_message, self.config.concurrency)
        try:
            consumer.connect(self.config.bootstrap_servers)
        except ConsumerConnectError:
            publisher.close()
            raise

        with self._lock:
            refusal: Optional[RegistrationError] = None
            if self._closed:
                refusal = RegistryClosedError(name)
            elif name in self._consumers:
                refusal = TopicAlreadyRegistered(name)
            else:
                self._consumers[name] = consumer
                self._publishers[name] = publisher
                consumer.start()
        if refusal is not None:
            consumer.stop()
            publisher.close()
            raise refusal

    def stop(self) -> None:
        """Stop every consumer and wait until all of them have drained.

        Safe to call more than once; later calls just wait for the same
        consumers.
        """
        with self._lock:
            first = not self._closed
            self._closed = True
            consumers = list(self._consumers.values())
            publishers = list(self._publishers.values())
            if first:
                log.info(f"Stopping {len(consumers)} consumers")
            for consumer in consumers:
                consumer.stop()

        for consumer in consumers:
            consumer.join()
        if first:
            for publisher in publishers:
                publisher.close()
            log.info("All consumers stopped")

    def signal(self, signum=None, frame=None) -> None:
        self.stop()
