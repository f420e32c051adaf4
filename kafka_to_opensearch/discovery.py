# kafka_to_opensearch/discovery.py
import logging
import re
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Set

from kafka.admin import KafkaAdminClient

from kafka_to_opensearch.config import user_agent
from kafka_to_opensearch.errors import RegistrationError, RegistryClosedError, TopicAlreadyRegistered

log = logging.getLogger(__name__)


@dataclass
class DiscoveryConfig:
    bootstrap_servers: List[str]
    pattern: str
    refresh: float
    handler: Callable[[str], None]


def kafka_catalog(bootstrap_servers: List[str]) -> KafkaAdminClient:
    return KafkaAdminClient(bootstrap_servers=list(bootstrap_servers), client_id=user_agent())


def _topic_names(topics: Iterable) -> List[str]:
    return [t if isinstance(t, str) else t.topic for t in topics]


class TopicDiscoverer:
    """Polls the Kafka cluster for topics and hands every new match to `handler`.

    Discovery only ever grows: a topic that disappears from the cluster is
    not unregistered. A topic is remembered only once its handler succeeded.
    """

    def __init__(self, config: DiscoveryConfig, catalog_factory: Callable = kafka_catalog):
        self.config = config
        self.pattern = re.compile(config.pattern)
        self.catalog_factory = catalog_factory
        self.known: Set[str] = set()
        self.error: Optional[BaseException] = None
        self._catalog = None
        self._stop = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def start(self) -> None:
        log.info(f"Discovering topics matching {self.config.pattern!r} every {self.config.refresh}s")
        while not self._stop.is_set():
            self.poll()
            if self._stop.wait(self.config.refresh):
                break
        self._close_catalog()
        log.info("Topic discovery stopped")

    def signal(self, signum=None, frame=None) -> None:
        self._stop.set()

    def matches(self, name: str) -> bool:
        if name.startswith("__"):
            return False
        return self.pattern.fullmatch(name) is not None

    def poll(self) -> None:
        try:
            if self._catalog is None:
                self._catalog = self.catalog_factory(self.config.bootstrap_servers)
            names = _topic_names(self._catalog.list_topics())
        except Exception as e:
            log.warning(f"Topic lookup failed, retrying in {self.config.refresh}s: {e}", exc_info=True)
            self._close_catalog()
            return

        for name in sorted(n for n in names if n not in self.known and self.matches(n)):
            if self._stop.is_set():
                return
            try:
                self.config.handler(name)
            except RegistryClosedError:
                log.info(f"Registry closed, not registering {name}")
                self._stop.set()
                return
            except TopicAlreadyRegistered:
                log.debug(f"Topic {name} already registered")
            except RegistrationError as e:
                if not e.retryable:
                    self._fail(e)
                    return
                log.warning(f"Registering {name} failed, will retry: {e}")
                continue
            except Exception as e:
                self._fail(e)
                return
            self.known.add(name)

    def _fail(self, e: BaseException) -> None:
        log.error(f"Topic registration failed, stopping discovery: {e}")
        self.error = e
        self._stop.set()

    def _close_catalog(self) -> None:
        if self._catalog is None:
            return
        try:
            self._catalog.close()
        except Exception as e:
            log.debug(f"Error closing catalog client: {e}")
        self._catalog = None
