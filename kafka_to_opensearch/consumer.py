# kafka_to_opensearch/consumer.py
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from kafka import KafkaConsumer, TopicPartition
from kafka.errors import KafkaError

from kafka_to_opensearch.errors import ConsumerConnectError

log = logging.getLogger(__name__)

Handler = Callable[[bytes], None]

POLL_ERROR_BACKOFF = 0.1


@dataclass
class ConsumerConfig:
    user_agent: str
    max_in_flight: int = 200
    options: Dict[str, Any] = field(default_factory=dict)
    max_attempts: int = 5
    requeue_delay: float = 1.0
    max_backoff: float = 60.0
    poll_timeout_ms: int = 1000


class TopicConsumer:
    """Consumes one topic for one group and fans records out to N handler threads.

    At most `max_in_flight` records are unacknowledged at any time. Offsets
    are committed only after every record of a poll batch was acknowledged,
    so anything unfinished at shutdown is delivered again later.
    """

    def __init__(self, topic: str, group: str, config: ConsumerConfig, consumer_factory=KafkaConsumer):
        self.topic = topic
        self.group = group
        self.config = config
        self.consumer_factory = consumer_factory
        self.stopped = threading.Event()

        self._handler: Optional[Handler] = None
        self._concurrency = 1
        self._consumer = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._thread: Optional[threading.Thread] = None
        self._stopping = threading.Event()
        self._credits = threading.BoundedSemaphore(config.max_in_flight)
        self._in_flight = 0
        self._in_flight_lock = threading.Lock()

    @property
    def in_flight(self) -> int:
        with self._in_flight_lock:
            return self._in_flight

    def add_concurrent_handlers(self, handler: Handler, concurrency: int) -> None:
        if self._thread is not None:
            raise RuntimeError("handlers must be added before start()")
        self._handler = handler
        self._concurrency = concurrency

    def connect(self, bootstrap_servers: List[str]) -> None:
        kwargs: Dict[str, Any] = {"client_id": self.config.user_agent, "auto_offset_reset": "earliest"}
        kwargs.update(self.config.options)
        max_poll = min(int(kwargs.get("max_poll_records", self.config.max_in_flight)), self.config.max_in_flight)
        kwargs.update(
            bootstrap_servers=list(bootstrap_servers),
            group_id=self.group,
            enable_auto_commit=False,
            max_poll_records=max_poll,
        )
        try:
            self._consumer = self.consumer_factory(self.topic, **kwargs)
        except (KafkaError, OSError, ValueError, TypeError) as e:
            raise ConsumerConnectError(self.topic, f"kafka connect failed: {e}") from e
        log.info(f"Connected consumer topic={self.topic} group={self.group} to {bootstrap_servers}")

    def start(self) -> None:
        if self._handler is None:
            raise RuntimeError(f"no handler for topic {self.topic}")
        if self._consumer is None:
            raise RuntimeError(f"consumer for topic {self.topic} is not connected")
        self._executor = ThreadPoolExecutor(
            max_workers=self._concurrency, thread_name_prefix=f"handler-{self.topic}"
        )
        self._thread = threading.Thread(target=self._run, name=f"consumer-{self.topic}", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Ask the consumer to stop; in-flight handler calls are allowed to finish."""
        if self._stopping.is_set():
            return
        log.info(f"Stopping consumer topic={self.topic}")
        self._stopping.set()
        if self._thread is None:
            self._shutdown()

    def join(self, timeout: Optional[float] = None) -> bool:
        return self.stopped.wait(timeout)

    def _run(self) -> None:
        failures = 0
        try:
            while not self._stopping.is_set():
                try:
                    batch = self._consumer.poll(timeout_ms=self.config.poll_timeout_ms)
                    records = [r for recs in batch.values() for r in recs]
                    if records:
                        self._process(records)
                    failures = 0
                except Exception as e:
                    failures += 1
                    delay = min(max(self.config.requeue_delay, POLL_ERROR_BACKOFF) * 2 ** (failures - 1),
                                self.config.max_backoff)
                    log.warning(f"Consumer loop for topic {self.topic} failed, retrying in {delay:.1f}s: {e}",
                                exc_info=True)
                    self._stopping.wait(delay)
        finally:
            self._shutdown()

    def _process(self, records: list) -> None:
        futures = []
        for record in records:
            self._credits.acquire()
            with self._in_flight_lock:
                self._in_flight += 1
            futures.append((record, self._executor.submit(self._deliver, record)))
        self._wait_polling([f for _, f in futures])

        pending: Dict[Any, int] = {}
        for record, fut in futures:
            if fut.result():
                continue
            tp = _partition_of(record)
            pending[tp] = min(pending.get(tp, record.offset), record.offset)
        self._rewind(pending)
        try:
            self._consumer.commit()
        except KafkaError as e:
            log.warning(f"Offset commit failed for topic {self.topic}: {e}")

    def _wait_polling(self, futures: list) -> None:
        """Wait for a batch while still polling, so a slow batch keeps its group membership.

        Partitions are paused while waiting; anything a poll returns anyway
        (a partition assigned during the wait) is rewound for the next batch.
        """
        paused: Set[TopicPartition] = set()
        interval = max(self.config.poll_timeout_ms / 1000.0, 0.01)
        try:
            while True:
                _, not_done = wait(futures, timeout=interval)
                if not not_done:
                    return
                futures = list(not_done)
                try:
                    unpaused = set(self._consumer.assignment()) - paused
                    if unpaused:
                        self._consumer.pause(*unpaused)
                        paused |= unpaused
                    stray: Dict[Any, int] = {}
                    for tp, recs in self._consumer.poll(timeout_ms=0).items():
                        stray[tp] = min(r.offset for r in recs)
                    self._rewind(stray)
                except Exception as e:
                    # the batch must finish before anything is committed, so keep waiting
                    log.warning(f"Poll while waiting on batch for topic {self.topic} failed: {e}")
        finally:
            if paused:
                try:
                    still_assigned = paused & set(self._consumer.assignment())
                    if still_assigned:
                        self._consumer.resume(*still_assigned)
                except Exception as e:
                    log.warning(f"Could not resume partitions for topic {self.topic}: {e}")

    def _rewind(self, offsets: Dict[Any, int]) -> None:
        for tp, offset in offsets.items():
            try:
                # unfinished records are fetched (or committed) again from here
                self._consumer.seek(tp, offset)
            except (AssertionError, KafkaError) as e:
                # partition was revoked; its new owner resumes from the last commit
                log.warning(f"Could not rewind {tp.topic}[{tp.partition}] to {offset}: {e!r}")

    def _deliver(self, record) -> bool:
        """Run the handler until it succeeds or gives up. False means unfinished."""
        attempt = 0
        try:
            while True:
                attempt += 1
                try:
                    self._handler(record.value)
                    return True
                except Exception as e:
                    if self.config.max_attempts and attempt >= self.config.max_attempts:
                        log.error(
                            f"Giving up on {self.topic}[{record.partition}]@{record.offset} "
                            f"after {attempt} attempts: {e}"
                        )
                        return True
                    delay = min(self.config.requeue_delay * 2 ** (attempt - 1), self.config.max_backoff)
                    log.warning(
                        f"Handler failed for {self.topic}[{record.partition}]@{record.offset} "
                        f"attempt {attempt}, requeue in {delay:.1f}s: {e}"
                    )
                    if self._stopping.wait(delay):
                        return False
        finally:
            with self._in_flight_lock:
                self._in_flight -= 1
            self._credits.release()

    def _shutdown(self) -> None:
        try:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
            if self._consumer is not None:
                self._consumer.close(autocommit=False)
        except Exception:
            log.exception(f"Error closing consumer for topic {self.topic}")
        finally:
            log.info(f"Consumer topic={self.topic} stopped")
            self.stopped.set()


def _partition_of(record) -> TopicPartition:
    return TopicPartition(record.topic, record.partition)
