import threading
import time
from collections import namedtuple

import pytest
from kafka import TopicPartition

FakeRecord = namedtuple("FakeRecord", "topic partition offset value")


def wait_for(cond, timeout=5.0, interval=0.005):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if cond():
            return True
        time.sleep(interval)
    return cond()


class FakeKafkaConsumer:
    def __init__(self, topic, **kwargs):
        self.topic = topic
        self.kwargs = kwargs
        self.pending = []
        self.partitions = {TopicPartition(topic, 0)}
        self.next_offset = 0
        self.seeks = []
        self.commits = 0
        self.closed = False
        self.polls = 0
        self.poll_errors = []
        self.paused = set()
        self.pause_calls = []
        self.resume_calls = []
        self._lock = threading.Lock()

    def feed(self, values, partition=0):
        with self._lock:
            for v in values:
                self.pending.append(FakeRecord(self.topic, partition, self.next_offset, v))
                self.partitions.add(TopicPartition(self.topic, partition))
                self.next_offset += 1

    def poll(self, timeout_ms=0):
        with self._lock:
            self.polls += 1
            if self.poll_errors:
                raise self.poll_errors.pop(0)
            n = self.kwargs.get("max_poll_records", 500)
            batch, rest = [], []
            for r in self.pending:
                if len(batch) < n and TopicPartition(r.topic, r.partition) not in self.paused:
                    batch.append(r)
                else:
                    rest.append(r)
            self.pending = rest
        if not batch:
            time.sleep(0.005)
            return {}
        out = {}
        for r in batch:
            out.setdefault(TopicPartition(r.topic, r.partition), []).append(r)
        return out

    def assignment(self):
        with self._lock:
            return set(self.partitions)

    def pause(self, *partitions):
        self.pause_calls.append(set(partitions))
        self.paused.update(partitions)

    def resume(self, *partitions):
        self.resume_calls.append(set(partitions))
        self.paused.difference_update(partitions)

    def seek(self, tp, offset):
        self.seeks.append((tp, offset))

    def commit(self):
        self.commits += 1

    def close(self, autocommit=True):
        self.closed = True


class FakeKafka:
    """Stands in for the KafkaConsumer class and remembers every instance."""

    def __init__(self, fail_with=None):
        self.instances = []
        self.fail_with = fail_with

    def __call__(self, topic, **kwargs):
        if self.fail_with is not None:
            raise self.fail_with
        consumer = FakeKafkaConsumer(topic, **kwargs)
        self.instances.append(consumer)
        return consumer

    def get(self, topic):
        return next(c for c in self.instances if c.topic == topic)


class FakeTransport:
    def __init__(self, failures=0, gate=None):
        self.calls = []
        self.failures = failures
        self.gate = gate
        self.entered = 0
        self._lock = threading.Lock()

    def perform_request(self, method, url, body=None, **kwargs):
        with self._lock:
            self.entered += 1
            fail = self.failures > 0
            if fail:
                self.failures -= 1
        if self.gate is not None:
            self.gate.wait(5)
        if fail:
            raise ConnectionError("opensearch unavailable")
        with self._lock:
            self.calls.append((method, url, body))
        return {"result": "created"}


class FakeOpenSearch:
    def __init__(self, transport=None):
        self.transport = transport or FakeTransport()
        self.closed = False

    def index(self, index, body, **kwargs):
        return self.transport.perform_request("POST", f"/{index}/_doc", body=body)

    def close(self):
        self.closed = True


class FakeCatalog:
    def __init__(self, topics=()):
        self.topics = list(topics)
        self.fail = False
        self.closed = False

    def list_topics(self):
        if self.fail:
            raise ConnectionError("kafka metadata unavailable")
        return list(self.topics)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_kafka():
    return FakeKafka()


@pytest.fixture
def opensearch():
    return FakeOpenSearch()
