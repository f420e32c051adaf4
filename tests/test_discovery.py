import threading

from kafka_to_opensearch.discovery import DiscoveryConfig, TopicDiscoverer
from kafka_to_opensearch.errors import (
    ConsumerConnectError,
    RegistrationError,
    RegistryClosedError,
    TopicAlreadyRegistered,
)

from tests.conftest import FakeCatalog, wait_for


def make_discoverer(catalog, handler, pattern=".*", refresh=60):
    cfg = DiscoveryConfig(bootstrap_servers=["kafka:9092"], pattern=pattern, refresh=refresh, handler=handler)
    return TopicDiscoverer(cfg, catalog_factory=lambda servers: catalog)


def test_each_matching_topic_is_registered_once():
    catalog = FakeCatalog(["events", "logs"])
    registered = []
    d = make_discoverer(catalog, registered.append)

    d.poll()
    catalog.topics.append("metrics")
    d.poll()
    d.poll()

    assert registered == ["events", "logs", "metrics"]


def test_non_matching_topics_are_never_registered():
    catalog = FakeCatalog(["app.logs", "billing", "__consumer_offsets"])
    registered = []
    d = make_discoverer(catalog, registered.append, pattern=r"app\..*")

    d.poll()
    catalog.topics.append("app.audit")
    catalog.topics.append("app")
    d.poll()

    assert registered == ["app.logs", "app.audit"]


def test_internal_topics_are_skipped_even_for_catch_all():
    catalog = FakeCatalog(["__consumer_offsets", "events"])
    registered = []
    make_discoverer(catalog, registered.append).poll()
    assert registered == ["events"]


def test_vanished_topics_are_not_forgotten():
    catalog = FakeCatalog(["events"])
    registered = []
    d = make_discoverer(catalog, registered.append)

    d.poll()
    catalog.topics = []
    d.poll()
    catalog.topics = ["events"]
    d.poll()

    assert registered == ["events"]
    assert d.known == {"events"}


def test_catalog_failure_is_retried_next_tick():
    catalog = FakeCatalog(["events"])
    catalog.fail = True
    registered = []
    d = make_discoverer(catalog, registered.append)

    d.poll()
    assert registered == []
    assert catalog.closed
    assert not d.stopped

    catalog.fail = False
    d.poll()
    assert registered == ["events"]


def test_retryable_registration_failure_is_retried():
    calls = []

    def handler(name):
        calls.append(name)
        if len(calls) == 1:
            raise ConsumerConnectError(name, "no brokers")

    d = make_discoverer(FakeCatalog(["events"]), handler)
    d.poll()
    assert d.known == set()
    d.poll()

    assert calls == ["events", "events"]
    assert d.known == {"events"}
    assert d.error is None


def test_fatal_registration_failure_stops_discovery():
    calls = []

    def handler(name):
        calls.append(name)
        raise RegistrationError(name, "bad index template")

    d = make_discoverer(FakeCatalog(["a", "b"]), handler)
    d.poll()

    assert calls == ["a"]
    assert d.stopped
    assert isinstance(d.error, RegistrationError)


def test_already_registered_counts_as_known():
    def handler(name):
        raise TopicAlreadyRegistered(name)

    d = make_discoverer(FakeCatalog(["events"]), handler)
    d.poll()
    assert d.known == {"events"}
    assert d.error is None


def test_closed_registry_stops_discovery():
    def handler(name):
        raise RegistryClosedError(name)

    d = make_discoverer(FakeCatalog(["events"]), handler)
    d.poll()
    assert d.stopped
    assert d.error is None


def test_signal_stops_poll_loop_without_further_polling():
    catalog = FakeCatalog(["events"])
    registered = []
    d = make_discoverer(catalog, registered.append, refresh=60)

    t = threading.Thread(target=d.start)
    t.start()
    assert wait_for(lambda: registered == ["events"])

    d.signal(15)
    t.join(5)
    assert not t.is_alive()

    catalog.topics.append("late")
    assert registered == ["events"]


def test_loop_polls_on_every_refresh():
    catalog = FakeCatalog(["a"])
    registered = []
    d = make_discoverer(catalog, registered.append, refresh=0.01)

    t = threading.Thread(target=d.start)
    t.start()
    assert wait_for(lambda: registered == ["a"])
    catalog.topics.append("b")
    assert wait_for(lambda: registered == ["a", "b"])
    d.signal()
    t.join(5)
    assert catalog.closed
