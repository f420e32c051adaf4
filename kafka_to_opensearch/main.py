#!/usr/bin/env python3
"""
kafka_to_opensearch: index every Kafka topic matching a pattern into
time-bucketed OpenSearch indices.

Topics are discovered by polling the cluster metadata; each new match gets
its own consumer (one group for all topics) with N handler threads that
POST every record, unchanged, to <index-name strftime'd>/<index-type>.

Env (defaults for the matching flags):
  KAFKA_BOOTSTRAP_SERVERS   comma separated, default localhost:9092
  KAFKA_LOOKUP_SERVERS      comma separated, default = bootstrap servers
  KAFKA_TOPIC_PATTERN       default .*
  KAFKA_GROUP_ID            default kafka_to_opensearch
  OPENSEARCH_URL            comma separated, default http://localhost:9200
  OPENSEARCH_INDEX_NAME     default logstash-%Y.%m.%d
  OPENSEARCH_INDEX_TYPE     default _doc
  MAX_IN_FLIGHT, CONCURRENCY, REFRESH_INTERVAL, STATUS_EVERY,
  HTTP_TIMEOUT, MAX_ATTEMPTS, REQUEUE_DELAY, MAX_BACKOFF
  LOG_LEVEL, LOGGING_CONFIG
"""

import argparse
import logging
import signal
import sys
import threading

from kafka_to_opensearch import __version__
from kafka_to_opensearch.config import BINARY_NAME, config_from_env, parse_opts
from kafka_to_opensearch.discovery import DiscoveryConfig, TopicDiscoverer
from kafka_to_opensearch.errors import ConfigError
from kafka_to_opensearch.logging_config import setup_logging
from kafka_to_opensearch.registry import ConsumerRegistry

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CONFIG = 2


def parse_args(argv=None):
    p = argparse.ArgumentParser(prog="kafka-to-opensearch", description="Kafka -> OpenSearch topic indexer")
    p.add_argument("--version", action="store_true", help="print version string")
    p.add_argument("--topic", dest="topic_pattern", help="kafka topic pattern (regex, full match)")
    p.add_argument("--group", help="kafka consumer group")
    p.add_argument("--max-in-flight", type=int, help="max number of messages to allow in flight")
    p.add_argument("-n", "--concurrency", type=int, help="number of concurrent publishers per topic")
    p.add_argument("--http-timeout", type=float, help="timeout in seconds for OpenSearch requests")
    p.add_argument("--refresh-interval", type=float, help="topic discovery refresh interval in seconds")
    p.add_argument("--status-every", type=int,
                   help="the # of requests between logging status (per handler), 0 disables")
    p.add_argument("--index-name", help="OpenSearch index name (strftime format)")
    p.add_argument("--index-type", help="OpenSearch document type path segment")
    p.add_argument("--max-attempts", type=int, help="attempts per message before giving up, 0 = forever")
    p.add_argument("--requeue-delay", type=float, help="seconds before the first retry of a failed message")
    p.add_argument("--max-backoff", type=float, help="upper bound in seconds for the retry delay")
    p.add_argument("--bootstrap-server", dest="bootstrap_servers", action="append",
                   help="kafka bootstrap address (may be given multiple times)")
    p.add_argument("--lookup-server", dest="lookup_servers", action="append",
                   help="kafka address used for topic discovery (may be given multiple times)")
    p.add_argument("--opensearch", action="append", help="OpenSearch HTTP address (may be given multiple times)")
    p.add_argument("--consumer-opt", dest="consumer_opts", action="append", default=[],
                   help="key=value passed through to KafkaConsumer (may be given multiple times)")
    p.add_argument("--logging-config", help="YAML logging dictConfig file")
    return p.parse_args(argv)


def build_config(args):
    overrides = {k: v for k, v in vars(args).items() if k not in ("version", "logging_config", "consumer_opts")}
    overrides["consumer_opts"] = parse_opts(args.consumer_opts)
    return config_from_env(overrides)


def run(cfg, registry=None, discoverer=None, install_signals=True) -> int:
    registry = registry or ConsumerRegistry(cfg)
    discoverer = discoverer or TopicDiscoverer(
        DiscoveryConfig(
            bootstrap_servers=cfg.lookup_servers,
            pattern=cfg.topic_pattern,
            refresh=cfg.refresh_interval,
            handler=registry.register_topic,
        )
    )
    term = threading.Event()

    def _on_signal(signum, frame):
        log.info(f"Received signal {signum}, shutting down")
        term.set()

    if install_signals:
        signal.signal(signal.SIGINT, _on_signal)
        signal.signal(signal.SIGTERM, _on_signal)

    def _discover():
        try:
            discoverer.start()
        finally:
            term.set()

    worker = threading.Thread(target=_discover, name="discoverer", daemon=True)
    worker.start()

    term.wait()
    discoverer.signal()
    worker.join()
    registry.stop()

    if discoverer.error is not None:
        log.error(f"Fatal: {discoverer.error}")
        return EXIT_FATAL
    return EXIT_OK


def main(argv=None) -> int:
    args = parse_args(argv)
    if args.version:
        print(f"{BINARY_NAME} v{__version__}")
        return EXIT_OK

    setup_logging(args.logging_config)
    try:
        cfg = build_config(args)
    except ConfigError as e:
        print(f"{BINARY_NAME}: invalid configuration: {e}", file=sys.stderr)
        return EXIT_CONFIG

    log.info(
        f"Indexing topics matching {cfg.topic_pattern!r} from {cfg.bootstrap_servers} "
        f"into {cfg.opensearch} as {cfg.index_name!r}"
    )
    return run(cfg)


if __name__ == "__main__":
    sys.exit(main())
