# kafka_to_opensearch/publisher.py
import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.client.utils import _make_path

from kafka_to_opensearch.errors import IndexingError
from kafka_to_opensearch.metrics import TimerMetrics

log = logging.getLogger(__name__)

DEFAULT_TYPE = "_doc"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_client(addrs: List[str], timeout: float) -> OpenSearch:
    # hosts may be "host:port" or full urls; opensearch-py normalizes both
    return OpenSearch(
        hosts=list(addrs),
        connection_class=RequestsHttpConnection,
        timeout=timeout,
    )


class OpenSearchPublisher:
    """Indexes one message per call into a time-bucketed index.

    A single instance (and its OpenSearch client) is shared by every worker
    thread of a topic consumer.
    """

    def __init__(
        self,
        index_name: str,
        index_type: str,
        status_every: int,
        addrs: List[str],
        timeout: float = 20.0,
        client: Optional[OpenSearch] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.idx_name = index_name
        self.idx_type = index_type
        self.metrics = TimerMetrics(status_every, prefix="[metrics]:")
        self.client = client if client is not None else build_client(addrs, timeout)
        self.clock = clock

    def index_name(self) -> str:
        return self.clock().strftime(self.idx_name)

    def index_type(self) -> str:
        return self.idx_type

    def handle_message(self, payload: bytes) -> None:
        start = time.monotonic()
        idx = self.index_name()
        try:
            if self.idx_type == DEFAULT_TYPE:
                self.client.index(index=idx, body=payload)
            else:
                # index() has no doc type argument; legacy mapping types need the raw path
                self.client.transport.perform_request("POST", _make_path(idx, self.idx_type), body=payload)
        except Exception as e:
            raise IndexingError(idx, e) from e
        finally:
            self.metrics.status(start)

    __call__ = handle_message

    def close(self) -> None:
        try:
            self.client.close()
        except Exception as e:
            log.warning(f"Error closing OpenSearch client: {e}")
