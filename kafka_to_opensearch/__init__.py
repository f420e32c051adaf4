"""Kafka topic discovery -> OpenSearch daily index bridge."""

__version__ = "0.3.0"
