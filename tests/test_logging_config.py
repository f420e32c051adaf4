import logging

from kafka_to_opensearch.logging_config import setup_logging


def test_yaml_config_is_loaded(tmp_path):
    cfg = tmp_path / "logging.yaml"
    cfg.write_text(
        "version: 1\n"
        "disable_existing_loggers: false\n"
        "loggers:\n"
        "  kafka_to_opensearch.test_yaml:\n"
        "    level: ERROR\n"
    )
    setup_logging(str(cfg))
    assert logging.getLogger("kafka_to_opensearch.test_yaml").level == logging.ERROR


def test_fallback_quiets_client_libraries(tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    setup_logging(str(tmp_path / "absent.yaml"))
    assert logging.getLogger("kafka").level == logging.WARNING
    assert logging.getLogger("urllib3").level == logging.WARNING
