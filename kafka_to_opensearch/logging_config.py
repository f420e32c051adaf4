# kafka_to_opensearch/logging_config.py
import logging
import logging.config
import os
from pathlib import Path
from typing import Optional

import yaml

FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATEFMT = "%Y-%m-%d %H:%M:%S"
QUIET_LOGGERS = ("kafka", "urllib3", "opensearch")


def setup_logging(path: Optional[str] = None) -> None:
    """Configure logging from a YAML dictConfig file if one exists, else basicConfig."""
    cfg_path = Path(path or os.getenv("LOGGING_CONFIG", "logging.yaml"))
    if cfg_path.exists():
        with cfg_path.open() as f:
            logging.config.dictConfig(yaml.safe_load(f))
        return

    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format=FORMAT, datefmt=DATEFMT)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
