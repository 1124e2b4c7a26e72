import logging
import logging.config
from pathlib import Path
from typing import Any, Dict


def setup_logging(config: Dict[str, Any]):
    """Setup logging configuration from the ``logging`` section of the config"""
    logging_config = dict(config['logging'])
    level = logging_config.pop('level', None)

    # File handlers fail on a missing directory
    for handler in logging_config.get('handlers', {}).values():
        filename = handler.get('filename')
        if filename:
            Path(filename).parent.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(logging_config)
    if level:
        logging.getLogger().setLevel(level.upper())

    return logging.getLogger(__name__)
