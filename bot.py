# bot.py
import logging
import sys

from app import create_app
from config import ConfigError, load_config
from store import StorageError, open_store

logger = logging.getLogger(__name__)


def configure_logging(level="INFO"):
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def main(argv=None):
    configure_logging()

    try:
        config = load_config(argv)
    except ConfigError as e:
        logger.error("%s", e)
        return 1
    logging.getLogger().setLevel(config.log_level)

    try:
        store = open_store(config)
    except StorageError as e:
        logger.error("Cannot open store: %s", e)
        return 1

    with store:
        flask_app = create_app(config, store)
        logger.info("Listening on %s (store: %s)", config.addr, store.backend)
        flask_app.run(host=config.host, port=config.port, threaded=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
