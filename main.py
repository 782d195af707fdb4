import argparse
import logging
import os

from dotenv import find_dotenv, load_dotenv

from spotwatch.config import load_settings
from spotwatch.domain import ParseError
from spotwatch.worker import run_check_once, run_forever_blocking


def _setup_logging() -> None:
    level_name = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def main() -> int:
    parser = argparse.ArgumentParser(description="SpotWatch: program spot availability watcher")
    parser.add_argument("--once", action="store_true", help="Run single check and exit")
    parser.add_argument("--config", default=None, help="Path to config.toml")
    args = parser.parse_args()

    # .env may set LOG_LEVEL, so it has to be loaded before logging is configured.
    load_dotenv(find_dotenv(usecwd=True), override=False)
    _setup_logging()
    logger = logging.getLogger(__name__)

    try:
        settings = load_settings(config_path=args.config)
    except ParseError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    logger.info("Checking every %s seconds", settings.interval_seconds)
    logger.info("Notifications will be sent to %s", settings.ntfy_endpoint)
    logger.info("Monitoring %d programs", len(settings.programs))

    try:
        if args.once:
            run_check_once(settings)
        else:
            run_forever_blocking(settings)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
