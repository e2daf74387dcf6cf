import argparse
import os
import signal
import sys
import threading
from typing import List, Optional, Tuple

from .config import env_bool, load_config
from .errors import ConfigurationError
from .log import setup_logger
from .loop import PublishLoop
from .metrics import PsutilSensorSource
from .session import Session


def parse_args(argv: Optional[List[str]] = None) -> Tuple[bool, str]:
    parser = argparse.ArgumentParser(description="Host metrics → MQTT publisher with Home Assistant discovery")
    parser.add_argument("--debug", action="store_true",
                        help="Enable DEBUG logging (overrides --log-level)")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"),
                        help="Logging level: DEBUG, INFO, WARNING, ERROR (default: %(default)s)")
    parser.add_argument("--once", action="store_true",
                        help="Connect, publish discovery and one state tick, then exit")
    args = parser.parse_args(argv)
    level = "DEBUG" if (args.debug or env_bool(os.environ, "DEBUG", False)) else args.log_level
    return args.once, level.upper()


def install_signal_handlers(stop: threading.Event, logger) -> None:
    def _handler(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down...")
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def main(argv: Optional[List[str]] = None) -> int:
    once, level_name = parse_args(argv)
    logger = setup_logger(level_name)
    try:
        config = load_config()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    m = config.mqtt
    logger.debug(f"MQTT_HOST={m.host} MQTT_PORT={m.port} TLS={m.tls} CLIENT_ID={m.client_id} KEEPALIVE={m.keepalive}")
    logger.debug(f"DEVICE_NAME={config.device.name} DISCOVERY_PREFIX={config.device.discovery_prefix}")
    logger.debug(f"UPDATE_INTERVAL={config.update_interval_secs} DISCOVERY_DELAY_MS={config.discovery_delay_ms}")
    logger.debug(f"FS_TYPES_INCLUDE={config.source.fs_types_include} MOUNT_EXCLUDES={config.source.mount_excludes}")

    stop = threading.Event()
    install_signal_handlers(stop, logger)

    source = PsutilSensorSource(logger.getChild("source"), config.source)
    session = Session(config.mqtt, config.device, logger.getChild("session"), stop)
    loop = PublishLoop(config, source, session, logger, stop, once=once)
    try:
        loop.prepare()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    try:
        loop.run()
    finally:
        session.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
