"""
homiegraf - Entry Point

Bridges a homie MQTT device tree into InfluxDB line protocol, delivered
either to a Telegraf socket_listener or straight to an InfluxDB v2 bucket.

Usage:
  homiegraf -m broker.local -t telegraf.local -r tcp
  python -m homiegraf.main --config ./settings.json -d
"""

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .collectors.mqtt_subscriber import HomieSubscriber
from .output.forwarder import create_forwarder
from .pipeline import MetricPipeline
from .utils.config import LOG_LEVELS, BridgeConfig
from .utils.paths import get_cache_dir

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
LEVEL_ENV = "HOMIEGRAF_LEVEL"

# Seconds between device status summaries
STATUS_INTERVAL = 60

# argparse dest -> setting key
CLI_SETTINGS = {
    "push_method": "push_method",
    "tel_host": "telegraf_host",
    "tel_port": "telegraf_port",
    "tel_transport": "telegraf_transport",
    "mqtt_host": "mqtt_host",
    "mqtt_port": "mqtt_port",
    "mqtt_topic": "mqtt_topic",
    "influx_host": "influx_host",
    "influx_port": "influx_port",
    "influx_bucket": "influx_bucket",
    "influx_org": "influx_org",
    "measurement": "measurement",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="homiegraf",
        description="Forward homie MQTT property values as InfluxDB line protocol.",
    )
    parser.add_argument("-x", "--push-method", choices=("telegraf", "influx"),
                        help="where to send points (default: telegraf)")
    parser.add_argument("-t", "--tel-host", help="telegraf socket_listener host")
    parser.add_argument("-p", "--tel-port", type=int, help="telegraf port (default: 5094)")
    parser.add_argument("-r", "--tel-transport", choices=("udp", "tcp"),
                        help="telegraf transport (default: udp)")
    parser.add_argument("-m", "--mqtt-host", help="MQTT broker host")
    parser.add_argument("-q", "--mqtt-port", type=int, help="MQTT broker port (default: 1883)")
    parser.add_argument("-o", "--mqtt-topic", help="homie base topic (default: homie)")
    parser.add_argument("-f", "--influx-host", help="InfluxDB host")
    parser.add_argument("-i", "--influx-port", type=int, help="InfluxDB port (default: 8086)")
    parser.add_argument("-b", "--influx-bucket", help="InfluxDB bucket")
    parser.add_argument("-g", "--influx-org", help="InfluxDB organization")
    parser.add_argument("--measurement", help="measurement name (default: homie)")
    parser.add_argument("--config", type=Path,
                        help="settings file (default: ~/.config/homiegraf/settings.json)")
    parser.add_argument("-d", "--debug", action="count", default=0,
                        help="enable debug logging")
    parser.add_argument("--log-level", type=str.upper, choices=LOG_LEVELS,
                        help="log level, overrides -d")
    return parser


def cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Settings given on the command line; unset flags come back as None."""
    return {key: getattr(args, dest) for dest, key in CLI_SETTINGS.items()}


def resolve_log_level(cli_level: Optional[str], debug: int,
                      environ: Mapping[str, str],
                      config_level: Optional[str] = None) -> int:
    """--log-level, then -d, then $HOMIEGRAF_LEVEL, then the settings file."""
    if cli_level:
        name = cli_level
    elif debug:
        name = "DEBUG"
    elif environ.get(LEVEL_ENV):
        name = environ[LEVEL_ENV]
    else:
        name = config_level or "INFO"
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else logging.INFO


def _get_error_log_path() -> Path:
    """Get the path to the error log file."""
    try:
        log_dir = get_cache_dir() / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir / "homiegraf_errors.log"
    except OSError:
        return Path("/tmp/homiegraf_errors.log")


def _write_error_log() -> Path:
    import datetime
    import traceback

    error_log = _get_error_log_path()
    try:
        with open(error_log, "a") as f:
            f.write(f"\n{'=' * 60}\n")
            f.write(f"[{datetime.datetime.now().isoformat()}] FATAL ERROR\n")
            f.write(traceback.format_exc())
            f.write(f"{'=' * 60}\n")
    except OSError as e:
        logger.debug("Could not write error log: %s", e)
    return error_log


def run(config: BridgeConfig) -> None:
    """Wire the bridge together and run until interrupted."""
    forwarder = create_forwarder(config)
    pipeline = MetricPipeline.from_config(config)
    subscriber = HomieSubscriber.from_config(config, pipeline, forwarder)
    try:
        if not subscriber.start():
            raise RuntimeError("MQTT subscriber failed to start")
        last_status = time.monotonic()
        while True:
            time.sleep(1)
            if time.monotonic() - last_status >= STATUS_INTERVAL:
                subscriber.log_status()
                last_status = time.monotonic()
    finally:
        subscriber.stop()
        forwarder.close()
        logger.info("Final stats: %s", subscriber.get_stats())


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=resolve_log_level(args.log_level, args.debug, os.environ),
        format=LOG_FORMAT,
    )

    exit_code = 0
    try:
        config = BridgeConfig(args.config)
        config.update(cli_overrides(args))
        logging.getLogger().setLevel(resolve_log_level(
            args.log_level, args.debug, os.environ, config.get("log_level"),
        ))

        problems = config.validate()
        if problems:
            for problem in problems:
                logger.error("Invalid configuration: %s", problem)
            sys.exit(1)

        logger.info("Using MQTT: %s:%s topic=%s", config.get("mqtt_host"),
                    config.get("mqtt_port"), config.get("mqtt_topic"))
        run(config)
    except KeyboardInterrupt:
        print("\nShutting down...")
    except Exception as e:
        error_log = _write_error_log()
        print("\nhomiegraf encountered a fatal error:\n")
        print(f"  {type(e).__name__}: {e}\n")
        print(f"Full error details saved to:\n  {error_log}\n")
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
