"""Command line entry point."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import time
from pathlib import Path
from typing import Optional

from geosync import __version__
from geosync.config import Config, parse_countries, setup_logging, validate_env_vars
from geosync.errors import ConfigError
from geosync.metrics import MetricsCollector
from geosync.run import run_sync


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="geosync",
        description="Synchronize MikroTik firewall address lists with GeoLite2 country blocks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  MAXMIND_LIC[_FILE]       MaxMind license key / key file
  MAXMIND_AGE              Days before the dataset is refetched (default: 3)
  COUNTRIES                Comma separated ISO country codes, e.g. HR,SI
  TIK_IP                   MikroTik address (REST API over HTTPS)
  TIK_AUTH[_FILE]          MikroTik credentials as user:password
  TIK_COMMENT              Comment tag set on created entries
  TIK_VERIFY_TLS           Validate the device certificate (default: false)
  DATA_DIR                 Data directory (default: /data, ./data with DEBUG=1)
  DEBUG                    Set to 1 for debug logging and ./data
  LOG_LEVEL                DEBUG, INFO, WARNING, ERROR (default: INFO)
  DRY_RUN                  Set to true for dry run mode
  INTERVAL                 Daemon mode: seconds between runs (0=once, default: 0)
  RUN_ON_START             In daemon mode, run immediately on start (default: true)
  METRICS_ENABLED          Push Prometheus metrics (default: false)
  METRICS_PUSHGATEWAY_URL  Pushgateway address (default: localhost:9091)
  WEBHOOK_URL              Webhook URL for notifications (Discord/Slack/generic)
  WEBHOOK_TYPE             Webhook format: generic, discord, slack (default: generic)

Examples:
  # Basic usage
  MAXMIND_LIC=key COUNTRIES=HR TIK_IP=192.168.88.1 TIK_AUTH=geo:secret geosync

  # See what would change on the device
  geosync --dry-run

  # Refresh local data only
  geosync --skip-sync
""",
    )

    parser.add_argument(
        "-v", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "-n", "--dry-run",
        action="store_true",
        help="Don't change the device, just show what would be done",
    )

    parser.add_argument(
        "-d", "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    parser.add_argument(
        "--data-dir",
        help="Data directory (overrides DATA_DIR)",
    )

    parser.add_argument(
        "--countries",
        help="Comma separated country codes (overrides COUNTRIES)",
    )

    parser.add_argument(
        "--interval",
        type=int,
        metavar="SECONDS",
        help="Run in daemon mode: repeat every N seconds (overrides INTERVAL)",
    )

    parser.add_argument(
        "--no-metrics",
        action="store_true",
        help="Disable Prometheus metrics",
    )

    parser.add_argument(
        "--skip-update",
        action="store_true",
        help="Don't download GeoLite2 data, use the local block files",
    )

    parser.add_argument(
        "--skip-sync",
        action="store_true",
        help="Don't touch the MikroTik device",
    )

    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate configuration and exit",
    )

    return parser.parse_args(argv)


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Apply command line overrides to the environment configuration."""
    changes = {}
    if args.dry_run:
        changes["dry_run"] = True
    if args.debug:
        changes["log_level"] = "DEBUG"
    if args.data_dir:
        changes["data_dir"] = Path(args.data_dir)
    if args.countries:
        changes["countries"] = parse_countries(args.countries)
    if args.interval is not None:
        changes["interval"] = args.interval
    if args.no_metrics:
        changes["metrics_enabled"] = False
    return config.with_overrides(**changes) if changes else config


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    is_valid, errors = validate_env_vars()
    if is_valid:
        try:
            config = apply_overrides(Config.from_env(), args)
        except ConfigError as e:
            errors = [str(e)]
            config = Config()
        else:
            errors = config.validate()
    else:
        config = Config()

    logger = setup_logging(config)

    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            for line in error.split("\n"):
                logger.error(f"  {line}")
        return 1

    if args.validate:
        logger.info(f"GeoLite2 MikroTik Sync v{__version__}")
        logger.info("Configuration validation passed!")
        return 0

    metrics = None
    if config.metrics_enabled:
        metrics = MetricsCollector(pushgateway_url=config.pushgateway_url, logger=logger)

    options = {
        "update": not args.skip_update,
        "reconcile": not args.skip_sync,
        "metrics": metrics,
    }

    if config.interval > 0:
        return _run_daemon(config, logger, options)

    return _run_once(config, logger, options)


def _run_once(config: Config, logger: logging.Logger, options: dict) -> int:
    """Execute a single run."""
    try:
        report = run_sync(config, logger, **options)
        # Degraded steps are retried on the next invocation, not reported as a crash
        if not report.ok:
            logger.warning("Run finished with errors, see above")
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1


def _run_daemon(config: Config, logger: logging.Logger, options: dict) -> int:
    """Run in daemon mode: repeat on a fixed interval."""
    shutdown = False

    def _signal_handler(signum, frame):
        nonlocal shutdown
        logger.info(f"Received signal {signum}, shutting down after current run...")
        shutdown = True

    signal.signal(signal.SIGTERM, _signal_handler)
    signal.signal(signal.SIGINT, _signal_handler)

    logger.info(f"Daemon mode: running every {config.interval}s (Ctrl+C to stop)")

    run_number = 0
    while not shutdown:
        run_number += 1

        if run_number == 1 and not config.run_on_start:
            logger.info(f"Skipping initial run (RUN_ON_START=false), waiting {config.interval}s...")
        else:
            logger.info(f"Starting run #{run_number}")
            try:
                report = run_sync(config, logger, **options)
                if not report.ok:
                    logger.warning("Run finished with errors, will retry next interval")
            except Exception as e:
                logger.error(f"Run #{run_number} failed: {e}", exc_info=True)

        # Sleep in small increments so we can respond to signals quickly
        logger.info(f"Next run in {config.interval}s...")
        elapsed = 0
        while elapsed < config.interval and not shutdown:
            time.sleep(min(5, config.interval - elapsed))
            elapsed += 5

    logger.info("Daemon stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
