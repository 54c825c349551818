"""One complete run: refresh the dataset, then reconcile the device."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

from geosync import __version__
from geosync.config import Config
from geosync.geolite import GeoLiteClient, UpdateOrchestrator, UpdateResult
from geosync.metrics import MetricsCollector
from geosync.notify import send_webhook
from geosync.reconcile import Reconciler, SyncStats
from geosync.store import BlockStore
from geosync.tik import RouterOSClient
from geosync.transport import create_http_session


@dataclass
class RunReport:
    """What happened during a run."""
    update: Optional[UpdateResult] = None
    sync: Optional[SyncStats] = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        if self.update is not None and self.update.failed:
            return False
        if self.sync is not None and (self.sync.listing_failed or self.sync.failed > 0):
            return False
        return True


def log_separator(logger):
    logger.debug("-" * 10)


def run_update(config: Config, store: BlockStore, logger: logging.Logger,
               metrics: Optional[MetricsCollector] = None) -> Optional[UpdateResult]:
    """Refresh the GeoLite2 data if a license key is configured."""
    if not config.can_update:
        logger.warning("MAXMIND_LIC not provided, skipping GeoLite2 download")
        store.collect_garbage(config.countries)
        return None

    session = create_http_session()
    client = GeoLiteClient(
        license_key=config.license_key,
        session=session,
        logger=logger,
        base_url=config.download_url,
        timeout=config.fetch_timeout,
    )
    orchestrator = UpdateOrchestrator(
        config=config,
        client=client,
        store=store,
        logger=logger,
        metrics=metrics,
    )
    with session:
        return orchestrator.update()


def run_reconcile(config: Config, store: BlockStore, logger: logging.Logger,
                  metrics: Optional[MetricsCollector] = None) -> Optional[SyncStats]:
    """Push the local country blocks to the RouterOS device."""
    if not config.tik_host:
        logger.info("TIK_IP not specified, skipping MikroTik update")
        return None
    if not config.tik_username:
        logger.info("TIK_AUTH not specified, skipping MikroTik update")
        return None

    session = create_http_session(verify_tls=config.tik_verify_tls)
    client = RouterOSClient(
        host=config.tik_host,
        username=config.tik_username,
        password=config.tik_password,
        session=session,
        logger=logger,
        timeout=config.request_timeout,
    )
    reconciler = Reconciler(
        client=client,
        store=store,
        logger=logger,
        comment=config.tik_comment,
        dry_run=config.dry_run,
        metrics=metrics,
    )
    with session:
        if not client.health_check():
            logger.error(f"Cannot connect to MikroTik REST API at {config.tik_host}")
            return SyncStats(listing_failed=True)
        logger.info(f"Connected to MikroTik at {config.tik_host}")
        return reconciler.run(config.countries)


def run_sync(config: Config, logger: logging.Logger, update: bool = True,
             reconcile: bool = True, metrics: Optional[MetricsCollector] = None) -> RunReport:
    """
    Run the dataset refresh and the device reconciliation, strictly in order.

    Each step degrades on its own; only unexpected exceptions propagate.
    """
    report = RunReport()
    start_time = time.time()

    logger.info(f"GeoLite2 MikroTik Sync v{__version__}")
    logger.info(f"Countries: {', '.join(sorted(config.countries))}")
    logger.info(f"Data directory: {config.data_dir}")
    if config.dry_run:
        logger.info("DRY RUN MODE - no changes will be made on the device")

    if metrics:
        metrics.reset()

    store = BlockStore(config.data_dir, logger=logger)
    store.ensure_root()

    log_separator(logger)
    if update:
        report.update = run_update(config, store, logger, metrics)
    else:
        logger.info("Skipping GeoLite2 download (--skip-update)")

    log_separator(logger)
    if reconcile:
        report.sync = run_reconcile(config, store, logger, metrics)
    else:
        logger.info("Skipping MikroTik update (--skip-sync)")

    report.duration_seconds = time.time() - start_time

    if config.webhook_url:
        send_webhook(config, report, logger)

    if metrics:
        metrics.finish_run(report.duration_seconds)
        metrics.push()

    # Log summary
    log_separator(logger)
    if report.sync is not None and not report.sync.listing_failed:
        logger.info(
            f"Countries: {report.sync.countries_synced} synced, "
            f"{report.sync.countries_skipped} skipped"
        )
        logger.info(
            f"Entries: {report.sync.added} added, {report.sync.deleted} deleted, "
            f"{report.sync.unchanged} unchanged"
        )
        if report.sync.failed > 0:
            logger.warning(f"{report.sync.failed} address-list operations failed")

    logger.info(f"Completed in {report.duration_seconds:.1f}s")

    return report
