"""
Prometheus Pushgateway metrics.

Per-country granularity:
  - geosync_country_networks{country}     desired networks in the local blocks file
  - geosync_country_added{country}        entries planned for addition in the last run
  - geosync_country_deleted{country}      entries planned for deletion in the last run

Per-step dataset status:
  - geosync_dataset_step_status{step}     1 = success, 0 = failed (absent = not due)

Aggregates:
  - geosync_addresses_added / _deleted / _failed
  - geosync_countries_skipped
  - geosync_last_run_timestamp
  - geosync_run_duration_seconds (histogram)

The CollectorRegistry is created fresh for every run and stale series are
deleted from the Pushgateway before pushing, so countries removed from the
configuration disappear instead of lingering.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Optional

# Optional Prometheus metrics support
try:
    from prometheus_client import CollectorRegistry, Gauge, Histogram, push_to_gateway, delete_from_gateway
    PROMETHEUS_AVAILABLE = True
except ImportError:
    PROMETHEUS_AVAILABLE = False

if TYPE_CHECKING:
    from geosync.geolite import UpdateResult
    from geosync.reconcile import SyncStats

PUSHGATEWAY_JOB = "geolite2-tik-sync"


class MetricsCollector:
    """Collects per-run metrics and pushes them to a Pushgateway."""

    def __init__(self, pushgateway_url: Optional[str] = None, logger: Optional[logging.Logger] = None):
        self.pushgateway_url = pushgateway_url
        self.logger = logger or logging.getLogger("geosync")
        self.enabled = PROMETHEUS_AVAILABLE

        if not PROMETHEUS_AVAILABLE:
            self.logger.warning(
                "prometheus-client not installed. Metrics disabled. "
                "Install with: pip install prometheus-client"
            )
            return

        self.reset()

    def reset(self) -> None:
        """Start a fresh registry for the next run."""
        if not self.enabled:
            return
        self.registry = CollectorRegistry()

        self.country_networks = Gauge(
            "geosync_country_networks",
            "Desired networks per country in the local blocks file",
            ["country"],
            registry=self.registry,
        )
        self.country_added = Gauge(
            "geosync_country_added",
            "Entries planned for addition per country in the last run",
            ["country"],
            registry=self.registry,
        )
        self.country_deleted = Gauge(
            "geosync_country_deleted",
            "Entries planned for deletion per country in the last run",
            ["country"],
            registry=self.registry,
        )
        self.step_status = Gauge(
            "geosync_dataset_step_status",
            "Dataset refresh step status: 1=success, 0=failed",
            ["step"],
            registry=self.registry,
        )
        self.addresses_added = Gauge(
            "geosync_addresses_added",
            "Address-list entries added in the last run",
            registry=self.registry,
        )
        self.addresses_deleted = Gauge(
            "geosync_addresses_deleted",
            "Address-list entries deleted in the last run",
            registry=self.registry,
        )
        self.addresses_failed = Gauge(
            "geosync_addresses_failed",
            "Address-list operations that failed in the last run",
            registry=self.registry,
        )
        self.countries_skipped = Gauge(
            "geosync_countries_skipped",
            "Countries left untouched because no local blocks were available",
            registry=self.registry,
        )
        self.last_run_timestamp = Gauge(
            "geosync_last_run_timestamp",
            "Unix timestamp of the last run",
            registry=self.registry,
        )
        self.duration_seconds = Histogram(
            "geosync_run_duration_seconds",
            "Duration of a full run in seconds",
            buckets=[1, 5, 10, 30, 60, 120, 300, 600],
            registry=self.registry,
        )

    def record_update(self, result: "UpdateResult") -> None:
        """Record the dataset refresh outcome."""
        if not self.enabled:
            return
        if result.databases_ok is not None:
            self.step_status.labels(step="databases").set(1 if result.databases_ok else 0)
        if result.blocks_ok is not None:
            self.step_status.labels(step="country_blocks").set(1 if result.blocks_ok else 0)

    def record_sync(self, stats: "SyncStats") -> None:
        """Record reconciliation counters."""
        if not self.enabled:
            return
        for country, diff in stats.per_country.items():
            self.country_networks.labels(country=country).set(diff.unchanged + len(diff.add))
            self.country_added.labels(country=country).set(len(diff.add))
            self.country_deleted.labels(country=country).set(len(diff.delete))
        self.addresses_added.set(stats.added)
        self.addresses_deleted.set(stats.deleted)
        self.addresses_failed.set(stats.failed)
        self.countries_skipped.set(stats.countries_skipped)

    def finish_run(self, duration: float) -> None:
        if not self.enabled:
            return
        self.last_run_timestamp.set(time.time())
        self.duration_seconds.observe(duration)

    def push(self) -> bool:
        """Replace the previous run's series on the Pushgateway with this run's."""
        if not self.enabled or not self.pushgateway_url:
            return False
        try:
            try:
                delete_from_gateway(self.pushgateway_url, job=PUSHGATEWAY_JOB)
            except Exception as del_exc:
                self.logger.warning(
                    f"Could not delete stale metrics from Pushgateway "
                    f"({self.pushgateway_url}): {del_exc}"
                )

            push_to_gateway(self.pushgateway_url, job=PUSHGATEWAY_JOB, registry=self.registry)
            self.logger.info(f"Metrics pushed to Pushgateway at {self.pushgateway_url}")
            return True
        except Exception as e:
            self.logger.error(f"Failed to push metrics to {self.pushgateway_url}: {e}")
            return False
