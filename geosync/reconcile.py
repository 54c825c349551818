"""Diff desired country blocks against the device and apply the difference."""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional

from geosync.errors import EmptyDataError, TransportError
from geosync.store import BlockStore
from geosync.tik import RemoteAddress, RouterOSClient, normalize_address


@dataclass
class DiffResult:
    """Changes needed to bring one remote list in line with the desired set."""
    add: set[str] = field(default_factory=set)
    delete: dict[str, str] = field(default_factory=dict)  # remote id -> address
    unchanged: int = 0

    @property
    def empty(self) -> bool:
        return not self.add and not self.delete


def diff_addresses(desired: Iterable[str], remote: Iterable[RemoteAddress]) -> DiffResult:
    """
    Partition desired and remote entries.

    Remote entries whose address is desired are left alone; every other
    remote entry is deleted, and desired networks found nowhere remotely
    are added.
    """
    desired = set(desired)
    pending = set(desired)
    result = DiffResult()

    for item in remote:
        address = normalize_address(item.address)
        if address in desired:
            pending.discard(address)
            result.unchanged += 1
        else:
            result.delete[item.id] = address

    result.add = pending
    return result


@dataclass
class SyncStats:
    """Statistics from the reconciliation run."""
    countries_synced: int = 0
    countries_skipped: int = 0
    added: int = 0
    deleted: int = 0
    unchanged: int = 0
    failed: int = 0
    listing_failed: bool = False
    duration_seconds: float = 0.0
    per_country: dict[str, DiffResult] = field(default_factory=dict)


class Reconciler:
    """Synchronizes one address list per configured country."""

    def __init__(
        self,
        client: RouterOSClient,
        store: BlockStore,
        logger: logging.Logger,
        comment: Optional[str] = None,
        dry_run: bool = False,
        metrics=None,
    ):
        self.client = client
        self.store = store
        self.logger = logger
        self.comment = comment
        self.dry_run = dry_run
        self.metrics = metrics

    def run(self, countries: Iterable[str]) -> SyncStats:
        """Reconcile every country; one bulk listing call covers the whole run."""
        stats = SyncStats()
        t0 = time.time()

        try:
            inventory = self.client.list_addresses()
        except TransportError as e:
            self.logger.error(f"Could not get MikroTik address list: {e}")
            stats.listing_failed = True
            stats.duration_seconds = time.time() - t0
            return stats

        by_list: dict[str, list[RemoteAddress]] = defaultdict(list)
        for item in inventory:
            by_list[item.list].append(item)
        self.logger.info(f"Found {len(inventory)} address-list entries on the device")

        for country in sorted(countries):
            try:
                diff = self.sync_country(country, by_list.get(country, []), stats)
            except EmptyDataError as e:
                self.logger.error(f"{e}, leaving address list '{country}' untouched")
                stats.countries_skipped += 1
                continue
            stats.per_country[country] = diff
            stats.countries_synced += 1

        stats.duration_seconds = time.time() - t0

        if self.metrics:
            self.metrics.record_sync(stats)

        return stats

    def sync_country(self, country: str, remote: list[RemoteAddress], stats: SyncStats) -> DiffResult:
        """
        Apply deletions first, then additions, so lists that reject duplicate
        addresses never see a conflict.

        Raises EmptyDataError when there are no local blocks for the country;
        an empty desired set is never taken to mean "delete everything".
        """
        desired = self.store.read(country)
        if not desired:
            raise EmptyDataError(country)

        diff = diff_addresses(desired, remote)
        stats.unchanged += diff.unchanged

        if diff.empty:
            self.logger.info(f"{country}: {diff.unchanged} entries up to date")
            return diff

        self.logger.info(
            f"{country}: {len(diff.delete)} to delete, {len(diff.add)} to add, "
            f"{diff.unchanged} unchanged"
        )

        for item_id, address in sorted(diff.delete.items(), key=lambda kv: kv[1]):
            if self.dry_run:
                self.logger.debug(f"DRY RUN: Would delete {address} ({item_id}) from {country}")
                stats.deleted += 1
                continue
            try:
                self.client.delete_address(item_id)
                stats.deleted += 1
            except TransportError as e:
                stats.failed += 1
                self.logger.error(
                    f"Could not delete {address} ({item_id}) from {country}: "
                    f"{e.status_code} - {e.body or e}"
                )

        for address in sorted(diff.add):
            if self.dry_run:
                self.logger.debug(f"DRY RUN: Would add {address} to {country}")
                stats.added += 1
                continue
            try:
                self.client.create_address(address, country, self.comment)
                stats.added += 1
            except TransportError as e:
                stats.failed += 1
                self.logger.error(
                    f"Could not add {address} to {country}: "
                    f"{e.status_code} - {e.body or e}"
                )

        return diff
