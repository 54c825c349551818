"""
GeoLite2 dataset acquisition.

The GeoLite2 Country and ASN databases are updated twice weekly (Tuesday and
Friday) and every account is limited to 2,000 direct downloads per 24 hours,
so refreshes are gated by the persisted sync marker.
"""

from __future__ import annotations

import csv
import gzip
import io
import logging
import time
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import BinaryIO, Optional

import requests
import urllib3

from geosync.archive import open_csv_members
from geosync.blocks import BLOCKS_FILE, LOCATIONS_FILE, build_country_blocks
from geosync.config import Config
from geosync.errors import FormatError, GeoSyncError, TransportError
from geosync.freshness import FreshnessPolicy, SyncStatus, oldest, utcnow
from geosync.store import BlockStore
from geosync.tar import extract_member

# =============================================================================
# Dataset Editions
# =============================================================================

@dataclass(frozen=True)
class Database:
    """A binary database shipped as .tar.gz."""
    edition_id: str
    file_name: str


DATABASES: list[Database] = [
    Database(edition_id="GeoLite2-ASN", file_name="GeoLite2-ASN.mmdb"),
    Database(edition_id="GeoLite2-Country", file_name="GeoLite2-Country.mmdb"),
]

COUNTRY_CSV_EDITION = "GeoLite2-Country-CSV"

# Errors that turn a dataset step into a no-op for this run
STEP_ERRORS = (
    GeoSyncError,
    OSError,
    EOFError,
    csv.Error,
    UnicodeDecodeError,
    zipfile.BadZipFile,
)


# =============================================================================
# Download Client
# =============================================================================

class GeoLiteClient:
    """Downloads GeoLite2 editions from MaxMind."""

    def __init__(
        self,
        license_key: str,
        session: requests.Session,
        logger: logging.Logger,
        base_url: str = "https://download.maxmind.com/app/geoip_download",
        timeout: int = 300,
    ):
        self.license_key = license_key
        self.session = session
        self.logger = logger
        self.base_url = base_url
        self.timeout = timeout

    def download(self, edition_id: str, suffix: str) -> requests.Response:
        """
        Start a streaming download of an edition.

        Raises TransportError on connection failure or non-2xx status.
        """
        self.logger.debug(f"Downloading {edition_id} ({suffix})")
        try:
            response = self.session.get(
                self.base_url,
                params={
                    "edition_id": edition_id,
                    "license_key": self.license_key,
                    "suffix": suffix,
                },
                timeout=self.timeout,
                stream=True,
            )
        except requests.RequestException as e:
            # Request exceptions can echo the URL, which carries the license key
            raise TransportError(f"Could not download {edition_id}: {type(e).__name__}") from e

        if response.status_code >= 300:
            body = response.text[:200]
            response.close()
            raise TransportError(
                f"Could not download {edition_id}",
                status_code=response.status_code,
                body=body,
            )
        return response

    @staticmethod
    def last_modified(response: requests.Response) -> datetime:
        """Parse Last-Modified; a missing or bad header counts as "now"."""
        header = response.headers.get("Last-Modified")
        if header:
            try:
                parsed = parsedate_to_datetime(header)
            except (TypeError, ValueError):
                parsed = None
            if parsed is not None:
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                return parsed
        return utcnow()

    def fetch_database(self, database: Database) -> tuple[bytes, datetime]:
        """Download a .tar.gz edition and return the database payload and its Last-Modified."""
        response = self.download(database.edition_id, "tar.gz")
        with response:
            last_modified = self.last_modified(response)
            response.raw.decode_content = True
            try:
                with gzip.GzipFile(fileobj=response.raw) as decompressed:
                    payload = extract_member(decompressed, database.file_name)
            except (requests.RequestException, urllib3.exceptions.HTTPError) as e:
                raise TransportError(f"Download of {database.edition_id} interrupted: {e}") from e
            except (gzip.BadGzipFile, EOFError) as e:
                raise FormatError(f"Invalid gzip stream for {database.edition_id}: {e}") from e
        return payload, last_modified

    def fetch_country_csv(self) -> tuple[BinaryIO, datetime]:
        """Download the CSV zip into memory (zip needs random access)."""
        response = self.download(COUNTRY_CSV_EDITION, "zip")
        with response:
            last_modified = self.last_modified(response)
            try:
                content = response.content
            except requests.RequestException as e:
                raise TransportError(f"Download of {COUNTRY_CSV_EDITION} interrupted: {e}") from e
        return io.BytesIO(content), last_modified


# =============================================================================
# Update Orchestrator
# =============================================================================

@dataclass
class UpdateResult:
    """Outcome of one dataset update cycle."""
    databases_due: bool = False
    blocks_due: bool = False
    databases_ok: Optional[bool] = None  # None = not attempted
    blocks_ok: Optional[bool] = None
    countries_written: list[str] = field(default_factory=list)
    countries_removed: list[str] = field(default_factory=list)
    last_modified: Optional[datetime] = None
    status_saved: bool = False
    storage_ok: bool = True
    duration_seconds: float = 0.0

    @property
    def failed(self) -> bool:
        return self.databases_ok is False or self.blocks_ok is False or not self.storage_ok


class UpdateOrchestrator:
    """Refreshes databases and country blocks when the marker says they are stale."""

    def __init__(
        self,
        config: Config,
        client: GeoLiteClient,
        store: BlockStore,
        logger: logging.Logger,
        policy: Optional[FreshnessPolicy] = None,
        databases: Optional[list[Database]] = None,
        metrics=None,
    ):
        self.config = config
        self.client = client
        self.store = store
        self.logger = logger
        self.policy = policy or FreshnessPolicy(config.min_age_days)
        self.databases = DATABASES if databases is None else databases
        self.metrics = metrics

    def update(self, now: Optional[datetime] = None) -> UpdateResult:
        """
        Run one update cycle.

        Any successful fetch advances the marker to the oldest Last-Modified
        among the resources fetched in this cycle; failed fetches contribute
        nothing. Block files of countries no longer configured are removed
        every cycle.
        """
        result = UpdateResult()
        t0 = time.time()
        now = now or utcnow()
        countries = self.config.countries

        status = SyncStatus.load(self.store.status_path, self.logger)
        stale_at = self.policy.stale_at(status)
        result.databases_due = self.policy.database_due(status, now)
        result.blocks_due = self.policy.country_blocks_due(status, countries, now)

        if result.databases_due:
            failed: list[str] = []
            last_modified = self.update_databases(failed)
            result.databases_ok = not failed
            result.last_modified = oldest(result.last_modified, last_modified)
        else:
            self.logger.info(f"GeoLite2 databases aren't stale yet ({stale_at:%Y-%m-%d %H:%M}), skipping download")

        if result.blocks_due:
            written: list[str] = []
            last_modified = self.update_country_blocks(written)
            result.blocks_ok = last_modified is not None
            result.countries_written = written
            result.last_modified = oldest(result.last_modified, last_modified)
        else:
            self.logger.info(
                f"No new countries and blocks not stale yet ({stale_at:%Y-%m-%d %H:%M}), skipping download"
            )

        try:
            result.countries_removed = self.store.collect_garbage(countries)
        except OSError as e:
            self.logger.error(f"Could not remove stale block files: {e}")
            result.storage_ok = False

        if result.last_modified is not None:
            try:
                SyncStatus(last_success=result.last_modified, countries=frozenset(countries)).save(
                    self.store.status_path
                )
            except OSError as e:
                self.logger.error(f"Could not save sync marker {self.store.status_path}: {e}")
                result.storage_ok = False
            else:
                result.status_saved = True
                self.logger.debug(f"Sync marker advanced to {result.last_modified.isoformat()}")
        elif result.databases_due or result.blocks_due:
            self.logger.warning("Nothing downloaded, sync marker left untouched for retry")

        result.duration_seconds = time.time() - t0

        if self.metrics:
            self.metrics.record_update(result)

        return result

    def update_databases(self, failed: Optional[list[str]] = None) -> Optional[datetime]:
        """
        Refresh every binary database.

        Returns the oldest Last-Modified of the databases that were stored,
        or None if none were. Editions that failed are appended to ``failed``.
        """
        failed = failed if failed is not None else []
        last_modified: Optional[datetime] = None

        for database in self.databases:
            try:
                payload, modified = self.client.fetch_database(database)
                self.store.write_database(database.file_name, payload)
            except STEP_ERRORS as e:
                self.logger.error(f"Could not update {database.edition_id}: {e}")
                failed.append(database.edition_id)
                continue

            self.logger.info(f"{database.file_name} downloaded ({len(payload)} bytes)")
            last_modified = oldest(last_modified, modified)

        return last_modified

    def update_country_blocks(self, written: Optional[list[str]] = None) -> Optional[datetime]:
        """
        Rebuild the per-country block files from the CSV edition.

        Returns the Last-Modified of the zip, or None on failure.
        """
        written = written if written is not None else []
        try:
            archive, last_modified = self.client.fetch_country_csv()
            with open_csv_members(archive, LOCATIONS_FILE, BLOCKS_FILE) as (locations, blocks):
                country_blocks = build_country_blocks(
                    locations, blocks, self.config.countries, self.logger
                )

            for code in sorted(country_blocks):
                country = country_blocks[code]
                self.store.write(code, country.networks)
                written.append(code)
                self.logger.debug(f"{code} ({country.name}): {len(country.networks)} networks")
        except STEP_ERRORS as e:
            self.logger.error(f"Could not update country blocks: {e}")
            return None

        if written:
            self.logger.info(f"Country blocks {', '.join(written)} generated")
        else:
            self.logger.warning("No country blocks generated")
        return last_modified
