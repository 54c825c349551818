"""Persisted sync marker and the staleness rules built on it."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SyncStatus:
    """
    Marker written after a successful dataset refresh.

    ``last_success`` is the oldest Last-Modified seen across the resources
    fetched in that cycle; ``countries`` the configured set at the time.
    """
    last_success: datetime
    countries: frozenset[str]

    def to_dict(self) -> dict:
        return {
            "last_success": self.last_success.astimezone(timezone.utc).isoformat(),
            "countries": sorted(self.countries),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncStatus":
        last_success = datetime.fromisoformat(data["last_success"])
        if last_success.tzinfo is None:
            last_success = last_success.replace(tzinfo=timezone.utc)
        return cls(
            last_success=last_success,
            countries=frozenset(c.upper() for c in data.get("countries", [])),
        )

    @classmethod
    def load(cls, path: Path, logger: Optional[logging.Logger] = None) -> Optional["SyncStatus"]:
        """Read the marker; a missing or unreadable marker means "never synced"."""
        logger = logger or logging.getLogger("geosync")
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return cls.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable status marker {path}: {e}")
            return None

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f)


@dataclass(frozen=True)
class FreshnessPolicy:
    """Decides which parts of the dataset need refetching."""
    min_age_days: int = 3

    def stale_at(self, status: Optional[SyncStatus]) -> Optional[datetime]:
        if status is None:
            return None
        return status.last_success + timedelta(days=self.min_age_days)

    def is_stale(self, status: Optional[SyncStatus], now: Optional[datetime] = None) -> bool:
        if status is None:
            return True
        return (now or utcnow()) > self.stale_at(status)

    def database_due(self, status: Optional[SyncStatus], now: Optional[datetime] = None) -> bool:
        return self.is_stale(status, now)

    def country_blocks_due(
        self,
        status: Optional[SyncStatus],
        countries: Iterable[str],
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Country blocks are due when the database is, or when countries were
        added since the last sync. Removing countries never forces a refetch.
        """
        if self.database_due(status, now):
            return True
        return not set(countries) <= status.countries


def oldest(first: Optional[datetime], second: Optional[datetime]) -> Optional[datetime]:
    """The earlier of two optional timestamps."""
    if first is None:
        return second
    if second is None:
        return first
    return min(first, second)
