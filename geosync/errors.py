"""Exception types raised by the sync pipeline."""

from __future__ import annotations

from typing import Optional


class GeoSyncError(Exception):
    """Base class for every expected failure."""
    pass


class ConfigError(GeoSyncError):
    """Raised when configuration validation fails."""
    pass


class TransportError(GeoSyncError):
    """An HTTP call failed or answered with an unexpected status."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        text = super().__str__()
        if self.status_code is not None:
            text = f"{text} (status {self.status_code})"
        if self.body:
            text = f"{text}: {self.body}"
        return text


class FormatError(GeoSyncError):
    """Malformed archive header or size field."""
    pass


class MissingEntryError(GeoSyncError):
    """A required member is absent from a zip archive."""

    def __init__(self, member: str):
        super().__init__(f"{member} not found in zip archive")
        self.member = member


class NotFoundError(GeoSyncError):
    """The requested member never appeared in a tar stream."""

    def __init__(self, member: str):
        super().__init__(f"{member} not found in tar archive")
        self.member = member


class EmptyDataError(GeoSyncError):
    """No CIDRs are available for a configured country."""

    def __init__(self, country: str):
        super().__init__(f"No blocks available for {country}")
        self.country = country
