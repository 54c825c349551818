"""Configuration and logging setup."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from geosync.errors import ConfigError

# =============================================================================
# Environment Variable Validation
# =============================================================================

# Boolean environment variables understood by Config.from_env
BOOL_VARS: set[str] = {
    "DEBUG",
    "DRY_RUN",
    "LOG_TIMESTAMPS",
    "METRICS_ENABLED",
    "RUN_ON_START",
    "TIK_VERIFY_TLS",
}

# Valid boolean string values (case-insensitive)
VALID_BOOL_VALUES: set[str] = {"true", "false", "1", "0", "yes", "no", "on", "off"}

VALID_WEBHOOK_TYPES: set[str] = {"generic", "discord", "slack"}


def validate_bool_value(var_name: str, value: str) -> tuple[bool, Optional[str]]:
    """
    Validate that a value is a valid boolean string.

    Returns (is_valid, error_message).
    """
    if value.lower() in VALID_BOOL_VALUES:
        return True, None

    return False, (
        f"Invalid value for {var_name}: '{value}'\n"
        f"  Expected one of: true, false, 1, 0, yes, no, on, off (case-insensitive)"
    )


def validate_env_vars() -> tuple[bool, list[str]]:
    """
    Validate boolean and integer environment variables before parsing.

    Returns (is_valid, list_of_errors).
    """
    load_dotenv()
    errors: list[str] = []

    for var_name in sorted(BOOL_VARS):
        value = os.environ.get(var_name)
        if value is None:
            continue
        is_valid, error = validate_bool_value(var_name, value)
        if not is_valid:
            errors.append(error)

    for var_name in ("MAXMIND_AGE", "INTERVAL", "FETCH_TIMEOUT", "REQUEST_TIMEOUT"):
        value = os.environ.get(var_name)
        if value is None or not value.strip():
            continue
        try:
            if int(value) < 0:
                errors.append(f"Invalid value for {var_name}: '{value}' (must not be negative)")
        except ValueError:
            errors.append(f"Invalid value for {var_name}: '{value}' (expected an integer)")

    return len(errors) == 0, errors


def parse_countries(value: str) -> frozenset[str]:
    """Parse a comma separated ISO country list into an uppercase set."""
    return frozenset(c.strip().upper() for c in value.split(",") if c.strip())


def read_secret_file(file_path: str) -> str:
    """Read a secret from a file (Docker secrets pattern: first non-empty line)."""
    with open(file_path, "r") as f:
        for line in f:
            if line.strip():
                return line.strip()
    return ""


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class Config:
    """Run configuration, built once at startup and passed to every component."""

    # Data directory holding the status marker, databases and block files
    data_dir: Path = Path("/data")

    # MaxMind GeoLite2 settings
    license_key: str = ""
    min_age_days: int = 3
    countries: frozenset[str] = field(default_factory=frozenset)
    download_url: str = "https://download.maxmind.com/app/geoip_download"

    # MikroTik RouterOS REST settings
    tik_host: str = ""
    tik_username: str = ""
    tik_password: str = ""
    tik_comment: Optional[str] = None
    tik_verify_tls: bool = False

    # HTTP timeouts (seconds)
    fetch_timeout: int = 300
    request_timeout: int = 30

    # Logging
    log_level: str = "INFO"
    log_timestamps: bool = True

    # Dry run mode
    dry_run: bool = False

    # Daemon mode (built-in scheduler)
    interval: int = 0  # 0 = run once (default), >0 = repeat every N seconds
    run_on_start: bool = True

    # Prometheus metrics
    metrics_enabled: bool = False
    pushgateway_url: str = "localhost:9091"

    # Webhook notifications
    webhook_url: str = ""
    webhook_type: str = "generic"  # generic, discord, slack

    @property
    def can_update(self) -> bool:
        """Whether the GeoLite2 dataset can be refreshed."""
        return bool(self.license_key)

    def with_overrides(self, **changes) -> "Config":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def validate(self) -> list[str]:
        """Return a list of configuration problems (empty when valid)."""
        errors: list[str] = []
        if not self.countries:
            errors.append("COUNTRIES is empty, nothing to synchronize")
        for country in sorted(self.countries):
            if len(country) != 2 or not country.isalpha():
                errors.append(f"Invalid country code in COUNTRIES: '{country}'")
        if self.min_age_days < 0:
            errors.append(f"MAXMIND_AGE must not be negative: {self.min_age_days}")
        if self.webhook_type not in VALID_WEBHOOK_TYPES:
            errors.append(
                f"Invalid WEBHOOK_TYPE: '{self.webhook_type}' "
                f"(expected one of: {', '.join(sorted(VALID_WEBHOOK_TYPES))})"
            )
        return errors

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        load_dotenv()

        def get_bool(key: str, default: bool = True) -> bool:
            val = os.getenv(key, str(default)).lower()
            return val in ("true", "1", "yes", "on")

        def get_int(key: str, default: int) -> int:
            value = os.getenv(key, "").strip()
            if not value:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigError(f"Invalid value for {key}: '{value}'") from e

        debug = get_bool("DEBUG", False)
        default_data_dir = Path.cwd() / "data" if debug else Path("/data")

        license_key = os.getenv("MAXMIND_LIC", "")
        if os.getenv("MAXMIND_LIC_FILE"):
            license_key = read_secret_file(os.environ["MAXMIND_LIC_FILE"])

        # TIK_AUTH is "user:password"; the password may itself contain colons
        tik_auth = os.getenv("TIK_AUTH", "")
        if os.getenv("TIK_AUTH_FILE"):
            tik_auth = read_secret_file(os.environ["TIK_AUTH_FILE"])
        username, _, password = tik_auth.partition(":")

        return cls(
            data_dir=Path(os.getenv("DATA_DIR", "") or default_data_dir),
            license_key=license_key.strip(),
            min_age_days=get_int("MAXMIND_AGE", 3),
            countries=parse_countries(os.getenv("COUNTRIES", "")),
            download_url=os.getenv(
                "MAXMIND_URL", "https://download.maxmind.com/app/geoip_download"
            ).rstrip("/"),
            tik_host=os.getenv("TIK_IP", "").strip(),
            tik_username=username.strip(),
            tik_password=password,
            tik_comment=os.getenv("TIK_COMMENT") or None,
            tik_verify_tls=get_bool("TIK_VERIFY_TLS", False),
            fetch_timeout=get_int("FETCH_TIMEOUT", 300),
            request_timeout=get_int("REQUEST_TIMEOUT", 30),
            log_level="DEBUG" if debug else os.getenv("LOG_LEVEL", "INFO").upper(),
            log_timestamps=get_bool("LOG_TIMESTAMPS"),
            dry_run=get_bool("DRY_RUN", False),
            interval=get_int("INTERVAL", 0),
            run_on_start=get_bool("RUN_ON_START", True),
            metrics_enabled=get_bool("METRICS_ENABLED", False),
            pushgateway_url=os.getenv("METRICS_PUSHGATEWAY_URL", "localhost:9091"),
            webhook_url=os.getenv("WEBHOOK_URL", ""),
            webhook_type=os.getenv("WEBHOOK_TYPE", "generic").lower(),
        )


# =============================================================================
# Logging
# =============================================================================

def setup_logging(config: Config) -> logging.Logger:
    """Configure the geosync logger with a single stdout handler."""
    logger = logging.getLogger("geosync")
    logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

    # Daemon runs call this once, but tests may call it repeatedly
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logger.level)

    format = "[%(asctime)s] [%(levelname)s] %(message)s" if config.log_timestamps else "[%(levelname)s] %(message)s"
    formatter = logging.Formatter(
        format,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)

    logger.addHandler(handler)
    return logger
