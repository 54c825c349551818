"""Flat-file storage for per-country block sets and binary databases."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, Optional

BLOCKS_EXTENSION = ".blocks"
STATUS_FILE = ".status"


def _atomic_write(path: Path, data: bytes) -> None:
    """Replace ``path`` with ``data`` via a temporary file in the same directory."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class BlockStore:
    """One ``<CC>.blocks`` file per country, newline-separated CIDRs."""

    def __init__(self, root: Path, logger: Optional[logging.Logger] = None):
        self.root = Path(root)
        self.logger = logger or logging.getLogger("geosync")

    @property
    def status_path(self) -> Path:
        return self.root / STATUS_FILE

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, country: str) -> Path:
        return self.root / f"{country}{BLOCKS_EXTENSION}"

    def read(self, country: str) -> set[str]:
        """Return the stored networks for a country; a missing file is an empty set."""
        path = self.path_for(country)
        if not path.exists():
            return set()

        blocks: set[str] = set()
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    blocks.add(line)
        return blocks

    def write(self, country: str, networks: Iterable[str]) -> Path:
        """Fully replace the stored networks for a country."""
        self.ensure_root()
        path = self.path_for(country)
        content = "".join(f"{network}\n" for network in sorted(networks))
        _atomic_write(path, content.encode("utf-8"))
        return path

    def countries(self) -> set[str]:
        """Country codes that currently have a blocks file."""
        if not self.root.is_dir():
            return set()
        return {path.stem for path in self.root.glob(f"*{BLOCKS_EXTENSION}")}

    def collect_garbage(self, configured: Iterable[str]) -> list[str]:
        """Delete block files of countries no longer configured; returns removed codes."""
        keep = set(configured)
        removed: list[str] = []
        for country in sorted(self.countries() - keep):
            path = self.path_for(country)
            self.logger.info(f"Blocks file {path.name} no longer needed, deleting")
            path.unlink(missing_ok=True)
            removed.append(country)
        return removed

    def write_database(self, file_name: str, payload: bytes) -> Path:
        """Store a binary database file, replacing any previous copy."""
        self.ensure_root()
        path = self.root / file_name
        _atomic_write(path, payload)
        return path
