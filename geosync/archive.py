"""Zip archive member lookup for the GeoLite2 CSV bundle."""

from __future__ import annotations

import io
import posixpath
import zipfile
from contextlib import contextmanager
from typing import BinaryIO, Iterator, TextIO, Union

from geosync.errors import MissingEntryError


def find_member(archive: zipfile.ZipFile, file_name: str) -> zipfile.ZipInfo:
    """
    Locate a member by its exact file name.

    GeoLite2 zips nest every file under a dated directory
    (``GeoLite2-Country-CSV_20240101/...``), so the final path component is
    compared. Raises MissingEntryError naming the absent file.
    """
    for info in archive.infolist():
        if info.is_dir():
            continue
        if posixpath.basename(info.filename) == file_name:
            return info
    raise MissingEntryError(file_name)


@contextmanager
def open_csv_members(
    source: Union[str, BinaryIO],
    locations_name: str,
    blocks_name: str,
) -> Iterator[tuple[TextIO, TextIO]]:
    """
    Open the locations and blocks CSV members of a zip archive as text streams.

    Both members are looked up before either is opened, so a missing entry
    fails the whole step without partial reads.
    """
    with zipfile.ZipFile(source) as archive:
        locations_info = find_member(archive, locations_name)
        blocks_info = find_member(archive, blocks_name)

        with archive.open(locations_info) as locations_raw, archive.open(blocks_info) as blocks_raw:
            locations = io.TextIOWrapper(locations_raw, encoding="utf-8", newline="")
            blocks = io.TextIOWrapper(blocks_raw, encoding="utf-8", newline="")
            yield locations, blocks
