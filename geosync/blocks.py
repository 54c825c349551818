"""Cross-reference GeoLite2 locations and blocks into per-country CIDR sets."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional, TextIO

LOCATIONS_FILE = "GeoLite2-Country-Locations-en.csv"
BLOCKS_FILE = "GeoLite2-Country-Blocks-IPv4.csv"

# Locations: geoname_id,locale_code,continent_code,continent_name,
#            country_iso_code,country_name,is_in_european_union
LOC_ID = 0
LOC_COUNTRY_ISO = 4
LOC_COUNTRY_NAME = 5

# Blocks: network,geoname_id,registered_country_geoname_id,
#         represented_country_geoname_id,is_anonymous_proxy,is_satellite_provider
BLOCK_NETWORK = 0
BLOCK_GEONAME_ID = 1


@dataclass
class CountryBlocks:
    """The networks assigned to one country."""
    code: str
    name: str
    location_id: str
    networks: set[str] = field(default_factory=set)


def _rows(stream: TextIO) -> Iterator[list[str]]:
    """
    Yield CSV rows up to (not including) the first blank line.

    The GeoLite2 files end with a blank line; anything after it is ignored.
    """
    for row in csv.reader(stream):
        if not row or not "".join(row).strip():
            return
        yield row


def read_locations(
    stream: TextIO,
    countries: Iterable[str],
    logger: Optional[logging.Logger] = None,
) -> dict[str, CountryBlocks]:
    """
    First pass: map each desired country code to its location id and name.

    The first matching row wins. Desired codes never seen are dropped with
    a warning.
    """
    logger = logger or logging.getLogger("geosync")
    wanted = set(countries)
    found: dict[str, CountryBlocks] = {}

    for row in _rows(stream):
        if len(row) <= LOC_COUNTRY_NAME:
            continue
        code = row[LOC_COUNTRY_ISO]
        if code not in wanted or code in found:
            continue
        found[code] = CountryBlocks(
            code=code,
            name=row[LOC_COUNTRY_NAME].strip('"'),
            location_id=row[LOC_ID],
        )

    for code in sorted(wanted - found.keys()):
        logger.warning(f"Country {code} not found in {LOCATIONS_FILE}")

    return found


def read_blocks(stream: TextIO, locations: dict[str, CountryBlocks]) -> None:
    """Second pass: add every network whose geoname id is tracked."""
    by_location = {country.location_id: country for country in locations.values()}

    for row in _rows(stream):
        if len(row) <= BLOCK_GEONAME_ID:
            continue
        country = by_location.get(row[BLOCK_GEONAME_ID])
        if country is not None:
            country.networks.add(row[BLOCK_NETWORK].strip())


def build_country_blocks(
    locations: TextIO,
    blocks: TextIO,
    countries: Iterable[str],
    logger: Optional[logging.Logger] = None,
) -> dict[str, CountryBlocks]:
    """
    Build country code → CountryBlocks for the configured countries.

    Countries without a single network are dropped (no data available);
    the result never contains a country outside ``countries``.
    """
    logger = logger or logging.getLogger("geosync")

    found = read_locations(locations, countries, logger)
    read_blocks(blocks, found)

    result: dict[str, CountryBlocks] = {}
    for code, country in found.items():
        if not country.networks:
            logger.warning(f"No networks for {code} ({country.name}) in {BLOCKS_FILE}")
            continue
        result[code] = country

    return result
