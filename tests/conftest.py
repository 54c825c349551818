import io
import logging
import tarfile
import zipfile
from datetime import datetime, timezone

import pytest

from geosync.errors import TransportError
from geosync.tik import RemoteAddress

LOCATIONS_CSV = (
    "geoname_id,locale_code,continent_code,continent_name,country_iso_code,country_name,is_in_european_union\n"
    "2077456,en,EU,Europe,HR,Croatia,1\n"
    "3190538,en,EU,Europe,SI,Slovenia,1\n"
    "7626844,en,NA,\"North America\",BQ,\"Bonaire, Sint Eustatius, and Saba\",0\n"
    "\n"
)

BLOCKS_CSV = (
    "network,geoname_id,registered_country_geoname_id,represented_country_geoname_id,"
    "is_anonymous_proxy,is_satellite_provider\n"
    "1.2.3.0/24,2077456,2077456,,0,0\n"
    "1.2.4.0/24,2077456,2077456,,0,0\n"
    "5.6.7.0/24,3190538,3190538,,0,0\n"
    "\n"
)


@pytest.fixture
def logger():
    return logging.getLogger("geosync.tests")


def make_tar(members, prefix="GeoLite2-Country_20240102/"):
    """Build an uncompressed tar archive from (name, payload) pairs."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.USTAR_FORMAT) as tar:
        for name, payload in members:
            info = tarfile.TarInfo(name=f"{prefix}{name}")
            info.size = len(payload)
            tar.addfile(info, io.BytesIO(payload))
    return buf.getvalue()


def make_zip(members, prefix="GeoLite2-Country-CSV_20240102/"):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        for name, text in members.items():
            archive.writestr(f"{prefix}{name}", text)
    buf.seek(0)
    return buf


def country_zip(locations=LOCATIONS_CSV, blocks=BLOCKS_CSV):
    return make_zip({
        "GeoLite2-Country-Locations-en.csv": locations,
        "GeoLite2-Country-Blocks-IPv4.csv": blocks,
        "COPYRIGHT.txt": "Database and Contents Copyright (c) MaxMind, Inc.",
    })


class FakeRaw(io.BytesIO):
    decode_content = False


class FakeResponse:
    """Just enough of requests.Response for the clients under test."""

    _NO_JSON = object()

    def __init__(self, status_code=200, json_data=_NO_JSON, text=None, content=b"", headers=None):
        self.status_code = status_code
        self._json = json_data
        self._text = text
        self.content = content
        self.headers = headers or {}
        self.raw = FakeRaw(content)
        self.closed = False

    @property
    def text(self):
        if self._text is not None:
            return self._text
        return self.content.decode("utf-8", errors="replace")

    def json(self):
        if self._json is FakeResponse._NO_JSON:
            raise ValueError("No JSON object could be decoded")
        return self._json

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class FakeSession:
    """Replays queued responses (or raises queued exceptions) in order."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeRouterOS:
    """In-memory address-list store with the RouterOSClient interface."""

    def __init__(self, items=(), fail_create=(), fail_delete=(), fail_list=False):
        self.items = {item.id: item for item in items}
        self.fail_create = set(fail_create)
        self.fail_delete = set(fail_delete)
        self.fail_list = fail_list
        self.operations = []
        self._next_id = 100

    def list_addresses(self):
        self.operations.append(("list",))
        if self.fail_list:
            raise TransportError("GET ip/firewall/address-list failed", status_code=500, body="{}")
        return list(self.items.values())

    def create_address(self, address, list_name, comment=None):
        self.operations.append(("create", list_name, address))
        if address in self.fail_create:
            raise TransportError("PUT failed", status_code=400, body='{"detail":"failure: already have such entry"}')
        item_id = f"*{self._next_id:X}"
        self._next_id += 1
        self.items[item_id] = RemoteAddress(id=item_id, address=address, list=list_name, comment=comment)
        return {".id": item_id}

    def delete_address(self, item_id):
        self.operations.append(("delete", item_id))
        if item_id in self.fail_delete:
            raise TransportError("DELETE failed", status_code=500, body='{"detail":"not enough permissions (9)"}')
        del self.items[item_id]


class FakeGeoLiteClient:
    """Serves canned dataset downloads, or raises the queued error."""

    def __init__(self, databases=None, country_csv=None, database_modified=None, csv_modified=None):
        self.databases = databases or {}
        self.country_csv = country_csv
        self.database_modified = database_modified or {}
        self.csv_modified = csv_modified or datetime(2024, 1, 2, tzinfo=timezone.utc)
        self.fetched = []

    def fetch_database(self, database):
        self.fetched.append(database.edition_id)
        payload = self.databases.get(database.edition_id)
        if isinstance(payload, Exception):
            raise payload
        if payload is None:
            raise TransportError(f"Could not download {database.edition_id}", status_code=401)
        modified = self.database_modified.get(
            database.edition_id, datetime(2024, 1, 2, tzinfo=timezone.utc)
        )
        return payload, modified

    def fetch_country_csv(self):
        self.fetched.append("GeoLite2-Country-CSV")
        if isinstance(self.country_csv, Exception):
            raise self.country_csv
        if self.country_csv is None:
            raise TransportError("Could not download GeoLite2-Country-CSV", status_code=401)
        return self.country_csv(), self.csv_modified
