import gzip
import logging
from datetime import datetime, timedelta, timezone

import pytest
import requests

from conftest import FakeGeoLiteClient, FakeResponse, FakeSession, country_zip, make_tar
from geosync.config import Config
from geosync.errors import FormatError, NotFoundError, TransportError
from geosync.freshness import SyncStatus
from geosync.geolite import DATABASES, Database, GeoLiteClient, UpdateOrchestrator
from geosync.store import BlockStore

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
JAN_2 = datetime(2024, 1, 2, tzinfo=timezone.utc)
JAN_5 = datetime(2024, 1, 5, tzinfo=timezone.utc)


def all_databases():
    return {db.edition_id: f"{db.edition_id} payload".encode() for db in DATABASES}


def orchestrator(tmp_path, client, logger, countries=("HR",)):
    config = Config(data_dir=tmp_path, license_key="key", min_age_days=3, countries=frozenset(countries))
    store = BlockStore(tmp_path, logger=logger)
    return UpdateOrchestrator(config=config, client=client, store=store, logger=logger), store


def save_status(store, age_days, countries=("HR",)):
    SyncStatus(last_success=NOW - timedelta(days=age_days), countries=frozenset(countries)).save(
        store.status_path
    )


# =============================================================================
# UpdateOrchestrator
# =============================================================================

def test_first_run_fetches_everything_and_writes_marker(tmp_path, logger):
    client = FakeGeoLiteClient(
        databases=all_databases(),
        country_csv=country_zip,
        database_modified={"GeoLite2-ASN": JAN_5, "GeoLite2-Country": JAN_5},
        csv_modified=JAN_2,
    )
    update, store = orchestrator(tmp_path, client, logger, countries=("HR", "SI"))

    result = update.update(now=NOW)

    assert result.databases_ok and result.blocks_ok
    assert result.countries_written == ["HR", "SI"]
    assert store.read("HR") == {"1.2.3.0/24", "1.2.4.0/24"}
    assert (tmp_path / "GeoLite2-Country.mmdb").read_bytes() == b"GeoLite2-Country payload"
    assert (tmp_path / "GeoLite2-ASN.mmdb").exists()

    status = SyncStatus.load(store.status_path)
    assert status.last_success == JAN_2  # oldest Last-Modified
    assert status.countries == {"HR", "SI"}


def test_fresh_marker_skips_downloads(tmp_path, logger):
    client = FakeGeoLiteClient(databases=all_databases(), country_csv=country_zip)
    update, store = orchestrator(tmp_path, client, logger)
    save_status(store, age_days=2)

    result = update.update(now=NOW)

    assert client.fetched == []
    assert result.databases_ok is None and result.blocks_ok is None
    assert not result.status_saved


def test_added_country_fetches_csv_only(tmp_path, logger):
    client = FakeGeoLiteClient(databases=all_databases(), country_csv=country_zip, csv_modified=JAN_2)
    update, store = orchestrator(tmp_path, client, logger, countries=("HR", "SI"))
    save_status(store, age_days=1, countries=("HR",))

    result = update.update(now=NOW)

    assert client.fetched == ["GeoLite2-Country-CSV"]
    assert result.status_saved
    assert SyncStatus.load(store.status_path).countries == {"HR", "SI"}


def test_failed_csv_still_advances_marker_from_databases(tmp_path, logger):
    client = FakeGeoLiteClient(
        databases=all_databases(),
        database_modified={"GeoLite2-ASN": JAN_5, "GeoLite2-Country": JAN_5},
        country_csv=TransportError("Could not download GeoLite2-Country-CSV", status_code=401),
    )
    update, store = orchestrator(tmp_path, client, logger)
    save_status(store, age_days=10)

    result = update.update(now=NOW)

    assert result.databases_ok is True
    assert result.blocks_ok is False
    assert result.failed
    assert result.status_saved
    assert SyncStatus.load(store.status_path).last_success == JAN_5
    assert (tmp_path / "GeoLite2-Country.mmdb").exists()


def test_failed_database_does_not_block_csv(tmp_path, logger):
    databases = all_databases()
    databases["GeoLite2-ASN"] = NotFoundError("GeoLite2-ASN.mmdb")
    client = FakeGeoLiteClient(databases=databases, country_csv=country_zip)
    update, store = orchestrator(tmp_path, client, logger)

    result = update.update(now=NOW)

    assert result.databases_ok is False
    assert result.blocks_ok is True
    assert store.read("HR")
    # Remaining databases are still attempted
    assert client.fetched == ["GeoLite2-ASN", "GeoLite2-Country", "GeoLite2-Country-CSV"]
    # The successful CSV fetch still advances the marker
    assert result.status_saved
    status = SyncStatus.load(store.status_path)
    assert status.last_success == JAN_2
    assert status.countries == {"HR"}


def test_missing_csv_member_fails_step(tmp_path, logger):
    from conftest import make_zip

    client = FakeGeoLiteClient(
        databases=all_databases(),
        country_csv=lambda: make_zip({"GeoLite2-Country-Locations-en.csv": "x\n"}),
    )
    update, store = orchestrator(tmp_path, client, logger)

    result = update.update(now=NOW)

    assert result.blocks_ok is False
    assert store.countries() == set()


def test_garbage_collection_runs_even_when_nothing_is_due(tmp_path, logger):
    client = FakeGeoLiteClient()
    update, store = orchestrator(tmp_path, client, logger, countries=("HR",))
    save_status(store, age_days=1, countries=("HR", "SI"))
    store.write("HR", {"1.2.3.0/24"})
    store.write("SI", {"5.6.7.0/24"})

    result = update.update(now=NOW)

    assert result.countries_removed == ["SI"]
    assert store.countries() == {"HR"}


def test_garbage_collection_runs_when_fetch_fails(tmp_path, logger):
    client = FakeGeoLiteClient()  # every download fails
    update, store = orchestrator(tmp_path, client, logger, countries=("HR",))
    store.write("SI", {"5.6.7.0/24"})

    result = update.update(now=NOW)

    assert result.failed
    assert store.countries() == set()
    assert not result.status_saved
    assert not store.status_path.exists()


def test_unwritable_marker_is_logged_not_raised(tmp_path, logger, monkeypatch, caplog):
    client = FakeGeoLiteClient(databases=all_databases(), country_csv=country_zip)
    update, store = orchestrator(tmp_path, client, logger)

    def refuse(self, path):
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(SyncStatus, "save", refuse)

    with caplog.at_level(logging.ERROR, logger=logger.name):
        result = update.update(now=NOW)

    assert result.databases_ok and result.blocks_ok
    assert not result.status_saved
    assert result.failed
    assert "Could not save sync marker" in caplog.text
    assert store.read("HR")


def test_garbage_collection_error_is_logged_not_raised(tmp_path, logger, monkeypatch, caplog):
    client = FakeGeoLiteClient()
    update, store = orchestrator(tmp_path, client, logger)
    save_status(store, age_days=1)

    def refuse(configured):
        raise PermissionError(13, "Permission denied", str(tmp_path))

    monkeypatch.setattr(store, "collect_garbage", refuse)

    with caplog.at_level(logging.ERROR, logger=logger.name):
        result = update.update(now=NOW)

    assert not result.storage_ok
    assert result.failed
    assert "Could not remove stale block files" in caplog.text


# =============================================================================
# GeoLiteClient
# =============================================================================

def tar_gz(members):
    return gzip.compress(make_tar(members))


def test_fetch_database_extracts_member_and_last_modified(logger):
    session = FakeSession([
        FakeResponse(
            content=tar_gz([("COPYRIGHT.txt", b"c"), ("GeoLite2-Country.mmdb", b"\x00mmdb\xff")]),
            headers={"Last-Modified": "Tue, 02 Jan 2024 15:04:05 GMT"},
        ),
    ])
    client = GeoLiteClient("secret", session, logger, timeout=5)

    payload, modified = client.fetch_database(Database("GeoLite2-Country", "GeoLite2-Country.mmdb"))

    assert payload == b"\x00mmdb\xff"
    assert modified == datetime(2024, 1, 2, 15, 4, 5, tzinfo=timezone.utc)
    method, url, kwargs = session.calls[0]
    assert kwargs["params"] == {
        "edition_id": "GeoLite2-Country",
        "license_key": "secret",
        "suffix": "tar.gz",
    }
    assert kwargs["stream"] is True


def test_fetch_database_rejects_non_gzip(logger):
    session = FakeSession([FakeResponse(content=b"definitely not gzip")])
    client = GeoLiteClient("secret", session, logger)

    with pytest.raises((FormatError, OSError)):
        client.fetch_database(Database("GeoLite2-ASN", "GeoLite2-ASN.mmdb"))


def test_download_error_status_raises_transport_error(logger):
    session = FakeSession([FakeResponse(status_code=401, text="Invalid license key")])
    client = GeoLiteClient("secret", session, logger)

    with pytest.raises(TransportError) as exc_info:
        client.fetch_country_csv()
    assert exc_info.value.status_code == 401
    assert "Invalid license key" in exc_info.value.body


def test_connection_error_does_not_leak_license_key(logger):
    session = FakeSession([requests.ConnectionError("https://x/?license_key=secret refused")])
    client = GeoLiteClient("secret", session, logger)

    with pytest.raises(TransportError) as exc_info:
        client.fetch_country_csv()
    assert "secret" not in str(exc_info.value)


def test_fetch_country_csv_returns_seekable_archive(logger):
    session = FakeSession([FakeResponse(content=country_zip().getvalue())])
    client = GeoLiteClient("secret", session, logger)

    archive, modified = client.fetch_country_csv()

    assert archive.seekable()
    assert modified.tzinfo is not None
