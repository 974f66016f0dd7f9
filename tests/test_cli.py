"""Tests for the command line entry points."""

import asyncio
import io

import pytest

from evebridge.cli import main, run_ingest
from evebridge.config import Settings
from evebridge.storage import EventStore
from conftest import ALERT_LINE, FakeBroker


def test_cli_help():
    with pytest.raises(SystemExit) as exc_info:
        main(["--help"])
    assert exc_info.value.code == 0


def test_ingest_requires_tenant(monkeypatch):
    monkeypatch.setattr("evebridge.cli.settings", Settings(_env_file=None))
    assert main(["ingest"]) == 2


def test_ingest_missing_file(monkeypatch, tmp_path):
    monkeypatch.setattr("evebridge.cli.settings", Settings(_env_file=None))
    assert main(["ingest", "--tenant-id", "1", "--input", str(tmp_path / "nope.json")]) == 2


def test_ingest_store_unreachable_is_fatal(monkeypatch, tmp_path):
    cfg = Settings(_env_file=None, DATABASE_PATH=str(tmp_path))
    monkeypatch.setattr("evebridge.cli.settings", cfg)
    src = tmp_path / "eve.json"
    src.write_bytes(ALERT_LINE + b"\n")
    assert main(["ingest", "--tenant-id", "1", "--input", str(src)]) == 1


def test_run_ingest_end_to_end(tmp_path, tenant):
    db = tmp_path / "events.db"
    cfg = Settings(_env_file=None, DATABASE_PATH=str(db))
    broker = FakeBroker()
    stream = io.BytesIO(ALERT_LINE + b"\n\n{broken\n" + ALERT_LINE + b"\n")

    stats = asyncio.run(run_ingest(cfg, tenant, stream, broker=broker))

    assert stats.parsed == 2
    assert stats.parse_errors == 1
    assert [s for s, _, _ in broker.published] == ["events.alert", "events.alert"]
    assert not broker.closed
    store = EventStore(str(db)).open()
    try:
        assert store.count() == 2
    finally:
        store.close()
