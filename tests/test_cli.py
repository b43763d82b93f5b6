"""Tests for drive_import CLI helpers."""
import asyncio
import csv
import io
import json
import logging
import os
from pathlib import Path

import pytest

from drive_import.cli import (
    _build_config,
    _build_parser,
    _load_env_file,
    _resolve_database,
    _setup_logging,
    run_cli,
)
from drive_import.models import DEFAULT_DATABASE, DuplicateStrategy
from drive_import.services.store import RecordStore

from conftest import make_file, seed


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ("HUMATA_API_KEY", "GOOGLE_ACCESS_TOKEN", "DRIVE_IMPORT_DATABASE", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    yield
    logging.disable(logging.NOTSET)
    for handler in list(logging.getLogger().handlers):
        logging.getLogger().removeHandler(handler)


def _seeded_database(path: Path) -> Path:
    async def _seed():
        async with RecordStore(path) as store:
            await seed(store, make_file("A", "same.pdf"))
            await seed(store, make_file("B", "same.pdf"), duplicate_of="A")
            await seed(store, make_file("C"))

    asyncio.run(_seed())
    return path


def test_load_env_file(tmp_path, monkeypatch):
    env_path = tmp_path / ".env"
    env_path.write_text(
        "\n".join(
            [
                "# credentials",
                "HUMATA_API_KEY=abc",
                "GOOGLE_ACCESS_TOKEN='ya29.token'",
                "export DRIVE_IMPORT_DATABASE=/tmp/session.db",
            ]
        ),
        encoding="utf-8",
    )

    _load_env_file(env_path)

    assert os.environ["HUMATA_API_KEY"] == "abc"
    assert os.environ["GOOGLE_ACCESS_TOKEN"] == "ya29.token"
    assert os.environ["DRIVE_IMPORT_DATABASE"] == "/tmp/session.db"


def test_load_env_file_does_not_override(tmp_path, monkeypatch):
    monkeypatch.setenv("HUMATA_API_KEY", "from-shell")
    env_path = tmp_path / ".env"
    env_path.write_text("HUMATA_API_KEY=from-file\n", encoding="utf-8")

    _load_env_file(env_path)

    assert os.environ["HUMATA_API_KEY"] == "from-shell"


def test_setup_logging_modes(monkeypatch):
    assert _setup_logging(debug=False, silent=False, log_level=None) == "silent"
    assert _setup_logging(debug=True, silent=False, log_level=None) == "DEBUG"
    assert _setup_logging(debug=False, silent=False, log_level="warning") == "WARNING"
    monkeypatch.setenv("LOG_LEVEL", "info")
    assert _setup_logging(debug=False, silent=False, log_level=None) == "INFO"
    assert _setup_logging(debug=True, silent=True, log_level=None) == "silent"


def test_resolve_database(monkeypatch):
    assert _resolve_database(None) == DEFAULT_DATABASE
    monkeypatch.setenv("DRIVE_IMPORT_DATABASE", "/data/import.db")
    assert _resolve_database(None) == Path("/data/import.db")
    assert _resolve_database(Path("x.db")) == Path("x.db")


def test_build_config_from_run_arguments():
    args = _build_parser().parse_args(
        [
            "--requests-per-minute", "30",
            "run", "https://drive.google.com/drive/folders/F1",
            "--folder-id", "folder-1",
            "--no-recursive",
            "--max-files", "5",
            "--workers", "32",
            "--max-retries", "2",
            "--retry-delay", "1.5",
            "--skip-retries",
            "--reclaim-after", "60",
            "--timeout", "60",
            "--discover-timeout", "30",
            "--duplicate-strategy", "upload",
        ]
    )
    config = _build_config(args)

    assert config.requests_per_minute == 30
    assert config.discover.source_url == "https://drive.google.com/drive/folders/F1"
    assert config.discover.recursive is False
    assert config.discover.max_files == 5
    assert config.discover.timeout == 30
    assert config.upload.folder_id == "folder-1"
    assert config.upload.effective_workers == 16
    assert config.upload.max_retries == 2
    assert config.upload.retry_delay == 1.5
    assert config.upload.retry_failed is False
    assert config.upload.stale_claim_after == 60
    assert config.verify.timeout == 60
    assert config.upload.duplicate_strategy is DuplicateStrategy.UPLOAD
    assert config.discover.duplicate_strategy is DuplicateStrategy.UPLOAD


def test_build_config_keeps_defaults():
    config = _build_config(_build_parser().parse_args(["verify"]))
    assert config.verify.poll_interval == 10.0
    assert config.discover.recursive is True
    assert config.upload.retry_failed is True


def test_no_command_prints_help(capsys):
    assert run_cli([]) == 0
    assert "drive-import" in capsys.readouterr().out


def test_upload_without_api_key_fails(capsys):
    assert run_cli(["upload", "--folder-id", "folder-1"]) == 1
    assert "HUMATA_API_KEY" in capsys.readouterr().err


def test_discover_with_invalid_options_fails(capsys):
    assert run_cli(["discover", "https://drive.google.com/drive/folders/F1", "--max-files", "0"]) == 1
    assert "max_files" in capsys.readouterr().err


def test_status_json(tmp_path, capsys):
    database = _seeded_database(tmp_path / "session.db")

    assert run_cli(["--database", str(database), "status", "--format", "json"]) == 0

    doc = json.loads(capsys.readouterr().out)
    assert doc["total_files"] == 3
    assert doc["upload"] == {"pending": 3}
    assert [f["external_id"] for f in doc["files"]] == ["A", "B", "C"]
    assert doc["files"][1]["duplicate_of"] == "A"


def test_status_csv_to_file(tmp_path):
    database = _seeded_database(tmp_path / "session.db")
    output = tmp_path / "report.csv"

    assert run_cli(["--database", str(database), "status", "--format", "csv", "--output", str(output)]) == 0

    rows = list(csv.DictReader(io.StringIO(output.read_text(encoding="utf-8"))))
    assert [r["external_id"] for r in rows] == ["A", "B", "C"]
    assert rows[0]["upload_status"] == "pending"


def test_status_failed_only_text(tmp_path, capsys):
    database = _seeded_database(tmp_path / "session.db")

    assert run_cli(["--database", str(database), "status", "--failed-only"]) == 0

    assert "Failed: 0 files ready for retry" in capsys.readouterr().out


def test_duplicates_json(tmp_path, capsys):
    database = _seeded_database(tmp_path / "session.db")

    assert run_cli(["--database", str(database), "duplicates", "--format", "json"]) == 0

    groups = json.loads(capsys.readouterr().out)
    assert len(groups) == 1
    assert [f["external_id"] for f in groups[0]["files"]] == ["A", "B"]
