"""Tests for the command line interface."""

import json
import logging

import pytest

from recordsync.cli import main


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger = logging.getLogger("recordsync")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def workspace(tmp_path, make_lead):
    (tmp_path / "leads.json").write_text(json.dumps([make_lead(1), make_lead(2, company="Acme (EU)")]))
    (tmp_path / "mapping.json").write_text(json.dumps({
        "object_type": "contacts",
        "primary_key": "email",
        "display_name_field": "company",
        "fields": {"email": "email", "company": "company"},
    }))
    (tmp_path / "migration.json").write_text(json.dumps({
        "name": "leads",
        "source": {"type": "file", "object_type": "leads", "file_path": "leads.json"},
        "target": {"type": "memory"},
        "mapping_file": "mapping.json",
        "inter_item_delay": 0,
        "page_delay": 0,
    }))
    return tmp_path


def test_no_command_prints_help(capsys):
    assert main([]) == 1
    assert "usage" in capsys.readouterr().out


def test_run_succeeds(workspace, capsys):
    code = main(["run", "--config", str(workspace / "migration.json")])

    out = capsys.readouterr().out
    assert code == 0
    assert "MIGRATION COMPLETE" in out
    assert "Migrated: 2" in out


def test_run_writes_logs_and_report(workspace):
    log_dir = workspace / "logs"

    code = main(["run", "--config", str(workspace / "migration.json"), "--dry-run", "--log-dir", str(log_dir)])

    assert code == 0
    assert len(list(log_dir.glob("migration_report_*.json"))) == 1
    assert list((log_dir / "info").glob("*-info.log"))


def test_run_with_missing_secret_fails(tmp_path, monkeypatch):
    monkeypatch.delenv("RECORDSYNC_TEST_TOKEN", raising=False)
    path = tmp_path / "migration.json"
    path.write_text(json.dumps({
        "source": {
            "object_type": "leads",
            "base_url": "https://source.example.com",
            "auth": {"type": "bearer", "token_env": "RECORDSYNC_TEST_TOKEN"},
        },
        "target": {"type": "memory"},
        "mapping": {"object_type": "contacts", "fields": {}},
    }))

    assert main(["run", "--config", str(path)]) == 1


def test_run_with_missing_config_fails(tmp_path):
    assert main(["run", "--config", str(tmp_path / "absent.json")]) == 1


def test_preview(workspace, capsys):
    code = main([
        "preview", "--mapping", str(workspace / "mapping.json"), "--input", str(workspace / "leads.json"),
    ])

    out = capsys.readouterr().out
    assert code == 0
    assert '"company": "Acme [EU]"' in out


def test_preview_unreadable_input(workspace):
    code = main([
        "preview", "--mapping", str(workspace / "mapping.json"), "--input", str(workspace / "absent.json"),
    ])

    assert code == 1


def test_preview_rejects_non_object_items(workspace, capsys):
    path = workspace / "mixed.json"
    path.write_text(json.dumps([{"id": "1", "email": "a@b.c"}, 5]))

    code = main(["preview", "--mapping", str(workspace / "mapping.json"), "--input", str(path)])

    assert code == 1
    assert capsys.readouterr().out == ""
