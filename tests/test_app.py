from __future__ import annotations

import json
import logging
import os
import sqlite3

import pytest

import app
import settings


def _make_chat_db(path) -> None:
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE handle (ROWID INTEGER PRIMARY KEY, id TEXT)")
    conn.execute(
        "CREATE TABLE message (ROWID INTEGER PRIMARY KEY, text TEXT, date INTEGER, is_from_me INTEGER, handle_id INTEGER)"
    )
    conn.execute("INSERT INTO handle (ROWID, id) VALUES (1, 'Bank')")
    conn.executemany(
        "INSERT INTO message (ROWID, text, date, is_from_me, handle_id) VALUES (?, ?, ?, ?, ?)",
        [
            (1, "Your verification code is 482915", 700_000_000, 0, 1),
            (2, "Lunch at noon?", 700_000_100, 0, 1),
            (3, "Your code is 482915", 700_000_200, 1, 1),
        ],
    )
    conn.commit()
    conn.close()


@pytest.fixture()
def local_settings(tmp_path, monkeypatch):
    chat_db = tmp_path / "chat.db"
    _make_chat_db(chat_db)
    monkeypatch.setattr(settings, "SOURCE_DB_PATH", str(chat_db))
    monkeypatch.setattr(settings, "STATE_DB_PATH", str(tmp_path / "state" / "otpwatch.db"))
    monkeypatch.setattr(settings, "DISPATCH_CLIPBOARD", False)
    monkeypatch.setattr(settings, "DISPATCH_NOTIFICATIONS", False)
    monkeypatch.setattr(settings, "SENDER_ALIASES", {})
    monkeypatch.setattr(settings, "PATTERNS_CONFIG", {})
    monkeypatch.setattr(settings, "LOGGING", {})
    return tmp_path


def test_extract_prints_code_and_rule(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        app.main(["extract", "Your verification code is 482915"])

    assert excinfo.value.code == 0
    assert capsys.readouterr().out.strip() == "482915 (rule digits_6)"


def test_extract_without_code_exits_nonzero(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        app.main(["extract", "See you at 1530"])

    assert excinfo.value.code == 1
    assert "No code found" in capsys.readouterr().out


def test_scan_then_rescan_is_idempotent(local_settings, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        app.main(["scan", "--no-dispatch"])
    assert excinfo.value.code == 0
    out = capsys.readouterr().out
    assert "Detections: 1 (duplicates 0)" in out
    assert "482915 from Bank" in out
    assert "Watermark: 3" in out

    # A second process resumes from the stored watermark.
    with pytest.raises(SystemExit) as excinfo:
        app.main(["scan", "--no-dispatch"])
    assert excinfo.value.code == 0
    out = capsys.readouterr().out
    assert "Messages checked: 0" in out
    assert "Detections: 0" in out


def test_scan_reports_missing_source(local_settings, monkeypatch, capsys) -> None:
    monkeypatch.setattr(settings, "SOURCE_DB_PATH", str(local_settings / "missing" / "chat.db"))

    with pytest.raises(SystemExit) as excinfo:
        app.main(["scan"])

    assert excinfo.value.code == 1
    assert "Error:" in capsys.readouterr().out


def test_status_after_scan(local_settings, capsys) -> None:
    with pytest.raises(SystemExit):
        app.main(["scan", "--no-dispatch"])
    capsys.readouterr()

    with pytest.raises(SystemExit) as excinfo:
        app.main(["status", "--limit", "3"])

    assert excinfo.value.code == 0
    out = capsys.readouterr().out
    assert "Watermark: 3" in out
    assert "Detections: 1" in out
    assert "482915 from Bank" in out


def test_reset_watermark_then_rescan_is_deduplicated(local_settings, capsys) -> None:
    with pytest.raises(SystemExit):
        app.main(["scan", "--no-dispatch"])
    with pytest.raises(SystemExit):
        app.main(["reset-watermark"])
    capsys.readouterr()

    with pytest.raises(SystemExit):
        app.main(["scan", "--no-dispatch"])

    out = capsys.readouterr().out
    assert "Detections: 0 (duplicates 1)" in out
    assert "Watermark: 3" in out


def test_shipped_config_processes_history_on_first_run() -> None:
    with open(os.path.join(settings.PROJECT_ROOT, "config.json"), encoding="utf-8") as handle:
        shipped = json.load(handle)

    assert shipped["monitor"].get("catch_up", True) is True


def _record(code: str) -> logging.LogRecord:
    record = logging.LogRecord(
        "core.monitor", logging.INFO, __file__, 1, "OTP %s via %s", (code, "s3cr3t-token"), None
    )
    record.otp_code = code
    return record


def test_redacting_formatter_masks_codes_and_env_secrets(monkeypatch) -> None:
    monkeypatch.setenv("OTPWATCH_TEST_TOKEN", "s3cr3t-token")
    monkeypatch.delenv("OTPWATCH_UNSET_TOKEN", raising=False)
    secrets = app._env_secrets({"enabled": True, "patterns": ["OTPWATCH_TEST_TOKEN", "OTPWATCH_UNSET_TOKEN"]})

    assert secrets == ["s3cr3t-token"]
    assert app._env_secrets({"enabled": False, "patterns": ["OTPWATCH_TEST_TOKEN"]}) == []

    masked = app._RedactingFormatter("%(message)s", secrets=secrets, mask_codes=True)
    assert masked.format(_record("482915")) == "OTP ****** via ***"

    plain = app._RedactingFormatter("%(message)s", secrets=secrets)
    assert plain.format(_record("482915")) == "OTP 482915 via ***"
