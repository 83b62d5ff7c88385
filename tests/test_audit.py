# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fortress

import io
import json
import stat
from pathlib import Path

from coreason_fortress.audit import (
    CRITICAL_PREFIX,
    FALLBACK_PREFIX,
    AuditLogger,
    audit_critical,
    audit_info,
    audit_warn,
    get_audit_logger,
)
from coreason_fortress.models import AuditSeverity, ChannelType


def _lines(path: Path) -> list:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_audit_appends_one_json_line_per_call(tmp_path: Path) -> None:
    log = AuditLogger(tmp_path / "a" / "audit.jsonl", stream=io.StringIO())
    log.info("first")
    log.warn("second", channel=ChannelType.SIGNAL, session_id="sess-1234")

    entries = _lines(log.path)
    assert [e["event"] for e in entries] == ["first", "second"]
    assert entries[0]["severity"] == "INFO"
    assert entries[1]["severity"] == "WARN"
    assert entries[1]["channel"] == "signal"
    assert entries[1]["sessionId"] == "sess-1234"
    assert entries[0]["timestamp"].endswith("Z")
    # Unset optional fields are omitted
    assert "contactId" not in entries[0]
    assert "details" not in entries[0]


def test_audit_file_and_directory_permissions(tmp_path: Path) -> None:
    log = AuditLogger(tmp_path / "private" / "audit.jsonl", stream=io.StringIO())
    log.info("perm_check")

    assert stat.S_IMODE(log.path.stat().st_mode) == 0o600
    assert stat.S_IMODE(log.path.parent.stat().st_mode) == 0o700


def test_contact_id_and_details_are_scrubbed(tmp_path: Path) -> None:
    log = AuditLogger(tmp_path / "audit.jsonl", stream=io.StringIO())
    entry = log.warn(
        "pii_check",
        contact_id="+12025551234",
        details={
            "note": "mail me at jane.doe@example.com",
            "nested": {"ssn": "123-45-6789", "items": ["call 555-123-4567"]},
            "count": 3,
        },
    )

    written = _lines(log.path)[0]
    assert written["contactId"] == "[REDACTED:phone]"
    assert written["details"]["note"] == "mail me at [REDACTED:email]"
    assert written["details"]["nested"]["ssn"] == "[REDACTED:ssn]"
    assert written["details"]["nested"]["items"] == ["call [REDACTED:phone]"]
    assert written["details"]["count"] == 3
    assert entry.contact_id == "[REDACTED:phone]"
    assert "jane.doe" not in log.path.read_text()


def test_critical_is_echoed_to_stream(tmp_path: Path) -> None:
    stream = io.StringIO()
    log = AuditLogger(tmp_path / "audit.jsonl", stream=stream)

    log.info("quiet")
    assert stream.getvalue() == ""

    log.critical("intrusion")
    assert CRITICAL_PREFIX + "intrusion" in stream.getvalue()
    assert _lines(log.path)[-1]["event"] == "intrusion"


def test_write_failure_falls_back_to_stream(tmp_path: Path) -> None:
    # A directory where the file should be makes the append fail.
    target = tmp_path / "audit.jsonl"
    target.mkdir()
    stream = io.StringIO()
    log = AuditLogger(target, stream=stream)

    log.warn("still_recorded", details={"k": "v"})

    output = stream.getvalue()
    assert output.startswith(FALLBACK_PREFIX)
    payload = json.loads(output[len(FALLBACK_PREFIX) :].splitlines()[0])
    assert payload["event"] == "still_recorded"
    assert payload["details"] == {"k": "v"}


def test_critical_fallback_writes_both_lines(tmp_path: Path) -> None:
    target = tmp_path / "audit.jsonl"
    target.mkdir()
    stream = io.StringIO()
    AuditLogger(target, stream=stream).critical("double")

    lines = stream.getvalue().splitlines()
    assert lines[0].startswith(FALLBACK_PREFIX)
    assert CRITICAL_PREFIX + "double" in lines[1]


def test_severity_accepts_plain_string(tmp_path: Path) -> None:
    log = AuditLogger(tmp_path / "audit.jsonl", stream=io.StringIO())
    entry = log.audit("ERROR", "string_severity")  # type: ignore[arg-type]
    assert entry.severity == AuditSeverity.ERROR.value


def test_tail_returns_latest_entries_and_skips_garbage(tmp_path: Path) -> None:
    log = AuditLogger(tmp_path / "audit.jsonl", stream=io.StringIO())
    for i in range(5):
        log.info(f"e{i}")
    with log.path.open("a") as fh:
        fh.write("not json\n")

    tail = log.tail(2)
    assert [e["event"] for e in tail] == ["e3", "e4"]
    assert len(log.tail(0)) == 5


def test_tail_missing_file(tmp_path: Path) -> None:
    assert AuditLogger(tmp_path / "none.jsonl", stream=io.StringIO()).tail() == []


def test_module_helpers_use_configured_logger(audit_log: AuditLogger, audit_stream: io.StringIO) -> None:
    assert get_audit_logger() is audit_log
    audit_info("mod_info")
    audit_warn("mod_warn")
    audit_critical("mod_critical")

    events = [e["event"] for e in _lines(audit_log.path)]
    assert events == ["mod_info", "mod_warn", "mod_critical"]
    assert "mod_critical" in audit_stream.getvalue()
