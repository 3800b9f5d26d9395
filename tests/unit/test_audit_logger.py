"""Tests for the hash-chained pipeline audit log."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path

import pytest

from src.audit.logger import AuditLogger, validate_audit_chain
from src.models import PipelineEvent, Stage


def _event(outcome: str = "ok", **kwargs: object) -> PipelineEvent:
    return PipelineEvent(stage=Stage.RESOLVED, outcome=outcome, provider="facebook", **kwargs)


def _entries(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text().splitlines()]


@pytest.fixture
def log_file(tmp_path: Path) -> Path:
    return tmp_path / "logs" / "pipeline.jsonl"


class TestAppend:
    def test_record_fields(self, log_file: Path) -> None:
        AuditLogger(str(log_file)).log(
            _event("unknown_account", metadata={"external_event_id": "c1"}),
        )
        [entry] = _entries(log_file)
        assert entry["stage"] == "resolved"
        assert entry["outcome"] == "unknown_account"
        assert entry["provider"] == "facebook"
        assert entry["metadata"] == {"external_event_id": "c1"}
        assert entry["prev_hash"] is None
        assert "T" in entry["timestamp"]

    def test_creates_parent_directory(self, log_file: Path) -> None:
        AuditLogger(str(log_file)).log(_event())
        assert log_file.exists()

    def test_order_preserved(self, log_file: Path) -> None:
        audit = AuditLogger(str(log_file))
        for stage in (Stage.RECEIVED, Stage.VERIFIED, Stage.RESPONDED):
            audit.log(PipelineEvent(stage=stage, outcome="ok"))
        assert [e["stage"] for e in _entries(log_file)] == ["received", "verified", "responded"]


class TestChain:
    def test_links_to_previous_line(self, log_file: Path) -> None:
        audit = AuditLogger(str(log_file))
        audit.log(_event("first"))
        audit.log(_event("second"))
        first_line = log_file.read_text().splitlines()[0]
        assert _entries(log_file)[1]["prev_hash"] == hashlib.sha256(
            first_line.encode(),
        ).hexdigest()

    def test_two_writers_share_one_chain(self, log_file: Path) -> None:
        a = AuditLogger(str(log_file))
        b = AuditLogger(str(log_file))
        a.log(_event("a1"))
        b.log(_event("b1"))
        a.log(_event("a2"))
        result = validate_audit_chain(log_file)
        assert result.valid
        assert result.entries == 3

    def test_long_lines_recovered_from_tail(self, log_file: Path) -> None:
        audit = AuditLogger(str(log_file))
        audit.log(_event(metadata={"blob": "x" * 10_000}))
        audit.log(_event(metadata={"blob": "y" * 10_000}))
        assert validate_audit_chain(log_file).valid

    def test_edit_detected_on_following_line(self, log_file: Path) -> None:
        audit = AuditLogger(str(log_file))
        for i in range(4):
            audit.log(_event(f"outcome-{i}"))
        lines = log_file.read_text().splitlines()
        lines[1] = lines[1].replace("outcome-1", "outcome-X")
        log_file.write_text("\n".join(lines) + "\n")

        result = validate_audit_chain(log_file)
        assert not result.valid
        assert result.broken_at_line == 3
        assert result.entries == 2

    def test_deleted_line_detected(self, log_file: Path) -> None:
        audit = AuditLogger(str(log_file))
        for i in range(3):
            audit.log(_event(f"outcome-{i}"))
        lines = log_file.read_text().splitlines()
        del lines[1]
        log_file.write_text("\n".join(lines) + "\n")
        assert validate_audit_chain(log_file).broken_at_line == 2

    def test_non_json_line(self, log_file: Path) -> None:
        AuditLogger(str(log_file)).log(_event())
        with open(log_file, "a") as f:
            f.write("garbage\n")
        result = validate_audit_chain(log_file)
        assert not result.valid
        assert result.broken_at_line == 2

    def test_forged_first_line(self, log_file: Path) -> None:
        log_file.parent.mkdir(parents=True)
        log_file.write_text(json.dumps({"stage": "received", "prev_hash": "abc"}) + "\n")
        assert validate_audit_chain(log_file).broken_at_line == 1

    def test_empty_log_is_valid(self, log_file: Path) -> None:
        log_file.parent.mkdir(parents=True)
        log_file.write_text("")
        result = validate_audit_chain(log_file)
        assert result.valid
        assert result.entries == 0


class TestRotation:
    def test_rotates_past_threshold(self, log_file: Path) -> None:
        audit = AuditLogger(str(log_file), max_bytes=150, backup_count=3)
        for i in range(12):
            audit.log(_event(f"outcome-{i}"))
        assert log_file.with_name("pipeline.jsonl.1").exists()

    def test_keeps_at_most_backup_count(self, log_file: Path) -> None:
        audit = AuditLogger(str(log_file), max_bytes=50, backup_count=2)
        for i in range(40):
            audit.log(_event(f"outcome-{i}"))
        assert log_file.with_name("pipeline.jsonl.2").exists()
        assert not log_file.with_name("pipeline.jsonl.3").exists()

    def test_every_file_validates_alone(self, log_file: Path) -> None:
        audit = AuditLogger(str(log_file), max_bytes=300, backup_count=2)
        for i in range(15):
            audit.log(_event(f"outcome-{i}"))
        for path in (log_file, log_file.with_name("pipeline.jsonl.1")):
            assert validate_audit_chain(path).valid
        assert _entries(log_file)[0]["prev_hash"] is None

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch, log_file: Path) -> None:
        monkeypatch.setenv("AUDIT_LOG_MAX_BYTES", "2048")
        monkeypatch.setenv("AUDIT_LOG_BACKUP_COUNT", "9")
        audit = AuditLogger.from_env(str(log_file))
        assert audit._max_bytes == 2048
        assert audit._backup_count == 9
