"""Pipeline audit trail: JSON Lines with size rotation and a SHA-256 hash chain.

Each line carries ``prev_hash``, the SHA-256 of the line before it in the same
file. The first line of a file has ``prev_hash: null``, so every rotated file
validates on its own.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from src.models import PipelineEvent

DEFAULT_MAX_BYTES = 10_485_760
DEFAULT_BACKUP_COUNT = 5

# Tail read size when recovering the last line of an existing log.
_TAIL_CHUNK = 4096


@dataclass
class ChainValidationResult:
    valid: bool
    broken_at_line: int | None = None
    entries: int = 0


def _line_hash(line: str) -> str:
    return hashlib.sha256(line.encode()).hexdigest()


def _iter_lines(log_path: Path) -> Iterator[str]:
    with open(log_path) as f:
        for raw in f:
            line = raw.rstrip("\n")
            if line:
                yield line


def validate_audit_chain(log_path: Path) -> ChainValidationResult:
    """Walk the log and report the first line whose ``prev_hash`` is wrong.

    A line that is not a JSON object breaks the chain at that line.
    """
    expected: str | None = None
    count = 0
    for count, line in enumerate(_iter_lines(log_path), start=1):
        try:
            entry = json.loads(line)
        except ValueError:
            return ChainValidationResult(valid=False, broken_at_line=count, entries=count - 1)
        if not isinstance(entry, dict) or entry.get("prev_hash") != expected:
            return ChainValidationResult(valid=False, broken_at_line=count, entries=count - 1)
        expected = _line_hash(line)
    return ChainValidationResult(valid=True, entries=count)


def _last_line(log_path: Path) -> str | None:
    """Return the last non-empty line of the file without reading all of it."""
    if not log_path.exists():
        return None
    with open(log_path, "rb") as f:
        f.seek(0, os.SEEK_END)
        end = f.tell()
        buf = b""
        pos = end
        while pos > 0:
            step = min(_TAIL_CHUNK, pos)
            pos -= step
            f.seek(pos)
            buf = f.read(step) + buf
            stripped = buf.rstrip(b"\n")
            if b"\n" in stripped:
                return stripped.rsplit(b"\n", 1)[1].decode()
        stripped = buf.rstrip(b"\n")
        return stripped.decode() if stripped else None


class AuditLogger:
    """Appends PipelineEvents to a hash-chained JSON Lines file.

    Several worker processes may share one log: the chain tail is re-read
    from disk under an exclusive ``flock`` on every append.
    """

    def __init__(
        self,
        log_path: str,
        max_bytes: int = DEFAULT_MAX_BYTES,
        backup_count: int = DEFAULT_BACKUP_COUNT,
    ) -> None:
        self.log_path = Path(log_path)
        self._max_bytes = max_bytes
        self._backup_count = backup_count
        self._lock_path = self.log_path.parent / f".{self.log_path.name}.lock"

    @classmethod
    def from_env(cls, log_path: str) -> AuditLogger:
        """Build a logger using AUDIT_LOG_MAX_BYTES / AUDIT_LOG_BACKUP_COUNT."""
        return cls(
            log_path=log_path,
            max_bytes=int(os.environ.get("AUDIT_LOG_MAX_BYTES", str(DEFAULT_MAX_BYTES))),
            backup_count=int(
                os.environ.get("AUDIT_LOG_BACKUP_COUNT", str(DEFAULT_BACKUP_COUNT)),
            ),
        )

    def _backup(self, index: int) -> Path:
        return self.log_path.with_name(f"{self.log_path.name}.{index}")

    def _rotate_if_full(self) -> None:
        if not self.log_path.exists() or self.log_path.stat().st_size < self._max_bytes:
            return
        self._backup(self._backup_count).unlink(missing_ok=True)
        for index in range(self._backup_count - 1, 0, -1):
            if self._backup(index).exists():
                self._backup(index).rename(self._backup(index + 1))
        self.log_path.rename(self._backup(1))

    def log(self, event: PipelineEvent) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        record = event.model_dump(mode="json")

        with open(self._lock_path, "w") as lock:
            fcntl.flock(lock, fcntl.LOCK_EX)
            try:
                self._rotate_if_full()
                tail = _last_line(self.log_path)
                record["prev_hash"] = _line_hash(tail) if tail is not None else None
                with open(self.log_path, "a") as f:
                    f.write(json.dumps(record, separators=(",", ":")) + "\n")
            finally:
                fcntl.flock(lock, fcntl.LOCK_UN)
