"""
Audit ledger: append-only run history.

Every play run can append an entry to an NDJSON (newline-delimited
JSON) file next to the playbook. Entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

if TYPE_CHECKING:
    from hostplay.core.engine.runner import RunReport

logger = logging.getLogger(__name__)

# Default audit location, relative to the playbook directory
DEFAULT_AUDIT_DIR = ".hostplay"
DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """A single audit log entry: one play run."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    playbook_file: str = ""
    play: str = ""
    dry_run: bool = False

    # Results
    status: str = ""               # ok, partial, failed, cancelled
    hosts: list[str] = Field(default_factory=list)
    failed_hosts: list[str] = Field(default_factory=list)
    tasks_total: int = 0
    tasks_changed: int = 0
    tasks_failed: int = 0
    tasks_skipped: int = 0
    duration_ms: int = 0

    # Errors (if any)
    errors: list[str] = Field(default_factory=list)

    @classmethod
    def from_report(
        cls,
        report: RunReport,
        *,
        run_id: str = "",
        playbook_file: str = "",
        dry_run: bool = False,
        duration_ms: int = 0,
    ) -> AuditEntry:
        records = report.records
        return cls(
            run_id=run_id,
            playbook_file=playbook_file,
            play=report.playbook,
            dry_run=dry_run,
            status=report.status,
            hosts=[h.host for h in report.hosts],
            failed_hosts=report.failed_hosts,
            tasks_total=len(records),
            tasks_changed=sum(1 for r in records if r.changed),
            tasks_failed=sum(1 for r in records if r.fatal),
            tasks_skipped=sum(1 for r in records if r.status == "skipped"),
            duration_ms=duration_ms,
            errors=[f"{r.host}: {r.task}: {r.error}" for r in records if r.fatal],
        )


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    return f"run-{now}-{uuid.uuid4().hex[:6]}"


def default_audit_path(playbook_dir: Path) -> Path:
    return playbook_dir / DEFAULT_AUDIT_DIR / DEFAULT_AUDIT_FILE


def resolve_audit_path(playbook_path: Path, configured: str | None = None) -> Path:
    """The ledger a playbook's runs go to: ``audit_path`` setting, else the default."""
    if configured:
        return Path(configured)
    return default_audit_path(playbook_path.parent.resolve())


class AuditWriter:
    """Append-only audit ledger writer.

    Each call to write() appends a single JSON line to the ledger file.
    The file is created if it doesn't exist.
    """

    def __init__(self, path: Path):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append an audit entry to the ledger."""
        data: dict[str, Any] = entry.model_dump(mode="json")
        line = json.dumps(data, ensure_ascii=False) + "\n"

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Audit entry written: %s/%s", entry.run_id, entry.play)
        except OSError as e:
            logger.error("Failed to write audit entry: %s", e)

    def read_all(self) -> list[AuditEntry]:
        """All entries, oldest first. Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(AuditEntry.model_validate(json.loads(line)))
                    except (json.JSONDecodeError, ValidationError) as e:
                        logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read audit ledger: %s", e)

        return entries

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        """The most recent N entries."""
        return self.read_all()[-n:]

    def entry_count(self) -> int:
        """Count entries without parsing them."""
        if not self._path.is_file():
            return 0
        try:
            with self._path.open("r", encoding="utf-8") as f:
                return sum(1 for line in f if line.strip())
        except OSError:
            return 0
