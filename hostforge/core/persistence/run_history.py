"""
Run history — one summary line per finished run.

Every real (non-dry) run appends a RunRecord to `.state/runs.ndjson`
next to the runbook. The per-step detail lives in the host ledger; this
file answers "what happened last time, and when".

Append-only: records are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from hostforge.core.models.ledger import RunRecord
from hostforge.core.persistence.ledger import DEFAULT_STATE_DIR

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_FILE = "runs.ndjson"


class RunHistory:
    """Append-only writer/reader for run summaries."""

    def __init__(self, path: Path | None = None, root: Path | None = None):
        if path is not None:
            self._path = path
        elif root is not None:
            self._path = root / DEFAULT_STATE_DIR / DEFAULT_HISTORY_FILE
        else:
            self._path = Path(DEFAULT_STATE_DIR) / DEFAULT_HISTORY_FILE

    @property
    def path(self) -> Path:
        return self._path

    def write(self, record: RunRecord) -> None:
        """Append a run record."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record.model_dump(mode="json"), ensure_ascii=False) + "\n"

        try:
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Run record written: %s (%s)", record.run_id, record.status)
        except OSError as e:
            logger.error("Failed to write run record: %s", e)

    def read_all(self, host: str | None = None) -> list[RunRecord]:
        """All records, oldest first, optionally for one host key."""
        if not self._path.is_file():
            return []

        records = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(RunRecord.model_validate(json.loads(line)))
                    except (json.JSONDecodeError, ValidationError) as e:
                        logger.warning("Skipping corrupt run record at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read run history: %s", e)

        if host is not None:
            records = [r for r in records if r.host == host]
        return records

    def read_recent(self, n: int = 20, host: str | None = None) -> list[RunRecord]:
        return self.read_all(host)[-n:]

    def latest(self, host: str | None = None) -> RunRecord | None:
        records = self.read_all(host)
        return records[-1] if records else None

    def find(self, run_id: str) -> RunRecord | None:
        for record in self.read_all():
            if record.run_id == run_id:
                return record
        return None

    def entry_count(self) -> int:
        """Count records without parsing them."""
        if not self._path.is_file():
            return 0
        try:
            with self._path.open("r", encoding="utf-8") as f:
                return sum(1 for line in f if line.strip())
        except OSError:
            return 0
