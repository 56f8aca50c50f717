"""
Run ledger — append-only record of what happened to every step.

One NDJSON file per target host, under `.state/ledger/` next to the
runbook. Each line is a LedgerEntry. Lines are only ever appended; the
latest entry for a step is its status. A new run reads every earlier
line so that resume decisions are made from history, not from memory.

A ledger opened with persist=False (dry-runs) reads the file but
keeps its own writes in memory.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from hostforge.core.models.ledger import LedgerEntry, StepStatus

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".state"
LEDGER_DIR = "ledger"

# Statuses that say something about the machine. Pending and skipped
# entries only say the step was not attempted.
_SETTLED = frozenset({StepStatus.SATISFIED, StepStatus.SUCCEEDED, StepStatus.FAILED})
_VERDICTS = frozenset({StepStatus.SUCCEEDED, StepStatus.FAILED})


def default_ledger_path(root: Path, host_key: str) -> Path:
    """Ledger file for a host, relative to the runbook's directory."""
    return root / DEFAULT_STATE_DIR / LEDGER_DIR / f"{host_key}.ndjson"


def read_ledger(path: Path) -> list[LedgerEntry]:
    """Read every entry from a ledger file, oldest first.

    Corrupt lines are skipped with a warning; a missing file is an
    empty ledger.
    """
    if not path.is_file():
        return []

    entries = []
    try:
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(LedgerEntry.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.warning("Skipping corrupt ledger entry at %s:%d: %s", path, line_num, e)
    except OSError as e:
        logger.error("Failed to read ledger %s: %s", path, e)

    return entries


class RunLedger:
    """The ledger as seen by one run.

    `history` holds entries from earlier runs; entries recorded through
    this object belong to `run_id`.
    """

    def __init__(
        self,
        run_id: str,
        path: Path | None = None,
        history: list[LedgerEntry] | None = None,
        persist: bool = True,
    ):
        self._run_id = run_id
        self._path = path
        self._persist = persist and path is not None
        self._history = [e for e in (history or []) if e.run_id != run_id]
        self._current: list[LedgerEntry] = [e for e in (history or []) if e.run_id == run_id]

    @classmethod
    def open(cls, path: Path, run_id: str, persist: bool = True) -> RunLedger:
        """Load a host's ledger file and start recording for `run_id`."""
        history = read_ledger(path)
        logger.debug("Loaded %d ledger entries from %s", len(history), path)
        return cls(run_id, path=path, history=history, persist=persist)

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def persistent(self) -> bool:
        return self._persist

    # ── Writing ─────────────────────────────────────────────────

    def record(self, step_id: str, status: StepStatus, **details: Any) -> LedgerEntry:
        """Append an entry for `step_id` to this run."""
        entry = LedgerEntry(run_id=self._run_id, step_id=step_id, status=status, **details)
        self._current.append(entry)
        if self._persist:
            self._append(entry)
        return entry

    def _append(self, entry: LedgerEntry) -> None:
        assert self._path is not None
        self._path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            logger.error("Failed to write ledger entry for %s: %s", entry.step_id, e)

    # ── Reading ─────────────────────────────────────────────────

    def entry_of(self, step_id: str) -> LedgerEntry | None:
        """Latest entry for a step in this run."""
        for entry in reversed(self._current):
            if entry.step_id == step_id:
                return entry
        return None

    def status_of(self, step_id: str) -> StepStatus | None:
        """Latest status of a step in this run, or None."""
        entry = self.entry_of(step_id)
        return entry.status if entry else None

    def prior_entry(self, step_id: str) -> LedgerEntry | None:
        """Latest settled entry for a step from earlier runs."""
        for entry in reversed(self._history):
            if entry.step_id == step_id and entry.status in _SETTLED:
                return entry
        return None

    def prior_status(self, step_id: str) -> StepStatus | None:
        """Latest settled status of a step from earlier runs, or None."""
        entry = self.prior_entry(step_id)
        return entry.status if entry else None

    def has_succeeded(self, step_id: str) -> bool:
        """Whether the latest verdict on the step, in this run or an
        earlier one, is a success.

        Only succeeded and failed entries are verdicts; a `satisfied`
        entry carried over from the ledger neither adds nor withdraws
        evidence. A later failure withdraws every earlier success.
        """
        for entry in reversed(self._history + self._current):
            if entry.step_id == step_id and entry.status in _VERDICTS:
                return entry.status == StepStatus.SUCCEEDED
        return False

    def entries(self, run_id: str | None = None) -> list[LedgerEntry]:
        """All entries, oldest first, optionally for a single run."""
        every = self._history + self._current
        if run_id is None:
            return every
        return [e for e in every if e.run_id == run_id]

    def current_entries(self) -> list[LedgerEntry]:
        return list(self._current)

    def run_ids(self) -> list[str]:
        """Run ids in the order they first appear."""
        return list(dict.fromkeys(e.run_id for e in self._history + self._current))

    def latest_by_step(self) -> dict[str, LedgerEntry]:
        """Latest entry per step across all runs."""
        latest: dict[str, LedgerEntry] = {}
        for entry in self._history + self._current:
            latest[entry.step_id] = entry
        return latest
