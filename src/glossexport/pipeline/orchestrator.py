"""Export orchestration.

One run, end to end:
1. Select candidates: complete books with pending gloss events
   (query failure here aborts the run)
2. Plan per language: assemble and build the changed book subtrees
   (query failure aborts the run before any remote write; integrity
   errors skip only that language)
3. Sync per language: one read-merge-conditional-write per language,
   languages in parallel on a bounded worker pool
4. Settle: mark the consumed gloss events SYNCED for languages whose
   document is now current

Languages with nothing selected never touch the content store.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from glossexport.export import IntegrityError
from glossexport.export.assembler import DataAssembler
from glossexport.export.changes import BookChange, ChangeTracker
from glossexport.export.completion import CompletionDetector
from glossexport.export.document import DocumentBuilder, book_key
from glossexport.pipeline.stages import log_export, run_stage
from glossexport.sync.client import (
    ConflictExhaustedError,
    SyncClient,
    SyncResult,
    SyncTimeoutError,
)
from glossexport.sync.models import SyncError

logger = logging.getLogger(__name__)

LANGUAGES_SQL = "SELECT id, code FROM languages ORDER BY code"


class RunAbortedError(Exception):
    """The run stopped before any language could be processed safely."""

    pass


class OutcomeStatus(Enum):
    """Per-language result of a run."""

    SUCCESS = "success"
    """Document is current (written, or already matching)."""

    SKIPPED = "skipped"
    """No complete book with pending changes."""

    CONFLICT_EXHAUSTED = "conflict_exhausted"
    """Every write attempt hit a stale revision token."""

    INTEGRITY_ERROR = "integrity_error"
    """Assembled data disagreed with the verse/word structure."""

    FAILED = "failed"
    """Remote read/write failure, decode failure or timeout."""


@dataclass
class LanguageOutcome:
    """What happened to one language during a run."""

    language_id: int
    language_code: str
    status: OutcomeStatus
    books: list[str] = field(default_factory=list)
    revision: str | None = None
    written: bool = False
    attempts: int = 0
    settled_events: int = 0
    message: str = ""
    settle_error: str = ""

    def to_dict(self) -> dict:
        result = {
            "language_id": self.language_id,
            "language_code": self.language_code,
            "status": self.status.value,
            "books": self.books,
            "written": self.written,
            "attempts": self.attempts,
            "settled_events": self.settled_events,
        }
        if self.revision:
            result["revision"] = self.revision
        if self.message:
            result["message"] = self.message
        if self.settle_error:
            result["settle_error"] = self.settle_error
        return result


@dataclass
class RunSummary:
    """Aggregated outcome of one export run."""

    started_at: str
    finished_at: str = ""
    outcomes: list[LanguageOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when every language succeeded or was skipped."""
        return all(
            o.status in (OutcomeStatus.SUCCESS, OutcomeStatus.SKIPPED)
            and not o.settle_error
            for o in self.outcomes
        )

    @property
    def writes(self) -> int:
        return sum(1 for o in self.outcomes if o.written)

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    def outcome_for(self, language_code: str) -> LanguageOutcome | None:
        for outcome in self.outcomes:
            if outcome.language_code == language_code:
                return outcome
        return None

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "ok": self.ok,
            "writes": self.writes,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


@dataclass
class LanguagePlan:
    """Changed books for one language, ready to sync."""

    language_id: int
    language_code: str
    changes: list[BookChange] = field(default_factory=list)
    books: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def event_ids(self) -> list[int]:
        return sorted({e for change in self.changes for e in change.event_ids})


class ExportOrchestrator:
    """Runs the export pipeline once across all languages.

    Usage:
        with managed_connection(db_path) as conn, SyncClient(...) as client:
            summary = ExportOrchestrator(conn, client).run()
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        client: SyncClient,
        *,
        max_workers: int = 4,
        run_timeout: float | None = None,
        settle_events: bool = True,
    ):
        self._conn = conn
        self._client = client
        self._max_workers = max_workers
        self._run_timeout = run_timeout
        self._settle_events = settle_events
        self._detector = CompletionDetector(conn)
        self._tracker = ChangeTracker(conn)
        self._assembler = DataAssembler(conn)
        self._builder = DocumentBuilder()

    def run(self) -> RunSummary:
        """Run the pipeline once.

        Raises:
            RunAbortedError: A relational query failed before any write
        """
        summary = RunSummary(started_at=_now())
        deadline = (
            time.monotonic() + self._run_timeout if self._run_timeout else None
        )
        log_export("starting export")

        selected = run_stage("candidate selection", self._select, catch=(sqlite3.Error,))
        if not selected.ok:
            raise RunAbortedError(
                f"Candidate selection failed: {selected.error}"
            ) from selected.error
        languages, changes = selected.value
        log_export(f"{len(changes)} changed complete book(s) selected")

        planned = run_stage(
            "data assembly", self._plan, languages, changes, catch=(sqlite3.Error,)
        )
        if not planned.ok:
            raise RunAbortedError(
                f"Data assembly failed: {planned.error}"
            ) from planned.error
        plans, outcomes = planned.value
        log_export("completed data gathered")

        if plans:
            self._report_new_folders(plans, deadline)
            outcomes.update(self._sync_all(plans, deadline))
            if self._settle_events:
                self._settle(plans, outcomes)

        summary.outcomes = [outcomes[code] for code in sorted(outcomes)]
        summary.finished_at = _now()
        self._log_summary(summary)
        return summary

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _select(self) -> tuple[dict[int, str], list[BookChange]]:
        languages = {
            row["id"]: row["code"] for row in self._conn.execute(LANGUAGES_SQL)
        }
        complete = self._detector.detect()
        changes = self._tracker.select(complete)
        logger.info(
            "%d complete (language, book) pair(s), %d with pending changes",
            len(complete),
            len(changes),
        )
        return languages, changes

    def _plan(
        self, languages: dict[int, str], changes: list[BookChange]
    ) -> tuple[list[LanguagePlan], dict[str, LanguageOutcome]]:
        by_language: dict[int, list[BookChange]] = {}
        for change in changes:
            by_language.setdefault(change.language_id, []).append(change)

        plans: list[LanguagePlan] = []
        outcomes: dict[str, LanguageOutcome] = {}
        for language_id, code in languages.items():
            language_changes = by_language.get(language_id)
            if not language_changes:
                outcomes[code] = LanguageOutcome(
                    language_id, code, OutcomeStatus.SKIPPED
                )
                continue

            plan = LanguagePlan(language_id, code, changes=language_changes)
            try:
                fragments = [self._assembler.assemble(c.key) for c in language_changes]
                plan.books = self._builder.build_books(fragments)
            except (IntegrityError, LookupError) as e:
                log_export(f"{code} skipped: {e}", logging.ERROR)
                outcomes[code] = LanguageOutcome(
                    language_id,
                    code,
                    OutcomeStatus.INTEGRITY_ERROR,
                    books=[book_key(c.book_id) for c in language_changes],
                    message=str(e),
                )
                continue
            plans.append(plan)
        return plans, outcomes

    def _report_new_folders(self, plans: list[LanguagePlan], deadline) -> None:
        listing = run_stage(
            "fetch repo content",
            self._client.list_language_folders,
            deadline,
            catch=(SyncError,),
        )
        if not listing.ok:
            # Reads per language still decide the outcome
            return
        log_export("fetched repo content")
        existing = set(listing.value)
        for plan in plans:
            if plan.language_code not in existing:
                log_export(f"creating language folder {plan.language_code}")

    def _sync_all(
        self, plans: list[LanguagePlan], deadline: float | None
    ) -> dict[str, LanguageOutcome]:
        workers = max(1, min(self._max_workers, len(plans)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sync") as pool:
            futures = {
                plan.language_code: pool.submit(self._sync_language, plan, deadline)
                for plan in plans
            }
            return {code: future.result() for code, future in futures.items()}

    def _sync_language(self, plan: LanguagePlan, deadline: float | None) -> LanguageOutcome:
        outcome = LanguageOutcome(
            plan.language_id,
            plan.language_code,
            OutcomeStatus.FAILED,
            books=sorted(plan.books),
        )
        result = run_stage(
            f"sync {plan.language_code}",
            self._client.sync_books,
            plan.language_code,
            plan.books,
            deadline,
        )
        if result.ok:
            synced: SyncResult = result.value
            outcome.status = OutcomeStatus.SUCCESS
            outcome.revision = synced.revision
            outcome.written = synced.written
            outcome.attempts = synced.attempts
            return outcome

        error = result.error
        outcome.message = str(error)
        if isinstance(error, ConflictExhaustedError):
            outcome.status = OutcomeStatus.CONFLICT_EXHAUSTED
            outcome.attempts = error.attempts
        elif isinstance(error, SyncTimeoutError):
            outcome.message = f"timed out: {error}"
        elif not isinstance(error, SyncError):
            logger.error(
                "Unexpected error syncing %s", plan.language_code, exc_info=error
            )
        return outcome

    def _settle(
        self, plans: list[LanguagePlan], outcomes: dict[str, LanguageOutcome]
    ) -> None:
        for plan in plans:
            outcome = outcomes[plan.language_code]
            if outcome.status != OutcomeStatus.SUCCESS:
                continue
            try:
                outcome.settled_events = self._tracker.settle(plan.event_ids)
            except sqlite3.Error as e:
                # The document is already current; the next run rewrites it
                logger.error("Could not settle events for %s: %s", plan.language_code, e)
                outcome.settle_error = str(e)

    def _log_summary(self, summary: RunSummary) -> None:
        for outcome in summary.outcomes:
            if outcome.status == OutcomeStatus.SKIPPED:
                continue
            detail = f"{outcome.language_code}: {outcome.status.value}"
            if outcome.books:
                detail += f", books {', '.join(outcome.books)}"
            if outcome.message:
                detail += f", {outcome.message}"
            log_export(detail)

        if summary.ok:
            log_export(f"export completed successfully, {summary.writes} write(s)")
        else:
            failed = [
                o.language_code
                for o in summary.outcomes
                if o.status not in (OutcomeStatus.SUCCESS, OutcomeStatus.SKIPPED)
                or o.settle_error
            ]
            log_export(
                f"export completed with failures: {', '.join(failed)}", logging.ERROR
            )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()

