"""
Staleness reminder task -- the de-dup instance of the engine.

Scans records in the watched statuses that went stale inside the lookback
range and raises one OPEN follow-up per owning entity that does not
already have one.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from recon_batch.domain.merge import ReminderAccumulator
from recon_batch.domain.types import JobKind, ReconciliationWindow, WriteOutcome
from recon_batch.domain.window import staleness_window
from recon_batch.services.loader import load_open_reminders
from recon_batch.services.scanner import SourceBinding, SourceScanner
from recon_batch.services.writer import ReminderWriter
from recon_config.schema import ReminderDefinition


class StalenessReminderTask:
    """Raises follow-up reminders for stale records, one per entity."""

    job_kind = JobKind.REMINDER

    def __init__(self, definition: ReminderDefinition) -> None:
        self._definition = definition
        self._binding = SourceBinding.resolve(
            source=definition.source,
            timestamp_field=definition.timestamp_field,
            owner_field=definition.owner_field,
        )

    @property
    def job_name(self) -> str:
        return self._definition.name

    @property
    def description(self) -> str:
        return self._definition.description or (
            f"stale {self._definition.source} older than "
            f"{self._definition.stale_after_days} days"
        )

    @property
    def chunk_size(self) -> int:
        return self._definition.chunk_size

    @property
    def definition(self) -> ReminderDefinition:
        return self._definition

    def resolve_window(self, as_of: datetime) -> ReconciliationWindow:
        return staleness_window(
            as_of, self._definition.stale_after_days, self._definition.lookback_days,
        )

    def open_scanner(self, session: Session, window: ReconciliationWindow) -> SourceScanner:
        return SourceScanner(
            session,
            self._binding,
            window,
            chunk_size=self._definition.chunk_size,
            statuses=self._definition.statuses,
        )

    def start_accumulator(
        self,
        session: Session,
        window: ReconciliationWindow,
    ) -> ReminderAccumulator:
        return ReminderAccumulator(load_open_reminders(session, self._definition.name))

    def write(
        self,
        session: Session,
        accumulator: ReminderAccumulator,
        run_id: UUID,
        actor_id: UUID,
        as_of: datetime,
    ) -> WriteOutcome:
        return ReminderWriter(session).write(
            self._definition.name,
            accumulator.pending(),
            run_id,
            actor_id,
            as_of=as_of,
            subject=self._definition.subject,
            due_in_days=self._definition.due_in_days,
        )
