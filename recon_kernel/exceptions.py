"""
Typed exception hierarchy for the reconciliation engine.

Every error is caught by type, carries a machine-readable ``code`` class
attribute, and keeps its context as attributes (so the structured log
formatter can emit them as ``exc_*`` fields).

    ReconciliationError (base)
    |
    +-- InvalidSourceRecordError      record-level: skip, keep running
    |   +-- InvalidTimestampError
    |   +-- MissingOwnerReferenceError
    |
    +-- FetchFailureError             chunk-level: skip chunk, keep running
    +-- ChunkFoldError                chunk-level: skip chunk, keep running
    +-- WriteFailureError             run-level: nothing written
    |
    +-- JobNotRegisteredError
    +-- ConfigurationError

Category        | Code                     | Handling
----------------|--------------------------|----------------------------------
Source record   | INVALID_TIMESTAMP        | Record skipped, counted in summary
                | MISSING_OWNER_REFERENCE  | Record skipped, counted in summary
Chunk           | FETCH_FAILURE            | Chunk skipped, retried next run
                | CHUNK_FOLD_FAILURE       | Chunk skipped, retried next run
Run             | WRITE_FAILURE            | Run FAILED, accumulator discarded
Setup           | JOB_NOT_REGISTERED       | Raised to caller
                | CONFIGURATION_ERROR      | Raised to caller

Nothing is retried inside a run.  The next scheduled run re-scans whatever
was not written.
"""


class ReconciliationError(Exception):
    """Base exception for all reconciliation engine errors."""

    code: str = "RECONCILIATION_ERROR"


# Source record errors


class InvalidSourceRecordError(ReconciliationError):
    """A source record cannot be bucketed; the caller skips it."""

    code: str = "INVALID_SOURCE_RECORD"


class InvalidTimestampError(InvalidSourceRecordError):
    """The bucketing timestamp is absent."""

    code: str = "INVALID_TIMESTAMP"

    def __init__(self, record_id: str | None = None):
        self.record_id = record_id
        super().__init__(
            f"Source record {record_id or '<unknown>'} has no bucketing timestamp"
        )


class MissingOwnerReferenceError(InvalidSourceRecordError):
    """Per-entity bucketing requested for a record without an owner."""

    code: str = "MISSING_OWNER_REFERENCE"

    def __init__(self, record_id: str | None = None):
        self.record_id = record_id
        super().__init__(
            f"Source record {record_id or '<unknown>'} has no owner reference"
        )


# Chunk errors


class FetchFailureError(ReconciliationError):
    """Retrieving one chunk from the source store failed."""

    code: str = "FETCH_FAILURE"

    def __init__(self, job_name: str, chunk_index: int, reason: str):
        self.job_name = job_name
        self.chunk_index = chunk_index
        self.reason = reason
        super().__init__(
            f"Fetch of chunk {chunk_index} failed for {job_name}: {reason}"
        )


class ChunkFoldError(ReconciliationError):
    """Folding a fetched chunk into the accumulator failed."""

    code: str = "CHUNK_FOLD_FAILURE"

    def __init__(self, job_name: str, chunk_index: int, reason: str):
        self.job_name = job_name
        self.chunk_index = chunk_index
        self.reason = reason
        super().__init__(
            f"Fold of chunk {chunk_index} failed for {job_name}: {reason}"
        )


# Run errors


class WriteFailureError(ReconciliationError):
    """The end-of-run bulk upsert failed; nothing from the run was written."""

    code: str = "WRITE_FAILURE"

    def __init__(self, job_name: str, record_count: int, reason: str):
        self.job_name = job_name
        self.record_count = record_count
        self.reason = reason
        super().__init__(
            f"Write of {record_count} record(s) failed for {job_name}: {reason}"
        )


# Setup errors


class JobNotRegisteredError(ReconciliationError):
    """No reconciliation task is registered under the requested name."""

    code: str = "JOB_NOT_REGISTERED"

    def __init__(self, job_name: str, available: tuple[str, ...] = ()):
        self.job_name = job_name
        self.available = available
        super().__init__(
            f"No reconciliation job registered as '{job_name}'. "
            f"Available: {list(available)}"
        )


class ConfigurationError(ReconciliationError):
    """Engine configuration is missing or invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, errors: list[str] | tuple[str, ...]):
        self.errors = tuple(errors)
        super().__init__(
            "Invalid reconciliation configuration:\n"
            + "\n".join(f"  - {e}" for e in self.errors)
        )
