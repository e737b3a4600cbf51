"""
recon_batch -- Periodic batch reconciliation engine.

Scans a window of a transactional source in chunks, folds each chunk into
an explicit run accumulator seeded from the output already persisted for
that window, and writes the result back once per run.  Two instances ship:
snapshot rollups (sum measures per calendar bucket) and staleness
reminders (one open follow-up per owning entity).

Architecture:
    recon_batch/ is a top-level package.  Nothing in recon_kernel/ imports
    from recon_batch, except the lazy model import in
    ``recon_kernel.db.engine.create_tables``.

Invariants:
    Chunk atomicity: a chunk is folded whole or not at all
    Run atomicity: the end-of-run write lands whole or not at all
    Idempotence: the fold ledger delivers each source row to a rollup once
    Order independence: totals do not depend on chunk or record order
    Closed periods are never re-scanned
    Clock injection (no datetime.now() calls outside SystemClock)
"""
