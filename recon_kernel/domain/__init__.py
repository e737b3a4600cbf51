"""recon_kernel.domain -- Pure kernel abstractions (no I/O)."""

from recon_kernel.domain.clock import Clock, DeterministicClock, SystemClock, ensure_utc

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "ensure_utc",
]
