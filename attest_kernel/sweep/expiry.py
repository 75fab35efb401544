"""
Expiry Sweep — proactively refreshes identities whose attestations expired.

Every read already re-evaluates liveness, so the sweep is an optimization:
it keeps the stored `live_verified_fields` and `tier` close to live state
between writes. A pass is idempotent.

Scheduling uses a cron expression (KernelConfig.sweep_schedule).
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from croniter import croniter

from attest_kernel.errors import InvalidArgumentError
from attest_kernel.ledger.attestations import AttestationLedger

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Periodic, low-frequency refresh of stale derived identity state."""

    def __init__(self, ledger: AttestationLedger, schedule: Optional[str] = None):
        self.ledger = ledger
        self.schedule = schedule or ledger.config.sweep_schedule
        if not croniter.is_valid(self.schedule):
            raise InvalidArgumentError(f"Invalid sweep schedule '{self.schedule}'")
        self.last_run: Optional[datetime] = None
        self._running = False

    @property
    def status(self) -> str:
        return "running" if self._running else "stopped"

    def next_run(self, after: Optional[datetime] = None) -> datetime:
        """Next scheduled pass strictly after `after` (default: now)."""
        base = after or self.ledger.clock.now()
        return croniter(self.schedule, base).get_next(datetime)

    def is_due(self, current_time: Optional[datetime] = None) -> bool:
        if current_time is None:
            current_time = self.ledger.clock.now()
        if self.last_run is None:
            return True
        return current_time >= self.next_run(self.last_run)

    def sweep_once(self, current_time: Optional[datetime] = None) -> List[str]:
        """
        Refresh every identity whose stored derived state has drifted from
        live state. Returns the ids of refreshed identities.
        """
        if current_time is None:
            current_time = self.ledger.clock.now()

        refreshed = []
        for identity in self.ledger.store.list_identities():
            if not self.ledger.is_stale(identity, current_time):
                continue
            updated = self.ledger.refresh(identity.id, current_time)
            refreshed.append(identity.id)
            logger.info(
                "Sweep refreshed identity %s: fields %s, tier %d",
                identity.id, updated.live_verified_fields, updated.tier,
            )

        self.last_run = current_time
        logger.debug("Expiry sweep at %s refreshed %d identities", current_time, len(refreshed))
        return refreshed

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run scheduled sweeps until stopped."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                now = self.ledger.clock.now()
                if self.is_due(now):
                    self.sweep_once(now)
                wait_seconds = max(1.0, (self.next_run(now) - now).total_seconds())
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=wait_seconds)
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False
