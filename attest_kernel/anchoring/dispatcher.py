"""
Anchor Dispatcher — best-effort notarization of attestations.

Issuance never waits on the anchor sink. `submit()` only records the
anchor as pending; `flush()` (or the `run_async` loop) performs the sink
calls with a bounded timeout. A failed or timed-out call leaves the anchor
pending for the next pass. Delivery is at-least-once, so sinks must be
idempotent by attestation id.
"""

import asyncio
import logging
import threading
from typing import Callable, Dict, List, Optional

from attest_kernel.errors import AnchorError

logger = logging.getLogger(__name__)


class AnchorSink:
    """Interface to the external notarization ledger."""

    def anchor(self, attestation_id: str, payload_hash: str) -> str:
        """Anchor a payload hash and return an opaque reference. Raises AnchorError."""
        raise NotImplementedError


class InMemoryAnchorSink(AnchorSink):
    """
    Reference sink. Re-anchoring an attestation returns its existing
    reference, which is what makes retries safe.
    """

    def __init__(self):
        self._refs: Dict[str, str] = {}
        self._lock = threading.Lock()
        self.calls = 0

    def anchor(self, attestation_id: str, payload_hash: str) -> str:
        with self._lock:
            self.calls += 1
            if attestation_id not in self._refs:
                self._refs[attestation_id] = f"anchor:{payload_hash[:16]}:{len(self._refs) + 1}"
            return self._refs[attestation_id]

    def reference_for(self, attestation_id: str) -> Optional[str]:
        with self._lock:
            return self._refs.get(attestation_id)


class AnchorDispatcher:
    """Queues anchor requests and drains them off the critical path."""

    def __init__(
        self,
        sink: AnchorSink,
        timeout_seconds: float = 5.0,
        retry_interval_seconds: float = 60.0,
    ):
        self._sink = sink
        self._timeout = timeout_seconds
        self._retry_interval = retry_interval_seconds
        self._pending: Dict[str, str] = {}      # attestation id -> payload hash
        self._listeners: List[Callable[[str, str], None]] = []
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._running = False

    @property
    def status(self) -> str:
        return "running" if self._running else "stopped"

    @property
    def pending(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._pending)

    def on_anchored(self, listener: Callable[[str, str], None]) -> None:
        """Register a callback invoked with (attestation_id, anchor_ref) on success."""
        self._listeners.append(listener)

    def submit(self, attestation_id: str, payload_hash: str) -> None:
        """Record an anchor as pending. Never blocks on the sink."""
        with self._lock:
            self._pending[attestation_id] = payload_hash
            loop, wakeup = self._loop, self._wakeup
        if loop is not None and wakeup is not None:
            loop.call_soon_threadsafe(wakeup.set)

    async def anchor_once(self, attestation_id: str, payload_hash: str) -> Optional[str]:
        """One bounded attempt. Returns the reference, or None if it failed."""
        try:
            ref = await asyncio.wait_for(
                asyncio.to_thread(self._sink.anchor, attestation_id, payload_hash),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Anchor for attestation %s timed out after %.2fs; will retry",
                attestation_id, self._timeout,
            )
            return None
        except AnchorError as e:
            logger.warning("Anchor for attestation %s failed: %s; will retry", attestation_id, e)
            return None

        with self._lock:
            if self._pending.get(attestation_id) == payload_hash:
                del self._pending[attestation_id]

        for listener in list(self._listeners):
            listener(attestation_id, ref)
        logger.info("Anchored attestation %s as %s", attestation_id, ref)
        return ref

    async def flush(self) -> Dict[str, Optional[str]]:
        """Attempt every pending anchor once."""
        results: Dict[str, Optional[str]] = {}
        for attestation_id, payload_hash in self.pending.items():
            results[attestation_id] = await self.anchor_once(attestation_id, payload_hash)
        return results

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Drain pending anchors until stopped, waking early on new submissions."""
        if stop_event is None:
            stop_event = asyncio.Event()

        with self._lock:
            self._loop = asyncio.get_running_loop()
            self._wakeup = asyncio.Event()
        self._running = True

        try:
            while not stop_event.is_set():
                self._wakeup.clear()
                await self.flush()
                stop_task = asyncio.ensure_future(stop_event.wait())
                wake_task = asyncio.ensure_future(self._wakeup.wait())
                done, not_done = await asyncio.wait(
                    {stop_task, wake_task},
                    timeout=self._retry_interval,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                for task in not_done:
                    task.cancel()
        finally:
            with self._lock:
                self._loop = None
                self._wakeup = None
            self._running = False
