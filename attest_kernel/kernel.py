"""
Attestation Kernel — wires the components into one in-process API.

  Attester issues Attestation -> Attestation Ledger -> Tier Engine
  Verifier opens Verification -> owner consents -> Disclosure Engine
                              -> Proof Generator -> Audit Log
"""

import logging
from typing import Optional

from attest_kernel.anchoring.dispatcher import AnchorDispatcher, AnchorSink, InMemoryAnchorSink
from attest_kernel.audit.store import AuditLog
from attest_kernel.authorization.oracle import AuthorizationOracle
from attest_kernel.clock import Clock, SystemClock
from attest_kernel.disclosure.engine import DisclosureEngine
from attest_kernel.ledger.attestations import AttestationLedger
from attest_kernel.models.config import KernelConfig
from attest_kernel.store.memory import KernelStore
from attest_kernel.sweep.expiry import ExpirySweeper
from attest_kernel.tiers.engine import TierEngine

logger = logging.getLogger(__name__)


class AttestationKernel:
    """All kernel components sharing one store, clock and config."""

    def __init__(
        self,
        config: Optional[KernelConfig] = None,
        clock: Optional[Clock] = None,
        store: Optional[KernelStore] = None,
        anchor_sink: Optional[AnchorSink] = None,
        audit_log: Optional[AuditLog] = None,
    ):
        self.config = config or KernelConfig()
        self.clock = clock or SystemClock()
        self.store = store or KernelStore()
        self.audit_log = audit_log or AuditLog(db_path=self.config.audit_db_path)
        self.oracle = AuthorizationOracle(self.store)
        self.tier_engine = TierEngine(self.config.tiers)
        self.anchor_sink = anchor_sink or InMemoryAnchorSink()
        self.anchors = AnchorDispatcher(
            self.anchor_sink,
            timeout_seconds=self.config.anchor_timeout_seconds,
            retry_interval_seconds=self.config.anchor_retry_interval_seconds,
        )
        self.ledger = AttestationLedger(
            store=self.store,
            tier_engine=self.tier_engine,
            oracle=self.oracle,
            clock=self.clock,
            config=self.config,
            anchor_dispatcher=self.anchors,
            audit_log=self.audit_log,
        )
        self.disclosure = DisclosureEngine(
            store=self.store,
            ledger=self.ledger,
            oracle=self.oracle,
            clock=self.clock,
            config=self.config,
            audit_log=self.audit_log,
        )
        self.sweeper = ExpirySweeper(self.ledger, self.config.sweep_schedule)
        logger.debug("Attestation kernel initialised with %d tiers", len(self.tier_engine.tiers))

    def close(self) -> None:
        self.audit_log.close()
