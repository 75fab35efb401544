"""
Attestation Ledger — owns the attestation lifecycle and each identity's
derived state.

Behavioral Contract:
- Attestations are issued only by authorized attesters, against active identities
- Revocation is terminal and only the issuing attester may revoke
- Expiry is never stored; liveness is evaluated against the clock on every read
- `live_verified_fields`, `attestation_ids` and `tier` are re-derived from the
  full attestation arena on every write, never patched incrementally, and
  again on every identity read so an expiry shows up without a write
- Every mutation touching an identity's derived state is serialized per identity
  and committed with a compare-and-set on the identity version
- Anchoring is handed to the dispatcher after commit and can never fail a write
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Set, Union
from uuid import uuid4

from attest_kernel.anchoring.dispatcher import AnchorDispatcher
from attest_kernel.audit.store import AuditLog
from attest_kernel.authorization.oracle import AuthorizationOracle
from attest_kernel.clock import Clock, SystemClock
from attest_kernel.errors import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
    UnauthorizedError,
)
from attest_kernel.models.attestation import METADATA_KEYS, Attestation, AttestationType
from attest_kernel.models.audit import AuditEvent, AuditRecord
from attest_kernel.models.config import KernelConfig
from attest_kernel.models.identity import Identity, TierProgress, VerificationScore
from attest_kernel.proof.generator import payload_hash
from attest_kernel.store.locks import KeyedLock
from attest_kernel.store.memory import KernelStore
from attest_kernel.tiers.engine import TierEngine

logger = logging.getLogger(__name__)


def _validate_fields(fields: Dict[str, str]) -> Dict[str, str]:
    """Fields must be a non-empty mapping of non-blank names to string values."""
    if not isinstance(fields, dict) or not fields:
        raise InvalidArgumentError("An attestation must cover at least one field")
    cleaned = {}
    for name, value in fields.items():
        if not isinstance(name, str) or not name.strip():
            raise InvalidArgumentError("Field names must be non-empty strings")
        if not isinstance(value, str):
            raise InvalidArgumentError(f"Claimed value for field '{name}' must be a string")
        cleaned[name.strip()] = value
    return cleaned


def _validate_confidence(confidence: int) -> int:
    if isinstance(confidence, bool) or not isinstance(confidence, int):
        raise InvalidArgumentError("Confidence must be an integer")
    if not 0 <= confidence <= 100:
        raise InvalidArgumentError(
            f"Confidence {confidence} is outside 0-100", confidence=confidence
        )
    return confidence


def _validate_metadata(metadata: Optional[Dict[str, str]]) -> Dict[str, str]:
    if not metadata:
        return {}
    unknown = sorted(set(metadata) - set(METADATA_KEYS))
    if unknown:
        raise InvalidArgumentError(
            "Unknown metadata keys", unknown=unknown, allowed=list(METADATA_KEYS)
        )
    return {k: str(v) for k, v in metadata.items()}


def _coerce_type(claimed_type) -> AttestationType:
    try:
        return AttestationType(claimed_type)
    except ValueError:
        raise InvalidArgumentError(f"Unknown attestation type '{claimed_type}'") from None


def _live_field_names(attestations: Sequence[Attestation]) -> Set[str]:
    names: Set[str] = set()
    for attestation in attestations:
        names.update(attestation.field_names)
    return names


class AttestationLedger:
    """
    The attestation arena plus the per-identity live-field index derived from it.
    """

    def __init__(
        self,
        store: KernelStore,
        tier_engine: TierEngine,
        oracle: AuthorizationOracle,
        clock: Optional[Clock] = None,
        config: Optional[KernelConfig] = None,
        anchor_dispatcher: Optional[AnchorDispatcher] = None,
        audit_log: Optional[AuditLog] = None,
    ):
        self.store = store
        self.tier_engine = tier_engine
        self.oracle = oracle
        self.clock = clock or SystemClock()
        self.config = config or KernelConfig()
        self.anchors = anchor_dispatcher
        self.audit_log = audit_log
        self._locks = KeyedLock()

        if self.anchors is not None:
            self.anchors.on_anchored(self.record_anchor)

    # --- Identities ---

    def register_identity(
        self,
        owner_id: str,
        ledger_address: str,
        personal_info: Optional[dict] = None,
        contact_info: Optional[dict] = None,
    ) -> Identity:
        """Create the identity for an account that has a ledger address."""
        if not owner_id or not owner_id.strip():
            raise InvalidArgumentError("owner_id is required")
        if not ledger_address or not ledger_address.strip():
            raise InvalidArgumentError("A ledger address is required to register an identity")

        now = self.clock.now()
        identity = Identity(
            id=f"idn_{uuid4().hex[:12]}",
            owner_id=owner_id,
            ledger_address=ledger_address.strip(),
            personal_info=personal_info or {},
            contact_info=contact_info or {},
            created_at=now,
            updated_at=now,
        )
        identity = self.store.insert_identity(identity)
        logger.info("Registered identity %s for owner %s", identity.id, owner_id)
        return identity

    def deactivate_identity(self, identity_id: str, owner_id: str) -> Identity:
        """Soft-deactivate. The identity stops accepting attestations but is kept."""
        self._stored_identity(identity_id)
        if not self.oracle.owns_identity(owner_id, identity_id):
            raise ForbiddenError("Only the owner may deactivate an identity")

        with self._locks.hold(identity_id):
            identity = self._stored_identity(identity_id)
            if not identity.active:
                return self.get_identity(identity_id)
            identity.active = False
            identity.updated_at = self.clock.now()
            self.store.compare_and_set_identity(identity, identity.version)
        logger.info("Deactivated identity %s", identity_id)
        return self.get_identity(identity_id)

    def get_identity(self, identity_id: str, now: Optional[datetime] = None) -> Identity:
        """The identity with live fields and tier evaluated at `now`."""
        return self._as_of(self._stored_identity(identity_id), now)

    def identity_for_owner(self, owner_id: str, now: Optional[datetime] = None) -> Identity:
        identity = self.store.identity_for_owner(owner_id)
        if identity is None:
            raise NotFoundError(f"No identity for owner {owner_id}", owner_id=owner_id)
        return self._as_of(identity, now)

    def _stored_identity(self, identity_id: str) -> Identity:
        identity = self.store.get_identity(identity_id)
        if identity is None:
            raise NotFoundError(f"Identity {identity_id} not found", identity_id=identity_id)
        return identity

    def _as_of(self, identity: Identity, now: Optional[datetime]) -> Identity:
        now = now or self.clock.now()
        return self._derive(identity, self.store.attestations_for_identity(identity.id), now)

    # --- Issuance / revocation ---

    def issue(
        self,
        identity_id: str,
        attester_id: str,
        attestation_type: Union[AttestationType, str],
        fields: Dict[str, str],
        confidence: int,
        expires_at: Optional[datetime] = None,
        metadata: Optional[Dict[str, str]] = None,
        never_expires: bool = False,
    ) -> Attestation:
        """
        Issue an attestation and synchronously re-derive the identity's live
        fields and tier.

        Without `expires_at` the attestation lapses after the configured
        validity period. `never_expires=True` issues one with no expiry.
        """
        claimed_type = _coerce_type(attestation_type)
        fields = _validate_fields(fields)
        confidence = _validate_confidence(confidence)
        metadata = _validate_metadata(metadata)

        if never_expires and expires_at is not None:
            raise InvalidArgumentError("expires_at cannot be combined with never_expires")

        identity = self._stored_identity(identity_id)
        if not identity.active:
            raise NotFoundError(f"Identity {identity_id} is deactivated", identity_id=identity_id)
        if not self.oracle.may_issue(attester_id, claimed_type):
            raise UnauthorizedError(
                f"Attester {attester_id} may not issue '{claimed_type.value}' attestations",
                attester_id=attester_id,
                type=claimed_type.value,
            )

        now = self.clock.now()
        if never_expires:
            expires_at = None
        elif expires_at is None:
            expires_at = now + timedelta(days=self.config.attestation_validity_days)
        elif expires_at.tzinfo is None:
            raise InvalidArgumentError("expires_at must be timezone-aware")
        elif expires_at <= now:
            raise InvalidArgumentError("expires_at must be after issuance")

        attestation = Attestation(
            id=f"att_{uuid4().hex[:12]}",
            identity_id=identity_id,
            attester_id=attester_id,
            type=claimed_type,
            fields=fields,
            confidence=confidence,
            issued_at=now,
            expires_at=expires_at,
            metadata=metadata,
        )

        with self._locks.hold(identity_id):
            if not self._stored_identity(identity_id).active:
                raise NotFoundError(
                    f"Identity {identity_id} is deactivated", identity_id=identity_id
                )
            self.store.insert_attestation(attestation)
            try:
                before, after = self._commit(identity_id, now)
            except ConflictError:
                self.store.discard_attestation(attestation.id)
                raise

        logger.info(
            "Issued attestation %s on identity %s by %s covering %s",
            attestation.id, identity_id, attester_id, sorted(fields),
        )
        self._log_tier_change(before, after)
        self._audit(
            AuditEvent.ATTESTATION_ISSUED, attestation, attester_id, now,
            details={"type": claimed_type.value, "confidence": confidence, "tier": after.tier},
        )
        if self.anchors is not None:
            self.anchors.submit(attestation.id, payload_hash(attestation.anchor_payload()))
        return attestation

    def revoke(self, attestation_id: str, by_attester_id: str, reason: Optional[str] = None) -> Attestation:
        """Revoke an attestation. Terminal; only the original issuer may do it."""
        attestation = self.get(attestation_id)
        if attestation.attester_id != by_attester_id:
            raise ForbiddenError(
                "Only the issuing attester may revoke an attestation",
                attestation_id=attestation_id,
            )

        with self._locks.hold(attestation.identity_id):
            attestation = self.get(attestation_id)
            if attestation.revoked:
                raise ConflictError(
                    f"Attestation {attestation_id} is already revoked",
                    attestation_id=attestation_id,
                )
            now = self.clock.now()
            attestation.revoked = True
            attestation.revoked_at = now
            attestation.revocation_reason = reason
            self.store.replace_attestation(attestation)
            before, after = self._commit(attestation.identity_id, now)

        logger.info(
            "Revoked attestation %s on identity %s (%s)",
            attestation_id, attestation.identity_id, reason or "no reason given",
        )
        self._log_tier_change(before, after)
        self._audit(
            AuditEvent.ATTESTATION_REVOKED, attestation, by_attester_id, now,
            details={"reason": reason, "tier": after.tier},
        )
        return attestation

    def record_anchor(self, attestation_id: str, anchor_ref: str) -> None:
        """Store the notarization reference. The first reference recorded wins."""
        attestation = self.store.get_attestation(attestation_id)
        if attestation is None:
            logger.warning("Anchor reference for unknown attestation %s ignored", attestation_id)
            return
        with self._locks.hold(attestation.identity_id):
            attestation = self.store.get_attestation(attestation_id)
            if attestation.ledger_anchor is not None:
                return
            attestation.ledger_anchor = anchor_ref
            self.store.replace_attestation(attestation)

    # --- Reads ---

    def get(self, attestation_id: str) -> Attestation:
        attestation = self.store.get_attestation(attestation_id)
        if attestation is None:
            raise NotFoundError(
                f"Attestation {attestation_id} not found", attestation_id=attestation_id
            )
        return attestation

    def attestations_for(self, identity_id: str) -> List[Attestation]:
        """Every attestation on an identity, live or not, in issuance order."""
        self._stored_identity(identity_id)
        return self.store.attestations_for_identity(identity_id)

    def live_attestations(self, identity_id: str, now: Optional[datetime] = None) -> List[Attestation]:
        """A consistent snapshot of the identity's live attestations at `now`."""
        now = now or self.clock.now()
        return [a for a in self.attestations_for(identity_id) if a.is_live(now)]

    def live_fields(self, identity_id: str, now: Optional[datetime] = None) -> Set[str]:
        return _live_field_names(self.live_attestations(identity_id, now))

    def tier_progress(self, identity_id: str, now: Optional[datetime] = None) -> TierProgress:
        live = self.live_attestations(identity_id, now)
        return self.tier_engine.progress(_live_field_names(live), len(live))

    def verification_score(self, identity_id: str, now: Optional[datetime] = None) -> VerificationScore:
        """
        Score an identity 0-100 from the distinct types of its live
        attestations. Each type contributes its configured weight scaled by
        the highest confidence any live attestation of that type carries.
        """
        now = now or self.clock.now()
        best: Dict[AttestationType, int] = {}
        for attestation in self.live_attestations(identity_id, now):
            best[attestation.type] = max(best.get(attestation.type, 0), attestation.confidence)

        by_type = {
            claimed_type.value: round(self.config.type_weights.get(claimed_type, 0) * confidence / 100)
            for claimed_type, confidence in best.items()
        }
        score = min(100, sum(by_type.values()))
        return VerificationScore(
            identity_id=identity_id,
            score=score,
            verified=score > self.config.verified_score_threshold,
            by_type=by_type,
            evaluated_at=now,
        )

    def is_stale(self, identity: Identity, now: Optional[datetime] = None) -> bool:
        """True when the stored derived state no longer matches live state."""
        now = now or self.clock.now()
        derived = self._derive(identity, self.store.attestations_for_identity(identity.id), now)
        return (
            derived.live_verified_fields != identity.live_verified_fields
            or derived.tier != identity.tier
        )

    def refresh(self, identity_id: str, now: Optional[datetime] = None) -> Identity:
        """Re-derive and persist an identity's live fields and tier."""
        self._stored_identity(identity_id)
        now = now or self.clock.now()
        with self._locks.hold(identity_id):
            before, after = self._commit(identity_id, now)
        self._log_tier_change(before, after)
        return after

    # --- Derivation ---

    def _derive(self, identity: Identity, attestations: Sequence[Attestation], now: datetime) -> Identity:
        live = [a for a in attestations if a.is_live(now)]
        return identity.model_copy(update={
            "live_verified_fields": sorted(_live_field_names(live)),
            "tier": self.tier_engine.compute_for(live),
            "attestation_ids": [a.id for a in attestations],
        })

    def _commit(self, identity_id: str, now: datetime):
        """
        Re-derive from the arena and compare-and-set. Retries on a stale
        version up to the configured bound. Returns (before, after).
        """
        attempts = self.config.max_conflict_retries + 1
        for attempt in range(1, attempts + 1):
            current = self._stored_identity(identity_id)
            derived = self._derive(current, self.store.attestations_for_identity(identity_id), now)
            derived.updated_at = now
            try:
                written = self.store.compare_and_set_identity(derived, current.version)
                return current, written
            except ConflictError:
                logger.warning(
                    "Version conflict deriving identity %s (attempt %d/%d)",
                    identity_id, attempt, attempts,
                )
        raise ConflictError(
            f"Could not commit derived state for identity {identity_id}",
            identity_id=identity_id,
            attempts=attempts,
        )

    def _log_tier_change(self, before: Identity, after: Identity) -> None:
        if before.tier != after.tier:
            logger.info(
                "Identity %s tier %d -> %d", after.id, before.tier, after.tier,
            )

    def _audit(
        self,
        event: AuditEvent,
        attestation: Attestation,
        actor_id: str,
        occurred_at: datetime,
        details: Optional[dict] = None,
    ) -> None:
        if self.audit_log is None:
            return
        self.audit_log.append(AuditRecord(
            id=f"aud_{uuid4().hex[:12]}",
            event=event,
            identity_id=attestation.identity_id,
            subject_id=attestation.id,
            actor_id=actor_id,
            fields=sorted(attestation.field_names),
            occurred_at=occurred_at,
            details=details or {},
        ))
