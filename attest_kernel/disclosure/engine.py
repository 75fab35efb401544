"""
Disclosure Engine — resolves a verifier's field request against owner
consent and live attestations.

State machine:
  pending  --(owner grants consent)-----------------> approved
  pending  --(owner/verifier revokes, window lapses)-> revoked
  pending  --(owner rejects)-------------------------> rejected
  approved --(owner revokes after the fact)---------> revoked
approved, rejected and revoked are terminal.

Behavioral Contract:
- A field is disclosed only if it was requested, selected by the owner, AND
  backed by a live attestation at decision time
- Nothing is disclosed and nothing is approved before consent is granted
- Granting after the consent window has lapsed revokes the request and
  raises ExpiredError; it never approves
- Reads report a lapsed pending request as rejected without mutating it
- Mutations are serialized per verification id; identity state is only read
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Tuple
from uuid import uuid4

from attest_kernel.audit.store import AuditLog
from attest_kernel.authorization.oracle import AuthorizationOracle
from attest_kernel.clock import Clock, SystemClock
from attest_kernel.errors import (
    ConflictError,
    ExpiredError,
    ForbiddenError,
    InvalidArgumentError,
    KernelError,
    NotFoundError,
)
from attest_kernel.ledger.attestations import AttestationLedger
from attest_kernel.models.audit import AuditEvent, AuditRecord
from attest_kernel.models.config import KernelConfig
from attest_kernel.models.verification import (
    CONSENT_WINDOW_LAPSED,
    ConsentRecord,
    Verification,
    VerificationResult,
    VerificationStatus,
)
from attest_kernel.proof.generator import generate_proof
from attest_kernel.store.locks import KeyedLock
from attest_kernel.store.memory import KernelStore

logger = logging.getLogger(__name__)

# A decision returns the updated record (None = no change) and an error to
# raise once the update is committed.
Decision = Tuple[Optional[Verification], Optional[KernelError]]


def _clean_field_list(fields: Optional[Sequence[str]], what: str) -> List[str]:
    """Deduplicate, keep first-seen order, reject blanks."""
    if fields is None or isinstance(fields, (str, bytes)):
        raise InvalidArgumentError(f"{what} must be a list of field names")
    cleaned: List[str] = []
    for name in fields:
        if not isinstance(name, str) or not name.strip():
            raise InvalidArgumentError(f"{what} must contain non-empty field names")
        name = name.strip()
        if name not in cleaned:
            cleaned.append(name)
    return cleaned


def resolve_disclosure(
    requested_fields: Sequence[str],
    selected_fields: Optional[Sequence[str]],
    live_attested_fields: Sequence[str],
) -> Tuple[List[str], List[str]]:
    """
    The disclosure rule. Returns (candidate, disclosed) in request order.

    candidate = (selected or requested) ∩ requested
    disclosed = candidate ∩ live attested
    """
    base = set(selected_fields) if selected_fields else set(requested_fields)
    live = set(live_attested_fields)
    candidate = [f for f in requested_fields if f in base]
    disclosed = [f for f in candidate if f in live]
    return candidate, disclosed


class DisclosureEngine:
    """Drives verification requests through consent to disclosure."""

    def __init__(
        self,
        store: KernelStore,
        ledger: AttestationLedger,
        oracle: AuthorizationOracle,
        clock: Optional[Clock] = None,
        config: Optional[KernelConfig] = None,
        audit_log: Optional[AuditLog] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.oracle = oracle
        self.clock = clock or SystemClock()
        self.config = config or KernelConfig()
        self.audit_log = audit_log
        self._locks = KeyedLock()

    # --- Requests ---

    def request_verification(
        self,
        requestor_id: str,
        identity_id: str,
        requested_fields: Sequence[str],
        expires_at: Optional[datetime] = None,
        purpose: Optional[str] = None,
    ) -> Verification:
        """Open a pending request. The consent window defaults to the configured days."""
        if not requestor_id or not requestor_id.strip():
            raise InvalidArgumentError("requestor_id is required")
        fields = _clean_field_list(requested_fields, "requested_fields")
        if not fields:
            raise InvalidArgumentError("At least one field must be requested")
        self.ledger.get_identity(identity_id)

        now = self.clock.now()
        if expires_at is None:
            expires_at = now + timedelta(days=self.config.consent_window_days)
        elif expires_at.tzinfo is None:
            raise InvalidArgumentError("expires_at must be timezone-aware")
        elif expires_at <= now:
            raise InvalidArgumentError("The consent window must end in the future")

        verification = Verification(
            id=f"ver_{uuid4().hex[:12]}",
            requestor_id=requestor_id,
            identity_id=identity_id,
            requested_fields=fields,
            purpose=purpose,
            consent=ConsentRecord(expires_at=expires_at),
            result=VerificationResult(),
            created_at=now,
            updated_at=now,
        )
        self.store.insert_verification(verification)
        logger.info(
            "Verification %s opened by %s on identity %s for %s",
            verification.id, requestor_id, identity_id, fields,
        )
        return verification

    # --- Owner decisions ---

    def grant_consent(
        self,
        verification_id: str,
        owner_id: str,
        selected_fields: Optional[Sequence[str]] = None,
    ) -> Verification:
        """
        Approve a pending request, disclosing only the requested fields the
        owner selected that are currently backed by a live attestation.
        """
        selected = None
        if selected_fields is not None:
            selected = _clean_field_list(selected_fields, "selected_fields") or None

        def decide(v: Verification, now: datetime) -> Decision:
            self._require_owner(v, owner_id)
            self._require_pending(v)
            if v.consent_lapsed(now):
                v.result.status = VerificationStatus.REVOKED
                v.result.message = CONSENT_WINDOW_LAPSED
                v.consent.revoked_at = now
                return v, ExpiredError(
                    f"Consent window for verification {v.id} lapsed at "
                    f"{v.consent.expires_at.isoformat()}",
                    verification_id=v.id,
                )

            live = self.ledger.live_fields(v.identity_id, now)
            candidate, disclosed = resolve_disclosure(v.requested_fields, selected, sorted(live))

            v.consent.granted = True
            v.consent.granted_at = now
            v.consent.selected_fields = candidate
            v.result.status = VerificationStatus.APPROVED
            v.result.disclosed_fields = disclosed
            v.result.verified_at = now
            withheld = [f for f in candidate if f not in disclosed]
            v.result.message = (
                f"unattested fields withheld: {', '.join(withheld)}" if withheld else None
            )
            v.proof = generate_proof(v.identity_id, v.requestor_id, disclosed, now)
            return v, None

        verification, error, _ = self._transition(verification_id, decide)
        if error is not None:
            logger.info("Verification %s revoked: consent window lapsed", verification_id)
            self._audit(AuditEvent.VERIFICATION_REVOKED, verification, owner_id)
            raise error

        logger.info(
            "Verification %s approved; disclosed %s of consented %s",
            verification.id,
            verification.result.disclosed_fields,
            verification.consent.selected_fields,
        )
        self._audit(AuditEvent.VERIFICATION_APPROVED, verification, owner_id)
        return verification

    def reject_verification(
        self, verification_id: str, owner_id: str, reason: Optional[str] = None
    ) -> Verification:
        """Explicitly refuse a pending request."""

        def decide(v: Verification, now: datetime) -> Decision:
            self._require_owner(v, owner_id)
            self._require_pending(v)
            v.result.status = VerificationStatus.REJECTED
            v.result.message = reason
            return v, None

        verification, _, _ = self._transition(verification_id, decide)
        logger.info("Verification %s rejected by owner", verification_id)
        self._audit(AuditEvent.VERIFICATION_REJECTED, verification, owner_id)
        return verification

    def revoke_consent(self, verification_id: str, owner_id: str) -> Verification:
        """
        Withdraw consent on a pending or approved request.

        Revoking an already-revoked request is a no-op that returns the
        record unchanged. Revoking a rejected request is a ConflictError.
        Fields disclosed before revocation stay on record for audit.
        """

        def decide(v: Verification, now: datetime) -> Decision:
            self._require_owner(v, owner_id)
            if v.result.status == VerificationStatus.REVOKED:
                return None, None
            if v.result.status == VerificationStatus.REJECTED:
                raise ConflictError(
                    f"Verification {v.id} was rejected and cannot be revoked",
                    verification_id=v.id,
                )
            v.consent.revoked_at = now
            v.result.status = VerificationStatus.REVOKED
            return v, None

        verification, _, changed = self._transition(verification_id, decide)
        if changed:
            logger.info("Consent revoked on verification %s", verification_id)
            self._audit(AuditEvent.VERIFICATION_REVOKED, verification, owner_id)
        return verification

    def withdraw_request(self, verification_id: str, requestor_id: str) -> Verification:
        """The verifier cancels its own pending request. Idempotent once revoked."""

        def decide(v: Verification, now: datetime) -> Decision:
            if v.requestor_id != requestor_id:
                raise ForbiddenError(
                    "Only the requesting verifier may withdraw a request",
                    verification_id=v.id,
                )
            if v.result.status == VerificationStatus.REVOKED:
                return None, None
            self._require_pending(v)
            v.consent.revoked_at = now
            v.result.status = VerificationStatus.REVOKED
            v.result.message = "withdrawn_by_requestor"
            return v, None

        verification, _, changed = self._transition(verification_id, decide)
        if changed:
            logger.info("Verification %s withdrawn by requestor", verification_id)
            self._audit(AuditEvent.VERIFICATION_REVOKED, verification, requestor_id)
        return verification

    # --- Reads ---

    def get_verification(self, verification_id: str, viewer_id: str) -> Verification:
        """Owner or requestor view, with lazy expiry applied."""
        verification = self._get(verification_id)
        is_owner = self.oracle.owns_identity(viewer_id, verification.identity_id)
        if not is_owner and verification.requestor_id != viewer_id:
            raise ForbiddenError(
                "Only the identity owner or the requestor may view a verification",
                verification_id=verification_id,
            )
        return verification.as_of(self.clock.now())

    def requested_by(
        self, requestor_id: str, status: Optional[VerificationStatus] = None
    ) -> List[Verification]:
        """Requests a verifier has made, newest first."""
        return self._present(self.store.verifications_by_requestor(requestor_id), status)

    def received_by(
        self, owner_id: str, status: Optional[VerificationStatus] = None
    ) -> List[Verification]:
        """Requests made against the owner's identity, newest first."""
        identity = self.ledger.identity_for_owner(owner_id)
        return self._present(self.store.verifications_for_identity(identity.id), status)

    # --- Internals ---

    def _get(self, verification_id: str) -> Verification:
        verification = self.store.get_verification(verification_id)
        if verification is None:
            raise NotFoundError(
                f"Verification {verification_id} not found", verification_id=verification_id
            )
        return verification

    def _present(
        self, verifications: List[Verification], status: Optional[VerificationStatus]
    ) -> List[Verification]:
        now = self.clock.now()
        views = [v.as_of(now) for v in verifications]
        if status is not None:
            status = VerificationStatus(status)
            views = [v for v in views if v.result.status == status]
        return sorted(views, key=lambda v: v.created_at, reverse=True)

    def _require_owner(self, verification: Verification, owner_id: str) -> None:
        if not self.oracle.owns_identity(owner_id, verification.identity_id):
            raise ForbiddenError(
                "Only the identity owner may decide on this verification",
                verification_id=verification.id,
            )

    def _require_pending(self, verification: Verification) -> None:
        if verification.is_terminal:
            raise ConflictError(
                f"Verification {verification.id} is already {verification.result.status.value}",
                verification_id=verification.id,
                status=verification.result.status.value,
            )

    def _transition(
        self,
        verification_id: str,
        decide: Callable[[Verification, datetime], Decision],
    ) -> Tuple[Verification, Optional[KernelError], bool]:
        """
        Apply a decision under the verification's lock and commit it with a
        compare-and-set on the prior status. A concurrent status change is
        retried up to the configured bound. Returns (record, error, changed).
        """
        attempts = self.config.max_conflict_retries + 1
        with self._locks.hold(verification_id):
            for attempt in range(1, attempts + 1):
                current = self._get(verification_id)
                now = self.clock.now()
                updated, error = decide(current.model_copy(deep=True), now)
                if updated is None:
                    return current, error, False
                updated.updated_at = now
                try:
                    written = self.store.compare_and_set_verification(
                        updated, current.result.status
                    )
                    return written, error, True
                except ConflictError:
                    logger.warning(
                        "Concurrent update on verification %s (attempt %d/%d)",
                        verification_id, attempt, attempts,
                    )
        raise ConflictError(
            f"Could not commit decision on verification {verification_id}",
            verification_id=verification_id,
            attempts=attempts,
        )

    def _audit(self, event: AuditEvent, verification: Verification, actor_id: str) -> None:
        if self.audit_log is None:
            return
        approved = event == AuditEvent.VERIFICATION_APPROVED
        self.audit_log.append(AuditRecord(
            id=f"aud_{uuid4().hex[:12]}",
            event=event,
            identity_id=verification.identity_id,
            subject_id=verification.id,
            actor_id=actor_id,
            counterparty_id=verification.requestor_id,
            fields=list(verification.result.disclosed_fields) if approved else [],
            proof_method=verification.proof.method if approved and verification.proof else None,
            proof_hash=verification.proof.hash if approved and verification.proof else None,
            occurred_at=verification.result.verified_at if approved else verification.updated_at,
            details={
                "status": verification.result.status.value,
                "requested_fields": list(verification.requested_fields),
                "message": verification.result.message,
            },
        ))
