"""
Kernel Store — identities, attestations and verifications keyed by id.

Updated by: Attestation Ledger + Disclosure Engine
Queried by: every component

Behavioral Contract:
- Reads return copies. Callers never hold a reference into the store.
- Identity writes are compare-and-set on `version`; a stale write raises
  ConflictError and leaves the stored record unchanged.
- Attestations are never deleted once an identity has committed them. An
  insert whose identity commit failed is discarded by the ledger.
"""

import threading
from typing import Dict, List, Optional

from attest_kernel.errors import ConflictError
from attest_kernel.models.attestation import Attestation
from attest_kernel.models.identity import Identity
from attest_kernel.models.verification import Verification, VerificationStatus


class KernelStore:
    """
    In-memory document store for the kernel.
    Production would back this with a document database supporting
    conditional updates.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._identities: Dict[str, Identity] = {}
        self._by_owner: Dict[str, str] = {}
        self._attestations: Dict[str, Attestation] = {}
        self._by_identity: Dict[str, List[str]] = {}
        self._verifications: Dict[str, Verification] = {}

    # --- Identities ---

    def insert_identity(self, identity: Identity) -> Identity:
        """Insert a new identity. One identity per owner account."""
        with self._lock:
            if identity.id in self._identities:
                raise ConflictError(f"Identity {identity.id} already exists")
            if identity.owner_id in self._by_owner:
                raise ConflictError(
                    f"Owner {identity.owner_id} already has an identity",
                    identity_id=self._by_owner[identity.owner_id],
                )
            self._identities[identity.id] = identity.model_copy(deep=True)
            self._by_owner[identity.owner_id] = identity.id
            return identity.model_copy(deep=True)

    def get_identity(self, identity_id: str) -> Optional[Identity]:
        with self._lock:
            identity = self._identities.get(identity_id)
            return identity.model_copy(deep=True) if identity else None

    def identity_for_owner(self, owner_id: str) -> Optional[Identity]:
        with self._lock:
            identity_id = self._by_owner.get(owner_id)
            if identity_id is None:
                return None
            return self._identities[identity_id].model_copy(deep=True)

    def list_identities(self) -> List[Identity]:
        with self._lock:
            return [i.model_copy(deep=True) for i in self._identities.values()]

    def compare_and_set_identity(self, identity: Identity, expected_version: int) -> Identity:
        """
        Replace the stored identity if its version still equals
        `expected_version`. The written record gets version + 1.
        """
        with self._lock:
            current = self._identities.get(identity.id)
            if current is None:
                raise ConflictError(f"Identity {identity.id} vanished during update")
            if current.version != expected_version:
                raise ConflictError(
                    f"Stale identity version for {identity.id}",
                    expected=expected_version,
                    actual=current.version,
                )
            written = identity.model_copy(deep=True)
            written.version = expected_version + 1
            self._identities[identity.id] = written
            return written.model_copy(deep=True)

    # --- Attestations ---

    def insert_attestation(self, attestation: Attestation) -> None:
        with self._lock:
            if attestation.id in self._attestations:
                raise ConflictError(f"Attestation {attestation.id} already exists")
            self._attestations[attestation.id] = attestation.model_copy(deep=True)
            self._by_identity.setdefault(attestation.identity_id, []).append(attestation.id)

    def discard_attestation(self, attestation_id: str) -> None:
        """Undo an uncommitted insert."""
        with self._lock:
            attestation = self._attestations.pop(attestation_id, None)
            if attestation is not None:
                self._by_identity[attestation.identity_id].remove(attestation_id)

    def get_attestation(self, attestation_id: str) -> Optional[Attestation]:
        with self._lock:
            attestation = self._attestations.get(attestation_id)
            return attestation.model_copy(deep=True) if attestation else None

    def replace_attestation(self, attestation: Attestation) -> None:
        with self._lock:
            if attestation.id not in self._attestations:
                raise ConflictError(f"Attestation {attestation.id} vanished during update")
            self._attestations[attestation.id] = attestation.model_copy(deep=True)

    def attestations_for_identity(self, identity_id: str) -> List[Attestation]:
        """All attestations on an identity, in issuance order."""
        with self._lock:
            return [
                self._attestations[a].model_copy(deep=True)
                for a in self._by_identity.get(identity_id, [])
            ]

    # --- Verifications ---

    def insert_verification(self, verification: Verification) -> None:
        with self._lock:
            if verification.id in self._verifications:
                raise ConflictError(f"Verification {verification.id} already exists")
            self._verifications[verification.id] = verification.model_copy(deep=True)

    def get_verification(self, verification_id: str) -> Optional[Verification]:
        with self._lock:
            verification = self._verifications.get(verification_id)
            return verification.model_copy(deep=True) if verification else None

    def compare_and_set_verification(
        self, verification: Verification, expected_status: VerificationStatus
    ) -> Verification:
        """Replace the stored verification if its status is still `expected_status`."""
        with self._lock:
            current = self._verifications.get(verification.id)
            if current is None:
                raise ConflictError(f"Verification {verification.id} vanished during update")
            if current.result.status != expected_status:
                raise ConflictError(
                    f"Verification {verification.id} changed state concurrently",
                    expected=expected_status.value,
                    actual=current.result.status.value,
                )
            self._verifications[verification.id] = verification.model_copy(deep=True)
            return verification.model_copy(deep=True)

    def verifications_by_requestor(self, requestor_id: str) -> List[Verification]:
        with self._lock:
            return [
                v.model_copy(deep=True) for v in self._verifications.values()
                if v.requestor_id == requestor_id
            ]

    def verifications_for_identity(self, identity_id: str) -> List[Verification]:
        with self._lock:
            return [
                v.model_copy(deep=True) for v in self._verifications.values()
                if v.identity_id == identity_id
            ]
