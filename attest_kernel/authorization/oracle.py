"""
Authorization Oracle — answers the two questions the kernel needs from the
surrounding auth system:

- may this attester issue attestations of this type?
- does this user own this identity?

The kernel only consumes the boolean answers. How attester grants are
decided is the surrounding system's business.
"""

import logging
import threading
from typing import Dict, Iterable, Set

from attest_kernel.models.attestation import AttestationType
from attest_kernel.store.memory import KernelStore

logger = logging.getLogger(__name__)


class AuthorizationOracle:
    """
    Reference oracle. Attester grants are registered explicitly; ownership
    is read from the identity record in the store.
    """

    def __init__(self, store: KernelStore):
        self._store = store
        self._grants: Dict[str, Set[AttestationType]] = {}
        self._lock = threading.Lock()

    def grant_attester(self, attester_id: str, types: Iterable[AttestationType]) -> None:
        """Allow an attester to issue the given attestation types."""
        types = {AttestationType(t) for t in types}
        with self._lock:
            self._grants.setdefault(attester_id, set()).update(types)
        logger.info(
            "Granted attester %s types %s",
            attester_id, sorted(t.value for t in types),
        )

    def revoke_attester(self, attester_id: str) -> None:
        with self._lock:
            self._grants.pop(attester_id, None)
        logger.info("Revoked all attestation grants for %s", attester_id)

    def may_issue(self, attester_id: str, claimed_type: AttestationType) -> bool:
        with self._lock:
            return AttestationType(claimed_type) in self._grants.get(attester_id, set())

    def owns_identity(self, user_id: str, identity_id: str) -> bool:
        identity = self._store.get_identity(identity_id)
        return identity is not None and identity.owner_id == user_id
