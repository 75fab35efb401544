"""Audit Record — one entry in the append-only disclosure audit log."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class AuditEvent(str, Enum):
    ATTESTATION_ISSUED = "attestation_issued"
    ATTESTATION_REVOKED = "attestation_revoked"
    VERIFICATION_APPROVED = "verification_approved"
    VERIFICATION_REJECTED = "verification_rejected"
    VERIFICATION_REVOKED = "verification_revoked"


class AuditRecord(BaseModel):
    """
    Every record answers: what happened, to which identity, who did it,
    which field names were involved, and (for disclosures) the proof that an
    auditor can recompute from the logged inputs.

    Field values are never recorded, only field names.
    """

    id: str
    event: AuditEvent
    identity_id: str
    subject_id: str                         # Attestation or verification id
    actor_id: str
    counterparty_id: Optional[str] = None   # Verifier on disclosure events
    fields: List[str] = []
    proof_method: Optional[str] = None
    proof_hash: Optional[str] = None
    occurred_at: datetime
    details: dict = {}

    # INTEGRITY
    signature: str = ""
    prior_record_hash: Optional[str] = None
