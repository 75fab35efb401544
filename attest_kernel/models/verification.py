"""Verification — a verifier's request to learn specific fields about an identity."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class VerificationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVOKED = "revoked"


TERMINAL_STATUSES = frozenset({
    VerificationStatus.APPROVED,
    VerificationStatus.REJECTED,
    VerificationStatus.REVOKED,
})

CONSENT_WINDOW_LAPSED = "consent_window_lapsed"


class ConsentRecord(BaseModel):
    """The owner's consent decision and the window in which it may be given."""

    granted: bool = False
    granted_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    expires_at: datetime
    selected_fields: List[str] = []


class VerificationResult(BaseModel):
    status: VerificationStatus = VerificationStatus.PENDING
    disclosed_fields: List[str] = []
    message: Optional[str] = None
    verified_at: Optional[datetime] = None


class DisclosureProof(BaseModel):
    """
    Deterministic digest over what was disclosed, to whom, and when.

    Advisory audit evidence only. It says nothing about the field values and
    is not a zero-knowledge proof.
    """

    method: str
    hash: str


class Verification(BaseModel):
    id: str
    requestor_id: str
    identity_id: str
    requested_fields: List[str]
    purpose: Optional[str] = None
    consent: ConsentRecord
    result: VerificationResult = VerificationResult()
    proof: Optional[DisclosureProof] = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.result.status in TERMINAL_STATUSES

    def consent_lapsed(self, now: datetime) -> bool:
        return now >= self.consent.expires_at

    def as_of(self, now: datetime) -> "Verification":
        """
        View of this request at `now`.

        A pending request whose consent window has lapsed reads as rejected.
        The stored record is left untouched.
        """
        if self.is_terminal or not self.consent_lapsed(now):
            return self
        view = self.model_copy(deep=True)
        view.result.status = VerificationStatus.REJECTED
        view.result.message = CONSENT_WINDOW_LAPSED
        return view
