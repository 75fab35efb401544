"""Attestation — one attester's claim over a field set for one identity."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class AttestationType(str, Enum):
    PERSONAL = "personal"
    ADDRESS = "address"
    FINANCIAL = "financial"
    EMPLOYMENT = "employment"
    EDUCATION = "education"
    SOCIAL = "social"
    OTHER = "other"


# Documented metadata namespace. Keys outside it are rejected at issuance.
METADATA_KEYS = (
    "source.document",          # e.g. "passport", "utilityBill"
    "source.reference",         # attester's internal case / ticket id
    "method",                   # e.g. "in_person", "remote_video", "registry_lookup"
    "jurisdiction",             # ISO country code the check was performed under
    "note",                     # free-text attester note
)


class Attestation(BaseModel):
    """
    A claim by one attester about a set of fields on one identity.

    `fields` maps field name to the claimed value and keeps insertion order.
    Liveness is never stored: it is derived from `revoked` and `expires_at`
    at evaluation time.
    """

    id: str
    identity_id: str
    attester_id: str
    type: AttestationType
    fields: Dict[str, str]                  # field name -> claimed value
    confidence: int = Field(ge=0, le=100)
    issued_at: datetime
    expires_at: Optional[datetime] = None   # None = never expires
    revoked: bool = False
    revoked_at: Optional[datetime] = None
    revocation_reason: Optional[str] = None
    ledger_anchor: Optional[str] = None     # Reference into the notarization sink
    metadata: Dict[str, str] = {}

    def is_live(self, now: datetime) -> bool:
        """Live iff not revoked and not past its expiry."""
        if self.revoked:
            return False
        return self.expires_at is None or self.expires_at > now

    @property
    def field_names(self) -> List[str]:
        return list(self.fields.keys())

    def anchor_payload(self) -> dict:
        """The subset of the attestation that gets notarized."""
        return {
            "id": self.id,
            "identity_id": self.identity_id,
            "attester_id": self.attester_id,
            "type": self.type.value,
            "fields": sorted(self.field_names),
            "confidence": self.confidence,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }
