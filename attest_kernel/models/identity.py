"""Identity and tier definitions."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class TierDefinition(BaseModel):
    """One row of the tier table. Static configuration, never mutated at runtime."""

    level: int = Field(ge=0)
    name: str
    description: str = ""
    required_fields: List[str] = []
    minimum_attestations: int = Field(ge=0, default=0)


class TierProgress(BaseModel):
    """Where an identity stands relative to the next tier up."""

    current_level: int
    next_level: Optional[int] = None
    missing_fields: List[str] = []
    missing_attestations: int = 0


class Identity(BaseModel):
    """
    One subject's verifiable profile.

    `tier` and `live_verified_fields` are derived from the attestation arena
    and are only ever written by the attestation ledger.
    """

    id: str
    owner_id: str                           # Exclusively owned by one account
    ledger_address: str
    tier: int = Field(ge=0, default=0)
    live_verified_fields: List[str] = []    # Sorted, derived
    personal_info: Dict[str, object] = {}
    contact_info: Dict[str, object] = {}
    attestation_ids: List[str] = []         # Issuance order
    active: bool = True
    version: int = 0                        # Bumped on every derived-state write
    created_at: datetime
    updated_at: datetime


class VerificationScore(BaseModel):
    """0-100 confidence that an identity is who it claims, from its live attestations."""

    identity_id: str
    score: int = Field(ge=0, le=100)
    verified: bool
    by_type: Dict[str, int] = {}            # attestation type -> points contributed
    evaluated_at: datetime
