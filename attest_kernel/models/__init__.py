"""Attestation kernel data models."""

from attest_kernel.models.attestation import METADATA_KEYS, Attestation, AttestationType
from attest_kernel.models.audit import AuditEvent, AuditRecord
from attest_kernel.models.config import DEFAULT_TIERS, DEFAULT_TYPE_WEIGHTS, KernelConfig
from attest_kernel.models.identity import (
    Identity,
    TierDefinition,
    TierProgress,
    VerificationScore,
)
from attest_kernel.models.verification import (
    CONSENT_WINDOW_LAPSED,
    TERMINAL_STATUSES,
    ConsentRecord,
    DisclosureProof,
    Verification,
    VerificationResult,
    VerificationStatus,
)

__all__ = [
    "Attestation",
    "AttestationType",
    "AuditEvent",
    "AuditRecord",
    "CONSENT_WINDOW_LAPSED",
    "ConsentRecord",
    "DEFAULT_TIERS",
    "DEFAULT_TYPE_WEIGHTS",
    "DisclosureProof",
    "Identity",
    "KernelConfig",
    "METADATA_KEYS",
    "TERMINAL_STATUSES",
    "TierDefinition",
    "TierProgress",
    "Verification",
    "VerificationResult",
    "VerificationScore",
    "VerificationStatus",
]
