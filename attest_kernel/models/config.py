"""Kernel configuration, the default tier table and scoring weights."""

import json
import os
from typing import Dict, List

from pydantic import BaseModel, Field

from attest_kernel.models.attestation import AttestationType
from attest_kernel.models.identity import TierDefinition


DEFAULT_TIERS: List[TierDefinition] = [
    TierDefinition(
        level=0,
        name="Basic",
        description="Initial identity with minimal verification",
    ),
    TierDefinition(
        level=1,
        name="Standard",
        description="Identity with basic personal information verified",
        required_fields=["firstName", "lastName", "email", "phone"],
        minimum_attestations=2,
    ),
    TierDefinition(
        level=2,
        name="Enhanced",
        description="Identity with full profile and multiple attestations",
        required_fields=["firstName", "lastName", "dateOfBirth", "address", "nationality"],
        minimum_attestations=5,
    ),
    TierDefinition(
        level=3,
        name="Premium",
        description="Fully verified identity with official document verification",
        required_fields=[
            "firstName", "lastName", "dateOfBirth", "address", "nationality", "documents",
        ],
        minimum_attestations=8,
    ),
]

# Points per distinct live attestation type, scaled by the best confidence
# held for that type. The total is capped at 100.
DEFAULT_TYPE_WEIGHTS: Dict[AttestationType, int] = {
    AttestationType.PERSONAL: 10,
    AttestationType.ADDRESS: 20,
    AttestationType.FINANCIAL: 30,
    AttestationType.EMPLOYMENT: 15,
    AttestationType.EDUCATION: 10,
    AttestationType.SOCIAL: 15,
    AttestationType.OTHER: 5,
}

ENV_PREFIX = "ATTEST_KERNEL_"


class KernelConfig(BaseModel):
    """Configuration for the attestation kernel."""

    attestation_validity_days: int = Field(gt=0, default=365)
    consent_window_days: int = Field(gt=0, default=7)
    max_conflict_retries: int = Field(ge=0, default=3)
    anchor_timeout_seconds: float = Field(gt=0, default=5.0)
    anchor_retry_interval_seconds: int = Field(gt=0, default=60)
    sweep_schedule: str = "*/15 * * * *"      # Cron expression
    audit_db_path: str = ":memory:"
    tiers: List[TierDefinition] = DEFAULT_TIERS
    type_weights: Dict[AttestationType, int] = DEFAULT_TYPE_WEIGHTS
    verified_score_threshold: int = Field(ge=0, le=100, default=50)

    @classmethod
    def from_env(cls, environ=None) -> "KernelConfig":
        """
        Build a config from ATTEST_KERNEL_* environment variables.

        Scalar settings map by upper-cased field name, e.g.
        ATTEST_KERNEL_CONSENT_WINDOW_DAYS=14. ATTEST_KERNEL_TIERS_FILE points
        at a JSON file holding a list of tier definitions.
        """
        env = os.environ if environ is None else environ
        overrides = {}
        for name in cls.model_fields:
            if name in ("tiers", "type_weights"):
                continue
            value = env.get(f"{ENV_PREFIX}{name.upper()}")
            if value is not None:
                overrides[name] = value

        tiers_file = env.get(f"{ENV_PREFIX}TIERS_FILE")
        if tiers_file:
            with open(tiers_file, encoding="utf-8") as fh:
                overrides["tiers"] = json.load(fh)

        return cls.model_validate(overrides)
