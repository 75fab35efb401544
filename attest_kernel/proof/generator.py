"""
Proof Generator — deterministic digest binding a disclosure.

The proof covers the identity, the verifier, the sorted disclosed field
names, and the decision time as ISO-8601 UTC. Identical inputs always give
the identical hash: there is no nonce and no secret, so an auditor can
recompute it from logged inputs alone.

This is evidence of what was disclosed and when. It is not a zero-knowledge
proof and carries nothing about the field values.
"""

import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Iterable

from attest_kernel.errors import InvalidArgumentError
from attest_kernel.models.verification import DisclosureProof

PROOF_METHOD = "SHA-256"


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with a 'Z' suffix and fixed microsecond precision."""
    if value.tzinfo is None:
        raise InvalidArgumentError("Proof timestamps must be timezone-aware")
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def canonical_payload(
    identity_id: str,
    requestor_id: str,
    disclosed_fields: Iterable[str],
    verified_at: datetime,
) -> bytes:
    """The fixed-order byte string the proof digest is computed over."""
    payload = {
        "identity_id": identity_id,
        "requestor_id": requestor_id,
        "fields": sorted(set(disclosed_fields)),
        "verified_at": format_timestamp(verified_at),
    }
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False,
    ).encode("utf-8")


def generate_proof(
    identity_id: str,
    requestor_id: str,
    disclosed_fields: Iterable[str],
    verified_at: datetime,
) -> DisclosureProof:
    """Stamp a disclosure with a reproducible SHA-256 digest."""
    data = canonical_payload(identity_id, requestor_id, disclosed_fields, verified_at)
    return DisclosureProof(method=PROOF_METHOD, hash=hashlib.sha256(data).hexdigest())


def verify_proof(
    proof: DisclosureProof,
    identity_id: str,
    requestor_id: str,
    disclosed_fields: Iterable[str],
    verified_at: datetime,
) -> bool:
    """Recompute a proof from its inputs and compare."""
    if proof.method != PROOF_METHOD:
        return False
    expected = generate_proof(identity_id, requestor_id, disclosed_fields, verified_at)
    return hmac.compare_digest(expected.hash, proof.hash)


def payload_hash(payload: dict) -> str:
    """SHA-256 over a canonical JSON rendering of an arbitrary payload."""
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    return hashlib.sha256(data).hexdigest()
