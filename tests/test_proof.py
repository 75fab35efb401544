"""Tests for the Proof Generator."""

from datetime import datetime, timedelta, timezone

import pytest

from attest_kernel.errors import InvalidArgumentError
from attest_kernel.models.verification import DisclosureProof
from attest_kernel.proof.generator import (
    PROOF_METHOD,
    canonical_payload,
    format_timestamp,
    generate_proof,
    payload_hash,
    verify_proof,
)

VERIFIED_AT = datetime(2026, 3, 1, 9, 30, 15, 123456, tzinfo=timezone.utc)
BASE = dict(
    identity_id="idn_1",
    requestor_id="verifier_v",
    disclosed_fields=["firstName", "lastName"],
    verified_at=VERIFIED_AT,
)


class TestGenerateProof:
    def test_same_inputs_same_hash(self):
        assert generate_proof(**BASE) == generate_proof(**BASE)

    def test_method_and_shape(self):
        proof = generate_proof(**BASE)
        assert proof.method == PROOF_METHOD == "SHA-256"
        assert len(proof.hash) == 64
        int(proof.hash, 16)

    @pytest.mark.parametrize("field, value", [
        ("identity_id", "idn_2"),
        ("requestor_id", "verifier_w"),
        ("disclosed_fields", ["firstName"]),
        ("verified_at", VERIFIED_AT + timedelta(microseconds=1)),
    ])
    def test_any_input_change_changes_hash(self, field, value):
        changed = dict(BASE, **{field: value})
        assert generate_proof(**changed).hash != generate_proof(**BASE).hash

    def test_field_order_does_not_matter(self):
        reordered = dict(BASE, disclosed_fields=["lastName", "firstName", "lastName"])
        assert generate_proof(**reordered) == generate_proof(**BASE)

    def test_timezone_normalized(self):
        plus_two = VERIFIED_AT.astimezone(timezone(timedelta(hours=2)))
        shifted = dict(BASE, verified_at=plus_two)
        assert generate_proof(**shifted) == generate_proof(**BASE)

    def test_naive_timestamp_rejected(self):
        with pytest.raises(InvalidArgumentError):
            generate_proof(**dict(BASE, verified_at=datetime(2026, 3, 1)))

    def test_empty_disclosure_still_proven(self):
        proof = generate_proof(**dict(BASE, disclosed_fields=[]))
        assert proof.hash != generate_proof(**BASE).hash


class TestCanonicalPayload:
    def test_fixed_layout(self):
        assert canonical_payload(**BASE) == (
            b'{"fields":["firstName","lastName"],'
            b'"identity_id":"idn_1",'
            b'"requestor_id":"verifier_v",'
            b'"verified_at":"2026-03-01T09:30:15.123456Z"}'
        )

    def test_timestamp_format(self):
        assert format_timestamp(datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)) == (
            "2026-01-02T03:04:05.000000Z"
        )


class TestVerifyProof:
    def test_round_trip(self):
        assert verify_proof(generate_proof(**BASE), **BASE)

    def test_tampered_hash(self):
        proof = generate_proof(**BASE)
        forged = DisclosureProof(method=proof.method, hash="0" * 64)
        assert not verify_proof(forged, **BASE)

    def test_wrong_method(self):
        proof = generate_proof(**BASE)
        assert not verify_proof(DisclosureProof(method="MD5", hash=proof.hash), **BASE)

    def test_widened_disclosure_fails(self):
        proof = generate_proof(**BASE)
        widened = dict(BASE, disclosed_fields=["firstName", "lastName", "ssn"])
        assert not verify_proof(proof, **widened)


class TestPayloadHash:
    def test_key_order_irrelevant(self):
        assert payload_hash({"a": 1, "b": 2}) == payload_hash({"b": 2, "a": 1})

    def test_value_change(self):
        assert payload_hash({"a": 1}) != payload_hash({"a": 2})
