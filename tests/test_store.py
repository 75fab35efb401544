"""Tests for the Kernel Store and per-key locking."""

import threading
import time
from datetime import datetime, timezone

import pytest

from attest_kernel.errors import ConflictError
from attest_kernel.models.attestation import Attestation, AttestationType
from attest_kernel.models.identity import Identity
from attest_kernel.models.verification import ConsentRecord, Verification, VerificationStatus
from attest_kernel.store.locks import KeyedLock
from attest_kernel.store.memory import KernelStore

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _make_identity(identity_id: str = "idn_1", owner_id: str = "user_1") -> Identity:
    return Identity(
        id=identity_id,
        owner_id=owner_id,
        ledger_address="GADDR",
        created_at=NOW,
        updated_at=NOW,
    )


def _make_verification(verification_id: str = "ver_1") -> Verification:
    return Verification(
        id=verification_id,
        requestor_id="verifier_v",
        identity_id="idn_1",
        requested_fields=["firstName"],
        consent=ConsentRecord(expires_at=NOW),
        created_at=NOW,
        updated_at=NOW,
    )


class TestKernelStore:
    def setup_method(self):
        self.store = KernelStore()

    def test_reads_are_copies(self):
        self.store.insert_identity(_make_identity())
        copy = self.store.get_identity("idn_1")
        copy.live_verified_fields.append("firstName")
        assert self.store.get_identity("idn_1").live_verified_fields == []

    def test_compare_and_set_bumps_version(self):
        self.store.insert_identity(_make_identity())
        identity = self.store.get_identity("idn_1")
        identity.tier = 1
        written = self.store.compare_and_set_identity(identity, expected_version=0)
        assert written.version == 1
        assert self.store.get_identity("idn_1").tier == 1

    def test_stale_version_rejected(self):
        self.store.insert_identity(_make_identity())
        stale = self.store.get_identity("idn_1")
        fresh = self.store.get_identity("idn_1")
        self.store.compare_and_set_identity(fresh, expected_version=0)

        stale.tier = 3
        with pytest.raises(ConflictError):
            self.store.compare_and_set_identity(stale, expected_version=0)
        assert self.store.get_identity("idn_1").tier == 0

    def test_duplicate_owner_rejected(self):
        self.store.insert_identity(_make_identity("idn_1", "user_1"))
        with pytest.raises(ConflictError):
            self.store.insert_identity(_make_identity("idn_2", "user_1"))

    def test_verification_status_cas(self):
        self.store.insert_verification(_make_verification())
        approved = self.store.get_verification("ver_1")
        approved.result.status = VerificationStatus.APPROVED
        self.store.compare_and_set_verification(approved, VerificationStatus.PENDING)

        rejected = self.store.get_verification("ver_1")
        rejected.result.status = VerificationStatus.REJECTED
        with pytest.raises(ConflictError):
            self.store.compare_and_set_verification(rejected, VerificationStatus.PENDING)
        assert self.store.get_verification("ver_1").result.status == VerificationStatus.APPROVED

    def test_discard_attestation(self):
        for attestation_id in ("att_1", "att_2"):
            self.store.insert_attestation(Attestation(
                id=attestation_id,
                identity_id="idn_1",
                attester_id="bank",
                type=AttestationType.PERSONAL,
                fields={"firstName": "Ada"},
                confidence=90,
                issued_at=NOW,
            ))
        self.store.discard_attestation("att_2")
        self.store.discard_attestation("att_missing")
        assert [a.id for a in self.store.attestations_for_identity("idn_1")] == ["att_1"]
        assert self.store.get_attestation("att_2") is None


class TestKeyedLock:
    def test_same_key_serialized(self):
        locks = KeyedLock()
        inside = []
        overlaps = []

        def work():
            with locks.hold("idn_1"):
                if inside:
                    overlaps.append(True)
                inside.append(True)
                time.sleep(0.005)
                inside.pop()

        threads = [threading.Thread(target=work) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []

    def test_locks_released_after_use(self):
        locks = KeyedLock()
        with locks.hold("a"):
            with locks.hold("b"):
                assert len(locks) == 2
        assert len(locks) == 0
