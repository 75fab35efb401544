"""Tests for the FastAPI API endpoints."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from attest_kernel.api.app import create_app
from attest_kernel.clock import ManualClock
from attest_kernel.kernel import AttestationKernel

START = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return ManualClock(START)


@pytest.fixture
def client(clock):
    """Create a test client over a fresh kernel."""
    kernel = AttestationKernel(clock=clock)
    return TestClient(create_app(kernel))


@pytest.fixture
def identity_id(client):
    response = client.post("/identities", json={
        "owner_id": "owner_1",
        "ledger_address": "GOWNER1",
        "personal_info": {"firstName": "Ada"},
    })
    return response.json()["id"]


@pytest.fixture
def attested(client, identity_id):
    """An identity with a live name attestation from a granted attester."""
    client.post("/attesters/attester_x/grants", json={"types": ["personal"]})
    response = client.post("/attestations", json={
        "identity_id": identity_id,
        "attester_id": "attester_x",
        "type": "personal",
        "fields": {"firstName": "Ada", "lastName": "Lovelace"},
        "confidence": 90,
    })
    return response.json()["attestation"]


class TestIdentityEndpoints:
    def test_register(self, client):
        response = client.post("/identities", json={
            "owner_id": "owner_1",
            "ledger_address": "GOWNER1",
        })
        assert response.status_code == 201
        data = response.json()
        assert data["tier"] == 0
        assert data["live_verified_fields"] == []

    def test_register_twice_conflicts(self, client, identity_id):
        response = client.post("/identities", json={
            "owner_id": "owner_1",
            "ledger_address": "GOTHER",
        })
        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_get_missing(self, client):
        response = client.get("/identities/idn_missing")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_tier_progress(self, client, identity_id, attested):
        response = client.get(f"/identities/{identity_id}/tier")
        assert response.status_code == 200
        data = response.json()
        assert data["current_level"] == 0
        assert data["next_level"] == 1
        assert data["missing_fields"] == ["email", "phone"]

    def test_deactivate(self, client, identity_id):
        response = client.post(f"/identities/{identity_id}/deactivate", json={"owner_id": "mallory"})
        assert response.status_code == 403
        response = client.post(f"/identities/{identity_id}/deactivate", json={"owner_id": "owner_1"})
        assert response.status_code == 200
        assert response.json()["active"] is False

    def test_get_reflects_expiry_without_sweep(self, client, clock, identity_id):
        client.post("/attesters/attester_x/grants", json={"types": ["personal", "social"]})
        client.post("/attestations", json={
            "identity_id": identity_id,
            "attester_id": "attester_x",
            "type": "personal",
            "fields": {"firstName": "Ada", "lastName": "Lovelace"},
            "confidence": 90,
            "expires_at": (START + timedelta(hours=1)).isoformat(),
        })
        client.post("/attestations", json={
            "identity_id": identity_id,
            "attester_id": "attester_x",
            "type": "social",
            "fields": {"email": "ada@example.org", "phone": "+44 20 0000"},
            "confidence": 80,
        })
        assert client.get(f"/identities/{identity_id}").json()["tier"] == 1

        clock.advance(hours=2)
        data = client.get(f"/identities/{identity_id}").json()
        assert data["live_verified_fields"] == ["email", "phone"]
        assert data["tier"] == 0

    def test_verification_score(self, client, identity_id, attested):
        response = client.get(f"/identities/{identity_id}/score")
        assert response.status_code == 200
        data = response.json()
        assert data["score"] == 9
        assert data["by_type"] == {"personal": 9}
        assert data["verified"] is False

        client.post(f"/attestations/{attested['id']}/revoke", json={"attester_id": "attester_x"})
        assert client.get(f"/identities/{identity_id}/score").json()["score"] == 0

    def test_verification_score_missing(self, client):
        assert client.get("/identities/idn_missing/score").status_code == 404


class TestAttestationEndpoints:
    def test_issue(self, client, identity_id, attested):
        assert attested["fields"] == {"firstName": "Ada", "lastName": "Lovelace"}
        identity = client.get(f"/identities/{identity_id}").json()
        assert identity["live_verified_fields"] == ["firstName", "lastName"]
        assert identity["attestation_ids"] == [attested["id"]]

    def test_issue_ungranted(self, client, identity_id):
        response = client.post("/attestations", json={
            "identity_id": identity_id,
            "attester_id": "stranger",
            "type": "personal",
            "fields": {"firstName": "Ada"},
            "confidence": 90,
        })
        assert response.status_code == 403
        assert response.json()["error"] == "unauthorized"

    def test_issue_bad_confidence(self, client, identity_id, attested):
        response = client.post("/attestations", json={
            "identity_id": identity_id,
            "attester_id": "attester_x",
            "type": "personal",
            "fields": {"firstName": "Ada"},
            "confidence": 150,
        })
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_argument"

    def test_list_live_only(self, client, identity_id, attested):
        client.post(f"/attestations/{attested['id']}/revoke", json={"attester_id": "attester_x"})
        everything = client.get(f"/identities/{identity_id}/attestations").json()
        live = client.get(f"/identities/{identity_id}/attestations", params={"live_only": True}).json()
        assert len(everything) == 1
        assert live == []

    def test_revoke_by_other_attester(self, client, attested):
        response = client.post(
            f"/attestations/{attested['id']}/revoke", json={"attester_id": "attester_y"},
        )
        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    def test_double_revoke(self, client, attested):
        url = f"/attestations/{attested['id']}/revoke"
        assert client.post(url, json={"attester_id": "attester_x"}).status_code == 200
        assert client.post(url, json={"attester_id": "attester_x"}).status_code == 409

    def test_issue_never_expires(self, client, clock, identity_id):
        client.post("/attesters/attester_x/grants", json={"types": ["personal"]})
        response = client.post("/attestations", json={
            "identity_id": identity_id,
            "attester_id": "attester_x",
            "type": "personal",
            "fields": {"firstName": "Ada"},
            "confidence": 90,
            "never_expires": True,
        })
        assert response.status_code == 201
        assert response.json()["attestation"]["expires_at"] is None
        clock.advance(days=5000)
        data = client.get(f"/identities/{identity_id}").json()
        assert data["live_verified_fields"] == ["firstName"]


class TestVerificationEndpoints:
    def _request(self, client, identity_id, **extra):
        body = {
            "requestor_id": "verifier_v",
            "identity_id": identity_id,
            "requested_fields": ["firstName", "ssn"],
        }
        body.update(extra)
        response = client.post("/verifications", json=body)
        assert response.status_code == 201
        return response.json()

    def test_consent_flow(self, client, identity_id, attested):
        verification = self._request(client, identity_id)
        assert verification["result"]["status"] == "pending"

        response = client.post(f"/verifications/{verification['id']}/consent", json={
            "owner_id": "owner_1",
            "selected_fields": ["firstName", "ssn"],
        })
        assert response.status_code == 200
        data = response.json()
        assert data["result"]["status"] == "approved"
        assert data["result"]["disclosed_fields"] == ["firstName"]
        assert data["proof"]["method"] == "SHA-256"

        audit = client.get("/audit/verify").json()
        assert audit["integrity_valid"] is True
        assert audit["proof_mismatches"] == []
        assert audit["total_records"] == 2

    def test_consent_after_window(self, client, clock, identity_id, attested):
        verification = self._request(client, identity_id)
        clock.advance(days=8)

        response = client.post(
            f"/verifications/{verification['id']}/consent", json={"owner_id": "owner_1"},
        )
        assert response.status_code == 410
        assert response.json()["error"] == "expired"

        view = client.get(
            f"/verifications/{verification['id']}", params={"viewer_id": "verifier_v"},
        ).json()
        assert view["result"]["status"] == "revoked"

    def test_listings(self, client, identity_id, attested):
        first = self._request(client, identity_id)
        self._request(client, identity_id, requested_fields=["lastName"])
        client.post(f"/verifications/{first['id']}/reject", json={"owner_id": "owner_1"})

        requested = client.get(
            "/verifications/requested", params={"requestor_id": "verifier_v"},
        ).json()
        rejected = client.get(
            "/verifications/received", params={"owner_id": "owner_1", "status": "rejected"},
        ).json()
        assert len(requested) == 2
        assert [v["id"] for v in rejected] == [first["id"]]

    def test_bystander_cannot_view(self, client, identity_id, attested):
        verification = self._request(client, identity_id)
        response = client.get(
            f"/verifications/{verification['id']}", params={"viewer_id": "bystander"},
        )
        assert response.status_code == 403

    def test_revoke_and_withdraw(self, client, identity_id, attested):
        owner_side = self._request(client, identity_id)
        verifier_side = self._request(client, identity_id)

        revoked = client.post(
            f"/verifications/{owner_side['id']}/revoke", json={"owner_id": "owner_1"},
        ).json()
        withdrawn = client.post(
            f"/verifications/{verifier_side['id']}/withdraw", json={"requestor_id": "verifier_v"},
        ).json()
        assert revoked["result"]["status"] == "revoked"
        assert withdrawn["result"]["message"] == "withdrawn_by_requestor"


class TestMaintenanceEndpoints:
    def test_sweep_trigger(self, client, clock, identity_id):
        client.post("/attesters/attester_x/grants", json={"types": ["personal"]})
        client.post("/attestations", json={
            "identity_id": identity_id,
            "attester_id": "attester_x",
            "type": "personal",
            "fields": {"firstName": "Ada"},
            "confidence": 90,
            "expires_at": (START + timedelta(hours=1)).isoformat(),
        })
        clock.advance(hours=2)

        response = client.post("/sweep/trigger")
        assert response.status_code == 200
        assert response.json() == {"refreshed": [identity_id], "count": 1}

    def test_audit_for_identity(self, client, identity_id, attested):
        records = client.get(f"/audit/identities/{identity_id}").json()
        assert [r["event"] for r in records] == ["attestation_issued"]
