"""
Attestation Kernel API — thin FastAPI adapter over the in-process kernel.

Authentication is not handled here: principal ids are passed explicitly
and the surrounding session layer is expected to fill them in. Kernel
errors are mapped onto HTTP status codes with a machine-readable body:

    {"error": "<code>", "detail": "<message>", ...context}
"""

from datetime import datetime
from typing import Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from attest_kernel.errors import KernelError
from attest_kernel.kernel import AttestationKernel
from attest_kernel.models.attestation import AttestationType
from attest_kernel.models.verification import VerificationStatus


STATUS_BY_CODE = {
    "not_found": 404,
    "forbidden": 403,
    "unauthorized": 403,
    "invalid_argument": 422,
    "conflict": 409,
    "expired": 410,
}


# --- Request/Response Models ---

class IdentityCreateRequest(BaseModel):
    owner_id: str
    ledger_address: str
    personal_info: dict = {}
    contact_info: dict = {}


class OwnerRequest(BaseModel):
    owner_id: str


class AttesterGrantRequest(BaseModel):
    types: List[AttestationType]


class AttestationCreateRequest(BaseModel):
    identity_id: str
    attester_id: str
    type: str
    fields: Dict[str, str]
    confidence: int
    expires_at: Optional[datetime] = None
    metadata: Dict[str, str] = {}
    never_expires: bool = False


class RevokeAttestationRequest(BaseModel):
    attester_id: str
    reason: Optional[str] = None


class VerificationCreateRequest(BaseModel):
    requestor_id: str
    identity_id: str
    requested_fields: List[str]
    expires_at: Optional[datetime] = None
    purpose: Optional[str] = None


class ConsentRequest(BaseModel):
    owner_id: str
    selected_fields: Optional[List[str]] = None


class RejectRequest(BaseModel):
    owner_id: str
    reason: Optional[str] = None


class WithdrawRequest(BaseModel):
    requestor_id: str


# --- Application Factory ---

def create_app(kernel: Optional[AttestationKernel] = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Attestation Kernel API",
        description="Attestation and consent-gated disclosure",
        version="0.1.0",
    )

    k = kernel or AttestationKernel()
    app.state.kernel = k

    @app.exception_handler(KernelError)
    async def kernel_error_handler(request: Request, exc: KernelError):
        return JSONResponse(status_code=STATUS_BY_CODE.get(exc.code, 400), content=exc.to_dict())

    # === IDENTITIES ===

    @app.post("/identities", status_code=201)
    def register_identity(req: IdentityCreateRequest):
        identity = k.ledger.register_identity(
            owner_id=req.owner_id,
            ledger_address=req.ledger_address,
            personal_info=req.personal_info,
            contact_info=req.contact_info,
        )
        return identity.model_dump(mode="json")

    @app.get("/identities/{identity_id}")
    def get_identity(identity_id: str):
        return k.ledger.get_identity(identity_id).model_dump(mode="json")

    @app.get("/identities/{identity_id}/attestations")
    def list_attestations(identity_id: str, live_only: bool = False):
        if live_only:
            attestations = k.ledger.live_attestations(identity_id)
        else:
            attestations = k.ledger.attestations_for(identity_id)
        return [a.model_dump(mode="json") for a in attestations]

    @app.get("/identities/{identity_id}/tier")
    def tier_progress(identity_id: str):
        return k.ledger.tier_progress(identity_id).model_dump(mode="json")

    @app.get("/identities/{identity_id}/score")
    def verification_score(identity_id: str):
        return k.ledger.verification_score(identity_id).model_dump(mode="json")

    @app.post("/identities/{identity_id}/deactivate")
    def deactivate_identity(identity_id: str, req: OwnerRequest):
        return k.ledger.deactivate_identity(identity_id, req.owner_id).model_dump(mode="json")

    # === ATTESTERS / ATTESTATIONS ===

    @app.post("/attesters/{attester_id}/grants")
    def grant_attester(attester_id: str, req: AttesterGrantRequest):
        k.oracle.grant_attester(attester_id, req.types)
        return {"attester_id": attester_id, "types": [t.value for t in req.types]}

    @app.post("/attestations", status_code=201)
    def issue_attestation(req: AttestationCreateRequest):
        attestation = k.ledger.issue(
            identity_id=req.identity_id,
            attester_id=req.attester_id,
            attestation_type=req.type,
            fields=req.fields,
            confidence=req.confidence,
            expires_at=req.expires_at,
            metadata=req.metadata,
            never_expires=req.never_expires,
        )
        identity = k.ledger.get_identity(req.identity_id)
        return {
            "attestation": attestation.model_dump(mode="json"),
            "identity_tier": identity.tier,
        }

    @app.get("/attestations/{attestation_id}")
    def get_attestation(attestation_id: str):
        return k.ledger.get(attestation_id).model_dump(mode="json")

    @app.post("/attestations/{attestation_id}/revoke")
    def revoke_attestation(attestation_id: str, req: RevokeAttestationRequest):
        attestation = k.ledger.revoke(attestation_id, req.attester_id, req.reason)
        return attestation.model_dump(mode="json")

    # === VERIFICATIONS ===

    @app.post("/verifications", status_code=201)
    def request_verification(req: VerificationCreateRequest):
        verification = k.disclosure.request_verification(
            requestor_id=req.requestor_id,
            identity_id=req.identity_id,
            requested_fields=req.requested_fields,
            expires_at=req.expires_at,
            purpose=req.purpose,
        )
        return verification.model_dump(mode="json")

    @app.get("/verifications/requested")
    def requested_verifications(requestor_id: str, status: Optional[VerificationStatus] = None):
        return [
            v.model_dump(mode="json")
            for v in k.disclosure.requested_by(requestor_id, status)
        ]

    @app.get("/verifications/received")
    def received_verifications(owner_id: str, status: Optional[VerificationStatus] = None):
        return [
            v.model_dump(mode="json")
            for v in k.disclosure.received_by(owner_id, status)
        ]

    @app.get("/verifications/{verification_id}")
    def get_verification(verification_id: str, viewer_id: str):
        return k.disclosure.get_verification(verification_id, viewer_id).model_dump(mode="json")

    @app.post("/verifications/{verification_id}/consent")
    def grant_consent(verification_id: str, req: ConsentRequest):
        verification = k.disclosure.grant_consent(
            verification_id, req.owner_id, req.selected_fields
        )
        return verification.model_dump(mode="json")

    @app.post("/verifications/{verification_id}/reject")
    def reject_verification(verification_id: str, req: RejectRequest):
        verification = k.disclosure.reject_verification(
            verification_id, req.owner_id, req.reason
        )
        return verification.model_dump(mode="json")

    @app.post("/verifications/{verification_id}/revoke")
    def revoke_consent(verification_id: str, req: OwnerRequest):
        return k.disclosure.revoke_consent(verification_id, req.owner_id).model_dump(mode="json")

    @app.post("/verifications/{verification_id}/withdraw")
    def withdraw_request(verification_id: str, req: WithdrawRequest):
        verification = k.disclosure.withdraw_request(verification_id, req.requestor_id)
        return verification.model_dump(mode="json")

    # === AUDIT / MAINTENANCE ===

    @app.get("/audit/verify")
    def verify_audit_log():
        return {
            "integrity_valid": k.audit_log.verify_chain_integrity(),
            "proof_mismatches": k.audit_log.verify_disclosure_proofs(),
            "total_records": k.audit_log.count(),
        }

    @app.get("/audit/identities/{identity_id}")
    def audit_for_identity(identity_id: str):
        return [r.model_dump(mode="json") for r in k.audit_log.query_by_identity(identity_id)]

    @app.post("/sweep/trigger")
    def trigger_sweep():
        refreshed = k.sweeper.sweep_once()
        return {"refreshed": refreshed, "count": len(refreshed)}

    return app


# Default application instance
app = create_app()
