import base64
import binascii
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from digilocker import DIDService
from digilocker.errors import DigiLockerError, MissingRequiredFieldError, OwnershipError, ValidationError
from digilocker.request_store import RequestStatus

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("digilocker.api")

did_service: Optional[DIDService] = None
MAX_DOCUMENT_SIZE = 10 * 1024 * 1024  # 10MB

STATUS_CODES = {
    "validation": 400,
    "ownership": 403,
    "not_found": 404,
    "conflict": 409,
    "external": 502,
    "crypto": 500,
    "internal": 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    global did_service
    logger.info("Starting DigiLocker Credential API...")
    did_service = DIDService()
    did_service.start_sweeper()
    logger.info("DID Service initialized (Issuer DID: %s)", did_service.issuer_did)

    yield

    did_service.stop_sweeper()
    logger.info("Shutting down...")


app = FastAPI(title="DigiLocker Credential API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DigiLockerError)
async def digilocker_error_handler(request: Request, exc: DigiLockerError):
    status_code = STATUS_CODES.get(exc.category, 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": exc.error_code, "detail": exc.message},
    )


def get_service() -> DIDService:
    if did_service is None:
        raise HTTPException(status_code=503, detail="DID Service not available")
    return did_service


# ============================================================
# REQUEST MODELS
# ============================================================

class CredentialRequestBody(BaseModel):
    holderDID: str
    holderAddress: str
    credentialType: str
    verificationId: str
    holderName: Optional[str] = None
    message: str = ""
    attachedCredential: Optional[Dict[str, Any]] = None


class ChallengeRequestBody(BaseModel):
    requestId: str
    holderDID: Optional[str] = None


class ChallengeVerifyBody(BaseModel):
    requestId: str
    nonceId: str
    signature: str


class ApproveBody(BaseModel):
    requestId: str
    approver: Optional[str] = None
    vcRef: Optional[str] = None


class RejectBody(BaseModel):
    requestId: str
    reason: str = ""
    rejecter: Optional[str] = None


class IssueBody(BaseModel):
    requestId: Optional[str] = None
    credentialType: Optional[str] = None
    subject: Dict[str, Any] = Field(default_factory=dict)
    document: str  # base64
    documentName: Optional[str] = None
    holderAddress: Optional[str] = None
    approver: Optional[str] = None


class GenerateProofBody(BaseModel):
    vcRef: Optional[str] = None
    vc: Optional[Dict[str, Any]] = None
    disclosedFields: List[str] = Field(default_factory=list)
    publicKey: Optional[str] = None


class VerifyProofBody(BaseModel):
    presentation: Optional[Dict[str, Any]] = None
    presentationRef: Optional[str] = None
    publicKey: Optional[str] = None


class VerifyBody(BaseModel):
    ref: Optional[str] = None
    vc: Optional[Dict[str, Any]] = None
    documentHash: Optional[str] = None
    publicKey: Optional[str] = None


class RevokeBody(BaseModel):
    documentHash: str


# ============================================================
# HOLDER ENDPOINTS - Requests and DID ownership
# ============================================================

@app.post("/holder/requestCredential")
def request_credential(body: CredentialRequestBody):
    """Create a pending credential request"""
    request_id = get_service().create_request(
        holder_did=body.holderDID,
        holder_address=body.holderAddress,
        credential_type=body.credentialType,
        verification_id=body.verificationId,
        holder_name=body.holderName,
        message=body.message,
        attached_credential=body.attachedCredential,
    )
    return {
        "success": True,
        "requestId": request_id,
        "status": RequestStatus.PENDING.value,
        "message": "Request created. Request a challenge to prove DID ownership."
    }


@app.post("/challenge/request")
def request_challenge(body: ChallengeRequestBody):
    """
    Issue a challenge for a pending request

    The holder signs ``messageToSign`` with personal_sign and posts the
    signature to /challenge/verify before ``expiresAt``.
    """
    challenge = get_service().request_challenge(body.requestId, body.holderDID)
    return {"success": True, **challenge.to_response()}


@app.post("/challenge/verify")
def verify_challenge(body: ChallengeVerifyBody):
    request = get_service().verify_challenge(body.requestId, body.nonceId, body.signature)
    return {
        "success": True,
        "verified": True,
        "status": request.status.value,
        "recoveredAddress": request.recovered_address,
        "request": request.to_dict()
    }


@app.get("/holder/myRequests/{address}")
def my_requests(address: str):
    requests = get_service().list_holder_requests(address)
    return {"success": True, "requests": [r.to_dict() for r in requests]}


@app.delete("/holder/request/{request_id}")
def delete_holder_request(request_id: str, address: Optional[str] = None):
    """Holder withdraws a request; ``address`` must own it when given"""
    service = get_service()
    request = service.get_request(request_id)
    if address and address.lower() != request.holder_address.lower():
        raise OwnershipError("Request belongs to another holder", "NotRequestOwner")
    service.delete_request(request_id)
    return {"success": True, "requestId": request_id}


# ============================================================
# HOLDER WALLET
# ============================================================

@app.get("/holder/vcs/{address}")
def holder_credentials(address: str):
    vcs = get_service().list_holder_credentials(address)
    return {"success": True, "count": len(vcs), "vcs": vcs}


@app.delete("/holder/vc/{vc_ref}")
def remove_holder_credential(vc_ref: str, address: str):
    get_service().remove_holder_credential(address, vc_ref)
    return {"success": True, "vcRef": vc_ref}


@app.get("/holder/stats/{address}")
def holder_stats(address: str):
    return {"success": True, **get_service().holder_stats(address)}


# ============================================================
# ISSUER ENDPOINTS
# ============================================================

@app.get("/issuer/verifiedRequests")
def verified_requests():
    requests = get_service().list_requests(RequestStatus.VERIFIED)
    return {"success": True, "requests": [r.to_dict() for r in requests]}


@app.get("/issuer/allRequests")
def all_requests():
    service = get_service()
    return {
        "success": True,
        "requests": [r.to_dict() for r in service.list_requests()],
        "counts": service.requests.status_counts()
    }


@app.post("/issuer/approveRequest")
def approve_request(body: ApproveBody):
    request = get_service().approve_request(body.requestId, body.approver, body.vcRef)
    return {"success": True, "request": request.to_dict()}


@app.post("/issuer/rejectRequest")
def reject_request(body: RejectBody):
    request = get_service().reject_request(body.requestId, body.reason, body.rejecter)
    return {"success": True, "request": request.to_dict()}


@app.delete("/issuer/request/{request_id}")
def delete_issuer_request(request_id: str):
    get_service().delete_request(request_id)
    return {"success": True, "requestId": request_id}


@app.get("/bbs-public-key")
def bbs_public_key():
    service = get_service()
    return {
        "publicKey": service.bbs_public_key(),
        "keyId": service.bbs_key.key_id,
        "type": service.bbs_key.key_type,
        "issuerDID": service.issuer_did
    }


# ============================================================
# CREDENTIAL ENDPOINTS - Issue, disclose, verify, revoke
# ============================================================

@app.post("/issueVC")
def issue_vc(body: IssueBody):
    """
    Issue a BBS+ signed credential

    With ``requestId`` the request must be verified and is approved with
    the new credential; without it ``credentialType`` is required.
    """
    service = get_service()
    try:
        document = base64.b64decode(body.document, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("document must be base64 encoded", "InvalidDocument")
    if len(document) > MAX_DOCUMENT_SIZE:
        raise ValidationError("Document too large", "DocumentTooLarge")

    if body.requestId:
        result = service.issue_for_request(
            body.requestId, body.subject, document,
            approver=body.approver, artifact_name=body.documentName
        )
    else:
        if not body.credentialType:
            raise MissingRequiredFieldError(["credentialType"])
        result = service.issue_credential(
            body.credentialType, body.subject, document,
            artifact_name=body.documentName, holder_address=body.holderAddress
        )
    return {"success": True, **result.to_dict()}


@app.get("/vc/{ref}")
def get_vc(ref: str):
    return {"success": True, "ref": ref, "vc": get_service().fetch_credential(ref)}


@app.post("/generateProof")
def generate_proof(body: GenerateProofBody):
    """Derive a selective-disclosure presentation from a stored or inline credential"""
    source = body.vcRef or body.vc
    if not source:
        raise MissingRequiredFieldError(["vcRef", "vc"])
    presentation, ref = get_service().derive_presentation(
        source, body.disclosedFields, body.publicKey
    )
    return {
        "success": True,
        "presentation": presentation,
        "presentationRef": ref,
        "disclosedFields": presentation["verifiableCredential"]["proof"]["disclosedFields"]
    }


@app.post("/verifyProof")
def verify_proof(body: VerifyProofBody):
    source = body.presentationRef or body.presentation
    if not source:
        raise MissingRequiredFieldError(["presentation", "presentationRef"])
    return {"success": True, **get_service().verify_presentation(source, body.publicKey)}


@app.post("/verifyVC")
def verify_vc(body: VerifyBody):
    """
    Verify a credential or presentation

    Accepts a blob reference, an inline document, or only a documentHash
    to resolve through the ledger.
    """
    result = get_service().verify(body.ref or body.vc, body.publicKey, body.documentHash)
    return result.to_dict()


@app.post("/revokeVC")
def revoke_vc(body: RevokeBody):
    entry = get_service().revoke(body.documentHash)
    return {"success": True, "documentHash": body.documentHash, "ledger": entry.to_dict()}


# ============================================================
# DID ENDPOINTS
# ============================================================

@app.get("/api/did/resolve/{did}")
def resolve_did(did: str):
    """Resolve a DID to its DID Document"""
    doc = get_service().did_manager.resolve(did)
    if doc is None:
        raise HTTPException(status_code=404, detail="DID not found")
    return {"did": did, "document": doc.to_dict()}


@app.get("/api/did/info")
def get_did_info():
    """Get DID system information"""
    if did_service is None:
        return {
            "available": False,
            "message": "DID Service not initialized"
        }

    return {
        "available": True,
        "issuer_did": did_service.issuer_did,
        "document": did_service.issuer_did_document().to_dict(),
        "statistics": did_service.get_statistics()
    }


if __name__ == "__main__":
    uvicorn.run("backend.api:app", host="0.0.0.0", port=8000)
