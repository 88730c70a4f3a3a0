"""
Verifiable Credentials Issuer
=============================

Issues BBS+-signed Verifiable Credentials (StudentID, AcademicCertificate)
following the W3C Verifiable Credentials Data Model 1.1.

Pipeline:
    1. hash the attached document
    2. store the document and the unsigned credential body
    3. encode the message vector
    4. sign (BBS+, or an explicit HMAC fallback)
    5. store the signed credential
    6. anchor (documentHash, vcRef) on the ledger, best effort

Reference: https://www.w3.org/TR/vc-data-model/
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from . import message_codec
from .config import Settings, settings as default_settings
from .errors import (
    BlobStoreError,
    ExternalServiceError,
    LedgerError,
    MissingRequiredFieldError,
    SigningFailureError,
)
from .external import AnchorReceipt, BlobStore, Ledger, call_with_timeout
from .key_manager import KeyManager, Signature
from .message_codec import CredentialType
from .utils import isoformat_z, random_hex, sha256_hex, utc_now

logger = logging.getLogger(__name__)

CREDENTIAL_CONTEXT = [
    "https://www.w3.org/2018/credentials/v1",
    "https://w3id.org/security/bbs/v1"
]

CREDENTIAL_SCHEMAS = {
    CredentialType.STUDENT_ID: "https://example.org/schemas/student-id.json",
    CredentialType.ACADEMIC_CERTIFICATE: "https://example.org/schemas/academic-certificate.json",
}


@dataclass
class CredentialProof:
    """Proof attached to a Verifiable Credential"""
    type: str  # BbsBlsSignature2020, HmacSha256Signature2020
    created: str
    verification_method: str  # Key ID used for signing
    proof_purpose: str  # assertionMethod
    proof_value: str  # base64 signature
    challenge: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "created": self.created,
            "proofPurpose": self.proof_purpose,
            "verificationMethod": self.verification_method,
            "proofValue": self.proof_value,
            "challenge": self.challenge
        }


@dataclass
class VerifiableCredential:
    """
    W3C Verifiable Credential

    A credential containing claims about a subject,
    signed by an issuer.
    """
    context: List[str] = field(default_factory=lambda: list(CREDENTIAL_CONTEXT))
    id: str = ""
    type: List[str] = field(default_factory=lambda: ["VerifiableCredential"])
    issuer: Any = ""  # Issuer's DID (or {"id": ..., "name": ...})
    issuance_date: str = ""
    credential_subject: Dict[str, Any] = field(default_factory=dict)
    credential_schema: Optional[Dict[str, str]] = None
    proof: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.id:
            self.id = f"urn:uuid:{uuid.uuid4()}"
        if not self.issuance_date:
            self.issuance_date = isoformat_z(utc_now())

    @property
    def issuer_id(self) -> str:
        if isinstance(self.issuer, Mapping):
            return self.issuer.get("id", "")
        return self.issuer or ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to W3C VC JSON format"""
        vc = {
            "@context": self.context,
            "id": self.id,
            "type": self.type,
            "issuer": self.issuer,
            "issuanceDate": self.issuance_date,
            "credentialSubject": self.credential_subject
        }
        if self.credential_schema:
            vc["credentialSchema"] = self.credential_schema
        if self.proof:
            vc["proof"] = self.proof
        return vc


@dataclass
class IssuanceResult:
    """Everything the issuer learns while issuing one credential"""
    credential: Dict[str, Any]
    vc_ref: str
    document_ref: str
    draft_ref: str
    integrity_hash: str
    signature_type: str
    message_count: int
    anchor: Optional[AnchorReceipt] = None
    anchor_error: Optional[str] = None

    @property
    def anchored(self) -> bool:
        return self.anchor is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vc": self.credential,
            "vcRef": self.vc_ref,
            "documentRef": self.document_ref,
            "draftRef": self.draft_ref,
            "documentHash": self.integrity_hash,
            "signatureType": self.signature_type,
            "messageCount": self.message_count,
            "anchored": self.anchored,
            "ledger": self.anchor.to_dict() if self.anchor else None,
            "ledgerError": self.anchor_error
        }


class CredentialIssuanceEngine:
    """
    Issues signed credentials and anchors their document hash

    Features:
    - Required-field validation per credential type
    - BBS+ signing over the fixed message vector
    - Visible HMAC fallback when BBS+ signing fails
    - Blob storage of document, draft and signed credential
    - Best-effort ledger anchoring
    """

    def __init__(
        self,
        issuer_did: str,
        key_manager: KeyManager,
        blob_store: BlobStore,
        ledger: Ledger,
        settings: Optional[Settings] = None,
        signing_key_id: Optional[str] = None
    ):
        self.issuer_did = issuer_did
        self.key_manager = key_manager
        self.blob_store = blob_store
        self.ledger = ledger
        self.settings = settings or default_settings
        self.signing_key_id = signing_key_id or f"{issuer_did}#key-1"

    # ==================== CREDENTIAL ISSUANCE ====================

    def issue(
        self,
        credential_type: Any,
        subject_attributes: Mapping[str, Any],
        issuer_ref: Optional[str] = None,
        artifact_bytes: Optional[bytes] = None,
        artifact_name: Optional[str] = None
    ) -> IssuanceResult:
        """
        Issue a credential

        Args:
            credential_type: StudentID or AcademicCertificate
            subject_attributes: credentialSubject claims, including ``id``
            issuer_ref: issuer DID written into the credential
            artifact_bytes: the document the credential attests to
            artifact_name: optional file name for the blob store

        Returns:
            IssuanceResult; ``anchor_error`` is set when anchoring failed

        Raises:
            MissingRequiredFieldError, UnknownCredentialTypeError, BlobStoreError
        """
        vc_type = CredentialType.parse(credential_type)
        attributes = {
            message_codec.canonical_field(k): v for k, v in (subject_attributes or {}).items()
        }
        missing = message_codec.missing_required(vc_type, attributes)
        if not artifact_bytes:
            missing.append("document")
        if missing:
            raise MissingRequiredFieldError(missing)

        issuer = issuer_ref or self.issuer_did
        timeout = self.settings.EXTERNAL_TIMEOUT_SECONDS
        logger.info("Issuing %s for %s", vc_type.value, attributes.get("id"))

        # Step 1: document hash
        integrity_hash = sha256_hex(bytes(artifact_bytes))

        # Step 2: document + unsigned body
        document_ref = call_with_timeout(
            self.blob_store.put, bytes(artifact_bytes), artifact_name,
            timeout=timeout, error_cls=BlobStoreError, operation="document upload"
        )
        subject_fields = message_codec.subject_fields_for(vc_type)
        dropped = sorted(name for name in attributes if name not in subject_fields)
        if dropped:
            logger.warning("Dropping claims outside the %s layout: %s", vc_type.value, ", ".join(dropped))
        credential_subject = {
            name: value for name, value in attributes.items()
            if name in subject_fields and name not in ("documentHash", "documentRef")
        }
        credential_subject["documentHash"] = integrity_hash
        credential_subject["documentRef"] = document_ref

        vc = VerifiableCredential(
            type=["VerifiableCredential", vc_type.value],
            issuer=issuer,
            credential_subject=credential_subject,
            credential_schema={
                "id": CREDENTIAL_SCHEMAS[vc_type],
                "type": "JsonSchemaValidator2018"
            }
        )
        draft_ref = call_with_timeout(
            self.blob_store.put_json, vc.to_dict(), f"VC-draft-{vc_type.value}",
            timeout=timeout, error_cls=BlobStoreError, operation="draft upload"
        )

        # Step 3: message vector
        vector = message_codec.encode(
            vc_type, credential_subject, vc.issuer, vc.issuance_date, integrity_hash
        )

        # Step 4: signature
        signature = self._sign(vector.messages)
        vc.proof = CredentialProof(
            type=signature.signature_type,
            created=isoformat_z(utc_now()),
            verification_method=f"{vc.issuer_id}#key-1",
            proof_purpose="assertionMethod",
            proof_value=signature.to_proof_value(),
            challenge=random_hex(16)
        ).to_dict()
        credential = vc.to_dict()

        # Step 5: signed credential
        vc_ref = call_with_timeout(
            self.blob_store.put_json, credential, f"VC-{vc_type.value}",
            timeout=timeout, error_cls=BlobStoreError, operation="credential upload"
        )

        # Step 6: anchor, degraded on failure
        anchor, anchor_error = None, None
        try:
            anchor = call_with_timeout(
                self.ledger.anchor, integrity_hash, vc_ref,
                timeout=timeout, error_cls=LedgerError, operation="ledger anchor"
            )
        except ExternalServiceError as e:
            anchor_error = e.message
            logger.warning("Ledger anchoring failed (credential still issued): %s", e.message)

        logger.info("Issued %s -> %s (%s)", vc_type.value, vc_ref, signature.signature_type)
        return IssuanceResult(
            credential=credential,
            vc_ref=vc_ref,
            document_ref=document_ref,
            draft_ref=draft_ref,
            integrity_hash=integrity_hash,
            signature_type=signature.signature_type,
            message_count=len(vector),
            anchor=anchor,
            anchor_error=anchor_error
        )

    # ==================== SIGNING ====================

    def _sign(self, messages) -> Signature:
        try:
            return self.key_manager.sign_bbs(self.signing_key_id, messages)
        except SigningFailureError as e:
            logger.warning("BBS+ signing failed, using HMAC fallback: %s", e.message)
            return self.key_manager.sign_hmac_fallback(self.signing_key_id, messages)
