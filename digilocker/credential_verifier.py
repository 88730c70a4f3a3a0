"""
Verifiable Credentials Verifier
================================

One verdict for a full credential or a selective-disclosure presentation.

Checks:
- Storage: the artifact could be resolved (or was supplied inline)
- Structure: required fields and a recognized proof type
- Signature: BBS+ / HMAC signature or derived proof, when a key is given
- Ledger: documentHash anchored and not revoked

A presentation's result only ever carries its disclosed attributes.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from . import message_codec
from .config import Settings, settings as default_settings
from .errors import (
    BlobStoreError,
    CredentialNotFoundError,
    ExternalServiceError,
    LedgerError,
    MissingRequiredFieldError,
    ValidationError,
)
from .external import BlobStore, Ledger, call_with_timeout
from .key_manager import SIGNATURE_TYPES, Signature, decode_public_key
from .selective_disclosure import (
    PROOF_TYPE,
    SelectiveDisclosureEngine,
    disclosed_data,
    is_presentation,
)

logger = logging.getLogger(__name__)


class VerificationStatus(Enum):
    """Credential verification status"""
    VALID = "valid"
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"
    INVALID_SIGNATURE = "invalid_signature"
    NOT_ANCHORED = "not_anchored"
    REVOKED = "revoked"


@dataclass
class VerificationResult:
    """Result of credential verification"""
    structure_valid: bool = False
    storage_valid: bool = False
    ledger_valid: bool = False
    hash_match: bool = False
    revoked: bool = False
    signature_valid: Optional[bool] = None  # None: not checked
    signature_type: Optional[str] = None
    verified: bool = False
    is_presentation: bool = False
    integrity_hash: Optional[str] = None
    disclosed_data: Optional[Dict[str, Any]] = None
    credential: Optional[Dict[str, Any]] = None
    details: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def status(self) -> VerificationStatus:
        if not self.storage_valid:
            return VerificationStatus.NOT_FOUND
        if not self.structure_valid:
            return VerificationStatus.MALFORMED
        if self.signature_valid is False:
            return VerificationStatus.INVALID_SIGNATURE
        if self.revoked:
            return VerificationStatus.REVOKED
        if not self.ledger_valid or not self.hash_match:
            return VerificationStatus.NOT_ANCHORED
        return VerificationStatus.VALID

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "verified": self.verified,
            "status": self.status.value,
            "structureValid": self.structure_valid,
            "storageValid": self.storage_valid,
            "ledgerValid": self.ledger_valid,
            "hashMatch": self.hash_match,
            "revoked": self.revoked,
            "signatureValid": self.signature_valid,
            "signatureType": self.signature_type,
            "documentHash": self.integrity_hash,
            "isPresentation": self.is_presentation,
            "details": self.details,
            "errors": self.errors
        }
        if self.is_presentation:
            result["presentationType"] = "SelectiveDisclosure"
            result["disclosedData"] = self.disclosed_data or {}
        else:
            result["vc"] = self.credential
        return result


class VerificationPipeline:
    """
    Composes storage, structure, signature and ledger checks

    Performs the following checks:
    1. Resolve the artifact (reference, inline, or via the ledger)
    2. Structure validation
    3. Signature or derived-proof verification
    4. Ledger lookup of the document hash
    """

    def __init__(
        self,
        blob_store: BlobStore,
        ledger: Ledger,
        disclosure: Optional[SelectiveDisclosureEngine] = None,
        settings: Optional[Settings] = None
    ):
        self.blob_store = blob_store
        self.ledger = ledger
        self.settings = settings or default_settings
        self.disclosure = disclosure or SelectiveDisclosureEngine(self.settings)

    # ==================== VERIFICATION ====================

    def verify(
        self,
        ref_or_inline: Union[str, Mapping[str, Any], None] = None,
        public_key: Union[str, bytes, None] = None,
        integrity_hash: Optional[str] = None
    ) -> VerificationResult:
        """
        Verify a credential or presentation

        Args:
            ref_or_inline: blob reference, or the document itself
            public_key: issuer BBS+ public key; gates the verdict when given
            integrity_hash: documentHash to look up, used alone when no
                artifact is given

        Returns:
            VerificationResult with every check reported separately
        """
        if not ref_or_inline and not integrity_hash:
            raise MissingRequiredFieldError(["ref", "vc", "documentHash"])

        result = VerificationResult()
        ref = ref_or_inline if isinstance(ref_or_inline, str) else None

        # 1. Resolve
        if ref is None and integrity_hash and not ref_or_inline:
            entry = self._lookup(integrity_hash, result)
            if entry is None or not entry.exists or not entry.ref:
                result.errors.append("No credential anchored for documentHash")
                return self._finish(result)
            ref = entry.ref

        if ref is not None:
            document = self._fetch(ref, result)
            if document is None:
                return self._finish(result)
        else:
            document = dict(ref_or_inline)
            result.details["source"] = "inline"
        result.storage_valid = True

        # 2. Structure
        result.is_presentation = is_presentation(document)
        vc = document.get("verifiableCredential") if result.is_presentation else document
        if result.is_presentation:
            result.disclosed_data = disclosed_data(document)
        else:
            result.credential = document
        self._check_structure(document, vc, result)

        # 3. Signature / derived proof
        self._check_signature(document, vc, public_key, result)

        # 4. Ledger
        subject = (vc or {}).get("credentialSubject") if isinstance(vc, Mapping) else None
        document_hash = subject.get("documentHash") if isinstance(subject, Mapping) else None
        hash_conflict = bool(integrity_hash and document_hash and integrity_hash != document_hash)
        if hash_conflict:
            result.errors.append("documentHash does not match the credential")
            result.details["hashConflict"] = True
        result.integrity_hash = document_hash or integrity_hash
        if result.integrity_hash:
            entry = self._lookup(result.integrity_hash, result)
            if entry is not None and entry.exists:
                result.ledger_valid = True
                result.hash_match = not hash_conflict
                result.revoked = entry.revoked
                result.details["ledger"] = {
                    "issuer": entry.issuer,
                    "timestamp": entry.timestamp,
                    "revoked": entry.revoked
                }
                if not result.is_presentation:
                    result.details["ledger"]["ref"] = entry.ref
                    if ref is not None:
                        result.details["refMatch"] = entry.ref == ref
            elif entry is not None:
                result.details["ledgerError"] = "Credential not anchored on ledger"
        else:
            result.errors.append("Credential carries no documentHash")

        return self._finish(result)

    # ==================== STEPS ====================

    def _fetch(self, ref: str, result: VerificationResult) -> Optional[Dict[str, Any]]:
        try:
            return call_with_timeout(
                self.blob_store.get_json, ref,
                timeout=self.settings.EXTERNAL_TIMEOUT_SECONDS,
                error_cls=BlobStoreError, operation="credential fetch"
            )
        except (CredentialNotFoundError, ExternalServiceError) as e:
            logger.warning("Could not resolve %s: %s", ref, e.message)
            result.details["storageError"] = e.message
            result.errors.append(e.message)
            return None

    def _lookup(self, integrity_hash: str, result: VerificationResult):
        try:
            entry = call_with_timeout(
                self.ledger.lookup, integrity_hash,
                timeout=self.settings.EXTERNAL_TIMEOUT_SECONDS,
                error_cls=LedgerError, operation="ledger lookup"
            )
        except ExternalServiceError as e:
            logger.warning("Ledger lookup failed: %s", e.message)
            result.details["ledgerError"] = e.message
            result.errors.append(e.message)
            return None
        return entry

    def _check_structure(self, document: Mapping[str, Any], vc: Any, result: VerificationResult):
        if not isinstance(vc, Mapping):
            result.errors.append("Missing verifiableCredential")
            return
        subject = vc.get("credentialSubject")
        proof = vc.get("proof")
        if not isinstance(subject, Mapping) or not isinstance(proof, Mapping):
            result.errors.append("credentialSubject and proof are required")
            return

        if result.is_presentation:
            valid = proof.get("type") == PROOF_TYPE
        else:
            valid = bool(
                vc.get("@context") and vc.get("type") and vc.get("issuer")
                and proof.get("type") in SIGNATURE_TYPES
            )
        if not valid:
            result.errors.append(f"Unrecognized structure or proof type: {proof.get('type')}")
            return

        try:
            credential_type = message_codec.credential_type_of(vc)
        except ValidationError as e:
            result.errors.append(e.message)
            return
        if not result.is_presentation:
            unsigned = message_codec.unexpected_subject_fields(credential_type, subject)
            if unsigned:
                result.errors.append(f"Unsigned credentialSubject claims: {', '.join(unsigned)}")
                result.details["unsignedClaims"] = unsigned
                return

        result.structure_valid = True
        issuer = vc.get("issuer")
        result.details["issuer"] = issuer.get("id") if isinstance(issuer, Mapping) else issuer
        result.details["issuanceDate"] = vc.get("issuanceDate")
        result.details["proofType"] = proof.get("type")
        result.details["credentialType"] = credential_type.value

        if result.is_presentation:
            result.details["presentationType"] = "SelectiveDisclosure"
            result.details["disclosedFields"] = list(proof.get("disclosedFields") or [])
            result.details["subject"] = (
                result.disclosed_data.get("id") or "Disclosed via Selective Disclosure"
            )
        else:
            result.details["subject"] = subject.get("id")

    def _check_signature(self, document, vc, public_key, result: VerificationResult):
        if public_key is None or public_key == "":
            if self.settings.REQUIRE_PUBLIC_KEY:
                result.signature_valid = False
                result.errors.append("Public key required for signature verification")
            return
        if not result.structure_valid:
            result.signature_valid = False
            return

        try:
            if result.is_presentation:
                result.signature_type = PROOF_TYPE
                result.signature_valid = self.disclosure.verify(document, public_key)
            else:
                signature = Signature.from_proof(vc["proof"])
                result.signature_type = signature.signature_type
                result.details["degradedSignature"] = signature.degraded
                messages = message_codec.encode_credential(vc).messages
                result.signature_valid = signature.verify(messages, decode_public_key(public_key))
        except ValidationError as e:
            result.signature_valid = False
            result.errors.append(e.message)

        if not result.signature_valid:
            result.errors.append("Signature verification failed")

    def _finish(self, result: VerificationResult) -> VerificationResult:
        result.verified = (
            result.structure_valid
            and result.storage_valid
            and result.ledger_valid
            and result.hash_match
            and not result.revoked
            and result.signature_valid is not False
        )
        logger.info(
            "Verification %s (%s)", "passed" if result.verified else "failed", result.status.value
        )
        return result
