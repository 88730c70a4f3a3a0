"""
DigiLocker Integration Service
==============================

Wires the credential components behind one interface for the HTTP layer:
- Request lifecycle (create, challenge, verify, approve, reject)
- Credential issuance and holder wallet index
- Selective disclosure and verification
- Ledger revocation and nonce sweeping
"""

import hashlib
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .challenge_protocol import OwnershipChallengeProtocol
from .config import Settings, settings as default_settings
from .credential_issuer import CredentialIssuanceEngine, IssuanceResult
from .credential_verifier import VerificationPipeline, VerificationResult
from .did_manager import DIDDocument, DIDManager, ServiceEndpoint, address_from_did
from .errors import (
    BlobStoreError,
    InvalidStateError,
    LedgerError,
    MissingRequiredFieldError,
)
from .external import (
    BlobStore,
    InMemoryBlobStore,
    InMemoryLedger,
    Ledger,
    LedgerEntry,
    call_with_timeout,
)
from .holder_wallet import HolderWallet
from .key_manager import KeyManager
from .message_codec import CredentialType
from .nonce_ledger import Challenge, NonceLedger, NonceSweeper
from .record_store import InMemoryRecordStore, RecordStore
from .request_store import CredentialRequest, CredentialRequestStore, RequestStatus
from .selective_disclosure import SelectiveDisclosureEngine, disclosed_data
from .utils import isoformat_z, utc_now

logger = logging.getLogger(__name__)

# attached credential field -> new credential field
_PREFILL = {
    CredentialType.STUDENT_ID: {
        "name": "name",
        "rollNumber": "rollNumber",
        "dateOfBirth": "dateOfBirth",
        "department": "department",
    },
    CredentialType.ACADEMIC_CERTIFICATE: {
        "name": "name",
        "rollNumber": "registerNumber",
        "registerNumber": "registerNumber",
        "department": "branch",
    },
}


class DIDService:
    """
    Main service class for credential operations

    Provides a unified interface for:
    - Holder credential requests and DID ownership proofs
    - Issuer approval, rejection and issuance
    - Presentations and verification
    - Ledger revocation
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        record_store: Optional[RecordStore] = None,
        blob_store: Optional[BlobStore] = None,
        ledger: Optional[Ledger] = None,
        issuer_private_key: Optional[str] = None,
        bbs_seed: Optional[bytes] = None
    ):
        """
        Initialize DID Service

        Args:
            settings: configuration, defaults to the environment-loaded one
            record_store: backing store for requests, nonces and wallets
            blob_store: content-addressed storage for documents and credentials
            ledger: hash anchoring registry
            issuer_private_key: Ethereum key of the issuer DID
            bbs_seed: seed for a deterministic BBS+ key
        """
        self.settings = settings or default_settings
        self.key_manager = KeyManager()
        self.did_manager = DIDManager(self.key_manager)

        if bbs_seed is None and self.settings.BBS_KEY_SEED:
            bbs_seed = hashlib.sha256(self.settings.BBS_KEY_SEED.encode("utf-8")).digest()

        # Create Issuer DID
        self.issuer_did, self.issuer_doc, self.issuer_keys = self.did_manager.create_issuer_did(
            issuer_private_key or self.settings.ISSUER_PRIVATE_KEY, bbs_seed=bbs_seed
        )
        self.issuer_address = address_from_did(self.issuer_did)
        self.bbs_key = self.issuer_keys[f"{self.issuer_did}#key-1"]

        self.did_manager.add_service(
            self.issuer_did,
            ServiceEndpoint(
                id=f"{self.issuer_did}#credential-verification",
                type="CredentialVerificationService",
                service_endpoint=f"{self.settings.PUBLIC_BASE_URL}/verifyVC",
                description="Verifiable credential and presentation verification"
            )
        )

        # External collaborators
        self.records = record_store or InMemoryRecordStore()
        self.blob_store = blob_store or InMemoryBlobStore()
        self.ledger = ledger or InMemoryLedger(issuer=self.issuer_did)

        # Request lifecycle
        self.requests = CredentialRequestStore(self.records)
        self.nonces = NonceLedger(self.requests, self.records, self.settings)
        self.protocol = OwnershipChallengeProtocol(self.requests, self.nonces, self.key_manager)
        self.sweeper = NonceSweeper(self.nonces)

        # Credentials
        self.issuer = CredentialIssuanceEngine(
            issuer_did=self.issuer_did,
            key_manager=self.key_manager,
            blob_store=self.blob_store,
            ledger=self.ledger,
            settings=self.settings,
            signing_key_id=self.bbs_key.key_id
        )
        self.disclosure = SelectiveDisclosureEngine(self.settings)
        self.verifier = VerificationPipeline(
            self.blob_store, self.ledger, self.disclosure, self.settings
        )
        self.wallet = HolderWallet(self.records)

        logger.info("DID Service initialized (Issuer DID: %s)", self.issuer_did)

    # ==================== HOLDER REQUESTS ====================

    def create_request(
        self,
        holder_did: str,
        holder_address: str,
        credential_type: Any,
        verification_id: str,
        holder_name: Optional[str] = None,
        message: str = "",
        attached_credential: Optional[Mapping[str, Any]] = None
    ) -> str:
        """
        Create a pending credential request

        ``attached_credential`` may carry ``ref``/``cid`` and ``vc``/``data``;
        when only a reference is given the credential is fetched.
        """
        return self.requests.create(
            holder_did=holder_did,
            holder_address=holder_address,
            credential_type=credential_type,
            verification_id=verification_id,
            holder_name=holder_name,
            message=message,
            attached_credential=self._normalize_attachment(attached_credential),
        )

    def _normalize_attachment(self, attached: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
        if not attached:
            return None
        ref = attached.get("ref") or attached.get("cid")
        vc = attached.get("vc") or attached.get("data")
        if vc is None and ref:
            vc = self.fetch_credential(ref)
        if vc is None:
            return None
        return {"ref": ref, "vc": dict(vc)}

    def request_challenge(self, request_id: str, holder_did: Optional[str] = None) -> Challenge:
        return self.protocol.request_challenge(request_id, holder_did)

    def verify_challenge(self, request_id: str, nonce_id: str, signature: str) -> CredentialRequest:
        return self.protocol.verify_challenge(request_id, nonce_id, signature)

    def get_request(self, request_id: str) -> CredentialRequest:
        return self.requests.get(request_id)

    def list_requests(self, status: Optional[Any] = None) -> List[CredentialRequest]:
        if status is None:
            return self.requests.list_all()
        return self.requests.list_by_status(status)

    def list_holder_requests(self, address: str) -> List[CredentialRequest]:
        return self.requests.list_by_holder(address)

    def delete_request(self, request_id: str) -> None:
        self.requests.delete(request_id)

    # ==================== ISSUER DECISIONS ====================

    def approve_request(
        self,
        request_id: str,
        approver: Optional[str] = None,
        vc_ref: Optional[str] = None
    ) -> CredentialRequest:
        """
        Approve a verified request, optionally attaching the issued credential

        Raises:
            InvalidStateError: request is not verified (or already approved)
        """
        with self.requests.lock(request_id):
            request = self.requests.get(request_id)
            if request.status not in (RequestStatus.VERIFIED, RequestStatus.APPROVED):
                raise InvalidStateError(
                    f"Request must be verified before approval (status: {request.status.value})"
                )
            extra: Dict[str, Any] = {}
            if request.status == RequestStatus.VERIFIED:
                extra["approved_by"] = approver or self.issuer_address
                extra["approved_at"] = isoformat_z(utc_now())
            if vc_ref:
                extra["issued_vc_ref"] = vc_ref
            return self.requests.transition(request_id, RequestStatus.APPROVED, extra)

    def reject_request(
        self,
        request_id: str,
        reason: str,
        rejecter: Optional[str] = None
    ) -> CredentialRequest:
        if not reason:
            raise MissingRequiredFieldError(["reason"])
        return self.requests.transition(request_id, RequestStatus.REJECTED, {
            "rejected_by": rejecter or self.issuer_address,
            "rejected_at": isoformat_z(utc_now()),
            "rejection_reason": reason,
        })

    # ==================== CREDENTIALS ====================

    def issue_for_request(
        self,
        request_id: str,
        subject_attributes: Mapping[str, Any],
        artifact_bytes: bytes,
        approver: Optional[str] = None,
        artifact_name: Optional[str] = None
    ) -> IssuanceResult:
        """
        Issue the credential a verified request asked for and approve it

        Fields of an attached prior credential prefill the subject; explicit
        attributes win. The subject id is always the holder DID.
        """
        with self.requests.lock(request_id):
            request = self.requests.get(request_id)
            if request.status != RequestStatus.VERIFIED:
                raise InvalidStateError(
                    f"Request must be verified before issuance (status: {request.status.value})"
                )

            attributes: Dict[str, Any] = {}
            prior = request.attached_subject
            for source, target in _PREFILL[request.credential_type].items():
                if prior.get(source) not in (None, ""):
                    attributes.setdefault(target, prior[source])
            attributes.update({
                k: v for k, v in (subject_attributes or {}).items() if v not in (None, "")
            })
            attributes["id"] = request.holder_did

            result = self.issuer.issue(
                request.credential_type,
                attributes,
                artifact_bytes=artifact_bytes,
                artifact_name=artifact_name
            )
            self.wallet.store(request.holder_address, result.vc_ref, result.credential)
            self.approve_request(request_id, approver, vc_ref=result.vc_ref)

        return result

    def issue_credential(
        self,
        credential_type: Any,
        subject_attributes: Mapping[str, Any],
        artifact_bytes: bytes,
        artifact_name: Optional[str] = None,
        holder_address: Optional[str] = None
    ) -> IssuanceResult:
        """Issue without a request; indexed in the holder's wallet when known"""
        result = self.issuer.issue(
            credential_type,
            subject_attributes,
            artifact_bytes=artifact_bytes,
            artifact_name=artifact_name
        )
        if holder_address:
            self.wallet.store(holder_address, result.vc_ref, result.credential)
        return result

    def fetch_credential(self, ref: str) -> Dict[str, Any]:
        if not ref:
            raise MissingRequiredFieldError(["ref"])
        return call_with_timeout(
            self.blob_store.get_json, ref,
            timeout=self.settings.EXTERNAL_TIMEOUT_SECONDS,
            error_cls=BlobStoreError, operation="credential fetch"
        )

    # ==================== PRESENTATIONS ====================

    def derive_presentation(
        self,
        credential_or_ref: Union[str, Mapping[str, Any]],
        disclosed_fields: Sequence[str],
        public_key: Union[str, bytes, None] = None,
        original_ref: Optional[str] = None
    ) -> Tuple[Dict[str, Any], str]:
        """
        Derive and store a selective-disclosure presentation

        Returns:
            Tuple of (presentation, presentation_ref)
        """
        if isinstance(credential_or_ref, str):
            original_ref = original_ref or credential_or_ref
            credential = self.fetch_credential(credential_or_ref)
        else:
            credential = dict(credential_or_ref)

        presentation = self.disclosure.derive(
            credential, disclosed_fields, public_key or self.bbs_public_key(), original_ref
        )
        ref = call_with_timeout(
            self.blob_store.put_json, presentation, "VP-SelectiveDisclosure",
            timeout=self.settings.EXTERNAL_TIMEOUT_SECONDS,
            error_cls=BlobStoreError, operation="presentation upload"
        )
        return presentation, ref

    def verify_presentation(
        self,
        presentation_or_ref: Union[str, Mapping[str, Any]],
        public_key: Union[str, bytes, None] = None
    ) -> Dict[str, Any]:
        """Check only the derived proof; ledger state is reported by ``verify``"""
        if isinstance(presentation_or_ref, str):
            presentation = self.fetch_credential(presentation_or_ref)
        else:
            presentation = dict(presentation_or_ref)
        verified = self.disclosure.verify(presentation, public_key or self.bbs_public_key())
        return {
            "verified": verified,
            "disclosedFields": self.disclosure.disclosed_fields(presentation),
            "disclosedData": disclosed_data(presentation),
        }

    # ==================== VERIFICATION / REVOCATION ====================

    def verify(
        self,
        ref_or_inline: Union[str, Mapping[str, Any], None] = None,
        public_key: Union[str, bytes, None] = None,
        integrity_hash: Optional[str] = None
    ) -> VerificationResult:
        return self.verifier.verify(ref_or_inline, public_key, integrity_hash)

    def revoke(self, integrity_hash: str) -> LedgerEntry:
        if not integrity_hash:
            raise MissingRequiredFieldError(["documentHash"])
        entry = call_with_timeout(
            self.ledger.revoke, integrity_hash,
            timeout=self.settings.EXTERNAL_TIMEOUT_SECONDS,
            error_cls=LedgerError, operation="ledger revoke"
        )
        logger.info("Revoked credential with hash %s...", integrity_hash[:16])
        return entry

    # ==================== HOLDER WALLET ====================

    def list_holder_credentials(self, address: str) -> List[Dict[str, Any]]:
        return self.wallet.list(address)

    def remove_holder_credential(self, address: str, vc_ref: str) -> None:
        self.wallet.remove(address, vc_ref)

    def holder_stats(self, address: str) -> Dict[str, Any]:
        stats = self.wallet.stats(address)
        requests = self.requests.list_by_holder(address)
        stats["requests"] = {
            status.value: sum(1 for r in requests if r.status == status)
            for status in RequestStatus
        }
        return stats

    # ==================== ISSUER IDENTITY ====================

    def bbs_public_key(self) -> str:
        """Issuer BBS+ public key, base64 of the compressed G2 point"""
        return self.bbs_key.public_key

    def issuer_did_document(self) -> DIDDocument:
        return self.did_manager.resolve(self.issuer_did)

    # ==================== LIFECYCLE ====================

    def start_sweeper(self):
        self.sweeper.start()

    def stop_sweeper(self):
        self.sweeper.stop()

    # ==================== STATISTICS ====================

    def get_statistics(self) -> Dict[str, Any]:
        """Get overall service statistics"""
        return {
            "issuer": {
                "did": self.issuer_did,
                "address": self.issuer_address,
                "name": self.settings.ISSUER_NAME,
                "bbsKeyId": self.bbs_key.key_id,
            },
            "requests": self.requests.status_counts(),
            "outstandingNonces": self.nonces.count(),
            "sweeperRunning": self.sweeper.running,
            "keys": self.key_manager.export_public_keys(),
        }
