"""
DigiLocker Credential Service
=============================

Privacy-preserving issuance and verification of academic credentials
on W3C DIDs and Verifiable Credentials with BBS+ signatures.

Components:
- OwnershipChallengeProtocol: proves a holder controls their did:ethr
- CredentialRequestStore / NonceLedger: request lifecycle and challenges
- CredentialIssuanceEngine: BBS+ signed credentials, ledger anchoring
- SelectiveDisclosureEngine: derived proofs over chosen attributes
- VerificationPipeline: storage, structure, signature and ledger checks
- DIDService: integration facade

Standards:
- W3C DID Core 1.0: https://www.w3.org/TR/did-core/
- W3C Verifiable Credentials: https://www.w3.org/TR/vc-data-model/
"""

from .challenge_protocol import OwnershipChallengeProtocol
from .config import Settings
from .credential_issuer import CredentialIssuanceEngine, IssuanceResult, VerifiableCredential
from .credential_verifier import VerificationPipeline, VerificationResult, VerificationStatus
from .did_manager import DIDDocument, DIDManager, DIDMethod, ServiceEndpoint
from .did_service import DIDService
from .errors import DigiLockerError
from .external import BlobStore, InMemoryBlobStore, InMemoryLedger, Ledger
from .holder_wallet import HolderWallet
from .key_manager import KeyManager, KeyPair
from .message_codec import CredentialType, MessageVector
from .nonce_ledger import Challenge, NonceLedger, NonceSweeper
from .record_store import InMemoryRecordStore, RecordStore
from .request_store import CredentialRequest, CredentialRequestStore, RequestStatus
from .selective_disclosure import SelectiveDisclosureEngine

__version__ = "1.0.0"
__all__ = [
    # Core DID
    "DIDManager",
    "DIDDocument",
    "DIDMethod",
    "ServiceEndpoint",

    # Keys
    "KeyManager",
    "KeyPair",

    # Requests
    "CredentialRequest",
    "CredentialRequestStore",
    "RequestStatus",
    "Challenge",
    "NonceLedger",
    "NonceSweeper",
    "OwnershipChallengeProtocol",

    # Credentials
    "CredentialType",
    "MessageVector",
    "CredentialIssuanceEngine",
    "IssuanceResult",
    "VerifiableCredential",
    "SelectiveDisclosureEngine",
    "VerificationPipeline",
    "VerificationResult",
    "VerificationStatus",
    "HolderWallet",

    # Storage
    "RecordStore",
    "InMemoryRecordStore",
    "BlobStore",
    "InMemoryBlobStore",
    "Ledger",
    "InMemoryLedger",

    # Service
    "Settings",
    "DIDService",
    "DigiLockerError",
]
