"""
DID Manager - did:ethr identifiers and DID Documents (W3C DID Core 1.0)

DID Format: did:ethr:<checksummed-address>
Holders prove control of the address by signing a challenge; the issuer
publishes its BBS+ verification key in its own DID Document.

Reference: https://www.w3.org/TR/did-core/
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from eth_utils import is_address, to_checksum_address

from .errors import ValidationError
from .key_manager import KeyManager, KeyPair
from .utils import isoformat_z, utc_now


class DIDMethod(Enum):
    """Supported DID methods"""
    ETH = "ethr"  # Ethereum DID


def address_from_did(did: str) -> str:
    """
    Extract the controlling Ethereum address from a DID

    The address is the last ``:``-separated segment, so both
    ``did:ethr:0xabc...`` and ``did:ethr:sepolia:0xabc...`` work.

    Raises:
        ValidationError: no valid address in the DID
    """
    if not isinstance(did, str) or not did.startswith("did:"):
        raise ValidationError(f"Not a DID: {did!r}", "InvalidDID")
    candidate = did.rsplit(":", 1)[-1]
    if not is_address(candidate):
        raise ValidationError(f"DID does not embed an Ethereum address: {did}", "InvalidDID")
    return to_checksum_address(candidate)


@dataclass
class ServiceEndpoint:
    """Service endpoint in DID Document"""
    id: str
    type: str
    service_endpoint: str
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "type": self.type,
            "serviceEndpoint": self.service_endpoint
        }
        if self.description:
            result["description"] = self.description
        return result


def did_for_address(address: str, method: DIDMethod = DIDMethod.ETH) -> str:
    if not is_address(address):
        raise ValidationError(f"Invalid Ethereum address: {address}", "InvalidAddress")
    return f"did:{method.value}:{to_checksum_address(address)}"


@dataclass
class DIDDocument:
    """
    W3C DID Document

    Reference: https://www.w3.org/TR/did-core/#core-properties
    """
    id: str  # The DID
    controller: Optional[str] = None
    verification_method: List[Dict] = field(default_factory=list)
    authentication: List[str] = field(default_factory=list)
    assertion_method: List[str] = field(default_factory=list)
    service: List[Dict] = field(default_factory=list)
    created: str = ""
    updated: str = ""

    def __post_init__(self):
        if not self.controller:
            self.controller = self.id
        if not self.created:
            self.created = isoformat_z(utc_now())
        if not self.updated:
            self.updated = self.created

    def to_dict(self) -> Dict[str, Any]:
        """Convert to W3C DID Document JSON format"""
        doc = {
            "@context": [
                "https://www.w3.org/ns/did/v1",
                "https://w3id.org/security/bbs/v1",
                "https://w3id.org/security/suites/secp256k1recovery-2020/v2"
            ],
            "id": self.id,
            "controller": self.controller,
            "verificationMethod": self.verification_method,
            "authentication": self.authentication,
            "assertionMethod": self.assertion_method,
        }
        if self.service:
            doc["service"] = self.service
        doc["created"] = self.created
        doc["updated"] = self.updated
        return doc


class DIDManager:
    """
    Manages did:ethr identifiers for holders and the issuer

    Holder DIDs are derived from addresses and never stored. The issuer
    DID is created from the configured Ethereum key and carries the
    BBS+ key used for credential signing.
    """

    def __init__(self, key_manager: Optional[KeyManager] = None):
        self.key_manager = key_manager or KeyManager()
        self._documents: Dict[str, DIDDocument] = {}

    # ==================== DID CREATION ====================

    def create_issuer_did(
        self,
        private_key: str,
        bbs_seed: Optional[bytes] = None
    ) -> tuple[str, DIDDocument, Dict[str, KeyPair]]:
        """
        Create the issuer DID from an Ethereum private key

        Args:
            private_key: Ethereum private key (hex with 0x prefix)
            bbs_seed: Optional seed for a deterministic BBS+ key

        Returns:
            Tuple of (did, did_document, keys)
        """
        eth_key = self.key_manager.generate_from_ethereum_key(private_key)
        did = eth_key.controller
        bbs_key = self.key_manager.generate_bbs_keypair(did, seed=bbs_seed)

        did_doc = DIDDocument(
            id=did,
            verification_method=[
                eth_key.to_verification_method(),
                bbs_key.to_verification_method(),
            ],
            authentication=[eth_key.key_id],
            assertion_method=[bbs_key.key_id],
        )
        self._documents[did] = did_doc
        return did, did_doc, {eth_key.key_id: eth_key, bbs_key.key_id: bbs_key}

    def add_service(self, did: str, service: ServiceEndpoint) -> bool:
        """Add service endpoint to a managed DID Document"""
        doc = self._documents.get(did)
        if not doc:
            return False
        doc.service.append(service.to_dict())
        doc.updated = isoformat_z(utc_now())
        return True

    # ==================== DID RESOLUTION ====================

    def resolve(self, did: str) -> Optional[DIDDocument]:
        """
        Resolve DID to DID Document

        Managed DIDs return their stored document; any other did:ethr
        resolves to a minimal document whose controller is the address.
        """
        doc = self._documents.get(did)
        if doc:
            return doc
        try:
            address = address_from_did(did)
        except ValidationError:
            return None
        key_id = f"{did}#controller"
        return DIDDocument(
            id=did,
            verification_method=[{
                "id": key_id,
                "type": "EcdsaSecp256k1RecoveryMethod2020",
                "controller": did,
                "blockchainAccountId": f"eip155:1:{address}"
            }],
            authentication=[key_id],
        )
