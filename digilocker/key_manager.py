"""
Key Manager - Cryptographic keys for the credential service

Supports:
- BLS12-381 G2 (BBS+): multi-message credential signing
- secp256k1: Ethereum wallets, EIP-191 signature recovery
- HMAC-SHA256: degraded fallback when BBS+ signing fails
"""

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar, Dict, Optional, Sequence, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from eth_account import Account
from eth_account.messages import encode_defunct

from . import bbs
from .errors import InvalidSignatureError, SigningFailureError, ValidationError
from .utils import isoformat_z, utc_now

logger = logging.getLogger(__name__)

BBS_KEY_TYPE = "Bls12381G2Key2020"
ETH_KEY_TYPE = "EcdsaSecp256k1RecoveryMethod2020"


@dataclass
class KeyPair:
    """Represents a cryptographic key pair"""
    key_id: str
    key_type: str  # Bls12381G2Key2020, EcdsaSecp256k1RecoveryMethod2020
    public_key: str  # base64 for BBS, checksummed address for secp256k1
    private_key: Optional[str] = None  # Only stored locally, never shared
    created_at: str = ""
    controller: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = isoformat_z(utc_now())

    @property
    def public_key_bytes(self) -> bytes:
        return base64.b64decode(self.public_key)

    def to_verification_method(self) -> Dict[str, str]:
        """Convert to W3C Verification Method format"""
        method = {
            "id": self.key_id,
            "type": self.key_type,
            "controller": self.controller,
        }
        if self.key_type == ETH_KEY_TYPE:
            method["blockchainAccountId"] = f"eip155:1:{self.public_key}"
        else:
            method["publicKeyBase64"] = self.public_key
        return method


# ==================== SIGNATURES ====================

def decode_public_key(public_key: Union[str, bytes]) -> bytes:
    """
    Accept a BBS+ public key as raw bytes or base64 text

    Raises:
        ValidationError: not base64, or not a 96-byte G2 point encoding
    """
    if isinstance(public_key, (bytes, bytearray)):
        raw = bytes(public_key)
    else:
        try:
            raw = base64.b64decode(public_key or "", validate=True)
        except (ValueError, TypeError):
            raise ValidationError("Public key is not valid base64", "InvalidPublicKey")
    if len(raw) != bbs.G2_POINT_LEN:
        raise ValidationError(
            f"Public key must be {bbs.G2_POINT_LEN} bytes, got {len(raw)}", "InvalidPublicKey"
        )
    return raw


def _pack_messages(messages: Sequence[bytes]) -> bytes:
    return b"".join(len(m).to_bytes(4, "big") + bytes(m) for m in messages)


@dataclass(frozen=True)
class Signature(ABC):
    """
    A credential signature tagged with the scheme that produced it

    Each variant knows how to verify itself, so callers never branch on
    the ``signatureType`` string.
    """
    value: bytes

    signature_type: ClassVar[str] = ""
    degraded: ClassVar[bool] = False

    @abstractmethod
    def verify(self, messages: Sequence[bytes], public_key: bytes) -> bool:
        ...

    def to_proof_value(self) -> str:
        return base64.b64encode(self.value).decode("ascii")

    @staticmethod
    def from_proof(proof: Dict) -> "Signature":
        """Rebuild the tagged signature from a credential proof block"""
        proof_type = proof.get("type")
        cls = SIGNATURE_TYPES.get(proof_type)
        if cls is None:
            raise ValidationError(f"Unsupported proof type: {proof_type}", "UnsupportedProofType")
        try:
            value = base64.b64decode(proof.get("proofValue") or "", validate=True)
        except (ValueError, TypeError):
            raise ValidationError("proofValue is not valid base64", "MalformedProof")
        if not value:
            raise ValidationError("proofValue is empty", "MalformedProof")
        return cls(value=value)


@dataclass(frozen=True)
class BbsSignature(Signature):
    signature_type: ClassVar[str] = "BbsBlsSignature2020"

    def verify(self, messages: Sequence[bytes], public_key: bytes) -> bool:
        return bbs.verify(public_key, self.value, messages)


@dataclass(frozen=True)
class HmacFallbackSignature(Signature):
    """Symmetric tag keyed with the issuer public key. Integrity only."""
    signature_type: ClassVar[str] = "HmacSha256Signature2020"
    degraded: ClassVar[bool] = True

    @staticmethod
    def compute(messages: Sequence[bytes], public_key: bytes) -> bytes:
        h = hmac.HMAC(bytes(public_key), hashes.SHA256())
        h.update(_pack_messages(messages))
        return h.finalize()

    def verify(self, messages: Sequence[bytes], public_key: bytes) -> bool:
        h = hmac.HMAC(bytes(public_key), hashes.SHA256())
        h.update(_pack_messages(messages))
        try:
            h.verify(self.value)
            return True
        except InvalidSignature:
            return False


SIGNATURE_TYPES = {
    BbsSignature.signature_type: BbsSignature,
    HmacFallbackSignature.signature_type: HmacFallbackSignature,
}


class KeyManager:
    """
    Manages cryptographic keys for DID operations

    Features:
    - Generate BBS+ key pairs (optionally from a seed)
    - Generate or import secp256k1 key pairs
    - Sign message vectors, with an explicit HMAC fallback
    - Recover Ethereum addresses from personal_sign signatures
    """

    def __init__(self):
        self._keys: Dict[str, KeyPair] = {}

    # ==================== KEY GENERATION ====================

    def generate_bbs_keypair(self, did: str, seed: Optional[bytes] = None) -> KeyPair:
        """
        Generate a BLS12-381 G2 key pair for BBS+ signing

        Args:
            did: The DID that will control this key
            seed: Optional seed (>= 32 bytes) for a deterministic key

        Returns:
            KeyPair with base64-encoded keys
        """
        raw = bbs.generate_keypair(seed)
        keypair = KeyPair(
            key_id=f"{did}#key-1",
            key_type=BBS_KEY_TYPE,
            public_key=base64.b64encode(raw.public_key).decode("ascii"),
            private_key=base64.b64encode(raw.secret_key).decode("ascii"),
            controller=did
        )
        self._keys[keypair.key_id] = keypair
        logger.info("Generated BBS+ key %s", keypair.key_id)
        return keypair

    def generate_from_ethereum_key(self, private_key: str, did: Optional[str] = None) -> KeyPair:
        """
        Create KeyPair from existing Ethereum private key

        Args:
            private_key: Ethereum private key (hex string with 0x prefix)
            did: Controlling DID, defaults to ``did:ethr:<address>``
        """
        account = Account.from_key(private_key)
        controller = did or f"did:ethr:{account.address}"
        keypair = KeyPair(
            key_id=f"{controller}#controller",
            key_type=ETH_KEY_TYPE,
            public_key=account.address,
            private_key=private_key,
            controller=controller
        )
        self._keys[keypair.key_id] = keypair
        return keypair

    # ==================== SIGNING ====================

    def _require(self, key_id: str, key_type: str) -> KeyPair:
        keypair = self._keys.get(key_id)
        if not keypair or keypair.key_type != key_type:
            raise SigningFailureError(f"{key_type} key not found: {key_id}")
        if not keypair.private_key:
            raise SigningFailureError("Private key not available for signing")
        return keypair

    def sign_bbs(self, key_id: str, messages: Sequence[bytes]) -> BbsSignature:
        """Sign a message vector with BBS+. Raises SigningFailureError."""
        keypair = self._require(key_id, BBS_KEY_TYPE)
        try:
            value = bbs.sign(
                base64.b64decode(keypair.private_key),
                keypair.public_key_bytes,
                messages
            )
        except (bbs.BbsError, ValueError, TypeError, ArithmeticError, AssertionError) as e:
            raise SigningFailureError(f"BBS+ signing failed: {e}")
        return BbsSignature(value=value)

    def sign_hmac_fallback(self, key_id: str, messages: Sequence[bytes]) -> HmacFallbackSignature:
        keypair = self._keys.get(key_id)
        if not keypair:
            raise SigningFailureError(f"Key not found: {key_id}")
        return HmacFallbackSignature(
            value=HmacFallbackSignature.compute(messages, keypair.public_key_bytes)
        )

    # ==================== VERIFICATION ====================

    @staticmethod
    def recover_address(message: str, signature: str) -> str:
        """
        Recover the signer address of an EIP-191 personal_sign signature

        Raises:
            InvalidSignatureError: signature is not decodable
        """
        if not isinstance(signature, str) or not signature:
            raise InvalidSignatureError("Signature is required")
        sig_hex = signature[2:] if signature.lower().startswith("0x") else signature
        try:
            sig_bytes = bytes.fromhex(sig_hex)
        except ValueError:
            raise InvalidSignatureError("Signature is not hex encoded")
        if len(sig_bytes) != 65:
            raise InvalidSignatureError(f"Signature must be 65 bytes, got {len(sig_bytes)}")
        try:
            return Account.recover_message(encode_defunct(text=message), signature=sig_bytes)
        except Exception as e:
            raise InvalidSignatureError(f"Could not recover signer: {e}")

    # ==================== KEY MANAGEMENT ====================

    def export_public_keys(self) -> Dict[str, Dict]:
        """Export all public keys (no private keys)"""
        return {
            key_id: {
                "key_id": keypair.key_id,
                "key_type": keypair.key_type,
                "public_key": keypair.public_key,
                "controller": keypair.controller,
                "created_at": keypair.created_at
            }
            for key_id, keypair in self._keys.items()
        }
