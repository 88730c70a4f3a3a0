"""
Key Manager Tests
=================
"""

import base64

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from digilocker.errors import InvalidSignatureError, SigningFailureError, ValidationError
from digilocker.key_manager import (
    BbsSignature,
    HmacFallbackSignature,
    KeyManager,
    Signature,
    decode_public_key,
)


ISSUER = "did:ethr:0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
ISSUER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


def personal_sign(account, message: str) -> str:
    signed = Account.sign_message(encode_defunct(text=message), private_key=account.key)
    return bytes(signed.signature).hex()


class TestKeyManager:
    """Test KeyManager functionality"""

    def setup_method(self):
        self.key_manager = KeyManager()
        self.messages = [b"StudentID", b"Alice", b"21CS001"]

    def test_generate_bbs_keypair(self):
        """BBS+ keys are G2 points bound to the issuer DID"""
        key = self.key_manager.generate_bbs_keypair(ISSUER)

        assert key.key_id == f"{ISSUER}#key-1"
        assert key.key_type == "Bls12381G2Key2020"
        assert len(key.public_key_bytes) == 96
        assert key.to_verification_method()["publicKeyBase64"] == key.public_key
        print(f"✅ BBS+ key generated: {key.key_id}")

    def test_seeded_keys_are_deterministic(self):
        first = self.key_manager.generate_bbs_keypair(ISSUER, seed=b"\x01" * 32)
        second = KeyManager().generate_bbs_keypair(ISSUER, seed=b"\x01" * 32)

        assert first.public_key == second.public_key

    def test_ethereum_key_import(self):
        key = self.key_manager.generate_from_ethereum_key(ISSUER_KEY)

        assert key.controller == ISSUER
        assert key.key_id == f"{ISSUER}#controller"
        assert key.to_verification_method()["blockchainAccountId"].endswith(key.public_key)

    def test_sign_and_verify_bbs(self):
        key = self.key_manager.generate_bbs_keypair(ISSUER)
        signature = self.key_manager.sign_bbs(key.key_id, self.messages)

        assert isinstance(signature, BbsSignature)
        assert not signature.degraded
        assert signature.verify(self.messages, key.public_key_bytes)
        assert not signature.verify([b"StudentID", b"Mallory", b"21CS001"], key.public_key_bytes)

    def test_hmac_fallback(self):
        key = self.key_manager.generate_bbs_keypair(ISSUER)
        signature = self.key_manager.sign_hmac_fallback(key.key_id, self.messages)

        assert signature.degraded
        assert signature.signature_type == "HmacSha256Signature2020"
        assert signature.verify(self.messages, key.public_key_bytes)
        assert not signature.verify(self.messages[:2], key.public_key_bytes)

    def test_sign_with_unknown_key(self):
        with pytest.raises(SigningFailureError):
            self.key_manager.sign_bbs("did:ethr:0x0#key-1", self.messages)

    def test_signature_round_trip_from_proof(self):
        key = self.key_manager.generate_bbs_keypair(ISSUER)
        signature = self.key_manager.sign_bbs(key.key_id, self.messages)
        proof = {"type": signature.signature_type, "proofValue": signature.to_proof_value()}

        rebuilt = Signature.from_proof(proof)
        assert isinstance(rebuilt, BbsSignature)
        assert rebuilt.verify(self.messages, key.public_key_bytes)

    def test_from_proof_rejects_unknown_type(self):
        with pytest.raises(ValidationError):
            Signature.from_proof({"type": "Ed25519Signature2020", "proofValue": "AA=="})
        with pytest.raises(ValidationError):
            Signature.from_proof({"type": HmacFallbackSignature.signature_type, "proofValue": ""})

    def test_recover_address(self):
        holder = Account.create()
        signature = personal_sign(holder, "Sign this nonce")

        assert KeyManager.recover_address("Sign this nonce", signature) == holder.address
        assert KeyManager.recover_address("Sign this nonce", "0x" + signature) == holder.address

    def test_recover_address_rejects_garbage(self):
        with pytest.raises(InvalidSignatureError):
            KeyManager.recover_address("msg", "0xnothex")
        with pytest.raises(InvalidSignatureError):
            KeyManager.recover_address("msg", "ab" * 10)
        with pytest.raises(InvalidSignatureError):
            KeyManager.recover_address("msg", "")

    def test_recovered_signer_differs_for_other_message(self):
        holder = Account.create()
        signature = personal_sign(holder, "nonce A")

        assert KeyManager.recover_address("nonce B", signature) != holder.address

    def test_holder_key_bound_to_its_address(self):
        holder = Account.create()
        key = self.key_manager.generate_from_ethereum_key(holder.key.hex())

        assert key.public_key == holder.address
        assert key.controller == f"did:ethr:{holder.address}"

    def test_export_public_keys(self):
        self.key_manager.generate_bbs_keypair(ISSUER)
        exported = self.key_manager.export_public_keys()

        assert list(exported) == [f"{ISSUER}#key-1"]
        assert all("private_key" not in entry for entry in exported.values())


class TestDecodePublicKey:
    def test_accepts_base64_and_bytes(self):
        raw = KeyManager().generate_bbs_keypair(ISSUER).public_key_bytes

        assert decode_public_key(raw) == raw
        assert decode_public_key(base64.b64encode(raw).decode()) == raw

    def test_rejects_wrong_length(self):
        with pytest.raises(ValidationError):
            decode_public_key(base64.b64encode(b"short").decode())

    def test_rejects_non_base64(self):
        with pytest.raises(ValidationError):
            decode_public_key("not base64 !!")
