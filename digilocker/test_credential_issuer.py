"""
Credential Issuer Tests
=======================
"""

import hashlib

import pytest

from digilocker import bbs, message_codec
from digilocker.credential_issuer import CredentialIssuanceEngine
from digilocker.errors import (
    BlobStoreError,
    LedgerError,
    MissingRequiredFieldError,
    SigningFailureError,
    UnknownCredentialTypeError,
)
from digilocker.external import InMemoryBlobStore, InMemoryLedger
from digilocker.key_manager import BbsSignature, HmacFallbackSignature, KeyManager, Signature


ISSUER = "did:ethr:0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
HOLDER = "did:ethr:0x742d35cC6634C0532925A3B844BC9e7595f8C1F5"
DOCUMENT = b"%PDF-1.4 student id card"

STUDENT = {
    "name": "Alice",
    "rollNumber": "21CS001",
    "dateOfBirth": "2003-04-12",
    "department": "CSE",
    "id": HOLDER,
}


class FailingLedger(InMemoryLedger):
    def anchor(self, integrity_hash, ref):
        raise LedgerError("ledger node unreachable")


class FailingBlobStore(InMemoryBlobStore):
    def put(self, data, name=None):
        raise RuntimeError("connection refused")


class TestCredentialIssuanceEngine:
    """Test CredentialIssuanceEngine functionality"""

    def setup_method(self):
        self.key_manager = KeyManager()
        self.bbs_key = self.key_manager.generate_bbs_keypair(ISSUER, seed=b"\x11" * 32)
        self.blob_store = InMemoryBlobStore()
        self.ledger = InMemoryLedger(issuer=ISSUER)
        self.engine = CredentialIssuanceEngine(
            issuer_did=ISSUER,
            key_manager=self.key_manager,
            blob_store=self.blob_store,
            ledger=self.ledger
        )

    def test_issue_student_id(self):
        result = self.engine.issue("StudentID", STUDENT, artifact_bytes=DOCUMENT)
        vc = result.credential

        assert vc["type"] == ["VerifiableCredential", "StudentID"]
        assert vc["issuer"] == ISSUER
        assert vc["credentialSubject"]["documentHash"] == hashlib.sha256(DOCUMENT).hexdigest()
        assert vc["proof"]["type"] == "BbsBlsSignature2020"
        assert vc["proof"]["verificationMethod"] == f"{ISSUER}#key-1"
        assert result.signature_type == "BbsBlsSignature2020"
        assert result.message_count == 8
        assert result.anchored
        print(f"✅ Issued StudentID: {result.vc_ref}")

    def test_signature_verifies_over_message_vector(self):
        vc = self.engine.issue("StudentID", STUDENT, artifact_bytes=DOCUMENT).credential

        signature = Signature.from_proof(vc["proof"])
        messages = message_codec.encode_credential(vc).messages
        assert isinstance(signature, BbsSignature)
        assert signature.verify(messages, self.bbs_key.public_key_bytes)

    def test_artifacts_are_stored(self):
        result = self.engine.issue("StudentID", STUDENT, artifact_bytes=DOCUMENT)

        assert self.blob_store.get(result.document_ref) == DOCUMENT
        assert self.blob_store.get_json(result.vc_ref) == result.credential
        draft = self.blob_store.get_json(result.draft_ref)
        assert "proof" not in draft
        assert len(self.blob_store) == 3

    def test_ledger_entry(self):
        result = self.engine.issue("StudentID", STUDENT, artifact_bytes=DOCUMENT)
        entry = self.ledger.lookup(result.integrity_hash)

        assert entry.exists
        assert entry.ref == result.vc_ref
        assert not entry.revoked

    def test_missing_fields(self):
        attrs = dict(STUDENT)
        del attrs["rollNumber"]

        with pytest.raises(MissingRequiredFieldError) as exc:
            self.engine.issue("StudentID", attrs, artifact_bytes=b"")
        assert exc.value.fields == ["rollNumber", "document"]
        assert len(self.blob_store) == 0

    def test_unknown_type(self):
        with pytest.raises(UnknownCredentialTypeError):
            self.engine.issue("Passport", STUDENT, artifact_bytes=DOCUMENT)

    def test_academic_certificate(self):
        attrs = {
            "name": "Bob", "registerNumber": "REG-77", "degree": "B.E.", "branch": "CSE",
            "university": "Anna University", "location": "Chennai", "cgpa": "8.9",
            "class": "First Class", "examHeldIn": "May 2024", "issuedDate": "2024-06-01",
            "id": HOLDER,
        }
        result = self.engine.issue("Academic Certificate", attrs, artifact_bytes=DOCUMENT)
        assert result.message_count == 14
        assert result.credential["type"][1] == "AcademicCertificate"

    def test_hmac_fallback_is_visible(self, monkeypatch):
        def broken(key_id, messages):
            raise SigningFailureError("simulated")

        monkeypatch.setattr(self.key_manager, "sign_bbs", broken)
        result = self.engine.issue("StudentID", STUDENT, artifact_bytes=DOCUMENT)

        assert result.signature_type == "HmacSha256Signature2020"
        signature = Signature.from_proof(result.credential["proof"])
        assert isinstance(signature, HmacFallbackSignature)
        assert signature.degraded
        assert signature.verify(
            message_codec.encode_credential(result.credential).messages,
            self.bbs_key.public_key_bytes
        )

    def test_ledger_failure_is_degraded(self):
        self.engine.ledger = FailingLedger()
        result = self.engine.issue("StudentID", STUDENT, artifact_bytes=DOCUMENT)

        assert not result.anchored
        assert "unreachable" in result.anchor_error
        assert self.blob_store.get_json(result.vc_ref) == result.credential
        assert result.to_dict()["anchored"] is False

    def test_blob_failure_is_fatal(self):
        self.engine.blob_store = FailingBlobStore()
        with pytest.raises(BlobStoreError):
            self.engine.issue("StudentID", STUDENT, artifact_bytes=DOCUMENT)

    def test_claims_outside_layout_are_dropped(self):
        attrs = dict(STUDENT, role="student", documentHash="forged", issuer="did:ethr:other")
        subject = self.engine.issue("StudentID", attrs, artifact_bytes=DOCUMENT).credential["credentialSubject"]

        assert "role" not in subject
        assert "issuer" not in subject
        assert subject["documentHash"] == hashlib.sha256(DOCUMENT).hexdigest()
        assert set(subject) == set(message_codec.subject_fields_for("StudentID"))

    def test_unexpected_bbs_error_falls_back(self, monkeypatch):
        def broken(secret_key, public_key, messages):
            raise AssertionError("point not on curve")

        monkeypatch.setattr(bbs, "sign", broken)
        result = self.engine.issue("StudentID", STUDENT, artifact_bytes=DOCUMENT)

        assert result.signature_type == "HmacSha256Signature2020"
