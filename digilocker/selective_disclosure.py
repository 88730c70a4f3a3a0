"""
Selective Disclosure Engine
===========================

Derives a BBS+ proof that reveals only chosen attributes of a signed
credential, and verifies such proofs.

The holder picks field names; the engine re-encodes the full original
message vector, maps the names to indexes and runs proof derivation.
``documentHash`` is always disclosed so a verifier can look the
credential up on the ledger without learning anything else.
"""

import base64
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from . import bbs, message_codec
from .config import Settings, settings as default_settings
from .errors import (
    DerivationFailureError,
    MalformedPresentationError,
    MissingOriginalSignatureError,
    NoDisclosedFieldsError,
    UnknownCredentialTypeError,
    ValidationError,
)
from .key_manager import BbsSignature, decode_public_key
from .utils import isoformat_z, random_hex, utc_now

logger = logging.getLogger(__name__)

PROOF_TYPE = "BbsBlsSignatureProof2020"
PRESENTATION_TYPE = ["VerifiablePresentation", "SelectiveDisclosurePresentation"]
ALWAYS_DISCLOSED = ("documentHash",)


def is_presentation(document: Any) -> bool:
    if not isinstance(document, Mapping):
        return False
    types = document.get("type")
    if isinstance(types, str):
        types = [types]
    return isinstance(types, list) and "VerifiablePresentation" in types


def _issuer_id(issuer: Any) -> Any:
    if isinstance(issuer, Mapping):
        return issuer.get("id")
    return issuer


def _disclosed_value(credential: Mapping[str, Any], name: str) -> Any:
    """Value of one layout field as it appears in a (possibly partial) credential"""
    if name == "issuer":
        return _issuer_id(credential.get("issuer"))
    if name == "issuanceDate":
        return credential.get("issuanceDate")
    return (credential.get("credentialSubject") or {}).get(name)


def disclosed_data(presentation: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Subject attributes a presentation actually discloses

    Only names listed in ``disclosedFields`` are returned, whatever else
    the document carries.
    """
    vc = presentation.get("verifiableCredential") or {}
    proof = vc.get("proof") or {}
    fields = proof.get("disclosedFields") or []
    subject = vc.get("credentialSubject") or {}
    data = {}
    for name in fields:
        canonical = message_codec.canonical_field(name)
        if canonical in subject and subject[canonical] is not None:
            data[canonical] = subject[canonical]
    return data


class SelectiveDisclosureEngine:
    """Builds and checks BbsBlsSignatureProof2020 presentations"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    # ==================== DERIVATION ====================

    def derive(
        self,
        credential: Mapping[str, Any],
        disclosed_field_names: Sequence[str],
        public_key: Union[str, bytes],
        original_ref: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Derive a presentation disclosing only ``disclosed_field_names``

        Args:
            credential: the full signed credential
            disclosed_field_names: layout field names to reveal
            public_key: issuer BBS+ public key (base64 or bytes)
            original_ref: blob reference of the original credential

        Raises:
            MissingOriginalSignatureError: no BBS+ signature to derive from
            NoDisclosedFieldsError: nothing known was selected
            UnknownDisclosedFieldError: unknown names with strict filtering
            DerivationFailureError: proof generation failed
        """
        proof = credential.get("proof") if isinstance(credential, Mapping) else None
        if not isinstance(proof, Mapping) or not proof.get("proofValue"):
            raise MissingOriginalSignatureError()
        if proof.get("type") != BbsSignature.signature_type:
            raise MissingOriginalSignatureError(
                f"Credential is signed with {proof.get('type')}; selective disclosure needs BBS+"
            )
        try:
            signature = base64.b64decode(proof["proofValue"], validate=True)
        except (ValueError, TypeError):
            raise MissingOriginalSignatureError("Credential proofValue is not valid base64")

        pk = decode_public_key(public_key)
        vector = message_codec.encode_credential(credential)

        indexes = message_codec.indices_for(
            disclosed_field_names or [], vector.field_index,
            strict=self.settings.STRICT_DISCLOSED_FIELDS
        )
        if not indexes:
            raise NoDisclosedFieldsError()
        indexes = sorted(set(indexes) | {vector.field_index[name] for name in ALWAYS_DISCLOSED})

        try:
            derived = bbs.proof_gen(pk, signature, vector.messages, indexes)
        except bbs.BbsError as e:
            raise DerivationFailureError(f"Proof derivation failed: {e}")

        names = message_codec.names_for(indexes, vector.field_index)
        subject = credential.get("credentialSubject") or {}
        disclosed_subject = {
            name: subject[name]
            for name in names
            if name not in ("issuer", "issuanceDate") and name in subject
        }

        now = isoformat_z(utc_now())
        wrapped = {
            k: v for k, v in credential.items() if k not in ("credentialSubject", "proof")
        }
        wrapped["credentialSubject"] = disclosed_subject
        wrapped["proof"] = {
            "type": PROOF_TYPE,
            "created": now,
            "proofPurpose": "assertionMethod",
            "verificationMethod": proof.get("verificationMethod"),
            "proofValue": base64.b64encode(derived).decode("ascii"),
            "disclosedFields": names,
            "originalRef": original_ref,
        }

        logger.info(
            "Derived presentation disclosing %s of %d fields", ", ".join(names), len(vector)
        )
        return {
            "@context": credential.get("@context"),
            "type": list(PRESENTATION_TYPE),
            "verifiableCredential": wrapped,
            "proof": {
                "type": PROOF_TYPE,
                "created": now,
                "proofPurpose": "authentication",
                "challenge": random_hex(16),
                "disclosedFields": names,
            },
        }

    # ==================== VERIFICATION ====================

    def _parse(self, presentation: Any):
        if not is_presentation(presentation):
            raise MalformedPresentationError("Not a VerifiablePresentation")
        vc = presentation.get("verifiableCredential")
        if not isinstance(vc, Mapping):
            raise MalformedPresentationError("verifiableCredential must be an object")
        if not isinstance(vc.get("credentialSubject"), Mapping):
            raise MalformedPresentationError("credentialSubject must be an object")
        proof = vc.get("proof")
        if not isinstance(proof, Mapping) or proof.get("type") != PROOF_TYPE:
            raise MalformedPresentationError(f"Presentation proof must be {PROOF_TYPE}")
        fields = proof.get("disclosedFields")
        if not isinstance(fields, list) or not all(isinstance(f, str) for f in fields):
            raise MalformedPresentationError("disclosedFields must be a list of names")
        try:
            proof_bytes = base64.b64decode(proof.get("proofValue") or "", validate=True)
        except (ValueError, TypeError):
            raise MalformedPresentationError("proofValue is not valid base64")
        if not proof_bytes:
            raise MalformedPresentationError("proofValue is empty")
        try:
            credential_type = message_codec.credential_type_of(vc)
        except UnknownCredentialTypeError as e:
            raise MalformedPresentationError(e.message)
        return vc, fields, proof_bytes, credential_type

    def verify(self, presentation: Mapping[str, Any], public_key: Union[str, bytes]) -> bool:
        """
        Check a presentation's derived proof against its visible attributes

        Returns False on any mismatch; raises MalformedPresentationError
        only when the document cannot be a presentation at all.
        """
        vc, fields, proof_bytes, credential_type = self._parse(presentation)

        try:
            pk = decode_public_key(public_key)
        except ValidationError:
            return False

        field_index = message_codec.field_index_for(credential_type)
        disclosed: Dict[int, bytes] = {}
        for name in fields:
            canonical = message_codec.canonical_field(name)
            index = field_index.get(canonical)
            if index is None:
                logger.info("Presentation discloses unknown field %r", name)
                return False
            disclosed[index] = message_codec.encode_value(_disclosed_value(vc, canonical))

        if not disclosed:
            return False

        return bbs.proof_verify(pk, proof_bytes, len(field_index), disclosed)

    def disclosed_fields(self, presentation: Mapping[str, Any]) -> List[str]:
        _, fields, _, _ = self._parse(presentation)
        return [message_codec.canonical_field(f) for f in fields]
