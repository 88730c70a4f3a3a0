"""
Message Vector Codec
====================

Maps a credential's typed attributes onto the ordered list of byte
strings that BBS+ signs, and attribute names onto their positions.

The layouts below are a wire contract: issuer, holder and verifier must
produce byte-identical vectors for the same credential, so indexes are
never reordered and absent values encode as ``b""`` instead of being
skipped.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import UnknownCredentialTypeError, UnknownDisclosedFieldError, ValidationError


class CredentialType(str, Enum):
    """Types of credentials we issue"""
    STUDENT_ID = "StudentID"
    ACADEMIC_CERTIFICATE = "AcademicCertificate"

    @classmethod
    def parse(cls, value: Any) -> "CredentialType":
        """Accept the enum, its value, or a display name like "Student ID"."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            compact = value.replace(" ", "").replace("_", "")
            for member in cls:
                if member.value.lower() == compact.lower():
                    return member
        raise UnknownCredentialTypeError(str(value))


LAYOUTS: Dict[CredentialType, Tuple[str, ...]] = {
    CredentialType.STUDENT_ID: (
        "name",
        "rollNumber",
        "dateOfBirth",
        "department",
        "id",
        "issuer",
        "issuanceDate",
        "documentHash",
    ),
    CredentialType.ACADEMIC_CERTIFICATE: (
        "name",
        "registerNumber",
        "degree",
        "branch",
        "university",
        "location",
        "cgpa",
        "class",
        "examHeldIn",
        "issuedDate",
        "id",
        "issuer",
        "issuanceDate",
        "documentHash",
    ),
}

# Fields filled by the issuer rather than taken from subject attributes
ENVELOPE_FIELDS = ("issuer", "issuanceDate", "documentHash")

# Stored in credentialSubject outside the signed vector
UNSIGNED_SUBJECT_FIELDS = ("documentRef",)

FIELD_ALIASES = {
    "subjectId": "id",
    "issuerId": "issuer",
}


@dataclass(frozen=True)
class MessageVector:
    """Ordered messages plus the name -> index map that produced them"""
    messages: Tuple[bytes, ...]
    field_index: Dict[str, int] = field(hash=False)

    def __len__(self) -> int:
        return len(self.messages)

    def message_for(self, name: str) -> bytes:
        return self.messages[self.field_index[canonical_field(name)]]


def canonical_field(name: str) -> str:
    return FIELD_ALIASES.get(name, name)


def layout_for(credential_type: Any) -> Tuple[str, ...]:
    return LAYOUTS[CredentialType.parse(credential_type)]


def field_index_for(credential_type: Any) -> Dict[str, int]:
    return {name: i for i, name in enumerate(layout_for(credential_type))}


def subject_fields_for(credential_type: Any) -> Tuple[str, ...]:
    """Names a credentialSubject may carry: signed layout fields plus the document reference"""
    signed = tuple(
        name for name in layout_for(credential_type) if name not in ("issuer", "issuanceDate")
    )
    return signed + UNSIGNED_SUBJECT_FIELDS


def unexpected_subject_fields(credential_type: Any, subject: Mapping[str, Any]) -> List[str]:
    """Subject claims outside the layout, which no signature covers"""
    allowed = subject_fields_for(credential_type)
    return sorted(name for name in subject if name not in allowed)


def encode_value(value: Any) -> bytes:
    """
    Deterministic byte encoding of one attribute value

    None -> b"", str -> UTF-8, bool -> b"true"/b"false", numbers via str(),
    anything structured -> compact JSON with sorted keys.
    """
    if value is None:
        return b""
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, bool):
        return b"true" if value else b"false"
    if isinstance(value, (int, float)):
        return str(value).encode("utf-8")
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _issuer_ref(issuer: Any) -> Any:
    if isinstance(issuer, Mapping):
        return issuer.get("id")
    return issuer


def encode(
    credential_type: Any,
    subject_attributes: Mapping[str, Any],
    issuer_ref: Any,
    issuance_date: Any,
    integrity_hash: Any
) -> MessageVector:
    """
    Build the message vector for a credential

    Args:
        credential_type: CredentialType or its name
        subject_attributes: credentialSubject fields (aliases accepted)
        issuer_ref: issuer DID, or an ``{"id": ...}`` issuer object
        issuance_date: ISO timestamp of issuance
        integrity_hash: hash of the attached document
    """
    layout = layout_for(credential_type)
    attributes = {canonical_field(k): v for k, v in (subject_attributes or {}).items()}
    envelope = {
        "issuer": _issuer_ref(issuer_ref),
        "issuanceDate": issuance_date,
        "documentHash": integrity_hash,
    }

    messages: List[bytes] = []
    for name in layout:
        value = envelope[name] if name in ENVELOPE_FIELDS else attributes.get(name)
        messages.append(encode_value(value))

    return MessageVector(
        messages=tuple(messages),
        field_index={name: i for i, name in enumerate(layout)},
    )


def credential_type_of(credential: Mapping[str, Any]) -> CredentialType:
    """Find the layout a credential was signed with from its ``type`` list"""
    types = credential.get("type") or []
    if isinstance(types, str):
        types = [types]
    for entry in types:
        try:
            return CredentialType.parse(entry)
        except UnknownCredentialTypeError:
            continue
    raise UnknownCredentialTypeError(", ".join(str(t) for t in types) or "<none>")


def encode_credential(credential: Mapping[str, Any]) -> MessageVector:
    """Re-encode a full credential document exactly as it was signed."""
    subject = credential.get("credentialSubject")
    if not isinstance(subject, Mapping):
        raise ValidationError("credentialSubject must be an object", "MalformedCredential")
    return encode(
        credential_type_of(credential),
        subject,
        credential.get("issuer"),
        credential.get("issuanceDate"),
        subject.get("documentHash"),
    )


def indices_for(
    field_names: Sequence[str],
    field_index: Mapping[str, int],
    strict: bool = False
) -> List[int]:
    """
    Map disclosed field names to sorted, de-duplicated indexes

    Unknown names are dropped unless ``strict``, in which case they raise
    UnknownDisclosedFieldError.
    """
    indexes = set()
    unknown = []
    for name in field_names:
        index = field_index.get(canonical_field(name))
        if index is None:
            unknown.append(name)
        else:
            indexes.add(index)
    if unknown and strict:
        raise UnknownDisclosedFieldError(unknown)
    return sorted(indexes)


def names_for(indexes: Sequence[int], field_index: Mapping[str, int]) -> List[str]:
    by_index = {i: name for name, i in field_index.items()}
    return [by_index[i] for i in sorted(indexes)]


def missing_required(
    credential_type: Any,
    subject_attributes: Mapping[str, Any],
    required: Optional[Sequence[str]] = None
) -> List[str]:
    """Required subject fields that are absent or empty"""
    attributes = {canonical_field(k): v for k, v in (subject_attributes or {}).items()}
    if required is None:
        required = REQUIRED_FIELDS[CredentialType.parse(credential_type)]
    return [name for name in required if attributes.get(name) in (None, "")]


REQUIRED_FIELDS: Dict[CredentialType, Tuple[str, ...]] = {
    CredentialType.STUDENT_ID: ("name", "rollNumber", "dateOfBirth", "department", "id"),
    CredentialType.ACADEMIC_CERTIFICATE: (
        "name", "registerNumber", "degree", "branch", "university",
        "location", "cgpa", "class", "examHeldIn", "issuedDate", "id",
    ),
}
