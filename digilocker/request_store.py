"""
Credential Request Store
========================

Lifecycle records for a holder's ask for a credential.

    pending -> verified -> approved | rejected

Status only moves forward; ``approved -> approved`` is allowed so the
issued credential reference can be attached after approval. Deletion is
allowed from any status.
"""

import logging
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from .did_manager import address_from_did
from .errors import (
    InvalidStateError,
    MissingRequiredFieldError,
    RequestNotFoundError,
    ValidationError,
)
from .message_codec import CredentialType
from .record_store import InMemoryRecordStore, RecordStore
from .utils import isoformat_z, utc_now

logger = logging.getLogger(__name__)

NAMESPACE = "requests"


class RequestStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    APPROVED = "approved"
    REJECTED = "rejected"

    def can_transition_to(self, new_status: "RequestStatus") -> bool:
        return RequestStatus(new_status) in _TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.APPROVED, RequestStatus.REJECTED)


_TRANSITIONS = {
    RequestStatus.PENDING: {RequestStatus.VERIFIED},
    RequestStatus.VERIFIED: {RequestStatus.APPROVED, RequestStatus.REJECTED},
    RequestStatus.APPROVED: {RequestStatus.APPROVED},
    RequestStatus.REJECTED: set(),
}

# snake_case attribute -> record key
_RECORD_KEYS = {
    "request_id": "requestId",
    "holder_did": "holderDID",
    "holder_address": "holderAddress",
    "holder_name": "holderName",
    "credential_type": "credentialType",
    "verification_id": "verificationId",
    "message": "message",
    "attached_credential": "attachedCredential",
    "status": "status",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "nonce_id": "nonceId",
    "verified_at": "verifiedAt",
    "recovered_address": "recoveredAddress",
    "signature": "signature",
    "issued_vc_ref": "issuedVCRef",
    "approved_by": "approvedBy",
    "approved_at": "approvedAt",
    "rejected_by": "rejectedBy",
    "rejected_at": "rejectedAt",
    "rejection_reason": "rejectionReason",
}
_ATTRIBUTES = {v: k for k, v in _RECORD_KEYS.items()}


@dataclass
class CredentialRequest:
    """A holder's request for a credential, as persisted"""
    request_id: str
    holder_did: str
    holder_address: str
    credential_type: CredentialType
    verification_id: str
    holder_name: str = "Unknown"
    message: str = ""
    attached_credential: Optional[Dict[str, Any]] = None  # {"ref": ..., "vc": {...}}
    status: RequestStatus = RequestStatus.PENDING
    created_at: str = ""
    updated_at: str = ""
    nonce_id: Optional[str] = None
    verified_at: Optional[str] = None
    recovered_address: Optional[str] = None
    signature: Optional[str] = None
    issued_vc_ref: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[str] = None
    rejection_reason: Optional[str] = None

    def __post_init__(self):
        self.credential_type = CredentialType.parse(self.credential_type)
        self.status = RequestStatus(self.status)
        if not self.created_at:
            self.created_at = isoformat_z(utc_now())
        if not self.updated_at:
            self.updated_at = self.created_at

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["credential_type"] = self.credential_type.value
        data["status"] = self.status.value
        return {_RECORD_KEYS[k]: v for k, v in data.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CredentialRequest":
        return cls(**{_ATTRIBUTES[k]: v for k, v in data.items() if k in _ATTRIBUTES})

    @property
    def attached_subject(self) -> Dict[str, Any]:
        """credentialSubject of the attached prior credential, if any"""
        vc = (self.attached_credential or {}).get("vc") or {}
        subject = vc.get("credentialSubject")
        return dict(subject) if isinstance(subject, dict) else {}


class CredentialRequestStore:
    """
    Owns every CredentialRequest record

    Backed by a RecordStore; each mutation replaces the whole record under
    the per-request lock, so a failed call leaves the prior state intact.
    """

    def __init__(self, record_store: Optional[RecordStore] = None):
        self.records = record_store or InMemoryRecordStore()

    # ==================== CREATION ====================

    def create(
        self,
        holder_did: str,
        holder_address: str,
        credential_type: Any,
        verification_id: str,
        holder_name: Optional[str] = None,
        message: str = "",
        attached_credential: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Create a pending request

        Raises:
            MissingRequiredFieldError: holder DID, address, type or
                verification id missing
            ValidationError: address does not match the DID
        """
        missing = [
            name for name, value in (
                ("holderDID", holder_did),
                ("holderAddress", holder_address),
                ("credentialType", credential_type),
                ("verificationId", verification_id),
            ) if not value
        ]
        if missing:
            raise MissingRequiredFieldError(missing)

        did_address = address_from_did(holder_did)
        if did_address.lower() != str(holder_address).lower():
            raise ValidationError(
                "holderAddress does not match the address in holderDID", "HolderAddressMismatch"
            )

        request = CredentialRequest(
            request_id=str(uuid.uuid4()),
            holder_did=holder_did,
            holder_address=did_address,
            holder_name=holder_name or "Unknown",
            credential_type=credential_type,
            verification_id=verification_id,
            message=message or "",
            attached_credential=attached_credential,
        )
        self.records.put(NAMESPACE, request.request_id, request.to_dict())
        logger.info(
            "Credential request %s created (%s) for %s",
            request.request_id, request.credential_type.value, request.holder_did
        )
        return request.request_id

    # ==================== QUERIES ====================

    def get(self, request_id: str) -> CredentialRequest:
        record = self.records.get(NAMESPACE, request_id)
        if record is None:
            raise RequestNotFoundError(request_id)
        return CredentialRequest.from_dict(record)

    def find(self, request_id: str) -> Optional[CredentialRequest]:
        record = self.records.get(NAMESPACE, request_id)
        return CredentialRequest.from_dict(record) if record is not None else None

    def list_all(self) -> List[CredentialRequest]:
        return [CredentialRequest.from_dict(r) for r in self.records.values(NAMESPACE)]

    def list_by_holder(self, address: str) -> List[CredentialRequest]:
        wanted = (address or "").lower()
        return [r for r in self.list_all() if r.holder_address.lower() == wanted]

    def list_by_status(self, status: Any) -> List[CredentialRequest]:
        status = RequestStatus(status)
        return [r for r in self.list_all() if r.status == status]

    def status_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in RequestStatus}
        for request in self.list_all():
            counts[request.status.value] += 1
        return counts

    # ==================== MUTATION ====================

    @contextmanager
    def lock(self, request_id: str) -> Iterator[None]:
        """Serialize status changes for one request (re-entrant)"""
        with self.records.lock(NAMESPACE, request_id):
            yield

    def transition(
        self,
        request_id: str,
        new_status: Any,
        extra_fields: Optional[Dict[str, Any]] = None
    ) -> CredentialRequest:
        """
        Move a request to ``new_status`` and set ``extra_fields``

        Raises:
            RequestNotFoundError: unknown id
            InvalidStateError: the move would go backwards
        """
        new_status = RequestStatus(new_status)
        extra = dict(extra_fields or {})

        def apply(record: Dict[str, Any]) -> Dict[str, Any]:
            request = CredentialRequest.from_dict(record)
            if not request.status.can_transition_to(new_status):
                raise InvalidStateError(
                    f"Request {request_id} cannot move from {request.status.value} to {new_status.value}"
                )
            for name, value in extra.items():
                if name not in _RECORD_KEYS or name in ("request_id", "status", "created_at"):
                    raise ValidationError(f"Field cannot be updated: {name}", "ImmutableField")
                setattr(request, name, value)
            request.status = new_status
            request.updated_at = isoformat_z(utc_now())
            return request.to_dict()

        updated = self.records.update(NAMESPACE, request_id, apply)
        if updated is None:
            raise RequestNotFoundError(request_id)
        logger.info("Request %s -> %s", request_id, new_status.value)
        return CredentialRequest.from_dict(updated)

    def attach_nonce(self, request_id: str, nonce_id: str) -> CredentialRequest:
        """Point the request at a new authoritative nonce. Pending only."""

        def apply(record: Dict[str, Any]) -> Dict[str, Any]:
            request = CredentialRequest.from_dict(record)
            if request.status != RequestStatus.PENDING:
                raise InvalidStateError(
                    f"Request is already {request.status.value}. Cannot create new challenge."
                )
            request.nonce_id = nonce_id
            request.updated_at = isoformat_z(utc_now())
            return request.to_dict()

        updated = self.records.update(NAMESPACE, request_id, apply)
        if updated is None:
            raise RequestNotFoundError(request_id)
        return CredentialRequest.from_dict(updated)

    def delete(self, request_id: str) -> None:
        with self.lock(request_id):
            if not self.records.delete(NAMESPACE, request_id):
                raise RequestNotFoundError(request_id)
        logger.info("Request %s deleted", request_id)
