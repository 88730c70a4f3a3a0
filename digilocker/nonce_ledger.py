"""
Nonce Ledger
============

One-time challenges a holder signs to prove control of a DID.

- issue: random nonce + canonical message, valid for NONCE_TTL_SECONDS
- consume: atomic check-and-mark under a per-nonce lock
- sweep_expired: drop records past their expiry (background, lock-free)
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from .config import Settings, settings as default_settings
from .did_manager import address_from_did
from .errors import (
    InvalidStateError,
    NonceAlreadyUsedError,
    NonceExpiredError,
    NonceNotFoundError,
    NonceRequestMismatchError,
    OwnershipMismatchError,
    RequestNotFoundError,
    ValidationError,
)
from .record_store import RecordStore
from .request_store import CredentialRequestStore, RequestStatus
from .utils import isoformat_z, parse_iso, random_hex, utc_now

logger = logging.getLogger(__name__)

NAMESPACE = "nonces"


def build_challenge_message(
    protocol_name: str,
    nonce: str,
    request_id: str,
    expires_at: str,
    holder_did: str
) -> str:
    """Canonical text the holder signs. Must stay byte-identical."""
    return (
        f"{protocol_name} DID Ownership Proof\n\n"
        f"Nonce: {nonce}\n"
        f"Request ID: {request_id}\n"
        f"Action: Prove DID Ownership\n"
        f"Expires: {expires_at}\n\n"
        f"Sign this message to verify you own: {holder_did}"
    )


@dataclass
class Challenge:
    nonce_id: str
    nonce: str
    request_id: str
    holder_did: str
    message_to_sign: str
    expires_at: str
    created_at: str
    used: bool = False
    used_at: Optional[str] = None
    signature: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return now > parse_iso(self.expires_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nonceId": self.nonce_id,
            "nonce": self.nonce,
            "requestId": self.request_id,
            "holderDID": self.holder_did,
            "messageToSign": self.message_to_sign,
            "expiresAt": self.expires_at,
            "createdAt": self.created_at,
            "used": self.used,
            "usedAt": self.used_at,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Challenge":
        return cls(
            nonce_id=data["nonceId"],
            nonce=data["nonce"],
            request_id=data["requestId"],
            holder_did=data["holderDID"],
            message_to_sign=data["messageToSign"],
            expires_at=data["expiresAt"],
            created_at=data["createdAt"],
            used=data.get("used", False),
            used_at=data.get("usedAt"),
            signature=data.get("signature"),
        )

    def to_response(self) -> Dict[str, str]:
        """The part of a challenge handed to the holder"""
        return {
            "nonceId": self.nonce_id,
            "nonce": self.nonce,
            "messageToSign": self.message_to_sign,
            "expiresAt": self.expires_at,
        }


class NonceLedger:
    """Issues, consumes and expires challenge nonces bound to requests"""

    def __init__(
        self,
        requests: CredentialRequestStore,
        record_store: Optional[RecordStore] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.requests = requests
        self.records = record_store or requests.records
        self.settings = settings or default_settings
        self.clock = clock

    def issue(self, request_id: str, holder_did: Optional[str] = None) -> Challenge:
        """
        Create a challenge for a pending request and make it authoritative

        Raises:
            RequestNotFoundError: unknown request
            InvalidStateError: request is not pending
            ValidationError: holder_did differs from the request's DID
        """
        with self.requests.lock(request_id):
            request = self.requests.get(request_id)
            if request.status != RequestStatus.PENDING:
                raise InvalidStateError(
                    f"Request is already {request.status.value}. Cannot create new challenge."
                )
            if holder_did and holder_did != request.holder_did:
                raise ValidationError("holderDID does not match the request", "HolderDIDMismatch")

            now = self.clock()
            expires_at = isoformat_z(now + timedelta(seconds=self.settings.NONCE_TTL_SECONDS))
            nonce = random_hex(self.settings.NONCE_BYTES)
            challenge = Challenge(
                nonce_id=str(uuid.uuid4()),
                nonce=nonce,
                request_id=request_id,
                holder_did=request.holder_did,
                message_to_sign=build_challenge_message(
                    self.settings.PROTOCOL_NAME, nonce, request_id, expires_at, request.holder_did
                ),
                expires_at=expires_at,
                created_at=isoformat_z(now),
            )
            self.records.put(NAMESPACE, challenge.nonce_id, challenge.to_dict())
            self.requests.attach_nonce(request_id, challenge.nonce_id)

        logger.info(
            "Challenge %s issued for request %s, expires %s",
            challenge.nonce_id, request_id, expires_at
        )
        return challenge

    def get(self, nonce_id: str) -> Challenge:
        record = self.records.get(NAMESPACE, nonce_id)
        if record is None:
            raise NonceNotFoundError(nonce_id)
        return Challenge.from_dict(record)

    def consume(
        self,
        nonce_id: str,
        request_id: str,
        signature: str,
        recovered_address: str
    ) -> Challenge:
        """
        Mark a nonce used, once

        Checks run in a fixed order and the first failure wins; nothing is
        written unless all of them pass.
        """
        with self.records.lock(NAMESPACE, nonce_id):
            record = self.records.get(NAMESPACE, nonce_id)
            if record is None:
                raise NonceNotFoundError(nonce_id)
            challenge = Challenge.from_dict(record)

            request = self.requests.find(request_id)
            if request is None:
                raise RequestNotFoundError(request_id)
            if challenge.request_id != request_id:
                raise NonceRequestMismatchError()

            now = self.clock()
            if challenge.is_expired(now):
                raise NonceExpiredError()
            if challenge.used:
                raise NonceAlreadyUsedError()

            expected = address_from_did(request.holder_did)
            if not recovered_address or expected.lower() != recovered_address.lower():
                logger.warning(
                    "Ownership mismatch on request %s: expected %s, got %s",
                    request_id, expected, recovered_address
                )
                raise OwnershipMismatchError()

            challenge.used = True
            challenge.used_at = isoformat_z(now)
            challenge.signature = signature
            self.records.put(NAMESPACE, nonce_id, challenge.to_dict())

        logger.info("Challenge %s consumed for request %s", nonce_id, request_id)
        return challenge

    def sweep_expired(self) -> int:
        """Delete challenges whose expiry has passed. Returns the count."""
        now = self.clock()
        removed = 0
        for record in self.records.values(NAMESPACE):
            if Challenge.from_dict(record).is_expired(now):
                if self.records.delete(NAMESPACE, record["nonceId"]):
                    removed += 1
        if removed:
            logger.info("Swept %d expired challenge(s)", removed)
        return removed

    def count(self) -> int:
        return len(self.records.values(NAMESPACE))


class NonceSweeper:
    """Runs ``ledger.sweep_expired`` on a fixed interval in a daemon thread"""

    def __init__(self, ledger: NonceLedger, interval: Optional[float] = None):
        self.ledger = ledger
        self.interval = interval if interval is not None else ledger.settings.SWEEP_INTERVAL_SECONDS
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="nonce-sweeper", daemon=True)
        self._thread.start()
        logger.info("Nonce sweeper started (every %ss)", self.interval)

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Nonce sweeper stopped")

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.ledger.sweep_expired()
            except Exception:
                logger.exception("Nonce sweep failed")
