"""
Ownership Challenge Protocol
============================

    pending --request_challenge--> pending (nonce attached)
            --verify_challenge---> verified

A holder proves control of ``did:ethr:<address>`` by personal_sign-ing the
challenge message with that address. Every failure leaves the request
pending, so the holder can ask for a fresh challenge and retry.
"""

import logging
from typing import Optional

from .errors import MissingRequiredFieldError, NonceSupersededError
from .key_manager import KeyManager
from .nonce_ledger import Challenge, NonceLedger
from .request_store import CredentialRequest, CredentialRequestStore, RequestStatus
from .utils import isoformat_z, utc_now

logger = logging.getLogger(__name__)


class OwnershipChallengeProtocol:
    """Drives a request from pending to verified through a signed nonce"""

    def __init__(
        self,
        requests: CredentialRequestStore,
        nonces: NonceLedger,
        key_manager: Optional[KeyManager] = None
    ):
        self.requests = requests
        self.nonces = nonces
        self.key_manager = key_manager or KeyManager()

    def request_challenge(self, request_id: str, holder_did: Optional[str] = None) -> Challenge:
        """Issue a challenge; any earlier outstanding nonce stops being authoritative."""
        if not request_id:
            raise MissingRequiredFieldError(["requestId"])
        return self.nonces.issue(request_id, holder_did)

    def verify_challenge(self, request_id: str, nonce_id: str, signature: str) -> CredentialRequest:
        """
        Check the holder's signature over the challenge and mark the request verified

        Args:
            request_id: request being verified
            nonce_id: challenge the holder signed
            signature: hex EIP-191 signature, with or without 0x

        Returns:
            The verified CredentialRequest

        Raises:
            MissingRequiredFieldError, RequestNotFoundError, NonceNotFoundError,
            InvalidSignatureError, NonceSupersededError, plus every
            NonceLedger.consume failure
        """
        missing = [
            name for name, value in (
                ("requestId", request_id), ("nonceId", nonce_id), ("signature", signature)
            ) if not value
        ]
        if missing:
            raise MissingRequiredFieldError(missing)

        with self.requests.lock(request_id):
            request = self.requests.get(request_id)
            challenge = self.nonces.get(nonce_id)

            recovered = self.key_manager.recover_address(challenge.message_to_sign, signature)

            if (
                challenge.request_id == request_id
                and request.status == RequestStatus.PENDING
                and request.nonce_id != nonce_id
            ):
                raise NonceSupersededError()

            self.nonces.consume(nonce_id, request_id, signature, recovered)

            verified = self.requests.transition(request_id, RequestStatus.VERIFIED, {
                "verified_at": isoformat_z(utc_now()),
                "signature": signature,
                "recovered_address": recovered,
            })

        logger.info("DID ownership verified for request %s (%s)", request_id, verified.holder_did)
        return verified
