"""
Nonce Ledger Tests
==================
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest
from eth_account import Account

from digilocker.config import Settings
from digilocker.errors import (
    InvalidStateError,
    NonceAlreadyUsedError,
    NonceExpiredError,
    NonceNotFoundError,
    NonceRequestMismatchError,
    OwnershipMismatchError,
    RequestNotFoundError,
    ValidationError,
)
from digilocker.nonce_ledger import NonceLedger, NonceSweeper, build_challenge_message
from digilocker.request_store import CredentialRequestStore, RequestStatus


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class TestChallengeMessage:
    def test_exact_template(self):
        message = build_challenge_message(
            "DigiLocker", "ab12", "req-1", "2024-05-01T12:05:00.000Z", "did:ethr:0xabc"
        )
        assert message == (
            "DigiLocker DID Ownership Proof\n\n"
            "Nonce: ab12\n"
            "Request ID: req-1\n"
            "Action: Prove DID Ownership\n"
            "Expires: 2024-05-01T12:05:00.000Z\n\n"
            "Sign this message to verify you own: did:ethr:0xabc"
        )


class TestNonceLedger:
    """Test NonceLedger functionality"""

    def setup_method(self):
        self.holder = Account.create()
        self.did = f"did:ethr:{self.holder.address}"
        self.clock = FakeClock()
        self.settings = Settings(NONCE_TTL_SECONDS=300)
        self.requests = CredentialRequestStore()
        self.ledger = NonceLedger(self.requests, settings=self.settings, clock=self.clock)
        self.request_id = self.requests.create(self.did, self.holder.address, "StudentID", "VER-1")

    def test_issue(self):
        challenge = self.ledger.issue(self.request_id)

        assert len(challenge.nonce) == 64
        assert challenge.expires_at == "2024-05-01T12:05:00.000Z"
        assert self.did in challenge.message_to_sign
        assert challenge.nonce in challenge.message_to_sign
        assert self.requests.get(self.request_id).nonce_id == challenge.nonce_id
        assert set(challenge.to_response()) == {"nonceId", "nonce", "messageToSign", "expiresAt"}

    def test_nonces_are_unique(self):
        first = self.ledger.issue(self.request_id)
        second = self.ledger.issue(self.request_id)

        assert first.nonce != second.nonce
        assert self.requests.get(self.request_id).nonce_id == second.nonce_id

    def test_issue_requires_pending(self):
        self.requests.transition(self.request_id, RequestStatus.VERIFIED)
        with pytest.raises(InvalidStateError):
            self.ledger.issue(self.request_id)

    def test_issue_unknown_request(self):
        with pytest.raises(RequestNotFoundError):
            self.ledger.issue("missing")

    def test_issue_checks_holder_did(self):
        with pytest.raises(ValidationError):
            self.ledger.issue(self.request_id, holder_did="did:ethr:0x0000000000000000000000000000000000000001")

    def test_consume_once(self):
        challenge = self.ledger.issue(self.request_id)
        used = self.ledger.consume(challenge.nonce_id, self.request_id, "0xsig", self.holder.address)

        assert used.used
        assert used.used_at == "2024-05-01T12:00:00.000Z"
        with pytest.raises(NonceAlreadyUsedError):
            self.ledger.consume(challenge.nonce_id, self.request_id, "0xsig", self.holder.address)

    def test_consume_expired(self):
        challenge = self.ledger.issue(self.request_id)
        self.clock.advance(301)

        with pytest.raises(NonceExpiredError):
            self.ledger.consume(challenge.nonce_id, self.request_id, "0xsig", self.holder.address)
        assert not self.ledger.get(challenge.nonce_id).used

    def test_consume_at_expiry_instant_is_allowed(self):
        challenge = self.ledger.issue(self.request_id)
        self.clock.advance(300)
        assert self.ledger.consume(challenge.nonce_id, self.request_id, "s", self.holder.address).used

    def test_consume_wrong_request(self):
        other = self.requests.create(self.did, self.holder.address, "StudentID", "VER-2")
        challenge = self.ledger.issue(self.request_id)

        with pytest.raises(NonceRequestMismatchError):
            self.ledger.consume(challenge.nonce_id, other, "s", self.holder.address)

    def test_consume_wrong_signer_leaves_nonce_unused(self):
        challenge = self.ledger.issue(self.request_id)
        stranger = Account.create()

        with pytest.raises(OwnershipMismatchError):
            self.ledger.consume(challenge.nonce_id, self.request_id, "s", stranger.address)
        assert not self.ledger.get(challenge.nonce_id).used

    def test_consume_unknown_nonce(self):
        with pytest.raises(NonceNotFoundError):
            self.ledger.consume("missing", self.request_id, "s", self.holder.address)

    def test_concurrent_consume_has_one_winner(self):
        challenge = self.ledger.issue(self.request_id)
        results = []

        def attempt():
            try:
                self.ledger.consume(challenge.nonce_id, self.request_id, "s", self.holder.address)
                results.append("ok")
            except NonceAlreadyUsedError:
                results.append("used")

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count("ok") == 1
        assert results.count("used") == 7

    def test_sweep_removes_only_expired(self):
        old = self.ledger.issue(self.request_id)
        self.clock.advance(200)
        fresh = self.ledger.issue(self.request_id)
        self.clock.advance(150)

        assert self.ledger.sweep_expired() == 1
        with pytest.raises(NonceNotFoundError):
            self.ledger.get(old.nonce_id)
        assert self.ledger.get(fresh.nonce_id)
        assert self.ledger.count() == 1

    def test_sweep_leaves_no_record_locks(self):
        for _ in range(20):
            self.ledger.issue(self.request_id)
        self.clock.advance(301)

        assert self.ledger.sweep_expired() == 20
        assert self.ledger.records._locks == {}


class TestNonceSweeper:
    def test_start_stop(self):
        requests = CredentialRequestStore()
        sweeper = NonceSweeper(NonceLedger(requests, settings=Settings()), interval=0.01)

        sweeper.start()
        assert sweeper.running
        sweeper.stop()
        assert not sweeper.running
