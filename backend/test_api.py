"""
API Tests
=========

Routes exercised through FastAPI's TestClient with real holder wallets.
"""

import base64

from eth_account import Account
from eth_account.messages import encode_defunct
from fastapi.testclient import TestClient

from backend.api import app


STUDENT = {
    "name": "Alice",
    "rollNumber": "21CS001",
    "dateOfBirth": "2003-04-12",
    "department": "CSE",
}


def personal_sign(account, message: str) -> str:
    signed = Account.sign_message(encode_defunct(text=message), private_key=account.key)
    return "0x" + bytes(signed.signature).hex()


class TestCredentialAPI:
    """Holder, issuer and verifier routes"""

    def setup_method(self):
        self._client = TestClient(app)
        self.client = self._client.__enter__()
        self.holder = Account.create()
        self.did = f"did:ethr:{self.holder.address}"

    def teardown_method(self):
        self._client.__exit__(None, None, None)

    def _create_request(self, credential_type="Student ID"):
        response = self.client.post("/holder/requestCredential", json={
            "holderDID": self.did,
            "holderAddress": self.holder.address,
            "credentialType": credential_type,
            "verificationId": "VER-1",
            "holderName": "Alice",
        })
        assert response.status_code == 200
        return response.json()["requestId"]

    def _verify_ownership(self, request_id):
        challenge = self.client.post("/challenge/request", json={"requestId": request_id}).json()
        return self.client.post("/challenge/verify", json={
            "requestId": request_id,
            "nonceId": challenge["nonceId"],
            "signature": personal_sign(self.holder, challenge["messageToSign"]),
        })

    def _issue(self, request_id, document=b"student card scan"):
        return self.client.post("/issueVC", json={
            "requestId": request_id,
            "subject": STUDENT,
            "document": base64.b64encode(document).decode(),
        })

    def test_did_info(self):
        data = self.client.get("/api/did/info").json()

        assert data["available"]
        assert data["issuer_did"].startswith("did:ethr:0x")
        assert data["document"]["service"]

    def test_request_and_verify_ownership(self):
        request_id = self._create_request()
        response = self._verify_ownership(request_id)

        assert response.status_code == 200
        assert response.json()["status"] == "verified"

        verified = self.client.get("/issuer/verifiedRequests").json()["requests"]
        assert request_id in [r["requestId"] for r in verified]
        mine = self.client.get(f"/holder/myRequests/{self.holder.address}").json()["requests"]
        assert mine[0]["holderDID"] == self.did

    def test_wrong_signer_is_forbidden(self):
        request_id = self._create_request()
        challenge = self.client.post("/challenge/request", json={"requestId": request_id}).json()
        response = self.client.post("/challenge/verify", json={
            "requestId": request_id,
            "nonceId": challenge["nonceId"],
            "signature": personal_sign(Account.create(), challenge["messageToSign"]),
        })

        assert response.status_code == 403
        assert response.json()["error"] == "OwnershipMismatch"

    def test_replayed_nonce_conflicts(self):
        request_id = self._create_request()
        challenge = self.client.post("/challenge/request", json={"requestId": request_id}).json()
        body = {
            "requestId": request_id,
            "nonceId": challenge["nonceId"],
            "signature": personal_sign(self.holder, challenge["messageToSign"]),
        }
        assert self.client.post("/challenge/verify", json=body).status_code == 200

        response = self.client.post("/challenge/verify", json=body)
        assert response.status_code == 409

    def test_missing_fields_are_bad_requests(self):
        response = self.client.post("/holder/requestCredential", json={
            "holderDID": self.did,
            "holderAddress": self.holder.address,
            "credentialType": "StudentID",
            "verificationId": "",
        })
        assert response.status_code == 400
        assert response.json()["error"] == "MissingRequiredField"

    def test_unknown_request_is_not_found(self):
        response = self.client.post("/challenge/request", json={"requestId": "missing"})
        assert response.status_code == 404

    def test_issue_disclose_verify_revoke(self):
        request_id = self._create_request()
        self._verify_ownership(request_id)

        issued = self._issue(request_id)
        assert issued.status_code == 200
        issued = issued.json()
        assert issued["signatureType"] == "BbsBlsSignature2020"
        assert issued["anchored"]

        public_key = self.client.get("/bbs-public-key").json()["publicKey"]
        vc = self.client.get(f"/vc/{issued['vcRef']}").json()["vc"]
        assert vc["credentialSubject"]["name"] == "Alice"

        proof = self.client.post("/generateProof", json={
            "vcRef": issued["vcRef"], "disclosedFields": ["name"]
        }).json()
        assert proof["disclosedFields"] == ["name", "documentHash"]

        checked = self.client.post("/verifyProof", json={
            "presentationRef": proof["presentationRef"], "publicKey": public_key
        }).json()
        assert checked["verified"]
        assert "rollNumber" not in checked["disclosedData"]

        result = self.client.post("/verifyVC", json={
            "ref": issued["vcRef"], "publicKey": public_key
        }).json()
        assert result["verified"]

        by_hash = self.client.post("/verifyVC", json={"documentHash": issued["documentHash"]}).json()
        assert by_hash["verified"]

        revoked = self.client.post("/revokeVC", json={"documentHash": issued["documentHash"]})
        assert revoked.json()["ledger"]["revoked"]
        after = self.client.post("/verifyVC", json={"ref": issued["vcRef"]}).json()
        assert not after["verified"]
        assert after["status"] == "revoked"

    def test_issue_needs_verified_request(self):
        request_id = self._create_request()
        response = self._issue(request_id)

        assert response.status_code == 409

    def test_issue_rejects_bad_document(self):
        response = self.client.post("/issueVC", json={
            "credentialType": "StudentID", "subject": STUDENT, "document": "%%%"
        })
        assert response.status_code == 400

    def test_reject_flow(self):
        request_id = self._create_request()
        self._verify_ownership(request_id)

        assert self.client.post("/issuer/rejectRequest", json={
            "requestId": request_id
        }).status_code == 400
        response = self.client.post("/issuer/rejectRequest", json={
            "requestId": request_id, "reason": "Blurry scan"
        })
        assert response.json()["request"]["status"] == "rejected"

        counts = self.client.get("/issuer/allRequests").json()["counts"]
        assert counts["rejected"] >= 1

    def test_holder_delete_checks_owner(self):
        request_id = self._create_request()
        stranger = Account.create().address

        response = self.client.delete(f"/holder/request/{request_id}", params={"address": stranger})
        assert response.status_code == 403

        response = self.client.delete(
            f"/holder/request/{request_id}", params={"address": self.holder.address}
        )
        assert response.status_code == 200
        assert self.client.delete(f"/issuer/request/{request_id}").status_code == 404

    def test_holder_wallet_routes(self):
        request_id = self._create_request()
        self._verify_ownership(request_id)
        vc_ref = self._issue(request_id, b"wallet scan").json()["vcRef"]

        vcs = self.client.get(f"/holder/vcs/{self.holder.address}").json()
        assert vcs["count"] == 1
        stats = self.client.get(f"/holder/stats/{self.holder.address}").json()
        assert stats["total"] == 1

        response = self.client.delete(f"/holder/vc/{vc_ref}", params={"address": self.holder.address})
        assert response.status_code == 200
        assert self.client.get(f"/holder/vcs/{self.holder.address}").json()["count"] == 0

    def test_resolve_holder_did(self):
        data = self.client.get(f"/api/did/resolve/{self.did}").json()
        assert data["document"]["authentication"] == [f"{self.did}#controller"]
