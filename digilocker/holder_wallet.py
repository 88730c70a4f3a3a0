"""Per-holder index of issued credentials (references and summaries only)."""

import logging
from typing import Any, Dict, List, Mapping

from .errors import CredentialNotFoundError
from .record_store import RecordStore
from .utils import isoformat_z, utc_now

logger = logging.getLogger(__name__)

NAMESPACE = "wallet"

# Storage-internal, kept out of summaries
_SUMMARY_EXCLUDE = ("documentRef",)


def _key(holder_address: str, vc_ref: str) -> str:
    return f"{holder_address.lower()}:{vc_ref}"


class HolderWallet:
    def __init__(self, record_store: RecordStore):
        self.records = record_store

    def store(self, holder_address: str, vc_ref: str, credential: Mapping[str, Any]) -> Dict[str, Any]:
        issuer = credential.get("issuer")
        types = credential.get("type") or []
        subject = credential.get("credentialSubject") or {}
        entry = {
            "holderAddress": holder_address,
            "vcRef": vc_ref,
            "issuerDID": issuer.get("id") if isinstance(issuer, Mapping) else issuer,
            "issuanceDate": credential.get("issuanceDate"),
            "credentialType": types[1] if len(types) > 1 else "VerifiableCredential",
            "credentialSubject": {
                k: v for k, v in subject.items() if k not in _SUMMARY_EXCLUDE
            },
            "storedAt": isoformat_z(utc_now()),
        }
        self.records.put(NAMESPACE, _key(holder_address, vc_ref), entry)
        logger.info("Stored credential %s for holder %s", vc_ref, holder_address)
        return entry

    def list(self, holder_address: str) -> List[Dict[str, Any]]:
        wanted = holder_address.lower()
        return [
            entry for entry in self.records.values(NAMESPACE)
            if entry["holderAddress"].lower() == wanted
        ]

    def remove(self, holder_address: str, vc_ref: str) -> None:
        if not self.records.delete(NAMESPACE, _key(holder_address, vc_ref)):
            raise CredentialNotFoundError(vc_ref)

    def stats(self, holder_address: str) -> Dict[str, Any]:
        entries = self.list(holder_address)
        by_type: Dict[str, int] = {}
        for entry in entries:
            by_type[entry["credentialType"]] = by_type.get(entry["credentialType"], 0) + 1
        return {
            "holderAddress": holder_address,
            "total": len(entries),
            "byType": by_type,
            "latest": max((e["storedAt"] for e in entries), default=None),
        }
