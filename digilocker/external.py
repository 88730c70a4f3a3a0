"""
External collaborators - content-addressed blob store and anchoring ledger
==========================================================================

The credential pipeline only depends on the two abstract interfaces below.
In-memory implementations back tests and local runs; production wiring
swaps in IPFS / smart-contract clients with the same shape.

All calls made by the pipeline go through ``call_with_timeout`` so a hung
dependency surfaces as an ``ExternalServiceError`` instead of blocking.
"""

import hashlib
import json
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional, Type

from .errors import BlobStoreError, CredentialNotFoundError, ExternalServiceError, LedgerError
from .utils import isoformat_z, utc_now

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="digilocker-external")


def call_with_timeout(
    fn: Callable,
    *args,
    timeout: float,
    error_cls: Type[ExternalServiceError] = ExternalServiceError,
    operation: str = "external call"
):
    """
    Run ``fn(*args)`` with a deadline

    NotFound errors pass through untouched; everything else is wrapped in
    ``error_cls`` so callers can tell a dependency failure from bad input.
    """
    future = _executor.submit(fn, *args)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        raise error_cls(f"{operation} timed out after {timeout}s")
    except (CredentialNotFoundError, ExternalServiceError):
        raise
    except Exception as e:
        raise error_cls(f"{operation} failed: {e}")


# ==================== BLOB STORE ====================

class BlobStore(ABC):
    """put(bytes) -> ref / get(ref) -> bytes"""

    @abstractmethod
    def put(self, data: bytes, name: Optional[str] = None) -> str:
        ...

    @abstractmethod
    def get(self, ref: str) -> bytes:
        ...

    def put_json(self, document: Dict[str, Any], name: Optional[str] = None) -> str:
        return self.put(json.dumps(document, separators=(",", ":")).encode("utf-8"), name)

    def get_json(self, ref: str) -> Dict[str, Any]:
        data = self.get(ref)
        try:
            document = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise BlobStoreError(f"Object {ref} is not a JSON document: {e}")
        if not isinstance(document, dict):
            raise BlobStoreError(f"Object {ref} is not a JSON object")
        return document


class InMemoryBlobStore(BlobStore):
    """Content-addressed store keyed by sha256 of the payload."""

    def __init__(self):
        self._objects: Dict[str, bytes] = {}
        self._names: Dict[str, str] = {}
        self._lock = threading.Lock()

    def put(self, data: bytes, name: Optional[str] = None) -> str:
        ref = "sha256-" + hashlib.sha256(data).hexdigest()
        with self._lock:
            self._objects[ref] = bytes(data)
            if name:
                self._names[ref] = name
        return ref

    def get(self, ref: str) -> bytes:
        with self._lock:
            data = self._objects.get(ref)
        if data is None:
            raise CredentialNotFoundError(ref)
        return data

    def __len__(self) -> int:
        return len(self._objects)


# ==================== LEDGER ====================

@dataclass
class LedgerEntry:
    """Result of looking a hash up on the ledger"""
    exists: bool
    revoked: bool = False
    ref: Optional[str] = None
    issuer: Optional[str] = None
    timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AnchorReceipt:
    """Proof that a hash was anchored"""
    integrity_hash: str
    ref: str
    anchor_id: str
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "integrityHash": self.integrity_hash,
            "ref": self.ref,
            "anchorId": self.anchor_id,
            "timestamp": self.timestamp
        }


class Ledger(ABC):
    """anchor(hash, ref) / lookup(hash) / revoke(hash)"""

    @abstractmethod
    def anchor(self, integrity_hash: str, ref: str) -> AnchorReceipt:
        ...

    @abstractmethod
    def lookup(self, integrity_hash: str) -> LedgerEntry:
        ...

    @abstractmethod
    def revoke(self, integrity_hash: str) -> LedgerEntry:
        ...


class InMemoryLedger(Ledger):
    """Append-only registry mirroring the VCRegistry contract semantics."""

    def __init__(self, issuer: Optional[str] = None):
        self.issuer = issuer
        self._entries: Dict[str, LedgerEntry] = {}
        self._lock = threading.Lock()

    def anchor(self, integrity_hash: str, ref: str) -> AnchorReceipt:
        with self._lock:
            existing = self._entries.get(integrity_hash)
            if existing is not None:
                raise LedgerError(f"Hash already anchored: {integrity_hash}")
            timestamp = isoformat_z(utc_now())
            self._entries[integrity_hash] = LedgerEntry(
                exists=True, revoked=False, ref=ref, issuer=self.issuer, timestamp=timestamp
            )
            anchor_id = str(len(self._entries))
        logger.info("Anchored hash %s... -> %s", integrity_hash[:16], ref)
        return AnchorReceipt(integrity_hash=integrity_hash, ref=ref, anchor_id=anchor_id, timestamp=timestamp)

    def lookup(self, integrity_hash: str) -> LedgerEntry:
        with self._lock:
            entry = self._entries.get(integrity_hash)
            if entry is None:
                return LedgerEntry(exists=False)
            return LedgerEntry(**asdict(entry))

    def revoke(self, integrity_hash: str) -> LedgerEntry:
        with self._lock:
            entry = self._entries.get(integrity_hash)
            if entry is None:
                raise CredentialNotFoundError(integrity_hash)
            entry.revoked = True
            return LedgerEntry(**asdict(entry))
