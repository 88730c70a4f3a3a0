"""
BBS Signatures over BLS12-381
=============================

Multi-message signatures with selective-disclosure proofs, following the
structure of the IRTF CFRG BBS draft (signature = (A, e), proof = (Abar,
Bbar, D, e^, r1^, r3^, m^_j..., c)). Curve arithmetic and pairings come
from py_ecc.

Encodings:
- secret key: 32-byte big-endian scalar
- public key: 96-byte compressed G2 point
- signature: 48-byte compressed G1 point || 32-byte scalar (80 bytes)
- proof: 3 compressed G1 points || (4 + undisclosed) scalars

Generators are derived by try-and-increment hashing followed by cofactor
clearing, so nobody knows their discrete logs.
"""

import hashlib
import secrets
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, List, Optional, Sequence, Tuple

from py_ecc.bls.g2_primitives import G1_to_pubkey, G2_to_signature, pubkey_to_G1, signature_to_G2
from py_ecc.optimized_bls12_381 import (
    FQ,
    FQ12,
    G1,
    G2,
    add,
    curve_order,
    field_modulus,
    final_exponentiate,
    is_inf,
    multiply,
    neg,
    pairing,
)

# Project suite: SHA-512 expansion, try-and-increment to G1. Not a draft ciphersuite.
API_ID = b"DIGILOCKER_BBS_BLS12381G1_SHA-512_TAI_"
KEYGEN_DST = API_ID + b"KEYGEN_DST_"
GENERATOR_DST = API_ID + b"SIG_GENERATOR_DST_"
MAP_MSG_DST = API_ID + b"MAP_MSG_TO_SCALAR_AS_HASH_"
DOMAIN_DST = API_ID + b"H2S_DOMAIN_"
SIGN_DST = API_ID + b"H2S_SIGN_"
CHALLENGE_DST = API_ID + b"H2S_CHALLENGE_"

POINT_LEN = 48
G2_POINT_LEN = 96
SCALAR_LEN = 32
SIGNATURE_LEN = POINT_LEN + SCALAR_LEN

# BLS12-381 curve parameter; G1 cofactor is (x - 1)^2 / 3
_BLS_X = -0xd201000000010000
_G1_COFACTOR = (_BLS_X - 1) ** 2 // 3


class BbsError(Exception):
    """Invalid key, signature, proof or message set."""


@dataclass(frozen=True)
class BbsKeyPair:
    secret_key: bytes
    public_key: bytes


# ==================== HASHING ====================

def hash_to_scalar(data: bytes, dst: bytes) -> int:
    """Hash arbitrary bytes to a non-zero scalar mod r"""
    counter = 0
    while True:
        digest = hashlib.sha512(
            dst + len(dst).to_bytes(1, "big") + counter.to_bytes(1, "big") + data
        ).digest()
        scalar = int.from_bytes(digest, "big") % curve_order
        if scalar != 0:
            return scalar
        counter += 1


def hash_to_g1(data: bytes, dst: bytes):
    """Try-and-increment hash onto the prime-order subgroup of G1"""
    counter = 0
    while True:
        digest = hashlib.sha512(
            dst + len(dst).to_bytes(1, "big") + counter.to_bytes(4, "big") + data
        ).digest()
        x = int.from_bytes(digest, "big") % field_modulus
        y2 = (pow(x, 3, field_modulus) + 4) % field_modulus
        # p = 3 mod 4, so a square root is a single exponentiation
        y = pow(y2, (field_modulus + 1) // 4, field_modulus)
        if (y * y) % field_modulus == y2:
            point = multiply((FQ(x), FQ(y), FQ(1)), _G1_COFACTOR)
            if not is_inf(point):
                return point
        counter += 1


@lru_cache(maxsize=None)
def _generator(index: int):
    return hash_to_g1(index.to_bytes(8, "big"), GENERATOR_DST)


def create_generators(count: int) -> Tuple:
    return tuple(_generator(i) for i in range(count))


def messages_to_scalars(messages: Sequence[bytes]) -> List[int]:
    return [hash_to_scalar(bytes(m), MAP_MSG_DST) for m in messages]


# ==================== ENCODING ====================

def _g1_bytes(point) -> bytes:
    return bytes(G1_to_pubkey(point))


def _scalar_bytes(scalar: int) -> bytes:
    return scalar.to_bytes(SCALAR_LEN, "big")


def _decode_g1(data: bytes):
    if len(data) != POINT_LEN:
        raise BbsError(f"G1 point must be {POINT_LEN} bytes")
    try:
        point = pubkey_to_G1(data)
    except (ValueError, AssertionError) as e:
        raise BbsError(f"Invalid G1 point: {e}")
    if not is_inf(multiply(point, curve_order)):
        raise BbsError("G1 point outside the prime-order subgroup")
    return point


def _decode_g2(data: bytes):
    if len(data) != G2_POINT_LEN:
        raise BbsError(f"Public key must be {G2_POINT_LEN} bytes")
    try:
        point = signature_to_G2(data)
    except (ValueError, AssertionError) as e:
        raise BbsError(f"Invalid public key: {e}")
    if is_inf(point) or not is_inf(multiply(point, curve_order)):
        raise BbsError("Public key outside the prime-order subgroup")
    return point


def _decode_scalar(data: bytes) -> int:
    scalar = int.from_bytes(data, "big")
    if scalar >= curve_order:
        raise BbsError("Scalar out of range")
    return scalar


def _decode_signature(signature: bytes) -> Tuple[object, int]:
    if len(signature) != SIGNATURE_LEN:
        raise BbsError(f"Signature must be {SIGNATURE_LEN} bytes")
    A = _decode_g1(signature[:POINT_LEN])
    if is_inf(A):
        raise BbsError("Signature point is the identity")
    e = _decode_scalar(signature[POINT_LEN:])
    return A, e


def _random_scalar() -> int:
    return secrets.randbelow(curve_order - 1) + 1


# ==================== CORE ====================

def _calculate_domain(public_key: bytes, q1, h_points: Sequence, header: bytes) -> int:
    parts = [public_key, len(h_points).to_bytes(8, "big"), _g1_bytes(q1)]
    parts.extend(_g1_bytes(h) for h in h_points)
    parts.append(len(header).to_bytes(8, "big"))
    parts.append(header)
    return hash_to_scalar(b"".join(parts), DOMAIN_DST)


def _compute_b(domain: int, q1, terms: Sequence[Tuple[object, int]]):
    B = add(G1, multiply(q1, domain))
    for h, m in terms:
        B = add(B, multiply(h, m))
    return B


def _pairing_product_is_one(pairs: Sequence[Tuple[object, object]]) -> bool:
    acc = FQ12.one()
    for q, p in pairs:
        acc = acc * pairing(q, p, final_exponentiate=False)
    return final_exponentiate(acc) == FQ12.one()


def _calculate_challenge(
    Abar, Bbar, D, T1, T2,
    disclosed: Sequence[Tuple[int, int]],
    domain: int,
    presentation_header: bytes
) -> int:
    parts = [_g1_bytes(p) for p in (Abar, Bbar, D, T1, T2)]
    parts.append(len(disclosed).to_bytes(8, "big"))
    for index, scalar in disclosed:
        parts.append(index.to_bytes(8, "big"))
        parts.append(_scalar_bytes(scalar))
    parts.append(_scalar_bytes(domain))
    parts.append(len(presentation_header).to_bytes(8, "big"))
    parts.append(presentation_header)
    return hash_to_scalar(b"".join(parts), CHALLENGE_DST)


def secret_to_public_key(secret_key: bytes) -> bytes:
    sk = _decode_scalar(secret_key)
    if sk == 0:
        raise BbsError("Secret key must be non-zero")
    return bytes(G2_to_signature(multiply(G2, sk)))


def generate_keypair(seed: Optional[bytes] = None) -> BbsKeyPair:
    """Generate a key pair, deterministically when a seed is given"""
    if seed is None:
        seed = secrets.token_bytes(32)
    if len(seed) < 32:
        raise BbsError("Key seed must be at least 32 bytes")
    sk = hash_to_scalar(seed, KEYGEN_DST)
    secret_key = _scalar_bytes(sk)
    return BbsKeyPair(secret_key=secret_key, public_key=secret_to_public_key(secret_key))


def sign(secret_key: bytes, public_key: bytes, messages: Sequence[bytes], header: bytes = b"") -> bytes:
    if not messages:
        raise BbsError("At least one message is required")
    sk = _decode_scalar(secret_key)
    if sk == 0:
        raise BbsError("Secret key must be non-zero")
    if secret_to_public_key(secret_key) != bytes(public_key):
        raise BbsError("Public key does not belong to the secret key")

    scalars = messages_to_scalars(messages)
    generators = create_generators(len(scalars) + 1)
    q1, h_points = generators[0], generators[1:]
    domain = _calculate_domain(public_key, q1, h_points, header)

    e = hash_to_scalar(
        b"".join(_scalar_bytes(s) for s in [sk, domain] + scalars), SIGN_DST
    )
    B = _compute_b(domain, q1, list(zip(h_points, scalars)))
    denominator = (sk + e) % curve_order
    if denominator == 0:
        raise BbsError("Degenerate signature")
    A = multiply(B, pow(denominator, -1, curve_order))
    return _g1_bytes(A) + _scalar_bytes(e)


def verify(public_key: bytes, signature: bytes, messages: Sequence[bytes], header: bytes = b"") -> bool:
    try:
        W = _decode_g2(bytes(public_key))
        A, e = _decode_signature(bytes(signature))
    except BbsError:
        return False
    if not messages:
        return False

    scalars = messages_to_scalars(messages)
    generators = create_generators(len(scalars) + 1)
    q1, h_points = generators[0], generators[1:]
    domain = _calculate_domain(bytes(public_key), q1, h_points, header)
    B = _compute_b(domain, q1, list(zip(h_points, scalars)))

    # e(A, W + e*P2) == e(B, P2)
    return _pairing_product_is_one([
        (add(W, multiply(G2, e)), A),
        (G2, neg(B)),
    ])


# ==================== SELECTIVE DISCLOSURE ====================

def _normalize_indexes(indexes: Sequence[int], total: int) -> List[int]:
    disclosed = sorted(set(int(i) for i in indexes))
    for i in disclosed:
        if i < 0 or i >= total:
            raise BbsError(f"Disclosed index {i} out of range for {total} messages")
    return disclosed


def proof_gen(
    public_key: bytes,
    signature: bytes,
    messages: Sequence[bytes],
    disclosed_indexes: Sequence[int],
    header: bytes = b"",
    presentation_header: bytes = b""
) -> bytes:
    """Derive a proof revealing only ``disclosed_indexes`` of ``messages``"""
    if not messages:
        raise BbsError("At least one message is required")
    _decode_g2(bytes(public_key))
    A, e = _decode_signature(bytes(signature))

    total = len(messages)
    disclosed = _normalize_indexes(disclosed_indexes, total)
    disclosed_set = set(disclosed)
    undisclosed = [i for i in range(total) if i not in disclosed_set]

    scalars = messages_to_scalars(messages)
    generators = create_generators(total + 1)
    q1, h_points = generators[0], generators[1:]
    domain = _calculate_domain(bytes(public_key), q1, h_points, header)

    r1, r2, e_tilde, r1_tilde, r3_tilde = (_random_scalar() for _ in range(5))
    m_tilde = [_random_scalar() for _ in undisclosed]

    B = _compute_b(domain, q1, list(zip(h_points, scalars)))
    D = multiply(B, r2)
    Abar = multiply(A, (r1 * r2) % curve_order)
    Bbar = add(multiply(D, r1), neg(multiply(Abar, e)))

    T1 = add(multiply(Abar, e_tilde), multiply(D, r1_tilde))
    T2 = multiply(D, r3_tilde)
    for j, mt in zip(undisclosed, m_tilde):
        T2 = add(T2, multiply(h_points[j], mt))

    c = _calculate_challenge(
        Abar, Bbar, D, T1, T2,
        [(i, scalars[i]) for i in disclosed],
        domain, presentation_header
    )

    r3 = pow(r2, -1, curve_order)
    e_hat = (e_tilde + e * c) % curve_order
    r1_hat = (r1_tilde - r1 * c) % curve_order
    r3_hat = (r3_tilde - r3 * c) % curve_order
    m_hat = [(mt + scalars[j] * c) % curve_order for j, mt in zip(undisclosed, m_tilde)]

    return b"".join(
        [_g1_bytes(Abar), _g1_bytes(Bbar), _g1_bytes(D)]
        + [_scalar_bytes(s) for s in [e_hat, r1_hat, r3_hat] + m_hat + [c]]
    )


def proof_verify(
    public_key: bytes,
    proof: bytes,
    total_messages: int,
    disclosed_messages: Dict[int, bytes],
    header: bytes = b"",
    presentation_header: bytes = b""
) -> bool:
    """Check a derived proof against the disclosed ``{index: message}`` map"""
    try:
        W = _decode_g2(bytes(public_key))
        disclosed = _normalize_indexes(list(disclosed_messages.keys()), total_messages)
    except BbsError:
        return False

    disclosed_set = set(disclosed)
    undisclosed = [i for i in range(total_messages) if i not in disclosed_set]
    expected_len = 3 * POINT_LEN + SCALAR_LEN * (4 + len(undisclosed))
    proof = bytes(proof)
    if len(proof) != expected_len:
        return False

    try:
        Abar = _decode_g1(proof[0:POINT_LEN])
        Bbar = _decode_g1(proof[POINT_LEN:2 * POINT_LEN])
        D = _decode_g1(proof[2 * POINT_LEN:3 * POINT_LEN])
        offset = 3 * POINT_LEN
        scalars = [
            _decode_scalar(proof[offset + k * SCALAR_LEN:offset + (k + 1) * SCALAR_LEN])
            for k in range(4 + len(undisclosed))
        ]
    except BbsError:
        return False
    if is_inf(Abar):
        return False

    e_hat, r1_hat, r3_hat = scalars[0], scalars[1], scalars[2]
    m_hat = scalars[3:-1]
    c = scalars[-1]

    generators = create_generators(total_messages + 1)
    q1, h_points = generators[0], generators[1:]
    domain = _calculate_domain(bytes(public_key), q1, h_points, header)

    disclosed_scalars = dict(zip(
        disclosed, messages_to_scalars([disclosed_messages[i] for i in disclosed])
    ))

    T1 = add(add(multiply(Bbar, c), multiply(Abar, e_hat)), multiply(D, r1_hat))
    Bv = _compute_b(domain, q1, [(h_points[i], disclosed_scalars[i]) for i in disclosed])
    T2 = add(multiply(Bv, c), multiply(D, r3_hat))
    for j, mh in zip(undisclosed, m_hat):
        T2 = add(T2, multiply(h_points[j], mh))

    expected = _calculate_challenge(
        Abar, Bbar, D, T1, T2,
        [(i, disclosed_scalars[i]) for i in disclosed],
        domain, presentation_header
    )
    if expected != c:
        return False

    # e(Abar, W) == e(Bbar, P2)
    return _pairing_product_is_one([(W, Abar), (G2, neg(Bbar))])
