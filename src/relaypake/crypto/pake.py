from __future__ import annotations
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Tuple, Union

from relaypake.crypto.primitives import hkdf_sha256, hmac_sha256, safe_compare, sha256, stretch
from relaypake.crypto.sealed import decrypt_item, encrypt_item
from relaypake.protocol.constants import PROTO_NAME, PROTO_VER
from relaypake.protocol.errors import DecryptError, PakeRejected
from relaypake.protocol.shapes import (
    ClientAuthData, ClientAuthResult, ClientState, CredentialEnvelope,
    ServerAuthData, ServerFinal,
)

CTX = f"{PROTO_NAME}|v{PROTO_VER}"


class PakeCode(IntEnum):
    BAD_MESSAGE = 1
    BAD_ENVELOPE = 2
    BAD_CREDENTIALS = 3
    BAD_SERVER_PROOF = 4
    BAD_CLIENT_PROOF = 5


@dataclass(frozen=True)
class ClientSecret:
    token: str
    client_auth_result: ClientAuthResult


@dataclass(frozen=True)
class PakeErrorCode:
    code: int


ClientOutcome = Union[ClientSecret, PakeErrorCode]


def require_spake2():
    try:
        from spake2 import SPAKE2_A, SPAKE2_B
        return SPAKE2_A, SPAKE2_B
    except ImportError as e:
        raise RuntimeError("Missing dependency 'spake2'") from e


def require_crypto():
    try:
        from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
        from cryptography.hazmat.primitives.serialization import (
            Encoding, NoEncryption, PrivateFormat, PublicFormat,
        )
        return X25519PrivateKey, X25519PublicKey, Encoding, PublicFormat, PrivateFormat, NoEncryption
    except ImportError as e:
        raise RuntimeError("Missing dependency 'cryptography'") from e


def _public_raw(priv) -> bytes:
    _, _, Encoding, PublicFormat, _, _ = require_crypto()
    return priv.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)


def _private_raw(priv) -> bytes:
    _, _, Encoding, _, PrivateFormat, NoEncryption = require_crypto()
    return priv.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())


def _derived_key(pepper: bytes, label: str, context: bytes = b""):
    X25519PrivateKey = require_crypto()[0]
    seed = hkdf_sha256(pepper, salt=sha256(f"{CTX}|{label}-salt|".encode() + context),
                       info=f"{CTX}|{label}|v1".encode(), n=32)
    return X25519PrivateKey.from_private_bytes(seed)


def record_salt(user_id: str) -> bytes:
    return sha256(f"{CTX}|salt|".encode() + user_id.encode())[:16]


def password_record(user_id: str, password: str, salt: Optional[bytes] = None) -> bytes:
    """Salted password record; the same password always yields the same record for a user."""
    salt = record_salt(user_id) if salt is None else salt
    return sha256(f"{CTX}|pw|".encode() + user_id.encode() + b"|" + salt + b"|" + password.encode())


def _session_keys(k: bytes, dh_e: bytes, dh_s: bytes, xu_pub: bytes, xs_pub: bytes):
    th = sha256(f"{CTX}|th|".encode() + xu_pub + xs_pub)
    master = hkdf_sha256(k + dh_e + dh_s, salt=sha256(f"{CTX}|master-salt|".encode() + th),
                         info=f"{CTX}|master|v1".encode(), n=32)
    server_proof = hmac_sha256(master, f"{CTX}|server-proof|".encode() + th)
    client_proof = hmac_sha256(master, f"{CTX}|client-proof|".encode() + th)
    token = hkdf_sha256(master, salt=th, info=f"{CTX}|token|v1".encode(), n=32).hex()
    return server_proof, client_proof, token


def client_init(user_id: str, password: str) -> Tuple[ClientState, ClientAuthData]:
    """Start a client exchange.

    ``mask`` is the salted password record sent as ``pw``; the client keeps
    it to unlock the server's credential envelope in ``client_finish``.
    """
    SPAKE2_A, _ = require_spake2()
    X25519PrivateKey = require_crypto()[0]
    pw = password_record(user_id, password)
    sp = SPAKE2_A(pw)
    alpha = sp.start()
    xu = X25519PrivateKey.generate()
    state = ClientState(r=sp.serialize(), xu=_private_raw(xu), mask=pw)
    data = ClientAuthData(sid=user_id, pw=pw, Xu=_public_raw(xu), alpha=alpha)
    return state, data


def server_auth(data: ClientAuthData, record: bytes, pepper: bytes,
                iterations: int) -> Tuple[ServerAuthData, ServerFinal]:
    """Answer a client against the registered ``record``.

    A client whose ``pw`` is not the registered record is rejected before
    any server message is produced.
    """
    _, SPAKE2_B = require_spake2()
    X25519PrivateKey, X25519PublicKey, _, _, _, _ = require_crypto()
    if not safe_compare(data.pw, record, 32):
        raise PakeRejected(PakeCode.BAD_CREDENTIALS)
    sp = SPAKE2_B(record)
    beta = sp.start()
    try:
        k = sp.finish(data.alpha)
        xu_pub = X25519PublicKey.from_public_bytes(data.Xu)
    except Exception:
        raise PakeRejected(PakeCode.BAD_MESSAGE) from None

    xs = X25519PrivateKey.generate()
    ps = _derived_key(pepper, "server-key")
    pu = _derived_key(pepper, "client-key", data.sid.encode() + b"|" + record)
    try:
        dh_e = xs.exchange(xu_pub)
        dh_s = ps.exchange(xu_pub)
    except ValueError:
        raise PakeRejected(PakeCode.BAD_CREDENTIALS) from None

    rw = stretch(k, record, iterations)
    c = CredentialEnvelope(
        pu=encrypt_item(rw, _private_raw(pu), b"pu"),
        Pu=encrypt_item(rw, _public_raw(pu), b"Pu"),
        Ps=encrypt_item(rw, _public_raw(ps), b"Ps"),
    )
    xs_pub = _public_raw(xs)
    server_proof, client_proof, token = _session_keys(k, dh_e, dh_s, data.Xu, xs_pub)
    return (
        ServerAuthData(As=server_proof, Xs=xs_pub, beta=beta, c=c),
        ServerFinal(Au=client_proof, token=token),
    )


def client_finish(state: ClientState, server_auth_data: ServerAuthData, iterations: int) -> ClientOutcome:
    """Finish the client side; protocol rejection is a PakeErrorCode, never an exception."""
    SPAKE2_A, _ = require_spake2()
    X25519PrivateKey, X25519PublicKey, _, _, _, _ = require_crypto()
    sad = server_auth_data
    try:
        k = SPAKE2_A.from_serialized(state.r).finish(sad.beta)
    except Exception:
        return PakeErrorCode(PakeCode.BAD_MESSAGE)

    rw = stretch(k, state.mask, iterations)
    try:
        pu_raw = decrypt_item(rw, sad.c.pu, b"pu")
        pu_pub = decrypt_item(rw, sad.c.Pu, b"Pu")
        ps_pub = decrypt_item(rw, sad.c.Ps, b"Ps")
    except DecryptError:
        return PakeErrorCode(PakeCode.BAD_ENVELOPE)

    try:
        if not safe_compare(_public_raw(X25519PrivateKey.from_private_bytes(pu_raw)), pu_pub, 32):
            return PakeErrorCode(PakeCode.BAD_CREDENTIALS)
        xu = X25519PrivateKey.from_private_bytes(state.xu)
        dh_e = xu.exchange(X25519PublicKey.from_public_bytes(sad.Xs))
        dh_s = xu.exchange(X25519PublicKey.from_public_bytes(ps_pub))
    except ValueError:
        return PakeErrorCode(PakeCode.BAD_CREDENTIALS)

    server_proof, client_proof, token = _session_keys(k, dh_e, dh_s, _public_raw(xu), sad.Xs)
    if not safe_compare(server_proof, sad.As, 32):
        return PakeErrorCode(PakeCode.BAD_SERVER_PROOF)
    return ClientSecret(token=token, client_auth_result=ClientAuthResult(Au=client_proof))


def server_verify(final: ServerFinal, result: ClientAuthResult) -> bool:
    return safe_compare(final.Au, result.Au, 32)
