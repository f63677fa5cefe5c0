from __future__ import annotations
import secrets
from typing import Any

from relaypake.protocol.constants import (
    IV_BYTES, KDF_MEMORY_KIB, KDF_PARALLELISM, KDF_TIME_COST, KEY_BYTES,
    PROTO_NAME, SALT_BYTES, TAG_BYTES,
)
from relaypake.protocol.errors import DecryptError
from relaypake.protocol.shapes import CipherItem, SecretEnvelope

KEY_AAD = f"{PROTO_NAME}|sealed|key".encode()
DATA_AAD = f"{PROTO_NAME}|sealed|data".encode()


def require_aead():
    try:
        from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
        return ChaCha20Poly1305
    except ImportError as e:
        raise RuntimeError("Missing dependency 'cryptography'") from e


def require_argon2():
    try:
        from argon2.low_level import Type, hash_secret_raw
        return hash_secret_raw, Type
    except ImportError as e:
        raise RuntimeError("Missing dependency 'argon2-cffi'") from e


def derive_kek(passphrase: bytes, salt: bytes) -> bytes:
    hash_secret_raw, Type = require_argon2()
    return hash_secret_raw(
        secret=passphrase,
        salt=salt,
        time_cost=KDF_TIME_COST,
        memory_cost=KDF_MEMORY_KIB,
        parallelism=KDF_PARALLELISM,
        hash_len=KEY_BYTES,
        type=Type.ID,
    )


def encrypt_item(key: bytes, plain: bytes, aad: bytes) -> CipherItem:
    ChaCha20Poly1305 = require_aead()
    iv = secrets.token_bytes(IV_BYTES)
    sealed = ChaCha20Poly1305(key).encrypt(iv, plain, aad)
    return CipherItem(iv=iv, tag=sealed[-TAG_BYTES:], ciphertext=sealed[:-TAG_BYTES])


def decrypt_item(key: bytes, item: CipherItem, aad: bytes) -> bytes:
    from cryptography.exceptions import InvalidTag
    ChaCha20Poly1305 = require_aead()
    try:
        return ChaCha20Poly1305(key).decrypt(item.iv, item.ciphertext + item.tag, aad)
    except InvalidTag:
        raise DecryptError("Unable to decrypt") from None


def seal(secret: bytes, passphrase: bytes) -> SecretEnvelope:
    salt = secrets.token_bytes(SALT_BYTES)
    data_key = secrets.token_bytes(KEY_BYTES)
    kek = derive_kek(passphrase, salt)
    return SecretEnvelope(
        salt=salt,
        key=encrypt_item(kek, data_key, KEY_AAD + salt),
        data=encrypt_item(data_key, secret, DATA_AAD + salt),
    )


def open_sealed(env: Any, passphrase: bytes) -> bytes:
    """Recover the secret from a SecretEnvelope or its decoded tree.

    Raises ShapeError for a partial or mistyped envelope and DecryptError
    when either tag fails; ``data`` is only opened once ``key`` verified.
    """
    if not isinstance(env, SecretEnvelope):
        env = SecretEnvelope.from_tree(env)
    kek = derive_kek(passphrase, env.salt)
    data_key = decrypt_item(kek, env.key, KEY_AAD + env.salt)
    if len(data_key) != KEY_BYTES:
        raise DecryptError("Unable to decrypt")
    return decrypt_item(data_key, env.data, DATA_AAD + env.salt)
