"""
Content and locator encryption.

Blobs: AES-256-GCM with a fresh key and nonce per item; the key material is
returned base64-encoded so it can live on the content record.

Locators: ChaCha20-Poly1305 under one static process-wide key, serialized as
hex(nonce || ciphertext || tag).
"""
import base64
import binascii
import hashlib
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from paygate.core.errors import AuthenticationFailed, ConfigurationError, MalformedInput

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


@dataclass(frozen=True)
class EncryptedBlob:
    ciphertext: bytes
    key: str
    iv: str
    auth_tag: str


def encrypt_blob(plaintext: bytes) -> EncryptedBlob:
    key = AESGCM.generate_key(bit_length=256)
    iv = os.urandom(NONCE_SIZE)
    sealed = AESGCM(key).encrypt(iv, plaintext, None)
    # cryptography appends the tag; keep it separate on the record
    ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
    return EncryptedBlob(
        ciphertext=ciphertext,
        key=base64.b64encode(key).decode("ascii"),
        iv=base64.b64encode(iv).decode("ascii"),
        auth_tag=base64.b64encode(tag).decode("ascii"),
    )


def decrypt_blob(ciphertext: bytes, key: str, iv: str, auth_tag: str) -> bytes:
    """
    Decrypts a blob produced by encrypt_blob.
    Raises AuthenticationFailed before returning anything if the tag does not verify.
    """
    try:
        raw_key = base64.b64decode(key, validate=True)
        raw_iv = base64.b64decode(iv, validate=True)
        raw_tag = base64.b64decode(auth_tag, validate=True)
    except (binascii.Error, ValueError):
        raise MalformedInput("Encryption envelope is not valid base64")

    if len(raw_key) != KEY_SIZE or len(raw_iv) != NONCE_SIZE or len(raw_tag) != TAG_SIZE:
        raise MalformedInput("Encryption envelope has unexpected lengths")

    try:
        return AESGCM(raw_key).decrypt(raw_iv, bytes(ciphertext) + raw_tag, None)
    except InvalidTag:
        raise AuthenticationFailed("Content failed integrity check")


def load_static_key(hex_key: str) -> bytes:
    if not hex_key or len(hex_key) != KEY_SIZE * 2:
        raise ConfigurationError("Locator key must be 32 bytes (64 hex characters)")
    try:
        return bytes.fromhex(hex_key)
    except ValueError:
        raise ConfigurationError("Locator key is not valid hex")


def encrypt_locator(text: str, static_key: bytes) -> str:
    nonce = os.urandom(NONCE_SIZE)
    sealed = ChaCha20Poly1305(static_key).encrypt(nonce, text.encode("utf-8"), None)
    return (nonce + sealed).hex()


def decrypt_locator(hex_data: str, static_key: bytes) -> str:
    try:
        data = bytes.fromhex(hex_data)
    except (ValueError, TypeError):
        raise MalformedInput("Locator is not valid hex")

    if len(data) < NONCE_SIZE + TAG_SIZE:
        raise MalformedInput("Locator is too short")

    nonce, sealed = data[:NONCE_SIZE], data[NONCE_SIZE:]
    try:
        plaintext = ChaCha20Poly1305(static_key).decrypt(nonce, sealed, None)
    except InvalidTag:
        raise AuthenticationFailed("Locator failed integrity check")
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError:
        raise MalformedInput("Locator is not valid UTF-8")


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
