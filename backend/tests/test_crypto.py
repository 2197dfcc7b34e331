import base64
import json
import os
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from profilevault.core.crypto import EncryptionEnvelope, SecretPassword, IV_LEN, SALT_LEN
from profilevault.core.errors import (
    CorruptedDataError,
    InvalidPasswordError,
    PasswordRequiredError,
)

FAST_ITERS = 1_000


def _flip(b64: str, bit: int = 0) -> str:
    raw = bytearray(base64.b64decode(b64))
    raw[bit // 8] ^= 1 << (bit % 8)
    return base64.b64encode(bytes(raw)).decode("utf-8")


def test_round_trip_with_explicit_password():
    env = EncryptionEnvelope(iterations=FAST_ITERS)
    payload = json.dumps({"connections": [{"id": "a"}]})
    sealed = env.encrypt(payload, "pw1")
    assert json.loads(env.decrypt(sealed.ciphertext, sealed.salt, sealed.iv, "pw1")) == {
        "connections": [{"id": "a"}]
    }


def test_wrong_password_raises_invalid_password():
    env = EncryptionEnvelope(iterations=FAST_ITERS)
    sealed = env.encrypt(json.dumps({"connections": [{"id": "a"}]}), "pw1")
    with pytest.raises(InvalidPasswordError):
        env.decrypt(sealed.ciphertext, sealed.salt, sealed.iv, "pw2")


def test_envelope_layout_and_fresh_salt_iv():
    env = EncryptionEnvelope(iterations=FAST_ITERS)
    first = env.encrypt("same", "pw")
    second = env.encrypt("same", "pw")
    assert len(base64.b64decode(first.salt)) == SALT_LEN
    assert len(base64.b64decode(first.iv)) == IV_LEN
    assert first.salt != second.salt
    assert first.iv != second.iv
    assert first.ciphertext != second.ciphertext
    assert first.iterations == FAST_ITERS


def test_tampered_ciphertext_fails():
    env = EncryptionEnvelope(iterations=FAST_ITERS)
    sealed = env.encrypt("secret payload", "pw")
    for bit in (0, 7, 40, 8 * len(base64.b64decode(sealed.ciphertext)) - 1):
        with pytest.raises(InvalidPasswordError):
            env.decrypt(_flip(sealed.ciphertext, bit), sealed.salt, sealed.iv, "pw")


def test_tampered_salt_or_iv_fails():
    env = EncryptionEnvelope(iterations=FAST_ITERS)
    sealed = env.encrypt("secret payload", "pw")
    with pytest.raises(InvalidPasswordError):
        env.decrypt(sealed.ciphertext, _flip(sealed.salt, 3), sealed.iv, "pw")
    with pytest.raises(InvalidPasswordError):
        env.decrypt(sealed.ciphertext, sealed.salt, _flip(sealed.iv, 90), "pw")


def test_malformed_envelope_is_corrupted():
    env = EncryptionEnvelope(iterations=FAST_ITERS)
    sealed = env.encrypt("x", "pw")
    with pytest.raises(CorruptedDataError):
        env.decrypt(sealed.ciphertext, "", sealed.iv, "pw")
    with pytest.raises(CorruptedDataError):
        env.decrypt(sealed.ciphertext, base64.b64encode(b"short").decode(), sealed.iv, "pw")
    with pytest.raises(CorruptedDataError):
        env.decrypt("%%not-base64%%", sealed.salt, sealed.iv, "pw")


def test_locked_envelope_requires_password():
    env = EncryptionEnvelope(iterations=FAST_ITERS)
    sealed = env.encrypt("x", "pw")
    assert not env.is_unlocked
    with pytest.raises(PasswordRequiredError):
        env.decrypt(sealed.ciphertext, sealed.salt, sealed.iv)
    with pytest.raises(PasswordRequiredError):
        env.encrypt("x")


def test_held_password_unlock_and_clear():
    env = EncryptionEnvelope(iterations=FAST_ITERS)
    env.set_password("held")
    assert env.is_unlocked
    sealed = env.encrypt("data")
    assert env.decrypt(sealed.ciphertext, sealed.salt, sealed.iv) == "data"
    env.clear_password()
    assert not env.is_unlocked
    with pytest.raises(PasswordRequiredError):
        env.decrypt(sealed.ciphertext, sealed.salt, sealed.iv)


def test_derive_key_is_deterministic():
    env = EncryptionEnvelope(iterations=FAST_ITERS)
    salt = os.urandom(SALT_LEN)
    iv = os.urandom(IV_LEN)
    ct = env.derive_key("pw", salt).encrypt(iv, b"payload", None)
    assert env.derive_key("pw", salt).decrypt(iv, ct, None) == b"payload"


def test_decrypt_uses_recorded_iterations():
    env = EncryptionEnvelope(iterations=FAST_ITERS)
    sealed = env.encrypt("data", "pw")
    env.iterations = FAST_ITERS * 2
    with pytest.raises(InvalidPasswordError):
        env.decrypt(sealed.ciphertext, sealed.salt, sealed.iv, "pw")
    assert env.decrypt(sealed.ciphertext, sealed.salt, sealed.iv, "pw", iterations=sealed.iterations) == "data"


def test_secret_password_wipe():
    secret = SecretPassword("hunter2")
    assert secret.reveal() == b"hunter2"
    secret.wipe()
    assert len(secret) == 0
    assert "hunter2" not in repr(secret)
