import asyncio
import base64
import binascii
import secrets
from dataclasses import dataclass
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from profilevault.core.errors import (
    CorruptedDataError,
    InvalidPasswordError,
    PasswordRequiredError,
)

# --- Parameters ---
DEFAULT_ITERATIONS = 100_000
KEY_LEN = 32
SALT_LEN = 16
IV_LEN = 12


class SecretPassword:
    """
    Holds a password as a mutable bytearray so it can be zeroed on lock.
    Scrubbing is best-effort: the interpreter may still hold copies of the
    str the caller passed in, and PBKDF2 receives an immutable copy.
    """

    __slots__ = ("_buf",)

    def __init__(self, password: Union[str, bytes]):
        raw = password.encode("utf-8") if isinstance(password, str) else password
        self._buf = bytearray(raw)

    def reveal(self) -> bytes:
        return bytes(self._buf)

    def wipe(self):
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._buf = bytearray()

    def __len__(self) -> int:
        return len(self._buf)

    def __repr__(self) -> str:
        return "SecretPassword(***)"


@dataclass(frozen=True)
class Envelope:
    ciphertext: str
    salt: str
    iv: str
    iterations: int


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("utf-8")


def _unb64(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise CorruptedDataError(f"invalid {what} encoding") from exc


class EncryptionEnvelope:
    def __init__(self, iterations: int = DEFAULT_ITERATIONS):
        self.iterations = iterations
        self._password: Optional[SecretPassword] = None

    @property
    def iterations(self) -> int:
        return self._iterations

    @iterations.setter
    def iterations(self, value: int):
        if int(value) < 1:
            raise ValueError("iterations must be positive")
        self._iterations = int(value)

    @property
    def is_unlocked(self) -> bool:
        return self._password is not None

    def set_password(self, password: Union[str, bytes]):
        """Hold the password for this session. Strength checks are the caller's job."""
        if self._password is not None:
            self._password.wipe()
        self._password = SecretPassword(password)

    def clear_password(self):
        if self._password is not None:
            self._password.wipe()
        self._password = None

    def _resolve(self, password: Union[str, bytes, SecretPassword, None]) -> bytes:
        if password is None:
            if self._password is None:
                raise PasswordRequiredError("storage locked")
            return self._password.reveal()
        if isinstance(password, SecretPassword):
            return password.reveal()
        return password.encode("utf-8") if isinstance(password, str) else password

    def derive_key(
        self,
        password: Union[str, bytes, SecretPassword],
        salt: bytes,
        iterations: Optional[int] = None,
    ) -> AESGCM:
        # Only the cipher object leaves this method, never the raw key bytes.
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LEN,
            salt=salt,
            iterations=iterations or self.iterations,
        )
        return AESGCM(kdf.derive(self._resolve(password)))

    def encrypt(self, plaintext: str, password: Union[str, bytes, None] = None) -> Envelope:
        secret = self._resolve(password)
        # Fresh salt and iv on every call; GCM must never see a repeated (key, iv) pair.
        salt = secrets.token_bytes(SALT_LEN)
        iv = secrets.token_bytes(IV_LEN)
        iterations = self.iterations
        aes = self.derive_key(secret, salt, iterations)
        ct = aes.encrypt(iv, plaintext.encode("utf-8"), None)  # includes tag
        return Envelope(ciphertext=_b64(ct), salt=_b64(salt), iv=_b64(iv), iterations=iterations)

    def decrypt(
        self,
        ciphertext: str,
        salt: str,
        iv: str,
        password: Union[str, bytes, None] = None,
        iterations: Optional[int] = None,
    ) -> str:
        secret = self._resolve(password)
        if not salt or not iv:
            raise CorruptedDataError("encrypted payload without salt/iv")
        raw_salt = _unb64(salt, "salt")
        raw_iv = _unb64(iv, "iv")
        raw_ct = _unb64(ciphertext, "ciphertext")
        if len(raw_salt) != SALT_LEN:
            raise CorruptedDataError("invalid salt length")
        if len(raw_iv) != IV_LEN:
            raise CorruptedDataError("invalid iv length")
        aes = self.derive_key(secret, raw_salt, iterations)
        try:
            pt = aes.decrypt(raw_iv, raw_ct, None)
        except InvalidTag as exc:
            raise InvalidPasswordError("decryption failed") from exc
        try:
            return pt.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CorruptedDataError("decrypted payload is not utf-8") from exc

    async def encrypt_async(self, plaintext: str, password: Union[str, bytes, None] = None) -> Envelope:
        return await asyncio.to_thread(self.encrypt, plaintext, password)

    async def decrypt_async(
        self,
        ciphertext: str,
        salt: str,
        iv: str,
        password: Union[str, bytes, None] = None,
        iterations: Optional[int] = None,
    ) -> str:
        return await asyncio.to_thread(self.decrypt, ciphertext, salt, iv, password, iterations)
