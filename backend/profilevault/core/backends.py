import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from profilevault.config import StorageConfig
from profilevault.core.crypto import EncryptionEnvelope
from profilevault.core.errors import (
    ERRORS_BY_CODE,
    CorruptedDataError,
    InvalidPasswordError,
    PasswordRequiredError,
    StorageError,
    StorageIOError,
)
from profilevault.core.kvstore import JsonFileStore
from profilevault.core.migration import (
    CONNECTIONS_KEY,
    LEGACY_METADATA_KEY,
    METADATA_KEY,
    migrate_legacy_metadata,
)
from profilevault.models import StorageData, StorageMetadata

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """
    Persistence strategy for the connection payload.

    Implementations do no locking of their own. Overlapping save/clear calls
    race and the last write to reach the store wins; callers that share a
    backend must serialize writes (StorageContext does this with a lock).
    """

    @abstractmethod
    async def set_password(self, password: Optional[str]) -> None: ...

    @abstractmethod
    async def save(self, data: StorageData, use_password: bool) -> None: ...

    @abstractmethod
    async def load(self) -> Optional[StorageData]: ...

    @abstractmethod
    async def has_stored_data(self) -> bool: ...

    @abstractmethod
    async def is_encrypted(self) -> bool: ...

    @abstractmethod
    async def clear(self) -> None: ...

    async def close(self) -> None:
        return None


def _parse_data(raw: Any) -> StorageData:
    try:
        if isinstance(raw, str):
            return StorageData.model_validate_json(raw)
        return StorageData.model_validate(raw)
    except ValidationError as exc:
        raise CorruptedDataError("stored connection data is malformed") from exc


class LocalStorageBackend(StorageBackend):
    """Local key-value store; encryption is applied here with EncryptionEnvelope."""

    def __init__(self, store: JsonFileStore, envelope: EncryptionEnvelope):
        self.store = store
        self.envelope = envelope
        self._migrated = False

    async def _ensure_migrated(self):
        if self._migrated:
            return
        await asyncio.to_thread(migrate_legacy_metadata, self.store)
        self._migrated = True

    def _parse_metadata(self, raw: Any) -> Optional[StorageMetadata]:
        if raw is None:
            return None
        try:
            return StorageMetadata.model_validate(raw)
        except ValidationError as exc:
            raise CorruptedDataError("storage metadata is inconsistent") from exc

    async def set_password(self, password: Optional[str]) -> None:
        if password is None:
            self.envelope.clear_password()
        else:
            self.envelope.set_password(password)

    async def save(self, data: StorageData, use_password: bool) -> None:
        await self._ensure_migrated()
        now = int(time.time())
        if use_password:
            if not self.envelope.is_unlocked:
                raise PasswordRequiredError("no password set for encrypted save")
            env = await self.envelope.encrypt_async(data.model_dump_json())
            value: Any = env.ciphertext
            meta = StorageMetadata(
                is_encrypted=True,
                has_password=True,
                timestamp=now,
                salt=env.salt,
                iv=env.iv,
                iterations=env.iterations,
            )
        else:
            value = data.model_dump(mode="json")
            meta = StorageMetadata(is_encrypted=False, has_password=False, timestamp=now)
        # One commit for payload + metadata; the previous envelope is replaced, not kept aside.
        await asyncio.to_thread(
            self.store.transaction, set_items={CONNECTIONS_KEY: value, METADATA_KEY: meta.to_store()}
        )

    async def load(self) -> Optional[StorageData]:
        await self._ensure_migrated()
        view = await asyncio.to_thread(self.store.snapshot, CONNECTIONS_KEY, METADATA_KEY)
        if CONNECTIONS_KEY not in view:
            return None
        raw = view[CONNECTIONS_KEY]
        meta = self._parse_metadata(view.get(METADATA_KEY))
        if meta is not None and meta.is_encrypted:
            if not isinstance(raw, str):
                raise CorruptedDataError("metadata claims encryption but payload is plaintext")
            plaintext = await self.envelope.decrypt_async(
                raw, meta.salt, meta.iv, iterations=meta.iterations
            )
            return _parse_data(plaintext)
        if isinstance(raw, str):
            try:
                json.loads(raw)
            except json.JSONDecodeError as exc:
                raise CorruptedDataError("ciphertext stored without encryption metadata") from exc
        return _parse_data(raw)

    async def has_stored_data(self) -> bool:
        return await asyncio.to_thread(self.store.contains, CONNECTIONS_KEY)

    async def is_encrypted(self) -> bool:
        await self._ensure_migrated()
        meta = self._parse_metadata(await asyncio.to_thread(self.store.get, METADATA_KEY))
        return bool(meta and meta.is_encrypted)

    async def clear(self) -> None:
        await asyncio.to_thread(
            self.store.transaction, delete_keys=[CONNECTIONS_KEY, METADATA_KEY, LEGACY_METADATA_KEY]
        )


_ERRORS_BY_STATUS = {
    401: InvalidPasswordError,
    409: CorruptedDataError,
    423: PasswordRequiredError,
}


class DelegatedStorageBackend(StorageBackend):
    """
    Forwards every call to the storage host. Encryption happens on the host,
    so nothing here touches EncryptionEnvelope.
    """

    def __init__(self, client: httpx.AsyncClient, prefix: str = "/api/storage"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def connect(cls, base_url: str, timeout: float = 10.0) -> "DelegatedStorageBackend":
        return cls(httpx.AsyncClient(base_url=base_url, timeout=timeout))

    def _error_from(self, response: httpx.Response) -> StorageError:
        detail: Any = None
        try:
            detail = response.json().get("detail")
        except (ValueError, AttributeError):
            detail = None
        if isinstance(detail, dict):
            cls = ERRORS_BY_CODE.get(detail.get("code"))
            if cls is not None:
                return cls(detail.get("message") or cls.code)
        cls = _ERRORS_BY_STATUS.get(response.status_code, StorageIOError)
        return cls(f"storage host returned {response.status_code}")

    async def _call(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, f"{self.prefix}{path}", **kwargs)
        except httpx.HTTPError as exc:
            raise StorageIOError(f"storage host unreachable: {exc}") from exc
        if response.is_error:
            raise self._error_from(response)
        return response

    async def set_password(self, password: Optional[str]) -> None:
        await self._call("POST", "/password", json={"password": password})

    async def save(self, data: StorageData, use_password: bool) -> None:
        await self._call(
            "POST",
            "/data",
            json={"data": data.model_dump(mode="json"), "use_password": use_password},
        )

    async def load(self) -> Optional[StorageData]:
        response = await self._call("GET", "/data")
        body = response.json()
        if body is None:
            return None
        return _parse_data(body)

    async def has_stored_data(self) -> bool:
        response = await self._call("GET", "/has-data")
        return bool(response.json().get("has_data"))

    async def is_encrypted(self) -> bool:
        response = await self._call("GET", "/encrypted")
        return bool(response.json().get("encrypted"))

    async def clear(self) -> None:
        await self._call("DELETE", "/data")

    async def close(self) -> None:
        await self.client.aclose()


async def select_backend(
    config: StorageConfig,
    store: JsonFileStore,
    envelope: EncryptionEnvelope,
    client: Optional[httpx.AsyncClient] = None,
) -> StorageBackend:
    """
    Pick the storage strategy once at startup. A configured host that answers
    its health check gets the delegated backend; anything else falls back to
    the local store.
    """
    if config.host_url:
        owns_client = client is None
        if client is None:
            client = httpx.AsyncClient(base_url=config.host_url, timeout=config.host_timeout_seconds)
        try:
            response = await client.get("/")
            if response.status_code == 200:
                logger.info("Using delegated storage host at %s", config.host_url)
                return DelegatedStorageBackend(client)
            logger.warning("Storage host health check returned %s", response.status_code)
        except httpx.HTTPError as exc:
            logger.warning("Storage host %s unavailable: %s", config.host_url, exc)
        if owns_client:
            await client.aclose()
    logger.info("Using local storage at %s", store.path)
    return LocalStorageBackend(store, envelope)
