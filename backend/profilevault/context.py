import asyncio
import logging
from typing import Optional

from profilevault.config import StorageConfig
from profilevault.core.backends import LocalStorageBackend, StorageBackend, select_backend
from profilevault.core.benchmark import KeyDerivationBenchmark
from profilevault.core.crypto import DEFAULT_ITERATIONS, EncryptionEnvelope
from profilevault.core.errors import InvalidPasswordError, UnsupportedEnvironmentError
from profilevault.core.kvstore import JsonFileStore
from profilevault.core.settings_store import SettingsStore
from profilevault.models import StorageData

logger = logging.getLogger(__name__)


class StorageContext:
    """
    Application-wide persistence service. Build one at startup with
    `await StorageContext.create(config)` and hand it to whoever needs it;
    tests construct it directly with their own parts.

    Writes (save, clear, unlock, lock) are serialized through one lock, so
    overlapping saves land one after the other instead of interleaving.
    """

    def __init__(
        self,
        backend: StorageBackend,
        envelope: EncryptionEnvelope,
        settings: SettingsStore,
        benchmark: Optional[KeyDerivationBenchmark] = None,
    ):
        self.backend = backend
        self.envelope = envelope
        self.settings = settings
        self.benchmark = benchmark or KeyDerivationBenchmark()
        self._write_lock = asyncio.Lock()
        self._has_password = False

    @classmethod
    async def create(cls, config: Optional[StorageConfig] = None) -> "StorageContext":
        config = config or StorageConfig.from_env()
        store = JsonFileStore(config.store_path)
        envelope = EncryptionEnvelope(iterations=config.kdf_iterations)
        backend = await select_backend(config, store, envelope)
        settings = SettingsStore(store, defaults={"key_derivation_iterations": config.kdf_iterations})
        return cls(backend=backend, envelope=envelope, settings=settings)

    @property
    def is_unlocked(self) -> bool:
        return self._has_password

    async def initialize(self):
        """
        Load settings, then settle the PBKDF2 cost. Without a stored
        `key_derivation_iterations` the configured count stays in effect.

        Only the local backend encrypts with this envelope. A delegated host
        derives keys with its own configured count, so the benchmark is
        skipped there.
        """
        await self.settings.initialize()
        if not isinstance(self.backend, LocalStorageBackend):
            return
        current = self.settings.get_settings()
        if current.auto_benchmark_iterations:
            try:
                iterations = await asyncio.to_thread(self.benchmark.run, current.benchmark_time_seconds)
            except UnsupportedEnvironmentError as exc:
                logger.warning("Auto-benchmark unavailable, using %d iterations: %s", DEFAULT_ITERATIONS, exc)
                iterations = DEFAULT_ITERATIONS
            await self.settings.save_settings({"key_derivation_iterations": iterations}, silent=True)
        self.envelope.iterations = self.settings.get_settings().key_derivation_iterations

    async def unlock(self, password: str):
        """
        Hold `password` for the session. When encrypted data already exists it
        must decrypt; on failure the password is dropped again and
        InvalidPasswordError propagates so the caller can re-prompt.
        """
        async with self._write_lock:
            await self.backend.set_password(password)
            self._has_password = True
            if await self.backend.is_encrypted():
                try:
                    await self.backend.load()
                except InvalidPasswordError:
                    logger.warning("Unlock failed: password did not decrypt stored data")
                    await self.backend.set_password(None)
                    self._has_password = False
                    raise

    async def lock(self):
        async with self._write_lock:
            await self.backend.set_password(None)
            self._has_password = False

    async def save(self, data: StorageData, use_password: bool):
        async with self._write_lock:
            await self.backend.save(data, use_password)

    async def load(self) -> Optional[StorageData]:
        return await self.backend.load()

    async def clear(self):
        async with self._write_lock:
            await self.backend.clear()

    async def has_stored_data(self) -> bool:
        return await self.backend.has_stored_data()

    async def is_encrypted(self) -> bool:
        return await self.backend.is_encrypted()

    async def close(self):
        await self.lock()
        await self.backend.close()
