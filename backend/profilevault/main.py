from typing import Optional
from fastapi import FastAPI
from profilevault.api import router
from profilevault.config import StorageConfig
from profilevault.core.backends import LocalStorageBackend
from profilevault.core.crypto import EncryptionEnvelope
from profilevault.core.kvstore import JsonFileStore


def create_app(config: Optional[StorageConfig] = None) -> FastAPI:
    config = config or StorageConfig.from_env()
    app = FastAPI(title="ProfileVault Storage Host")
    # The host always persists locally; clients reach it through DelegatedStorageBackend.
    app.state.backend = LocalStorageBackend(
        JsonFileStore(config.store_path),
        EncryptionEnvelope(iterations=config.kdf_iterations),
    )
    app.include_router(router, prefix="/api")

    @app.get("/")
    def health_check():
        return {"status": "ProfileVault Storage Host Running"}

    return app


app = create_app()
