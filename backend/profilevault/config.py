import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from profilevault.core.crypto import DEFAULT_ITERATIONS


class StorageConfig(BaseModel):
    data_dir: Path = Path("./workspace")
    host_url: Optional[str] = None
    host_timeout_seconds: float = 10.0
    kdf_iterations: int = DEFAULT_ITERATIONS
    log_level: str = "INFO"

    @property
    def store_path(self) -> Path:
        return self.data_dir / "store.json"

    @classmethod
    def from_env(cls) -> "StorageConfig":
        """Read PROFILEVAULT_* variables; run.py exports its CLI flags into these."""
        return cls(
            data_dir=Path(os.getenv("PROFILEVAULT_DATA_DIR", "./workspace")),
            host_url=os.getenv("PROFILEVAULT_HOST_URL") or None,
            host_timeout_seconds=float(os.getenv("PROFILEVAULT_HOST_TIMEOUT", "10")),
            kdf_iterations=int(os.getenv("PROFILEVAULT_KDF_ITERATIONS", str(DEFAULT_ITERATIONS))),
            log_level=os.getenv("PROFILEVAULT_LOG_LEVEL", "INFO"),
        )


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
