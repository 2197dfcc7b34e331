from __future__ import annotations
from typing import List, Optional, Dict, Any, Literal
from pydantic import BaseModel, ConfigDict, Field, model_validator
import time
import uuid

# --- Connection Storage Models ---

class StorageData(BaseModel):
    connections: List[Dict[str, Any]] = []
    settings: Dict[str, Any] = {}
    timestamp: int = Field(default_factory=lambda: int(time.time()))

class StorageMetadata(BaseModel):
    # Persisted with the camelCase keys the desktop client has always written
    model_config = ConfigDict(populate_by_name=True)

    is_encrypted: bool = Field(False, alias="isEncrypted")
    has_password: bool = Field(False, alias="hasPassword")
    timestamp: int = Field(default_factory=lambda: int(time.time()))
    salt: Optional[str] = None  # base64, 16 bytes
    iv: Optional[str] = None  # base64, 12 bytes
    iterations: Optional[int] = None  # PBKDF2 cost used for this envelope

    @model_validator(mode="after")
    def _salt_iv_iff_encrypted(self) -> "StorageMetadata":
        has_params = bool(self.salt) and bool(self.iv)
        if self.is_encrypted and not has_params:
            raise ValueError("encrypted metadata requires salt and iv")
        if not self.is_encrypted and (self.salt or self.iv):
            raise ValueError("plaintext metadata must not carry salt or iv")
        return self

    def to_store(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

# --- Host Request Models ---

class PasswordPayload(BaseModel):
    password: Optional[str] = None

class SaveDataPayload(BaseModel):
    data: StorageData
    use_password: bool = False

# --- Settings Models ---

VALID_COLOR_SCHEMES = (
    "red", "rose", "pink", "orange", "amber", "yellow", "lime",
    "green", "emerald", "teal", "cyan", "sky", "blue", "indigo",
    "violet", "purple", "fuchsia", "slate", "grey",
)

class GlobalSettings(BaseModel):
    # Unknown keys are UI preferences owned by other components; keep them.
    model_config = ConfigDict(extra="allow")

    language: str = "en"
    theme: str = "dark"
    color_scheme: str = "blue"

    # Security
    key_derivation_iterations: int = 100_000
    auto_benchmark_iterations: bool = False
    benchmark_time_seconds: float = 1.0

    # Logging / metrics
    enable_action_log: bool = True
    max_log_entries: int = 1000
    enable_performance_tracking: bool = True
    max_performance_metrics: int = 1000

LogLevel = Literal["debug", "info", "warn", "error"]

class ActionLogEntry(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = Field(default_factory=time.time)
    level: LogLevel = "info"
    action: str
    connection_id: Optional[str] = None
    connection_name: Optional[str] = None
    details: str = ""
    duration: Optional[float] = None

class PerformanceMetric(BaseModel):
    model_config = ConfigDict(extra="allow")

    connection_time: float = 0
    data_transferred: float = 0
    latency: float = 0
    throughput: float = 0
    cpu_usage: float = 0
    memory_usage: float = 0
    packet_loss: Optional[float] = None
    jitter: Optional[float] = None
    timestamp: float = Field(default_factory=time.time)

class CustomScript(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str
    type: Literal["javascript", "typescript"] = "javascript"
    content: str = ""
    trigger: Literal["onConnect", "onDisconnect", "manual"] = "manual"
    protocol: Optional[str] = None
    enabled: bool = True
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
