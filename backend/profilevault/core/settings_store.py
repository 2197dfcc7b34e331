import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from profilevault.core.errors import StorageError
from profilevault.core.kvstore import JsonFileStore
from profilevault.models import (
    VALID_COLOR_SCHEMES,
    ActionLogEntry,
    CustomScript,
    GlobalSettings,
    LogLevel,
    PerformanceMetric,
)

logger = logging.getLogger(__name__)

SETTINGS_KEY = "mremote-settings"
ACTION_LOG_KEY = "mremote-action-log"
PERFORMANCE_METRICS_KEY = "mremote-performance-metrics"
CUSTOM_SCRIPTS_KEY = "mremote-custom-scripts"

SettingsListener = Callable[[GlobalSettings], None]


def push_capped(items: list, entry: Any, limit: int) -> list:
    """Insert newest-first and drop the oldest tail entries beyond `limit`."""
    items.insert(0, entry)
    del items[max(limit, 0):]
    return items


class SettingsStore:
    """
    Global settings, action log, performance metrics and custom scripts.

    Everything here is written in plaintext to the local store, whichever
    backend holds the connection data. Only connections and credentials are
    treated as sensitive.
    """

    def __init__(self, store: JsonFileStore, defaults: Optional[Dict[str, Any]] = None):
        self.store = store
        # Baseline under whatever was persisted; fields never saved keep these values.
        self._defaults = GlobalSettings(**(defaults or {})).model_dump()
        self.settings = self._default_settings()
        self.action_log: List[ActionLogEntry] = []
        self.performance_metrics: List[PerformanceMetric] = []
        self.custom_scripts: List[CustomScript] = []
        self._listeners: List[SettingsListener] = []

    def _default_settings(self) -> GlobalSettings:
        return GlobalSettings(**self._defaults)

    async def _load_entries(self, key: str, model: type) -> Optional[list]:
        """Read a persisted list, skipping entries that no longer validate."""
        stored = await asyncio.to_thread(self.store.get, key)
        if not isinstance(stored, list):
            return None
        entries = []
        for raw in stored:
            if not isinstance(raw, dict):
                continue
            try:
                entries.append(model(**raw))
            except ValidationError as exc:
                logger.warning("Skipping malformed %s entry in %s: %s", model.__name__, key, exc)
        return entries

    # --- Subscribers ---
    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        for listener in list(self._listeners):
            listener(self.settings)

    # --- Settings ---
    async def load_settings(self) -> GlobalSettings:
        try:
            stored = await asyncio.to_thread(self.store.get, SETTINGS_KEY)
        except StorageError as exc:
            logger.error("Failed to load settings, using defaults: %s", exc)
            return self._default_settings()
        if not isinstance(stored, dict):
            return self.settings
        stored = dict(stored)
        scheme = stored.get("color_scheme")
        if scheme is not None and scheme not in VALID_COLOR_SCHEMES:
            logger.warning("Invalid color_scheme %r in settings, resetting to 'blue'", scheme)
            stored["color_scheme"] = "blue"
        try:
            self.settings = GlobalSettings(**{**self._defaults, **stored})
        except ValidationError as exc:
            logger.error("Stored settings are malformed, using defaults: %s", exc)
            return self._default_settings()
        return self.settings

    async def save_settings(self, settings: Dict[str, Any], silent: bool = False):
        merged = {**self.settings.model_dump(), **settings}
        self.settings = GlobalSettings(**merged)
        await asyncio.to_thread(self.store.set, SETTINGS_KEY, self.settings.model_dump(mode="json"))
        if not silent:
            await self.log_action("info", "Settings saved", details="User settings updated")
        self._notify()

    def apply_in_memory(self, settings: Dict[str, Any]):
        self.settings = GlobalSettings(**{**self.settings.model_dump(), **settings})

    def get_settings(self) -> GlobalSettings:
        return self.settings

    # --- Action log ---
    def _connection_name(self, connection_id: str) -> str:
        return f"Connection {connection_id[:8]}"

    async def log_action(
        self,
        level: LogLevel,
        action: str,
        connection_id: Optional[str] = None,
        details: str = "",
        duration: Optional[float] = None,
    ) -> Optional[ActionLogEntry]:
        if not self.settings.enable_action_log:
            return None
        entry = ActionLogEntry(
            level=level,
            action=action,
            connection_id=connection_id,
            connection_name=self._connection_name(connection_id) if connection_id else None,
            details=details,
            duration=duration,
        )
        push_capped(self.action_log, entry, self.settings.max_log_entries)
        await self._save_action_log()
        return entry

    def get_action_log(self) -> List[ActionLogEntry]:
        return self.action_log

    async def clear_action_log(self):
        self.action_log = []
        await self._save_action_log()

    async def _save_action_log(self):
        await asyncio.to_thread(
            self.store.set, ACTION_LOG_KEY, [e.model_dump(mode="json") for e in self.action_log]
        )

    async def load_action_log(self):
        entries = await self._load_entries(ACTION_LOG_KEY, ActionLogEntry)
        if entries is not None:
            self.action_log = entries

    # --- Performance metrics ---
    async def record_performance_metric(self, metric: PerformanceMetric | Dict[str, Any]):
        if not self.settings.enable_performance_tracking:
            return
        if isinstance(metric, dict):
            metric = PerformanceMetric(**metric)
        push_capped(self.performance_metrics, metric, self.settings.max_performance_metrics)
        await self._save_performance_metrics()

    def get_performance_metrics(self) -> List[PerformanceMetric]:
        return self.performance_metrics

    async def clear_performance_metrics(self):
        self.performance_metrics = []
        await self._save_performance_metrics()

    async def _save_performance_metrics(self):
        await asyncio.to_thread(
            self.store.set,
            PERFORMANCE_METRICS_KEY,
            [m.model_dump(mode="json") for m in self.performance_metrics]
        )

    async def load_performance_metrics(self):
        entries = await self._load_entries(PERFORMANCE_METRICS_KEY, PerformanceMetric)
        if entries is not None:
            self.performance_metrics = entries

    # --- Custom scripts ---
    async def add_custom_script(self, **fields) -> CustomScript:
        fields.pop("id", None)
        fields.pop("created_at", None)
        fields.pop("updated_at", None)
        script = CustomScript(**fields)
        self.custom_scripts.append(script)
        await self._save_custom_scripts()
        await self.log_action("info", "Custom script added", details=f'Script "{script.name}" created')
        return script

    async def update_custom_script(self, script_id: str, updates: Dict[str, Any]) -> Optional[CustomScript]:
        for idx, script in enumerate(self.custom_scripts):
            if script.id != script_id:
                continue
            updates = {k: v for k, v in updates.items() if k not in ("id", "created_at")}
            merged = {**script.model_dump(), **updates, "updated_at": time.time()}
            self.custom_scripts[idx] = CustomScript(**merged)
            await self._save_custom_scripts()
            await self.log_action(
                "info", "Custom script updated", details=f'Script "{self.custom_scripts[idx].name}" updated'
            )
            return self.custom_scripts[idx]
        return None

    async def delete_custom_script(self, script_id: str) -> bool:
        script = next((s for s in self.custom_scripts if s.id == script_id), None)
        if script is None:
            return False
        self.custom_scripts = [s for s in self.custom_scripts if s.id != script_id]
        await self._save_custom_scripts()
        await self.log_action("info", "Custom script deleted", details=f'Script "{script.name}" deleted')
        return True

    def get_custom_scripts(self) -> List[CustomScript]:
        return self.custom_scripts

    async def _save_custom_scripts(self):
        await asyncio.to_thread(
            self.store.set, CUSTOM_SCRIPTS_KEY, [s.model_dump(mode="json") for s in self.custom_scripts]
        )

    async def load_custom_scripts(self):
        entries = await self._load_entries(CUSTOM_SCRIPTS_KEY, CustomScript)
        if entries is not None:
            self.custom_scripts = entries

    async def initialize(self):
        await self.load_settings()
        await self.load_action_log()
        await self.load_performance_metrics()
        await self.load_custom_scripts()
