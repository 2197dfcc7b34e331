import logging

from profilevault.core.kvstore import JsonFileStore

logger = logging.getLogger(__name__)

CONNECTIONS_KEY = "mremote-connections"
METADATA_KEY = "mremote-storage-metadata"
LEGACY_METADATA_KEY = "mremote-storage-meta"


def migrate_legacy_metadata(store: JsonFileStore) -> bool:
    """
    Move metadata written under the legacy key to METADATA_KEY.

    The copy and the delete share one transaction. Once the legacy key is gone
    every later call is a no-op. If both keys exist the current one wins and the
    stale legacy copy is dropped.
    """
    view = store.snapshot(LEGACY_METADATA_KEY, METADATA_KEY)
    if LEGACY_METADATA_KEY not in view:
        return False
    if METADATA_KEY in view:
        store.transaction(delete_keys=[LEGACY_METADATA_KEY])
        logger.info("Dropped stale legacy storage metadata key")
        return True
    store.transaction(
        set_items={METADATA_KEY: view[LEGACY_METADATA_KEY]},
        delete_keys=[LEGACY_METADATA_KEY],
    )
    logger.info("Migrated storage metadata from %s to %s", LEGACY_METADATA_KEY, METADATA_KEY)
    return True
