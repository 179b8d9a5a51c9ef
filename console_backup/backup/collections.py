"""
Collection discovery and export.

A CollectionProvider decides which collections a run covers:
- StaticCollectionProvider: probes a configured allow-list
- DynamicCollectionProvider: asks the store for its collection list

export_collection() fetches one collection and never raises for fetch
errors; the failure is recorded on the result instead.
"""

import logging
from typing import Any, Dict, List, Optional

from .store import RowStore, RowStoreError


logger = logging.getLogger(__name__)


class CollectionExport:
    """Rows fetched for one collection in one run."""

    def __init__(self, collection_id: str, rows: List[Dict[str, Any]] = None,
                 error: Optional[str] = None):
        self.collection_id = collection_id
        self.rows = rows or []
        self.error = error

    @property
    def total(self) -> int:
        return len(self.rows)

    @property
    def failed(self) -> bool:
        return self.error is not None

    def __repr__(self):
        return f'<CollectionExport {self.collection_id} total={self.total} error={self.error!r}>'


def export_collection(store: RowStore, database_id: str, collection_id: str) -> CollectionExport:
    """
    Fetch all rows of a collection.

    Args:
        store: Row store to read from
        database_id: Database containing the collection
        collection_id: Collection to export

    Returns:
        CollectionExport; on failure it carries no rows and the error message
    """
    try:
        rows = list(store.list_rows(database_id, collection_id))
    except RowStoreError as e:
        logger.error(f"Error exporting collection {collection_id}: {e}")
        return CollectionExport(collection_id, error=str(e))
    except Exception as e:
        # Malformed store responses count as a failed fetch too
        logger.exception(f"Unexpected error exporting collection {collection_id}")
        return CollectionExport(collection_id, error=f"{type(e).__name__}: {e}")

    return CollectionExport(collection_id, rows=rows)


class CollectionProvider:
    """
    Base class for collection discovery.

    Applies include/exclude filters on top of whatever the subclass discovers.
    """

    def __init__(self, store: RowStore, database_id: str,
                 include: List[str] = None, exclude: List[str] = None):
        self.store = store
        self.database_id = database_id
        self.include = list(include or [])
        self.exclude = list(exclude or [])

    def discover(self) -> List[str]:
        raise NotImplementedError

    def get_collections(self) -> List[str]:
        """
        Return the collections to back up, in discovery order.

        Include, when set, restricts the result to the listed ids.
        Exclude always removes.
        """
        collection_ids = self.discover()

        if self.include:
            collection_ids = [c for c in collection_ids if c in self.include]

        return [c for c in collection_ids if c not in self.exclude]


class StaticCollectionProvider(CollectionProvider):
    """
    Allow-list discovery.

    Each candidate is probed with a trial fetch; collections that do not
    exist or are not accessible are skipped.
    """

    def __init__(self, store: RowStore, database_id: str, collection_ids: List[str],
                 include: List[str] = None, exclude: List[str] = None):
        super().__init__(store, database_id, include, exclude)
        self.collection_ids = list(collection_ids)

    def discover(self) -> List[str]:
        existing = []

        for collection_id in self.collection_ids:
            try:
                self.store.probe(self.database_id, collection_id)
                existing.append(collection_id)
            except RowStoreError:
                logger.info(f"Collection {collection_id} not accessible, skipping...")

        return existing


class DynamicCollectionProvider(CollectionProvider):
    """Schema discovery through the store's list-collections API."""

    def discover(self) -> List[str]:
        try:
            return self.store.list_collections(self.database_id)
        except RowStoreError as e:
            logger.error(f"Error fetching collections: {e}")
            return []


def create_collection_provider(config, store: RowStore) -> CollectionProvider:
    """
    Build the provider selected by BACKUP_COLLECTION_DISCOVERY.

    Raises:
        ValueError: If the discovery mode is unknown
    """
    mode = config.get('BACKUP_COLLECTION_DISCOVERY', 'dynamic')
    database_id = config['APPWRITE_DATABASE_ID']
    include = config.get('BACKUP_INCLUDE_COLLECTIONS', [])
    exclude = config.get('BACKUP_EXCLUDE_COLLECTIONS', [])

    if mode == 'static':
        return StaticCollectionProvider(
            store, database_id, config.get('BACKUP_STATIC_COLLECTIONS', []),
            include=include, exclude=exclude
        )
    elif mode == 'dynamic':
        return DynamicCollectionProvider(store, database_id, include=include, exclude=exclude)
    else:
        raise ValueError(f"Invalid collection discovery mode: {mode}. Valid options: ['dynamic', 'static']")
