"""
Key/value storage for tag preferences: in-memory or MongoDB
"""
from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from pymongo import MongoClient

logger = structlog.get_logger(__name__)


class KeyValueStorage:
    """Interface shared by the storage backends."""

    def get(self, key: str) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def close(self):
        pass


class MemoryStorage(KeyValueStorage):
    def __init__(self):
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value


class MongoStorage(KeyValueStorage):
    """One document per key: ``{_id: key, value: ..., updated_at: ...}``."""

    def __init__(self, config: dict = None, collection=None):
        if collection is not None:
            self.collection = collection
            self.client = None
            return

        if config and 'mongodb' in config and config['mongodb'].get('uri'):
            self.connection_string = config['mongodb']['uri']
            self.database_name = config['mongodb'].get('database', 'catalog')
            self.collection_name = config['mongodb'].get('collection', 'tag_preferences')
        else:
            raise ValueError("Config dict with a mongodb section and uri must be provided")

        self.client = None
        self.collection = None

    def connect(self) -> bool:
        """Connect to MongoDB and bind the collection"""
        try:
            self.client = MongoClient(self.connection_string)
            self.collection = self.client[self.database_name][self.collection_name]
            return True
        except Exception as e:
            logger.error("mongodb_connect_failed", error=str(e))
            return False

    def get(self, key: str) -> Any:
        doc = self.collection.find_one({'_id': key})
        return doc['value'] if doc else None

    def set(self, key: str, value: Any) -> None:
        self.collection.replace_one(
            {'_id': key},
            {'_id': key, 'value': value, 'updated_at': datetime.now(timezone.utc)},
            upsert=True,
        )

    def close(self):
        """Close MongoDB connection"""
        if self.client:
            self.client.close()


def create_storage(config: dict) -> KeyValueStorage:
    """Pick the storage backend named by ``storage.backend``."""
    backend = (config.get('storage') or {}).get('backend', 'memory')
    if backend == 'memory':
        return MemoryStorage()
    if backend == 'mongodb':
        storage = MongoStorage(config=config)
        if not storage.connect():
            raise RuntimeError("Failed to connect to MongoDB")
        return storage
    raise ValueError(f"Unknown storage backend: {backend}")
