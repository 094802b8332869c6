"""
Per-client tag preferences, keyed by media type and optional sub-category
"""
from typing import List, Optional

import structlog

from .douban import FALLBACK_TAGS, MEDIA_TYPES
from .errors import InvalidRequest, ProtectedTag, TagAlreadyExists
from .storage import KeyValueStorage

logger = structlog.get_logger(__name__)

PROTECTED_TAG = '热门'

DEFAULT_TAGS = {media_type: FALLBACK_TAGS[media_type] for media_type in MEDIA_TYPES}
CATEGORY_DEFAULT_TAGS = [PROTECTED_TAG]


def sanitize_tag(tag: str) -> str:
    return tag.replace('<', '&lt;').replace('>', '&gt;').replace('"', '&quot;').strip()


class TagStore:
    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    def storage_key(self, client_id: str, media_type: str, category: Optional[str] = None) -> str:
        if media_type not in DEFAULT_TAGS:
            raise InvalidRequest("type must be movie or tv")
        suffix = f"{media_type}_{category}" if category else media_type
        return f"tags:{client_id}:{suffix}"

    def defaults(self, media_type: str, category: Optional[str] = None) -> List[str]:
        if category:
            return list(CATEGORY_DEFAULT_TAGS)
        return list(DEFAULT_TAGS[media_type])

    def load(self, client_id: str, media_type: str, category: Optional[str] = None) -> List[str]:
        stored = self.storage.get(self.storage_key(client_id, media_type, category))
        if isinstance(stored, list) and stored and all(isinstance(t, str) for t in stored):
            return stored
        return self.defaults(media_type, category)

    def add(self, client_id: str, media_type: str, tag: str, category: Optional[str] = None) -> List[str]:
        safe_tag = sanitize_tag(tag or '')
        if not safe_tag:
            raise InvalidRequest("Tag must not be empty")

        tags = self.load(client_id, media_type, category)
        if any(existing.lower() == safe_tag.lower() for existing in tags):
            raise TagAlreadyExists(f"Tag already exists: {safe_tag}")

        tags = tags + [safe_tag]
        self._save(client_id, media_type, category, tags)
        return tags

    def remove(self, client_id: str, media_type: str, tag: str, category: Optional[str] = None) -> List[str]:
        if tag == PROTECTED_TAG:
            raise ProtectedTag(f"Tag {PROTECTED_TAG} cannot be deleted")

        tags = self.load(client_id, media_type, category)
        if tag not in tags:
            return tags
        tags = [t for t in tags if t != tag]
        self._save(client_id, media_type, category, tags)
        return tags

    def reset(self, client_id: str, media_type: str, category: Optional[str] = None) -> List[str]:
        key = self.storage_key(client_id, media_type, category)
        tags = self.defaults(media_type, category)
        self.storage.set(key, tags)
        logger.info("tags_reset", client_id=client_id, media_type=media_type, category=category)
        return list(tags)

    def _save(self, client_id, media_type, category, tags):
        self.storage.set(self.storage_key(client_id, media_type, category), list(tags))
        logger.info("tags_saved", client_id=client_id, media_type=media_type, category=category, count=len(tags))
