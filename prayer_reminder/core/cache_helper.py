import os
import json
from datetime import date
import logging
from typing import Any, Optional
import hashlib

logger = logging.getLogger(__name__)


class CacheHelper:
    """Day-scoped JSON file cache. An entry is only returned on the day it was written for."""
    DEFAULT_CACHE_DIR = "~/.prayer_reminder/cache"

    def __init__(self, cache_dir: Optional[str] = None, namespace: str = ""):
        """
        Args:
            cache_dir: Base cache directory from config, if None uses DEFAULT_CACHE_DIR
            namespace: Subdirectory for this cache's owner
        """
        base_dir = os.path.expanduser(cache_dir or self.DEFAULT_CACHE_DIR)
        self.cache_dir = os.path.join(base_dir, namespace) if namespace else base_dir
        os.makedirs(self.cache_dir, exist_ok=True)

    def _get_cache_file(self, key: str) -> str:
        key_hash = hashlib.md5(key.encode()).hexdigest()
        return os.path.join(self.cache_dir, f"{key_hash}.json")

    def get(self, key: str, day: date) -> Optional[Any]:
        """Cached content for key if it was saved for day, else None."""
        cache_file = self._get_cache_file(key)
        if not os.path.exists(cache_file):
            return None
        try:
            with open(cache_file, 'r') as f:
                cached = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error reading cache {cache_file}: {e}")
            return None
        if cached.get('date') != day.isoformat():
            return None
        return cached.get('content')

    def save(self, key: str, day: date, content: Any) -> None:
        try:
            with open(self._get_cache_file(key), 'w') as f:
                json.dump({'date': day.isoformat(), 'content': content}, f)
        except (OSError, TypeError) as e:
            logger.error(f"Error saving to cache: {e}")
