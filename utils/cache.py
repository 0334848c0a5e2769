"""
In-process TTL cache
"""
import hashlib
import json
import threading
import time


class CacheManager:
    """Class-level key/value cache with per-entry expiry"""

    DEFAULT_TTL = 300
    _store = {}
    _lock = threading.Lock()

    @classmethod
    def get(cls, key):
        with cls._lock:
            entry = cls._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at < time.monotonic():
                del cls._store[key]
                return None
            return value

    @classmethod
    def set(cls, key, value, ttl: int = None) -> bool:
        ttl = cls.DEFAULT_TTL if ttl is None else ttl
        expires_at = time.monotonic() + ttl if ttl > 0 else None
        with cls._lock:
            cls._store[key] = (value, expires_at)
        return True

    @classmethod
    def clear(cls):
        with cls._lock:
            cls._store.clear()

    @staticmethod
    def generate_key(*args, **kwargs) -> str:
        raw = json.dumps({'args': args, 'kwargs': kwargs}, sort_keys=True, default=str)
        return hashlib.sha256(raw.encode('utf-8')).hexdigest()
