"""
Redis Caching Utility for the ClinicQ API
Provides short-lived caching for patient-facing queue status reads, which are
polled far more often than the queue changes.
"""

import redis
import json
import os
from typing import Optional, Any
from datetime import date
import logging

logger = logging.getLogger(__name__)

# Redis connection settings
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
CACHE_ENABLED = os.getenv("CACHE_ENABLED", "true").lower() == "true"


# Cache TTL settings (in seconds)
class CacheTTL:
    QUEUE_STATUS = 5  # positions shift with every check-in and call


# Cache key prefixes
class CacheKeys:
    QUEUE_STATUS = "queue:status:{doctor_id}:{queue_date}:entry:{entry_id}"
    QUEUE_STATUS_DOCTOR = "queue:status:{doctor_id}:*"


class RedisCache:
    """Redis cache manager with connection pooling and error handling"""

    _instance: Optional['RedisCache'] = None
    _redis_client: Optional[redis.Redis] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._redis_client is None and CACHE_ENABLED:
            try:
                self._redis_client = redis.from_url(
                    REDIS_URL,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True
                )
                # Test connection
                self._redis_client.ping()
                logger.info("Redis cache connected successfully")
            except redis.ConnectionError as e:
                logger.warning(f"Redis connection failed: {e}. Caching disabled.")
                self._redis_client = None
            except redis.RedisError as e:
                logger.warning(f"Redis initialization error: {e}. Caching disabled.")
                self._redis_client = None

    @property
    def is_available(self) -> bool:
        if not CACHE_ENABLED or self._redis_client is None:
            return False
        try:
            self._redis_client.ping()
            return True
        except redis.RedisError:
            return False

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        if not self.is_available:
            return None
        try:
            value = self._redis_client.get(key)
            if value:
                return json.loads(value)
            return None
        except (redis.RedisError, ValueError) as e:
            logger.error(f"Cache get error for key {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        """Set value in cache with TTL"""
        if not self.is_available:
            return False
        try:
            serialized = json.dumps(value, default=str)
            self._redis_client.setex(key, ttl, serialized)
            return True
        except (redis.RedisError, TypeError) as e:
            logger.error(f"Cache set error for key {key}: {e}")
            return False

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern"""
        if not self.is_available:
            return 0
        try:
            keys = self._redis_client.keys(pattern)
            if keys:
                return self._redis_client.delete(*keys)
            return 0
        except redis.RedisError as e:
            logger.error(f"Cache delete pattern error for {pattern}: {e}")
            return 0


# Singleton instance
cache = RedisCache()


class QueueCache:
    """Queue status caching operations"""

    @staticmethod
    def get_status(doctor_id: int, queue_date: date, entry_id: int) -> Optional[dict]:
        key = CacheKeys.QUEUE_STATUS.format(doctor_id=doctor_id, queue_date=queue_date, entry_id=entry_id)
        return cache.get(key)

    @staticmethod
    def set_status(doctor_id: int, queue_date: date, entry_id: int, status_data: dict) -> bool:
        key = CacheKeys.QUEUE_STATUS.format(doctor_id=doctor_id, queue_date=queue_date, entry_id=entry_id)
        return cache.set(key, status_data, CacheTTL.QUEUE_STATUS)

    @staticmethod
    def invalidate_doctor(doctor_id: int) -> int:
        """
        Drop every cached status for a doctor. Presence and the WITH_DOCTOR
        slot are doctor-wide, so a single queue change can move any date.
        """
        return cache.delete_pattern(CacheKeys.QUEUE_STATUS_DOCTOR.format(doctor_id=doctor_id))
