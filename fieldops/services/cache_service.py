"""
Redis cache for the two read-mostly lookups of the draft engine: a company's
product-template catalog and the invoice generated for a quote.

Every call degrades to the loader when Redis is down or disabled.
"""

import json
import logging
from typing import Any, Callable, List, Optional

import redis
from redis.exceptions import RedisError, ConnectionError, TimeoutError
from flask import Flask

logger = logging.getLogger(__name__)


class LookupCache:
    """
    Cache-aside store for template catalogs and quote invoices.

    Keys pattern: {prefix}:templates:{company_id} and {prefix}:invoice:{quote_id}
    """

    def __init__(self, app: Optional[Flask] = None):
        self.client: Optional[redis.Redis] = None
        self._enabled: bool = False
        self._prefix: str = "fieldops"
        self.templates_ttl: int = 300
        self.invoice_ttl: int = 30

        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        """Connect to Redis using the app config; disable the cache if that fails."""
        self._enabled = app.config.get('CACHE_ENABLED', True)
        self._prefix = app.config.get('CACHE_KEY_PREFIX', 'fieldops')
        self.templates_ttl = app.config.get('CACHE_TEMPLATES_TTL', 300)
        self.invoice_ttl = app.config.get('CACHE_INVOICE_TTL', 30)
        redis_url = app.config.get('REDIS_URL', 'redis://redis:6379/0')

        if not self._enabled:
            logger.info("[CACHE] Cache is DISABLED via config")
            return

        try:
            self.client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                retry_on_timeout=True,
                health_check_interval=30
            )
            self.client.ping()
            logger.info(f"[CACHE] Redis connected: {redis_url}")
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"[CACHE] Redis connection failed: {e}. Cache DISABLED.")
            self._enabled = False
            self.client = None

    def is_available(self) -> bool:
        if not self._enabled or not self.client:
            return False
        try:
            self.client.ping()
            return True
        except (ConnectionError, RedisError):
            return False

    def _key(self, kind: str, owner_id: str) -> str:
        return f"{self._prefix}:{kind}:{owner_id}"

    # Raw access, one JSON document per key

    def _read(self, key: str) -> Optional[Any]:
        if not self.is_available():
            return None
        try:
            value = self.client.get(key)
            return json.loads(value) if value is not None else None
        except (RedisError, json.JSONDecodeError) as e:
            logger.warning(f"[CACHE] Read error on {key}: {e}")
            return None

    def _write(self, key: str, value: Any, ttl: int) -> None:
        if not self.is_available():
            return
        try:
            self.client.setex(key, ttl, json.dumps(value))
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] Write error on {key}: {e}")

    def _drop(self, key: str) -> bool:
        if not self.is_available():
            return False
        try:
            return bool(self.client.delete(key))
        except RedisError as e:
            logger.warning(f"[CACHE] Delete error on {key}: {e}")
            return False

    def _remember(self, key: str, ttl: int, loader: Callable[[], Any]) -> Any:
        cached = self._read(key)
        if cached is not None:
            return cached
        value = loader()
        # "No invoice yet" is not stored, the next read asks the store again
        if value is not None:
            self._write(key, value, ttl)
        return value

    # Lookups

    def company_templates(self, company_id: str, loader: Callable[[], List[dict]]) -> List[dict]:
        """Raw template rows of a company's catalog."""
        return self._remember(self._key('templates', company_id), self.templates_ttl, loader)

    def quote_invoice(self, quote_id: str, loader: Callable[[], Optional[dict]]) -> Optional[dict]:
        """Raw invoice row generated for a quote, or None."""
        return self._remember(self._key('invoice', quote_id), self.invoice_ttl, loader)

    def forget_quote_invoice(self, quote_id: str) -> bool:
        """Drop a quote's cached invoice after its balance changed."""
        dropped = self._drop(self._key('invoice', quote_id))
        if dropped:
            logger.info(f"[CACHE] INVALIDATE: invoice of quote {quote_id}")
        return dropped


def init_cache(app: Flask) -> LookupCache:
    """Create the cache and attach it to the app."""
    cache = LookupCache(app)
    app.extensions['cache'] = cache
    return cache
