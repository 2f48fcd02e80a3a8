"""
Edge response cache (cache-aside).

GET responses are cached in Redis keyed by URL plus the one request header
that changes the representation (HTML acceptance, for Markdown pastes). The
store stays the source of truth: entries expire with the paste's max-age,
and DELETE invalidates both variants on a best-effort basis.
"""
import json
import logging
from typing import List, Optional, Tuple

from fastapi import Request
from starlette.responses import Response

from pastebox.config import settings
from pastebox.database import PasteDatabase, db
from pastebox.security import wants_html

logger = logging.getLogger(__name__)

CACHE_PREFIX = "cache:"
VARIANTS = ("raw", "html")


class ResponseCache:
    """Read-through lookups and deferred population/invalidation of GET responses."""

    def __init__(self, database: PasteDatabase = db):
        self.database = database

    @staticmethod
    def cache_key(url: str, variant: str) -> str:
        return f"{CACHE_PREFIX}{variant}:{url}"

    def key_for(self, request: Request) -> str:
        variant = "html" if wants_html(request) else "raw"
        return self.cache_key(str(request.url), variant)

    def lookup(self, request: Request) -> Optional[Response]:
        """Return the cached response for this request, or None on miss or error."""
        if not settings.CACHE_ENABLED or request.method != "GET":
            return None
        key = self.key_for(request)
        try:
            entry = self.database.redis.hgetall(key)
        except Exception as e:
            logger.error(f"Cache lookup failed for {key}: {e}")
            return None
        if not entry:
            return None

        try:
            headers: List[Tuple[str, str]] = json.loads(entry[b"headers"])
            status_code = int(entry[b"status"])
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            return None

        logger.debug(f"Cache hit for {key}")
        response = Response(content=entry.get(b"body", b""), status_code=status_code)
        response.raw_headers = [(name.encode("latin-1"), value.encode("latin-1")) for name, value in headers]
        return response

    def store(self, request: Request, response: Response, max_age: int) -> bool:
        """Save a copy of `response` for `max_age` seconds."""
        if not settings.CACHE_ENABLED or max_age <= 0:
            return False
        key = self.key_for(request)
        headers = [(name.decode("latin-1"), value.decode("latin-1")) for name, value in response.raw_headers]
        try:
            # entry and TTL land together so no entry outlives its paste
            pipe = self.database.redis.pipeline(transaction=True)
            pipe.hset(key, mapping={
                "status": response.status_code,
                "headers": json.dumps(headers),
                "body": bytes(response.body),
            })
            pipe.expire(key, max_age)
            pipe.execute()
            logger.debug(f"Cached {key} for {max_age}s")
            return True
        except Exception as e:
            logger.error(f"Cache populate failed for {key}: {e}")
            return False

    def invalidate(self, url: str) -> bool:
        """Drop every cached variant of the canonical GET URL."""
        keys = [self.cache_key(url, variant) for variant in VARIANTS]
        try:
            self.database.redis.delete(*keys)
            logger.info(f"Invalidated cache for {url}")
            return True
        except Exception as e:
            logger.error(f"Cache invalidation failed for {url}: {e}")
            return False


response_cache = ResponseCache()
