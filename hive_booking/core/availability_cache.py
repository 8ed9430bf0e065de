import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import date
from typing import Any

import redis

from hive_booking.core.config import settings

logger = logging.getLogger(__name__)

CachedSlots = list[dict[str, Any]]


def _day_key(therapist_id: int, day: date) -> str:
    return f"{therapist_id}:{day.isoformat()}"


class AvailabilityCache(ABC):
    """Computed slot lists keyed by (therapist, date, duration).

    Entries for one (therapist, date) are dropped together whenever a write
    touches that conflict domain. Every invalidation also moves the domain's
    generation token; a reader takes the token before computing and passes it
    to ``set``, which discards the list if an invalidation happened meanwhile.
    """

    @abstractmethod
    def generation(self, therapist_id: int, day: date) -> str:
        raise NotImplementedError

    @abstractmethod
    def get(self, therapist_id: int, day: date, duration_minutes: int) -> CachedSlots | None:
        raise NotImplementedError

    @abstractmethod
    def set(
        self,
        therapist_id: int,
        day: date,
        duration_minutes: int,
        slots: CachedSlots,
        generation: str | None = None,
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    def invalidate(self, therapist_id: int, day: date | None = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def reset(self) -> None:
        raise NotImplementedError


class InMemoryAvailabilityCache(AvailabilityCache):
    def __init__(self, ttl_seconds: int) -> None:
        self._ttl_seconds = ttl_seconds
        self._entries: dict[str, dict[int, tuple[float, CachedSlots]]] = {}
        self._day_generations: dict[str, int] = {}
        self._therapist_generations: dict[int, int] = {}
        self._lock = threading.Lock()

    def _current_generation(self, therapist_id: int, day: date) -> str:
        therapist_generation = self._therapist_generations.get(therapist_id, 0)
        day_generation = self._day_generations.get(_day_key(therapist_id, day), 0)
        return f"{therapist_generation}:{day_generation}"

    def generation(self, therapist_id: int, day: date) -> str:
        with self._lock:
            return self._current_generation(therapist_id, day)

    def get(self, therapist_id: int, day: date, duration_minutes: int) -> CachedSlots | None:
        with self._lock:
            entry = self._entries.get(_day_key(therapist_id, day), {}).get(duration_minutes)
            if entry is None:
                return None
            expires_at, slots = entry
            if expires_at <= time.monotonic():
                del self._entries[_day_key(therapist_id, day)][duration_minutes]
                return None
            return slots

    def set(
        self,
        therapist_id: int,
        day: date,
        duration_minutes: int,
        slots: CachedSlots,
        generation: str | None = None,
    ) -> None:
        with self._lock:
            if generation is not None and generation != self._current_generation(therapist_id, day):
                return
            per_duration = self._entries.setdefault(_day_key(therapist_id, day), {})
            per_duration[duration_minutes] = (time.monotonic() + self._ttl_seconds, slots)

    def invalidate(self, therapist_id: int, day: date | None = None) -> None:
        with self._lock:
            if day is not None:
                key = _day_key(therapist_id, day)
                self._day_generations[key] = self._day_generations.get(key, 0) + 1
                self._entries.pop(key, None)
                return
            self._therapist_generations[therapist_id] = self._therapist_generations.get(therapist_id, 0) + 1
            prefix = f"{therapist_id}:"
            for key in [key for key in self._entries if key.startswith(prefix)]:
                del self._entries[key]

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
            self._day_generations.clear()
            self._therapist_generations.clear()


class RedisAvailabilityCache(AvailabilityCache):
    def __init__(self, redis_url: str, ttl_seconds: int, prefix: str = "hive:avail") -> None:
        self._client = redis.Redis.from_url(
            redis_url,
            socket_connect_timeout=0.2,
            socket_timeout=0.2,
            decode_responses=True,
        )
        self._ttl_seconds = ttl_seconds
        self._prefix = prefix

    def _key(self, therapist_id: int, day: date, duration_minutes: int) -> str:
        return f"{self._prefix}:{_day_key(therapist_id, day)}:{duration_minutes}"

    def _generation_keys(self, therapist_id: int, day: date) -> tuple[str, str]:
        return (
            f"{self._prefix}:gen:{therapist_id}",
            f"{self._prefix}:gen:{_day_key(therapist_id, day)}",
        )

    def _read_generation(self, client: Any, therapist_id: int, day: date) -> str:
        therapist_generation, day_generation = client.mget(self._generation_keys(therapist_id, day))
        return f"{therapist_generation or 0}:{day_generation or 0}"

    def generation(self, therapist_id: int, day: date) -> str:
        return self._read_generation(self._client, therapist_id, day)

    def get(self, therapist_id: int, day: date, duration_minutes: int) -> CachedSlots | None:
        payload = self._client.get(self._key(therapist_id, day, duration_minutes))
        if payload is None:
            return None
        return json.loads(payload)

    def set(
        self,
        therapist_id: int,
        day: date,
        duration_minutes: int,
        slots: CachedSlots,
        generation: str | None = None,
    ) -> None:
        key = self._key(therapist_id, day, duration_minutes)
        payload = json.dumps(slots)
        if generation is None:
            self._client.setex(key, self._ttl_seconds, payload)
            return

        with self._client.pipeline() as pipe:
            try:
                pipe.watch(*self._generation_keys(therapist_id, day))
                if self._read_generation(pipe, therapist_id, day) != generation:
                    return
                pipe.multi()
                pipe.setex(key, self._ttl_seconds, payload)
                pipe.execute()
            except redis.WatchError:
                logger.info("availability_cache_stale_write therapist_id=%s date=%s", therapist_id, day)

    def invalidate(self, therapist_id: int, day: date | None = None) -> None:
        # Generation first: a writer that races the delete below sees the new token.
        if day is not None:
            self._client.incr(self._generation_keys(therapist_id, day)[1])
            pattern = f"{self._prefix}:{_day_key(therapist_id, day)}:*"
        else:
            self._client.incr(f"{self._prefix}:gen:{therapist_id}")
            pattern = f"{self._prefix}:{therapist_id}:*"
        keys = list(self._client.scan_iter(match=pattern))
        if keys:
            self._client.delete(*keys)

    def reset(self) -> None:
        keys = list(self._client.scan_iter(match=f"{self._prefix}:*"))
        if keys:
            self._client.delete(*keys)


class FallbackAvailabilityCache(AvailabilityCache):
    """Uses Redis when reachable and process memory otherwise.

    Invalidation is applied to both layers so neither can serve a list that
    predates a booking.
    """

    def __init__(self, primary: AvailabilityCache, fallback: AvailabilityCache) -> None:
        self._primary = primary
        self._fallback = fallback

    def generation(self, therapist_id: int, day: date) -> str:
        try:
            return self._primary.generation(therapist_id, day)
        except redis.RedisError as exc:
            logger.warning("availability_cache_fallback op=generation error=%s", exc)
            return self._fallback.generation(therapist_id, day)

    def get(self, therapist_id: int, day: date, duration_minutes: int) -> CachedSlots | None:
        try:
            return self._primary.get(therapist_id, day, duration_minutes)
        except redis.RedisError as exc:
            logger.warning("availability_cache_fallback op=get error=%s", exc)
            return self._fallback.get(therapist_id, day, duration_minutes)

    def set(
        self,
        therapist_id: int,
        day: date,
        duration_minutes: int,
        slots: CachedSlots,
        generation: str | None = None,
    ) -> None:
        try:
            self._primary.set(therapist_id, day, duration_minutes, slots, generation=generation)
        except redis.RedisError as exc:
            logger.warning("availability_cache_fallback op=set error=%s", exc)
            self._fallback.set(therapist_id, day, duration_minutes, slots, generation=generation)

    def invalidate(self, therapist_id: int, day: date | None = None) -> None:
        try:
            self._primary.invalidate(therapist_id, day)
        except redis.RedisError as exc:
            logger.warning("availability_cache_fallback op=invalidate error=%s", exc)
        self._fallback.invalidate(therapist_id, day)

    def reset(self) -> None:
        try:
            self._primary.reset()
        except redis.RedisError as exc:
            logger.warning("availability_cache_fallback op=reset error=%s", exc)
        self._fallback.reset()


def _build_availability_cache() -> AvailabilityCache:
    backend = settings.availability_cache_backend.strip().lower()
    memory = InMemoryAvailabilityCache(ttl_seconds=settings.availability_cache_ttl_seconds)
    if backend == "redis":
        redis_cache = RedisAvailabilityCache(
            redis_url=settings.availability_cache_redis_url,
            ttl_seconds=settings.availability_cache_ttl_seconds,
        )
        return FallbackAvailabilityCache(primary=redis_cache, fallback=memory)
    return memory


availability_cache: AvailabilityCache = _build_availability_cache()
