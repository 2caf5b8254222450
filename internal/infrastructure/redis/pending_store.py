"""
Redis pending-resolution store.

Durable home of the markers for media waiting on a product or article.
Markers survive worker restarts, so a restarted sweeper resumes the
retries where the previous process left them.

Layout:
    mdm:pending:<media_id>     msgpack-encoded marker
    mdm:pending:ean:<ean>      set of media ids waiting on the EAN
    mdm:pending:all            set of every pending media id
"""
from typing import Optional

import msgpack
import redis.asyncio as aioredis
from redis.asyncio import Redis

from internal.domain.linking import PendingResolution
from pkg.logger.logger import get_logger


logger = get_logger(__name__)


KEY_PREFIX = "mdm:pending"


class RedisPendingStore:
    """
    Redis implementation of the pending store.

    Uses msgpack for compact serialization and MULTI/EXEC pipelines so a
    marker and its index entries change together.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        client: Optional[Redis] = None,
        key_prefix: str = KEY_PREFIX,
    ) -> None:
        """
        Initialize the store.

        Args:
            redis_url: Redis connection URL.
            client: Already connected client; ``connect`` is then a no-op.
            key_prefix: Namespace of the keys.
        """
        self._redis_url = redis_url
        self._redis: Optional[Redis] = client
        self._prefix = key_prefix

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._redis is not None:
            return
        self._redis = aioredis.from_url(
            self._redis_url,
            encoding=None,  # We use binary for msgpack
            decode_responses=False,
        )
        await self._redis.ping()
        logger.info("Connected to Redis", url=self._redis_url)

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Disconnected from Redis")

    def _client(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("Redis pending store not connected")
        return self._redis

    def _marker_key(self, media_id: str) -> str:
        return f"{self._prefix}:{media_id}"

    def _ean_key(self, ean: str) -> str:
        return f"{self._prefix}:ean:{ean}"

    @property
    def _all_key(self) -> str:
        return f"{self._prefix}:all"

    async def get(self, media_id: str) -> Optional[PendingResolution]:
        data = await self._client().get(self._marker_key(media_id))
        if data is None:
            return None
        return PendingResolution.from_dict(msgpack.unpackb(data, raw=False))

    async def put(self, pending: PendingResolution) -> None:
        """
        Store or replace a marker and index it by EAN.

        Args:
            pending: Marker to store.
        """
        packed = msgpack.packb(pending.to_dict(), use_bin_type=True)
        async with self._client().pipeline(transaction=True) as pipe:
            pipe.set(self._marker_key(pending.media_id), packed)
            pipe.sadd(self._ean_key(pending.ean), pending.media_id)
            pipe.sadd(self._all_key, pending.media_id)
            await pipe.execute()

    async def delete(self, media_id: str) -> None:
        """
        Remove a marker and its index entries; unknown ids are ignored.

        Args:
            media_id: Media whose marker to remove.
        """
        existing = await self.get(media_id)
        async with self._client().pipeline(transaction=True) as pipe:
            pipe.delete(self._marker_key(media_id))
            pipe.srem(self._all_key, media_id)
            if existing:
                pipe.srem(self._ean_key(existing.ean), media_id)
            await pipe.execute()

    async def list_by_ean(self, ean: str) -> list[PendingResolution]:
        media_ids = await self._client().smembers(self._ean_key(ean))
        return await self._load_many(media_ids)

    async def list_all(self) -> list[PendingResolution]:
        media_ids = await self._client().smembers(self._all_key)
        return await self._load_many(media_ids)

    async def _load_many(self, media_ids: set) -> list[PendingResolution]:
        if not media_ids:
            return []
        ids = sorted(m.decode("utf-8") if isinstance(m, bytes) else m for m in media_ids)
        values = await self._client().mget([self._marker_key(media_id) for media_id in ids])
        markers = []
        for media_id, data in zip(ids, values):
            if data is None:
                # Index entry outlived its marker
                logger.debug("Dangling pending index entry", media_id=media_id)
                continue
            markers.append(PendingResolution.from_dict(msgpack.unpackb(data, raw=False)))
        return markers
