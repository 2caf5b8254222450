"""
PostgreSQL stores for the MDM core.

Implements the store ports with asyncpg. Product writes use the version
column as an optimistic concurrency token: an update only applies when
``WHERE version = $n`` still matches. The ``*_with_outbox`` methods write
the entity and its event to ``outbox_events`` in one transaction.
"""

import json
from typing import Any, Optional

import asyncpg
from asyncpg import Connection, Pool

from internal.domain.clock import utcnow
from internal.domain.errors import (
    ConcurrentModificationError,
    DuplicateArticleError,
    DuplicateProductError,
    LinkAlreadyExistsError,
    MediaNotFoundError,
)
from internal.domain.events import DomainEvent
from internal.domain.linking import ProductMediaLink
from internal.domain.media import LinkStatus, Media, MediaFormat, ParsedFileKey
from internal.domain.product import Article, Product, ProductStatus, serialize_value
from internal.domain.typology import Typology
from internal.domain.value_objects import TypologyRef
from internal.usecase.ports import IBinaryStore


def _serialize_json(data: Any) -> str:
    """
    Safely serialize data to JSON.

    Args:
        data: Data to serialize.

    Returns:
        JSON string.

    Raises:
        TypeError: If data contains non-serializable objects.
    """
    try:
        return json.dumps(data)
    except (TypeError, ValueError) as e:
        raise TypeError(f"Failed to serialize data to JSON: {e}") from e


def _load_json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


def _affected_rows(status: str) -> int:
    """Row count from an asyncpg command status such as ``UPDATE 1``."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


async def _record_event(conn: Connection, event: DomainEvent) -> None:
    """Insert an event into the outbox on the caller's connection."""
    await conn.execute(
        """
        INSERT INTO outbox_events (
            event_id, entity_id, event_type, payload, created_at
        ) VALUES ($1, $2, $3, $4, $5)
        """,
        event.event_id,
        event.entity_id,
        event.kind.value,
        _serialize_json(event.to_dict()),
        event.occurred_at,
    )


class PostgresProductStore:
    """
    PostgreSQL implementation of the product store.

    Attributes are kept as a JSONB document next to the typology reference
    they were validated against.
    """

    _COLUMNS = """
        ean, typology_id, typology_version, attributes, status,
        version, created_at, updated_at
    """

    def __init__(self, pool: Pool) -> None:
        """
        Initialize the store.

        Args:
            pool: asyncpg connection pool.
        """
        self._pool = pool

    async def get(self, ean: str) -> Optional[Product]:
        """
        Get a product by EAN.

        Args:
            ean: Product identifier.

        Returns:
            Product if found, None otherwise.
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {self._COLUMNS} FROM products WHERE ean = $1",
                ean,
            )
            if not row:
                return None
            return self._row_to_entity(row)

    async def find_by_ean(self, ean: str) -> list[Product]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {self._COLUMNS} FROM products WHERE ean = $1",
                ean,
            )
            return [self._row_to_entity(row) for row in rows]

    async def save(self, product: Product, expected_version: Optional[int]) -> Product:
        """
        Insert or compare-and-set update a product.

        Args:
            product: New product state.
            expected_version: None for an insert, else the version being replaced.

        Returns:
            The stored product.

        Raises:
            DuplicateProductError: If an insert hits an existing EAN.
            ConcurrentModificationError: If the stored version moved on.
        """
        async with self._pool.acquire() as conn:
            return await self._write(conn, product, expected_version)

    async def save_with_outbox(
        self,
        product: Product,
        expected_version: Optional[int],
        event: DomainEvent,
    ) -> Product:
        """
        Save a product and record its event atomically.

        Raises:
            DuplicateProductError: If an insert hits an existing EAN.
            ConcurrentModificationError: If the stored version moved on.
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                stored = await self._write(conn, product, expected_version)
                await _record_event(conn, event)
        return stored

    async def _write(
        self,
        conn: Connection,
        product: Product,
        expected_version: Optional[int],
    ) -> Product:
        attributes = _serialize_json(
            {k: serialize_value(v) for k, v in product.attributes.items()}
        )

        if expected_version is None:
            status = await conn.execute(
                """
                INSERT INTO products (
                    ean, typology_id, typology_version, attributes, status,
                    version, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                ON CONFLICT (ean) DO NOTHING
                """,
                product.ean,
                product.typology_ref.typology_id,
                product.typology_ref.version,
                attributes,
                product.status.value,
                product.version,
                product.created_at,
                product.updated_at,
            )
            if _affected_rows(status) == 0:
                raise DuplicateProductError(product.ean)
            return product

        status = await conn.execute(
            """
            UPDATE products
            SET typology_id = $2,
                typology_version = $3,
                attributes = $4,
                status = $5,
                version = $6,
                updated_at = $7
            WHERE ean = $1 AND version = $8
            """,
            product.ean,
            product.typology_ref.typology_id,
            product.typology_ref.version,
            attributes,
            product.status.value,
            product.version,
            product.updated_at,
            expected_version,
        )
        if _affected_rows(status) == 0:
            actual = await conn.fetchval(
                "SELECT version FROM products WHERE ean = $1", product.ean
            )
            raise ConcurrentModificationError(product.ean, expected_version, actual)
        return product

    def _row_to_entity(self, row: asyncpg.Record) -> Product:
        return Product(
            ean=row["ean"],
            typology_ref=TypologyRef(
                typology_id=row["typology_id"], version=row["typology_version"]
            ),
            attributes=_load_json(row["attributes"]) or {},
            status=ProductStatus(row["status"]),
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class PostgresArticleStore:
    """PostgreSQL implementation of the article store."""

    def __init__(self, pool: Pool) -> None:
        self._pool = pool

    async def get_by_sku(self, sku: str, product_ean: str) -> Optional[Article]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT sku, product_ean, attribute_overrides, created_at
                FROM articles
                WHERE product_ean = $1 AND sku = $2
                """,
                product_ean,
                sku,
            )
            if not row:
                return None
            return Article(
                sku=row["sku"],
                product_ean=row["product_ean"],
                attribute_overrides=_load_json(row["attribute_overrides"]) or {},
                created_at=row["created_at"],
            )

    async def save(self, article: Article) -> Article:
        """
        Insert an article.

        Raises:
            DuplicateArticleError: If the SKU exists for the product.
        """
        async with self._pool.acquire() as conn:
            await self._insert(conn, article)
        return article

    async def save_with_outbox(self, article: Article, event: DomainEvent) -> Article:
        """Insert an article and record its event atomically."""
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await self._insert(conn, article)
                await _record_event(conn, event)
        return article

    async def _insert(self, conn: Connection, article: Article) -> None:
        try:
            await conn.execute(
                """
                INSERT INTO articles (sku, product_ean, attribute_overrides, created_at)
                VALUES ($1, $2, $3, $4)
                """,
                article.sku,
                article.product_ean,
                _serialize_json(
                    {k: serialize_value(v) for k, v in article.attribute_overrides.items()}
                ),
                article.created_at,
            )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateArticleError(article.sku, article.product_ean) from e


class PostgresMediaStore:
    """
    PostgreSQL implementation of the media store.

    Metadata lives in Postgres; binaries are delegated to a binary store
    (the local filesystem store in production).
    """

    _COLUMNS = """
        id, original_filename, parsed_key, format, storage_ref,
        content_hash, size_bytes, link_status, link_reason, link_candidates,
        created_at, updated_at
    """

    def __init__(self, pool: Pool, binaries: IBinaryStore) -> None:
        """
        Initialize the store.

        Args:
            pool: asyncpg connection pool.
            binaries: Store holding the binary content.
        """
        self._pool = pool
        self._binaries = binaries

    async def save_binary(self, ref: str, data: bytes) -> str:
        return await self._binaries.save_binary(ref, data)

    async def read_binary(self, ref: str) -> Optional[bytes]:
        return await self._binaries.read_binary(ref)

    async def save(self, media: Media) -> Media:
        """
        Insert media metadata; an existing id is left untouched.

        Returns:
            The stored media (the existing row on conflict).
        """
        async with self._pool.acquire() as conn:
            inserted = await self._insert(conn, media)
        if not inserted:
            existing = await self.get(media.id)
            if existing:
                return existing
        return media

    async def save_with_outbox(self, media: Media, event: DomainEvent) -> tuple[Media, bool]:
        """
        Insert media metadata and record its event atomically.

        Returns:
            The stored media and whether this call inserted it. On conflict
            the existing row is returned and no event is recorded.
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                inserted = await self._insert(conn, media)
                if inserted:
                    await _record_event(conn, event)
        if inserted:
            return media, True
        existing = await self.get(media.id)
        return (existing or media), False

    async def _insert(self, conn: Connection, media: Media) -> bool:
        status = await conn.execute(
            """
            INSERT INTO media (
                id, original_filename, parsed_key, format, storage_ref,
                content_hash, size_bytes, link_status, created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            ON CONFLICT (id) DO NOTHING
            """,
            media.id,
            media.original_filename,
            _serialize_json(media.parsed_key.to_dict()),
            _serialize_json(media.media_format.to_dict()),
            media.storage_ref,
            media.content_hash,
            media.size_bytes,
            media.link_status.value,
            media.created_at,
            media.updated_at,
        )
        return _affected_rows(status) > 0

    async def get(self, media_id: str) -> Optional[Media]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {self._COLUMNS} FROM media WHERE id = $1",
                media_id,
            )
            if not row:
                return None
            return self._row_to_entity(row)

    async def update_link_status(
        self,
        media_id: str,
        status: LinkStatus,
        reason: Optional[str] = None,
        candidates: Optional[list[str]] = None,
        event: Optional[DomainEvent] = None,
    ) -> None:
        """
        Set the link status of a media asset.

        Args:
            media_id: Media to update.
            status: New link status.
            reason: Why the media is pending, ambiguous or failed.
            candidates: Competing EANs of an ambiguous match.
            event: Event recorded in the same transaction, if any.

        Raises:
            MediaNotFoundError: If the media id is unknown.
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                result = await conn.execute(
                    """
                    UPDATE media
                    SET link_status = $2,
                        link_reason = $3,
                        link_candidates = $4,
                        updated_at = $5
                    WHERE id = $1
                    """,
                    media_id,
                    status.value,
                    reason,
                    _serialize_json(list(candidates or [])),
                    utcnow(),
                )
                if _affected_rows(result) == 0:
                    raise MediaNotFoundError(media_id)
                if event is not None:
                    await _record_event(conn, event)

    async def list_by_link_status(self, status: LinkStatus, limit: int = 100) -> list[str]:
        """Ids of media in ``status``, oldest first."""
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id FROM media
                WHERE link_status = $1
                ORDER BY created_at ASC
                LIMIT $2
                """,
                status.value,
                limit,
            )
        return [row["id"] for row in rows]

    def _row_to_entity(self, row: asyncpg.Record) -> Media:
        return Media(
            id=row["id"],
            original_filename=row["original_filename"],
            parsed_key=ParsedFileKey.from_dict(_load_json(row["parsed_key"]) or {}),
            media_format=MediaFormat.from_dict(_load_json(row["format"]) or {}),
            storage_ref=row["storage_ref"],
            content_hash=row["content_hash"],
            size_bytes=row["size_bytes"],
            link_status=LinkStatus(row["link_status"]),
            link_reason=row["link_reason"],
            link_candidates=list(_load_json(row["link_candidates"]) or []),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class PostgresLinkStore:
    """PostgreSQL link store; the primary key on media_id keeps one link per media."""

    def __init__(self, pool: Pool) -> None:
        self._pool = pool

    async def get(self, media_id: str) -> Optional[ProductMediaLink]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT media_id, product_ean, article_sku, linked_at
                FROM product_media_links
                WHERE media_id = $1
                """,
                media_id,
            )
            if not row:
                return None
            return ProductMediaLink(
                media_id=row["media_id"],
                product_ean=row["product_ean"],
                article_sku=row["article_sku"],
                linked_at=row["linked_at"],
            )

    async def create(self, link: ProductMediaLink) -> ProductMediaLink:
        """
        Insert a link.

        Raises:
            LinkAlreadyExistsError: If the media is already linked.
        """
        async with self._pool.acquire() as conn:
            await self._insert(conn, link)
        return link

    async def create_with_outbox(
        self, link: ProductMediaLink, event: DomainEvent
    ) -> ProductMediaLink:
        """
        Insert a link and record its event atomically.

        Raises:
            LinkAlreadyExistsError: If the media is already linked; nothing
                is recorded then.
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await self._insert(conn, link)
                await _record_event(conn, event)
        return link

    async def _insert(self, conn: Connection, link: ProductMediaLink) -> None:
        status = await conn.execute(
            """
            INSERT INTO product_media_links (media_id, product_ean, article_sku, linked_at)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (media_id) DO NOTHING
            """,
            link.media_id,
            link.product_ean,
            link.article_sku,
            link.linked_at,
        )
        if _affected_rows(status) == 0:
            raise LinkAlreadyExistsError(link.media_id)


class PostgresTypologyStore:
    """PostgreSQL store of published typology versions."""

    def __init__(self, pool: Pool) -> None:
        self._pool = pool

    async def append(self, typology: Typology) -> None:
        async with self._pool.acquire() as conn:
            await self._insert(conn, typology)

    async def append_with_outbox(self, typology: Typology, event: DomainEvent) -> None:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await self._insert(conn, typology)
                await _record_event(conn, event)

    async def _insert(self, conn: Connection, typology: Typology) -> None:
        await conn.execute(
            """
            INSERT INTO typologies (typology_id, version, display_name, definition, published_at)
            VALUES ($1, $2, $3, $4, $5)
            """,
            typology.id,
            typology.version,
            typology.display_name,
            _serialize_json(typology.to_dict()),
            typology.published_at,
        )

    async def load_all(self) -> list[Typology]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT definition, published_at
                FROM typologies
                ORDER BY typology_id, version
                """
            )
        typologies = []
        for row in rows:
            data = _load_json(row["definition"])
            data["published_at"] = row["published_at"]
            typologies.append(Typology.from_dict(data))
        return typologies


class PostgresOutbox:
    """Reader side of the ``outbox_events`` table."""

    def __init__(self, pool: Pool) -> None:
        self._pool = pool

    async def list_unprocessed(
        self, limit: int = 100, entity_id: Optional[str] = None
    ) -> list[DomainEvent]:
        """
        Get unprocessed outbox events in recording order.

        Args:
            limit: Maximum number of events to retrieve.
            entity_id: Only return events of this entity.

        Returns:
            List of unprocessed events.
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT payload
                FROM outbox_events
                WHERE processed_at IS NULL
                  AND ($2::text IS NULL OR entity_id = $2)
                ORDER BY seq ASC
                LIMIT $1
                """,
                limit,
                entity_id,
            )
        return [DomainEvent.from_dict(_load_json(row["payload"])) for row in rows]

    async def mark_processed(self, event_id: str) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE outbox_events
                SET processed_at = $2
                WHERE event_id = $1
                """,
                event_id,
                utcnow(),
            )


async def create_pool(dsn: str, min_size: int = 2, max_size: int = 20) -> Pool:
    """
    Create an asyncpg connection pool.

    Args:
        dsn: Database connection string.
        min_size: Minimum pool size.
        max_size: Maximum pool size.

    Returns:
        asyncpg connection pool.
    """
    return await asyncpg.create_pool(
        dsn=dsn,
        min_size=min_size,
        max_size=max_size,
    )
