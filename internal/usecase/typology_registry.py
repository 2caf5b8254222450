"""
Typology Registry.

Append-only, versioned store of typologies. New product categories and
attribute sets are added by publishing data here; nothing downstream
branches on a specific typology.
"""
import asyncio
from dataclasses import replace
from typing import Optional

from internal.domain.clock import utcnow
from internal.domain.errors import DuplicateTypologyIdError, UnknownTypologyError
from internal.domain.events import typology_published
from internal.domain.typology import Typology
from internal.domain.value_objects import TypologyRef
from internal.infrastructure.metrics import prometheus as metrics
from internal.usecase.ports import ITypologyStore
from internal.usecase.publishing import OutboxRelay
from pkg.logger.logger import get_logger
from pkg.resilience.retry import with_timeout


logger = get_logger(__name__)


class TypologyRegistry:
    """
    Registry of published typology versions.

    Publication is serialized by a lock and swaps in a new immutable tuple
    of versions, so concurrent readers never observe a partial write.
    Superseded versions stay readable for products created against them.
    """

    def __init__(
        self,
        store: Optional[ITypologyStore] = None,
        relay: Optional[OutboxRelay] = None,
        io_timeout: Optional[float] = 5.0,
    ) -> None:
        """
        Initialize the registry.

        Args:
            store: Optional persistence for published versions.
            relay: Relay publishing TypologyPublished events; they are
                recorded with the stored version, so only a registry with
                a store emits them.
            io_timeout: Time budget for store calls.
        """
        self._store = store
        self._relay = relay
        self._io_timeout = io_timeout
        self._versions: dict[str, tuple[Typology, ...]] = {}
        self._lock = asyncio.Lock()

    async def load(self) -> int:
        """
        Warm the registry from the store.

        Returns:
            Number of versions loaded.
        """
        if not self._store:
            return 0
        typologies = await with_timeout(
            self._store.load_all(), "typology_store.load_all", self._io_timeout
        )
        grouped: dict[str, list[Typology]] = {}
        for typology in typologies:
            grouped.setdefault(typology.id, []).append(typology)
        async with self._lock:
            self._versions = {
                typology_id: tuple(sorted(versions, key=lambda t: t.version))
                for typology_id, versions in grouped.items()
            }
        logger.info("Typology registry loaded", versions=len(typologies), typologies=len(grouped))
        return len(typologies)

    async def publish(self, typology: Typology) -> TypologyRef:
        """
        Publish a typology draft.

        A draft with version 0 creates a new typology at version 1. A draft
        carrying version N (from ``Typology.revise``) becomes version N+1,
        provided N is still the latest version.

        Args:
            typology: The draft to publish.

        Returns:
            Reference to the published version.

        Raises:
            DuplicateTypologyIdError: If the id exists and the draft is new,
                or if another publisher already moved past version N.
        """
        async with self._lock:
            existing = self._versions.get(typology.id, ())
            latest = existing[-1].version if existing else 0

            if typology.version != latest:
                logger.warning(
                    "Typology publication rejected",
                    typology_id=typology.id,
                    based_on=typology.version,
                    latest=latest,
                )
                raise DuplicateTypologyIdError(typology.id, latest)

            published = replace(typology, version=latest + 1, published_at=utcnow())

            if self._store and self._relay:
                await with_timeout(
                    self._store.append_with_outbox(published, typology_published(published)),
                    "typology_store.append_with_outbox",
                    self._io_timeout,
                )
            elif self._store:
                await with_timeout(
                    self._store.append(published), "typology_store.append", self._io_timeout
                )
            self._versions[typology.id] = existing + (published,)

        logger.info(
            "Typology published",
            typology_id=published.id,
            version=published.version,
            attributes=len(published.attributes),
        )

        metrics.TYPOLOGIES_PUBLISHED.inc()
        if self._store and self._relay:
            await self._relay.flush(published.id)

        return published.ref

    def get(self, typology_id: str, version: Optional[int] = None) -> Typology:
        """
        Get a published typology version.

        Args:
            typology_id: Typology identifier.
            version: Version to fetch; latest when omitted.

        Returns:
            The typology version.

        Raises:
            UnknownTypologyError: If the id or version is unknown.
        """
        versions = self._versions.get(typology_id)
        if not versions:
            raise UnknownTypologyError(typology_id)
        if version is None:
            return versions[-1]
        for typology in versions:
            if typology.version == version:
                return typology
        raise UnknownTypologyError(typology_id, version)

    def resolve(self, ref: TypologyRef) -> Typology:
        return self.get(ref.typology_id, ref.version)

    def latest_ref(self, typology_id: str) -> TypologyRef:
        return self.get(typology_id).ref

    def versions(self, typology_id: str) -> list[Typology]:
        """All published versions of a typology, oldest first."""
        if typology_id not in self._versions:
            raise UnknownTypologyError(typology_id)
        return list(self._versions[typology_id])

    def list_typologies(self) -> list[Typology]:
        """Latest version of every typology."""
        return [versions[-1] for versions in self._versions.values()]
