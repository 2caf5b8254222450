"""
Ingest Media Use Case.

Stores an uploaded asset on the DAM side and announces it with a
MediaIngested event recorded in the same write. Linking happens
asynchronously in the orchestrator.
"""
import hashlib
from typing import Optional

from internal.domain.errors import DomainValidationError
from internal.domain.events import media_ingested
from internal.domain.media import Media
from internal.infrastructure.metrics import prometheus as metrics
from internal.usecase.filename_parser import FilenameParser
from internal.usecase.ports import IMediaStore
from internal.usecase.publishing import OutboxRelay
from pkg.logger.logger import get_logger
from pkg.resilience.retry import with_timeout


logger = get_logger(__name__)


def media_id_for(filename: str, data: bytes) -> str:
    """
    Derive the media id from the uploaded name and content.

    Re-uploading the same bytes under the same name yields the same id,
    which makes ingestion idempotent.
    """
    digest = hashlib.sha256()
    digest.update(filename.encode("utf-8"))
    digest.update(b"\0")
    digest.update(data)
    return digest.hexdigest()


class IngestMediaUseCase:
    """Use case for ingesting a media asset."""

    def __init__(
        self,
        repository: IMediaStore,
        parser: FilenameParser,
        relay: OutboxRelay,
        io_timeout: Optional[float] = 5.0,
    ) -> None:
        """
        Initialize the use case.

        Args:
            repository: Media store (metadata and binaries).
            parser: Filename parser.
            relay: Relay publishing the recorded MediaIngested events.
            io_timeout: Time budget for store calls.
        """
        self._repository = repository
        self._parser = parser
        self._relay = relay
        self._io_timeout = io_timeout

    async def execute(self, filename: str, data: bytes) -> Media:
        """
        Execute the ingest media use case.

        This method:
        1. Parses the filename into a key and a format descriptor
        2. Returns the stored media if the same upload was seen before
        3. Stores the binary, then the metadata with its MediaIngested event
        4. Hands the event to the relay

        A duplicate upload stores nothing new; it only retries publishing
        whatever the first upload left in the outbox.

        Args:
            filename: Uploaded filename.
            data: Binary content.

        Returns:
            The stored media.

        Raises:
            DomainValidationError: If the filename is empty.
        """
        if not filename or not filename.strip():
            raise DomainValidationError("filename is required")

        parsed = self._parser.parse(filename)
        media_id = media_id_for(filename, data)

        existing = await with_timeout(
            self._repository.get(media_id), "media_store.get", self._io_timeout
        )
        if existing:
            metrics.MEDIA_INGESTED.labels(
                format=existing.media_format.extension or "none", status="duplicate"
            ).inc()
            logger.info(
                "Duplicate media upload",
                media_id=media_id,
                filename=filename,
                link_status=existing.link_status.value,
            )
            await self._relay.flush(media_id)
            return existing

        storage_ref = await with_timeout(
            self._repository.save_binary(media_id, data),
            "media_store.save_binary",
            self._io_timeout,
        )

        media = Media(
            id=media_id,
            original_filename=filename,
            parsed_key=parsed.key,
            media_format=parsed.media_format,
            storage_ref=storage_ref,
            content_hash=hashlib.sha256(data).hexdigest(),
            size_bytes=len(data),
        )
        media, inserted = await with_timeout(
            self._repository.save_with_outbox(media, media_ingested(media)),
            "media_store.save_with_outbox",
            self._io_timeout,
        )
        await self._relay.flush(media_id)
        if not inserted:
            # Concurrent upload of the same bytes won the insert
            return media

        metrics.MEDIA_INGESTED.labels(
            format=media.media_format.extension or "none", status="new"
        ).inc()
        logger.info(
            "Media ingested",
            media_id=media_id,
            filename=filename,
            ean=parsed.key.ean,
            sku=parsed.key.sku,
            kind=parsed.media_format.kind.value,
            size_bytes=len(data),
        )
        return media
