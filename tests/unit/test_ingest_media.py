"""
Unit tests for media ingestion.
"""
import hashlib
from unittest.mock import AsyncMock, MagicMock

import pytest

from internal.domain.errors import DomainValidationError
from internal.domain.events import EventKind
from internal.domain.media import LinkStatus, MediaKind
from internal.infrastructure.memory import InMemoryEventBus, InMemoryMediaStore, InMemoryOutbox
from internal.usecase.filename_parser import FilenameParser
from internal.usecase.ingest_media import IngestMediaUseCase, media_id_for
from internal.usecase.publishing import OutboxRelay


@pytest.fixture
def outbox():
    return InMemoryOutbox()


@pytest.fixture
def media_store(outbox):
    return InMemoryMediaStore(outbox)


@pytest.fixture
def bus():
    return InMemoryEventBus()


@pytest.fixture
def relay(outbox, bus):
    return OutboxRelay(outbox, bus)


@pytest.fixture
def use_case(media_store, relay):
    return IngestMediaUseCase(media_store, FilenameParser(), relay)


class TestIngestMedia:
    """Tests for IngestMediaUseCase (no orchestrator subscribed)."""

    @pytest.mark.asyncio
    async def test_ingest_stores_binary_and_metadata(self, use_case, media_store, bus, outbox):
        """Test the stored media and the emitted event."""
        media = await use_case.execute("EAN12345_SKU56789_front.jpg", b"jpeg-bytes")

        assert media.id == media_id_for("EAN12345_SKU56789_front.jpg", b"jpeg-bytes")
        assert media.link_status == LinkStatus.UNLINKED
        assert media.parsed_key.ean == "12345"
        assert media.media_format.kind == MediaKind.IMAGE
        assert media.content_hash == hashlib.sha256(b"jpeg-bytes").hexdigest()
        assert media.size_bytes == len(b"jpeg-bytes")
        assert await media_store.read_binary(media.storage_ref) == b"jpeg-bytes"

        events = bus.of_kind(EventKind.MEDIA_INGESTED)
        assert len(events) == 1
        assert events[0].entity_id == media.id
        assert events[0].payload["parsed_key"]["sku"] == "56789"
        assert outbox.unprocessed() == []

    @pytest.mark.asyncio
    async def test_media_id_depends_on_name_and_content(self, use_case):
        """Test that the same bytes under another name are another asset."""
        front = await use_case.execute("EAN1_front.jpg", b"same")
        back = await use_case.execute("EAN1_back.jpg", b"same")
        other = await use_case.execute("EAN1_front.jpg", b"different")

        assert len({front.id, back.id, other.id}) == 3

    @pytest.mark.asyncio
    async def test_duplicate_upload_does_not_republish(self, use_case, media_store, bus, outbox):
        """Test that re-uploading a media announces it only once."""
        first = await use_case.execute("EAN1_front.jpg", b"x")
        second = await use_case.execute("EAN1_front.jpg", b"x")

        assert first.id == second.id
        assert len(media_store) == 1
        assert len(outbox) == 1
        assert len(bus.of_kind(EventKind.MEDIA_INGESTED)) == 1

    @pytest.mark.asyncio
    async def test_duplicate_upload_flushes_refused_event(
        self, use_case, media_store, bus, outbox, monkeypatch
    ):
        """Test that a MediaIngested the bus refused goes out on re-upload."""
        monkeypatch.setattr(bus, "publish", AsyncMock(side_effect=RuntimeError("broker down")))

        media = await use_case.execute("EAN1_front.jpg", b"x")

        assert [e.kind for e in outbox.unprocessed()] == [EventKind.MEDIA_INGESTED]
        monkeypatch.undo()

        again = await use_case.execute("EAN1_front.jpg", b"x")

        assert again.id == media.id
        assert outbox.unprocessed() == []
        events = bus.of_kind(EventKind.MEDIA_INGESTED)
        assert len(events) == 1
        assert events[0].entity_id == media.id

    @pytest.mark.asyncio
    async def test_duplicate_terminal_upload_is_silent(self, use_case, media_store, bus):
        """Test that re-uploading a linked media publishes nothing."""
        media = await use_case.execute("EAN1_front.jpg", b"x")
        await media_store.update_link_status(media.id, LinkStatus.LINKED)

        again = await use_case.execute("EAN1_front.jpg", b"x")

        assert again.link_status == LinkStatus.LINKED
        assert len(bus.of_kind(EventKind.MEDIA_INGESTED)) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("filename", ["", "   "])
    async def test_empty_filename_raises_error(self, use_case, filename):
        """Test that a name is required."""
        with pytest.raises(DomainValidationError):
            await use_case.execute(filename, b"x")

    @pytest.mark.asyncio
    async def test_binary_failure_stores_nothing(self, relay, bus):
        """Test that metadata is not saved when the binary write fails."""
        repository = MagicMock()
        repository.get = AsyncMock(return_value=None)
        repository.save_binary = AsyncMock(side_effect=OSError("disk full"))
        repository.save_with_outbox = AsyncMock()
        use_case = IngestMediaUseCase(repository, FilenameParser(), relay)

        with pytest.raises(OSError):
            await use_case.execute("EAN1_front.jpg", b"x")

        repository.save_with_outbox.assert_not_awaited()
        assert bus.published == []
