"""
Unit tests for the MDM orchestrator.

Scenarios run end to end on the in-memory adapters: the in-memory bus
dispatches inline, so linking has happened when the publishing call
returns.
"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from internal.domain.errors import (
    InfrastructureTimeoutError,
    LinkAlreadyExistsError,
    MediaNotFoundError,
)
from internal.domain.events import EventKind
from internal.domain.linking import Linked, PendingResolution
from internal.domain.media import LinkStatus, ParsedFileKey
from internal.domain.product import Product
from internal.infrastructure.memory import InMemoryEventBus, InMemoryOutbox, InMemoryPendingStore
from internal.usecase.mdm_orchestrator import MdmOrchestrator, PendingSweeper
from internal.usecase.publishing import OutboxRelay


FRONT = "EAN12345_SKU56789_front.jpg"


class TestMediaLinking:
    """Tests for resolution triggered by MediaIngested."""

    @pytest.mark.asyncio
    async def test_links_to_existing_article(
        self, service, electronics_ref, laptop_attributes, stores, event_bus
    ):
        """Test the happy path: product and article exist before the upload."""
        await service.create_product("12345", electronics_ref, laptop_attributes)
        await service.create_article("56789", "12345")

        media = await service.ingest_media(FRONT, b"jpeg-bytes")

        view = await service.get_link_status(media.id)
        assert view.status == LinkStatus.LINKED
        assert (view.product_ean, view.article_sku) == ("12345", "56789")

        links = stores["links"].all()
        assert len(links) == 1
        assert links[0].media_id == media.id

        linked = event_bus.of_kind(EventKind.MEDIA_LINKED)
        assert len(linked) == 1
        assert linked[0].payload["product_ean"] == "12345"
        assert linked[0].payload["article_sku"] == "56789"

    @pytest.mark.asyncio
    async def test_links_to_product_without_sku(
        self, service, electronics_ref, laptop_attributes
    ):
        """Test a product-level asset."""
        await service.create_product("12345", electronics_ref, laptop_attributes)

        media = await service.ingest_media("EAN12345_back.png", b"png-bytes")

        view = await service.get_link_status(media.id)
        assert view.status == LinkStatus.LINKED
        assert view.article_sku is None

    @pytest.mark.asyncio
    async def test_duplicate_upload_links_once(
        self, service, electronics_ref, laptop_attributes, stores, event_bus
    ):
        """Test that replaying an ingest never creates a second link."""
        await service.create_product("12345", electronics_ref, laptop_attributes)
        await service.create_article("56789", "12345")

        first = await service.ingest_media(FRONT, b"jpeg-bytes")
        second = await service.ingest_media(FRONT, b"jpeg-bytes")

        assert first.id == second.id
        assert len(stores["media"]) == 1
        assert len(stores["links"].all()) == 1
        assert len(event_bus.of_kind(EventKind.MEDIA_INGESTED)) == 1
        assert len(event_bus.of_kind(EventKind.MEDIA_LINKED)) == 1

    @pytest.mark.asyncio
    async def test_replayed_event_is_noop(
        self, service, electronics_ref, laptop_attributes, stores, event_bus
    ):
        """Test at-least-once delivery of MediaIngested."""
        await service.create_product("12345", electronics_ref, laptop_attributes)
        await service.ingest_media("EAN12345_back.png", b"png-bytes")
        event = event_bus.of_kind(EventKind.MEDIA_INGESTED)[0]

        status = await service.orchestrator.handle_media_ingested(event)

        assert status == LinkStatus.LINKED
        assert len(stores["links"].all()) == 1
        assert len(event_bus.of_kind(EventKind.MEDIA_LINKED)) == 1

    @pytest.mark.asyncio
    async def test_replay_reemits_unpublished_link_event(
        self, service, electronics_ref, laptop_attributes, stores, event_bus, outbox, failing_kinds
    ):
        """Test that a MediaLinked the bus refused is published when the ingest is replayed."""
        await service.create_product("12345", electronics_ref, laptop_attributes)
        failing_kinds.add(EventKind.MEDIA_LINKED)

        media = await service.ingest_media("EAN12345_back.png", b"png-bytes")

        assert (await service.get_link_status(media.id)).status == LinkStatus.LINKED
        assert event_bus.of_kind(EventKind.MEDIA_LINKED) == []
        assert [e.kind for e in outbox.unprocessed()] == [EventKind.MEDIA_LINKED]

        failing_kinds.clear()
        event = event_bus.of_kind(EventKind.MEDIA_INGESTED)[0]
        status = await service.orchestrator.handle_media_ingested(event)

        assert status == LinkStatus.LINKED
        assert len(stores["links"].all()) == 1
        linked = event_bus.of_kind(EventKind.MEDIA_LINKED)
        assert len(linked) == 1
        assert linked[0].entity_id == media.id
        assert outbox.unprocessed() == []

    @pytest.mark.asyncio
    async def test_replayed_ingest_does_not_spend_attempts(self, service, stores, event_bus):
        """Test that redelivered MediaIngested events leave the attempt count alone."""
        media = await service.ingest_media("EAN99999_front.jpg", b"x")
        event = event_bus.of_kind(EventKind.MEDIA_INGESTED)[0]

        for _ in range(10):
            status = await service.orchestrator.handle_media_ingested(event)
            assert status == LinkStatus.PENDING

        marker = await stores["pending"].get(media.id)
        assert marker.attempts == 1

    @pytest.mark.asyncio
    async def test_ambiguous_key_is_terminal(
        self, service, electronics_ref, laptop_attributes, stores, event_bus
    ):
        """Test that a name matching two products is never linked."""
        await service.create_product("111", electronics_ref, laptop_attributes)
        await service.create_product("222", electronics_ref, laptop_attributes)

        media = await service.ingest_media("EAN111_EAN222_x.jpg", b"x")

        view = await service.get_link_status(media.id)
        assert view.status == LinkStatus.AMBIGUOUS
        assert view.reason == "ambiguous"
        assert view.candidates == ("111", "222")
        assert stores["links"].all() == []
        failed = event_bus.of_kind(EventKind.MEDIA_LINK_FAILED)
        assert len(failed) == 1
        assert failed[0].payload["candidates"] == ["111", "222"]
        assert failed[0].payload["terminal"] is True

    @pytest.mark.asyncio
    async def test_missing_ean_fails_immediately(self, service, stores, event_bus):
        """Test that a name without EAN is not retried."""
        media = await service.ingest_media("holiday.jpg", b"x")

        view = await service.get_link_status(media.id)
        assert view.status == LinkStatus.FAILED
        assert view.reason == "no EAN token"
        assert view.candidates == ()
        assert len(stores["pending"]) == 0
        assert event_bus.of_kind(EventKind.MEDIA_LINK_FAILED)[0].payload["reason"] == "no EAN token"

    @pytest.mark.asyncio
    async def test_concurrent_resolution_creates_one_link(
        self, service, electronics_ref, laptop_attributes, stores, event_bus
    ):
        """Test that racing resolutions of one media id serialize."""
        await service.create_product("12345", electronics_ref, laptop_attributes)
        media = await service.ingest_media("EAN1_nolink.jpg", b"x")
        key = ParsedFileKey(ean="12345")

        # Reset to a resolvable state, then race two resolutions
        await stores["pending"].delete(media.id)
        await stores["media"].update_link_status(media.id, LinkStatus.UNLINKED)
        results = await asyncio.gather(
            service.orchestrator.resolve_media(media.id, key),
            service.orchestrator.resolve_media(media.id, key),
        )

        assert results == [LinkStatus.LINKED, LinkStatus.LINKED]
        assert len(stores["links"].all()) == 1
        assert len(event_bus.of_kind(EventKind.MEDIA_LINKED)) == 1


class TestPendingResolution:
    """Tests for media that arrive before their product."""

    @pytest.mark.asyncio
    async def test_pending_until_product_created(
        self, service, electronics_ref, laptop_attributes, stores, event_bus
    ):
        """Test that a product upsert resolves waiting media."""
        media = await service.ingest_media("EAN99999_front.jpg", b"x")

        view = await service.get_link_status(media.id)
        assert view.status == LinkStatus.PENDING
        assert view.reason == "product not found"
        assert len(stores["pending"]) == 1

        await service.create_product("99999", electronics_ref, laptop_attributes)

        view = await service.get_link_status(media.id)
        assert view.status == LinkStatus.LINKED
        assert view.product_ean == "99999"
        assert len(stores["pending"]) == 0
        assert len(event_bus.of_kind(EventKind.MEDIA_LINKED)) == 1

    @pytest.mark.asyncio
    async def test_pending_until_article_created(
        self, service, electronics_ref, laptop_attributes
    ):
        """Test that an article upsert resolves media waiting on its SKU."""
        await service.create_product("12345", electronics_ref, laptop_attributes)
        media = await service.ingest_media(FRONT, b"x")

        view = await service.get_link_status(media.id)
        assert view.status == LinkStatus.PENDING
        assert view.reason == "article not found for product"

        await service.create_article("56789", "12345")

        view = await service.get_link_status(media.id)
        assert view.status == LinkStatus.LINKED
        assert view.article_sku == "56789"

    @pytest.mark.asyncio
    async def test_unrelated_upsert_leaves_media_pending(
        self, service, electronics_ref, laptop_attributes, stores
    ):
        """Test that only upserts of the awaited EAN retry a media."""
        media = await service.ingest_media("EAN99999_front.jpg", b"x")

        await service.create_product("12345", electronics_ref, laptop_attributes)

        assert (await service.get_link_status(media.id)).status == LinkStatus.PENDING
        assert (await stores["pending"].get(media.id)).attempts == 1

    @pytest.mark.asyncio
    async def test_attempt_budget_fails_media(
        self, service, electronics_ref, laptop_attributes, stores, event_bus
    ):
        """Test that repeated misses exhaust the attempt budget."""
        await service.create_product("12345", electronics_ref, laptop_attributes)
        media = await service.ingest_media(FRONT, b"x")

        # max_attempts is 5: the ingest was attempt 1
        for version in (1, 2, 3):
            await service.update_product("12345", {}, expected_version=version)
            assert (await service.get_link_status(media.id)).status == LinkStatus.PENDING

        await service.update_product("12345", {}, expected_version=4)

        assert (await service.get_link_status(media.id)).status == LinkStatus.FAILED
        assert len(stores["pending"]) == 0
        failed = event_bus.of_kind(EventKind.MEDIA_LINK_FAILED)
        assert failed[-1].payload["reason"] == "retry horizon exceeded"

    @pytest.mark.asyncio
    async def test_horizon_expiry_on_sweep(self, service, clock, stores, event_bus):
        """Test that a sweep past the horizon fails the media."""
        media = await service.ingest_media("EAN99999_front.jpg", b"x")

        clock.advance(minutes=59)
        stats = await service.orchestrator.sweep()
        assert stats["expired"] == 0
        assert stats["pending"] == 1

        clock.advance(minutes=1)
        stats = await service.orchestrator.sweep()

        assert stats["expired"] == 1
        assert (await service.get_link_status(media.id)).status == LinkStatus.FAILED
        assert len(stores["pending"]) == 0
        assert len(event_bus.of_kind(EventKind.MEDIA_LINK_FAILED)) == 1

    @pytest.mark.asyncio
    async def test_sweep_recovers_missed_upsert(self, service, electronics_ref, stores):
        """Test that a product stored without an event is found by the sweep."""
        media = await service.ingest_media("EAN99999_front.jpg", b"x")
        await stores["products"].save(
            Product(ean="99999", typology_ref=electronics_ref), expected_version=None
        )

        stats = await service.orchestrator.sweep()

        assert stats == {"linked": 1, "pending": 0, "expired": 0}
        assert (await service.get_link_status(media.id)).status == LinkStatus.LINKED

    @pytest.mark.asyncio
    async def test_sweep_recovers_media_left_unlinked_by_failed_handling(
        self, service, electronics_ref, laptop_attributes, stores, event_bus, monkeypatch
    ):
        """Test that media whose ingest handling timed out is linked by the sweep."""
        monkeypatch.setattr(
            stores["products"],
            "find_by_ean",
            AsyncMock(side_effect=InfrastructureTimeoutError("product_store.find_by_ean", 5.0)),
        )

        media = await service.ingest_media("EAN99999_front.jpg", b"x")

        assert (await service.get_link_status(media.id)).status == LinkStatus.UNLINKED
        assert len(stores["pending"]) == 0
        assert len(event_bus.failures) == 1

        monkeypatch.undo()
        await service.create_product("99999", electronics_ref, laptop_attributes)

        # No marker waits on the EAN, so the upsert alone does not link it
        assert (await service.get_link_status(media.id)).status == LinkStatus.UNLINKED

        stats = await service.orchestrator.sweep()

        assert stats == {"linked": 1, "pending": 0, "expired": 0}
        view = await service.get_link_status(media.id)
        assert view.status == LinkStatus.LINKED
        assert view.product_ean == "99999"
        assert len(event_bus.of_kind(EventKind.MEDIA_LINKED)) == 1

    @pytest.mark.asyncio
    async def test_sweep_does_not_consume_attempts(self, service, stores):
        """Test that periodic retries only spend the time budget."""
        media = await service.ingest_media("EAN99999_front.jpg", b"x")

        for _ in range(10):
            await service.orchestrator.sweep()

        marker = await stores["pending"].get(media.id)
        assert marker.attempts == 1
        assert (await service.get_link_status(media.id)).status == LinkStatus.PENDING


class TestOrchestratorEdges:
    """Tests for unknown media, races and terminal states."""

    @pytest.mark.asyncio
    async def test_unknown_media_status_raises_error(self, service):
        """Test the status query for an unknown id."""
        with pytest.raises(MediaNotFoundError):
            await service.get_link_status("does-not-exist")

    @pytest.mark.asyncio
    async def test_unknown_media_resolution_is_dropped(self, service, stores):
        """Test that a marker for a vanished media is cleaned up."""
        await stores["pending"].put(
            PendingResolution.open("ghost", "99999", "product not found", 5, timedelta(hours=1))
        )

        assert await service.orchestrator.resolve_media("ghost") is None
        assert await stores["pending"].get("ghost") is None

    @pytest.mark.asyncio
    async def test_terminal_media_is_not_resolved_again(
        self, service, electronics_ref, laptop_attributes, stores
    ):
        """Test that a failed media stays failed when its product appears."""
        media = await service.ingest_media("EAN99999_front.jpg", b"x")
        await stores["media"].update_link_status(media.id, LinkStatus.FAILED)

        status = await service.orchestrator.resolve_media(media.id)

        assert status == LinkStatus.FAILED
        await service.create_product("99999", electronics_ref, laptop_attributes)
        assert stores["links"].all() == []

    @pytest.mark.asyncio
    async def test_link_created_by_other_worker(self, clock):
        """Test that losing the link-store race is not an error."""
        resolver = MagicMock()
        resolver.resolve = AsyncMock(return_value=Linked(product_ean="12345"))
        media_sink = MagicMock()
        media_sink.get_link_status = AsyncMock(return_value=LinkStatus.UNLINKED)
        media_sink.update_link_status = AsyncMock()
        link_store = MagicMock()
        link_store.get = AsyncMock(return_value=None)
        link_store.create_with_outbox = AsyncMock(side_effect=LinkAlreadyExistsError("m1"))
        bus = InMemoryEventBus()
        relay = OutboxRelay(InMemoryOutbox(), bus)
        orchestrator = MdmOrchestrator(
            resolver, media_sink, link_store, InMemoryPendingStore(), relay, now=clock
        )

        status = await orchestrator.resolve_media("m1", ParsedFileKey(ean="12345"))

        assert status == LinkStatus.LINKED
        assert bus.published == []
        media_sink.update_link_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_repairs_status_of_existing_link(
        self, service, electronics_ref, laptop_attributes, stores
    ):
        """Test that a link without its LINKED status write is repaired."""
        await service.create_product("12345", electronics_ref, laptop_attributes)
        media = await service.ingest_media("EAN12345_back.png", b"x")
        await stores["media"].update_link_status(media.id, LinkStatus.PENDING)

        status = await service.orchestrator.resolve_media(media.id)

        assert status == LinkStatus.LINKED
        assert (await stores["media"].get(media.id)).link_status == LinkStatus.LINKED


class TestPendingSweeper:
    """Tests for the background sweeper task."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        """Test that the sweeper runs passes until cancelled."""
        orchestrator = MagicMock()
        orchestrator.sweep = AsyncMock(return_value={"linked": 0, "pending": 0, "expired": 0})
        sweeper = PendingSweeper(orchestrator, interval=0.01)

        sweeper.start()
        await asyncio.sleep(0.05)
        assert sweeper.running

        await sweeper.stop()

        assert not sweeper.running
        assert orchestrator.sweep.await_count >= 1

    @pytest.mark.asyncio
    async def test_failed_pass_does_not_stop_sweeper(self):
        """Test that an error in one pass is logged and the loop continues."""
        orchestrator = MagicMock()
        orchestrator.sweep = AsyncMock(side_effect=ConnectionError("redis down"))
        sweeper = PendingSweeper(orchestrator, interval=0.01)

        sweeper.start()
        await asyncio.sleep(0.05)

        assert sweeper.running
        assert orchestrator.sweep.await_count >= 2
        await sweeper.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        """Test that stopping an idle sweeper is a no-op."""
        sweeper = PendingSweeper(MagicMock())

        await sweeper.stop()

        assert not sweeper.running
