"""
Pytest configuration and fixtures.
"""
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from internal.domain.typology import (
    AttributeConstraints,
    AttributeDefinition,
    AttributeKind,
    Typology,
)
from internal.infrastructure.memory import (
    InMemoryArticleStore,
    InMemoryEventBus,
    InMemoryLinkStore,
    InMemoryMediaStore,
    InMemoryOutbox,
    InMemoryPendingStore,
    InMemoryProductStore,
    InMemoryTypologyStore,
)
from internal.usecase.mdm_service import MdmService


class FakeClock:
    """Settable wall clock for retry-horizon tests."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def electronics_typology():
    """Electronics typology draft: CPU, RAM, battery, colour and a shared price."""
    return Typology(
        id="electronics",
        display_name="Electronics",
        attributes=(
            AttributeDefinition(name="processeur", kind=AttributeKind.TEXT, required=True),
            AttributeDefinition(
                name="RAM",
                kind=AttributeKind.TEXT,
                required=True,
                constraints=AttributeConstraints(pattern=r"\d+ ?(GB|Go)"),
            ),
            AttributeDefinition(name="batterie", kind=AttributeKind.TEXT, required=True),
            AttributeDefinition(name="couleur", kind=AttributeKind.TEXT),
            AttributeDefinition(
                name="prix",
                kind=AttributeKind.NUMBER,
                required=True,
                constraints=AttributeConstraints(min_value=0),
                shared=True,
            ),
        ),
    )


@pytest.fixture
def laptop_attributes():
    """Valid electronics attribute map."""
    return {
        "processeur": "Intel i7",
        "RAM": "16 GB",
        "batterie": "5000 mAh",
        "couleur": "argent",
        "prix": 1299.99,
    }


@pytest.fixture
def clock():
    """Wall clock frozen at a fixed instant."""
    return FakeClock(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def outbox():
    """Outbox shared by the in-memory stores."""
    return InMemoryOutbox()


@pytest.fixture
def stores(outbox):
    """Fresh in-memory stores recording their events in ``outbox``."""
    return {
        "products": InMemoryProductStore(outbox),
        "articles": InMemoryArticleStore(outbox),
        "media": InMemoryMediaStore(outbox),
        "links": InMemoryLinkStore(outbox),
        "pending": InMemoryPendingStore(),
        "typologies": InMemoryTypologyStore(outbox),
    }


@pytest.fixture
def event_bus():
    """In-memory event bus with inline dispatch."""
    return InMemoryEventBus()


@pytest.fixture
def failing_kinds(event_bus, monkeypatch):
    """
    Event kinds the bus refuses to publish.

    Tests add kinds to the returned set to simulate a broker outage for
    them and clear it to bring the broker back.
    """
    refused = set()
    publish = event_bus.publish

    async def guarded_publish(event):
        if event.kind in refused:
            raise RuntimeError(f"broker unavailable for {event.kind.value}")
        await publish(event)

    monkeypatch.setattr(event_bus, "publish", guarded_publish)
    return refused


@pytest.fixture
def service(stores, event_bus, outbox, clock):
    """MDM service wired on in-memory adapters."""
    return MdmService(
        products=stores["products"],
        articles=stores["articles"],
        media=stores["media"],
        links=stores["links"],
        pending=stores["pending"],
        event_bus=event_bus,
        outbox=outbox,
        typologies=stores["typologies"],
        max_attempts=5,
        retry_horizon=timedelta(hours=1),
        now=clock,
    )


@pytest_asyncio.fixture
async def electronics_ref(service, electronics_typology):
    """Reference to the published electronics typology."""
    return await service.publish_typology(electronics_typology)
