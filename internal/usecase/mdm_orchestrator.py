"""
MDM Orchestrator.

Cross-domain coordinator between the product side (PIM) and the media
side (DAM). It consumes domain events from both, runs the link resolver
and publishes consistency events. Both sides are reached only through
the ports in ``mdm_ports``.

Per-media state machine:

    UNLINKED --resolve--> LINKED | AMBIGUOUS | PENDING | FAILED
    PENDING  --product/article upsert or sweep--> LINKED | AMBIGUOUS | PENDING | FAILED

LINKED, AMBIGUOUS and FAILED are terminal. AMBIGUOUS and FAILED require
manual remediation; the stored reason and candidates say why.

MediaLinked and MediaLinkFailed are recorded in the outbox in the same
write as the link or the terminal status, then handed to the relay once
the media lock is released. A redelivered event for a terminal media
flushes the outbox again, so an event the bus refused earlier is
published by the replay.
"""
import asyncio
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

from internal.domain.clock import utcnow
from internal.domain.errors import LinkAlreadyExistsError, MediaNotFoundError
from internal.domain.events import (
    DomainEvent,
    EventKind,
    media_link_failed,
    media_linked,
)
from internal.domain.linking import (
    REASON_AMBIGUOUS,
    REASON_RETRY_EXHAUSTED,
    Ambiguous,
    Linked,
    LinkOutcome,
    LinkStatusView,
    PendingResolution,
    ProductMediaLink,
    Unmatched,
)
from internal.domain.media import LinkStatus, ParsedFileKey
from internal.infrastructure.metrics import prometheus as metrics
from internal.usecase.link_resolver import LinkResolver
from internal.usecase.mdm_ports import IMediaSink
from internal.usecase.ports import IEventBus, ILinkStore, IPendingStore
from internal.usecase.publishing import OutboxRelay
from pkg.logger.logger import get_logger, set_correlation_id
from pkg.resilience.keyed_lock import KeyedLock
from pkg.resilience.retry import with_timeout


logger = get_logger(__name__)


DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_RETRY_HORIZON = timedelta(hours=24)


class MdmOrchestrator:
    """
    Coordinates media linking across the PIM and DAM bounded contexts.

    Resolution for one media id is serialized by a per-key lock; the link
    store's uniqueness per media id is the safety net when two workers
    race on the same event.
    """

    def __init__(
        self,
        resolver: LinkResolver,
        media_sink: IMediaSink,
        link_store: ILinkStore,
        pending_store: IPendingStore,
        relay: OutboxRelay,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_horizon: timedelta = DEFAULT_RETRY_HORIZON,
        io_timeout: Optional[float] = 5.0,
        now: Callable[[], datetime] = utcnow,
        sweep_batch_size: int = 100,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            resolver: Link resolver.
            media_sink: DAM-side port.
            link_store: Store of product/media links.
            pending_store: Durable store of pending resolutions.
            relay: Relay publishing the recorded MediaLinked / MediaLinkFailed.
            max_attempts: Resolution attempts before a pending media fails.
            retry_horizon: Time after which a pending media fails.
            io_timeout: Time budget for store calls.
            now: Wall-clock source.
            sweep_batch_size: Unlinked media re-resolved per sweep.
        """
        self._resolver = resolver
        self._media = media_sink
        self._links = link_store
        self._pending = pending_store
        self._relay = relay
        self._max_attempts = max_attempts
        self._retry_horizon = retry_horizon
        self._io_timeout = io_timeout
        self._now = now
        self._sweep_batch_size = sweep_batch_size
        self._locks = KeyedLock()

    def subscribe(self, event_bus: IEventBus) -> None:
        """Register the orchestrator's handlers on a bus."""
        event_bus.subscribe([EventKind.MEDIA_INGESTED], self.handle_media_ingested)
        event_bus.subscribe([EventKind.PRODUCT_UPSERTED], self.handle_product_upserted)
        event_bus.subscribe([EventKind.ARTICLE_UPSERTED], self.handle_article_upserted)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def handle_media_ingested(self, event: DomainEvent) -> Optional[LinkStatus]:
        """
        Attempt resolution of a freshly ingested media asset.

        Replays of the same event are no-ops once the media is linked or
        in another terminal state. Handling never spends retry budget, so
        redeliveries and re-uploads cannot fail a pending media.

        Returns:
            Link status after handling, or None for an unknown media id.
        """
        set_correlation_id(event.event_id)
        media_id = event.payload.get("media_id") or event.entity_id
        key_data = event.payload.get("parsed_key")
        key = ParsedFileKey.from_dict(key_data) if key_data else None
        return await self.resolve_media(media_id, key, count_attempt=False)

    async def handle_product_upserted(self, event: DomainEvent) -> int:
        """
        Retry pending media waiting on the upserted product's EAN.

        Handles both ProductUpserted and ArticleUpserted events.

        Returns:
            Number of pending media that became linked.
        """
        set_correlation_id(event.event_id)
        ean = event.payload.get("product_ean") or event.payload.get("ean") or event.entity_id
        pending = await with_timeout(
            self._pending.list_by_ean(ean), "pending_store.list_by_ean", self._io_timeout
        )
        if not pending:
            return 0

        logger.info(
            "Retrying pending media after upsert",
            ean=ean,
            event_type=event.kind.value,
            pending=len(pending),
        )
        linked = 0
        for marker in pending:
            status = await self.resolve_media(marker.media_id, count_attempt=True)
            if status == LinkStatus.LINKED:
                linked += 1
        return linked

    async def handle_article_upserted(self, event: DomainEvent) -> int:
        """Retry pending media waiting on the article's product."""
        return await self.handle_product_upserted(event)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve_media(
        self,
        media_id: str,
        key: Optional[ParsedFileKey] = None,
        count_attempt: bool = True,
    ) -> Optional[LinkStatus]:
        """
        Resolve one media asset and apply the outcome.

        Args:
            media_id: Media to resolve.
            key: Parsed filename key; read from the media side when omitted.
            count_attempt: Whether a retryable miss consumes retry budget.

        Returns:
            Link status after resolution, or None for an unknown media id.
        """
        async with self._locks.hold(media_id):
            started = time.perf_counter()
            try:
                status = await self._resolve_locked(media_id, key, count_attempt)
            finally:
                metrics.RESOLUTION_DURATION.observe(time.perf_counter() - started)

        # Outside the lock: an inline bus may call back into resolve_media
        if status is not None and status.is_terminal:
            await self._relay.flush(media_id)
        return status

    async def _resolve_locked(
        self,
        media_id: str,
        key: Optional[ParsedFileKey],
        count_attempt: bool,
    ) -> Optional[LinkStatus]:
        existing = await with_timeout(self._links.get(media_id), "link_store.get", self._io_timeout)
        if existing:
            status = await self._media.get_link_status(media_id)
            if status != LinkStatus.LINKED:
                # Link persisted but status write lost, e.g. crash in between
                await self._media.update_link_status(media_id, LinkStatus.LINKED)
            await self._drop_pending(media_id)
            metrics.LINK_OUTCOMES.labels(outcome="skipped").inc()
            logger.debug("Media already linked, skipping", media_id=media_id)
            return LinkStatus.LINKED

        status = await self._media.get_link_status(media_id)
        if status is None:
            logger.warning("Media not found, dropping resolution", media_id=media_id)
            await self._drop_pending(media_id)
            return None
        if status.is_terminal:
            metrics.LINK_OUTCOMES.labels(outcome="skipped").inc()
            logger.debug(
                "Media in terminal state, skipping", media_id=media_id, status=status.value
            )
            await self._drop_pending(media_id)
            return status

        if key is None:
            key = await self._media.get_parsed_key(media_id)
            if key is None:
                logger.warning("Media vanished during resolution", media_id=media_id)
                return None

        outcome = await self._resolver.resolve(key)
        return await self._apply(media_id, key, outcome, count_attempt)

    async def _apply(
        self,
        media_id: str,
        key: ParsedFileKey,
        outcome: LinkOutcome,
        count_attempt: bool,
    ) -> LinkStatus:
        if isinstance(outcome, Linked):
            return await self._link(media_id, outcome)
        if isinstance(outcome, Ambiguous):
            return await self._fail(
                media_id,
                LinkStatus.AMBIGUOUS,
                REASON_AMBIGUOUS,
                candidates=list(outcome.candidates),
            )
        if isinstance(outcome, Unmatched) and outcome.retryable and key.ean:
            return await self._defer(media_id, key.ean, outcome.reason, count_attempt)
        return await self._fail(media_id, LinkStatus.FAILED, outcome.reason)

    async def _link(self, media_id: str, outcome: Linked) -> LinkStatus:
        link = ProductMediaLink(
            media_id=media_id,
            product_ean=outcome.product_ean,
            article_sku=outcome.article_sku,
            linked_at=self._now(),
        )
        try:
            await with_timeout(
                self._links.create_with_outbox(link, media_linked(link)),
                "link_store.create_with_outbox",
                self._io_timeout,
            )
        except LinkAlreadyExistsError:
            logger.info("Media linked concurrently by another worker", media_id=media_id)
            metrics.LINK_OUTCOMES.labels(outcome="skipped").inc()
            return LinkStatus.LINKED

        await self._media.update_link_status(media_id, LinkStatus.LINKED)
        await self._drop_pending(media_id)

        metrics.LINK_OUTCOMES.labels(outcome="linked").inc()
        logger.info(
            "Media linked",
            media_id=media_id,
            product_ean=link.product_ean,
            article_sku=link.article_sku,
        )
        return LinkStatus.LINKED

    async def _defer(
        self,
        media_id: str,
        ean: str,
        reason: str,
        count_attempt: bool,
    ) -> LinkStatus:
        now = self._now()
        marker = await with_timeout(
            self._pending.get(media_id), "pending_store.get", self._io_timeout
        )
        if marker is None:
            marker = PendingResolution.open(
                media_id=media_id,
                ean=ean,
                reason=reason,
                max_attempts=self._max_attempts,
                horizon=self._retry_horizon,
                now=now,
            )
        else:
            if count_attempt:
                marker.record_attempt(reason)
            else:
                marker.reason = reason
            if marker.is_exhausted(now):
                return await self._fail(media_id, LinkStatus.FAILED, REASON_RETRY_EXHAUSTED)

        await with_timeout(self._pending.put(marker), "pending_store.put", self._io_timeout)
        await self._media.update_link_status(media_id, LinkStatus.PENDING, reason=marker.reason)

        metrics.LINK_OUTCOMES.labels(outcome="pending").inc()
        logger.info(
            "Media resolution deferred",
            media_id=media_id,
            ean=ean,
            reason=reason,
            attempts=marker.attempts,
            max_attempts=marker.max_attempts,
        )
        return LinkStatus.PENDING

    async def _fail(
        self,
        media_id: str,
        status: LinkStatus,
        reason: str,
        candidates: Optional[list[str]] = None,
    ) -> LinkStatus:
        await self._media.update_link_status(
            media_id,
            status,
            reason=reason,
            candidates=candidates,
            event=media_link_failed(media_id, status, reason, candidates),
        )
        await self._drop_pending(media_id)
        metrics.LINK_OUTCOMES.labels(
            outcome="ambiguous" if status == LinkStatus.AMBIGUOUS else "failed"
        ).inc()
        logger.warning(
            "Media link failed",
            media_id=media_id,
            status=status.value,
            reason=reason,
            candidates=candidates or [],
        )
        return status

    async def _drop_pending(self, media_id: str) -> None:
        await with_timeout(self._pending.delete(media_id), "pending_store.delete", self._io_timeout)

    # ------------------------------------------------------------------
    # Background maintenance
    # ------------------------------------------------------------------

    async def expire_pending(self, now: Optional[datetime] = None) -> int:
        """
        Fail every pending media past its horizon or attempt budget.

        Args:
            now: Reference time; the orchestrator clock when omitted.

        Returns:
            Number of media moved to FAILED.
        """
        now = now or self._now()
        markers = await with_timeout(
            self._pending.list_all(), "pending_store.list_all", self._io_timeout
        )
        expired = 0
        for marker in markers:
            if marker.is_exhausted(now) and await self._expire(marker.media_id, now):
                expired += 1
        return expired

    async def retry_pending(self) -> dict[str, int]:
        """
        Re-resolve pending and unlinked media without consuming retry budget.

        Recovers media whose product or article event was missed, and
        media whose MediaIngested handling failed before any outcome was
        stored.

        Returns:
            Counts of linked and still-pending media.
        """
        markers = await with_timeout(
            self._pending.list_all(), "pending_store.list_all", self._io_timeout
        )
        unlinked = await self._media.list_unlinked(self._sweep_batch_size)
        media_ids = list(dict.fromkeys([m.media_id for m in markers] + unlinked))

        stats = {"linked": 0, "pending": 0}
        for media_id in media_ids:
            status = await self.resolve_media(media_id, count_attempt=False)
            if status == LinkStatus.LINKED:
                stats["linked"] += 1
            elif status == LinkStatus.PENDING:
                stats["pending"] += 1

        metrics.PENDING_RESOLUTIONS.set(stats["pending"])
        return stats

    async def sweep(self) -> dict[str, int]:
        """
        One maintenance pass: expire, then retry what is left.

        Returns:
            Counts of expired, linked and still-pending media.
        """
        expired = await self.expire_pending()
        stats = await self.retry_pending()
        stats["expired"] = expired
        if expired or stats["linked"] or stats["pending"]:
            logger.info("Pending media sweep finished", **stats)
        return stats

    async def _expire(self, media_id: str, now: datetime) -> bool:
        async with self._locks.hold(media_id):
            # Re-read under the lock; a concurrent upsert may have linked it
            marker = await with_timeout(
                self._pending.get(media_id), "pending_store.get", self._io_timeout
            )
            if marker is None or not marker.is_exhausted(now):
                return False
            await self._fail(media_id, LinkStatus.FAILED, REASON_RETRY_EXHAUSTED)
        await self._relay.flush(media_id)
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_link_status(self, media_id: str) -> LinkStatusView:
        """
        Current link status of a media asset.

        Raises:
            MediaNotFoundError: If the media id is unknown.
        """
        status = await self._media.get_link_status(media_id)
        if status is None:
            raise MediaNotFoundError(media_id)

        if status == LinkStatus.LINKED:
            link = await with_timeout(
                self._links.get(media_id), "link_store.get", self._io_timeout
            )
            if link:
                return LinkStatusView(
                    media_id=media_id,
                    status=status,
                    product_ean=link.product_ean,
                    article_sku=link.article_sku,
                )
        if status == LinkStatus.PENDING:
            marker = await with_timeout(
                self._pending.get(media_id), "pending_store.get", self._io_timeout
            )
            if marker:
                return LinkStatusView(media_id=media_id, status=status, reason=marker.reason)
        if status == LinkStatus.UNLINKED:
            return LinkStatusView(media_id=media_id, status=status)

        reason, candidates = await self._media.get_link_reason(media_id)
        return LinkStatusView(
            media_id=media_id,
            status=status,
            reason=reason,
            candidates=tuple(candidates),
        )


class PendingSweeper:
    """
    Cancellable background task running ``MdmOrchestrator.sweep``.

    Pending markers live in a durable store, so stopping the sweeper and
    starting a new process resumes the retries rather than restarting them.
    """

    def __init__(self, orchestrator: MdmOrchestrator, interval: float = 60.0) -> None:
        """
        Initialize the sweeper.

        Args:
            orchestrator: Orchestrator to sweep.
            interval: Seconds between passes.
        """
        self._orchestrator = orchestrator
        self._interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background task."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="mdm-pending-sweeper")
        logger.info("Pending sweeper started", interval=self._interval)

    async def stop(self) -> None:
        """Cancel the background task and wait for it to finish."""
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Pending sweeper stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self._orchestrator.sweep()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Next pass retries; pending markers are untouched by a failed pass
                logger.error("Pending sweep failed", error=str(e))
            await asyncio.sleep(self._interval)
